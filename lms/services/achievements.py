"""Achievements: default templates, institution copies and the unlock evaluator.

Producers (lesson completion, questionnaire submission, login, ...) call
``dispatch_event``. The evaluator loads the institution's active
achievements that listen to the event, computes the user's current value for
each criteria type and writes a ``student_achievements`` document the first
time the threshold is reached.
"""

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from lms import firestore_dao as dao
from lms.errors import NotFoundError, ValidationError
from lms.firestore_models import (DEFAULT_SETTINGS, CriteriaType, DefaultAchievement,
                                  InstitutionAchievement, StudentAchievement)

logger = logging.getLogger(__name__)


class EventType:
    USER_LOGIN = 'USER_LOGIN'
    LESSON_COMPLETED = 'LESSON_COMPLETED'
    COURSE_COMPLETED = 'COURSE_COMPLETED'
    QUESTIONNAIRE_COMPLETED = 'QUESTIONNAIRE_COMPLETED'
    CERTIFICATE_EARNED = 'CERTIFICATE_EARNED'
    PROFILE_COMPLETED = 'PROFILE_COMPLETED'
    STUDY_SESSION_COMPLETED = 'STUDY_SESSION_COMPLETED'


EVENT_CRITERIA = {
    EventType.USER_LOGIN: {
        CriteriaType.DAILY_LOGIN, CriteriaType.STUDY_STREAK,
        CriteriaType.FIRST_TIME_ACTIVITIES, CriteriaType.TIME_BASED_ACCESS,
    },
    EventType.LESSON_COMPLETED: {CriteriaType.LESSON_COMPLETION},
    EventType.COURSE_COMPLETED: {CriteriaType.COURSE_COMPLETION},
    EventType.QUESTIONNAIRE_COMPLETED: {
        CriteriaType.QUESTIONNAIRE_COMPLETION, CriteriaType.PERFECT_SCORE,
        CriteriaType.RETRY_PERSISTENCE,
    },
    EventType.CERTIFICATE_EARNED: {CriteriaType.CERTIFICATE_ACHIEVED},
    EventType.PROFILE_COMPLETED: {CriteriaType.PROFILE_COMPLETION},
    EventType.STUDY_SESSION_COMPLETED: {
        CriteriaType.STUDY_TIME, CriteriaType.CONTENT_TYPE_DIVERSITY,
    },
}


def criteria_for_event(event_type):
    return {c.value for c in EVENT_CRITERIA.get(event_type, ())}


# ---------------------------------------------------------------------------
# Criteria values
# ---------------------------------------------------------------------------

class _UserStats:
    """Lazily computed counters for one user inside one institution."""

    def __init__(self, user_id, institution_id, event_data, timestamp):
        self.user_id = user_id
        self.institution_id = institution_id
        self.event_data = event_data or {}
        self.timestamp = timestamp
        self._cache = {}

    def value_for(self, criteria_type):
        if criteria_type not in self._cache:
            compute = getattr(self, '_' + criteria_type.lower(), None)
            if compute is None:
                raise ValidationError(f'Unsupported criteria type: {criteria_type}')
            self._cache[criteria_type] = compute()
        return self._cache[criteria_type]

    def _submissions(self):
        if '_submissions' not in self._cache:
            self._cache['_submissions'] = dao.list_user_submissions(self.user_id, self.institution_id)
        return self._cache['_submissions']

    def _progress(self):
        if '_progress' not in self._cache:
            self._cache['_progress'] = dao.list_lesson_progress(
                self.user_id, institution_id=self.institution_id)
        return self._cache['_progress']

    def _lesson_completion(self):
        return dao.count_completed_lessons(self.user_id, self.institution_id)

    def _course_completion(self):
        return dao.count_completed_enrollments(self.user_id, self.institution_id)

    def _questionnaire_completion(self):
        return len({s['questionnaire_id'] for s in self._submissions()})

    def _perfect_score(self):
        return sum(1 for s in self._submissions() if s.get('score') == 100)

    def _retry_persistence(self):
        return len({s['questionnaire_id'] for s in self._submissions()
                    if s.get('passed') and s.get('attempt', 1) > 1})

    def _certificate_achieved(self):
        return len(dao.list_user_certificates(self.user_id, self.institution_id))

    def _daily_login(self):
        days = self.event_data.get('consecutive_login_days')
        if days is None:
            history = dao.get_access_history(self.user_id, self.institution_id)
            days = history.get('consecutive_days', 0) if history else 0
        return days

    _study_streak = _daily_login

    def _study_time(self):
        seconds = 0
        for progress in self._progress():
            for content in progress.get('contents') or []:
                seconds += content.get('time_spent', 0)
        return seconds // 60

    def _content_type_diversity(self):
        types = set()
        for progress in self._progress():
            for content in progress.get('contents') or []:
                if content.get('status') != 'COMPLETED':
                    continue
                doc = dao.get_content(content['content_id'])
                if doc and doc.get('type'):
                    types.add(doc['type'])
        return len(types)

    def _profile_completion(self):
        return self.event_data.get('completion_percentage', 0)

    def _first_time_activities(self):
        return 1 if self.event_data.get('is_first_login') else 0

    def login_hour(self):
        """Hour of the login on the institution's wall clock."""
        login_time = self.event_data.get('login_time') or self.timestamp
        if isinstance(login_time, str):
            login_time = datetime.fromisoformat(login_time)
        if login_time.tzinfo is None:
            login_time = login_time.replace(tzinfo=timezone.utc)
        return login_time.astimezone(self._timezone()).hour

    def _timezone(self):
        institution = dao.get_institution(self.institution_id) or {}
        name = (institution.get('settings') or {}).get('timezone') or DEFAULT_SETTINGS['timezone']
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning('Institution %s has an unknown timezone %r, using UTC',
                           self.institution_id, name)
            return timezone.utc


def _current_value(achievement, stats):
    if achievement.criteria_type == CriteriaType.TIME_BASED_ACCESS.value:
        # criteria_value is the hour of day the login must precede
        met = stats.login_hour() < achievement.criteria_value
        return achievement.criteria_value if met else 0
    return stats.value_for(achievement.criteria_type)


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------

def process_event(user_id, institution_id, event_type, event_data=None, timestamp=None):
    """Evaluate the institution's achievements for one event.

    Returns the list of InstitutionAchievement unlocked by this call.
    """
    timestamp = timestamp or datetime.now(timezone.utc)
    listening = criteria_for_event(event_type)
    if not listening:
        logger.debug('No achievement criteria listen to %s', event_type)
        return []

    achievements = [
        InstitutionAchievement.from_dict(d, d['id'])
        for d in dao.list_institution_achievements(institution_id, active_only=True)
    ]
    achievements = [a for a in achievements if a.criteria_type in listening]
    if not achievements:
        return []

    earned = {
        d['achievement_id']
        for d in dao.list_student_achievements(user_id, institution_id)
        if d.get('is_completed')
    }
    stats = _UserStats(user_id, institution_id, event_data, timestamp)

    unlocked = []
    for achievement in achievements:
        if achievement.id in earned:
            continue
        try:
            if _evaluate(achievement, user_id, institution_id, stats, event_type, timestamp):
                unlocked.append(achievement)
        except Exception:
            logger.exception('Failed to evaluate achievement %s for user %s',
                             achievement.id, user_id)
    return unlocked


def _evaluate(achievement, user_id, institution_id, stats, event_type, timestamp):
    value = _current_value(achievement, stats)
    sa_id = StudentAchievement.make_id(user_id, achievement.id)
    existing = dao.get_student_achievement(user_id, achievement.id)
    if existing:
        record = StudentAchievement.from_dict(existing, existing['id'])
        if record.is_completed:
            return False
    else:
        record = StudentAchievement(id=sa_id, user_id=user_id,
                                    achievement_id=achievement.id,
                                    institution_id=institution_id)

    if achievement.is_criteria_met(value):
        record.mark_completed(when=timestamp, trigger_event=event_type, final_count=value)
        dao.save_student_achievement(sa_id, record.to_dict())
        logger.info('Achievement "%s" unlocked for user %s (%s=%s)',
                    achievement.name, user_id, achievement.criteria_type, value)
        return True

    progress = achievement.progress_percentage(value)
    if progress > record.progress:
        record.update_progress(progress)
        dao.save_student_achievement(sa_id, record.to_dict())
    return False


def dispatch_event(user_id, institution_id, event_type, event_data=None, timestamp=None):
    """Run the evaluator without letting its failures reach the caller."""
    if not user_id or not institution_id:
        return []
    try:
        return process_event(user_id, institution_id, event_type, event_data, timestamp)
    except Exception:
        logger.exception('Achievement processing failed for %s (user %s, institution %s)',
                         event_type, user_id, institution_id)
        return []


# ---------------------------------------------------------------------------
# Templates and institution achievements
# ---------------------------------------------------------------------------

def list_templates(enabled_only=True):
    return [DefaultAchievement.from_dict(d, d['id'])
            for d in dao.list_default_achievements(enabled_only=enabled_only)]


def _ensure_unique_name(institution_id, name, exclude_id=None):
    existing = dao.get_institution_achievement_by_name(institution_id, name)
    if existing and existing['id'] != exclude_id:
        raise ValidationError(f'An achievement named "{name}" already exists in this institution')


def copy_default_achievement(template_id, institution_id, created_by, overrides=None):
    doc = dao.get_default_achievement(template_id)
    if not doc:
        raise NotFoundError(f'Default achievement template {template_id} not found')
    template = DefaultAchievement.from_dict(doc, doc['id'])
    if not template.is_globally_enabled:
        raise ValidationError(f'Default achievement template {template_id} is disabled')

    overrides = {k: v for k, v in (overrides or {}).items() if v not in (None, '')}
    achievement = InstitutionAchievement(
        institution_id=institution_id,
        name=overrides.get('name', template.name),
        description=overrides.get('description', template.description),
        icon_url=overrides.get('icon_url', template.icon_url),
        criteria_type=template.criteria_type,
        criteria_value=int(overrides.get('criteria_value', template.criteria_value)),
        is_active=overrides.get('is_active', True),
        template_id=template.id,
        created_by=created_by,
    )
    achievement.validate()
    _ensure_unique_name(institution_id, achievement.name)
    achievement.id = dao.create_institution_achievement(achievement.to_dict())
    logger.info('Copied template %s into institution %s as %s',
                template.id, institution_id, achievement.id)
    return achievement


def create_achievement(institution_id, created_by, data):
    achievement = InstitutionAchievement(
        institution_id=institution_id,
        name=(data.get('name') or '').strip(),
        description=(data.get('description') or '').strip(),
        icon_url=(data.get('icon_url') or '').strip(),
        criteria_type=data.get('criteria_type', ''),
        criteria_value=int(data.get('criteria_value') or 0),
        is_active=data.get('is_active', True),
        created_by=created_by,
    )
    achievement.validate()
    _ensure_unique_name(institution_id, achievement.name)
    achievement.id = dao.create_institution_achievement(achievement.to_dict())
    return achievement


def update_achievement(achievement_id, institution_id, data):
    doc = dao.get_institution_achievement(achievement_id)
    if not doc or doc.get('institution_id') != institution_id:
        raise NotFoundError('Achievement not found')
    achievement = InstitutionAchievement.from_dict(doc, doc['id'])
    for key in ('name', 'description', 'icon_url', 'criteria_type'):
        if data.get(key) is not None:
            setattr(achievement, key, data[key].strip())
    if data.get('criteria_value') is not None:
        achievement.criteria_value = int(data['criteria_value'])
    if data.get('is_active') is not None:
        achievement.is_active = bool(data['is_active'])
    achievement.validate()
    _ensure_unique_name(institution_id, achievement.name, exclude_id=achievement.id)
    achievement.updated_at = datetime.now(timezone.utc)
    dao.update_institution_achievement(achievement.id, achievement.to_dict())
    return achievement


def get_student_achievements(user_id, institution_id):
    """Every active achievement of the institution with the user's progress."""
    records = {
        d['achievement_id']: StudentAchievement.from_dict(d, d['id'])
        for d in dao.list_student_achievements(user_id, institution_id)
    }
    result = []
    for d in dao.list_institution_achievements(institution_id, active_only=True):
        achievement = InstitutionAchievement.from_dict(d, d['id'])
        result.append({
            'achievement': achievement,
            'record': records.get(achievement.id),
        })
    result.sort(key=lambda item: (not (item['record'] and item['record'].is_completed),
                                  item['achievement'].name))
    return result


# ---------------------------------------------------------------------------
# Default catalogue
# ---------------------------------------------------------------------------

FIRST_STEPS = 'First Steps'
PROGRESS = 'Progress'
ENGAGEMENT = 'Engagement'
EXCELLENCE = 'Excellence'

DEFAULT_ACHIEVEMENTS = [
    ('first_lesson', 'First Step', 'Complete your first lesson and start your learning journey.',
     'first-step', CriteriaType.LESSON_COMPLETION, 1, FIRST_STEPS),
    ('first_questionnaire', 'First Test', 'Complete your first questionnaire.',
     'first-test', CriteriaType.QUESTIONNAIRE_COMPLETION, 1, FIRST_STEPS),
    ('first_login', 'Welcome!', 'Sign in to the learning platform for the first time.',
     'welcome', CriteriaType.DAILY_LOGIN, 1, FIRST_STEPS),
    ('profile_complete', 'Complete Profile', 'Fill in 100% of your profile.',
     'profile-complete', CriteriaType.PROFILE_COMPLETION, 100, FIRST_STEPS),

    ('lesson_milestone_5', 'Apprentice', 'Complete 5 lessons.',
     'apprentice', CriteriaType.LESSON_COMPLETION, 5, PROGRESS),
    ('lesson_milestone_10', 'Dedicated Student', 'Complete 10 lessons.',
     'dedicated-student', CriteriaType.LESSON_COMPLETION, 10, PROGRESS),
    ('lesson_milestone_25', 'Avid Reader', 'Complete 25 lessons.',
     'avid-reader', CriteriaType.LESSON_COMPLETION, 25, PROGRESS),
    ('lesson_milestone_50', 'Knowledge Master', 'Complete 50 lessons.',
     'knowledge-master', CriteriaType.LESSON_COMPLETION, 50, PROGRESS),
    ('first_course', 'Graduate', 'Complete your first course.',
     'graduate', CriteriaType.COURSE_COMPLETION, 1, PROGRESS),
    ('course_milestone_3', 'Specialist', 'Complete 3 courses.',
     'specialist', CriteriaType.COURSE_COMPLETION, 3, PROGRESS),
    ('course_milestone_5', 'Multidisciplinary Expert', 'Complete 5 courses.',
     'expert', CriteriaType.COURSE_COMPLETION, 5, PROGRESS),
    ('first_certificate', 'Certificate of Merit', 'Earn your first certificate.',
     'first-certificate', CriteriaType.CERTIFICATE_ACHIEVED, 1, PROGRESS),

    ('weekly_login', 'Consistent Student', 'Sign in on 7 consecutive days.',
     'consistent-student', CriteriaType.DAILY_LOGIN, 7, ENGAGEMENT),
    ('monthly_login', 'Knowledge Marathoner', 'Sign in on 30 consecutive days.',
     'knowledge-marathoner', CriteriaType.DAILY_LOGIN, 30, ENGAGEMENT),
    ('study_streak_7', 'Study Rhythm', 'Keep a 7 day study streak.',
     'study-rhythm', CriteriaType.STUDY_STREAK, 7, ENGAGEMENT),
    ('study_streak_21', 'Habit Formed', 'Study on 21 consecutive days.',
     'habit-formed', CriteriaType.STUDY_STREAK, 21, ENGAGEMENT),
    ('study_time_10h', 'Knowledge Explorer', 'Accumulate 10 hours of study.',
     'knowledge-explorer', CriteriaType.STUDY_TIME, 600, ENGAGEMENT),
    ('study_time_50h', 'Dedicated Scholar', 'Accumulate 50 hours of study.',
     'dedicated-scholar', CriteriaType.STUDY_TIME, 3000, ENGAGEMENT),
    ('study_time_100h', 'Tireless Academic', 'Accumulate 100 hours of study.',
     'tireless-academic', CriteriaType.STUDY_TIME, 6000, ENGAGEMENT),

    ('perfect_score', 'Top Marks', 'Score 100 on a questionnaire.',
     'perfect-score', CriteriaType.PERFECT_SCORE, 1, EXCELLENCE),
    ('perfect_score_5', 'Perfectionist', 'Score 100 on 5 questionnaires.',
     'perfectionist', CriteriaType.PERFECT_SCORE, 5, EXCELLENCE),
    ('perfect_score_10', 'Precision Master', 'Score 100 on 10 questionnaires.',
     'precision-master', CriteriaType.PERFECT_SCORE, 10, EXCELLENCE),
    ('questionnaire_milestone_10', 'Experienced Responder', 'Complete 10 questionnaires.',
     'experienced-responder', CriteriaType.QUESTIONNAIRE_COMPLETION, 10, EXCELLENCE),
    ('questionnaire_milestone_25', 'Test Master', 'Complete 25 questionnaires.',
     'test-master', CriteriaType.QUESTIONNAIRE_COMPLETION, 25, EXCELLENCE),
    ('certificate_milestone_3', 'Certificate Collector', 'Earn 3 certificates.',
     'certificate-collector', CriteriaType.CERTIFICATE_ACHIEVED, 3, EXCELLENCE),
    ('certificate_milestone_5', 'Certified Professional', 'Earn 5 certificates.',
     'certified-professional', CriteriaType.CERTIFICATE_ACHIEVED, 5, EXCELLENCE),
]


def build_default_catalogue():
    """DefaultAchievement objects for the built-in catalogue."""
    return [
        DefaultAchievement(
            id=f'default_achievement_{key}',
            name=name,
            description=description,
            icon_url=f'/static/icons/achievements/{icon}.svg',
            criteria_type=criteria.value,
            criteria_value=value,
            category=category,
        )
        for key, name, description, icon, criteria, value, category in DEFAULT_ACHIEVEMENTS
    ]


def seed_default_achievements(force=False):
    """Write the default catalogue. Existing templates block the run unless
    ``force`` is set, in which case they are overwritten by id."""
    if dao.count_default_achievements() and not force:
        logger.info('Default achievements already present; seeding skipped')
        return {
            'success': False,
            'message': 'Default achievements already exist. Use force=true to overwrite them.',
            'total_created': 0,
            'by_category': {},
        }

    catalogue = build_default_catalogue()
    total = dao.save_default_achievements((a.id, a.to_dict()) for a in catalogue)
    by_category = {}
    for a in catalogue:
        by_category[a.category] = by_category.get(a.category, 0) + 1
    logger.info('Seeded %d default achievements', total)
    return {
        'success': True,
        'message': f'{total} default achievements created',
        'total_created': total,
        'by_category': by_category,
    }


def copy_all_defaults(institution_id, created_by):
    """Copy every enabled template the institution does not have yet."""
    copied = []
    existing = {d.get('template_id') for d in dao.list_institution_achievements(institution_id)}
    for template in list_templates():
        if template.id in existing:
            continue
        copied.append(copy_default_achievement(template.id, institution_id, created_by))
    return copied
