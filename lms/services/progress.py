import logging

from lms import firestore_dao as dao
from lms.errors import NotFoundError, ValidationError
from lms.firestore_models import ContentProgress, Institution, LessonProgress
from lms.services.achievements import EventType, dispatch_event

logger = logging.getLogger(__name__)


def _load_progress(user_id, lesson_id):
    doc = dao.get_lesson_progress(user_id, lesson_id)
    return LessonProgress.from_dict(doc, doc['id']) if doc else None


def _save(progress):
    dao.save_lesson_progress(progress.id, progress.to_dict())


def start_lesson(user_id, lesson_id, institution_id):
    """Return the user's progress on a lesson, creating it on first visit."""
    progress = _load_progress(user_id, lesson_id)
    if progress:
        # contents added after the first visit start untracked
        known = {cp.content_id for cp in progress.contents}
        for content in dao.list_contents(lesson_id):
            if content['id'] not in known:
                progress.contents.append(ContentProgress(content_id=content['id']))
        progress.touch()
        _save(progress)
        return progress

    lesson = dao.get_lesson(lesson_id)
    if not lesson:
        raise NotFoundError('Lesson not found')
    content_ids = [c['id'] for c in dao.list_contents(lesson_id)]
    progress = LessonProgress.start(user_id, lesson_id, lesson.get('course_id', ''),
                                    institution_id, content_ids)
    _save(progress)
    return progress


def update_content_progress(user_id, lesson_id, content_id, percentage,
                            time_spent=None, last_position=None):
    progress = _load_progress(user_id, lesson_id)
    if not progress:
        raise NotFoundError('Lesson progress not found. Open the lesson first.')
    was_completed = progress.is_completed()
    progress.update_content(content_id, percentage, time_spent, last_position)
    _save(progress)

    if time_spent:
        dispatch_event(user_id, progress.institution_id, EventType.STUDY_SESSION_COMPLETED, {
            'content_id': content_id,
            'lesson_id': lesson_id,
            'session_seconds': time_spent,
        })
    if progress.is_completed() and not was_completed:
        _lesson_completed(progress)
    return progress


def complete_lesson(user_id, lesson_id):
    progress = _load_progress(user_id, lesson_id)
    if not progress:
        raise NotFoundError('Lesson progress not found. Open the lesson first.')
    if progress.is_completed():
        return progress
    progress.force_complete()
    _save(progress)
    _lesson_completed(progress)
    return progress


def _lesson_completed(progress):
    logger.info('Lesson %s completed by %s', progress.lesson_id, progress.user_id)
    dispatch_event(progress.user_id, progress.institution_id, EventType.LESSON_COMPLETED, {
        'lesson_id': progress.lesson_id,
        'course_id': progress.course_id,
    })


def ordered_lessons(course_id):
    """Lessons of a course in module order, then lesson order."""
    lessons = []
    for module in dao.list_modules(course_id):
        lessons.extend(dao.list_lessons_by_module(module['id']))
    return lessons


def can_access_lesson(user_id, lesson_id, course_id, institution):
    """Decide whether the user may open a lesson.

    Returns a dict: ``allowed``, ``reason`` and ``skippable`` (true when an
    incomplete earlier lesson is being skipped under ``allow_skip_lesson``).
    """
    if isinstance(institution, dict):
        institution = Institution.from_dict(institution, institution.get('id'))

    if dao.get_lesson_progress(user_id, lesson_id):
        return {'allowed': True, 'reason': 'Lesson already started', 'skippable': False}
    if not institution.setting('require_sequential_progress'):
        return {'allowed': True, 'reason': 'Sequential progress not required', 'skippable': False}

    lessons = ordered_lessons(course_id)
    ids = [lesson['id'] for lesson in lessons]
    if lesson_id not in ids:
        raise ValidationError('Lesson does not belong to this course')
    position = ids.index(lesson_id)
    if position == 0:
        return {'allowed': True, 'reason': 'First lesson of the course', 'skippable': False}

    completed = {
        p['lesson_id'] for p in dao.list_lesson_progress(user_id, course_id=course_id)
        if p.get('status') == 'COMPLETED'
    }
    blocking = [lesson for lesson in lessons[:position] if lesson['id'] not in completed]
    if not blocking:
        return {'allowed': True, 'reason': 'Previous lessons completed', 'skippable': False}
    if institution.setting('allow_skip_lesson'):
        return {'allowed': True, 'reason': 'Skipping incomplete lessons is allowed',
                'skippable': True}
    return {
        'allowed': False,
        'reason': f'Complete "{blocking[0].get("title", "the previous lesson")}" first',
        'skippable': False,
    }


def get_course_progress(user_id, course_id):
    lessons = dao.list_lessons_by_course(course_id)
    total = len(lessons)
    records = {p['lesson_id']: LessonProgress.from_dict(p, p['id'])
               for p in dao.list_lesson_progress(user_id, course_id=course_id)}

    completed = in_progress = 0
    points = 0
    time_spent = 0
    for lesson in lessons:
        record = records.get(lesson['id'])
        if not record:
            continue
        time_spent += record.total_time_spent()
        if record.is_completed():
            completed += 1
            points += 100
        else:
            in_progress += 1
            points += record.overall_progress()

    return {
        'course_id': course_id,
        'total_lessons': total,
        'completed_lessons': completed,
        'in_progress_lessons': in_progress,
        'not_started_lessons': total - completed - in_progress,
        'percentage': round(points / total, 2) if total else 0,
        'time_spent': time_spent,
    }
