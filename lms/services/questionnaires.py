"""Questionnaire attempts and grading."""

import logging

from google.api_core.exceptions import Conflict

from lms import firestore_dao as dao
from lms.errors import AttemptLimitError, NotFoundError, ValidationError
from lms.firestore_models import Question, Questionnaire, QuestionnaireSubmission
from lms.services.achievements import EventType, dispatch_event

logger = logging.getLogger(__name__)


def get_questionnaire(questionnaire_id):
    doc = dao.get_questionnaire(questionnaire_id)
    if not doc:
        raise NotFoundError('Questionnaire not found')
    return Questionnaire.from_dict(doc, doc['id'])


def save_questionnaire(questionnaire):
    questionnaire.validate()
    if questionnaire.id:
        dao.update_questionnaire(questionnaire.id, questionnaire.to_dict())
    else:
        questionnaire.id = dao.create_questionnaire(questionnaire.to_dict())
    return questionnaire


def parse_questions(raw_questions):
    """Build Question objects from form/JSON input and validate them."""
    questions = []
    for raw in raw_questions or []:
        options = [o.strip() for o in raw.get('options', []) if o and o.strip()]
        question = Question.from_dict({
            'id': raw.get('id'),
            'text': (raw.get('text') or '').strip(),
            'options': options,
            'correct_index': int(raw.get('correct_index', 0)),
        })
        question.validate()
        questions.append(question)
    return questions


def _attempts(questionnaire_id, user_id):
    return [QuestionnaireSubmission.from_dict(d, d['id'])
            for d in dao.list_attempts(questionnaire_id, user_id)]


def get_attempt_status(questionnaire, user_id):
    attempts = _attempts(questionnaire.id, user_id)
    used = len(attempts)
    return {
        'attempts_used': used,
        'attempts_remaining': max(questionnaire.max_attempts - used, 0),
        'max_attempts': questionnaire.max_attempts,
        'can_attempt': questionnaire.has_attempts_remaining(used),
        'best_score': max((a.score for a in attempts), default=None),
        'passed': any(a.passed for a in attempts),
        'attempts': attempts,
    }


def submit_questionnaire(questionnaire_id, user_id, institution_id, selections,
                         started_at=None):
    """Grade and store one attempt.

    ``selections`` maps question id to the selected option index. Raises
    AttemptLimitError once ``max_attempts`` submissions exist.
    """
    questionnaire = get_questionnaire(questionnaire_id)
    if questionnaire.institution_id and questionnaire.institution_id != institution_id:
        raise NotFoundError('Questionnaire not found')

    used = len(dao.list_attempts(questionnaire_id, user_id))
    if not questionnaire.has_attempts_remaining(used):
        logger.info('Attempt limit reached for user %s on questionnaire %s (%d/%d)',
                    user_id, questionnaire_id, used, questionnaire.max_attempts)
        raise AttemptLimitError(
            f'Maximum number of attempts ({questionnaire.max_attempts}) reached')

    submission = QuestionnaireSubmission.grade(
        questionnaire, user_id, institution_id, used + 1, selections, started_at)
    try:
        dao.create_questionnaire_submission(submission.id, submission.to_dict())
    except Conflict:
        # a concurrent request stored this attempt number first
        raise AttemptLimitError('This attempt was already submitted. Reload and try again.')

    logger.info('Questionnaire %s attempt %d by %s scored %d',
                questionnaire_id, submission.attempt, user_id, submission.score)
    dispatch_event(user_id, institution_id, EventType.QUESTIONNAIRE_COMPLETED, {
        'questionnaire_id': questionnaire_id,
        'score': submission.score,
        'passed': submission.passed,
        'is_perfect_score': submission.score == 100,
        'is_retry': submission.attempt > 1,
        'attempt_number': submission.attempt,
    })
    return submission


def list_submissions_for_tutor(questionnaire_id):
    """Submissions of a questionnaire with the student's display name."""
    docs = dao.list_questionnaire_submissions(questionnaire_id)
    users = dao.get_users_by_ids([d['user_id'] for d in docs])
    rows = []
    for d in docs:
        user = users.get(d['user_id']) or {}
        rows.append({
            'submission': QuestionnaireSubmission.from_dict(d, d['id']),
            'student_name': user.get('full_name') or user.get('email') or d['user_id'],
        })
    return rows


def parse_selections(form, questionnaire):
    """Read ``q_<question id>`` fields from a submitted form."""
    selections = {}
    for question in questionnaire.questions:
        raw = form.get(f'q_{question.id}')
        if raw is None or raw == '':
            continue
        try:
            selections[question.id] = int(raw)
        except ValueError:
            raise ValidationError('Invalid answer selected')
    return selections
