"""Activity submissions and their review."""

import logging

from lms import firestore_dao as dao
from lms.errors import NotFoundError, ValidationError
from lms.firestore_models import ActivitySubmission
from lms.services import storage

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILES = 5


def get_activity(activity_id):
    activity = dao.get_activity(activity_id)
    if not activity:
        raise NotFoundError('Activity not found')
    return activity


def get_submission(submission_id):
    doc = dao.get_activity_submission(submission_id)
    if not doc:
        raise NotFoundError('Submission not found')
    return ActivitySubmission.from_dict(doc, doc['id'])


def latest_submission(activity_id, student_id):
    docs = dao.list_student_activity_submissions(activity_id, student_id)
    return ActivitySubmission.from_dict(docs[0], docs[0]['id']) if docs else None


def _check_files(activity, files):
    files = [f for f in files if f and f.filename]
    if not files:
        raise ValidationError('Select at least one file to submit')
    max_files = activity.get('max_files') or DEFAULT_MAX_FILES
    if len(files) > max_files:
        raise ValidationError(f'You can submit at most {max_files} files')
    allowed = [t.lower().lstrip('.') for t in activity.get('allowed_file_types') or []]
    if allowed:
        for f in files:
            ext = f.filename.rsplit('.', 1)[-1].lower() if '.' in f.filename else ''
            if ext not in allowed:
                raise ValidationError(
                    f'File type .{ext or "?"} is not allowed. Allowed: {", ".join(allowed)}')
    return files


def submit_activity(activity_id, student_id, institution_id, files):
    """Upload the files and create a pending submission.

    A student may submit again only after the previous submission was
    rejected.
    """
    activity = get_activity(activity_id)
    previous = latest_submission(activity_id, student_id)
    if previous and not previous.is_rejected():
        if previous.is_pending():
            raise ValidationError('Your previous submission is still waiting for review')
        raise ValidationError('This activity was already approved')

    files = _check_files(activity, files)
    urls = [
        storage.upload_activity_file(activity_id, student_id, f.stream, f.filename, f.mimetype)
        for f in files
    ]
    submission = ActivitySubmission(
        activity_id=activity_id,
        student_id=student_id,
        institution_id=institution_id,
        course_id=activity.get('course_id', ''),
        file_urls=urls,
    )
    submission.id = dao.create_activity_submission(submission.to_dict())
    logger.info('Activity %s submitted by %s (%d files)', activity_id, student_id, len(urls))
    return submission


def review_submission(submission_id, tutor_id, action, feedback=None):
    submission = get_submission(submission_id)
    if action == 'approve':
        submission.approve(tutor_id, feedback)
    elif action == 'reject':
        submission.reject(tutor_id, feedback)
    else:
        raise ValidationError(f'Unknown review action: {action}')
    dao.update_activity_submission(submission.id, {
        'status': submission.status,
        'feedback': submission.feedback,
        'reviewed_by': submission.reviewed_by,
        'reviewed_at': submission.reviewed_at,
    })
    logger.info('Submission %s %s by %s', submission.id, submission.status, tutor_id)
    return submission


def list_for_activity(activity_id, status=None):
    docs = dao.list_activity_submissions(activity_id, status)
    users = dao.get_users_by_ids([d['student_id'] for d in docs])
    return [
        {
            'submission': ActivitySubmission.from_dict(d, d['id']),
            'student_name': (users.get(d['student_id']) or {}).get('full_name', d['student_id']),
        }
        for d in docs
    ]
