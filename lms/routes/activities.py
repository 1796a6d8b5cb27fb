import logging

from flask import Blueprint, render_template, redirect, url_for, flash, request

from lms import firestore_dao as dao
from lms.decorators import institution_required, permission_required, get_current_user
from lms.errors import LMSError, NotFoundError, PermissionDeniedError
from lms.forms import ActivityForm, ActivitySubmissionForm, ReviewForm
from lms.permissions import Action, Subject
from lms.routes.courses import has_course_access
from lms.services import activities as activity_service
from lms.services import enrollment as enrollment_service
from lms.services.storage import get_signed_url

logger = logging.getLogger(__name__)

bp = Blueprint('activities', __name__, url_prefix='/activities')


def _activity(activity_id):
    activity = activity_service.get_activity(activity_id)
    if activity.get('institution_id') != get_current_user().institution_id:
        raise NotFoundError('Activity not found')
    return activity


def _check_course_access(course_id):
    course = dao.get_course(course_id)
    if not course or not has_course_access(course, get_current_user()):
        raise PermissionDeniedError('You are not a tutor of this course')
    return course


@bp.route('/lessons/<lesson_id>/new', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.ACTIVITY)
def create(lesson_id):
    user = get_current_user()
    lesson = dao.get_lesson(lesson_id)
    if not lesson or lesson.get('institution_id') != user.institution_id:
        raise NotFoundError('Lesson not found')
    _check_course_access(lesson['course_id'])

    form = ActivityForm()
    if form.validate_on_submit():
        allowed = [t.strip().lower().lstrip('.')
                   for t in (form.allowed_file_types.data or '').split(',') if t.strip()]
        activity_id = dao.create_activity({
            'lesson_id': lesson_id,
            'course_id': lesson['course_id'],
            'institution_id': user.institution_id,
            'title': form.title.data.strip(),
            'description': form.description.data or None,
            'due_date': form.due_date.data,
            'allowed_file_types': allowed,
            'max_files': form.max_files.data,
            'created_by': user.uid,
        })
        logger.info('Activity %s created on lesson %s', activity_id, lesson_id)
        flash('Activity created.', 'success')
        return redirect(url_for('courses.edit_lesson', lesson_id=lesson_id))
    return render_template('activities/form.html', form=form, lesson=lesson)


@bp.route('/<activity_id>/delete', methods=['POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.ACTIVITY)
def delete(activity_id):
    activity = _activity(activity_id)
    _check_course_access(activity['course_id'])
    dao.delete_activity(activity_id)
    flash('Activity deleted.', 'success')
    return redirect(url_for('courses.edit_lesson', lesson_id=activity['lesson_id']))


@bp.route('/<activity_id>', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.READ, Subject.ACTIVITY)
def view(activity_id):
    user = get_current_user()
    activity = _activity(activity_id)

    if not user.is_student():
        return redirect(url_for('activities.submissions', activity_id=activity_id))
    enrollment_service.require_enrollment(user.uid, activity['course_id'])

    form = ActivitySubmissionForm()
    if form.validate_on_submit():
        try:
            activity_service.submit_activity(activity_id, user.uid, user.institution_id,
                                             request.files.getlist(form.files.name))
            flash('Submission sent for review.', 'success')
            return redirect(url_for('activities.view', activity_id=activity_id))
        except LMSError as e:
            flash(str(e), 'danger')

    submission = activity_service.latest_submission(activity_id, user.uid)
    files = [get_signed_url(p) for p in submission.file_urls] if submission else []
    return render_template('activities/view.html', activity=activity, form=form,
                           submission=submission, files=files)


@bp.route('/<activity_id>/submissions')
@institution_required
@permission_required(Action.UPDATE, Subject.ACTIVITY)
def submissions(activity_id):
    activity = _activity(activity_id)
    _check_course_access(activity['course_id'])
    status = request.args.get('status') or None
    return render_template('activities/submissions.html', activity=activity, status=status,
                           rows=activity_service.list_for_activity(activity_id, status))


@bp.route('/submissions/<submission_id>/review', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.ACTIVITY)
def review(submission_id):
    user = get_current_user()
    submission = activity_service.get_submission(submission_id)
    activity = _activity(submission.activity_id)
    _check_course_access(activity['course_id'])

    form = ReviewForm()
    if form.validate_on_submit():
        try:
            activity_service.review_submission(submission_id, user.uid, form.action.data,
                                               form.feedback.data)
            flash('Review saved.', 'success')
            return redirect(url_for('activities.submissions', activity_id=activity['id']))
        except LMSError as e:
            flash(str(e), 'danger')

    student = dao.get_user(submission.student_id) or {}
    files = [{'path': p, 'url': get_signed_url(p)} for p in submission.file_urls]
    return render_template('activities/review.html', activity=activity, submission=submission,
                           student=student, files=files, form=form)
