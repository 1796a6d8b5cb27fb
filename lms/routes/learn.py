import logging

from flask import Blueprint, render_template, redirect, url_for, flash, request, jsonify

from lms import firestore_dao as dao
from lms.decorators import institution_required, permission_required, get_current_user
from lms.errors import NotFoundError, PermissionDeniedError, ValidationError
from lms.firestore_models import EnrollmentStatus, LessonProgress
from lms.permissions import Action, Subject
from lms.routes.courses import has_course_access
from lms.services import enrollment as enrollment_service
from lms.services import progress as progress_service
from lms.services.questionnaires import get_attempt_status, get_questionnaire
from lms.services.activities import latest_submission
from lms.services.storage import get_signed_url

logger = logging.getLogger(__name__)

bp = Blueprint('learn', __name__)


def _course(course_id):
    user = get_current_user()
    course = dao.get_course(course_id)
    if not course or course.get('institution_id') != user.institution_id:
        raise NotFoundError('Course not found')
    return course


def _is_previewing(course):
    """Staff open lessons without tracking progress."""
    user = get_current_user()
    return not user.is_student() and has_course_access(course, user)


def _lesson_files(lesson):
    return {
        'pdfs': [{'path': p, 'url': get_signed_url(p)} for p in lesson.get('pdf_urls') or []],
        'audio': get_signed_url(lesson['audio_url']) if lesson.get('audio_url') else None,
        'materials': [{'name': m.get('name'), 'url': get_signed_url(m['path'])}
                      for m in lesson.get('support_materials') or [] if m.get('path')],
    }


@bp.route('/learn/courses/<course_id>')
@institution_required
@permission_required(Action.WATCH, Subject.COURSE)
def course(course_id):
    user = get_current_user()
    course = _course(course_id)
    institution = dao.get_institution(user.institution_id)
    enrollment = dao.get_enrollment(course_id, user.uid)
    enrolled = enrollment and enrollment.get('status') != EnrollmentStatus.CANCELLED.value

    progress_by_lesson = {}
    if enrolled:
        progress_by_lesson = {
            p['lesson_id']: LessonProgress.from_dict(p, p['id'])
            for p in dao.list_lesson_progress(user.uid, course_id=course_id)
        }

    modules = []
    for module in dao.list_modules(course_id):
        lessons = []
        for lesson in dao.list_lessons_by_module(module['id']):
            access = None
            if enrolled:
                access = progress_service.can_access_lesson(user.uid, lesson['id'], course_id,
                                                            institution)
            lessons.append({
                'lesson': lesson,
                'progress': progress_by_lesson.get(lesson['id']),
                'access': access,
            })
        modules.append({'module': module, 'lessons': lessons})

    return render_template(
        'learn/course.html',
        course=course,
        enrollment=enrollment if enrolled else None,
        modules=modules,
        course_progress=progress_service.get_course_progress(user.uid, course_id) if enrolled else None,
        certificate=dao.get_user_course_certificate(user.uid, course_id),
    )


@bp.route('/learn/lessons/<lesson_id>')
@institution_required
def lesson(lesson_id):
    user = get_current_user()
    lesson = dao.get_lesson(lesson_id)
    if not lesson:
        raise NotFoundError('Lesson not found')
    course = _course(lesson['course_id'])
    contents = dao.list_contents(lesson_id)
    progress = None

    if _is_previewing(course):
        logger.debug('Staff preview of lesson %s by %s', lesson_id, user.uid)
    else:
        if not user.can(Action.WATCH, Subject.LESSON):
            raise PermissionDeniedError('You cannot watch lessons in this institution')
        enrollment_service.require_enrollment(user.uid, course['id'])
        institution = dao.get_institution(user.institution_id)
        access = progress_service.can_access_lesson(user.uid, lesson_id, course['id'], institution)
        if not access['allowed']:
            flash(access['reason'], 'warning')
            return redirect(url_for('learn.course', course_id=course['id']))
        if access['skippable']:
            flash('You are skipping lessons that are not completed yet.', 'info')
        if contents:
            progress = progress_service.start_lesson(user.uid, lesson_id, user.institution_id)

    questionnaires = []
    for q in dao.list_questionnaires_by_lesson(lesson_id):
        questionnaire = get_questionnaire(q['id'])
        questionnaires.append({
            'questionnaire': questionnaire,
            'status': get_attempt_status(questionnaire, user.uid) if user.is_student() else None,
        })
    activities = [
        {'activity': a,
         'submission': latest_submission(a['id'], user.uid) if user.is_student() else None}
        for a in dao.list_activities_by_lesson(lesson_id)
    ]

    return render_template(
        'learn/lesson.html',
        course=course,
        lesson=lesson,
        contents=contents,
        progress=progress,
        files=_lesson_files(lesson),
        questionnaires=questionnaires,
        activities=activities,
    )


@bp.route('/api/lessons/<lesson_id>/contents/<content_id>/progress', methods=['POST'])
@institution_required
@permission_required(Action.WATCH, Subject.CONTENT)
def update_progress(lesson_id, content_id):
    user = get_current_user()
    data = request.get_json(silent=True) or {}
    try:
        percentage = float(data.get('percentage', 0))
        time_spent = int(data['time_spent']) if data.get('time_spent') is not None else None
        last_position = (float(data['last_position'])
                         if data.get('last_position') is not None else None)
    except (TypeError, ValueError):
        raise ValidationError('percentage, time_spent and last_position must be numbers')

    progress = progress_service.update_content_progress(
        user.uid, lesson_id, content_id, percentage, time_spent, last_position)
    content = progress.content(content_id)
    return jsonify({
        'success': True,
        'lesson_status': progress.status,
        'lesson_progress': progress.overall_progress(),
        'content': content.to_dict(),
    })


@bp.route('/learn/lessons/<lesson_id>/complete', methods=['POST'])
@institution_required
@permission_required(Action.WATCH, Subject.LESSON)
def complete_lesson(lesson_id):
    lesson = dao.get_lesson(lesson_id)
    if not lesson:
        raise NotFoundError('Lesson not found')
    progress_service.complete_lesson(get_current_user().uid, lesson_id)
    flash('Lesson completed.', 'success')
    return redirect(url_for('learn.course', course_id=lesson['course_id']))


@bp.route('/learn/courses/<course_id>/complete', methods=['POST'])
@institution_required
@permission_required(Action.WATCH, Subject.COURSE)
def complete_course(course_id):
    user = get_current_user()
    _course(course_id)
    _, certificate = enrollment_service.complete_course(user.uid, course_id, user.institution_id)
    flash('Course completed. Your certificate is ready.', 'success')
    return redirect(url_for('certificates.view', certificate_id=certificate.id))
