import logging

from flask import Blueprint, render_template, redirect, url_for, flash, request, jsonify

from lms import firestore_dao as dao
from lms.decorators import institution_required, permission_required, get_current_user
from lms.errors import LMSError, NotFoundError, PermissionDeniedError, ValidationError
from lms.firestore_models import CONTENT_TYPES, Course
from lms.forms import CourseForm, ModuleForm, LessonForm, ContentForm, LessonFileForm
from lms.permissions import Action, Subject
from lms.services import enrollment as enrollment_service
from lms.services.storage import upload_lesson_file, delete_file

logger = logging.getLogger(__name__)

bp = Blueprint('courses', __name__, url_prefix='/courses')

LESSON_FILE_TYPES = {
    'pdf': ('pdf',),
    'audio': ('mp3',),
    'materials': ('pdf', 'doc', 'docx', 'ppt', 'pptx', 'xls', 'xlsx', 'zip', 'txt'),
}


def _course_in_institution(course_id):
    user = get_current_user()
    course = dao.get_course(course_id)
    if not course or course.get('institution_id') != user.institution_id:
        raise NotFoundError('Course not found')
    return course


def has_course_access(course, user):
    """Admins manage every course of the institution, tutors only their own."""
    if user.is_admin():
        return True
    return user.is_tutor() and dao.is_course_tutor(course['id'], user.uid)


def _manageable_course(course_id):
    course = _course_in_institution(course_id)
    if not has_course_access(course, get_current_user()):
        raise PermissionDeniedError('You are not a tutor of this course')
    return course


def _manageable_module(module_id):
    module = dao.get_module(module_id)
    if not module:
        raise NotFoundError('Module not found')
    return module, _manageable_course(module['course_id'])


def _manageable_lesson(lesson_id):
    lesson = dao.get_lesson(lesson_id)
    if not lesson:
        raise NotFoundError('Lesson not found')
    return lesson, _manageable_course(lesson['course_id'])


def _ordered_ids():
    data = request.get_json(silent=True) or {}
    ids = data.get('ids')
    if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
        raise ValidationError('Expected a JSON body with an "ids" list')
    return ids


@bp.route('/')
@institution_required
def list_courses():
    user = get_current_user()

    if user.is_student():
        courses = dao.list_courses(user.institution_id, active_only=True)
        enrollments = {e['course_id']: e for e in dao.list_user_enrollments(user.uid, user.institution_id)}
        return render_template('courses/list.html', courses=courses, enrollments=enrollments,
                               manage=False)

    courses = dao.list_courses(user.institution_id)
    if user.is_tutor():
        mine = {t['course_id'] for t in dao.list_tutor_courses(user.uid, user.institution_id)}
        courses = [c for c in courses if c['id'] in mine]
    return render_template('courses/list.html', courses=courses, enrollments={}, manage=True)


@bp.route('/create', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.CREATE, Subject.COURSE)
def create():
    user = get_current_user()
    form = CourseForm()
    if form.validate_on_submit():
        course = Course(
            institution_id=user.institution_id,
            title=form.title.data.strip(),
            description=form.description.data or None,
            cover_image_url=form.cover_image_url.data or None,
            is_active=form.is_active.data,
            created_by=user.uid,
        )
        course.id = dao.create_course(course.to_dict())
        if user.is_tutor():
            dao.assign_tutor(course.id, user.uid, user.institution_id)
        logger.info('Course %s created by %s', course.id, user.uid)
        flash('Course created.', 'success')
        return redirect(url_for('courses.manage', course_id=course.id))
    return render_template('courses/form.html', form=form, course=None)


@bp.route('/<course_id>')
@institution_required
def view(course_id):
    user = get_current_user()
    if user.is_student():
        return redirect(url_for('learn.course', course_id=course_id))
    return redirect(url_for('courses.manage', course_id=course_id))


@bp.route('/<course_id>/manage')
@institution_required
@permission_required(Action.UPDATE, Subject.COURSE)
def manage(course_id):
    user = get_current_user()
    course = _manageable_course(course_id)
    modules = []
    for module in dao.list_modules(course_id):
        modules.append({'module': module, 'lessons': dao.list_lessons_by_module(module['id'])})

    tutor_links = dao.list_course_tutors(course_id)
    tutors = dao.get_users_by_ids([t['user_id'] for t in tutor_links])
    candidates = [m for m in dao.list_institution_members(user.institution_id, 'tutor')
                  if m['user_id'] not in tutors]
    candidate_users = dao.get_users_by_ids([m['user_id'] for m in candidates])

    return render_template(
        'courses/manage.html',
        course=course,
        modules=modules,
        tutors=tutors,
        candidate_tutors=candidate_users,
        module_form=ModuleForm(prefix='module'),
        lesson_form=LessonForm(prefix='lesson'),
        enrollments=dao.list_enrollments_by_course(course_id),
    )


@bp.route('/<course_id>/edit', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.COURSE)
def edit(course_id):
    course = _manageable_course(course_id)
    form = CourseForm(data=course)
    if form.validate_on_submit():
        dao.update_course(course_id, {
            'title': form.title.data.strip(),
            'description': form.description.data or None,
            'cover_image_url': form.cover_image_url.data or None,
            'is_active': form.is_active.data,
        })
        flash('Course updated.', 'success')
        return redirect(url_for('courses.manage', course_id=course_id))
    return render_template('courses/form.html', form=form, course=course)


@bp.route('/<course_id>/delete', methods=['POST'])
@institution_required
@permission_required(Action.DELETE, Subject.COURSE)
def delete(course_id):
    _manageable_course(course_id)
    dao.delete_course(course_id)
    logger.info('Course %s deleted by %s', course_id, get_current_user().uid)
    flash('Course deleted.', 'success')
    return redirect(url_for('courses.list_courses'))


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------

@bp.route('/<course_id>/modules', methods=['POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.COURSE)
def create_module(course_id):
    course = _manageable_course(course_id)
    form = ModuleForm(prefix='module')
    if form.validate_on_submit():
        dao.create_module({
            'course_id': course_id,
            'institution_id': course['institution_id'],
            'title': form.title.data.strip(),
            'order': dao.get_max_module_order(course_id) + 1,
        })
        flash('Module added.', 'success')
    else:
        flash('Enter a module title.', 'danger')
    return redirect(url_for('courses.manage', course_id=course_id))


@bp.route('/modules/<module_id>/edit', methods=['POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.COURSE)
def edit_module(module_id):
    module, course = _manageable_module(module_id)
    title = request.form.get('title', '').strip()
    if not title:
        flash('Enter a module title.', 'danger')
    else:
        dao.update_module(module_id, {'title': title})
    return redirect(url_for('courses.manage', course_id=course['id']))


@bp.route('/modules/<module_id>/delete', methods=['POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.COURSE)
def delete_module(module_id):
    module, course = _manageable_module(module_id)
    dao.delete_module(module_id)
    flash('Module deleted.', 'success')
    return redirect(url_for('courses.manage', course_id=course['id']))


@bp.route('/<course_id>/modules/reorder', methods=['POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.COURSE)
def reorder_modules(course_id):
    _manageable_course(course_id)
    ids = _ordered_ids()
    known = {m['id'] for m in dao.list_modules(course_id)}
    if set(ids) != known:
        raise ValidationError('The list must contain every module of the course')
    dao.reorder('modules', ids)
    return jsonify({'success': True})


# ---------------------------------------------------------------------------
# Lessons
# ---------------------------------------------------------------------------

@bp.route('/modules/<module_id>/lessons', methods=['POST'])
@institution_required
@permission_required(Action.CREATE, Subject.LESSON)
def create_lesson(module_id):
    module, course = _manageable_module(module_id)
    form = LessonForm(prefix='lesson')
    if form.validate_on_submit():
        lesson_id = dao.create_lesson({
            'module_id': module_id,
            'course_id': course['id'],
            'institution_id': course['institution_id'],
            'title': form.title.data.strip(),
            'description': form.description.data or None,
            'order': dao.get_max_lesson_order(module_id) + 1,
            'pdf_urls': [],
            'audio_url': None,
            'support_materials': [],
        })
        flash('Lesson added.', 'success')
        return redirect(url_for('courses.edit_lesson', lesson_id=lesson_id))
    flash('Enter a lesson title.', 'danger')
    return redirect(url_for('courses.manage', course_id=course['id']))


@bp.route('/modules/<module_id>/lessons/reorder', methods=['POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.LESSON)
def reorder_lessons(module_id):
    _manageable_module(module_id)
    ids = _ordered_ids()
    known = {lesson['id'] for lesson in dao.list_lessons_by_module(module_id)}
    if set(ids) != known:
        raise ValidationError('The list must contain every lesson of the module')
    dao.reorder('lessons', ids)
    return jsonify({'success': True})


@bp.route('/lessons/<lesson_id>/edit', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.LESSON)
def edit_lesson(lesson_id):
    lesson, course = _manageable_lesson(lesson_id)
    form = LessonForm(data=lesson)
    if form.validate_on_submit():
        dao.update_lesson(lesson_id, {
            'title': form.title.data.strip(),
            'description': form.description.data or None,
        })
        flash('Lesson updated.', 'success')
        return redirect(url_for('courses.edit_lesson', lesson_id=lesson_id))

    return render_template(
        'courses/lesson_edit.html',
        course=course,
        lesson=lesson,
        form=form,
        content_form=ContentForm(prefix='content'),
        file_form=LessonFileForm(prefix='file'),
        contents=dao.list_contents(lesson_id),
        questionnaires=dao.list_questionnaires_by_lesson(lesson_id),
        activities=dao.list_activities_by_lesson(lesson_id),
    )


@bp.route('/lessons/<lesson_id>/delete', methods=['POST'])
@institution_required
@permission_required(Action.DELETE, Subject.LESSON)
def delete_lesson(lesson_id):
    lesson, course = _manageable_lesson(lesson_id)
    dao.delete_lesson(lesson_id)
    flash('Lesson deleted.', 'success')
    return redirect(url_for('courses.manage', course_id=course['id']))


# ---------------------------------------------------------------------------
# Contents
# ---------------------------------------------------------------------------

@bp.route('/lessons/<lesson_id>/contents', methods=['POST'])
@institution_required
@permission_required(Action.CREATE, Subject.CONTENT)
def create_content(lesson_id):
    lesson, course = _manageable_lesson(lesson_id)
    form = ContentForm(prefix='content')
    if not form.validate_on_submit():
        flash('Enter a content title.', 'danger')
        return redirect(url_for('courses.edit_lesson', lesson_id=lesson_id))

    content_type = form.type.data
    if content_type not in CONTENT_TYPES:
        raise ValidationError(f'Unknown content type: {content_type}')
    if content_type == 'text' and not (form.body.data or '').strip():
        raise ValidationError('Text content needs a body')
    if content_type != 'text' and not (form.url.data or '').strip():
        raise ValidationError('This content type needs a URL')
    if content_type == 'scorm':
        package = dao.get_scorm_content(form.url.data.strip())
        if not package or package.get('institution_id') != course['institution_id']:
            raise ValidationError('SCORM package not found')

    existing = dao.list_contents(lesson_id)
    dao.create_content({
        'lesson_id': lesson_id,
        'module_id': lesson['module_id'],
        'course_id': course['id'],
        'institution_id': course['institution_id'],
        'title': form.title.data.strip(),
        'type': content_type,
        'url': (form.url.data or '').strip() or None,
        'body': form.body.data or None,
        'order': len(existing) + 1,
    })
    flash('Content added.', 'success')
    return redirect(url_for('courses.edit_lesson', lesson_id=lesson_id))


@bp.route('/contents/<content_id>/delete', methods=['POST'])
@institution_required
@permission_required(Action.DELETE, Subject.CONTENT)
def delete_content(content_id):
    content = dao.get_content(content_id)
    if not content:
        raise NotFoundError('Content not found')
    _manageable_lesson(content['lesson_id'])
    dao.delete_content(content_id)
    flash('Content removed.', 'success')
    return redirect(url_for('courses.edit_lesson', lesson_id=content['lesson_id']))


@bp.route('/lessons/<lesson_id>/contents/reorder', methods=['POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.CONTENT)
def reorder_contents(lesson_id):
    _manageable_lesson(lesson_id)
    ids = _ordered_ids()
    known = {c['id'] for c in dao.list_contents(lesson_id)}
    if set(ids) != known:
        raise ValidationError('The list must contain every content of the lesson')
    dao.reorder('contents', ids)
    return jsonify({'success': True})


# ---------------------------------------------------------------------------
# Lesson files (PDFs, audio, support material)
# ---------------------------------------------------------------------------

@bp.route('/lessons/<lesson_id>/files', methods=['POST'])
@institution_required
@permission_required(Action.CREATE, Subject.CONTENT)
def upload_file(lesson_id):
    lesson, course = _manageable_lesson(lesson_id)
    form = LessonFileForm(prefix='file')
    if not form.validate_on_submit():
        flash('Choose a file to upload.', 'danger')
        return redirect(url_for('courses.edit_lesson', lesson_id=lesson_id))

    kind = form.kind.data
    upload = form.file.data
    ext = upload.filename.rsplit('.', 1)[-1].lower() if '.' in upload.filename else ''
    if ext not in LESSON_FILE_TYPES.get(kind, ()):
        raise ValidationError(f'.{ext or "?"} files are not accepted as {kind}')

    path = upload_lesson_file(course['id'], lesson_id, kind, upload.stream,
                              upload.filename, upload.mimetype)
    if kind == 'pdf':
        updates = {'pdf_urls': list(lesson.get('pdf_urls') or []) + [path]}
    elif kind == 'audio':
        if lesson.get('audio_url'):
            delete_file(lesson['audio_url'])
        updates = {'audio_url': path}
    else:
        materials = list(lesson.get('support_materials') or [])
        materials.append({'name': upload.filename, 'path': path})
        updates = {'support_materials': materials}
    dao.update_lesson(lesson_id, updates)
    logger.info('Uploaded %s file for lesson %s: %s', kind, lesson_id, path)
    flash('File uploaded.', 'success')
    return redirect(url_for('courses.edit_lesson', lesson_id=lesson_id))


@bp.route('/lessons/<lesson_id>/files/delete', methods=['POST'])
@institution_required
@permission_required(Action.DELETE, Subject.CONTENT)
def delete_lesson_file(lesson_id):
    lesson, course = _manageable_lesson(lesson_id)
    path = request.form.get('path', '')
    pdfs = list(lesson.get('pdf_urls') or [])
    materials = list(lesson.get('support_materials') or [])

    if path in pdfs:
        pdfs.remove(path)
        updates = {'pdf_urls': pdfs}
    elif path and path == lesson.get('audio_url'):
        updates = {'audio_url': None}
    elif any(m.get('path') == path for m in materials):
        updates = {'support_materials': [m for m in materials if m.get('path') != path]}
    else:
        raise NotFoundError('File not found on this lesson')

    delete_file(path)
    dao.update_lesson(lesson_id, updates)
    flash('File removed.', 'success')
    return redirect(url_for('courses.edit_lesson', lesson_id=lesson_id))


# ---------------------------------------------------------------------------
# Tutors and enrollment
# ---------------------------------------------------------------------------

@bp.route('/<course_id>/tutors', methods=['POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.TUTOR)
def assign_tutor(course_id):
    user = get_current_user()
    course = _course_in_institution(course_id)
    tutor_id = request.form.get('user_id', '')
    membership = dao.get_user_institution(tutor_id, user.institution_id)
    if not membership or membership.get('user_role') != 'tutor':
        raise ValidationError('Only tutors of this institution can be assigned')
    dao.assign_tutor(course['id'], tutor_id, user.institution_id)
    flash('Tutor assigned.', 'success')
    return redirect(url_for('courses.manage', course_id=course_id))


@bp.route('/<course_id>/tutors/<user_id>/remove', methods=['POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.TUTOR)
def remove_tutor(course_id, user_id):
    _course_in_institution(course_id)
    dao.remove_tutor(course_id, user_id)
    flash('Tutor removed.', 'success')
    return redirect(url_for('courses.manage', course_id=course_id))


@bp.route('/<course_id>/enroll', methods=['POST'])
@institution_required
@permission_required(Action.WATCH, Subject.COURSE)
def enroll(course_id):
    user = get_current_user()
    course = _course_in_institution(course_id)
    if not course.get('is_active', True):
        raise ValidationError('This course is not open for enrollment')
    try:
        enrollment_service.enroll_in_course(user.uid, course_id, user.institution_id)
        flash('Enrolled.', 'success')
    except LMSError as e:
        flash(str(e), 'info')
    return redirect(url_for('learn.course', course_id=course_id))


@bp.route('/<course_id>/unenroll', methods=['POST'])
@institution_required
@permission_required(Action.WATCH, Subject.COURSE)
def unenroll(course_id):
    user = get_current_user()
    _course_in_institution(course_id)
    enrollment_service.cancel_enrollment(user.uid, course_id)
    flash('Enrollment cancelled.', 'success')
    return redirect(url_for('courses.list_courses'))
