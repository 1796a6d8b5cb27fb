import hmac
import logging

from flask import (Blueprint, Response, current_app, flash, jsonify, redirect,
                   render_template, request, url_for)

from lms import firestore_dao as dao
from lms.decorators import get_current_user, institution_required, permission_required
from lms.errors import LMSError
from lms.forms import ClassForm, InstitutionForm, InstitutionSettingsForm, MemberForm, MemberImportForm
from lms.permissions import Action, Subject
from lms.services import enrollment as enrollment_service
from lms.services import institutions as institution_service
from lms.services.achievements import seed_default_achievements

logger = logging.getLogger(__name__)

bp = Blueprint('admin', __name__)


def _bearer_token():
    header = request.headers.get('Authorization', '')
    if header.startswith('Bearer '):
        return header[len('Bearer '):].strip()
    return None


@bp.route('/api/admin/seed-achievements', methods=['POST'])
def seed_achievements():
    secret = current_app.config.get('ADMIN_SECRET_TOKEN')
    if not secret:
        logger.error('ADMIN_SECRET_TOKEN is not configured; refusing to seed')
        return jsonify({'success': False, 'error': 'Server misconfigured'}), 500

    token = _bearer_token()
    if not token or not hmac.compare_digest(token, secret):
        logger.warning('Rejected seed request from %s', request.remote_addr)
        return jsonify({'success': False, 'error': 'Unauthorized'}), 401

    force = request.args.get('force', '').lower() in ('true', '1')
    result = seed_default_achievements(force=force)
    return jsonify(result), 200


# ---------------------------------------------------------------------------
# Institutions (root)
# ---------------------------------------------------------------------------

@bp.route('/admin/institutions', methods=['GET', 'POST'])
@permission_required(Action.MANAGE, Subject.INSTITUTION)
def institutions():
    form = InstitutionForm()
    if form.validate_on_submit():
        try:
            institution = institution_service.create_institution(
                form.name.data, form.domain.data, form.logo_url.data or None)
            flash(f'Institution "{institution.name}" created.', 'success')
            return redirect(url_for('admin.institutions'))
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('admin/institutions.html', form=form,
                           institutions=institution_service.list_institutions())


@bp.route('/admin/settings', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.UPDATE, Subject.INSTITUTION)
def settings():
    user = get_current_user()
    institution = institution_service.get_institution(user.institution_id)
    form = InstitutionSettingsForm()

    if request.method == 'GET':
        s = institution.settings
        form.require_sequential_progress.data = s.get('require_sequential_progress')
        form.allow_skip_lesson.data = s.get('allow_skip_lesson')
        form.certificate_threshold.data = s.get('certificate_threshold')
        form.timezone.data = s.get('timezone')
        form.risk_high.data = s['risk_levels'].get('high')
        form.risk_medium.data = s['risk_levels'].get('medium')
        form.participation_high.data = s['participation_levels'].get('high')
        form.participation_medium.data = s['participation_levels'].get('medium')
        for name in ('excellent', 'good', 'average', 'below_average'):
            getattr(form, f'rating_{name}').data = s['performance_ratings'].get(name)
        form.inactivity_threshold.data = s.get('inactivity_threshold')
        form.profile_completeness.data = s.get('profile_completeness')

    if form.validate_on_submit():
        try:
            institution_service.update_settings(
                institution.id,
                basic={
                    'require_sequential_progress': form.require_sequential_progress.data,
                    'allow_skip_lesson': form.allow_skip_lesson.data,
                    'certificate_threshold': form.certificate_threshold.data,
                    'timezone': (form.timezone.data or '').strip(),
                },
                advanced=form.advanced_settings() or None,
            )
            flash('Settings saved.', 'success')
            return redirect(url_for('admin.settings'))
        except LMSError as e:
            flash(str(e), 'danger')

    return render_template('admin/settings.html', form=form, institution=institution)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

@bp.route('/admin/members', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.STUDENT)
def members():
    user = get_current_user()
    form = MemberForm()
    import_form = MemberImportForm(prefix='import')

    if form.validate_on_submit():
        summary = institution_service.import_members(
            user.institution_id,
            [(1, form.email.data, form.full_name.data or '', form.role.data)],
        )
        if summary['errors']:
            flash(summary['errors'][0].replace('Row 1: ', ''), 'danger')
        else:
            flash('Member added.', 'success')
        return redirect(url_for('admin.members'))

    role = request.args.get('role') or None
    return render_template('admin/members.html', form=form, import_form=import_form,
                           members=institution_service.list_members(user.institution_id, role),
                           role=role)


@bp.route('/admin/members/<user_id>/role', methods=['POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.STUDENT)
def change_role(user_id):
    user = get_current_user()
    try:
        institution_service.associate_user(user_id, user.institution_id, request.form.get('role', ''))
        flash('Role updated.', 'success')
    except LMSError as e:
        flash(str(e), 'danger')
    return redirect(url_for('admin.members'))


@bp.route('/admin/members/<user_id>/remove', methods=['POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.STUDENT)
def remove_member(user_id):
    user = get_current_user()
    if user_id == user.uid:
        flash('You cannot remove yourself.', 'danger')
        return redirect(url_for('admin.members'))
    try:
        institution_service.remove_association(user_id, user.institution_id)
        flash('Member removed.', 'success')
    except LMSError as e:
        flash(str(e), 'danger')
    return redirect(url_for('admin.members'))


@bp.route('/admin/members/import', methods=['POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.STUDENT)
def import_members():
    user = get_current_user()
    form = MemberImportForm(prefix='import')
    if not form.validate_on_submit():
        flash('Choose a .csv or .xlsx file to import.', 'danger')
        return redirect(url_for('admin.members'))

    upload = form.file.data
    try:
        rows = list(institution_service.read_member_rows(upload.filename, upload.stream))
    except LMSError as e:
        flash(str(e), 'danger')
        return redirect(url_for('admin.members'))
    summary = institution_service.import_members(user.institution_id, rows)
    flash(f'{summary["associated"]} members imported, {summary["created"]} new accounts.',
          'success' if not summary['errors'] else 'warning')
    for message in summary['errors'][:20]:
        flash(message, 'warning')
    return redirect(url_for('admin.members'))


@bp.route('/admin/members/template.xlsx')
@institution_required
@permission_required(Action.MANAGE, Subject.STUDENT)
def member_template():
    return Response(
        institution_service.member_template(),
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        headers={'Content-Disposition': 'attachment;filename=member_template.xlsx'}
    )


# ---------------------------------------------------------------------------
# Classes
# ---------------------------------------------------------------------------

@bp.route('/admin/classes', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.ENROLLMENT)
def classes():
    user = get_current_user()
    form = ClassForm()
    if form.validate_on_submit():
        try:
            enrollment_service.create_class(user.institution_id, form.name.data)
            flash('Class created.', 'success')
            return redirect(url_for('admin.classes'))
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('admin/classes.html', form=form,
                           classes=dao.list_classes(user.institution_id))


@bp.route('/admin/classes/<class_id>', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.MANAGE, Subject.ENROLLMENT)
def class_detail(class_id):
    user = get_current_user()
    klass = dao.get_class(class_id)
    if not klass or klass.get('institution_id') != user.institution_id:
        flash('Class not found.', 'danger')
        return redirect(url_for('admin.classes'))

    if request.method == 'POST':
        action = request.form.get('action')
        target = request.form.get('user_id', '')
        try:
            if action == 'add_student':
                enrollment_service.add_student_to_class(class_id, target, user.institution_id)
            elif action == 'remove_student':
                enrollment_service.remove_student_from_class(class_id, target, user.institution_id)
            elif action == 'add_tutor':
                enrollment_service.add_tutor_to_class(class_id, target, user.institution_id)
            elif action == 'add_course':
                course_id = request.form.get('course_id', '')
                course = dao.get_course(course_id)
                if not course or course.get('institution_id') != user.institution_id:
                    raise LMSError('Course not found')
                course_ids = list(klass.get('course_ids') or [])
                if course_id not in course_ids:
                    course_ids.append(course_id)
                    dao.update_class(class_id, {'course_ids': course_ids})
            flash('Class updated.', 'success')
        except LMSError as e:
            flash(str(e), 'danger')
        return redirect(url_for('admin.class_detail', class_id=class_id))

    users = dao.get_users_by_ids((klass.get('student_ids') or []) + (klass.get('tutor_ids') or []))
    return render_template(
        'admin/class_detail.html',
        klass=klass,
        users=users,
        courses=[dao.get_course(c) for c in klass.get('course_ids') or []],
        all_courses=dao.list_courses(user.institution_id),
        students=institution_service.list_members(user.institution_id, 'student'),
        tutors=institution_service.list_members(user.institution_id, 'tutor'),
    )
