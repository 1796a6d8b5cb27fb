from flask import Blueprint, render_template, redirect, url_for, jsonify, request, session, flash

from lms import firestore_dao as dao
from lms.decorators import (auth_required, institution_required, get_current_user,
                            INSTITUTION_KEY)
from lms.services import institutions as institution_service
from lms.services.access import record_daily_access
from lms.services.achievements import get_student_achievements
from lms.services.progress import get_course_progress

bp = Blueprint('main', __name__)


@bp.route('/health')
def health():
    return jsonify({'status': 'ok'}), 200


@bp.route('/')
def index():
    user = get_current_user()
    if user.is_authenticated:
        return redirect(url_for('main.dashboard'))
    return render_template('index.html')


@bp.route('/institutions/select', methods=['GET', 'POST'])
@auth_required
def select_institution():
    user = get_current_user()

    if request.method == 'POST':
        institution_id = request.form.get('institution_id', '')
        if user.get('role') == 'root':
            allowed = dao.get_institution(institution_id) is not None
        else:
            allowed = dao.get_user_institution(user.uid, institution_id) is not None
        if not allowed:
            flash('You are not a member of that institution.', 'danger')
            return redirect(url_for('main.select_institution'))
        session[INSTITUTION_KEY] = institution_id
        record_daily_access(user.uid, institution_id)
        return redirect(url_for('main.dashboard'))

    if user.get('role') == 'root':
        memberships = [{'institution': i, 'role': 'root'}
                       for i in institution_service.list_institutions()]
    else:
        memberships = [{'institution': m['institution'], 'role': m['association'].user_role}
                       for m in institution_service.list_user_institutions(user.uid)]
    return render_template('select_institution.html', memberships=memberships)


@bp.route('/dashboard')
@institution_required
def dashboard():
    user = get_current_user()
    institution = institution_service.get_institution(user.institution_id)

    if user.is_student():
        enrollments = [e for e in dao.list_user_enrollments(user.uid, user.institution_id)
                       if e.get('status') != 'cancelled']
        courses = []
        for enrollment in enrollments:
            course = dao.get_course(enrollment['course_id'])
            if course:
                courses.append({
                    'course': course,
                    'enrollment': enrollment,
                    'progress': get_course_progress(user.uid, course['id']),
                })
        achievements = [a for a in get_student_achievements(user.uid, user.institution_id)
                        if a['record'] and a['record'].is_completed]
        return render_template('dashboard_student.html', institution=institution,
                               courses=courses, achievements=achievements)

    courses = dao.list_courses(user.institution_id)
    if user.is_tutor():
        tutor_course_ids = {t['course_id'] for t in dao.list_tutor_courses(user.uid, user.institution_id)}
        courses = [c for c in courses if c['id'] in tutor_course_ids]
    members = dao.list_institution_members(user.institution_id)
    return render_template('dashboard_staff.html', institution=institution,
                           courses=courses, member_count=len(members))
