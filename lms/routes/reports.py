import re
from datetime import datetime

from flask import Blueprint, Response, render_template

from lms import firestore_dao as dao
from lms.decorators import institution_required, permission_required, get_current_user
from lms.errors import NotFoundError, PermissionDeniedError
from lms.permissions import Action, Subject
from lms.routes.courses import has_course_access
from lms.services import reports as report_service

bp = Blueprint('reports', __name__, url_prefix='/reports')


def _course(course_id):
    user = get_current_user()
    course = dao.get_course(course_id)
    if not course or course.get('institution_id') != user.institution_id:
        raise NotFoundError('Course not found')
    if not has_course_access(course, user):
        raise PermissionDeniedError('You are not a tutor of this course')
    return course


@bp.route('/')
@institution_required
@permission_required(Action.READ, Subject.REPORT)
def index():
    user = get_current_user()
    courses = [c for c in dao.list_courses(user.institution_id) if has_course_access(c, user)]
    return render_template('reports/index.html', courses=courses)


@bp.route('/courses/<course_id>')
@institution_required
@permission_required(Action.READ, Subject.REPORT)
def course(course_id):
    course = _course(course_id)
    return render_template('reports/course.html', course=course,
                           columns=report_service.REPORT_COLUMNS,
                           rows=report_service.course_report(course_id))


@bp.route('/courses/<course_id>/export.xlsx')
@institution_required
@permission_required(Action.READ, Subject.REPORT)
def export(course_id):
    course = _course(course_id)
    data = report_service.course_report_xlsx(course, report_service.course_report(course_id))
    slug = re.sub(r'[^A-Za-z0-9_-]+', '_', course.get('title') or 'course').strip('_') or 'course'
    filename = f'{slug}_report_{datetime.now().strftime("%Y%m%d")}.xlsx'
    return Response(
        data,
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        headers={'Content-Disposition': f'attachment;filename={filename}'}
    )
