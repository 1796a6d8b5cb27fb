import logging

from flask import Blueprint, render_template, request, jsonify

from lms import firestore_dao as dao
from lms.decorators import auth_required, institution_required, permission_required, get_current_user
from lms.errors import NotFoundError, PermissionDeniedError, ValidationError
from lms.firestore_models import Certificate
from lms.permissions import Action, Subject
from lms.services import certificates as certificate_service
from lms.services import enrollment as enrollment_service

logger = logging.getLogger(__name__)

bp = Blueprint('certificates', __name__)

REQUIRED_FIELDS = ('user_id', 'course_id', 'institution_id', 'course_name')


def _load(certificate_id):
    doc = dao.get_certificate(certificate_id)
    if not doc:
        raise NotFoundError('Certificate not found')
    return Certificate.from_dict(doc, doc['id'])


@bp.route('/certificates')
@institution_required
@permission_required(Action.READ, Subject.CERTIFICATE)
def index():
    user = get_current_user()
    certificates = [Certificate.from_dict(d, d['id'])
                    for d in dao.list_user_certificates(user.uid, user.institution_id)]
    return render_template('certificates/index.html', certificates=certificates)


@bp.route('/certificates/<certificate_id>')
@institution_required
@permission_required(Action.READ, Subject.CERTIFICATE)
def view(certificate_id):
    user = get_current_user()
    certificate = _load(certificate_id)
    if certificate.institution_id != user.institution_id:
        raise NotFoundError('Certificate not found')
    if certificate.user_id != user.uid and not user.can(Action.MANAGE, Subject.CERTIFICATE):
        raise PermissionDeniedError('This certificate belongs to another user')
    owner = dao.get_user(certificate.user_id) or {}
    return render_template('certificates/view.html', certificate=certificate,
                           owner=owner, urls=certificate_service.fresh_urls(certificate))


@bp.route('/api/certificates/generate-pdf', methods=['POST'])
@auth_required
def generate_pdf():
    user = get_current_user()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Expected a JSON body')

    missing = [f for f in REQUIRED_FIELDS if not data.get(f)]
    if missing:
        return jsonify({'success': False,
                        'error': f'Missing required fields: {", ".join(missing)}'}), 400

    user_id, course_id, institution_id = data['user_id'], data['course_id'], data['institution_id']
    manager = (user.institution_id == institution_id
               and user.can(Action.MANAGE, Subject.CERTIFICATE))
    if user_id != user.uid and not manager:
        raise PermissionDeniedError('You cannot issue certificates for this user')
    if not user.is_root() and not dao.get_user_institution(user_id, institution_id):
        raise NotFoundError('User is not a member of this institution')
    course = dao.get_course(course_id)
    if not course or course.get('institution_id') != institution_id:
        raise NotFoundError('Course not found')

    if manager:
        try:
            hours = (float(data['hours_completed'])
                     if data.get('hours_completed') is not None else None)
            grade = float(data['grade']) if data.get('grade') is not None else None
        except (TypeError, ValueError):
            raise ValidationError('hours_completed and grade must be numbers')
        certificate, created = enrollment_service.issue_certificate(
            user_id, course_id, institution_id, hours_completed=hours, grade=grade,
            instructor_name=data.get('instructor_name'))
    else:
        # learners only get a certificate by completing the course
        created = dao.get_user_course_certificate(user_id, course_id) is None
        _, certificate = enrollment_service.complete_course(user_id, course_id, institution_id)

    logger.info('generate-pdf by %s: %s (%s)', user.uid, certificate.certificate_number,
                'new' if created else 'existing')
    return jsonify({
        'success': True,
        'created': created,
        'certificate_id': certificate.id,
        'certificate_number': certificate.certificate_number,
        'certificate_url': certificate.certificate_url,
    }), 201 if created else 200
