import logging

from lms import firestore_dao as dao
from lms.errors import NotFoundError, PermissionDeniedError, ValidationError
from lms.firestore_models import Enrollment, EnrollmentStatus
from lms.services import certificates
from lms.services.achievements import EventType, dispatch_event
from lms.services.progress import get_course_progress

logger = logging.getLogger(__name__)


def _load(course_id, user_id):
    doc = dao.get_enrollment(course_id, user_id)
    return Enrollment.from_dict(doc, doc['id']) if doc else None


def _save(enrollment):
    dao.save_enrollment(enrollment.id, enrollment.to_dict())


def require_enrollment(user_id, course_id):
    """The user's enrollment in the course, unless missing or cancelled."""
    enrollment = _load(course_id, user_id)
    if not enrollment or enrollment.status == EnrollmentStatus.CANCELLED.value:
        raise PermissionDeniedError('Enroll in this course first')
    return enrollment


def enroll_in_course(user_id, course_id, institution_id, class_id=None):
    """Enroll a user. A cancelled enrollment is reactivated."""
    course = dao.get_course(course_id)
    if not course or course.get('institution_id') != institution_id:
        raise NotFoundError('Course not found')

    enrollment = _load(course_id, user_id)
    if enrollment:
        if enrollment.status != EnrollmentStatus.CANCELLED.value:
            raise ValidationError('User is already enrolled in this course')
        enrollment.reactivate()
        if class_id:
            enrollment.class_id = class_id
    else:
        enrollment = Enrollment(
            id=f'{course_id}_{user_id}',
            user_id=user_id,
            course_id=course_id,
            institution_id=institution_id,
            class_id=class_id,
        )
    _save(enrollment)
    return enrollment


def cancel_enrollment(user_id, course_id):
    enrollment = _load(course_id, user_id)
    if not enrollment:
        raise NotFoundError('Enrollment not found')
    enrollment.cancel()
    _save(enrollment)
    return enrollment


def complete_course(user_id, course_id, institution_id):
    """Close the enrollment and issue the certificate.

    Returns ``(enrollment, certificate)``.
    """
    enrollment = _load(course_id, user_id)
    if not enrollment or enrollment.institution_id != institution_id:
        raise NotFoundError('You are not enrolled in this course')

    course = dao.get_course(course_id) or {}
    institution = dao.get_institution(institution_id) or {}
    threshold = (institution.get('settings') or {}).get('certificate_threshold', 100)
    progress = get_course_progress(user_id, course_id)
    if progress['percentage'] < threshold:
        raise ValidationError(
            f'Course progress is {progress["percentage"]:.0f}%. '
            f'{threshold}% is required to complete it.')

    newly_completed = enrollment.status != EnrollmentStatus.COMPLETED.value
    if newly_completed:
        enrollment.complete()
        _save(enrollment)
        dispatch_event(user_id, institution_id, EventType.COURSE_COMPLETED, {
            'course_id': course_id,
        })

    best = [s.get('score', 0) for s in dao.list_user_submissions(user_id, institution_id)
            if s.get('course_id') == course_id]
    certificate, created = certificates.generate_certificate(
        user_id, course_id, institution_id, course.get('title', ''),
        hours_completed=round(progress['time_spent'] / 3600, 1),
        grade=max(best) if best else None,
    )
    if created:
        _certificate_earned(user_id, institution_id, certificate)
    return enrollment, certificate


def issue_certificate(user_id, course_id, institution_id, hours_completed=None, grade=None,
                      instructor_name=None):
    """Staff issuance outside the completion flow.

    The user must hold an active or completed enrollment in the course.
    Returns ``(certificate, created)``.
    """
    course = dao.get_course(course_id)
    if not course or course.get('institution_id') != institution_id:
        raise NotFoundError('Course not found')
    enrollment = _load(course_id, user_id)
    if not enrollment or enrollment.status == EnrollmentStatus.CANCELLED.value:
        raise ValidationError('The user is not enrolled in this course')

    certificate, created = certificates.generate_certificate(
        user_id, course_id, institution_id, course.get('title', ''),
        hours_completed=hours_completed, grade=grade, instructor_name=instructor_name,
    )
    if created:
        _certificate_earned(user_id, institution_id, certificate)
    return certificate, created


def _certificate_earned(user_id, institution_id, certificate):
    dispatch_event(user_id, institution_id, EventType.CERTIFICATE_EARNED, {
        'course_id': certificate.course_id,
        'certificate_id': certificate.id,
    })


# ---------------------------------------------------------------------------
# Classes
# ---------------------------------------------------------------------------

def create_class(institution_id, name, course_ids=None):
    name = (name or '').strip()
    if not name:
        raise ValidationError('Class name cannot be empty')
    return dao.create_class({
        'institution_id': institution_id,
        'name': name,
        'course_ids': list(course_ids or []),
        'student_ids': [],
        'tutor_ids': [],
    })


def _get_class(class_id, institution_id):
    klass = dao.get_class(class_id)
    if not klass or klass.get('institution_id') != institution_id:
        raise NotFoundError('Class not found')
    return klass


def add_student_to_class(class_id, user_id, institution_id):
    """Add a student and enroll them in every course of the class."""
    klass = _get_class(class_id, institution_id)
    if not dao.get_user_institution(user_id, institution_id):
        raise ValidationError('User is not a member of this institution')
    student_ids = list(klass.get('student_ids') or [])
    if user_id in student_ids:
        raise ValidationError('Student is already in this class')
    student_ids.append(user_id)
    dao.update_class(class_id, {'student_ids': student_ids})

    for course_id in klass.get('course_ids') or []:
        existing = _load(course_id, user_id)
        if existing and existing.status != EnrollmentStatus.CANCELLED.value:
            continue
        enroll_in_course(user_id, course_id, institution_id, class_id=class_id)
    logger.info('Student %s added to class %s', user_id, class_id)


def remove_student_from_class(class_id, user_id, institution_id):
    klass = _get_class(class_id, institution_id)
    student_ids = [s for s in klass.get('student_ids') or [] if s != user_id]
    if len(student_ids) == len(klass.get('student_ids') or []):
        raise ValidationError('Student is not in this class')
    dao.update_class(class_id, {'student_ids': student_ids})


def add_tutor_to_class(class_id, user_id, institution_id):
    klass = _get_class(class_id, institution_id)
    tutor_ids = list(klass.get('tutor_ids') or [])
    if user_id not in tutor_ids:
        tutor_ids.append(user_id)
        dao.update_class(class_id, {'tutor_ids': tutor_ids})


def is_class_member(klass, user_id):
    return user_id in (klass.get('student_ids') or []) or user_id in (klass.get('tutor_ids') or [])
