import pytest
from flask import render_template

from lms import firestore_dao as dao
from lms.errors import NotFoundError, ValidationError
from lms.services import certificates as certificate_service
from lms.services import enrollment as enrollment_service
from lms.services import progress as progress_service
from tests.factories import build_course


@pytest.fixture
def academy(db):
    institution_id = dao.create_institution({'name': 'Acme', 'domain': 'acme.com',
                                             'settings': {'certificate_threshold': 100}})
    dao.create_user('s1', {'email': 's1@acme.com', 'full_name': 'Sam Student', 'role': 'student'})
    dao.create_user_institution({'user_id': 's1', 'institution_id': institution_id,
                                 'user_role': 'student'})
    course_id, lessons, _ = build_course(institution_id, title='Algebra')
    return institution_id, course_id, lessons


def _finish_course(institution_id, lessons, user_id='s1'):
    for lesson_id in lessons:
        progress_service.start_lesson(user_id, lesson_id, institution_id)
        progress_service.complete_lesson(user_id, lesson_id)


class TestEnrollment:

    def test_enroll_once(self, academy):
        institution_id, course_id, _ = academy
        enrollment = enrollment_service.enroll_in_course('s1', course_id, institution_id)
        assert enrollment.id == f'{course_id}_s1'
        with pytest.raises(ValidationError):
            enrollment_service.enroll_in_course('s1', course_id, institution_id)

    def test_cancelled_enrollment_is_reactivated(self, academy):
        institution_id, course_id, _ = academy
        enrollment_service.enroll_in_course('s1', course_id, institution_id)
        enrollment_service.cancel_enrollment('s1', course_id)
        enrollment = enrollment_service.enroll_in_course('s1', course_id, institution_id)
        assert enrollment.status == 'enrolled'

    def test_course_of_another_institution(self, academy):
        _, course_id, _ = academy
        with pytest.raises(NotFoundError):
            enrollment_service.enroll_in_course('s1', course_id, 'other')


class TestClasses:

    def test_adding_student_enrolls_in_class_courses(self, academy):
        institution_id, course_id, _ = academy
        class_id = enrollment_service.create_class(institution_id, 'Morning', [course_id])
        enrollment_service.add_student_to_class(class_id, 's1', institution_id)

        assert dao.get_class(class_id)['student_ids'] == ['s1']
        enrollment = dao.get_enrollment(course_id, 's1')
        assert enrollment['class_id'] == class_id
        with pytest.raises(ValidationError):
            enrollment_service.add_student_to_class(class_id, 's1', institution_id)

    def test_existing_enrollment_is_kept(self, academy):
        institution_id, course_id, _ = academy
        enrollment_service.enroll_in_course('s1', course_id, institution_id)
        class_id = enrollment_service.create_class(institution_id, 'Morning', [course_id])
        enrollment_service.add_student_to_class(class_id, 's1', institution_id)
        assert dao.get_enrollment(course_id, 's1')['class_id'] is None

    def test_non_member_cannot_join(self, academy):
        institution_id, course_id, _ = academy
        class_id = enrollment_service.create_class(institution_id, 'Morning', [course_id])
        with pytest.raises(ValidationError):
            enrollment_service.add_student_to_class(class_id, 'stranger', institution_id)

    def test_class_name_required(self, academy):
        institution_id, _, _ = academy
        with pytest.raises(ValidationError):
            enrollment_service.create_class(institution_id, '  ')


class TestCourseCompletion:

    def test_threshold_enforced(self, app, db, academy, no_chromium):
        institution_id, course_id, lessons = academy
        enrollment_service.enroll_in_course('s1', course_id, institution_id)
        _finish_course(institution_id, lessons[:1])
        with app.test_request_context():
            with pytest.raises(ValidationError):
                enrollment_service.complete_course('s1', course_id, institution_id)
        assert db.docs('certificates') == {}

    def test_completion_issues_certificate_once(self, app, db, academy, no_chromium):
        institution_id, course_id, lessons = academy
        enrollment_service.enroll_in_course('s1', course_id, institution_id)
        _finish_course(institution_id, lessons)

        with app.test_request_context():
            enrollment, certificate = enrollment_service.complete_course(
                's1', course_id, institution_id)
            assert enrollment.status == 'completed'
            assert certificate.is_authentic()
            assert certificate.course_name == 'Algebra'
            assert certificate.storage_path == (
                f'certificates/{institution_id}/{certificate.certificate_number}.pdf')

            _, again = enrollment_service.complete_course('s1', course_id, institution_id)
            assert again.id == certificate.id
        assert len(db.docs('certificates')) == 1

    def test_not_enrolled(self, app, academy):
        institution_id, course_id, _ = academy
        with app.test_request_context():
            with pytest.raises(NotFoundError):
                enrollment_service.complete_course('s1', course_id, institution_id)


class TestCertificates:

    def test_generate_uploads_pdf_and_preview(self, app, academy, bucket, no_chromium):
        institution_id, course_id, _ = academy
        with app.test_request_context():
            certificate, created = certificate_service.generate_certificate(
                's1', course_id, institution_id, 'Algebra', hours_completed=2.5, grade=88)
        assert created is True
        assert bucket.files[certificate.storage_path] == b'%PDF-1.4 certificate'
        assert certificate.storage_path.replace('.pdf', '.png') in bucket.files
        assert certificate.certificate_url.startswith('https://storage.test/')

    def test_invalid_grade(self, app, academy, no_chromium):
        institution_id, course_id, _ = academy
        with app.test_request_context():
            with pytest.raises(ValidationError):
                certificate_service.generate_certificate('s1', course_id, institution_id,
                                                         'Algebra', grade=140)

    def test_certificate_page_renders(self, app, academy):
        with app.test_request_context():
            html = render_template('certificates/certificate.html',
                                   student_name='Sam Student', course_name='Algebra',
                                   institution_name='Acme', instructor_name='Dr. Tutor',
                                   hours_completed=2.5, grade=88, issue_date='01/02/2024',
                                   certificate_number='CERT-ABC-123')
        assert 'Sam Student' in html
        assert 'CERT-ABC-123' in html
