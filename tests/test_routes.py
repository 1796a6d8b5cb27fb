import io

from openpyxl import load_workbook

from lms import firestore_dao as dao
from lms.services import enrollment as enrollment_service
from lms.services import progress as progress_service
from lms.services import social as social_service
from tests.conftest import make_member
from tests.factories import build_course, build_questionnaire

AUTH = {'Authorization': 'Bearer test-admin-token'}


class TestPublic:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'ok'}

    def test_index_for_visitors(self, client):
        assert client.get('/').status_code == 200

    def test_pages_redirect_to_login(self, client):
        response = client.get('/dashboard')
        assert response.status_code == 302
        assert '/auth/login' in response.headers['Location']

    def test_api_answers_401(self, client):
        response = client.post('/api/likes/post/abc')
        assert response.status_code == 401
        assert response.get_json() == {'error': 'Authentication required'}


class TestSeedEndpoint:

    def test_requires_bearer_token(self, client):
        assert client.post('/api/admin/seed-achievements').status_code == 401
        response = client.post('/api/admin/seed-achievements',
                               headers={'Authorization': 'Bearer wrong'})
        assert response.status_code == 401

    def test_missing_secret_is_a_server_error(self, app, client):
        app.config['ADMIN_SECRET_TOKEN'] = None
        response = client.post('/api/admin/seed-achievements', headers=AUTH)
        assert response.status_code == 500

    def test_seed_then_force(self, client, db):
        response = client.post('/api/admin/seed-achievements', headers=AUTH)
        body = response.get_json()
        assert response.status_code == 200
        assert body['success'] is True
        assert body['total_created'] == len(db.docs('default_achievements'))

        again = client.post('/api/admin/seed-achievements', headers=AUTH).get_json()
        assert again['success'] is False

        forced = client.post('/api/admin/seed-achievements?force=true', headers=AUTH).get_json()
        assert forced['success'] is True


class TestInstitutionSelection:

    def test_member_selects_institution(self, client, login, institution, db):
        make_member('s1', institution['id'], 'student')
        login('s1')
        response = client.post('/institutions/select',
                               data={'institution_id': institution['id']})
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/dashboard')
        with client.session_transaction() as sess:
            assert sess['institution_id'] == institution['id']
        assert f's1_{institution["id"]}' in db.docs('user_access_history')

    def test_non_member_is_refused(self, client, login, institution):
        make_member('s1', 'elsewhere', 'student')
        login('s1')
        client.post('/institutions/select', data={'institution_id': institution['id']})
        with client.session_transaction() as sess:
            assert 'institution_id' not in sess

    def test_stale_institution_is_dropped(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        login('s1', 'gone')
        response = client.get('/dashboard')
        assert response.status_code == 302
        assert '/institutions/select' in response.headers['Location']


class TestDashboards:

    def test_student_dashboard(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        course_id, _, _ = build_course(institution['id'], title='Chemistry')
        enrollment_service.enroll_in_course('s1', course_id, institution['id'])
        login('s1', institution['id'])
        response = client.get('/dashboard')
        assert response.status_code == 200
        assert b'Chemistry' in response.data

    def test_staff_dashboard(self, client, login, institution):
        make_member('a1', institution['id'], 'admin')
        build_course(institution['id'], title='Physics')
        login('a1', institution['id'])
        response = client.get('/dashboard')
        assert response.status_code == 200
        assert b'Physics' in response.data


class TestPermissionGates:

    def test_student_cannot_open_admin_pages(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        login('s1', institution['id'])
        response = client.get('/admin/members')
        assert response.status_code == 302
        assert response.headers['Location'].endswith('/dashboard')

    def test_admin_cannot_manage_institutions(self, client, login, institution):
        make_member('a1', institution['id'], 'admin')
        login('a1', institution['id'])
        assert client.get('/admin/institutions').status_code == 302

    def test_root_manages_institutions(self, client, login, institution):
        dao.create_user('root1', {'email': 'root@example.com', 'full_name': 'Root',
                                  'role': 'root'})
        login('root1', institution['id'])
        response = client.get('/admin/institutions')
        assert response.status_code == 200
        assert b'Test Academy' in response.data

    def test_tutor_cannot_manage_badges(self, client, login, institution):
        make_member('t1', institution['id'], 'tutor')
        login('t1', institution['id'])
        assert client.get('/achievements/manage').status_code == 302

    def test_student_cannot_create_content(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        login('s1', institution['id'])
        response = client.post('/api/scorm/register',
                               json={'name': 'x', 'institution_id': institution['id'],
                                     'storage_path': 'scorm_uploads/x.zip'})
        assert response.status_code == 403


class TestLearning:

    def _enrolled_student(self, institution):
        make_member('s1', institution['id'], 'student')
        course_id, lessons, contents = build_course(institution['id'])
        enrollment_service.enroll_in_course('s1', course_id, institution['id'])
        return course_id, lessons, contents

    def test_open_lesson_starts_progress(self, client, login, institution):
        _, lessons, _ = self._enrolled_student(institution)
        login('s1', institution['id'])
        response = client.get(f'/learn/lessons/{lessons[0]}')
        assert response.status_code == 200
        assert dao.get_lesson_progress('s1', lessons[0]) is not None

    def test_lesson_requires_enrollment(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        _, lessons, _ = build_course(institution['id'])
        login('s1', institution['id'])
        client.get(f'/learn/lessons/{lessons[0]}')
        assert dao.get_lesson_progress('s1', lessons[0]) is None

    def test_sequential_block_redirects_to_course(self, client, login, institution):
        dao.update_institution(institution['id'],
                               {'settings': {'require_sequential_progress': True}})
        course_id, lessons, _ = self._enrolled_student(institution)
        login('s1', institution['id'])
        response = client.get(f'/learn/lessons/{lessons[1]}')
        assert response.status_code == 302
        assert response.headers['Location'].endswith(f'/learn/courses/{course_id}')

    def test_progress_api(self, client, login, institution):
        _, lessons, contents = self._enrolled_student(institution)
        progress_service.start_lesson('s1', lessons[1], institution['id'])
        login('s1', institution['id'])
        response = client.post(
            f'/api/lessons/{lessons[1]}/contents/{contents[lessons[1]][0]}/progress',
            json={'percentage': 100, 'time_spent': 42})
        body = response.get_json()
        assert response.status_code == 200
        assert body['lesson_status'] == 'COMPLETED'
        assert body['content']['time_spent'] == 42

    def test_progress_api_errors_are_json(self, client, login, institution):
        _, lessons, contents = self._enrolled_student(institution)
        login('s1', institution['id'])
        response = client.post(
            f'/api/lessons/{lessons[0]}/contents/{contents[lessons[0]][0]}/progress',
            json={'percentage': 'lots'})
        assert response.status_code == 400
        response = client.post(
            f'/api/lessons/{lessons[0]}/contents/{contents[lessons[0]][0]}/progress',
            json={'percentage': 10})
        assert response.status_code == 404
        assert 'error' in response.get_json()


class TestCourseWork:

    def _course(self, institution, enrolled=True):
        make_member('s1', institution['id'], 'student')
        course_id, lessons, _ = build_course(institution['id'])
        if enrolled:
            enrollment_service.enroll_in_course('s1', course_id, institution['id'])
        return course_id, lessons

    def _activity(self, institution, course_id, lesson_id):
        return dao.create_activity({
            'lesson_id': lesson_id,
            'course_id': course_id,
            'institution_id': institution['id'],
            'title': 'Essay',
            'allowed_file_types': ['pdf'],
            'max_files': 1,
        })

    def test_questionnaire_requires_enrollment(self, client, login, institution, db):
        course_id, lessons = self._course(institution, enrolled=False)
        questionnaire_id = build_questionnaire(institution['id'], course_id, lessons[0])
        login('s1', institution['id'])
        assert client.get(f'/questionnaires/{questionnaire_id}').status_code == 302
        response = client.post(f'/questionnaires/{questionnaire_id}/submit',
                               data={'q_q1': '0', 'q_q2': '2'})
        assert response.status_code == 302
        assert db.docs('questionnaire_submissions') == {}

    def test_cancelled_enrollment_cannot_answer(self, client, login, institution, db):
        course_id, lessons = self._course(institution)
        enrollment_service.cancel_enrollment('s1', course_id)
        questionnaire_id = build_questionnaire(institution['id'], course_id, lessons[0])
        login('s1', institution['id'])
        client.post(f'/questionnaires/{questionnaire_id}/submit',
                    data={'q_q1': '0', 'q_q2': '2'})
        assert db.docs('questionnaire_submissions') == {}

    def test_enrolled_student_answers(self, client, login, institution, db):
        course_id, lessons = self._course(institution)
        questionnaire_id = build_questionnaire(institution['id'], course_id, lessons[0])
        login('s1', institution['id'])
        assert client.get(f'/questionnaires/{questionnaire_id}').status_code == 200
        client.post(f'/questionnaires/{questionnaire_id}/submit',
                    data={'q_q1': '0', 'q_q2': '2'})
        stored = db.docs('questionnaire_submissions')[f'{questionnaire_id}_s1_1']
        assert stored['score'] == 100

    def test_activity_requires_enrollment(self, client, login, institution, db, bucket):
        course_id, lessons = self._course(institution, enrolled=False)
        activity_id = self._activity(institution, course_id, lessons[0])
        login('s1', institution['id'])
        response = client.post(f'/activities/{activity_id}',
                               data={'files': (io.BytesIO(b'%PDF-1.4'), 'essay.pdf')},
                               content_type='multipart/form-data')
        assert response.status_code == 302
        assert db.docs('activity_submissions') == {}
        assert bucket.files == {}

    def test_enrolled_student_submits_activity(self, client, login, institution, db, bucket):
        course_id, lessons = self._course(institution)
        activity_id = self._activity(institution, course_id, lessons[0])
        login('s1', institution['id'])
        client.post(f'/activities/{activity_id}',
                    data={'files': (io.BytesIO(b'%PDF-1.4'), 'essay.pdf')},
                    content_type='multipart/form-data')
        submissions = list(db.docs('activity_submissions').values())
        assert len(submissions) == 1
        assert submissions[0]['student_id'] == 's1'


class TestSocialApi:

    def test_toggle_like(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        post = social_service.create_post('s1', 'S1', institution['id'], 'Hello there',
                                          'A friendly first post.')
        login('s1', institution['id'])
        response = client.post(f'/api/likes/post/{post.id}')
        assert response.get_json()['liked'] is True
        response = client.post(f'/api/likes/post/{post.id}')
        assert response.get_json()['liked'] is False

    def test_feed_page(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        social_service.create_post('s1', 'S1', institution['id'], 'Visible post',
                                   'A friendly first post.')
        login('s1', institution['id'])
        response = client.get('/feed')
        assert response.status_code == 200
        assert b'Visible post' in response.data


class TestCertificateApi:

    def test_missing_fields(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        login('s1', institution['id'])
        response = client.post('/api/certificates/generate-pdf', json={'user_id': 's1'})
        assert response.status_code == 400
        assert 'course_id' in response.get_json()['error']

    def test_student_cannot_issue_for_others(self, client, login, institution):
        make_member('s1', institution['id'], 'student')
        make_member('s2', institution['id'], 'student')
        login('s1', institution['id'])
        response = client.post('/api/certificates/generate-pdf', json={
            'user_id': 's2', 'course_id': 'c1', 'institution_id': institution['id'],
            'course_name': 'Algebra'})
        assert response.status_code == 403

    def _payload(self, institution, course_id, user_id='s1', **extra):
        data = {'user_id': user_id, 'course_id': course_id,
                'institution_id': institution['id'], 'course_name': 'Algebra'}
        data.update(extra)
        return data

    def test_student_needs_to_finish_the_course(self, client, login, institution, db,
                                                no_chromium):
        make_member('s1', institution['id'], 'student')
        course_id, _, _ = build_course(institution['id'])
        login('s1', institution['id'])

        response = client.post('/api/certificates/generate-pdf',
                               json=self._payload(institution, course_id, grade=100))
        assert response.status_code == 404

        enrollment_service.enroll_in_course('s1', course_id, institution['id'])
        response = client.post('/api/certificates/generate-pdf',
                               json=self._payload(institution, course_id, grade=100))
        assert response.status_code == 400
        assert db.docs('certificates') == {}

    def test_student_certificate_after_completion(self, client, login, institution, db,
                                                  no_chromium):
        make_member('s1', institution['id'], 'student')
        course_id, lessons, _ = build_course(institution['id'], title='Algebra')
        enrollment_service.enroll_in_course('s1', course_id, institution['id'])
        for lesson_id in lessons:
            progress_service.start_lesson('s1', lesson_id, institution['id'])
            progress_service.complete_lesson('s1', lesson_id)
        login('s1', institution['id'])

        response = client.post('/api/certificates/generate-pdf',
                               json=self._payload(institution, course_id, grade=100))
        assert response.status_code == 201
        stored = list(db.docs('certificates').values())
        assert len(stored) == 1
        assert stored[0]['grade'] is None
        assert dao.get_enrollment(course_id, 's1')['status'] == 'completed'

        again = client.post('/api/certificates/generate-pdf',
                            json=self._payload(institution, course_id))
        assert again.status_code == 200
        assert again.get_json()['created'] is False

    def test_course_must_belong_to_institution(self, client, login, institution, no_chromium):
        make_member('a1', institution['id'], 'admin')
        make_member('s1', institution['id'], 'student')
        course_id, _, _ = build_course('elsewhere')
        login('a1', institution['id'])
        response = client.post('/api/certificates/generate-pdf',
                               json=self._payload(institution, course_id))
        assert response.status_code == 404
        response = client.post('/api/certificates/generate-pdf',
                               json=self._payload(institution, 'missing-course'))
        assert response.status_code == 404

    def test_manager_issues_for_enrolled_students_only(self, client, login, institution, db,
                                                       no_chromium):
        make_member('a1', institution['id'], 'admin')
        make_member('s1', institution['id'], 'student')
        course_id, _, _ = build_course(institution['id'], title='Algebra')
        login('a1', institution['id'])

        response = client.post('/api/certificates/generate-pdf',
                               json=self._payload(institution, course_id, grade=90))
        assert response.status_code == 400
        assert db.docs('certificates') == {}

        enrollment_service.enroll_in_course('s1', course_id, institution['id'])
        response = client.post('/api/certificates/generate-pdf',
                               json=self._payload(institution, course_id, grade=90))
        assert response.status_code == 201
        stored = list(db.docs('certificates').values())
        assert stored[0]['user_id'] == 's1'
        assert stored[0]['grade'] == 90


class TestReports:

    def test_admin_exports_xlsx(self, client, login, institution):
        make_member('a1', institution['id'], 'admin')
        make_member('s1', institution['id'], 'student')
        course_id, _, _ = build_course(institution['id'], title='Geology')
        enrollment_service.enroll_in_course('s1', course_id, institution['id'])
        login('a1', institution['id'])

        response = client.get(f'/reports/courses/{course_id}/export.xlsx')
        assert response.status_code == 200
        assert 'Geology_report_' in response.headers['Content-Disposition']
        sheet = load_workbook(io.BytesIO(response.data)).active
        assert sheet['A2'].value == 'S1'

    def test_tutor_needs_course_assignment(self, client, login, institution):
        make_member('t1', institution['id'], 'tutor')
        course_id, _, _ = build_course(institution['id'])
        login('t1', institution['id'])
        response = client.get(f'/reports/courses/{course_id}')
        assert response.status_code == 302

        dao.assign_tutor(course_id, 't1', institution['id'])
        assert client.get(f'/reports/courses/{course_id}').status_code == 200
