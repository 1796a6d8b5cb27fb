import io
import zipfile
from types import SimpleNamespace

import pytest
from openpyxl import load_workbook
from werkzeug.datastructures import FileStorage

from lms import firestore_dao as dao
from lms.errors import InvalidTransitionError, NotFoundError, ValidationError
from lms.services import activities as activity_service
from lms.services import institutions as institution_service
from lms.services import reports as report_service
from lms.services import scorm as scorm_service
from lms.services import storage
from tests.factories import build_course


def _file(name, data=b'print(1)'):
    return FileStorage(stream=io.BytesIO(data), filename=name, content_type='text/plain')


class TestActivities:

    def setup_method(self):
        self.institution_id = 'inst1'

    def _activity(self, **extra):
        data = {'lesson_id': 'l1', 'course_id': 'c1', 'institution_id': self.institution_id,
                'title': 'Build it', 'allowed_file_types': ['py'], 'max_files': 2}
        data.update(extra)
        return dao.create_activity(data)

    def test_submit_uploads_files(self, db, bucket):
        activity_id = self._activity()
        submission = activity_service.submit_activity(activity_id, 's1', self.institution_id,
                                                      [_file('main.py')])
        assert submission.is_pending()
        assert submission.course_id == 'c1'
        path = submission.file_urls[0]
        assert path.startswith(f'activities/{activity_id}/submissions/s1/')
        assert bucket.files[path] == b'print(1)'

    def test_file_rules(self, db):
        activity_id = self._activity()
        with pytest.raises(ValidationError):
            activity_service.submit_activity(activity_id, 's1', self.institution_id, [])
        with pytest.raises(ValidationError):
            activity_service.submit_activity(activity_id, 's1', self.institution_id,
                                             [_file('notes.exe')])
        with pytest.raises(ValidationError):
            activity_service.submit_activity(activity_id, 's1', self.institution_id,
                                             [_file('a.py'), _file('b.py'), _file('c.py')])

    def test_resubmission_only_after_rejection(self, db):
        activity_id = self._activity()
        first = activity_service.submit_activity(activity_id, 's1', self.institution_id,
                                                 [_file('main.py')])
        with pytest.raises(ValidationError):
            activity_service.submit_activity(activity_id, 's1', self.institution_id,
                                             [_file('main.py')])

        with pytest.raises(ValidationError):
            activity_service.review_submission(first.id, 't1', 'reject', '  ')
        rejected = activity_service.review_submission(first.id, 't1', 'reject', 'Add tests')
        assert rejected.feedback == 'Add tests'

        second = activity_service.submit_activity(activity_id, 's1', self.institution_id,
                                                  [_file('main.py')])
        activity_service.review_submission(second.id, 't1', 'approve')
        assert dao.count_approved_submissions('s1', 'c1') == 1
        with pytest.raises(InvalidTransitionError):
            activity_service.review_submission(second.id, 't1', 'reject', 'Changed my mind')

    def test_unknown_review_action(self, db):
        activity_id = self._activity()
        submission = activity_service.submit_activity(activity_id, 's1', self.institution_id,
                                                      [_file('main.py')])
        with pytest.raises(ValidationError):
            activity_service.review_submission(submission.id, 't1', 'maybe')


def _scorm_zip(entries):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
    return buffer.getvalue()


MANIFEST = b'''<?xml version="1.0"?>
<manifest xmlns="http://www.imsglobal.org/xsd/imscp_v1p1">
  <resources>
    <resource identifier="r1" type="webcontent" href="content/start.html"/>
  </resources>
</manifest>'''


class TestScorm:

    def setup_method(self):
        self.upload_path = 'scorm_uploads/inst/package.zip'

    def _institution(self):
        return dao.create_institution({'name': 'Acme', 'domain': 'acme.com'})

    def test_register_unpacks_package(self, db, bucket):
        institution_id = self._institution()
        storage.upload_file(_scorm_zip({
            'imsmanifest.xml': MANIFEST,
            'content/start.html': b'<html>start</html>',
            '../escape.txt': b'nope',
        }), self.upload_path)

        package = scorm_service.register_package('Intro', institution_id, self.upload_path)
        assert package['id'].startswith('scm_')
        assert len(package['id']) == 14
        assert package['launch_url'] == 'content/start.html'
        assert package['file_count'] == 2
        assert self.upload_path not in bucket.files
        assert not any(name.endswith('escape.txt') for name in bucket.files)

        data, mimetype = scorm_service.load_asset(dao.get_scorm_content(package['id']),
                                                  'content/start.html')
        assert data == b'<html>start</html>'
        assert mimetype == 'text/html'

    def test_default_launch_page(self, db):
        institution_id = self._institution()
        storage.upload_file(_scorm_zip({'index.html': b'<html></html>'}), self.upload_path)
        package = scorm_service.register_package('Plain', institution_id, self.upload_path)
        assert package['launch_url'] == 'index.html'

    def test_not_a_zip(self, db):
        institution_id = self._institution()
        storage.upload_file(b'plain text', self.upload_path)
        with pytest.raises(ValidationError):
            scorm_service.register_package('Broken', institution_id, self.upload_path)

    def test_missing_upload(self, db):
        institution_id = self._institution()
        with pytest.raises(NotFoundError):
            scorm_service.register_package('Missing', institution_id, self.upload_path)

    @pytest.mark.parametrize('path', ['../secret', '/etc/passwd', 'a\\b', ''])
    def test_unsafe_asset_paths(self, path):
        with pytest.raises(ValidationError):
            scorm_service.safe_asset_path(path)

    def test_manifest_fallback_for_broken_xml(self):
        assert scorm_service.find_launch_url(b'<manifest><resource href="go.html">') == 'go.html'


class TestInstitutions:

    def test_domains_are_unique(self, db):
        institution_service.create_institution('Acme', 'Acme.com')
        with pytest.raises(ValidationError):
            institution_service.create_institution('Acme Two', 'acme.com')

    def test_settings(self, db):
        institution = institution_service.create_institution('Acme', 'acme.com')
        updated = institution_service.update_settings(institution.id, basic={
            'require_sequential_progress': True, 'certificate_threshold': 80})
        assert updated.setting('require_sequential_progress') is True
        assert dao.get_institution(institution.id)['settings']['certificate_threshold'] == 80
        with pytest.raises(ValidationError):
            institution_service.update_settings(institution.id,
                                                basic={'certificate_threshold': 120})

    def test_timezone_setting(self, db):
        institution = institution_service.create_institution('Acme', 'acme.com')
        assert institution.setting('timezone') == 'UTC'
        institution_service.update_settings(institution.id, basic={'timezone': 'Asia/Tokyo'})
        assert dao.get_institution(institution.id)['settings']['timezone'] == 'Asia/Tokyo'
        with pytest.raises(ValidationError):
            institution_service.update_settings(institution.id, basic={'timezone': 'Nowhere/Land'})

    def test_association_role_change(self, db):
        institution = institution_service.create_institution('Acme', 'acme.com')
        institution_service.associate_user('u1', institution.id, 'student')
        association = institution_service.associate_user('u1', institution.id, 'tutor')
        assert association.user_role == 'tutor'
        assert len(dao.list_institution_members(institution.id)) == 1

    def test_import_members(self, db, monkeypatch):
        institution = institution_service.create_institution('Acme', 'acme.com')
        dao.create_user('existing', {'email': 'old@acme.com', 'full_name': 'Old Timer'})
        created = []

        class FakeAuth:
            def create_user(self, email, password, display_name):
                created.append(email)
                return SimpleNamespace(uid=f'uid-{len(created)}')

        monkeypatch.setattr(institution_service, 'get_auth', lambda: FakeAuth())
        summary = institution_service.import_members(institution.id, [
            (2, 'old@acme.com', '', 'tutor'),
            (3, 'new@acme.com', 'New Person', 'student'),
            (4, 'not-an-email', 'X', 'student'),
            (5, 'boss@acme.com', 'Boss', 'owner'),
        ])
        assert summary['created'] == 1
        assert summary['associated'] == 2
        assert len(summary['errors']) == 2
        assert created == ['new@acme.com']

    def test_template_round_trip(self):
        data = institution_service.member_template()
        rows = list(institution_service.read_member_rows('members.xlsx', io.BytesIO(data)))
        assert rows == [(2, 'student@example.com', 'Jane Doe', 'student')]

    def test_csv_rows(self):
        upload = io.BytesIO(b'email,name,role\nA@x.com,Ann,student\n,,\n')
        rows = list(institution_service.read_member_rows('m.csv', upload))
        assert rows == [(2, 'A@x.com', 'Ann', 'student')]

    def test_unknown_upload_type(self):
        with pytest.raises(ValidationError):
            list(institution_service.read_member_rows('m.txt', io.BytesIO(b'')))


class TestReports:

    def test_course_report(self, db):
        course_id, lessons, _ = build_course('inst1', title='Biology')
        dao.create_user('s1', {'email': 's1@acme.com', 'full_name': 'Sam'})
        dao.save_enrollment(f'{course_id}_s1', {'user_id': 's1', 'course_id': course_id,
                                                'institution_id': 'inst1', 'status': 'enrolled'})
        rows = report_service.course_report(course_id)
        assert rows[0]['name'] == 'Sam'
        assert rows[0]['progress'] == 0
        assert rows[0]['best_score'] is None

        data = report_service.course_report_xlsx({'title': 'Biology'}, rows)
        sheet = load_workbook(io.BytesIO(data)).active
        assert sheet.title == 'Biology'
        assert sheet['A1'].value == 'Student'
        assert sheet['A2'].value == 'Sam'
        assert sheet['F2'].value == '-'
