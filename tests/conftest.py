import pytest

from config import TestingConfig
from lms import create_app
from lms import firebase_init
from lms import firestore_dao as dao
from lms.services import certificates as certificate_service
from tests.fakes import FakeBucket, FakeFirestore


@pytest.fixture
def db(monkeypatch):
    fake = FakeFirestore()
    monkeypatch.setattr(firebase_init, '_app', object())
    monkeypatch.setattr(firebase_init, '_db', fake)
    monkeypatch.setattr(firebase_init, '_bucket', FakeBucket())
    return fake


@pytest.fixture
def bucket(db):
    return firebase_init._bucket


@pytest.fixture
def app(db):
    app = create_app(TestingConfig)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def institution(db):
    institution_id = dao.create_institution({
        'name': 'Test Academy',
        'domain': 'test.example.com',
        'settings': {},
    })
    return dao.get_institution(institution_id)


def make_user(uid, email, full_name, role='student'):
    dao.create_user(uid, {'email': email, 'full_name': full_name, 'role': role})
    return dao.get_user(uid)


def make_member(uid, institution_id, user_role):
    make_user(uid, f'{uid}@example.com', uid.title())
    dao.create_user_institution({
        'user_id': uid,
        'institution_id': institution_id,
        'user_role': user_role,
    })
    return uid


@pytest.fixture
def login(client, monkeypatch):
    """Sign ``uid`` in and make ``institution_id`` the active institution."""
    def _login(uid, institution_id=None):
        def fake_verify():
            data = dao.get_user(uid)
            if data:
                data['uid'] = uid
            return data
        monkeypatch.setattr('lms.decorators._verify_session', fake_verify)
        if institution_id:
            with client.session_transaction() as sess:
                sess['institution_id'] = institution_id
        return client
    return _login


@pytest.fixture
def no_chromium(monkeypatch):
    """Replace the headless browser and the PNG preview with canned bytes."""
    monkeypatch.setattr(certificate_service, 'html_to_pdf', lambda html: b'%PDF-1.4 certificate')
    monkeypatch.setattr(certificate_service, 'render_preview', lambda pdf: b'\x89PNG preview')
