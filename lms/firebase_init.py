import os
import logging

import firebase_admin
from firebase_admin import credentials, firestore, storage, auth

from lms.errors import ExternalServiceError

logger = logging.getLogger(__name__)

DEFAULT_CREDENTIALS_PATH = './firebase-service-account.json'

_app = None
_db = None
_bucket = None


def _setting(app_config, key, default=''):
    value = app_config.get(key) if app_config else None
    return value or os.environ.get(key, default)


def _load_credentials(path):
    """Service account file when present, Application Default Credentials otherwise."""
    if path and os.path.exists(path):
        return credentials.Certificate(path)
    logger.info('No service account at %s, using application default credentials', path)
    return credentials.ApplicationDefault()


def init_firebase(app_config=None):
    """Initialise the Admin SDK once per process.

    Reads ``FIREBASE_CREDENTIALS_PATH``, ``FIREBASE_PROJECT_ID`` and
    ``FIREBASE_STORAGE_BUCKET`` from the Flask config, falling back to the
    environment. Without a bucket, Storage features stay disabled.
    """
    global _app, _db, _bucket

    if _app is not None:
        return

    cred = _load_credentials(_setting(app_config, 'FIREBASE_CREDENTIALS_PATH',
                                      os.environ.get('GOOGLE_APPLICATION_CREDENTIALS',
                                                     DEFAULT_CREDENTIALS_PATH)))
    bucket_name = _setting(app_config, 'FIREBASE_STORAGE_BUCKET')
    project_id = _setting(app_config, 'FIREBASE_PROJECT_ID')

    options = {}
    if bucket_name:
        options['storageBucket'] = bucket_name
    if project_id:
        options['projectId'] = project_id

    _app = firebase_admin.initialize_app(cred, options=options or None)
    _db = firestore.client()
    _bucket = storage.bucket() if bucket_name else None

    logger.info('Firebase ready (project=%s, bucket=%s)',
                project_id or 'default', bucket_name or 'none')
    if os.environ.get('FIRESTORE_EMULATOR_HOST'):
        logger.info('Firestore emulator in use at %s', os.environ['FIRESTORE_EMULATOR_HOST'])


def get_db():
    if _db is None:
        init_firebase()
    return _db


def get_bucket():
    if _bucket is None:
        init_firebase()
    if _bucket is None:
        raise ExternalServiceError('File storage is not configured (FIREBASE_STORAGE_BUCKET)')
    return _bucket


def get_auth():
    return auth
