import logging
from functools import wraps

from firebase_admin import auth as firebase_auth
from flask import request, redirect, url_for, flash, g, session, jsonify

from lms.firebase_init import get_auth, get_db
from lms.permissions import Role, build_ability

logger = logging.getLogger(__name__)

SESSION_COOKIE_KEY = 'firebase_session'
INSTITUTION_KEY = 'institution_id'


def _verify_session():
    """Verify Firebase session cookie and return the user document."""
    session_cookie = session.get(SESSION_COOKIE_KEY)
    if not session_cookie:
        return None

    auth = get_auth()
    try:
        decoded = auth.verify_session_cookie(session_cookie, check_revoked=True)
    except (firebase_auth.InvalidSessionCookieError, firebase_auth.UserDisabledError,
            ValueError) as e:
        logger.info('Rejected session cookie: %s', e)
        session.pop(SESSION_COOKIE_KEY, None)
        return None
    uid = decoded['uid']

    user_doc = get_db().collection('users').document(uid).get()
    if not user_doc.exists:
        return None

    user_data = user_doc.to_dict()
    user_data['uid'] = uid
    user_data['id'] = uid
    return user_data


def _resolve_membership(user_data):
    """Membership of the user in the active institution, or None.

    Root acts in any existing institution without an association. A stale
    institution id is dropped from the session.
    """
    institution_id = session.get(INSTITUTION_KEY)
    if not institution_id:
        return None

    db = get_db()
    if user_data.get('role') == Role.ROOT.value:
        if db.collection('institutions').document(institution_id).get().exists:
            return {'institution_id': institution_id, 'user_role': Role.ROOT.value}
    else:
        from lms import firestore_dao as dao
        association = dao.get_user_institution(user_data['uid'], institution_id)
        if association:
            return association

    session.pop(INSTITUTION_KEY, None)
    return None


class CurrentUser:
    """Proxy object providing attribute access to the current user dict and
    the membership in the active institution."""

    def __init__(self, data=None, membership=None):
        self._data = data or {}
        self._membership = membership
        self._ability = None

    def __getattr__(self, name):
        if name.startswith('_'):
            raise AttributeError(name)
        return self._data.get(name)

    def __getitem__(self, key):
        return self._data[key]

    def __contains__(self, key):
        return key in self._data

    def get(self, key, default=None):
        return self._data.get(key, default)

    def as_dict(self):
        return dict(self._data)

    @property
    def is_authenticated(self):
        return bool(self._data)

    @property
    def uid(self):
        return self._data.get('uid', '')

    @property
    def id(self):
        return self._data.get('uid', '')

    @property
    def institution_id(self):
        return self._membership.get('institution_id') if self._membership else None

    @property
    def role(self):
        """Role in the active institution. Root is root everywhere."""
        if self._data.get('role') == Role.ROOT.value:
            return Role.ROOT.value
        if self._membership:
            return self._membership.get('user_role')
        return None

    @property
    def ability(self):
        if self._ability is None:
            self._ability = build_ability(self.role, self.institution_id)
        return self._ability

    def can(self, action, subject):
        return self.is_authenticated and self.ability.can(action, subject)

    @property
    def display_name(self):
        if self._data.get('nickname'):
            return self._data['nickname']
        if self._data.get('full_name'):
            return self._data['full_name']
        return self._data.get('email', '').split('@')[0]

    @property
    def initial(self):
        name = self.display_name
        return name[0].upper() if name else '?'

    def is_root(self):
        return self.role == Role.ROOT.value

    def is_admin(self):
        return self.role in (Role.ROOT.value, Role.ADMIN.value)

    def is_tutor(self):
        return self.role == Role.TUTOR.value

    def is_student(self):
        return self.role == Role.STUDENT.value


def load_current_user():
    """Load current user into g before each request."""
    if hasattr(g, '_current_user'):
        return
    user_data = _verify_session()
    membership = _resolve_membership(user_data) if user_data else None
    g._current_user = CurrentUser(user_data, membership)


def get_current_user():
    if not hasattr(g, '_current_user'):
        load_current_user()
    return g._current_user


def _wants_json():
    return request.is_json or request.path.startswith('/api/')


def _deny(message, status, endpoint):
    if _wants_json():
        return jsonify({'error': message}), status
    flash(message, 'danger' if status == 403 else 'info')
    return redirect(url_for(endpoint))


def auth_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        user = get_current_user()
        if not user.is_authenticated:
            if _wants_json():
                return jsonify({'error': 'Authentication required'}), 401
            flash('Please sign in to continue.', 'info')
            return redirect(url_for('auth.login', next=request.url))
        g.current_user = user
        return f(*args, **kwargs)
    return decorated


def institution_required(f):
    """Require an active institution the user belongs to."""
    @wraps(f)
    @auth_required
    def decorated(*args, **kwargs):
        if not get_current_user().institution_id:
            return _deny('Select an institution to continue.', 403, 'main.select_institution')
        return f(*args, **kwargs)
    return decorated


def permission_required(action, subject):
    """Require ``action`` on ``subject`` in the active institution."""
    def decorator(f):
        @wraps(f)
        @auth_required
        def decorated(*args, **kwargs):
            user = get_current_user()
            if not user.can(action, subject):
                logger.info('Denied %s %s to user %s (role %s)',
                            getattr(action, 'value', action), getattr(subject, 'value', subject),
                            user.uid, user.role)
                return _deny('You do not have permission to access this page.', 403,
                             'main.dashboard')
            return f(*args, **kwargs)
        return decorated
    return decorator
