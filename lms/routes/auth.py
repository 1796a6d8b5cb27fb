import logging
from datetime import timedelta
from urllib.parse import urlparse

import requests as http_requests
from firebase_admin import auth as firebase_auth
from flask import (Blueprint, render_template, redirect, url_for, flash,
                   request, make_response, session, current_app)
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from lms import firestore_dao as dao
from lms.decorators import (auth_required, get_current_user, SESSION_COOKIE_KEY,
                            INSTITUTION_KEY)
from lms.firebase_init import get_auth
from lms.firestore_models import User
from lms.forms import RegistrationForm, LoginForm, ProfileForm
from lms.services.access import record_daily_access
from lms.services.achievements import EventType, dispatch_event
from lms.services.storage import upload_profile_image, get_signed_url

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__, url_prefix='/auth')

FIREBASE_SIGN_IN_URL = (
    'https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword'
)


@retry(
    retry=retry_if_exception_type((http_requests.ConnectionError, http_requests.Timeout)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, max=4),
    reraise=True,
)
def _post_sign_in(api_key, email, password):
    return http_requests.post(
        f'{FIREBASE_SIGN_IN_URL}?key={api_key}',
        json={
            'email': email,
            'password': password,
            'returnSecureToken': True,
        },
        timeout=10,
    )


def _firebase_sign_in(email, password):
    """Verify email/password via Firebase Auth REST API.

    Returns the ID token on success, or None on failure.
    """
    api_key = current_app.config.get('FIREBASE_WEB_API_KEY')
    if not api_key:
        logger.error('FIREBASE_WEB_API_KEY is not configured')
        return None

    try:
        resp = _post_sign_in(api_key, email, password)
    except http_requests.RequestException:
        logger.warning('Firebase sign-in request failed', exc_info=True)
        return None
    if resp.status_code == 200:
        return resp.json().get('idToken')
    return None


def is_safe_url(target):
    if not target:
        return False
    ref_url = urlparse(request.host_url)
    test_url = urlparse(target)
    return test_url.scheme in ('', 'http', 'https') and ref_url.netloc == test_url.netloc


def _enter_single_institution(uid):
    """Activate the institution directly when the user belongs to only one."""
    associations = dao.list_user_institutions(uid)
    if len(associations) != 1:
        return False
    institution_id = associations[0]['institution_id']
    session[INSTITUTION_KEY] = institution_id
    record_daily_access(uid, institution_id)
    return True


@bp.route('/register', methods=['GET', 'POST'])
def register():
    current_user = get_current_user()
    if current_user.is_authenticated:
        return redirect(url_for('main.dashboard'))

    form = RegistrationForm()
    if form.validate_on_submit():
        email = form.email.data.strip().lower()
        if dao.get_user_by_email(email):
            flash('This email is already registered.', 'danger')
            return render_template('auth/register.html', form=form)

        auth = get_auth()
        try:
            firebase_user = auth.create_user(
                email=email,
                password=form.password.data,
                display_name=form.full_name.data,
            )
        except (firebase_auth.EmailAlreadyExistsError, ValueError) as e:
            flash(f'Could not create the account: {e}', 'danger')
            return render_template('auth/register.html', form=form)

        user = User(id=firebase_user.uid, email=email, full_name=form.full_name.data)
        dao.create_user(user.id, user.to_dict())
        logger.info('User %s registered', user.id)
        flash('Account created. Please sign in.', 'success')
        return redirect(url_for('auth.login'))

    return render_template('auth/register.html', form=form)


@bp.route('/login', methods=['GET', 'POST'])
def login():
    current_user = get_current_user()
    if current_user.is_authenticated:
        return redirect(url_for('main.dashboard'))

    form = LoginForm()

    saved_email = request.cookies.get('saved_email', '')
    if request.method == 'GET' and saved_email:
        form.email.data = saved_email
        form.remember_id.data = True

    if form.validate_on_submit():
        id_token = _firebase_sign_in(form.email.data, form.password.data)
        if not id_token:
            flash('Invalid email or password.', 'danger')
            return render_template('auth/login.html', form=form)

        auth = get_auth()
        try:
            expires_in = timedelta(days=current_app.config.get('SESSION_COOKIE_DAYS', 5))
            session_cookie = auth.create_session_cookie(id_token, expires_in=expires_in)
        except (firebase_auth.InvalidIdTokenError, ValueError):
            logger.warning('Session cookie creation failed', exc_info=True)
            flash('Sign in failed. Please try again.', 'danger')
            return render_template('auth/login.html', form=form)

        session[SESSION_COOKIE_KEY] = session_cookie
        session.pop(INSTITUTION_KEY, None)
        uid = auth.verify_session_cookie(session_cookie)['uid']
        flash('Signed in.', 'success')

        next_page = request.args.get('next')
        if next_page and is_safe_url(next_page):
            target = next_page
        elif _enter_single_institution(uid):
            target = url_for('main.dashboard')
        else:
            target = url_for('main.select_institution')
        response = make_response(redirect(target))

        if form.remember_id.data:
            response.set_cookie('saved_email', str(form.email.data),
                                max_age=60 * 60 * 24 * 365)
        else:
            response.delete_cookie('saved_email')
        return response

    return render_template('auth/login.html', form=form)


@bp.route('/logout')
@auth_required
def logout():
    session.pop(SESSION_COOKIE_KEY, None)
    session.pop(INSTITUTION_KEY, None)
    flash('Signed out.', 'success')
    return redirect(url_for('main.index'))


@bp.route('/profile', methods=['GET', 'POST'])
@auth_required
def profile():
    current_user = get_current_user()
    form = ProfileForm()

    if request.method == 'GET':
        form.full_name.data = current_user.full_name
        form.nickname.data = current_user.nickname
        form.phone.data = current_user.phone
        form.bio.data = current_user.bio

    if form.validate_on_submit():
        updates = {
            'full_name': form.full_name.data,
            'nickname': form.nickname.data or None,
            'phone': form.phone.data or None,
            'bio': form.bio.data or None,
        }
        file = form.profile_image.data
        if file and file.filename:
            file.seek(0, 2)
            size = file.tell()
            file.seek(0)
            if size > 1 * 1024 * 1024:
                flash('Images must be 1MB or smaller.', 'danger')
                return redirect(url_for('auth.profile'))
            ext = file.filename.rsplit('.', 1)[1].lower()
            storage_path = upload_profile_image(current_user.uid, file.read(), ext)
            updates['profile_image'] = get_signed_url(storage_path)
            updates['profile_image_path'] = storage_path

        dao.update_user(current_user.uid, updates)
        user = User.from_dict({**current_user.as_dict(), **updates}, current_user.uid)
        if current_user.institution_id:
            dispatch_event(current_user.uid, current_user.institution_id,
                           EventType.PROFILE_COMPLETED,
                           {'completion_percentage': user.profile_completion()})
        flash('Profile saved.', 'success')
        return redirect(url_for('auth.profile'))

    completion = User.from_dict(current_user.as_dict(), current_user.uid).profile_completion()
    return render_template('auth/profile.html', form=form, completion=completion)
