import logging

from flask import Flask, flash, jsonify, redirect, request, url_for
from flask_socketio import SocketIO
from flask_wtf.csrf import CSRFProtect

from config import Config
from lms.errors import LMSError

socketio = SocketIO()
csrf = CSRFProtect()

logger = logging.getLogger(__name__)


def _configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    logging.getLogger('lms').setLevel(level)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)
    _configure_logging(app)

    csrf.init_app(app)

    # Initialize Firebase
    from lms.firebase_init import init_firebase
    init_firebase(app.config)

    # CORS origins
    allowed_origins = []
    cors_origins = app.config.get('CORS_ALLOWED_ORIGINS', '')
    if cors_origins:
        for origin in cors_origins.split(','):
            origin = origin.strip()
            if origin:
                allowed_origins.append(origin)

    socketio.init_app(
        app,
        cors_allowed_origins=allowed_origins if allowed_origins else None,
        async_mode=app.config.get('SOCKETIO_ASYNC_MODE', 'eventlet'),
    )

    # Register current_user context processor and before_request
    from lms.decorators import load_current_user, get_current_user
    from lms.permissions import Action, Subject, ROLE_LABELS

    @app.before_request
    def before_request():
        load_current_user()

    @app.context_processor
    def inject_current_user():
        return {
            'current_user': get_current_user(),
            'Action': Action,
            'Subject': Subject,
            'role_labels': ROLE_LABELS,
        }

    @app.errorhandler(LMSError)
    def handle_lms_error(e):
        if request.is_json or request.path.startswith('/api/'):
            return jsonify({'error': str(e)}), e.status_code
        logger.warning('Unhandled %s on %s: %s', type(e).__name__, request.path, e)
        flash(str(e), 'danger')
        return redirect(request.referrer or url_for('main.dashboard'))

    # Register blueprints
    from lms.routes import (
        auth, main, admin, courses, learn, questionnaires, activities,
        achievements, certificates, social, chat, scorm, reports
    )
    app.register_blueprint(auth.bp)
    app.register_blueprint(main.bp)
    app.register_blueprint(admin.bp)
    app.register_blueprint(courses.bp)
    app.register_blueprint(learn.bp)
    app.register_blueprint(questionnaires.bp)
    app.register_blueprint(activities.bp)
    app.register_blueprint(achievements.bp)
    app.register_blueprint(certificates.bp)
    app.register_blueprint(social.bp)
    app.register_blueprint(chat.bp)
    app.register_blueprint(scorm.bp)
    app.register_blueprint(reports.bp)

    # Bearer-token and JSON endpoints are not form posts
    csrf.exempt(admin.seed_achievements)
    csrf.exempt(certificates.generate_pdf)
    csrf.exempt(scorm.register)

    from lms import events  # noqa: F401

    return app
