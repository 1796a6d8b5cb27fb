import logging
import os

from config import Config
from lms import create_app, socketio

app = create_app(Config)
logger = logging.getLogger('lms.main')

if __name__ == '__main__':
    debug = os.environ.get('FLASK_DEBUG', 'false').lower() in ('true', '1')
    host = os.environ.get('HOST', '0.0.0.0')
    port = int(os.environ.get('PORT', 8080))
    logger.info('Starting LMS on %s:%d (async mode %s)', host, port,
                app.config.get('SOCKETIO_ASYNC_MODE'))
    socketio.run(app, host=host, port=port, debug=debug)
