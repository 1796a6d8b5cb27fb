import logging

from flask_socketio import emit, join_room, leave_room

from lms import socketio
from lms.decorators import get_current_user
from lms.errors import LMSError
from lms.services import chat as chat_service

logger = logging.getLogger(__name__)


def _get_socket_user():
    """Get current user from the Flask session context in Socket.IO events."""
    user = get_current_user()
    if user and user.is_authenticated and user.institution_id:
        return user
    return None


def _room_name(room_id):
    return f'chat_{room_id}'


@socketio.on('connect')
def handle_connect():
    user = _get_socket_user()
    if not user:
        return False
    emit('connected', {'user_id': user.uid, 'username': user.display_name})


@socketio.on('join_chat')
def handle_join_chat(data):
    user = _get_socket_user()
    if not user:
        emit('error', {'message': 'Authentication required'})
        return

    room_id = (data or {}).get('room_id')
    if not room_id:
        emit('error', {'message': 'Room ID required'})
        return

    try:
        chat_service.check_room_access(room_id, user.institution_id, user.uid, user.role)
    except LMSError as e:
        emit('error', {'message': str(e)})
        return

    join_room(_room_name(room_id))
    emit('user_joined', {'user_id': user.uid, 'username': user.display_name},
         room=_room_name(room_id))


@socketio.on('send_message')
def handle_send_message(data):
    user = _get_socket_user()
    if not user:
        emit('error', {'message': 'Authentication required'})
        return

    data = data or {}
    room_id = data.get('room_id')
    try:
        message = chat_service.send_message(room_id, user.institution_id, user.uid,
                                            user.display_name, user.role, data.get('text', ''))
    except LMSError as e:
        emit('error', {'message': str(e)})
        return

    emit('new_message', {
        'id': message['id'],
        'user_id': message['user_id'],
        'user_name': message['user_name'],
        'text': message['text'],
        'sent_at': message['sent_at'].isoformat(),
    }, room=_room_name(room_id))


@socketio.on('leave_chat')
def handle_leave_chat(data):
    user = _get_socket_user()
    if not user:
        return
    room_id = (data or {}).get('room_id')
    if not room_id:
        emit('error', {'message': 'Room ID required'})
        return
    leave_room(_room_name(room_id))
    emit('user_left', {'user_id': user.uid, 'username': user.display_name},
         room=_room_name(room_id))
