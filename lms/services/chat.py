"""Class chat rooms: one room per (class, course)."""

import logging
from datetime import datetime, timezone

from lms import firestore_dao as dao
from lms.errors import NotFoundError, PermissionDeniedError
from lms.firestore_models import validate_chat_message
from lms.permissions import Role
from lms.services.enrollment import is_class_member

logger = logging.getLogger(__name__)


def room_id_for(class_id, course_id):
    return f'{class_id}_{course_id}'


def _check_membership(klass, user_id, role):
    if role in (Role.ROOT.value, Role.ADMIN.value):
        return
    if not is_class_member(klass, user_id):
        raise PermissionDeniedError('You are not a member of this class')


def get_or_create_room(class_id, course_id, institution_id, user_id, role):
    klass = dao.get_class(class_id)
    if not klass or klass.get('institution_id') != institution_id:
        raise NotFoundError('Class not found')
    if course_id not in (klass.get('course_ids') or []):
        raise NotFoundError('Course is not part of this class')
    _check_membership(klass, user_id, role)

    room_id = room_id_for(class_id, course_id)
    room = dao.get_chat_room(room_id)
    now = datetime.now(timezone.utc)
    if not room:
        room = {
            'institution_id': institution_id,
            'class_id': class_id,
            'course_id': course_id,
            'participants': [{'user_id': user_id, 'joined_at': now}],
        }
        dao.create_chat_room(room_id, room)
        room['id'] = room_id
        logger.info('Chat room %s created', room_id)
    elif user_id not in {p['user_id'] for p in room.get('participants') or []}:
        participants = list(room.get('participants') or [])
        participants.append({'user_id': user_id, 'joined_at': now})
        dao.update_chat_room(room_id, {'participants': participants})
        room['participants'] = participants
    return room


def check_room_access(room_id, institution_id, user_id, role):
    room = dao.get_chat_room(room_id)
    if not room or room.get('institution_id') != institution_id:
        raise NotFoundError('Chat room not found')
    klass = dao.get_class(room['class_id'])
    if not klass:
        raise NotFoundError('Class not found')
    _check_membership(klass, user_id, role)
    return room


def send_message(room_id, institution_id, user_id, user_name, role, text):
    check_room_access(room_id, institution_id, user_id, role)
    message = {
        'user_id': user_id,
        'user_name': user_name,
        'text': validate_chat_message(text),
        'sent_at': datetime.now(timezone.utc),
    }
    message['id'] = dao.add_chat_message(room_id, message)
    return message


def history(room_id, limit=50):
    return dao.list_chat_messages(room_id, limit)
