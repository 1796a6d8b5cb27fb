from flask import Blueprint, render_template

from lms import firestore_dao as dao
from lms.decorators import institution_required, get_current_user
from lms.services import chat as chat_service

bp = Blueprint('chat', __name__, url_prefix='/chat')


@bp.route('/')
@institution_required
def index():
    """Rooms the user can open: every (class, course) pair of their classes."""
    user = get_current_user()
    if user.is_admin():
        classes = dao.list_classes(user.institution_id)
    elif user.is_student():
        classes = dao.list_classes_for_student(user.uid, user.institution_id)
    else:
        classes = [c for c in dao.list_classes(user.institution_id)
                   if user.uid in (c.get('student_ids') or []) or user.uid in (c.get('tutor_ids') or [])]
    rooms = []
    for klass in classes:
        for course_id in klass.get('course_ids') or []:
            course = dao.get_course(course_id)
            if course:
                rooms.append({'class': klass, 'course': course})
    return render_template('chat/index.html', rooms=rooms)


@bp.route('/<class_id>/<course_id>')
@institution_required
def room(class_id, course_id):
    user = get_current_user()
    chat_room = chat_service.get_or_create_room(class_id, course_id, user.institution_id,
                                                user.uid, user.role)
    return render_template('chat/room.html', room=chat_room,
                           klass=dao.get_class(class_id), course=dao.get_course(course_id),
                           messages=chat_service.history(chat_room['id']))
