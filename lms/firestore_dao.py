"""
Firestore Data Access Object (DAO) layer.

All Firestore reads and writes go through this module. Route handlers and
services call these functions instead of touching the client directly.
Functions return plain dicts carrying an 'id' key, or None when a document
does not exist.
"""

from datetime import datetime, timezone

from google.cloud.firestore_v1 import FieldFilter

from lms.firebase_init import get_db

# Firestore caps a batch at 500 writes; keep one slot spare
BATCH_LIMIT = 499


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _doc_to_dict(doc_snapshot):
    """Convert a Firestore DocumentSnapshot to a dict with 'id' field."""
    if not doc_snapshot.exists:
        return None
    d = doc_snapshot.to_dict()
    d['id'] = doc_snapshot.id
    return d


def _query_to_list(query_ref):
    """Run a query and return a list of dicts."""
    return [_doc_to_dict(doc) for doc in query_ref.stream()]


def _now():
    return datetime.now(timezone.utc)


def _get(collection, doc_id):
    if not doc_id:
        return None
    return _doc_to_dict(get_db().collection(collection).document(doc_id).get())


def _add(collection, data):
    data.setdefault('created_at', _now())
    _, doc_ref = get_db().collection(collection).add(data)
    return doc_ref.id


def _update(collection, doc_id, data):
    data.setdefault('updated_at', _now())
    get_db().collection(collection).document(doc_id).update(data)


def _where(collection, **equals):
    q = get_db().collection(collection)
    for field_name, value in equals.items():
        q = q.where(filter=FieldFilter(field_name, '==', value))
    return q


def _delete_refs(refs):
    """Delete document references in batches. Returns the number deleted."""
    batch = get_db().batch()
    count = 0
    for ref in refs:
        batch.delete(ref)
        count += 1
        if count % BATCH_LIMIT == 0:
            batch.commit()
            batch = get_db().batch()
    if count % BATCH_LIMIT != 0:
        batch.commit()
    return count


def _set_many(collection, items):
    """Write (doc_id, data) pairs in batches. Returns the number written."""
    db = get_db()
    batch = db.batch()
    count = 0
    for doc_id, data in items:
        batch.set(db.collection(collection).document(doc_id), data)
        count += 1
        if count % BATCH_LIMIT == 0:
            batch.commit()
            batch = db.batch()
    if count % BATCH_LIMIT != 0:
        batch.commit()
    return count


# ========================================================================
# Users  (collection: users)
# ========================================================================

def get_user(uid):
    """Get a user document by UID. Returns dict or None."""
    return _get('users', uid)


def get_user_by_email(email):
    """Get a user by email address. Returns dict or None."""
    for doc in _where('users', email=email).limit(1).stream():
        return _doc_to_dict(doc)
    return None


def create_user(uid, data):
    """Create a user document with the given UID as the document ID."""
    data.setdefault('created_at', _now())
    get_db().collection('users').document(uid).set(data)


def update_user(uid, data):
    """Update fields on an existing user document."""
    _update('users', uid, data)


def get_users_by_ids(uids):
    """Fetch multiple users by their UIDs. Returns {uid: dict}."""
    users = {}
    for uid in set(uids or []):
        d = get_user(uid)
        if d:
            users[uid] = d
    return users


# ========================================================================
# Institutions  (collections: institutions, user_institutions)
# ========================================================================

def get_institution(institution_id):
    return _get('institutions', institution_id)


def get_institution_by_domain(domain):
    for doc in _where('institutions', domain=domain).limit(1).stream():
        return _doc_to_dict(doc)
    return None


def list_institutions():
    return _query_to_list(get_db().collection('institutions').order_by('name'))


def create_institution(data):
    """Create a new institution. Returns the generated doc ID."""
    return _add('institutions', data)


def update_institution(institution_id, data):
    _update('institutions', institution_id, data)


def get_user_institution(user_id, institution_id):
    """Get the association of a user with an institution. Returns dict or None."""
    docs = _where('user_institutions', user_id=user_id,
                  institution_id=institution_id).limit(1).stream()
    for doc in docs:
        return _doc_to_dict(doc)
    return None


def list_user_institutions(user_id):
    return _query_to_list(_where('user_institutions', user_id=user_id))


def list_institution_members(institution_id, role=None):
    q = _where('user_institutions', institution_id=institution_id)
    if role:
        q = q.where(filter=FieldFilter('user_role', '==', role))
    return _query_to_list(q)


def create_user_institution(data):
    return _add('user_institutions', data)


def update_user_institution(association_id, data):
    _update('user_institutions', association_id, data)


def delete_user_institution(association_id):
    get_db().collection('user_institutions').document(association_id).delete()


# ========================================================================
# Access history  (collection: user_access_history)
# ========================================================================

def get_access_history(user_id, institution_id):
    return _get('user_access_history', f'{user_id}_{institution_id}')


def save_access_history(history_id, data):
    get_db().collection('user_access_history').document(history_id).set(data)


# ========================================================================
# Courses  (collections: courses, modules, lessons, contents)
# ========================================================================

def get_course(course_id):
    return _get('courses', course_id)


def list_courses(institution_id, active_only=False):
    q = _where('courses', institution_id=institution_id)
    if active_only:
        q = q.where(filter=FieldFilter('is_active', '==', True))
    return _query_to_list(q.order_by('created_at', direction='DESCENDING'))


def create_course(data):
    return _add('courses', data)


def update_course(course_id, data):
    _update('courses', course_id, data)


def delete_course(course_id):
    """Delete a course with its modules, lessons and contents."""
    db = get_db()
    refs = []
    for collection in ('contents', 'lessons', 'modules', 'course_tutors'):
        refs.extend(doc.reference for doc in _where(collection, course_id=course_id).stream())
    refs.append(db.collection('courses').document(course_id))
    _delete_refs(refs)


def get_module(module_id):
    return _get('modules', module_id)


def list_modules(course_id):
    """Get the modules of a course, ordered by 'order'."""
    return _query_to_list(_where('modules', course_id=course_id).order_by('order'))


def get_max_module_order(course_id):
    docs = (
        _where('modules', course_id=course_id)
        .order_by('order', direction='DESCENDING')
        .limit(1)
        .stream()
    )
    for doc in docs:
        return doc.to_dict().get('order', 0)
    return 0


def create_module(data):
    return _add('modules', data)


def update_module(module_id, data):
    _update('modules', module_id, data)


def delete_module(module_id):
    refs = []
    for collection in ('contents', 'lessons'):
        refs.extend(doc.reference for doc in _where(collection, module_id=module_id).stream())
    refs.append(get_db().collection('modules').document(module_id))
    _delete_refs(refs)


def reorder(collection, ordered_ids):
    """Rewrite the 'order' field of the given documents to their list position."""
    db = get_db()
    batch = db.batch()
    for position, doc_id in enumerate(ordered_ids, start=1):
        batch.update(db.collection(collection).document(doc_id),
                     {'order': position, 'updated_at': _now()})
    batch.commit()


def get_lesson(lesson_id):
    return _get('lessons', lesson_id)


def list_lessons_by_module(module_id):
    return _query_to_list(_where('lessons', module_id=module_id).order_by('order'))


def list_lessons_by_course(course_id):
    return _query_to_list(_where('lessons', course_id=course_id))


def get_max_lesson_order(module_id):
    docs = (
        _where('lessons', module_id=module_id)
        .order_by('order', direction='DESCENDING')
        .limit(1)
        .stream()
    )
    for doc in docs:
        return doc.to_dict().get('order', 0)
    return 0


def create_lesson(data):
    return _add('lessons', data)


def update_lesson(lesson_id, data):
    _update('lessons', lesson_id, data)


def delete_lesson(lesson_id):
    refs = [doc.reference for doc in _where('contents', lesson_id=lesson_id).stream()]
    refs.append(get_db().collection('lessons').document(lesson_id))
    _delete_refs(refs)


def get_content(content_id):
    return _get('contents', content_id)


def list_contents(lesson_id):
    return _query_to_list(_where('contents', lesson_id=lesson_id).order_by('order'))


def create_content(data):
    return _add('contents', data)


def update_content(content_id, data):
    _update('contents', content_id, data)


def delete_content(content_id):
    get_db().collection('contents').document(content_id).delete()


# ========================================================================
# Course tutors  (collection: course_tutors)
# ========================================================================

def assign_tutor(course_id, user_id, institution_id):
    get_db().collection('course_tutors').document(f'{course_id}_{user_id}').set({
        'course_id': course_id,
        'user_id': user_id,
        'institution_id': institution_id,
        'created_at': _now(),
    })


def remove_tutor(course_id, user_id):
    get_db().collection('course_tutors').document(f'{course_id}_{user_id}').delete()


def is_course_tutor(course_id, user_id):
    return _get('course_tutors', f'{course_id}_{user_id}') is not None


def list_course_tutors(course_id):
    return _query_to_list(_where('course_tutors', course_id=course_id))


def list_tutor_courses(user_id, institution_id):
    return _query_to_list(_where('course_tutors', user_id=user_id,
                                 institution_id=institution_id))


# ========================================================================
# Lesson progress  (collection: lesson_progress)
# ========================================================================

def get_lesson_progress(user_id, lesson_id):
    return _get('lesson_progress', f'{user_id}_{lesson_id}')


def save_lesson_progress(progress_id, data):
    get_db().collection('lesson_progress').document(progress_id).set(data)


def list_lesson_progress(user_id, course_id=None, institution_id=None):
    q = _where('lesson_progress', user_id=user_id)
    if course_id:
        q = q.where(filter=FieldFilter('course_id', '==', course_id))
    if institution_id:
        q = q.where(filter=FieldFilter('institution_id', '==', institution_id))
    return _query_to_list(q)


def count_completed_lessons(user_id, institution_id):
    docs = _where('lesson_progress', user_id=user_id, institution_id=institution_id,
                  status='COMPLETED').stream()
    return sum(1 for _ in docs)


# ========================================================================
# Questionnaires  (collections: questionnaires, questionnaire_submissions)
# ========================================================================

def get_questionnaire(questionnaire_id):
    return _get('questionnaires', questionnaire_id)


def list_questionnaires_by_lesson(lesson_id):
    return _query_to_list(_where('questionnaires', lesson_id=lesson_id))


def list_questionnaires_by_course(course_id):
    return _query_to_list(_where('questionnaires', course_id=course_id))


def create_questionnaire(data):
    return _add('questionnaires', data)


def update_questionnaire(questionnaire_id, data):
    _update('questionnaires', questionnaire_id, data)


def list_attempts(questionnaire_id, user_id):
    """A user's submissions for one questionnaire, oldest attempt first."""
    return _query_to_list(
        _where('questionnaire_submissions', questionnaire_id=questionnaire_id,
               user_id=user_id)
        .order_by('attempt')
    )


def list_questionnaire_submissions(questionnaire_id):
    return _query_to_list(
        _where('questionnaire_submissions', questionnaire_id=questionnaire_id)
        .order_by('completed_at', direction='DESCENDING')
    )


def list_user_submissions(user_id, institution_id):
    return _query_to_list(_where('questionnaire_submissions', user_id=user_id,
                                 institution_id=institution_id))


def create_questionnaire_submission(submission_id, data):
    """Create-only write. Raises google.api_core.exceptions.Conflict when the
    attempt id is already taken."""
    get_db().collection('questionnaire_submissions').document(submission_id).create(data)


# ========================================================================
# Activities  (collections: activities, activity_submissions)
# ========================================================================

def get_activity(activity_id):
    return _get('activities', activity_id)


def list_activities_by_lesson(lesson_id):
    return _query_to_list(_where('activities', lesson_id=lesson_id))


def create_activity(data):
    return _add('activities', data)


def delete_activity(activity_id):
    get_db().collection('activities').document(activity_id).delete()


def get_activity_submission(submission_id):
    return _get('activity_submissions', submission_id)


def list_activity_submissions(activity_id, status=None):
    q = _where('activity_submissions', activity_id=activity_id)
    if status:
        q = q.where(filter=FieldFilter('status', '==', status))
    return _query_to_list(q.order_by('submitted_at', direction='DESCENDING'))


def list_student_activity_submissions(activity_id, student_id):
    return _query_to_list(
        _where('activity_submissions', activity_id=activity_id, student_id=student_id)
        .order_by('submitted_at', direction='DESCENDING')
    )


def count_approved_submissions(student_id, course_id):
    docs = _where('activity_submissions', student_id=student_id, course_id=course_id,
                  status='approved').stream()
    return sum(1 for _ in docs)


def create_activity_submission(data):
    return _add('activity_submissions', data)


def update_activity_submission(submission_id, data):
    get_db().collection('activity_submissions').document(submission_id).update(data)


# ========================================================================
# Enrollments / Classes  (collections: enrollments, classes)
# ========================================================================

def get_enrollment(course_id, user_id):
    return _get('enrollments', f'{course_id}_{user_id}')


def save_enrollment(enrollment_id, data):
    get_db().collection('enrollments').document(enrollment_id).set(data)


def list_enrollments_by_course(course_id, status=None):
    q = _where('enrollments', course_id=course_id)
    if status:
        q = q.where(filter=FieldFilter('status', '==', status))
    return _query_to_list(q)


def list_user_enrollments(user_id, institution_id):
    return _query_to_list(_where('enrollments', user_id=user_id,
                                 institution_id=institution_id))


def count_completed_enrollments(user_id, institution_id):
    docs = _where('enrollments', user_id=user_id, institution_id=institution_id,
                  status='completed').stream()
    return sum(1 for _ in docs)


def get_class(class_id):
    return _get('classes', class_id)


def list_classes(institution_id):
    return _query_to_list(_where('classes', institution_id=institution_id).order_by('name'))


def list_classes_for_student(user_id, institution_id):
    return _query_to_list(
        _where('classes', institution_id=institution_id)
        .where(filter=FieldFilter('student_ids', 'array_contains', user_id))
    )


def create_class(data):
    return _add('classes', data)


def update_class(class_id, data):
    _update('classes', class_id, data)


# ========================================================================
# Certificates  (collection: certificates)
# ========================================================================

def get_certificate(certificate_id):
    return _get('certificates', certificate_id)


def get_user_course_certificate(user_id, course_id):
    for doc in _where('certificates', user_id=user_id, course_id=course_id).limit(1).stream():
        return _doc_to_dict(doc)
    return None


def list_user_certificates(user_id, institution_id):
    return _query_to_list(
        _where('certificates', user_id=user_id, institution_id=institution_id)
        .order_by('issued_at', direction='DESCENDING')
    )


def create_certificate(data):
    return _add('certificates', data)


# ========================================================================
# Achievements  (collections: default_achievements, institution_achievements,
#                student_achievements)
# ========================================================================

def list_default_achievements(enabled_only=False):
    q = get_db().collection('default_achievements')
    if enabled_only:
        q = q.where(filter=FieldFilter('is_globally_enabled', '==', True))
    return _query_to_list(q)


def count_default_achievements():
    return sum(1 for _ in get_db().collection('default_achievements').limit(1).stream())


def get_default_achievement(achievement_id):
    return _get('default_achievements', achievement_id)


def save_default_achievements(items):
    """Write (doc_id, data) pairs. Returns the number written."""
    return _set_many('default_achievements', items)


def get_institution_achievement(achievement_id):
    return _get('institution_achievements', achievement_id)


def list_institution_achievements(institution_id, active_only=False):
    q = _where('institution_achievements', institution_id=institution_id)
    if active_only:
        q = q.where(filter=FieldFilter('is_active', '==', True))
    return _query_to_list(q)


def get_institution_achievement_by_name(institution_id, name):
    docs = _where('institution_achievements', institution_id=institution_id,
                  name=name).limit(1).stream()
    for doc in docs:
        return _doc_to_dict(doc)
    return None


def create_institution_achievement(data):
    return _add('institution_achievements', data)


def update_institution_achievement(achievement_id, data):
    _update('institution_achievements', achievement_id, data)


def get_student_achievement(user_id, achievement_id):
    return _get('student_achievements', f'{user_id}_{achievement_id}')


def save_student_achievement(student_achievement_id, data):
    get_db().collection('student_achievements').document(student_achievement_id).set(data)


def list_student_achievements(user_id, institution_id):
    return _query_to_list(_where('student_achievements', user_id=user_id,
                                 institution_id=institution_id))


# ========================================================================
# Social  (collections: posts, comments, likes)
# ========================================================================

def get_post(post_id):
    return _get('posts', post_id)


def create_post(data):
    return _add('posts', data)


def update_post(post_id, data):
    _update('posts', post_id, data)


def list_published_posts(institution_id, limit=50):
    return _query_to_list(
        _where('posts', institution_id=institution_id, status='PUBLISHED')
        .order_by('published_at', direction='DESCENDING')
        .limit(limit)
    )


def list_posts_by_author(author_id, institution_id):
    return _query_to_list(
        _where('posts', author_id=author_id, institution_id=institution_id)
        .order_by('created_at', direction='DESCENDING')
    )


def delete_post(post_id):
    """Delete a post with its comments and every like attached to either."""
    db = get_db()
    comment_docs = list(_where('comments', post_id=post_id).stream())
    refs = [doc.reference for doc in comment_docs]
    target_ids = [post_id] + [doc.id for doc in comment_docs]
    for target_id in target_ids:
        refs.extend(doc.reference for doc in _where('likes', target_id=target_id).stream())
    refs.append(db.collection('posts').document(post_id))
    return _delete_refs(refs)


def get_comment(comment_id):
    return _get('comments', comment_id)


def create_comment(data):
    return _add('comments', data)


def update_comment(comment_id, data):
    _update('comments', comment_id, data)


def list_comments(post_id):
    return _query_to_list(_where('comments', post_id=post_id).order_by('created_at'))


def delete_comment(comment_id):
    """Delete a comment, its replies, and their likes. Returns the number of
    comments removed."""
    db = get_db()
    reply_docs = list(_where('comments', parent_comment_id=comment_id).stream())
    target_ids = [comment_id] + [doc.id for doc in reply_docs]
    refs = [doc.reference for doc in reply_docs]
    for target_id in target_ids:
        refs.extend(doc.reference for doc in _where('likes', target_id=target_id).stream())
    refs.append(db.collection('comments').document(comment_id))
    _delete_refs(refs)
    return len(target_ids)


def get_like(target_id, user_id):
    return _get('likes', f'{target_id}_{user_id}')


def create_like(target_type, target_id, user_id):
    get_db().collection('likes').document(f'{target_id}_{user_id}').set({
        'target_type': target_type,
        'target_id': target_id,
        'user_id': user_id,
        'created_at': _now(),
    })


def delete_like(target_id, user_id):
    get_db().collection('likes').document(f'{target_id}_{user_id}').delete()


# ========================================================================
# Chat  (collection: chat_rooms, subcollection: messages)
# ========================================================================

def get_chat_room(room_id):
    return _get('chat_rooms', room_id)


def create_chat_room(room_id, data):
    data.setdefault('created_at', _now())
    get_db().collection('chat_rooms').document(room_id).set(data)


def update_chat_room(room_id, data):
    _update('chat_rooms', room_id, data)


def add_chat_message(room_id, data):
    data.setdefault('sent_at', _now())
    _, doc_ref = (
        get_db().collection('chat_rooms').document(room_id)
        .collection('messages').add(data)
    )
    return doc_ref.id


def list_chat_messages(room_id, limit=50):
    """Most recent messages of a room, returned oldest first."""
    messages = _query_to_list(
        get_db().collection('chat_rooms').document(room_id)
        .collection('messages')
        .order_by('sent_at', direction='DESCENDING')
        .limit(limit)
    )
    messages.reverse()
    return messages


# ========================================================================
# SCORM  (collection: scorm_content)
# ========================================================================

def get_scorm_content(scorm_id):
    return _get('scorm_content', scorm_id)


def save_scorm_content(scorm_id, data):
    data.setdefault('created_at', _now())
    get_db().collection('scorm_content').document(scorm_id).set(data)
