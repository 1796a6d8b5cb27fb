import uuid
from datetime import timedelta

from werkzeug.utils import secure_filename

from lms.errors import NotFoundError
from lms.firebase_init import get_bucket

SIGNED_URL_MINUTES = 60


def _blob(storage_path):
    return get_bucket().blob(storage_path)


def upload_file(file_data, destination_path, content_type=None):
    """Store bytes or a file-like object at ``destination_path``.

    Returns the storage path, which is what documents keep. Readers get a
    signed URL through ``get_signed_url`` when they need one.
    """
    blob = _blob(destination_path)
    if content_type:
        blob.content_type = content_type
    if isinstance(file_data, bytes):
        blob.upload_from_string(file_data, content_type=content_type)
    else:
        blob.upload_from_file(file_data, content_type=content_type)
    return destination_path


def download_file(storage_path):
    blob = _blob(storage_path)
    if not blob.exists():
        raise NotFoundError(f'File not found: {storage_path}')
    return blob.download_as_bytes()


def file_exists(storage_path):
    return _blob(storage_path).exists()


def delete_file(storage_path):
    blob = _blob(storage_path)
    if blob.exists():
        blob.delete()


def get_signed_url(storage_path, expiration_minutes=SIGNED_URL_MINUTES):
    """V4 signed GET URL, or None when nothing is stored at the path."""
    blob = _blob(storage_path)
    if not blob.exists():
        return None
    return blob.generate_signed_url(
        version='v4',
        expiration=timedelta(minutes=expiration_minutes),
        method='GET'
    )


def _unique_name(filename):
    return f'{uuid.uuid4().hex[:8]}_{secure_filename(filename) or "file"}'


def upload_profile_image(uid, file_data, ext):
    """Upload user profile image.

    Returns:
        Storage path
    """
    path = f'users/{uid}/profile.{ext}'
    content_type = f'image/{ext}' if ext != 'jpg' else 'image/jpeg'
    return upload_file(file_data, path, content_type)


def upload_lesson_file(course_id, lesson_id, kind, file_data, filename, content_type=None):
    """Upload a lesson PDF, audio file or support material.

    ``kind`` is one of 'pdf', 'audio' or 'materials'.

    Returns:
        Storage path
    """
    path = f'courses/{course_id}/lessons/{lesson_id}/{kind}/{_unique_name(filename)}'
    return upload_file(file_data, path, content_type)


def upload_activity_file(activity_id, student_id, file_data, filename, content_type=None):
    """Upload one file of an activity submission.

    Returns:
        Storage path
    """
    path = f'activities/{activity_id}/submissions/{student_id}/{_unique_name(filename)}'
    return upload_file(file_data, path, content_type)


def upload_certificate(institution_id, certificate_number, pdf_bytes):
    path = f'certificates/{institution_id}/{certificate_number}.pdf'
    return upload_file(pdf_bytes, path, 'application/pdf')


def certificate_preview_path(storage_path):
    return storage_path.rsplit('.', 1)[0] + '.png'
