"""Certificate issuing: HTML render, headless Chromium PDF, Storage upload."""

import os
import io
import logging
import subprocess
import tempfile
from datetime import datetime, timezone

from flask import current_app, render_template
from pdf2image import convert_from_bytes

from lms import firestore_dao as dao
from lms.errors import ExternalServiceError, ValidationError, require
from lms.firestore_models import Certificate
from lms.services import storage

logger = logging.getLogger(__name__)

CERTIFICATE_URL_MINUTES = 7 * 24 * 60


def html_to_pdf(html):
    """Print an HTML document to PDF bytes with headless Chromium."""
    binary = current_app.config.get('CHROME_BINARY', 'chromium')
    timeout = current_app.config.get('CERTIFICATE_RENDER_TIMEOUT', 60)

    with tempfile.TemporaryDirectory(prefix='certificate-') as tmp_dir:
        html_path = os.path.join(tmp_dir, 'certificate.html')
        pdf_path = os.path.join(tmp_dir, 'certificate.pdf')
        with open(html_path, 'w', encoding='utf-8') as fh:
            fh.write(html)

        try:
            result = subprocess.run([
                binary,
                '--headless',
                '--no-sandbox',
                '--disable-gpu',
                '--disable-dev-shm-usage',
                '--no-pdf-header-footer',
                f'--print-to-pdf={pdf_path}',
                f'file://{html_path}',
            ], capture_output=True, text=True, timeout=timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ExternalServiceError(f'Certificate rendering failed: {e}')

        if result.returncode != 0 or not os.path.exists(pdf_path):
            logger.error('Chromium exited with %s: %s', result.returncode, result.stderr)
            raise ExternalServiceError('Certificate rendering failed')

        with open(pdf_path, 'rb') as fh:
            return fh.read()


def render_preview(pdf_bytes):
    """PNG bytes of the first page of a PDF."""
    pages = convert_from_bytes(pdf_bytes, dpi=100, fmt='png', first_page=1, last_page=1)
    if not pages:
        raise ExternalServiceError('Certificate preview could not be rendered')
    output = io.BytesIO()
    pages[0].save(output, 'PNG', optimize=True)
    return output.getvalue()


def _validate(hours_completed, grade):
    if hours_completed is not None and hours_completed < 0:
        raise ValidationError('Hours completed cannot be negative')
    if grade is not None and not 0 <= grade <= 100:
        raise ValidationError('Grade must be between 0 and 100')


def generate_certificate(user_id, course_id, institution_id, course_name,
                         hours_completed=None, grade=None, instructor_name=None):
    """Issue the certificate of a user for a course.

    Returns ``(certificate, created)``. An existing certificate for the same
    user and course is returned unchanged.
    """
    require(user_id, 'User ID is required')
    require(course_id, 'Course ID is required')
    require(institution_id, 'Institution ID is required')
    require(course_name, 'Course name is required')

    existing = dao.get_user_course_certificate(user_id, course_id)
    if existing:
        return Certificate.from_dict(existing, existing['id']), False

    _validate(hours_completed, grade)
    user = dao.get_user(user_id) or {}
    institution = dao.get_institution(institution_id) or {}
    issued_at = datetime.now(timezone.utc)
    certificate = Certificate(
        user_id=user_id,
        course_id=course_id,
        institution_id=institution_id,
        certificate_number=Certificate.generate_number(),
        course_name=course_name,
        grade=grade,
        hours_completed=hours_completed,
        issued_at=issued_at,
    )

    html = render_template(
        'certificates/certificate.html',
        student_name=user.get('full_name') or user.get('email', ''),
        course_name=course_name,
        institution_name=institution.get('name', ''),
        instructor_name=instructor_name or 'Course Instructor',
        hours_completed=hours_completed,
        grade=grade,
        issue_date=issued_at.strftime('%d/%m/%Y'),
        certificate_number=certificate.certificate_number,
    )
    pdf_bytes = html_to_pdf(html)

    certificate.storage_path = storage.upload_certificate(
        institution_id, certificate.certificate_number, pdf_bytes)
    try:
        storage.upload_file(render_preview(pdf_bytes),
                            storage.certificate_preview_path(certificate.storage_path),
                            'image/png')
    except Exception:
        logger.warning('Preview generation failed for %s', certificate.certificate_number,
                       exc_info=True)
    certificate.certificate_url = storage.get_signed_url(
        certificate.storage_path, CERTIFICATE_URL_MINUTES) or ''

    certificate.id = dao.create_certificate(certificate.to_dict())
    logger.info('Certificate %s issued to %s for course %s',
                certificate.certificate_number, user_id, course_id)
    return certificate, True


def fresh_urls(certificate):
    """Signed URLs for the PDF and its preview image."""
    if not certificate.storage_path:
        return {'pdf': certificate.certificate_url, 'preview': None}
    return {
        'pdf': storage.get_signed_url(certificate.storage_path) or certificate.certificate_url,
        'preview': storage.get_signed_url(storage.certificate_preview_path(certificate.storage_path)),
    }
