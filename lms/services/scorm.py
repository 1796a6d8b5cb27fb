"""SCORM package registration and asset lookup."""

import io
import logging
import mimetypes
import posixpath
import re
import uuid
import zipfile
from xml.etree import ElementTree

from lms import firestore_dao as dao
from lms.errors import NotFoundError, ValidationError, require
from lms.services import storage

logger = logging.getLogger(__name__)

SCORM_ROOT = 'scorm_courses'
DEFAULT_LAUNCH = 'index.html'
_HREF_RE = re.compile(r'href="([^"]+)"')


def find_launch_url(manifest_bytes):
    """The href of the first resource that declares one in imsmanifest.xml."""
    try:
        root = ElementTree.fromstring(manifest_bytes)
    except ElementTree.ParseError:
        match = _HREF_RE.search(manifest_bytes.decode('utf-8', errors='ignore'))
        return match.group(1) if match else None
    for element in root.iter():
        if element.tag.split('}')[-1] == 'resource' and element.get('href'):
            return element.get('href')
    return None


def safe_asset_path(path):
    """Normalise an asset path, rejecting anything that escapes the package."""
    if not path or '\\' in path:
        raise ValidationError('Invalid asset path')
    parts = path.split('/')
    if '..' in parts or path.startswith('/'):
        raise ValidationError('Invalid asset path')
    normalised = posixpath.normpath(path)
    if normalised in ('', '.') or normalised.startswith('..'):
        raise ValidationError('Invalid asset path')
    return normalised


def register_package(name, institution_id, storage_path):
    """Unpack an uploaded SCORM zip into Storage and record it."""
    require(name, 'Name is required')
    require(institution_id, 'Institution ID is required')
    require(storage_path, 'Storage path is required')
    if not dao.get_institution(institution_id):
        raise NotFoundError('Institution not found')
    if not storage.file_exists(storage_path):
        raise NotFoundError('Uploaded package not found')

    scorm_id = f'scm_{uuid.uuid4().hex[:10]}'
    base_path = f'{SCORM_ROOT}/{scorm_id}'
    try:
        archive = zipfile.ZipFile(io.BytesIO(storage.download_file(storage_path)))
    except zipfile.BadZipFile:
        raise ValidationError('The uploaded file is not a valid zip archive')

    launch_url = None
    uploaded = 0
    with archive:
        for entry in archive.infolist():
            if entry.is_dir():
                continue
            try:
                entry_path = safe_asset_path(entry.filename)
            except ValidationError:
                logger.warning('Skipping unsafe zip entry %r in %s', entry.filename, storage_path)
                continue
            data = archive.read(entry)
            if posixpath.basename(entry_path).lower() == 'imsmanifest.xml' and not launch_url:
                launch_url = find_launch_url(data)
            content_type = mimetypes.guess_type(entry_path)[0]
            storage.upload_file(data, f'{base_path}/{entry_path}', content_type)
            uploaded += 1

    if not uploaded:
        raise ValidationError('The SCORM package is empty')
    launch_url = launch_url or DEFAULT_LAUNCH

    try:
        storage.delete_file(storage_path)
    except Exception:
        logger.warning('Could not delete original SCORM zip %s', storage_path, exc_info=True)

    record = {
        'name': name,
        'institution_id': institution_id,
        'launch_url': launch_url,
        'storage_base_path': base_path,
        'file_count': uploaded,
    }
    dao.save_scorm_content(scorm_id, record)
    logger.info('SCORM package %s registered (%d files, launch %s)',
                scorm_id, uploaded, launch_url)
    return dict(record, id=scorm_id)


def get_package(scorm_id):
    package = dao.get_scorm_content(scorm_id)
    if not package:
        raise NotFoundError('SCORM content not found')
    return package


def load_asset(package, path):
    """Return (bytes, mimetype) of one asset of a package."""
    path = safe_asset_path(path)
    full_path = f'{package["storage_base_path"]}/{path}'
    if not storage.file_exists(full_path):
        raise NotFoundError('Asset not found')
    mimetype = mimetypes.guess_type(path)[0] or 'application/octet-stream'
    return storage.download_file(full_path), mimetype
