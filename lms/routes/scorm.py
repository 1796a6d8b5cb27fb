import logging
import uuid

from flask import Blueprint, Response, render_template, request, jsonify, flash, redirect, url_for

from lms import firestore_dao as dao
from lms.decorators import auth_required, institution_required, permission_required, get_current_user
from lms.errors import LMSError, NotFoundError, PermissionDeniedError, ValidationError
from lms.forms import ScormUploadForm
from lms.permissions import Action, Subject
from lms.services import scorm as scorm_service
from lms.services.storage import upload_file

logger = logging.getLogger(__name__)

bp = Blueprint('scorm', __name__)


def _can_register(user, institution_id):
    if user.is_root():
        return True
    return user.institution_id == institution_id and user.can(Action.CREATE, Subject.CONTENT)


@bp.route('/api/scorm/register', methods=['POST'])
@auth_required
def register():
    user = get_current_user()
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Expected a JSON body')
    name = (data.get('name') or '').strip()
    institution_id = data.get('institution_id') or ''
    storage_path = data.get('storage_path') or ''
    if not name or not institution_id or not storage_path:
        return jsonify({'success': False,
                        'error': 'name, institution_id and storage_path are required'}), 400
    if not _can_register(user, institution_id):
        raise PermissionDeniedError('You cannot add content to this institution')

    package = scorm_service.register_package(name, institution_id, storage_path)
    return jsonify({'success': True, 'scorm_content': package}), 201


@bp.route('/scorm/upload', methods=['GET', 'POST'])
@institution_required
@permission_required(Action.CREATE, Subject.CONTENT)
def upload():
    user = get_current_user()
    form = ScormUploadForm()
    package = None
    if form.validate_on_submit():
        storage_path = f'scorm_uploads/{user.institution_id}/{uuid.uuid4().hex}.zip'
        upload_file(form.file.data.stream, storage_path, 'application/zip')
        try:
            package = scorm_service.register_package(form.name.data.strip(),
                                                     user.institution_id, storage_path)
            flash(f'Package registered. Use id {package["id"]} as a SCORM content URL.',
                  'success')
        except LMSError as e:
            flash(str(e), 'danger')
    return render_template('scorm/upload.html', form=form, package=package)


@bp.route('/scorm/<scorm_id>/<path:path>')
@auth_required
def asset(scorm_id, path):
    user = get_current_user()
    package = scorm_service.get_package(scorm_id)
    institution_id = package.get('institution_id')
    if not user.is_root() and not dao.get_user_institution(user.uid, institution_id):
        logger.info('Blocked SCORM asset %s/%s for non-member %s', scorm_id, path, user.uid)
        raise NotFoundError('SCORM content not found')

    data, mimetype = scorm_service.load_asset(package, path)
    return Response(data, mimetype=mimetype, headers={'Cache-Control': 'private, max-age=3600'})


@bp.route('/scorm/<scorm_id>')
@auth_required
def launch(scorm_id):
    package = scorm_service.get_package(scorm_id)
    # relative asset links resolve against the package directory
    return redirect(url_for('scorm.asset', scorm_id=scorm_id,
                            path=package.get('launch_url') or scorm_service.DEFAULT_LAUNCH))
