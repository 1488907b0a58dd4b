from flask import Blueprint, request, send_from_directory
from narravo import db
from narravo.middleware.security import rate_limit_upload
from narravo.schemas.two_factor import UploadSignRequest
from narravo.services import storage_service
from narravo.services.storage_service import StorageError, S3Storage
from narravo.utils.auth import require_auth, admin_required, get_current_user_id
from narravo.utils.constants import BANNER_MAX_BYTES
from narravo.utils.responses import success_response, error_response
from narravo.utils.validation import validate_request
import logging

logger = logging.getLogger(__name__)

uploads_bp = Blueprint('uploads', __name__)
uploads_files_bp = Blueprint('uploads_files', __name__)

KIND_PREFIXES = {'image': 'images', 'video': 'videos'}


def _file_size(file):
    file.stream.seek(0, 2)
    size = file.stream.tell()
    file.stream.seek(0)
    return size


def _read_header(file):
    header = file.stream.read(16)
    file.stream.seek(0)
    return header


def _store(file, prefix, mime):
    """Write the file to the active backend and track it as temporary."""
    size = _file_size(file)
    storage = storage_service.get_storage()
    key = storage_service.build_upload_key(prefix, mime)
    url = storage.put_object(key, file.stream, mime)
    return storage_service.track_upload(key, url, mime=mime, size=size, user_id=get_current_user_id())


@uploads_bp.route('/uploads/sign', methods=['POST'])
@rate_limit_upload()
@require_auth
@validate_request(UploadSignRequest)
def sign_upload(payload: UploadSignRequest):
    """Presigned PUT for a direct-to-bucket upload"""
    try:
        kind = storage_service.validate_upload_request(payload.mime, payload.size, payload.duration)
        storage = storage_service.get_storage()
        if not isinstance(storage, S3Storage):
            return success_response({'local': True, 'url': '/api/uploads/local', 'method': 'POST'})

        key = storage_service.build_upload_key(KIND_PREFIXES[kind], payload.mime)
        signed = storage.create_presigned_post(key, payload.mime, payload.size)
        storage_service.track_upload(key, signed['public_url'], mime=payload.mime,
                                     size=payload.size, user_id=get_current_user_id())
        signed['kind'] = kind
        return success_response(signed)
    except StorageError as e:
        return error_response(e.message, e.status_code)
    except Exception as e:
        db.session.rollback()
        logger.error("Error signing upload: %s", e)
        return error_response('Internal server error', 500)


@uploads_bp.route('/uploads/local', methods=['POST'])
@rate_limit_upload()
@require_auth
def local_upload():
    """Multipart upload stored by the server"""
    try:
        file = request.files.get('file')
        if file is None or not file.filename:
            return error_response('No file provided', 400)

        mime = (file.mimetype or '').lower()
        kind = storage_service.validate_upload_request(mime, _file_size(file), request.form.get('duration'))
        if not storage_service.validate_file_type(_read_header(file), mime):
            return error_response('File content does not match its type', 415)

        upload = _store(file, KIND_PREFIXES[kind], mime)
        return success_response({'url': upload.url, 'key': upload.key, 'kind': kind}, status_code=201)
    except StorageError as e:
        return error_response(e.message, e.status_code)
    except Exception as e:
        db.session.rollback()
        logger.error("Error storing upload: %s", e)
        return error_response('Internal server error', 500)


@uploads_bp.route('/uploads/banner', methods=['POST'])
@admin_required
def banner_upload():
    """Admin-only banner image"""
    try:
        file = request.files.get('file')
        if file is None or not file.filename:
            return error_response('No file provided', 400)

        mime = (file.mimetype or '').lower()
        if mime not in storage_service.IMAGE_MIMES:
            return error_response(f'Unsupported file type: {mime or "unknown"}', 415)
        if _file_size(file) > BANNER_MAX_BYTES:
            return error_response(f'Banner exceeds {BANNER_MAX_BYTES} bytes', 413)
        if not storage_service.validate_file_type(_read_header(file), mime):
            return error_response('File content does not match its type', 415)

        upload = _store(file, 'banners', mime)
        return success_response({'url': upload.url, 'key': upload.key}, status_code=201)
    except StorageError as e:
        return error_response(e.message, e.status_code)
    except Exception as e:
        db.session.rollback()
        logger.error("Error storing banner: %s", e)
        return error_response('Internal server error', 500)


@uploads_files_bp.route('/uploads/<path:filename>', methods=['GET'])
def serve_upload(filename):
    if not storage_service.is_servable_key(filename):
        return error_response('File not found', 404)
    return send_from_directory(storage_service.uploads_root(), filename, max_age=31536000)
