"""
Upload storage: an S3-compatible bucket (AWS S3 or Cloudflare R2) when
credentials are configured, otherwise a directory served at ``/uploads/``.

Every stored object is tracked in ``uploads`` as ``temporary`` until a post
or comment references it; unreferenced temporaries are cleaned up by
``flask cleanup-uploads``.
"""

import logging
import os
import re
import uuid
from datetime import timedelta
from pathlib import Path

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

from narravo import db
from narravo.models.upload import Upload
from narravo.services.config_service import config_int
from narravo.utils.constants import (
    DEFAULT_IMAGE_MAX_BYTES,
    DEFAULT_VIDEO_MAX_BYTES,
    DEFAULT_VIDEO_MAX_DURATION_SECONDS,
    PRESIGNED_URL_EXPIRY_SECONDS,
    TEMPORARY_UPLOAD_MAX_AGE_HOURS,
)
from narravo.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

IMAGE_MIMES = ('image/jpeg', 'image/png', 'image/gif', 'image/webp')
VIDEO_MIMES = ('video/mp4', 'video/webm')
MIME_EXTENSIONS = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'image/gif': 'gif',
    'image/webp': 'webp',
    'video/mp4': 'mp4',
    'video/webm': 'webm',
}

_URL_ATTR = re.compile(r'(?:src|href|poster)\s*=\s*["\']([^"\']+)["\']', re.I)


class StorageError(Exception):
    def __init__(self, message, status_code=400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def s3_settings(config):
    """S3_* settings, falling back to their R2_* equivalents."""
    def pick(name):
        return (config.get(f'S3_{name}') or config.get(f'R2_{name}') or '').strip() or None

    settings = {
        'region': pick('REGION'),
        'endpoint': pick('ENDPOINT'),
        'access_key_id': pick('ACCESS_KEY_ID'),
        'secret_access_key': pick('SECRET_ACCESS_KEY'),
        'bucket': pick('BUCKET'),
        'public_base': pick('PUBLIC_BASE'),
    }
    if not settings['endpoint'] and config.get('R2_ACCOUNT_ID'):
        settings['endpoint'] = f"https://{config['R2_ACCOUNT_ID']}.r2.cloudflarestorage.com"
        settings['region'] = settings['region'] or 'auto'
    return settings


def s3_is_configured(settings):
    return all(settings.get(k) for k in ('region', 'access_key_id', 'secret_access_key', 'bucket'))


class S3Storage:
    def __init__(self, settings):
        self.settings = settings
        self.bucket = settings['bucket']
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client(
                's3',
                endpoint_url=self.settings.get('endpoint'),
                region_name=self.settings['region'],
                aws_access_key_id=self.settings['access_key_id'],
                aws_secret_access_key=self.settings['secret_access_key'],
            )
        return self._client

    def public_url(self, key):
        key = key.lstrip('/')
        base = self.settings.get('public_base')
        if base:
            return f'{base.rstrip("/")}/{key}'
        endpoint = self.settings.get('endpoint')
        if endpoint:
            return f'{endpoint.rstrip("/")}/{self.bucket}/{key}'
        return f'https://{self.bucket}.s3.{self.settings["region"]}.amazonaws.com/{key}'

    def create_presigned_post(self, key, mime, size=None):
        """Presigned PUT for direct browser uploads, valid for five minutes."""
        params = {'Bucket': self.bucket, 'Key': key, 'ContentType': mime}
        if size:
            params['ContentLength'] = int(size)
        try:
            url = self.client.generate_presigned_url(
                'put_object', Params=params, ExpiresIn=PRESIGNED_URL_EXPIRY_SECONDS
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Presign failed for %s: %s", key, e)
            raise StorageError('Could not sign upload', 502)
        return {
            'url': url,
            'method': 'PUT',
            'key': key,
            'fields': {'Content-Type': mime},
            'public_url': self.public_url(key),
            'expires_in': PRESIGNED_URL_EXPIRY_SECONDS,
        }

    def put_object(self, key, fileobj, mime):
        try:
            self.client.upload_fileobj(fileobj, self.bucket, key, ExtraArgs={'ContentType': mime})
        except (BotoCoreError, ClientError) as e:
            logger.error("Upload failed for %s: %s", key, e)
            raise StorageError('Upload failed', 502)
        return self.public_url(key)

    def delete_object(self, key):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            logger.error("Delete failed for %s: %s", key, e)
            raise StorageError('Delete failed', 502)


class LocalStorage:
    def __init__(self, root, base_url='/uploads'):
        self.root = Path(root).resolve()
        self.base_url = base_url.rstrip('/')

    def _resolve(self, key):
        target = (self.root / key.lstrip('/')).resolve()
        if target != self.root and self.root not in target.parents:
            raise StorageError('Invalid upload path', 400)
        return target

    def public_url(self, key):
        return f'{self.base_url}/{key.lstrip("/")}'

    def put_object(self, key, fileobj, mime=None):
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, 'wb') as fh:
            while True:
                chunk = fileobj.read(64 * 1024)
                if not chunk:
                    break
                fh.write(chunk)
        return self.public_url(key)

    def delete_object(self, key):
        target = self._resolve(key)
        if target.is_file():
            target.unlink()

    def exists(self, key):
        return self._resolve(key).is_file()

    def path_for(self, key):
        return self._resolve(key)


def get_storage():
    settings = s3_settings(current_app.config)
    if s3_is_configured(settings):
        return S3Storage(settings)
    return LocalStorage(current_app.config['UPLOADS_DIR'])


def validate_file_type(header, mime):
    """Check the leading bytes of a file against the claimed MIME type."""
    b = bytes(header[:16])
    if mime.startswith('image/'):
        if b[:4] == b'\x89PNG':
            return mime == 'image/png'
        if b[:3] == b'\xff\xd8\xff':
            return mime == 'image/jpeg'
        if b[:3] == b'GIF':
            return mime == 'image/gif'
        if b[:4] == b'RIFF' and b[8:12] == b'WEBP':
            return mime == 'image/webp'
    if mime.startswith('video/'):
        if b[4:8] == b'ftyp':
            return mime == 'video/mp4'
        if b[:4] == b'\x1a\x45\xdf\xa3':
            return mime == 'video/webm'
    return False


def validate_upload_request(mime, size, duration=None):
    """Return 'image' or 'video'; raises StorageError past the configured limits."""
    mime = (mime or '').lower()
    try:
        size = int(size)
    except (TypeError, ValueError):
        raise StorageError('File size is required')
    if size <= 0:
        raise StorageError('File is empty')

    if mime in IMAGE_MIMES:
        limit = config_int('UPLOADS.IMAGE-MAX-BYTES', DEFAULT_IMAGE_MAX_BYTES)
        if size > limit:
            raise StorageError(f'Image exceeds {limit} bytes', 413)
        return 'image'

    if mime in VIDEO_MIMES:
        limit = config_int('UPLOADS.VIDEO-MAX-BYTES', DEFAULT_VIDEO_MAX_BYTES)
        if size > limit:
            raise StorageError(f'Video exceeds {limit} bytes', 413)
        if duration is not None:
            max_duration = config_int('UPLOADS.VIDEO-MAX-DURATION-SECONDS', DEFAULT_VIDEO_MAX_DURATION_SECONDS)
            if float(duration) > max_duration:
                raise StorageError(f'Video exceeds {max_duration} seconds', 400)
        return 'video'

    raise StorageError(f'Unsupported file type: {mime or "unknown"}', 415)


def build_upload_key(prefix, mime):
    """Random object key whose extension comes from the validated MIME type."""
    ext = MIME_EXTENSIONS.get((mime or '').lower())
    if ext is None:
        raise StorageError(f'Unsupported file type: {mime or "unknown"}', 415)
    return f'{prefix.strip("/")}/{uuid.uuid4().hex}.{ext}'


def is_servable_key(key):
    return Path(key).suffix.lower().lstrip('.') in MIME_EXTENSIONS.values()


def track_upload(key, url, mime=None, size=None, user_id=None, session_id=None):
    upload = Upload(key=key, url=url, mime=mime, size=size, user_id=user_id,
                    session_id=session_id, status='temporary')
    db.session.add(upload)
    db.session.commit()
    return upload


def extract_upload_urls(html):
    return [m.group(1) for m in _URL_ATTR.finditer(html or '')]


def mark_uploads_committed(urls):
    urls = [u for u in set(urls or []) if u]
    if not urls:
        return 0
    updated = Upload.query.filter(Upload.url.in_(urls), Upload.status == 'temporary') \
        .update({Upload.status: 'committed', Upload.committed_at: utc_now()}, synchronize_session=False)
    db.session.commit()
    return updated


def cleanup_temporary_uploads(older_than_hours=TEMPORARY_UPLOAD_MAX_AGE_HOURS, dry_run=False, storage=None):
    """
    Delete temporary uploads older than the cutoff from storage and the table.

    Returns:
        dict: ``{'candidates', 'deleted', 'failed', 'keys', 'dry_run'}``
    """
    cutoff = utc_now() - timedelta(hours=older_than_hours)
    rows = Upload.query.filter(Upload.status == 'temporary', Upload.created_at < cutoff).all()
    result = {'candidates': len(rows), 'deleted': 0, 'failed': 0,
              'keys': [row.key for row in rows], 'dry_run': dry_run}
    if dry_run or not rows:
        return result

    storage = storage or get_storage()
    for row in rows:
        try:
            storage.delete_object(row.key)
        except StorageError as e:
            logger.error("Could not delete upload %s: %s", row.key, e.message)
            result['failed'] += 1
            continue
        db.session.delete(row)
        result['deleted'] += 1
    db.session.commit()
    logger.info("Cleaned up %d temporary upload(s)", result['deleted'])
    return result


def uploads_root():
    root = current_app.config['UPLOADS_DIR']
    os.makedirs(root, exist_ok=True)
    return root
