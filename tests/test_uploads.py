"""
Tests for upload validation, local and S3 storage, and temporary cleanup.
"""
import io
import json
from datetime import timedelta

import pytest

from narravo import db
from narravo.models.upload import Upload
from narravo.services import post_service, storage_service
from narravo.services.storage_service import (
    LocalStorage,
    S3Storage,
    StorageError,
    build_upload_key,
    cleanup_temporary_uploads,
    mark_uploads_committed,
    s3_settings,
    validate_file_type,
    validate_upload_request,
)
from narravo.utils.datetime_utils import utc_now

PNG = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64
JPEG = b'\xff\xd8\xff\xe0' + b'\x00' * 64
MP4 = b'\x00\x00\x00\x18ftypmp42' + b'\x00' * 64


class FakeS3Client:
    def __init__(self):
        self.deleted = []

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://bucket.s3.test/{Params['Key']}?sig=abc&expires={ExpiresIn}"

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        fileobj.read()

    def delete_object(self, Bucket, Key):
        self.deleted.append(Key)


@pytest.fixture
def s3_app(app, monkeypatch):
    app.config.update({
        'S3_REGION': 'us-east-1',
        'S3_ACCESS_KEY_ID': 'key',
        'S3_SECRET_ACCESS_KEY': 'secret',
        'S3_BUCKET': 'narravo-test',
        'S3_PUBLIC_BASE': 'https://cdn.example.com',
    })
    fake = FakeS3Client()
    monkeypatch.setattr(storage_service.boto3, 'client', lambda *args, **kwargs: fake)
    return fake


class TestValidation:
    def test_magic_bytes(self):
        assert validate_file_type(PNG, 'image/png')
        assert validate_file_type(JPEG, 'image/jpeg')
        assert validate_file_type(MP4, 'video/mp4')
        assert not validate_file_type(PNG, 'image/jpeg')
        assert not validate_file_type(b'<html>', 'image/png')
        assert validate_file_type(b'RIFF\x00\x00\x00\x00WEBPVP8 ', 'image/webp')

    def test_upload_limits(self, app):
        assert validate_upload_request('image/png', 1024) == 'image'
        assert validate_upload_request('video/mp4', 1024, duration=30) == 'video'

        with pytest.raises(StorageError) as exc:
            validate_upload_request('image/png', 6 * 1024 * 1024)
        assert exc.value.status_code == 413

        with pytest.raises(StorageError) as exc:
            validate_upload_request('video/mp4', 1024, duration=121)
        assert exc.value.status_code == 400

        with pytest.raises(StorageError) as exc:
            validate_upload_request('application/pdf', 1024)
        assert exc.value.status_code == 415

        with pytest.raises(StorageError):
            validate_upload_request('image/png', 0)

    def test_limits_follow_configuration(self, app):
        from narravo.services.config_service import get_config_service
        get_config_service().set_global('UPLOADS.IMAGE-MAX-BYTES', 100, type='integer')
        with pytest.raises(StorageError):
            validate_upload_request('image/png', 101)

    def test_build_upload_key(self):
        key = build_upload_key('images', 'image/PNG')
        assert key.startswith('images/')
        assert key.endswith('.png')
        assert build_upload_key('/videos/', 'video/mp4').startswith('videos/')
        assert build_upload_key('videos', 'video/mp4').endswith('.mp4')

    def test_build_upload_key_rejects_unknown_type(self):
        with pytest.raises(StorageError) as exc:
            build_upload_key('images', 'text/html')
        assert exc.value.status_code == 415


class TestLocalStorage:
    def test_put_and_delete(self, tmp_path):
        storage = LocalStorage(tmp_path)
        url = storage.put_object('images/a.png', io.BytesIO(PNG), 'image/png')
        assert url == '/uploads/images/a.png'
        assert storage.exists('images/a.png')
        storage.delete_object('images/a.png')
        assert not storage.exists('images/a.png')

    def test_path_traversal_rejected(self, tmp_path):
        storage = LocalStorage(tmp_path / 'uploads')
        with pytest.raises(StorageError):
            storage.put_object('../escape.txt', io.BytesIO(b'x'))


class TestS3Storage:
    def test_settings_fall_back_to_r2(self):
        settings = s3_settings({
            'R2_ACCOUNT_ID': 'acct',
            'R2_ACCESS_KEY_ID': 'k',
            'R2_SECRET_ACCESS_KEY': 's',
            'R2_BUCKET': 'b',
        })
        assert settings['endpoint'] == 'https://acct.r2.cloudflarestorage.com'
        assert settings['region'] == 'auto'

    def test_public_url(self):
        storage = S3Storage({'bucket': 'b', 'region': 'eu-west-1', 'public_base': None, 'endpoint': None})
        assert storage.public_url('images/a.png') == 'https://b.s3.eu-west-1.amazonaws.com/images/a.png'

    def test_get_storage_picks_s3(self, s3_app):
        assert isinstance(storage_service.get_storage(), S3Storage)


class TestUploadRoutes:
    def test_sign_without_s3_points_at_local_upload(self, client, auth_headers):
        response = client.post(
            '/api/uploads/sign',
            data=json.dumps({'filename': 'a.png', 'mime': 'image/png', 'size': 1000}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert json.loads(response.data)['data'] == {'local': True, 'url': '/api/uploads/local', 'method': 'POST'}

    def test_sign_with_s3(self, client, auth_headers, s3_app):
        response = client.post(
            '/api/uploads/sign',
            data=json.dumps({'filename': 'clip.mp4', 'mime': 'video/mp4', 'size': 2048, 'duration': 10}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 200
        data = json.loads(response.data)['data']
        assert data['method'] == 'PUT'
        assert data['kind'] == 'video'
        assert data['key'].startswith('videos/')
        assert data['public_url'] == f"https://cdn.example.com/{data['key']}"
        assert Upload.query.filter_by(key=data['key']).one().status == 'temporary'

    def test_sign_rejects_large_image(self, client, auth_headers):
        response = client.post(
            '/api/uploads/sign',
            data=json.dumps({'filename': 'a.png', 'mime': 'image/png', 'size': 50 * 1024 * 1024}),
            content_type='application/json',
            headers=auth_headers,
        )
        assert response.status_code == 413

    def test_local_upload_and_serve(self, client, auth_headers):
        response = client.post(
            '/api/uploads/local',
            data={'file': (io.BytesIO(PNG), 'photo.png', 'image/png')},
            content_type='multipart/form-data',
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = json.loads(response.data)['data']
        assert data['kind'] == 'image'
        assert data['url'].startswith('/uploads/images/')

        served = client.get(data['url'])
        assert served.status_code == 200
        assert served.data == PNG

    def test_stored_extension_ignores_client_filename(self, client, auth_headers):
        body = PNG + b'<script>alert(document.cookie)</script>'
        response = client.post(
            '/api/uploads/local',
            data={'file': (io.BytesIO(body), 'x.html', 'image/png')},
            content_type='multipart/form-data',
            headers=auth_headers,
        )
        assert response.status_code == 201
        data = json.loads(response.data)['data']
        assert data['key'].endswith('.png')

        served = client.get(data['url'])
        assert served.status_code == 200
        assert served.mimetype == 'image/png'

    def test_only_media_files_are_served(self, client, app):
        LocalStorage(app.config['UPLOADS_DIR']).put_object('images/page.html', io.BytesIO(b'<script></script>'))
        assert client.get('/uploads/images/page.html').status_code == 404

    def test_local_upload_content_mismatch(self, client, auth_headers):
        response = client.post(
            '/api/uploads/local',
            data={'file': (io.BytesIO(b'<?php echo 1; ?>' * 4), 'shell.png', 'image/png')},
            content_type='multipart/form-data',
            headers=auth_headers,
        )
        assert response.status_code == 415

    def test_local_upload_requires_file(self, client, auth_headers):
        response = client.post('/api/uploads/local', data={}, content_type='multipart/form-data',
                               headers=auth_headers)
        assert response.status_code == 400

    def test_banner_requires_admin(self, client, auth_headers, admin_headers):
        payload = {'file': (io.BytesIO(JPEG), 'banner.jpg', 'image/jpeg')}
        response = client.post('/api/uploads/banner', data=payload, content_type='multipart/form-data',
                               headers=auth_headers)
        assert response.status_code == 403

        payload = {'file': (io.BytesIO(JPEG), 'banner.jpg', 'image/jpeg')}
        response = client.post('/api/uploads/banner', data=payload, content_type='multipart/form-data',
                               headers=admin_headers)
        assert response.status_code == 201
        assert json.loads(response.data)['data']['key'].startswith('banners/')


class TestTemporaryUploads:
    def _upload(self, key, hours_old):
        row = storage_service.track_upload(key, f'/uploads/{key}', mime='image/png', size=10)
        row.created_at = utc_now() - timedelta(hours=hours_old)
        db.session.commit()
        return row

    def test_referenced_uploads_are_committed(self, app, admin_user):
        self._upload('images/kept.png', 48)
        post_service.create_post(title='With image', body_md='![x](/uploads/images/kept.png)',
                                 author_id=admin_user)
        assert Upload.query.filter_by(key='images/kept.png').one().status == 'committed'

    def test_mark_committed_ignores_unknown(self, app):
        assert mark_uploads_committed(['/uploads/none.png', None]) == 0

    def test_cleanup_removes_old_temporaries(self, app):
        storage = LocalStorage(app.config['UPLOADS_DIR'])
        storage.put_object('images/old.png', io.BytesIO(PNG))
        self._upload('images/old.png', 48)
        self._upload('images/new.png', 1)

        dry = cleanup_temporary_uploads(older_than_hours=24, dry_run=True)
        assert dry['keys'] == ['images/old.png']
        assert dry['deleted'] == 0

        result = cleanup_temporary_uploads(older_than_hours=24, storage=storage)
        assert result['deleted'] == 1
        assert not storage.exists('images/old.png')
        assert [row.key for row in Upload.query.all()] == ['images/new.png']

    def test_cleanup_counts_storage_failures(self, app, s3_app):
        self._upload('images/old.png', 48)

        def fail(Bucket, Key):
            from botocore.exceptions import ClientError
            raise ClientError({'Error': {'Code': '500', 'Message': 'boom'}}, 'DeleteObject')

        s3_app.delete_object = fail
        result = cleanup_temporary_uploads(older_than_hours=24)
        assert result['failed'] == 1
        assert Upload.query.count() == 1
