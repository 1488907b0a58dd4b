"""
Tests for the ``flask`` maintenance commands.
"""
from datetime import timedelta
from pathlib import Path

from narravo import db
from narravo.models.configuration import Configuration
from narravo.models.operations import ImportJob
from narravo.models.post import Post
from narravo.models.upload import Upload
from narravo.services import post_service, storage_service
from narravo.utils.datetime_utils import utc_now

WXR_FILE = Path(__file__).parent / 'data' / 'wordpress_export.xml'


def test_import_wxr(runner):
    result = runner.invoke(args=['import-wxr', str(WXR_FILE)])

    assert result.exit_code == 0, result.output
    assert 'Posts:       1' in result.output
    assert Post.query.count() == 1
    assert ImportJob.query.one().status == 'completed'


def test_import_wxr_dry_run(runner):
    result = runner.invoke(args=['import-wxr', str(WXR_FILE), '--dry-run', '--status', 'publish', '--status', 'draft'])

    assert result.exit_code == 0
    assert 'Posts:       2' in result.output
    assert 'Dry run' in result.output
    assert Post.query.count() == 0
    assert ImportJob.query.count() == 0


def test_import_wxr_missing_file(runner):
    result = runner.invoke(args=['import-wxr', '/nonexistent/export.xml'])
    assert result.exit_code != 0


def test_cleanup_uploads(runner):
    row = storage_service.track_upload('images/stale.png', '/uploads/images/stale.png')
    row.created_at = utc_now() - timedelta(hours=30)
    db.session.commit()

    result = runner.invoke(args=['cleanup-uploads', '--dry-run'])
    assert '1 upload(s) would be deleted' in result.output
    assert 'images/stale.png' in result.output

    result = runner.invoke(args=['cleanup-uploads', '--hours', '24'])
    assert 'Deleted 1 of 1 upload(s)' in result.output
    assert Upload.query.count() == 0


def test_purge_requires_scope(runner):
    result = runner.invoke(args=['purge'])
    assert result.exit_code != 0
    assert '--older-than-days' in result.output


def test_purge(runner, published_post):
    post_service.delete_post(published_post)

    result = runner.invoke(args=['purge', '--id', str(published_post)])
    assert '1 post(s) would be purged' in result.output
    assert Post.query.count() == 1

    result = runner.invoke(args=['purge', '--id', str(published_post), '--execute'])
    assert '1 post(s) purged' in result.output
    assert Post.query.count() == 0


def test_seed_config(runner):
    result = runner.invoke(args=['seed-config'])
    assert result.exit_code == 0
    assert Configuration.query.filter_by(key='COMMENTS.MAX-DEPTH', user_id=None).one().value == 5

    result = runner.invoke(args=['seed-config'])
    assert 'Seeded 0 configuration key(s)' in result.output
