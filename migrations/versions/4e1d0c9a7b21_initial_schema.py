"""Initial schema

Revision ID: 4e1d0c9a7b21
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4e1d0c9a7b21'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(200)),
        sa.Column('image', sa.String(1024)),
        sa.Column('provider', sa.String(32)),
        sa.Column('provider_account_id', sa.String(255)),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('two_factor_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('two_factor_enforced_at', sa.DateTime()),
        sa.Column('mfa_verified_at', sa.DateTime()),
        sa.Column('last_login_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(120), nullable=False, unique=True),
        sa.Column('description', sa.Text()),
        sa.Column('created_at', sa.DateTime()),
    )

    op.create_table(
        'tags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(120), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime()),
    )

    op.create_table(
        'posts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('slug', sa.String(255), nullable=False, unique=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body_md', sa.Text()),
        sa.Column('body_html', sa.Text(), nullable=False, server_default=''),
        sa.Column('excerpt', sa.Text()),
        sa.Column('imported_system_id', sa.String(512), unique=True),
        sa.Column('featured_image_url', sa.String(1024)),
        sa.Column('featured_image_alt', sa.String(512)),
        sa.Column('views_total', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id', ondelete='SET NULL')),
        sa.Column('author_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('published_at', sa.DateTime()),
        sa.Column('deleted_at', sa.DateTime()),
        sa.Column('deleted_by', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )
    op.create_index('idx_posts_published_at_id', 'posts', ['published_at', 'id'])
    op.create_index('idx_posts_deleted_at', 'posts', ['deleted_at'])
    op.create_index('idx_posts_category_id', 'posts', ['category_id'])

    op.create_table(
        'post_tags',
        sa.Column('post_id', sa.Integer(), sa.ForeignKey('posts.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('tag_id', sa.Integer(), sa.ForeignKey('tags.id', ondelete='CASCADE'), primary_key=True),
    )

    op.create_table(
        'comments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('post_id', sa.Integer(), sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('comments.id', ondelete='CASCADE')),
        sa.Column('path', sa.String(255), nullable=False),
        sa.Column('depth', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('body_md', sa.Text()),
        sa.Column('body_html', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('author_name', sa.String(200)),
        sa.Column('imported_system_id', sa.String(255)),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.Column('deleted_at', sa.DateTime()),
    )
    op.create_index('idx_comments_post_path', 'comments', ['post_id', 'path'])
    op.create_index('idx_comments_status', 'comments', ['status'])

    op.create_table(
        'comment_attachments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('comment_id', sa.Integer(), sa.ForeignKey('comments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('url', sa.String(1024), nullable=False),
        sa.Column('poster_url', sa.String(1024)),
        sa.Column('mime', sa.String(100)),
        sa.Column('bytes', sa.Integer()),
        sa.Column('created_at', sa.DateTime()),
    )

    op.create_table(
        'reactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('target_type', sa.String(16), nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('kind', sa.String(16), nullable=False),
        sa.Column('created_at', sa.DateTime()),
        sa.UniqueConstraint('target_type', 'target_id', 'user_id', 'kind', name='uq_reaction_target_user_kind'),
    )
    op.create_index('idx_reactions_target', 'reactions', ['target_type', 'target_id'])

    op.create_table(
        'configuration',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(255), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE')),
        sa.Column('type', sa.String(16), nullable=False),
        sa.Column('value', sa.JSON()),
        sa.Column('allowed_values', sa.JSON()),
        sa.Column('required', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('category', sa.String(100)),
        sa.Column('description', sa.Text()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
        sa.UniqueConstraint('key', 'user_id', name='uq_configuration_key_user'),
    )
    op.create_index('idx_configuration_key', 'configuration', ['key'])
    # NULL user_id rows are distinct under the unique constraint above
    op.create_index('uq_configuration_global_key', 'configuration', ['key'], unique=True,
                    postgresql_where=sa.text('user_id IS NULL'),
                    sqlite_where=sa.text('user_id IS NULL'))

    op.create_table(
        'redirects',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('from_path', sa.String(1024), nullable=False, unique=True),
        sa.Column('to_path', sa.String(1024), nullable=False),
        sa.Column('status', sa.Integer(), nullable=False, server_default='301'),
        sa.Column('created_at', sa.DateTime()),
    )

    op.create_table(
        'post_daily_views',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('day', sa.Date(), nullable=False),
        sa.Column('post_id', sa.Integer(), sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('day', 'post_id', name='uq_post_daily_views_day_post'),
    )

    op.create_table(
        'post_view_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('post_id', sa.Integer(), sa.ForeignKey('posts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('ts', sa.DateTime(), nullable=False),
        sa.Column('session_id', sa.String(128)),
        sa.Column('ip_hash', sa.String(64)),
        sa.Column('user_agent', sa.String(512)),
        sa.Column('referer_host', sa.String(255)),
        sa.Column('referer_path', sa.String(1024)),
        sa.Column('user_lang', sa.String(32)),
        sa.Column('bot', sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index('idx_post_view_events_post_ts', 'post_view_events', ['post_id', 'ts'])
    op.create_index('idx_post_view_events_session', 'post_view_events', ['session_id', 'post_id'])

    op.create_table(
        'uploads',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('key', sa.String(512), nullable=False, unique=True),
        sa.Column('url', sa.String(1024), nullable=False),
        sa.Column('mime', sa.String(100)),
        sa.Column('size', sa.Integer()),
        sa.Column('status', sa.String(16), nullable=False, server_default='temporary'),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('session_id', sa.String(128)),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('committed_at', sa.DateTime()),
    )
    op.create_index('idx_uploads_status_created', 'uploads', ['status', 'created_at'])

    op.create_table(
        'owner_totp',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'),
                  nullable=False, unique=True),
        sa.Column('secret_base32', sa.String(64), nullable=False),
        sa.Column('activated_at', sa.DateTime()),
        sa.Column('last_used_at', sa.DateTime()),
        sa.Column('last_used_step', sa.Integer()),
        sa.Column('created_at', sa.DateTime()),
    )

    op.create_table(
        'recovery_codes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('code_hash', sa.String(128), nullable=False),
        sa.Column('used_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_recovery_codes_user_id', 'recovery_codes', ['user_id'])

    op.create_table(
        'trusted_devices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('user_agent', sa.String(512)),
        sa.Column('ip_hash', sa.String(16)),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('last_seen_at', sa.DateTime()),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('revoked_at', sa.DateTime()),
    )
    op.create_index('ix_trusted_devices_user_id', 'trusted_devices', ['user_id'])

    op.create_table(
        'webauthn_credentials',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('credential_id', sa.LargeBinary(), nullable=False, unique=True),
        sa.Column('public_key', sa.LargeBinary(), nullable=False),
        sa.Column('counter', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('transports', sa.JSON()),
        sa.Column('nickname', sa.String(100)),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('last_used_at', sa.DateTime()),
    )
    op.create_index('ix_webauthn_credentials_user_id', 'webauthn_credentials', ['user_id'])

    op.create_table(
        'security_activity',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event', sa.String(64), nullable=False),
        sa.Column('ip', sa.String(64)),
        sa.Column('user_agent', sa.String(512)),
        sa.Column('details', sa.JSON()),
        sa.Column('created_at', sa.DateTime()),
    )
    op.create_index('ix_security_activity_user_id', 'security_activity', ['user_id'])

    op.create_table(
        'import_jobs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='queued'),
        sa.Column('file_name', sa.String(255), nullable=False),
        sa.Column('options', sa.JSON()),
        sa.Column('total_items', sa.Integer(), server_default='0'),
        sa.Column('posts_imported', sa.Integer(), server_default='0'),
        sa.Column('attachments_processed', sa.Integer(), server_default='0'),
        sa.Column('redirects_created', sa.Integer(), server_default='0'),
        sa.Column('skipped', sa.Integer(), server_default='0'),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('started_at', sa.DateTime()),
        sa.Column('finished_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('updated_at', sa.DateTime()),
    )

    op.create_table(
        'import_job_errors',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('job_id', sa.Integer(), sa.ForeignKey('import_jobs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('item_identifier', sa.String(512)),
        sa.Column('error_type', sa.String(64), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=False),
        sa.Column('item_data', sa.JSON()),
        sa.Column('created_at', sa.DateTime()),
    )

    op.create_table(
        'data_operation_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('operation_type', sa.String(32), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('details', sa.JSON()),
        sa.Column('records_affected', sa.Integer(), server_default='0'),
        sa.Column('status', sa.String(16), nullable=False, server_default='completed'),
        sa.Column('ip_address', sa.String(64)),
        sa.Column('user_agent', sa.String(512)),
        sa.Column('created_at', sa.DateTime()),
    )


def downgrade():
    for table in (
        'data_operation_logs', 'import_job_errors', 'import_jobs', 'security_activity',
        'webauthn_credentials', 'trusted_devices', 'recovery_codes', 'owner_totp', 'uploads',
        'post_view_events', 'post_daily_views', 'redirects', 'configuration', 'reactions',
        'comment_attachments', 'comments', 'post_tags', 'posts', 'tags', 'categories', 'users',
    ):
        op.drop_table(table)
