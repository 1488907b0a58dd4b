"""
Destructive admin operations and their audit trail.

Every purge or anonymization writes a ``data_operation_logs`` row, including
dry runs, so the audit log shows what was previewed as well as what ran.
"""

import logging
from datetime import timedelta

from narravo import db
from narravo.models.comment import Comment, CommentAttachment
from narravo.models.operations import DataOperationLog
from narravo.models.post import Post
from narravo.models.reaction import Reaction
from narravo.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

PURGE_KINDS = ('post', 'comment')


class DataOperationError(ValueError):
    pass


def log_operation(operation_type, user_id=None, details=None, records_affected=0,
                  status='completed', ip_address=None, user_agent=None, commit=True):
    entry = DataOperationLog(
        operation_type=operation_type,
        user_id=user_id,
        details=details or {},
        records_affected=records_affected,
        status=status,
        ip_address=ip_address,
        user_agent=(user_agent or '')[:512] or None,
    )
    db.session.add(entry)
    if commit:
        db.session.commit()
    return entry


def _purge_candidates(kind, older_than_days, ids):
    if kind == 'post':
        query = Post.query.filter(Post.deleted_at.isnot(None))
        column_deleted, column_id = Post.deleted_at, Post.id
    else:
        query = Comment.query.filter(Comment.deleted_at.isnot(None))
        column_deleted, column_id = Comment.deleted_at, Comment.id
    if older_than_days is not None:
        query = query.filter(column_deleted <= utc_now() - timedelta(days=int(older_than_days)))
    if ids:
        query = query.filter(column_id.in_(ids))
    return query.all()


def purge_soft_deleted(kind='post', older_than_days=None, ids=None, dry_run=True,
                       user_id=None, ip_address=None, user_agent=None):
    """
    Hard-delete soft-deleted posts or comments.

    Returns:
        dict: ``{'kind', 'dry_run', 'count', 'ids'}``
    """
    if kind not in PURGE_KINDS:
        raise DataOperationError(f'Unknown purge kind: {kind}')
    if older_than_days is not None and int(older_than_days) < 0:
        raise DataOperationError('older_than_days must be non-negative')

    rows = _purge_candidates(kind, older_than_days, ids)
    target_ids = [row.id for row in rows]

    if not dry_run and target_ids:
        if kind == 'post':
            comment_ids = [c.id for c in Comment.query.filter(Comment.post_id.in_(target_ids)).all()]
            if comment_ids:
                Reaction.query.filter(Reaction.target_type == 'comment', Reaction.target_id.in_(comment_ids)) \
                    .delete(synchronize_session=False)
                CommentAttachment.query.filter(CommentAttachment.comment_id.in_(comment_ids)) \
                    .delete(synchronize_session=False)
                Comment.query.filter(Comment.id.in_(comment_ids)).delete(synchronize_session=False)
            Reaction.query.filter(Reaction.target_type == 'post', Reaction.target_id.in_(target_ids)) \
                .delete(synchronize_session=False)
            for post in rows:
                post.tags = []
            db.session.flush()
            Post.query.filter(Post.id.in_(target_ids)).delete(synchronize_session=False)
        else:
            Reaction.query.filter(Reaction.target_type == 'comment', Reaction.target_id.in_(target_ids)) \
                .delete(synchronize_session=False)
            CommentAttachment.query.filter(CommentAttachment.comment_id.in_(target_ids)) \
                .delete(synchronize_session=False)
            Comment.query.filter(Comment.id.in_(target_ids)).delete(synchronize_session=False)
        db.session.expunge_all()

    log_operation(
        'purge',
        user_id=user_id,
        details={'kind': kind, 'older_than_days': older_than_days, 'ids': target_ids, 'dry_run': dry_run},
        records_affected=0 if dry_run else len(target_ids),
        status='preview' if dry_run else 'completed',
        ip_address=ip_address,
        user_agent=user_agent,
    )
    logger.info("Purge of %d %s(s), dry_run=%s", len(target_ids), kind, dry_run)
    return {'kind': kind, 'dry_run': dry_run, 'count': len(target_ids), 'ids': target_ids}


def get_audit_log(page=1, page_size=20, operation_type=None):
    page = max(1, int(page or 1))
    page_size = max(1, min(int(page_size or 20), 100))
    query = DataOperationLog.query
    if operation_type:
        query = query.filter(DataOperationLog.operation_type == operation_type)
    total = query.count()
    rows = query.order_by(DataOperationLog.created_at.desc(), DataOperationLog.id.desc()) \
        .offset((page - 1) * page_size).limit(page_size).all()
    return {
        'items': [row.to_dict() for row in rows],
        'total': total,
        'page': page,
        'page_size': page_size,
        'has_more': page * page_size < total,
    }
