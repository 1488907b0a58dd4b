"""
Comment moderation for the admin queue.

Bulk actions are applied per comment; one failing id never aborts the rest.
"""

import logging

from sqlalchemy import or_

from narravo import db
from narravo.models.comment import Comment, CommentAttachment, COMMENT_STATUSES
from narravo.models.post import Post
from narravo.models.reaction import Reaction
from narravo.models.user import User
from narravo.utils.datetime_utils import utc_now
from narravo.utils.markdown import render_comment_markdown
from narravo.utils.validation import escape_like

logger = logging.getLogger(__name__)

MODERATION_ACTIONS = ('approve', 'spam', 'delete', 'hard_delete', 'edit')


class ModerationError(ValueError):
    pass


def _hard_delete(comment):
    """Remove a comment, its descendants, their attachments and reactions."""
    subtree = Comment.query.filter(
        Comment.post_id == comment.post_id,
        or_(Comment.id == comment.id, Comment.path.like(f'{comment.path}.%')),
    ).order_by(Comment.depth.desc()).all()
    ids = [row.id for row in subtree]
    Reaction.query.filter(Reaction.target_type == 'comment', Reaction.target_id.in_(ids)) \
        .delete(synchronize_session=False)
    CommentAttachment.query.filter(CommentAttachment.comment_id.in_(ids)).delete(synchronize_session=False)
    Comment.query.filter(Comment.id.in_(ids)).delete(synchronize_session=False)
    for row in subtree:
        db.session.expunge(row)
    return len(ids)


def _apply(comment, action, body_md):
    if action == 'approve':
        comment.status = 'approved'
        comment.deleted_at = None
    elif action == 'spam':
        comment.status = 'spam'
    elif action == 'delete':
        comment.status = 'deleted'
        comment.deleted_at = utc_now()
    elif action == 'hard_delete':
        _hard_delete(comment)
    elif action == 'edit':
        body_md = (body_md or '').strip()
        if not body_md:
            raise ModerationError('Comment body is required')
        comment.body_md = body_md
        comment.body_html = render_comment_markdown(body_md)


def moderate_comments(action, ids, body_md=None):
    """
    Apply ``action`` to each comment id.

    Returns:
        list: ``[{'id': n, 'ok': True}]`` or ``{'id': n, 'ok': False, 'error': msg}``
    """
    if action not in MODERATION_ACTIONS:
        raise ModerationError(f'Unknown moderation action: {action}')
    if action == 'edit' and len(ids) != 1:
        raise ModerationError('Edit applies to exactly one comment')

    results = []
    for comment_id in ids:
        comment = db.session.get(Comment, comment_id)
        if comment is None:
            results.append({'id': comment_id, 'ok': False, 'error': 'Comment not found'})
            continue
        try:
            _apply(comment, action, body_md)
            db.session.commit()
            results.append({'id': comment_id, 'ok': True})
        except ModerationError as e:
            db.session.rollback()
            results.append({'id': comment_id, 'ok': False, 'error': str(e)})

    logger.info("Moderation %s applied to %d comment(s)", action, len(ids))
    return results


def remove_comment_attachment(attachment_id):
    attachment = db.session.get(CommentAttachment, attachment_id)
    if attachment is None:
        return False
    db.session.delete(attachment)
    db.session.commit()
    return True


def get_moderation_queue(status='pending', page=1, page_size=20, search=None, post_id=None):
    if status is not None and status not in COMMENT_STATUSES:
        raise ModerationError(f'Unknown status: {status}')
    page = max(1, int(page or 1))
    page_size = max(1, min(int(page_size or 20), 100))

    query = Comment.query.outerjoin(User, User.id == Comment.user_id) \
        .outerjoin(Post, Post.id == Comment.post_id)
    if status:
        query = query.filter(Comment.status == status)
    if post_id:
        query = query.filter(Comment.post_id == post_id)
    if search and search.strip():
        term = f'%{escape_like(search.strip())}%'
        query = query.filter(or_(
            Comment.body_md.ilike(term, escape='\\'),
            Comment.body_html.ilike(term, escape='\\'),
            User.name.ilike(term, escape='\\'),
            User.email.ilike(term, escape='\\'),
            Post.title.ilike(term, escape='\\'),
        ))

    total = query.count()
    rows = query.order_by(Comment.created_at.desc(), Comment.id.desc()) \
        .offset((page - 1) * page_size).limit(page_size).all()

    items = []
    for row in rows:
        data = row.to_dict(include_admin=True)
        if row.author is not None:
            data['author']['email'] = row.author.email
        items.append(data)

    return {
        'items': items,
        'total': total,
        'page': page,
        'page_size': page_size,
        'has_more': page * page_size < total,
    }
