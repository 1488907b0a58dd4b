"""
Threaded comments stored as materialized paths.

Each comment's ``path`` is its ancestors' sibling ordinals joined by '.',
each zero-padded to four digits (``0001``, ``0001.0002``). Ordering by path
yields depth-first thread order, and a node's descendants are exactly the
rows whose path starts with ``{path}.``.
"""

import logging
from collections import defaultdict

from sqlalchemy import func

from narravo import db
from narravo.models.comment import Comment, CommentAttachment, ATTACHMENT_KINDS
from narravo.models.post import Post
from narravo.services.config_service import config_int, config_bool
from narravo.services.post_service import published_query
from narravo.services.taxonomy_service import clamp_limit
from narravo.utils.constants import (
    COMMENT_PATH_SEGMENT_WIDTH,
    DEFAULT_MAX_COMMENT_DEPTH,
    DEFAULT_COMMENTS_TOP_PAGE_SIZE,
    DEFAULT_COMMENTS_REPLIES_PAGE_SIZE,
    MAX_COMMENT_LENGTH,
)
from narravo.utils.markdown import render_comment_markdown

logger = logging.getLogger(__name__)


class CommentError(ValueError):
    """Raised for comment submissions that cannot be accepted."""


def format_segment(ordinal):
    return str(ordinal).zfill(COMMENT_PATH_SEGMENT_WIDTH)


def build_path(parent_path, ordinal):
    segment = format_segment(ordinal)
    return f'{parent_path}.{segment}' if parent_path else segment


def parent_path_of(path):
    return path[:path.rfind('.')] if '.' in path else None


def next_sibling_ordinal(post_id, parent=None):
    """One past the highest ordinal under ``parent``; hard-deleted gaps are never reused."""
    last_path = db.session.query(func.max(Comment.path)).filter(
        Comment.post_id == post_id,
        Comment.parent_id.is_(None) if parent is None else Comment.parent_id == parent.id,
    ).scalar()
    if last_path is None:
        return 1
    return int(last_path.rsplit('.', 1)[-1]) + 1


def _validate_attachments(attachments):
    cleaned = []
    for item in attachments or []:
        kind = item.get('kind')
        url = (item.get('url') or '').strip()
        if kind not in ATTACHMENT_KINDS:
            raise CommentError(f'Unsupported attachment kind: {kind}')
        if not url:
            raise CommentError('Attachment url is required')
        cleaned.append(CommentAttachment(
            kind=kind,
            url=url,
            poster_url=item.get('poster_url'),
            mime=item.get('mime'),
            bytes=item.get('bytes'),
        ))
    return cleaned


def create_comment(post_id, user_id, body_md, parent_id=None, attachments=None,
                   is_admin=False, author_name=None):
    """
    Insert a comment at the end of its sibling list.

    Raises:
        CommentError: unknown/locked post, bad parent, depth limit, empty body
    """
    body_md = (body_md or '').strip()
    if not body_md:
        raise CommentError('Comment body is required')
    if len(body_md) > MAX_COMMENT_LENGTH:
        raise CommentError('Comment is too long')

    post = db.session.get(Post, post_id)
    if post is None or post.is_deleted:
        raise CommentError('Post not found')
    if post.is_locked:
        raise CommentError('Comments are locked for this post')

    parent = None
    if parent_id is not None:
        parent = db.session.get(Comment, parent_id)
        if parent is None or parent.post_id != post_id:
            raise CommentError('Parent comment not found')
        max_depth = config_int('COMMENTS.MAX-DEPTH', DEFAULT_MAX_COMMENT_DEPTH)
        if parent.depth + 1 >= max_depth:
            raise CommentError('Max depth exceeded')

    auto_approve = is_admin and config_bool('MODERATION.AUTO-APPROVE-ADMIN', True)
    comment = Comment(
        post_id=post_id,
        user_id=user_id,
        parent_id=parent.id if parent else None,
        path=build_path(parent.path if parent else None, next_sibling_ordinal(post_id, parent)),
        depth=parent.depth + 1 if parent else 0,
        body_md=body_md,
        body_html=render_comment_markdown(body_md),
        status='approved' if auto_approve else 'pending',
        author_name=author_name,
    )
    comment.attachments = _validate_attachments(attachments)
    db.session.add(comment)
    db.session.commit()

    if comment.attachments:
        from narravo.services.storage_service import mark_uploads_committed
        mark_uploads_committed([a.url for a in comment.attachments] +
                               [a.poster_url for a in comment.attachments if a.poster_url])

    logger.info("Comment %s created on post %s (%s)", comment.id, post_id, comment.status)
    return comment


def _children_counts(comment_ids):
    if not comment_ids:
        return {}
    rows = db.session.query(Comment.parent_id, func.count(Comment.id)).filter(
        Comment.parent_id.in_(comment_ids),
        Comment.status == 'approved',
    ).group_by(Comment.parent_id).all()
    return dict(rows)


def _node(comment, children_count):
    data = comment.to_dict()
    data['children_count'] = children_count
    data['replies'] = []
    return data


def get_comment_tree(post_id, cursor=None, limit_top=None, limit_replies=None):
    """
    Approved comments for a post, a page of top-level threads at a time.

    Returns:
        dict: ``{'items': [node...], 'next_cursor': str | None}`` where each
        node carries ``replies`` (at most ``limit_replies`` per parent) and
        ``children_count``.
    """
    limit_top = clamp_limit(limit_top, config_int('COMMENTS.TOP-PAGE-SIZE', DEFAULT_COMMENTS_TOP_PAGE_SIZE))
    limit_replies = clamp_limit(limit_replies,
                                config_int('COMMENTS.REPLIES-PAGE-SIZE', DEFAULT_COMMENTS_REPLIES_PAGE_SIZE))

    query = Comment.query.filter(
        Comment.post_id == post_id,
        Comment.status == 'approved',
        Comment.depth == 0,
    )
    if cursor:
        query = query.filter(Comment.path > cursor)
    top_rows = query.order_by(Comment.path.asc()).limit(limit_top + 1).all()
    has_more = len(top_rows) > limit_top
    top_rows = top_rows[:limit_top]

    descendants = []
    if top_rows:
        like_clauses = [Comment.path.like(f'{row.path}.%') for row in top_rows]
        descendants = Comment.query.filter(
            Comment.post_id == post_id,
            Comment.status == 'approved',
            db.or_(*like_clauses),
        ).order_by(Comment.path.asc()).all()

    grouped = defaultdict(list)
    for row in descendants:
        siblings = grouped[parent_path_of(row.path)]
        if len(siblings) < limit_replies:
            siblings.append(row)

    counts = _children_counts([row.id for row in top_rows] + [row.id for row in descendants])

    def attach(row):
        node = _node(row, counts.get(row.id, 0))
        node['replies'] = [attach(child) for child in grouped.get(row.path, [])]
        return node

    return {
        'items': [attach(row) for row in top_rows],
        'next_cursor': top_rows[-1].path if has_more and top_rows else None,
    }


def get_replies(comment_id, cursor=None, limit=None):
    """Approved direct children of a comment after ``cursor`` (a path)."""
    limit = clamp_limit(limit, config_int('COMMENTS.REPLIES-PAGE-SIZE', DEFAULT_COMMENTS_REPLIES_PAGE_SIZE))
    parent = db.session.get(Comment, comment_id)
    if parent is None:
        raise CommentError('Parent comment not found')

    query = Comment.query.filter(Comment.parent_id == parent.id, Comment.status == 'approved')
    if cursor:
        query = query.filter(Comment.path > cursor)
    rows = query.order_by(Comment.path.asc()).limit(limit + 1).all()
    has_more = len(rows) > limit
    rows = rows[:limit]

    counts = _children_counts([row.id for row in rows])
    return {
        'items': [_node(row, counts.get(row.id, 0)) for row in rows],
        'next_cursor': rows[-1].path if has_more and rows else None,
    }


def count_approved(post_id):
    return Comment.query.filter_by(post_id=post_id, status='approved').count()


def count_pending():
    return Comment.query.filter_by(status='pending').count()


def count_spam():
    return Comment.query.filter_by(status='spam').count()


def get_recent_comments(limit=5):
    """Latest approved comments on publicly visible posts, with a link back to the post."""
    visible_ids = published_query().with_entities(Post.id).statement
    rows = Comment.query.filter(
        Comment.status == 'approved',
        Comment.deleted_at.is_(None),
        Comment.post_id.in_(visible_ids),
    ).order_by(Comment.created_at.desc(), Comment.id.desc()).limit(limit).all()

    items = []
    for row in rows:
        data = row.to_dict()
        data['post_slug'] = row.post.slug
        data['post_title'] = row.post.title
        items.append(data)
    return items
