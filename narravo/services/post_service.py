"""
Post data access: listing with keyset cursors, CRUD, publishing and
soft deletion.

Public listings walk ``(published_at, id)`` in descending order; the cursor
handed to clients is base64 of ``{"published_at": iso, "id": n}``.
"""

import base64
import binascii
import json
import logging

from sqlalchemy import or_, and_

from narravo import db
from narravo.models.category import Category
from narravo.models.post import Post
from narravo.models.tag import Tag, post_tags
from narravo.services.excerpt_service import generate_excerpt
from narravo.services.taxonomy_service import upsert_tag, upsert_category
from narravo.utils.constants import DEFAULT_PAGE_SIZE, MAX_TITLE_LENGTH, TAXONOMY_MAX_LIMIT
from narravo.utils.datetime_utils import utc_now, isoformat, parse_iso_datetime
from narravo.utils.markdown import render_post_markdown, sanitize_html
from narravo.utils.slug import slugify
from narravo.utils.validation import escape_like

logger = logging.getLogger(__name__)

ADMIN_STATUSES = ('published', 'draft', 'deleted')


class PostError(ValueError):
    pass


def encode_cursor(published_at, post_id):
    payload = json.dumps({'published_at': isoformat(published_at), 'id': post_id})
    return base64.urlsafe_b64encode(payload.encode('utf-8')).decode('ascii')


def decode_cursor(cursor):
    """Return ``(published_at, id)``; raises PostError for anything malformed."""
    if isinstance(cursor, dict):
        data = cursor
    else:
        try:
            padded = cursor + '=' * (-len(cursor) % 4)
            data = json.loads(base64.urlsafe_b64decode(padded.encode('ascii')))
        except (binascii.Error, ValueError, UnicodeError, TypeError):
            raise PostError('Invalid cursor')
    try:
        published_at = data['published_at']
        if published_at is None:
            return None, int(data['id'])
        return parse_iso_datetime(published_at), int(data['id'])
    except (KeyError, TypeError, ValueError, AttributeError):
        raise PostError('Invalid cursor')


def apply_cursor(query, cursor):
    """Rows after ``cursor`` in (published_at desc, id desc) order, drafts last."""
    if not cursor:
        return query
    published_at, post_id = decode_cursor(cursor)
    if published_at is None:
        return query.filter(Post.published_at.is_(None), Post.id < post_id)
    return query.filter(or_(
        Post.published_at < published_at,
        and_(Post.published_at == published_at, Post.id < post_id),
        Post.published_at.is_(None),
    ))


def page_with_cursor(query, limit, serializer=None):
    """Fetch ``limit + 1`` rows to learn whether another page exists."""
    serializer = serializer or (lambda p: p.to_dict_lite())
    rows = query.limit(limit + 1).all()
    has_more = len(rows) > limit
    rows = rows[:limit]
    last = rows[-1] if rows else None
    next_cursor = None
    if has_more and last is not None:
        next_cursor = encode_cursor(last.published_at, last.id)
    return {'items': [serializer(row) for row in rows], 'next_cursor': next_cursor}


def published_query():
    return Post.query.filter(
        Post.deleted_at.is_(None),
        Post.published_at.isnot(None),
        Post.published_at <= utc_now(),
    )


def list_posts(limit=10, cursor=None, include_drafts=False):
    limit = max(1, min(int(limit or 10), TAXONOMY_MAX_LIMIT))
    if include_drafts:
        query = Post.query.filter(Post.deleted_at.is_(None))
    else:
        query = published_query()
    query = apply_cursor(query, cursor)
    query = query.order_by(Post.published_at.is_(None), Post.published_at.desc(), Post.id.desc())
    return page_with_cursor(query, limit)


def get_post_by_slug(slug, include_unpublished=False):
    post = Post.query.filter(Post.slug == slug, Post.deleted_at.is_(None)).first()
    if post is None:
        return None
    if not include_unpublished and not post.is_published:
        return None
    return post


def get_post_by_id(post_id):
    return db.session.get(Post, post_id)


def count_published():
    return published_query().count()


def _unique_slug(base, exclude_id=None):
    slug = base
    n = 2
    while True:
        query = Post.query.filter(Post.slug == slug)
        if exclude_id is not None:
            query = query.filter(Post.id != exclude_id)
        if query.first() is None:
            return slug
        slug = f'{base}-{n}'
        n += 1


def _sync_tags(post, names):
    seen = set()
    tags = []
    for name in names or []:
        if not name or not name.strip():
            continue
        tag = upsert_tag(name)
        if tag.id not in seen:
            seen.add(tag.id)
            tags.append(tag)
    post.tags = tags


def _apply_category(post, category_id=None, category_name=None):
    if category_name:
        post.category_id = upsert_category(category_name).id
    elif category_id is not None:
        if db.session.get(Category, category_id) is None:
            raise PostError('Category not found')
        post.category_id = category_id


def _render(post, body_md=None, body_html=None, excerpt=None):
    if body_md is not None:
        post.body_md = body_md
        post.body_html = render_post_markdown(body_md)
    elif body_html is not None:
        post.body_html = sanitize_html(body_html)
    if excerpt:
        post.excerpt = excerpt.strip()
    elif body_md is not None or body_html is not None or not post.excerpt:
        post.excerpt = generate_excerpt(post.body_html or '')


def _validate_title(title):
    title = (title or '').strip()
    if not title:
        raise PostError('Title is required')
    if len(title) > MAX_TITLE_LENGTH:
        raise PostError(f'Title must be at most {MAX_TITLE_LENGTH} characters')
    return title


def create_post(title, body_md='', slug=None, excerpt=None, published_at=None, tags=None,
                category_id=None, category_name=None, author_id=None, featured_image_url=None,
                featured_image_alt=None, imported_system_id=None, body_html=None):
    title = _validate_title(title)
    if slug:
        slug = slugify(slug)
        if Post.query.filter_by(slug=slug).first() is not None:
            raise PostError('Slug already in use')
    else:
        slug = _unique_slug(slugify(title))

    post = Post(
        title=title,
        slug=slug,
        author_id=author_id,
        published_at=published_at,
        featured_image_url=featured_image_url,
        featured_image_alt=featured_image_alt,
        imported_system_id=imported_system_id,
    )
    _render(post, body_md=body_md if body_html is None else None, body_html=body_html, excerpt=excerpt)
    _apply_category(post, category_id, category_name)
    db.session.add(post)
    _sync_tags(post, tags)
    db.session.commit()

    _commit_referenced_uploads(post)
    logger.info("Post %s created (%s)", post.id, post.slug)
    return post


_UNSET = object()


def update_post(post_id, title=None, body_md=None, slug=None, excerpt=None, published_at=_UNSET,
                tags=None, category_id=_UNSET, category_name=None, featured_image_url=_UNSET,
                featured_image_alt=_UNSET):
    post = db.session.get(Post, post_id)
    if post is None:
        raise PostError('Post not found')

    if title is not None:
        post.title = _validate_title(title)
    if slug is not None:
        new_slug = slugify(slug)
        if new_slug != post.slug:
            if Post.query.filter(Post.slug == new_slug, Post.id != post.id).first() is not None:
                raise PostError('Slug already in use')
            post.slug = new_slug
    if body_md is not None or excerpt is not None:
        _render(post, body_md=body_md, excerpt=excerpt)
    if published_at is not _UNSET:
        post.published_at = published_at
    if category_id is not _UNSET or category_name:
        if category_id is None and not category_name:
            post.category_id = None
        else:
            _apply_category(post, None if category_id is _UNSET else category_id, category_name)
    if featured_image_url is not _UNSET:
        post.featured_image_url = featured_image_url
    if featured_image_alt is not _UNSET:
        post.featured_image_alt = featured_image_alt
    if tags is not None:
        _sync_tags(post, tags)

    db.session.commit()
    _commit_referenced_uploads(post)
    logger.info("Post %s updated", post.id)
    return post


def _commit_referenced_uploads(post):
    from narravo.services.storage_service import mark_uploads_committed, extract_upload_urls
    urls = extract_upload_urls(post.body_html or '')
    if post.featured_image_url:
        urls.append(post.featured_image_url)
    if urls:
        mark_uploads_committed(urls)


def _require(post_id):
    post = db.session.get(Post, post_id)
    if post is None:
        raise PostError('Post not found')
    return post


def delete_post(post_id, user_id=None):
    """Soft delete: the row stays until purged."""
    post = _require(post_id)
    post.soft_delete(user_id)
    db.session.commit()
    logger.info("Post %s soft-deleted by %s", post.id, user_id)
    return post


def restore_post(post_id):
    post = _require(post_id)
    post.restore()
    db.session.commit()
    return post


def publish_post(post_id, published_at=None):
    post = _require(post_id)
    if post.is_deleted:
        raise PostError('Cannot publish a deleted post')
    post.published_at = published_at or utc_now()
    db.session.commit()
    return post


def unpublish_post(post_id):
    post = _require(post_id)
    post.published_at = None
    db.session.commit()
    return post


def lock_post(post_id):
    post = _require(post_id)
    post.is_locked = True
    db.session.commit()
    return post


def unlock_post(post_id):
    post = _require(post_id)
    post.is_locked = False
    db.session.commit()
    return post


def get_previous_next(post):
    """Neighbouring published posts by ``(published_at, id)``."""
    if post.published_at is None:
        return {'previous': None, 'next': None}
    published_at = post.published_at
    previous = published_query().filter(or_(
        Post.published_at < published_at,
        and_(Post.published_at == published_at, Post.id < post.id),
    )).order_by(Post.published_at.desc(), Post.id.desc()).first()
    following = published_query().filter(or_(
        Post.published_at > published_at,
        and_(Post.published_at == published_at, Post.id > post.id),
    )).order_by(Post.published_at.asc(), Post.id.asc()).first()
    return {
        'previous': previous.to_dict_lite() if previous else None,
        'next': following.to_dict_lite() if following else None,
    }


def admin_posts_query(status=None, search=None, category=None, tag=None):
    """Admin listing filters; ``category`` and ``tag`` are slugs."""
    query = Post.query
    now = utc_now()
    if status == 'deleted':
        query = query.filter(Post.deleted_at.isnot(None))
    else:
        query = query.filter(Post.deleted_at.is_(None))
        if status == 'published':
            query = query.filter(Post.published_at.isnot(None), Post.published_at <= now)
        elif status == 'draft':
            query = query.filter(or_(Post.published_at.is_(None), Post.published_at > now))

    if search:
        term = f'%{escape_like(search.strip())}%'
        query = query.filter(or_(
            Post.title.ilike(term, escape='\\'),
            Post.slug.ilike(term, escape='\\'),
            Post.body_md.ilike(term, escape='\\'),
        ))
    if category:
        query = query.join(Category, Category.id == Post.category_id).filter(Category.slug == category)
    if tag:
        query = query.join(post_tags, post_tags.c.post_id == Post.id) \
            .join(Tag, Tag.id == post_tags.c.tag_id).filter(Tag.slug == tag)

    return query.order_by(Post.updated_at.desc(), Post.id.desc())


def admin_list_posts(page=1, per_page=DEFAULT_PAGE_SIZE, status=None, search=None, category=None, tag=None):
    if status is not None and status not in ADMIN_STATUSES:
        raise PostError(f'Unknown status: {status}')
    paginated = admin_posts_query(status, search, category, tag) \
        .paginate(page=page, per_page=per_page, error_out=False)
    return {
        'items': [post.to_dict(include_body=False, include_admin=True) for post in paginated.items],
        'pagination': {
            'page': page,
            'per_page': per_page,
            'total': paginated.total,
            'pages': paginated.pages,
            'has_next': paginated.has_next,
            'has_prev': paginated.has_prev,
        },
    }


def is_visible(post):
    """Public visibility check used by routes that take a post id."""
    return post is not None and post.is_published
