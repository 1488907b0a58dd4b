"""
Tags and categories.

Both are keyed by the slug of their lowercased name, so "Python", "python"
and " PYTHON " resolve to the same row.
"""

import logging

from sqlalchemy import func

from narravo import db
from narravo.models.category import Category
from narravo.models.post import Post
from narravo.models.tag import Tag, post_tags
from narravo.utils.constants import TAXONOMY_MAX_LIMIT, MAX_TAG_NAME_LENGTH
from narravo.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class TaxonomyError(ValueError):
    pass


def _clean_name(name):
    cleaned = (name or '').strip()
    if not cleaned:
        raise TaxonomyError('Name is required')
    if len(cleaned) > MAX_TAG_NAME_LENGTH:
        raise TaxonomyError(f'Name must be at most {MAX_TAG_NAME_LENGTH} characters')
    return cleaned


def upsert_tag(name):
    """Return the tag for ``name``, creating it when its slug is new. Does not commit."""
    cleaned = _clean_name(name)
    slug = Tag.create_slug(cleaned)
    tag = Tag.query.filter_by(slug=slug).first()
    if tag is None:
        tag = Tag(name=cleaned, slug=slug)
        db.session.add(tag)
        db.session.flush()
    return tag


def upsert_category(name, description=None):
    cleaned = _clean_name(name)
    slug = Category.create_slug(cleaned)
    category = Category.query.filter_by(slug=slug).first()
    if category is None:
        category = Category(name=cleaned, slug=slug, description=description)
        db.session.add(category)
        db.session.flush()
    return category


def clamp_limit(limit, default=10):
    try:
        value = int(limit) if limit is not None else default
    except (TypeError, ValueError):
        value = default
    return max(1, min(value, TAXONOMY_MAX_LIMIT))


def _published_filter(query):
    return query.filter(
        Post.deleted_at.is_(None),
        Post.published_at.isnot(None),
        Post.published_at <= utc_now(),
    )


def _paged_posts(query, limit, cursor):
    from narravo.services.post_service import apply_cursor, page_with_cursor
    query = _published_filter(query)
    query = apply_cursor(query, cursor)
    query = query.order_by(Post.published_at.desc(), Post.id.desc())
    return page_with_cursor(query, clamp_limit(limit))


def get_tag_posts(slug, limit=10, cursor=None):
    """
    Published posts carrying the tag ``slug``.

    Returns:
        dict | None: ``{'tag': ..., 'items': [...], 'next_cursor': ...}``, or
        None when the tag does not exist.
    """
    tag = Tag.query.filter_by(slug=slug).first()
    if tag is None:
        return None
    query = Post.query.join(post_tags, post_tags.c.post_id == Post.id).filter(post_tags.c.tag_id == tag.id)
    page = _paged_posts(query, limit, cursor)
    page['tag'] = tag.to_dict()
    return page


def get_category_posts(slug, limit=10, cursor=None):
    category = Category.query.filter_by(slug=slug).first()
    if category is None:
        return None
    page = _paged_posts(Post.query.filter(Post.category_id == category.id), limit, cursor)
    page['category'] = category.to_dict()
    return page


def list_tags():
    """Every tag with its count of published posts, most used first."""
    counts = db.session.query(
        post_tags.c.tag_id, func.count(post_tags.c.post_id).label('post_count')
    ).join(Post, Post.id == post_tags.c.post_id).filter(
        Post.deleted_at.is_(None),
        Post.published_at.isnot(None),
        Post.published_at <= utc_now(),
    ).group_by(post_tags.c.tag_id).subquery()

    rows = db.session.query(Tag, func.coalesce(counts.c.post_count, 0)) \
        .outerjoin(counts, counts.c.tag_id == Tag.id) \
        .order_by(func.coalesce(counts.c.post_count, 0).desc(), Tag.name.asc()).all()
    return [tag.to_dict(post_count=count) for tag, count in rows]


def list_categories():
    counts = db.session.query(
        Post.category_id, func.count(Post.id).label('post_count')
    ).filter(
        Post.category_id.isnot(None),
        Post.deleted_at.is_(None),
        Post.published_at.isnot(None),
        Post.published_at <= utc_now(),
    ).group_by(Post.category_id).subquery()

    rows = db.session.query(Category, func.coalesce(counts.c.post_count, 0)) \
        .outerjoin(counts, counts.c.category_id == Category.id) \
        .order_by(Category.name.asc()).all()
    return [category.to_dict(post_count=count) for category, count in rows]


def get_post_tags(post_id):
    return [tag.to_dict() for tag in Tag.query.join(post_tags).filter(post_tags.c.post_id == post_id)
            .order_by(Tag.name).all()]


def delete_tag(tag_id):
    tag = db.session.get(Tag, tag_id)
    if tag is None:
        return False
    db.session.delete(tag)
    db.session.commit()
    logger.info("Tag %s deleted", tag.slug)
    return True
