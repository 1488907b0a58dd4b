"""Public post search over title, body and excerpt."""

import logging

from sqlalchemy import case, or_

from narravo.models.post import Post
from narravo.services.post_service import published_query
from narravo.utils.constants import SEARCH_MIN_LENGTH, SEARCH_MAX_LENGTH, TAXONOMY_MAX_LIMIT
from narravo.utils.validation import escape_like

logger = logging.getLogger(__name__)


class SearchError(ValueError):
    pass


def search_posts(q, page=1, page_size=10):
    """
    Case-insensitive substring search, ranked by where the term matched.

    Title matches score 2; body and excerpt matches score 1 each. Ties fall
    back to recency.

    Raises:
        SearchError: when the trimmed query is outside 2..100 characters
    """
    q = (q or '').strip()
    if len(q) < SEARCH_MIN_LENGTH or len(q) > SEARCH_MAX_LENGTH:
        raise SearchError(
            f'Search query must be between {SEARCH_MIN_LENGTH} and {SEARCH_MAX_LENGTH} characters'
        )
    page = max(1, int(page or 1))
    page_size = max(1, min(int(page_size or 10), TAXONOMY_MAX_LIMIT))

    term = f'%{escape_like(q)}%'
    title_match = Post.title.ilike(term, escape='\\')
    body_match = or_(Post.body_html.ilike(term, escape='\\'), Post.body_md.ilike(term, escape='\\'))
    excerpt_match = Post.excerpt.ilike(term, escape='\\')

    score = (
        case((title_match, 2), else_=0)
        + case((body_match, 1), else_=0)
        + case((excerpt_match, 1), else_=0)
    ).label('score')

    base = published_query().filter(or_(title_match, body_match, excerpt_match))
    total = base.count()

    rows = base.with_entities(Post, score) \
        .order_by(score.desc(), Post.published_at.desc(), Post.id.desc()) \
        .offset((page - 1) * page_size).limit(page_size).all()

    items = []
    for post, post_score in rows:
        item = post.to_dict_lite()
        item['score'] = int(post_score or 0)
        items.append(item)

    return {
        'items': items,
        'total': total,
        'page': page,
        'page_size': page_size,
        'has_more': page * page_size < total,
    }
