"""Month and year archives of published posts."""

import calendar
from datetime import datetime, timezone

from sqlalchemy import func, extract

from narravo.models.post import Post
from narravo.services.config_service import config_int
from narravo.services.post_service import published_query
from narravo.utils.constants import ARCHIVE_MIN_YEAR, DEFAULT_ARCHIVE_MONTHS, DEFAULT_PAGE_SIZE
from narravo.utils.datetime_utils import utc_now


class ArchiveError(ValueError):
    pass


def validate_archive_params(year, month=None):
    """Return ``(year, month)`` as ints; raises ArchiveError when out of range."""
    try:
        year = int(year)
    except (TypeError, ValueError):
        raise ArchiveError('Invalid year')
    if year < ARCHIVE_MIN_YEAR or year > utc_now().year + 1:
        raise ArchiveError('Invalid year')
    if month is not None:
        try:
            month = int(month)
        except (TypeError, ValueError):
            raise ArchiveError('Invalid month')
        if month < 1 or month > 12:
            raise ArchiveError('Invalid month')
    return year, month


def month_label(year, month):
    return f'{calendar.month_name[month]} {year}'


def get_archive_months(limit=None):
    """``[{year, month, count, label, slug}]``, newest month first."""
    if limit is None:
        limit = config_int('ARCHIVE.MONTHS-SIDEBAR', DEFAULT_ARCHIVE_MONTHS)
    year_col = extract('year', Post.published_at)
    month_col = extract('month', Post.published_at)
    rows = published_query().with_entities(
        year_col.label('year'), month_col.label('month'), func.count(Post.id).label('count')
    ).group_by(year_col, month_col).order_by(year_col.desc(), month_col.desc()).limit(limit).all()

    months = []
    for year, month, count in rows:
        year, month = int(year), int(month)
        months.append({
            'year': year,
            'month': month,
            'count': count,
            'label': month_label(year, month),
            'slug': f'{year}/{month:02d}',
        })
    return months


def month_bounds(year, month):
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc) if month == 12 \
        else datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


def _paginate_range(start, end, page, page_size):
    page = max(1, int(page or 1))
    page_size = max(1, int(page_size or DEFAULT_PAGE_SIZE))
    query = published_query().filter(Post.published_at >= start, Post.published_at < end)
    total = query.count()
    rows = query.order_by(Post.published_at.desc(), Post.id.desc()) \
        .offset((page - 1) * page_size).limit(page_size).all()
    return {
        'items': [post.to_dict_lite() for post in rows],
        'total': total,
        'total_pages': (total + page_size - 1) // page_size,
        'page': page,
        'page_size': page_size,
    }


def get_posts_by_year(year, page=1, page_size=DEFAULT_PAGE_SIZE):
    year, _ = validate_archive_params(year)
    start = datetime(year, 1, 1, tzinfo=timezone.utc)
    end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    result = _paginate_range(start, end, page, page_size)
    result['year'] = year
    return result


def get_posts_by_month(year, month, page=1, page_size=DEFAULT_PAGE_SIZE):
    year, month = validate_archive_params(year, month)
    start, end = month_bounds(year, month)
    result = _paginate_range(start, end, page, page_size)
    result.update({'year': year, 'month': month, 'label': month_label(year, month)})
    return result


def get_month_posts(year, month, limit=None):
    """Every published post of one month, newest first (monthly feed)."""
    start, end = month_bounds(year, month)
    query = published_query().filter(Post.published_at >= start, Post.published_at < end) \
        .order_by(Post.published_at.desc(), Post.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()
