"""
Post view tracking and reporting.

Views are recorded as raw events (with a salted HMAC of the client IP, never
the IP itself), rolled up into ``post_daily_views`` and mirrored on
``posts.views_total`` for cheap listing.
"""

import hashlib
import hmac
import logging
import re
from datetime import timedelta
from urllib.parse import urlparse

from flask import current_app
from sqlalchemy import func, desc
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from narravo import db
from narravo.models.analytics import PostDailyView, PostViewEvent
from narravo.models.comment import Comment
from narravo.models.post import Post
from narravo.models.user import User
from narravo.services.config_service import config_int, config_bool
from narravo.utils.constants import (
    DEFAULT_SESSION_WINDOW_MINUTES,
    DEFAULT_TRENDING_DAYS,
    SPARKLINE_DAYS,
    MAX_ANALYTICS_DAYS,
)
from narravo.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

BOT_PATTERN = re.compile(r'bot|spider|crawl|slurp|headless|puppeteer|selenium|playwright|httpclient', re.I)
LANG_PATTERN = re.compile(r'^([a-z]{2}(?:-[A-Z]{2})?)')


def is_bot(user_agent, referer=None):
    """A missing user agent counts as a bot unless a referer came with it."""
    if not user_agent:
        return not referer
    return bool(BOT_PATTERN.search(user_agent))


def hash_ip(ip):
    salt = current_app.config.get('ANALYTICS_IP_SALT')
    if not ip or not salt:
        return None
    return hmac.new(salt.encode('utf-8'), ip.encode('utf-8'), hashlib.sha256).hexdigest()


def parse_referer(referer):
    if not referer:
        return None, None
    parsed = urlparse(referer)
    if not parsed.scheme or not parsed.hostname:
        return None, None
    return parsed.hostname, parsed.path or '/'


def parse_language(accept_language):
    if not accept_language:
        return None
    match = LANG_PATTERN.match(accept_language.strip())
    return match.group(1) if match else None


def _clamp_days(days, default):
    try:
        days = int(days)
    except (TypeError, ValueError):
        days = default
    return max(1, min(days, MAX_ANALYTICS_DAYS))


UPSERT_INSERTS = {
    'postgresql': postgresql_insert,
    'sqlite': sqlite_insert,
}


def _increment_daily_views(post_id, day):
    """INSERT ... ON CONFLICT (day, post_id) DO UPDATE views = views + 1."""
    dialect = db.session.get_bind().dialect.name
    insert = UPSERT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f'Daily view upsert is not supported on {dialect}')
    stmt = insert(PostDailyView).values(day=day, post_id=post_id, views=1)
    stmt = stmt.on_conflict_do_update(
        index_elements=[PostDailyView.day, PostDailyView.post_id],
        set_={'views': PostDailyView.views + 1},
    )
    db.session.execute(stmt)


def record_view(post_id, session_id=None, ip=None, user_agent=None, referer=None, accept_language=None):
    """
    Count one view unless it is a bot or a repeat inside the session window.

    Returns:
        bool: whether the view was counted
    """
    bot = is_bot(user_agent, referer)
    if bot and not config_bool('VIEW.COUNT-BOTS', False):
        return False

    post = db.session.get(Post, post_id)
    if post is None or post.is_deleted:
        return False

    window = config_int('VIEW.SESSION-WINDOW-MINUTES', DEFAULT_SESSION_WINDOW_MINUTES)
    window_start = utc_now() - timedelta(minutes=window)
    ip_hash = hash_ip(ip)

    recent = PostViewEvent.query.filter(PostViewEvent.post_id == post_id, PostViewEvent.ts >= window_start)
    if session_id:
        if recent.filter(PostViewEvent.session_id == session_id).first() is not None:
            return False
    elif ip_hash:
        if recent.filter(PostViewEvent.ip_hash == ip_hash).first() is not None:
            return False

    referer_host, referer_path = parse_referer(referer)
    db.session.add(PostViewEvent(
        post_id=post_id,
        session_id=session_id,
        ip_hash=ip_hash,
        user_agent=(user_agent or '')[:512] or None,
        referer_host=referer_host,
        referer_path=referer_path,
        user_lang=parse_language(accept_language),
        bot=bot,
    ))
    Post.query.filter_by(id=post_id).update({Post.views_total: Post.views_total + 1})

    _increment_daily_views(post_id, utc_now().date())
    db.session.commit()
    return True


def get_trending_posts(days=None, limit=5):
    if days is None:
        days = config_int('VIEW.TRENDING-DAYS', DEFAULT_TRENDING_DAYS)
    since = utc_now().date() - timedelta(days=_clamp_days(days, DEFAULT_TRENDING_DAYS) - 1)
    views = func.sum(PostDailyView.views).label('views')
    rows = db.session.query(Post, views) \
        .join(PostDailyView, PostDailyView.post_id == Post.id) \
        .filter(PostDailyView.day >= since, Post.deleted_at.is_(None), Post.published_at.isnot(None)) \
        .group_by(Post.id).order_by(desc('views'), Post.id.desc()).limit(limit).all()

    trending = []
    for post, count in rows:
        item = post.to_dict_lite()
        item['views_last_n_days'] = int(count or 0)
        trending.append(item)
    return trending


def get_post_view_counts(ids, days=None):
    """``{post_id: {'total_views', 'views_last_n_days'}}``."""
    ids = list(ids or [])
    result = {post_id: {'total_views': 0, 'views_last_n_days': 0} for post_id in ids}
    if not ids:
        return result
    if days is None:
        days = config_int('VIEW.TRENDING-DAYS', DEFAULT_TRENDING_DAYS)
    since = utc_now().date() - timedelta(days=_clamp_days(days, DEFAULT_TRENDING_DAYS) - 1)

    for post_id, total in db.session.query(Post.id, Post.views_total).filter(Post.id.in_(ids)).all():
        result[post_id]['total_views'] = total or 0
    recent = db.session.query(PostDailyView.post_id, func.sum(PostDailyView.views)).filter(
        PostDailyView.post_id.in_(ids), PostDailyView.day >= since
    ).group_by(PostDailyView.post_id).all()
    for post_id, count in recent:
        result[post_id]['views_last_n_days'] = int(count or 0)
    return result


def _daily_series(rows, days):
    by_day = {day: int(views or 0) for day, views in rows}
    today = utc_now().date()
    series = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        series.append({'day': day.isoformat(), 'views': by_day.get(day, 0)})
    return series


def get_post_sparkline(post_id, days=SPARKLINE_DAYS):
    """Daily views for the last ``days`` days, oldest first, zero-filled."""
    days = _clamp_days(days, SPARKLINE_DAYS)
    since = utc_now().date() - timedelta(days=days - 1)
    rows = db.session.query(PostDailyView.day, PostDailyView.views).filter(
        PostDailyView.post_id == post_id, PostDailyView.day >= since
    ).all()
    return _daily_series(rows, days)


def get_site_analytics(days=30):
    days = _clamp_days(days, 30)
    since_day = utc_now().date() - timedelta(days=days - 1)
    since_ts = utc_now() - timedelta(days=days)

    daily_rows = db.session.query(PostDailyView.day, func.sum(PostDailyView.views)) \
        .filter(PostDailyView.day >= since_day).group_by(PostDailyView.day).all()
    series = _daily_series(daily_rows, days)

    unique_sessions = db.session.query(func.count(func.distinct(PostViewEvent.session_id))) \
        .filter(PostViewEvent.ts >= since_ts, PostViewEvent.session_id.isnot(None)).scalar() or 0

    top_referrers = db.session.query(PostViewEvent.referer_host, func.count(PostViewEvent.id).label('views')) \
        .filter(PostViewEvent.ts >= since_ts, PostViewEvent.referer_host.isnot(None)) \
        .group_by(PostViewEvent.referer_host).order_by(desc('views')).limit(10).all()

    return {
        'days': days,
        'total_views': sum(point['views'] for point in series),
        'unique_sessions': unique_sessions,
        'top_posts': get_trending_posts(days=days, limit=10),
        'top_referrers': [{'host': host, 'views': views} for host, views in top_referrers],
        'daily': series,
    }


def get_dashboard_stats():
    """Headline numbers for the admin dashboard."""
    now = utc_now()
    last_week = now - timedelta(days=7)
    total_views = db.session.query(func.coalesce(func.sum(Post.views_total), 0)) \
        .filter(Post.deleted_at.is_(None)).scalar()

    return {
        'posts': {
            'total': Post.query.filter(Post.deleted_at.is_(None)).count(),
            'published': Post.query.filter(
                Post.deleted_at.is_(None), Post.published_at.isnot(None), Post.published_at <= now
            ).count(),
            'drafts': Post.query.filter(Post.deleted_at.is_(None), Post.published_at.is_(None)).count(),
            'deleted': Post.query.filter(Post.deleted_at.isnot(None)).count(),
        },
        'comments': {
            'approved': Comment.query.filter_by(status='approved').count(),
            'pending': Comment.query.filter_by(status='pending').count(),
            'spam': Comment.query.filter_by(status='spam').count(),
            'last_7_days': Comment.query.filter(Comment.created_at >= last_week).count(),
        },
        'users': {
            'total': User.query.count(),
            'new_last_7_days': User.query.filter(User.created_at >= last_week).count(),
        },
        'views': {
            'total': int(total_views or 0),
            'last_7_days': int(db.session.query(func.coalesce(func.sum(PostDailyView.views), 0))
                               .filter(PostDailyView.day >= (now - timedelta(days=6)).date()).scalar() or 0),
        },
    }
