from flask import Blueprint, Response, current_app
from narravo import cache
from narravo.services.archive_service import validate_archive_params, get_month_posts, month_label, ArchiveError
from narravo.services.config_service import config_int, get_config_service
from narravo.services.feed_service import build_rss, build_sitemap, build_robots, latest_posts
from narravo.utils.constants import DEFAULT_FEED_COUNT, FEED_CACHE_TTL
from narravo.utils.responses import error_response
import logging

logger = logging.getLogger(__name__)

feeds_bp = Blueprint('feeds', __name__)

RSS_MIMETYPE = 'application/rss+xml; charset=utf-8'


def _site():
    site_url = current_app.config['SITE_URL']
    name = get_config_service().get_string('SYSTEM.SITE.NAME') or current_app.config['SITE_NAME']
    return site_url, name


@feeds_bp.route('/feed.xml', methods=['GET'])
@cache.cached(timeout=FEED_CACHE_TTL)
def latest_feed():
    try:
        site_url, name = _site()
        posts = latest_posts(config_int('FEED.LATEST-COUNT', DEFAULT_FEED_COUNT))
        xml = build_rss(posts, site_url, name, f'Latest posts from {name}', f'{site_url}/feed.xml')
        return Response(xml, mimetype=RSS_MIMETYPE)
    except Exception as e:
        logger.error("Error building feed: %s", e)
        return error_response('Internal server error', 500)


@feeds_bp.route('/rss-feed/<year>/<month>', methods=['GET'])
@cache.cached(timeout=FEED_CACHE_TTL)
def monthly_feed(year, month):
    try:
        year, month = validate_archive_params(year, month)
    except ArchiveError as e:
        return error_response(str(e), 400)
    try:
        site_url, name = _site()
        label = month_label(year, month)
        xml = build_rss(
            get_month_posts(year, month),
            site_url,
            f'{name}: {label}',
            f'Posts from {label}',
            f'{site_url}/rss-feed/{year}/{month:02d}',
        )
        return Response(xml, mimetype=RSS_MIMETYPE)
    except Exception as e:
        logger.error("Error building monthly feed %s/%s: %s", year, month, e)
        return error_response('Internal server error', 500)


@feeds_bp.route('/sitemap.xml', methods=['GET'])
@cache.cached(timeout=FEED_CACHE_TTL)
def sitemap():
    try:
        return Response(build_sitemap(current_app.config['SITE_URL']), mimetype='application/xml')
    except Exception as e:
        logger.error("Error building sitemap: %s", e)
        return error_response('Internal server error', 500)


@feeds_bp.route('/robots.txt', methods=['GET'])
def robots():
    return Response(build_robots(current_app.config['SITE_URL']), mimetype='text/plain')
