"""
Legacy URL redirects (mostly created by the WordPress importer).

The whole table is loaded into a per-app ``TTLCache`` and refreshed at most
once a minute; admin writes drop the cached copy immediately.
"""

import logging

from cachetools import TTLCache
from flask import current_app, redirect, request

from narravo import db
from narravo.models.redirect import Redirect
from narravo.utils.constants import REDIRECT_CACHE_TTL

logger = logging.getLogger(__name__)

ALLOWED_STATUSES = (301, 302, 307, 308)
_TABLE_KEY = 'table'


class RedirectError(ValueError):
    pass


def init_redirects(app):
    app.extensions['redirect_cache'] = TTLCache(maxsize=1, ttl=REDIRECT_CACHE_TTL)

    @app.before_request
    def apply_redirects():
        if request.method not in ('GET', 'HEAD') or request.path.startswith('/api'):
            return None
        match = lookup(request.path)
        if match is None:
            return None
        to_path, status = match
        return redirect(to_path, code=status)


def _cache():
    return current_app.extensions['redirect_cache']


def load_redirect_map():
    cache = _cache()
    table = cache.get(_TABLE_KEY)
    if table is None:
        table = {row.from_path: (row.to_path, row.status) for row in Redirect.query.all()}
        cache[_TABLE_KEY] = table
    return table


def invalidate_cache():
    _cache().clear()


def normalize_path(path):
    path = (path or '').strip()
    if not path:
        raise RedirectError('Path is required')
    if '://' in path:
        raise RedirectError('Redirect source must be a path')
    return path if path.startswith('/') else f'/{path}'


def lookup(path):
    """Exact path first, then the same path with and without a trailing slash."""
    table = load_redirect_map()
    if not table:
        return None
    candidates = [path]
    if path.endswith('/') and len(path) > 1:
        candidates.append(path.rstrip('/'))
    else:
        candidates.append(f'{path}/')
    for candidate in candidates:
        hit = table.get(candidate)
        if hit is not None:
            return hit
    return None


def list_redirects():
    return Redirect.query.order_by(Redirect.from_path).all()


def create_redirect(from_path, to_path, status=301, commit=True):
    from_path = normalize_path(from_path)
    to_path = (to_path or '').strip()
    if not to_path:
        raise RedirectError('Destination is required')
    if status not in ALLOWED_STATUSES:
        raise RedirectError(f'Unsupported redirect status: {status}')
    if from_path == to_path:
        raise RedirectError('Redirect source and destination are the same')

    row = Redirect.query.filter_by(from_path=from_path).first()
    if row is None:
        row = Redirect(from_path=from_path, to_path=to_path, status=status)
        db.session.add(row)
    else:
        row.to_path = to_path
        row.status = status
    if commit:
        db.session.commit()
        invalidate_cache()
    return row


def delete_redirect(redirect_id):
    row = db.session.get(Redirect, redirect_id)
    if row is None:
        return False
    db.session.delete(row)
    db.session.commit()
    invalidate_cache()
    logger.info("Redirect %s removed", row.from_path)
    return True
