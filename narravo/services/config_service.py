"""
Typed runtime configuration with per-user overrides.

Values live in the ``configuration`` table: one global row per key (user_id
NULL) that declares the key's type, plus optional per-user override rows.
Reads go through a small in-memory cache keyed ``config:{KEY}:{user|global}``:

- entries expire after the default TTL (5 minutes, or the global
  ``SYSTEM.CACHE.DEFAULT-TTL`` in minutes) with +/-10% jitter;
- an expired entry stays usable for a stale window (20 minutes from when it
  was stored) and is served if reloading it fails;
- concurrent misses for the same cache key share a single database read;
- writes bump a per-key generation so a load that raced a write never
  repopulates the cache with the old value.

Each Flask app gets its own service instance (``app.extensions``), so test
apps never share cached values.
"""

import json
import logging
import random
import re
import threading
import time
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, Optional

from flask import current_app

from narravo import db
from narravo.models.configuration import Configuration, CONFIG_VALUE_TYPES

logger = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r'^[A-Z0-9-]+(\.[A-Z0-9-]+)*$')

DEFAULT_TTL_MINUTES = 5
DEFAULT_STALE_MINUTES = 20
TTL_CONFIG_KEY = 'SYSTEM.CACHE.DEFAULT-TTL'
TTL_RECHECK_SECONDS = 60
TTL_MIN_MINUTES = 1
TTL_MAX_MINUTES = 1440
JITTER_RATIO = 0.1
SINGLE_FLIGHT_TIMEOUT = 5.0

USER_CONFIGURABLE_KEYS = frozenset({
    'THEME',
    'USER.LANGUAGE',
    'USER.TIMEZONE',
    'USER.NOTIFICATIONS.EMAIL',
})

# Keys the application reads, with their type and default.
DEFAULT_CONFIGURATION = {
    'SYSTEM.SITE.NAME': ('string', 'Narravo', 'system'),
    'SYSTEM.CACHE.DEFAULT-TTL': ('integer', DEFAULT_TTL_MINUTES, 'system'),
    'THEME': ('string', 'system', 'appearance'),
    'USER.LANGUAGE': ('string', 'en', 'user'),
    'USER.TIMEZONE': ('string', 'UTC', 'user'),
    'USER.NOTIFICATIONS.EMAIL': ('boolean', False, 'user'),
    'COMMENTS.MAX-DEPTH': ('integer', 5, 'comments'),
    'COMMENTS.TOP-PAGE-SIZE': ('integer', 10, 'comments'),
    'COMMENTS.REPLIES-PAGE-SIZE': ('integer', 3, 'comments'),
    'MODERATION.AUTO-APPROVE-ADMIN': ('boolean', True, 'comments'),
    'RATE.COMMENTS-PER-MINUTE': ('integer', 5, 'rate'),
    'RATE.REACTIONS-PER-MINUTE': ('integer', 20, 'rate'),
    'RATE.MIN-SUBMIT-SECS': ('integer', 2, 'rate'),
    'FEED.LATEST-COUNT': ('integer', 20, 'feed'),
    'ARCHIVE.MONTHS-SIDEBAR': ('integer', 24, 'archive'),
    'VIEW.SESSION-WINDOW-MINUTES': ('integer', 30, 'analytics'),
    'VIEW.TRENDING-DAYS': ('integer', 7, 'analytics'),
    'VIEW.COUNT-BOTS': ('boolean', False, 'analytics'),
    'UPLOADS.IMAGE-MAX-BYTES': ('integer', 5 * 1024 * 1024, 'uploads'),
    'UPLOADS.VIDEO-MAX-BYTES': ('integer', 50 * 1024 * 1024, 'uploads'),
    'UPLOADS.VIDEO-MAX-DURATION-SECONDS': ('integer', 120, 'uploads'),
}

_MISSING = object()


class ConfigError(ValueError):
    """Raised for invalid keys, types or disallowed writes."""


def normalize_key(key: str) -> str:
    k = (key or '').strip().upper()
    if not KEY_PATTERN.match(k):
        raise ConfigError('Invalid configuration key format')
    return k


def minutes_to_seconds(minutes: float) -> float:
    return max(60.0, float(minutes) * 60.0)


def with_jitter(seconds: float, ratio: float = JITTER_RATIO) -> float:
    return seconds * (1 + random.uniform(-ratio, ratio))


def _is_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def ensure_type(value_type: str, value: Any) -> bool:
    """Return True when ``value`` is acceptable for the declared type."""
    if value_type == 'string':
        return isinstance(value, str)
    if value_type == 'integer':
        return _is_int(value)
    if value_type == 'number':
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if value_type == 'boolean':
        return isinstance(value, bool)
    if value_type == 'date':
        if not isinstance(value, str):
            return False
        try:
            date.fromisoformat(value)
        except ValueError:
            return False
        return True
    if value_type == 'datetime':
        if not isinstance(value, str):
            return False
        try:
            datetime.fromisoformat(value[:-1] + '+00:00' if value.endswith('Z') else value)
        except ValueError:
            return False
        return True
    if value_type == 'json':
        try:
            json.dumps(value)
        except (TypeError, ValueError):
            return False
        return True
    return False


def _json_equal(a: Any, b: Any) -> bool:
    return json.dumps(a, sort_keys=True) == json.dumps(b, sort_keys=True)


def _check_allowed(value: Any, allowed_values: Optional[list]) -> None:
    if allowed_values is None:
        return
    if not any(_json_equal(value, candidate) for candidate in allowed_values):
        raise ConfigError('Value not in allowed_values')


class _CacheEntry:
    __slots__ = ('value', 'expires_at', 'stale_until')

    def __init__(self, value, expires_at, stale_until):
        self.value = value
        self.expires_at = expires_at
        self.stale_until = stale_until


class ConfigService:
    def __init__(self, allow_user_overrides: Optional[Iterable[str]] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.allow_user_overrides = frozenset(normalize_key(k) for k in (allow_user_overrides or ()))
        self._clock = clock
        self._cache: Dict[str, _CacheEntry] = {}
        self._inflight: Dict[str, threading.Event] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._ttl_seconds = minutes_to_seconds(DEFAULT_TTL_MINUTES)
        self._ttl_checked_at: Optional[float] = None

    def init_app(self, app):
        app.extensions['config_service'] = self
        return self

    # -- cache plumbing -------------------------------------------------

    @staticmethod
    def cache_key(key: str, user_id: Optional[int]) -> str:
        return f"config:{key}:{user_id if user_id is not None else 'global'}"

    def _default_ttl(self) -> float:
        now = self._clock()
        if self._ttl_checked_at is not None and now - self._ttl_checked_at < TTL_RECHECK_SECONDS:
            return self._ttl_seconds
        self._ttl_checked_at = now
        row = Configuration.query.filter_by(key=TTL_CONFIG_KEY, user_id=None).first()
        minutes = row.value if row is not None else None
        if _is_int(minutes) and TTL_MIN_MINUTES <= minutes <= TTL_MAX_MINUTES:
            self._ttl_seconds = minutes_to_seconds(minutes)
        else:
            self._ttl_seconds = minutes_to_seconds(DEFAULT_TTL_MINUTES)
        return self._ttl_seconds

    def _store(self, ck: str, value: Any, generation: int) -> None:
        now = self._clock()
        ttl = with_jitter(self._default_ttl())
        with self._lock:
            if self._generations.get(ck, 0) != generation:
                return
            self._cache[ck] = _CacheEntry(value, now + ttl, now + minutes_to_seconds(DEFAULT_STALE_MINUTES))

    def _cached(self, ck: str, loader: Callable[[], Any]) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._cache.get(ck)
            if entry is not None and now < entry.expires_at:
                return entry.value
            stale = entry if entry is not None and now < entry.stale_until else None
            event = self._inflight.get(ck)
            owner = event is None
            if owner:
                event = threading.Event()
                self._inflight[ck] = event
            generation = self._generations.get(ck, 0)

        if not owner:
            event.wait(SINGLE_FLIGHT_TIMEOUT)
            with self._lock:
                entry = self._cache.get(ck)
            if entry is not None and self._clock() < entry.stale_until:
                return entry.value
            return loader()

        try:
            value = loader()
        except Exception as e:
            if stale is None:
                raise
            logger.warning("Config reload failed for %s, serving stale value: %s", ck, e)
            return stale.value
        else:
            self._store(ck, value, generation)
            return value
        finally:
            with self._lock:
                self._inflight.pop(ck, None)
            event.set()

    def invalidate(self, key: str, user_id: Optional[int] = None) -> None:
        """Drop cached values for a key; without a user every scope of the key goes."""
        k = normalize_key(key)
        with self._lock:
            if user_id is None:
                prefix = f'config:{k}:'
                targets = [ck for ck in self._cache if ck.startswith(prefix)]
                targets += [ck for ck in self._generations if ck.startswith(prefix)]
                targets.append(self.cache_key(k, None))
            else:
                targets = [self.cache_key(k, user_id)]
            for ck in set(targets):
                self._cache.pop(ck, None)
                self._generations[ck] = self._generations.get(ck, 0) + 1
            if k == TTL_CONFIG_KEY:
                self._ttl_checked_at = None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._generations.clear()
            self._ttl_checked_at = None

    # -- reads ----------------------------------------------------------

    @staticmethod
    def _read_effective(key: str, user_id: Optional[int]):
        """Return the user's override when present, else the global row value."""
        if user_id is not None:
            row = Configuration.query.filter_by(key=key, user_id=user_id).first()
            if row is not None:
                return row.value
        row = Configuration.query.filter_by(key=key, user_id=None).first()
        if row is None:
            return None
        return row.value

    def _get(self, key: str, user_id: Optional[int]) -> Any:
        k = normalize_key(key)
        return self._cached(self.cache_key(k, user_id), lambda: self._read_effective(k, user_id))

    def get_value(self, key: str, user_id: Optional[int] = None) -> Any:
        return self._get(key, user_id)

    def get_string(self, key: str, user_id: Optional[int] = None, default: Optional[str] = None) -> Optional[str]:
        value = self._get(key, user_id)
        return value if isinstance(value, str) else default

    def get_number(self, key: str, user_id: Optional[int] = None, default=None):
        value = self._get(key, user_id)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        return default

    def get_integer(self, key: str, user_id: Optional[int] = None, default: Optional[int] = None) -> Optional[int]:
        value = self._get(key, user_id)
        return int(value) if _is_int(value) else default

    def get_boolean(self, key: str, user_id: Optional[int] = None, default: Optional[bool] = None) -> Optional[bool]:
        value = self._get(key, user_id)
        return value if isinstance(value, bool) else default

    def get_json(self, key: str, user_id: Optional[int] = None, default=None):
        value = self._get(key, user_id)
        return default if value is None else value

    def get_global_type(self, key: str) -> Optional[str]:
        row = Configuration.query.filter_by(key=normalize_key(key), user_id=None).first()
        return row.type if row else None

    def list_globals(self, category: Optional[str] = None):
        query = Configuration.query.filter(Configuration.user_id.is_(None))
        if category:
            query = query.filter_by(category=category)
        return query.order_by(Configuration.category, Configuration.key).all()

    def list_user_overrides(self, user_id: int):
        return Configuration.query.filter_by(user_id=user_id).order_by(Configuration.key).all()

    def can_user_override(self, key: str) -> bool:
        k = normalize_key(key)
        return not self.allow_user_overrides or k in self.allow_user_overrides

    # -- writes ---------------------------------------------------------

    def set_global(self, key: str, value: Any, type: Optional[str] = None,
                   allowed_values: Any = _MISSING, required: Optional[bool] = None,
                   category: Optional[str] = None, description: Optional[str] = None) -> Configuration:
        k = normalize_key(key)
        if type is not None and type not in CONFIG_VALUE_TYPES:
            raise ConfigError(f'Unknown configuration type: {type}')

        row = Configuration.query.filter_by(key=k, user_id=None).first()
        if row is None and type is None:
            raise ConfigError('Global config type required on first set')

        value_type = type or row.type
        if not ensure_type(value_type, value):
            raise ConfigError('Value does not match declared type')

        effective_allowed = row.allowed_values if row is not None else None
        if allowed_values is not _MISSING:
            if allowed_values is not None and not isinstance(allowed_values, list):
                raise ConfigError('allowed_values must be a list')
            effective_allowed = allowed_values
        _check_allowed(value, effective_allowed)

        if row is None:
            row = Configuration(key=k, user_id=None)
            db.session.add(row)
        row.type = value_type
        row.value = value
        row.allowed_values = effective_allowed
        if required is not None:
            row.required = required
        if category is not None:
            row.category = category
        if description is not None:
            row.description = description
        db.session.commit()

        self.invalidate(k)
        logger.info("Configuration %s updated (global)", k)
        return row

    def set_user_override(self, key: str, user_id: int, value: Any) -> Configuration:
        k = normalize_key(key)
        if not self.can_user_override(k):
            raise ConfigError(f'User overrides not allowed for key: {k}')

        global_row = Configuration.query.filter_by(key=k, user_id=None).first()
        if global_row is None:
            raise ConfigError('Cannot set user override without existing global type')
        if not ensure_type(global_row.type, value):
            raise ConfigError('Value does not match declared type')
        _check_allowed(value, global_row.allowed_values)

        row = Configuration.query.filter_by(key=k, user_id=user_id).first()
        if row is None:
            row = Configuration(key=k, user_id=user_id, type=global_row.type)
            db.session.add(row)
        row.type = global_row.type
        row.value = value
        db.session.commit()

        self.invalidate(k, user_id)
        return row

    def delete_user_override(self, key: str, user_id: int) -> bool:
        k = normalize_key(key)
        if not self.can_user_override(k):
            raise ConfigError(f'User overrides not allowed for key: {k}')
        deleted = Configuration.query.filter_by(key=k, user_id=user_id).delete()
        db.session.commit()
        self.invalidate(k, user_id)
        return deleted > 0

    def delete_global(self, key: str) -> int:
        """Remove the global row and every user override of the key."""
        k = normalize_key(key)
        deleted = Configuration.query.filter_by(key=k).delete()
        db.session.commit()
        self.invalidate(k)
        logger.info("Configuration %s deleted (%d rows)", k, deleted)
        return deleted

    def seed_defaults(self, overwrite: bool = False) -> int:
        """Write DEFAULT_CONFIGURATION rows that do not exist yet."""
        written = 0
        for key, (value_type, value, category) in DEFAULT_CONFIGURATION.items():
            exists = Configuration.query.filter_by(key=key, user_id=None).first() is not None
            if exists and not overwrite:
                continue
            self.set_global(key, value, type=value_type, category=category)
            written += 1
        return written


def get_config_service() -> ConfigService:
    return current_app.extensions['config_service']


def config_int(key: str, default: int, user_id: Optional[int] = None) -> int:
    """Integer setting with a fallback for unknown keys or type mismatches."""
    return get_config_service().get_integer(key, user_id=user_id, default=default)


def config_bool(key: str, default: bool, user_id: Optional[int] = None) -> bool:
    return get_config_service().get_boolean(key, user_id=user_id, default=default)
