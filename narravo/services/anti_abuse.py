"""
In-process anti-abuse checks for comment and reaction submissions.

Three layers run in order: a honeypot field that must stay empty, a minimum
time between rendering the form and submitting it, and a sliding-window rate
limit keyed on ``{action}:{user_id}:{ip}``. State is kept in memory and is
per-process; Flask-Limiter (backed by REDIS_URL) remains the coarse
per-endpoint limiter.

The two-factor endpoints use a separate fixed-window counter.
"""

import ipaddress
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Mapping, Optional, Tuple

from flask import current_app

from narravo.services.config_service import config_int
from narravo.utils.constants import (
    RATE_LIMIT_WINDOW_SECONDS,
    RATE_LIMIT_RETENTION_SECONDS,
    DEFAULT_COMMENTS_PER_MINUTE,
    DEFAULT_REACTIONS_PER_MINUTE,
    DEFAULT_MIN_SUBMIT_SECONDS,
    TWO_FACTOR_MAX_ATTEMPTS,
    TWO_FACTOR_WINDOW_SECONDS,
)

IP_HEADERS = (
    'x-forwarded-for',
    'x-real-ip',
    'x-client-ip',
    'cf-connecting-ip',
    'true-client-ip',
    'x-cluster-client-ip',
)

ACTION_LIMIT_KEYS = {
    'comment': ('RATE.COMMENTS-PER-MINUTE', DEFAULT_COMMENTS_PER_MINUTE),
    'reaction': ('RATE.REACTIONS-PER-MINUTE', DEFAULT_REACTIONS_PER_MINUTE),
}


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_time: float
    retry_after: Optional[int] = None

    def to_dict(self):
        return {
            'allowed': self.allowed,
            'limit': self.limit,
            'remaining': self.remaining,
            'reset_time': self.reset_time,
            'retry_after': self.retry_after,
        }


@dataclass
class AntiAbuseResult:
    ok: bool
    error: Optional[str] = None
    rate_limit: Optional[RateLimitResult] = field(default=None)


class SlidingWindowRateLimiter:
    """Timestamps per key; a request is allowed while fewer than ``limit`` fall in the window."""

    def __init__(self, window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def _window(self, key: str, now: float) -> Deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            hits = deque()
            self._hits[key] = hits
        cutoff = now - self.window_seconds
        while hits and hits[0] <= cutoff:
            hits.popleft()
        return hits

    def _result(self, hits: Deque[float], limit: int, now: float, recorded: bool) -> RateLimitResult:
        count = len(hits)
        oldest = hits[0] if hits else now
        reset_time = oldest + self.window_seconds
        if count >= limit:
            retry_after = max(1, math.ceil(reset_time - now))
            return RateLimitResult(False, limit, 0, reset_time, retry_after)
        remaining = limit - count - 1 if recorded else limit - count
        return RateLimitResult(True, limit, remaining, reset_time)

    def check_limit(self, key: str, limit: int) -> RateLimitResult:
        """Report the state of ``key`` without counting a request."""
        now = self._clock()
        with self._lock:
            self._maybe_cleanup(now)
            return self._result(self._window(key, now), limit, now, recorded=False)

    def record_request(self, key: str, limit: int) -> RateLimitResult:
        """Check and, when allowed, count one request under a single lock."""
        now = self._clock()
        with self._lock:
            self._maybe_cleanup(now)
            hits = self._window(key, now)
            result = self._result(hits, limit, now, recorded=True)
            if result.allowed:
                hits.append(now)
                while len(hits) > limit:
                    hits.popleft()
        return result

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup >= RATE_LIMIT_RETENTION_SECONDS:
            self._cleanup_locked(now)

    def _cleanup_locked(self, now: float) -> None:
        cutoff = now - RATE_LIMIT_RETENTION_SECONDS
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]
        self._last_cleanup = now

    def cleanup(self) -> None:
        with self._lock:
            self._cleanup_locked(self._clock())

    def reset(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._hits.clear()
            else:
                self._hits.pop(key, None)

    def __len__(self):
        return len(self._hits)


class FixedWindowRateLimiter:
    """Attempt counter that resets once its window has elapsed."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._windows: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def is_rate_limited(self, key: str, max_attempts: int = TWO_FACTOR_MAX_ATTEMPTS,
                        window_seconds: int = TWO_FACTOR_WINDOW_SECONDS) -> bool:
        """Count an attempt; True once the attempt exceeds ``max_attempts`` in the window."""
        now = self._clock()
        with self._lock:
            count, reset_at = self._windows.get(key, (0, now + window_seconds))
            if now >= reset_at:
                count, reset_at = 0, now + window_seconds
            count += 1
            self._windows[key] = (count, reset_at)
            return count > max_attempts

    def get_remaining_attempts(self, key: str, max_attempts: int = TWO_FACTOR_MAX_ATTEMPTS) -> int:
        now = self._clock()
        with self._lock:
            count, reset_at = self._windows.get(key, (0, now))
            if now >= reset_at:
                return max_attempts
            return max(0, max_attempts - count)

    def reset_rate_limit(self, key: str) -> None:
        with self._lock:
            self._windows.pop(key, None)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def init_anti_abuse(app):
    app.extensions['submission_limiter'] = SlidingWindowRateLimiter()
    app.extensions['two_factor_limiter'] = FixedWindowRateLimiter()


def get_submission_limiter() -> SlidingWindowRateLimiter:
    return current_app.extensions['submission_limiter']


def get_two_factor_limiter() -> FixedWindowRateLimiter:
    return current_app.extensions['two_factor_limiter']


def _valid_ip(value: str) -> Optional[str]:
    candidate = (value or '').strip()
    if not candidate:
        return None
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return None


def get_client_ip(headers: Mapping[str, str], remote_addr: Optional[str] = None) -> str:
    """First valid address from the proxy headers, then the socket peer."""
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in IP_HEADERS:
        raw = lowered.get(name)
        if not raw:
            continue
        if name == 'x-forwarded-for':
            raw = raw.split(',')[0]
        ip = _valid_ip(raw)
        if ip:
            return ip
    return _valid_ip(remote_addr) or 'unknown'


def check_honeypot(value: Optional[str]) -> bool:
    """Bots fill every field; people never see this one."""
    return value is None or not str(value).strip()


def check_submit_timing(submit_start_time: Optional[float], min_seconds: float = DEFAULT_MIN_SUBMIT_SECONDS,
                        now: Optional[float] = None) -> bool:
    """``submit_start_time`` is a unix timestamp in seconds or milliseconds."""
    if submit_start_time is None:
        return True
    started = float(submit_start_time)
    if started > 1e11:
        started /= 1000.0
    current = time.time() if now is None else now
    return current - started >= min_seconds


def rate_limit_key(action: str, user_id, ip: str) -> str:
    return f"{action}:{user_id if user_id is not None else 'anonymous'}:{ip}"


def validate_anti_abuse(user_id, action: str, headers: Mapping[str, str], remote_addr: Optional[str] = None,
                        honeypot: Optional[str] = None, submit_start_time: Optional[float] = None,
                        limiter: Optional[SlidingWindowRateLimiter] = None,
                        limit: Optional[int] = None, min_submit_seconds: Optional[float] = None) -> AntiAbuseResult:
    """Honeypot, then timing, then the sliding-window limit."""
    if not check_honeypot(honeypot):
        return AntiAbuseResult(False, 'Invalid form submission')

    if min_submit_seconds is None:
        min_submit_seconds = config_int('RATE.MIN-SUBMIT-SECS', DEFAULT_MIN_SUBMIT_SECONDS)
    if not check_submit_timing(submit_start_time, min_submit_seconds):
        return AntiAbuseResult(
            False, f'Submission too fast. Please wait at least {int(min_submit_seconds)} seconds.'
        )

    if limit is None:
        config_key, default_limit = ACTION_LIMIT_KEYS.get(action, (None, DEFAULT_COMMENTS_PER_MINUTE))
        if config_key:
            limit = config_int(config_key, default_limit)
        else:
            limit = default_limit

    limiter = limiter or get_submission_limiter()
    ip = get_client_ip(headers, remote_addr)
    result = limiter.record_request(rate_limit_key(action, user_id, ip), limit)
    if not result.allowed:
        return AntiAbuseResult(False, f'Rate limit exceeded. Try again in {result.retry_after} seconds.', result)
    return AntiAbuseResult(True, None, result)
