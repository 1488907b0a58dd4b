"""
Tests for submission rate limiting, honeypot and timing checks.
"""
import threading
import time

import pytest

from narravo.services.anti_abuse import (
    FixedWindowRateLimiter,
    SlidingWindowRateLimiter,
    check_honeypot,
    check_submit_timing,
    get_client_ip,
    rate_limit_key,
    validate_anti_abuse,
)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestSlidingWindow:
    def test_allows_up_to_limit(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=clock)

        results = [limiter.record_request('k', 3) for _ in range(4)]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert [r.remaining for r in results[:3]] == [2, 1, 0]
        assert results[3].retry_after == 60

    def test_check_limit_does_not_count(self):
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=FakeClock())
        assert limiter.check_limit('k', 3).remaining == 3
        limiter.record_request('k', 3)
        result = limiter.check_limit('k', 3)
        assert result.allowed
        assert result.remaining == 2
        assert limiter.check_limit('k', 3).remaining == 2

    def test_concurrent_requests_never_exceed_limit(self):
        def slow_clock():
            time.sleep(0.001)
            return 1_700_000_000.0

        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=slow_clock)
        barrier = threading.Barrier(20)
        results = []

        def submit():
            barrier.wait()
            results.append(limiter.record_request('k', 5))

        threads = [threading.Thread(target=submit) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sum(r.allowed for r in results) == 5

    def test_window_slides(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=clock)
        limiter.record_request('k', 2)
        clock.now += 30
        limiter.record_request('k', 2)
        assert not limiter.record_request('k', 2).allowed

        clock.now += 31
        result = limiter.record_request('k', 2)
        assert result.allowed
        assert result.remaining == 0

    def test_retry_after_counts_from_oldest_hit(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=clock)
        limiter.record_request('k', 1)
        clock.now += 45
        assert limiter.record_request('k', 1).retry_after == 15

    def test_keys_are_independent(self):
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=FakeClock())
        assert limiter.record_request('a', 1).allowed
        assert limiter.record_request('b', 1).allowed
        assert not limiter.record_request('a', 1).allowed

    def test_cleanup_drops_idle_keys(self):
        clock = FakeClock()
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=clock)
        limiter.record_request('a', 5)
        clock.now += 3 * 3600
        limiter.cleanup()
        assert len(limiter) == 0


class TestFixedWindow:
    def test_blocks_after_max_attempts(self):
        clock = FakeClock()
        limiter = FixedWindowRateLimiter(clock=clock)
        outcomes = [limiter.is_rate_limited('2fa:1', max_attempts=5, window_seconds=60) for _ in range(6)]
        assert outcomes == [False] * 5 + [True]

        clock.now += 61
        assert limiter.is_rate_limited('2fa:1', max_attempts=5, window_seconds=60) is False

    def test_reset(self):
        limiter = FixedWindowRateLimiter(clock=FakeClock())
        for _ in range(3):
            limiter.is_rate_limited('k', max_attempts=5)
        assert limiter.get_remaining_attempts('k', max_attempts=5) == 2
        limiter.reset_rate_limit('k')
        assert limiter.get_remaining_attempts('k', max_attempts=5) == 5


class TestChecks:
    @pytest.mark.parametrize('value,expected', [(None, True), ('', True), ('  ', True), ('x', False)])
    def test_honeypot(self, value, expected):
        assert check_honeypot(value) is expected

    def test_submit_timing_seconds_and_milliseconds(self):
        now = 1_700_000_100.0
        assert check_submit_timing(now - 5, 2, now=now)
        assert not check_submit_timing(now - 1, 2, now=now)
        assert check_submit_timing((now - 5) * 1000, 2, now=now)
        assert not check_submit_timing((now - 1) * 1000, 2, now=now)
        assert check_submit_timing(None, 2, now=now)

    def test_client_ip_prefers_forwarded_for(self):
        headers = {'X-Forwarded-For': '203.0.113.7, 10.0.0.1', 'X-Real-IP': '198.51.100.2'}
        assert get_client_ip(headers, '127.0.0.1') == '203.0.113.7'

    def test_client_ip_skips_invalid_values(self):
        headers = {'X-Forwarded-For': 'garbage', 'CF-Connecting-IP': '2001:db8::1'}
        assert get_client_ip(headers, '127.0.0.1') == '2001:db8::1'

    def test_client_ip_falls_back(self):
        assert get_client_ip({}, '127.0.0.1') == '127.0.0.1'
        assert get_client_ip({}, None) == 'unknown'

    def test_rate_limit_key(self):
        assert rate_limit_key('comment', 7, '1.2.3.4') == 'comment:7:1.2.3.4'
        assert rate_limit_key('comment', None, '1.2.3.4') == 'comment:anonymous:1.2.3.4'


class TestValidateAntiAbuse:
    def test_honeypot_checked_first(self, app):
        result = validate_anti_abuse(1, 'comment', {}, '127.0.0.1', honeypot='filled', submit_start_time=0)
        assert result.ok is False
        assert result.error == 'Invalid form submission'
        assert result.rate_limit is None

    def test_timing(self, app):
        result = validate_anti_abuse(1, 'comment', {}, '127.0.0.1', submit_start_time=time.time(),
                                     min_submit_seconds=3)
        assert result.error == 'Submission too fast. Please wait at least 3 seconds.'

    def test_rate_limit_uses_injected_limiter(self, app):
        limiter = SlidingWindowRateLimiter(window_seconds=60, clock=FakeClock())
        first = validate_anti_abuse(1, 'reaction', {}, '127.0.0.1', limiter=limiter, limit=1)
        second = validate_anti_abuse(1, 'reaction', {}, '127.0.0.1', limiter=limiter, limit=1)
        assert first.ok and first.rate_limit.allowed
        assert not second.ok
        assert second.rate_limit.retry_after == 60
        assert second.error.startswith('Rate limit exceeded')
