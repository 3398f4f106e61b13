"""
Rate limiter tests
"""

from types import SimpleNamespace
from unittest.mock import patch

from middleware.rate_limiter import RateLimiter, client_key


class TestRateLimiter:

    def test_allows_up_to_limit(self):
        limiter = RateLimiter()
        results = [limiter.is_rate_limited("client", "api", max_requests=3, window_seconds=60)[0] for _ in range(4)]
        assert results == [False, False, False, True]

    def test_reports_seconds_until_reset(self):
        limiter = RateLimiter()
        with patch("middleware.rate_limiter.time.time", return_value=1000.0):
            limiter.is_rate_limited("client", "payments", max_requests=1, window_seconds=60)
        with patch("middleware.rate_limiter.time.time", return_value=1015.0):
            limited, retry_after = limiter.is_rate_limited("client", "payments", max_requests=1, window_seconds=60)
        assert limited is True
        assert retry_after == 45

    def test_window_slides(self):
        limiter = RateLimiter()
        with patch("middleware.rate_limiter.time.time", return_value=1000.0):
            limiter.is_rate_limited("client", "api", max_requests=1, window_seconds=60)
        with patch("middleware.rate_limiter.time.time", return_value=1061.0):
            assert limiter.is_rate_limited("client", "api", max_requests=1, window_seconds=60) == (False, None)

    def test_scopes_and_clients_are_independent(self):
        limiter = RateLimiter()
        limiter.is_rate_limited("client", "payments", max_requests=1)
        assert limiter.is_rate_limited("client", "api", max_requests=1)[0] is False
        assert limiter.is_rate_limited("other", "payments", max_requests=1)[0] is False
        assert limiter.is_rate_limited("client", "payments", max_requests=1)[0] is True

    def test_reset_client(self):
        limiter = RateLimiter()
        limiter.is_rate_limited("client", "api", max_requests=1)
        limiter.reset_client_limits("client")
        assert limiter.is_rate_limited("client", "api", max_requests=1)[0] is False

    def test_idle_clients_are_swept(self):
        with patch("middleware.rate_limiter.time.time", return_value=1000.0):
            limiter = RateLimiter(sweep_interval=60)
            for n in range(50):
                limiter.is_rate_limited(f"ip:10.0.0.{n}", "api", max_requests=5, window_seconds=60)
        assert len(limiter) == 50

        with patch("middleware.rate_limiter.time.time", return_value=1061.0):
            limiter.is_rate_limited("ip:10.0.1.1", "api", max_requests=5, window_seconds=60)
        assert len(limiter) == 1

    def test_sweep_keeps_clients_inside_longest_window(self):
        with patch("middleware.rate_limiter.time.time", return_value=1000.0):
            limiter = RateLimiter(sweep_interval=60)
            limiter.is_rate_limited("client", "payments", max_requests=1, window_seconds=300)
        with patch("middleware.rate_limiter.time.time", return_value=1100.0):
            limiter.is_rate_limited("other", "api", max_requests=5, window_seconds=60)
            assert len(limiter) == 2
            assert limiter.is_rate_limited("client", "payments", max_requests=1, window_seconds=300)[0] is True


class TestClientKey:

    def test_bearer_token_does_not_change_key(self):
        first = SimpleNamespace(headers={"authorization": "Bearer aaa"}, client=SimpleNamespace(host="10.1.2.3"))
        second = SimpleNamespace(headers={"authorization": "Bearer bbb"}, client=SimpleNamespace(host="10.1.2.3"))
        assert client_key(first) == client_key(second) == "ip:10.1.2.3"

    def test_missing_client_address(self):
        assert client_key(SimpleNamespace(headers={}, client=None)) == "ip:unknown"
