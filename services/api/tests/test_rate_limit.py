"""Unit tests for rate limiting middleware."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import _client_for, make_settings
from visionboard.main import create_app


@pytest.fixture
def limited_client(tmp_path, fake_canva):
    app = create_app(make_settings(tmp_path, rate_limit_per_minute=5))
    yield from _client_for(app, fake_canva)


def _redis_with_count(count: int) -> MagicMock:
    mock_redis = MagicMock()
    mock_pipe = MagicMock()
    mock_pipe.execute = AsyncMock(return_value=[0, count, True, True])  # zremrangebyscore, zcard, zadd, expire
    mock_redis.pipeline = MagicMock(return_value=mock_pipe)
    return mock_redis


class TestRateLimitHeaders:
    def test_health_skips_rate_limit(self, limited_client):
        with patch("visionboard.middleware.rate_limit.RateLimitMiddleware._get_redis") as get_redis:
            response = limited_client.get("/health")
        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        get_redis.assert_not_called()


class TestRateLimitMiddleware:
    def test_headers_on_allowed_request(self, limited_client):
        with patch(
            "visionboard.middleware.rate_limit.RateLimitMiddleware._get_redis",
            AsyncMock(return_value=_redis_with_count(1)),
        ):
            response = limited_client.post("/auth/guest", json={})

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "3"

    def test_over_limit_is_rejected(self, limited_client):
        with patch(
            "visionboard.middleware.rate_limit.RateLimitMiddleware._get_redis",
            AsyncMock(return_value=_redis_with_count(5)),
        ):
            response = limited_client.get("/sync/bootstrap", headers={"Authorization": "Bearer some-token"})

        assert response.status_code == 429
        assert response.json() == {"ok": False, "error": "rate_limited"}
        assert response.headers["Retry-After"] == "60"

    def test_bearer_tokens_are_hashed_in_keys(self, limited_client):
        redis = _redis_with_count(0)
        with patch(
            "visionboard.middleware.rate_limit.RateLimitMiddleware._get_redis",
            AsyncMock(return_value=redis),
        ):
            limited_client.get("/sync/bootstrap", headers={"Authorization": "Bearer secret-user-token"})

        key = redis.pipeline.return_value.zcard.call_args.args[0]
        assert key.startswith("ratelimit:")
        assert "secret-user-token" not in key

    def test_redis_down_fails_open(self, limited_client):
        with patch(
            "visionboard.middleware.rate_limit.RateLimitMiddleware._get_redis",
            AsyncMock(side_effect=ConnectionError("redis unavailable")),
        ):
            response = limited_client.post("/auth/guest", json={})

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
