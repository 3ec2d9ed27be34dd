from datetime import timedelta
from unittest.mock import Mock

import pytest
import redis
from fastapi import HTTPException

from markeb import rate_limiter
from markeb.security_utils import (
    check_password_strength,
    create_jwt_token,
    generate_reset_token,
    verify_jwt_token,
    verify_reset_token,
)


def test_password_strength_problems():
    assert check_password_strength("letmein123") == []
    assert len(check_password_strength("abc")) == 2


def test_jwt_round_trip_and_expiry():
    token = create_jwt_token({"sub": "sam@agency.co.uk", "role": "user"}, timedelta(minutes=5))
    assert verify_jwt_token(token)["sub"] == "sam@agency.co.uk"

    expired = create_jwt_token({"sub": "sam@agency.co.uk"}, timedelta(seconds=-1))
    assert verify_jwt_token(expired) is None
    assert verify_jwt_token("garbage") is None


def test_reset_token_is_bound_to_salt():
    token = generate_reset_token("sam@agency.co.uk")
    assert verify_reset_token(token) == "sam@agency.co.uk"
    assert verify_reset_token(token + "x") is None


@pytest.fixture
def fresh_limits(monkeypatch):
    monkeypatch.setattr(rate_limiter, "memory_cache", {})
    client = Mock()
    client.get.return_value = None
    client.ttl.return_value = -2
    return client


def test_rate_limit_blocks_after_limit(fresh_limits):
    results = [rate_limiter.check_rate_limit("login:1.2.3.4", 2, 60, fresh_limits)[0] for _ in range(3)]
    assert results == [True, True, False]


def test_rate_limit_resumes_count_from_redis(fresh_limits):
    fresh_limits.get.return_value = "5"
    fresh_limits.ttl.return_value = 30

    allowed, count, ttl = rate_limiter.check_rate_limit("login:1.2.3.4", 5, 60, fresh_limits)

    assert allowed is False
    assert count == 5
    assert 0 < ttl <= 30


async def test_rate_limiter_fails_closed(monkeypatch):
    def unavailable():
        raise redis.ConnectionError("down")

    monkeypatch.setattr(rate_limiter, "get_redis_client", unavailable)
    request = Mock()

    with pytest.raises(HTTPException) as exc:
        await rate_limiter.rate_limit_dependency(request, 5, 60)
    assert exc.value.status_code == 503
