"""Tests for the Redis-backed signup and login rate limits."""

from unittest.mock import AsyncMock, Mock, patch

import pytest
from fastapi import HTTPException
from redis.exceptions import ConnectionError as RedisConnectionError

from enrolkey.core.redis import signup_rate_limit_key
from enrolkey.signup.dependencies import (
    RATE_LIMIT_LOGIN,
    RATE_LIMIT_SIGNUP,
    RATE_LIMIT_WINDOW,
    _check_rate_limit,
    rate_limit_login,
    rate_limit_signup,
)


CLIENT_IP = "203.0.113.7"


@pytest.fixture
def redis_client() -> AsyncMock:
    client = AsyncMock()
    client.incr.return_value = 1
    return client


def make_request(host: str = CLIENT_IP) -> Mock:
    request = Mock()
    request.client.host = host
    request.headers = {}
    return request


def use_redis(client):
    return patch("enrolkey.signup.dependencies.get_redis", return_value=client)


class TestCheckRateLimit:
    @pytest.mark.asyncio
    async def test_first_request_opens_window(self, redis_client) -> None:
        with use_redis(redis_client):
            allowed, current, remaining = await _check_rate_limit("k", 5, 60)

        assert (allowed, current, remaining) == (True, 1, 4)
        redis_client.set.assert_awaited_once_with("k", 0, ex=60, nx=True)
        redis_client.incr.assert_awaited_once_with("k")
        redis_client.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_past_limit(self, redis_client) -> None:
        redis_client.incr.return_value = 6

        with use_redis(redis_client):
            allowed, current, remaining = await _check_rate_limit("k", 5, 60)

        assert (allowed, current, remaining) == (False, 6, 0)

    @pytest.mark.asyncio
    async def test_allows_without_redis(self) -> None:
        with use_redis(None):
            allowed, _, remaining = await _check_rate_limit("k", 5, 60)

        assert allowed is True
        assert remaining == 5

    @pytest.mark.asyncio
    async def test_allows_when_redis_errors(self, redis_client) -> None:
        redis_client.incr.side_effect = RedisConnectionError("connection refused")

        with use_redis(redis_client):
            allowed, _, _ = await _check_rate_limit("k", 5, 60)

        assert allowed is True


class TestSignupLimit:
    @pytest.mark.asyncio
    async def test_at_limit_allowed(self, redis_client, settings) -> None:
        redis_client.incr.return_value = RATE_LIMIT_SIGNUP

        with use_redis(redis_client):
            await rate_limit_signup(make_request(), settings)

        redis_client.incr.assert_awaited_once_with(signup_rate_limit_key(CLIENT_IP))

    @pytest.mark.asyncio
    async def test_blocked_past_limit(self, redis_client, settings) -> None:
        redis_client.incr.return_value = RATE_LIMIT_SIGNUP + 1

        with use_redis(redis_client), pytest.raises(HTTPException) as exc_info:
            await rate_limit_signup(make_request(), settings)

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == str(RATE_LIMIT_WINDOW)
        assert exc_info.value.headers["X-RateLimit-Limit"] == str(RATE_LIMIT_SIGNUP)
        assert exc_info.value.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_redis_down_does_not_block(self, redis_client, settings) -> None:
        redis_client.set.side_effect = RedisConnectionError("connection refused")

        with use_redis(redis_client):
            await rate_limit_signup(make_request(), settings)


class TestLoginLimit:
    @pytest.mark.asyncio
    async def test_blocked_past_limit(self, redis_client, settings) -> None:
        redis_client.incr.return_value = RATE_LIMIT_LOGIN + 1

        with use_redis(redis_client), pytest.raises(HTTPException) as exc_info:
            await rate_limit_login(make_request(), settings)

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == str(RATE_LIMIT_WINDOW)
        redis_client.incr.assert_awaited_once_with(f"rate_limit:enrolkey:login:{CLIENT_IP}")

    @pytest.mark.asyncio
    async def test_separate_from_signup(self, redis_client, settings) -> None:
        with use_redis(redis_client):
            await rate_limit_login(make_request(), settings)

        key = redis_client.incr.await_args.args[0]
        assert key != signup_rate_limit_key(CLIENT_IP)
