"""FastAPI dependencies for enrolment key signup.

Provides dependency injection for:
- EnrolKeyAuthProvider and SelfEnrolmentService
- The per-request RequestContext
- Rate limiting for signup and login (Redis-backed)
"""

from collections.abc import Callable
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from enrolkey.config.settings import Settings, get_settings
from enrolkey.core.context import RequestContext, get_request_id
from enrolkey.core.logging import get_logger
from enrolkey.core.redis import get_redis, signup_rate_limit_key
from enrolkey.enrolment.service import SelfEnrolmentService

from .provider import EnrolKeyAuthProvider


logger = get_logger(__name__)


# ==============================================================================
# Service Dependency Injection
# ==============================================================================

# Getter functions (set from main.py)
_provider_getter: Callable[[], EnrolKeyAuthProvider] | None = None
_enrolment_service_getter: Callable[[], SelfEnrolmentService] | None = None


def set_provider_getter(getter: Callable[[], EnrolKeyAuthProvider]) -> None:
    """Set the provider getter function.

    Called from main.py to inject the provider factory.
    """
    global _provider_getter  # noqa: PLW0603 - necessary for DI pattern
    _provider_getter = getter


def set_enrolment_service_getter(getter: Callable[[], SelfEnrolmentService]) -> None:
    global _enrolment_service_getter  # noqa: PLW0603 - necessary for DI pattern
    _enrolment_service_getter = getter


def get_auth_provider() -> EnrolKeyAuthProvider:
    """Get EnrolKeyAuthProvider instance.

    Raises:
        RuntimeError: If provider is not configured
    """
    if _provider_getter is None:
        msg = "EnrolKeyAuthProvider not configured"
        raise RuntimeError(msg)
    return _provider_getter()


def get_enrolment_service() -> SelfEnrolmentService:
    """Get SelfEnrolmentService instance.

    Raises:
        RuntimeError: If service is not configured
    """
    if _enrolment_service_getter is None:
        msg = "SelfEnrolmentService not configured"
        raise RuntimeError(msg)
    return _enrolment_service_getter()


AuthProviderDep = Annotated[EnrolKeyAuthProvider, Depends(get_auth_provider)]
EnrolmentServiceDep = Annotated[SelfEnrolmentService, Depends(get_enrolment_service)]


# ==============================================================================
# Client Info
# ==============================================================================


def get_client_ip(request: Request, settings: Settings) -> str:
    """Client IP address, honouring forwarding headers only from trusted proxies."""
    direct_ip = request.client.host if request.client else "unknown"
    trusted_hosts = settings.trusted_hosts or []

    if direct_ip in trusted_hosts or direct_ip.startswith("127.") or direct_ip == "::1":
        forwarded_for = request.headers.get("x-forwarded-for", "")
        if forwarded_for:
            ips = [ip.strip() for ip in forwarded_for.split(",")]
            client_ips = [ip for ip in ips if ip not in trusted_hosts]
            if client_ips:
                return client_ips[0]

        real_ip = request.headers.get("x-real-ip", "")
        if real_ip:
            return real_ip

    return direct_ip


def get_request_context(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> RequestContext:
    """Fresh anonymous context for the current request."""
    return RequestContext(
        request_id=get_request_id() or None,
        client_ip=get_client_ip(request, settings),
        user_agent=request.headers.get("user-agent", "unknown"),
    )


RequestContextDep = Annotated[RequestContext, Depends(get_request_context)]


# ==============================================================================
# Rate Limiting (Redis-backed)
# ==============================================================================

RATE_LIMIT_SIGNUP = 5  # requests per window
RATE_LIMIT_LOGIN = 10  # requests per window
RATE_LIMIT_WINDOW = 60  # seconds


async def _check_rate_limit(key: str, limit: int, window: int) -> tuple[bool, int, int]:
    """Count a request against ``key``.

    Fails open when Redis is unavailable or errors.

    Returns:
        Tuple of (is_allowed, current_count, remaining)
    """
    redis_client = get_redis()

    if redis_client is None:
        logger.warning("rate_limit_redis_unavailable", key=key, action="allowing_request")
        return True, 0, limit

    try:
        # Window TTL exists before the first increment
        await redis_client.set(key, 0, ex=window, nx=True)
        current = await redis_client.incr(key)

        is_allowed = current <= limit
        remaining = max(0, limit - current)

        if not is_allowed:
            logger.warning("rate_limit_exceeded", key=key, current=current, limit=limit)

        return is_allowed, current, remaining

    except Exception as e:
        logger.error(
            "rate_limit_redis_error",
            key=key,
            error=str(e),
            action="allowing_request",
        )
        return True, 0, limit


def _too_many_requests(detail: str, limit: int, remaining: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=detail,
        headers={
            "Retry-After": str(RATE_LIMIT_WINDOW),
            "X-RateLimit-Limit": str(limit),
            "X-RateLimit-Remaining": str(remaining),
        },
    )


async def rate_limit_signup(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Rate limit signup submissions per client IP.

    Raises:
        HTTPException(429): If rate limit exceeded
    """
    client_ip = get_client_ip(request, settings)

    is_allowed, current, remaining = await _check_rate_limit(
        key=signup_rate_limit_key(client_ip),
        limit=RATE_LIMIT_SIGNUP,
        window=RATE_LIMIT_WINDOW,
    )

    if not is_allowed:
        logger.warning(
            "rate_limit_signup_blocked",
            client_ip=client_ip,
            requests=current,
            limit=RATE_LIMIT_SIGNUP,
        )
        raise _too_many_requests(
            "Too many signup attempts. Please wait a minute before trying again.",
            RATE_LIMIT_SIGNUP,
            remaining,
        )


async def rate_limit_login(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Rate limit password logins per client IP.

    Raises:
        HTTPException(429): If rate limit exceeded
    """
    client_ip = get_client_ip(request, settings)

    is_allowed, _, remaining = await _check_rate_limit(
        key=f"rate_limit:enrolkey:login:{client_ip}",
        limit=RATE_LIMIT_LOGIN,
        window=RATE_LIMIT_WINDOW,
    )

    if not is_allowed:
        raise _too_many_requests(
            "Rate limit exceeded. Please try again later.",
            RATE_LIMIT_LOGIN,
            remaining,
        )


RateLimitSignup = Annotated[None, Depends(rate_limit_signup)]
RateLimitLogin = Annotated[None, Depends(rate_limit_login)]
