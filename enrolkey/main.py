"""Enrolkey API - Main Application."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from enrolkey.auth.service import AccountService
from enrolkey.config import get_settings
from enrolkey.core.context import get_request_id
from enrolkey.core.database import init_async_cassandra, shutdown_async_cassandra
from enrolkey.core.events import get_event_dispatcher
from enrolkey.core.logging import configure_structlog, get_logger
from enrolkey.core.middleware import RequestContextMiddleware
from enrolkey.core.redis import init_redis, shutdown_redis
from enrolkey.email.service import EmailService
from enrolkey.enrolment.repository import (
    CassandraGroupRepository,
    CassandraOfferRepository,
)
from enrolkey.enrolment.resolver import EnrolmentKeyResolver
from enrolkey.enrolment.service import SelfEnrolmentService
from enrolkey.health import router as health_router
from enrolkey.signup.provider import EnrolKeyAuthProvider
from enrolkey.signup.router import router as signup_router
from enrolkey.signup.service import SignupService


# Configure logging early (before creating logger)
settings = get_settings()
configure_structlog(
    settings,
    log_dir=Path(settings.log_dir),
    file_output=not settings.is_testing,
)

logger = get_logger(__name__)


# Application state for dependency injection
class AppState:
    """Application state container."""

    cassandra_session: Any = None
    account_service: AccountService | None = None
    enrolment_service: SelfEnrolmentService | None = None
    email_service: EmailService | None = None
    signup_service: SignupService | None = None
    auth_provider: EnrolKeyAuthProvider | None = None


app_state = AppState()


def get_enrolment_service() -> SelfEnrolmentService:
    """Get SelfEnrolmentService instance from app state."""
    if app_state.enrolment_service is None:
        msg = "SelfEnrolmentService not initialized"
        raise RuntimeError(msg)
    return app_state.enrolment_service


def get_auth_provider() -> EnrolKeyAuthProvider:
    """Get EnrolKeyAuthProvider instance from app state."""
    if app_state.auth_provider is None:
        msg = "EnrolKeyAuthProvider not initialized"
        raise RuntimeError(msg)
    return app_state.auth_provider


def init_email_service() -> EmailService | None:
    """Create the confirmation mailer, or None when email is disabled."""
    settings = get_settings()
    if not settings.email_configured:
        logger.warning(
            "email_service_disabled",
            message="Confirmation emails will not be sent",
        )
        return None

    try:
        service = EmailService(
            credentials_path=settings.email_credentials_path,
            sender_address=settings.email_sender_address,
            sender_name=settings.email_sender_name,
        )
    except Exception as e:
        logger.warning(
            "email_service_init_skipped",
            error=str(e),
            message="Running without email service",
        )
        return None

    logger.info("email_service_initialized", sender=settings.email_sender_address)
    return service


def init_services(session: Any) -> None:
    """Build the service graph on top of a Cassandra session."""
    settings = get_settings()
    keyspace = settings.cassandra_keyspace
    events = get_event_dispatcher()

    app_state.account_service = AccountService(
        session=session, keyspace=keyspace, events=events
    )

    offers = CassandraOfferRepository(session=session, keyspace=keyspace)
    groups = CassandraGroupRepository(session=session, keyspace=keyspace)

    app_state.enrolment_service = SelfEnrolmentService(
        session=session,
        keyspace=keyspace,
        offers=offers,
        groups=groups,
        events=events,
    )

    app_state.signup_service = SignupService(
        accounts=app_state.account_service,
        resolver=EnrolmentKeyResolver(offers=offers, groups=groups),
        enrolments=app_state.enrolment_service,
        settings=settings,
        mailer=app_state.email_service,
    )

    app_state.auth_provider = EnrolKeyAuthProvider(
        accounts=app_state.account_service,
        signup=app_state.signup_service,
        auth_type=settings.enrolkey_auth_type,
        signup_url=settings.signup_path,
        events=events,
    )
    logger.info("signup_services_initialized", auth_type=settings.enrolkey_auth_type)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(
        "starting_application",
        app_name=settings.app_name,
        version=settings.app_version,
        environment=settings.environment,
    )

    # Redis only backs rate limiting; run without it
    try:
        await init_redis()
    except Exception as e:
        logger.warning(
            "redis_init_skipped",
            error=str(e),
            message="Running without Redis - rate limiting disabled",
        )

    app_state.email_service = init_email_service()

    try:
        app_state.cassandra_session = await init_async_cassandra()
        init_services(app_state.cassandra_session)
    except Exception as e:
        logger.warning(
            "database_init_skipped",
            error=str(e),
            message="Running without database connection",
        )

    yield

    logger.info("shutting_down_application")
    await shutdown_redis()
    await shutdown_async_cassandra()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    # debug=False keeps Starlette from rendering tracebacks into responses
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Enrolment key self-registration API",
        debug=False,
        lifespan=lifespan,
        default_response_class=ORJSONResponse,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
    )

    # Request context middleware (must be added first - outermost)
    app.add_middleware(
        RequestContextMiddleware,
        log_requests=settings.log_requests,
        exclude_paths=settings.log_exclude_paths,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
        max_age=settings.cors_max_age,
    )

    def _get_request_id_safe(request: Request) -> str | None:
        if hasattr(request.state, "request_id"):
            return request.state.request_id
        return get_request_id()

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> ORJSONResponse:
        """Handle HTTP exceptions.

        Detail text is returned as-is; routers only put user-facing
        messages into HTTPException.
        """
        request_id = _get_request_id_safe(request)

        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=str(exc.detail),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=exc.status_code,
            content={
                "error": True,
                "message": str(exc.detail),
                "status_code": exc.status_code,
                "request_id": request_id,
            },
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> ORJSONResponse:
        request_id = _get_request_id_safe(request)

        # Never log input values; the body carries passwords and keys
        logger.warning(
            "validation_error",
            fields=[".".join(str(loc) for loc in err.get("loc", [])) for err in exc.errors()],
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": True,
                "message": "Validation error",
                "status_code": 422,
                "request_id": request_id,
                "details": [
                    {
                        "field": ".".join(str(loc) for loc in err.get("loc", [])),
                        "message": err.get("msg", "Invalid value"),
                    }
                    for err in exc.errors()
                ],
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> ORJSONResponse:
        """Catch-all handler; details are logged, never returned."""
        request_id = _get_request_id_safe(request)

        logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            error_message=str(exc),
            path=request.url.path,
            method=request.method,
        )

        return ORJSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": True,
                "message": "An unexpected error occurred. Please try again later.",
                "status_code": 500,
                "request_id": request_id,
            },
        )

    app.include_router(health_router)
    app.include_router(signup_router)

    @app.get("/", include_in_schema=False)
    async def root(request: Request) -> dict[str, str]:
        return {
            "message": "Enrolkey API",
            "version": settings.app_version,
            "docs": f"{request.url}docs",
        }

    return app


# Configure router dependencies before creating app
from enrolkey.signup.dependencies import (  # noqa: E402
    set_enrolment_service_getter,
    set_provider_getter,
)


set_provider_getter(get_auth_provider)
set_enrolment_service_getter(get_enrolment_service)


app = create_app()
