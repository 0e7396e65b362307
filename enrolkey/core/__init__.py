# Core infrastructure
from enrolkey.core.context import (
    RequestContext,
    clear_context,
    get_context,
    get_request_id,
    get_user_id,
    set_request_id,
)
from enrolkey.core.events import DomainEvent, EventDispatcher, get_event_dispatcher
from enrolkey.core.logging import configure_structlog, get_logger
from enrolkey.core.middleware import RequestContextMiddleware


__all__ = [
    "DomainEvent",
    "EventDispatcher",
    "RequestContext",
    "RequestContextMiddleware",
    "clear_context",
    "configure_structlog",
    "get_context",
    "get_event_dispatcher",
    "get_logger",
    "get_request_id",
    "get_user_id",
    "set_request_id",
]
