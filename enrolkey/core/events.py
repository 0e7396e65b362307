"""In-process domain event dispatch.

Services emit named events (``account_created``, ``user_enrolled``,
``account_confirmed``); observers subscribe by name. Observer failures are
logged and never propagate back into the emitting request.
"""

from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from enrolkey.core.logging import get_logger


logger = get_logger(__name__)


ACCOUNT_CREATED = "account_created"
ACCOUNT_CONFIRMED = "account_confirmed"
USER_ENROLLED = "user_enrolled"


@dataclass(frozen=True)
class DomainEvent:
    """Something that happened, with the ids observers need to act on it."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventDispatcher:
    """Name-keyed observer registry."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._dispatched = 0

    def subscribe(self, name: str, handler: EventHandler) -> None:
        """Register an async handler for events named ``name``."""
        self._handlers[name].append(handler)

    @property
    def dispatched_count(self) -> int:
        return self._dispatched

    async def dispatch(self, event: DomainEvent) -> None:
        """Deliver an event to every subscribed handler, in subscription order."""
        self._dispatched += 1
        handlers = self._handlers.get(event.name, [])

        logger.info(
            "event_dispatched",
            event_name=event.name,
            handler_count=len(handlers),
            **{k: str(v) for k, v in event.payload.items()},
        )

        for handler in handlers:
            try:
                await handler(event)
            except Exception as e:
                logger.exception(
                    "event_handler_failed",
                    event_name=event.name,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    error_type=type(e).__name__,
                )


_event_dispatcher: EventDispatcher | None = None


def get_event_dispatcher() -> EventDispatcher:
    """Get the global dispatcher, creating it on first use."""
    global _event_dispatcher  # noqa: PLW0603 - process-wide observer registry
    if _event_dispatcher is None:
        _event_dispatcher = EventDispatcher()
    return _event_dispatcher

