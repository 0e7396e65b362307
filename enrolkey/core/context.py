"""Request context management.

Two layers live here:
- contextvars holding request_id / user_id / trace_id for log enrichment
- ``RequestContext``, the explicit per-request object handed to every
  signup call. It carries the identity established after provisioning and
  doubles as a context manager that binds its ids into the contextvars.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid4())


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID for the current context.

    Args:
        request_id: Optional request ID. If not provided, generates a new one.

    Returns:
        The request ID that was set.
    """
    rid = request_id or generate_request_id()
    request_id_var.set(rid)
    return rid


def get_user_id() -> str | None:
    """Get the current user ID."""
    return user_id_var.get()


def get_trace_id() -> str | None:
    """Get the current trace ID."""
    return trace_id_var.get()


def set_trace_id(trace_id: str | None) -> None:
    """Set the trace ID for the current context."""
    trace_id_var.set(trace_id)


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Set the correlation ID for the current context."""
    correlation_id_var.set(correlation_id)


def get_context() -> dict[str, Any]:
    """Get all context variables as a dictionary.

    Returns:
        Dictionary with request_id, user_id, trace_id, and correlation_id.
    """
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    user_id = get_user_id()
    if user_id:
        context["user_id"] = user_id

    trace_id = get_trace_id()
    if trace_id:
        context["trace_id"] = trace_id

    correlation_id = get_correlation_id()
    if correlation_id:
        context["correlation_id"] = correlation_id

    return context


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request to prevent leakage between requests.
    """
    request_id_var.set("")
    user_id_var.set(None)
    trace_id_var.set(None)
    correlation_id_var.set(None)


class RequestContext:
    """Explicit per-request state for the signup flow.

    Starts anonymous. ``login()`` records the identity of a freshly
    provisioned account; nothing else in the flow reads ambient globals.

    Usage:
        ctx = RequestContext(client_ip="10.0.0.1")
        with ctx:
            await provider.user_signup(request, ctx)
        ctx.logged_in  # True after a successful signup
    """

    def __init__(
        self,
        request_id: str | None = None,
        user_id: UUID | None = None,
        trace_id: str | None = None,
        client_ip: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        self.request_id = request_id or get_request_id() or generate_request_id()
        self.user_id = user_id
        self.trace_id = trace_id
        self.client_ip = client_ip
        self.user_agent = user_agent

        # Identity established by login()
        self.username: str | None = None
        self.email: str | None = None
        self.logged_in = False
        self.site: str | None = None
        self.access_token: str | None = None

        self._tokens: dict[str, Any] = {}

    def login(
        self,
        user_id: UUID,
        username: str,
        email: str,
        site: str,
        access_token: str | None = None,
    ) -> None:
        """Mark this request as authenticated as the given account."""
        self.user_id = user_id
        self.username = username
        self.email = email
        self.site = site
        self.access_token = access_token
        self.logged_in = True
        token = user_id_var.set(str(user_id))
        # Keep the earliest token so __exit__ restores the value from before __enter__
        self._tokens.setdefault("user_id", token)

    def __enter__(self) -> "RequestContext":
        """Bind ids into the logging contextvars."""
        self._tokens["request_id"] = request_id_var.set(self.request_id)

        if self.user_id is not None:
            self._tokens["user_id"] = user_id_var.set(str(self.user_id))

        if self.trace_id is not None:
            self._tokens["trace_id"] = trace_id_var.set(self.trace_id)

        return self

    def __exit__(self, *_: object) -> None:
        """Restore previous contextvar values."""
        for var_name, token in self._tokens.items():
            if var_name == "request_id":
                request_id_var.reset(token)
            elif var_name == "user_id":
                user_id_var.reset(token)
            elif var_name == "trace_id":
                trace_id_var.reset(token)
        self._tokens.clear()

    def __repr__(self) -> str:
        who = self.username if self.logged_in else "anonymous"
        return f"<RequestContext {self.request_id} {who}>"
