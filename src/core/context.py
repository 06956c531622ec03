"""Request and operation context management using contextvars.

Every HTTP request gets a request id; admin commands additionally bind the
acting admin, and bulk pass runs bind their run id so that each per-item log
line can be traced back to the run that produced it.
"""

from contextvars import ContextVar
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
admin_id_var: ContextVar[str | None] = ContextVar("admin_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
bulk_run_id_var: ContextVar[str | None] = ContextVar("bulk_run_id", default=None)


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


def get_admin_id() -> str | None:
    """Get the acting admin ID."""
    return admin_id_var.get()


def set_admin_id(admin_id: str | UUID | None) -> None:
    """Bind the acting admin to the current context."""
    admin_id_var.set(str(admin_id) if admin_id is not None else None)


def get_trace_id() -> str | None:
    """Get the current trace ID."""
    return trace_id_var.get()


def set_trace_id(trace_id: str | None) -> None:
    """Set the trace ID from distributed tracing headers."""
    trace_id_var.set(trace_id)


def get_bulk_run_id() -> str | None:
    """Get the bulk pass run ID, if running inside one."""
    return bulk_run_id_var.get()


def get_context() -> dict[str, Any]:
    """Get all non-empty context variables as a dictionary."""
    context: dict[str, Any] = {}

    request_id = get_request_id()
    if request_id:
        context["request_id"] = request_id

    admin_id = get_admin_id()
    if admin_id:
        context["admin_id"] = admin_id

    trace_id = get_trace_id()
    if trace_id:
        context["trace_id"] = trace_id

    bulk_run_id = get_bulk_run_id()
    if bulk_run_id:
        context["bulk_run_id"] = bulk_run_id

    return context


def clear_context() -> None:
    """Clear all context variables.

    Called at the end of each request to prevent context leakage.
    """
    request_id_var.set("")
    admin_id_var.set(None)
    trace_id_var.set(None)
    bulk_run_id_var.set(None)


class OperationContext:
    """Context manager scoping an admin operation or bulk run.

    Usage:
        with OperationContext(admin_id=admin_id, bulk_run_id=run_id):
            log.info("bulk_pass_started")  # includes admin_id, bulk_run_id
    """

    _VARS: dict[str, ContextVar] = {
        "request_id": request_id_var,
        "admin_id": admin_id_var,
        "bulk_run_id": bulk_run_id_var,
    }

    def __init__(
        self,
        admin_id: str | UUID | None = None,
        bulk_run_id: str | UUID | None = None,
        request_id: str | None = None,
    ) -> None:
        self._values = {
            "request_id": request_id,
            "admin_id": str(admin_id) if admin_id is not None else None,
            "bulk_run_id": str(bulk_run_id) if bulk_run_id is not None else None,
        }
        self._tokens: dict[str, Any] = {}

    def __enter__(self) -> "OperationContext":
        for name, value in self._values.items():
            if value is not None:
                self._tokens[name] = self._VARS[name].set(value)
        return self

    def __exit__(self, *_: object) -> None:
        for name, token in self._tokens.items():
            self._VARS[name].reset(token)
        self._tokens.clear()
