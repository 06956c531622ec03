# Core infrastructure
from src.core.context import (
    OperationContext,
    clear_context,
    get_admin_id,
    get_bulk_run_id,
    get_context,
    get_request_id,
    get_trace_id,
    set_admin_id,
    set_request_id,
    set_trace_id,
)
from src.core.logging import configure_structlog, get_logger


__all__ = [
    "OperationContext",
    "clear_context",
    "configure_structlog",
    "get_admin_id",
    "get_bulk_run_id",
    "get_context",
    "get_logger",
    "get_request_id",
    "get_trace_id",
    "set_admin_id",
    "set_request_id",
    "set_trace_id",
]
