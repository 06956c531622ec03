"""Quick Track bulk approval module.

Provides:
- Selection state for the pending approval list
- Cancellable, partial-failure tolerant bulk approval
"""

from .bulk_pass import (
    BulkPassChannel,
    BulkPassCoordinator,
    BulkPassFailure,
    BulkPassProgress,
    BulkPassReport,
    CancellationToken,
)
from .selection import SelectionManager


__all__ = [
    "BulkPassChannel",
    "BulkPassCoordinator",
    "BulkPassFailure",
    "BulkPassProgress",
    "BulkPassReport",
    "CancellationToken",
    "SelectionManager",
]
