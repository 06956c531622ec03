"""FastAPI dependencies for Quick Track."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from .bulk_pass import BulkPassCoordinator


async def get_bulk_pass_coordinator(request: Request) -> BulkPassCoordinator:
    """Get bulk pass coordinator from app state."""
    app_state = request.app.state
    if not getattr(app_state, "bulk_pass_coordinator", None):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Bulk pass not available",
        )
    return app_state.bulk_pass_coordinator


BulkPassCoordinatorDep = Annotated[BulkPassCoordinator, Depends(get_bulk_pass_coordinator)]
