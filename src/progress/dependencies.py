"""FastAPI dependencies for progress tracking.

Provides dependency injection for:
- Progress transition service
- Acting admin identity
- Error handlers
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status

from .exceptions import STATE_ERROR_CODES, VALIDATION_ERROR_CODES, TrackingError
from .service import ProgressTransitionService


async def get_progress_service(request: Request) -> ProgressTransitionService:
    """Get progress service from app state.

    Args:
        request: FastAPI request

    Returns:
        ProgressTransitionService instance
    """
    app_state = request.app.state
    if not hasattr(app_state, "progress_service") or not app_state.progress_service:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Progress service not available",
        )
    return app_state.progress_service


async def get_admin_id(
    x_admin_id: Annotated[str | None, Header(alias="X-Admin-ID")] = None,
) -> UUID:
    """Acting admin from the X-Admin-ID header (authenticated upstream)."""
    if not x_admin_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Admin-ID header is required",
        )
    try:
        return UUID(x_admin_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Admin-ID must be a UUID",
        ) from e


# Type aliases for dependency injection
ProgressServiceDep = Annotated[ProgressTransitionService, Depends(get_progress_service)]
AdminId = Annotated[UUID, Depends(get_admin_id)]


def handle_tracking_error(error: TrackingError) -> HTTPException:
    """Convert tracking errors to HTTP exceptions.

    Args:
        error: Tracking error

    Returns:
        HTTPException with appropriate status code
    """
    status_map = {
        "PROGRESS_NOT_FOUND": status.HTTP_404_NOT_FOUND,
        "COURSE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
        "PROGRESS_UPDATE_CONFLICT": status.HTTP_503_SERVICE_UNAVAILABLE,
        "DATABASE_ERROR": status.HTTP_503_SERVICE_UNAVAILABLE,
        "TRACKING_LOG_CREATE_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
    }
    if error.code in VALIDATION_ERROR_CODES:
        status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif error.code in STATE_ERROR_CODES:
        status_code = status.HTTP_409_CONFLICT
    else:
        status_code = status_map.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR)

    return HTTPException(
        status_code=status_code,
        detail={"code": error.code, "message": error.message},
    )
