"""Progress tracking errors.

Every error carries a human readable ``message`` and a stable ``code``; the
HTTP layer maps codes to status codes in ``dependencies.handle_tracking_error``.
"""


class TrackingError(Exception):
    """Base tracking error."""

    def __init__(self, message: str, code: str = "TRACKING_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


# ==============================================================================
# Validation
# ==============================================================================


class SessionsExceedRequiredError(TrackingError):
    """Session count outside 0..required_sessions."""

    def __init__(self, count: int, required: int):
        self.count = count
        self.required = required
        super().__init__(
            f"Completed sessions must be between 0 and {required} (got {count})",
            "SESSIONS_EXCEED_REQUIRED",
        )


class ProjectsExceedRequiredError(TrackingError):
    """Project count outside 0..required_projects."""

    def __init__(self, count: int, required: int):
        self.count = count
        self.required = required
        super().__init__(
            f"Submitted projects must be between 0 and {required} (got {count})",
            "PROJECTS_EXCEED_REQUIRED",
        )


class InvalidProjectUrlError(TrackingError):
    """Project link is malformed or not present."""

    def __init__(self, message: str = "Invalid project URL"):
        super().__init__(message, "INVALID_PROJECT_URL")


class RejectionReasonRequiredError(TrackingError):
    """Reject called with an empty reason."""

    def __init__(self, message: str = "A rejection reason is required"):
        super().__init__(message, "REJECTION_REASON_REQUIRED")


class PassConditionNotMetError(TrackingError):
    """Submission attempted before the course requirements are met."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            "Pass conditions not met: " + "; ".join(missing),
            "PASS_CONDITION_NOT_MET",
        )


# ==============================================================================
# State
# ==============================================================================


class InvalidStatusTransitionError(TrackingError):
    """Operation not allowed from the record's current status."""

    def __init__(self, current: str, operation: str):
        self.current = current
        self.operation = operation
        super().__init__(
            f"Cannot {operation} progress in status '{current}'",
            "INVALID_STATUS_TRANSITION",
        )


class AlreadyApprovedError(TrackingError):
    """Approve called on a completed record."""

    def __init__(self, message: str = "Progress is already approved"):
        super().__init__(message, "ALREADY_APPROVED")


class NotPendingApprovalError(TrackingError):
    """Approve or reject called on a record not awaiting approval."""

    def __init__(self, current: str):
        self.current = current
        super().__init__(
            f"Progress is not pending approval (status '{current}')",
            "NOT_PENDING_APPROVAL",
        )


# ==============================================================================
# Unlock cascade
# ==============================================================================


class UnlockFailedError(TrackingError):
    """Successor could not be unlocked."""

    def __init__(self, message: str = "Unlock failed", code: str = "UNLOCK_FAILED"):
        super().__init__(message, code)


class NoNextCourseError(UnlockFailedError):
    """No later course in the semester."""

    def __init__(self, message: str = "No next course in this semester"):
        super().__init__(message, "NO_NEXT_COURSE")


class NoNextSemesterError(UnlockFailedError):
    """No later semester."""

    def __init__(self, message: str = "No next semester"):
        super().__init__(message, "NO_NEXT_SEMESTER")


# ==============================================================================
# Lookup
# ==============================================================================


class ProgressNotFoundError(TrackingError):
    """Progress record not found."""

    def __init__(self, message: str = "Progress not found"):
        super().__init__(message, "PROGRESS_NOT_FOUND")


class CourseNotFoundError(TrackingError):
    """Course not found in the directory."""

    def __init__(self, message: str = "Course not found"):
        super().__init__(message, "COURSE_NOT_FOUND")


class AlreadyEnrolledError(TrackingError):
    """Student already has a record for the course."""

    def __init__(self, message: str = "Student is already enrolled in this course"):
        super().__init__(message, "ALREADY_ENROLLED")


# ==============================================================================
# Infrastructure
# ==============================================================================


class TrackingLogCreateFailedError(TrackingError):
    """Audit log could not be written; the progress change was reverted."""

    def __init__(self, message: str = "Failed to create tracking log"):
        super().__init__(message, "TRACKING_LOG_CREATE_FAILED")


class ProgressConflictError(TrackingError):
    """Compare-and-swap kept losing to concurrent writers."""

    def __init__(self, message: str = "Progress was modified concurrently, retry later"):
        super().__init__(message, "PROGRESS_UPDATE_CONFLICT")


class DatabaseError(TrackingError):
    """Store failure."""

    def __init__(self, message: str = "Database error"):
        super().__init__(message, "DATABASE_ERROR")


class BulkPassError(TrackingError):
    """Bulk pass run could not start."""

    def __init__(self, message: str):
        super().__init__(message, "BULK_PASS_FAILED")


VALIDATION_ERROR_CODES = frozenset(
    {
        "SESSIONS_EXCEED_REQUIRED",
        "PROJECTS_EXCEED_REQUIRED",
        "INVALID_PROJECT_URL",
        "REJECTION_REASON_REQUIRED",
        "PASS_CONDITION_NOT_MET",
        "BULK_PASS_FAILED",
    }
)

STATE_ERROR_CODES = frozenset(
    {
        "INVALID_STATUS_TRANSITION",
        "ALREADY_APPROVED",
        "NOT_PENDING_APPROVAL",
        "ALREADY_ENROLLED",
        "UNLOCK_FAILED",
        "NO_NEXT_COURSE",
        "NO_NEXT_SEMESTER",
    }
)
