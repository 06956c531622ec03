"""Pydantic schemas for progress approval tracking.

Request and response models for:
- Counter and project link updates
- Submission, approval, rejection and unlock
- Enrollment
- Progress, Quick Track and tracking log queries
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .models import ProgressStatus, StudentProgress, TrackingLog, UnlockScope
from .service import PassConditionResult
from .unlock import UnlockResult


# ==============================================================================
# Request Schemas
# ==============================================================================


class EnrollRequest(BaseModel):
    """Request to enroll a student in a course."""

    student_id: UUID = Field(..., description="Student UUID")
    course_id: UUID = Field(..., description="Course UUID")


class UpdateCountRequest(BaseModel):
    """Request to set a session or project counter."""

    count: int = Field(..., description="New counter value")


class ProjectLinkRequest(BaseModel):
    """Request to add or remove a project link."""

    url: str = Field(..., min_length=1, max_length=2048, description="http(s) URL")


class RejectRequest(BaseModel):
    """Request to reject a submission."""

    reason: str = Field(..., max_length=2000, description="Why the submission was rejected")


class UnlockRequest(BaseModel):
    """Request to force-unlock a successor."""

    scope: UnlockScope = Field(default=UnlockScope.COURSE)


# ==============================================================================
# Response Schemas
# ==============================================================================


class ProgressResponse(BaseModel):
    """Student progress response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    student_id: UUID
    course_id: UUID
    status: ProgressStatus
    completed_sessions: int
    projects_submitted: int
    project_links: list[str]
    rejection_reason: str | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, entity: StudentProgress) -> "ProgressResponse":
        """Create response from entity."""
        return cls(
            id=entity.id,
            student_id=entity.student_id,
            course_id=entity.course_id,
            status=ProgressStatus(entity.status),
            completed_sessions=entity.completed_sessions,
            projects_submitted=entity.projects_submitted,
            project_links=list(entity.project_links),
            rejection_reason=entity.rejection_reason,
            approved_at=entity.approved_at,
            approved_by=entity.approved_by,
            completed_at=entity.completed_at,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )


class ProgressListResponse(BaseModel):
    """List of progress records."""

    items: list[ProgressResponse]
    total: int


class UnlockResponse(BaseModel):
    """What an unlock opened."""

    unlocked: bool
    unlocked_course_id: UUID | None = None
    unlocked_course_title: str | None = None
    unlocked_semester_id: UUID | None = None
    unlocked_semester_name: str | None = None

    @classmethod
    def from_result(cls, result: UnlockResult) -> "UnlockResponse":
        return cls(
            unlocked=result.unlocked,
            unlocked_course_id=result.unlocked_course_id,
            unlocked_course_title=result.unlocked_course_title,
            unlocked_semester_id=result.unlocked_semester_id,
            unlocked_semester_name=result.unlocked_semester_name,
        )


class TransitionResponse(BaseModel):
    """Progress after a transition plus any cascade unlock."""

    progress: ProgressResponse
    unlock: UnlockResponse


class PassConditionResponse(BaseModel):
    """Pass condition evaluation."""

    is_met: bool
    completed_sessions: int
    required_sessions: int
    projects_submitted: int
    required_projects: int
    project_links: int
    missing: list[str]

    @classmethod
    def from_result(cls, result: PassConditionResult) -> "PassConditionResponse":
        return cls(
            is_met=result.is_met,
            completed_sessions=result.completed_sessions,
            required_sessions=result.required_sessions,
            projects_submitted=result.projects_submitted,
            required_projects=result.required_projects,
            project_links=result.project_links,
            missing=list(result.missing),
        )


class TrackingLogResponse(BaseModel):
    """Tracking log entry."""

    id: UUID
    student_id: UUID
    course_id: UUID
    action: str
    previous_value: int | str | None = None
    new_value: int | str | None = None
    performed_by: UUID
    performed_at: datetime
    created_at: datetime | None = None

    @classmethod
    def from_entity(cls, entity: TrackingLog) -> "TrackingLogResponse":
        return cls(
            id=entity.id,
            student_id=entity.student_id,
            course_id=entity.course_id,
            action=entity.action,
            previous_value=entity.previous_value,
            new_value=entity.new_value,
            performed_by=entity.performed_by,
            performed_at=entity.performed_at,
            created_at=entity.created_at,
        )


class TrackingLogListResponse(BaseModel):
    """List of tracking log entries, newest first."""

    items: list[TrackingLogResponse]
    total: int
