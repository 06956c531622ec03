"""Database models for student progress approval tracking.

Cassandra table definitions and entities for:
- Student progress: one record per (student, course), versioned for
  compare-and-swap writes
- Tracking logs: append-only audit trail, denormalized per query pattern
- Course/semester directory: read-only ordering and requirements
"""

import json
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class ProgressStatus(str, Enum):
    """Status of a student's progress in one course."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PENDING_APPROVAL = "pending_approval"
    COMPLETED = "completed"
    REJECTED = "rejected"
    LOCKED = "locked"


class TrackingAction(str, Enum):
    """Actions recorded in the tracking log."""

    UPDATE_SESSIONS = "update_sessions"
    UPDATE_PROJECTS = "update_projects"
    ADD_PROJECT_LINK = "add_project_link"
    REMOVE_PROJECT_LINK = "remove_project_link"
    SUBMIT_FOR_APPROVAL = "submit_for_approval"
    APPROVE = "approve"
    REJECT = "reject"
    UNLOCK_COURSE = "unlock_course"
    UNLOCK_SEMESTER = "unlock_semester"


class UnlockScope(str, Enum):
    """Scope of a direct admin unlock."""

    COURSE = "course"
    SEMESTER = "semester"


# Statuses from which counters and links may be edited
EDITABLE_STATUSES = frozenset(
    {
        ProgressStatus.NOT_STARTED.value,
        ProgressStatus.IN_PROGRESS.value,
        ProgressStatus.REJECTED.value,
    }
)

TrackingValue = int | str | None


# ==============================================================================
# Helper Functions
# ==============================================================================


def ensure_utc_aware(dt: datetime | None) -> datetime | None:
    """Ensure datetime is UTC-aware (Cassandra returns naive datetimes)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def utc_now() -> datetime:
    """Current time, truncated to milliseconds (Cassandra TIMESTAMP precision)."""
    now = datetime.now(UTC)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def encode_tracking_value(value: TrackingValue) -> str | None:
    """Serialize a loosely typed log value for a TEXT column."""
    return None if value is None else json.dumps(value)


def decode_tracking_value(raw: str | None) -> TrackingValue:
    """Inverse of encode_tracking_value."""
    return None if raw is None else json.loads(raw)


# ==============================================================================
# CQL Table Definitions
# ==============================================================================

# Progress record, one partition per record so LWT conditions stay local
STUDENT_PROGRESS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.student_progress (
    progress_id UUID PRIMARY KEY,
    student_id UUID,
    course_id UUID,
    completed_sessions INT,
    projects_submitted INT,
    project_links LIST<TEXT>,
    status TEXT,
    rejection_reason TEXT,
    approved_at TIMESTAMP,
    approved_by UUID,
    completed_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
    version INT
)
"""

# Quick Track: pending approval lookup
STUDENT_PROGRESS_STATUS_INDEX_CQL = """
CREATE INDEX IF NOT EXISTS student_progress_status_idx
ON {keyspace}.student_progress (status)
"""

# Lookup: (student, course) -> progress_id; IF NOT EXISTS guards double enrollment
PROGRESS_BY_STUDENT_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.progress_by_student (
    student_id UUID,
    course_id UUID,
    progress_id UUID,
    PRIMARY KEY (student_id, course_id)
)
"""

_TRACKING_LOG_COLUMNS = """
    log_id UUID,
    student_id UUID,
    course_id UUID,
    action TEXT,
    previous_value TEXT,
    new_value TEXT,
    performed_by UUID,
    performed_at TIMESTAMP,
    created_at TIMESTAMP,
    updated_at TIMESTAMP,
"""

TRACKING_LOGS_BY_STUDENT_TABLE_CQL = (
    "CREATE TABLE IF NOT EXISTS {keyspace}.tracking_logs_by_student ("
    + _TRACKING_LOG_COLUMNS
    + """
    PRIMARY KEY (student_id, performed_at, log_id)
) WITH CLUSTERING ORDER BY (performed_at DESC, log_id ASC)
"""
)

TRACKING_LOGS_BY_STUDENT_COURSE_TABLE_CQL = (
    "CREATE TABLE IF NOT EXISTS {keyspace}.tracking_logs_by_student_course ("
    + _TRACKING_LOG_COLUMNS
    + """
    PRIMARY KEY ((student_id, course_id), performed_at, log_id)
) WITH CLUSTERING ORDER BY (performed_at DESC, log_id ASC)
"""
)

TRACKING_LOGS_BY_COURSE_TABLE_CQL = (
    "CREATE TABLE IF NOT EXISTS {keyspace}.tracking_logs_by_course ("
    + _TRACKING_LOG_COLUMNS
    + """
    PRIMARY KEY (course_id, performed_at, log_id)
) WITH CLUSTERING ORDER BY (performed_at DESC, log_id ASC)
"""
)

TRACKING_LOGS_BY_PERFORMER_TABLE_CQL = (
    "CREATE TABLE IF NOT EXISTS {keyspace}.tracking_logs_by_performer ("
    + _TRACKING_LOG_COLUMNS
    + """
    PRIMARY KEY (performed_by, performed_at, log_id)
) WITH CLUSTERING ORDER BY (performed_at DESC, log_id ASC)
"""
)

PROGRESS_TABLES_CQL = [
    STUDENT_PROGRESS_TABLE_CQL,
    STUDENT_PROGRESS_STATUS_INDEX_CQL,
    PROGRESS_BY_STUDENT_TABLE_CQL,
    TRACKING_LOGS_BY_STUDENT_TABLE_CQL,
    TRACKING_LOGS_BY_STUDENT_COURSE_TABLE_CQL,
    TRACKING_LOGS_BY_COURSE_TABLE_CQL,
    TRACKING_LOGS_BY_PERFORMER_TABLE_CQL,
]

# Directory tables are owned by the course management layer; created here so
# a fresh keyspace is usable.
DIRECTORY_TABLES_CQL = [
    """
    CREATE TABLE IF NOT EXISTS {keyspace}.courses (
        course_id UUID PRIMARY KEY,
        semester_id UUID,
        title TEXT,
        order_index INT,
        required_sessions INT,
        required_projects INT,
        requires_verification BOOLEAN,
        is_required BOOLEAN
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS {keyspace}.courses_by_semester (
        semester_id UUID,
        order_index INT,
        course_id UUID,
        PRIMARY KEY (semester_id, order_index, course_id)
    ) WITH CLUSTERING ORDER BY (order_index ASC, course_id ASC)
    """,
    """
    CREATE TABLE IF NOT EXISTS {keyspace}.semesters (
        semester_id UUID PRIMARY KEY,
        name TEXT,
        order_index INT
    )
    """,
]


# ==============================================================================
# Entity Classes
# ==============================================================================


@dataclass
class StudentProgress:
    """Progress of one student in one course.

    Mutated only through ProgressTransitionService; every committed change
    bumps ``version`` and ``updated_at``.
    """

    id: UUID
    student_id: UUID
    course_id: UUID
    status: str = ProgressStatus.NOT_STARTED.value
    completed_sessions: int = 0
    projects_submitted: int = 0
    project_links: list[str] = field(default_factory=list)
    rejection_reason: str | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    version: int = 0

    @property
    def is_pending_approval(self) -> bool:
        return self.status == ProgressStatus.PENDING_APPROVAL.value

    @property
    def is_completed(self) -> bool:
        return self.status == ProgressStatus.COMPLETED.value

    @property
    def is_locked(self) -> bool:
        return self.status == ProgressStatus.LOCKED.value

    def evolve(self, now: datetime | None = None, **changes: Any) -> "StudentProgress":
        """Return the next version of this record with ``changes`` applied.

        ``updated_at`` never moves backwards, even if the clock does.
        """
        now = now or utc_now()
        changes.setdefault("project_links", list(self.project_links))
        return replace(
            self,
            updated_at=max(now, self.updated_at),
            version=self.version + 1,
            **changes,
        )

    @classmethod
    def from_row(cls, row: Any) -> "StudentProgress":
        """Create StudentProgress instance from Cassandra row."""
        return cls(
            id=row.progress_id,
            student_id=row.student_id,
            course_id=row.course_id,
            status=row.status or ProgressStatus.NOT_STARTED.value,
            completed_sessions=row.completed_sessions or 0,
            projects_submitted=row.projects_submitted or 0,
            project_links=list(row.project_links or []),
            rejection_reason=row.rejection_reason,
            approved_at=ensure_utc_aware(row.approved_at),
            approved_by=row.approved_by,
            completed_at=ensure_utc_aware(row.completed_at),
            created_at=ensure_utc_aware(row.created_at),
            updated_at=ensure_utc_aware(row.updated_at),
            version=row.version or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    def __repr__(self) -> str:
        return (
            f"<StudentProgress student={self.student_id} course={self.course_id} "
            f"{self.status} v{self.version}>"
        )


@dataclass
class TrackingLog:
    """Immutable audit entry for one committed transition."""

    id: UUID
    student_id: UUID
    course_id: UUID
    action: str
    performed_by: UUID
    performed_at: datetime
    previous_value: TrackingValue = None
    new_value: TrackingValue = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "TrackingLog":
        """Create TrackingLog instance from Cassandra row."""
        return cls(
            id=row.log_id,
            student_id=row.student_id,
            course_id=row.course_id,
            action=row.action,
            performed_by=row.performed_by,
            performed_at=ensure_utc_aware(row.performed_at),
            previous_value=decode_tracking_value(row.previous_value),
            new_value=decode_tracking_value(row.new_value),
            created_at=ensure_utc_aware(row.created_at),
            updated_at=ensure_utc_aware(row.updated_at),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass(frozen=True)
class CourseInfo:
    """Read-only view of a course's requirements and position."""

    id: UUID
    semester_id: UUID
    title: str
    order: int
    required_sessions: int
    required_projects: int
    requires_verification: bool = True
    is_required: bool = True

    @classmethod
    def from_row(cls, row: Any) -> "CourseInfo":
        """Create CourseInfo from Cassandra row."""
        return cls(
            id=row.course_id,
            semester_id=row.semester_id,
            title=row.title or "",
            order=row.order_index or 0,
            required_sessions=row.required_sessions or 0,
            required_projects=row.required_projects or 0,
            requires_verification=(
                True if row.requires_verification is None else row.requires_verification
            ),
            is_required=True if row.is_required is None else row.is_required,
        )


@dataclass(frozen=True)
class SemesterInfo:
    """Read-only view of a semester's position."""

    id: UUID
    name: str
    order: int

    @classmethod
    def from_row(cls, row: Any) -> "SemesterInfo":
        """Create SemesterInfo from Cassandra row."""
        return cls(id=row.semester_id, name=row.name or "", order=row.order_index or 0)


# ==============================================================================
# Factory Functions
# ==============================================================================


def create_progress(
    student_id: UUID,
    course_id: UUID,
    status: ProgressStatus = ProgressStatus.NOT_STARTED,
) -> StudentProgress:
    """Create a new progress record for an enrollment."""
    now = utc_now()
    return StudentProgress(
        id=uuid4(),
        student_id=student_id,
        course_id=course_id,
        status=status.value,
        created_at=now,
        updated_at=now,
    )


def create_tracking_log(
    progress: StudentProgress,
    action: TrackingAction,
    performed_by: UUID,
    previous_value: TrackingValue = None,
    new_value: TrackingValue = None,
    performed_at: datetime | None = None,
) -> TrackingLog:
    """Create a tracking log entry for a transition on ``progress``.

    Store timestamps (created_at/updated_at) are assigned on append.
    """
    return TrackingLog(
        id=uuid4(),
        student_id=progress.student_id,
        course_id=progress.course_id,
        action=action.value,
        performed_by=performed_by,
        performed_at=performed_at or utc_now(),
        previous_value=previous_value,
        new_value=new_value,
    )
