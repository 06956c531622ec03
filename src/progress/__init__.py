"""Student progress approval module.

Provides:
- Session/project tracking with an approval workflow
- Immutable tracking log of every committed change
- Unlock cascade across courses and semesters
- Cassandra and in-memory stores
"""

from .models import (
    DIRECTORY_TABLES_CQL,
    PROGRESS_TABLES_CQL,
    CourseInfo,
    ProgressStatus,
    SemesterInfo,
    StudentProgress,
    TrackingAction,
    TrackingLog,
    UnlockScope,
)


__all__ = [
    "DIRECTORY_TABLES_CQL",
    "PROGRESS_TABLES_CQL",
    "CourseInfo",
    "ProgressStatus",
    "SemesterInfo",
    "StudentProgress",
    "TrackingAction",
    "TrackingLog",
    "UnlockScope",
]
