"""Tests for progress entities and helpers."""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

from src.progress.models import (
    CourseInfo,
    ProgressStatus,
    StudentProgress,
    TrackingAction,
    TrackingLog,
    create_progress,
    create_tracking_log,
    decode_tracking_value,
    encode_tracking_value,
    ensure_utc_aware,
    utc_now,
)


def _progress_row(**overrides):
    fields = {
        "progress_id": uuid4(),
        "student_id": uuid4(),
        "course_id": uuid4(),
        "status": "in_progress",
        "completed_sessions": 3,
        "projects_submitted": None,
        "project_links": None,
        "rejection_reason": None,
        "approved_at": None,
        "approved_by": None,
        "completed_at": None,
        "created_at": datetime(2024, 1, 1, 10, 0),
        "updated_at": datetime(2024, 1, 2, 10, 0),
        "version": 4,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestHelpers:
    """Tests for time and value helpers."""

    def test_naive_datetime_becomes_utc(self):
        assert ensure_utc_aware(datetime(2024, 1, 1)).tzinfo == UTC
        assert ensure_utc_aware(None) is None

    def test_utc_now_has_millisecond_precision(self):
        assert utc_now().microsecond % 1000 == 0

    def test_tracking_values_survive_text_column(self):
        for value in (None, 0, 7, "in_progress", "https://example.com/a"):
            assert decode_tracking_value(encode_tracking_value(value)) == value


class TestStudentProgress:
    """Tests for StudentProgress."""

    def test_from_row_fills_defaults(self):
        progress = StudentProgress.from_row(_progress_row())

        assert progress.projects_submitted == 0
        assert progress.project_links == []
        assert progress.created_at.tzinfo == UTC
        assert progress.version == 4

    def test_evolve_bumps_version_and_copies_links(self):
        progress = create_progress(uuid4(), uuid4())
        progress.project_links.append("https://example.com/a")

        updated = progress.evolve(status=ProgressStatus.IN_PROGRESS.value)
        updated.project_links.append("https://example.com/b")

        assert updated.version == progress.version + 1
        assert updated.status == "in_progress"
        assert progress.project_links == ["https://example.com/a"]

    def test_evolve_never_moves_updated_at_backwards(self):
        progress = create_progress(uuid4(), uuid4())

        updated = progress.evolve(now=progress.updated_at - timedelta(minutes=5))

        assert updated.updated_at == progress.updated_at

    def test_status_properties(self):
        progress = create_progress(uuid4(), uuid4(), ProgressStatus.LOCKED)

        assert progress.is_locked
        assert not progress.is_completed
        assert not progress.is_pending_approval


class TestTrackingLog:
    """Tests for TrackingLog."""

    def test_create_copies_identity_from_progress(self):
        progress = create_progress(uuid4(), uuid4())
        admin = uuid4()

        entry = create_tracking_log(progress, TrackingAction.UPDATE_SESSIONS, admin, 0, 3)

        assert entry.student_id == progress.student_id
        assert entry.course_id == progress.course_id
        assert entry.action == "update_sessions"
        assert entry.performed_by == admin
        assert entry.created_at is None

    def test_from_row_decodes_values(self):
        row = SimpleNamespace(
            log_id=uuid4(),
            student_id=uuid4(),
            course_id=uuid4(),
            action="approve",
            performed_by=uuid4(),
            performed_at=datetime(2024, 1, 1),
            previous_value='"pending_approval"',
            new_value='"completed"',
            created_at=datetime(2024, 1, 1),
            updated_at=None,
        )

        entry = TrackingLog.from_row(row)

        assert entry.previous_value == "pending_approval"
        assert entry.new_value == "completed"
        assert entry.performed_at.tzinfo == UTC


class TestCourseInfo:
    """Tests for CourseInfo."""

    def test_from_row_defaults_flags_to_true(self):
        row = SimpleNamespace(
            course_id=uuid4(),
            semester_id=uuid4(),
            title="Foundations",
            order_index=1,
            required_sessions=5,
            required_projects=None,
            requires_verification=None,
            is_required=None,
        )

        course = CourseInfo.from_row(row)

        assert course.required_projects == 0
        assert course.requires_verification is True
        assert course.is_required is True
