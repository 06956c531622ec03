"""Shared fixtures.

Environment is pinned before the app is imported so settings, logging and the
lifespan pick the in-memory stores.
"""

import os


os.environ["ENVIRONMENT"] = "testing"
os.environ["CASSANDRA_ENABLED"] = "false"
os.environ["LOG_TO_FILE"] = "false"
os.environ["LOG_REQUESTS"] = "false"

from dataclasses import dataclass  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from src.config import Settings  # noqa: E402
from src.progress.directory import InMemoryCourseDirectory  # noqa: E402
from src.progress.events import TrackingEventDispatcher  # noqa: E402
from src.progress.memory import InMemoryProgressStore, InMemoryTrackingLogStore  # noqa: E402
from src.progress.models import CourseInfo, SemesterInfo, StudentProgress  # noqa: E402
from src.progress.service import ProgressTransitionService  # noqa: E402


@dataclass
class Catalog:
    """Two semesters of courses.

    Semester 1: c1 (5 sessions, no projects), c2 (2 sessions, 1 project),
    c3 (optional elective). Semester 2: c4, then c5 (no verification).
    """

    semester1: SemesterInfo
    semester2: SemesterInfo
    c1: CourseInfo
    c2: CourseInfo
    c3: CourseInfo
    c4: CourseInfo
    c5: CourseInfo


def build_catalog(directory: InMemoryCourseDirectory) -> Catalog:
    s1 = directory.add_semester(SemesterInfo(id=uuid4(), name="Semester 1", order=1))
    s2 = directory.add_semester(SemesterInfo(id=uuid4(), name="Semester 2", order=2))

    def course(semester: SemesterInfo, title: str, order: int, **kwargs) -> CourseInfo:
        fields = {"required_sessions": 1, "required_projects": 0, **kwargs}
        return directory.add_course(
            CourseInfo(id=uuid4(), semester_id=semester.id, title=title, order=order, **fields)
        )

    return Catalog(
        semester1=s1,
        semester2=s2,
        c1=course(s1, "Foundations", 1, required_sessions=5),
        c2=course(s1, "Projects I", 2, required_sessions=2, required_projects=1),
        c3=course(s1, "Elective", 3, is_required=False),
        c4=course(s2, "Advanced", 1),
        c5=course(s2, "Self Study", 2, requires_verification=False),
    )


@pytest.fixture
def settings() -> Settings:
    """Settings with small retry budgets."""
    return Settings(
        progress_cas_max_attempts=3,
        tracking_log_append_attempts=2,
        bulk_pass_max_items=10,
    )


@pytest.fixture
def progress_store() -> InMemoryProgressStore:
    return InMemoryProgressStore()


@pytest.fixture
def log_store() -> InMemoryTrackingLogStore:
    return InMemoryTrackingLogStore()


@pytest.fixture
def directory() -> InMemoryCourseDirectory:
    return InMemoryCourseDirectory()


@pytest.fixture
def catalog(directory: InMemoryCourseDirectory) -> Catalog:
    return build_catalog(directory)


@pytest.fixture
def dispatcher() -> TrackingEventDispatcher:
    """Dispatcher that is never started; events stay queued for inspection."""
    return TrackingEventDispatcher(queue_size=100)


@pytest.fixture
def service(
    progress_store, log_store, directory, settings, dispatcher
) -> ProgressTransitionService:
    return ProgressTransitionService(
        progress_store, log_store, directory, settings, dispatcher=dispatcher
    )


@pytest.fixture
def student_id() -> UUID:
    return uuid4()


@pytest.fixture
def admin_id() -> UUID:
    return uuid4()


async def _make_pending(
    service: ProgressTransitionService,
    student_id: UUID,
    course: CourseInfo,
    admin_id: UUID,
) -> StudentProgress:
    existing = await service.progress_store.get(student_id, course.id)
    progress = existing or await service.enroll(student_id, course.id)
    await service.update_sessions(progress.id, course.required_sessions, admin_id)
    if course.required_projects:
        await service.update_projects(progress.id, course.required_projects, admin_id)
        await service.add_project_link(progress.id, "https://example.com/project", admin_id)
    result = await service.submit_for_approval(progress.id, admin_id)
    return result.progress


@pytest.fixture
def make_pending(service, admin_id):
    """Enroll (if needed) and drive a record to pending_approval.

    The record must be unlocked; callers complete prerequisites first.
    """

    async def _drive(student_id: UUID, course: CourseInfo) -> StudentProgress:
        return await _make_pending(service, student_id, course, admin_id)

    return _drive


@pytest.fixture
def client():
    """Test client with the lifespan run (in-memory stores)."""
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def api_catalog(client) -> Catalog:
    """Catalog registered in the running app's in-memory directory."""
    return build_catalog(client.app.state.course_directory)


@pytest.fixture
def admin_headers(admin_id) -> dict[str, str]:
    return {"X-Admin-ID": str(admin_id)}
