from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from assessor.collaborators import NotificationCenter, StoredFile, TaskRequest
from assessor.config import settings
from assessor.errors import PersistenceError, StorageError
from assessor.framework import Framework, load_framework
from assessor.models import AssessmentSnapshot
from assessor.session import AssessmentSession

SAMPLE_FRAMEWORK_FILE = Path(__file__).resolve().parents[2] / "data" / "frameworks" / "security-baseline.json"


def make_question(question_id: str, priority: str = "medium", values: tuple[int, ...] = (0, 1, 2, 3, 4)) -> dict:
    return {
        "id": question_id,
        "text": f"Question {question_id}",
        "priority": priority,
        "options": [{"value": value, "label": str(value)} for value in values],
    }


def two_by_one_by_two() -> dict:
    """Two sections, one category each, two questions per category."""
    return {
        "id": "fw-2x1x2",
        "name": "Two by one by two",
        "version": "2.0.0",
        "maturity_levels": [
            {"level": 1, "name": "Initial", "min_score": 0, "max_score": 49},
            {"level": 2, "name": "Established", "min_score": 50, "max_score": 100},
        ],
        "sections": [
            {
                "id": "s1",
                "name": "Section one",
                "priority": "high",
                "categories": [
                    {"id": "c1", "name": "Category one", "questions": [make_question("q1", "high"), make_question("q2")]}
                ],
            },
            {
                "id": "s2",
                "name": "Section two",
                "categories": [
                    {"id": "c2", "name": "Category two", "questions": [make_question("q3"), make_question("q4", "high")]}
                ],
            },
        ],
    }


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "database_url", f"sqlite:///{tmp_path}/test.db")
    monkeypatch.setattr(settings, "storage_root", str(tmp_path / "evidence"))
    monkeypatch.setattr(settings, "frameworks_dir", str(SAMPLE_FRAMEWORK_FILE.parent))
    monkeypatch.setattr(settings, "autosave_quiet_period_seconds", 60.0)


class ManualTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.fired = True
        self.callback()


class ManualTimers:
    """Timer factory whose timers only run when a test fires them."""

    def __init__(self) -> None:
        self.created: list[ManualTimer] = []

    def __call__(self, delay: float, callback) -> ManualTimer:
        timer = ManualTimer(delay, callback)
        self.created.append(timer)
        return timer

    @property
    def active(self) -> list[ManualTimer]:
        return [timer for timer in self.created if not timer.cancelled and not timer.fired]

    def fire_all(self) -> int:
        active = self.active
        for timer in active:
            timer.fire()
        return len(active)


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingPersistence:
    def __init__(self) -> None:
        self.saved: list[AssessmentSnapshot] = []
        self.fail_with: Exception | None = None

    def save(self, snapshot: AssessmentSnapshot) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.saved.append(snapshot)


class FakeFileStorage:
    def __init__(self) -> None:
        self.uploads: list[tuple[str, bytes]] = []
        self.fail = False
        self.during_upload = None

    async def upload(self, *, file_name: str, content_type: str, content: bytes) -> StoredFile:
        if self.fail:
            raise StorageError("bucket unavailable")
        if self.during_upload is not None:
            # Runs while the upload is in flight, before its result is handed back.
            self.during_upload()
        self.uploads.append((file_name, content))
        return StoredFile(
            id=f"ev-{len(self.uploads)}",
            name=file_name,
            url=f"memory://{file_name}",
            size=len(content),
            mime_type=content_type,
        )


class FakeTaskCreator:
    def __init__(self) -> None:
        self.requests: list[TaskRequest] = []
        self.fail_after: int | None = None

    def create_task(self, task: TaskRequest) -> dict[str, object]:
        if self.fail_after is not None and len(self.requests) >= self.fail_after:
            raise PersistenceError("task service unavailable")
        self.requests.append(task)
        return {"id": f"task-{len(self.requests)}", **task.model_dump(mode="json")}


@pytest.fixture
def framework() -> Framework:
    return load_framework(two_by_one_by_two())


@pytest.fixture
def timers() -> ManualTimers:
    return ManualTimers()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def persistence() -> RecordingPersistence:
    return RecordingPersistence()


@pytest.fixture
def notifications() -> NotificationCenter:
    return NotificationCenter()


@pytest.fixture
def file_storage() -> FakeFileStorage:
    return FakeFileStorage()


@pytest.fixture
def task_creator() -> FakeTaskCreator:
    return FakeTaskCreator()


@pytest.fixture
def session(framework, persistence, notifications, file_storage, task_creator, timers, clock) -> AssessmentSession:
    return AssessmentSession(
        framework,
        persistence=persistence,
        notifications=notifications,
        file_storage=file_storage,
        task_creator=task_creator,
        assessment_id="assessment-1",
        user_id="auditor",
        quiet_period_seconds=5.0,
        timer_factory=timers,
        clock=clock,
    )
