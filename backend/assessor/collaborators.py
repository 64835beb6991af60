from __future__ import annotations

from datetime import datetime
import logging
from typing import Literal, Protocol

from pydantic import BaseModel, Field

from assessor.models import AssessmentSnapshot, utc_now
from assessor.observability import sanitize_for_logging

logger = logging.getLogger("assessor.notifications")

NotificationLevel = Literal["success", "error", "warning", "info"]


class StoredFile(BaseModel):
    """Descriptor returned by the file storage collaborator after an upload."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    url: str
    size: int = Field(..., ge=0)
    mime_type: str = "application/octet-stream"
    uploaded_at: datetime = Field(default_factory=utc_now)


class TaskRequest(BaseModel):
    assessment_id: str
    question_id: str
    title: str
    description: str
    priority: Literal["high", "medium"]
    assigned_to: list[str]
    assigned_by: str
    due_date: datetime
    estimated_hours: int
    section_name: str
    category_name: str
    tags: list[str] = Field(default_factory=list)


class SnapshotPersistence(Protocol):
    def save(self, snapshot: AssessmentSnapshot) -> None: ...


class FileStorage(Protocol):
    async def upload(self, *, file_name: str, content_type: str, content: bytes) -> StoredFile: ...


class TaskCreator(Protocol):
    def create_task(self, task: TaskRequest) -> dict[str, object]: ...


class NotificationSink(Protocol):
    def notify(self, level: NotificationLevel, message: str) -> None: ...


class Notification(BaseModel):
    level: NotificationLevel
    message: str
    created_at: datetime = Field(default_factory=utc_now)


class NotificationCenter:
    """Notification sink that keeps recent messages for the client to poll."""

    def __init__(self, *, max_items: int = 50) -> None:
        self._max_items = max_items
        self._items: list[Notification] = []

    def notify(self, level: NotificationLevel, message: str) -> None:
        self._items.append(Notification(level=level, message=message))
        del self._items[: -self._max_items]
        log_level = logging.WARNING if level in {"error", "warning"} else logging.INFO
        logger.log(
            log_level,
            "notification_emitted",
            extra={"event": "notification_emitted", "level": level, "text": sanitize_for_logging(message)},
        )

    def items(self) -> list[Notification]:
        return list(self._items)

    def drain(self) -> list[Notification]:
        drained = list(self._items)
        self._items.clear()
        return drained
