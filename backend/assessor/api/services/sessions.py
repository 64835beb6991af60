from __future__ import annotations

import logging
from typing import Callable
from uuid import uuid4

from fastapi import HTTPException

from assessor.autosave import CommitResult
from assessor.collaborators import NotificationCenter
from assessor.config import Settings
from assessor.db import SqliteSnapshotStore, SqliteTaskCreator
from assessor.errors import (
    AssessmentError,
    DuplicateLink,
    FrameworkIntegrityError,
    InvalidMetadata,
    InvalidResponseValue,
    PersistenceError,
    SessionClosed,
    StorageError,
    UnknownEvidence,
    UnknownQuestion,
    UploadDiscarded,
)
from assessor.framework import Framework, FrameworkCatalog
from assessor.progress import response_risk_level
from assessor.session import AssessmentSession
from assessor.storage import EvidenceFileStorage

logger = logging.getLogger("assessor.api")


class SessionRegistry:
    """In-process registry of active assessment sessions."""

    def __init__(self, *, settings: Settings, catalog: FrameworkCatalog) -> None:
        self.settings = settings
        self.catalog = catalog
        self.persistence = SqliteSnapshotStore()
        self.task_creator = SqliteTaskCreator()
        self._sessions: dict[str, AssessmentSession] = {}
        self._notifications: dict[str, NotificationCenter] = {}

    def _session_options(self, assessment_id: str, user_id: str) -> dict[str, object]:
        notifications = NotificationCenter()
        self._notifications[assessment_id] = notifications
        return {
            "persistence": self.persistence,
            "notifications": notifications,
            "file_storage": EvidenceFileStorage(settings=self.settings, assessment_id=assessment_id),
            "task_creator": self.task_creator,
            "user_id": user_id,
            "quiet_period_seconds": self.settings.autosave_quiet_period_seconds,
            "autosave_enabled": self.settings.autosave_enabled,
            "task_due_days": self.settings.task_due_days,
            "task_estimated_hours": self.settings.task_estimated_hours,
        }

    def require_framework(self, framework_id: str) -> Framework:
        framework = self.catalog.get(framework_id)
        if framework is None:
            raise HTTPException(status_code=404, detail=f"Framework '{framework_id}' not found")
        return framework

    def start(self, framework_id: str, user_id: str | None = None) -> AssessmentSession:
        framework = self.require_framework(framework_id)
        assessment_id = str(uuid4())
        session = AssessmentSession(
            framework,
            assessment_id=assessment_id,
            **self._session_options(assessment_id, user_id or self.settings.default_user_id),
        )
        self._sessions[session.id] = session
        logger.info(
            "assessment_started",
            extra={
                "event": "assessment_started",
                "assessment_id": session.id,
                "framework_id": framework.id,
                "total_questions": framework.total_questions,
            },
        )
        return session

    def get(self, assessment_id: str) -> AssessmentSession:
        session = self._sessions.get(assessment_id)
        if session is not None:
            return session

        try:
            snapshot = self.persistence.load(assessment_id)
        except PersistenceError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        if snapshot is None:
            raise HTTPException(status_code=404, detail="Assessment not found")
        framework = self.require_framework(snapshot.framework_id)
        changed_by = snapshot.change_log[-1].changed_by if snapshot.change_log else ""
        session = AssessmentSession.resume(
            snapshot,
            framework,
            **self._session_options(assessment_id, changed_by or self.settings.default_user_id),
        )
        self._sessions[assessment_id] = session
        return session

    def notifications(self, assessment_id: str) -> NotificationCenter:
        self.get(assessment_id)
        return self._notifications[assessment_id]

    def leave(self, assessment_id: str) -> None:
        session = self._sessions.pop(assessment_id, None)
        self._notifications.pop(assessment_id, None)
        if session is not None:
            session.leave()

    def shutdown(self) -> int:
        """Flush pending debounced saves so no edit is lost on process exit."""
        flushed = 0
        for session in list(self._sessions.values()):
            if session.autosave.flush():
                flushed += 1
        self._sessions.clear()
        self._notifications.clear()
        return flushed


RegistryGetter = Callable[[], SessionRegistry]


def http_error_for(exc: AssessmentError) -> HTTPException:
    if isinstance(exc, (UnknownQuestion, UnknownEvidence)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (DuplicateLink, SessionClosed, UploadDiscarded)):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (InvalidResponseValue, InvalidMetadata, FrameworkIntegrityError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, (PersistenceError, StorageError)):
        return HTTPException(status_code=503, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def serialize_commit(result: CommitResult | None) -> dict[str, object]:
    if result is None:
        return {"saved": False, "pending": True}
    payload: dict[str, object] = {"saved": result.saved, "pending": False}
    if result.error is not None:
        payload["error"] = result.error
    if result.snapshot is not None:
        payload["last_modified"] = result.snapshot.last_modified.isoformat()
        payload["change_log_length"] = len(result.snapshot.change_log)
    return payload


def serialize_session(session: AssessmentSession) -> dict[str, object]:
    question = session.current_question()
    current: dict[str, object] | None = None
    if question is not None:
        value = session.store.get_response(question.id)
        current = {
            "id": question.id,
            "text": question.text,
            "guidance": question.guidance,
            "priority": question.priority,
            "options": [option.model_dump() for option in question.options],
            "response": value,
            "risk_level": response_risk_level(value),
            "meta": session.store.meta(question.id).model_dump(mode="json"),
        }
    position = session.cursor.position
    autosave = session.autosave
    return {
        "id": session.id,
        "framework_id": session.framework.id,
        "framework_version": session.framework.version,
        "status": session.status,
        "position": {
            "section_index": position.section_index,
            "category_index": position.category_index,
            "question_index": position.question_index,
            "is_first": session.cursor.is_first(),
            "is_last": session.cursor.is_last(),
        },
        "current_question": current,
        "progress": session.progress().model_dump(),
        "bookmarks": session.store.bookmarks(),
        "flagged_questions": session.store.flagged(),
        "autosave": {
            "enabled": autosave.enabled,
            "state": autosave.state.value,
            "unsaved_changes": autosave.has_unsaved_changes,
            "last_saved_at": autosave.last_saved_at.isoformat() if autosave.last_saved_at else None,
            "last_error": autosave.last_error,
        },
    }
