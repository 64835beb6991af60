from __future__ import annotations

from datetime import datetime
import logging
from typing import Any
from uuid import uuid4

from assessor.autosave import (
    ASSIGNMENT_IMMEDIATE,
    DEBOUNCED,
    AutosaveController,
    CommitResult,
)
from assessor.collaborators import FileStorage, NotificationSink, SnapshotPersistence, TaskCreator
from assessor.errors import AssessmentError, SessionClosed, UnknownQuestion, UploadDiscarded
from assessor.evidence import EvidenceLibrary, EvidenceMetadata
from assessor.framework import Framework, Question, QuestionPath
from assessor.models import (
    AssessmentSnapshot,
    AssessmentStatus,
    ChangeLogEntry,
    EvidenceLink,
    LinkConfidence,
    Relevance,
    utc_now,
)
from assessor.navigation import NavigationCursor
from assessor.progress import MaturityReport, ProgressReport, compute_maturity, compute_progress
from assessor.responses import Clock, ResponseStore
from assessor.scheduler import TimerFactory, asyncio_timer_factory
from assessor.snapshot import build_snapshot
from assessor.tasks import create_tasks_for_question

logger = logging.getLogger("assessor.session")


class AssessmentSession:
    """One user's pass through a framework.

    Owns the cursor, the response store, the evidence library and the
    autosave controller. Answers and annotations are committed through the
    debounced path; assignment changes are written immediately.
    """

    def __init__(
        self,
        framework: Framework,
        *,
        persistence: SnapshotPersistence,
        notifications: NotificationSink,
        file_storage: FileStorage | None = None,
        task_creator: TaskCreator | None = None,
        assessment_id: str | None = None,
        user_id: str = "",
        quiet_period_seconds: float = 5.0,
        autosave_enabled: bool = True,
        timer_factory: TimerFactory = asyncio_timer_factory,
        clock: Clock = utc_now,
        task_due_days: int = 7,
        task_estimated_hours: int = 2,
    ) -> None:
        self.id = assessment_id or str(uuid4())
        self.framework = framework
        self.user_id = user_id
        self._notifications = notifications
        self._file_storage = file_storage
        self._task_creator = task_creator
        self._clock = clock
        self._task_due_days = task_due_days
        self._task_estimated_hours = task_estimated_hours

        self.store = ResponseStore(framework, clock=clock)
        self.evidence = EvidenceLibrary(self.store, clock=clock)
        self.cursor = NavigationCursor(framework)

        self.created_at = clock()
        self.session_started_at = self.created_at
        self.question_entered_at = self.created_at
        self.prior_time_spent_minutes = 0
        self.status: AssessmentStatus = "in_progress"
        self.archived_at: datetime | None = None
        self.change_log: list[ChangeLogEntry] = []
        self.last_snapshot: AssessmentSnapshot | None = None
        self.left = False
        self._resets = 0

        self.autosave = AutosaveController(
            build_snapshot=self._build_snapshot,
            persistence=persistence,
            notifications=notifications,
            quiet_period_seconds=quiet_period_seconds,
            enabled=autosave_enabled,
            timer_factory=timer_factory,
            changed_by=user_id,
            on_committed=self._record_commit,
        )

    @classmethod
    def resume(cls, snapshot: AssessmentSnapshot, framework: Framework, **kwargs: Any) -> "AssessmentSession":
        if snapshot.framework_id != framework.id:
            raise AssessmentError(
                f"Snapshot '{snapshot.id}' belongs to framework '{snapshot.framework_id}', not '{framework.id}'."
            )
        session = cls(framework, assessment_id=snapshot.id, **kwargs)
        session.store.restore(snapshot.responses, snapshot.question_meta)
        for item in snapshot.evidence_library:
            session.evidence.add_item(item.model_copy(deep=True))
        session.created_at = snapshot.created_at
        session.prior_time_spent_minutes = snapshot.time_spent_minutes
        session.status = snapshot.status
        session.archived_at = snapshot.archived_at
        session.change_log = list(snapshot.change_log)
        session.last_snapshot = snapshot
        logger.info(
            "assessment_resumed",
            extra={
                "event": "assessment_resumed",
                "assessment_id": session.id,
                "answered_questions": snapshot.answered_questions,
                "change_log_length": len(snapshot.change_log),
            },
        )
        return session

    @property
    def is_active(self) -> bool:
        return self.status == "in_progress"

    def _require_active(self) -> None:
        if not self.is_active:
            raise SessionClosed(f"Assessment '{self.id}' is {self.status}.")
        if self.left:
            raise SessionClosed(f"Assessment '{self.id}' was left.")

    # Navigation

    def current_question(self) -> Question | None:
        return self.cursor.current_question()

    def _entered(self, moved: bool) -> bool:
        if moved:
            self.question_entered_at = self._clock()
        return moved

    def advance(self) -> bool:
        return self._entered(self.cursor.advance())

    def retreat(self) -> bool:
        return self._entered(self.cursor.retreat())

    def jump_to(self, question_id: str) -> QuestionPath:
        previous = self.cursor.position
        path = self.cursor.jump_to(question_id)
        self._entered(path != previous)
        return path

    # Mutations committed through the debounce timer

    def answer(self, question_id: str, value: int) -> bool:
        self._require_active()
        current = self.current_question()
        entered_at = self.question_entered_at if current is not None and current.id == question_id else None
        first_answer = self.store.set_response(question_id, value, entered_at=entered_at)
        self.autosave.commit(DEBOUNCED)
        return first_answer

    def set_note(self, question_id: str, note: str) -> None:
        self._require_active()
        self.store.set_note(question_id, note)
        self.autosave.commit(DEBOUNCED)

    def set_confidence(self, question_id: str, level: int) -> None:
        self._require_active()
        self.store.set_confidence(question_id, level)
        self.autosave.commit(DEBOUNCED)

    def toggle_bookmark(self, question_id: str) -> bool:
        self._require_active()
        bookmarked = self.store.toggle_bookmark(question_id)
        self.autosave.commit(DEBOUNCED)
        return bookmarked

    def toggle_flag(self, question_id: str) -> bool:
        self._require_active()
        flagged = self.store.toggle_flag(question_id)
        self.autosave.commit(DEBOUNCED)
        return flagged

    def link_evidence(
        self,
        question_id: str,
        evidence_id: str,
        relevance: Relevance = "primary",
        confidence: LinkConfidence = "high",
    ) -> EvidenceLink:
        self._require_active()
        link = self.evidence.link_evidence(question_id, evidence_id, relevance, confidence, linked_by=self.user_id)
        self.autosave.commit(DEBOUNCED)
        return link

    def unlink_evidence(self, question_id: str, evidence_id: str) -> bool:
        self._require_active()
        removed = self.evidence.unlink_evidence(question_id, evidence_id)
        if removed:
            self.autosave.commit(DEBOUNCED)
        return removed

    async def upload_and_link(
        self,
        *,
        file_name: str,
        content_type: str,
        content: bytes,
        metadata: EvidenceMetadata,
    ) -> EvidenceLink | None:
        self._require_active()
        question = self.current_question()
        if question is None:
            self._notifications.notify("warning", "No active question to attach evidence to")
            return None
        if self._file_storage is None:
            raise AssessmentError("No file storage is configured for this assessment.")
        resets = self._resets

        def still_open() -> bool:
            return self.is_active and not self.left and self._resets == resets

        link = await self.evidence.upload_and_link(
            self._file_storage,
            self._notifications,
            question_id=question.id,
            file_name=file_name,
            content_type=content_type,
            content=content,
            metadata=metadata,
            uploaded_by=self.user_id,
            accept=still_open,
        )
        if not still_open():
            raise UploadDiscarded(f"Assessment '{self.id}' was closed, left or reset during the upload.")
        if link is not None:
            self.autosave.commit(DEBOUNCED)
        return link

    # Mutations written straight through

    def assign(self, question_id: str, user_ids: list[str]) -> CommitResult | None:
        self._require_active()
        assigned = self.store.set_assignments(question_id, user_ids)
        logger.info(
            "question_assigned",
            extra={
                "event": "question_assigned",
                "assessment_id": self.id,
                "question_id": question_id,
                "assignee_count": len(assigned),
            },
        )
        return self.autosave.commit(ASSIGNMENT_IMMEDIATE)

    def create_tasks(self, question_id: str) -> list[dict[str, object]]:
        self._require_active()
        if self._task_creator is None:
            raise AssessmentError("No task creator is configured for this assessment.")
        for _, section, category, question in self.framework.iter_questions():
            if question.id == question_id:
                return create_tasks_for_question(
                    self._task_creator,
                    self._notifications,
                    assessment_id=self.id,
                    section=section,
                    category=category,
                    question=question,
                    assignees=self.store.assignments(question_id),
                    assigned_by=self.user_id,
                    now=self._clock(),
                    due_days=self._task_due_days,
                    estimated_hours=self._task_estimated_hours,
                )
        raise UnknownQuestion(question_id)

    # Explicit lifecycle

    def save(self) -> CommitResult:
        self._require_active()
        return self.autosave.save_now(change_type="response_modified", impact="medium", notify_success="Assessment saved")

    def leave(self) -> bool:
        """Stop the pending timer when the user navigates away; unsaved edits stay dirty.

        A left session accepts no further edits and never schedules another save.
        """
        self.left = True
        return self.autosave.suspend()

    def reset(self) -> None:
        self._require_active()
        self._resets += 1
        self.autosave.discard()
        self.store.clear()
        self.evidence.clear()
        self.cursor = NavigationCursor(self.framework)
        self.question_entered_at = self._clock()
        logger.info("assessment_reset", extra={"event": "assessment_reset", "assessment_id": self.id})

    def close(self, status: AssessmentStatus = "completed") -> CommitResult:
        self._require_active()
        if status == "in_progress":
            raise AssessmentError("Closing an assessment requires 'completed' or 'abandoned'.")
        self.autosave.cancel()
        self.status = status
        self.archived_at = self._clock()
        result = self.autosave.save_now(
            change_type=f"assessment_{status}",
            impact="high",
            notify_success=f"Assessment marked {status}",
        )
        if result.saved:
            self.autosave.suspend()
        else:
            self.status = "in_progress"
            self.archived_at = None
        return result

    # Derived views

    def progress(self) -> ProgressReport:
        return compute_progress(self.framework, self.store.responses)

    def maturity(self) -> MaturityReport:
        return compute_maturity(self.framework, self.store.responses)

    def _build_snapshot(self, entry: ChangeLogEntry) -> AssessmentSnapshot:
        return build_snapshot(
            assessment_id=self.id,
            framework=self.framework,
            store=self.store,
            evidence_library=self.evidence.items,
            change_log=self.change_log,
            entry=entry,
            created_at=self.created_at,
            session_started_at=self.session_started_at,
            prior_time_spent_minutes=self.prior_time_spent_minutes,
            now=self._clock(),
            status=self.status,
            archived_at=self.archived_at,
        )

    def _record_commit(self, snapshot: AssessmentSnapshot) -> None:
        self.change_log = list(snapshot.change_log)
        self.last_snapshot = snapshot
