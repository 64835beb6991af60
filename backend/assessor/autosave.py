from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
from typing import Callable, Protocol

from assessor.collaborators import NotificationSink, SnapshotPersistence
from assessor.errors import PersistenceError
from assessor.models import AssessmentSnapshot, ChangeImpact, ChangeLogEntry, utc_now
from assessor.scheduler import DebounceScheduler, TimerFactory, asyncio_timer_factory

logger = logging.getLogger("assessor.autosave")

SnapshotBuilder = Callable[[ChangeLogEntry], AssessmentSnapshot]


class AutosaveState(str, Enum):
    IDLE = "idle"
    DIRTY = "dirty"
    SCHEDULED = "scheduled"
    SAVING = "saving"


@dataclass
class CommitResult:
    saved: bool
    snapshot: AssessmentSnapshot | None = None
    error: str | None = None


class CommitStrategy(Protocol):
    name: str

    def commit(self, controller: "AutosaveController") -> CommitResult | None: ...


class DebouncedCommit:
    """Defer the save until the quiet period passes with no further mutation."""

    name = "debounced"

    def commit(self, controller: "AutosaveController") -> CommitResult | None:
        controller.mark_dirty()
        return None


class ImmediateCommit:
    """Persist right away without touching the debounce timer.

    Assignment changes must reach other viewers without waiting for the quiet
    period, so they are written straight through. A debounced save that is
    already pending keeps its timer and still fires later.
    """

    name = "immediate"

    def __init__(self, change_type: str, impact: ChangeImpact = "low") -> None:
        self.change_type = change_type
        self.impact = impact

    def commit(self, controller: "AutosaveController") -> CommitResult | None:
        return controller.save_now(change_type=self.change_type, impact=self.impact, cancel_pending=False)


DEBOUNCED = DebouncedCommit()
ASSIGNMENT_IMMEDIATE = ImmediateCommit("assignment_modified", impact="low")


class AutosaveController:
    """Idle -> Dirty -> Scheduled -> Saving -> Idle.

    The snapshot is built when the save actually runs, so a timer always
    persists the latest merged state. A failed save leaves the controller
    dirty; the next mutation or an explicit save retries it.
    """

    def __init__(
        self,
        *,
        build_snapshot: SnapshotBuilder,
        persistence: SnapshotPersistence,
        notifications: NotificationSink,
        quiet_period_seconds: float = 5.0,
        enabled: bool = True,
        timer_factory: TimerFactory = asyncio_timer_factory,
        changed_by: str = "",
        on_committed: Callable[[AssessmentSnapshot], None] | None = None,
    ) -> None:
        self._build_snapshot = build_snapshot
        self._persistence = persistence
        self._notifications = notifications
        self._enabled = enabled
        self._changed_by = changed_by
        self._on_committed = on_committed
        self._scheduler = DebounceScheduler(quiet_period_seconds, self._on_quiet_period, timer_factory=timer_factory)
        self._suspended = False
        self.state = AutosaveState.IDLE
        self.last_saved_at: datetime | None = None
        self.last_error: str | None = None
        self.saves_attempted = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def has_unsaved_changes(self) -> bool:
        return self.state != AutosaveState.IDLE

    @property
    def pending(self) -> bool:
        return self._scheduler.pending

    @property
    def suspended(self) -> bool:
        return self._suspended

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if not enabled and self._scheduler.cancel():
            self.state = AutosaveState.DIRTY
        elif enabled and not self._suspended and self.state == AutosaveState.DIRTY:
            self._schedule()

    def commit(self, strategy: CommitStrategy) -> CommitResult | None:
        return strategy.commit(self)

    def mark_dirty(self) -> None:
        self.state = AutosaveState.DIRTY
        if self._enabled and not self._suspended:
            self._schedule()

    def _schedule(self) -> None:
        self._scheduler.schedule()
        self.state = AutosaveState.SCHEDULED

    def cancel(self) -> bool:
        """Drop a pending timer without saving; unsaved changes stay marked dirty."""
        cancelled = self._scheduler.cancel()
        if cancelled:
            self.state = AutosaveState.DIRTY
        return cancelled

    def suspend(self) -> bool:
        """Cancel the pending timer and stop scheduling new ones; edits stay dirty."""
        self._suspended = True
        return self.cancel()

    def discard(self) -> None:
        """Forget unsaved changes without persisting them (session reset)."""
        self._scheduler.cancel()
        self.state = AutosaveState.IDLE

    def flush(self) -> bool:
        return self._scheduler.flush()

    def _on_quiet_period(self) -> None:
        self.save_now(change_type="response_modified", impact="medium")

    def save_now(
        self,
        *,
        change_type: str = "response_modified",
        impact: ChangeImpact = "medium",
        cancel_pending: bool = True,
        notify_success: str | None = None,
    ) -> CommitResult:
        if cancel_pending:
            self._scheduler.cancel()
        still_scheduled = self._scheduler.pending
        previous_state = self.state
        self.state = AutosaveState.SAVING
        self.saves_attempted += 1

        entry = ChangeLogEntry(
            timestamp=utc_now(),
            change_type=change_type,
            changed_by=self._changed_by,
            impact=impact,
            rollbackable=True,
        )
        snapshot = self._build_snapshot(entry)
        try:
            self._persistence.save(snapshot)
        except (PersistenceError, OSError) as exc:
            self.last_error = str(exc)
            self.state = AutosaveState.SCHEDULED if still_scheduled else AutosaveState.DIRTY
            logger.warning(
                "assessment_save_failed",
                extra={
                    "event": "assessment_save_failed",
                    "assessment_id": snapshot.id,
                    "change_type": change_type,
                    "previous_state": previous_state.value,
                    "error": str(exc),
                },
            )
            self._notifications.notify("error", f"Failed to save assessment: {exc}")
            return CommitResult(saved=False, error=str(exc))

        self.last_error = None
        self.last_saved_at = snapshot.last_modified
        self.state = AutosaveState.SCHEDULED if still_scheduled else AutosaveState.IDLE
        if self._on_committed is not None:
            self._on_committed(snapshot)
        logger.info(
            "assessment_saved",
            extra={
                "event": "assessment_saved",
                "assessment_id": snapshot.id,
                "change_type": change_type,
                "answered_questions": snapshot.answered_questions,
                "total_questions": snapshot.total_questions,
                "change_log_length": len(snapshot.change_log),
            },
        )
        if notify_success:
            self._notifications.notify("success", notify_success)
        return CommitResult(saved=True, snapshot=snapshot)
