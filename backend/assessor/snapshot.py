from __future__ import annotations

from datetime import datetime

from assessor.framework import Framework
from assessor.models import (
    AssessmentSnapshot,
    AssessmentStatus,
    ChangeLogEntry,
    EvidenceItem,
    SessionData,
)
from assessor.progress import compute_progress, round_half_up
from assessor.responses import ResponseStore


def elapsed_minutes(started_at: datetime, now: datetime) -> int:
    return max(0, round_half_up((now - started_at).total_seconds() / 60))


def build_snapshot(
    *,
    assessment_id: str,
    framework: Framework,
    store: ResponseStore,
    evidence_library: list[EvidenceItem],
    change_log: list[ChangeLogEntry],
    entry: ChangeLogEntry,
    created_at: datetime,
    session_started_at: datetime,
    prior_time_spent_minutes: int,
    now: datetime,
    status: AssessmentStatus = "in_progress",
    archived_at: datetime | None = None,
) -> AssessmentSnapshot:
    """Merge every independently edited record of a session into one snapshot.

    Responses, per-question metadata and the evidence library are copied so
    the snapshot stays stable after the session keeps mutating. Exactly one
    change log entry, ``entry``, is appended to the committed log.
    """
    responses = store.responses
    progress = compute_progress(framework, responses)
    session_minutes = elapsed_minutes(session_started_at, now)

    return AssessmentSnapshot(
        id=assessment_id,
        framework_id=framework.id,
        framework_version=framework.version,
        created_at=created_at,
        last_modified=now,
        status=status,
        archived_at=archived_at,
        responses=responses,
        question_meta=store.all_meta(),
        bookmarks=store.bookmarks(),
        flagged_questions=store.flagged(),
        evidence_library=[item.model_copy(deep=True) for item in evidence_library],
        answered_questions=progress.answered_questions,
        total_questions=progress.total_questions,
        is_complete=progress.is_complete,
        time_spent_minutes=prior_time_spent_minutes + session_minutes,
        session_data=SessionData(start_time=session_started_at, duration_minutes=session_minutes),
        change_log=[*change_log, entry],
    )
