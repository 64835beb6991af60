import asyncio

import pytest

from assessor.errors import AssessmentError, PersistenceError, SessionClosed, UnknownQuestion, UploadDiscarded
from assessor.evidence import EvidenceMetadata
from assessor.framework import QuestionPath
from assessor.models import EvidenceItem
from assessor.session import AssessmentSession


def test_two_sections_walkthrough_completes_the_assessment(session, persistence, timers, clock) -> None:
    assert session.current_question().id == "q1"
    session.answer("q1", 2)
    assert session.advance() is True
    session.answer("q2", 3)
    assert session.advance() is True
    assert session.cursor.position == QuestionPath(1, 0, 0)
    assert session.progress().progress_percentage == 50

    session.answer("q3", 1)
    session.advance()
    session.answer("q4", 4)
    assert session.advance() is False
    timers.fire_all()

    snapshot = persistence.saved[-1]
    assert snapshot.answered_questions == 4
    assert snapshot.is_complete is True
    assert snapshot.framework_version == "2.0.0"


def test_time_is_tracked_only_for_the_current_question(session, clock) -> None:
    clock.advance(40)
    session.answer("q1", 1)
    session.answer("q3", 1)
    assert session.store.meta("q1").time_spent_seconds == 40
    assert session.store.meta("q3").time_spent_seconds is None


def test_navigation_resets_the_entry_time(session, clock) -> None:
    clock.advance(100)
    session.advance()
    clock.advance(7)
    session.answer("q2", 0)
    assert session.store.meta("q2").time_spent_seconds == 7


def test_session_minutes_accumulate_across_resume(session, persistence, timers, clock, framework, notifications) -> None:
    clock.advance(90)
    session.answer("q1", 1)
    timers.fire_all()
    first = persistence.saved[-1]
    assert first.time_spent_minutes == 2
    assert first.session_data.duration_minutes == 2

    resumed = AssessmentSession.resume(
        first, framework, persistence=persistence, notifications=notifications, timer_factory=timers, clock=clock
    )
    assert resumed.store.get_response("q1") == 1
    clock.advance(60)
    resumed.save()
    assert persistence.saved[-1].time_spent_minutes == 3
    assert len(persistence.saved[-1].change_log) == 2


def test_resume_rejects_a_different_framework(session, persistence, framework, notifications) -> None:
    session.answer("q1", 1)
    snapshot = session.save().snapshot
    other = framework.model_copy(update={"id": "other"})
    with pytest.raises(AssessmentError):
        AssessmentSession.resume(snapshot, other, persistence=persistence, notifications=notifications)


def test_resume_restores_evidence_and_links(session, persistence, framework, notifications, timers) -> None:
    session.evidence.add_item(EvidenceItem(id="doc", name="Policy"))
    session.link_evidence("q2", "doc")
    snapshot = session.save().snapshot

    resumed = AssessmentSession.resume(
        snapshot, framework, persistence=persistence, notifications=notifications, timer_factory=timers
    )
    assert [item.id for item in resumed.evidence.items] == ["doc"]
    assert resumed.evidence.questions_for("doc") == ["q2"]


def test_upload_links_evidence_to_the_current_question(session, file_storage, timers) -> None:
    session.jump_to("q3")
    link = asyncio.run(
        session.upload_and_link(
            file_name="restore-log.txt",
            content_type="text/plain",
            content=b"restored ok",
            metadata=EvidenceMetadata(description="Quarterly restore"),
        )
    )
    assert link is not None
    assert session.evidence.questions_for(link.evidence_id) == ["q3"]
    assert len(timers.active) == 1


def _upload_restore_log(session: AssessmentSession):
    return asyncio.run(
        session.upload_and_link(
            file_name="restore-log.txt",
            content_type="text/plain",
            content=b"restored ok",
            metadata=EvidenceMetadata(),
        )
    )


def test_upload_finishing_after_close_is_discarded(session, file_storage, persistence, notifications, timers) -> None:
    session.answer("q1", 3)
    file_storage.during_upload = lambda: session.close("completed")

    with pytest.raises(UploadDiscarded):
        _upload_restore_log(session)

    assert session.evidence.items == []
    assert session.evidence.links_for("q1") == []
    assert timers.fire_all() == 0
    assert [snapshot.change_log[-1].change_type for snapshot in persistence.saved] == ["assessment_completed"]
    assert notifications.items()[-1].level == "warning"


def test_upload_finishing_after_leave_never_saves(session, file_storage, persistence, timers) -> None:
    session.answer("q1", 3)
    file_storage.during_upload = session.leave

    with pytest.raises(UploadDiscarded):
        _upload_restore_log(session)

    assert session.evidence.items == []
    assert timers.fire_all() == 0
    assert persistence.saved == []
    assert session.autosave.has_unsaved_changes
    with pytest.raises(SessionClosed):
        session.answer("q2", 1)


def test_upload_finishing_after_reset_is_not_linked(session, file_storage, timers) -> None:
    file_storage.during_upload = session.reset

    with pytest.raises(UploadDiscarded):
        _upload_restore_log(session)

    assert session.is_active
    assert session.evidence.items == []
    assert timers.active == []
    assert not session.autosave.has_unsaved_changes


def test_left_session_does_not_reschedule_when_autosave_is_toggled(session, timers) -> None:
    session.answer("q1", 2)
    session.leave()
    session.autosave.set_enabled(True)
    session.autosave.mark_dirty()
    assert timers.active == []
    assert session.autosave.suspended


def test_unlinking_nothing_does_not_schedule_a_save(session, timers) -> None:
    assert session.unlink_evidence("q1", "missing") is False
    assert timers.created == []


def test_create_tasks_uses_assignments(session, task_creator, notifications) -> None:
    session.assign("q4", ["alice"])
    tasks = session.create_tasks("q4")
    assert len(tasks) == 1
    assert task_creator.requests[0].section_name == "Section two"
    assert task_creator.requests[0].priority == "high"
    with pytest.raises(UnknownQuestion):
        session.create_tasks("missing")


def test_reset_discards_unsaved_changes(session, persistence, timers) -> None:
    session.answer("q1", 4)
    session.toggle_flag("q2")
    session.advance()
    session.reset()

    assert session.store.responses == {}
    assert session.store.flagged() == []
    assert session.cursor.position == QuestionPath(0, 0, 0)
    assert not session.autosave.has_unsaved_changes
    assert timers.fire_all() == 0
    assert persistence.saved == []


def test_close_archives_and_blocks_further_edits(session, persistence, clock) -> None:
    session.answer("q1", 1)
    result = session.close("completed")

    assert result.saved is True
    assert session.status == "completed"
    assert persistence.saved[-1].archived_at == clock()
    assert persistence.saved[-1].change_log[-1].change_type == "assessment_completed"
    assert persistence.saved[-1].change_log[-1].impact == "high"
    with pytest.raises(SessionClosed):
        session.answer("q2", 1)


def test_failed_close_keeps_the_session_open(session, persistence) -> None:
    persistence.fail_with = PersistenceError("offline")
    result = session.close("abandoned")
    assert result.saved is False
    assert session.status == "in_progress"
    assert session.archived_at is None


def test_leave_cancels_the_pending_save(session, persistence, timers) -> None:
    session.answer("q1", 2)
    assert session.leave() is True
    assert timers.fire_all() == 0
    assert persistence.saved == []
    assert session.autosave.has_unsaved_changes


def test_maturity_view(session) -> None:
    for question_id in ("q1", "q2", "q3", "q4"):
        session.answer(question_id, 4)
    report = session.maturity()
    assert report.overall_score == 100
    assert report.gaps == []
