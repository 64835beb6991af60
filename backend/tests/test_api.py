import pytest
from fastapi.testclient import TestClient

from assessor.api.services import sessions as session_services
from assessor.collaborators import StoredFile
from assessor.main import app


def _start(client: TestClient) -> str:
    response = client.post("/assessments", json={"framework_id": "security-baseline", "user_id": "auditor"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["current_question"]["id"] == "gov-pol-1"
    assert payload["progress"]["total_questions"] == 4
    return payload["id"]


def test_frameworks_are_listed() -> None:
    with TestClient(app) as client:
        listing = client.get("/frameworks")
        assert listing.status_code == 200
        assert listing.json() == [
            {"id": "security-baseline", "name": "Security Baseline", "version": "1.0.0", "total_questions": 4, "sections": 2}
        ]
        detail = client.get("/frameworks/security-baseline")
        assert detail.json()["sections"][0]["id"] == "governance"
        assert client.get("/frameworks/unknown").status_code == 404


def test_unknown_framework_or_assessment_is_404() -> None:
    with TestClient(app) as client:
        assert client.post("/assessments", json={"framework_id": "unknown"}).status_code == 404
        assert client.get("/assessments/does-not-exist").status_code == 404


def test_answering_and_validation_errors() -> None:
    with TestClient(app) as client:
        assessment_id = _start(client)

        answered = client.put(f"/assessments/{assessment_id}/questions/gov-pol-1/response", json={"value": 3})
        assert answered.status_code == 200
        assert answered.json()["first_answer"] is True
        assert answered.json()["risk_level"] == "low"
        assert answered.json()["progress"]["progress_percentage"] == 25

        assert client.put(f"/assessments/{assessment_id}/questions/gov-pol-1/response", json={"value": 9}).status_code == 422
        assert client.put(f"/assessments/{assessment_id}/questions/nope/response", json={"value": 1}).status_code == 404
        assert client.put(f"/assessments/{assessment_id}/questions/gov-pol-1/confidence", json={"level": 9}).status_code == 422

        state = client.get(f"/assessments/{assessment_id}").json()
        assert state["current_question"]["response"] == 3
        assert state["autosave"]["state"] == "scheduled"
        assert state["autosave"]["unsaved_changes"] is True


def test_navigation_bookmarks_and_flags() -> None:
    with TestClient(app) as client:
        assessment_id = _start(client)

        back = client.post(f"/assessments/{assessment_id}/navigate", json={"action": "previous"}).json()
        assert back["moved"] is False

        jumped = client.post(
            f"/assessments/{assessment_id}/navigate", json={"action": "jump", "question_id": "ops-bak-1"}
        ).json()
        assert jumped["moved"] is True
        assert jumped["position"]["is_last"] is True

        assert client.post(f"/assessments/{assessment_id}/navigate", json={"action": "jump"}).status_code == 422

        client.post(f"/assessments/{assessment_id}/questions/ops-bak-1/bookmark")
        client.post(f"/assessments/{assessment_id}/questions/gov-pol-2/bookmark")
        flag = client.post(f"/assessments/{assessment_id}/questions/gov-rol-1/flag").json()
        assert flag["flagged"] is True

        state = client.get(f"/assessments/{assessment_id}").json()
        assert state["bookmarks"] == ["gov-pol-2", "ops-bak-1"]
        assert state["flagged_questions"] == ["gov-rol-1"]


def test_assignments_save_immediately_and_create_tasks() -> None:
    with TestClient(app) as client:
        assessment_id = _start(client)

        empty = client.post(f"/assessments/{assessment_id}/questions/gov-pol-1/tasks").json()
        assert empty["created"] == 0

        assigned = client.put(
            f"/assessments/{assessment_id}/questions/gov-pol-1/assignments", json={"user_ids": ["alice", "alice", "bob"]}
        ).json()
        assert assigned["assignments"] == ["alice", "bob"]
        assert assigned["commit"]["saved"] is True

        created = client.post(f"/assessments/{assessment_id}/questions/gov-pol-1/tasks").json()
        assert created["created"] == 2
        tasks = client.get(f"/assessments/{assessment_id}/tasks", params={"question_id": "gov-pol-1"}).json()
        assert [task["assigned_to"] for task in tasks] == [["alice"], ["bob"]]
        assert tasks[0]["priority"] == "high"

        notes = client.get(f"/assessments/{assessment_id}/notifications").json()
        assert [(note["level"], note["message"]) for note in notes] == [
            ("warning", "Please assign team members to this question first"),
            ("success", "Created 2 task(s) for this question"),
        ]
        assert client.get(f"/assessments/{assessment_id}/notifications").json() == []


def test_evidence_upload_link_search_and_download() -> None:
    with TestClient(app) as client:
        assessment_id = _start(client)

        uploaded = client.post(
            f"/assessments/{assessment_id}/evidence/upload",
            files={"file": ("policy.txt", b"Information security policy v3", "text/plain")},
            data={"evidence_type": "policy", "tags": "governance, annual", "description": "Signed copy"},
        )
        assert uploaded.status_code == 200
        body = uploaded.json()
        assert body["question_id"] == "gov-pol-1"
        evidence_id = body["item"]["id"]
        assert body["item"]["tags"] == ["governance", "annual"]

        content = client.get(f"/assessments/{assessment_id}/evidence/{evidence_id}/content")
        assert content.status_code == 200
        assert content.content == b"Information security policy v3"

        duplicate = client.post(
            f"/assessments/{assessment_id}/questions/gov-pol-1/evidence", json={"evidence_id": evidence_id}
        )
        assert duplicate.status_code == 409

        linked = client.post(
            f"/assessments/{assessment_id}/questions/gov-pol-2/evidence",
            json={"evidence_id": evidence_id, "relevance": "supporting", "confidence": "medium"},
        )
        assert linked.status_code == 200

        found = client.get(f"/assessments/{assessment_id}/evidence", params={"term": "signed"}).json()
        assert [item["linked_questions"] for item in found] == [["gov-pol-1", "gov-pol-2"]]
        assert client.get(
            f"/assessments/{assessment_id}/evidence", params={"question_id": "gov-pol-1"}
        ).json() == []

        removed = client.delete(f"/assessments/{assessment_id}/questions/gov-pol-2/evidence/{evidence_id}").json()
        assert removed["removed"] is True
        again = client.delete(f"/assessments/{assessment_id}/questions/gov-pol-2/evidence/{evidence_id}").json()
        assert again["removed"] is False

        question = client.get(f"/assessments/{assessment_id}/questions/gov-pol-1").json()
        assert question["evidence"][0]["link"]["relevance"] == "primary"


def test_save_close_and_resume_from_storage() -> None:
    with TestClient(app) as client:
        assessment_id = _start(client)
        client.put(f"/assessments/{assessment_id}/questions/gov-pol-1/response", json={"value": 4})
        client.put(f"/assessments/{assessment_id}/questions/gov-pol-1/note", json={"note": "Reviewed in March"})

        saved = client.post(f"/assessments/{assessment_id}/save").json()
        assert saved["saved"] is True
        assert saved["change_log_length"] == 1

        maturity = client.get(f"/assessments/{assessment_id}/maturity").json()
        assert maturity["overall_score"] == 100

        closed = client.post(f"/assessments/{assessment_id}/close", json={"status": "completed"}).json()
        assert closed["status"] == "completed"
        assert client.put(
            f"/assessments/{assessment_id}/questions/gov-pol-2/response", json={"value": 2}
        ).status_code == 409

        history = client.get(f"/assessments/{assessment_id}/history").json()
        assert [entry["change_type"] for entry in history["change_log"]] == ["response_modified", "assessment_completed"]
        assert [row["sequence_no"] for row in history["snapshots"]] == [1, 2]

        listed = client.get("/assessments").json()
        assert listed[0]["id"] == assessment_id
        assert listed[0]["status"] == "completed"

    with TestClient(app) as client:
        resumed = client.get(f"/assessments/{assessment_id}").json()
        assert resumed["status"] == "completed"
        assert resumed["current_question"]["response"] == 4
        assert resumed["current_question"]["meta"]["notes"] == "Reviewed in March"


def test_pending_edits_are_flushed_on_shutdown() -> None:
    with TestClient(app) as client:
        assessment_id = _start(client)
        client.put(f"/assessments/{assessment_id}/questions/gov-pol-1/response", json={"value": 1})

    with TestClient(app) as client:
        state = client.get(f"/assessments/{assessment_id}").json()
        assert state["current_question"]["response"] == 1
        assert state["current_question"]["risk_level"] == "high"


def test_reset_and_autosave_toggle() -> None:
    with TestClient(app) as client:
        assessment_id = _start(client)
        client.put(f"/assessments/{assessment_id}/questions/gov-pol-1/response", json={"value": 2})

        disabled = client.put(f"/assessments/{assessment_id}/autosave", json={"enabled": False}).json()
        assert disabled == {"enabled": False, "state": "dirty"}

        reset = client.post(f"/assessments/{assessment_id}/reset").json()
        assert reset["progress"]["answered_questions"] == 0
        assert reset["autosave"]["unsaved_changes"] is False


class NavigatingStorage:
    """Evidence storage during whose upload the user moves to the next question."""

    def __init__(self, *, settings, assessment_id: str) -> None:
        self.assessment_id = assessment_id

    async def upload(self, *, file_name: str, content_type: str, content: bytes) -> StoredFile:
        app.state.registry.get(self.assessment_id).advance()
        return StoredFile(id="ev-moved", name=file_name, url=f"memory://{file_name}", size=len(content))


def test_upload_reports_the_question_it_was_linked_to(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(session_services, "EvidenceFileStorage", NavigatingStorage)
    with TestClient(app) as client:
        assessment_id = _start(client)
        uploaded = client.post(
            f"/assessments/{assessment_id}/evidence/upload",
            files={"file": ("policy.txt", b"policy", "text/plain")},
        ).json()
        assert uploaded["question_id"] == "gov-pol-1"

        state = client.get(f"/assessments/{assessment_id}").json()
        assert state["current_question"]["id"] == "gov-pol-2"
        linked = client.get(f"/assessments/{assessment_id}/questions/gov-pol-1").json()
        assert [entry["item"]["id"] for entry in linked["evidence"]] == ["ev-moved"]


def test_upload_to_a_closed_assessment_is_rejected() -> None:
    with TestClient(app) as client:
        assessment_id = _start(client)
        client.post(f"/assessments/{assessment_id}/close", json={"status": "abandoned"})
        rejected = client.post(
            f"/assessments/{assessment_id}/evidence/upload",
            files={"file": ("policy.txt", b"policy", "text/plain")},
        )
        assert rejected.status_code == 409
