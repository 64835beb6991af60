from __future__ import annotations

import asyncio
from pathlib import Path

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import Response

from assessor.api.contracts import (
    AssessmentCreateRequest,
    AssignmentUpdateRequest,
    AutosaveToggleRequest,
    CloseRequest,
    ConfidenceUpdateRequest,
    EvidenceLinkRequest,
    NavigationRequest,
    NoteUpdateRequest,
    ResponseUpdateRequest,
)
from assessor.api.services.sessions import RegistryGetter, serialize_commit, serialize_session
from assessor.config import settings
from assessor.db import list_assessments, list_snapshot_history, list_tasks
from assessor.evidence import EvidenceMetadata
from assessor.models import ConfidentialityLevel, EvidenceType
from assessor.progress import response_risk_level
from assessor.storage import load_evidence_bytes


def build_assessments_router(*, get_registry: RegistryGetter) -> APIRouter:
    router = APIRouter()

    @router.get("/frameworks")
    def list_frameworks_endpoint() -> list[dict[str, object]]:
        return [
            {
                "id": framework.id,
                "name": framework.name,
                "version": framework.version,
                "total_questions": framework.total_questions,
                "sections": len(framework.sections),
            }
            for framework in get_registry().catalog.list_frameworks()
        ]

    @router.get("/frameworks/{framework_id}")
    def get_framework_endpoint(framework_id: str) -> dict[str, object]:
        return get_registry().require_framework(framework_id).model_dump()

    @router.get("/assessments")
    def list_assessments_endpoint() -> list[dict[str, object]]:
        return list_assessments()

    @router.post("/assessments")
    async def create_assessment(payload: AssessmentCreateRequest) -> dict[str, object]:
        session = get_registry().start(payload.framework_id, payload.user_id)
        return serialize_session(session)

    @router.get("/assessments/{assessment_id}")
    async def get_assessment(assessment_id: str) -> dict[str, object]:
        return serialize_session(get_registry().get(assessment_id))

    @router.post("/assessments/{assessment_id}/leave")
    async def leave_assessment(assessment_id: str) -> dict[str, object]:
        registry = get_registry()
        session = registry.get(assessment_id)
        unsaved = session.autosave.has_unsaved_changes
        registry.leave(assessment_id)
        return {"id": assessment_id, "left": True, "unsaved_changes_dropped": unsaved}

    @router.get("/assessments/{assessment_id}/progress")
    async def get_progress(assessment_id: str) -> dict[str, object]:
        return get_registry().get(assessment_id).progress().model_dump()

    @router.get("/assessments/{assessment_id}/maturity")
    async def get_maturity(assessment_id: str) -> dict[str, object]:
        return get_registry().get(assessment_id).maturity().model_dump()

    @router.post("/assessments/{assessment_id}/navigate")
    async def navigate(assessment_id: str, payload: NavigationRequest) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        if payload.action == "next":
            moved = session.advance()
        elif payload.action == "previous":
            moved = session.retreat()
        else:
            if not payload.question_id:
                raise HTTPException(status_code=422, detail="question_id is required for a jump.")
            previous = session.cursor.position
            moved = session.jump_to(payload.question_id) != previous
        return {"moved": moved, **serialize_session(session)}

    @router.get("/assessments/{assessment_id}/questions/{question_id}")
    async def get_question_state(assessment_id: str, question_id: str) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        question = session.framework.get_question(question_id)
        value = session.store.get_response(question_id)
        return {
            "id": question.id,
            "text": question.text,
            "response": value,
            "risk_level": response_risk_level(value),
            "meta": session.store.meta(question_id).model_dump(mode="json"),
            "evidence": [
                {"item": item.model_dump(mode="json"), "link": link.model_dump(mode="json")}
                for item, link in session.evidence.linked_items(question_id)
            ],
        }

    @router.put("/assessments/{assessment_id}/questions/{question_id}/response")
    async def set_response(assessment_id: str, question_id: str, payload: ResponseUpdateRequest) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        first_answer = session.answer(question_id, payload.value)
        return {
            "question_id": question_id,
            "value": payload.value,
            "first_answer": first_answer,
            "risk_level": response_risk_level(payload.value),
            "progress": session.progress().model_dump(),
        }

    @router.put("/assessments/{assessment_id}/questions/{question_id}/note")
    async def set_note(assessment_id: str, question_id: str, payload: NoteUpdateRequest) -> dict[str, object]:
        get_registry().get(assessment_id).set_note(question_id, payload.note)
        return {"question_id": question_id, "note": payload.note}

    @router.put("/assessments/{assessment_id}/questions/{question_id}/confidence")
    async def set_confidence(
        assessment_id: str, question_id: str, payload: ConfidenceUpdateRequest
    ) -> dict[str, object]:
        get_registry().get(assessment_id).set_confidence(question_id, payload.level)
        return {"question_id": question_id, "confidence": payload.level}

    @router.post("/assessments/{assessment_id}/questions/{question_id}/bookmark")
    async def toggle_bookmark(assessment_id: str, question_id: str) -> dict[str, object]:
        bookmarked = get_registry().get(assessment_id).toggle_bookmark(question_id)
        return {"question_id": question_id, "bookmarked": bookmarked}

    @router.post("/assessments/{assessment_id}/questions/{question_id}/flag")
    async def toggle_flag(assessment_id: str, question_id: str) -> dict[str, object]:
        flagged = get_registry().get(assessment_id).toggle_flag(question_id)
        return {"question_id": question_id, "flagged": flagged}

    @router.put("/assessments/{assessment_id}/questions/{question_id}/assignments")
    async def set_assignments(
        assessment_id: str, question_id: str, payload: AssignmentUpdateRequest
    ) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        result = session.assign(question_id, payload.user_ids)
        return {
            "question_id": question_id,
            "assignments": session.store.assignments(question_id),
            "commit": serialize_commit(result),
        }

    @router.post("/assessments/{assessment_id}/questions/{question_id}/tasks")
    async def create_tasks(assessment_id: str, question_id: str) -> dict[str, object]:
        tasks = get_registry().get(assessment_id).create_tasks(question_id)
        return {"question_id": question_id, "created": len(tasks), "tasks": tasks}

    @router.get("/assessments/{assessment_id}/tasks")
    async def get_tasks(assessment_id: str, question_id: str | None = Query(default=None)) -> list[dict[str, object]]:
        get_registry().get(assessment_id)
        return list_tasks(assessment_id, question_id)

    @router.post("/assessments/{assessment_id}/questions/{question_id}/evidence")
    async def link_evidence(assessment_id: str, question_id: str, payload: EvidenceLinkRequest) -> dict[str, object]:
        link = get_registry().get(assessment_id).link_evidence(
            question_id, payload.evidence_id, payload.relevance, payload.confidence
        )
        return {"question_id": question_id, "link": link.model_dump(mode="json")}

    @router.delete("/assessments/{assessment_id}/questions/{question_id}/evidence/{evidence_id}")
    async def unlink_evidence(assessment_id: str, question_id: str, evidence_id: str) -> dict[str, object]:
        removed = get_registry().get(assessment_id).unlink_evidence(question_id, evidence_id)
        return {"question_id": question_id, "evidence_id": evidence_id, "removed": removed}

    @router.post("/assessments/{assessment_id}/evidence/upload")
    async def upload_evidence(
        assessment_id: str,
        file: UploadFile = File(...),
        name: str | None = Form(default=None),
        evidence_type: EvidenceType = Form(default="document"),
        description: str = Form(default=""),
        tags: str = Form(default=""),
        confidentiality_level: ConfidentialityLevel = Form(default="internal"),
    ) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        safe_name = Path(file.filename or "upload.bin").name or "upload.bin"
        content = await file.read(settings.max_upload_file_bytes + 1)
        if len(content) > settings.max_upload_file_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"File '{safe_name}' exceeds max size of {settings.max_upload_file_bytes} bytes.",
            )
        metadata = EvidenceMetadata(
            name=name,
            type=evidence_type,
            description=description,
            tags=[tag for tag in tags.split(",") if tag.strip()],
            confidentiality_level=confidentiality_level,
        )
        question = session.current_question()
        link = await session.upload_and_link(
            file_name=safe_name,
            content_type=file.content_type or "application/octet-stream",
            content=content,
            metadata=metadata,
        )
        if link is None:
            raise HTTPException(status_code=502, detail="Evidence upload failed.")
        return {
            "question_id": question.id if question is not None else None,
            "item": session.evidence.get(link.evidence_id).model_dump(mode="json"),
            "link": link.model_dump(mode="json"),
        }

    @router.get("/assessments/{assessment_id}/evidence")
    async def search_evidence(
        assessment_id: str,
        term: str = Query(default=""),
        evidence_type: str = Query(default="all", alias="type"),
        question_id: str | None = Query(default=None),
    ) -> list[dict[str, object]]:
        session = get_registry().get(assessment_id)
        return [
            {**item.model_dump(mode="json"), "linked_questions": session.evidence.questions_for(item.id)}
            for item in session.evidence.search(term=term, evidence_type=evidence_type, question_id=question_id)
        ]

    @router.get("/assessments/{assessment_id}/evidence/{evidence_id}/content")
    async def download_evidence(assessment_id: str, evidence_id: str) -> Response:
        item = get_registry().get(assessment_id).evidence.get(evidence_id)
        if not item.file_path:
            raise HTTPException(status_code=404, detail="Evidence has no stored file.")
        content = await asyncio.to_thread(load_evidence_bytes, settings=settings, storage_path=item.file_path)
        return Response(
            content=content,
            media_type=item.mime_type or "application/octet-stream",
            headers={"Content-Disposition": f'attachment; filename="{item.name}"'},
        )

    @router.post("/assessments/{assessment_id}/save")
    async def save_assessment(assessment_id: str) -> dict[str, object]:
        result = get_registry().get(assessment_id).save()
        if not result.saved:
            raise HTTPException(status_code=503, detail={"message": "Failed to save assessment.", "error": result.error})
        return serialize_commit(result)

    @router.post("/assessments/{assessment_id}/close")
    async def close_assessment(assessment_id: str, payload: CloseRequest) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        result = session.close(payload.status)
        if not result.saved:
            raise HTTPException(status_code=503, detail={"message": "Failed to close assessment.", "error": result.error})
        return {"status": session.status, "commit": serialize_commit(result)}

    @router.post("/assessments/{assessment_id}/reset")
    async def reset_assessment(assessment_id: str) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        session.reset()
        return serialize_session(session)

    @router.put("/assessments/{assessment_id}/autosave")
    async def toggle_autosave(assessment_id: str, payload: AutosaveToggleRequest) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        session.autosave.set_enabled(payload.enabled)
        return {"enabled": session.autosave.enabled, "state": session.autosave.state.value}

    @router.get("/assessments/{assessment_id}/notifications")
    async def drain_notifications(assessment_id: str) -> list[dict[str, object]]:
        return [item.model_dump(mode="json") for item in get_registry().notifications(assessment_id).drain()]

    @router.get("/assessments/{assessment_id}/history")
    async def get_history(assessment_id: str) -> dict[str, object]:
        session = get_registry().get(assessment_id)
        return {
            "id": assessment_id,
            "change_log": [entry.model_dump(mode="json") for entry in session.change_log],
            "snapshots": list_snapshot_history(assessment_id),
        }

    return router
