from typing import Literal

from pydantic import BaseModel, Field

from assessor.models import LinkConfidence, Relevance


class AssessmentCreateRequest(BaseModel):
    framework_id: str = Field(..., min_length=1, max_length=160)
    user_id: str | None = Field(default=None, max_length=160)


class ResponseUpdateRequest(BaseModel):
    value: int


class NoteUpdateRequest(BaseModel):
    note: str = Field(default="", max_length=10000)


class ConfidenceUpdateRequest(BaseModel):
    level: int


class AssignmentUpdateRequest(BaseModel):
    user_ids: list[str] = Field(default_factory=list, max_length=50)


class NavigationRequest(BaseModel):
    action: Literal["next", "previous", "jump"]
    question_id: str | None = None


class EvidenceLinkRequest(BaseModel):
    evidence_id: str = Field(..., min_length=1)
    relevance: Relevance = "primary"
    confidence: LinkConfidence = "high"


class AutosaveToggleRequest(BaseModel):
    enabled: bool


class CloseRequest(BaseModel):
    status: Literal["completed", "abandoned"] = "completed"
