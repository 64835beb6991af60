from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

Relevance = Literal["primary", "supporting", "reference"]
LinkConfidence = Literal["high", "medium", "low"]
ConfidentialityLevel = Literal["public", "internal", "confidential", "restricted"]
EvidenceType = Literal[
    "document",
    "screenshot",
    "policy",
    "procedure",
    "certificate",
    "audit-report",
    "other",
]
AssessmentStatus = Literal["in_progress", "completed", "abandoned"]
ChangeImpact = Literal["low", "medium", "high"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EvidenceItem(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    type: EvidenceType = "document"
    description: str = ""
    confidentiality_level: ConfidentialityLevel = "internal"
    tags: list[str] = Field(default_factory=list)
    uploaded_at: datetime = Field(default_factory=utc_now)
    uploaded_by: str = ""
    file_size: int = 0
    mime_type: str = "application/octet-stream"
    file_path: str | None = None


class EvidenceLink(BaseModel):
    evidence_id: str = Field(..., min_length=1)
    relevance: Relevance = "primary"
    confidence: LinkConfidence = "high"
    linked_at: datetime = Field(default_factory=utc_now)
    linked_by: str = ""
    notes: str | None = None


class QuestionMeta(BaseModel):
    """Everything recorded about a question apart from its answer value."""

    notes: str = ""
    confidence: int | None = Field(default=None, ge=1, le=5)
    bookmarked: bool = False
    flagged: bool = False
    time_spent_seconds: int | None = Field(default=None, ge=0)
    assignments: list[str] = Field(default_factory=list)
    evidence_links: list[EvidenceLink] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return self == QuestionMeta()


class ChangeLogEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = Field(default_factory=utc_now)
    change_type: str = "response_modified"
    changed_by: str = ""
    impact: ChangeImpact = "medium"
    rollbackable: bool = True


class SessionData(BaseModel):
    start_time: datetime
    duration_minutes: int = 0


class AssessmentSnapshot(BaseModel):
    """One persisted, internally consistent copy of an assessment."""

    id: str = Field(..., min_length=1)
    framework_id: str = Field(..., min_length=1)
    framework_version: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    last_modified: datetime = Field(default_factory=utc_now)
    status: AssessmentStatus = "in_progress"
    archived_at: datetime | None = None
    responses: dict[str, int] = Field(default_factory=dict)
    question_meta: dict[str, QuestionMeta] = Field(default_factory=dict)
    bookmarks: list[str] = Field(default_factory=list)
    flagged_questions: list[str] = Field(default_factory=list)
    evidence_library: list[EvidenceItem] = Field(default_factory=list)
    answered_questions: int = 0
    total_questions: int = 0
    is_complete: bool = False
    time_spent_minutes: int = 0
    session_data: SessionData | None = None
    change_log: list[ChangeLogEntry] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def derive_completion_flag(cls, data: object) -> object:
        if isinstance(data, dict) and "is_complete" not in data:
            answered = data.get("answered_questions", 0)
            total = data.get("total_questions", 0)
            return {**data, "is_complete": answered == total}
        return data

    @model_validator(mode="after")
    def check_completion_flag(self) -> "AssessmentSnapshot":
        if self.is_complete != (self.answered_questions == self.total_questions):
            raise ValueError("is_complete must equal answered_questions == total_questions")
        return self
