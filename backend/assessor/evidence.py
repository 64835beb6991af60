from __future__ import annotations

import logging
from typing import Callable

from pydantic import BaseModel, Field

from assessor.collaborators import FileStorage, NotificationSink
from assessor.errors import AssessmentError, DuplicateLink, StorageError, UnknownEvidence
from assessor.models import (
    ConfidentialityLevel,
    EvidenceItem,
    EvidenceLink,
    EvidenceType,
    LinkConfidence,
    Relevance,
    utc_now,
)
from assessor.responses import Clock, ResponseStore

logger = logging.getLogger("assessor.evidence")


class EvidenceMetadata(BaseModel):
    name: str | None = Field(default=None, max_length=200)
    type: EvidenceType = "document"
    description: str = Field(default="", max_length=2000)
    tags: list[str] = Field(default_factory=list)
    confidentiality_level: ConfidentialityLevel = "internal"


def matches_search(item: EvidenceItem, term: str) -> bool:
    needle = term.strip().lower()
    if not needle:
        return True
    return (
        needle in item.name.lower()
        or needle in item.description.lower()
        or any(needle in tag.lower() for tag in item.tags)
    )


def matches_type(item: EvidenceItem, evidence_type: str) -> bool:
    return evidence_type == "all" or item.type == evidence_type


def not_already_linked(item: EvidenceItem, links: list[EvidenceLink]) -> bool:
    return not any(link.evidence_id == item.id for link in links)


class EvidenceLibrary:
    """Assessment-scoped evidence items and their links to questions.

    Links live on each question's metadata record; one item may back any
    number of questions. Unlinking is idempotent, linking the same pair twice
    is an error.
    """

    def __init__(
        self,
        store: ResponseStore,
        *,
        items: list[EvidenceItem] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock
        self._items: dict[str, EvidenceItem] = {}
        for item in items or []:
            self.add_item(item)

    @property
    def items(self) -> list[EvidenceItem]:
        return list(self._items.values())

    def get(self, evidence_id: str) -> EvidenceItem:
        item = self._items.get(evidence_id)
        if item is None:
            raise UnknownEvidence(evidence_id)
        return item

    def add_item(self, item: EvidenceItem) -> EvidenceItem:
        if item.id in self._items:
            raise AssessmentError(f"Evidence '{item.id}' is already in the assessment library.")
        self._items[item.id] = item
        return item

    def links_for(self, question_id: str) -> list[EvidenceLink]:
        return [link.model_copy() for link in self._store.meta(question_id).evidence_links]

    def linked_items(self, question_id: str) -> list[tuple[EvidenceItem, EvidenceLink]]:
        pairs: list[tuple[EvidenceItem, EvidenceLink]] = []
        for link in self.links_for(question_id):
            item = self._items.get(link.evidence_id)
            if item is not None:
                pairs.append((item, link))
        return pairs

    def link_evidence(
        self,
        question_id: str,
        evidence_id: str,
        relevance: Relevance = "primary",
        confidence: LinkConfidence = "high",
        *,
        linked_by: str = "",
        notes: str | None = None,
    ) -> EvidenceLink:
        self.get(evidence_id)
        links = self._store.evidence_links(question_id)
        if any(link.evidence_id == evidence_id for link in links):
            raise DuplicateLink(question_id, evidence_id)
        link = EvidenceLink(
            evidence_id=evidence_id,
            relevance=relevance,
            confidence=confidence,
            linked_at=self._clock(),
            linked_by=linked_by,
            notes=notes,
        )
        links.append(link)
        return link.model_copy()

    def unlink_evidence(self, question_id: str, evidence_id: str) -> bool:
        """Remove a link if present; returns False when there was nothing to remove."""
        if not self._store.meta(question_id).evidence_links:
            return False
        links = self._store.evidence_links(question_id)
        remaining = [link for link in links if link.evidence_id != evidence_id]
        if len(remaining) == len(links):
            return False
        links[:] = remaining
        return True

    def questions_for(self, evidence_id: str) -> list[str]:
        return [
            question_id
            for question_id, meta in self._store.all_meta().items()
            if any(link.evidence_id == evidence_id for link in meta.evidence_links)
        ]

    def search(self, *, term: str = "", evidence_type: str = "all", question_id: str | None = None) -> list[EvidenceItem]:
        """Library entries matching the filters, excluding items already linked to ``question_id``."""
        links = self.links_for(question_id) if question_id is not None else []
        return [
            item
            for item in self._items.values()
            if matches_search(item, term) and matches_type(item, evidence_type) and not_already_linked(item, links)
        ]

    async def upload_and_link(
        self,
        storage: FileStorage,
        notifications: NotificationSink,
        *,
        question_id: str,
        file_name: str,
        content_type: str,
        content: bytes,
        metadata: EvidenceMetadata,
        uploaded_by: str = "",
        accept: Callable[[], bool] | None = None,
    ) -> EvidenceLink | None:
        """Store the bytes, add the resulting item to the library and link it to ``question_id``.

        Storage failures are reported through ``notifications`` and leave both
        the library and the question's links untouched. When ``accept`` returns
        false once the bytes are stored, the item is dropped with a
        warning instead of being linked.
        """
        # Validate the target before spending an upload on it.
        self._store.meta(question_id)
        try:
            stored = await storage.upload(file_name=file_name, content_type=content_type, content=content)
        except (StorageError, OSError) as exc:
            logger.warning(
                "evidence_upload_failed",
                extra={"event": "evidence_upload_failed", "question_id": question_id, "error": str(exc)},
            )
            notifications.notify("error", f"Failed to upload file: {exc}")
            return None

        if accept is not None and not accept():
            logger.warning(
                "evidence_upload_discarded",
                extra={"event": "evidence_upload_discarded", "question_id": question_id, "evidence_id": stored.id},
            )
            notifications.notify("warning", f"Discarded '{stored.name}': the assessment changed during the upload")
            return None

        item = EvidenceItem(
            id=stored.id,
            name=metadata.name or stored.name,
            type=metadata.type,
            description=metadata.description,
            confidentiality_level=metadata.confidentiality_level,
            tags=[tag.strip() for tag in metadata.tags if tag.strip()],
            uploaded_at=stored.uploaded_at,
            uploaded_by=uploaded_by,
            file_size=stored.size,
            mime_type=stored.mime_type,
            file_path=stored.url,
        )
        self.add_item(item)
        link = self.link_evidence(question_id, item.id, "primary", "high", linked_by=uploaded_by)
        logger.info(
            "evidence_uploaded",
            extra={
                "event": "evidence_uploaded",
                "question_id": question_id,
                "evidence_id": item.id,
                "size_bytes": stored.size,
            },
        )
        notifications.notify("success", f"Uploaded '{item.name}' and linked it to question {question_id}")
        return link

    def clear(self) -> None:
        self._items.clear()
