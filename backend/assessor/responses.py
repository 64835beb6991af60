from __future__ import annotations

from datetime import datetime
import math
from typing import Callable

from assessor.errors import InvalidMetadata, InvalidResponseValue, UnknownQuestion
from assessor.framework import Framework, Question
from assessor.models import EvidenceLink, QuestionMeta, utc_now

Clock = Callable[[], datetime]


class ResponseStore:
    """Answer values and per-question metadata for one assessment session.

    Answers are validated against the question's declared options and
    overwrite any previous answer. Metadata lives in fixed-schema
    ``QuestionMeta`` records that are created lazily on first write.
    """

    def __init__(self, framework: Framework, *, clock: Clock = utc_now) -> None:
        self._framework = framework
        self._questions: dict[str, Question] = {
            question.id: question for _, _, _, question in framework.iter_questions()
        }
        self._clock = clock
        self._responses: dict[str, int] = {}
        self._meta: dict[str, QuestionMeta] = {}

    def _question(self, question_id: str) -> Question:
        question = self._questions.get(question_id)
        if question is None:
            raise UnknownQuestion(question_id)
        return question

    def _meta_for_update(self, question_id: str) -> QuestionMeta:
        self._question(question_id)
        meta = self._meta.get(question_id)
        if meta is None:
            meta = QuestionMeta()
            self._meta[question_id] = meta
        return meta

    def set_response(self, question_id: str, value: int, *, entered_at: datetime | None = None) -> bool:
        """Store an answer; returns True when this is the question's first answer."""
        question = self._question(question_id)
        allowed = question.option_values
        if isinstance(value, bool) or not isinstance(value, int) or value not in allowed:
            raise InvalidResponseValue(question_id, value, allowed)

        first_answer = question_id not in self._responses
        self._responses[question_id] = value
        if first_answer and entered_at is not None:
            self.record_time_spent(question_id, entered_at)
        return first_answer

    def get_response(self, question_id: str) -> int | None:
        return self._responses.get(question_id)

    @property
    def responses(self) -> dict[str, int]:
        return dict(self._responses)

    def answered_ids(self) -> set[str]:
        return set(self._responses)

    def record_time_spent(self, question_id: str, entered_at: datetime) -> int:
        """Write elapsed seconds for a question once; later calls keep the first value."""
        meta = self._meta_for_update(question_id)
        if meta.time_spent_seconds is None:
            elapsed = (self._clock() - entered_at).total_seconds()
            meta.time_spent_seconds = max(0, math.floor(elapsed + 0.5))
        return meta.time_spent_seconds

    def meta(self, question_id: str) -> QuestionMeta:
        self._question(question_id)
        existing = self._meta.get(question_id)
        if existing is None:
            return QuestionMeta()
        return existing.model_copy(deep=True)

    def all_meta(self) -> dict[str, QuestionMeta]:
        return {
            question_id: meta.model_copy(deep=True)
            for question_id, meta in self._meta.items()
            if not meta.is_empty()
        }

    def set_note(self, question_id: str, note: str) -> None:
        self._meta_for_update(question_id).notes = note

    def set_confidence(self, question_id: str, level: int) -> None:
        if isinstance(level, bool) or not isinstance(level, int) or not 1 <= level <= 5:
            raise InvalidMetadata(f"Confidence for question '{question_id}' must be between 1 and 5, got {level!r}.")
        self._meta_for_update(question_id).confidence = level

    def toggle_bookmark(self, question_id: str) -> bool:
        meta = self._meta_for_update(question_id)
        meta.bookmarked = not meta.bookmarked
        return meta.bookmarked

    def toggle_flag(self, question_id: str) -> bool:
        meta = self._meta_for_update(question_id)
        meta.flagged = not meta.flagged
        return meta.flagged

    def set_assignments(self, question_id: str, user_ids: list[str]) -> list[str]:
        cleaned: list[str] = []
        for user_id in user_ids:
            value = str(user_id).strip()
            if value and value not in cleaned:
                cleaned.append(value)
        self._meta_for_update(question_id).assignments = cleaned
        return list(cleaned)

    def assignments(self, question_id: str) -> list[str]:
        return list(self.meta(question_id).assignments)

    def evidence_links(self, question_id: str) -> list[EvidenceLink]:
        return self._meta_for_update(question_id).evidence_links

    def bookmarks(self) -> list[str]:
        return self._ids_in_framework_order(lambda meta: meta.bookmarked)

    def flagged(self) -> list[str]:
        return self._ids_in_framework_order(lambda meta: meta.flagged)

    def _ids_in_framework_order(self, predicate: Callable[[QuestionMeta], bool]) -> list[str]:
        return [
            question_id
            for question_id in self._questions
            if question_id in self._meta and predicate(self._meta[question_id])
        ]

    def restore(self, responses: dict[str, int], meta: dict[str, QuestionMeta]) -> None:
        """Load previously persisted state, dropping ids the framework no longer knows."""
        self.clear()
        for question_id, value in responses.items():
            if question_id in self._questions:
                self._responses[question_id] = value
        for question_id, record in meta.items():
            if question_id in self._questions:
                self._meta[question_id] = record.model_copy(deep=True)

    def clear(self) -> None:
        self._responses.clear()
        self._meta.clear()
