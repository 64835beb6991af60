from __future__ import annotations

import math
from typing import Literal, Mapping

from pydantic import BaseModel, Field

from assessor.framework import Framework, MaturityLevel

RiskLevel = Literal["unknown", "critical", "high", "medium", "low"]

GAP_SCORE_THRESHOLD = 75
MAX_GAPS = 10
SCORE_SCALE = 25


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def percentage(part: int, whole: int) -> int:
    if whole <= 0:
        return 0
    return round_half_up(100 * part / whole)


class SectionProgress(BaseModel):
    section_id: str
    name: str
    answered: int
    total: int
    completion_percentage: int


class ProgressReport(BaseModel):
    total_questions: int
    answered_questions: int
    progress_percentage: int
    is_complete: bool
    high_priority_total: int
    high_priority_answered: int
    sections: list[SectionProgress] = Field(default_factory=list)


class CategoryScore(BaseModel):
    section_id: str
    section_name: str
    category_id: str
    category_name: str
    score: int
    answered: int
    total: int
    priority: str


class SectionScore(BaseModel):
    section_id: str
    name: str
    score: int
    answered: int
    total: int
    completion_rate: int


class MaturityReport(BaseModel):
    overall_score: int
    maturity_level: MaturityLevel | None
    sections: list[SectionScore] = Field(default_factory=list)
    categories: list[CategoryScore] = Field(default_factory=list)
    gaps: list[CategoryScore] = Field(default_factory=list)


def compute_progress(framework: Framework, responses: Mapping[str, int]) -> ProgressReport:
    """Completion counts for a framework; recomputed from scratch on every call."""
    total = 0
    answered = 0
    high_total = 0
    high_answered = 0
    sections: list[SectionProgress] = []

    for section in framework.sections:
        section_total = 0
        section_answered = 0
        for category in section.categories:
            for question in category.questions:
                section_total += 1
                is_answered = question.id in responses
                if is_answered:
                    section_answered += 1
                if question.priority == "high":
                    high_total += 1
                    if is_answered:
                        high_answered += 1
        total += section_total
        answered += section_answered
        sections.append(
            SectionProgress(
                section_id=section.id,
                name=section.name,
                answered=section_answered,
                total=section_total,
                completion_percentage=percentage(section_answered, section_total),
            )
        )

    return ProgressReport(
        total_questions=total,
        answered_questions=answered,
        progress_percentage=percentage(answered, total),
        is_complete=answered == total,
        high_priority_total=high_total,
        high_priority_answered=high_answered,
        sections=sections,
    )


def score_values(values: list[int]) -> int:
    if not values:
        return 0
    return round_half_up(sum(values) / len(values) * SCORE_SCALE)


def resolve_maturity_level(framework: Framework, score: int) -> MaturityLevel | None:
    if not framework.maturity_levels:
        return None
    for level in framework.maturity_levels:
        if level.min_score <= score <= level.max_score:
            return level
    return framework.maturity_levels[0]


def compute_maturity(framework: Framework, responses: Mapping[str, int]) -> MaturityReport:
    all_values: list[int] = []
    sections: list[SectionScore] = []
    categories: list[CategoryScore] = []

    for section in framework.sections:
        section_values: list[int] = []
        section_total = 0
        for category in section.categories:
            category_values = [responses[question.id] for question in category.questions if question.id in responses]
            section_values.extend(category_values)
            section_total += len(category.questions)
            categories.append(
                CategoryScore(
                    section_id=section.id,
                    section_name=section.name,
                    category_id=category.id,
                    category_name=category.name,
                    score=score_values(category_values),
                    answered=len(category_values),
                    total=len(category.questions),
                    priority=section.priority,
                )
            )
        all_values.extend(section_values)
        sections.append(
            SectionScore(
                section_id=section.id,
                name=section.name,
                score=score_values(section_values),
                answered=len(section_values),
                total=section_total,
                completion_rate=percentage(len(section_values), section_total),
            )
        )

    overall = score_values(all_values)
    gaps = sorted(
        (category for category in categories if category.score < GAP_SCORE_THRESHOLD),
        key=lambda category: category.score,
    )[:MAX_GAPS]

    return MaturityReport(
        overall_score=overall,
        maturity_level=resolve_maturity_level(framework, overall),
        sections=sections,
        categories=categories,
        gaps=gaps,
    )


def response_risk_level(value: int | None) -> RiskLevel:
    if value is None:
        return "unknown"
    if value == 0:
        return "critical"
    if value == 1:
        return "high"
    if value == 2:
        return "medium"
    return "low"
