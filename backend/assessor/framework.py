from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterator, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from assessor.errors import FrameworkIntegrityError, UnknownQuestion

logger = logging.getLogger("assessor.framework")

Priority = Literal["high", "medium", "low"]


class Option(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: int
    label: str = ""
    description: str | None = None


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    text: str = ""
    guidance: str = ""
    priority: Priority = "medium"
    options: tuple[Option, ...] = ()

    @property
    def option_values(self) -> list[int]:
        return [option.value for option in self.options]


class Category(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    weight: float = 1.0
    questions: tuple[Question, ...] = ()


class Section(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    priority: Priority = "medium"
    weight: float = 1.0
    categories: tuple[Category, ...] = ()


class MaturityLevel(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int
    name: str
    min_score: int = Field(..., ge=0, le=100)
    max_score: int = Field(..., ge=0, le=100)


class QuestionPath(NamedTuple):
    section_index: int
    category_index: int
    question_index: int


class Framework(BaseModel):
    """Static question tree: sections hold categories, categories hold questions.

    A framework with no sections is a valid (empty) tree. Sections without
    categories and categories without questions are rejected at construction
    time, so traversal code never has to guess how to skip them.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    version: str = "1.0.0"
    sections: tuple[Section, ...] = ()
    maturity_levels: tuple[MaturityLevel, ...] = ()

    @model_validator(mode="after")
    def check_integrity(self) -> "Framework":
        _ensure_unique([section.id for section in self.sections], f"framework '{self.id}'", "section")
        seen_questions: set[str] = set()
        for section in self.sections:
            if not section.categories:
                raise FrameworkIntegrityError(f"Section '{section.id}' has no categories.")
            _ensure_unique([category.id for category in section.categories], f"section '{section.id}'", "category")
            for category in section.categories:
                if not category.questions:
                    raise FrameworkIntegrityError(
                        f"Category '{category.id}' in section '{section.id}' has no questions."
                    )
                _ensure_unique(
                    [question.id for question in category.questions], f"category '{category.id}'", "question"
                )
                for question in category.questions:
                    # Responses are keyed by question id alone, so ids must be unique tree-wide.
                    if question.id in seen_questions:
                        raise FrameworkIntegrityError(f"Question id '{question.id}' appears more than once.")
                    seen_questions.add(question.id)
                    if not question.options:
                        raise FrameworkIntegrityError(f"Question '{question.id}' declares no options.")
                    _ensure_unique(
                        [str(value) for value in question.option_values], f"question '{question.id}'", "option value"
                    )
        return self

    def iter_questions(self) -> Iterator[tuple[QuestionPath, Section, Category, Question]]:
        for section_index, section in enumerate(self.sections):
            for category_index, category in enumerate(section.categories):
                for question_index, question in enumerate(category.questions):
                    yield QuestionPath(section_index, category_index, question_index), section, category, question

    def question_paths(self) -> dict[str, QuestionPath]:
        return {question.id: path for path, _, _, question in self.iter_questions()}

    def question_at(self, path: QuestionPath) -> Question | None:
        if min(path) < 0:
            return None
        try:
            section = self.sections[path.section_index]
            category = section.categories[path.category_index]
            return category.questions[path.question_index]
        except IndexError:
            return None

    def get_question(self, question_id: str) -> Question:
        for _, _, _, question in self.iter_questions():
            if question.id == question_id:
                return question
        raise UnknownQuestion(question_id)

    @property
    def total_questions(self) -> int:
        return sum(len(category.questions) for section in self.sections for category in section.categories)


def _ensure_unique(identifiers: list[str], scope: str, kind: str) -> None:
    seen: set[str] = set()
    for identifier in identifiers:
        if identifier in seen:
            raise FrameworkIntegrityError(f"Duplicate {kind} id '{identifier}' in {scope}.")
        seen.add(identifier)


def load_framework(payload: dict[str, object]) -> Framework:
    try:
        return Framework.model_validate(payload)
    except ValidationError as err:
        messages = "; ".join(f"{'.'.join(str(part) for part in issue['loc'])}: {issue['msg']}" for issue in err.errors())
        raise FrameworkIntegrityError(f"Invalid framework definition: {messages}") from err


def load_framework_file(path: Path) -> Framework:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise FrameworkIntegrityError(f"Unable to read framework definition '{path}': {exc}") from exc
    if not isinstance(payload, dict):
        raise FrameworkIntegrityError(f"Framework definition '{path}' must be a JSON object.")
    return load_framework(payload)


class FrameworkCatalog:
    def __init__(self, frameworks: list[Framework] | None = None) -> None:
        self._frameworks: dict[str, Framework] = {}
        for framework in frameworks or []:
            self.register(framework)

    @classmethod
    def from_directory(cls, directory: str | Path) -> "FrameworkCatalog":
        catalog = cls()
        root = Path(directory)
        if not root.is_dir():
            logger.warning(
                "framework_directory_missing",
                extra={"event": "framework_directory_missing", "directory": str(root)},
            )
            return catalog
        for path in sorted(root.glob("*.json")):
            catalog.register(load_framework_file(path))
        logger.info(
            "framework_catalog_loaded",
            extra={"event": "framework_catalog_loaded", "directory": str(root), "count": len(catalog)},
        )
        return catalog

    def register(self, framework: Framework) -> None:
        if framework.id in self._frameworks:
            raise FrameworkIntegrityError(f"Framework '{framework.id}' is registered twice.")
        self._frameworks[framework.id] = framework

    def get(self, framework_id: str) -> Framework | None:
        return self._frameworks.get(framework_id)

    def list_frameworks(self) -> list[Framework]:
        return list(self._frameworks.values())

    def __len__(self) -> int:
        return len(self._frameworks)
