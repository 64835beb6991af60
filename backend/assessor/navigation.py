from __future__ import annotations

from assessor.errors import FrameworkIntegrityError, UnknownQuestion
from assessor.framework import Framework, Question, QuestionPath


class NavigationCursor:
    """Position of the assessor inside the framework tree.

    ``advance`` and ``retreat`` walk questions in reading order and cross
    category and section boundaries. At either end of the tree they leave the
    cursor where it is. An empty framework yields no current question.
    """

    def __init__(self, framework: Framework, position: QuestionPath | None = None) -> None:
        self._framework = framework
        self._position = QuestionPath(0, 0, 0)
        if position is not None:
            self.move_to(position)

    @property
    def position(self) -> QuestionPath:
        return self._position

    def current_question(self) -> Question | None:
        return self._framework.question_at(self._position)

    def move_to(self, position: QuestionPath) -> None:
        if self._framework.question_at(position) is None:
            raise UnknownQuestion(f"{position.section_index}/{position.category_index}/{position.question_index}")
        self._position = QuestionPath(*position)

    def jump_to(self, question_id: str) -> QuestionPath:
        for path, _, _, question in self._framework.iter_questions():
            if question.id == question_id:
                self._position = path
                return path
        raise UnknownQuestion(question_id)

    def is_first(self) -> bool:
        return self._position == QuestionPath(0, 0, 0)

    def is_last(self) -> bool:
        sections = self._framework.sections
        if not sections:
            return True
        section_index, category_index, question_index = self._position
        return (
            section_index == len(sections) - 1
            and category_index == len(sections[section_index].categories) - 1
            and question_index == len(sections[section_index].categories[category_index].questions) - 1
        )

    def advance(self) -> bool:
        """Move to the next question; returns False when already on the last one."""
        sections = self._framework.sections
        if not sections:
            return False
        section_index, category_index, question_index = self._position
        section = sections[section_index]
        category = section.categories[category_index]

        if question_index < len(category.questions) - 1:
            self._position = QuestionPath(section_index, category_index, question_index + 1)
        elif category_index < len(section.categories) - 1:
            self._position = QuestionPath(section_index, category_index + 1, 0)
        elif section_index < len(sections) - 1:
            self._position = QuestionPath(section_index + 1, 0, 0)
        else:
            return False
        self._check_landing()
        return True

    def retreat(self) -> bool:
        """Move to the previous question; returns False when already on the first one."""
        sections = self._framework.sections
        if not sections:
            return False
        section_index, category_index, question_index = self._position

        if question_index > 0:
            self._position = QuestionPath(section_index, category_index, question_index - 1)
        elif category_index > 0:
            previous_category = sections[section_index].categories[category_index - 1]
            self._position = QuestionPath(section_index, category_index - 1, len(previous_category.questions) - 1)
        elif section_index > 0:
            previous_section = sections[section_index - 1]
            last_category_index = len(previous_section.categories) - 1
            last_category = previous_section.categories[last_category_index]
            self._position = QuestionPath(section_index - 1, last_category_index, len(last_category.questions) - 1)
        else:
            return False
        self._check_landing()
        return True

    def _check_landing(self) -> None:
        # Framework validation rejects empty containers; reaching one means the tree was built unchecked.
        if self._framework.question_at(self._position) is None:
            raise FrameworkIntegrityError(
                f"Navigation landed on an empty container at {tuple(self._position)} in framework "
                f"'{self._framework.id}'."
            )
