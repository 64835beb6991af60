from __future__ import annotations


class AssessmentError(RuntimeError):
    """Base class for expected failures raised by the assessment engine."""


class FrameworkIntegrityError(AssessmentError):
    """Raised when a framework definition violates the tree invariants."""


class UnknownQuestion(AssessmentError, KeyError):
    def __init__(self, question_id: str) -> None:
        super().__init__(f"Question '{question_id}' is not part of the framework.")
        self.question_id = question_id

    def __str__(self) -> str:
        return str(self.args[0])


class InvalidResponseValue(AssessmentError, ValueError):
    def __init__(self, question_id: str, value: object, allowed: list[int]) -> None:
        super().__init__(
            f"Value {value!r} is not a declared option for question '{question_id}' (allowed: {allowed})."
        )
        self.question_id = question_id
        self.value = value
        self.allowed = allowed


class InvalidMetadata(AssessmentError, ValueError):
    """Raised when per-question metadata falls outside its declared range."""


class DuplicateLink(AssessmentError):
    def __init__(self, question_id: str, evidence_id: str) -> None:
        super().__init__(f"Evidence '{evidence_id}' is already linked to question '{question_id}'.")
        self.question_id = question_id
        self.evidence_id = evidence_id


class UnknownEvidence(AssessmentError, KeyError):
    def __init__(self, evidence_id: str) -> None:
        super().__init__(f"Evidence '{evidence_id}' is not in the assessment library.")
        self.evidence_id = evidence_id

    def __str__(self) -> str:
        return str(self.args[0])


class NoAssignees(AssessmentError):
    def __init__(self, question_id: str) -> None:
        super().__init__(f"Question '{question_id}' has no assignees.")
        self.question_id = question_id


class PersistenceError(AssessmentError):
    """Raised when the snapshot store cannot write or read an assessment."""


class StorageError(AssessmentError):
    """Raised when evidence file storage read/write fails."""


class SessionClosed(AssessmentError):
    """Raised when a closed assessment session receives a mutation."""


class UploadDiscarded(AssessmentError):
    """Raised when the session was closed, left or reset while an upload was in flight."""
