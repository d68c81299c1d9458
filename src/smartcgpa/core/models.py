from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Sequence, Tuple

from smartcgpa.core.errors import NotFoundError, ValidationError
from smartcgpa.core.grading import GradingConfig


@dataclass(frozen=True)
class Subject:
    identifier: str
    display_name: str
    internal_marks: float
    external_marks: float
    credits: int

    def with_external_marks(self, external_marks: float) -> "Subject":
        return replace(self, external_marks=external_marks)


@dataclass(frozen=True)
class Semester:
    identifier: str
    name: str = ""
    subjects: Tuple[Subject, ...] = field(default_factory=tuple)


def validate_subject(subject: Subject, config: GradingConfig) -> List[str]:
    errors: List[str] = []
    label = subject.identifier or "subject"

    if not str(subject.identifier or "").strip():
        errors.append("Subject identifier is required")
    if not str(subject.display_name or "").strip():
        errors.append(f"{label}: display name is required")
    if not 0 <= subject.internal_marks <= config.max_internal:
        errors.append(f"{label}: internal marks must be between 0 and {config.max_internal}")
    if not 0 <= subject.external_marks <= config.max_external:
        errors.append(f"{label}: external marks must be between 0 and {config.max_external}")
    if isinstance(subject.credits, bool) or not isinstance(subject.credits, int) or subject.credits < 1:
        errors.append(f"{label}: credits must be an integer >= 1")

    return errors


def ensure_valid_subject(subject: Subject, config: GradingConfig) -> None:
    errors = validate_subject(subject, config)
    if errors:
        raise ValidationError(errors)


def index_of(subjects: Sequence[Subject], identifier: str) -> int:
    for idx, subject in enumerate(subjects):
        if subject.identifier == identifier:
            return idx
    raise NotFoundError(f"Subject {identifier} not found")


def with_external_at(subjects: Sequence[Subject], index: int, external_marks: float) -> List[Subject]:
    """Copy of ``subjects`` with only the subject at ``index`` changed."""
    return [
        subject.with_external_marks(external_marks) if idx == index else subject
        for idx, subject in enumerate(subjects)
    ]
