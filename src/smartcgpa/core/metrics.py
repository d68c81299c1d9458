from __future__ import annotations

from dataclasses import dataclass

from smartcgpa.core.grading import GradingConfig, grade_bucket_for_total
from smartcgpa.core.models import Subject, ensure_valid_subject


@dataclass(frozen=True)
class SubjectMetrics:
    identifier: str
    scaled_external: float
    total: float
    grade_point: float
    weighted_points: float
    credits: int
    label: str = ""


def scale_external(external_marks: float, config: GradingConfig) -> float:
    return external_marks * config.max_internal / config.max_external


def compute_metrics(subject: Subject, config: GradingConfig) -> SubjectMetrics:
    """
    total = internal + external rescaled onto the internal axis
    grade point = first bucket (highest minimum first) the total reaches
    weighted points = grade point * credits
    """
    ensure_valid_subject(subject, config)

    scaled = scale_external(subject.external_marks, config)
    total = subject.internal_marks + scaled
    bucket = grade_bucket_for_total(total, config)

    return SubjectMetrics(
        identifier=subject.identifier,
        scaled_external=scaled,
        total=total,
        grade_point=bucket.grade_point,
        weighted_points=bucket.grade_point * subject.credits,
        credits=subject.credits,
        label=bucket.label,
    )
