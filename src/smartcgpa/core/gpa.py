from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Sequence, Sized, Tuple

from smartcgpa.core.errors import EmptyInputError
from smartcgpa.core.grading import GradingConfig, round_half_up
from smartcgpa.core.metrics import SubjectMetrics, compute_metrics
from smartcgpa.core.models import Semester, Subject


@dataclass(frozen=True)
class SemesterResult:
    subject_metrics: Tuple[SubjectMetrics, ...]
    gpa: float
    total_credits: int
    total_weighted_points: float
    best_attainable_gpa: float


@dataclass(frozen=True)
class SemesterBreakdown:
    semester_id: str
    name: str
    gpa: float
    credits: int


@dataclass(frozen=True)
class CumulativeResult:
    cgpa: float
    total_credits: int
    per_semester_breakdown: Tuple[SemesterBreakdown, ...]


def _sum_weighted(metrics: Iterable[SubjectMetrics]) -> Tuple[float, int]:
    weighted = 0.0
    total_credits = 0
    for m in metrics:
        weighted += m.weighted_points
        total_credits += m.credits
    return weighted, total_credits


def raw_gpa(subjects: Sequence[Subject], config: GradingConfig) -> float:
    """Unrounded semester GPA; 0.0 when there are no credits."""
    weighted, total_credits = _sum_weighted(compute_metrics(s, config) for s in subjects)
    if total_credits == 0:
        return 0.0
    return weighted / total_credits


def aggregate_semester(subjects: Sequence[Subject], config: GradingConfig) -> SemesterResult:
    """
    SGPA = sum(grade_point * credits) / sum(credits)

    Only the final ratios are rounded. An empty semester yields zeros.
    """
    metrics = tuple(compute_metrics(s, config) for s in subjects)
    weighted, total_credits = _sum_weighted(metrics)

    ceiling = [s.with_external_marks(config.max_external) for s in subjects]
    best_weighted, _ = _sum_weighted(compute_metrics(s, config) for s in ceiling)

    if total_credits == 0:
        gpa = best = 0.0
    else:
        gpa = round_half_up(weighted / total_credits, config.rounding_digits)
        best = round_half_up(best_weighted / total_credits, config.rounding_digits)

    return SemesterResult(
        subject_metrics=metrics,
        gpa=gpa,
        total_credits=total_credits,
        total_weighted_points=weighted,
        best_attainable_gpa=best,
    )


def aggregate_cumulative(semesters: Sequence[Semester], config: GradingConfig) -> CumulativeResult:
    """
    CGPA = sum(sgpa * semester_credits) / sum(semester_credits)

    Each semester contributes its rounded SGPA weighted by its credits.
    """
    breakdown: List[SemesterBreakdown] = []
    weighted_sum = 0.0
    total_credits = 0

    for semester in semesters:
        result = aggregate_semester(semester.subjects, config)
        breakdown.append(
            SemesterBreakdown(
                semester_id=semester.identifier,
                name=semester.name,
                gpa=result.gpa,
                credits=result.total_credits,
            )
        )
        weighted_sum += result.gpa * result.total_credits
        total_credits += result.total_credits

    cgpa = round_half_up(weighted_sum / total_credits, config.rounding_digits) if total_credits else 0.0
    return CumulativeResult(cgpa=cgpa, total_credits=total_credits, per_semester_breakdown=tuple(breakdown))


def ensure_not_empty(items: Sized, what: str) -> None:
    """Caller-side policy for treating an empty aggregation as an error."""
    if len(items) == 0:
        raise EmptyInputError(f"No {what} found")
