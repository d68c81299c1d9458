"""What-if planning over external (end-semester) marks.

Grade point is piecewise constant in marks, so semester GPA only moves when a
subject's total crosses a bucket boundary. The planners below probe
hypothetical marks on copies of the subject list; caller data is never touched.

``greedy_plan`` is a heuristic. It does not promise the smallest total mark
increase across subjects.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from smartcgpa.core.errors import ValidationError
from smartcgpa.core.gpa import aggregate_semester, raw_gpa
from smartcgpa.core.grading import GradingConfig, grade_point_for_total, round_half_up
from smartcgpa.core.metrics import scale_external
from smartcgpa.core.models import Subject, index_of, with_external_at

logger = logging.getLogger(__name__)

NOT_POSSIBLE = -1
DEFAULT_MAX_ITERATIONS = 1000
MAX_GRID_POINTS = 10001


@dataclass(frozen=True)
class CriticalValue:
    cutoff_total: float
    required_external_marks: float
    grade_point: float
    reachable: bool
    label: str = ""


@dataclass(frozen=True)
class SubjectPlan:
    subject_identifier: str
    display_name: str
    current_external_marks: float
    minimal_external_marks: float
    achieved_gpa: float
    possible: bool
    marginal_gain: float


@dataclass(frozen=True)
class PlanStep:
    subject_identifier: str
    display_name: str
    from_external_marks: float
    to_external_marks: float
    increase_by: float
    resulting_gpa: float


@dataclass(frozen=True)
class GlobalPlan:
    steps: Tuple[PlanStep, ...]
    final_gpa: float
    target_reached: bool
    best_attainable_gpa: float
    iterations: int


@dataclass(frozen=True)
class MarginalGain:
    subject_identifier: str
    display_name: str
    marginal_gain: float


@dataclass(frozen=True)
class CurvePoint:
    external_marks: float
    gpa: float
    grade_point: float


@dataclass(frozen=True)
class HeatmapCell:
    external_marks_a: float
    external_marks_b: float
    gpa: float


def _gpa(subjects: Sequence[Subject], config: GradingConfig) -> float:
    return round_half_up(raw_gpa(subjects, config), config.rounding_digits)


def _step_marks(step: float, config: GradingConfig) -> List[float]:
    if step <= 0:
        raise ValidationError(["step must be greater than 0"])
    count = int(config.max_external // step) + 1
    if count > MAX_GRID_POINTS:
        raise ValidationError([f"step too small: more than {MAX_GRID_POINTS} marks on the grid"])
    # Points come from the index, not a running sum.
    marks = [round(i * step, 9) for i in range(count)]
    if marks[-1] < config.max_external:
        marks.append(config.max_external)
    return marks


def find_critical_external_marks(internal_marks: float, config: GradingConfig) -> List[CriticalValue]:
    """External marks needed to reach each bucket's cutoff, ascending.

    required = (cutoff - internal) * max_external / max_internal, reported
    clamped to [0, max_external]; ``reachable`` tells whether the unclamped
    value already lay inside that range.
    """
    criticals = []
    for bucket in config.buckets:
        required = (bucket.minimum_total - internal_marks) * config.max_external / config.max_internal
        criticals.append(
            CriticalValue(
                cutoff_total=bucket.minimum_total,
                required_external_marks=max(0, min(config.max_external, required)),
                grade_point=bucket.grade_point,
                reachable=0 <= required <= config.max_external,
                label=bucket.label,
            )
        )
    criticals.sort(key=lambda c: c.required_external_marks)
    return criticals


def _marginal_gain(subjects: Sequence[Subject], index: int, config: GradingConfig) -> float:
    subject = subjects[index]
    bumped = with_external_at(subjects, index, min(subject.external_marks + 1, config.max_external))
    gain = raw_gpa(bumped, config) - raw_gpa(subjects, config)
    return round_half_up(gain, config.rounding_digits + 2)


def find_minimal_external_marks_for_target(
    subjects: Sequence[Subject],
    target_identifier: str,
    target_gpa: float,
    config: GradingConfig,
) -> SubjectPlan:
    """Smallest whole external mark for one subject that lifts the semester
    GPA to ``target_gpa``, holding every other subject fixed.

    Binary search over [current, max_external]; valid because GPA never drops
    as one subject's marks rise. ``minimal_external_marks`` is NOT_POSSIBLE
    when even max_external falls short.
    """
    subjects = list(subjects)
    index = index_of(subjects, target_identifier)
    subject = subjects[index]

    current_gpa = _gpa(subjects, config)
    marginal_gain = _marginal_gain(subjects, index, config)

    if current_gpa >= target_gpa:
        return SubjectPlan(
            subject_identifier=subject.identifier,
            display_name=subject.display_name,
            current_external_marks=subject.external_marks,
            minimal_external_marks=subject.external_marks,
            achieved_gpa=current_gpa,
            possible=True,
            marginal_gain=marginal_gain,
        )

    left = math.ceil(subject.external_marks)
    right = math.floor(config.max_external)
    minimal = NOT_POSSIBLE
    achieved = current_gpa

    while left <= right:
        mid = (left + right) // 2
        probe_gpa = _gpa(with_external_at(subjects, index, mid), config)
        if probe_gpa >= target_gpa:
            minimal = mid
            achieved = probe_gpa
            right = mid - 1
        else:
            left = mid + 1

    return SubjectPlan(
        subject_identifier=subject.identifier,
        display_name=subject.display_name,
        current_external_marks=subject.external_marks,
        minimal_external_marks=minimal,
        achieved_gpa=achieved,
        possible=minimal != NOT_POSSIBLE,
        marginal_gain=marginal_gain,
    )


def _next_external_marks(subject: Subject, config: GradingConfig) -> float:
    for critical in find_critical_external_marks(subject.internal_marks, config):
        if critical.reachable and critical.required_external_marks > subject.external_marks:
            return min(critical.required_external_marks, config.max_external)
    return min(subject.external_marks + 1, config.max_external)


def greedy_plan(
    subjects: Sequence[Subject],
    target_gpa: float,
    config: GradingConfig,
    *,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> GlobalPlan:
    """
    Repeatedly raise the subject whose +1 external mark gives the largest
    GPA gain, jumping straight to that subject's next grade boundary.
    Stops when the target is met, every subject is at max_external, no +1
    move improves the GPA, or ``max_iterations`` is hit. Ties go to the
    subject listed first.
    """
    original = list(subjects)
    working = original
    steps: List[PlanStep] = []

    current_raw = raw_gpa(working, config)
    current_gpa = round_half_up(current_raw, config.rounding_digits)
    iterations = 0

    while current_gpa < target_gpa:
        if iterations >= max_iterations:
            logger.debug(f"Greedy planner stopped at iteration cap {max_iterations}")
            break
        iterations += 1

        if all(s.external_marks >= config.max_external for s in working):
            break

        best_index = -1
        best_gain = 0.0
        for idx, subject in enumerate(working):
            if subject.external_marks >= config.max_external:
                continue
            probe = with_external_at(working, idx, min(subject.external_marks + 1, config.max_external))
            gain = raw_gpa(probe, config) - current_raw
            if gain > best_gain:
                best_gain = gain
                best_index = idx

        if best_index == -1:
            logger.debug("Greedy planner found no improving move")
            break

        subject = working[best_index]
        to_marks = _next_external_marks(subject, config)
        working = with_external_at(working, best_index, to_marks)
        current_raw = raw_gpa(working, config)
        current_gpa = round_half_up(current_raw, config.rounding_digits)

        logger.debug(f"Greedy step {iterations}: {subject.identifier} {subject.external_marks} -> {to_marks}")
        steps.append(
            PlanStep(
                subject_identifier=subject.identifier,
                display_name=subject.display_name,
                from_external_marks=subject.external_marks,
                to_external_marks=to_marks,
                increase_by=to_marks - subject.external_marks,
                resulting_gpa=current_gpa,
            )
        )

    best = aggregate_semester(original, config).best_attainable_gpa
    return GlobalPlan(
        steps=tuple(steps),
        final_gpa=current_gpa,
        target_reached=current_gpa >= target_gpa,
        best_attainable_gpa=best,
        iterations=iterations,
    )


def marginal_gains(subjects: Sequence[Subject], config: GradingConfig) -> List[MarginalGain]:
    subjects = list(subjects)
    gains = []
    for idx, subject in enumerate(subjects):
        gain = 0.0 if subject.external_marks >= config.max_external else _marginal_gain(subjects, idx, config)
        gains.append(MarginalGain(subject.identifier, subject.display_name, gain))
    return gains


def gpa_curve(
    subjects: Sequence[Subject],
    identifier: str,
    config: GradingConfig,
    step: float = 1,
) -> List[CurvePoint]:
    subjects = list(subjects)
    index = index_of(subjects, identifier)
    internal = subjects[index].internal_marks

    curve = []
    for marks in _step_marks(step, config):
        gpa = _gpa(with_external_at(subjects, index, marks), config)
        grade_point = grade_point_for_total(internal + scale_external(marks, config), config)
        curve.append(CurvePoint(marks, gpa, grade_point))
    return curve


def pairwise_heatmap(
    subjects: Sequence[Subject],
    identifier_a: str,
    identifier_b: str,
    config: GradingConfig,
    step: float = 5,
) -> List[HeatmapCell]:
    subjects = list(subjects)
    index_a = index_of(subjects, identifier_a)
    index_b = index_of(subjects, identifier_b)
    if index_a == index_b:
        raise ValidationError(["Heatmap needs two different subjects"])

    marks = _step_marks(step, config)
    cells = []
    for marks_a in marks:
        row = with_external_at(subjects, index_a, marks_a)
        for marks_b in marks:
            gpa = _gpa(with_external_at(row, index_b, marks_b), config)
            cells.append(HeatmapCell(marks_a, marks_b, gpa))
    return cells
