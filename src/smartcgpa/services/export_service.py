from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

from smartcgpa.core.gpa import aggregate_cumulative, aggregate_semester
from smartcgpa.core.grading import GradingConfig
from smartcgpa.core.models import Semester


def build_export(semesters: Sequence[Semester], config: GradingConfig) -> Dict[str, Any]:
    cumulative = aggregate_cumulative(semesters, config)

    detailed: List[Dict[str, Any]] = []
    for semester in semesters:
        result = aggregate_semester(semester.subjects, config)
        detailed.append(
            {
                "id": semester.identifier,
                "name": semester.name,
                "gpa": result.gpa,
                "total_credits": result.total_credits,
                "total_weighted_points": result.total_weighted_points,
                "best_attainable_gpa": result.best_attainable_gpa,
                "subjects": [
                    {**asdict(subject), **asdict(metrics)}
                    for subject, metrics in zip(semester.subjects, result.subject_metrics)
                ],
            }
        )

    return {
        "cgpa": cumulative.cgpa,
        "total_credits": cumulative.total_credits,
        "per_semester_breakdown": [asdict(item) for item in cumulative.per_semester_breakdown],
        "semesters": detailed,
        "config": asdict(config),
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


def _fmt(value: float) -> str:
    return f"{value:g}"


def render_text_report(semesters: Sequence[Semester], config: GradingConfig) -> str:
    cumulative = aggregate_cumulative(semesters, config)
    lines = [
        "CGPA Report",
        f"Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}",
        f"Total Credits: {cumulative.total_credits}",
        f"CGPA: {cumulative.cgpa:.{config.rounding_digits}f}",
        "",
        "Semester Breakdown",
    ]

    for semester, summary in zip(semesters, cumulative.per_semester_breakdown):
        result = aggregate_semester(semester.subjects, config)
        lines.append(
            f"{summary.name or summary.semester_id} - Credits: {summary.credits} | "
            f"SGPA: {summary.gpa:.{config.rounding_digits}f}"
        )
        for subject, metrics in zip(semester.subjects, result.subject_metrics):
            lines.append(
                f"  {subject.identifier} {subject.display_name} | Credits: {subject.credits} | "
                f"CIE: {_fmt(subject.internal_marks)} | SEE: {_fmt(subject.external_marks)} | "
                f"Total: {_fmt(metrics.total)} | GP: {_fmt(metrics.grade_point)}"
            )
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
