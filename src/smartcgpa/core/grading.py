from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple

from smartcgpa.core.errors import ConfigurationError


@dataclass(frozen=True)
class GradeBucket:
    minimum_total: float
    grade_point: float
    label: str = ""


DEFAULT_BUCKETS: Tuple[GradeBucket, ...] = (
    GradeBucket(90, 10, "O"),
    GradeBucket(80, 9, "A+"),
    GradeBucket(70, 8, "A"),
    GradeBucket(60, 7, "B+"),
    GradeBucket(50, 6, "B"),
    GradeBucket(40, 5, "C"),
    GradeBucket(0, 4, "F"),
)


@dataclass(frozen=True)
class GradingConfig:
    """Marks scale and grade-point table for one institution.

    Buckets are kept sorted by ``minimum_total`` descending, so a lookup is
    "first bucket whose minimum the total reaches". Construction fails with
    ConfigurationError when the table has no floor bucket at 0, repeats a
    minimum, or assigns a lower grade point to a higher minimum (the planners
    rely on grade points never dropping as marks rise).
    """

    max_internal: float = 50
    max_external: float = 100
    buckets: Tuple[GradeBucket, ...] = field(default=DEFAULT_BUCKETS)
    rounding_digits: int = 2

    def __post_init__(self) -> None:
        if self.max_internal <= 0:
            raise ConfigurationError("max_internal must be greater than 0")
        if self.max_external <= 0:
            raise ConfigurationError("max_external must be greater than 0")
        if isinstance(self.rounding_digits, bool) or not isinstance(self.rounding_digits, int):
            raise ConfigurationError("rounding_digits must be an integer")
        if self.rounding_digits < 0:
            raise ConfigurationError("rounding_digits must be >= 0")

        ordered = tuple(sorted(self.buckets, key=lambda b: b.minimum_total, reverse=True))
        if not ordered:
            raise ConfigurationError("At least one grade bucket is required")
        if not any(b.minimum_total == 0 for b in ordered):
            raise ConfigurationError("A floor bucket with minimum_total 0 is required")
        if any(b.minimum_total < 0 for b in ordered):
            raise ConfigurationError("Bucket minimum_total cannot be negative")

        for higher, lower in zip(ordered, ordered[1:]):
            if higher.minimum_total == lower.minimum_total:
                raise ConfigurationError(f"Duplicate bucket minimum_total: {higher.minimum_total}")
            if higher.grade_point < lower.grade_point:
                raise ConfigurationError(
                    f"Grade points must not decrease as minimum_total rises "
                    f"({lower.minimum_total} -> {lower.grade_point}, "
                    f"{higher.minimum_total} -> {higher.grade_point})"
                )

        object.__setattr__(self, "buckets", ordered)

    @classmethod
    def from_buckets(
        cls,
        buckets: Iterable[Tuple[float, float, str]],
        *,
        max_internal: float = 50,
        max_external: float = 100,
        rounding_digits: int = 2,
    ) -> "GradingConfig":
        return cls(
            max_internal=max_internal,
            max_external=max_external,
            buckets=tuple(GradeBucket(minimum, point, label) for minimum, point, label in buckets),
            rounding_digits=rounding_digits,
        )


DEFAULT_CONFIG = GradingConfig()


def round_half_up(value: float, digits: int) -> float:
    """Round half away from zero; Python's round() uses banker's rounding."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def grade_bucket_for_total(total: float, config: GradingConfig) -> GradeBucket:
    for bucket in config.buckets:
        if total >= bucket.minimum_total:
            return bucket
    raise ConfigurationError(f"No grade bucket matches total {total}")


def grade_point_for_total(total: float, config: GradingConfig) -> float:
    return grade_bucket_for_total(total, config).grade_point
