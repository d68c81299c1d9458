from __future__ import annotations

from typing import Iterable


class GradingError(Exception):
    pass


class ConfigurationError(GradingError):
    pass


class ValidationError(GradingError):
    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid input")


class NotFoundError(GradingError):
    pass


class EmptyInputError(GradingError):
    pass
