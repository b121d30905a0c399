"""Stage outcomes.

Every pipeline stage that must not raise past its boundary reports a ``Result``.
A failed result still carries the best value the stage could produce (for
example the existing processed entries when a refetch failed), so callers can
always use ``.value`` and only consult ``.error`` for logging or reporting.
"""

from dataclasses import dataclass
from enum import auto
from typing import Generic, TypeVar

from .constants import AutoNamedEnum

T = TypeVar("T")


class ErrorKind(AutoNamedEnum):
    TRANSIENT_IO = auto()
    PARSE = auto()
    PARTIAL_BATCH = auto()
    LOCK_CONTENTION = auto()
    STORE = auto()
    UNEXPECTED = auto()


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T
    error: ErrorKind | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, value: T, error: ErrorKind, detail: str = "") -> "Result[T]":
        return cls(value=value, error=error, detail=detail)
