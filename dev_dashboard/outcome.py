"""
Outcome Module

Result values that keep "nothing here" apart from "the call failed".
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class OutcomeStatus(str, Enum):
    FOUND = "found"
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """
    Result of a lookup that may legitimately find nothing.

    FOUND carries a value, NOT_APPLICABLE carries the reason nothing applied
    (missing directory, unrecognized layout) and FAILED carries the error.
    """

    status: OutcomeStatus
    value: Optional[T] = None
    reason: str = ""
    error: Optional[Exception] = None

    @classmethod
    def found(cls, value: T) -> "Outcome[T]":
        return cls(OutcomeStatus.FOUND, value=value)

    @classmethod
    def not_applicable(cls, reason: str) -> "Outcome[T]":
        return cls(OutcomeStatus.NOT_APPLICABLE, reason=reason)

    @classmethod
    def failed(cls, error: Exception) -> "Outcome[T]":
        return cls(OutcomeStatus.FAILED, reason=str(error), error=error)

    @property
    def is_found(self) -> bool:
        return self.status is OutcomeStatus.FOUND

    @property
    def is_not_applicable(self) -> bool:
        return self.status is OutcomeStatus.NOT_APPLICABLE

    @property
    def is_failed(self) -> bool:
        return self.status is OutcomeStatus.FAILED

    def unwrap_or(self, default: T) -> T:
        """Return the value when found, otherwise `default`."""
        if self.is_found:
            return self.value
        return default
