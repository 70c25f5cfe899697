"""Tagged result type describing the outcome of a write."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar


T = TypeVar("T")


class MutationStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    """Outcome of a mutation; ``value`` is ``None`` unless it succeeded."""

    status: MutationStatus
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def pending(cls) -> "MutationResult[T]":
        return cls(status=MutationStatus.PENDING)

    @classmethod
    def succeeded(cls, value: T) -> "MutationResult[T]":
        return cls(status=MutationStatus.SUCCEEDED, value=value)

    @classmethod
    def failed(cls, error: str) -> "MutationResult[T]":
        return cls(status=MutationStatus.FAILED, error=error)

    @property
    def ok(self) -> bool:
        return self.status is MutationStatus.SUCCEEDED

    @property
    def is_pending(self) -> bool:
        return self.status is MutationStatus.PENDING


__all__ = ["MutationResult", "MutationStatus"]
