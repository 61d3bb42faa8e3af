"""
Outcome of a single message-pipeline step.

Steps report success or failure as a value instead of raising, and the
pipeline decides from a fixed policy whether a failed step halts the run
or is only logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class StepResult(Generic[T]):
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None) -> StepResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> StepResult[T]:
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value, re-raising the captured error on failure."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
