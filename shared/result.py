"""
Explicit success/failure values for component boundaries.

Used where a failure is an expected outcome the caller must branch on
(e.g. org context resolution) rather than an exceptional condition.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome."""
    value: T

    def is_ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err(Generic[E]):
    """Failed outcome."""
    error: E

    def is_ok(self) -> bool:
        return False


Result = Union[Ok[T], Err[E]]
