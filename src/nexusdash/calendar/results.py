"""Typed result values returned by the calendar core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying ``value`` and the HTTP status to answer with."""

    value: T
    status: int = 200

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Fail:
    """Failed outcome: an HTTP status plus an error kind from the taxonomy."""

    status: int
    error: str

    @property
    def ok(self) -> bool:
        return False
