"""
status.py — Runner status values and their merge priority.

Priority order (low → high): not-started < passed < dnf < non-starter.
A merge keeps whichever of two statuses ranks higher. non-starter ranking
above dnf is kept as the field application has always behaved.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class RunnerStatus(str, Enum):
    NOT_STARTED = "not-started"
    PASSED = "passed"
    DNF = "dnf"
    NON_STARTER = "non-starter"


STATUS_ORDER: tuple[RunnerStatus, ...] = (
    RunnerStatus.NOT_STARTED,
    RunnerStatus.PASSED,
    RunnerStatus.DNF,
    RunnerStatus.NON_STARTER,
)

DEFAULT_STATUS = RunnerStatus.NOT_STARTED.value


def status_priority(status: str | None) -> Optional[int]:
    """Return the rank of a status, or None for values outside the order."""
    try:
        return STATUS_ORDER.index(RunnerStatus(status))
    except ValueError:
        return None


def compare_status(a: str | None, b: str | None) -> int:
    """Three-way compare by priority: negative if a < b, 0 if equal, positive if a > b.

    Unknown statuses sort below every known one.
    """
    pa = status_priority(a)
    pb = status_priority(b)
    pa = -1 if pa is None else pa
    pb = -1 if pb is None else pb
    return pa - pb


def outranks(imported: str | None, existing: str | None) -> bool:
    """True if `imported` should replace `existing` during a merge.

    A status outside the known order never wins and never loses.
    """
    pi = status_priority(imported)
    pe = status_priority(existing)
    if pi is None or pe is None:
        return False
    return pi > pe
