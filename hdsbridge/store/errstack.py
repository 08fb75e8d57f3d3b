"""Global error stack of the store engine.

The engine never raises informative exceptions itself. It reports each problem
as a `(param, message)` frame together with a status value, possibly several
frames for one failure (innermost first), and then raises `StatusError` to
abort the operation. Frames live in context levels: `mark` opens a new level,
`load` pulls the oldest frame of the current level and `release` closes it.

There is exactly one stack per process, the engine is not reentrant.
"""
from __future__ import annotations

import logging
from enum import IntEnum
from typing import List, NamedTuple, Optional

logger = logging.getLogger(__name__)


class Status(IntEnum):
    """Status values reported by the store engine."""

    OK = 0
    ERROR = 1
    FILE_NOT_FOUND = 2
    FILE_INVALID = 3
    FILE_IN_USE = 4
    OBJECT_NOT_FOUND = 5
    OBJECT_INVALID = 6
    LOCATOR_INVALID = 7
    SUBSCRIPT_INVALID = 8
    DIMS_INVALID = 9
    TYPE_INVALID = 10
    NAME_INVALID = 11
    MODE_INVALID = 12
    ACCESS_CONFLICT = 13
    COMPONENT_EXISTS = 14
    NOT_PRIMITIVE = 15
    UNDEFINED = 16
    BOUNDS_MISMATCH = 17
    ALREADY_MAPPED = 18
    HDF5_ERROR = 19
    IO_ERROR = 20


class StatusError(Exception):
    """Raised by the engine after reporting frames for a failed operation."""

    def __init__(self, status: Status):
        super().__init__(status.name)
        self.status = status


class Frame(NamedTuple):
    param: str
    message: str
    status: Status


# list of context levels, the last one is the current level
_levels: List[List[Frame]] = [[]]


def mark() -> None:
    """Open a new (empty) context level."""
    _levels.append([])


def release() -> None:
    """Close the current context level, discarding any frames left in it."""
    level = _levels.pop() if len(_levels) > 1 else _levels[0]
    if level:
        logger.debug("discarding %d unflushed error frame(s)", len(level))
        level.clear()


def report(param: str, message: str, status: Status) -> None:
    """Push a frame onto the current context level."""
    if status == Status.OK:
        raise ValueError("Cannot report an error with status OK!")
    _levels[-1].append(Frame(param, message, status))


def status() -> Status:
    """Return status of the most recent frame in the current level (or OK)."""
    level = _levels[-1]
    return level[-1].status if level else Status.OK


def load() -> Optional[Frame]:
    """Pull the oldest pending frame of the current level, None if exhausted."""
    level = _levels[-1]
    return level.pop(0) if level else None


def level() -> int:
    """Return the number of open context levels above the base level."""
    return len(_levels) - 1


def pending() -> int:
    """Return the number of frames in all levels."""
    return sum(map(len, _levels))


def fail(param: str, message: str, status: Status) -> StatusError:
    """Report a frame and return the exception to abort the operation with.

    Use as `raise fail(...)`.
    """
    report(param, message, status)
    return StatusError(status)
