"""Exceptions raised by the bridge.

Every failure reaching the caller is one of these. Failures reported by the
store engine are collected from its error stack and categorized by
`hdsbridge.hds.context.flush`, everything else is raised directly where the
misuse is detected.
"""
from typing import Optional


class HDSError(Exception):
    """Base class of all bridge errors.

    If the error originates from the store engine, `status` holds the
    status value reported by it, otherwise it is None.
    """

    def __init__(self, msg: str = "", status: Optional[int] = None):
        super().__init__(msg)
        self.status = status


class InvalidHandleError(HDSError, ValueError):
    """Locator was already annulled (or released by the end of its scope)."""


class NotFoundError(HDSError, KeyError):
    """Named component or extension does not exist."""

    def __str__(self) -> str:
        # KeyError would quote the message
        return str(self.args[0]) if self.args else ""


class UnsupportedTypeError(HDSError, TypeError):
    """Type string is not one of the recognized primitive types."""


class InvalidOperationError(HDSError, ValueError):
    """Operation not possible on this object in its current state."""


class SizeMismatchError(HDSError, ValueError):
    """Buffer and component (or mapped region) sizes do not agree."""


class RangeError(HDSError, IndexError):
    """Axis, subscript or positional index out of bounds."""


class InvalidArgumentError(HDSError, ValueError):
    """Argument outside of the fixed set of allowed values."""


class StoreIOError(HDSError, OSError):
    """Store reported a problem with the underlying file."""


class StoreError(HDSError, RuntimeError):
    """Any other failure reported by the store engine."""
