"""Scopes bounding the lifetime of locators and mapped regions.

`begin()` opens a scope, `end()` closes the innermost one. Every locator and
mapped region created while a scope is open belongs to the innermost scope,
and ending the scope releases all of them (unmapping regions first, then
annulling locators, most recent first). Objects the caller already released
are skipped.

Objects created while no scope is open are not tracked, they must be released
by the caller.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, TypeVar

from typing_extensions import Protocol

from ..errors import HDSError, InvalidOperationError

logger = logging.getLogger(__name__)


class Annullable(Protocol):
    def valid(self) -> bool:
        ...

    def annul(self) -> None:
        ...


class Unmappable(Protocol):
    @property
    def mapped(self) -> bool:
        ...

    def unmap(self) -> None:
        ...


A = TypeVar("A", bound=Annullable)
U = TypeVar("U", bound=Unmappable)


class _Frame:
    def __init__(self):
        self.locators: List[Annullable] = []
        self.regions: List[Unmappable] = []


class ScopeStack:
    """Stack of open scopes (LIFO, arbitrarily deep)."""

    def __init__(self):
        self._frames: List[_Frame] = []

    @property
    def depth(self) -> int:
        return len(self._frames)

    def begin(self) -> None:
        self._frames.append(_Frame())

    def end(self) -> None:
        """Close the innermost scope, releasing everything registered in it.

        All objects are released even if releasing some of them fails,
        the first failure is raised afterwards.
        """
        if not self._frames:
            raise InvalidOperationError("There is no open scope to end!")
        frame = self._frames.pop()

        error: Optional[HDSError] = None
        unmapped = annulled = 0
        for region in reversed(frame.regions):
            if not region.mapped:
                continue
            try:
                region.unmap()
                unmapped += 1
            except HDSError as e:
                error = error or e
        for loc in reversed(frame.locators):
            if not loc.valid():
                continue
            try:
                loc.annul()
                annulled += 1
            except HDSError as e:
                error = error or e

        logger.debug(
            "ended scope at depth %d (%d unmapped, %d annulled)",
            len(self._frames) + 1,
            unmapped,
            annulled,
        )
        if error is not None:
            raise error

    def register_locator(self, loc: A) -> A:
        """Attach a locator to the innermost scope (if any), return it."""
        if self._frames:
            self._frames[-1].locators.append(loc)
        return loc

    def register_region(self, region: U) -> U:
        """Attach a mapped region to the innermost scope (if any), return it."""
        if self._frames:
            self._frames[-1].regions.append(region)
        return region


SCOPES: ScopeStack = ScopeStack()
"""The scope stack of the process."""


def begin() -> None:
    """Open a new scope."""
    SCOPES.begin()


def end() -> None:
    """Close the innermost scope, see `ScopeStack.end`."""
    SCOPES.end()


def depth() -> int:
    """Return number of currently open scopes."""
    return SCOPES.depth


@contextmanager
def scope() -> Iterator[None]:
    """Run a block inside of a scope that is ended on exit."""
    begin()
    try:
        yield
    finally:
        end()
