"""Axis index translation and the extension namespace of an object.

Axes are numbered from zero in caller order at this interface, but from one in
store order inside the store. Extensions are the components of the `MORE`
structure of an object, enumerated in creation order.
"""
from __future__ import annotations

from typing import Optional, Sequence, Tuple

from typing_extensions import Final, Protocol

from ..errors import InvalidArgumentError, NotFoundError, RangeError
from ..hds.locator import Locator

WHOLE_OBJECT: Final[int] = -1
"""Caller axis index meaning "all axes"."""

STORE_WHOLE_OBJECT: Final[int] = 0
"""Store axis index meaning "all axes"."""

EXT_NAME: Final[str] = "MORE"
"""Name of the structure holding the extensions of an object."""

EXT_TYPE: Final[str] = "EXT"

XLOC_MODES: Final[Tuple[str, ...]] = ("READ", "UPDATE", "WRITE")


class Dimensioned(Protocol):
    def dim(self) -> Tuple[int, ...]:
        ...


def store_axis(ndim: int, iaxis: int) -> int:
    """Translate a zero-based caller axis index into a one-based store axis index.

    Args:
        ndim: number of dimensions of the object
        iaxis: caller axis index in `[0, ndim-1]`, or -1 for the whole object

    Returns:
        The store axis `ndim - iaxis`, or 0 for the whole object.
    """
    if iaxis == WHOLE_OBJECT:
        return STORE_WHOLE_OBJECT
    if not 0 <= iaxis < ndim:
        raise RangeError(f"Axis index {iaxis} out of range 0..{ndim - 1} (or -1)!")
    return ndim - iaxis


def translate_axis(obj: Dimensioned, iaxis: int) -> int:
    """Translate a caller axis index of the object, see `store_axis`."""
    return store_axis(len(obj.dim()), int(iaxis))


# ---- extensions ----


def _extensions(loc: Locator, mode: Optional[str] = None) -> Optional[Locator]:
    """Return locator to the extension structure, None if there is none."""
    if not loc.there(EXT_NAME):
        return None
    return loc.find(EXT_NAME, mode)


def xnumb(loc: Locator) -> int:
    """Return number of extensions of the object."""
    more = _extensions(loc)
    if more is None:
        return 0
    with more:
        return more.ncomp()


def xname(loc: Locator, n: int) -> str:
    """Return name of the extension at zero-based position `n`."""
    more = _extensions(loc)
    if more is None:
        raise RangeError(f"Extension index {n} out of range, object has no extensions!")
    with more:
        with more.index(n) as ext:
            return ext.name()


def xstat(loc: Locator, name: str) -> bool:
    """Return whether the object has an extension with that name."""
    more = _extensions(loc)
    if more is None:
        return False
    with more:
        return more.there(name)


def xloc(loc: Locator, name: str, mode: str = "READ") -> Locator:
    """Return locator to an extension, with access mode `READ`, `UPDATE` or `WRITE`."""
    if mode not in XLOC_MODES:
        raise InvalidArgumentError(f"Invalid extension access mode: '{mode}'")
    if not xstat(loc, name):
        raise NotFoundError(f"Extension '{name}' does not exist.")
    with loc.find(EXT_NAME) as more:
        return more.find(name, mode)


def xnew(
    loc: Locator, name: str, type_str: str, dims: Optional[Sequence[int]] = None
) -> Locator:
    """Create an extension (creating the extension structure if needed), return it."""
    if not loc.there(EXT_NAME):
        loc.new(EXT_NAME, EXT_TYPE)
    with loc.find(EXT_NAME) as more:
        more.new(name, type_str, dims)
        return more.find(name)
