"""Mapped access to the array components of an NDF structure.

A `MappedRegion` exposes the elements of one array component as a numpy array
that is backed by the window the store engine maintains for it. The caller
reads and writes that array directly; the store sees changes when the region is
unmapped (which writes the window back unless it was mapped for READ).

The array components live in the NDF structure as

* `DATA` in `DATA_ARRAY`,
* `VARIANCE` in `VARIANCE` (`ERROR` is the square root of it),
* `QUALITY` in `QUALITY`,

each either a primitive or a structure holding the primitive (`DATA` in an
`ARRAY` structure, `QUALITY` in a `QUALITY` structure).
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Tuple

import numpy as np
from typing_extensions import Final

from ..errors import (
    InvalidArgumentError,
    InvalidOperationError,
    SizeMismatchError,
    UnsupportedTypeError,
)
from ..hds.context import error_context
from ..hds.locator import Locator
from ..hds.scope import SCOPES
from ..hds.types import TypeTag, format_type, parse_type
from ..store import engine

logger = logging.getLogger(__name__)

MAP_COMPONENTS: Final[Tuple[str, ...]] = ("DATA", "QUALITY", "VARIANCE", "ERROR")
UNMAP_COMPONENTS: Final[Tuple[str, ...]] = ("DATA", "QUALITY", "VARIANCE", "AXIS", "*")
MAP_MODES: Final[Tuple[str, ...]] = ("READ", "UPDATE", "WRITE")

_LAYOUT: Final[Dict[str, Tuple[str, str, str]]] = {
    "DATA": ("DATA_ARRAY", "ARRAY", "DATA"),
    "VARIANCE": ("VARIANCE", "ARRAY", "DATA"),
    "ERROR": ("VARIANCE", "ARRAY", "DATA"),
    "QUALITY": ("QUALITY", "QUALITY", "QUALITY"),
}
"""Component -> (name in the NDF, structure type, name of primitive in structure)."""

# components sharing storage, which cannot be mapped at the same time
_SHARED: Final[Dict[str, str]] = {"ERROR": "VARIANCE", "VARIANCE": "ERROR"}


class MappedRegion:
    """Window onto the elements of one mapped array component."""

    def __init__(
        self,
        owner: Locator,
        component: str,
        prim: Locator,
        window: np.ndarray,
        mode: str,
        shape: Tuple[int, ...],
    ):
        self._owner = owner
        self._component = component
        self._prim = prim
        self._window = window
        self._mode = mode
        self._shape = shape
        self._mapped = True
        if component == "ERROR":
            self._array = np.sqrt(window).astype(window.dtype)
            if mode == "READ":
                self._array.setflags(write=False)
        else:
            self._array = window

    def __repr__(self) -> str:
        state = self._mode if self._mapped else "unmapped"
        return f"<MappedRegion {self._component} count={self.count} ({state})>"

    def _guard_mapped(self):
        if not self._mapped:
            raise InvalidOperationError(f"Component {self._component} is not mapped!")

    @property
    def component(self) -> str:
        return self._component

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def mapped(self) -> bool:
        return self._mapped

    @property
    def count(self) -> int:
        """Number of elements in the region."""
        return int(self._array.size)

    @property
    def array(self) -> np.ndarray:
        """The mapped elements, flat, in store order."""
        self._guard_mapped()
        return self._array

    @property
    def data(self) -> np.ndarray:
        """The mapped elements as caller-order view of the region."""
        return self.array.reshape(self._shape)

    def _check_transfer(self, buf: np.ndarray, count: int):
        self._guard_mapped()
        if count < 1:
            raise InvalidArgumentError(f"Element count must be positive, got {count}!")
        if count > self.count:
            msg = f"Cannot transfer {count} elements, region has only {self.count}!"
            raise SizeMismatchError(msg)
        if count > buf.size:
            msg = f"Cannot transfer {count} elements, buffer has only {buf.size}!"
            raise SizeMismatchError(msg)
        if buf.dtype != self._array.dtype:
            msg = f"Buffer holds {buf.dtype}, region holds {self._array.dtype}!"
            raise InvalidOperationError(msg)
        if not buf.flags.c_contiguous:
            raise InvalidOperationError("Buffer must be contiguous!")

    def copy_out(self, buf: np.ndarray, count: int) -> None:
        """Copy the first `count` elements of the region into the buffer."""
        self._check_transfer(buf, count)
        if not buf.flags.writeable:
            raise InvalidOperationError("Buffer is read-only!")
        buf.reshape(-1)[:count] = self._array[:count]

    def copy_in(self, buf: np.ndarray, count: int) -> None:
        """Copy the first `count` elements of the buffer into the region."""
        if self._mode == "READ":
            raise InvalidOperationError(f"Component {self._component} is mapped read-only!")
        self._check_transfer(buf, count)
        self._array[:count] = buf.reshape(-1)[:count]

    def unmap(self) -> None:
        """Release the region, writing changes back unless mapped for READ."""
        self._guard_mapped()
        try:
            if self._component == "ERROR" and self._mode != "READ":
                np.square(self._array, out=self._window)
            with error_context():
                engine.dat_unmap(self._prim._handle)
        finally:
            self._mapped = False
            self._owner._maps.pop(self._component, None)
            if self._prim.valid():
                self._prim.annul()
        logger.debug("unmapped %s", self._component)


# ---- component lookup ----


def _holder(loc: Locator, component: str, create: bool) -> Tuple[Optional[Locator], str]:
    """Return the structure holding the primitive of a component and its name in it.

    The holder is either `loc` itself (for a component stored as primitive)
    or a new locator to the component structure. It is None if the component
    does not exist and `create` is false.
    """
    name, struct_type, inner = _LAYOUT[component]
    if not loc.there(name):
        if not create:
            return (None, name)
        loc.new(name, struct_type)
        return (loc.find(name), inner)
    comp = loc.find(name)
    if not comp.struc():
        comp.annul()
        return (loc, name)
    return (comp, inner)


def component_primitive(loc: Locator, component: str) -> Optional[Locator]:
    """Return locator to the primitive holding an array component, None if absent."""
    holder, name = _holder(loc, component, create=False)
    if holder is None:
        return None
    try:
        return holder.find(name) if holder.there(name) else None
    finally:
        if holder is not loc:
            holder.annul()


def data_shape(loc: Locator) -> Tuple[int, ...]:
    """Return caller-order shape of the NDF (the shape of its DATA component)."""
    prim = component_primitive(loc, "DATA")
    if prim is None:
        raise InvalidOperationError("NDF has no DATA component!")
    with prim:
        return prim.shape() or ()


def _write_primitive(loc: Locator, component: str, type_str: str) -> Locator:
    """Return primitive of the component with given type, (re)creating it if needed."""
    shape = data_shape(loc)
    holder, name = _holder(loc, component, create=component != "DATA")
    if holder is None:
        raise InvalidOperationError("NDF has no DATA component!")
    try:
        if holder.there(name):
            prim = holder.find(name)
            if prim.type() == type_str:
                return prim
            prim.annul()
            holder.erase(name)
        holder.new(name, type_str, shape)
        return holder.find(name)
    finally:
        if holder is not loc:
            holder.annul()


# ---- map / unmap ----


def map(loc: Locator, component: str, type_str: str, mode: str) -> MappedRegion:
    """Map an array component of an NDF structure.

    Args:
        loc: locator to the NDF structure
        component: one of DATA, QUALITY, VARIANCE, ERROR
        type_str: numeric type to map as (QUALITY only as `_UBYTE`)
        mode: READ, UPDATE or WRITE

    Returns:
        The mapped region, registered with the innermost scope.
    """
    comp, mode = str(component).upper(), str(mode).upper()
    if comp not in MAP_COMPONENTS:
        raise InvalidArgumentError(f"Cannot map component '{component}'!")
    if mode not in MAP_MODES:
        raise InvalidArgumentError(f"Invalid mapping mode: '{mode}'")
    try:
        tag, _ = parse_type(type_str)
    except UnsupportedTypeError as e:
        raise InvalidArgumentError(f"Cannot map as type '{type_str}'!") from e
    if tag == TypeTag.CHAR:
        raise InvalidArgumentError("Cannot map character data!")
    if comp == "QUALITY" and tag != TypeTag.UBYTE:
        raise InvalidArgumentError(f"QUALITY can only be mapped as _UBYTE, not {type_str}!")
    type_str = format_type(tag)

    loc._guard_valid()
    if comp in loc._maps or _SHARED.get(comp) in loc._maps:
        raise InvalidOperationError(f"Component {comp} (or its storage) is already mapped!")

    if mode == "WRITE":
        prim = _write_primitive(loc, comp, type_str)
    else:
        found = component_primitive(loc, comp)
        if found is None:
            raise InvalidOperationError(f"Component {comp} does not exist!")
        prim = found
        if prim.type() != type_str or not prim.state():
            msg = f"Component {comp} holds no defined {type_str} data (it is {prim.type()})!"
            prim.annul()
            raise InvalidOperationError(msg)

    try:
        shape = prim.shape() or ()
        with error_context():
            window = engine.dat_map(prim._handle, type_str, mode)
    except BaseException:
        prim.annul()
        raise

    region = MappedRegion(loc, comp, prim, window, mode, shape)
    loc._maps[comp] = region
    logger.debug("mapped %s as %s for %s", comp, type_str, mode)
    return SCOPES.register_region(region)


def unmap(loc: Locator, component: str = "*") -> None:
    """Unmap a component of the NDF structure, or all mapped components with `*`."""
    comp = str(component).upper()
    if comp not in UNMAP_COMPONENTS:
        raise InvalidArgumentError(f"Cannot unmap component '{component}'!")
    loc._guard_valid()
    if comp == "AXIS":
        return  # axis arrays are only read by copying
    if comp == "*":
        regions = list(loc._maps.values())
    elif comp in loc._maps:
        regions = [loc._maps[comp]]
    elif _SHARED.get(comp) in loc._maps:
        regions = [loc._maps[_SHARED[comp]]]
    else:
        raise InvalidOperationError(f"Component {comp} is not mapped!")
    for region in regions:
        region.unmap()  # type: ignore
