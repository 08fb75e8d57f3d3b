"""Locators: owned handles to objects in a store.

A `Locator` wraps a raw engine handle. It is valid from creation until it is
annulled, either explicitly with `annul()` or by the end of the scope it was
created in (see `hdsbridge.hds.scope`). Annulling releases the raw handle
exactly once, annulling again is an error.

At this interface all shapes are in caller order (numpy, C order) and all
indices are zero-based. The translation to the store conventions happens here
and nowhere else.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np

from ..errors import (
    InvalidArgumentError,
    InvalidHandleError,
    InvalidOperationError,
    SizeMismatchError,
)
from ..store import engine
from .context import error_context
from .scope import SCOPES
from .types import TypeTag, allocate, format_type, parse_type, resolve, reverse_shape

logger = logging.getLogger(__name__)

Shape = Tuple[int, ...]


def _to_shape(dims: Optional[Sequence[int]]) -> Shape:
    return () if dims is None else tuple(int(d) for d in dims)


class Locator:
    """Handle to an object (structure, structure array, primitive or cell) in a store.

    Any method except `valid()` raises `InvalidHandleError` once the locator
    has been annulled.
    """

    _handle: engine.Handle
    _valid: bool
    _maps: Dict[str, object]  # mapped regions owned by this locator, by component

    def __init__(self, handle: engine.Handle):
        self._handle = handle
        self._valid = True
        self._maps = {}

    @classmethod
    def wrap(cls, handle: engine.Handle) -> Locator:
        """Wrap a raw handle (without attaching it to a scope)."""
        return cls(handle)

    @classmethod
    def _adopt(cls, handle: engine.Handle) -> Locator:
        """Wrap a fresh raw handle and attach it to the innermost scope."""
        return SCOPES.register_locator(cls.wrap(handle))

    def _guard_valid(self):
        if not self._valid:
            raise InvalidHandleError("Locator is not valid (annulled or scope ended)!")

    def __repr__(self) -> str:
        state = "valid" if self._valid else "annulled"
        return f"<Locator {self._handle.session.path}:{self._handle.path} ({state})>"

    # ---- lifecycle ----

    def valid(self) -> bool:
        return self._valid

    def annul(self) -> None:
        """Release the locator, unmapping anything still mapped through it."""
        if not self._valid:
            raise InvalidHandleError("Locator has already been annulled!")
        for region in list(self._maps.values()):
            region.unmap()  # type: ignore
        try:
            with error_context():
                engine.dat_annul(self._handle)
        finally:
            self._valid = False
        logger.debug("annulled %s", self._handle)

    def __enter__(self):
        return self

    def __exit__(self, ex_type, ex_value, ex_traceback):
        if self._valid:
            self.annul()

    # ---- navigation ----

    def cell(self, sub: Sequence[int]) -> Locator:
        """Return locator to one element of an array, given zero-based indices."""
        self._guard_valid()
        subs = [int(i) + 1 for i in reverse_shape(sub)]
        with error_context():
            h = engine.dat_cell(self._handle, subs)
        return self._adopt(h)

    def index(self, index: int) -> Locator:
        """Return locator to the component at zero-based position `index`."""
        self._guard_valid()
        with error_context():
            h = engine.dat_index(self._handle, int(index) + 1)
        return self._adopt(h)

    def find(self, name: str, mode: Optional[str] = None) -> Locator:
        """Return locator to a named component of this structure.

        If `mode` is given, the new locator has that access mode (which cannot
        be less restrictive than the mode of this locator).
        """
        self._guard_valid()
        with error_context():
            h = engine.dat_find(self._handle, name, mode)
        return self._adopt(h)

    def there(self, name: str) -> bool:
        """Return whether this structure has a component with that name."""
        self._guard_valid()
        with error_context():
            return engine.dat_there(self._handle, name)

    # ---- introspection ----

    def name(self) -> str:
        self._guard_valid()
        with error_context():
            return engine.dat_name(self._handle)

    def ncomp(self) -> int:
        """Return number of components of this structure."""
        self._guard_valid()
        with error_context():
            return engine.dat_ncomp(self._handle)

    def shape(self) -> Optional[Shape]:
        """Return dimensions (caller order), None for a scalar."""
        self._guard_valid()
        with error_context():
            sdims = engine.dat_shape(self._handle)
        return reverse_shape(sdims) if sdims else None

    def type(self) -> str:
        self._guard_valid()
        with error_context():
            return engine.dat_type(self._handle)

    def struc(self) -> bool:
        """Return whether this is a structure (or array of structures)."""
        self._guard_valid()
        with error_context():
            return engine.dat_struc(self._handle)

    def state(self) -> bool:
        """Return whether this primitive holds defined data."""
        self._guard_valid()
        with error_context():
            return engine.dat_state(self._handle)

    def length(self) -> int:
        """Return width in bytes of one element of this primitive."""
        self._guard_valid()
        with error_context():
            return engine.dat_len(self._handle)

    # ---- data transfer ----

    def get(self) -> Union[np.ndarray, np.generic]:
        """Return the data of this primitive.

        The result has the stored element type and the caller-order shape,
        scalars are returned as numpy scalars. Character data has one byte more
        per element than stored.
        """
        if self.struc():
            raise InvalidOperationError(f"Cannot get data of structure {self.name()}!")
        with error_context():
            type_str = engine.dat_type(self._handle)
            sdims = engine.dat_shape(self._handle)
            tag, _ = parse_type(type_str)
            width = engine.dat_len(self._handle) if tag == TypeTag.CHAR else None
            raw = engine.dat_get(self._handle, type_str)

        buf = allocate(type_str, reverse_shape(sdims), width)
        _copy_raw(raw, buf, width)
        return buf[()] if buf.ndim == 0 else buf

    def put(self, type_str: str, dims: Optional[Sequence[int]], value) -> None:
        """Write data into this primitive.

        Args:
            type_str: type of the data, must be the type of the primitive
            dims: caller-order dimensions of the data (empty or None for a scalar)
            value: numpy array of exactly that type and shape, or any other
                value that numpy can turn into one
        """
        self._guard_valid()
        tag, width = parse_type(type_str)
        shape = _to_shape(dims)
        buf = _as_buffer(value, tag, width, shape)
        with error_context():
            engine.dat_put(
                self._handle, format_type(tag, width), reverse_shape(shape), buf.tobytes()
            )

    def putc(self, value: Union[str, bytes]) -> None:
        """Write a string into this scalar character primitive."""
        type_str = self.type()
        tag, _ = parse_type(type_str)
        if tag != TypeTag.CHAR:
            raise InvalidOperationError(f"Cannot write a string into {type_str} data!")
        self.put(type_str, None, value)

    # ---- modification ----

    def new(self, name: str, type_str: str, dims: Optional[Sequence[int]] = None) -> None:
        """Create a component in this structure.

        Primitive types create an (undefined) primitive, other type names
        create a structure. Empty or missing dims create a scalar.
        """
        self._guard_valid()
        if type_str.startswith("_"):
            type_str = format_type(*parse_type(type_str))
        with error_context():
            engine.dat_new(self._handle, name, type_str, reverse_shape(_to_shape(dims)))

    def erase(self, name: str) -> None:
        """Delete a component of this structure."""
        self._guard_valid()
        with error_context():
            engine.dat_erase(self._handle, name)


def _copy_raw(raw: bytes, buf: np.ndarray, width: Optional[int]):
    """Copy raw stored bytes into a buffer allocated for them."""
    flat = buf.reshape(-1)
    if width is not None:  # character data, buffer elements are wider
        src = np.frombuffer(raw, dtype=f"S{width}")
        if src.size != flat.size:
            raise SizeMismatchError(f"Got {src.size} strings, expected {flat.size}!")
        flat[...] = src
        return
    dst = flat.view(np.uint8)
    if len(raw) != dst.size:
        raise SizeMismatchError(f"Got {len(raw)} bytes, expected {dst.size}!")
    dst[:] = np.frombuffer(raw, dtype=np.uint8)


def _as_buffer(value, tag: TypeTag, width: Optional[int], shape: Shape) -> np.ndarray:
    """Return value as a buffer of the storage type of the tag, checked against shape."""
    if tag == TypeTag.CHAR:
        arr = np.asarray(value)
        if arr.dtype.kind == "U":
            try:
                arr = np.char.encode(arr, "ascii")
            except UnicodeEncodeError as e:
                raise InvalidArgumentError(f"Only ASCII strings can be stored: {e}")
        if arr.dtype.kind != "S":
            raise InvalidOperationError(f"Cannot store {arr.dtype} data as character data!")
        if arr.size and int(np.char.str_len(arr).max()) > (width or 1):
            raise SizeMismatchError(f"Strings do not fit into _CHAR*{width}!")
        arr = arr.astype(f"S{width}")
    else:
        dtype, _ = resolve(tag)
        if isinstance(value, (np.ndarray, np.generic)):
            arr = np.asarray(value)
            if arr.dtype != dtype:
                msg = f"Buffer holds {arr.dtype} data, not {format_type(tag)} ({dtype})!"
                raise InvalidOperationError(msg)
        else:
            arr = np.asarray(value, dtype=dtype)

    if arr.ndim != len(shape):
        msg = f"Buffer has {arr.ndim} dimensions, but {len(shape)} were declared!"
        raise InvalidOperationError(msg)
    if arr.shape != shape:
        raise SizeMismatchError(f"Buffer has shape {arr.shape}, declared was {shape}!")
    return np.ascontiguousarray(arr)


def open_store(file: Union[str, Path], mode: str = "READ") -> Locator:
    """Open a store, return a locator to its top-level object.

    Modes are READ, UPDATE and WRITE (UPDATE and WRITE are equivalent).
    """
    with error_context():
        h = engine.hds_open(file, mode)
    return Locator._adopt(h)


def new_store(
    file: Union[str, Path], name: str, type_str: str, dims: Optional[Sequence[int]] = None
) -> Locator:
    """Create a store with a top-level structure, return a writable locator to it."""
    with error_context():
        h = engine.hds_new(file, name, type_str, reverse_shape(_to_shape(dims)))
    return Locator._adopt(h)
