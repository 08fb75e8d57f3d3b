"""NDF objects: n-dimensional arrays with optional components.

An NDF is a store whose top-level structure holds

* `DATA_ARRAY`: an `ARRAY` structure with the data primitive `DATA` and, if
  any lower bound differs from 1, the store-order lower bounds in `ORIGIN`,
* optional array components `VARIANCE` and `QUALITY` of the same shape,
* optional character components `TITLE`, `LABEL` and `UNITS`,
* an optional `AXIS` structure array with one cell per (store-order) axis,
* an optional extension structure `MORE`.

All bounds, dimensions and axis indices are in caller order (numpy
convention), axis indices are zero-based.
"""
from __future__ import annotations

import logging
import re
from math import prod
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
from typing_extensions import Final

from ..errors import (
    InvalidArgumentError,
    InvalidOperationError,
    NotFoundError,
    RangeError,
)
from ..hds.locator import Locator, new_store, open_store
from ..hds.types import TypeTag, allocate, bad_value, parse_type, reverse_shape
from ..store.engine import MAX_DIMS, MAX_NAME_LEN, store_path
from . import mapping, navigation
from .mapping import MappedRegion

logger = logging.getLogger(__name__)

NDF_TYPE: Final[str] = "NDF"

CHAR_COMPONENTS: Final[Tuple[str, ...]] = ("TITLE", "LABEL", "UNITS")

STATE_COMPONENTS: Final[Tuple[str, ...]] = (
    "DATA",
    "VARIANCE",
    "ERROR",
    "QUALITY",
    "TITLE",
    "LABEL",
    "UNITS",
    "AXIS",
)

AXIS_ARRAYS: Final[Tuple[str, ...]] = ("CENTRE", "DATA", "VARIANCE", "WIDTH")
AXIS_CHARS: Final[Tuple[str, ...]] = ("LABEL", "UNITS")

OPEN_STATS: Final[Tuple[str, ...]] = ("OLD", "NEW", "UNKNOWN")

_AXIS_STORAGE: Final = {"CENTRE": "DATA_ARRAY", "DATA": "DATA_ARRAY"}


def getbadpixval(type_str: str) -> Union[int, float]:
    """Return the value flagging bad pixels in arrays of a numeric type."""
    return bad_value(type_str)


class NDF:
    """An opened NDF, wrapping a locator to its top-level structure."""

    def __init__(self, loc: Locator):
        self._loc = loc

    def __repr__(self) -> str:
        return f"<NDF {self._loc!r}>"

    def __enter__(self):
        return self

    def __exit__(self, ex_type, ex_value, ex_traceback):
        if self._loc.valid():
            self._loc.annul()

    @property
    def loc(self) -> Locator:
        """Locator to the top-level structure of the NDF."""
        return self._loc

    def valid(self) -> bool:
        return self._loc.valid()

    def annul(self) -> None:
        """Release the NDF (unmapping everything mapped through it)."""
        self._loc.annul()

    # ---- shape ----

    def dim(self) -> Tuple[int, ...]:
        """Return the dimensions of the NDF."""
        return mapping.data_shape(self._loc)

    def _lbnd(self) -> Tuple[int, ...]:
        ndim = len(self.dim())
        with self._loc.find("DATA_ARRAY") as arr:
            if not arr.struc() or not arr.there("ORIGIN"):
                return (1,) * ndim
            with arr.find("ORIGIN") as origin:
                return reverse_shape([int(v) for v in np.atleast_1d(origin.get())])

    def bound(self) -> np.ndarray:
        """Return the pixel bounds as array of shape (2, ndim): lower and upper bounds."""
        dims = np.asarray(self.dim(), dtype=np.int64)
        lbnd = np.asarray(self._lbnd(), dtype=np.int64)
        return np.stack([lbnd, lbnd + dims - 1])

    @property
    def size(self) -> int:
        """Total number of pixels."""
        return prod(self.dim())

    # ---- components ----

    def state(self, comp: str) -> bool:
        """Return whether a component has a defined value."""
        comp = comp.upper()
        if comp not in STATE_COMPONENTS:
            raise InvalidArgumentError(f"Unknown NDF component: '{comp}'")
        if comp == "AXIS":
            return self._loc.there("AXIS")
        if comp in CHAR_COMPONENTS:
            if not self._loc.there(comp):
                return False
            with self._loc.find(comp) as loc:
                return loc.state()
        prim = mapping.component_primitive(self._loc, comp)
        if prim is None:
            return False
        with prim:
            return prim.state()

    def cget(self, comp: str) -> Optional[str]:
        """Return the value of a character component (None if undefined)."""
        comp = comp.upper()
        if comp not in CHAR_COMPONENTS:
            raise InvalidArgumentError(f"Not a character component: '{comp}'")
        return _get_string(self._loc, comp)

    def cput(self, value: str, comp: str) -> None:
        """Set the value of a character component."""
        comp = comp.upper()
        if comp not in CHAR_COMPONENTS:
            raise InvalidArgumentError(f"Not a character component: '{comp}'")
        _put_string(self._loc, comp, value)

    def read(self, comp: str) -> Optional[np.ndarray]:
        """Return a copy of an array component (None if undefined).

        `ERROR` is computed from the variance.
        """
        comp = comp.upper()
        if comp not in mapping.MAP_COMPONENTS:
            raise InvalidArgumentError(f"Cannot read component '{comp}'!")
        prim = mapping.component_primitive(self._loc, comp)
        if prim is None:
            return None
        with prim:
            if not prim.state():
                return None
            type_str = prim.type()
        region = mapping.map(self._loc, comp, type_str, "READ")
        try:
            buf = allocate(type_str, self.dim())
            region.copy_out(buf, region.count)
        finally:
            region.unmap()
        return buf

    def map(self, comp: str, type_str: str, mode: str) -> MappedRegion:
        """Map an array component, see `hdsbridge.ndf.mapping.map`."""
        return mapping.map(self._loc, comp, type_str, mode)

    def unmap(self, comp: str = "*") -> None:
        """Unmap an array component (or all with `*`)."""
        mapping.unmap(self._loc, comp)

    # ---- axes ----

    def _axis_cells(self, iaxis: int, allow_all: bool) -> List[Locator]:
        """Return locators to the AXIS cells of the requested axes (none without AXIS)."""
        ndim = len(self.dim())
        naxis = navigation.translate_axis(self, iaxis)
        if naxis == navigation.STORE_WHOLE_OBJECT and not allow_all:
            raise RangeError("A single axis must be given for this operation!")
        if not self._loc.there("AXIS"):
            return []
        axes = range(ndim) if naxis == navigation.STORE_WHOLE_OBJECT else [naxis - 1]
        with self._loc.find("AXIS") as axis:
            return [axis.cell([k]) for k in axes]

    def astat(self, comp: str, iaxis: int) -> bool:
        """Return whether an axis component is defined (for all axes with `iaxis=-1`)."""
        comp = _axis_comp(comp, AXIS_ARRAYS + AXIS_CHARS)
        cells = self._axis_cells(iaxis, allow_all=True)
        if not cells:
            return False
        ret = True
        for cell in cells:
            with cell:
                ret = ret and _defined(cell, _AXIS_STORAGE.get(comp, comp))
        return ret

    def aread(self, comp: str, iaxis: int) -> np.ndarray:
        """Return an axis array component, or its default values if undefined.

        Default centres are the pixel centres (`lbnd - 0.5` upwards), default
        widths are 1 and default variances 0.
        """
        comp = _axis_comp(comp, AXIS_ARRAYS)
        cells = self._axis_cells(iaxis, allow_all=False)
        if cells:
            cell = cells[0]
            with cell:
                name = _AXIS_STORAGE.get(comp, comp)
                if _defined(cell, name):
                    return _read_array(cell, name)

        # not stored, compute defaults
        lbnd, ubnd = self.bound()[:, iaxis]
        n = int(ubnd - lbnd + 1)
        if comp in ("CENTRE", "DATA"):
            return np.arange(n, dtype=np.float64) + (float(lbnd) - 0.5)
        if comp == "WIDTH":
            return np.ones(n, dtype=np.float64)
        return np.zeros(n, dtype=np.float64)

    def acget(self, comp: str, iaxis: int) -> Optional[str]:
        """Return an axis character component (None if undefined)."""
        comp = _axis_comp(comp, AXIS_CHARS)
        cells = self._axis_cells(iaxis, allow_all=False)
        if not cells:
            return None
        cell = cells[0]
        with cell:
            return _get_string(cell, comp)

    def acput(self, value: str, comp: str, iaxis: int) -> None:
        """Set an axis character component (creating the AXIS structure if needed)."""
        comp = _axis_comp(comp, AXIS_CHARS)
        if not self._loc.there("AXIS"):
            self.acre()
        cell = self._axis_cells(iaxis, allow_all=False)[0]
        with cell:
            _put_string(cell, comp, value)

    def aform(self, comp: str, iaxis: int) -> str:
        """Return storage form of an axis array: PRIMITIVE or SIMPLE."""
        comp = _axis_comp(comp, AXIS_ARRAYS)
        cells = self._axis_cells(iaxis, allow_all=False)
        if not cells:
            return "SIMPLE"
        cell = cells[0]
        with cell:
            name = _AXIS_STORAGE.get(comp, comp)
            if not cell.there(name):
                return "SIMPLE"
            with cell.find(name) as loc:
                return "SIMPLE" if loc.struc() else "PRIMITIVE"

    def anorm(self, iaxis: int) -> bool:
        """Return the normalisation flag of an axis (of any axis with `iaxis=-1`)."""
        ret = False
        for cell in self._axis_cells(iaxis, allow_all=True):
            with cell:
                if _defined(cell, "NORMALISED"):
                    with cell.find("NORMALISED") as flag:
                        ret = ret or bool(flag.get())
        return ret

    def acre(self) -> None:
        """Create an AXIS structure with explicit centre arrays (pixel centres)."""
        if self._loc.there("AXIS"):
            raise InvalidOperationError("NDF already has an AXIS structure!")
        dims = self.dim()
        lbnd = self._lbnd()
        self._loc.new("AXIS", "AXIS", [len(dims)])
        with self._loc.find("AXIS") as axis:
            # one cell per store-order axis
            for k, (n, lb) in enumerate(zip(reverse_shape(dims), reverse_shape(lbnd))):
                centres = np.arange(n, dtype=np.float64) + (lb - 0.5)
                with axis.cell([k]) as cell:
                    cell.new("DATA_ARRAY", "_DOUBLE", [n])
                    with cell.find("DATA_ARRAY") as arr:
                        arr.put("_DOUBLE", [n], centres)

    # ---- extensions ----

    def xnumb(self) -> int:
        return navigation.xnumb(self._loc)

    def xname(self, n: int) -> str:
        return navigation.xname(self._loc, n)

    def xstat(self, name: str) -> bool:
        return navigation.xstat(self._loc, name)

    def xloc(self, name: str, mode: str = "READ") -> Locator:
        return navigation.xloc(self._loc, name, mode)

    def xnew(self, name: str, type_str: str, dims: Optional[Sequence[int]] = None) -> Locator:
        return navigation.xnew(self._loc, name, type_str, dims)


class Placeholder:
    """A not yet existing NDF, to be created with `new`."""

    def __init__(self, path: Union[str, Path]):
        self._path = store_path(path)
        self._used = False

    def __repr__(self) -> str:
        return f"<Placeholder {self._path}>"

    @property
    def path(self) -> Path:
        return self._path

    def _guard_unused(self):
        if self._used:
            raise InvalidOperationError("Placeholder was already used to create an NDF!")

    def new(self, ftype: str, lbnd: Sequence[int], ubnd: Sequence[int]) -> NDF:
        """Create a simple NDF with given numeric type and pixel bounds.

        Args:
            ftype: numeric type of the data array
            lbnd: lower pixel bounds
            ubnd: upper pixel bounds (inclusive)

        Returns:
            The new NDF, opened for writing. The placeholder cannot be reused.
        """
        self._guard_unused()
        tag, _ = parse_type(ftype)
        if tag == TypeTag.CHAR:
            raise InvalidArgumentError("NDF data must be numeric!")
        lbnd = [int(b) for b in lbnd]
        ubnd = [int(b) for b in ubnd]
        if len(lbnd) != len(ubnd) or not 1 <= len(lbnd) <= MAX_DIMS:
            raise InvalidArgumentError(f"Invalid bounds: {lbnd}, {ubnd}")
        if any(u < lb for lb, u in zip(lbnd, ubnd)):
            raise InvalidArgumentError(f"Upper bounds {ubnd} below lower bounds {lbnd}!")
        dims = [u - lb + 1 for lb, u in zip(lbnd, ubnd)]

        root = new_store(self._path, _top_name(self._path), NDF_TYPE)
        try:
            root.new("DATA_ARRAY", "ARRAY")
            with root.find("DATA_ARRAY") as arr:
                arr.new("DATA", tag.value, dims)
                if any(lb != 1 for lb in lbnd):
                    arr.new("ORIGIN", "_INTEGER", [len(lbnd)])
                    with arr.find("ORIGIN") as origin:
                        origin.put("_INTEGER", [len(lbnd)], reverse_shape(lbnd))
        except BaseException:
            # release and remove the half-built store
            if root.valid():
                root.annul()
            self._path.unlink(missing_ok=True)
            raise
        self._used = True
        logger.debug("created NDF %s with bounds %s..%s", self._path, lbnd, ubnd)
        return NDF(root)


def open(
    path: Union[str, Path], mode: str = "READ", stat: str = "OLD"
) -> Union[NDF, Placeholder]:
    """Open an NDF.

    Args:
        path: file of the NDF (`.sdf` is appended if there is no extension)
        mode: READ, UPDATE or WRITE
        stat: OLD (existing NDF), NEW (placeholder for a new one) or UNKNOWN
            (existing if there is such a file, otherwise placeholder)
    """
    mode, stat = mode.upper(), stat.upper()
    if stat not in OPEN_STATS:
        raise InvalidArgumentError(f"Invalid open status: '{stat}'")
    if mode not in navigation.XLOC_MODES:
        raise InvalidArgumentError(f"Invalid access mode: '{mode}'")
    if stat == "NEW" or (stat == "UNKNOWN" and not store_path(path).is_file()):
        return Placeholder(path)

    root = open_store(path, mode)
    if not root.there("DATA_ARRAY"):
        root.annul()
        raise NotFoundError(f"'{path}' is not an NDF, it has no DATA_ARRAY component.")
    return NDF(root)


# ---- helpers ----


def _top_name(path: Path) -> str:
    name = re.sub(r"[^A-Z0-9_]", "_", path.stem.upper())
    if not name[:1].isalpha():
        name = f"N{name}"
    return name[:MAX_NAME_LEN]


def _axis_comp(comp: str, allowed: Tuple[str, ...]) -> str:
    comp = comp.upper()
    if comp not in allowed:
        raise InvalidArgumentError(f"Invalid axis component: '{comp}'")
    return comp


def _defined(loc: Locator, name: str) -> bool:
    """Return whether the structure has the component with a defined value."""
    if not loc.there(name):
        return False
    with loc.find(name) as comp:
        if not comp.struc():
            return comp.state()
        if not comp.there("DATA"):
            return False
        with comp.find("DATA") as prim:
            return prim.state()


def _read_array(loc: Locator, name: str) -> np.ndarray:
    """Return copy of a (primitive or ARRAY structure) array component."""
    with loc.find(name) as comp:
        if not comp.struc():
            return np.atleast_1d(comp.get())
        with comp.find("DATA") as prim:
            return np.atleast_1d(prim.get())


def _get_string(loc: Locator, name: str) -> Optional[str]:
    if not loc.there(name):
        return None
    with loc.find(name) as comp:
        if not comp.state():
            return None
        return bytes(comp.get()).decode("ascii").rstrip()


def _put_string(loc: Locator, name: str, value: str):
    if loc.there(name):
        loc.erase(name)
    loc.new(name, f"_CHAR*{max(len(value), 1)}")
    with loc.find(name) as comp:
        comp.putc(value)
