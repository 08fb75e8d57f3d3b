r"""
Hierarchical store engine on top of HDF5.

A store is a single HDF5 file (default extension `.sdf`) with a user block that
identifies it (see `StoreHeader`). Objects in the store are

* structures: HDF5 groups (tracked creation order, so that components can be
  addressed by position), optionally arrays of structures, whose cells are
  subgroups named `#<k>` with `k` the one-based flat index in store order,
* primitives: HDF5 datasets holding typed scalar or array data.

The engine uses the store conventions at its interface: dimensions are given
fastest-varying first and subscripts are one-based. Datasets are stored with
the reversed shape, so that the bytes of a dataset (row-major) are exactly the
bytes of the store-order (column-major) array.

Each function takes or returns a `Handle`. Failures are reported on the global
error stack (`errstack`) and signalled by raising `StatusError`, callers must
drain the stack (see `hdsbridge.hds.context`).
"""
from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from math import prod
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

import h5py
import numpy as np
from typing_extensions import Final, Literal

from . import errstack
from .errstack import Status, fail
from .header import USER_BLOCK_SIZE, StoreHeader

logger = logging.getLogger(__name__)

FILE_EXT: Final[str] = ".sdf"
"""Extension appended to store file names given without one."""

MAX_DIMS: Final[int] = 7
"""Maximal number of dimensions of an object."""

MAX_NAME_LEN: Final[int] = 15
"""Maximal length of component names and structure types."""

# attributes used for bookkeeping on groups and datasets
TYPE_ATTR: Final[str] = "HDS_TYPE"
STATE_ATTR: Final[str] = "HDS_STATE"
DIMS_ATTR: Final[str] = "HDS_DIMS"
NAME_ATTR: Final[str] = "HDS_NAME"  # only on the root group

CELL_PREFIX: Final[str] = "#"

AccessMode = Literal["READ", "UPDATE", "WRITE"]
ACCESS_MODES: Final[Tuple[str, ...]] = ("READ", "UPDATE", "WRITE")

_NAME_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")
_STRUCT_TYPE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_CHAR_RE = re.compile(r"^_CHAR(?:\*(\d+))?$")

_PRIMITIVES: Final[Dict[str, str]] = {
    "_INTEGER": "=i4",
    "_REAL": "=f4",
    "_DOUBLE": "=f8",
    "_LOGICAL": "=i4",
    "_WORD": "=i2",
    "_UWORD": "=u2",
    "_BYTE": "=i1",
    "_UBYTE": "=u1",
}


@dataclass(eq=False)
class _Session:
    """An open store file, shared by all handles into it."""

    path: Path
    file: h5py.File
    writable: bool
    header: StoreHeader
    handles: int = 0


_sessions: Dict[Path, _Session] = {}


@dataclass(eq=False)
class Handle:
    """Raw handle to an object in an open store."""

    session: _Session
    path: str
    """Absolute path of the group or dataset in the HDF5 file."""

    mode: AccessMode

    cell: Optional[Tuple[int, ...]] = None
    """Zero-based row-major index, if the handle addresses one element of a primitive."""

    window: Optional[np.ndarray] = None
    window_mode: Optional[AccessMode] = None

    valid: bool = True

    def __repr__(self) -> str:
        cell = "" if self.cell is None else f" cell={self.cell}"
        return f"<Handle {self.session.path}:{self.path}{cell} ({self.mode})>"


# ---- helpers ----


@contextmanager
def _h5_errors(param: str) -> Iterator[None]:
    """Report errors raised by h5py as engine failures."""
    try:
        yield
    except OSError as e:
        raise fail(param, f"HDF5 I/O error: {e}", Status.IO_ERROR) from e
    except (KeyError, ValueError, TypeError, RuntimeError) as e:
        raise fail(param, f"HDF5 library error: {e}", Status.HDF5_ERROR) from e


def _join(path: str, key: str) -> str:
    return f"/{key}" if path == "/" else f"{path}/{key}"


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] or "/"


def _primitive_dtype(type_str: str) -> Optional[np.dtype]:
    """Return storage dtype of a primitive type, None if not a primitive type."""
    if type_str in _PRIMITIVES:
        return np.dtype(_PRIMITIVES[type_str])
    m = _CHAR_RE.match(type_str)
    if m is None:
        return None
    width = int(m.group(1) or 1)
    return np.dtype(f"S{width}") if width > 0 else None


def _canonical_type(type_str: str, dtype: np.dtype) -> str:
    return f"_CHAR*{dtype.itemsize}" if dtype.kind == "S" else type_str


def _component_key(name: str) -> Optional[str]:
    """Return the stored key of a component name, None if it cannot name one."""
    uname = str(name).strip().upper()
    if len(uname) > MAX_NAME_LEN or _NAME_RE.match(uname) is None:
        return None
    return uname


def _check_name(param: str, name: str) -> str:
    uname = _component_key(name)
    if uname is None:
        raise fail(param, f"Invalid component name '{name}'.", Status.NAME_INVALID)
    return uname


def _check_dims(param: str, dims: Optional[Sequence[int]]) -> Tuple[int, ...]:
    ret = () if dims is None else tuple(int(d) for d in dims)
    if len(ret) > MAX_DIMS or any(d < 1 for d in ret):
        raise fail(param, f"Invalid object dimensions {ret}.", Status.DIMS_INVALID)
    return ret


def _check_struct_type(param: str, type_str: str):
    if len(type_str) > MAX_NAME_LEN or _STRUCT_TYPE_RE.match(type_str) is None:
        raise fail(param, f"Invalid type string '{type_str}'.", Status.TYPE_INVALID)


def _fortran_offset(subs: Sequence[int], dims: Sequence[int]) -> int:
    """Zero-based flat offset of one-based store-order subscripts."""
    offset, stride = 0, 1
    for s, d in zip(subs, dims):
        offset += (s - 1) * stride
        stride *= d
    return offset


def _fortran_subs(offset: int, dims: Sequence[int]) -> Tuple[int, ...]:
    """Inverse of `_fortran_offset`."""
    subs = []
    for d in dims:
        subs.append(offset % d + 1)
        offset //= d
    return tuple(subs)


def _struct_dims(group: h5py.Group) -> Tuple[int, ...]:
    if DIMS_ATTR not in group.attrs:
        return ()
    return tuple(int(d) for d in group.attrs[DIMS_ATTR])


def _init_struct(group: h5py.Group, type_str: str, dims: Tuple[int, ...]):
    group.attrs[TYPE_ATTR] = type_str
    if not dims:
        return
    group.attrs[DIMS_ATTR] = np.asarray(dims, dtype=np.int64)
    for k in range(1, prod(dims) + 1):
        cell = group.create_group(f"{CELL_PREFIX}{k}", track_order=True)
        cell.attrs[TYPE_ATTR] = type_str


def _obj(h: Handle, param: str) -> Union[h5py.Group, h5py.Dataset]:
    """Return the HDF5 object a valid handle refers to."""
    if not h.valid:
        raise fail(param, "Locator invalid or annulled.", Status.LOCATOR_INVALID)
    with _h5_errors(param):
        return h.session.file[h.path]


def _shape(h: Handle, obj: Union[h5py.Group, h5py.Dataset]) -> Tuple[int, ...]:
    """Store-order dimensions of the object."""
    if h.cell is not None:
        return ()
    if isinstance(obj, h5py.Group):
        return _struct_dims(obj)
    return tuple(reversed(obj.shape))


def _scalar_struct(h: Handle, param: str) -> h5py.Group:
    obj = _obj(h, param)
    if not isinstance(obj, h5py.Group):
        raise fail(param, f"Object {_name(h)} is not a structure.", Status.OBJECT_INVALID)
    if _struct_dims(obj):
        msg = f"Object {_name(h)} is an array of structures, select a cell first."
        raise fail(param, msg, Status.OBJECT_INVALID)
    return obj


def _primitive(h: Handle, param: str) -> h5py.Dataset:
    obj = _obj(h, param)
    if not isinstance(obj, h5py.Dataset):
        raise fail(param, f"Object {_name(h)} is not primitive.", Status.NOT_PRIMITIVE)
    return obj


def _expect_writable(h: Handle, param: str):
    if h.mode == "READ" or not h.session.writable:
        msg = f"Object {_name(h)} is accessible read-only."
        raise fail(param, msg, Status.ACCESS_CONFLICT)


def _expect_type(h: Handle, ds: h5py.Dataset, type_str: str, param: str):
    stored = str(ds.attrs[TYPE_ATTR])
    dtype = _primitive_dtype(type_str)
    if dtype is None:
        raise fail(param, f"Invalid type string '{type_str}'.", Status.TYPE_INVALID)
    if _canonical_type(type_str, dtype) != stored:
        msg = f"Cannot access {stored} object {_name(h)} as {type_str} (no conversion)."
        raise fail(param, msg, Status.TYPE_INVALID)


def _expect_defined(h: Handle, ds: h5py.Dataset, param: str):
    if not bool(ds.attrs[STATE_ATTR]):
        raise fail(param, f"Primitive {_name(h)} has no defined value.", Status.UNDEFINED)


def _base_name(session: _Session, path: str) -> str:
    if path == "/":
        return str(session.file.attrs[NAME_ATTR])
    key = path.rsplit("/", 1)[-1]
    if not key.startswith(CELL_PREFIX):
        return key
    parent = _parent(path)
    dims = _struct_dims(session.file[parent])
    subs = _fortran_subs(int(key[len(CELL_PREFIX) :]) - 1, dims)
    return f"{_base_name(session, parent)}({','.join(map(str, subs))})"


def _name(h: Handle) -> str:
    name = _base_name(h.session, h.path)
    if h.cell is not None:
        subs = [i + 1 for i in reversed(h.cell)]
        name += f"({','.join(map(str, subs))})"
    return name


def _new_handle(
    session: _Session, path: str, mode: AccessMode, cell: Optional[Tuple[int, ...]] = None
) -> Handle:
    session.handles += 1
    return Handle(session, path, mode, cell)


def store_path(file: Union[str, Path]) -> Path:
    """Return absolute path of a store file, appending the default extension if needed."""
    path = Path(file)
    if not path.suffix:
        path = path.with_suffix(FILE_EXT)
    return path.resolve()


def open_files() -> List[Path]:
    """Return the store files that currently have valid handles into them."""
    return list(_sessions.keys())


# ---- session level ----


def hds_open(file: Union[str, Path], mode: str = "READ") -> Handle:
    """Open an existing store, return a handle to its top-level object."""
    param = "HDS_OPEN_ERR"
    if mode not in ACCESS_MODES:
        raise fail(param, f"Invalid access mode '{mode}'.", Status.MODE_INVALID)
    path = store_path(file)
    writable = mode != "READ"

    session = _sessions.get(path)
    if session is None:
        if not path.is_file():
            msg = f"Unable to open '{path}': no such file."
            raise fail(param, msg, Status.FILE_NOT_FOUND)
        try:
            header = StoreHeader.load(path)
        except ValueError as e:
            raise fail(param, str(e), Status.FILE_INVALID) from e
        with _h5_errors(param):
            f = h5py.File(path, "r+" if writable else "r")
        session = _Session(path, f, writable, header)
        _sessions[path] = session
        logger.debug("opened store %s for %s access", path, mode)
    elif writable and not session.writable:
        msg = f"Store '{path}' is already open for read-only access."
        raise fail(param, msg, Status.ACCESS_CONFLICT)

    return _new_handle(session, "/", mode)  # type: ignore


def hds_new(
    file: Union[str, Path], name: str, type_str: str, dims: Optional[Sequence[int]] = None
) -> Handle:
    """Create a new store (replacing an existing file) with a top-level structure."""
    param = "HDS_NEW_ERR"
    uname = _check_name(param, name)
    if _primitive_dtype(type_str) is not None:
        msg = f"Top-level object must be a structure, not {type_str}."
        raise fail(param, msg, Status.TYPE_INVALID)
    _check_struct_type(param, type_str)
    sdims = _check_dims(param, dims)
    path = store_path(file)
    if path in _sessions:
        raise fail(param, f"Store '{path}' is in use.", Status.FILE_IN_USE)

    header = StoreHeader.create()
    with _h5_errors(param):
        # create, close to pre-fill the user block, reopen
        h5py.File(path, "w", userblock_size=USER_BLOCK_SIZE, track_order=True).close()
        header.save(path)
        f = h5py.File(path, "r+")
        f.attrs[NAME_ATTR] = uname
        _init_struct(f, type_str, sdims)

    session = _Session(path, f, True, header)
    _sessions[path] = session
    logger.debug("created store %s", path)
    return _new_handle(session, "/", "WRITE")


# ---- handle level ----


def dat_valid(h: Handle) -> bool:
    return h.valid


def dat_annul(h: Handle) -> None:
    """Release the handle. Closes the store file with its last handle."""
    param = "DAT_ANNUL_ERR"
    if not h.valid:
        raise fail(param, "Locator invalid or annulled.", Status.LOCATOR_INVALID)
    if h.window is not None:
        dat_unmap(h)
    h.valid = False

    session = h.session
    session.handles -= 1
    if session.handles == 0:
        del _sessions[session.path]
        with _h5_errors(param):
            session.file.close()
        logger.debug("closed store %s", session.path)


def dat_find(h: Handle, name: str, mode: Optional[str] = None) -> Handle:
    """Return handle to a named component of a scalar structure.

    The new handle inherits the access mode, unless a (not less restrictive)
    mode is passed.
    """
    param = "DAT_FIND_ERR"
    group = _scalar_struct(h, param)
    uname = _component_key(name)
    if mode is None:
        mode = h.mode
    elif mode not in ACCESS_MODES:
        raise fail(param, f"Invalid access mode '{mode}'.", Status.MODE_INVALID)
    elif mode != "READ" and h.mode == "READ":
        msg = f"Cannot get {mode} access to a component of read-only {_name(h)}."
        raise fail(param, msg, Status.ACCESS_CONFLICT)

    if uname is None or uname not in group:
        errstack.report(param, f"Object '{name}' not found.", Status.OBJECT_NOT_FOUND)
        msg = f"DAT_FIND: Error finding a named component in the structure {_name(h)}."
        raise fail(param, msg, Status.OBJECT_NOT_FOUND)
    return _new_handle(h.session, _join(h.path, uname), mode)  # type: ignore


def dat_there(h: Handle, name: str) -> bool:
    """Return whether a scalar structure has a component of that name."""
    group = _scalar_struct(h, "DAT_THERE_ERR")
    uname = _component_key(name)
    return uname is not None and uname in group


def dat_index(h: Handle, index: int) -> Handle:
    """Return handle to the component at one-based position `index`."""
    param = "DAT_INDEX_ERR"
    keys = list(_scalar_struct(h, param).keys())
    if not 1 <= index <= len(keys):
        msg = f"Component index {index} out of range 1..{len(keys)} in {_name(h)}."
        raise fail(param, msg, Status.SUBSCRIPT_INVALID)
    return _new_handle(h.session, _join(h.path, keys[index - 1]), h.mode)


def dat_cell(h: Handle, subs: Sequence[int]) -> Handle:
    """Return handle to one cell of an array, given one-based store-order subscripts."""
    param = "DAT_CELL_ERR"
    obj = _obj(h, param)
    dims = _shape(h, obj)
    subs = tuple(int(s) for s in subs)
    if not dims or len(subs) != len(dims):
        msg = f"Number of subscripts {len(subs)} does not match dimensionality of {_name(h)}."
        raise fail(param, msg, Status.DIMS_INVALID)
    if any(not 1 <= s <= d for s, d in zip(subs, dims)):
        msg = f"Subscripts {subs} out of range for {_name(h)} with dimensions {dims}."
        raise fail(param, msg, Status.SUBSCRIPT_INVALID)

    if isinstance(obj, h5py.Group):
        key = f"{CELL_PREFIX}{_fortran_offset(subs, dims) + 1}"
        return _new_handle(h.session, _join(h.path, key), h.mode)
    cell = tuple(s - 1 for s in reversed(subs))
    return _new_handle(h.session, h.path, h.mode, cell)


def dat_name(h: Handle) -> str:
    _obj(h, "DAT_NAME_ERR")
    return _name(h)


def dat_ncomp(h: Handle) -> int:
    return len(_scalar_struct(h, "DAT_NCOMP_ERR"))


def dat_shape(h: Handle) -> Tuple[int, ...]:
    """Return store-order dimensions (empty for scalars)."""
    return _shape(h, _obj(h, "DAT_SHAPE_ERR"))


def dat_type(h: Handle) -> str:
    return str(_obj(h, "DAT_TYPE_ERR").attrs[TYPE_ATTR])


def dat_struc(h: Handle) -> bool:
    return isinstance(_obj(h, "DAT_STRUC_ERR"), h5py.Group)


def dat_state(h: Handle) -> bool:
    """Return whether a primitive holds defined data."""
    return bool(_primitive(h, "DAT_STATE_ERR").attrs[STATE_ATTR])


def dat_len(h: Handle) -> int:
    """Return storage width of one element of a primitive in bytes."""
    return _primitive(h, "DAT_LEN_ERR").dtype.itemsize


def dat_new(h: Handle, name: str, type_str: str, dims: Optional[Sequence[int]] = None):
    """Create a component in a scalar structure (primitive or structure).

    Primitives are created in undefined state.
    """
    param = "DAT_NEW_ERR"
    group = _scalar_struct(h, param)
    _expect_writable(h, param)
    uname = _check_name(param, name)
    sdims = _check_dims(param, dims)
    if uname in group:
        msg = f"Component '{uname}' already exists in {_name(h)}."
        raise fail(param, msg, Status.COMPONENT_EXISTS)

    dtype = _primitive_dtype(type_str)
    if dtype is None:
        if type_str.startswith("_"):
            raise fail(param, f"Invalid type string '{type_str}'.", Status.TYPE_INVALID)
        _check_struct_type(param, type_str)

    with _h5_errors(param):
        if dtype is None:
            _init_struct(group.create_group(uname, track_order=True), type_str, sdims)
        else:
            ds = group.create_dataset(uname, shape=tuple(reversed(sdims)), dtype=dtype)
            ds.attrs[TYPE_ATTR] = _canonical_type(type_str, dtype)
            ds.attrs[STATE_ATTR] = False


def dat_erase(h: Handle, name: str):
    """Delete a component (recursively) from a scalar structure."""
    param = "DAT_ERASE_ERR"
    group = _scalar_struct(h, param)
    _expect_writable(h, param)
    uname = _component_key(name)
    if uname is None or uname not in group:
        raise fail(param, f"Object '{name}' not found.", Status.OBJECT_NOT_FOUND)
    with _h5_errors(param):
        del group[uname]


def dat_get(h: Handle, type_str: str) -> bytes:
    """Return the raw bytes of a defined primitive (store order)."""
    param = "DAT_GET_ERR"
    ds = _primitive(h, param)
    _expect_type(h, ds, type_str, param)
    _expect_defined(h, ds, param)
    with _h5_errors(param):
        data = ds[h.cell] if h.cell is not None else ds[()]
    return np.ascontiguousarray(data, dtype=ds.dtype).tobytes()


def dat_put(h: Handle, type_str: str, dims: Sequence[int], data: bytes):
    """Overwrite the contents of a primitive with raw bytes (store order)."""
    param = "DAT_PUT_ERR"
    ds = _primitive(h, param)
    _expect_writable(h, param)
    _expect_type(h, ds, type_str, param)
    sdims = tuple(int(d) for d in dims)
    shape = _shape(h, ds)
    if sdims != shape:
        msg = f"Dimensions {sdims} do not match dimensions {shape} of {_name(h)}."
        raise fail(param, msg, Status.BOUNDS_MISMATCH)
    nbytes = prod(shape) * ds.dtype.itemsize
    if len(data) != nbytes:
        msg = f"Got {len(data)} bytes of data, {_name(h)} needs {nbytes}."
        raise fail(param, msg, Status.BOUNDS_MISMATCH)

    values = np.frombuffer(data, dtype=ds.dtype)
    with _h5_errors(param):
        _write(h, ds, values)


def _write(h: Handle, ds: h5py.Dataset, values: np.ndarray):
    if h.cell is not None:
        ds[h.cell] = values[0]
    elif ds.shape == ():
        ds[()] = values[0]
    else:
        ds[...] = values.reshape(ds.shape)
    ds.attrs[STATE_ATTR] = True


def dat_map(h: Handle, type_str: str, mode: str) -> np.ndarray:
    """Map a primitive, return the flat mapped window (store order).

    READ and UPDATE windows start with the stored values (READ windows are
    not writeable), WRITE windows start zeroed. The window is written back
    by `dat_unmap` unless mapped for READ.
    """
    param = "DAT_MAP_ERR"
    ds = _primitive(h, param)
    if mode not in ACCESS_MODES:
        raise fail(param, f"Invalid mapping mode '{mode}'.", Status.MODE_INVALID)
    if mode != "READ":
        _expect_writable(h, param)
    _expect_type(h, ds, type_str, param)
    if h.window is not None:
        raise fail(param, f"Primitive {_name(h)} is already mapped.", Status.ALREADY_MAPPED)

    if mode == "WRITE":
        window = np.zeros(prod(_shape(h, ds)), dtype=ds.dtype)
    else:
        _expect_defined(h, ds, param)
        with _h5_errors(param):
            data = ds[h.cell] if h.cell is not None else ds[()]
        window = np.array(data, dtype=ds.dtype).reshape(-1)
        if mode == "READ":
            window.setflags(write=False)

    h.window, h.window_mode = window, mode  # type: ignore
    logger.debug("mapped %s for %s (%d elements)", _name(h), mode, window.size)
    return window


def dat_unmap(h: Handle):
    """Release the mapped window of the handle (no-op if not mapped)."""
    param = "DAT_UNMAP_ERR"
    ds = _primitive(h, param)
    if h.window is None:
        return
    window, mode = h.window, h.window_mode
    h.window = h.window_mode = None
    if mode != "READ":
        with _h5_errors(param):
            _write(h, ds, window)
    logger.debug("unmapped %s", _name(h))
