"""Test the HDF5-based store engine at its raw handle interface."""
from contextlib import contextmanager

import h5py
import numpy as np
import pytest

from hdsbridge.store import engine, errstack
from hdsbridge.store.errstack import Status, StatusError
from hdsbridge.store.header import USER_BLOCK_SIZE, StoreHeader


@pytest.fixture(autouse=True)
def stack():
    """Collect engine error frames of a test (and discard them afterwards)."""
    errstack.mark()
    yield
    errstack.release()


@contextmanager
def failing(status: Status):
    """Expect a StatusError with given status, drop its frames."""
    with pytest.raises(StatusError) as e:
        yield
    assert e.value.status == status
    while errstack.load() is not None:
        pass


@pytest.fixture
def root(tmp_ds_path):
    h = engine.hds_new(tmp_ds_path, "test", "STRUCT")
    yield h
    if h.valid:
        engine.dat_annul(h)


def test_new_store_file(tmp_ds_path):
    h = engine.hds_new(tmp_ds_path, "top", "STRUCT")
    path = engine.store_path(tmp_ds_path)
    assert path.suffix == engine.FILE_EXT
    assert engine.open_files() == [path]
    assert engine.dat_name(h) == "TOP"
    assert engine.dat_type(h) == "STRUCT"
    assert engine.dat_struc(h)
    engine.dat_annul(h)
    assert engine.open_files() == []

    with h5py.File(path, "r") as f:
        assert f.userblock_size == USER_BLOCK_SIZE
        assert f.attrs[engine.NAME_ATTR] == "TOP"
    header = StoreHeader.load(path)
    assert header.creator.startswith("hdsbridge")


def test_new_store_invalid(tmp_ds_path):
    with failing(Status.TYPE_INVALID):
        engine.hds_new(tmp_ds_path, "top", "_INTEGER")
    with failing(Status.NAME_INVALID):
        engine.hds_new(tmp_ds_path, "1abc", "STRUCT")
    with failing(Status.NAME_INVALID):
        engine.hds_new(tmp_ds_path, "a_very_long_component_name", "STRUCT")


def test_new_store_in_use(root, tmp_ds_path):
    with failing(Status.FILE_IN_USE):
        engine.hds_new(tmp_ds_path, "other", "STRUCT")


def test_open_missing_and_invalid(tmp_ds_path):
    with failing(Status.FILE_NOT_FOUND):
        engine.hds_open(tmp_ds_path)

    path = engine.store_path(tmp_ds_path)
    with h5py.File(path, "w"):
        pass  # HDF5 file, but no store header
    with failing(Status.FILE_INVALID):
        engine.hds_open(path)

    with failing(Status.MODE_INVALID):
        engine.hds_open(path, "APPEND")


def test_open_damaged_file(tmp_ds_path):
    path = engine.store_path(tmp_ds_path)
    path.write_bytes(bytes(2 * USER_BLOCK_SIZE))
    StoreHeader.create().save(path)  # valid header, but no HDF5 data behind it
    with failing(Status.IO_ERROR):
        engine.hds_open(path)
    assert engine.open_files() == []


def test_open_shares_session(root, tmp_ds_path):
    h = engine.hds_open(tmp_ds_path, "UPDATE")
    assert h.session is root.session
    assert root.session.handles == 2
    engine.dat_annul(h)
    assert root.session.handles == 1


def test_primitive_layout(root):
    engine.dat_new(root, "img", "_REAL", [3, 2])
    h = engine.dat_find(root, "IMG")
    assert engine.dat_shape(h) == (3, 2)
    assert root.session.file["/IMG"].shape == (2, 3)
    assert not engine.dat_state(h)

    # store order bytes: element (i,j) at offset (i-1) + 3*(j-1)
    data = np.arange(6, dtype=np.float32)
    engine.dat_put(h, "_REAL", [3, 2], data.tobytes())
    assert engine.dat_state(h)
    assert root.session.file["/IMG"][1, 0] == 3.0  # store subscripts (1,2)
    assert engine.dat_get(h, "_REAL") == data.tobytes()

    cell = engine.dat_cell(h, [1, 2])
    assert engine.dat_name(cell) == "IMG(1,2)"
    assert engine.dat_shape(cell) == ()
    assert np.frombuffer(engine.dat_get(cell, "_REAL"), np.float32)[0] == 3.0


def test_put_checks(root):
    engine.dat_new(root, "n", "_INTEGER")
    h = engine.dat_find(root, "N")
    with failing(Status.UNDEFINED):
        engine.dat_get(h, "_INTEGER")
    with failing(Status.TYPE_INVALID):
        engine.dat_put(h, "_REAL", [], np.float32(1).tobytes())
    with failing(Status.BOUNDS_MISMATCH):
        engine.dat_put(h, "_INTEGER", [1], np.int32(1).tobytes())
    with failing(Status.BOUNDS_MISMATCH):
        engine.dat_put(h, "_INTEGER", [], b"\x00")


def test_find_not_found_reports_two_frames(root):
    with pytest.raises(StatusError):
        engine.dat_find(root, "MISSING")
    first, second = errstack.load(), errstack.load()
    assert errstack.load() is None
    assert "MISSING" in first.message
    assert "TEST" in second.message
    assert first.status == second.status == Status.OBJECT_NOT_FOUND


def test_index_follows_creation_order(root):
    for name in ["ZETA", "ALPHA", "MID"]:
        engine.dat_new(root, name, "_BYTE")
    names = [engine.dat_name(engine.dat_index(root, i)) for i in (1, 2, 3)]
    assert names == ["ZETA", "ALPHA", "MID"]
    assert engine.dat_ncomp(root) == 3
    with failing(Status.SUBSCRIPT_INVALID):
        engine.dat_index(root, 4)
    with failing(Status.SUBSCRIPT_INVALID):
        engine.dat_index(root, 0)


def test_structure_array(root):
    engine.dat_new(root, "axis", "AXIS", [2, 3])
    h = engine.dat_find(root, "AXIS")
    assert engine.dat_shape(h) == (2, 3)
    with failing(Status.OBJECT_INVALID):
        engine.dat_ncomp(h)

    cell = engine.dat_cell(h, [2, 3])
    assert cell.path == "/AXIS/#6"
    assert engine.dat_name(cell) == "AXIS(2,3)"
    assert engine.dat_type(cell) == "AXIS"
    engine.dat_new(cell, "label", "_CHAR*4")
    assert engine.dat_there(cell, "LABEL")

    with failing(Status.SUBSCRIPT_INVALID):
        engine.dat_cell(h, [3, 1])
    with failing(Status.DIMS_INVALID):
        engine.dat_cell(h, [1])


def test_erase_and_exists(root):
    engine.dat_new(root, "x", "_DOUBLE", [4])
    with failing(Status.COMPONENT_EXISTS):
        engine.dat_new(root, "X", "_DOUBLE")
    engine.dat_erase(root, "x")
    assert not engine.dat_there(root, "X")
    with failing(Status.OBJECT_NOT_FOUND):
        engine.dat_erase(root, "X")


def test_component_names_are_single_keys(root):
    engine.dat_new(root, "a", "SUB")
    a = engine.dat_find(root, "A")
    engine.dat_new(a, "b", "_INTEGER")
    for name in ["A/B", "/A", "#1", ""]:
        assert not engine.dat_there(root, name)
        with failing(Status.OBJECT_NOT_FOUND):
            engine.dat_find(root, name)
        with failing(Status.OBJECT_NOT_FOUND):
            engine.dat_erase(root, name)
    assert engine.dat_there(a, "B")


def test_read_only_access(root, tmp_ds_path):
    engine.dat_new(root, "n", "_INTEGER")
    h = engine.dat_find(root, "N", "READ")
    with failing(Status.ACCESS_CONFLICT):
        engine.dat_put(h, "_INTEGER", [], np.int32(1).tobytes())
    engine.dat_new(root, "sub", "SUB")
    sub = engine.dat_find(root, "SUB", "READ")
    with failing(Status.ACCESS_CONFLICT):
        engine.dat_find(sub, "X", "UPDATE")
    with failing(Status.ACCESS_CONFLICT):
        engine.dat_new(sub, "X", "_BYTE")


def test_map_write_back(root):
    engine.dat_new(root, "v", "_DOUBLE", [4])
    h = engine.dat_find(root, "V")
    with failing(Status.UNDEFINED):
        engine.dat_map(h, "_DOUBLE", "READ")

    window = engine.dat_map(h, "_DOUBLE", "WRITE")
    assert np.all(window == 0)
    with failing(Status.ALREADY_MAPPED):
        engine.dat_map(h, "_DOUBLE", "WRITE")
    window[:] = [1, 2, 3, 4]
    engine.dat_unmap(h)
    assert h.window is None
    np.testing.assert_array_equal(root.session.file["/V"][()], [1, 2, 3, 4])

    window = engine.dat_map(h, "_DOUBLE", "READ")
    assert not window.flags.writeable
    engine.dat_unmap(h)
    engine.dat_unmap(h)  # no-op


def test_annul_unmaps_and_invalidates(root):
    engine.dat_new(root, "v", "_WORD", [2])
    h = engine.dat_find(root, "V")
    window = engine.dat_map(h, "_WORD", "WRITE")
    window[:] = 7
    engine.dat_annul(h)
    assert not engine.dat_valid(h)
    np.testing.assert_array_equal(root.session.file["/V"][()], [7, 7])
    with failing(Status.LOCATOR_INVALID):
        engine.dat_annul(h)
    with failing(Status.LOCATOR_INVALID):
        engine.dat_type(h)
