"""Test the store header in the HDF5 user block."""
import h5py
import pytest

from hdsbridge.store.header import FORMAT_MAGIC_STR, USER_BLOCK_SIZE, StoreHeader


def test_header_save_load(tmp_ds_path):
    path = tmp_ds_path.with_suffix(".sdf")
    with h5py.File(path, "w", userblock_size=USER_BLOCK_SIZE):
        pass
    header = StoreHeader.create()
    header.save(path)

    with open(path, "rb") as f:
        assert f.read(len(FORMAT_MAGIC_STR)).decode() == FORMAT_MAGIC_STR
    loaded = StoreHeader.load(path)
    assert loaded.store_uuid == header.store_uuid
    assert loaded.creator == header.creator

    # the HDF5 part is untouched
    with h5py.File(path, "r") as f:
        assert f.userblock_size == USER_BLOCK_SIZE


def test_header_without_user_block(tmp_ds_path):
    path = tmp_ds_path.with_suffix(".sdf")
    with h5py.File(path, "w"):
        pass
    with pytest.raises(ValueError):
        StoreHeader.load(path)
    with pytest.raises(ValueError):
        StoreHeader.create().save(path)


def test_header_block():
    header = StoreHeader.create()
    block = header.to_block()
    assert len(block) == USER_BLOCK_SIZE
    assert block.endswith(b"\x00")
    assert StoreHeader.parse_block(block) == header

    assert StoreHeader.parse_block(bytes(USER_BLOCK_SIZE)) is None
    assert StoreHeader.parse_block(FORMAT_MAGIC_STR.encode() + b" {broken") is None
