"""Test type tags, dimension reversal and buffer allocation."""
import numpy as np
import pytest
from hypothesis import given
from hypothesis import strategies as st

from hdsbridge.errors import UnsupportedTypeError
from hdsbridge.hds.types import (
    BAD_VALUES,
    TypeTag,
    allocate,
    bad_value,
    format_type,
    is_primitive,
    parse_type,
    resolve,
    reverse_shape,
)

shapes = st.lists(st.integers(min_value=0, max_value=1000), max_size=7)


@given(shapes)
def test_reverse_shape_self_inverse(shape):
    assert reverse_shape(reverse_shape(shape)) == tuple(shape)


@given(shapes)
def test_reverse_shape_reverses(shape):
    rev = reverse_shape(shape)
    assert len(rev) == len(shape)
    assert all(rev[i] == shape[-1 - i] for i in range(len(shape)))


@pytest.mark.parametrize(
    "type_str, tag, width",
    [
        ("_INTEGER", TypeTag.INTEGER, None),
        ("_UBYTE", TypeTag.UBYTE, None),
        ("_CHAR", TypeTag.CHAR, 1),
        ("_CHAR*12", TypeTag.CHAR, 12),
        (TypeTag.DOUBLE, TypeTag.DOUBLE, None),
    ],
)
def test_parse_type(type_str, tag, width):
    assert parse_type(type_str) == (tag, width)
    assert is_primitive(type_str)


@pytest.mark.parametrize("type_str", ["_FLOAT", "INTEGER", "_CHAR*", "_CHAR*0", "_CHAR*x", ""])
def test_parse_type_unsupported(type_str):
    with pytest.raises(UnsupportedTypeError):
        parse_type(type_str)
    assert not is_primitive(type_str)


def test_format_type():
    assert format_type(TypeTag.REAL) == "_REAL"
    assert format_type(TypeTag.CHAR) == "_CHAR*1"
    assert format_type(*parse_type("_CHAR*7")) == "_CHAR*7"


@pytest.mark.parametrize(
    "tag, dtype",
    [
        (TypeTag.INTEGER, np.int32),
        (TypeTag.REAL, np.float32),
        (TypeTag.DOUBLE, np.float64),
        (TypeTag.LOGICAL, np.int32),
        (TypeTag.WORD, np.int16),
        (TypeTag.UWORD, np.uint16),
        (TypeTag.BYTE, np.int8),
        (TypeTag.UBYTE, np.uint8),
    ],
)
def test_resolve(tag, dtype):
    assert resolve(tag) == (np.dtype(dtype), np.dtype(dtype).itemsize)


def test_resolve_char_needs_width():
    assert resolve(TypeTag.CHAR, 5) == (np.dtype("S5"), 5)
    with pytest.raises(UnsupportedTypeError):
        resolve(TypeTag.CHAR)


def test_allocate():
    buf = allocate("_WORD", (2, 3))
    assert buf.shape == (2, 3)
    assert buf.dtype == np.int16
    assert buf.flags.c_contiguous
    assert not buf.any()

    # one more byte per string element
    assert allocate("_CHAR*4", [3]).dtype == np.dtype("S5")
    assert allocate("_CHAR", [], width=9).dtype == np.dtype("S10")
    assert allocate("_INTEGER", []).shape == ()

    with pytest.raises(UnsupportedTypeError):
        allocate("_CHAR*abc", [1])


def test_bad_values():
    assert bad_value("_UBYTE") == 255
    assert bad_value("_WORD") == -32768
    assert bad_value("_INTEGER") == -(2**31)
    assert bad_value("_DOUBLE") == -np.finfo(np.float64).max
    assert set(BAD_VALUES) == set(TypeTag) - {TypeTag.CHAR, TypeTag.LOGICAL}
    with pytest.raises(UnsupportedTypeError):
        bad_value("_CHAR*3")
