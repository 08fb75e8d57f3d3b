"""Primitive types and dimension conventions.

Primitive types are named by their serialized type strings (`_INTEGER`,
`_CHAR*8`, ...). This module holds the single table mapping them to numpy
element types, and the dimension reversal used whenever a shape or an index
sequence crosses between the store convention (fastest-varying dimension
first) and the caller convention (numpy, C order).
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np
from typing_extensions import Final

from ..errors import UnsupportedTypeError


class TypeTag(str, Enum):
    """Primitive types of the store."""

    INTEGER = "_INTEGER"
    REAL = "_REAL"
    DOUBLE = "_DOUBLE"
    LOGICAL = "_LOGICAL"
    WORD = "_WORD"
    UWORD = "_UWORD"
    BYTE = "_BYTE"
    UBYTE = "_UBYTE"
    CHAR = "_CHAR"


_NATIVE: Final[Dict[TypeTag, str]] = {
    TypeTag.INTEGER: "=i4",
    TypeTag.REAL: "=f4",
    TypeTag.DOUBLE: "=f8",
    TypeTag.LOGICAL: "=i4",
    TypeTag.WORD: "=i2",
    TypeTag.UWORD: "=u2",
    TypeTag.BYTE: "=i1",
    TypeTag.UBYTE: "=u1",
}
"""Native element types of the fixed-width tags."""

BAD_VALUES: Final[Dict[TypeTag, Union[int, float]]] = {
    TypeTag.DOUBLE: float(-np.finfo(np.float64).max),
    TypeTag.REAL: float(-np.finfo(np.float32).max),
    TypeTag.INTEGER: int(np.iinfo(np.int32).min),
    TypeTag.WORD: int(np.iinfo(np.int16).min),
    TypeTag.UWORD: int(np.iinfo(np.uint16).max),
    TypeTag.BYTE: int(np.iinfo(np.int8).min),
    TypeTag.UBYTE: int(np.iinfo(np.uint8).max),
}
"""Values flagging missing ("bad") elements in numeric arrays."""

_CHAR_RE = re.compile(r"^_CHAR(?:\*([1-9][0-9]*))?$")

T = TypeVar("T")


def parse_type(type_str: Union[str, TypeTag]) -> Tuple[TypeTag, Optional[int]]:
    """Parse a serialized type string.

    Returns:
        The tag and, for `_CHAR*n`, the width `n` (`_CHAR` alone means width 1).
        The width is None for all other tags.

    Raises:
        UnsupportedTypeError: if the string does not name a primitive type.
    """
    if isinstance(type_str, TypeTag) and type_str != TypeTag.CHAR:
        return (type_str, None)
    s = str(type_str.value if isinstance(type_str, TypeTag) else type_str)
    m = _CHAR_RE.match(s)
    if m is not None:
        return (TypeTag.CHAR, int(m.group(1) or 1))
    try:
        tag = TypeTag(s)
    except ValueError:
        raise UnsupportedTypeError(f"Unsupported type: '{s}'") from None
    return (tag, None)


def format_type(tag: TypeTag, width: Optional[int] = None) -> str:
    """Inverse of `parse_type`."""
    if tag == TypeTag.CHAR:
        return f"_CHAR*{width or 1}"
    return tag.value


def is_primitive(type_str: str) -> bool:
    """Return whether the string names a primitive type."""
    try:
        parse_type(type_str)
    except UnsupportedTypeError:
        return False
    return True


def resolve(tag: TypeTag, width: Optional[int] = None) -> Tuple[np.dtype, int]:
    """Return numpy element type and element width in bytes for a tag.

    For `TypeTag.CHAR` the width must be passed (it is a property of the stored
    object, not of the tag).
    """
    if tag == TypeTag.CHAR:
        if width is None or width < 1:
            raise UnsupportedTypeError(f"Character type needs a width, got {width}")
        return (np.dtype(f"S{width}"), width)
    dtype = np.dtype(_NATIVE[tag])
    return (dtype, dtype.itemsize)


def reverse_shape(shape: Sequence[T]) -> Tuple[T, ...]:
    """Reverse a dimension (or index) sequence.

    Converts between store order and caller order, in both directions.
    """
    return tuple(reversed(tuple(shape)))


def allocate(
    type_str: Union[str, TypeTag], shape: Sequence[int], width: Optional[int] = None
) -> np.ndarray:
    """Return a zeroed buffer for data of given type and caller-order shape.

    The buffer is C-contiguous, so its memory holds the elements exactly in the
    order of the store-order (column-major) layout of `reverse_shape(shape)`.

    Character buffers have one byte more per element than the stored width,
    which leaves room for a terminator. The width is taken from the type
    string, unless passed explicitly.
    """
    tag, char_width = parse_type(type_str)
    if tag == TypeTag.CHAR:
        dtype, _ = resolve(tag, (width or char_width or 1) + 1)
    else:
        dtype, _ = resolve(tag)
    return np.zeros(tuple(int(d) for d in shape), dtype=dtype)


def bad_value(type_str: Union[str, TypeTag]) -> Union[int, float]:
    """Return the bad value of a numeric type."""
    tag, _ = parse_type(type_str)
    if tag not in BAD_VALUES:
        raise UnsupportedTypeError(f"No bad value defined for type '{format_type(tag)}'")
    return BAD_VALUES[tag]
