"""Store file header kept in the HDF5 user block.

The block holds the magic string, a space and the header as one line of JSON.
The rest of the block is filled with NUL bytes.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union
from uuid import UUID, uuid1

from pydantic import BaseModel, ValidationError
from typing_extensions import Final

FORMAT_MAGIC_STR: Final[str] = "hds5_v01"
"""Marks a store file, first bytes of the user block."""

USER_BLOCK_SIZE: Final[int] = 512
"""Size of the user block reserved in front of the HDF5 data (HDF5 minimum)."""

_HDF5_SIGNATURE: Final[bytes] = b"\x89HDF"


class StoreHeader(BaseModel):
    """Identity of a store file."""

    store_uuid: UUID
    creator: str
    """Library (and version) that created the store."""

    @classmethod
    def create(cls) -> StoreHeader:
        from .. import __version__

        return cls(store_uuid=uuid1(), creator=f"hdsbridge {__version__}")

    @classmethod
    def parse_block(cls, block: bytes) -> Optional[StoreHeader]:
        """Return the header in a user block, None if there is none."""
        magic = FORMAT_MAGIC_STR.encode("ascii") + b" "
        if not block.startswith(magic):
            return None
        try:
            return cls.model_validate_json(block[len(magic) :].split(b"\x00", 1)[0])
        except ValidationError:
            return None

    @classmethod
    def load(cls, filename: Union[Path, str]) -> StoreHeader:
        with open(filename, "rb") as f:
            ret = cls.parse_block(f.read(USER_BLOCK_SIZE))
        if ret is None:
            raise ValueError(f"'{filename}' is not a store file (no store header).")
        return ret

    def to_block(self) -> bytes:
        data = f"{FORMAT_MAGIC_STR} {self.model_dump_json()}".encode("utf-8")
        if len(data) >= USER_BLOCK_SIZE:
            raise ValueError(f"Store header does not fit into {USER_BLOCK_SIZE} bytes.")
        return data.ljust(USER_BLOCK_SIZE, b"\x00")

    def save(self, filename: Union[Path, str]):
        """Write the header into the reserved user block of an HDF5 file."""
        block = self.to_block()
        with open(filename, "r+b") as f:
            if f.read(len(_HDF5_SIGNATURE)) == _HDF5_SIGNATURE:
                raise ValueError(f"'{filename}' has no user block to write into.")
            f.seek(0)
            f.write(block)
