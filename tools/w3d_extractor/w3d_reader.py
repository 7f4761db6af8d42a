"""Bounds-checked reader over an in-memory W3D buffer."""
import struct
from typing import Iterator, List, Optional, Tuple

from w3d_types import (
    RGB,
    RGBA,
    ChunkHeader,
    NamedChunkHeader,
    Quaternion,
    Vector2,
    Vector3,
)


class W3DParseError(ValueError):
    """Base class for malformed W3D data."""


class OutOfBoundsError(W3DParseError):
    """A read, seek or skip went past the end of the buffer or container."""


class SizeMismatchError(W3DParseError):
    """A self-describing count disagrees with the declared byte length."""


class UnsupportedSentinelError(W3DParseError):
    """An unexpected flag or code value."""


class ChunkReader:
    """Cursor over an immutable byte buffer.

    Every read either succeeds or raises OutOfBoundsError. Nothing is ever
    truncated or read past the end of the buffer.
    """

    def __init__(self, data: bytes, name: Optional[str] = None):
        """Initialize reader.

        Args:
            data: Buffer to read; bytes, bytearray or memoryview
            name: Optional label used in error messages
        """
        self._data = memoryview(data).cast("B")
        self._pos = 0
        self.name = name

    @property
    def position(self) -> int:
        return self._pos

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def at_end(self) -> bool:
        return self._pos >= len(self._data)

    def _where(self) -> str:
        label = f"{self.name}: " if self.name else ""
        return f"{label}pos={self._pos}"

    def _require(self, count: int, what: str):
        if count < 0 or count > self.remaining:
            raise OutOfBoundsError(
                f"{self._where()} {what}={count} size={self.size}"
            )

    def seek(self, pos: int):
        if pos < 0 or pos > self.size:
            raise OutOfBoundsError(f"{self._where()} seek={pos} size={self.size}")
        self._pos = pos

    def skip(self, count: int):
        self._require(count, "skip")
        self._pos += count

    def read_bytes(self, count: int) -> bytes:
        self._require(count, "read")
        data = self._data[self._pos:self._pos + count].tobytes()
        self._pos += count
        return data

    def _unpack(self, fmt: str):
        size = struct.calcsize(fmt)
        self._require(size, "read")
        values = struct.unpack_from(fmt, self._data, self._pos)
        self._pos += size
        return values

    def read_u8(self) -> int:
        return self._unpack("<B")[0]

    def read_u16(self) -> int:
        return self._unpack("<H")[0]

    def read_u32(self) -> int:
        return self._unpack("<I")[0]

    def read_i32(self) -> int:
        return self._unpack("<i")[0]

    def read_f32(self) -> float:
        return self._unpack("<f")[0]

    def read_array(self, fmt: str, count: int) -> List:
        """Read count values of a single struct format code, e.g. "I" or "f"."""
        if count == 0:
            return []
        return list(self._unpack(f"<{count}{fmt}"))

    def read_fixed_string(self, length: int) -> str:
        """Read a fixed-size field and trim it at the first null."""
        raw = self.read_bytes(length)
        return raw.split(b"\x00", 1)[0].decode("latin-1")

    def read_null_string(self, max_len: int) -> str:
        """Read up to max_len bytes, stopping after a null terminator."""
        out = bytearray()
        while len(out) < max_len and not self.at_end():
            c = self._data[self._pos]
            self._pos += 1
            if c == 0:
                break
            out.append(c)
        return out.decode("latin-1")

    def read_remaining_string(self) -> str:
        return self.read_null_string(self.remaining)

    def read_vector2(self) -> Vector2:
        return self._unpack("<2f")

    def read_vector3(self) -> Vector3:
        return self._unpack("<3f")

    def read_quaternion(self) -> Quaternion:
        return self._unpack("<4f")

    def read_rgb(self) -> RGB:
        """Read a 3 byte color followed by one pad byte."""
        r, g, b, _pad = self._unpack("<4B")
        return (r, g, b)

    def read_rgba(self) -> RGBA:
        return self._unpack("<4B")

    def read_chunk_header(self) -> ChunkHeader:
        chunk_type, raw_size = self._unpack("<II")
        return ChunkHeader(
            type=chunk_type,
            size=raw_size & ChunkHeader.SIZE_MASK,
            is_container=bool(raw_size & ChunkHeader.CONTAINER_BIT),
        )

    def peek_chunk_header(self) -> Optional[ChunkHeader]:
        """Read the next chunk header without consuming it.

        Returns:
            The header, or None when fewer than 8 bytes remain
        """
        if self.remaining < ChunkHeader.HEADER_SIZE:
            return None
        pos = self._pos
        header = self.read_chunk_header()
        self._pos = pos
        return header

    def read_named_chunk_header(self) -> NamedChunkHeader:
        """Read a map-format header: 4 character name, version, size."""
        name = self.read_bytes(4).decode("latin-1")
        version, size = self._unpack("<II")
        return NamedChunkHeader(name=name, version=version, size=size)

    def peek_named_chunk_header(self) -> Optional[NamedChunkHeader]:
        if self.remaining < NamedChunkHeader.HEADER_SIZE:
            return None
        pos = self._pos
        header = self.read_named_chunk_header()
        self._pos = pos
        return header

    def sub_reader(self, length: int) -> "ChunkReader":
        """Carve out the next length bytes as an independent reader.

        The outer cursor moves past the carved bytes.
        """
        self._require(length, "sub_reader")
        sub = ChunkReader(self._data[self._pos:self._pos + length], self.name)
        self._pos += length
        return sub

    def iter_chunks(self, length: Optional[int] = None) -> Iterator[Tuple[ChunkHeader, "ChunkReader"]]:
        """Walk the child chunks of a container.

        Yields (header, reader) pairs where reader is bounded to the chunk
        payload. The outer cursor is always left at the end of each chunk,
        however much of the payload the caller consumed.

        Args:
            length: Byte length of the container payload (default: the rest
                of this reader)

        Raises:
            OutOfBoundsError: If the container or a chunk header is truncated
            SizeMismatchError: If a chunk claims more bytes than its container holds
        """
        if length is None:
            length = self.remaining
        self._require(length, "container")
        end = self._pos + length

        while self._pos < end:
            if end - self._pos < ChunkHeader.HEADER_SIZE:
                raise OutOfBoundsError(
                    f"{self._where()} truncated chunk header, "
                    f"{end - self._pos} bytes left in container"
                )
            header = self.read_chunk_header()
            if header.size > end - self._pos:
                raise SizeMismatchError(
                    f"{self._where()} chunk {header.type_name} declares "
                    f"{header.size} bytes, container has {end - self._pos}"
                )
            yield header, self.sub_reader(header.size)

    def require_multiple(self, record_size: int, what: str) -> int:
        """Number of fixed-size records in the rest of this reader.

        Raises:
            SizeMismatchError: If the byte length is not a whole number of records
        """
        count, extra = divmod(self.remaining, record_size)
        if extra:
            raise SizeMismatchError(
                f"{self._where()} {what}: {self.remaining} bytes is not a "
                f"multiple of {record_size}"
            )
        return count
