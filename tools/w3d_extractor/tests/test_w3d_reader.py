"""Tests for the bounds-checked chunk reader."""
import struct
import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from w3d_reader import (
    ChunkReader,
    OutOfBoundsError,
    SizeMismatchError,
    W3DParseError,
)


def test_read_primitives_little_endian():
    """Should read integers and floats little-endian."""
    data = struct.pack("<BHIif", 7, 0x1234, 0xDEADBEEF, -5, 1.5)
    reader = ChunkReader(data)

    assert reader.read_u8() == 7
    assert reader.read_u16() == 0x1234
    assert reader.read_u32() == 0xDEADBEEF
    assert reader.read_i32() == -5
    assert reader.read_f32() == 1.5
    assert reader.at_end()


def test_read_past_end_raises():
    """Should raise with position, requested amount and size in the message."""
    reader = ChunkReader(b"\x01\x02")

    with pytest.raises(OutOfBoundsError) as exc_info:
        reader.read_u32()

    message = str(exc_info.value)
    assert "pos=0" in message
    assert "read=4" in message
    assert "size=2" in message
    assert reader.position == 0


def test_skip_past_end_raises():
    reader = ChunkReader(b"\x01\x02")

    with pytest.raises(OutOfBoundsError, match="skip=10"):
        reader.skip(10)


def test_errors_are_value_errors():
    """Parse errors should be catchable as ValueError."""
    with pytest.raises(ValueError):
        ChunkReader(b"").read_u8()
    assert issubclass(OutOfBoundsError, W3DParseError)


def test_seek_bounds():
    """Seeking to the end is allowed, past it is not."""
    reader = ChunkReader(b"\x00" * 4)
    reader.seek(4)
    assert reader.at_end()

    with pytest.raises(OutOfBoundsError):
        reader.seek(5)
    with pytest.raises(OutOfBoundsError):
        reader.seek(-1)


def test_read_fixed_string_trims_at_null():
    reader = ChunkReader(b"abc\x00\x00xyz" + b"next")

    assert reader.read_fixed_string(8) == "abc"
    assert reader.position == 8


def test_read_null_string():
    """Should stop after the terminator or at max_len."""
    reader = ChunkReader(b"hi\x00rest")
    assert reader.read_null_string(16) == "hi"
    assert reader.position == 3

    reader = ChunkReader(b"abcdef")
    assert reader.read_null_string(4) == "abcd"
    assert reader.position == 4


def test_read_remaining_string_without_terminator():
    reader = ChunkReader(b"tex.tga")
    assert reader.read_remaining_string() == "tex.tga"
    assert reader.at_end()


def test_read_rgb_consumes_pad_byte():
    reader = ChunkReader(bytes([10, 20, 30, 99, 1, 2, 3, 4]))

    assert reader.read_rgb() == (10, 20, 30)
    assert reader.read_rgba() == (1, 2, 3, 4)


def test_read_array():
    reader = ChunkReader(struct.pack("<3I", 1, 2, 3))
    assert reader.read_array("I", 3) == [1, 2, 3]
    assert reader.read_array("I", 0) == []


def test_chunk_header_container_bit():
    """Bit 31 of the size marks a container and is not part of the size."""
    reader = ChunkReader(struct.pack("<II", 0x100, 0x80000010))
    header = reader.read_chunk_header()

    assert header.type == 0x100
    assert header.size == 16
    assert header.is_container
    assert header.type_name == "HIERARCHY"


def test_peek_chunk_header():
    """Peek should not move the cursor and returns None on short data."""
    reader = ChunkReader(struct.pack("<II", 2, 12))
    header = reader.peek_chunk_header()

    assert header.type == 2
    assert header.size == 12
    assert not header.is_container
    assert reader.position == 0

    assert ChunkReader(b"\x00" * 7).peek_chunk_header() is None


def test_named_chunk_header():
    reader = ChunkReader(b"MAP1" + struct.pack("<II", 3, 20))

    peeked = reader.peek_named_chunk_header()
    assert reader.position == 0

    header = reader.read_named_chunk_header()
    assert header == peeked
    assert header.name == "MAP1"
    assert header.version == 3
    assert header.size == 20
    assert header.is_container


def test_sub_reader_is_bounded_and_advances():
    reader = ChunkReader(b"\x01\x02\x03\x04\x05")
    sub = reader.sub_reader(2)

    assert reader.position == 2
    assert sub.size == 2
    assert sub.read_u16() == 0x0201
    with pytest.raises(OutOfBoundsError):
        sub.read_u8()


def test_sub_reader_past_end_raises():
    with pytest.raises(OutOfBoundsError):
        ChunkReader(b"\x01").sub_reader(2)


def test_iter_chunks_resyncs_after_partial_read():
    """The cursor should land on the next chunk however much was consumed."""
    data = struct.pack("<II", 1, 8) + struct.pack("<II", 11, 22)
    data += struct.pack("<II", 2, 4) + struct.pack("<I", 33)
    reader = ChunkReader(data)

    seen = []
    for header, chunk in reader.iter_chunks():
        # Only read the first value of each chunk
        seen.append((header.type, chunk.read_u32()))

    assert seen == [(1, 11), (2, 33)]
    assert reader.position == len(data)


def test_iter_chunks_stops_at_container_end():
    inner = struct.pack("<II", 1, 0)
    data = inner + b"trailing"
    reader = ChunkReader(data)

    headers = [h.type for h, _ in reader.iter_chunks(len(inner))]

    assert headers == [1]
    assert reader.position == len(inner)


def test_iter_chunks_child_larger_than_container():
    """A child claiming more bytes than its container holds is a size mismatch."""
    data = struct.pack("<II", 1, 100) + b"\x00" * 4

    with pytest.raises(SizeMismatchError):
        list(ChunkReader(data).iter_chunks())


def test_iter_chunks_truncated_header():
    data = struct.pack("<II", 1, 0) + b"\x00\x00\x00"

    with pytest.raises(OutOfBoundsError):
        list(ChunkReader(data).iter_chunks())


def test_require_multiple():
    assert ChunkReader(b"\x00" * 24).require_multiple(12, "VERTICES") == 2

    with pytest.raises(SizeMismatchError, match="VERTICES"):
        ChunkReader(b"\x00" * 25).require_multiple(12, "VERTICES")
