"""Decoders for W3D ANIMATION and COMPRESSED_ANIMATION chunks.

Animation channel (ANIMATION_CHANNEL):
- firstFrame, lastFrame, vectorLen, flags, pivot (uint16 each), 2 pad bytes
- (lastFrame - firstFrame + 1) * vectorLen floats

Time-coded channel (COMPRESSED_ANIMATION_CHANNEL, timecoded flavor):
- numTimeCodes (uint32), pivot (uint16), vectorLen (uint8), flags (uint8),
  4 reserved bytes
- numTimeCodes uint16 frame numbers, padded to an even count
- numTimeCodes * vectorLen floats

Bit channel (BIT_CHANNEL, COMPRESSED_BIT_CHANNEL):
- firstFrame, lastFrame, flags, pivot (uint16 each), default value (float)
- one bit per frame, rounded up to whole bytes
"""
import logging

from w3d_reader import ChunkReader, SizeMismatchError, UnsupportedSentinelError
from w3d_types import (
    W3D_NAME_LEN,
    AnimChannel,
    AnimFlavor,
    Animation,
    BitChannel,
    CompressedAnimation,
    TimeCodedChannel,
    W3DChunk,
    chunk_name,
)

logger = logging.getLogger(__name__)

SUPPORTED_VECTOR_LENS = (1, 4)


def _frame_count(first: int, last: int, what: str) -> int:
    if last < first:
        raise SizeMismatchError(f"{what}: last frame {last} before first frame {first}")
    return last - first + 1


def read_bit_channel(chunk: ChunkReader) -> BitChannel:
    channel = BitChannel(
        first_frame=chunk.read_u16(),
        last_frame=chunk.read_u16(),
        flags=chunk.read_u16(),
        pivot=chunk.read_u16(),
        default_value=chunk.read_f32(),
    )
    num_frames = _frame_count(channel.first_frame, channel.last_frame, "BIT_CHANNEL")
    num_bytes = (num_frames + 7) // 8
    if num_bytes > chunk.remaining:
        raise SizeMismatchError(
            f"BIT_CHANNEL: {num_frames} frames need {num_bytes} bytes, "
            f"chunk has {chunk.remaining}"
        )
    channel.data = chunk.read_bytes(num_bytes)
    return channel


class AnimationDecoder:
    """Decodes an ANIMATION container (one value per frame per channel)."""

    def decode(self, reader: ChunkReader) -> Animation:
        anim = Animation()

        for header, chunk in reader.iter_chunks():
            if header.type == W3DChunk.ANIMATION_HEADER:
                anim.version = chunk.read_u32()
                anim.name = chunk.read_fixed_string(W3D_NAME_LEN)
                anim.hierarchy_name = chunk.read_fixed_string(W3D_NAME_LEN)
                anim.num_frames = chunk.read_u32()
                anim.frame_rate = chunk.read_u32()
            elif header.type == W3DChunk.ANIMATION_CHANNEL:
                anim.channels.append(self._read_channel(chunk))
            elif header.type == W3DChunk.BIT_CHANNEL:
                anim.bit_channels.append(read_bit_channel(chunk))
            else:
                logger.debug("Skipping %s in ANIMATION", chunk_name(header.type))

        return anim

    def _read_channel(self, chunk: ChunkReader) -> AnimChannel:
        channel = AnimChannel(
            first_frame=chunk.read_u16(),
            last_frame=chunk.read_u16(),
            vector_len=chunk.read_u16(),
            flags=chunk.read_u16(),
            pivot=chunk.read_u16(),
        )
        chunk.skip(2)

        if channel.vector_len not in SUPPORTED_VECTOR_LENS:
            raise UnsupportedSentinelError(
                f"ANIMATION_CHANNEL: unsupported vector length {channel.vector_len}"
            )

        num_frames = _frame_count(channel.first_frame, channel.last_frame, "ANIMATION_CHANNEL")
        num_values = num_frames * channel.vector_len
        if num_values * 4 > chunk.remaining:
            raise SizeMismatchError(
                f"ANIMATION_CHANNEL: {num_frames} frames x {channel.vector_len} "
                f"need {num_values * 4} bytes, chunk has {chunk.remaining}"
            )
        channel.data = chunk.read_array("f", num_values)
        return channel


class CompressedAnimationDecoder:
    """Decodes a COMPRESSED_ANIMATION container (time-coded keys)."""

    def decode(self, reader: ChunkReader) -> CompressedAnimation:
        anim = CompressedAnimation()

        for header, chunk in reader.iter_chunks():
            if header.type == W3DChunk.COMPRESSED_ANIMATION_HEADER:
                anim.version = chunk.read_u32()
                anim.name = chunk.read_fixed_string(W3D_NAME_LEN)
                anim.hierarchy_name = chunk.read_fixed_string(W3D_NAME_LEN)
                anim.num_frames = chunk.read_u32()
                anim.frame_rate = chunk.read_u16()
                anim.flavor = chunk.read_u16()
                if anim.flavor not in (AnimFlavor.TIMECODED, AnimFlavor.ADAPTIVE_DELTA):
                    raise UnsupportedSentinelError(
                        f"COMPRESSED_ANIMATION_HEADER: unknown flavor {anim.flavor}"
                    )
            elif header.type == W3DChunk.COMPRESSED_ANIMATION_CHANNEL:
                if anim.flavor == AnimFlavor.ADAPTIVE_DELTA:
                    logger.warning(
                        "Skipping adaptive delta channel in %s", anim.name or "animation"
                    )
                    continue
                anim.channels.append(self._read_channel(chunk))
            elif header.type == W3DChunk.COMPRESSED_BIT_CHANNEL:
                anim.bit_channels.append(read_bit_channel(chunk))
            else:
                logger.debug("Skipping %s in COMPRESSED_ANIMATION", chunk_name(header.type))

        return anim

    def _read_channel(self, chunk: ChunkReader) -> TimeCodedChannel:
        channel = TimeCodedChannel(
            num_time_codes=chunk.read_u32(),
            pivot=chunk.read_u16(),
            vector_len=chunk.read_u8(),
            flags=chunk.read_u8(),
        )
        chunk.skip(4)

        count = channel.num_time_codes
        padded = count + (count % 2)
        needed = padded * 2 + count * channel.vector_len * 4
        if needed > chunk.remaining:
            raise SizeMismatchError(
                f"COMPRESSED_ANIMATION_CHANNEL: {count} keys x {channel.vector_len} "
                f"need {needed} bytes, chunk has {chunk.remaining}"
            )

        channel.time_codes = chunk.read_array("H", count)
        if count % 2:
            chunk.skip(2)
        channel.data = chunk.read_array("f", count * channel.vector_len)
        return channel
