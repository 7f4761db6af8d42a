"""Decoders for W3D HLOD and BOX chunks."""
import logging
from typing import List

from w3d_reader import ChunkReader, SizeMismatchError
from w3d_types import (
    HLOD_NAME_LEN,
    W3D_NAME_LEN,
    Box,
    HLod,
    HLodArray,
    HLodSubObject,
    W3DChunk,
    chunk_name,
)

logger = logging.getLogger(__name__)


class HLodDecoder:
    """Decodes an HLOD container.

    Layout:
    - HLOD_HEADER: version, lod count, name[16], hierarchy name[16]
    - HLOD_LOD_ARRAY (one per level, in file order):
        HLOD_SUB_OBJECT_ARRAY_HEADER: model count, max screen size
        HLOD_SUB_OBJECT: bone index (uint32), name[32]
    - HLOD_AGGREGATE_ARRAY, HLOD_PROXY_ARRAY: same shape as a LOD array
    """

    SUB_OBJECT_SIZE = 4 + HLOD_NAME_LEN

    def decode(self, reader: ChunkReader) -> HLod:
        hlod = HLod()

        for header, chunk in reader.iter_chunks():
            if header.type == W3DChunk.HLOD_HEADER:
                hlod.version = chunk.read_u32()
                hlod.lod_count = chunk.read_u32()
                hlod.name = chunk.read_fixed_string(W3D_NAME_LEN)
                hlod.hierarchy_name = chunk.read_fixed_string(W3D_NAME_LEN)
            elif header.type == W3DChunk.HLOD_LOD_ARRAY:
                hlod.lod_arrays.append(self._read_array(chunk, "HLOD_LOD_ARRAY"))
            elif header.type == W3DChunk.HLOD_AGGREGATE_ARRAY:
                hlod.aggregates = self._read_array(chunk, "HLOD_AGGREGATE_ARRAY").sub_objects
            elif header.type == W3DChunk.HLOD_PROXY_ARRAY:
                hlod.proxies = self._read_array(chunk, "HLOD_PROXY_ARRAY").sub_objects
            else:
                logger.debug("Skipping %s in HLOD", chunk_name(header.type))

        if hlod.lod_count != len(hlod.lod_arrays):
            logger.warning(
                "HLod %s declares %d LOD levels, found %d",
                hlod.name, hlod.lod_count, len(hlod.lod_arrays),
            )
        return hlod

    def _read_array(self, reader: ChunkReader, what: str) -> HLodArray:
        lod_array = HLodArray()
        sub_objects: List[HLodSubObject] = []

        for header, chunk in reader.iter_chunks():
            if header.type == W3DChunk.HLOD_SUB_OBJECT_ARRAY_HEADER:
                lod_array.model_count = chunk.read_u32()
                lod_array.max_screen_size = chunk.read_f32()
            elif header.type == W3DChunk.HLOD_SUB_OBJECT:
                if chunk.remaining < self.SUB_OBJECT_SIZE:
                    raise SizeMismatchError(
                        f"{what}: sub-object needs {self.SUB_OBJECT_SIZE} bytes, "
                        f"chunk has {chunk.remaining}"
                    )
                sub_objects.append(HLodSubObject(
                    bone_index=chunk.read_u32(),
                    name=chunk.read_fixed_string(HLOD_NAME_LEN),
                ))
            else:
                logger.debug("Skipping %s in %s", chunk_name(header.type), what)

        lod_array.sub_objects = sub_objects
        if lod_array.model_count != len(sub_objects):
            logger.warning(
                "%s declares %d models, found %d", what, lod_array.model_count, len(sub_objects)
            )
        return lod_array


class BoxDecoder:
    """Decodes a BOX chunk: version, attributes, name[32], color, center, extent."""

    def decode(self, reader: ChunkReader) -> Box:
        return Box(
            version=reader.read_u32(),
            attributes=reader.read_u32(),
            name=reader.read_fixed_string(HLOD_NAME_LEN),
            color=reader.read_rgb(),
            center=reader.read_vector3(),
            extent=reader.read_vector3(),
        )
