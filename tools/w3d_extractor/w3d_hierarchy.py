"""Decoder for W3D HIERARCHY chunks.

Each pivot record is 60 bytes:
  name[16], parent index (uint32, 0xFFFFFFFF = root), translation (3 floats),
  euler angles (3 floats, unused), rotation quaternion (x, y, z, w)
"""
import logging

from w3d_reader import ChunkReader
from w3d_types import (
    ROOT_PIVOT,
    W3D_NAME_LEN,
    Hierarchy,
    Pivot,
    W3DChunk,
    chunk_name,
)

logger = logging.getLogger(__name__)


class HierarchyDecoder:
    """Decodes a HIERARCHY container into a Hierarchy."""

    PIVOT_SIZE = 60
    FIXUP_SIZE = 12

    def decode(self, reader: ChunkReader) -> Hierarchy:
        hierarchy = Hierarchy()

        for header, chunk in reader.iter_chunks():
            if header.type == W3DChunk.HIERARCHY_HEADER:
                hierarchy.version = chunk.read_u32()
                hierarchy.name = chunk.read_fixed_string(W3D_NAME_LEN)
                hierarchy.num_pivots = chunk.read_u32()
                hierarchy.center = chunk.read_vector3()
            elif header.type == W3DChunk.PIVOTS:
                count = chunk.require_multiple(self.PIVOT_SIZE, "PIVOTS")
                hierarchy.pivots = [self._read_pivot(chunk) for _ in range(count)]
            elif header.type == W3DChunk.PIVOT_FIXUPS:
                count = chunk.require_multiple(self.FIXUP_SIZE, "PIVOT_FIXUPS")
                hierarchy.pivot_fixups = [chunk.read_vector3() for _ in range(count)]
            else:
                logger.debug("Skipping %s in HIERARCHY", chunk_name(header.type))

        # Older exporters do not write fixups
        if not hierarchy.pivot_fixups:
            hierarchy.pivot_fixups = [(0.0, 0.0, 0.0)] * len(hierarchy.pivots)

        return hierarchy

    def _read_pivot(self, chunk: ChunkReader) -> Pivot:
        name = chunk.read_fixed_string(W3D_NAME_LEN)
        parent = chunk.read_u32()
        return Pivot(
            name=name,
            parent_index=-1 if parent == ROOT_PIVOT else parent,
            translation=chunk.read_vector3(),
            euler_angles=chunk.read_vector3(),
            rotation=chunk.read_quaternion(),
        )
