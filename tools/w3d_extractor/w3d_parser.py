"""Parser for Westwood W3D model files."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, Union

from w3d_animation import AnimationDecoder, CompressedAnimationDecoder
from w3d_hierarchy import HierarchyDecoder
from w3d_hlod import BoxDecoder, HLodDecoder
from w3d_mesh import MeshDecoder
from w3d_reader import ChunkReader, SizeMismatchError, W3DParseError
from w3d_types import ChunkHeader, W3DChunk, W3DFile, chunk_name, format_version

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Outcome of load(). Exactly one of model and error is set."""
    model: Optional[W3DFile] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.model is not None


class W3DParser:
    """Parses W3D files into a W3DFile."""

    def __init__(self):
        # chunk type -> (decoder, W3DFile list attribute)
        self._decoders = {
            W3DChunk.MESH: (MeshDecoder(), "meshes"),
            W3DChunk.HIERARCHY: (HierarchyDecoder(), "hierarchies"),
            W3DChunk.ANIMATION: (AnimationDecoder(), "animations"),
            W3DChunk.COMPRESSED_ANIMATION: (CompressedAnimationDecoder(), "compressed_animations"),
            W3DChunk.HLOD: (HLodDecoder(), "hlods"),
            W3DChunk.BOX: (BoxDecoder(), "boxes"),
        }

    def decode(self, data: bytes, name: Optional[str] = None) -> W3DFile:
        """Decode a complete W3D buffer.

        A trailing fragment shorter than a chunk header is ignored.

        Args:
            data: File contents
            name: Optional label for error messages

        Returns:
            W3DFile with every recognised top-level chunk

        Raises:
            W3DParseError: If any known chunk is malformed
        """
        reader = ChunkReader(data, name)
        w3d_file = W3DFile()

        while reader.remaining >= ChunkHeader.HEADER_SIZE:
            header = reader.read_chunk_header()
            if header.size > reader.remaining:
                raise SizeMismatchError(
                    f"Chunk {header.type_name} size ({header.size}) exceeds "
                    f"remaining data ({reader.remaining})"
                )
            chunk = reader.sub_reader(header.size)

            entry = self._decoders.get(header.type)
            if entry is None:
                logger.debug("Skipping top-level chunk %s (%d bytes)",
                             chunk_name(header.type), header.size)
                continue
            decoder, attr = entry
            getattr(w3d_file, attr).append(decoder.decode(chunk))

        if reader.remaining:
            logger.debug("Ignoring %d trailing bytes", reader.remaining)
        return w3d_file

    def load(self, source: Union[bytes, bytearray, str, Path, BinaryIO]) -> LoadResult:
        """Load a W3D file, converting any failure into an error message.

        A failed load never returns a partially decoded model.

        Args:
            source: Raw bytes, path to a .w3d file, or binary file object
        """
        name = None
        try:
            if isinstance(source, (bytes, bytearray, memoryview)):
                data = source
            elif isinstance(source, (str, Path)):
                name = str(source)
                with open(source, "rb") as f:
                    data = f.read()
            else:
                name = getattr(source, "name", None)
                data = source.read()
            return LoadResult(model=self.decode(data, name))
        except W3DParseError as e:
            return LoadResult(error=f"Failed to parse {name or 'W3D data'}: {e}")
        except OSError as e:
            return LoadResult(error=f"Failed to read {name}: {e}")


def decode(data: bytes) -> W3DFile:
    return W3DParser().decode(data)


def load(source: Union[bytes, bytearray, str, Path, BinaryIO]) -> LoadResult:
    return W3DParser().load(source)


def describe(w3d_file: W3DFile) -> str:
    """Human-readable summary of a decoded file."""
    lines: List[str] = ["W3D File Contents:"]

    if w3d_file.is_empty():
        lines.append("  (empty)")
        return "\n".join(lines)

    if w3d_file.meshes:
        lines.append(f"  Meshes: {len(w3d_file.meshes)}")
        for mesh in w3d_file.meshes:
            header = mesh.header
            lines.append(
                f"    {mesh.full_name} v{format_version(header.version)}: "
                f"{len(mesh.vertices)} vertices, {len(mesh.triangles)} triangles, "
                f"{len(mesh.textures)} textures, {len(mesh.material_passes)} passes"
            )
            for texture in mesh.textures:
                lines.append(f"      texture: {texture.name}")
            if mesh.vertex_influences:
                lines.append(f"      skinned: {len(mesh.vertex_influences)} influences")

    if w3d_file.hierarchies:
        lines.append(f"  Hierarchies: {len(w3d_file.hierarchies)}")
        for hierarchy in w3d_file.hierarchies:
            lines.append(f"    {hierarchy.name}: {len(hierarchy.pivots)} pivots")

    if w3d_file.animations:
        lines.append(f"  Animations: {len(w3d_file.animations)}")
        for anim in w3d_file.animations:
            lines.append(
                f"    {anim.name} -> {anim.hierarchy_name}: {anim.num_frames} frames "
                f"@ {anim.frame_rate} fps, {len(anim.channels)} channels, "
                f"{len(anim.bit_channels)} bit channels"
            )

    if w3d_file.compressed_animations:
        lines.append(f"  Compressed Animations: {len(w3d_file.compressed_animations)}")
        for anim in w3d_file.compressed_animations:
            lines.append(
                f"    {anim.name} -> {anim.hierarchy_name}: {anim.num_frames} frames "
                f"@ {anim.frame_rate} fps, flavor {anim.flavor}, "
                f"{len(anim.channels)} channels"
            )

    if w3d_file.hlods:
        lines.append(f"  HLods: {len(w3d_file.hlods)}")
        for hlod in w3d_file.hlods:
            lines.append(f"    {hlod.name} -> {hlod.hierarchy_name}: {len(hlod.lod_arrays)} LODs")
            for i, lod in enumerate(hlod.lod_arrays):
                lines.append(
                    f"      LOD {i}: {len(lod.sub_objects)} sub-objects "
                    f"(max screen size: {lod.max_screen_size:g})"
                )
            if hlod.aggregates:
                lines.append(f"      aggregates: {len(hlod.aggregates)}")
            if hlod.proxies:
                lines.append(f"      proxies: {len(hlod.proxies)}")

    if w3d_file.boxes:
        lines.append(f"  Boxes: {len(w3d_file.boxes)}")
        for box in w3d_file.boxes:
            lines.append(f"    {box.name}")

    return "\n".join(lines)
