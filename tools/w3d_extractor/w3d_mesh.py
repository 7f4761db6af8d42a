"""Decoder for W3D MESH chunks.

Mesh layout (children of MESH):
- MESH_HEADER3: version, attributes, names, counts, bounding box and sphere
- VERTICES / VERTEX_NORMALS: 12 bytes per vertex
- TEXCOORDS: 8 bytes per vertex, V flipped on load (v = 1 - v)
- TRIANGLES: 32 bytes each: 3x uint32 index, uint32 attributes,
  3x float normal, float plane distance
- VERTEX_INFLUENCES: 2x uint16 bone index per vertex (rigid skinning)
- material chunks (VERTEX_MATERIALS, SHADERS, TEXTURES, MATERIAL_PASS)
- PRELIT_*: alternate material sets for prelit rendering
- AABTREE: collision tree
"""
import logging

from w3d_reader import ChunkReader
from w3d_types import (
    W3D_NAME_LEN,
    AABTree,
    AABTreeNode,
    MaterialInfo,
    MaterialPass,
    MaterialSet,
    Mesh,
    MeshHeader,
    Shader,
    Texture,
    TextureInfo,
    TextureStage,
    Triangle,
    VertexInfluence,
    VertexMaterial,
    VertexMaterialInfo,
    W3DChunk,
    chunk_name,
)

logger = logging.getLogger(__name__)


def _flip_v(uvs):
    return [(u, 1.0 - v) for u, v in uvs]


def _skip(header, parent: str):
    logger.debug("Skipping %s in %s (%d bytes)", chunk_name(header.type), parent, header.size)


class MeshDecoder:
    """Decodes a MESH container into a Mesh."""

    TRIANGLE_SIZE = 32
    SHADER_SIZE = 16
    AABTREE_NODE_SIZE = 32
    PRELIT_CHUNKS = (
        W3DChunk.PRELIT_UNLIT,
        W3DChunk.PRELIT_VERTEX,
        W3DChunk.PRELIT_LIGHTMAP_MULTI_PASS,
        W3DChunk.PRELIT_LIGHTMAP_MULTI_TEXTURE,
    )

    def decode(self, reader: ChunkReader) -> Mesh:
        """Decode a mesh.

        Args:
            reader: Reader bounded to the MESH payload

        Returns:
            Decoded Mesh

        Raises:
            W3DParseError: If a known chunk is malformed
        """
        mesh = Mesh()

        for header, chunk in reader.iter_chunks():
            ctype = header.type

            if ctype == W3DChunk.MESH_HEADER3:
                mesh.header = self._read_header(chunk)
            elif ctype == W3DChunk.VERTICES:
                count = chunk.require_multiple(12, "VERTICES")
                mesh.vertices = [chunk.read_vector3() for _ in range(count)]
            elif ctype == W3DChunk.VERTEX_NORMALS:
                count = chunk.require_multiple(12, "VERTEX_NORMALS")
                mesh.normals = [chunk.read_vector3() for _ in range(count)]
            elif ctype == W3DChunk.TEXCOORDS:
                count = chunk.require_multiple(8, "TEXCOORDS")
                mesh.texcoords = _flip_v(chunk.read_vector2() for _ in range(count))
            elif ctype == W3DChunk.VERTEX_COLORS:
                count = chunk.require_multiple(4, "VERTEX_COLORS")
                mesh.vertex_colors = [chunk.read_rgba() for _ in range(count)]
            elif ctype == W3DChunk.VERTEX_SHADE_INDICES:
                count = chunk.require_multiple(4, "VERTEX_SHADE_INDICES")
                mesh.shade_indices = chunk.read_array("I", count)
            elif ctype == W3DChunk.TRIANGLES:
                mesh.triangles = self._read_triangles(chunk)
            elif ctype == W3DChunk.VERTEX_INFLUENCES:
                count = chunk.require_multiple(4, "VERTEX_INFLUENCES")
                mesh.vertex_influences = [
                    VertexInfluence(bone_index=chunk.read_u16(), bone_index2=chunk.read_u16())
                    for _ in range(count)
                ]
            elif ctype == W3DChunk.MESH_USER_TEXT:
                mesh.user_text = chunk.read_remaining_string()
            elif ctype == W3DChunk.AABTREE:
                mesh.aabtree = self._read_aabtree(chunk)
            elif ctype in self.PRELIT_CHUNKS:
                prelit = MaterialSet()
                for sub_header, sub_chunk in chunk.iter_chunks():
                    if not self._read_material_chunk(prelit, sub_header, sub_chunk):
                        _skip(sub_header, chunk_name(ctype))
                mesh.prelit[ctype] = prelit
            elif not self._read_material_chunk(mesh, header, chunk):
                _skip(header, "MESH")

        return mesh

    def _read_header(self, chunk: ChunkReader) -> MeshHeader:
        return MeshHeader(
            version=chunk.read_u32(),
            attributes=chunk.read_u32(),
            mesh_name=chunk.read_fixed_string(W3D_NAME_LEN),
            container_name=chunk.read_fixed_string(W3D_NAME_LEN),
            num_tris=chunk.read_u32(),
            num_vertices=chunk.read_u32(),
            num_materials=chunk.read_u32(),
            num_damage_stages=chunk.read_u32(),
            sort_level=chunk.read_i32(),
            prelit_version=chunk.read_u32(),
            future_counts=chunk.read_u32(),
            vertex_channels=chunk.read_u32(),
            face_channels=chunk.read_u32(),
            min=chunk.read_vector3(),
            max=chunk.read_vector3(),
            sph_center=chunk.read_vector3(),
            sph_radius=chunk.read_f32(),
        )

    def _read_triangles(self, chunk: ChunkReader):
        count = chunk.require_multiple(self.TRIANGLE_SIZE, "TRIANGLES")
        triangles = []
        for _ in range(count):
            indices = tuple(chunk.read_array("I", 3))
            attributes = chunk.read_u32()
            normal = chunk.read_vector3()
            distance = chunk.read_f32()
            triangles.append(Triangle(indices, attributes, normal, distance))
        return triangles

    def _read_material_chunk(self, target: MaterialSet, header, chunk: ChunkReader) -> bool:
        """Decode a material chunk into target.

        Returns:
            False if header is not a material chunk
        """
        ctype = header.type

        if ctype == W3DChunk.MATERIAL_INFO:
            target.material_info = MaterialInfo(*chunk.read_array("I", 4))
        elif ctype == W3DChunk.SHADERS:
            count = chunk.require_multiple(self.SHADER_SIZE, "SHADERS")
            target.shaders = [
                Shader(*chunk.read_array("B", self.SHADER_SIZE)) for _ in range(count)
            ]
        elif ctype == W3DChunk.VERTEX_MATERIALS:
            target.vertex_materials = [
                self._read_vertex_material(sub)
                for sub_header, sub in chunk.iter_chunks()
                if sub_header.type == W3DChunk.VERTEX_MATERIAL
            ]
        elif ctype == W3DChunk.TEXTURES:
            target.textures = [
                self._read_texture(sub)
                for sub_header, sub in chunk.iter_chunks()
                if sub_header.type == W3DChunk.TEXTURE
            ]
        elif ctype == W3DChunk.MATERIAL_PASS:
            target.material_passes.append(self._read_material_pass(chunk))
        else:
            return False
        return True

    def _read_vertex_material(self, reader: ChunkReader) -> VertexMaterial:
        material = VertexMaterial()
        for header, chunk in reader.iter_chunks():
            if header.type == W3DChunk.VERTEX_MATERIAL_NAME:
                material.name = chunk.read_remaining_string()
            elif header.type == W3DChunk.VERTEX_MATERIAL_INFO:
                material.info = VertexMaterialInfo(
                    attributes=chunk.read_u32(),
                    ambient=chunk.read_rgb(),
                    diffuse=chunk.read_rgb(),
                    specular=chunk.read_rgb(),
                    emissive=chunk.read_rgb(),
                    shininess=chunk.read_f32(),
                    opacity=chunk.read_f32(),
                    translucency=chunk.read_f32(),
                )
            elif header.type == W3DChunk.VERTEX_MAPPER_ARGS0:
                material.mapper_args0 = chunk.read_remaining_string()
            elif header.type == W3DChunk.VERTEX_MAPPER_ARGS1:
                material.mapper_args1 = chunk.read_remaining_string()
            else:
                _skip(header, "VERTEX_MATERIAL")
        return material

    def _read_texture(self, reader: ChunkReader) -> Texture:
        texture = Texture()
        for header, chunk in reader.iter_chunks():
            if header.type == W3DChunk.TEXTURE_NAME:
                texture.name = chunk.read_remaining_string()
            elif header.type == W3DChunk.TEXTURE_INFO:
                texture.info = TextureInfo(
                    attributes=chunk.read_u16(),
                    anim_type=chunk.read_u16(),
                    frame_count=chunk.read_u32(),
                    frame_rate=chunk.read_f32(),
                )
            else:
                _skip(header, "TEXTURE")
        return texture

    def _read_material_pass(self, reader: ChunkReader) -> MaterialPass:
        material_pass = MaterialPass()
        for header, chunk in reader.iter_chunks():
            ctype = header.type
            if ctype == W3DChunk.VERTEX_MATERIAL_IDS:
                material_pass.vertex_material_ids = chunk.read_array(
                    "I", chunk.require_multiple(4, "VERTEX_MATERIAL_IDS"))
            elif ctype == W3DChunk.SHADER_IDS:
                material_pass.shader_ids = chunk.read_array(
                    "I", chunk.require_multiple(4, "SHADER_IDS"))
            elif ctype in (W3DChunk.DCG, W3DChunk.DIG, W3DChunk.SCG):
                count = chunk.require_multiple(4, chunk_name(ctype))
                colors = [chunk.read_rgba() for _ in range(count)]
                setattr(material_pass, W3DChunk(ctype).name.lower(), colors)
            elif ctype == W3DChunk.TEXTURE_STAGE:
                material_pass.texture_stages.append(self._read_texture_stage(chunk))
            else:
                _skip(header, "MATERIAL_PASS")
        return material_pass

    def _read_texture_stage(self, reader: ChunkReader) -> TextureStage:
        stage = TextureStage()
        for header, chunk in reader.iter_chunks():
            ctype = header.type
            if ctype == W3DChunk.TEXTURE_IDS:
                stage.texture_ids = chunk.read_array(
                    "I", chunk.require_multiple(4, "TEXTURE_IDS"))
            elif ctype == W3DChunk.STAGE_TEXCOORDS:
                count = chunk.require_multiple(8, "STAGE_TEXCOORDS")
                stage.texcoords = _flip_v(chunk.read_vector2() for _ in range(count))
            elif ctype == W3DChunk.PER_FACE_TEXCOORD_IDS:
                count = chunk.require_multiple(12, "PER_FACE_TEXCOORD_IDS")
                stage.per_face_texcoord_ids = chunk.read_array("I", count * 3)
            else:
                _skip(header, "TEXTURE_STAGE")
        return stage

    def _read_aabtree(self, reader: ChunkReader) -> AABTree:
        tree = AABTree()
        for header, chunk in reader.iter_chunks():
            if header.type == W3DChunk.AABTREE_HEADER:
                tree.node_count = chunk.read_u32()
                tree.poly_count = chunk.read_u32()
            elif header.type == W3DChunk.AABTREE_POLYINDICES:
                tree.poly_indices = chunk.read_array(
                    "I", chunk.require_multiple(4, "AABTREE_POLYINDICES"))
            elif header.type == W3DChunk.AABTREE_NODES:
                count = chunk.require_multiple(self.AABTREE_NODE_SIZE, "AABTREE_NODES")
                tree.nodes = [
                    AABTreeNode(
                        min=chunk.read_vector3(),
                        max=chunk.read_vector3(),
                        front_or_poly0=chunk.read_u32(),
                        back_or_poly_count=chunk.read_u32(),
                    )
                    for _ in range(count)
                ]
            else:
                _skip(header, "AABTREE")
        return tree
