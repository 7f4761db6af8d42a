"""Conversion of decoded W3D meshes into render-ready sub-meshes.

A mesh is split into one sub-mesh per distinct texture of its first material
pass (first texture stage). When that stage has per-face texture coordinate
ids the mesh is unrolled to three vertices per triangle, since a shared
vertex can then carry different UVs on different faces.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from w3d_math import transform_normals, transform_points
from w3d_types import Mesh

logger = logging.getLogger(__name__)

NO_BONE = -1


@dataclass
class ResolveOptions:
    """Options for turning meshes into sub-meshes.

    gpu_skinning: tag vertices with bone indices instead of baking bone
        transforms into the positions
    """
    gpu_skinning: bool = False
    default_color: Tuple[float, float, float] = (0.8, 0.8, 0.8)
    default_normal: Tuple[float, float, float] = (0.0, 1.0, 0.0)


@dataclass
class BoundingBox:
    """Axis-aligned bounds. Starts empty (min > max)."""
    min: np.ndarray = field(default_factory=lambda: np.full(3, np.inf))
    max: np.ndarray = field(default_factory=lambda: np.full(3, -np.inf))

    def is_valid(self) -> bool:
        return bool(np.all(self.min <= self.max))

    def expand_points(self, points: np.ndarray):
        if len(points):
            self.min = np.minimum(self.min, points.min(axis=0))
            self.max = np.maximum(self.max, points.max(axis=0))

    def expand(self, other: "BoundingBox"):
        if other.is_valid():
            self.min = np.minimum(self.min, other.min)
            self.max = np.maximum(self.max, other.max)

    def size(self) -> np.ndarray:
        return self.max - self.min if self.is_valid() else np.zeros(3)

    def center(self) -> np.ndarray:
        return (self.min + self.max) * 0.5 if self.is_valid() else np.zeros(3)

    def radius(self) -> float:
        """Half the diagonal length."""
        return float(np.linalg.norm(self.size()) * 0.5)


@dataclass
class SubMeshData:
    """Vertex and index arrays of one texture slice of a mesh.

    bone_indices holds NO_BONE for vertices without a skin influence.
    """
    name: str
    texture_name: str
    positions: np.ndarray
    normals: np.ndarray
    texcoords: np.ndarray
    colors: np.ndarray
    bone_indices: np.ndarray
    indices: np.ndarray
    bounds: BoundingBox = field(default_factory=BoundingBox)

    @property
    def vertex_count(self) -> int:
        return len(self.positions)

    @property
    def triangle_count(self) -> int:
        return len(self.indices) // 3

    def apply_transform(self, matrix: np.ndarray):
        """Bake a bone transform into positions and normals."""
        self.positions = transform_points(matrix, self.positions).astype(np.float32)
        self.normals = transform_normals(matrix, self.normals).astype(np.float32)
        self.bounds = BoundingBox()
        self.bounds.expand_points(self.positions)


def _color(rgb: Sequence[int]) -> Tuple[float, float, float]:
    return (rgb[0] / 255.0, rgb[1] / 255.0, rgb[2] / 255.0)


def vertex_color(mesh: Mesh, index: int, default: Tuple[float, float, float]) -> Tuple[float, float, float]:
    """Color of one vertex: vertex colors, then pass 0 DCG, then material diffuse."""
    if index < len(mesh.vertex_colors):
        return _color(mesh.vertex_colors[index])
    if mesh.material_passes and index < len(mesh.material_passes[0].dcg):
        return _color(mesh.material_passes[0].dcg[index])
    if mesh.vertex_materials:
        return _color(mesh.vertex_materials[0].diffuse)
    return default


def _uv_sources(mesh: Mesh):
    """Pick the UV array and optional per-face UV ids."""
    uvs = mesh.texcoords
    per_face: Optional[List[int]] = None
    for material_pass in mesh.material_passes:
        for stage in material_pass.texture_stages:
            if stage.per_face_texcoord_ids and per_face is None:
                per_face = stage.per_face_texcoord_ids
            if stage.texcoords and not mesh.texcoords and uvs is mesh.texcoords:
                uvs = stage.texcoords
    return uvs, per_face


def _triangle_texture_ids(mesh: Mesh) -> List[Optional[int]]:
    """Texture id of every triangle from pass 0, stage 0."""
    count = len(mesh.triangles)
    ids: List[int] = []
    if mesh.material_passes and mesh.material_passes[0].texture_stages:
        ids = mesh.material_passes[0].texture_stages[0].texture_ids
    if not ids:
        return [None] * count
    if len(ids) == 1:
        return [ids[0]] * count
    return [ids[i] if i < len(ids) else None for i in range(count)]


def _texture_name(mesh: Mesh, texture_id: Optional[int]) -> str:
    if texture_id is not None and texture_id < len(mesh.textures):
        return mesh.textures[texture_id].name
    return ""


def convert_mesh(mesh: Mesh, options: Optional[ResolveOptions] = None,
                 name: Optional[str] = None) -> List[SubMeshData]:
    """Split a mesh into per-texture sub-meshes.

    Args:
        mesh: Decoded mesh
        options: Defaults for missing normals and colors
        name: Base name for the sub-meshes (default: the mesh name); a
            "_sub{i}" suffix is added when there is more than one

    Returns:
        Sub-meshes in order of first use of their texture; empty when the
        mesh has no vertices or triangles
    """
    options = options or ResolveOptions()
    base_name = name or mesh.name
    num_verts = len(mesh.vertices)
    if num_verts == 0 or not mesh.triangles:
        return []

    uvs, per_face = _uv_sources(mesh)
    unroll = bool(per_face) and bool(uvs)

    # Source vertex index of every output vertex, and its UV
    if unroll:
        source = []
        vertex_uvs = []
        for t, tri in enumerate(mesh.triangles):
            for corner in range(3):
                source.append(tri.vertex_indices[corner])
                pos = t * 3 + corner
                uv_index = per_face[pos] if pos < len(per_face) else len(uvs)
                vertex_uvs.append(uvs[uv_index] if uv_index < len(uvs) else (0.0, 0.0))
        triangles = np.arange(len(source), dtype=np.uint32).reshape(-1, 3)
    else:
        source = list(range(num_verts))
        vertex_uvs = [uvs[i] if i < len(uvs) else (0.0, 0.0) for i in source]
        triangles = np.array([tri.vertex_indices for tri in mesh.triangles], dtype=np.uint32)

    positions = np.array(
        [mesh.vertices[i] if i < num_verts else (0.0, 0.0, 0.0) for i in source],
        dtype=np.float32,
    )
    normals = np.array(
        [mesh.normals[i] if i < len(mesh.normals) else options.default_normal for i in source],
        dtype=np.float32,
    )
    colors = np.array(
        [vertex_color(mesh, i, options.default_color) for i in source], dtype=np.float32
    )
    bones = np.array(
        [mesh.vertex_influences[i].bone_index if i < len(mesh.vertex_influences) else NO_BONE
         for i in source],
        dtype=np.int32,
    )
    texcoords = np.array(vertex_uvs, dtype=np.float32).reshape(-1, 2)

    valid = np.all(triangles < len(source), axis=1)
    if not np.all(valid):
        logger.warning("Mesh %s: dropping %d triangles with out of range indices",
                       mesh.name, int((~valid).sum()))

    # Group triangles by texture, keeping first-use order
    groups: Dict[Optional[int], List[int]] = {}
    for t, texture_id in enumerate(_triangle_texture_ids(mesh)):
        if valid[t]:
            groups.setdefault(texture_id, []).append(t)

    sub_meshes = []
    for sub_index, (texture_id, tri_list) in enumerate(groups.items()):
        tris = triangles[tri_list]
        used, local = np.unique(tris.reshape(-1), return_inverse=True)
        sub = SubMeshData(
            name=base_name if len(groups) == 1 else f"{base_name}_sub{sub_index}",
            texture_name=_texture_name(mesh, texture_id),
            positions=positions[used],
            normals=normals[used],
            texcoords=texcoords[used],
            colors=colors[used],
            bone_indices=bones[used],
            indices=local.astype(np.uint32),
        )
        sub.bounds.expand_points(sub.positions)
        sub_meshes.append(sub)

    return sub_meshes


def combined_bounds(sub_meshes: Sequence[SubMeshData]) -> BoundingBox:
    bounds = BoundingBox()
    for sub in sub_meshes:
        bounds.expand(sub.bounds)
    return bounds
