"""Resolution of W3D HLods into renderable, LOD-aware sub-mesh sets.

An HLod lists its LOD levels (index 0 first), a set of aggregates that are
drawn at every level, and proxies. Every entry names a mesh
("CONTAINER.MESH") and the bone it is attached to.
"""
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from mesh_converter import (
    NO_BONE,
    BoundingBox,
    ResolveOptions,
    SubMeshData,
    convert_mesh,
)
from w3d_math import transform_normals, transform_points
from w3d_skeleton import SkeletonPose
from w3d_types import HLodSubObject, Mesh, W3DFile

logger = logging.getLogger(__name__)


class LodSelectionMode(Enum):
    AUTO = "auto"
    MANUAL = "manual"


@dataclass
class LodMeshRef:
    """A sub-object resolved against the file's meshes."""
    mesh_index: int
    bone_index: Optional[int]
    name: str


@dataclass
class LodLevel:
    max_screen_size: float = 0.0
    meshes: List[LodMeshRef] = field(default_factory=list)
    bounds: BoundingBox = field(default_factory=BoundingBox)


@dataclass
class ResolvedSubMesh:
    """One draw item: a texture slice of a mesh placed in a LOD level."""
    name: str
    base_name: str
    texture_name: str
    bone_index: Optional[int]
    lod_level: int
    is_aggregate: bool
    sub_mesh_index: int
    sub_mesh_total: int
    data: SubMeshData

    @property
    def vertices(self) -> np.ndarray:
        return self.data.positions

    @property
    def indices(self) -> np.ndarray:
        return self.data.indices


class ResolvedModel:
    """Resolved sub-meshes plus per-frame LOD selection and visibility.

    Visibility is tracked per sub-mesh index and defaults to visible.
    """

    def __init__(self, name: str = "", hierarchy_name: str = ""):
        self.name = name
        self.hierarchy_name = hierarchy_name
        self.lod_levels: List[LodLevel] = []
        self.sub_meshes: List[ResolvedSubMesh] = []
        self.aggregate_count = 0
        self.bounds = BoundingBox()
        self.selection_mode = LodSelectionMode.AUTO
        self.current_lod = 0
        self.current_screen_size = 0.0
        self._hidden: List[bool] = []

    @property
    def lod_count(self) -> int:
        return len(self.lod_levels)

    def add_sub_mesh(self, sub_mesh: ResolvedSubMesh) -> int:
        """Append a sub-mesh (visible) and return its index."""
        self.sub_meshes.append(sub_mesh)
        self._hidden.append(False)
        self.bounds.expand(sub_mesh.data.bounds)
        if not sub_mesh.is_aggregate and sub_mesh.lod_level < len(self.lod_levels):
            self.lod_levels[sub_mesh.lod_level].bounds.expand(sub_mesh.data.bounds)
        return len(self.sub_meshes) - 1

    @staticmethod
    def calculate_screen_size(radius: float, distance: float,
                              screen_height: float, fov_y: float) -> float:
        """Approximate on-screen height in pixels of a bounding sphere."""
        if distance <= 0.0 or radius <= 0.0:
            return 0.0
        angular_size = 2.0 * math.atan(radius / distance)
        return (angular_size / fov_y) * screen_height

    def select_lod_for_screen_size(self, screen_size: float) -> int:
        """LOD level for a screen size.

        The highest level whose threshold the screen size reaches wins, so
        thresholds [0, 50, 200] select levels 0, 1 and 2 for sizes 10, 75
        and 500. Levels are taken in stored order; their thresholds are not
        checked to ascend. A threshold of 0 is never selected by size, so
        level 0 is the fallback.
        """
        selected = 0
        for i, level in enumerate(self.lod_levels):
            if level.max_screen_size > 0.0 and screen_size >= level.max_screen_size:
                selected = i
        return selected

    def select_lod(self, screen_height: float, fov_y: float, camera_distance: float):
        """Pick the current LOD from the camera. Does nothing in MANUAL mode."""
        if self.selection_mode != LodSelectionMode.AUTO or not self.lod_levels:
            return
        self.current_screen_size = self.calculate_screen_size(
            self.bounds.radius(), camera_distance, screen_height, fov_y
        )
        self.current_lod = self.select_lod_for_screen_size(self.current_screen_size)

    def set_selection_mode(self, mode: LodSelectionMode):
        self.selection_mode = mode

    def set_current_lod(self, level: int):
        """Set the LOD directly. Out of range levels are ignored."""
        if 0 <= level < len(self.lod_levels):
            self.current_lod = level

    def is_hidden(self, index: int) -> bool:
        if 0 <= index < len(self._hidden):
            return self._hidden[index]
        return False

    def set_hidden(self, index: int, hidden: bool):
        if 0 <= index < len(self._hidden):
            self._hidden[index] = hidden

    def set_all_hidden(self, hidden: bool):
        self._hidden = [hidden] * len(self.sub_meshes)

    def is_visible(self, index: int) -> bool:
        if not 0 <= index < len(self.sub_meshes):
            return False
        sub = self.sub_meshes[index]
        in_lod = sub.is_aggregate or sub.lod_level == self.current_lod
        return in_lod and not self._hidden[index]

    def visible_indices(self) -> List[int]:
        return [i for i in range(len(self.sub_meshes)) if self.is_visible(i)]

    def total_triangles(self) -> int:
        return sum(sub.data.triangle_count for sub in self.sub_meshes)

    def total_vertices(self) -> int:
        return sum(sub.data.vertex_count for sub in self.sub_meshes)


class HLodResolver:
    """Builds a ResolvedModel from a decoded file and an optional pose."""

    def __init__(self, options: Optional[ResolveOptions] = None):
        self.options = options or ResolveOptions()

    @staticmethod
    def build_mesh_name_map(w3d_file: W3DFile) -> Dict[str, int]:
        """Map both "container.mesh" and bare "mesh" names to mesh indices.

        When several meshes share a bare name the last one wins.
        """
        name_map: Dict[str, int] = {}
        for i, mesh in enumerate(w3d_file.meshes):
            name_map[mesh.full_name] = i
            name_map[mesh.name] = i
        return name_map

    @staticmethod
    def find_mesh_index(name_map: Dict[str, int], name: str) -> Optional[int]:
        """Exact name first, then the part after the first dot."""
        if name in name_map:
            return name_map[name]
        if "." in name:
            return name_map.get(name.split(".", 1)[1])
        return None

    def resolve(self, w3d_file: W3DFile, pose: Optional[SkeletonPose] = None) -> ResolvedModel:
        """Resolve the first HLod of a file, or every mesh when there is none.

        Args:
            w3d_file: Decoded file
            pose: Skeleton pose used to place meshes on their bones

        Returns:
            ResolvedModel with aggregates first, then each level's meshes
        """
        if not w3d_file.hlods:
            return self._resolve_plain(w3d_file, pose)

        if len(w3d_file.hlods) > 1:
            logger.warning("File has %d HLods, using the first", len(w3d_file.hlods))
        hlod = w3d_file.hlods[0]
        model = ResolvedModel(hlod.name, hlod.hierarchy_name)
        name_map = self.build_mesh_name_map(w3d_file)

        for lod_array in hlod.lod_arrays:
            level = LodLevel(max_screen_size=lod_array.max_screen_size)
            for sub_object in lod_array.sub_objects:
                ref = self._lookup(name_map, sub_object)
                if ref is not None:
                    level.meshes.append(ref)
            model.lod_levels.append(level)

        for sub_object in hlod.aggregates:
            ref = self._lookup(name_map, sub_object)
            if ref is not None:
                self._add_mesh(model, w3d_file.meshes[ref.mesh_index], ref, 0, True, pose)
        model.aggregate_count = len(model.sub_meshes)

        for lod_index, level in enumerate(model.lod_levels):
            for ref in level.meshes:
                self._add_mesh(model, w3d_file.meshes[ref.mesh_index], ref, lod_index, False, pose)

        return model

    def _resolve_plain(self, w3d_file: W3DFile, pose: Optional[SkeletonPose]) -> ResolvedModel:
        """Every mesh in a single LOD 0 level."""
        model = ResolvedModel()
        level = LodLevel()
        level.meshes = [LodMeshRef(i, None, mesh.name) for i, mesh in enumerate(w3d_file.meshes)]
        model.lod_levels.append(level)
        for ref in level.meshes:
            self._add_mesh(model, w3d_file.meshes[ref.mesh_index], ref, 0, False, pose)
        return model

    def _lookup(self, name_map: Dict[str, int], sub_object: HLodSubObject) -> Optional[LodMeshRef]:
        mesh_index = self.find_mesh_index(name_map, sub_object.name)
        if mesh_index is None:
            logger.warning("HLod sub-object %s has no matching mesh", sub_object.name)
            return None
        return LodMeshRef(mesh_index, sub_object.bone_index, sub_object.name)

    def _add_mesh(self, model: ResolvedModel, mesh: Mesh, ref: LodMeshRef,
                  lod_level: int, is_aggregate: bool, pose: Optional[SkeletonPose]):
        pieces = convert_mesh(mesh, self.options, ref.name)
        for sub_index, data in enumerate(pieces):
            self._attach(data, mesh, ref.bone_index, pose)
            model.add_sub_mesh(ResolvedSubMesh(
                name=data.name,
                base_name=ref.name,
                texture_name=data.texture_name,
                bone_index=ref.bone_index,
                lod_level=lod_level,
                is_aggregate=is_aggregate,
                sub_mesh_index=sub_index,
                sub_mesh_total=len(pieces),
                data=data,
            ))

    def _attach(self, data: SubMeshData, mesh: Mesh, bone_index: Optional[int],
                pose: Optional[SkeletonPose]):
        """Place a sub-mesh on its bone(s).

        Skinned meshes use the bone of each vertex, rigid meshes the bone of
        their sub-object.
        """
        skinned = bool(mesh.vertex_influences)

        if self.options.gpu_skinning:
            if not skinned:
                data.bone_indices[:] = NO_BONE if bone_index is None else bone_index
            return

        if pose is None or not pose.is_valid():
            return

        if skinned:
            for bone in np.unique(data.bone_indices):
                if not 0 <= bone < pose.bone_count:
                    continue
                mask = data.bone_indices == bone
                matrix = pose.bone_world_transform(int(bone))
                data.positions[mask] = transform_points(matrix, data.positions[mask])
                data.normals[mask] = transform_normals(matrix, data.normals[mask])
            data.bounds = BoundingBox()
            data.bounds.expand_points(data.positions)
        elif bone_index is not None and 0 <= bone_index < pose.bone_count:
            data.apply_transform(pose.bone_world_transform(bone_index))


def resolve(w3d_file: W3DFile, pose: Optional[SkeletonPose] = None,
            options: Optional[ResolveOptions] = None) -> ResolvedModel:
    return HLodResolver(options).resolve(w3d_file, pose)


__all__ = [
    "HLodResolver",
    "LodLevel",
    "LodMeshRef",
    "LodSelectionMode",
    "ResolvedModel",
    "ResolvedSubMesh",
    "resolve",
]
