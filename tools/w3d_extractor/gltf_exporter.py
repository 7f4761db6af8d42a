"""glTF exporter for W3D model files."""
import logging
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Union

import numpy as np
from pygltflib import (
    GLTF2,
    Buffer,
    BufferView,
    Accessor,
    Material,
    Mesh,
    Primitive,
    Node,
    Scene,
    Asset,
    Skin,
    Animation,
    AnimationChannel,
    AnimationChannelTarget,
    AnimationSampler,
)

from hlod_resolver import HLodResolver, LodSelectionMode, ResolvedModel, ResolvedSubMesh
from mesh_converter import NO_BONE
from w3d_animator import AnimationEntry, AnimationPlayer
from w3d_parser import W3DParser
from w3d_skeleton import SkeletonPose
from w3d_types import Hierarchy, W3DFile

logger = logging.getLogger(__name__)

FLOAT = 5126
UNSIGNED_SHORT = 5123
UNSIGNED_INT = 5125
ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963
TRIANGLES = 4


class _BinaryBuffer:
    """Single GLB buffer; every view starts on a 4-byte boundary."""

    def __init__(self, gltf: GLTF2):
        self.gltf = gltf
        self.data = bytearray()

    def add_accessor(self, array: np.ndarray, component_type: int, accessor_type: str,
                     target: Optional[int] = None, with_bounds: bool = False) -> int:
        raw = array.tobytes()
        offset = len(self.data)
        self.data += raw
        if len(self.data) % 4:
            self.data += b"\x00" * (4 - len(self.data) % 4)

        self.gltf.bufferViews.append(
            BufferView(buffer=0, byteOffset=offset, byteLength=len(raw), target=target)
        )
        accessor = Accessor(
            bufferView=len(self.gltf.bufferViews) - 1,
            componentType=component_type,
            count=len(array),
            type=accessor_type,
        )
        if with_bounds and len(array):
            values = array.reshape(len(array), -1)
            accessor.min = [float(v) for v in values.min(axis=0)]
            accessor.max = [float(v) for v in values.max(axis=0)]
        self.gltf.accessors.append(accessor)
        return len(self.gltf.accessors) - 1


class GLTFExporter:
    """Exports W3D model data to glTF/GLB format."""

    GENERATOR = "W3D Extractor"

    def __init__(self, source: Union[str, Path, bytes, BinaryIO]):
        """Initialize exporter with W3D file path, raw bytes or file-like object.

        Args:
            source: Path to W3D file, its contents, or file-like object
        """
        self.source = source
        self.parser = W3DParser()
        self._w3d: Optional[W3DFile] = None

    def _load(self) -> W3DFile:
        if self._w3d is None:
            result = self.parser.load(self.source)
            if not result.ok:
                raise ValueError(result.error)
            self._w3d = result.model
        return self._w3d

    @staticmethod
    def _hierarchy_for(w3d_file: W3DFile) -> Optional[Hierarchy]:
        """Hierarchy named by the first HLod, else the first one in the file."""
        if w3d_file.hlods and w3d_file.hlods[0].hierarchy_name:
            hierarchy = w3d_file.find_hierarchy(w3d_file.hlods[0].hierarchy_name)
            if hierarchy is not None:
                return hierarchy
        return w3d_file.hierarchies[0] if w3d_file.hierarchies else None

    @staticmethod
    def _joints_for(sub_mesh: ResolvedSubMesh, bone_count: int) -> np.ndarray:
        """Per-vertex joint, falling back to the sub-object bone then the root."""
        fallback = sub_mesh.bone_index if sub_mesh.bone_index is not None else 0
        joints = sub_mesh.data.bone_indices.copy()
        joints[joints == NO_BONE] = fallback
        joints[(joints < 0) | (joints >= bone_count)] = 0
        out = np.zeros((len(joints), 4), dtype=np.uint16)
        out[:, 0] = joints
        return out

    def _add_meshes(self, gltf: GLTF2, buffer: _BinaryBuffer, model: ResolvedModel,
                    indices: List[int], bone_count: int) -> List[int]:
        materials: Dict[str, int] = {}
        mesh_nodes = []

        for index in indices:
            sub_mesh = model.sub_meshes[index]
            data = sub_mesh.data
            attributes = {
                "POSITION": buffer.add_accessor(data.positions, FLOAT, "VEC3", ARRAY_BUFFER, True),
                "NORMAL": buffer.add_accessor(data.normals, FLOAT, "VEC3", ARRAY_BUFFER),
                "TEXCOORD_0": buffer.add_accessor(data.texcoords, FLOAT, "VEC2", ARRAY_BUFFER),
                "COLOR_0": buffer.add_accessor(data.colors, FLOAT, "VEC3", ARRAY_BUFFER),
            }
            if bone_count:
                weights = np.zeros((data.vertex_count, 4), dtype=np.float32)
                weights[:, 0] = 1.0
                attributes["JOINTS_0"] = buffer.add_accessor(
                    self._joints_for(sub_mesh, bone_count), UNSIGNED_SHORT, "VEC4", ARRAY_BUFFER
                )
                attributes["WEIGHTS_0"] = buffer.add_accessor(weights, FLOAT, "VEC4", ARRAY_BUFFER)

            if data.vertex_count >= 0xFFFF:
                index_array, component = data.indices.astype(np.uint32), UNSIGNED_INT
            else:
                index_array, component = data.indices.astype(np.uint16), UNSIGNED_SHORT
            index_accessor = buffer.add_accessor(
                index_array, component, "SCALAR", ELEMENT_ARRAY_BUFFER
            )

            material = None
            if sub_mesh.texture_name:
                if sub_mesh.texture_name not in materials:
                    gltf.materials.append(Material(name=sub_mesh.texture_name, doubleSided=True))
                    materials[sub_mesh.texture_name] = len(gltf.materials) - 1
                material = materials[sub_mesh.texture_name]

            gltf.meshes.append(
                Mesh(
                    name=sub_mesh.name,
                    primitives=[
                        Primitive(
                            attributes=attributes,
                            indices=index_accessor,
                            material=material,
                            mode=TRIANGLES,
                        )
                    ],
                )
            )
            gltf.nodes.append(Node(mesh=len(gltf.meshes) - 1, name=sub_mesh.name))
            mesh_nodes.append(len(gltf.nodes) - 1)

        return mesh_nodes

    def _add_skeleton(self, gltf: GLTF2, buffer: _BinaryBuffer, hierarchy: Hierarchy,
                      pose: SkeletonPose, mesh_nodes: List[int]) -> List[int]:
        """Add one node per pivot and a skin shared by every mesh node.

        Returns:
            Node indices of the root joints
        """
        joint_start = len(gltf.nodes)
        children: Dict[int, List[int]] = {}
        for i, parent in enumerate(pose.parent_indices):
            if 0 <= parent < pose.bone_count:
                children.setdefault(parent, []).append(joint_start + i)

        for i, pivot in enumerate(hierarchy.pivots):
            gltf.nodes.append(
                Node(
                    name=pivot.name,
                    translation=[float(v) for v in pivot.translation],
                    rotation=[float(v) for v in pivot.rotation],
                    children=children.get(i) or None,
                )
            )

        ibm = np.array([m.T for m in pose.inverse_bind_pose()], dtype=np.float32)
        ibm_accessor = buffer.add_accessor(ibm.reshape(-1, 16), FLOAT, "MAT4")

        roots = [joint_start + i for i, p in enumerate(pose.parent_indices)
                 if not 0 <= p < pose.bone_count]
        gltf.skins.append(
            Skin(
                name=hierarchy.name,
                joints=list(range(joint_start, joint_start + pose.bone_count)),
                skeleton=roots[0] if roots else joint_start,
                inverseBindMatrices=ibm_accessor,
            )
        )
        for node_index in mesh_nodes:
            gltf.nodes[node_index].skin = len(gltf.skins) - 1
        return roots

    def _add_animation(self, gltf: GLTF2, buffer: _BinaryBuffer, entry: AnimationEntry,
                       player: AnimationPlayer, hierarchy: Hierarchy, joint_start: int):
        """Sample an animation at every frame and add it as one glTF animation."""
        if entry.num_frames <= 0:
            return
        if entry.hierarchy_name and entry.hierarchy_name.upper() != hierarchy.name.upper():
            logger.warning("Skipping animation %s: targets %s, not %s",
                           entry.name, entry.hierarchy_name, hierarchy.name)
            return

        bone_count = len(hierarchy.pivots)
        times = np.arange(entry.num_frames, dtype=np.float32) / entry.frame_rate
        translations = np.zeros((entry.num_frames, bone_count, 3), dtype=np.float32)
        rotations = np.zeros((entry.num_frames, bone_count, 4), dtype=np.float32)
        rest = np.array([p.translation for p in hierarchy.pivots], dtype=np.float32)

        for frame in range(entry.num_frames):
            offsets, quats = player.evaluator.evaluate_any(entry.animation, frame, bone_count)
            translations[frame] = rest + np.array(offsets, dtype=np.float32)
            rotations[frame] = np.array(quats, dtype=np.float32)

        time_accessor = buffer.add_accessor(times, FLOAT, "SCALAR", with_bounds=True)
        samplers = []
        channels = []
        for bone in range(bone_count):
            for path, values, accessor_type in (
                ("translation", translations[:, bone], "VEC3"),
                ("rotation", rotations[:, bone], "VEC4"),
            ):
                output = buffer.add_accessor(np.ascontiguousarray(values), FLOAT, accessor_type)
                samplers.append(
                    AnimationSampler(input=time_accessor, output=output, interpolation="LINEAR")
                )
                channels.append(
                    AnimationChannel(
                        sampler=len(samplers) - 1,
                        target=AnimationChannelTarget(node=joint_start + bone, path=path),
                    )
                )

        gltf.animations.append(Animation(name=entry.name, samplers=samplers, channels=channels))

    def export(self, output_path: str, include_skeleton: bool = False,
               include_animations: bool = False, lod: int = 0):
        """Export W3D data to glTF/GLB file.

        Meshes are placed at their rest-pose bone transforms. Only the chosen
        LOD level and the aggregates are written.

        Args:
            output_path: Path for output .glb file
            include_skeleton: Whether to include skeleton/bones
            include_animations: Whether to include animations (needs the skeleton)
            lod: LOD level to export; out of range levels fall back to 0

        Raises:
            ValueError: If the file cannot be decoded or has no mesh data
        """
        w3d_file = self._load()
        if not w3d_file.meshes:
            raise ValueError("No mesh data found in W3D file")

        hierarchy = self._hierarchy_for(w3d_file)
        pose = SkeletonPose()
        if hierarchy is not None:
            pose.compute_rest_pose(hierarchy)
        model = HLodResolver().resolve(w3d_file, pose if pose.is_valid() else None)

        model.set_selection_mode(LodSelectionMode.MANUAL)
        if not 0 <= lod < model.lod_count:
            logger.warning("LOD %d out of range (%d levels), using 0", lod, model.lod_count)
            lod = 0
        model.set_current_lod(lod)
        visible = model.visible_indices()
        if not visible:
            raise ValueError("No mesh data found in W3D file")

        skinned = include_skeleton and pose.is_valid()
        gltf = GLTF2()
        buffer = _BinaryBuffer(gltf)

        mesh_nodes = self._add_meshes(gltf, buffer, model, visible,
                                      pose.bone_count if skinned else 0)
        scene_nodes = list(mesh_nodes)

        if skinned:
            joint_start = len(gltf.nodes)
            scene_nodes += self._add_skeleton(gltf, buffer, hierarchy, pose, mesh_nodes)

            if include_animations:
                player = AnimationPlayer()
                player.load(w3d_file)
                for i in range(player.animation_count):
                    player.select_animation(i)
                    self._add_animation(gltf, buffer, player.current, player,
                                        hierarchy, joint_start)

        gltf.scenes = [Scene(name=model.name or None, nodes=scene_nodes)]
        gltf.scene = 0
        gltf.buffers = [Buffer(byteLength=len(buffer.data))]

        # Set binary data and save
        gltf.set_binary_blob(bytes(buffer.data))
        gltf.save(output_path, asset=Asset(version="2.0", generator=self.GENERATOR))
