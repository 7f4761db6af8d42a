"""Type definitions for the W3D model format.

W3D files are a flat sequence of chunks. Every chunk starts with an 8 byte
header (type: uint32, size: uint32); bit 31 of the size marks a container
whose payload is itself a sequence of chunks. All values are little-endian.
"""
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

Vector2 = Tuple[float, float]
Vector3 = Tuple[float, float, float]
Quaternion = Tuple[float, float, float, float]  # x, y, z, w
RGB = Tuple[int, int, int]
RGBA = Tuple[int, int, int, int]

W3D_NAME_LEN = 16
HLOD_NAME_LEN = 32
ROOT_PIVOT = 0xFFFFFFFF


def make_version(major: int, minor: int) -> int:
    return (major << 16) | minor


def version_major(version: int) -> int:
    return version >> 16


def version_minor(version: int) -> int:
    return version & 0xFFFF


def format_version(version: int) -> str:
    """Format a packed version as "major.minor"."""
    return f"{version_major(version)}.{version_minor(version)}"


class W3DChunk(IntEnum):
    """Chunk type codes found in W3D files."""
    MESH = 0x00000000
    VERTICES = 0x00000002
    VERTEX_NORMALS = 0x00000003
    MESH_USER_TEXT = 0x0000000C
    TEXCOORDS = 0x0000000D
    VERTEX_INFLUENCES = 0x0000000E
    MESH_HEADER3 = 0x0000001F
    TRIANGLES = 0x00000020
    VERTEX_SHADE_INDICES = 0x00000022

    PRELIT_UNLIT = 0x00000023
    PRELIT_VERTEX = 0x00000024
    PRELIT_LIGHTMAP_MULTI_PASS = 0x00000025
    PRELIT_LIGHTMAP_MULTI_TEXTURE = 0x00000026

    MATERIAL_INFO = 0x00000028
    SHADERS = 0x00000029
    VERTEX_MATERIALS = 0x0000002A
    VERTEX_MATERIAL = 0x0000002B
    VERTEX_MATERIAL_NAME = 0x0000002C
    VERTEX_MATERIAL_INFO = 0x0000002D
    VERTEX_MAPPER_ARGS0 = 0x0000002E
    VERTEX_MAPPER_ARGS1 = 0x0000002F
    TEXTURES = 0x00000030
    TEXTURE = 0x00000031
    TEXTURE_NAME = 0x00000032
    TEXTURE_INFO = 0x00000033

    MATERIAL_PASS = 0x00000038
    VERTEX_MATERIAL_IDS = 0x00000039
    SHADER_IDS = 0x0000003A
    DCG = 0x0000003B
    DIG = 0x0000003C
    SCG = 0x0000003E
    TEXTURE_STAGE = 0x00000048
    TEXTURE_IDS = 0x00000049
    STAGE_TEXCOORDS = 0x0000004A
    PER_FACE_TEXCOORD_IDS = 0x0000004B

    AABTREE = 0x00000090
    AABTREE_HEADER = 0x00000091
    AABTREE_POLYINDICES = 0x00000092
    AABTREE_NODES = 0x00000093

    VERTEX_COLORS = 0x00000115

    HIERARCHY = 0x00000100
    HIERARCHY_HEADER = 0x00000101
    PIVOTS = 0x00000102
    PIVOT_FIXUPS = 0x00000103

    ANIMATION = 0x00000200
    ANIMATION_HEADER = 0x00000201
    ANIMATION_CHANNEL = 0x00000202
    BIT_CHANNEL = 0x00000203

    COMPRESSED_ANIMATION = 0x00000280
    COMPRESSED_ANIMATION_HEADER = 0x00000281
    COMPRESSED_ANIMATION_CHANNEL = 0x00000282
    COMPRESSED_BIT_CHANNEL = 0x00000283

    HLOD = 0x00000700
    HLOD_HEADER = 0x00000701
    HLOD_LOD_ARRAY = 0x00000702
    HLOD_SUB_OBJECT_ARRAY_HEADER = 0x00000703
    HLOD_SUB_OBJECT = 0x00000704
    HLOD_AGGREGATE_ARRAY = 0x00000705
    HLOD_PROXY_ARRAY = 0x00000706

    BOX = 0x00000740


def chunk_name(chunk_type: int) -> str:
    """Readable name for a chunk type, hex code for unknown ones."""
    try:
        return W3DChunk(chunk_type).name
    except ValueError:
        return f"0x{chunk_type:08X}"


class AnimChannelType(IntEnum):
    """Channel semantics of uncompressed animation channels."""
    X = 0
    Y = 1
    Z = 2
    XR = 3
    YR = 4
    ZR = 5
    Q = 6


class TimeCodedChannelType(IntEnum):
    """Channel semantics of compressed animation channels."""
    X = 0
    Y = 1
    Z = 2
    Q = 3
    ADAPTIVE_DELTA_X = 4
    ADAPTIVE_DELTA_Y = 5
    ADAPTIVE_DELTA_Z = 6
    ADAPTIVE_DELTA_Q = 7


class AnimFlavor(IntEnum):
    """Compression scheme of a compressed animation."""
    TIMECODED = 0
    ADAPTIVE_DELTA = 1


@dataclass
class ChunkHeader:
    """Primary W3D chunk header. size is the payload length, container bit stripped."""
    type: int
    size: int
    is_container: bool = False

    HEADER_SIZE = 8
    CONTAINER_BIT = 0x80000000
    SIZE_MASK = 0x7FFFFFFF

    @property
    def type_name(self) -> str:
        return chunk_name(self.type)


@dataclass
class NamedChunkHeader:
    """Chunk header of the sibling map format: 4 character name, version, size."""
    name: str
    version: int
    size: int

    HEADER_SIZE = 12

    @property
    def is_container(self) -> bool:
        return True


# Mesh

@dataclass
class MeshHeader:
    """Contents of MESH_HEADER3."""
    version: int = 0
    attributes: int = 0
    mesh_name: str = ""
    container_name: str = ""
    num_tris: int = 0
    num_vertices: int = 0
    num_materials: int = 0
    num_damage_stages: int = 0
    sort_level: int = 0
    prelit_version: int = 0
    future_counts: int = 0
    vertex_channels: int = 0
    face_channels: int = 0
    min: Vector3 = (0.0, 0.0, 0.0)
    max: Vector3 = (0.0, 0.0, 0.0)
    sph_center: Vector3 = (0.0, 0.0, 0.0)
    sph_radius: float = 0.0


@dataclass
class Triangle:
    vertex_indices: Tuple[int, int, int]
    attributes: int = 0
    normal: Vector3 = (0.0, 0.0, 0.0)
    distance: float = 0.0


@dataclass
class VertexInfluence:
    """Rigid skin binding: the dominant bone of one vertex."""
    bone_index: int = 0
    bone_index2: int = 0


@dataclass
class Shader:
    """16 byte W3D shader description, one byte per render state."""
    depth_compare: int = 3
    depth_mask: int = 1
    color_mask: int = 0
    dest_blend: int = 0
    fog_func: int = 0
    pri_gradient: int = 1
    sec_gradient: int = 0
    src_blend: int = 1
    texturing: int = 0
    detail_color_func: int = 0
    detail_alpha_func: int = 0
    shader_preset: int = 0
    alpha_test: int = 0
    post_detail_color_func: int = 0
    post_detail_alpha_func: int = 0
    padding: int = 0


@dataclass
class VertexMaterialInfo:
    attributes: int = 0
    ambient: RGB = (255, 255, 255)
    diffuse: RGB = (255, 255, 255)
    specular: RGB = (0, 0, 0)
    emissive: RGB = (0, 0, 0)
    shininess: float = 0.0
    opacity: float = 1.0
    translucency: float = 0.0


@dataclass
class VertexMaterial:
    name: str = ""
    info: VertexMaterialInfo = field(default_factory=VertexMaterialInfo)
    mapper_args0: str = ""
    mapper_args1: str = ""

    @property
    def diffuse(self) -> RGB:
        return self.info.diffuse


@dataclass
class TextureInfo:
    attributes: int = 0
    anim_type: int = 0
    frame_count: int = 0
    frame_rate: float = 0.0


@dataclass
class Texture:
    name: str = ""
    info: Optional[TextureInfo] = None


@dataclass
class TextureStage:
    """One texture stage of a material pass.

    texture_ids holds either a single id for the whole mesh or one id per
    triangle.
    """
    texture_ids: List[int] = field(default_factory=list)
    texcoords: List[Vector2] = field(default_factory=list)
    per_face_texcoord_ids: List[int] = field(default_factory=list)


@dataclass
class MaterialPass:
    vertex_material_ids: List[int] = field(default_factory=list)
    shader_ids: List[int] = field(default_factory=list)
    dcg: List[RGBA] = field(default_factory=list)
    dig: List[RGBA] = field(default_factory=list)
    scg: List[RGBA] = field(default_factory=list)
    texture_stages: List[TextureStage] = field(default_factory=list)


@dataclass
class MaterialInfo:
    pass_count: int = 0
    vertex_material_count: int = 0
    shader_count: int = 0
    texture_count: int = 0


@dataclass
class MaterialSet:
    """Materials of a mesh, or of one of its prelit variants."""
    material_info: MaterialInfo = field(default_factory=MaterialInfo)
    vertex_materials: List[VertexMaterial] = field(default_factory=list)
    shaders: List[Shader] = field(default_factory=list)
    textures: List[Texture] = field(default_factory=list)
    material_passes: List[MaterialPass] = field(default_factory=list)


@dataclass
class AABTreeNode:
    min: Vector3
    max: Vector3
    front_or_poly0: int = 0
    back_or_poly_count: int = 0


@dataclass
class AABTree:
    """Collision tree. Decoded for completeness, not used by the renderer."""
    node_count: int = 0
    poly_count: int = 0
    poly_indices: List[int] = field(default_factory=list)
    nodes: List[AABTreeNode] = field(default_factory=list)


@dataclass
class Mesh(MaterialSet):
    """A decoded MESH chunk."""
    header: MeshHeader = field(default_factory=MeshHeader)
    user_text: str = ""
    vertices: List[Vector3] = field(default_factory=list)
    normals: List[Vector3] = field(default_factory=list)
    texcoords: List[Vector2] = field(default_factory=list)
    vertex_colors: List[RGBA] = field(default_factory=list)
    shade_indices: List[int] = field(default_factory=list)
    triangles: List[Triangle] = field(default_factory=list)
    vertex_influences: List[VertexInfluence] = field(default_factory=list)
    prelit: Dict[int, MaterialSet] = field(default_factory=dict)
    aabtree: Optional[AABTree] = None

    @property
    def name(self) -> str:
        return self.header.mesh_name

    @property
    def full_name(self) -> str:
        """container.mesh, the name HLod sub-objects refer to."""
        if self.header.container_name:
            return f"{self.header.container_name}.{self.header.mesh_name}"
        return self.header.mesh_name


# Hierarchy

@dataclass
class Pivot:
    """One bone of a hierarchy. parent_index is -1 for root bones."""
    name: str = ""
    parent_index: int = -1
    translation: Vector3 = (0.0, 0.0, 0.0)
    euler_angles: Vector3 = (0.0, 0.0, 0.0)
    rotation: Quaternion = (0.0, 0.0, 0.0, 1.0)

    @property
    def is_root(self) -> bool:
        return self.parent_index == -1


@dataclass
class Hierarchy:
    version: int = 0
    name: str = ""
    num_pivots: int = 0
    center: Vector3 = (0.0, 0.0, 0.0)
    pivots: List[Pivot] = field(default_factory=list)
    pivot_fixups: List[Vector3] = field(default_factory=list)

    def find_pivot(self, name: str) -> int:
        """Index of the pivot with the given name (case-insensitive), or -1."""
        wanted = name.upper()
        for i, pivot in enumerate(self.pivots):
            if pivot.name.upper() == wanted:
                return i
        return -1


# Animation

@dataclass
class AnimChannel:
    """Dense channel holding one value (or quaternion) per frame."""
    first_frame: int = 0
    last_frame: int = 0
    vector_len: int = 1
    flags: int = 0
    pivot: int = 0
    data: List[float] = field(default_factory=list)

    @property
    def num_frames(self) -> int:
        return self.last_frame - self.first_frame + 1


@dataclass
class BitChannel:
    """Per-frame on/off track, typically bone visibility."""
    first_frame: int = 0
    last_frame: int = 0
    flags: int = 0
    pivot: int = 0
    default_value: float = 0.0
    data: bytes = b""

    def value_at(self, frame: int) -> bool:
        if frame < self.first_frame or frame > self.last_frame:
            return self.default_value != 0.0
        bit = frame - self.first_frame
        return bool(self.data[bit // 8] & (1 << (bit % 8)))


@dataclass
class Animation:
    version: int = 0
    name: str = ""
    hierarchy_name: str = ""
    num_frames: int = 0
    frame_rate: int = 0
    channels: List[AnimChannel] = field(default_factory=list)
    bit_channels: List[BitChannel] = field(default_factory=list)


@dataclass
class TimeCodedChannel:
    """Sparse channel: each key carries an explicit frame number."""
    num_time_codes: int = 0
    pivot: int = 0
    vector_len: int = 1
    flags: int = 0
    time_codes: List[int] = field(default_factory=list)
    data: List[float] = field(default_factory=list)


@dataclass
class CompressedAnimation:
    version: int = 0
    name: str = ""
    hierarchy_name: str = ""
    num_frames: int = 0
    frame_rate: int = 0
    flavor: int = AnimFlavor.TIMECODED
    channels: List[TimeCodedChannel] = field(default_factory=list)
    bit_channels: List[BitChannel] = field(default_factory=list)


# HLod

@dataclass
class HLodSubObject:
    bone_index: int = 0
    name: str = ""


@dataclass
class HLodArray:
    """One level of detail. max_screen_size of 0 means no limit."""
    model_count: int = 0
    max_screen_size: float = 0.0
    sub_objects: List[HLodSubObject] = field(default_factory=list)


@dataclass
class HLod:
    version: int = 0
    lod_count: int = 0
    name: str = ""
    hierarchy_name: str = ""
    lod_arrays: List[HLodArray] = field(default_factory=list)
    aggregates: List[HLodSubObject] = field(default_factory=list)
    proxies: List[HLodSubObject] = field(default_factory=list)


@dataclass
class Box:
    """Collision or bounding box."""
    version: int = 0
    attributes: int = 0
    name: str = ""
    color: RGB = (0, 0, 0)
    center: Vector3 = (0.0, 0.0, 0.0)
    extent: Vector3 = (0.0, 0.0, 0.0)


@dataclass
class W3DFile:
    """Everything decoded from one W3D file."""
    meshes: List[Mesh] = field(default_factory=list)
    hierarchies: List[Hierarchy] = field(default_factory=list)
    animations: List[Animation] = field(default_factory=list)
    compressed_animations: List[CompressedAnimation] = field(default_factory=list)
    hlods: List[HLod] = field(default_factory=list)
    boxes: List[Box] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.meshes or self.hierarchies or self.animations
            or self.compressed_animations or self.hlods or self.boxes
        )

    def find_hierarchy(self, name: str) -> Optional[Hierarchy]:
        """Hierarchy with the given name (case-insensitive)."""
        wanted = name.upper()
        return next((h for h in self.hierarchies if h.name.upper() == wanted), None)
