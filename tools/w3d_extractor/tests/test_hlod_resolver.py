"""Tests for HLod resolution, LOD selection and visibility."""
import logging
import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from hlod_resolver import HLodResolver, LodLevel, LodSelectionMode, ResolvedModel
from mesh_converter import NO_BONE, ResolveOptions
from w3d_builders import build_mesh
from w3d_parser import decode
from w3d_skeleton import SkeletonPose
from w3d_types import (
    HLod,
    HLodArray,
    HLodSubObject,
    Hierarchy,
    MaterialPass,
    Mesh,
    MeshHeader,
    Pivot,
    Texture,
    TextureStage,
    Triangle,
    VertexInfluence,
    W3DFile,
)


def make_mesh(name, container="UNIT", offset=(0.0, 0.0, 0.0), textures=None):
    ox, oy, oz = offset
    mesh = Mesh(header=MeshHeader(mesh_name=name, container_name=container))
    mesh.vertices = [(ox, oy, oz), (ox + 1.0, oy, oz), (ox, oy + 1.0, oz)]
    mesh.triangles = [Triangle((0, 1, 2))]
    if textures:
        mesh.textures = [Texture(name=t) for t in textures]
        mesh.material_passes = [MaterialPass(texture_stages=[TextureStage(texture_ids=[0])])]
    return mesh


def sub(bone, name):
    return HLodSubObject(bone_index=bone, name=name)


def make_file():
    """HLod with two levels and one aggregate."""
    return W3DFile(
        meshes=[
            make_mesh("BODY_LOW"),
            make_mesh("BODY"),
            make_mesh("TURRET", offset=(0.0, 2.0, 0.0)),
            make_mesh("FLAG", textures=["flag.tga"]),
        ],
        hlods=[HLod(
            name="UNIT",
            hierarchy_name="SKEL",
            lod_count=2,
            lod_arrays=[
                HLodArray(1, 0.0, [sub(0, "UNIT.BODY_LOW")]),
                HLodArray(2, 100.0, [sub(0, "UNIT.BODY"), sub(1, "UNIT.TURRET")]),
            ],
            aggregates=[sub(1, "UNIT.FLAG")],
        )],
    )


def make_pose():
    hierarchy = Hierarchy(name="SKEL", pivots=[
        Pivot(name="ROOT"),
        Pivot(name="GUN", parent_index=0, translation=(0.0, 0.0, 5.0)),
    ])
    pose = SkeletonPose()
    pose.compute_rest_pose(hierarchy)
    return pose


def test_resolve_without_hlod():
    """Every mesh goes into a single LOD 0 level."""
    w3d_file = W3DFile(meshes=[make_mesh("A"), make_mesh("B")])

    model = HLodResolver().resolve(w3d_file)

    assert model.lod_count == 1
    assert model.lod_levels[0].max_screen_size == 0.0
    assert [s.name for s in model.sub_meshes] == ["A", "B"]
    for sub_mesh in model.sub_meshes:
        assert sub_mesh.lod_level == 0
        assert not sub_mesh.is_aggregate
        assert sub_mesh.bone_index is None
    assert model.visible_indices() == [0, 1]


def test_decoded_single_mesh_resolves_to_one_visible_level():
    w3d_file = decode(build_mesh("SOLO"))
    assert len(w3d_file.meshes[0].vertices) == 3
    assert len(w3d_file.meshes[0].triangles) == 1

    model = HLodResolver().resolve(w3d_file)

    assert model.lod_count == 1
    assert [s.name for s in model.sub_meshes] == ["SOLO"]
    assert model.visible_indices() == [0]


def test_resolve_aggregates_first():
    model = HLodResolver().resolve(make_file())

    assert model.name == "UNIT"
    assert model.hierarchy_name == "SKEL"
    assert model.lod_count == 2
    assert model.aggregate_count == 1
    assert [s.name for s in model.sub_meshes] == [
        "UNIT.FLAG", "UNIT.BODY_LOW", "UNIT.BODY", "UNIT.TURRET",
    ]
    assert model.sub_meshes[0].is_aggregate
    assert model.sub_meshes[0].lod_level == 0
    assert model.sub_meshes[0].texture_name == "flag.tga"
    assert [s.lod_level for s in model.sub_meshes[1:]] == [0, 1, 1]
    assert model.sub_meshes[3].bone_index == 1


def test_lod_level_refs():
    model = HLodResolver().resolve(make_file())

    level = model.lod_levels[1]
    assert level.max_screen_size == 100.0
    assert [(r.mesh_index, r.bone_index, r.name) for r in level.meshes] == [
        (1, 0, "UNIT.BODY"), (2, 1, "UNIT.TURRET"),
    ]


def test_mesh_name_map_and_lookup():
    name_map = HLodResolver.build_mesh_name_map(make_file())

    assert name_map["UNIT.BODY"] == 1
    assert name_map["BODY"] == 1
    assert HLodResolver.find_mesh_index(name_map, "UNIT.TURRET") == 2
    # Falls back to the part after the first dot
    assert HLodResolver.find_mesh_index(name_map, "OTHER.TURRET") == 2
    assert HLodResolver.find_mesh_index(name_map, "MISSING") is None


def test_mesh_name_map_bare_name_clash_last_wins():
    w3d_file = W3DFile(meshes=[make_mesh("HULL", "TANK"), make_mesh("HULL", "SHIP")])

    name_map = HLodResolver.build_mesh_name_map(w3d_file)

    assert name_map["TANK.HULL"] == 0
    assert name_map["SHIP.HULL"] == 1
    assert name_map["HULL"] == 1
    assert HLodResolver.find_mesh_index(name_map, "OTHER.HULL") == 1

def test_unmatched_sub_object_skipped(caplog):
    w3d_file = make_file()
    w3d_file.hlods[0].lod_arrays[0].sub_objects.append(sub(0, "UNIT.GHOST"))

    with caplog.at_level(logging.WARNING):
        model = HLodResolver().resolve(w3d_file)

    assert "UNIT.GHOST" in caplog.text
    assert len(model.sub_meshes) == 4


def test_multi_texture_mesh_splits():
    mesh = make_mesh("TWO")
    mesh.vertices.append((5.0, 5.0, 5.0))
    mesh.triangles.append(Triangle((0, 2, 3)))
    mesh.textures = [Texture(name="a.tga"), Texture(name="b.tga")]
    mesh.material_passes = [MaterialPass(texture_stages=[TextureStage(texture_ids=[0, 1])])]

    model = HLodResolver().resolve(W3DFile(meshes=[mesh]))

    assert [s.name for s in model.sub_meshes] == ["TWO_sub0", "TWO_sub1"]
    assert [s.sub_mesh_index for s in model.sub_meshes] == [0, 1]
    assert {s.sub_mesh_total for s in model.sub_meshes} == {2}
    assert model.total_triangles() == 2


def test_cpu_path_bakes_bone_transform():
    model = HLodResolver().resolve(make_file(), make_pose())

    turret = model.sub_meshes[3]
    assert np.allclose(turret.vertices[:, 2], 5.0)
    assert turret.data.bounds.min[2] == pytest.approx(5.0)
    # Bone 0 is at the origin
    body = model.sub_meshes[2]
    assert np.allclose(body.vertices[:, 2], 0.0)


def test_cpu_path_skinned_mesh_uses_vertex_bones():
    mesh = make_mesh("SKIN")
    mesh.vertex_influences = [VertexInfluence(0), VertexInfluence(1), VertexInfluence(1)]

    model = HLodResolver().resolve(W3DFile(meshes=[mesh]), make_pose())

    z = model.sub_meshes[0].vertices[:, 2]
    assert z.tolist() == pytest.approx([0.0, 5.0, 5.0])


def test_gpu_path_tags_bones():
    options = ResolveOptions(gpu_skinning=True)

    model = HLodResolver(options).resolve(make_file(), make_pose())

    turret = model.sub_meshes[3]
    assert np.allclose(turret.vertices[:, 2], 0.0)
    assert turret.data.bone_indices.tolist() == [1, 1, 1]


def test_gpu_path_keeps_vertex_influences():
    mesh = make_mesh("SKIN")
    mesh.vertex_influences = [VertexInfluence(0), VertexInfluence(1), VertexInfluence(1)]

    model = HLodResolver(ResolveOptions(gpu_skinning=True)).resolve(W3DFile(meshes=[mesh]))

    assert model.sub_meshes[0].data.bone_indices.tolist() == [0, 1, 1]


def test_gpu_path_without_hlod_has_no_bone():
    model = HLodResolver(ResolveOptions(gpu_skinning=True)).resolve(W3DFile(meshes=[make_mesh("A")]))

    assert model.sub_meshes[0].data.bone_indices.tolist() == [NO_BONE] * 3


def test_bounds_cover_all_sub_meshes():
    model = HLodResolver().resolve(make_file())

    assert model.bounds.min.tolist() == [0.0, 0.0, 0.0]
    assert model.bounds.max.tolist() == [1.0, 3.0, 0.0]
    assert model.bounds.radius() == pytest.approx(math.sqrt(10.0) / 2.0)
    assert model.lod_levels[1].bounds.max.tolist() == [1.0, 3.0, 0.0]


def test_calculate_screen_size():
    assert ResolvedModel.calculate_screen_size(1.0, 1.0, 600.0, math.pi / 2) == pytest.approx(600.0)
    assert ResolvedModel.calculate_screen_size(1.0, 0.0, 600.0, 1.0) == 0.0
    assert ResolvedModel.calculate_screen_size(0.0, 10.0, 600.0, 1.0) == 0.0
    assert ResolvedModel.calculate_screen_size(1.0, -5.0, 600.0, 1.0) == 0.0


def test_select_lod_for_screen_size():
    model = ResolvedModel()
    model.lod_levels = [LodLevel(max_screen_size=size) for size in (0.0, 50.0, 200.0)]

    assert model.select_lod_for_screen_size(10.0) == 0
    assert model.select_lod_for_screen_size(75.0) == 1
    assert model.select_lod_for_screen_size(500.0) == 2
    assert model.select_lod_for_screen_size(50.0) == 1


def test_select_lod_thresholds_in_stored_order():
    """Thresholds are not sorted; the last level reached wins."""
    model = ResolvedModel()
    model.lod_levels = [LodLevel(max_screen_size=size) for size in (0.0, 200.0, 50.0)]

    assert model.select_lod_for_screen_size(100.0) == 2
    assert model.select_lod_for_screen_size(300.0) == 2
    assert model.select_lod_for_screen_size(10.0) == 0


def test_select_lod_from_camera():
    model = HLodResolver().resolve(make_file())
    radius = model.bounds.radius()

    # Screen size of exactly 600 px at this distance
    model.select_lod(600.0, math.pi / 2, radius)
    assert model.current_screen_size == pytest.approx(600.0)
    assert model.current_lod == 1

    model.select_lod(600.0, math.pi / 2, radius * 1000.0)
    assert model.current_lod == 0


def test_select_lod_ignored_in_manual_mode():
    model = HLodResolver().resolve(make_file())
    model.set_selection_mode(LodSelectionMode.MANUAL)

    model.select_lod(600.0, math.pi / 2, model.bounds.radius())

    assert model.current_lod == 0


def test_set_current_lod_bounds_checked():
    model = HLodResolver().resolve(make_file())

    model.set_current_lod(1)
    assert model.current_lod == 1
    model.set_current_lod(7)
    assert model.current_lod == 1
    model.set_current_lod(-1)
    assert model.current_lod == 1


def test_visible_indices_follow_current_lod():
    model = HLodResolver().resolve(make_file())

    assert model.visible_indices() == [0, 1]
    model.set_current_lod(1)
    assert model.visible_indices() == [0, 2, 3]


def test_hidden_flags():
    model = HLodResolver().resolve(make_file())
    model.set_current_lod(1)

    model.set_hidden(2, True)
    assert model.is_hidden(2)
    assert model.visible_indices() == [0, 3]
    assert not model.is_visible(2)

    model.set_hidden(2, False)
    assert model.visible_indices() == [0, 2, 3]


def test_hidden_flags_out_of_range():
    model = HLodResolver().resolve(make_file())

    model.set_hidden(99, True)
    assert not model.is_hidden(99)
    assert not model.is_hidden(-1)
    assert not model.is_visible(99)


def test_set_all_hidden():
    model = HLodResolver().resolve(make_file())

    model.set_all_hidden(True)
    assert model.visible_indices() == []
    model.set_all_hidden(False)
    assert model.visible_indices() == [0, 1]


def test_add_sub_mesh_starts_visible():
    model = HLodResolver().resolve(make_file())
    model.set_all_hidden(True)

    extra = HLodResolver().resolve(W3DFile(meshes=[make_mesh("EXTRA")])).sub_meshes[0]
    index = model.add_sub_mesh(extra)

    assert index == 4
    assert not model.is_hidden(index)
    assert model.visible_indices() == [4]


def test_totals():
    model = HLodResolver().resolve(make_file())

    assert model.total_triangles() == 4
    assert model.total_vertices() == 12
