"""Skeleton pose computation for W3D hierarchies.

Bones are composed in file order:
  local[i] = T(translation) @ R(rotation)
  world[i] = local[i]                      for root pivots
  world[i] = world[parent[i]] @ local[i]   otherwise

Pivots are expected parent-before-child. This is not verified: a pivot that
references a later pivot is composed against that bone's not-yet-computed
transform (identity), so the result is undefined rather than corrected.
A parent index outside the hierarchy is treated as a root.
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from w3d_math import quat_to_matrix, translation_matrix
from w3d_types import Hierarchy

logger = logging.getLogger(__name__)


class SkeletonPose:
    """Per-bone world transforms of one hierarchy."""

    def __init__(self):
        self._transforms: List[np.ndarray] = []
        self._parents: List[int] = []
        self._names: List[str] = []

    @property
    def bone_count(self) -> int:
        return len(self._transforms)

    @property
    def bone_names(self) -> List[str]:
        return list(self._names)

    @property
    def parent_indices(self) -> List[int]:
        return list(self._parents)

    def is_valid(self) -> bool:
        return bool(self._transforms)

    def clear(self):
        self._transforms = []
        self._parents = []
        self._names = []

    def _reset(self, hierarchy: Hierarchy):
        count = len(hierarchy.pivots)
        self._transforms = [np.eye(4) for _ in range(count)]
        self._parents = [p.parent_index for p in hierarchy.pivots]
        self._names = [p.name for p in hierarchy.pivots]

    def _compose(self, index: int, local: np.ndarray):
        parent = self._parents[index]
        if not 0 <= parent < len(self._transforms):
            self._transforms[index] = local
        else:
            self._transforms[index] = self._transforms[parent] @ local

    def compute_rest_pose(self, hierarchy: Hierarchy):
        """Compute the bind pose. An empty hierarchy clears the pose."""
        if not hierarchy.pivots:
            self.clear()
            return

        self._reset(hierarchy)
        for i, pivot in enumerate(hierarchy.pivots):
            local = translation_matrix(pivot.translation) @ quat_to_matrix(pivot.rotation)
            self._compose(i, local)

    def compute_animated_pose(
        self,
        hierarchy: Hierarchy,
        translations: Sequence,
        rotations: Sequence,
    ):
        """Compute a pose from per-bone animation samples.

        The animated translation is an offset added to the rest translation.
        The animated rotation replaces the rest rotation.

        Args:
            hierarchy: Skeleton being animated
            translations: One (x, y, z) offset per pivot
            rotations: One (x, y, z, w) rotation per pivot
        """
        count = len(hierarchy.pivots)
        if len(translations) != count or len(rotations) != count:
            logger.warning(
                "Animation sample count (%d, %d) does not match %d bones, using rest pose",
                len(translations), len(rotations), count,
            )
            self.compute_rest_pose(hierarchy)
            return
        if count == 0:
            self.clear()
            return

        self._reset(hierarchy)
        for i, pivot in enumerate(hierarchy.pivots):
            local = (
                translation_matrix(pivot.translation)
                @ translation_matrix(translations[i])
                @ quat_to_matrix(rotations[i])
            )
            self._compose(i, local)

    def bone_world_transform(self, index: int) -> np.ndarray:
        return self._transforms[index]

    def bone_position(self, index: int) -> np.ndarray:
        """World-space origin of a bone, zero when index is out of range."""
        if 0 <= index < len(self._transforms):
            return self._transforms[index][:3, 3].copy()
        return np.zeros(3)

    def find_bone(self, name: str) -> Optional[int]:
        wanted = name.upper()
        for i, bone_name in enumerate(self._names):
            if bone_name.upper() == wanted:
                return i
        return None

    def skinning_matrices(self) -> List[np.ndarray]:
        """Matrices for the bone-matrix buffer of the GPU skinning path.

        W3D stores skinned vertices in bone space, so these are the world
        transforms themselves.
        """
        return [m.copy() for m in self._transforms]

    def inverse_bind_pose(self) -> List[np.ndarray]:
        return [np.linalg.inv(m) for m in self._transforms]

    def get_children(self, index: int) -> List[int]:
        return [i for i, p in enumerate(self._parents) if p == index]

    def get_hierarchy_depth(self, index: int) -> int:
        """Depth of bone in hierarchy (0 for root)."""
        depth = 0
        current = self._parents[index]
        while 0 <= current < len(self._parents) and depth <= len(self._parents):
            depth += 1
            current = self._parents[current]
        return depth

    def print_hierarchy(self):
        """Print bone hierarchy to console."""
        print(f"Skeleton: {self.bone_count} bones")
        roots = [i for i, p in enumerate(self._parents) if not 0 <= p < len(self._parents)]
        print(f"Root bones: {len(roots)}")
        print()

        def print_bone(index: int, indent: int = 0):
            prefix = "  " * indent
            pos = self.bone_position(index)
            print(f"{prefix}[{index}] {self._names[index]} "
                  f"pos=({pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f})")
            for child in self.get_children(index):
                print_bone(child, indent + 1)

        for root in roots:
            print_bone(root)


def main():
    """Command-line interface for skeleton inspection."""
    import argparse
    import json
    import sys

    from w3d_parser import W3DParser

    parser = argparse.ArgumentParser(
        description="Print the skeleton of a W3D model file"
    )
    parser.add_argument("input", help="Input W3D file")
    parser.add_argument("--hierarchy", "-H", action="store_true",
                        help="Print bone hierarchy")
    parser.add_argument("--json", "-j", action="store_true",
                        help="Output bones as JSON")

    args = parser.parse_args()

    result = W3DParser().load(args.input)
    if not result.ok:
        print(result.error, file=sys.stderr)
        return 1
    if not result.model.hierarchies:
        print(f"No hierarchy in {args.input}", file=sys.stderr)
        return 1

    hierarchy = result.model.hierarchies[0]
    pose = SkeletonPose()
    pose.compute_rest_pose(hierarchy)

    if args.json:
        bones = [
            {
                "index": i,
                "name": pose.bone_names[i],
                "parent_id": pose.parent_indices[i],
                "position": pose.bone_position(i).tolist(),
                "transform": pose.bone_world_transform(i).T.flatten().tolist(),
            }
            for i in range(pose.bone_count)
        ]
        print(json.dumps({"name": hierarchy.name, "bone_count": pose.bone_count,
                          "bones": bones}, indent=2))
    elif args.hierarchy:
        pose.print_hierarchy()
    else:
        print(f"File: {args.input}")
        print(f"Hierarchy: {hierarchy.name}")
        print(f"Bones: {pose.bone_count}")
        if pose.bone_count > 0:
            max_depth = max(pose.get_hierarchy_depth(i) for i in range(pose.bone_count))
            print(f"  Max hierarchy depth: {max_depth}")
    return 0


if __name__ == "__main__":
    import sys
    sys.exit(main())
