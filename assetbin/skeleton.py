from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from assetbin import transforms
from assetbin.coordinates import CoordinateNormalizer
from assetbin.debug_console import DebugConsole
from assetbin.errors import IssueKind, IssueLog
from assetbin.scene import Scene


@dataclass
class Bone:
    name: str
    parent_index: int
    # Bone space -> parent space at bind time
    bind_local: np.ndarray = field(default_factory=transforms.identity)
    # Inverse of the global bind; mesh space -> bone space
    offset_matrix: np.ndarray = field(default_factory=transforms.identity)


@dataclass
class SkeletonData:
    """Resolved bones for one source file, parents before children."""
    bones: List[Bone] = field(default_factory=list)
    global_binds: List[np.ndarray] = field(default_factory=list)
    reference_node: Optional[int] = None
    missing: List[str] = field(default_factory=list)
    name_to_index: Dict[str, int] = field(default_factory=dict)

    @property
    def bone_count(self) -> int:
        return len(self.bones)

    def index_of(self, name: Optional[str]) -> int:
        """Bone index for `name`, or -1 when it is not part of the skeleton."""
        if name is None:
            return -1
        return self.name_to_index.get(name, -1)


def collect_bones(scene: Scene) -> List[Bone]:
    """
    Walks the hierarchy depth first and creates one Bone per skeleton node.

    A bone's parent is its nearest skeleton ancestor; non-skeleton nodes in
    between are skipped, so traversal order guarantees parent < child.
    """
    bones: List[Bone] = []
    bone_of_node: Dict[int, int] = {}
    for index in scene.traverse():
        if not scene.is_skeleton(index):
            continue
        parent_index = -1
        for ancestor in scene.ancestors(scene.parent(index)):
            if ancestor in bone_of_node:
                parent_index = bone_of_node[ancestor]
                break
        bone_of_node[index] = len(bones)
        bones.append(Bone(name=scene.node(index).name, parent_index=parent_index))
    return bones


def select_reference_mesh(scene: Scene) -> Optional[int]:
    """
    Picks the mesh whose space the bind pose is expressed in: the skinned
    mesh with the most control points, else the first mesh encountered.
    """
    meshes = scene.mesh_nodes()
    if not meshes:
        return None
    best, best_count = None, -1
    for index in meshes:
        mesh = scene.node(index).mesh
        if mesh.has_skin and mesh.control_point_count > best_count:
            best, best_count = index, mesh.control_point_count
    return best if best is not None else meshes[0]


def resolve_bind_pose(
        scene: Scene,
        bones: List[Bone],
        reference_node: Optional[int],
        normalizer: CoordinateNormalizer,
        issues: Optional[IssueLog] = None,
) -> SkeletonData:
    issues = issues if issues is not None else IssueLog()
    skeleton = SkeletonData(bones=bones, reference_node=reference_node)
    for i, bone in enumerate(bones):
        skeleton.name_to_index[bone.name] = i

    reference_global = (
        scene.evaluate_global_transform(reference_node)
        if reference_node is not None
        else transforms.identity()
    )
    reference_inverse, ok = transforms.safe_inverse(reference_global)
    if not ok:
        issues.warn(IssueKind.SingularMatrix, "reference mesh",
                    "reference mesh transform is singular, using identity")

    # --- Global bind, relative to the reference mesh ---
    global_binds = []
    for bone in bones:
        node_index = scene.find_node(bone.name)
        if node_index is None:
            issues.warn(IssueKind.MissingBoneNode, bone.name,
                        "no scene node for bone, using identity bind")
            skeleton.missing.append(bone.name)
            global_binds.append(transforms.identity())
            continue
        bone_in_reference = scene.evaluate_global_transform(node_index) @ reference_inverse
        global_binds.append(normalizer.normalize_transform(bone_in_reference))
    skeleton.global_binds = global_binds

    DebugConsole.log(f"[BindMissing] {len(skeleton.missing)} / {len(bones)}")

    # --- Local bind ---
    for i, bone in enumerate(bones):
        if bone.parent_index >= 0:
            parent_inverse, ok = transforms.safe_inverse(global_binds[bone.parent_index])
            if not ok:
                issues.warn(IssueKind.SingularMatrix, bone.name,
                            "parent bind is singular, using identity local bind")
                bone.bind_local = transforms.identity()
                continue
        else:
            parent_inverse = transforms.identity()
        bone.bind_local = global_binds[i] @ parent_inverse
        if transforms.det3x3(bone.bind_local) < 0.0:
            DebugConsole.log(f"[LocalDetNeg] i={i} name={bone.name}")

    # --- Offset (inverse bind) ---
    for i, bone in enumerate(bones):
        offset, ok = transforms.safe_inverse(global_binds[i])
        if not ok:
            issues.warn(IssueKind.SingularMatrix, bone.name,
                        "global bind is singular, using identity offset")
        bone.offset_matrix = offset

    return skeleton


def build_skeleton(
        scene: Scene,
        normalizer: CoordinateNormalizer,
        issues: Optional[IssueLog] = None,
) -> SkeletonData:
    bones = collect_bones(scene)
    reference_node = select_reference_mesh(scene)
    skeleton = resolve_bind_pose(scene, bones, reference_node, normalizer, issues)
    DebugConsole.log(
        f"[Skeleton] Found {skeleton.bone_count} bones, reference mesh: "
        f"{scene.node(reference_node).name if reference_node is not None else '(none)'}"
    )
    return skeleton
