from typing import List, Optional, Tuple

import numpy as np

from assetbin.errors import IssueKind, IssueLog
from assetbin.scene import MeshData, Scene
from assetbin.skeleton import SkeletonData

MAX_INFLUENCES = 4

# Bone used by rigid (unskinned) meshes with no bone among their ancestors.
DEFAULT_BONE_INDEX = 0

Influence = Tuple[int, float]


def gather_influences(mesh: MeshData, skeleton: SkeletonData) -> List[List[Influence]]:
    """(bone_index, weight) pairs per control point, over every skin and cluster."""
    per_control_point: List[List[Influence]] = [[] for _ in range(mesh.control_point_count)]
    for skin in mesh.skins:
        for cluster in skin.clusters:
            bone_index = skeleton.index_of(cluster.link_name)
            if bone_index < 0:
                continue
            for cp_index, weight in zip(cluster.indices, cluster.weights):
                if cp_index < 0 or cp_index >= mesh.control_point_count:
                    continue
                if weight <= 0.0:
                    continue
                per_control_point[cp_index].append((bone_index, float(weight)))
    return per_control_point


def limit_influences(influences: List[Influence],
                     max_influences: int = MAX_INFLUENCES) -> List[Influence]:
    """Strongest `max_influences` influences, renormalized to sum to 1."""
    kept = sorted(influences, key=lambda inf: -inf[1])[:max_influences]
    total = sum(w for _, w in kept)
    if total <= 0.0:
        return []
    return [(bone, w / total) for bone, w in kept]


def pack_influences(influences: List[Influence]) -> Tuple[List[int], List[float]]:
    indices = [0] * MAX_INFLUENCES
    weights = [0.0] * MAX_INFLUENCES
    for slot, (bone, weight) in enumerate(influences[:MAX_INFLUENCES]):
        indices[slot] = bone
        weights[slot] = weight
    return indices, weights


def resolve_skin_weights(
        mesh: MeshData,
        skeleton: SkeletonData,
        vertex_control_points: np.ndarray,
        issues: Optional[IssueLog] = None,
        mesh_name: str = "",
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Bone indices/weights for every emitted vertex.

    Vertices sharing a control point get the identical influence set, even
    though their normals and UVs are per corner.
    """
    issues = issues if issues is not None else IssueLog()
    resolved = [limit_influences(inf) for inf in gather_influences(mesh, skeleton)]

    packed_indices = np.zeros((mesh.control_point_count + 1, MAX_INFLUENCES), dtype=np.uint32)
    packed_weights = np.zeros((mesh.control_point_count + 1, MAX_INFLUENCES), dtype=np.float32)
    for cp_index, influences in enumerate(resolved):
        packed_indices[cp_index], packed_weights[cp_index] = pack_influences(influences)

    # Last row stays zero for vertices without a valid control point
    lookup = np.asarray(vertex_control_points, dtype=np.int64).copy()
    lookup[(lookup < 0) | (lookup >= mesh.control_point_count)] = mesh.control_point_count

    for cp_index in np.unique(lookup):
        if cp_index < mesh.control_point_count and not resolved[cp_index]:
            issues.warn(IssueKind.ZeroWeight, f"{mesh_name}[{cp_index}]",
                        "control point has no surviving influence, emitting zero weights")

    return packed_indices[lookup], packed_weights[lookup]


def find_attached_bone(scene: Scene, node_index: int, skeleton: SkeletonData) -> int:
    """First ancestor (or the node itself) whose name is a bone, else the default bone."""
    for ancestor in scene.ancestors(node_index):
        bone_index = skeleton.index_of(scene.node(ancestor).name)
        if bone_index >= 0:
            return bone_index
    return DEFAULT_BONE_INDEX


def rigid_binding(bone_index: int, vertex_count: int) -> Tuple[np.ndarray, np.ndarray]:
    indices = np.zeros((vertex_count, MAX_INFLUENCES), dtype=np.uint32)
    weights = np.zeros((vertex_count, MAX_INFLUENCES), dtype=np.float32)
    indices[:, 0] = bone_index
    weights[:, 0] = 1.0
    return indices, weights


def unskinned(vertex_count: int) -> Tuple[np.ndarray, np.ndarray]:
    return (
        np.zeros((vertex_count, MAX_INFLUENCES), dtype=np.uint32),
        np.zeros((vertex_count, MAX_INFLUENCES), dtype=np.float32),
    )
