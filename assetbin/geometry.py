from dataclasses import dataclass
from pathlib import PureWindowsPath
from typing import Dict, List, Optional, Tuple

import numpy as np

from assetbin import skinning, transforms
from assetbin.coordinates import NEGATE_AXES, CoordinateNormalizer
from assetbin.debug_console import DebugConsole
from assetbin.errors import IssueLog
from assetbin.options import ExportOptions, MeshFilter
from assetbin.scene import Scene
from assetbin.skeleton import SkeletonData


# ==========================================================================
# 1. Data
# ==========================================================================
@dataclass
class Material:
    name: str
    diffuse_texture_name: str = ""
    normal_texture_name: str = ""


@dataclass
class SubMesh:
    """One draw batch. Vertices are per triangle corner, never shared."""
    mesh_name: str
    material_index: int
    positions: np.ndarray  # (N, 3) float32
    normals: np.ndarray  # (N, 3) float32
    uvs: np.ndarray  # (N, 2) float32
    bone_indices: np.ndarray  # (N, 4) uint32
    bone_weights: np.ndarray  # (N, 4) float32
    indices: np.ndarray  # (M,) uint32
    tangents: Optional[np.ndarray] = None  # (N, 4) float32, w = bitangent sign

    def __post_init__(self):
        self.positions = np.asarray(self.positions, dtype=np.float32).reshape(-1, 3)
        self.normals = np.asarray(self.normals, dtype=np.float32).reshape(-1, 3)
        self.uvs = np.asarray(self.uvs, dtype=np.float32).reshape(-1, 2)
        self.bone_indices = np.asarray(self.bone_indices, dtype=np.uint32).reshape(-1, 4)
        self.bone_weights = np.asarray(self.bone_weights, dtype=np.float32).reshape(-1, 4)
        self.indices = np.asarray(self.indices, dtype=np.uint32).reshape(-1)
        if self.tangents is not None:
            self.tangents = np.asarray(self.tangents, dtype=np.float32).reshape(-1, 4)

    @property
    def vertex_count(self) -> int:
        return self.positions.shape[0]


# ==========================================================================
# 2. Materials
# ==========================================================================
def texture_stem(path: str) -> str:
    """Base filename without directory or extension ('C:/tex/face.tga' -> 'face')."""
    if not path:
        return ""
    return PureWindowsPath(path).stem


def collect_materials(scene: Scene) -> Tuple[List[Material], Dict[str, int]]:
    """Every material in the hierarchy, deduplicated by source name."""
    materials: List[Material] = []
    lookup: Dict[str, int] = {}
    for index in scene.traverse():
        for source in scene.node(index).materials:
            if source.name in lookup:
                continue
            lookup[source.name] = len(materials)
            materials.append(Material(
                name=source.name,
                diffuse_texture_name=texture_stem(source.diffuse_texture),
                normal_texture_name=texture_stem(source.normal_texture),
            ))
    for i, m in enumerate(materials):
        DebugConsole.log(f"  [{i}] name=\"{m.name}\" diffuse=\"{m.diffuse_texture_name}\"")
    return materials, lookup


def material_index_for(scene: Scene, node_index: int, lookup: Dict[str, int]) -> int:
    # Only the first material slot is used
    materials = scene.node(node_index).materials
    if materials:
        return lookup.get(materials[0].name, 0)
    return 0


# ==========================================================================
# 3. Tangents
# ==========================================================================
def _perpendicular(normals: np.ndarray) -> np.ndarray:
    axis = np.zeros_like(normals)
    use_x = np.abs(normals[:, 0]) < 0.9
    axis[use_x, 0] = 1.0
    axis[~use_x, 1] = 1.0
    return transforms.normalize_rows(np.cross(axis, normals))


def generate_tangents(positions: np.ndarray, normals: np.ndarray, uvs: np.ndarray) -> np.ndarray:
    """
    Per-corner tangents for a triangle list (three consecutive vertices per
    triangle). The tangent follows +U, is orthogonalized against the corner
    normal, and w holds the bitangent handedness (+1 or -1).
    """
    positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3, 3)
    uvs = np.asarray(uvs, dtype=np.float64).reshape(-1, 3, 2)
    normals = np.asarray(normals, dtype=np.float64).reshape(-1, 3)

    e1 = positions[:, 1] - positions[:, 0]
    e2 = positions[:, 2] - positions[:, 0]
    d1 = uvs[:, 1] - uvs[:, 0]
    d2 = uvs[:, 2] - uvs[:, 0]

    denom = d1[:, 0] * d2[:, 1] - d2[:, 0] * d1[:, 1]
    valid = np.abs(denom) > 1e-12
    r = np.zeros_like(denom)
    r[valid] = 1.0 / denom[valid]

    face_tangent = (e1 * d2[:, 1:2] - e2 * d1[:, 1:2]) * r[:, None]
    face_bitangent = (e2 * d1[:, 0:1] - e1 * d2[:, 0:1]) * r[:, None]

    tangent = np.repeat(face_tangent, 3, axis=0)
    bitangent = np.repeat(face_bitangent, 3, axis=0)
    corner_valid = np.repeat(valid, 3)

    # Gram-Schmidt against the normal
    tangent = tangent - normals * np.sum(normals * tangent, axis=1, keepdims=True)
    length = np.linalg.norm(tangent, axis=1)
    degenerate = (~corner_valid) | (length <= 1e-12)
    tangent[~degenerate] /= length[~degenerate, None]
    if np.any(degenerate):
        tangent[degenerate] = _perpendicular(normals[degenerate])

    handedness = np.where(np.sum(np.cross(normals, tangent) * bitangent, axis=1) < 0.0, -1.0, 1.0)
    return np.hstack([tangent, handedness[:, None]])


# ==========================================================================
# 4. SubMesh baking
# ==========================================================================
def passes_filter(scene: Scene, node_index: int, mesh_filter: str) -> bool:
    has_skin = scene.node(node_index).mesh.has_skin
    if mesh_filter == MeshFilter.Skinned:
        return has_skin
    if mesh_filter == MeshFilter.Static:
        return not has_skin
    return True


def bake_transform(scene: Scene, node_index: int, options: ExportOptions,
                   skeleton: Optional[SkeletonData]) -> np.ndarray:
    """Mesh-local -> output space (reference-mesh space when a skeleton is exported)."""
    m = scene.geometric_transform(node_index) @ scene.evaluate_global_transform(node_index)
    if skeleton is not None and skeleton.reference_node is not None:
        reference_inverse, _ = transforms.safe_inverse(
            scene.evaluate_global_transform(skeleton.reference_node)
        )
        m = m @ reference_inverse
    if options.negate_static_axes:
        m = m @ NEGATE_AXES
    return m


def build_submesh(
        scene: Scene,
        node_index: int,
        options: ExportOptions,
        normalizer: CoordinateNormalizer,
        material_lookup: Dict[str, int],
        skeleton: Optional[SkeletonData] = None,
        issues: Optional[IssueLog] = None,
) -> Optional[SubMesh]:
    node = scene.node(node_index)
    mesh = node.mesh

    triangles = mesh.triangles
    in_range = np.all((triangles >= 0) & (triangles < mesh.control_point_count), axis=1)
    if not np.all(in_range):
        DebugConsole.log(f"[SubMesh] {node.name}: dropping {int(np.sum(~in_range))} bad triangles")
    corner_mask = np.repeat(in_range, 3)
    vertex_control_points = triangles[in_range].reshape(-1)
    vertex_count = vertex_control_points.shape[0]
    if vertex_count == 0:
        return None

    m = bake_transform(scene, node_index, options, skeleton)
    flip = normalizer.needs_winding_flip(m)
    DebugConsole.log(f"[NodeDet] {node.name} det={transforms.det3x3(m):.6f} flip={flip}")

    positions = normalizer.bake_positions(mesh.control_points[vertex_control_points], m)
    normals = normalizer.bake_normals(mesh.corner_normals()[corner_mask], m)

    source_uvs = mesh.corner_uvs()
    if source_uvs is not None:
        uvs = source_uvs[corner_mask].copy()
        if options.flip_v:
            uvs[:, 1] = 1.0 - uvs[:, 1]
    else:
        uvs = np.zeros((vertex_count, 2))

    if not options.include_skin or skeleton is None or skeleton.bone_count == 0:
        bone_indices, bone_weights = skinning.unskinned(vertex_count)
    elif mesh.has_skin:
        bone_indices, bone_weights = skinning.resolve_skin_weights(
            mesh, skeleton, vertex_control_points, issues, node.name
        )
    else:
        attached = skinning.find_attached_bone(scene, node_index, skeleton)
        bone_indices, bone_weights = skinning.rigid_binding(attached, vertex_count)

    tangents = generate_tangents(positions, normals, uvs) if options.generate_tangents else None

    sub_mesh = SubMesh(
        mesh_name=node.name,
        material_index=material_index_for(scene, node_index, material_lookup),
        positions=positions,
        normals=normals,
        uvs=uvs,
        bone_indices=bone_indices,
        bone_weights=bone_weights,
        indices=normalizer.triangle_indices(vertex_count, flip),
        tangents=tangents,
    )
    DebugConsole.log(
        f"[SubMesh] mesh=\"{sub_mesh.mesh_name}\" materialIndex={sub_mesh.material_index} "
        f"verts={sub_mesh.vertex_count}"
    )
    return sub_mesh


def build_submeshes(
        scene: Scene,
        options: ExportOptions,
        normalizer: CoordinateNormalizer,
        material_lookup: Dict[str, int],
        skeleton: Optional[SkeletonData] = None,
        issues: Optional[IssueLog] = None,
) -> List[SubMesh]:
    sub_meshes = []
    for node_index in scene.mesh_nodes():
        if not passes_filter(scene, node_index, options.mesh_filter):
            continue
        sub_mesh = build_submesh(
            scene, node_index, options, normalizer, material_lookup, skeleton, issues
        )
        if sub_mesh is not None:
            sub_meshes.append(sub_mesh)
    return sub_meshes
