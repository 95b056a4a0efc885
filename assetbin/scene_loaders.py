"""
Builds a Scene from files trimesh can read (glTF/GLB, OBJ, PLY, STL, ...).

trimesh exposes the node graph, transforms, triangles, normals, UVs and
material names. It does not carry skins or animation curves, so these
files yield static geometry only.
"""
import os
from collections import defaultdict
from typing import Dict, List, Optional

import numpy as np
import trimesh
from scipy.spatial.transform import Rotation

from assetbin import transforms
from assetbin.coordinates import AxisConvention
from assetbin.debug_console import DebugConsole
from assetbin.errors import SceneImportError
from assetbin.scene import MeshData, Scene, SurfaceMaterial

SUPPORTED_EXTENSIONS = (".glb", ".gltf", ".obj", ".ply", ".stl", ".off", ".dae")


def local_trs(matrix: np.ndarray):
    """Translation, Euler XYZ degrees and scale of a column-vector 4x4 matrix."""
    row_major = np.asarray(matrix, dtype=np.float64).T
    translation, quat, scale = transforms.decompose(row_major)
    rotation = Rotation.from_quat(quat).as_euler("xyz", degrees=True)
    return tuple(translation.tolist()), tuple(rotation.tolist()), tuple(scale.tolist())


def _texture_name(material) -> str:
    image = getattr(material, "image", None)
    if image is None:
        image = getattr(material, "baseColorTexture", None)
    return getattr(image, "filename", "") or ""


def _surface_material(geometry: trimesh.Trimesh) -> Optional[SurfaceMaterial]:
    visual = getattr(geometry, "visual", None)
    material = getattr(visual, "material", None)
    if material is None:
        return None
    name = getattr(material, "name", None) or "default"
    return SurfaceMaterial(name=name, diffuse_texture=_texture_name(material))


def mesh_from_trimesh(geometry: trimesh.Trimesh) -> MeshData:
    faces = np.asarray(geometry.faces, dtype=np.int64)
    vertex_normals = np.asarray(geometry.vertex_normals, dtype=np.float64)
    normals = vertex_normals[faces].reshape(-1, 3) if len(vertex_normals) else None

    uvs = None
    source_uv = getattr(geometry.visual, "uv", None)
    if source_uv is not None and len(source_uv) == len(geometry.vertices):
        uvs = np.asarray(source_uv, dtype=np.float64)[faces].reshape(-1, 2)

    return MeshData(
        control_points=np.asarray(geometry.vertices, dtype=np.float64),
        triangles=faces,
        normals=normals,
        uvs=uvs,
    )


def from_trimesh(source: trimesh.Scene, name: str = "scene") -> Scene:
    scene = Scene(name=name, up_axis=AxisConvention.YUp)

    children: Dict[str, List] = defaultdict(list)
    for parent, child, attributes in source.graph.to_edgelist():
        children[parent].append((child, attributes))

    # (trimesh node name, parent index in our scene)
    stack = [(child, attrs, Scene.ROOT)
             for child, attrs in reversed(children[source.graph.base_frame])]
    while stack:
        node_name, attributes, parent = stack.pop()
        translation, rotation, scaling = local_trs(attributes.get("matrix", np.eye(4)))

        properties = {}
        geometry_name = attributes.get("geometry")
        geometry = source.geometry.get(geometry_name) if geometry_name else None
        if isinstance(geometry, trimesh.Trimesh) and len(geometry.faces):
            properties["mesh"] = mesh_from_trimesh(geometry)
            material = _surface_material(geometry)
            if material is not None:
                properties["materials"] = [material]
        elif geometry_name:
            DebugConsole.log(f"[Loader] skipping non-triangle geometry '{geometry_name}'")

        index = scene.add_node(
            str(node_name), parent,
            translation=translation, rotation=rotation, scaling=scaling,
            **properties,
        )
        stack.extend((child, attrs, index) for child, attrs in reversed(children[node_name]))

    DebugConsole.log(f"[Loader] {name}: {len(scene.nodes) - 1} nodes, "
                     f"{len(scene.mesh_nodes())} meshes")
    return scene


def load_scene(path: str) -> Scene:
    if not os.path.isfile(path):
        raise SceneImportError(f"File not found: {path}")
    try:
        loaded = trimesh.load(path, force="scene")
    except Exception as e:
        raise SceneImportError(f"Failed to import {path}: {e}") from e
    name = os.path.splitext(os.path.basename(path))[0]
    try:
        return from_trimesh(loaded, name)
    except Exception as e:
        raise SceneImportError(f"Failed to convert {path}: {e}") from e
