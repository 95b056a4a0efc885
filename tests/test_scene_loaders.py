import numpy as np
import pytest
import trimesh

from assetbin.errors import SceneImportError
from assetbin.scene_loaders import from_trimesh, load_scene, local_trs


def test_local_trs_reads_column_vector_matrices():
    matrix = trimesh.transformations.rotation_matrix(np.pi / 2, [0, 0, 1])
    matrix[:3, 3] = (1.0, 2.0, 3.0)

    translation, rotation, scaling = local_trs(matrix)

    assert translation == pytest.approx((1.0, 2.0, 3.0))
    assert rotation == pytest.approx((0.0, 0.0, 90.0))
    assert scaling == pytest.approx((1.0, 1.0, 1.0))


def test_from_trimesh_builds_hierarchy():
    source = trimesh.Scene()
    box = trimesh.creation.box()
    transform = trimesh.transformations.translation_matrix((1.0, 2.0, 3.0))
    source.add_geometry(box, node_name="crate", geom_name="crate_geom", transform=transform)

    scene = from_trimesh(source, "yard")

    index = scene.find_node("crate")
    assert index is not None
    assert scene.is_mesh(index)
    assert scene.node(index).translation == pytest.approx((1.0, 2.0, 3.0))
    mesh = scene.node(index).mesh
    assert mesh.polygon_count == len(box.faces)
    assert mesh.corner_normals().shape == (len(box.faces) * 3, 3)
    np.testing.assert_allclose(
        scene.evaluate_global_transform(index)[3, :3], (1.0, 2.0, 3.0), atol=1e-12
    )


def test_load_scene_from_obj(tmp_path):
    path = tmp_path / "box.obj"
    trimesh.creation.box().export(str(path))

    scene = load_scene(str(path))

    assert scene.name == "box"
    meshes = scene.mesh_nodes()
    assert len(meshes) == 1
    assert scene.node(meshes[0]).mesh.polygon_count == 12


def test_missing_file(tmp_path):
    with pytest.raises(SceneImportError):
        load_scene(str(tmp_path / "nope.glb"))
