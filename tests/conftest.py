import numpy as np
import pytest

from assetbin.coordinates import CoordinateNormalizer
from assetbin.scene import (
    AnimationCurve,
    CurveChannel,
    MeshData,
    NodeAttribute,
    Scene,
    SkinCluster,
    SkinDeformer,
    SurfaceMaterial,
)


def quad_mesh(skins=None, with_uvs=True):
    """Unit quad in the XY plane: 4 control points, 2 triangles facing +Z."""
    control_points = [(0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0)]
    triangles = [(0, 1, 2), (0, 2, 3)]
    uvs = None
    if with_uvs:
        uvs = [(0, 0), (1, 0), (1, 1), (0, 0), (1, 1), (0, 1)]
    return MeshData(
        control_points=control_points,
        triangles=triangles,
        normals=[(0, 0, 1)] * 6,
        uvs=uvs,
        skins=skins or [],
    )


def assert_quat_close(actual, expected, atol=1e-6):
    actual = np.asarray(actual)
    expected = np.asarray(expected)
    if np.dot(actual, expected) < 0:
        actual = -actual
    np.testing.assert_allclose(actual, expected, atol=atol)


@pytest.fixture
def identity_normalizer():
    return CoordinateNormalizer(length_scale=1.0, mirror_x=False)


@pytest.fixture
def arm_scene():
    scene = Scene("arm")
    root = scene.add_node("Root", attribute=NodeAttribute.Skeleton)
    scene.add_node("Arm", root, NodeAttribute.Skeleton, translation=(1.0, 0.0, 0.0))
    return scene


@pytest.fixture
def rigged_scene():
    """
    Root -> Spine -> (Helper) -> Arm skeleton, a skinned Body mesh under the
    root and a rigid Sword mesh parented to the arm.
    """
    scene = Scene("rigged")
    root = scene.add_node("Root", attribute=NodeAttribute.Skeleton,
                          translation=(0.0, 1.0, 0.0), rotation=(0.0, 30.0, 0.0))
    spine = scene.add_node("Spine", root, NodeAttribute.Skeleton,
                           translation=(0.0, 2.0, 0.0), rotation=(10.0, 0.0, 0.0))
    helper = scene.add_node("Helper", spine, translation=(0.5, 0.0, 0.0))
    arm = scene.add_node("Arm", helper, NodeAttribute.Skeleton,
                         translation=(1.0, 0.0, 0.0), rotation=(0.0, 0.0, 45.0),
                         scaling=(1.0, 1.0, 1.0))

    skin = SkinDeformer(clusters=[
        SkinCluster("Root", indices=[0, 1, 2, 3], weights=[1.0, 0.5, 0.2, 0.0]),
        SkinCluster("Spine", indices=[1, 2], weights=[0.5, 0.4]),
        SkinCluster("Arm", indices=[2], weights=[0.4]),
    ])
    scene.add_node(
        "Body", root, mesh=quad_mesh(skins=[skin]),
        translation=(0.0, 0.0, 2.0),
        materials=[SurfaceMaterial("Skin", "C:\\art\\textures\\body_d.tga", "body_n.png")],
    )
    scene.add_node(
        "Sword", arm, mesh=quad_mesh(),
        materials=[SurfaceMaterial("Steel", "textures/steel.dds")],
    )

    curve = AnimationCurve()
    curve.add_key(0.0, 0.0)
    curve.add_key(1.0, 90.0)
    scene.set_curve(spine, CurveChannel.Rotation, "Z", curve)
    scene.add_animation_stack("Walk", 0.0, 1.0)
    return scene
