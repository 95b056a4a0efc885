"""
4x4 affine transform helpers.

All matrices use the row-vector convention: a point is transformed with
``p @ M``, the translation lives in row 3 and a child's global transform is
``child_local @ parent_global``. Flattening such a matrix row-major puts the
translation at indices 12..14, which is the layout stored in model files.
"""
from typing import List, Sequence, Tuple

import numpy as np
import pyrr
from scipy.spatial.transform import Rotation

SINGULAR_EPSILON = 1e-12


def identity() -> np.ndarray:
    return pyrr.matrix44.create_identity(dtype=np.float64)


def create_from_translation(vec: Sequence[float]) -> np.ndarray:
    return pyrr.matrix44.create_from_translation(np.asarray(vec, dtype=np.float64))


def create_from_scale(vec: Sequence[float]) -> np.ndarray:
    return pyrr.matrix44.create_from_scale(np.asarray(vec, dtype=np.float64), dtype=np.float64)


def create_from_quaternion(quat: Sequence[float]) -> np.ndarray:
    """Rotation matrix from an (x, y, z, w) quaternion."""
    return pyrr.matrix44.create_from_quaternion(normalize_quaternion(quat))


def create_from_eulers(degrees: Sequence[float]) -> np.ndarray:
    """Rotation matrix from XYZ Euler angles in degrees (X applied first)."""
    # pyrr orders its eulers as roll, pitch, yaw, so go through a quaternion
    return create_from_quaternion(Rotation.from_euler("xyz", degrees, degrees=True).as_quat())


def compose(translation, rotation, scale) -> np.ndarray:
    """Scale, then rotate (quaternion xyzw), then translate."""
    return (
        create_from_scale(scale)
        @ create_from_quaternion(rotation)
        @ create_from_translation(translation)
    )


def compose_euler(translation, rotation_degrees, scale) -> np.ndarray:
    return (
        create_from_scale(scale)
        @ create_from_eulers(rotation_degrees)
        @ create_from_translation(translation)
    )


def decompose(m: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Splits an affine matrix into (translation, rotation, scale).

    The rotation is a unit (x, y, z, w) quaternion. A negative determinant is
    folded into the X scale so the rotation part stays proper.
    """
    m = np.asarray(m, dtype=np.float64)
    translation = m[3, :3].copy()
    basis = m[:3, :3].copy()

    scale = np.linalg.norm(basis, axis=1)
    if np.linalg.det(basis) < 0.0:
        scale[0] = -scale[0]

    rows = np.identity(3)
    for i in range(3):
        if abs(scale[i]) > SINGULAR_EPSILON:
            rows[i] = basis[i] / scale[i]
    rotation = Rotation.from_matrix(rows.T).as_quat()
    return translation, normalize_quaternion(rotation), scale


def normalize_quaternion(quat: Sequence[float]) -> np.ndarray:
    q = np.asarray(quat, dtype=np.float64)
    if pyrr.vector.length(q) <= SINGULAR_EPSILON:
        return pyrr.quaternion.create(dtype=np.float64)
    return pyrr.quaternion.normalize(q)


def det3x3(m: np.ndarray) -> float:
    return float(np.linalg.det(np.asarray(m, dtype=np.float64)[:3, :3]))


def safe_inverse(m: np.ndarray) -> Tuple[np.ndarray, bool]:
    """Returns (inverse, ok). A singular matrix yields (identity, False)."""
    m = np.asarray(m, dtype=np.float64)
    if abs(np.linalg.det(m)) < SINGULAR_EPSILON:
        return identity(), False
    return np.linalg.inv(m), True


def transform_points(points: np.ndarray, m: np.ndarray) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    homogeneous = np.hstack([points, np.ones((points.shape[0], 1))])
    return (homogeneous @ m)[:, :3]


def normalize_rows(vectors: np.ndarray) -> np.ndarray:
    lengths = np.linalg.norm(vectors, axis=1, keepdims=True)
    lengths[lengths <= SINGULAR_EPSILON] = 1.0
    return vectors / lengths


def to_f32_list(m: np.ndarray) -> List[float]:
    return np.asarray(m, dtype=np.float32).reshape(16).tolist()
