"""
Coordinate normalization shared by the bind-pose, geometry and animation
stages, so skeleton, mesh and clip data end up in one convention.
"""
from dataclasses import dataclass

import numpy as np

from assetbin import transforms

# Single-axis mirror (negate X). Applied as a conjugation S @ M @ S.
MIRROR_X = np.diag([-1.0, 1.0, 1.0, 1.0])

# Legacy static-bake correction: negate all three axes.
NEGATE_AXES = np.diag([-1.0, -1.0, -1.0, 1.0])


class AxisConvention:
    YUp = "y_up"
    ZUp = "z_up"

    ALL = (YUp, ZUp)


def up_axis_conversion(source: str, target: str) -> np.ndarray:
    """Rotation taking a `source` up-axis scene to `target` up-axis."""
    if source == target:
        return transforms.identity()
    if source == AxisConvention.ZUp and target == AxisConvention.YUp:
        return transforms.create_from_eulers((-90.0, 0.0, 0.0))
    if source == AxisConvention.YUp and target == AxisConvention.ZUp:
        return transforms.create_from_eulers((90.0, 0.0, 0.0))
    raise ValueError(f"Unknown axis conversion: {source} -> {target}")


@dataclass
class CoordinateNormalizer:
    length_scale: float = 1.0
    mirror_x: bool = False

    def conjugate(self, m: np.ndarray) -> np.ndarray:
        if not self.mirror_x:
            return np.array(m, dtype=np.float64)
        return MIRROR_X @ m @ MIRROR_X

    def scale_translation(self, m: np.ndarray) -> np.ndarray:
        # Rotation and scale are already in target units, only move the origin.
        out = np.array(m, dtype=np.float64)
        out[3, :3] *= self.length_scale
        return out

    def normalize_transform(self, m: np.ndarray) -> np.ndarray:
        return self.conjugate(self.scale_translation(m))

    def needs_winding_flip(self, bake_transform: np.ndarray) -> bool:
        return (transforms.det3x3(bake_transform) < 0.0) != self.mirror_x

    def bake_positions(self, points: np.ndarray, bake_transform: np.ndarray) -> np.ndarray:
        baked = transforms.transform_points(points, bake_transform)
        if self.mirror_x:
            baked[:, 0] = -baked[:, 0]
        return baked * self.length_scale

    def bake_normals(self, normals: np.ndarray, bake_transform: np.ndarray) -> np.ndarray:
        basis = np.asarray(bake_transform, dtype=np.float64)[:3, :3]
        if abs(np.linalg.det(basis)) > transforms.SINGULAR_EPSILON:
            normal_matrix = np.linalg.inv(basis).T
        else:
            normal_matrix = basis
        baked = np.asarray(normals, dtype=np.float64).reshape(-1, 3) @ normal_matrix
        if self.mirror_x:
            baked[:, 0] = -baked[:, 0]
        return transforms.normalize_rows(baked)

    @staticmethod
    def triangle_indices(vertex_count: int, flip: bool) -> np.ndarray:
        indices = np.arange(vertex_count, dtype=np.uint32).reshape(-1, 3)
        if flip:
            indices = indices[:, [0, 2, 1]]
        return indices.reshape(-1)
