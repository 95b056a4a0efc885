import bisect
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from assetbin import transforms
from assetbin.coordinates import AxisConvention, up_axis_conversion


# ==========================================================================
# 1. ENUMS
# ==========================================================================
class NodeAttribute:
    Null = 0
    Skeleton = 1
    Mesh = 2


class CurveInterpolation:
    Constant = 0
    Linear = 1
    Cubic = 2


class CurveChannel:
    Translation = "T"
    Rotation = "R"
    Scaling = "S"

    ALL = (Translation, Rotation, Scaling)


AXES = ("X", "Y", "Z")


# ==========================================================================
# 2. Animation curves
# ==========================================================================
@dataclass
class CurveKey:
    time: float
    value: float
    interpolation: int = CurveInterpolation.Linear
    # Tangents in value units per second, used by cubic segments.
    left_slope: float = 0.0
    right_slope: float = 0.0


@dataclass
class AnimationCurve:
    """Keys of a single scalar channel (one axis of T, R or S)."""
    keys: List[CurveKey] = field(default_factory=list)

    def add_key(self, time, value, interpolation=CurveInterpolation.Linear,
                left_slope=0.0, right_slope=0.0) -> CurveKey:
        key = CurveKey(float(time), float(value), interpolation, left_slope, right_slope)
        times = self.key_times()
        index = bisect.bisect_left(times, key.time)
        if index < len(times) and times[index] == key.time:
            self.keys[index] = key
        else:
            self.keys.insert(index, key)
        return key

    def key_times(self) -> List[float]:
        return [k.time for k in self.keys]

    def evaluate(self, time: float) -> float:
        keys = self.keys
        if not keys:
            raise ValueError("Cannot evaluate an empty curve")
        if time <= keys[0].time:
            return keys[0].value
        if time >= keys[-1].time:
            return keys[-1].value

        next_idx = bisect.bisect_right(self.key_times(), time)
        prev_key = keys[next_idx - 1]
        next_key = keys[next_idx]

        span = next_key.time - prev_key.time
        factor = (time - prev_key.time) / span if span > 0 else 0.0

        if prev_key.interpolation == CurveInterpolation.Constant:
            return prev_key.value
        if prev_key.interpolation == CurveInterpolation.Linear:
            return prev_key.value * (1.0 - factor) + next_key.value * factor

        # Cubic Hermite between the two keys
        f2 = factor * factor
        f3 = f2 * factor
        h00 = 2 * f3 - 3 * f2 + 1
        h10 = f3 - 2 * f2 + factor
        h01 = -2 * f3 + 3 * f2
        h11 = f3 - f2
        return (
            h00 * prev_key.value
            + h10 * span * prev_key.right_slope
            + h01 * next_key.value
            + h11 * span * next_key.left_slope
        )


# ==========================================================================
# 3. Geometry, skin and material records
# ==========================================================================
@dataclass
class SkinCluster:
    """One bone's influence over a set of control points."""
    link_name: Optional[str]
    indices: List[int] = field(default_factory=list)
    weights: List[float] = field(default_factory=list)


@dataclass
class SkinDeformer:
    clusters: List[SkinCluster] = field(default_factory=list)


@dataclass
class MeshData:
    """Triangulated mesh. Normals and UVs are stored per polygon corner."""
    control_points: np.ndarray
    triangles: np.ndarray
    normals: Optional[np.ndarray] = None
    uvs: Optional[np.ndarray] = None
    skins: List[SkinDeformer] = field(default_factory=list)

    def __post_init__(self):
        self.control_points = np.asarray(self.control_points, dtype=np.float64).reshape(-1, 3)
        self.triangles = np.asarray(self.triangles, dtype=np.int64).reshape(-1, 3)
        if self.normals is not None:
            self.normals = np.asarray(self.normals, dtype=np.float64).reshape(-1, 3)
        if self.uvs is not None:
            self.uvs = np.asarray(self.uvs, dtype=np.float64).reshape(-1, 2)

    @property
    def control_point_count(self) -> int:
        return self.control_points.shape[0]

    @property
    def polygon_count(self) -> int:
        return self.triangles.shape[0]

    @property
    def has_skin(self) -> bool:
        return len(self.skins) > 0

    def corner_normals(self) -> np.ndarray:
        """Per-corner normals, falling back to flat face normals."""
        corner_count = self.polygon_count * 3
        if self.normals is not None and self.normals.shape[0] == corner_count:
            return self.normals
        p = self.control_points[np.clip(self.triangles, 0, max(self.control_point_count - 1, 0))]
        face = np.cross(p[:, 1] - p[:, 0], p[:, 2] - p[:, 0])
        return np.repeat(transforms.normalize_rows(face), 3, axis=0)

    def corner_uvs(self) -> Optional[np.ndarray]:
        if self.uvs is not None and self.uvs.shape[0] == self.polygon_count * 3:
            return self.uvs
        return None


@dataclass
class SurfaceMaterial:
    name: str
    diffuse_texture: str = ""
    normal_texture: str = ""


@dataclass
class AnimationStack:
    name: str
    start: float
    stop: float


# ==========================================================================
# 4. Scene graph
# ==========================================================================
@dataclass
class SceneNode:
    name: str
    attribute: int = NodeAttribute.Null
    parent: int = -1
    children: List[int] = field(default_factory=list)
    translation: Tuple = (0.0, 0.0, 0.0)
    rotation: Tuple = (0.0, 0.0, 0.0)  # Euler XYZ, degrees
    scaling: Tuple = (1.0, 1.0, 1.0)
    geometric_translation: Tuple = (0.0, 0.0, 0.0)
    geometric_rotation: Tuple = (0.0, 0.0, 0.0)
    geometric_scaling: Tuple = (1.0, 1.0, 1.0)
    mesh: Optional[MeshData] = None
    materials: List[SurfaceMaterial] = field(default_factory=list)
    curves: Dict[str, AnimationCurve] = field(default_factory=dict)


class Scene:
    """
    Arena of nodes referenced by index. Node 0 is the implicit root.

    This is the scene-provider side of the extractor: hierarchy traversal,
    attribute queries, transform evaluation at arbitrary times, mesh and skin
    access, curve keys and animation stacks.
    """

    ROOT = 0

    def __init__(self, name: str = "scene", up_axis: str = AxisConvention.YUp):
        self.name = name
        self.up_axis = up_axis
        self.nodes: List[SceneNode] = [SceneNode("RootNode")]
        self.animation_stacks: List[AnimationStack] = []
        self.current_stack: Optional[int] = None
        self._axis_correction = transforms.identity()

    # --- Hierarchy -------------------------------------------------------
    def add_node(self, name: str, parent: int = ROOT, attribute: int = NodeAttribute.Null,
                 **properties) -> int:
        if not 0 <= parent < len(self.nodes):
            raise IndexError(f"Parent node {parent} does not exist")
        index = len(self.nodes)
        node = SceneNode(name=name, attribute=attribute, parent=parent, **properties)
        if node.mesh is not None and attribute == NodeAttribute.Null:
            node.attribute = NodeAttribute.Mesh
        self.nodes.append(node)
        self.nodes[parent].children.append(index)
        return index

    def node(self, index: int) -> SceneNode:
        return self.nodes[index]

    def parent(self, index: int) -> int:
        return self.nodes[index].parent

    def traverse(self, start: int = ROOT) -> Iterator[int]:
        """Depth-first pre-order; a parent is always yielded before its children."""
        stack = [start]
        while stack:
            index = stack.pop()
            yield index
            stack.extend(reversed(self.nodes[index].children))

    def ancestors(self, index: int) -> Iterator[int]:
        """The node itself, then each parent up to the root."""
        while index >= 0:
            yield index
            index = self.nodes[index].parent

    def find_node(self, name: str) -> Optional[int]:
        for index in self.traverse():
            if self.nodes[index].name == name:
                return index
        return None

    def is_skeleton(self, index: int) -> bool:
        return self.nodes[index].attribute == NodeAttribute.Skeleton

    def is_mesh(self, index: int) -> bool:
        return self.nodes[index].mesh is not None

    def mesh_nodes(self) -> List[int]:
        return [i for i in self.traverse() if self.is_mesh(i)]

    # --- Animation curves -------------------------------------------------
    def set_curve(self, index: int, channel: str, axis: str, curve: AnimationCurve):
        if channel not in CurveChannel.ALL or axis not in AXES:
            raise ValueError(f"Unknown curve channel {channel}.{axis}")
        self.nodes[index].curves[f"{channel}.{axis}"] = curve

    def curve(self, index: int, channel: str, axis: str) -> Optional[AnimationCurve]:
        return self.nodes[index].curves.get(f"{channel}.{axis}")

    def key_times(self, index: int) -> List[float]:
        """Sorted union of key times over all nine T/R/S axis curves."""
        times = set()
        for curve in self.nodes[index].curves.values():
            times.update(curve.key_times())
        return sorted(times)

    def has_animation(self, index: int) -> bool:
        return any(curve.keys for curve in self.nodes[index].curves.values())

    def add_animation_stack(self, name: str, start: float, stop: float) -> AnimationStack:
        stack = AnimationStack(name, float(start), float(stop))
        self.animation_stacks.append(stack)
        return stack

    def current_animation_stack(self) -> Optional[AnimationStack]:
        if self.current_stack is not None and self.current_stack < len(self.animation_stacks):
            return self.animation_stacks[self.current_stack]
        return self.animation_stacks[0] if self.animation_stacks else None

    # --- Transform evaluation ---------------------------------------------
    def _channel_value(self, node: SceneNode, channel: str, default: Sequence[float],
                       time: Optional[float]) -> List[float]:
        values = list(default)
        if time is None:
            return values
        for i, axis in enumerate(AXES):
            curve = node.curves.get(f"{channel}.{axis}")
            if curve is not None and curve.keys:
                values[i] = curve.evaluate(time)
        return values

    def evaluate_local_transform(self, index: int, time: Optional[float] = None) -> np.ndarray:
        node = self.nodes[index]
        translation = self._channel_value(node, CurveChannel.Translation, node.translation, time)
        rotation = self._channel_value(node, CurveChannel.Rotation, node.rotation, time)
        scaling = self._channel_value(node, CurveChannel.Scaling, node.scaling, time)
        local = transforms.compose_euler(translation, rotation, scaling)
        if index == self.ROOT:
            local = local @ self._axis_correction
        return local

    def evaluate_global_transform(self, index: int, time: Optional[float] = None) -> np.ndarray:
        result = transforms.identity()
        for ancestor in self.ancestors(index):
            result = result @ self.evaluate_local_transform(ancestor, time)
        return result

    def geometric_transform(self, index: int) -> np.ndarray:
        node = self.nodes[index]
        return transforms.compose_euler(
            node.geometric_translation, node.geometric_rotation, node.geometric_scaling
        )

    # --- Scene-wide conversions -------------------------------------------
    def convert_units(self, factor: float):
        """Rescales every length in the scene (e.g. 0.01 for cm -> m)."""
        for node in self.nodes:
            node.translation = tuple(v * factor for v in node.translation)
            node.geometric_translation = tuple(v * factor for v in node.geometric_translation)
            for axis in AXES:
                curve = node.curves.get(f"{CurveChannel.Translation}.{axis}")
                if curve is None:
                    continue
                for key in curve.keys:
                    key.value *= factor
                    key.left_slope *= factor
                    key.right_slope *= factor
            if node.mesh is not None:
                node.mesh.control_points = node.mesh.control_points * factor

    def convert_axis_system(self, target: str):
        if target not in AxisConvention.ALL:
            raise ValueError(f"Unknown axis convention: {target}")
        conversion = up_axis_conversion(self.up_axis, target)
        self._axis_correction = self._axis_correction @ conversion
        self.up_axis = target
