from dataclasses import dataclass, replace
from typing import Optional

from assetbin.coordinates import AxisConvention, CoordinateNormalizer


class ExportMode:
    Model = "model"
    Skinned = "skinned"
    Static = "static"
    Animation = "animation"

    ALL = (Model, Skinned, Static, Animation)


class MeshFilter:
    All = "all"
    Skinned = "skinned"
    Static = "static"

    ALL = (All, Skinned, Static)


@dataclass(frozen=True)
class ExportOptions:
    """
    Variation points of the extraction pipeline.

    The four presets (model, skinned, static, animation) cover the usual
    outputs; any field can be overridden on top of a preset.
    """
    mode: str = ExportMode.Model
    include_skeleton: bool = True
    include_skin: bool = True
    mirror_x: bool = True
    generate_tangents: bool = False
    axis_convention: Optional[str] = None
    # Scene-wide rescale applied at import time, before any extraction.
    unit_scale: float = 1.0
    # Source lengths are centimeters; the engine wants meters.
    length_scale: float = 0.01
    mesh_filter: str = MeshFilter.All
    flip_v: bool = True
    negate_static_axes: bool = False
    skeleton_only: bool = True
    time_scale: float = 1.0
    trim_start: bool = True

    def __post_init__(self):
        if self.mode not in ExportMode.ALL:
            raise ValueError(f"Unknown export mode: {self.mode}")
        if self.mesh_filter not in MeshFilter.ALL:
            raise ValueError(f"Unknown mesh filter: {self.mesh_filter}")
        if self.axis_convention is not None and self.axis_convention not in AxisConvention.ALL:
            raise ValueError(f"Unknown axis convention: {self.axis_convention}")
        if self.unit_scale <= 0.0:
            raise ValueError("unit_scale must be positive")
        if self.length_scale <= 0.0:
            raise ValueError("length_scale must be positive")
        if self.time_scale <= 0.0:
            raise ValueError("time_scale must be positive")
        if self.include_skin and not self.include_skeleton:
            raise ValueError("include_skin requires include_skeleton")

    @classmethod
    def preset(cls, mode: str, **overrides) -> "ExportOptions":
        if mode not in _PRESETS:
            raise ValueError(f"Unknown export mode: {mode}")
        return replace(_PRESETS[mode], **overrides)

    @property
    def model_version(self) -> int:
        return 2 if self.generate_tangents else 1

    def normalizer(self) -> CoordinateNormalizer:
        return CoordinateNormalizer(length_scale=self.length_scale, mirror_x=self.mirror_x)


_PRESETS = {
    ExportMode.Model: ExportOptions(mode=ExportMode.Model),
    ExportMode.Skinned: ExportOptions(
        mode=ExportMode.Skinned,
        mesh_filter=MeshFilter.Skinned,
    ),
    ExportMode.Static: ExportOptions(
        mode=ExportMode.Static,
        include_skeleton=False,
        include_skin=False,
        mesh_filter=MeshFilter.Static,
        length_scale=1.0,
    ),
    ExportMode.Animation: ExportOptions(
        mode=ExportMode.Animation,
        include_skin=False,
    ),
}
