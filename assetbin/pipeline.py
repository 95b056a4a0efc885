"""
One parameterized extraction pipeline for every output kind.

import -> normalize -> skeleton -> skins -> geometry or tracks -> encode -> write

All lookup tables (bones, materials, issues) live on an ExtractionContext
created per source file, so files can be converted in parallel.
"""
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from assetbin import binary_io
from assetbin.animation import AnimationClip, extract_clip
from assetbin.binary_io import ModelBin, ModelFlags
from assetbin.coordinates import CoordinateNormalizer
from assetbin.debug_console import DebugConsole
from assetbin.errors import (
    EmptyResultError,
    IssueLog,
    MissingAnimationError,
    OutputWriteError,
)
from assetbin.geometry import Material, SubMesh, build_submeshes, collect_materials
from assetbin.options import ExportMode, ExportOptions
from assetbin.scene import Scene
from assetbin.scene_loaders import load_scene
from assetbin.skeleton import SkeletonData, build_skeleton

OUTPUT_EXTENSION = ".bin"


@dataclass
class ExtractionContext:
    scene: Scene
    options: ExportOptions
    source_name: str = ""
    issues: IssueLog = field(default_factory=IssueLog)
    skeleton: Optional[SkeletonData] = None
    materials: List[Material] = field(default_factory=list)
    material_lookup: Dict[str, int] = field(default_factory=dict)

    @property
    def normalizer(self) -> CoordinateNormalizer:
        return self.options.normalizer()


def prepare_scene(scene: Scene, options: ExportOptions):
    """Scene-wide unit rescale and re-axis, applied once before anything is read."""
    if options.unit_scale != 1.0:
        DebugConsole.log(f"[Units] x{options.unit_scale}")
        scene.convert_units(options.unit_scale)
    if options.axis_convention is not None and options.axis_convention != scene.up_axis:
        DebugConsole.log(f"[Axis] {scene.up_axis} -> {options.axis_convention}")
        scene.convert_axis_system(options.axis_convention)


def model_flags(options: ExportOptions, skeleton: Optional[SkeletonData] = None) -> int:
    flags = 0
    if options.include_skin and skeleton is not None and skeleton.bone_count > 0:
        flags |= ModelFlags.Skinned
    if options.mirror_x:
        flags |= ModelFlags.MirroredX
    if options.generate_tangents:
        flags |= ModelFlags.HasTangents
    return flags


def extract_model(scene: Scene, options: ExportOptions,
                  context: Optional[ExtractionContext] = None) -> ModelBin:
    context = context or ExtractionContext(scene=scene, options=options)
    normalizer = context.normalizer

    if options.include_skeleton:
        context.skeleton = build_skeleton(scene, normalizer, context.issues)

    context.materials, context.material_lookup = collect_materials(scene)
    sub_meshes: List[SubMesh] = build_submeshes(
        scene, options, normalizer, context.material_lookup, context.skeleton, context.issues
    )

    model = ModelBin(
        version=options.model_version,
        flags=model_flags(options, context.skeleton),
        bones=context.skeleton.bones if context.skeleton is not None else [],
        materials=context.materials,
        sub_meshes=sub_meshes,
    )
    if model.is_empty:
        raise EmptyResultError(f"No bones or meshes to export in '{scene.name}'")

    DebugConsole.info(
        f"Model '{scene.name}': bones={len(model.bones)} materials={len(model.materials)} "
        f"submeshes={len(model.sub_meshes)} warnings={len(context.issues)}"
    )
    return model


def extract_animation(scene: Scene, options: ExportOptions, fallback_name: str = "",
                      context: Optional[ExtractionContext] = None) -> Optional[AnimationClip]:
    """The current (else first) animation stack as a clip; None when no track has keys."""
    context = context or ExtractionContext(scene=scene, options=options)
    stack = scene.current_animation_stack()
    if stack is None:
        raise MissingAnimationError(f"No animation stack in '{scene.name}'")

    return extract_clip(
        scene,
        stack,
        context.normalizer,
        clip_name=stack.name or fallback_name or scene.name,
        skeleton_only=options.skeleton_only,
        time_scale=options.time_scale,
        trim_start=options.trim_start,
    )


def output_path_for(source: str, output_dir: str) -> str:
    stem = os.path.splitext(os.path.basename(source))[0]
    return os.path.join(output_dir, stem + OUTPUT_EXTENSION)


def convert_scene(scene: Scene, output_path: str, options: ExportOptions,
                  source_name: str = "") -> Optional[str]:
    """
    Runs the pipeline for an already-imported scene and writes the result.

    Returns the written path, or None for an animation without tracks. The
    container is fully encoded before the destination is touched.
    """
    prepare_scene(scene, options)
    context = ExtractionContext(scene=scene, options=options, source_name=source_name)

    if options.mode == ExportMode.Animation:
        clip = extract_animation(scene, options, source_name, context)
        if clip is None:
            return None
        data = binary_io.encode_animation(clip)
    else:
        data = binary_io.encode_model(extract_model(scene, options, context))

    try:
        binary_io.write_bytes_atomic(output_path, data)
    except OSError as e:
        raise OutputWriteError(f"Cannot write {output_path}: {e}") from e
    DebugConsole.info(f"Saved {output_path} ({len(data)} bytes)")
    return output_path


def convert_file(source: str, output_dir: str, options: ExportOptions,
                 loader: Callable[[str], Scene] = load_scene) -> Optional[str]:
    scene = loader(source)
    stem = os.path.splitext(os.path.basename(source))[0]
    return convert_scene(scene, output_path_for(source, output_dir), options, source_name=stem)
