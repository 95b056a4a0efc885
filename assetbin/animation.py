from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from assetbin import transforms
from assetbin.coordinates import CoordinateNormalizer
from assetbin.debug_console import DebugConsole
from assetbin.scene import AnimationStack, Scene


@dataclass
class KeyframeBin:
    time_sec: float
    translation: np.ndarray  # (3,)
    rotation: np.ndarray  # (4,) unit quaternion, xyzw
    scale: np.ndarray  # (3,)


@dataclass
class TrackBin:
    bone_name: str
    keys: List[KeyframeBin] = field(default_factory=list)

    def times(self) -> List[float]:
        return [k.time_sec for k in self.keys]


@dataclass
class AnimationClip:
    name: str
    duration: float
    tracks: List[TrackBin] = field(default_factory=list)

    @property
    def track_count(self) -> int:
        return len(self.tracks)


def collect_key_times(scene: Scene, node_index: int, start: float, stop: float) -> List[float]:
    """Union of the node's axis-curve key times that fall inside [start, stop]."""
    return [t for t in scene.key_times(node_index) if start <= t <= stop]


def sample_keyframe(scene: Scene, node_index: int, time: float, clip_start: float,
                    normalizer: CoordinateNormalizer, time_scale: float = 1.0) -> KeyframeBin:
    local = normalizer.normalize_transform(scene.evaluate_local_transform(node_index, time))
    translation, rotation, scale = transforms.decompose(local)
    return KeyframeBin(
        time_sec=(time - clip_start) * time_scale,
        translation=translation,
        rotation=transforms.normalize_quaternion(rotation),
        scale=scale,
    )


def _sort_and_collapse(keys: List[KeyframeBin]) -> List[KeyframeBin]:
    # Stable sort; for equal times the last written key wins
    by_time: Dict[float, KeyframeBin] = {}
    for key in sorted(keys, key=lambda k: k.time_sec):
        by_time[key.time_sec] = key
    return list(by_time.values())


def extract_tracks(
        scene: Scene,
        stack: AnimationStack,
        normalizer: CoordinateNormalizer,
        skeleton_only: bool = True,
        time_scale: float = 1.0,
) -> List[TrackBin]:
    """
    One track per candidate node with at least one key, in hierarchy order.

    Nodes sharing a name feed the same track. A key on any axis forces a
    full TRS sample at that time.
    """
    tracks: List[TrackBin] = []
    track_of_name: Dict[str, int] = {}

    for index in scene.traverse():
        if skeleton_only and not scene.is_skeleton(index):
            continue
        if not scene.has_animation(index):
            continue

        name = scene.node(index).name
        if name not in track_of_name:
            track_of_name[name] = len(tracks)
            tracks.append(TrackBin(bone_name=name))
        track = tracks[track_of_name[name]]

        for time in collect_key_times(scene, index, stack.start, stack.stop):
            track.keys.append(
                sample_keyframe(scene, index, time, stack.start, normalizer, time_scale)
            )
        track.keys = _sort_and_collapse(track.keys)

    return tracks


def trim_start_time(tracks: List[TrackBin], duration: float) -> float:
    """
    Drops the leading static pose: shifts every key back by the earliest
    positive key time, discards keys that become negative and returns the
    shortened duration (never below 0). Tracks are modified in place.
    """
    positive = [k.time_sec for track in tracks for k in track.keys if k.time_sec > 0.0]
    if not positive:
        return duration

    min_time = min(positive)
    for track in tracks:
        for key in track.keys:
            key.time_sec -= min_time
        track.keys = [k for k in track.keys if k.time_sec >= 0.0]

    DebugConsole.log(f"[Trim] shifted all keys by -{min_time:.4f}s")
    return max(duration - min_time, 0.0)


def extract_clip(
        scene: Scene,
        stack: AnimationStack,
        normalizer: CoordinateNormalizer,
        clip_name: Optional[str] = None,
        skeleton_only: bool = True,
        time_scale: float = 1.0,
        trim_start: bool = True,
) -> Optional[AnimationClip]:
    """Returns None when no node produced a track."""
    tracks = extract_tracks(scene, stack, normalizer, skeleton_only, time_scale)
    if not tracks:
        DebugConsole.info(f"No keyframes found in stack '{stack.name}'")
        return None

    duration = (stack.stop - stack.start) * time_scale
    if trim_start:
        duration = trim_start_time(tracks, duration)

    clip = AnimationClip(name=clip_name or stack.name, duration=duration, tracks=tracks)
    DebugConsole.log(
        f"[Clip] name=\"{clip.name}\" duration={clip.duration:.4f} tracks={clip.track_count}"
    )
    return clip
