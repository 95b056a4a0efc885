"""
MBIN (model) and ABIN (animation) containers.

Little-endian, unpadded. Strings are a u16 byte length followed by raw
UTF-8 bytes. Encoding happens entirely in memory so a failed write never
leaves a partial file behind.
"""
import io
import os
import struct
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from assetbin.animation import AnimationClip, KeyframeBin, TrackBin
from assetbin.geometry import Material, SubMesh
from assetbin.skeleton import Bone

MODEL_MAGIC = b"MBIN"
ANIMATION_MAGIC = b"ABIN"
ANIMATION_VERSION = 1
# Tracks are matched by bone name at runtime
BONE_INDEX_HINT = -1
MAX_STRING_BYTES = 0xFFFF


class ModelFlags:
    Skinned = 1
    MirroredX = 2
    HasTangents = 4


def vertex_dtype(version: int) -> np.dtype:
    fields = [
        ("position", "<f4", (3,)),
        ("normal", "<f4", (3,)),
        ("uv", "<f4", (2,)),
    ]
    if version >= 2:
        fields.append(("tangent", "<f4", (4,)))
    fields += [
        ("bone_indices", "<u4", (4,)),
        ("bone_weights", "<f4", (4,)),
    ]
    return np.dtype(fields)


KEYFRAME_DTYPE = np.dtype([
    ("time_sec", "<f4"),
    ("translation", "<f4", (3,)),
    ("rotation", "<f4", (4,)),
    ("scale", "<f4", (3,)),
])


@dataclass
class ModelBin:
    version: int = 1
    flags: int = 0
    bones: List[Bone] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    sub_meshes: List[SubMesh] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.bones and not self.sub_meshes


# ==========================================================================
# 1. Writing
# ==========================================================================
class BinaryWriter:
    def __init__(self, stream, endian="<"):
        self.stream = stream
        self.endian = endian

    def write_bytes(self, data: bytes):
        self.stream.write(data)

    def write_struct(self, fmt, *values):
        self.stream.write(struct.pack(self.endian + fmt, *values))

    def write_u16(self, value):
        self.write_struct("H", value)

    def write_u32(self, value):
        self.write_struct("I", value)

    def write_i32(self, value):
        self.write_struct("i", value)

    def write_f32(self, value):
        self.write_struct("f", value)

    def write_string(self, value: str):
        data = (value or "").encode("utf-8")
        if len(data) > MAX_STRING_BYTES:
            raise ValueError(f"String too long for u16 length prefix ({len(data)} bytes)")
        self.write_u16(len(data))
        self.write_bytes(data)

    def write_matrix(self, m):
        self.write_bytes(np.asarray(m, dtype="<f4").reshape(16).tobytes())

    def write_array(self, array: np.ndarray, dtype):
        self.write_bytes(np.ascontiguousarray(array, dtype=dtype).tobytes())


def _pack_vertices(sub_mesh: SubMesh, version: int) -> np.ndarray:
    vertices = np.zeros(sub_mesh.vertex_count, dtype=vertex_dtype(version))
    vertices["position"] = sub_mesh.positions
    vertices["normal"] = sub_mesh.normals
    vertices["uv"] = sub_mesh.uvs
    if version >= 2 and sub_mesh.tangents is not None:
        vertices["tangent"] = sub_mesh.tangents
    vertices["bone_indices"] = sub_mesh.bone_indices
    vertices["bone_weights"] = sub_mesh.bone_weights
    return vertices


def encode_model(model: ModelBin) -> bytes:
    buffer = io.BytesIO()
    writer = BinaryWriter(buffer)

    writer.write_bytes(MODEL_MAGIC)
    writer.write_u32(model.version)
    writer.write_u32(model.flags)
    writer.write_u32(len(model.bones))
    writer.write_u32(len(model.materials))
    writer.write_u32(len(model.sub_meshes))

    for bone in model.bones:
        writer.write_string(bone.name)
        writer.write_i32(bone.parent_index)
        writer.write_matrix(bone.bind_local)
        writer.write_matrix(bone.offset_matrix)

    for material in model.materials:
        writer.write_string(material.name)
        writer.write_string(material.diffuse_texture_name)
        if model.version >= 2:
            writer.write_string(material.normal_texture_name)

    for sub_mesh in model.sub_meshes:
        writer.write_string(sub_mesh.mesh_name)
        writer.write_u32(sub_mesh.material_index)
        writer.write_u32(sub_mesh.vertex_count)
        writer.write_u32(sub_mesh.indices.shape[0])
        writer.write_bytes(_pack_vertices(sub_mesh, model.version).tobytes())
        writer.write_array(sub_mesh.indices, "<u4")

    return buffer.getvalue()


def encode_animation(clip: AnimationClip, version: int = ANIMATION_VERSION) -> bytes:
    buffer = io.BytesIO()
    writer = BinaryWriter(buffer)

    writer.write_bytes(ANIMATION_MAGIC)
    writer.write_u32(version)
    writer.write_string(clip.name)
    writer.write_f32(clip.duration)
    writer.write_u32(len(clip.tracks))

    for track in clip.tracks:
        writer.write_string(track.bone_name)
        writer.write_i32(BONE_INDEX_HINT)
        writer.write_u32(len(track.keys))
        keys = np.zeros(len(track.keys), dtype=KEYFRAME_DTYPE)
        for i, key in enumerate(track.keys):
            keys[i] = (key.time_sec, key.translation, key.rotation, key.scale)
        writer.write_bytes(keys.tobytes())

    return buffer.getvalue()


def write_bytes_atomic(path: str, data: bytes):
    """Writes `data` to a sibling temp file and renames it over `path`."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    temp_path = path + ".tmp"
    try:
        with open(temp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)
    except BaseException:
        if os.path.exists(temp_path):
            os.remove(temp_path)
        raise


def write_model(path: str, model: ModelBin):
    write_bytes_atomic(path, encode_model(model))


def write_animation(path: str, clip: AnimationClip):
    write_bytes_atomic(path, encode_animation(clip))


# ==========================================================================
# 2. Reading
# ==========================================================================
class BinaryReader:
    def __init__(self, stream, endian="<"):
        self.stream = stream
        self.endian = endian

    def read_bytes(self, num_bytes):
        data = self.stream.read(num_bytes)
        if len(data) < num_bytes:
            raise EOFError(
                f"Tried to read {num_bytes} bytes, but only got {len(data)}."
            )
        return data

    def read_struct(self, fmt, num_bytes):
        return struct.unpack(self.endian + fmt, self.read_bytes(num_bytes))

    def read_u16(self):
        return self.read_struct("H", 2)[0]

    def read_u32(self):
        return self.read_struct("I", 4)[0]

    def read_i32(self):
        return self.read_struct("i", 4)[0]

    def read_f32(self):
        return self.read_struct("f", 4)[0]

    def read_string(self):
        length = self.read_u16()
        if length == 0:
            return ""
        return self.read_bytes(length).decode("utf-8")

    def read_matrix(self) -> np.ndarray:
        return np.frombuffer(self.read_bytes(64), dtype="<f4").reshape(4, 4).copy()

    def read_array(self, dtype, count) -> np.ndarray:
        dtype = np.dtype(dtype)
        return np.frombuffer(self.read_bytes(dtype.itemsize * count), dtype=dtype).copy()


class ModelBinParser:
    def __init__(self, data: bytes):
        self.reader = BinaryReader(io.BytesIO(data))
        self.model: Optional[ModelBin] = None

    @classmethod
    def from_file(cls, path: str) -> "ModelBinParser":
        with open(path, "rb") as f:
            return cls(f.read())

    def parse(self) -> ModelBin:
        magic = self.reader.read_bytes(4)
        if magic != MODEL_MAGIC:
            raise ValueError(f"Not a model container (magic {magic!r})")
        self.model = ModelBin(version=self.reader.read_u32(), flags=self.reader.read_u32())
        bone_count = self.reader.read_u32()
        material_count = self.reader.read_u32()
        sub_mesh_count = self.reader.read_u32()

        self.model.bones = [self._read_bone() for _ in range(bone_count)]
        self.model.materials = [self._read_material() for _ in range(material_count)]
        self.model.sub_meshes = [self._read_sub_mesh() for _ in range(sub_mesh_count)]
        return self.model

    def _read_bone(self) -> Bone:
        return Bone(
            name=self.reader.read_string(),
            parent_index=self.reader.read_i32(),
            bind_local=self.reader.read_matrix(),
            offset_matrix=self.reader.read_matrix(),
        )

    def _read_material(self) -> Material:
        material = Material(
            name=self.reader.read_string(),
            diffuse_texture_name=self.reader.read_string(),
        )
        if self.model.version >= 2:
            material.normal_texture_name = self.reader.read_string()
        return material

    def _read_sub_mesh(self) -> SubMesh:
        mesh_name = self.reader.read_string()
        material_index = self.reader.read_u32()
        vertex_count = self.reader.read_u32()
        index_count = self.reader.read_u32()
        vertices = self.reader.read_array(vertex_dtype(self.model.version), vertex_count)
        indices = self.reader.read_array("<u4", index_count)
        return SubMesh(
            mesh_name=mesh_name,
            material_index=material_index,
            positions=vertices["position"],
            normals=vertices["normal"],
            uvs=vertices["uv"],
            bone_indices=vertices["bone_indices"],
            bone_weights=vertices["bone_weights"],
            indices=indices,
            tangents=vertices["tangent"] if self.model.version >= 2 else None,
        )


class AnimationBinParser:
    def __init__(self, data: bytes):
        self.reader = BinaryReader(io.BytesIO(data))
        self.version = 0
        self.bone_index_hints: List[int] = []

    @classmethod
    def from_file(cls, path: str) -> "AnimationBinParser":
        with open(path, "rb") as f:
            return cls(f.read())

    def parse(self) -> AnimationClip:
        magic = self.reader.read_bytes(4)
        if magic != ANIMATION_MAGIC:
            raise ValueError(f"Not an animation container (magic {magic!r})")
        self.version = self.reader.read_u32()
        clip = AnimationClip(name=self.reader.read_string(), duration=self.reader.read_f32())
        track_count = self.reader.read_u32()
        clip.tracks = [self._read_track() for _ in range(track_count)]
        return clip

    def _read_track(self) -> TrackBin:
        track = TrackBin(bone_name=self.reader.read_string())
        self.bone_index_hints.append(self.reader.read_i32())
        key_count = self.reader.read_u32()
        keys = self.reader.read_array(KEYFRAME_DTYPE, key_count)
        track.keys = [
            KeyframeBin(
                time_sec=float(k["time_sec"]),
                translation=k["translation"].copy(),
                rotation=k["rotation"].copy(),
                scale=k["scale"].copy(),
            )
            for k in keys
        ]
        return track
