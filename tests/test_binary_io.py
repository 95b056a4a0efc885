import io
import os
import struct

import numpy as np
import pytest

from assetbin import transforms
from assetbin.animation import AnimationClip, KeyframeBin, TrackBin
from assetbin.binary_io import (
    AnimationBinParser,
    BinaryReader,
    BinaryWriter,
    ModelBin,
    ModelBinParser,
    ModelFlags,
    encode_animation,
    encode_model,
    write_animation,
    write_model,
)
from assetbin.geometry import Material, SubMesh
from assetbin.skeleton import Bone


def sample_sub_mesh(with_tangents=False):
    return SubMesh(
        mesh_name="Body",
        material_index=1,
        positions=[(0, 0, 0), (1, 0, 0), (0, 1, 0)],
        normals=[(0, 0, 1)] * 3,
        uvs=[(0, 1), (1, 1), (0, 0)],
        bone_indices=[(0, 1, 0, 0)] * 3,
        bone_weights=[(0.75, 0.25, 0, 0)] * 3,
        indices=[0, 2, 1],
        tangents=[(1, 0, 0, -1)] * 3 if with_tangents else None,
    )


def sample_model(version=1):
    return ModelBin(
        version=version,
        flags=ModelFlags.Skinned | ModelFlags.MirroredX,
        bones=[
            Bone("Root", -1),
            Bone("Ärm", 0,
                 bind_local=transforms.compose_euler((0.1, 0.2, 0.3), (10, 20, 30), (1, 1, 1)),
                 offset_matrix=transforms.create_from_translation((-0.1, -0.2, -0.3))),
        ],
        materials=[Material("Skin", "body_d", "body_n"), Material("Steel", "steel")],
        sub_meshes=[sample_sub_mesh(version >= 2)],
    )


def sample_clip():
    keys = [
        KeyframeBin(0.0, np.array([1.0, 2.0, 3.0]), np.array([0.0, 0.0, 0.0, 1.0]), np.ones(3)),
        KeyframeBin(1 / 3, np.array([1.5, 2.0, 3.0]), np.array([0.0, 0.0, 0.6, 0.8]), np.ones(3) * 2),
    ]
    return AnimationClip("Walk", 1.25, [TrackBin("Root", keys), TrackBin("Empty", [])])


def test_string_encoding():
    buffer = io.BytesIO()
    BinaryWriter(buffer).write_string("abc")
    assert buffer.getvalue() == b"\x03\x00abc"
    assert BinaryReader(io.BytesIO(b"\x03\x00abc")).read_string() == "abc"


def test_string_too_long():
    with pytest.raises(ValueError):
        BinaryWriter(io.BytesIO()).write_string("x" * 70000)


def test_model_header_layout():
    data = encode_model(sample_model())
    magic, version, flags, bones, materials, sub_meshes = struct.unpack_from("<4sIIIII", data)
    assert (magic, version, flags) == (b"MBIN", 1, 3)
    assert (bones, materials, sub_meshes) == (2, 2, 1)


@pytest.mark.parametrize("version,vertex_size", [(1, 64), (2, 80)])
def test_model_size_has_no_padding(version, vertex_size):
    data = encode_model(sample_model(version))
    name_bytes = len("Ärm".encode("utf-8"))
    bones = (2 + 4 + 4 + 128) + (2 + name_bytes + 4 + 128)
    materials = (2 + 4) + (2 + 6) + (2 + 5) + (2 + 5)
    if version >= 2:
        materials += (2 + 6) + 2
    sub_mesh = 2 + 4 + 12 + 3 * vertex_size + 3 * 4
    assert len(data) == 24 + bones + materials + sub_mesh


def test_bone_matrix_translation_offsets():
    data = encode_model(ModelBin(bones=[Bone("B", -1, transforms.create_from_translation((7, 8, 9)))]))
    # header, name, parent index, then bindLocal
    floats = struct.unpack_from("<16f", data, 24 + 2 + 1 + 4)
    assert floats[12:15] == (7.0, 8.0, 9.0)


@pytest.mark.parametrize("version", [1, 2])
def test_model_round_trip(version):
    model = sample_model(version)
    data = encode_model(model)

    decoded = ModelBinParser(data).parse()

    assert (decoded.version, decoded.flags) == (version, model.flags)
    assert [b.name for b in decoded.bones] == ["Root", "Ärm"]
    assert [b.parent_index for b in decoded.bones] == [-1, 0]
    np.testing.assert_array_equal(decoded.bones[1].bind_local,
                                  model.bones[1].bind_local.astype(np.float32))
    assert decoded.materials[1].name == "Steel"
    if version >= 2:
        assert decoded.materials[0].normal_texture_name == "body_n"
        np.testing.assert_array_equal(decoded.sub_meshes[0].tangents, model.sub_meshes[0].tangents)
    else:
        assert decoded.sub_meshes[0].tangents is None
    sub_mesh = decoded.sub_meshes[0]
    np.testing.assert_array_equal(sub_mesh.indices, [0, 2, 1])
    np.testing.assert_array_equal(sub_mesh.bone_weights, model.sub_meshes[0].bone_weights)
    assert encode_model(decoded) == data


def test_animation_layout_and_round_trip():
    clip = sample_clip()
    data = encode_animation(clip)

    assert data[:4] == b"ABIN"
    parser = AnimationBinParser(data)
    decoded = parser.parse()

    assert parser.version == 1
    assert parser.bone_index_hints == [-1, -1]
    assert decoded.name == "Walk"
    assert decoded.duration == 1.25
    assert [t.bone_name for t in decoded.tracks] == ["Root", "Empty"]
    assert decoded.tracks[0].keys[1].time_sec == float(np.float32(1 / 3))
    np.testing.assert_array_equal(decoded.tracks[0].keys[1].rotation, np.float32([0.0, 0.0, 0.6, 0.8]))
    assert decoded.tracks[1].keys == []
    assert encode_animation(decoded) == data


def test_key_record_is_44_bytes():
    clip = AnimationClip("", 0.0, [TrackBin("R", [sample_clip().tracks[0].keys[0]])])
    # magic, version, name, duration, track count, bone name, hint, key count, one key
    assert len(encode_animation(clip)) == 4 + 4 + 2 + 4 + 4 + 3 + 4 + 4 + 44


def test_parsers_reject_wrong_magic():
    with pytest.raises(ValueError):
        ModelBinParser(encode_animation(sample_clip())).parse()
    with pytest.raises(ValueError):
        AnimationBinParser(encode_model(sample_model())).parse()


def test_parsers_reject_truncated_data():
    with pytest.raises(EOFError):
        ModelBinParser(encode_model(sample_model())[:-3]).parse()
    with pytest.raises(EOFError):
        AnimationBinParser(encode_animation(sample_clip())[:20]).parse()


def test_write_files(tmp_path):
    model_path = str(tmp_path / "out" / "model.bin")
    anim_path = str(tmp_path / "out" / "anim.bin")

    write_model(model_path, sample_model())
    write_animation(anim_path, sample_clip())

    assert ModelBinParser.from_file(model_path).parse().bones[0].name == "Root"
    assert AnimationBinParser.from_file(anim_path).parse().name == "Walk"
    assert sorted(os.listdir(tmp_path / "out")) == ["anim.bin", "model.bin"]
