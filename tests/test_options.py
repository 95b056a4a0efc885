import dataclasses

import pytest

from assetbin.options import ExportMode, ExportOptions, MeshFilter


def test_presets():
    static = ExportOptions.preset(ExportMode.Static)
    assert not static.include_skeleton
    assert not static.include_skin
    assert static.mesh_filter == MeshFilter.Static
    assert static.length_scale == 1.0

    skinned = ExportOptions.preset(ExportMode.Skinned)
    assert skinned.include_skin and skinned.mirror_x
    assert skinned.mesh_filter == MeshFilter.Skinned

    animation = ExportOptions.preset(ExportMode.Animation)
    assert animation.mode == ExportMode.Animation
    assert animation.length_scale == pytest.approx(0.01)


def test_preset_overrides():
    options = ExportOptions.preset(ExportMode.Model, mirror_x=False, generate_tangents=True)
    assert not options.mirror_x
    assert options.model_version == 2
    assert ExportOptions().model_version == 1


def test_normalizer_follows_options():
    normalizer = ExportOptions(length_scale=0.5, mirror_x=False).normalizer()
    assert normalizer.length_scale == 0.5
    assert not normalizer.mirror_x


@pytest.mark.parametrize("kwargs", [
    {"mode": "bogus"},
    {"mesh_filter": "some"},
    {"axis_convention": "x_up"},
    {"length_scale": 0.0},
    {"unit_scale": 0.0},
    {"time_scale": -1.0},
    {"include_skeleton": False, "include_skin": True},
])
def test_invalid_options_rejected(kwargs):
    with pytest.raises(ValueError):
        ExportOptions(**kwargs)


def test_unknown_preset():
    with pytest.raises(ValueError):
        ExportOptions.preset("bogus")


def test_options_are_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        ExportOptions().mirror_x = False


def test_unit_scale_defaults_to_no_rescale():
    assert ExportOptions().unit_scale == 1.0
    assert ExportOptions.preset(ExportMode.Animation, unit_scale=0.01).unit_scale == 0.01
