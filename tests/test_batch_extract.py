import os

import trimesh

import batch_extract
from assetbin.binary_io import ModelBinParser
from assetbin.errors import SceneImportError
from assetbin.options import ExportMode, ExportOptions
from assetbin.scene import NodeAttribute
from assetbin.scene_loaders import load_scene


def picky_loader(path):
    if os.path.basename(path).startswith("bad"):
        raise SceneImportError(f"cannot read {path}")
    return load_scene(path)


def long_name_loader(path):
    scene = load_scene(path)
    if os.path.basename(path).startswith("a"):
        scene.add_node("x" * 70000, attribute=NodeAttribute.Skeleton)
    return scene


def crashing_loader(path):
    if os.path.basename(path).startswith("a"):
        raise RuntimeError("loader crashed")
    return load_scene(path)


def make_import_folder(tmp_path, names=("a.obj", "b.obj")):
    folder = tmp_path / "import"
    folder.mkdir()
    for name in names:
        trimesh.creation.box().export(str(folder / name))
    (folder / "notes.txt").write_text("ignored")
    return folder


def test_batch_converts_every_scene_file(tmp_path):
    source = make_import_folder(tmp_path)
    out = tmp_path / "export"
    extractor = batch_extract.BatchExtractor(source, out, ExportOptions.preset(ExportMode.Static))

    processed, failed = extractor.batch_process()

    assert (processed, failed) == (2, 0)
    assert sorted(os.listdir(out)) == ["a.bin", "b.bin"]
    model = ModelBinParser.from_file(str(out / "a.bin")).parse()
    assert model.bones == []
    assert model.sub_meshes[0].indices.shape == (36,)


def test_batch_skips_failures_and_continues(tmp_path):
    source = make_import_folder(tmp_path, ("a.obj", "bad.obj", "c.obj"))
    out = tmp_path / "export"
    extractor = batch_extract.BatchExtractor(
        source, out, ExportOptions.preset(ExportMode.Static), loader=picky_loader
    )

    processed, failed = extractor.batch_process()

    assert (processed, failed) == (3, 1)
    assert sorted(os.listdir(out)) == ["a.bin", "c.bin"]


def test_batch_with_worker_processes(tmp_path):
    source = make_import_folder(tmp_path)
    out = tmp_path / "export"
    extractor = batch_extract.BatchExtractor(
        source, out, ExportOptions.preset(ExportMode.Static), jobs=2
    )
    assert extractor.batch_process() == (2, 0)
    assert sorted(os.listdir(out)) == ["a.bin", "b.bin"]


def test_animation_mode_on_static_files_fails_every_file(tmp_path):
    source = make_import_folder(tmp_path)
    out = tmp_path / "export"
    status = batch_extract.main([str(source), str(out), "--mode", "animation"])
    assert status == 1
    assert os.listdir(out) == []


def test_main_builds_options_from_flags(tmp_path):
    source = make_import_folder(tmp_path, ("a.obj",))
    out = tmp_path / "export"

    status = batch_extract.main([
        str(source), str(out), "--mode", "static", "--no-mirror-x", "--tangents", "--scale", "2",
    ])

    assert status == 0
    model = ModelBinParser.from_file(str(out / "a.bin")).parse()
    assert model.version == 2
    assert model.flags == 4
    assert abs(model.sub_meshes[0].positions).max() == 1.0


def test_empty_input_folder(tmp_path):
    source = tmp_path / "import"
    source.mkdir()
    extractor = batch_extract.BatchExtractor(source, tmp_path / "export")
    assert extractor.batch_process() == (0, 0)


def test_encoding_error_only_fails_its_own_file(tmp_path):
    source = make_import_folder(tmp_path)
    out = tmp_path / "export"
    extractor = batch_extract.BatchExtractor(source, out, loader=long_name_loader)

    processed, failed = extractor.batch_process()

    assert (processed, failed) == (2, 1)
    assert os.listdir(out) == ["b.bin"]


def test_unexpected_error_is_reported_with_its_type():
    source, written, error = batch_extract._convert_one(
        "import/a.obj", "export", ExportOptions(), crashing_loader
    )
    assert written is None
    assert error == "RuntimeError: loader crashed"


def test_main_unit_scale_flag(tmp_path):
    source = make_import_folder(tmp_path, ("a.obj",))
    out = tmp_path / "export"

    status = batch_extract.main([str(source), str(out), "--mode", "static", "--unit-scale", "3"])

    assert status == 0
    model = ModelBinParser.from_file(str(out / "a.bin")).parse()
    assert abs(model.sub_meshes[0].positions).max() == 1.5
