"""
Batch converter: every scene file in the import folder becomes an MBIN
model or ABIN animation file in the export folder.
"""
import logging
import sys
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path

from assetbin.debug_console import DebugConsole
from assetbin.errors import ExtractionError
from assetbin.options import ExportMode, ExportOptions
from assetbin.pipeline import convert_file
from assetbin.scene_loaders import SUPPORTED_EXTENSIONS, load_scene


def _convert_one(source, output_folder, options, loader=load_scene):
    """Worker entry point. Returns (source, written path or None, error or None)."""
    try:
        return source, convert_file(source, output_folder, options, loader), None
    except ExtractionError as e:
        return source, None, str(e)
    except Exception as e:
        return source, None, f"{type(e).__name__}: {e}"


class BatchExtractor:
    """Converts a folder of scene files, one independent pipeline per file"""

    DEFAULT_INPUT = "import"
    DEFAULT_OUTPUT = "export"

    def __init__(self, input_folder=None, output_folder=None, options=None,
                 jobs=1, loader=load_scene):
        self.input_folder = Path(input_folder or self.DEFAULT_INPUT)
        self.output_folder = Path(output_folder or self.DEFAULT_OUTPUT)
        self.options = options or ExportOptions.preset(ExportMode.Model)
        self.jobs = max(1, int(jobs))
        self.loader = loader

        self.output_folder.mkdir(parents=True, exist_ok=True)

    def find_sources(self):
        return sorted(
            p for p in self.input_folder.iterdir()
            if p.is_file() and p.suffix.lower() in SUPPORTED_EXTENSIONS
        )

    def _report(self, idx, total, source, written, error):
        name = Path(source).name
        if error is not None:
            print(f"[{idx}/{total}] {name}  [ERROR] {error}")
            DebugConsole.error(f"Skipped {name}: {error}")
        elif written is None:
            print(f"[{idx}/{total}] {name}  [SKIP] nothing to write")
        else:
            print(f"[{idx}/{total}] {name}  [OK] {Path(written).name}")

    def batch_process(self):
        """Returns (processed, failed) file counts."""
        if not self.input_folder.is_dir():
            print(f"Input folder not found: {self.input_folder}")
            return 0, 0

        sources = [str(p) for p in self.find_sources()]
        if not sources:
            print(f"No scene files found in {self.input_folder}")
            return 0, 0

        print(f"Found {len(sources)} scene files, mode={self.options.mode}")
        output_folder = str(self.output_folder)

        if self.jobs == 1:
            results = (_convert_one(s, output_folder, self.options, self.loader) for s in sources)
            failed = self._collect(results, len(sources))
        else:
            with ProcessPoolExecutor(max_workers=self.jobs) as pool:
                futures = [
                    pool.submit(_convert_one, s, output_folder, self.options, self.loader)
                    for s in sources
                ]
                failed = self._collect((f.result() for f in futures), len(sources))

        print(f"\n{'=' * 60}")
        print(f"Completed: {len(sources) - failed}/{len(sources)} files")
        print(f"{'=' * 60}")
        return len(sources), failed

    def _collect(self, results, total):
        failed = 0
        for idx, (source, written, error) in enumerate(results, 1):
            self._report(idx, total, source, written, error)
            if error is not None:
                failed += 1
        return failed


def build_options(args) -> ExportOptions:
    overrides = {}
    if args.mirror_x is not None:
        overrides["mirror_x"] = args.mirror_x
    if args.tangents:
        overrides["generate_tangents"] = True
    if args.unit_scale is not None:
        overrides["unit_scale"] = args.unit_scale
    if args.scale is not None:
        overrides["length_scale"] = args.scale
    if args.axis is not None:
        overrides["axis_convention"] = args.axis
    if args.negate_static_axes:
        overrides["negate_static_axes"] = True
    return ExportOptions.preset(args.mode, **overrides)


def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description='Convert scene files to MBIN/ABIN binaries')
    parser.add_argument('input_folder', nargs='?', default=None,
                        help=f'Folder containing scene files (default: {BatchExtractor.DEFAULT_INPUT})')
    parser.add_argument('output_folder', nargs='?', default=None,
                        help=f'Folder to write .bin files (default: {BatchExtractor.DEFAULT_OUTPUT})')
    parser.add_argument('--mode', '-m', choices=ExportMode.ALL, default=ExportMode.Model,
                        help='Output kind (default: model)')
    parser.add_argument('--mirror-x', dest='mirror_x', action='store_true', default=None,
                        help='Mirror the X axis (preset default)')
    parser.add_argument('--no-mirror-x', dest='mirror_x', action='store_false',
                        help='Keep the source handedness')
    parser.add_argument('--tangents', action='store_true',
                        help='Generate tangents (model version 2)')
    parser.add_argument('--unit-scale', type=float, default=None,
                        help='Rescale the whole scene on import (e.g. 0.01 for cm to m)')
    parser.add_argument('--scale', type=float, default=None,
                        help='Length scale applied to translations and positions')
    parser.add_argument('--axis', choices=('y_up', 'z_up'), default=None,
                        help='Convert the scene to this up axis first')
    parser.add_argument('--negate-static-axes', action='store_true',
                        help='Apply the legacy -I correction to the static bake')
    parser.add_argument('--jobs', '-j', type=int, default=1,
                        help='Number of worker processes')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        options = build_options(args)
    except ValueError as e:
        parser.error(str(e))

    extractor = BatchExtractor(args.input_folder, args.output_folder, options, args.jobs)
    processed, failed = extractor.batch_process()
    return 1 if processed > 0 and failed == processed else 0


if __name__ == "__main__":
    sys.exit(main())
