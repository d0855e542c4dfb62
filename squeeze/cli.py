from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from .batch import process_batch
from .compress import CompressionOrchestrator
from .errors import DecodeError
from .models import CompressionRequest
from .planner import encode_options, plan_to_dict
from .presets import PRESET_NAMES, apply_preset
from .report import build_report, save_report_csv, save_report_json
from .settings import DEFAULT_SETTINGS, BatchSettings, CompressSettings, load_settings


def _quality(text: str) -> int:
    value = int(text)
    if not 1 <= value <= 100:
        raise argparse.ArgumentTypeError("quality must be between 1 and 100")
    return value


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--legacy", action="store_true", help="Client cannot take AVIF; output JPEG (WebP if animated)")
    p.add_argument("--quality", type=_quality, default=82, help="Encoder quality (1-100), default 82")
    p.add_argument("--grayscale", action="store_true", help="Convert to grayscale before any other filter")
    p.add_argument("--preset", choices=PRESET_NAMES, default="default", help="Tuning preset (default: default)")
    p.add_argument("--config", default=None, help="JSON file with setting overrides")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="squeeze",
        description="Adaptive image re-encoder (AVIF/JPEG/WebP)",
    )
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    sub = p.add_subparsers(dest="command", required=True)

    comp = sub.add_parser("compress", help="Re-encode images in files/folders")
    comp.add_argument("inputs", nargs="+", help="Files and/or folders to process")

    # Output
    comp.add_argument("--out", required=True, help="Output directory")
    comp.add_argument("--overwrite", action="store_true", help="Overwrite output files if they exist")
    comp.add_argument(
        "--write-bigger",
        action="store_true",
        help="Write the output even when it is not smaller than the source",
    )
    comp.add_argument(
        "--keep-original-on-failure",
        action="store_true",
        help="Copy the source through when it cannot be compressed",
    )
    comp.add_argument("--suffix", default="_squeezed", help="Filename suffix (default: _squeezed)")
    comp.add_argument("--no-recursive", action="store_true", help="Do not scan folders recursively")
    _add_common(comp)

    plan = sub.add_parser("plan", help="Print the encode plan for one image as JSON")
    plan.add_argument("input", help="Image file")
    _add_common(plan)

    return p


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load_compress_settings(args: argparse.Namespace) -> CompressSettings:
    settings = apply_preset(args.preset, DEFAULT_SETTINGS)
    if args.config:
        settings = load_settings(Path(args.config), settings)
    return settings


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    try:
        compress_settings = _load_compress_settings(args)
    except (OSError, ValueError) as exc:
        print(f"Invalid settings: {exc}")
        return 2

    orchestrator = CompressionOrchestrator(settings=compress_settings)

    if args.command == "plan":
        src = Path(args.input)
        try:
            data = src.read_bytes()
            request = CompressionRequest(
                modern_format=not args.legacy,
                quality=args.quality,
                grayscale=bool(args.grayscale),
                origin_size=len(data),
                source_url=src.resolve().as_uri(),
            )
            info, plan = orchestrator.plan(data, request)
        except (OSError, DecodeError) as exc:
            print(f"Cannot read {src}: {exc}")
            return 1

        payload = {
            "source": {"width": info.width, "height": info.height, "frame_count": info.frame_count},
            "plan": plan_to_dict(plan),
            "encode_options": encode_options(plan, compress_settings),
        }
        print(json.dumps(payload, indent=2))
        return 0

    if args.command == "compress":
        inputs = [Path(p) for p in args.inputs]
        out_dir = Path(args.out)

        settings = BatchSettings(
            output_dir=out_dir,
            overwrite=bool(args.overwrite),
            only_if_smaller=not bool(args.write_bigger),
            suffix=str(args.suffix),
            modern_format=not bool(args.legacy),
            quality=int(args.quality),
            grayscale=bool(args.grayscale),
            keep_original_on_failure=bool(args.keep_original_on_failure),
        )

        results, summary = process_batch(
            inputs,
            settings,
            recursive=not bool(args.no_recursive),
            orchestrator=orchestrator,
        )

        # Print summary
        print("\n=== Batch Summary ===")
        print("Total found:", summary.total_files)
        print("Processed  :", summary.processed)
        print("Skipped    :", summary.skipped)
        print("Fallbacks  :", summary.fallbacks)
        print(f"Saved      : {summary.saved_bytes} bytes ({summary.saved_percent:.1f}%)")

        # Skip reasons breakdown
        reasons: dict[str, int] = {}
        for r in results:
            if not r.changed and r.skipped_reason:
                reasons[r.skipped_reason] = reasons.get(r.skipped_reason, 0) + 1

        if reasons:
            print("\nSkip reasons:")
            for k, v in sorted(reasons.items(), key=lambda x: (-x[1], x[0])):
                print(f"  {k}: {v}")

        # Reports
        report = build_report(results, summary)

        json_path = out_dir / "report.json"
        save_report_json(report, json_path)

        csv_path = out_dir / "report.csv"
        save_report_csv(report, csv_path)

        print("\nReport written:", json_path)
        print("CSV written   :", csv_path)
        return 0

    parser.print_help()
    return 2
