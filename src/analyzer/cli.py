"""CLI entry-point for the log health analyzer.

Usage examples
--------------
# Replay an export of rendered event XML:
python -m src.analyzer.cli --input "data/*.xml"

# JSONL snapshot, settings file, only Disk and Ntfs providers:
python -m src.analyzer.cli --config config/settings.yaml --input data/system.jsonl \\
    --providers Disk,Microsoft-Windows-Ntfs

# Explicit window and PCI location labels:
python -m src.analyzer.cli --input data/system.jsonl --since 2026-02-01T00:00:00Z \\
    --bdf-overrides "1:0:0=Discrete GPU;0:2:0=iGPU"
"""

from __future__ import annotations

import argparse
import dataclasses

from src.analyzer.pipeline import run_pipeline
from src.shared.logger import setup_logging
from src.shared.settings import Settings, load_settings


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _csv_ints(value: str) -> list[int]:
    return [int(v) for v in _csv(value)]


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="analyzer",
        description="System-log health analyzer: normalise, correlate, score",
    )
    p.add_argument(
        "--config",
        default=None,
        help="Settings YAML. Flags given on the command line take precedence.",
    )
    p.add_argument(
        "--input",
        default=None,
        help="Input file or glob (.xml, .jsonl, .ndjson). Default: data/*.jsonl",
    )
    p.add_argument("--out-dir", default=None, help="Output directory. Default: out/")
    p.add_argument(
        "--rules",
        dest="rules_path",
        default=None,
        help="Declarative hint rules (YAML/JSON). Default: config/rules.yaml",
    )
    p.add_argument("--top", type=int, default=None, help="Rows per top-N table. Default: 20")
    p.add_argument(
        "--sample-count", type=int, default=None, help="Number of sample events. Default: 20"
    )
    p.add_argument("--per-channel-limit", dest="per_channel_sample_limit", type=int, default=None)
    p.add_argument(
        "--per-provider-limit", dest="per_provider_sample_limit", type=int, default=None
    )
    p.add_argument(
        "--patterns",
        type=_csv,
        default=None,
        help="Comma-separated regex keyword patterns for matched-term counts.",
    )

    sel = p.add_argument_group("record selection")
    sel.add_argument("--providers", type=_csv, default=None, help="Only these providers.")
    sel.add_argument("--exclude-providers", type=_csv, default=None)
    sel.add_argument("--include-event-ids", type=_csv_ints, default=None)
    sel.add_argument("--exclude-event-ids", type=_csv_ints, default=None)
    sel.add_argument("--min-level", type=int, default=None)
    sel.add_argument("--max-level", type=int, default=None)
    sel.add_argument(
        "--include-info",
        action="store_true",
        default=None,
        help="Also keep Information (level 4) events.",
    )
    sel.add_argument(
        "--no-level-filter",
        action="store_true",
        default=None,
        help="Keep events of every level.",
    )
    sel.add_argument("--since", default=None, help="Window start (RFC 3339).")
    sel.add_argument("--until", default=None, help="Window end (RFC 3339).")

    p.add_argument(
        "--bdf-overrides",
        default=None,
        help='PCI location labels, e.g. "1:0:0=Discrete GPU;0:2:0=iGPU".',
    )
    p.add_argument(
        "--no-decode",
        dest="decode",
        action="store_false",
        default=None,
        help="Keep raw payload text instead of decoded messages.",
    )
    p.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level. Default: INFO",
    )
    p.add_argument("--log-format", default=None, choices=["text", "json"])
    p.add_argument("--log-path", default=None, help="Also write log records to this file.")
    return p


def merge_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply every flag that was given on top of *settings*."""
    overrides = {
        f.name: getattr(args, f.name)
        for f in dataclasses.fields(Settings)
        if getattr(args, f.name, None) is not None
    }
    return dataclasses.replace(settings, **overrides)


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    settings = merge_args(load_settings(args.config), args)
    setup_logging(settings.log_level, settings.log_format, settings.log_path)

    run_pipeline(
        input_path=settings.input,
        out_dir=settings.out_dir,
        settings=settings,
    )


if __name__ == "__main__":
    main()
