#!/usr/bin/env python3
"""Nightly activite-deputes pipeline.

Downloads the four open-data archives, recomputes the P30/P180/LEG
aggregates and the group PPL shards, and publishes them into the site root.
A failed run exits with status 1 and leaves the published tree untouched.

Usage::

    python scripts/run_pipeline.py                      # full run
    python scripts/run_pipeline.py --skip-download      # re-parse pipeline/.work
    python scripts/run_pipeline.py --today 2024-06-30   # pin the window end
    AD_PROFILE=prod python scripts/run_pipeline.py      # publish into site/
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import date
from pathlib import Path

from rich.console import Console
from rich.table import Table

# Ensure the project is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT / "src"))

from activite_deputes import config as cfg  # noqa: E402
from activite_deputes.errors import PipelineError  # noqa: E402
from activite_deputes.etl import PipelineReport, run_pipeline  # noqa: E402

console = Console()


def _print_summary(report: PipelineReport, elapsed: float) -> None:
    summary = Table(
        title="Pipeline Complete",
        show_lines=True,
        title_style="bold green",
    )
    summary.add_column("Step", style="bold")
    summary.add_column("Output", style="dim")

    for info in report.sources:
        summary.add_row(
            f"Source {info.key}",
            f"{info.size_bytes:,} bytes, etag {info.etag or '-'}",
        )
    summary.add_row(
        "Parse",
        (
            f"{report.deputes} deputes, {report.scrutins:,} scrutins, "
            f"{report.amendements:,} amendements, {report.dossiers:,} dossiers"
        ),
    )
    for key, rows in report.rows_per_window.items():
        summary.add_row(f"Window {key}", f"{rows} rows")
    summary.add_row(
        "Group PPL",
        (
            f"{report.ppl_unique} bills across {report.ppl_groups} groups "
            f"({report.ppl_unresolved_sample} unresolved signers sampled)"
        ),
    )
    for family, count in sorted(report.files_written.items()):
        summary.add_row(f"Files {family}", str(count))
    summary.add_row("[bold]Total[/]", f"[bold]{elapsed:.1f}s[/]")

    console.print(summary)
    console.print(f"\n[dim]Published to {report.published_to}/[/]")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Assemblée nationale activity pipeline.",
    )
    parser.add_argument(
        "--skip-download",
        action="store_true",
        help="Reuse the extracted archives in the work directory.",
    )
    parser.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Last day of the reporting windows (YYYY-MM-DD, default: today).",
    )
    parser.add_argument(
        "--site-dir",
        type=Path,
        default=cfg.SITE_DIR,
        help=f"Site root receiving data/ and exports/ (default: {cfg.SITE_DIR}).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Debug logging.",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger = logging.getLogger("run_pipeline")
    logger.info("Profile %s, legislature %d", cfg.PROFILE, cfg.LEGISLATURE)

    t0 = time.perf_counter()
    try:
        report = run_pipeline(
            today=args.today,
            skip_download=args.skip_download,
            site_dir=args.site_dir,
        )
    except PipelineError as exc:
        logger.error("Pipeline failed, published site left untouched: %s", exc)
        return 1

    _print_summary(report, time.perf_counter() - t0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
