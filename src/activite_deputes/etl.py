"""Pipeline orchestration: download, parse, aggregate, resolve, export, publish.

The stages run strictly in sequence.  Any :class:`PipelineError` raised by a
stage propagates out of :func:`run_pipeline` before :func:`publish` is
reached, so the live site keeps serving the last good publish.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path

import requests

from . import config as cfg
from .aggregator import AllAggregates, compute_all
from .config import Source
from .downloader import EtagCache, SourceInfo, download_all, sources_from_cache
from .exporter import SiteExporter, publish
from .group_ppl import GroupPplResult, resolve_group_ppl
from .models import RawDataset
from .parsers.dataset import parse_all
from .run_log import RunLogger

LOGGER = logging.getLogger(__name__)


@dataclass
class PipelineReport:
    """What one run produced; printed by the CLI and stored in the run log."""

    sources: list[SourceInfo]
    deputes: int = 0
    scrutins: int = 0
    amendements: int = 0
    dossiers: int = 0
    rows_per_window: dict[str, int] = field(default_factory=dict)
    ppl_groups: int = 0
    ppl_unique: int = 0
    ppl_unresolved_sample: int = 0
    files_written: dict[str, int] = field(default_factory=dict)
    published_to: Path | None = None

    def as_meta(self) -> dict:
        return {
            "deputes": self.deputes,
            "scrutins": self.scrutins,
            "amendements": self.amendements,
            "dossiers": self.dossiers,
            "rows_per_window": dict(self.rows_per_window),
            "ppl_groups": self.ppl_groups,
            "ppl_unique": self.ppl_unique,
            "files_written": sum(self.files_written.values()),
        }


def fetch_sources(
    work_dir: Path,
    sources: tuple[Source, ...] | list[Source] = cfg.DEFAULT_SOURCES,
    *,
    skip_download: bool = False,
    session: requests.Session | None = None,
) -> list[SourceInfo]:
    """Download every source (or reuse the work dir) and persist the ETag cache.

    The cache is written only after the whole batch succeeded; a failed batch
    raises :class:`~activite_deputes.errors.FetchError` and leaves it as is.
    """
    cache_path = work_dir / cfg.ETAG_CACHE_FILE
    cache = EtagCache.load(cache_path)
    if skip_download:
        LOGGER.info("Skipping download; reusing %s", work_dir)
        return sources_from_cache(sources, cache)

    infos = download_all(sources, work_dir, cache, session=session)
    cache.merged(infos).save(cache_path)
    return infos


def run_pipeline(
    *,
    today: date | None = None,
    now: datetime | None = None,
    skip_download: bool = False,
    work_dir: Path = cfg.WORK_DIR,
    scratch_dir: Path = cfg.SCRATCH_DIR,
    site_dir: Path = cfg.SITE_DIR,
    sources: tuple[Source, ...] | list[Source] = cfg.DEFAULT_SOURCES,
    session: requests.Session | None = None,
    run_log_path: Path | None = None,
) -> PipelineReport:
    """Run every stage and publish into *site_dir*.

    *now* stamps ``status.json``; *today* closes the three reporting windows
    and defaults to the date part of *now*.
    """
    now = now or datetime.now(timezone.utc)
    today = today or now.date()

    with RunLogger("pipeline", log_path=run_log_path, meta={"today": today.isoformat()}) as log:
        with log.phase_ctx("download", detail="skipped" if skip_download else None):
            infos = fetch_sources(
                work_dir, sources, skip_download=skip_download, session=session
            )
        report = PipelineReport(sources=infos)

        with log.phase_ctx("parse"):
            raw: RawDataset = parse_all(work_dir)
        report.deputes = len(raw.deputes)
        report.scrutins = len(raw.scrutins)
        report.amendements = len(raw.amendements)
        report.dossiers = len(raw.dossiers)

        with log.phase_ctx("aggregate"):
            aggregates: AllAggregates = compute_all(raw, today)
        report.rows_per_window = {p.key: len(aggregates.rows(p.key)) for p in aggregates.periods}

        with log.phase_ctx("resolve"):
            group_ppl: GroupPplResult = resolve_group_ppl(
                raw.deputes,
                raw.dossiers,
                duplicate_ids=raw.duplicate_depute_ids,
            )
        report.ppl_groups = len(group_ppl.groups)
        report.ppl_unique = group_ppl.total_unique_ppl
        report.ppl_unresolved_sample = len(group_ppl.unresolved_sample)

        with log.phase_ctx("export"):
            exporter = SiteExporter(scratch_dir, now=now)
            report.files_written = exporter.export(
                deputes=raw.deputes,
                dossiers=raw.dossiers,
                amendements=raw.amendements,
                aggregates=aggregates,
                group_ppl=group_ppl,
                sources=infos,
            )

        with log.phase_ctx("publish"):
            publish(Path(scratch_dir), Path(site_dir))
        report.published_to = Path(site_dir)
        log.meta.update(report.as_meta())

    LOGGER.info(
        "Pipeline done: %d deputes, %s rows, %d files published to %s",
        report.deputes,
        "/".join(str(n) for n in report.rows_per_window.values()),
        sum(report.files_written.values()),
        site_dir,
    )
    return report
