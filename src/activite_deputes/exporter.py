"""Serialize aggregates and shards to the scratch tree, then publish.

Everything is first written under ``scratch_dir/data`` and
``scratch_dir/exports``.  :func:`publish` only runs once every artifact was
written; it swaps each live root for its scratch copy with directory renames,
so the site never serves a half-written tree.

JSON is minified, UTF-8, with keys in declaration order; given the same
inputs and ``now`` the output is byte-identical.
"""

from __future__ import annotations

import json
import logging
import shutil
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import asdict, fields, is_dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import polars as pl

from . import config as cfg
from .aggregator import AllAggregates
from .downloader import SourceInfo
from .errors import ExportError
from .group_ppl import GroupPplResult
from .models import Amendment, Depute, DeputeStats, Dossier
from .windows import format_episode_labels

LOGGER = logging.getLogger(__name__)

CSV_COLUMNS: tuple[str, ...] = (
    "deputy_id",
    "nom",
    "prenom",
    "groupe_abrev",
    "groupe_nom",
    "parti_rattachement",
    "dept",
    "circo",
    "period_start",
    "period_end",
    "scrutins_eligibles",
    "votes_exprimes",
    "non_votant",
    "absent",
    "participation_rate",
    "pour_count",
    "contre_count",
    "abst_count",
    "amd_authored",
    "amd_adopted",
    "amd_adoption_rate",
    "amd_cosigned",
    "interventions_count",
    "interventions_chars",
    "top_dossier_id",
    "top_dossier_titre",
    "top_dossier_score",
)

CALENDAR_SCHEMA_VERSION = 1
GROUP_PPL_VERSION = 1
UNDATED_FILE = "data/amendements/undated.json"

# (event type, sort order within a day, Amendment attribute)
_LIFECYCLE_EVENTS = (
    ("DEPOT", 0, "date_depot"),
    ("CIRCULATION", 1, "date_circulation"),
    ("EXAMEN", 2, "date_examen"),
    ("SORT", 3, "date_sort"),
)

_CALENDAR_NOTES = [
    "Chaque ligne est un évènement daté issu du cycle de vie open data "
    "(DEPOT / EXAMEN / SORT / CIRCULATION).",
    "Certaines dates sont absentes dans l'open data : "
    "ces amendements sont comptés dans undated.json.",
    "Les évènements sont shardés par mois dans data/amendements/months/YYYY-MM.json.",
]

_PUBLISHED_ROOTS = ("data", "exports")

# Published field names kept stable for the site.
_STATS_KEY_RENAMES = {"mandat_episodes": "mandat_assemblee_episodes"}


# ── JSON helpers ─────────────────────────────────────────────────────────────


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=_json_default)


def write_json_file(path: Path, value: Any) -> int:
    """Write minified JSON; return the byte size."""
    payload = dumps(value).encode("utf-8")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    LOGGER.debug("Wrote %s (%.1f KB)", path, len(payload) / 1024)
    return len(payload)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def camel_dict(obj: Any) -> Any:
    """Dataclass tree → dict with camelCase keys; ``None`` fields are omitted."""
    if is_dataclass(obj) and not isinstance(obj, type):
        out: dict[str, Any] = {}
        for f in fields(obj):
            value = getattr(obj, f.name)
            if value is None:
                continue
            out[_camel(f.name)] = camel_dict(value)
        return out
    if isinstance(obj, list):
        return [camel_dict(v) for v in obj]
    if isinstance(obj, dict):
        return {k: camel_dict(v) for k, v in obj.items()}
    return obj


def stats_row(stats: DeputeStats) -> dict[str, Any]:
    row = asdict(stats)
    return {_STATS_KEY_RENAMES.get(k, k): v for k, v in row.items()}


def depute_row(d: Depute) -> dict[str, Any]:
    return {
        "id": d.id,
        "nom": d.nom,
        "prenom": d.prenom,
        "date_naissance": d.date_naissance,
        "sexe": d.sexe,
        "pays_naissance": d.pays_naissance,
        "profession": d.profession,
        "groupe_abrev": d.groupe_abrev,
        "groupe_nom": d.groupe_nom,
        "parti_nom": d.parti_nom,
        "dept_code": d.dept_code,
        "dept_nom": d.dept_nom,
        "circo": d.circo,
        "mandat_debut": d.mandat_debut,
        "mandat_fin": d.mandat_fin,
        "mandat_debut_legislature": d.mandat_debut_legislature,
        "mandat_assemblee_episodes": [asdict(ep) for ep in d.mandat_episodes],
        "mandat_assemblee_episode_count": len(d.mandat_episodes),
        "mandat_assemblee_episode_labels": format_episode_labels(d.mandat_episodes),
        "email_assemblee": d.email_assemblee,
        "site_web": d.site_web,
        "sites_web": d.sites_web,
        "sites_web_sources": [asdict(s) for s in d.sites_web_sources],
        "telephones": d.telephones,
        "uri_hatvp": d.uri_hatvp,
    }


# ── Amendment calendar ───────────────────────────────────────────────────────


def _event(kind: str, a: Amendment) -> dict[str, Any]:
    event: dict[str, Any] = {"t": kind, "id": a.id}
    for key, value in (
        ("n", a.numero),
        ("aid", a.auteur_id),
        ("aty", a.auteur_type),
        ("cos", a.cosignataires_ids),
        ("did", a.dossier_ref),
        ("art", a.article),
        ("s", a.sort if kind == "SORT" else None),
    ):
        if value:
            event[key] = value
    event["ok"] = a.adopte if kind == "SORT" else False
    for key, value in (("mis", a.mission_visee), ("exp", a.expose_sommaire)):
        if value:
            event[key] = value
    return event


def _undated_entry(a: Amendment) -> dict[str, Any]:
    return {
        "id": a.id,
        "n": a.numero,
        "aid": a.auteur_id,
        "aty": a.auteur_type,
        "cos": a.cosignataires_ids,
        "did": a.dossier_ref,
        "art": a.article,
        "s": a.sort,
        "ok": a.adopte,
        "mis": a.mission_visee,
        "exp": a.expose_sommaire,
    }


def build_amendment_calendar(
    amendements: Iterable[Amendment],
) -> tuple[dict[str, dict[str, list[dict]]], list[dict]]:
    """Group lifecycle events by month then day.

    Only the structured lifecycle dates are used; an amendment with none of
    them goes to the undated list.  Events are ordered by (date, event order,
    amendment id).
    """
    dated: list[tuple[date, int, str, dict]] = []
    undated: list[dict] = []
    for a in amendements:
        has_any = False
        for kind, order, attr in _LIFECYCLE_EVENTS:
            d = getattr(a, attr)
            if d is not None:
                has_any = True
                dated.append((d, order, a.id, _event(kind, a)))
        if not has_any:
            undated.append(_undated_entry(a))

    dated.sort(key=lambda row: row[:3])
    months: dict[str, dict[str, list[dict]]] = defaultdict(lambda: defaultdict(list))
    for d, _, _, event in dated:
        months[d.strftime("%Y-%m")][d.isoformat()].append(event)
    undated.sort(key=lambda e: e["id"])
    return months, undated


# ── Exporter ─────────────────────────────────────────────────────────────────


class SiteExporter:
    """Writes every published artifact under *scratch_dir*."""

    def __init__(
        self,
        scratch_dir: Path | str = cfg.SCRATCH_DIR,
        *,
        now: datetime | None = None,
        legislature: int = cfg.LEGISLATURE,
        chunk_size: int = cfg.DEPUTES_CHUNK_SIZE,
    ) -> None:
        self.scratch_dir = Path(scratch_dir)
        self.data_dir = self.scratch_dir / "data"
        self.exports_dir = self.scratch_dir / "exports"
        self.now = now or datetime.now(timezone.utc)
        self.generated_at = self.now.isoformat()
        self.legislature = legislature
        self.chunk_size = chunk_size
        self.files_written: dict[str, int] = defaultdict(int)

    def _write(self, family: str, path: Path, value: Any) -> None:
        write_json_file(path, value)
        self.files_written[family] += 1

    # ── data/ ──────────────────────────────────────────────────────────

    def write_status(self, sources: list[SourceInfo], depute_count: int) -> None:
        status = {
            "last_update": self.generated_at,
            "last_update_readable": self.now.strftime("%d/%m/%Y à %H:%M UTC"),
            "legislature": self.legislature,
            "sources": [asdict(s) for s in sources],
            "counts": {"deputes": depute_count},
        }
        self._write("status", self.data_dir / "status.json", status)

    def write_deputes(self, deputes: list[Depute]) -> None:
        rows = [depute_row(d) for d in deputes]
        self._write("deputes", self.data_dir / "deputes.json", rows)
        chunks = [rows[i : i + self.chunk_size] for i in range(0, len(rows), self.chunk_size)]
        for n, chunk in enumerate(chunks, start=1):
            self._write("deputes", self.data_dir / f"deputes_p{n}.json", chunk)
        LOGGER.info(
            "deputes.json + %d chunk(s) of %d (%d deputes)",
            len(chunks),
            self.chunk_size,
            len(rows),
        )

    def write_windows(self, aggregates: AllAggregates) -> None:
        for period in aggregates.periods:
            rows = [stats_row(s) for s in aggregates.rows(period.key)]
            self._write("windows", self.data_dir / f"deputes_{period.key}.json", rows)

    def write_dossiers_min(self, dossiers: dict[str, Dossier]) -> None:
        titles = {dossier_id: dossiers[dossier_id].titre for dossier_id in sorted(dossiers)}
        self._write("dossiers", self.data_dir / "dossiers_min.json", titles)

    def write_amendment_calendar(self, amendements: list[Amendment]) -> None:
        amd_dir = self.data_dir / "amendements"
        months, undated = build_amendment_calendar(amendements)

        meta = []
        for month in sorted(months, reverse=True):
            days = months[month]
            self._write(
                "amendements",
                amd_dir / "months" / f"{month}.json",
                {"schema_version": CALENDAR_SCHEMA_VERSION, "month": month, "days": days},
            )
            meta.append(
                {
                    "month": month,
                    "days": len(days),
                    "events": sum(len(evts) for evts in days.values()),
                }
            )

        index = {
            "schema_version": CALENDAR_SCHEMA_VERSION,
            "generated_at": self.generated_at,
            "months": meta,
            "undated_count": len(undated),
            "undated_file": UNDATED_FILE,
            "notes": _CALENDAR_NOTES,
        }
        self._write("amendements", amd_dir / "index.json", index)
        self._write("amendements", amd_dir / "undated.json", undated)

    def write_group_ppl(self, result: GroupPplResult) -> None:
        out_dir = self.data_dir / "positions-groupes" / "ppl"
        deputy_dir = self.data_dir / "positions-deputes" / "ppl"
        header = {"version": GROUP_PPL_VERSION, "generatedAt": self.generated_at}

        for shard in result.groups:
            body = camel_dict(shard)
            self._write(
                "group_ppl",
                out_dir / "groups" / shard.file_name,
                {
                    **header,
                    "groupId": body["groupId"],
                    "groupLabel": body["groupLabel"],
                    "totalEntries": len(shard.items),
                    "items": body["items"],
                },
            )

        index = {
            **header,
            "totalGroups": len(result.index),
            "totalPplLinks": result.total_ppl_links,
            "totalUniquePpl": result.total_unique_ppl,
            "groups": camel_dict(result.index),
        }
        self._write("group_ppl", out_dir / "index.json", index)

        for shard in result.deputies:
            body = camel_dict(shard)
            items = body.pop("items")
            self._write(
                "deputy_ppl",
                deputy_dir / shard.file_name,
                {**header, **body, "totalEntries": len(shard.items), "items": items},
            )

        self._write(
            "group_ppl",
            out_dir / "debug_summary.json",
            {**header, **camel_dict(result.debug)},
        )
        self._write(
            "group_ppl",
            out_dir / "unresolved_signers_sample.json",
            camel_dict(result.unresolved_sample),
        )
        audit = result.audit
        self._write(
            "group_ppl",
            out_dir / "deputes_id_audit.json",
            {
                "summary": {
                    **header,
                    "deputesTotal": audit.deputes_total,
                    "uniquePaIds": audit.unique_pa_ids,
                    "duplicatePaIdEntries": len(audit.duplicate_pa_ids),
                    "namesWithMultiplePaIds": len(audit.names_with_multiple_pa_ids),
                },
                "duplicatePaIds": audit.duplicate_pa_ids,
                "namesWithMultiplePaIds": camel_dict(audit.names_with_multiple_pa_ids),
                "deputies": camel_dict(audit.deputies),
            },
        )

    # ── exports/ ───────────────────────────────────────────────────────

    def write_csv(self, aggregates: AllAggregates) -> None:
        for period in aggregates.periods:
            path = self.exports_dir / f"deputes_activity_{period.key}.csv"
            write_period_csv(path, aggregates.rows(period.key))
            self.files_written["csv"] += 1

    # ── all ────────────────────────────────────────────────────────────

    def export(
        self,
        *,
        deputes: list[Depute],
        dossiers: dict[str, Dossier],
        amendements: list[Amendment],
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
        sources: list[SourceInfo],
    ) -> dict[str, int]:
        """Write the whole scratch tree; return file counts per artifact family.

        Raises :class:`ExportError` when any artifact cannot be written.  The
        scratch tree is cleared first so stale shards from an earlier run never
        get published.
        """
        try:
            if self.scratch_dir.exists():
                shutil.rmtree(self.scratch_dir)
            self.data_dir.mkdir(parents=True)
            self.exports_dir.mkdir(parents=True)

            self.write_status(sources, len(deputes))
            self.write_windows(aggregates)
            self.write_deputes(deputes)
            self.write_group_ppl(group_ppl)
            self.write_dossiers_min(dossiers)
            self.write_amendment_calendar(amendements)
            self.write_csv(aggregates)
        except (OSError, UnicodeError, TypeError, ValueError, pl.exceptions.PolarsError) as exc:
            raise ExportError(f"Writing scratch tree {self.scratch_dir} failed: {exc}") from exc

        LOGGER.info(
            "Scratch tree ready at %s: %d files",
            self.scratch_dir,
            sum(self.files_written.values()),
        )
        return dict(self.files_written)


# ── CSV ──────────────────────────────────────────────────────────────────────


def _csv_cell(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def csv_record(s: DeputeStats) -> dict[str, str | None]:
    top = s.top_dossiers[0] if s.top_dossiers else None
    values = (
        s.deputy_id,
        s.nom,
        s.prenom,
        s.groupe_abrev,
        s.groupe_nom,
        s.parti_rattachement,
        s.dept,
        s.circo,
        s.period_start.isoformat(),
        s.period_end.isoformat(),
        s.scrutins_eligibles,
        s.votes_exprimes,
        s.non_votant,
        s.absent,
        f"{s.participation_rate:.4f}",
        s.pour_count,
        s.contre_count,
        s.abst_count,
        s.amd_authored,
        s.amd_adopted,
        f"{s.amd_adoption_rate:.4f}" if s.amd_adoption_rate is not None else None,
        s.amd_cosigned,
        s.interventions_count,
        s.interventions_chars,
        top.dossier_id if top else None,
        top.titre if top else None,
        top.score if top else None,
    )
    return {col: _csv_cell(v) for col, v in zip(CSV_COLUMNS, values)}


def write_period_csv(path: Path, stats: list[DeputeStats]) -> None:
    """One row per representative with the fixed 27-column header.

    Every cell is pre-formatted text so rates keep exactly four decimals;
    missing values are empty cells.
    """
    df = pl.DataFrame(
        [tuple(csv_record(s).values()) for s in stats],
        schema={col: pl.Utf8 for col in CSV_COLUMNS},
        orient="row",
    )
    path.parent.mkdir(parents=True, exist_ok=True)
    df.write_csv(path)


# ── Publish ──────────────────────────────────────────────────────────────────


def publish(scratch_dir: Path, site_dir: Path) -> None:
    """Replace ``site_dir/data`` and ``site_dir/exports`` with the scratch copies.

    Both roots are staged next to the live ones before either is touched;
    each swap is then two renames.  The scratch tree is removed afterwards.
    """
    missing = [root for root in _PUBLISHED_ROOTS if not (scratch_dir / root).is_dir()]
    if missing:
        raise ExportError(f"Scratch tree {scratch_dir} incomplete, missing: {missing}")

    try:
        site_dir.mkdir(parents=True, exist_ok=True)
        staged: list[tuple[Path, Path, Path]] = []
        for root in _PUBLISHED_ROOTS:
            src = scratch_dir / root
            incoming = site_dir / f"{root}.incoming"
            previous = site_dir / f"{root}.previous"
            for leftover in (incoming, previous):
                if leftover.exists():
                    shutil.rmtree(leftover)
            shutil.copytree(src, incoming)
            staged.append((incoming, site_dir / root, previous))

        for incoming, live, previous in staged:
            if live.exists():
                live.rename(previous)
            incoming.rename(live)
            if previous.exists():
                shutil.rmtree(previous)
            LOGGER.info("Published %s", live)

        shutil.rmtree(scratch_dir)
    except OSError as exc:
        raise ExportError(f"Publishing {scratch_dir} into {site_dir} failed: {exc}") from exc
