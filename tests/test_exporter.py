from __future__ import annotations

import json
from dataclasses import replace
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from activite_deputes.aggregator import AllAggregates, compute_all
from activite_deputes.downloader import SourceInfo
from activite_deputes.errors import ExportError
from activite_deputes.exporter import (
    CSV_COLUMNS,
    SiteExporter,
    build_amendment_calendar,
    camel_dict,
    csv_record,
    dumps,
    publish,
)
from activite_deputes.group_ppl import GroupPplResult, resolve_group_ppl
from activite_deputes.models import Amendment, RawDataset

NOW = datetime(2024, 6, 30, 4, 15, tzinfo=timezone.utc)
SOURCES = [
    SourceInfo("deputes", '"etag-1"', "Sun, 30 Jun 2024 02:00:00 GMT", 1024),
    SourceInfo("scrutins", None, None, 0),
]


@pytest.fixture
def aggregates(raw_dataset: RawDataset, today: date) -> AllAggregates:
    return compute_all(raw_dataset, today, legislature_start=date(2022, 6, 19))


@pytest.fixture
def group_ppl(raw_dataset: RawDataset) -> GroupPplResult:
    return resolve_group_ppl(raw_dataset.deputes, raw_dataset.dossiers)


def _export(
    scratch: Path,
    raw: RawDataset,
    aggregates: AllAggregates,
    group_ppl: GroupPplResult,
    **kwargs,
) -> dict[str, int]:
    exporter = SiteExporter(scratch, now=NOW, legislature=17, **kwargs)
    return exporter.export(
        deputes=raw.deputes,
        dossiers=raw.dossiers,
        amendements=raw.amendements,
        aggregates=aggregates,
        group_ppl=group_ppl,
        sources=SOURCES,
    )


def _read(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


class TestJsonHelpers:
    def test_dumps_minified_utf8_dates(self) -> None:
        assert dumps({"d": date(2024, 6, 1), "t": "Chloé"}) == '{"d":"2024-06-01","t":"Chloé"}'

    def test_camel_dict_drops_none(self) -> None:
        info = SourceInfo("deputes", etag=None, last_modified="x", size_bytes=3)
        assert camel_dict(info) == {"key": "deputes", "lastModified": "x", "sizeBytes": 3}


class TestExport:
    def test_published_layout(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        scratch = tmp_path / "scratch"
        counts = _export(scratch, raw_dataset, aggregates, group_ppl)
        data = scratch / "data"
        for rel in (
            "status.json",
            "deputes.json",
            "deputes_p1.json",
            "deputes_P30.json",
            "deputes_P180.json",
            "deputes_LEG.json",
            "dossiers_min.json",
            "amendements/index.json",
            "amendements/undated.json",
            "amendements/months/2024-06.json",
            "positions-groupes/ppl/index.json",
            "positions-groupes/ppl/groups/po800490.json",
            "positions-groupes/ppl/debug_summary.json",
            "positions-groupes/ppl/unresolved_signers_sample.json",
            "positions-groupes/ppl/deputes_id_audit.json",
            "positions-deputes/ppl/pa1.json",
        ):
            assert (data / rel).is_file(), rel
        for key in ("P30", "P180", "LEG"):
            assert (scratch / "exports" / f"deputes_activity_{key}.csv").is_file()
        assert counts["csv"] == 3
        assert counts["windows"] == 3

    def test_status(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        _export(tmp_path, raw_dataset, aggregates, group_ppl)
        status = _read(tmp_path / "data" / "status.json")
        assert status["last_update"] == "2024-06-30T04:15:00+00:00"
        assert status["last_update_readable"] == "30/06/2024 à 04:15 UTC"
        assert status["legislature"] == 17
        assert status["counts"] == {"deputes": 4}
        assert status["sources"][0] == {
            "key": "deputes",
            "etag": '"etag-1"',
            "last_modified": "Sun, 30 Jun 2024 02:00:00 GMT",
            "size_bytes": 1024,
        }

    def test_directory_chunks(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        _export(tmp_path, raw_dataset, aggregates, group_ppl, chunk_size=3)
        data = tmp_path / "data"
        assert len(_read(data / "deputes_p1.json")) == 3
        assert len(_read(data / "deputes_p2.json")) == 1
        assert not (data / "deputes_p3.json").exists()
        first = _read(data / "deputes.json")[0]
        assert first["mandat_assemblee_episode_count"] == 1
        assert first["mandat_assemblee_episode_labels"] == [
            "Mandat AN épisode 1: 2022-06-19 → en cours"
        ]

    def test_window_rows(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        _export(tmp_path, raw_dataset, aggregates, group_ppl)
        rows = _read(tmp_path / "data" / "deputes_P30.json")
        assert [r["deputy_id"] for r in rows] == ["PA1", "PA2", "PA3", "PA4"]
        assert "mandat_assemblee_episodes" in rows[0]
        assert "mandat_episodes" not in rows[0]
        assert rows[0]["period_end"] == "2024-06-30"

    def test_csv_header_and_rows(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        _export(tmp_path, raw_dataset, aggregates, group_ppl)
        lines = (
            (tmp_path / "exports" / "deputes_activity_P30.csv")
            .read_text(encoding="utf-8")
            .splitlines()
        )
        assert lines[0].split(",") == list(CSV_COLUMNS)
        assert len(CSV_COLUMNS) == 27
        assert len(lines) == 1 + 4

    def test_group_ppl_files(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        _export(tmp_path, raw_dataset, aggregates, group_ppl)
        ppl = tmp_path / "data" / "positions-groupes" / "ppl"
        index = _read(ppl / "index.json")
        assert index["version"] == 1
        assert index["totalUniquePpl"] == 1
        assert [g["groupId"] for g in index["groups"]] == ["PO800490"]
        shard = _read(ppl / "groups" / "po800490.json")
        assert shard["totalEntries"] == 1
        assert shard["items"][0]["pplId"] == "DL1"
        assert shard["items"][0]["authorCount"] == 1
        assert shard["items"][0]["cosignerCount"] == 1
        deputy = _read(tmp_path / "data" / "positions-deputes" / "ppl" / "pa2.json")
        assert deputy["deputyId"] == "PA2"
        assert deputy["items"][0]["isCosigner"] is True

    def test_byte_identical_reexport(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        first, second = tmp_path / "a", tmp_path / "b"
        _export(first, raw_dataset, aggregates, group_ppl)
        _export(second, raw_dataset, aggregates, group_ppl)
        files = sorted(p.relative_to(first) for p in first.rglob("*") if p.is_file())
        assert files == sorted(p.relative_to(second) for p in second.rglob("*") if p.is_file())
        for rel in files:
            assert (first / rel).read_bytes() == (second / rel).read_bytes(), rel

    def test_stale_scratch_cleared(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        stale = tmp_path / "data" / "positions-deputes" / "ppl" / "pa99.json"
        stale.parent.mkdir(parents=True)
        stale.write_text("{}", encoding="utf-8")
        _export(tmp_path, raw_dataset, aggregates, group_ppl)
        assert not stale.exists()

    def test_unencodable_text_raises_export_error(
        self,
        tmp_path: Path,
        raw_dataset: RawDataset,
        aggregates: AllAggregates,
        group_ppl: GroupPplResult,
    ) -> None:
        first, *rest = raw_dataset.amendements
        broken = replace(first, expose_sommaire="Texte \ud800 fin")
        raw = replace(raw_dataset, amendements=[broken, *rest])
        with pytest.raises(ExportError, match="Writing scratch tree"):
            _export(tmp_path / "scratch", raw, aggregates, group_ppl)


class TestCsvRecord:
    def test_rates_and_empty_cells(self, aggregates: AllAggregates) -> None:
        pa1 = next(r for r in aggregates.rows("P30") if r.deputy_id == "PA1")
        record = csv_record(pa1)
        assert record["participation_rate"] == "1.0000"
        assert record["amd_adoption_rate"] == "1.0000"
        assert record["top_dossier_id"] == "DL1"
        pa4 = next(r for r in aggregates.rows("P30") if r.deputy_id == "PA4")
        assert csv_record(pa4)["amd_adoption_rate"] is None
        assert csv_record(pa4)["top_dossier_id"] is None


class TestAmendmentCalendar:
    def test_events_by_month_and_day(self) -> None:
        amendements = [
            Amendment(
                id="AM2",
                sort="Adopté",
                adopte=True,
                date_depot=date(2024, 5, 31),
                date_sort=date(2024, 6, 2),
            ),
            Amendment(id="AM1", date_depot=date(2024, 6, 2), date_examen=date(2024, 6, 2)),
            Amendment(id="AM3", auteur_id="PA1"),
        ]
        months, undated = build_amendment_calendar(amendements)
        assert sorted(months) == ["2024-05", "2024-06"]
        day = months["2024-06"]["2024-06-02"]
        assert [(e["t"], e["id"]) for e in day] == [
            ("DEPOT", "AM1"),
            ("EXAMEN", "AM1"),
            ("SORT", "AM2"),
        ]
        assert day[2]["ok"] is True
        assert day[2]["s"] == "Adopté"
        assert [u["id"] for u in undated] == ["AM3"]

    def test_index_lists_months_newest_first(self, tmp_path: Path) -> None:
        exporter = SiteExporter(tmp_path, now=NOW)
        exporter.write_amendment_calendar(
            [
                Amendment(id="A", date_depot=date(2024, 1, 5)),
                Amendment(id="B", date_depot=date(2024, 3, 5)),
                Amendment(id="C"),
            ]
        )
        index = _read(tmp_path / "data" / "amendements" / "index.json")
        assert [m["month"] for m in index["months"]] == ["2024-03", "2024-01"]
        assert index["undated_count"] == 1
        assert index["undated_file"] == "data/amendements/undated.json"


class TestPublish:
    def _scratch(self, root: Path) -> Path:
        (root / "data").mkdir(parents=True)
        (root / "exports").mkdir()
        (root / "data" / "status.json").write_text('{"new":true}', encoding="utf-8")
        (root / "exports" / "deputes_activity_LEG.csv").write_text("x\n", encoding="utf-8")
        return root

    def test_swap(self, tmp_path: Path) -> None:
        site = tmp_path / "site"
        (site / "data").mkdir(parents=True)
        (site / "data" / "old.json").write_text("{}", encoding="utf-8")
        (site / "index.html").write_text("<html></html>", encoding="utf-8")
        scratch = self._scratch(tmp_path / "scratch")

        publish(scratch, site)

        assert _read(site / "data" / "status.json") == {"new": True}
        assert not (site / "data" / "old.json").exists()
        assert (site / "exports" / "deputes_activity_LEG.csv").is_file()
        assert (site / "index.html").is_file()
        assert sorted(p.name for p in site.iterdir()) == ["data", "exports", "index.html"]
        assert not scratch.exists()

    def test_incomplete_scratch_leaves_site_untouched(self, tmp_path: Path) -> None:
        site = tmp_path / "site"
        (site / "data").mkdir(parents=True)
        (site / "data" / "status.json").write_text('{"old":true}', encoding="utf-8")
        scratch = tmp_path / "scratch"
        (scratch / "data").mkdir(parents=True)

        with pytest.raises(ExportError):
            publish(scratch, site)

        assert _read(site / "data" / "status.json") == {"old": True}
        assert sorted(p.name for p in site.iterdir()) == ["data"]
