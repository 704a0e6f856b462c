from __future__ import annotations

import json
from pathlib import Path

import pytest

from activite_deputes.run_log import RunLogger


class TestRunLogger:
    def test_phases_recorded(self, tmp_path: Path) -> None:
        log_path = tmp_path / "runs.jsonl"
        with RunLogger("pipeline", log_path=log_path, meta={"today": "2024-06-30"}) as log:
            with log.phase_ctx("download", detail="skipped"):
                pass
            with log.phase_ctx("parse"):
                pass
            log.meta["deputes"] = 577

        record = json.loads(log_path.read_text(encoding="utf-8").strip())
        assert record["task"] == "pipeline"
        assert record["status"] == "ok"
        assert [p["name"] for p in record["phases"]] == ["download", "parse"]
        assert record["phases"][0]["detail"] == "skipped"
        assert record["meta"] == {"today": "2024-06-30", "deputes": 577}

    def test_failure_recorded_and_propagated(self, tmp_path: Path) -> None:
        log_path = tmp_path / "runs.jsonl"
        with pytest.raises(ValueError):
            with RunLogger("pipeline", log_path=log_path) as log:
                with log.phase_ctx("parse"):
                    raise ValueError("boom")

        record = json.loads(log_path.read_text(encoding="utf-8").strip())
        assert record["status"] == "error"
        assert record["error"] == "ValueError: boom"
        assert [p["name"] for p in record["phases"]] == ["parse"]

    def test_runs_append_one_line_each(self, tmp_path: Path) -> None:
        log_path = tmp_path / "logs" / "runs.jsonl"
        for task in ("first", "second"):
            with RunLogger(task, log_path=log_path):
                pass

        lines = log_path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["task"] for line in lines] == ["first", "second"]
        assert len({json.loads(line)["run_id"] for line in lines}) == 2
