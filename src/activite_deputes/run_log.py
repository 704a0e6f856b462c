"""Append-only run history for the nightly pipeline.

One JSON line per run, appended when the run ends (successfully or not)::

    {"run_id": "3f2a9c1e", "task": "pipeline", "status": "ok",
     "started_at": "...", "ended_at": "...", "duration_s": 812.4,
     "phases": [{"name": "download", "duration_s": 95.1, "detail": null}, ...],
     "error": null, "meta": {"deputes": 577, ...}}

The file lives at ``.run_log.jsonl`` unless ``AD_RUN_LOG`` points elsewhere.
A failed night shows up as ``"status": "error"`` with the phase it died in
as the last entry of ``phases``.
"""

from __future__ import annotations

import json
import logging
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

LOGGER = logging.getLogger(__name__)

DEFAULT_LOG_PATH = Path(".run_log.jsonl")


def get_log_path() -> Path:
    return Path(os.getenv("AD_RUN_LOG") or DEFAULT_LOG_PATH)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class PhaseTiming:
    name: str
    duration_s: float
    detail: str | None = None


@dataclass
class RunRecord:
    run_id: str
    task: str
    started_at: str
    ended_at: str | None = None
    duration_s: float | None = None
    status: str = "running"  # running -> ok | error
    phases: list[PhaseTiming] = field(default_factory=list)
    error: str | None = None
    meta: dict = field(default_factory=dict)


class RunLogger:
    """Context manager timing the phases of one run.

    ``meta`` may be filled in while the run progresses; it is written as is
    when the block exits.  Exceptions are recorded, never suppressed.
    """

    def __init__(
        self,
        task: str,
        *,
        log_path: Path | None = None,
        meta: dict | None = None,
    ):
        self.log_path = log_path or get_log_path()
        self.meta = dict(meta or {})
        self.record = RunRecord(run_id=uuid.uuid4().hex[:8], task=task, started_at="")
        self._t0 = 0.0

    @contextmanager
    def phase_ctx(self, name: str, detail: str | None = None):
        started = time.perf_counter()
        try:
            yield
        finally:
            timing = PhaseTiming(name, round(time.perf_counter() - started, 2), detail)
            self.record.phases.append(timing)
            LOGGER.info("Phase %s: %.2fs", name, timing.duration_s)

    def __enter__(self) -> RunLogger:
        self.record.started_at = _utc_now()
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        rec = self.record
        rec.ended_at = _utc_now()
        rec.duration_s = round(time.perf_counter() - self._t0, 2)
        rec.meta = self.meta
        if exc_type is None:
            rec.status = "ok"
        else:
            rec.status = "error"
            rec.error = f"{exc_type.__name__}: {exc_val}" if str(exc_val) else exc_type.__name__
        self._append(rec)

    def _append(self, rec: RunRecord) -> None:
        line = json.dumps(asdict(rec), ensure_ascii=False)
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            LOGGER.warning("Could not append to run log %s: %s", self.log_path, exc)
