"""Closed date-interval algebra over discontinuous mandates.

A representative may leave and re-enter the chamber during a legislature
(government appointment, annulled election, ...).  Activity is only counted
while they actually held the seat, so every statistic is evaluated against the
*effective windows*: the mandate episodes clipped to the requested period.

Extracted from the aggregator so the interval logic is independently testable.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta

from .models import Depute, MandateEpisode

_ONE_DAY = timedelta(days=1)


@dataclass(frozen=True, order=True)
class DateWindow:
    """Closed interval ``[start, end]``."""

    start: date
    end: date

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end


def merge_windows(windows: Iterable[DateWindow]) -> list[DateWindow]:
    """Sort and merge overlapping or adjacent windows (gap of at most 1 day).

    The result is sorted and non-overlapping; merging it again returns it
    unchanged.
    """
    merged: list[DateWindow] = []
    for w in sorted(windows):
        if merged and w.start <= merged[-1].end + _ONE_DAY:
            if w.end > merged[-1].end:
                merged[-1] = DateWindow(merged[-1].start, w.end)
            continue
        merged.append(w)
    return merged


def merge_episodes(episodes: Iterable[MandateEpisode]) -> list[MandateEpisode]:
    """Merge mandate episodes the same way, an open end extending forever."""
    merged: list[MandateEpisode] = []
    ordered = sorted(episodes, key=lambda e: (e.date_debut, e.date_fin or date.max))
    for ep in ordered:
        if merged:
            last = merged[-1]
            if last.date_fin is None:
                continue
            if ep.date_debut <= last.date_fin + _ONE_DAY:
                if ep.date_fin is None or ep.date_fin > last.date_fin:
                    merged[-1] = MandateEpisode(last.date_debut, ep.date_fin)
                continue
        merged.append(ep)
    return merged


def effective_mandate_windows(
    dep: Depute, period_start: date, period_end: date
) -> list[DateWindow]:
    """Mandate episodes of *dep* intersected with ``[period_start, period_end]``.

    Falls back to the selected mandate's bounds when the registry exposed no
    episode at all.
    """
    windows: list[DateWindow] = []
    for ep in dep.mandat_episodes:
        start = max(ep.date_debut, period_start)
        end = min(ep.date_fin or period_end, period_end)
        if start <= end:
            windows.append(DateWindow(start, end))

    if not dep.mandat_episodes:
        start = max(dep.mandat_debut or period_start, period_start)
        end = min(dep.mandat_fin or period_end, period_end)
        if start <= end:
            windows.append(DateWindow(start, end))

    return merge_windows(windows)


def date_in_windows(d: date, windows: list[DateWindow]) -> bool:
    return any(w.contains(d) for w in windows)


def format_episode_labels(episodes: list[MandateEpisode]) -> list[str]:
    """``"Mandat AN épisode 1: 2022-06-22 → en cours"`` per episode."""
    return [
        f"Mandat AN épisode {i}: {ep.date_debut.isoformat()} → "
        f"{ep.date_fin.isoformat() if ep.date_fin else 'en cours'}"
        for i, ep in enumerate(episodes, start=1)
    ]
