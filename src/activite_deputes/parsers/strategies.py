"""Registry layout detection.

The registry archive comes in two layouts:

  - **multifile**: one JSON document per actor (``PA*.json``) and per organ
    (``PO*.json``);
  - **aggregated**: a single ``export`` document holding ``acteurs.acteur``
    and ``organes.organe`` arrays.

Each layout is a named strategy producing a :class:`Registry`; its quality
score is the number of representatives it yielded.  The strategies are
ranked by a cheap file-name census and tried in order until one scores.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .. import config as cfg
from ..errors import ParseError
from ..normalize import get_path, one_or_many
from .deputes import Registry, build_registry
from .files import json_files, load_json

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Strategy:
    name: str
    run: Callable[[Path, int | None], Registry]


def count_entity_files(directory: Path) -> int:
    """Number of ``PA*``/``PO*`` files (the one-file-per-entity signature)."""
    return sum(1 for p in json_files(directory) if p.name.startswith(("PA", "PO")))


# ── Multifile ────────────────────────────────────────────────────────────────


def _entity_nodes(paths: list[Path], wrapper: str) -> Iterator[Any]:
    for path in paths:
        root = load_json(path)
        if isinstance(root, dict):
            yield root.get(wrapper, root)


def parse_multifile(directory: Path, legislature: int | None = None) -> Registry:
    files = json_files(directory)
    organ_files = [p for p in files if p.name.startswith("PO")]
    actor_files = [p for p in files if p.name.startswith("PA")]
    LOGGER.info(
        "Multifile registry: %d organ files, %d actor files",
        len(organ_files),
        len(actor_files),
    )
    return build_registry(
        _entity_nodes(organ_files, "organe"),
        _entity_nodes(actor_files, "acteur"),
        legislature=legislature,
    )


# ── Aggregated ───────────────────────────────────────────────────────────────


def _export_node(root: Any) -> Any:
    return root.get("export", root) if isinstance(root, dict) else None


def aggregated_score(root: Any) -> int:
    """Total actors + organs an aggregated document claims to hold."""
    export = _export_node(root)
    return len(one_or_many(get_path(export, "acteurs", "acteur"))) + len(
        one_or_many(get_path(export, "organes", "organe"))
    )


def parse_aggregated(directory: Path, legislature: int | None = None) -> Registry:
    best_root: Any = None
    best_score = 0
    best_path: Path | None = None
    for path in json_files(directory):
        root = load_json(path)
        score = aggregated_score(root)
        if score > best_score:
            best_root, best_score, best_path = root, score, path

    if best_root is None:
        LOGGER.info("Aggregated registry: no candidate document in %s", directory)
        return Registry([], {}, [])

    LOGGER.info("Aggregated registry: using %s (%d entities)", best_path, best_score)
    export = _export_node(best_root)
    return build_registry(
        one_or_many(get_path(export, "organes", "organe")),
        one_or_many(get_path(export, "acteurs", "acteur")),
        legislature=legislature,
    )


MULTIFILE = Strategy("multifile", parse_multifile)
AGGREGATED = Strategy("aggregated", parse_aggregated)


def rank_strategies(directory: Path, threshold: int = cfg.MULTIFILE_THRESHOLD) -> list[Strategy]:
    """Many ``PA*``/``PO*`` files point at the multifile layout; else try aggregated first."""
    if count_entity_files(directory) >= threshold:
        return [MULTIFILE, AGGREGATED]
    return [AGGREGATED, MULTIFILE]


def parse_registry(
    directory: Path,
    *,
    legislature: int | None = cfg.LEGISLATURE,
    threshold: int = cfg.MULTIFILE_THRESHOLD,
) -> Registry:
    """Run the ranked strategies until one yields representatives.

    Raises :class:`ParseError` when none does: nothing downstream is
    meaningful without the registry.
    """
    if not directory.is_dir():
        raise ParseError(f"Representative registry directory missing: {directory}")

    for strategy in rank_strategies(directory, threshold):
        registry = strategy.run(directory, legislature)
        LOGGER.info(
            "Registry strategy %r: %d deputes, %d organs",
            strategy.name,
            len(registry.deputes),
            len(registry.organes),
        )
        if registry.deputes:
            return registry

    raise ParseError(f"No representative could be parsed from {directory}")
