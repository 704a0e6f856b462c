from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import Any, TypeVar

from ..normalize import first_of, text_at

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_NODE_UID = (text_at("uid"), text_at("dossierParlementaire", "uid"))


def json_files(directory: Path) -> list[Path]:
    """All ``*.json`` files under *directory*, in a stable order."""
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.rglob("*.json") if p.is_file())


def load_json(path: Path) -> Any | None:
    """Parse one file; a missing or corrupt file is logged and yields ``None``."""
    try:
        with open(path, encoding="utf-8-sig") as f:
            return json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        LOGGER.warning("Skipping unreadable JSON file %s: %s", path, exc)
        return None


def parse_nodes(
    nodes: Iterable[Any],
    parse: Callable[[Any], T | None],
    *,
    kind: str,
    source: Path | str,
) -> Iterator[T]:
    """Yield ``parse(node)`` for every node that parses to a record.

    A node whose parse raises is logged with its source and uid, then
    skipped; the remaining nodes are still read.
    """
    for node in nodes:
        try:
            record = parse(node)
        except Exception:
            LOGGER.exception(
                "%s: skipping malformed %s %s", source, kind, first_of(node, _NODE_UID) or "<no uid>"
            )
            continue
        if record is not None:
            yield record
