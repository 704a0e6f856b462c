from __future__ import annotations

import logging
from pathlib import Path

from .. import config as cfg
from ..config import OriginRules
from ..models import RawDataset
from .amendements import parse_amendements
from .dossiers import parse_dossiers
from .scrutins import parse_scrutins
from .strategies import parse_registry

LOGGER = logging.getLogger(__name__)


def parse_all(
    work_dir: Path,
    *,
    legislature: int | None = cfg.LEGISLATURE,
    origin_rules: OriginRules = cfg.ORIGIN_RULES,
    rationale_max_chars: int = cfg.RATIONALE_MAX_CHARS,
) -> RawDataset:
    """Parse the four extracted sources under *work_dir*.

    Expects one sub-directory per source key (``deputes``, ``scrutins``,
    ``amendements``, ``dossiers``).  Raises
    :class:`~activite_deputes.errors.ParseError` if the representative
    registry yields nothing; the other sources may be empty.
    """
    registry = parse_registry(work_dir / "deputes", legislature=legislature)
    scrutins = parse_scrutins(work_dir / "scrutins")
    amendements = parse_amendements(
        work_dir / "amendements", rationale_max_chars=rationale_max_chars
    )
    dossiers = parse_dossiers(work_dir / "dossiers", rules=origin_rules)

    for name, items in (
        ("scrutins", scrutins),
        ("amendements", amendements),
        ("dossiers", dossiers),
    ):
        if not items:
            LOGGER.warning("No %s parsed; output will be degraded.", name)

    LOGGER.info(
        "Parsed dataset: %d deputes, %d organs, %d scrutins, %d amendements, %d dossiers",
        len(registry.deputes),
        len(registry.organes),
        len(scrutins),
        len(amendements),
        len(dossiers),
    )
    return RawDataset(
        deputes=registry.deputes,
        organes=registry.organes,
        scrutins=scrutins,
        amendements=amendements,
        dossiers=dossiers,
        duplicate_depute_ids=registry.duplicate_ids,
    )
