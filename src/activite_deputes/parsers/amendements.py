"""Amendments.

The best-effort :attr:`Amendment.date` falls back through the lifecycle:
deposit, circulation, outcome, examination, then any parseable date found
directly under ``cycleDeVie``.
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Any

from .. import config as cfg
from ..models import Amendment
from ..normalize import (
    date_at,
    dict_items,
    first_of,
    get_path,
    one_or_many,
    parse_date,
    sanitize_rationale,
    string_list,
    text_at,
    textish,
)
from .files import json_files, load_json, parse_nodes

LOGGER = logging.getLogger(__name__)

# Numeric outcome code for "adopted" in older exports.
_ADOPTED_CODE = "29"

_NUMERO = (
    text_at("identificatif", "numero"),
    text_at("identificatif", "numeroLong"),
    text_at("numero"),
)
_SORT = (
    text_at("cycleDeVie", "sort"),
    text_at("cycleDeVie", "sort", "value"),
    text_at("cycleDeVie", "etatDesTraitements", "sousEtat", "libelle"),
    text_at("cycleDeVie", "etatDesTraitements", "sousEtat", "code"),
    text_at("cycleDeVie", "etatDesTraitements", "etat", "libelle"),
    text_at("cycleDeVie", "etatDesTraitements", "etat", "code"),
)
_AUTEUR = (
    text_at("signataires", "auteur", "acteurRef"),
    text_at("signataires", "signataire", "acteurRef"),
)
_AUTEUR_TYPE = (
    text_at("signataires", "auteur", "typeAuteur"),
    text_at("signataires", "signataire", "typeAuteur"),
)
_DATE_DEPOT = (date_at("cycleDeVie", "dateDepot"),)
_DATE_CIRCULATION = (date_at("cycleDeVie", "dateCirculation"),)
_DATE_SORT = (date_at("cycleDeVie", "dateSort"),)
_DATE_EXAMEN = (date_at("cycleDeVie", "dateExamen"),)
_DOSSIER_REF = (
    text_at("dossierRef"),
    text_at("pointeurFragmentTexte", "dossierRef"),
    text_at("pointeurFragmentTexte", "texteLegislatifRef"),
)
_ARTICLE = (
    text_at("pointeurFragmentTexte", "division", "titre"),
    text_at("pointeurFragmentTexte", "division", "articleDesignation"),
)
_TEXTE_REF = (
    text_at("texteLegislatifRef"),
    text_at("pointeurFragmentTexte", "texteLegislatifRef"),
)
_MISSION = (
    text_at("pointeurFragmentTexte", "missionVisee", "libelleMission"),
    text_at("missionVisee", "libelleMission"),
)
_MISSION_REF = (
    text_at("pointeurFragmentTexte", "missionVisee", "missionRef"),
    text_at("missionVisee", "missionRef"),
)
_EXPOSE = (
    text_at("exposeSommaire"),
    text_at("corps", "contenuAuteur", "exposeSommaire"),
    text_at("corps", "exposeSommaire"),
)


def is_adopted(sort: str | None) -> bool:
    """``"Adopté"``, ``"adoptée"``, code ``29`` → True; ``"Non adopté"`` → False."""
    if not sort:
        return False
    lower = sort.strip().lower()
    if lower == _ADOPTED_CODE:
        return True
    return "adopt" in lower and "non adopt" not in lower


def _cosigners(node: dict) -> list[str]:
    cosignataires = get_path(node, "signataires", "cosignataires")
    ids = string_list(get_path(cosignataires, "acteurRef"))
    if not ids:
        for cosig in dict_items(get_path(cosignataires, "cosignataire")):
            ref = textish(cosig.get("acteurRef"))
            if ref:
                ids.append(ref)
    return sorted(set(ids))


def _any_lifecycle_date(node: dict) -> date | None:
    cycle = node.get("cycleDeVie")
    if not isinstance(cycle, dict):
        return None
    for value in cycle.values():
        if isinstance(value, str):
            d = parse_date(value)
            if d is not None:
                return d
    return None


def parse_amendement(
    node: Any, *, rationale_max_chars: int = cfg.RATIONALE_MAX_CHARS
) -> Amendment | None:
    if not isinstance(node, dict):
        return None
    uid = textish(node.get("uid"))
    if not uid:
        return None

    sort = first_of(node, _SORT)
    date_depot = first_of(node, _DATE_DEPOT)
    date_circulation = first_of(node, _DATE_CIRCULATION)
    date_sort = first_of(node, _DATE_SORT)
    date_examen = first_of(node, _DATE_EXAMEN)
    best_date = date_depot or date_circulation or date_sort or date_examen
    if best_date is None:
        best_date = _any_lifecycle_date(node)

    expose_raw = first_of(node, _EXPOSE)
    expose = sanitize_rationale(expose_raw, rationale_max_chars) if expose_raw else ""

    return Amendment(
        id=uid,
        numero=first_of(node, _NUMERO),
        auteur_id=first_of(node, _AUTEUR),
        auteur_type=first_of(node, _AUTEUR_TYPE),
        cosignataires_ids=_cosigners(node),
        sort=sort,
        adopte=is_adopted(sort),
        date=best_date,
        date_depot=date_depot,
        date_circulation=date_circulation,
        date_examen=date_examen,
        date_sort=date_sort,
        dossier_ref=first_of(node, _DOSSIER_REF),
        article=first_of(node, _ARTICLE),
        texte_ref=first_of(node, _TEXTE_REF),
        mission_visee=first_of(node, _MISSION),
        mission_ref=first_of(node, _MISSION_REF),
        expose_sommaire=expose or None,
    )


def amendement_nodes(root: Any) -> list[Any]:
    if not isinstance(root, dict):
        return []
    return one_or_many(get_path(root, "amendements", "amendement")) + one_or_many(
        root.get("amendement")
    )


def parse_amendements(
    directory: Path, *, rationale_max_chars: int = cfg.RATIONALE_MAX_CHARS
) -> list[Amendment]:
    """Parse every amendment under *directory*, deduplicated by id (first kept)."""
    out: dict[str, Amendment] = {}
    files = json_files(directory)
    for path in files:
        root = load_json(path)
        parsed = parse_nodes(
            amendement_nodes(root),
            lambda node: parse_amendement(node, rationale_max_chars=rationale_max_chars),
            kind="amendement",
            source=path,
        )
        for amd in parsed:
            if amd.id not in out:
                out[amd.id] = amd
    undated = sum(1 for a in out.values() if a.date is None)
    LOGGER.info(
        "Parsed %d amendements from %d files (%d undated)", len(out), len(files), undated
    )
    return list(out.values())
