"""Legislative files (dossiers).

Signers are resolved through several fallbacks because the author block
moved between export versions: the structured ``signataires`` block first,
then a recursive scan for ``acteurRef`` under ``auteurs``, ``signataires``
and ``initiateur`` in that order.

The chamber of origin is tagged with the versioned :class:`OriginRules`.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from .. import config as cfg
from ..config import OriginRules
from ..models import Dossier, OriginChamber
from ..normalize import (
    date_at,
    dedup_keep_order,
    dict_items,
    find_key,
    first_of,
    get_path,
    one_or_many,
    string_list,
    text_at,
    textish,
)
from .files import json_files, load_json, parse_nodes

LOGGER = logging.getLogger(__name__)

_TITRE = (text_at("titreDossier", "titre"), text_at("titre"))
_DATE_DEPOT = (date_at("titreDossier", "dateDepot"), date_at("dateDepot"))
_STATUT = (text_at("procedureParlementaire", "libelle"),)
_NATURE = (text_at("nature"), text_at("titreDossier", "titreChemin"))
_NUMERO = (
    text_at("numero"),
    text_at("titreDossier", "numero"),
    text_at("reference", "numero"),
)
_SOURCE_URL = (text_at("urlDossier"), text_at("liens", "lien", "url"))

_SIGNER_FALLBACK_KEYS = ("auteurs", "signataires", "initiateur")


def _refs(values: list[Any]) -> list[str]:
    """Flatten ``acteurRef``/``organeRef`` matches (string, ``{uid}`` or array)."""
    out: list[str] = []
    for value in values:
        if isinstance(value, list):
            out += _refs(value)
        elif isinstance(value, dict):
            uid = textish(value.get("uid"))
            if uid:
                out.append(uid)
        else:
            out += string_list(value)
    return out


def resolve_signers(node: dict) -> tuple[str | None, list[str]]:
    """Return ``(author, cosigners)``; cosigners never repeat nor include the author."""
    author = textish(get_path(node, "signataires", "auteur", "acteurRef"))
    cosignataires = get_path(node, "signataires", "cosignataires")
    cosigners = string_list(get_path(cosignataires, "acteurRef"))
    if not cosigners:
        for cosig in dict_items(get_path(cosignataires, "cosignataire")):
            ref = textish(cosig.get("acteurRef"))
            if ref:
                cosigners.append(ref)

    if author is None:
        for key in _SIGNER_FALLBACK_KEYS:
            refs = dedup_keep_order(_refs(find_key(node.get(key), "acteurRef")))
            if refs:
                author = refs[0]
                cosigners = cosigners + refs[1:]
                break

    cosigners = [c for c in dedup_keep_order(cosigners) if c != author]
    return author, cosigners


def initiateur_organe_ref(node: dict) -> str | None:
    refs = _refs(find_key(node.get("initiateur"), "organeRef"))
    return refs[0] if refs else None


def detect_origin(node: dict, rules: OriginRules = cfg.ORIGIN_RULES) -> OriginChamber:
    """Senate when the Senate path marker or sponsoring body is present.

    A file carrying neither an ``initiateur`` block nor the marker is
    ``UNKNOWN``; anything else originates in the Assembly.
    """
    if textish(get_path(node, "titreDossier", rules.senate_path_marker)):
        return OriginChamber.SENAT
    organe_ref = initiateur_organe_ref(node)
    if organe_ref and organe_ref in rules.senate_organ_ids:
        return OriginChamber.SENAT
    if not node.get("initiateur"):
        return OriginChamber.UNKNOWN
    return OriginChamber.ASSEMBLEE


def parse_dossier(node: Any, rules: OriginRules = cfg.ORIGIN_RULES) -> Dossier | None:
    if not isinstance(node, dict):
        return None
    node = node.get("dossierParlementaire", node)
    if not isinstance(node, dict):
        return None
    uid = textish(node.get("uid"))
    if not uid:
        return None

    author, cosigners = resolve_signers(node)
    return Dossier(
        id=uid,
        titre=first_of(node, _TITRE) or "",
        date_depot=first_of(node, _DATE_DEPOT),
        statut=first_of(node, _STATUT),
        legislature=textish(node.get("legislature")),
        nature=first_of(node, _NATURE),
        numero=first_of(node, _NUMERO),
        auteur_id=author,
        cosignataires_ids=cosigners,
        source_url=first_of(node, _SOURCE_URL),
        origin_chamber=detect_origin(node, rules),
        initiateur_organe_ref=initiateur_organe_ref(node),
    )


def dossier_nodes(root: Any) -> list[Any]:
    if not isinstance(root, dict):
        return []
    nodes = one_or_many(get_path(root, "dossiers", "dossier"))
    nodes += one_or_many(get_path(root, "export", "dossiersLegislatifs", "dossier"))
    return nodes


def parse_dossiers(
    directory: Path, *, rules: OriginRules = cfg.ORIGIN_RULES
) -> dict[str, Dossier]:
    """Parse every dossier under *directory*, keyed by id (first kept).

    A file without a ``dossiers`` collection is read as a single dossier
    document.
    """
    out: dict[str, Dossier] = {}
    files = json_files(directory)
    for path in files:
        root = load_json(path)
        if root is None:
            continue
        nodes = dossier_nodes(root) or [root]
        for dossier in parse_nodes(
            nodes, lambda node: parse_dossier(node, rules), kind="dossier", source=path
        ):
            if dossier.id not in out:
                out[dossier.id] = dossier

    by_origin: dict[str, int] = {}
    for d in out.values():
        by_origin[d.origin_chamber.value] = by_origin.get(d.origin_chamber.value, 0) + 1
    LOGGER.info("Parsed %d dossiers from %d files %s", len(out), len(files), by_origin)
    return out
