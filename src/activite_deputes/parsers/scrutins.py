"""Roll-call votes (scrutins).

Positions sit several levels deep: ``ventilationVotes.organe`` → ballot
groups → ``decompteNominatif`` → one bucket per position → ``votant`` list.
Every level may be a lone object or an array.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from ..models import RollCall, VotePosition
from ..normalize import (
    clean_str,
    date_at,
    dict_items,
    first_of,
    get_path,
    one_or_many,
    text_at,
    textish,
)
from .files import json_files, load_json, parse_nodes

LOGGER = logging.getLogger(__name__)

# Singular and plural spellings both occur across export versions.
_POSITION_KEYS: tuple[tuple[tuple[str, ...], VotePosition], ...] = (
    (("pours", "pour"), VotePosition.POUR),
    (("contres", "contre"), VotePosition.CONTRE),
    (("abstentions", "abstention"), VotePosition.ABSTENTION),
    (("nonVotants", "nonVotant"), VotePosition.NON_VOTANT),
)

_TITRE = (text_at("titre"), text_at("objet", "libelle"))
_DATE = (date_at("dateScrutin"),)
_SORT = (
    text_at("sort", "value"),
    text_at("sort", "libelle"),
    text_at("sort", "code"),
    text_at("sort"),
)
_DOSSIER_REF = (text_at("dossierRef"), text_at("objet", "dossierLegislatif"))
_VOTER_ID = (
    text_at("acteurRef"),
    text_at("acteur", "acteurRef"),
    text_at("acteur", "uid"),
    text_at("uid"),
)


def parse_numero(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    s = clean_str(value)
    if s and s.isdigit():
        return int(s)
    return 0


def _ballot_groups(scrutin: dict) -> list[dict]:
    groups: list[dict] = []
    for organe in dict_items(get_path(scrutin, "ventilationVotes", "organe")):
        groups += dict_items(get_path(organe, "groupes", "groupe"))
        groups += dict_items(get_path(organe, "groupes", "organe"))
        groups += dict_items(organe.get("groupe"))
        groups += dict_items(organe.get("organe"))
    return groups


def _decompte(group: dict) -> Any:
    return (
        get_path(group, "vote", "decompteNominatif")
        or group.get("votes")
        or group.get("vote")
    )


def _voters(bucket: Any) -> list[Any]:
    voters: list[Any] = []
    for node in dict_items(bucket):
        voters += one_or_many(node.get("votant"))
        voters += one_or_many(get_path(node, "votants", "votant"))
    return voters


def collect_votes(scrutin: dict) -> dict[str, VotePosition]:
    """Map representative id → position; the first occurrence of an id wins."""
    votes: dict[str, VotePosition] = {}
    for group in _ballot_groups(scrutin):
        decompte = _decompte(group)
        if not isinstance(decompte, dict):
            continue
        for keys, position in _POSITION_KEYS:
            for key in keys:
                for voter in _voters(decompte.get(key)):
                    voter_id = first_of(voter, _VOTER_ID)
                    if voter_id and voter_id not in votes:
                        votes[voter_id] = position
    return votes


def parse_scrutin(node: Any) -> RollCall | None:
    if not isinstance(node, dict):
        return None
    uid = textish(node.get("uid"))
    if not uid:
        return None
    return RollCall(
        id=uid,
        numero=parse_numero(node.get("numero")),
        titre=first_of(node, _TITRE) or "",
        date=first_of(node, _DATE),
        sort=first_of(node, _SORT),
        dossier_ref=first_of(node, _DOSSIER_REF),
        votes=collect_votes(node),
    )


def scrutin_nodes(root: Any) -> list[Any]:
    """Both the aggregated (``scrutins.scrutin``) and per-file (``scrutin``) shapes."""
    if not isinstance(root, dict):
        return []
    return one_or_many(get_path(root, "scrutins", "scrutin")) + one_or_many(root.get("scrutin"))


def parse_scrutins(directory: Path) -> list[RollCall]:
    """Parse every roll-call under *directory*, deduplicated by id (first kept)."""
    out: dict[str, RollCall] = {}
    files = json_files(directory)
    for path in files:
        root = load_json(path)
        for rc in parse_nodes(scrutin_nodes(root), parse_scrutin, kind="scrutin", source=path):
            if rc.id not in out:
                out[rc.id] = rc
    LOGGER.info("Parsed %d scrutins from %d files", len(out), len(files))
    return list(out.values())
