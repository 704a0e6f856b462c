"""Representative registry: actors (``PA*``) and organs (``PO*``).

Every field is read through an ordered chain of extractors so the parser
survives the path drift between export versions of the registry.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from ..models import Depute, MandateEpisode, Organ, SiteWebSource
from ..normalize import (
    clean_str,
    date_at,
    dict_items,
    first_of,
    get_path,
    normalize_phoneish,
    normalize_profession_label,
    normalize_sexe_label,
    normalize_urlish,
    one_or_many,
    parse_date,
    string_list,
    text_at,
    textish,
)
from ..windows import merge_episodes
from .files import parse_nodes

LOGGER = logging.getLogger(__name__)

_ASSEMBLEE_TYPES = frozenset(
    {"ASSEMBLEE", "Assemblée", "ASSEMBLÉE", "Assemblee", "assemblee", "assemblée"}
)
_PARLIAMENTARY_MANDATE = "MandatParlementaire_type"

# ── Field chains ─────────────────────────────────────────────────────────────

_UID = (text_at("uid"),)
_NOM = (text_at("etatCivil", "ident", "nom"),)
_PRENOM = (text_at("etatCivil", "ident", "prenom"),)
_DATE_NAISSANCE = (
    date_at("etatCivil", "infoNaissance", "dateNais"),
    date_at("etatCivil", "infoNaissKnown", "dateNais"),
)
_SEXE = (
    text_at("etatCivil", "ident", "sexe"),
    text_at("etatCivil", "ident", "civ"),
)
_PAYS_NAISSANCE = (
    text_at("etatCivil", "infoNaissance", "paysNais"),
    text_at("etatCivil", "infoNaissKnown", "paysNais"),
)
_PROFESSION = (
    text_at("profession", "libelleCourant"),
    text_at("professions", "profession"),
)
_DEPT_CODE = (
    text_at("election", "lieu", "numDepartement"),
    text_at("election", "lieu", "numDpt"),
)
_DEPT_NOM = (
    text_at("election", "lieu", "departement"),
    text_at("election", "lieu", "nomDpt"),
)
_CIRCO = (text_at("election", "lieu", "numCirco"),)


# ── Organs ───────────────────────────────────────────────────────────────────


def parse_organ(node: Any) -> Organ | None:
    """Build an :class:`Organ`; ``None`` when the id or type code is missing."""
    if not isinstance(node, dict):
        return None
    uid = first_of(node, _UID)
    code_type = textish(node.get("codeType"))
    if not uid or not code_type:
        return None
    return Organ(
        id=uid,
        code_type=code_type,
        libelle=textish(node.get("libelle")) or "",
        abrev=textish(node.get("libelleAbrev")),
    )


# ── Mandates ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _Mandate:
    level: int  # 2 = parliamentary mandate in this legislature, 1 = loose match
    debut: date | None
    fin: date | None
    node: dict

    @property
    def active(self) -> bool:
        return self.fin is None

    def rank(self) -> tuple[int, bool, date]:
        return (self.level, self.active, self.debut or date.min)


def mandate_match_level(mandat: dict, legislature: int | None = None) -> int:
    """How well *mandat* matches a seat in the chamber (0 = not at all).

    A strict match is a parliamentary-mandate record for the chamber, scoped
    to *legislature* when the record states one.  A record that only names the
    chamber as its organ type is a loose match.
    """
    if textish(mandat.get("typeOrgane")) not in _ASSEMBLEE_TYPES:
        return 0
    if textish(mandat.get("@xsi:type")) != _PARLIAMENTARY_MANDATE:
        return 1
    stated = textish(mandat.get("legislature"))
    if legislature is not None and stated and stated != str(legislature):
        return 1
    return 2


def _assembly_mandates(mandats: list[Any], legislature: int | None) -> list[_Mandate]:
    out: list[_Mandate] = []
    for m in mandats:
        if not isinstance(m, dict):
            continue
        level = mandate_match_level(m, legislature)
        if level == 0:
            continue
        out.append(
            _Mandate(
                level=level,
                debut=parse_date(m.get("dateDebut")),
                fin=parse_date(m.get("dateFin")),
                node=m,
            )
        )
    return out


def select_mandate(candidates: list[_Mandate]) -> _Mandate | None:
    """Strict over loose, then active, then the most recent start."""
    if not candidates:
        return None
    return max(candidates, key=_Mandate.rank)


def collect_episodes(candidates: list[_Mandate]) -> list[MandateEpisode]:
    """Dated episodes from every candidate at the best match level, merged."""
    if not candidates:
        return []
    top = max(c.level for c in candidates)
    return merge_episodes(
        MandateEpisode(c.debut, c.fin)
        for c in candidates
        if c.level == top and c.debut is not None
    )


def _organ_ref(mandat: dict) -> str | None:
    refs = string_list(get_path(mandat, "organes", "organeRef"))
    return refs[0] if refs else None


def select_membership(
    mandats: list[Any],
    code_type: str,
    organes: dict[str, Organ],
    *,
    require_organ: bool,
) -> tuple[str, Organ | None] | None:
    """Pick the organ membership of type *code_type*: active first, then latest start."""
    best: tuple[str, Organ | None] | None = None
    best_key: tuple[bool, date] | None = None
    for m in mandats:
        if not isinstance(m, dict) or textish(m.get("typeOrgane")) != code_type:
            continue
        ref = _organ_ref(m)
        if not ref:
            continue
        organ = organes.get(ref)
        if require_organ and organ is None:
            continue
        key = (parse_date(m.get("dateFin")) is None, parse_date(m.get("dateDebut")) or date.min)
        if best_key is None or key > best_key:
            best, best_key = (ref, organ), key
    return best


# ── Contacts ─────────────────────────────────────────────────────────────────


def site_type_rank(type_libelle: str | None, type_code: str | None = None) -> int:
    """Display order of a website: personal site, blog, other, social network."""
    lib = (type_libelle or "").lower()
    if "site internet" in lib or "site web" in lib or type_code == "22":
        return 0
    if "blog" in lib:
        return 1
    if "réseau social" in lib or "reseau social" in lib:
        return 3
    return 2


@dataclass
class _Contacts:
    email: str | None = None
    sites: list[tuple[int, str]] = field(default_factory=list)
    sources: list[tuple[int, SiteWebSource]] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)


def _address_value(adresse: dict) -> str | None:
    return clean_str(adresse.get("valElec")) or clean_str(adresse.get("valeur"))


def parse_contacts(actor: dict) -> _Contacts:
    contacts = _Contacts()
    for adresse in dict_items(get_path(actor, "adresses", "adresse")):
        kind = textish(adresse.get("@xsi:type"))
        value = _address_value(adresse)
        if not value:
            continue
        if kind == "AdresseMail_Type":
            if contacts.email is None:
                contacts.email = value
        elif kind == "AdresseSiteWeb_Type":
            libelle = textish(adresse.get("typeLibelle"))
            rank = site_type_rank(libelle, textish(adresse.get("type")))
            url = normalize_urlish(value) or None
            if url:
                contacts.sites.append((rank, url))
            contacts.sources.append(
                (rank, SiteWebSource(val_elec=value, type_libelle=libelle, url=url))
            )
        elif kind == "AdresseTelephonique_Type":
            phone = normalize_phoneish(value)
            if phone:
                contacts.phones.append(phone)
    return contacts


def _dedup_casefold(values: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in values:
        key = v.lower()
        if key not in seen:
            seen.add(key)
            out.append(v)
    return out


# ── Actors ───────────────────────────────────────────────────────────────────


def parse_actor(
    actor: Any,
    organes: dict[str, Organ],
    *,
    legislature: int | None = None,
) -> Depute | None:
    """Build a :class:`Depute` from one registry actor.

    Returns ``None`` for actors without an id or without any mandate in the
    chamber (staff, former members listed for reference, ...).
    """
    if not isinstance(actor, dict):
        return None
    uid = first_of(actor, _UID)
    if not uid:
        return None

    mandats = one_or_many(get_path(actor, "mandats", "mandat"))
    candidates = _assembly_mandates(mandats, legislature)
    selected = select_mandate(candidates)
    if selected is None:
        LOGGER.debug("Actor %s has no chamber mandate; skipped", uid)
        return None
    episodes = collect_episodes(candidates)

    groupe = select_membership(mandats, "GP", organes, require_organ=True)
    parti = select_membership(mandats, "PARPOL", organes, require_organ=False)
    groupe_organ = groupe[1] if groupe else None
    parti_organ = parti[1] if parti else None

    sexe_raw = first_of(actor, _SEXE)
    profession_raw = first_of(actor, _PROFESSION)
    hatvp = textish(actor.get("uri_hatvp"))

    contacts = parse_contacts(actor)
    ranked_sites = sorted(contacts.sites)
    sites = _dedup_casefold(url for _, url in ranked_sites)
    seen_sources: set[str] = set()
    sources: list[SiteWebSource] = []
    for _, src in sorted(contacts.sources, key=lambda pair: pair[0]):
        key = (src.url or src.val_elec).lower()
        if key not in seen_sources:
            seen_sources.add(key)
            sources.append(src)

    return Depute(
        id=uid,
        nom=first_of(actor, _NOM) or "",
        prenom=first_of(actor, _PRENOM) or "",
        date_naissance=first_of(actor, _DATE_NAISSANCE),
        sexe=normalize_sexe_label(sexe_raw) if sexe_raw else None,
        pays_naissance=first_of(actor, _PAYS_NAISSANCE),
        profession=normalize_profession_label(profession_raw) if profession_raw else None,
        dept_code=first_of(selected.node, _DEPT_CODE),
        dept_nom=first_of(selected.node, _DEPT_NOM),
        circo=first_of(selected.node, _CIRCO),
        mandat_debut=selected.debut,
        mandat_fin=selected.fin,
        mandat_debut_legislature=episodes[0].date_debut if episodes else selected.debut,
        mandat_episodes=episodes,
        groupe_id=groupe[0] if groupe else None,
        groupe_abrev=groupe_organ.abrev if groupe_organ else None,
        groupe_nom=groupe_organ.libelle if groupe_organ else None,
        parti_id=parti[0] if parti else None,
        parti_nom=parti_organ.libelle if parti_organ else None,
        email_assemblee=contacts.email,
        site_web=sites[0] if sites else None,
        sites_web=sites,
        sites_web_sources=sources,
        telephones=_dedup_casefold(contacts.phones),
        uri_hatvp=normalize_urlish(hatvp) if hatvp else None,
    )


@dataclass
class Registry:
    """Parsed representative registry."""

    deputes: list[Depute]
    organes: dict[str, Organ]
    duplicate_ids: list[str]


def build_registry(
    organ_nodes: Iterable[Any],
    actor_nodes: Iterable[Any],
    *,
    legislature: int | None = None,
) -> Registry:
    """Organs first (labels are needed to resolve memberships), then actors.

    Actors are deduplicated by id; the first occurrence is kept and every
    repeated id is reported in :attr:`Registry.duplicate_ids`.
    """
    organes: dict[str, Organ] = {}
    for organ in parse_nodes(organ_nodes, parse_organ, kind="organe", source="registry"):
        if organ.id not in organes:
            organes[organ.id] = organ

    deputes: dict[str, Depute] = {}
    duplicates: list[str] = []
    parsed = parse_nodes(
        actor_nodes,
        lambda node: parse_actor(node, organes, legislature=legislature),
        kind="acteur",
        source="registry",
    )
    for dep in parsed:
        if dep.id in deputes:
            duplicates.append(dep.id)
            continue
        deputes[dep.id] = dep

    if duplicates:
        LOGGER.warning("%d duplicate representative ids in registry", len(duplicates))
    return Registry(list(deputes.values()), organes, duplicates)
