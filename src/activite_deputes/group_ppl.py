"""Link members' bills (propositions de loi) to political groups.

For every dossier whose status, nature or title reads "Proposition de loi
..." (resolutions excluded), each signer is resolved to a representative and
then to their group:

  - representative found with a group  → that group's shard
  - representative found without group → ``UNKNOWN`` bucket, cause
    ``deputy_without_group``
  - id unknown to the registry         → ``UNKNOWN`` bucket, cause
    ``deputy_not_found``

``UNKNOWN`` is a synthetic bucket, never a real group.  Senate-origin bills
are dropped before any signer is looked at; bills of unknown origin are kept.

The result is a plain value: :mod:`activite_deputes.exporter` writes it to
``positions-groupes/ppl/`` and ``positions-deputes/ppl/``.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field

from . import config as cfg
from .models import Depute, Dossier, OriginChamber
from .normalize import normalize_actor_id, normalize_whitespace, safe_file_stem
from .windows import format_episode_labels

LOGGER = logging.getLogger(__name__)

UNKNOWN_GROUP_ID = "UNKNOWN"
UNKNOWN_GROUP_LABEL = "Inconnu"

CAUSE_WITHOUT_GROUP = "deputy_without_group"
CAUSE_NOT_FOUND = "deputy_not_found"


# ── Classification ───────────────────────────────────────────────────────────


def is_ppl_label(raw: str) -> bool:
    """True for the "Proposition de loi ..." family (organic, constitutional, ...)."""
    s = raw.strip().lower()
    return s.startswith("proposition de loi") and not s.startswith("proposition de résolution")


def is_proposition_de_loi(d: Dossier) -> bool:
    return any(is_ppl_label(label) for label in (d.statut, d.nature, d.titre) if label)


# ── Output records ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SignerPreview:
    deputy_id: str | None
    deputy_name: str


@dataclass(frozen=True)
class GroupPplItem:
    ppl_id: str
    number: str | None
    legislature: int | None
    title: str
    deposit_date: str | None  # ISO date
    source_url: str | None
    author_count: int
    cosigner_count: int
    total_signers_from_group: int
    has_author: bool
    signer_names_preview: list[str] = field(default_factory=list)
    signers_preview: list[SignerPreview] = field(default_factory=list)


@dataclass(frozen=True)
class GroupShard:
    group_id: str
    group_label: str
    items: list[GroupPplItem]

    @property
    def file_name(self) -> str:
        return f"{safe_file_stem(self.group_id)}.json"

    @property
    def authored_count(self) -> int:
        return sum(1 for i in self.items if i.has_author)


@dataclass(frozen=True)
class GroupIndexEntry:
    group_id: str
    group_label: str
    ppl_count: int
    authored_ppl_count: int
    cosigned_only_ppl_count: int
    file: str  # relative to the index, e.g. "groups/po800490.json"


@dataclass(frozen=True)
class DeputyPplItem:
    ppl_id: str
    number: str | None
    legislature: int | None
    title: str
    deposit_date: str | None
    source_url: str | None
    is_author: bool
    is_cosigner: bool


@dataclass(frozen=True)
class DeputyShard:
    deputy_id: str
    deputy_name: str
    group_id: str | None
    group_label: str | None
    authored_count: int
    cosigned_only_count: int
    items: list[DeputyPplItem]

    @property
    def file_name(self) -> str:
        return f"{safe_file_stem(self.deputy_id, fallback='depute')}.json"


@dataclass(frozen=True)
class UnresolvedSigner:
    dossier_id: str
    legislature: str | None
    deposit_date: str | None
    signer_role: str  # "author" | "cosigner"
    signer_id: str
    cause: str
    titre: str


@dataclass
class DebugSummary:
    origin_rules_version: str
    deputes_total: int = 0
    deputes_with_group: int = 0
    deputes_without_group: int = 0
    dossiers_total: int = 0
    ppl_detected: int = 0
    ppl_origin_assemblee: int = 0
    ppl_origin_senat: int = 0
    ppl_origin_unknown: int = 0
    ppl_skipped_non_assemblee: int = 0
    ppl_with_signers: int = 0
    unique_ppl_retained: int = 0
    total_author_signers_seen: int = 0
    total_cosigners_seen: int = 0
    signers_resolved_to_group: int = 0
    signers_unresolved_deputy_not_found: int = 0
    signers_unresolved_deputy_without_group: int = 0
    unknown_bucket_ppl_entries: int = 0
    unknown_bucket_authored_entries: int = 0
    unknown_bucket_signers_seen: int = 0
    unresolved_by_legislature: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class NameCollision:
    normalized_name: str
    display_names: list[str]
    pa_ids: list[str]


@dataclass(frozen=True)
class DeputyAuditEntry:
    deputy_id: str
    full_name: str
    group_label: str | None
    mandat_episode_count: int
    mandat_episodes: list[str]


@dataclass(frozen=True)
class IdAudit:
    deputes_total: int
    unique_pa_ids: int
    duplicate_pa_ids: list[str]
    names_with_multiple_pa_ids: list[NameCollision]
    deputies: list[DeputyAuditEntry]


@dataclass(frozen=True)
class GroupPplResult:
    groups: list[GroupShard]
    index: list[GroupIndexEntry]
    total_unique_ppl: int
    deputies: list[DeputyShard]
    debug: DebugSummary
    unresolved_sample: list[UnresolvedSigner]
    audit: IdAudit

    @property
    def total_ppl_links(self) -> int:
        return sum(entry.ppl_count for entry in self.index)


# ── Builders ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _DeputyLite:
    id: str
    full_name: str
    group_id: str
    group_label: str
    has_group: bool


def _lite(d: Depute) -> _DeputyLite:
    group_id = d.groupe_id or d.groupe_abrev
    group_label = d.groupe_abrev or d.groupe_nom
    has_group = group_id is not None or group_label is not None
    return _DeputyLite(
        id=d.id,
        full_name=d.full_name,
        group_id=group_id or UNKNOWN_GROUP_ID,
        group_label=group_label or UNKNOWN_GROUP_LABEL,
        has_group=has_group,
    )


def _legislature_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


class _ItemBuilder:
    def __init__(self, dossier: Dossier, preview_limit: int) -> None:
        self.dossier = dossier
        self.preview_limit = preview_limit
        self.author_keys: set[str] = set()
        self.cosigner_keys: set[str] = set()
        self._preview_seen: set[str] = set()
        self.names: list[str] = []
        self.preview: list[SignerPreview] = []

    def add(self, signer_id: str, dep: _DeputyLite | None, *, author: bool) -> None:
        key = f"id:{normalize_actor_id(signer_id)}"
        (self.author_keys if author else self.cosigner_keys).add(key)
        if len(self.preview) >= self.preview_limit or key in self._preview_seen:
            return
        self._preview_seen.add(key)
        name = normalize_whitespace(dep.full_name) if dep else ""
        if name:
            self.names.append(name)
            self.preview.append(SignerPreview(normalize_actor_id(dep.id), name))

    def build(self) -> GroupPplItem:
        d = self.dossier
        return GroupPplItem(
            ppl_id=d.id,
            number=d.numero,
            legislature=_legislature_int(d.legislature),
            title=normalize_whitespace(d.titre),
            deposit_date=d.date_depot.isoformat() if d.date_depot else None,
            source_url=d.source_url,
            author_count=len(self.author_keys),
            cosigner_count=len(self.cosigner_keys),
            total_signers_from_group=len(self.author_keys | self.cosigner_keys),
            has_author=bool(self.author_keys),
            signer_names_preview=self.names,
            signers_preview=self.preview,
        )


def _date_desc_key(deposit_date: str | None) -> str:
    # None sorts after every date in descending order.
    return deposit_date or ""


def _sort_group_items(items: list[GroupPplItem]) -> list[GroupPplItem]:
    items = sorted(items, key=lambda i: i.title.lower())
    items.sort(
        key=lambda i: (_date_desc_key(i.deposit_date), i.has_author, i.total_signers_from_group),
        reverse=True,
    )
    return items


def _sort_deputy_items(items: list[DeputyPplItem]) -> list[DeputyPplItem]:
    items = sorted(items, key=lambda i: i.title.lower())
    items.sort(key=lambda i: (_date_desc_key(i.deposit_date), i.is_author), reverse=True)
    return items


class _Resolver:
    """Mutable accumulation state for one resolution pass."""

    def __init__(
        self,
        deputes: list[Depute],
        *,
        origin_rules_version: str,
        preview_limit: int,
        sample_limit: int,
    ) -> None:
        self.preview_limit = preview_limit
        self.sample_limit = sample_limit
        self.debug = DebugSummary(origin_rules_version=origin_rules_version)
        self.debug.deputes_total = len(deputes)

        # Indexed by exact and normalized id: trivial case/space misses still resolve.
        self.deputy_map: dict[str, _DeputyLite] = {}
        for d in deputes:
            lite = _lite(d)
            if lite.has_group:
                self.debug.deputes_with_group += 1
            else:
                self.debug.deputes_without_group += 1
            self.deputy_map.setdefault(d.id, lite)
            self.deputy_map.setdefault(normalize_actor_id(d.id), lite)

        self.groups: dict[str, tuple[str, dict[str, _ItemBuilder]]] = {}
        self.deputy_items: dict[str, dict[str, dict[str, bool]]] = defaultdict(dict)
        self.unique_ppl: set[str] = set()
        self.unknown_ppl: set[str] = set()
        self.unknown_authored: set[str] = set()
        self.unresolved_by_legislature: dict[str, int] = defaultdict(int)
        self.samples: list[UnresolvedSigner] = []

    def lookup(self, signer_id: str) -> _DeputyLite | None:
        return self.deputy_map.get(signer_id) or self.deputy_map.get(normalize_actor_id(signer_id))

    def _unresolved(self, dossier: Dossier, signer_id: str, role: str, cause: str) -> None:
        self.debug.unknown_bucket_signers_seen += 1
        self.unknown_ppl.add(dossier.id)
        if role == "author":
            self.unknown_authored.add(dossier.id)
        self.unresolved_by_legislature[dossier.legislature or "?"] += 1
        if len(self.samples) < self.sample_limit:
            self.samples.append(
                UnresolvedSigner(
                    dossier_id=dossier.id,
                    legislature=dossier.legislature,
                    deposit_date=dossier.date_depot.isoformat() if dossier.date_depot else None,
                    signer_role=role,
                    signer_id=signer_id,
                    cause=cause,
                    titre=dossier.titre,
                )
            )

    def add_signer(self, dossier: Dossier, signer_id: str, *, author: bool) -> None:
        role = "author" if author else "cosigner"
        dep = self.lookup(signer_id)
        if dep is not None and dep.has_group:
            self.debug.signers_resolved_to_group += 1
            group_id, group_label = dep.group_id, dep.group_label
        else:
            if dep is None:
                self.debug.signers_unresolved_deputy_not_found += 1
                cause = CAUSE_NOT_FOUND
            else:
                self.debug.signers_unresolved_deputy_without_group += 1
                cause = CAUSE_WITHOUT_GROUP
            self._unresolved(dossier, signer_id, role, cause)
            group_id, group_label = UNKNOWN_GROUP_ID, UNKNOWN_GROUP_LABEL

        _, items = self.groups.setdefault(group_id, (group_label, {}))
        builder = items.get(dossier.id)
        if builder is None:
            builder = items[dossier.id] = _ItemBuilder(dossier, self.preview_limit)
        builder.add(signer_id, dep, author=author)

        if dep is not None:
            flags = self.deputy_items[dep.id].setdefault(
                dossier.id, {"is_author": False, "is_cosigner": False}
            )
            flags["is_author" if author else "is_cosigner"] = True

    def add_dossier(self, dossier: Dossier) -> None:
        self.debug.dossiers_total += 1
        if not is_proposition_de_loi(dossier):
            return
        self.debug.ppl_detected += 1

        if dossier.origin_chamber is OriginChamber.SENAT:
            self.debug.ppl_origin_senat += 1
            self.debug.ppl_skipped_non_assemblee += 1
            return
        if dossier.origin_chamber is OriginChamber.ASSEMBLEE:
            self.debug.ppl_origin_assemblee += 1
        else:
            self.debug.ppl_origin_unknown += 1

        # No entry without a signer: avoids false group links.
        if dossier.auteur_id is None and not dossier.cosignataires_ids:
            return
        self.debug.ppl_with_signers += 1
        self.unique_ppl.add(dossier.id)

        author_norm = None
        if dossier.auteur_id is not None:
            self.debug.total_author_signers_seen += 1
            author_norm = normalize_actor_id(dossier.auteur_id)
            self.add_signer(dossier, dossier.auteur_id.strip(), author=True)

        seen: set[str] = set()
        for cos_id in dossier.cosignataires_ids:
            cos_norm = normalize_actor_id(cos_id)
            if cos_norm in seen or cos_norm == author_norm:
                continue
            seen.add(cos_norm)
            self.debug.total_cosigners_seen += 1
            self.add_signer(dossier, cos_norm, author=False)

    def group_shards(self) -> list[GroupShard]:
        shards = [
            GroupShard(
                group_id=group_id,
                group_label=label,
                items=_sort_group_items([b.build() for b in items.values()]),
            )
            for group_id, (label, items) in self.groups.items()
        ]
        shards.sort(key=lambda s: (s.group_label.lower(), s.group_id))
        return shards

    def deputy_shards(self, dossiers: dict[str, Dossier]) -> list[DeputyShard]:
        shards: list[DeputyShard] = []
        for dep_id, entries in self.deputy_items.items():
            lite = self.deputy_map[dep_id]
            items = []
            for ppl_id, flags in entries.items():
                d = dossiers[ppl_id]
                items.append(
                    DeputyPplItem(
                        ppl_id=d.id,
                        number=d.numero,
                        legislature=_legislature_int(d.legislature),
                        title=normalize_whitespace(d.titre),
                        deposit_date=d.date_depot.isoformat() if d.date_depot else None,
                        source_url=d.source_url,
                        is_author=flags["is_author"],
                        is_cosigner=flags["is_cosigner"],
                    )
                )
            items = _sort_deputy_items(items)
            shards.append(
                DeputyShard(
                    deputy_id=lite.id,
                    deputy_name=lite.full_name,
                    group_id=lite.group_id if lite.has_group else None,
                    group_label=lite.group_label if lite.has_group else None,
                    authored_count=sum(1 for i in items if i.is_author),
                    cosigned_only_count=sum(1 for i in items if i.is_cosigner and not i.is_author),
                    items=items,
                )
            )
        shards.sort(key=lambda s: (s.deputy_name.lower(), s.deputy_id))
        return shards


# ── Id audit ─────────────────────────────────────────────────────────────────


def build_id_audit(deputes: list[Depute], extra_duplicate_ids: Iterable[str] = ()) -> IdAudit:
    """Flag repeated representative ids and distinct ids sharing a display name.

    *extra_duplicate_ids* are ids the parser already collapsed (it keeps the
    first occurrence), so they still show up here.
    """
    seen: set[str] = set()
    duplicates: set[str] = {normalize_actor_id(i) for i in extra_duplicate_ids}
    ids_by_name: dict[str, set[str]] = defaultdict(set)
    display_by_name: dict[str, set[str]] = defaultdict(set)
    entries: list[DeputyAuditEntry] = []

    for d in deputes:
        pa_id = normalize_actor_id(d.id)
        if pa_id in seen:
            duplicates.add(pa_id)
        seen.add(pa_id)

        full_name = normalize_whitespace(f"{d.prenom} {d.nom}")
        norm = full_name.lower()
        ids_by_name[norm].add(pa_id)
        display_by_name[norm].add(full_name)
        entries.append(
            DeputyAuditEntry(
                deputy_id=d.id,
                full_name=full_name,
                group_label=d.groupe_abrev or d.groupe_nom,
                mandat_episode_count=len(d.mandat_episodes),
                mandat_episodes=format_episode_labels(d.mandat_episodes),
            )
        )

    entries.sort(key=lambda e: (e.full_name.lower(), e.deputy_id))
    collisions = [
        NameCollision(
            normalized_name=name,
            display_names=sorted(display_by_name[name]),
            pa_ids=sorted(ids),
        )
        for name, ids in sorted(ids_by_name.items())
        if len(ids) > 1
    ]
    if duplicates or collisions:
        LOGGER.warning(
            "Id audit: %d duplicate ids, %d names shared by several ids",
            len(duplicates),
            len(collisions),
        )
    return IdAudit(
        deputes_total=len(deputes),
        unique_pa_ids=len(seen),
        duplicate_pa_ids=sorted(duplicates),
        names_with_multiple_pa_ids=collisions,
        deputies=entries,
    )


# ── Entry point ──────────────────────────────────────────────────────────────


def resolve_group_ppl(
    deputes: list[Depute],
    dossiers: dict[str, Dossier],
    *,
    duplicate_ids: Iterable[str] = (),
    origin_rules_version: str = cfg.ORIGIN_RULES.version,
    preview_limit: int = cfg.SIGNER_PREVIEW_LIMIT,
    sample_limit: int = cfg.UNRESOLVED_SAMPLE_LIMIT,
) -> GroupPplResult:
    """Resolve every member's bill to groups and representatives.

    Dossiers are visited in id order so the capped unresolved sample is
    reproducible.
    """
    resolver = _Resolver(
        deputes,
        origin_rules_version=origin_rules_version,
        preview_limit=preview_limit,
        sample_limit=sample_limit,
    )
    for dossier_id in sorted(dossiers):
        resolver.add_dossier(dossiers[dossier_id])

    groups = resolver.group_shards()
    index = [
        GroupIndexEntry(
            group_id=g.group_id,
            group_label=g.group_label,
            ppl_count=len(g.items),
            authored_ppl_count=g.authored_count,
            cosigned_only_ppl_count=len(g.items) - g.authored_count,
            file=f"groups/{g.file_name}",
        )
        for g in groups
    ]

    debug = resolver.debug
    debug.unique_ppl_retained = len(resolver.unique_ppl)
    debug.unknown_bucket_ppl_entries = len(resolver.unknown_ppl)
    debug.unknown_bucket_authored_entries = len(resolver.unknown_authored)
    debug.unresolved_by_legislature = dict(sorted(resolver.unresolved_by_legislature.items()))

    LOGGER.info(
        "Group PPL: %d bills detected, %d retained across %d groups "
        "(%d senate skipped, %d signers unresolved)",
        debug.ppl_detected,
        debug.unique_ppl_retained,
        len(groups),
        debug.ppl_skipped_non_assemblee,
        debug.signers_unresolved_deputy_not_found + debug.signers_unresolved_deputy_without_group,
    )
    return GroupPplResult(
        groups=groups,
        index=index,
        total_unique_ppl=len(resolver.unique_ppl),
        deputies=resolver.deputy_shards(dossiers),
        debug=debug,
        unresolved_sample=resolver.samples,
        audit=build_id_audit(deputes, duplicate_ids),
    )
