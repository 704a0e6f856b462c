"""Per-representative activity statistics over three windows.

Windows:
  - ``P30``  – the last 30 days
  - ``P180`` – the last 180 days
  - ``LEG``  – since the start of the legislature

Each representative is evaluated against their *effective windows* (mandate
episodes clipped to the period, see :mod:`activite_deputes.windows`), so
time spent out of office never counts as absence.

Co-signature network
--------------------
Built once per window as a weighted undirected :mod:`networkx` graph: one
node per representative, one edge per pair that co-signed at least one
amendment in the window, ``weight`` = number of such amendments.  Every
representative's partner ranking, in-group / out-group split and group
buckets are read off that graph.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta

import networkx as nx

from . import config as cfg
from .models import (
    Amendment,
    CosignGroupBucket,
    CosignNetworkStats,
    CosignPeer,
    Depute,
    DeputeStats,
    Dossier,
    DossierScore,
    RawDataset,
    RollCall,
    TopCosignataire,
    VotePosition,
)
from .windows import DateWindow, date_in_windows, effective_mandate_windows

LOGGER = logging.getLogger(__name__)

TOP_DOSSIERS_LIMIT = 10
TOP_COSIGNATAIRES_LIMIT = 10
COSIGN_IN_GROUP_LIMIT = 12
COSIGN_OUT_GROUP_MEMBERS_LIMIT = 8
# Amendments weigh double: drafting is rewarded over passive voting.
AMENDMENT_SCORE_WEIGHT = 2

_PROGRESS_EVERY = 100


@dataclass(frozen=True)
class Period:
    key: str  # e.g. "P30"
    start: date
    end: date
    include_undated_amendments: bool = False

    def contains_amendment(self, amd: Amendment) -> bool:
        """Range check used by the co-signature network (mandates ignored)."""
        if amd.date is None:
            return self.include_undated_amendments
        return self.start <= amd.date <= self.end


def build_periods(
    today: date,
    *,
    legislature_start: date = cfg.LEGISLATURE_START,
    undated_full_term: bool = cfg.UNDATED_AMENDMENTS_FULL_TERM,
) -> list[Period]:
    """The three reporting windows ending on *today*.

    Undated amendments are only ever attributed to the full-term window,
    and only when *undated_full_term* is on.
    """
    return [
        Period("P30", today - timedelta(days=30), today),
        Period("P180", today - timedelta(days=180), today),
        Period("LEG", legislature_start, today, include_undated_amendments=undated_full_term),
    ]


@dataclass
class AllAggregates:
    periods: list[Period]
    stats: dict[str, list[DeputeStats]] = field(default_factory=dict)  # period key -> rows

    def rows(self, key: str) -> list[DeputeStats]:
        return self.stats.get(key, [])


# ── Co-signature network ─────────────────────────────────────────────────────


def build_cosign_graph(
    amendements: Iterable[Amendment],
    depute_ids: Iterable[str],
    period: Period,
) -> nx.Graph:
    """Weighted co-signature graph for *period*.

    Signers outside the registry are ignored; an amendment contributes only
    when at least two known representatives signed it.
    """
    known = set(depute_ids)
    pair_counts: dict[tuple[str, str], int] = {}
    amendments_used = 0

    for amd in amendements:
        if not period.contains_amendment(amd):
            continue
        signers = sorted(s for s in amd.signer_ids if s in known)
        if len(signers) < 2:
            continue
        amendments_used += 1
        for i in range(len(signers)):
            for j in range(i + 1, len(signers)):
                key = (signers[i], signers[j])
                pair_counts[key] = pair_counts.get(key, 0) + 1

    G = nx.Graph()
    G.add_nodes_from(sorted(known))
    for (a, b), count in sorted(pair_counts.items()):
        G.add_edge(a, b, weight=count)

    LOGGER.info(
        "Co-signature graph %s: %d nodes, %d edges (from %d amendments)",
        period.key,
        G.number_of_nodes(),
        G.number_of_edges(),
        amendments_used,
    )
    return G


def pair_count(G: nx.Graph, a: str, b: str) -> int:
    if not G.has_edge(a, b):
        return 0
    return G[a][b]["weight"]


@dataclass(frozen=True)
class CosignProfile:
    top_cosignataires: list[TopCosignataire]
    network: CosignNetworkStats


def _peer(dep: Depute, count: int) -> CosignPeer:
    return CosignPeer(
        deputy_id=dep.id,
        nom=dep.nom,
        prenom=dep.prenom,
        groupe_abrev=dep.groupe_abrev,
        groupe_nom=dep.groupe_nom,
        count=count,
    )


def _peer_order(p: CosignPeer) -> tuple[int, str]:
    return (-p.count, p.deputy_id)


def _same_group(a: Depute, b: Depute) -> bool:
    return a.groupe_abrev is not None and a.groupe_abrev == b.groupe_abrev


def cosign_profile(G: nx.Graph, dep: Depute, by_id: dict[str, Depute]) -> CosignProfile | None:
    """Rank *dep*'s partners and split them by group; ``None`` without partners.

    Display lists are truncated; ``total_cosignatures`` and
    ``unique_cosignataires`` always cover every partner.
    """
    if dep.id not in G or G.degree(dep.id) == 0:
        return None

    partners = sorted(
        ((G[dep.id][other]["weight"], other) for other in G.neighbors(dep.id)),
        key=lambda pc: (-pc[0], pc[1]),
    )

    top = [
        TopCosignataire(
            deputy_id=other,
            nom=by_id[other].nom,
            prenom=by_id[other].prenom,
            groupe_abrev=by_id[other].groupe_abrev,
            co_signed_count=count,
        )
        for count, other in partners[:TOP_COSIGNATAIRES_LIMIT]
    ]

    in_group: list[CosignPeer] = []
    in_group_count = 0
    out_group_count = 0
    buckets: dict[tuple[str | None, str | None], list[CosignPeer]] = defaultdict(list)
    for count, other_id in partners:
        other = by_id[other_id]
        peer = _peer(other, count)
        if _same_group(dep, other):
            in_group_count += count
            in_group.append(peer)
        else:
            out_group_count += count
            buckets[(other.groupe_abrev, other.groupe_nom)].append(peer)

    out_group_groups = []
    for (abrev, nom), members in buckets.items():
        members.sort(key=_peer_order)
        out_group_groups.append(
            CosignGroupBucket(
                groupe_abrev=abrev,
                groupe_nom=nom,
                count_total=sum(m.count for m in members),
                members=members[:COSIGN_OUT_GROUP_MEMBERS_LIMIT],
            )
        )
    out_group_groups.sort(key=lambda b: (-b.count_total, b.groupe_abrev or "", b.groupe_nom or ""))
    in_group.sort(key=_peer_order)

    network = CosignNetworkStats(
        total_cosignatures=in_group_count + out_group_count,
        unique_cosignataires=len(partners),
        in_group_count=in_group_count,
        out_group_count=out_group_count,
        in_group=in_group[:COSIGN_IN_GROUP_LIMIT],
        out_group_groups=out_group_groups,
    )
    return CosignProfile(top_cosignataires=top, network=network)


def compute_cosign_analytics(
    G: nx.Graph, deputes: list[Depute]
) -> dict[str, CosignProfile]:
    by_id = {d.id: d for d in deputes}
    profiles: dict[str, CosignProfile] = {}
    for dep in deputes:
        profile = cosign_profile(G, dep, by_id)
        if profile is not None:
            profiles[dep.id] = profile
    return profiles


# ── Per-representative statistics ────────────────────────────────────────────


def _base_stats(dep: Depute, period_start: date, period_end: date, **counters) -> DeputeStats:
    return DeputeStats(
        deputy_id=dep.id,
        nom=dep.nom,
        prenom=dep.prenom,
        groupe_abrev=dep.groupe_abrev,
        groupe_nom=dep.groupe_nom,
        parti_rattachement=dep.parti_nom,
        dept=dep.dept_nom,
        circo=dep.circo,
        mandat_debut=dep.mandat_debut,
        mandat_fin=dep.mandat_fin,
        mandat_debut_legislature=dep.mandat_debut_legislature,
        mandat_episodes=list(dep.mandat_episodes),
        date_naissance=dep.date_naissance,
        sexe=dep.sexe,
        pays_naissance=dep.pays_naissance,
        profession=dep.profession,
        email_assemblee=dep.email_assemblee,
        site_web=dep.site_web,
        sites_web=list(dep.sites_web),
        sites_web_sources=list(dep.sites_web_sources),
        telephones=list(dep.telephones),
        uri_hatvp=dep.uri_hatvp,
        period_start=period_start,
        period_end=period_end,
        **counters,
    )


def top_dossier_scores(
    votes_par_dossier: dict[str, int],
    amd_par_dossier: dict[str, int],
    dossiers: dict[str, Dossier],
    limit: int = TOP_DOSSIERS_LIMIT,
) -> list[DossierScore]:
    """Score = votes + 2 × authored amendments; ties broken by dossier id."""
    scores: list[DossierScore] = []
    for dossier_id in set(votes_par_dossier) | set(amd_par_dossier):
        v = votes_par_dossier.get(dossier_id, 0)
        a = amd_par_dossier.get(dossier_id, 0)
        score = v + AMENDMENT_SCORE_WEIGHT * a
        if score == 0:
            continue
        dossier = dossiers.get(dossier_id)
        scores.append(
            DossierScore(
                dossier_id=dossier_id,
                titre=(dossier.titre if dossier and dossier.titre else dossier_id),
                votes=v,
                amendements=a,
                interventions=0,
                score=score,
            )
        )
    scores.sort(key=lambda s: (-s.score, s.dossier_id))
    return scores[:limit]


def compute_depute_stats(
    dep: Depute,
    period: Period,
    scrutins: list[RollCall],
    amendements: list[Amendment],
    dossiers: dict[str, Dossier],
    profile: CosignProfile | None = None,
) -> DeputeStats:
    """Statistics for one representative over one period.

    *amendements* only needs to hold the amendments *dep* signed; a zeroed
    record is returned when no mandate episode overlaps the period.
    """
    windows: list[DateWindow] = effective_mandate_windows(dep, period.start, period.end)
    if not windows:
        return _base_stats(
            dep,
            max(dep.mandat_debut or period.start, period.start),
            min(dep.mandat_fin or period.end, period.end),
        )

    # ── Roll-calls ────────────────────────────────────────────────────────
    eligible = expressed = non_votant = absent = 0
    pour = contre = abst = 0
    votes_par_dossier: dict[str, int] = defaultdict(int)
    for rc in scrutins:
        if rc.date is None or not date_in_windows(rc.date, windows):
            continue
        eligible += 1
        position = rc.votes.get(dep.id)
        if position is None:
            absent += 1
            continue
        if position is VotePosition.NON_VOTANT:
            non_votant += 1
            continue
        expressed += 1
        if position is VotePosition.POUR:
            pour += 1
        elif position is VotePosition.CONTRE:
            contre += 1
        else:
            abst += 1
        if rc.dossier_ref:
            votes_par_dossier[rc.dossier_ref] += 1

    # ── Amendments ────────────────────────────────────────────────────────
    authored = adopted = cosigned = 0
    amd_par_dossier: dict[str, int] = defaultdict(int)
    for amd in amendements:
        if amd.date is not None:
            if not date_in_windows(amd.date, windows):
                continue
        elif not period.include_undated_amendments:
            continue
        if amd.auteur_id == dep.id:
            authored += 1
            if amd.adopte:
                adopted += 1
            if amd.dossier_ref:
                amd_par_dossier[amd.dossier_ref] += 1
        elif dep.id in amd.cosignataires_ids:
            cosigned += 1

    return _base_stats(
        dep,
        windows[0].start,
        windows[-1].end,
        scrutins_eligibles=eligible,
        votes_exprimes=expressed,
        non_votant=non_votant,
        absent=absent,
        participation_rate=(expressed / eligible) if eligible else 0.0,
        pour_count=pour,
        contre_count=contre,
        abst_count=abst,
        amd_authored=authored,
        amd_adopted=adopted,
        amd_adoption_rate=(adopted / authored) if authored else None,
        amd_cosigned=cosigned,
        top_dossiers=top_dossier_scores(votes_par_dossier, amd_par_dossier, dossiers),
        top_cosignataires=list(profile.top_cosignataires) if profile else [],
        cosign_network=profile.network if profile else None,
    )


def amendments_by_signer(amendements: Iterable[Amendment]) -> dict[str, list[Amendment]]:
    """Index amendments by every id that signed them (author or cosigner)."""
    index: dict[str, list[Amendment]] = defaultdict(list)
    for amd in amendements:
        for signer in amd.signer_ids:
            index[signer].append(amd)
    return index


def compute_period(
    raw: RawDataset,
    period: Period,
    *,
    by_signer: dict[str, list[Amendment]] | None = None,
) -> list[DeputeStats]:
    """One row per representative, in registry order."""
    t0 = time.perf_counter()
    if by_signer is None:
        by_signer = amendments_by_signer(raw.amendements)

    G = build_cosign_graph(raw.amendements, (d.id for d in raw.deputes), period)
    profiles = compute_cosign_analytics(G, raw.deputes)

    in_range = [
        rc for rc in raw.scrutins if rc.date is not None and period.start <= rc.date <= period.end
    ]

    total = len(raw.deputes)
    out: list[DeputeStats] = []
    for idx, dep in enumerate(raw.deputes, start=1):
        if idx == 1 or idx % _PROGRESS_EVERY == 0 or idx == total:
            LOGGER.debug(
                "compute_period %s: deputes %d/%d [%s -> %s]",
                period.key,
                idx,
                total,
                period.start,
                period.end,
            )
        out.append(
            compute_depute_stats(
                dep,
                period,
                in_range,
                by_signer.get(dep.id, []),
                raw.dossiers,
                profiles.get(dep.id),
            )
        )

    LOGGER.info(
        "Aggregated %s [%s -> %s]: %d rows, %d scrutins in range, %.1fs",
        period.key,
        period.start,
        period.end,
        len(out),
        len(in_range),
        time.perf_counter() - t0,
    )
    return out


def compute_all(raw: RawDataset, today: date, **period_options) -> AllAggregates:
    """Compute the P30, P180 and LEG rows.  ``period_options`` go to :func:`build_periods`."""
    periods = build_periods(today, **period_options)
    by_signer = amendments_by_signer(raw.amendements)
    result = AllAggregates(periods=periods)
    for period in periods:
        result.stats[period.key] = compute_period(raw, period, by_signer=by_signer)
    return result
