from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum


class VotePosition(str, Enum):
    """Recorded position of one representative in one roll-call.

    A representative with no entry in :attr:`RollCall.votes` is *absent*;
    absence is never stored as a position.
    """

    POUR = "pour"
    CONTRE = "contre"
    ABSTENTION = "abstention"
    NON_VOTANT = "non_votant"

    @property
    def is_expressed(self) -> bool:
        return self is not VotePosition.NON_VOTANT


class OriginChamber(str, Enum):
    ASSEMBLEE = "assemblee"
    SENAT = "senat"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MandateEpisode:
    date_debut: date
    date_fin: date | None = None  # None = currently active


@dataclass(frozen=True)
class SiteWebSource:
    val_elec: str  # raw value as published
    type_libelle: str | None = None
    url: str | None = None  # normalized, scheme added


@dataclass(frozen=True)
class Organ:
    id: str  # e.g. "PO800490"
    code_type: str  # "GP", "PARPOL", "ASSEMBLEE", ...
    libelle: str
    abrev: str | None = None


@dataclass(frozen=True)
class Depute:
    id: str  # actor id "PA..." -- unique key
    nom: str
    prenom: str
    date_naissance: date | None = None
    sexe: str | None = None  # "Homme" / "Femme" / raw label
    pays_naissance: str | None = None
    profession: str | None = None
    dept_code: str | None = None
    dept_nom: str | None = None
    circo: str | None = None
    # Selected mandate (strict match, active first, most recent start)
    mandat_debut: date | None = None
    mandat_fin: date | None = None
    # First entry into this legislature (episode 1 start)
    mandat_debut_legislature: date | None = None
    mandat_episodes: list[MandateEpisode] = field(default_factory=list)
    groupe_id: str | None = None
    groupe_abrev: str | None = None
    groupe_nom: str | None = None
    parti_id: str | None = None
    parti_nom: str | None = None
    email_assemblee: str | None = None
    site_web: str | None = None
    sites_web: list[str] = field(default_factory=list)
    sites_web_sources: list[SiteWebSource] = field(default_factory=list)
    telephones: list[str] = field(default_factory=list)
    uri_hatvp: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(f"{self.prenom} {self.nom}".split())


@dataclass(frozen=True)
class RollCall:
    id: str
    numero: int
    titre: str
    date: date | None = None  # undated roll-calls are never eligible
    sort: str | None = None
    dossier_ref: str | None = None
    votes: dict[str, VotePosition] = field(default_factory=dict)


@dataclass(frozen=True)
class Amendment:
    id: str
    numero: str | None = None
    auteur_id: str | None = None
    auteur_type: str | None = None  # "Député", "Groupe", "Gouvernement", ...
    cosignataires_ids: list[str] = field(default_factory=list)
    sort: str | None = None
    adopte: bool = False
    # Best-effort date: deposit -> circulation -> outcome -> examination -> any
    date: date | None = None
    date_depot: date | None = None
    date_circulation: date | None = None
    date_examen: date | None = None
    date_sort: date | None = None
    dossier_ref: str | None = None
    article: str | None = None
    texte_ref: str | None = None
    mission_visee: str | None = None
    mission_ref: str | None = None
    expose_sommaire: str | None = None  # sanitized, length-capped

    @property
    def signer_ids(self) -> set[str]:
        ids = set(self.cosignataires_ids)
        if self.auteur_id:
            ids.add(self.auteur_id)
        return ids


@dataclass(frozen=True)
class Dossier:
    id: str
    titre: str
    date_depot: date | None = None
    statut: str | None = None
    legislature: str | None = None
    nature: str | None = None
    numero: str | None = None
    auteur_id: str | None = None
    cosignataires_ids: list[str] = field(default_factory=list)
    source_url: str | None = None
    origin_chamber: OriginChamber = OriginChamber.UNKNOWN
    initiateur_organe_ref: str | None = None


@dataclass
class RawDataset:
    """Everything the parser produced for one run."""

    deputes: list[Depute]
    organes: dict[str, Organ]
    scrutins: list[RollCall]
    amendements: list[Amendment]
    dossiers: dict[str, Dossier]
    # Ids seen more than once in the registry (first occurrence kept)
    duplicate_depute_ids: list[str] = field(default_factory=list)


# ── Aggregated output ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DossierScore:
    dossier_id: str
    titre: str
    votes: int
    amendements: int
    interventions: int
    score: int  # votes + 2 * amendements


@dataclass(frozen=True)
class TopCosignataire:
    deputy_id: str
    nom: str
    prenom: str
    groupe_abrev: str | None
    co_signed_count: int


@dataclass(frozen=True)
class CosignPeer:
    deputy_id: str
    nom: str
    prenom: str
    groupe_abrev: str | None
    groupe_nom: str | None
    count: int


@dataclass(frozen=True)
class CosignGroupBucket:
    groupe_abrev: str | None
    groupe_nom: str | None
    count_total: int
    members: list[CosignPeer] = field(default_factory=list)


@dataclass(frozen=True)
class CosignNetworkStats:
    total_cosignatures: int  # exact, never truncated
    unique_cosignataires: int  # exact, never truncated
    in_group_count: int
    out_group_count: int
    in_group: list[CosignPeer] = field(default_factory=list)
    out_group_groups: list[CosignGroupBucket] = field(default_factory=list)


@dataclass(frozen=True)
class DeputeStats:
    """One representative over one window."""

    deputy_id: str
    nom: str
    prenom: str
    groupe_abrev: str | None
    groupe_nom: str | None
    parti_rattachement: str | None
    dept: str | None
    circo: str | None
    mandat_debut: date | None
    mandat_fin: date | None
    mandat_debut_legislature: date | None
    mandat_episodes: list[MandateEpisode]
    date_naissance: date | None
    sexe: str | None
    pays_naissance: str | None
    profession: str | None
    email_assemblee: str | None
    site_web: str | None
    sites_web: list[str]
    sites_web_sources: list[SiteWebSource]
    telephones: list[str]
    uri_hatvp: str | None
    period_start: date
    period_end: date
    scrutins_eligibles: int = 0
    votes_exprimes: int = 0  # pour + contre + abst
    non_votant: int = 0
    absent: int = 0
    participation_rate: float = 0.0  # votes_exprimes / scrutins_eligibles
    pour_count: int = 0
    contre_count: int = 0
    abst_count: int = 0
    amd_authored: int = 0
    amd_adopted: int = 0
    amd_adoption_rate: float | None = None  # None iff amd_authored == 0
    amd_cosigned: int = 0
    interventions_count: int = 0  # no debate-transcript source ingested
    interventions_chars: int = 0
    top_dossiers: list[DossierScore] = field(default_factory=list)
    top_cosignataires: list[TopCosignataire] = field(default_factory=list)
    cosign_network: CosignNetworkStats | None = None
