from __future__ import annotations

import io
import json
import zipfile
from collections.abc import Callable
from datetime import date
from pathlib import Path
from typing import Any

import pytest

from activite_deputes.models import (
    Amendment,
    Depute,
    Dossier,
    MandateEpisode,
    OriginChamber,
    RawDataset,
    RollCall,
    VotePosition,
)

LEG_START = date(2022, 6, 19)
TODAY = date(2024, 6, 30)

# ── Domain fixtures ───────────────────────────────────────────────────────────


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def make_depute() -> Callable[..., Depute]:
    """Factory: ``make_depute("PA1", groupe_abrev="RE", episodes=[(start, end)])``."""

    def _make(
        uid: str,
        nom: str = "Martin",
        prenom: str = "Alice",
        *,
        groupe_id: str | None = None,
        groupe_abrev: str | None = None,
        groupe_nom: str | None = None,
        episodes: list[tuple[date, date | None]] | None = None,
    ) -> Depute:
        eps = [MandateEpisode(s, e) for s, e in (episodes or [(LEG_START, None)])]
        return Depute(
            id=uid,
            nom=nom,
            prenom=prenom,
            groupe_id=groupe_id,
            groupe_abrev=groupe_abrev,
            groupe_nom=groupe_nom,
            mandat_debut=eps[-1].date_debut,
            mandat_fin=eps[-1].date_fin,
            mandat_debut_legislature=eps[0].date_debut,
            mandat_episodes=eps,
        )

    return _make


@pytest.fixture
def deputes(make_depute: Callable[..., Depute]) -> list[Depute]:
    return [
        make_depute(
            "PA1",
            "Martin",
            "Alice",
            groupe_id="PO800490",
            groupe_abrev="RE",
            groupe_nom="Renaissance",
        ),
        make_depute(
            "PA2",
            "Durand",
            "Bruno",
            groupe_id="PO800490",
            groupe_abrev="RE",
            groupe_nom="Renaissance",
        ),
        make_depute(
            "PA3",
            "Petit",
            "Chloé",
            groupe_id="PO800491",
            groupe_abrev="LFI",
            groupe_nom="La France insoumise",
        ),
        make_depute(
            "PA4",
            "Roux",
            "Denis",
            groupe_id="PO800490",
            groupe_abrev="RE",
            groupe_nom="Renaissance",
            episodes=[(LEG_START, date(2023, 1, 1))],
        ),
    ]


@pytest.fixture
def raw_dataset(deputes: list[Depute]) -> RawDataset:
    scrutins = [
        RollCall(
            id="S1",
            numero=1,
            titre="Ensemble de la proposition de loi",
            date=date(2024, 6, 20),
            dossier_ref="DL1",
            votes={
                "PA1": VotePosition.POUR,
                "PA2": VotePosition.CONTRE,
                "PA3": VotePosition.NON_VOTANT,
            },
        ),
        RollCall(
            id="S2",
            numero=2,
            titre="Article 3",
            date=date(2024, 1, 15),
            dossier_ref="DL2",
            votes={"PA1": VotePosition.ABSTENTION, "PA3": VotePosition.POUR},
        ),
        RollCall(id="S3", numero=3, titre="Sans date", votes={"PA1": VotePosition.POUR}),
    ]
    amendements = [
        Amendment(
            id="AM1",
            auteur_id="PA1",
            cosignataires_ids=["PA2", "PA3"],
            sort="Adopté",
            adopte=True,
            date=date(2024, 6, 10),
            date_depot=date(2024, 6, 10),
            dossier_ref="DL1",
        ),
        Amendment(
            id="AM2",
            auteur_id="PA2",
            cosignataires_ids=["PA1"],
            sort="Rejeté",
            date=date(2024, 2, 1),
            date_depot=date(2024, 2, 1),
            dossier_ref="DL2",
        ),
        Amendment(id="AM3", auteur_id="PA3"),
        Amendment(
            id="AM4",
            auteur_id="PA4",
            cosignataires_ids=["PA1"],
            date=date(2022, 10, 1),
            date_depot=date(2022, 10, 1),
        ),
    ]
    dossiers = {
        "DL1": Dossier(
            id="DL1",
            titre="Proposition de loi visant à protéger les abeilles",
            date_depot=date(2024, 3, 1),
            legislature="17",
            auteur_id="PA1",
            cosignataires_ids=["PA2"],
            origin_chamber=OriginChamber.ASSEMBLEE,
        ),
        "DL2": Dossier(
            id="DL2",
            titre="Projet de loi de finances pour 2024",
            legislature="17",
            origin_chamber=OriginChamber.ASSEMBLEE,
        ),
        "DL3": Dossier(
            id="DL3",
            titre="Proposition de loi relative aux collectivités",
            legislature="17",
            auteur_id="PA3",
            origin_chamber=OriginChamber.SENAT,
        ),
    }
    return RawDataset(
        deputes=deputes,
        organes={},
        scrutins=scrutins,
        amendements=amendements,
        dossiers=dossiers,
    )


# ── Open-data documents ───────────────────────────────────────────────────────


def _organ(uid: str, code_type: str, libelle: str, abrev: str | None = None) -> dict:
    node: dict[str, Any] = {"uid": uid, "codeType": code_type, "libelle": libelle}
    if abrev:
        node["libelleAbrev"] = abrev
    return node


def _actor(uid: str, prenom: str, nom: str, civ: str, groupe_ref: str) -> dict:
    return {
        "uid": {"#text": uid},
        "etatCivil": {
            "ident": {"civ": civ, "prenom": prenom, "nom": nom},
            "infoNaissance": {"dateNais": "1980-02-03", "paysNais": "France"},
        },
        "mandats": {
            "mandat": [
                {
                    "@xsi:type": "MandatParlementaire_type",
                    "typeOrgane": "ASSEMBLEE",
                    "legislature": "17",
                    "dateDebut": "2022-06-22",
                    "dateFin": None,
                    "election": {
                        "lieu": {"numDepartement": "75", "departement": "Paris", "numCirco": "3"}
                    },
                    "organes": {"organeRef": "PO838901"},
                },
                {
                    "typeOrgane": "GP",
                    "dateDebut": "2022-06-28",
                    "dateFin": None,
                    "organes": {"organeRef": groupe_ref},
                },
            ]
        },
    }


@pytest.fixture
def registry_doc() -> dict:
    """Aggregated registry export: 3 deputes and one actor without a seat."""
    staff = {
        "uid": "PA9",
        "etatCivil": {"ident": {"prenom": "Eve", "nom": "Staff"}},
        "mandats": {"mandat": {"typeOrgane": "COMPER", "dateDebut": "2022-07-01"}},
    }
    return {
        "export": {
            "organes": {
                "organe": [
                    _organ("PO838901", "ASSEMBLEE", "Assemblée nationale"),
                    _organ("PO800490", "GP", "Renaissance", "RE"),
                    _organ("PO800491", "GP", "La France insoumise", "LFI"),
                ]
            },
            "acteurs": {
                "acteur": [
                    _actor("PA1", "Alice", "Martin", "Mme", "PO800490"),
                    _actor("PA2", "Bruno", "Durand", "M.", "PO800490"),
                    _actor("PA3", "Chloé", "Petit", "Mme", "PO800491"),
                    staff,
                ]
            },
        }
    }


@pytest.fixture
def scrutins_doc() -> dict:
    def _scrutin(uid: str, numero: str, day: str, dossier: str, pours: list, contres: list):
        return {
            "uid": uid,
            "numero": numero,
            "dateScrutin": day,
            "titre": f"Scrutin {numero}",
            "dossierRef": dossier,
            "sort": {"code": "adopté", "libelle": "L'Assemblée nationale a adopté."},
            "ventilationVotes": {
                "organe": {
                    "groupes": {
                        "groupe": {
                            "organeRef": "PO800490",
                            "vote": {
                                "decompteNominatif": {
                                    "pours": {"votant": [{"acteurRef": a} for a in pours]},
                                    "contres": {"votant": [{"acteurRef": a} for a in contres]},
                                    "abstentions": None,
                                    "nonVotants": None,
                                }
                            },
                        }
                    }
                }
            },
        }

    return {
        "scrutins": {
            "scrutin": [
                _scrutin("VTANR5L17V1", "1", "2024-06-20", "DL1", ["PA1", "PA2"], ["PA3"]),
                _scrutin("VTANR5L17V2", "2", "2024-01-15", "DL1", ["PA3"], []),
            ]
        }
    }


@pytest.fixture
def amendements_doc() -> dict:
    return {
        "amendements": {
            "amendement": [
                {
                    "uid": "AM1",
                    "identificatif": {"numero": "12"},
                    "dossierRef": "DL1",
                    "signataires": {
                        "auteur": {"acteurRef": "PA1", "typeAuteur": "Député"},
                        "cosignataires": {"acteurRef": ["PA2", "PA3"]},
                    },
                    "cycleDeVie": {
                        "dateDepot": "2024-06-10",
                        "dateSort": "2024-06-12",
                        "sort": "Adopté",
                    },
                    "corps": {"contenuAuteur": {"exposeSommaire": "<p>Text &amp; more</p>"}},
                },
                {
                    "uid": "AM2",
                    "signataires": {"auteur": {"acteurRef": "PA2", "typeAuteur": "Député"}},
                    "cycleDeVie": {"sort": "Non adopté"},
                },
            ]
        }
    }


@pytest.fixture
def dossiers_doc() -> dict:
    return {
        "export": {
            "dossiersLegislatifs": {
                "dossier": [
                    {
                        "dossierParlementaire": {
                            "uid": "DL1",
                            "legislature": "17",
                            "titreDossier": {
                                "titre": "Proposition de loi visant à protéger les abeilles",
                                "dateDepot": "2024-03-01",
                            },
                            "initiateur": {
                                "acteurs": {
                                    "acteur": [{"acteurRef": "PA1"}, {"acteurRef": "PA2"}]
                                }
                            },
                        }
                    },
                    {
                        "dossierParlementaire": {
                            "uid": "DL2",
                            "legislature": "17",
                            "titreDossier": {
                                "titre": "Proposition de loi relative aux collectivités",
                                "senatChemin": "http://www.senat.fr/dossier-legislatif/ppl23-001.html",
                            },
                            "initiateur": {"acteurs": {"acteur": {"acteurRef": "PA3"}}},
                        }
                    },
                ]
            }
        }
    }


@pytest.fixture
def source_docs(
    registry_doc: dict, scrutins_doc: dict, amendements_doc: dict, dossiers_doc: dict
) -> dict[str, tuple[str, dict]]:
    """Source key -> (file name inside the archive, JSON document)."""
    return {
        "deputes": ("AMO10_deputes.json", registry_doc),
        "scrutins": ("Scrutins.json", scrutins_doc),
        "amendements": ("Amendements.json", amendements_doc),
        "dossiers": ("Dossiers_Legislatifs.json", dossiers_doc),
    }


def _write_json(path: Path, value: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def write_json() -> Callable[[Path, Any], Path]:
    return _write_json


@pytest.fixture
def work_dir(tmp_path: Path, source_docs: dict[str, tuple[str, dict]]) -> Path:
    """A work directory as left by a successful download."""
    root = tmp_path / "work"
    for key, (name, doc) in source_docs.items():
        _write_json(root / key / name, doc)
    return root


@pytest.fixture
def source_zips(source_docs: dict[str, tuple[str, dict]]) -> dict[str, bytes]:
    out: dict[str, bytes] = {}
    for key, (name, doc) in source_docs.items():
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w") as zf:
            zf.writestr(f"json/{name}", json.dumps(doc, ensure_ascii=False))
        out[key] = buf.getvalue()
    return out


# ── HTTP fakes ───────────────────────────────────────────────────────────────


class FakeResponse:
    def __init__(self, status_code: int, content: bytes = b"", headers: dict | None = None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}


class FakeSession:
    """Replays queued responses per URL and records every request.

    Queue items are ``(status, body, headers)`` tuples, or an exception to
    raise from ``get``.
    """

    def __init__(self, responses: dict[str, list[tuple | Exception]]):
        self.responses = {url: list(items) for url, items in responses.items()}
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, headers: dict | None = None, timeout: int | None = None):
        self.calls.append((url, dict(headers or {})))
        item = self.responses[url].pop(0)
        if isinstance(item, Exception):
            raise item
        return FakeResponse(*item)


@pytest.fixture
def fake_session() -> type[FakeSession]:
    return FakeSession
