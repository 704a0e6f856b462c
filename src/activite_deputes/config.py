"""Centralized configuration for the activite-deputes pipeline.

All settings live here so they can be overridden by environment variables or a
``.env`` file without touching source code.

**Profile system:** Set ``AD_PROFILE=dev`` (default) or ``AD_PROFILE=prod``
to get sensible defaults for each environment.  Any individual ``AD_*`` var
still overrides the profile value.

Usage::

    from activite_deputes.config import LEGISLATURE, SITE_DATA_DIR

    status["legislature"] = LEGISLATURE
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from dotenv import load_dotenv

# Load .env from current working directory (project root when running the cron job)
load_dotenv()

LOGGER = logging.getLogger(__name__)

# ── Profile: one knob for the whole environment ──────────────────────────────
# "dev" = publishes into site-dev/, "prod" = publishes into the live site/.
# Individual vars always override the profile.

PROFILE: str = os.getenv("AD_PROFILE", "dev").lower().strip()

_PROFILE_DEFAULTS: dict[str, dict[str, str]] = {
    "dev": {
        "AD_SITE_DIR": "site-dev",
        "AD_WORK_DIR": "pipeline/.work",
        "AD_SCRATCH_DIR": "pipeline/.temp_out",
    },
    "prod": {
        "AD_SITE_DIR": "site",
        "AD_WORK_DIR": "pipeline/.work",
        "AD_SCRATCH_DIR": "pipeline/.temp_out",
    },
}

if PROFILE not in _PROFILE_DEFAULTS:
    LOGGER.warning("Unknown AD_PROFILE=%r, falling back to 'dev'.", PROFILE)
    PROFILE = "dev"

_defaults = _PROFILE_DEFAULTS[PROFILE]


def _env(key: str, fallback: str = "") -> str:
    """Read an env var, falling back to profile default then *fallback*."""
    return os.getenv(key, _defaults.get(key, fallback))


def _env_flag(key: str, fallback: str = "0") -> bool:
    return _env(key, fallback).strip().lower() in ("1", "true", "yes", "on")


# ── Legislature ──────────────────────────────────────────────────────────────
# 17th legislature; the full-term window starts here.
LEGISLATURE: int = int(_env("AD_LEGISLATURE", "17"))
LEGISLATURE_START: date = date.fromisoformat(_env("AD_LEGISLATURE_START", "2022-06-19"))

# ── Directories ──────────────────────────────────────────────────────────────
WORK_DIR: Path = Path(_env("AD_WORK_DIR"))
SCRATCH_DIR: Path = Path(_env("AD_SCRATCH_DIR"))
SITE_DIR: Path = Path(_env("AD_SITE_DIR"))
SITE_DATA_DIR: Path = SITE_DIR / "data"
SITE_EXPORTS_DIR: Path = SITE_DIR / "exports"
ETAG_CACHE_FILE: str = "etag_cache.json"

# ── HTTP ─────────────────────────────────────────────────────────────────────
HTTP_TIMEOUT: int = int(_env("AD_HTTP_TIMEOUT", "300"))
# Upstream open-data server is shared; never more than this many archives at once.
DOWNLOAD_CONCURRENCY: int = int(_env("AD_DOWNLOAD_CONCURRENCY", "2"))
USER_AGENT: str = _env(
    "AD_USER_AGENT", "activite-deputes/1.0 (open-data-consumer)"
).strip()

OPEN_DATA_BASE_URL: str = (
    _env("AD_OPEN_DATA_BASE_URL", "http://data.assemblee-nationale.fr/static/openData/repository")
    .rstrip("/")
)


@dataclass(frozen=True)
class Source:
    """One upstream ZIP archive: extracted into ``WORK_DIR / key``."""

    key: str
    url: str
    filename: str


DEFAULT_SOURCES: tuple[Source, ...] = (
    Source(
        key="deputes",
        url=(
            f"{OPEN_DATA_BASE_URL}/{LEGISLATURE}/amo/deputes_actifs_mandats_actifs_organes/"
            "AMO10_deputes_actifs_mandats_actifs_organes.json.zip"
        ),
        filename="deputes.zip",
    ),
    Source(
        key="scrutins",
        url=f"{OPEN_DATA_BASE_URL}/{LEGISLATURE}/loi/scrutins/Scrutins.json.zip",
        filename="scrutins.zip",
    ),
    Source(
        key="amendements",
        url=f"{OPEN_DATA_BASE_URL}/{LEGISLATURE}/loi/amendements_div_legis/Amendements.json.zip",
        filename="amendements.zip",
    ),
    Source(
        key="dossiers",
        url=(
            f"{OPEN_DATA_BASE_URL}/{LEGISLATURE}/loi/dossiers_legislatifs/"
            "Dossiers_Legislatifs.json.zip"
        ),
        filename="dossiers.zip",
    ),
)

# ── Parsing ──────────────────────────────────────────────────────────────────
# PA*/PO* file count at or above which the registry is read one file per entity.
MULTIFILE_THRESHOLD: int = int(_env("AD_MULTIFILE_THRESHOLD", "50"))
RATIONALE_MAX_CHARS: int = int(_env("AD_RATIONALE_MAX_CHARS", "500"))

# ── Aggregation policy ───────────────────────────────────────────────────────
# Undated amendments are attributed to the full-term window only, never to the
# rolling 30/180-day windows.  Turning this off drops them everywhere.
UNDATED_AMENDMENTS_FULL_TERM: bool = _env_flag("AD_UNDATED_AMENDMENTS_FULL_TERM", "1")


@dataclass(frozen=True)
class OriginRules:
    """Versioned heuristics deciding that a bill originates from the Senate."""

    version: str
    senate_organ_ids: frozenset[str]
    senate_path_marker: str


ORIGIN_RULES: OriginRules = OriginRules(
    version=_env("AD_ORIGIN_RULES_VERSION", "leg17-v1"),
    senate_organ_ids=frozenset(
        s.strip() for s in _env("AD_SENATE_ORGAN_IDS", "PO78718").split(",") if s.strip()
    ),
    senate_path_marker=_env("AD_SENATE_PATH_MARKER", "senatChemin").strip(),
)

# ── Export ───────────────────────────────────────────────────────────────────
DEPUTES_CHUNK_SIZE: int = int(_env("AD_DEPUTES_CHUNK_SIZE", "200"))
UNRESOLVED_SAMPLE_LIMIT: int = int(_env("AD_UNRESOLVED_SAMPLE_LIMIT", "200"))
SIGNER_PREVIEW_LIMIT: int = int(_env("AD_SIGNER_PREVIEW_LIMIT", "6"))

# ── Production guard ─────────────────────────────────────────────────────────
if PROFILE == "prod" and not os.getenv("AD_SITE_DIR"):
    LOGGER.warning(
        "AD_PROFILE=prod publishes into %r. Set AD_SITE_DIR to pin the live site root.",
        str(SITE_DIR),
    )
