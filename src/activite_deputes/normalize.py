"""Shared data normalization utilities.

Centralizes the JSON shape handling and text/date normalization used by every
parser so all entity families read the open-data dumps the same way.

**Object-or-array shape:**
    The dumps are converted from XML, so a collection with a single element
    is published as a bare object and a larger one as an array.
    :func:`one_or_many` turns either form into a list and is applied at every
    such boundary.

**Fallback chains:**
    Field locations drift between export versions.  A field is read through an
    ordered tuple of small extractors (:func:`text_at`, :func:`date_at`, ...);
    :func:`first_of` returns the first non-empty result.

**Date normalization:**
    Dates are parsed to :class:`datetime.date`.  Handles the formats found in
    the dumps:
    - ``2023-06-19``           (ISO)
    - ``19/06/2023``           (French day-first)
    - ``2023-06-19T00:00:00``  (ISO datetime, truncated to the date)
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import Any

LOGGER = logging.getLogger(__name__)

Extractor = Callable[[Any], Any]

_DATE_FORMATS = [
    "%Y-%m-%d",  # ISO
    "%d/%m/%Y",  # French day-first
]

_MAX_FIND_DEPTH = 32


# ── JSON shape helpers ───────────────────────────────────────────────────────


def one_or_many(value: Any) -> list[Any]:
    """Coerce a value that may be a lone object or an array into a list.

    Examples::

        >>> one_or_many({"uid": "PA1"})
        [{'uid': 'PA1'}]
        >>> one_or_many([{"uid": "PA1"}, {"uid": "PA2"}])
        [{'uid': 'PA1'}, {'uid': 'PA2'}]
        >>> one_or_many(None)
        []
    """
    if isinstance(value, list):
        return list(value)
    if isinstance(value, dict):
        return [value]
    return []


def dict_items(value: Any) -> list[dict]:
    """Like :func:`one_or_many`, keeping only the object items.

    Drifted exports sometimes carry bare strings where records are expected;
    those items are dropped.
    """
    return [item for item in one_or_many(value) if isinstance(item, dict)]


def get_path(value: Any, *keys: str) -> Any:
    """Walk nested dicts, returning ``None`` as soon as a step is missing."""
    current = value
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def clean_str(value: Any) -> str | None:
    """Trimmed non-empty string, treating the literal ``"null"`` as missing."""
    if not isinstance(value, str):
        return None
    value = value.strip()
    if not value or value == "null":
        return None
    return value


def textish(value: Any) -> str | None:
    """Like :func:`clean_str`, also accepting ``{"#text": "..."}`` wrappers."""
    return clean_str(value) or clean_str(get_path(value, "#text"))


def string_list(value: Any) -> list[str]:
    """Collect trimmed strings from a string or an array of strings."""
    if isinstance(value, str):
        s = clean_str(value)
        return [s] if s else []
    if isinstance(value, list):
        return [s for s in (clean_str(v) for v in value) if s]
    return []


def first_of(value: Any, extractors: Iterable[Extractor]) -> Any:
    """Run *extractors* in order and return the first non-empty result."""
    for extract in extractors:
        result = extract(value)
        if result is not None and result != "" and result != []:
            return result
    return None


def text_at(*keys: str) -> Extractor:
    """Extractor: text (or ``#text`` wrapper) at a nested path."""
    return lambda v: textish(get_path(v, *keys))


def date_at(*keys: str) -> Extractor:
    """Extractor: date parsed from the string at a nested path."""
    return lambda v: parse_date(get_path(v, *keys))


def find_key(value: Any, target: str, *, max_depth: int = _MAX_FIND_DEPTH) -> list[Any]:
    """Return every value stored under *target* anywhere inside *value*.

    Matches are listed in document order.  The walk does not descend into a
    matched value, and stops descending below *max_depth* levels.
    """
    found: list[Any] = []

    def _walk(node: Any, depth: int) -> None:
        if depth > max_depth:
            LOGGER.debug("find_key(%r): depth limit %d reached", target, max_depth)
            return
        if isinstance(node, dict):
            for key, child in node.items():
                if key == target:
                    found.append(child)
                else:
                    _walk(child, depth + 1)
        elif isinstance(node, list):
            for child in node:
                _walk(child, depth + 1)

    _walk(value, 0)
    return found


def dedup_keep_order(ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for raw in ids:
        key = raw.strip()
        if key and key not in seen:
            seen.add(key)
            out.append(key)
    return out


# ── Dates ────────────────────────────────────────────────────────────────────


def parse_date(value: Any) -> date | None:
    """Parse an open-data date string, or return ``None``.

    Examples::

        >>> parse_date("19/06/2023")
        datetime.date(2023, 6, 19)
        >>> parse_date("2023-01-15T00:00:00")
        datetime.date(2023, 1, 15)
        >>> parse_date("null") is None
        True
    """
    s = clean_str(value)
    if s is None:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    if len(s) >= 10:
        try:
            return datetime.strptime(s[:10], "%Y-%m-%d").date()
        except ValueError:
            pass
    LOGGER.debug("parse_date: unparseable date %r", s)
    return None


# ── Identifiers and labels ───────────────────────────────────────────────────


def normalize_whitespace(s: str) -> str:
    return " ".join(s.split())


def normalize_actor_id(raw: str) -> str:
    """``" pa1234 "`` → ``"PA1234"``."""
    return raw.strip().upper()


_RE_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def safe_file_stem(s: str, fallback: str = "group") -> str:
    """Lower-case ASCII file stem: ``"PO800490"`` → ``"po800490"``."""
    stem = _RE_NON_ALNUM.sub("-", s.lower()).strip("-")
    return stem or fallback


def normalize_urlish(raw: str) -> str:
    raw = raw.strip()
    if not raw:
        return ""
    if raw.startswith(("http://", "https://")):
        return raw
    return "https://" + raw.lstrip("/")


def normalize_phoneish(raw: str) -> str:
    return normalize_whitespace(raw)


_RE_PROFESSION_CODE = re.compile(r"^\((\d+)\)\s*[-–—]*\s*(.*)$")


def normalize_profession_label(raw: str) -> str:
    """Strip a leading numeric category code.

    ``"(35) — Professeur"`` → ``"Professeur"``
    """
    s = normalize_whitespace(raw)
    m = _RE_PROFESSION_CODE.match(s)
    if m and m.group(2).strip():
        return m.group(2).strip()
    return s


_MALE_LABELS = frozenset({"m", "m.", "mr", "monsieur", "homme", "masculin"})
_FEMALE_LABELS = frozenset(
    {"mme", "mme.", "madame", "melle", "mlle", "femme", "féminin", "feminin"}
)


def normalize_sexe_label(raw: str) -> str | None:
    s = normalize_whitespace(raw)
    if not s or s.lower() == "null":
        return None
    lower = s.lower()
    if lower in _MALE_LABELS:
        return "Homme"
    if lower in _FEMALE_LABELS:
        return "Femme"
    return s


# ── Free text ────────────────────────────────────────────────────────────────

_NAMED_ENTITIES: tuple[tuple[str, str], ...] = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)

_RE_NUMERIC_ENTITY = re.compile(r"&#([xX][0-9a-fA-F]{1,8}|[0-9]{1,8});")

ELLIPSIS = "…"


def _strip_tags(raw: str) -> str:
    """Drop ``<...>`` tags, inserting a space where a tag follows text."""
    out: list[str] = []
    in_tag = False
    last_was_space = True
    for ch in raw:
        if ch == "<":
            if not in_tag and not last_was_space:
                out.append(" ")
                last_was_space = True
            in_tag = True
        elif ch == ">":
            in_tag = False
        elif not in_tag:
            out.append(ch)
            last_was_space = ch.isspace()
    return "".join(out)


def _decode_numeric_entity(m: re.Match[str]) -> str:
    body = m.group(1)
    try:
        code_point = int(body[1:], 16) if body[0] in "xX" else int(body)
    except ValueError:
        return m.group(0)
    # Surrogates and out-of-range values are not characters; keep the entity text.
    if 0xD800 <= code_point <= 0xDFFF or code_point > 0x10FFFF:
        return m.group(0)
    return chr(code_point)


def sanitize_rationale(raw: str, max_chars: int) -> str:
    """Normalize an amendment rationale to plain text.

    Tags are stripped, a fixed entity table and numeric entities are decoded,
    whitespace is collapsed, and the result is cut to *max_chars* characters
    followed by ``…`` when longer (``max_chars=0`` disables the cut).

    Examples::

        >>> sanitize_rationale("<p>Text &amp; more</p>", 4)
        'Text…'
        >>> sanitize_rationale("pr&#x00E9;cis&#233;ment", 500)
        'précisément'
    """
    text = _strip_tags(raw)
    for entity, replacement in _NAMED_ENTITIES:
        text = text.replace(entity, replacement)
    text = _RE_NUMERIC_ENTITY.sub(_decode_numeric_entity, text)
    text = normalize_whitespace(text)
    if not text:
        return ""
    if max_chars == 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + ELLIPSIS
