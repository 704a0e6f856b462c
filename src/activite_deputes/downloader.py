"""Fetch and extract the open-data ZIP archives.

Each source is fetched with a conditional GET (``If-None-Match`` from the
ETag cache of the previous run) and extracted into ``work_dir / key``.
Downloads run on a small thread pool bounded by ``DOWNLOAD_CONCURRENCY``;
extraction is handed to a separate pool so a slow unzip never holds up the
HTTP side.  The batch is all-or-nothing: if any source fails, a single
:class:`~activite_deputes.errors.FetchError` is raised and the ETag cache is
left as it was.
"""

from __future__ import annotations

import json
import logging
import shutil
import time
import zipfile
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path, PurePosixPath

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import config as cfg
from .config import Source
from .errors import FetchError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceInfo:
    """Freshness metadata for one source, published in ``status.json``."""

    key: str
    etag: str | None = None
    last_modified: str | None = None
    size_bytes: int = 0


@dataclass
class EtagCache:
    """Per-source metadata persisted between runs.

    Loaded once before the batch starts and handed read-only to every
    download; written once after the whole batch succeeded.
    """

    entries: dict[str, SourceInfo] = field(default_factory=dict)

    def etag_for(self, key: str) -> str | None:
        info = self.entries.get(key)
        return info.etag if info else None

    @classmethod
    def load(cls, path: Path) -> EtagCache:
        if not path.exists():
            return cls()
        try:
            with open(path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            LOGGER.warning("ETag cache %s unreadable (%s); starting cold.", path, exc)
            return cls()
        if not isinstance(raw, dict):
            return cls()

        entries: dict[str, SourceInfo] = {}
        for key, value in raw.items():
            if isinstance(value, str):
                # Older caches stored the bare ETag string.
                entries[key] = SourceInfo(key=key, etag=value)
            elif isinstance(value, dict):
                entries[key] = SourceInfo(
                    key=key,
                    etag=value.get("etag"),
                    last_modified=value.get("last_modified"),
                    size_bytes=int(value.get("size_bytes") or 0),
                )
        return cls(entries)

    def merged(self, infos: list[SourceInfo]) -> EtagCache:
        entries = dict(self.entries)
        for info in infos:
            entries[info.key] = info
        return EtagCache(entries)

    def save(self, path: Path) -> None:
        payload = {
            key: {k: v for k, v in asdict(info).items() if k != "key"}
            for key, info in sorted(self.entries.items())
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
        LOGGER.info("Saved ETag cache to %s (%d sources)", path, len(payload))


# ── Session builder ──────────────────────────────────────────────────────────


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=3,
        backoff_factor=1.0,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(
        max_retries=retry,
        pool_connections=cfg.DOWNLOAD_CONCURRENCY,
        pool_maxsize=cfg.DOWNLOAD_CONCURRENCY,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": cfg.USER_AGENT})
    return session


# ── Extraction ───────────────────────────────────────────────────────────────


def extract_zip(zip_path: Path, dest: Path) -> int:
    """Extract *zip_path* flat into *dest*; return the number of files written.

    Directory entries and names containing ``..`` are skipped, and only the
    entry's base name is used, so nothing can land outside *dest*.
    """
    dest.mkdir(parents=True, exist_ok=True)
    written = 0
    with zipfile.ZipFile(zip_path) as archive:
        for info in archive.infolist():
            name = info.filename
            if info.is_dir() or name.endswith("/") or ".." in name:
                continue
            base = PurePosixPath(name.replace("\\", "/")).name
            if not base:
                continue
            with archive.open(info) as src, open(dest / base, "wb") as out:
                while chunk := src.read(1 << 20):
                    out.write(chunk)
            written += 1
    return written


# ── Download ─────────────────────────────────────────────────────────────────


def download_one(
    session: requests.Session,
    source: Source,
    work_dir: Path,
    cached_etag: str | None,
    extract_pool: ThreadPoolExecutor,
    *,
    timeout: int = cfg.HTTP_TIMEOUT,
) -> SourceInfo:
    """Fetch one archive and extract it, reusing the previous copy on 304."""
    zip_path = work_dir / source.filename
    extract_dir = work_dir / source.key

    headers = {"If-None-Match": cached_etag} if cached_etag else {}
    LOGGER.info("Downloading %s from %s", source.key, source.url)
    t0 = time.perf_counter()
    try:
        resp = session.get(source.url, headers=headers, timeout=timeout)
        if resp.status_code == 304 and not extract_dir.exists():
            # Cached ETag but nothing on disk to reuse: fetch unconditionally.
            LOGGER.info("%s: 304 but %s missing, refetching", source.key, extract_dir)
            resp = session.get(source.url, timeout=timeout)
    except requests.RequestException as exc:
        raise FetchError(f"{source.key}: request to {source.url} failed: {exc}") from exc

    etag = resp.headers.get("ETag")
    last_modified = resp.headers.get("Last-Modified")

    if resp.status_code == 304 and extract_dir.exists():
        LOGGER.info("%s: not modified (304), reusing extracted files", source.key)
        size = zip_path.stat().st_size if zip_path.exists() else 0
        return SourceInfo(
            key=source.key,
            etag=cached_etag,
            last_modified=last_modified,
            size_bytes=size,
        )

    if not 200 <= resp.status_code < 300:
        raise FetchError(f"{source.key}: HTTP {resp.status_code} for {source.url}")

    body = resp.content
    try:
        zip_path.write_bytes(body)
    except OSError as exc:
        raise FetchError(f"{source.key}: cannot write {zip_path}: {exc}") from exc
    LOGGER.info(
        "%s: %d bytes in %.1fs, extracting...",
        source.key,
        len(body),
        time.perf_counter() - t0,
    )

    if extract_dir.exists():
        # Files dropped upstream must not survive from the previous archive.
        shutil.rmtree(extract_dir)
    future: Future[int] = extract_pool.submit(extract_zip, zip_path, extract_dir)
    try:
        count = future.result()
    except (zipfile.BadZipFile, OSError) as exc:
        raise FetchError(f"{source.key}: extraction of {zip_path} failed: {exc}") from exc
    LOGGER.info("%s: extracted %d files", source.key, count)

    return SourceInfo(
        key=source.key,
        etag=etag,
        last_modified=last_modified,
        size_bytes=len(body),
    )


def download_all(
    sources: tuple[Source, ...] | list[Source],
    work_dir: Path,
    cache: EtagCache,
    *,
    session: requests.Session | None = None,
    max_workers: int = cfg.DOWNLOAD_CONCURRENCY,
    timeout: int = cfg.HTTP_TIMEOUT,
) -> list[SourceInfo]:
    """Download every source; raise :class:`FetchError` if any one failed.

    Results come back in *sources* order.  The caller persists
    ``cache.merged(results)``; extracted files on disk then match the cache.
    """
    work_dir.mkdir(parents=True, exist_ok=True)
    sess = session or _build_session()

    results: dict[str, SourceInfo] = {}
    errors: list[str] = []
    with (
        ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="download") as pool,
        ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="extract") as extract_pool,
    ):
        future_to_key = {
            pool.submit(
                download_one,
                sess,
                source,
                work_dir,
                cache.etag_for(source.key),
                extract_pool,
                timeout=timeout,
            ): source.key
            for source in sources
        }
        for future, key in future_to_key.items():
            try:
                results[key] = future.result()
            except FetchError as exc:
                LOGGER.warning("Download failed for %s: %s", key, exc)
                errors.append(str(exc))
            except Exception as exc:
                LOGGER.exception("Download task crashed for %s", key)
                errors.append(f"{key}: {type(exc).__name__}: {exc}")

    if errors:
        raise FetchError("Download failures: " + "; ".join(errors))

    return [results[s.key] for s in sources]


def sources_from_cache(
    sources: tuple[Source, ...] | list[Source], cache: EtagCache
) -> list[SourceInfo]:
    """Freshness metadata of the previous download, for runs that skip fetching."""
    return [cache.entries.get(s.key) or SourceInfo(key=s.key) for s in sources]
