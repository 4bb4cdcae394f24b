"""HTTPS retrieval of remote modules with validators, integrity and retries."""

from __future__ import annotations

import asyncio
import base64
import http.client
import json
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from ..errors import (
    FetchError,
    HttpStatusError,
    InsecureSchemeError,
    IntegrityMismatchError,
    UnreachableError,
)
from ..fingerprints import content_hash, verify_integrity
from ..logging import get_logger
from ..models import Origin, SourceUnit

_CACHE_VERSION = 1
_USER_AGENT = "assetgen-fetcher/1"


@dataclass(frozen=True)
class ExponentialBackoff:
    """Delay = base_delay * multiplier ** attempt, bounded by ``attempts`` tries."""

    attempts: int = 3
    base_delay: float = 0.2
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be at least 1")

    def next_delay(self, attempt: int) -> float:
        return self.base_delay * (self.multiplier ** attempt)


@dataclass(frozen=True)
class CachedResponse:
    """Validators and content of the last accepted response for a URL."""

    unit: SourceUnit
    etag: Optional[str] = None
    last_modified: Optional[str] = None


@dataclass(frozen=True)
class _Response:
    status: int
    body: bytes
    headers: Mapping[str, str]


class RemoteFetcher:
    """Fetches HTTPS module sources; blocking I/O runs in the default executor."""

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        backoff: ExponentialBackoff | None = None,
        cache_path: Path | None = None,
    ) -> None:
        self.timeout = timeout
        self.backoff = backoff or ExponentialBackoff()
        self.logger = get_logger("remote")
        self._cache_path = cache_path
        self._lock = threading.Lock()
        self._responses: Dict[str, CachedResponse] = {}
        self._dirty = False
        if cache_path is not None:
            self._load(cache_path)

    async def fetch(self, url: str, integrity: str | None = None) -> SourceUnit:
        """Return the module at ``url``, revalidating any cached copy."""
        scheme = urlparse(url).scheme.lower()
        if scheme != "https":
            raise InsecureSchemeError(f"refusing to fetch {url}: only https is allowed")

        cached = self.cached(url)
        headers = {"User-Agent": _USER_AGENT}
        if cached is not None:
            if cached.etag:
                headers["If-None-Match"] = cached.etag
            if cached.last_modified:
                headers["If-Modified-Since"] = cached.last_modified

        response = await self._request_with_retries(url, headers)

        if response.status == 304:
            if cached is None:
                raise HttpStatusError(304, url)
            self.logger.debug("Revalidated %s (304)", url)
            if integrity and not verify_integrity(cached.unit.content, integrity):
                raise IntegrityMismatchError(f"cached content for {url} does not match {integrity}")
            return cached.unit

        body = response.body
        if integrity and not verify_integrity(body, integrity):
            self.logger.warning("Integrity check failed for %s; discarding response", url)
            raise IntegrityMismatchError(f"content of {url} does not match {integrity}")

        unit = SourceUnit(
            key=url,
            origin=Origin.REMOTE,
            location=url,
            content=body,
            content_hash=content_hash(body),
        )
        if cached is not None and cached.unit.content_hash == unit.content_hash:
            unit = cached.unit
        entry = CachedResponse(
            unit=unit,
            etag=_header(response.headers, "ETag"),
            last_modified=_header(response.headers, "Last-Modified"),
        )
        with self._lock:
            self._responses[url] = entry
            self._dirty = True
        self.logger.debug("Fetched %s (%d bytes)", url, len(body))
        return unit

    def cached(self, url: str) -> Optional[CachedResponse]:
        with self._lock:
            return self._responses.get(url)

    async def _request_with_retries(self, url: str, headers: Dict[str, str]) -> _Response:
        loop = asyncio.get_running_loop()
        last_error: FetchError | None = None
        for attempt in range(self.backoff.attempts):
            try:
                return await loop.run_in_executor(None, self._request, url, headers)
            except FetchError as exc:
                if not exc.transient:
                    raise
                last_error = exc
            if attempt + 1 < self.backoff.attempts:
                delay = self.backoff.next_delay(attempt)
                self.logger.debug(
                    "Transient failure fetching %s (%s); retrying in %.2fs",
                    url,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)
        if last_error is None:
            raise UnreachableError(f"no fetch attempts made for {url}")
        raise last_error

    def _request(self, url: str, headers: Mapping[str, str]) -> _Response:
        request = Request(url, headers=dict(headers), method="GET")
        try:
            with urlopen(request, timeout=self.timeout) as response:  # type: ignore[arg-type]
                body = response.read()
                status = getattr(response, "status", 200)
                response_headers = dict(response.headers.items()) if response.headers else {}
        except HTTPError as exc:
            if exc.code == 304:
                return _Response(status=304, body=b"", headers={})
            raise HttpStatusError(exc.code, url) from exc
        except URLError as exc:
            raise UnreachableError(f"{url}: {exc.reason}") from exc
        except (TimeoutError, ConnectionError, http.client.HTTPException) as exc:
            raise UnreachableError(f"{url}: {exc}") from exc
        return _Response(status=status, body=body, headers=response_headers)

    # ------------------------------------------------------------------
    # Persistence

    def persist(self) -> None:
        if not self._dirty or self._cache_path is None:
            return
        with self._lock:
            entries = {
                url: {
                    "etag": entry.etag,
                    "last_modified": entry.last_modified,
                    "content": base64.b64encode(entry.unit.content).decode("ascii"),
                }
                for url, entry in self._responses.items()
            }
            self._dirty = False
        payload = {"version": _CACHE_VERSION, "entries": entries}
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._cache_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return
        for url, raw in entries.items():
            parsed = _entry_from_dict(url, raw)
            if parsed is not None:
                self._responses[url] = parsed


def _entry_from_dict(url: object, raw: object) -> Optional[CachedResponse]:
    if not isinstance(url, str) or not isinstance(raw, dict):
        return None
    encoded = raw.get("content")
    if not isinstance(encoded, str):
        return None
    try:
        content = base64.b64decode(encoded.encode("ascii"), validate=True)
    except ValueError:
        return None
    etag = raw.get("etag")
    last_modified = raw.get("last_modified")
    unit = SourceUnit(
        key=url,
        origin=Origin.REMOTE,
        location=url,
        content=content,
        content_hash=content_hash(content),
    )
    return CachedResponse(
        unit=unit,
        etag=etag if isinstance(etag, str) else None,
        last_modified=last_modified if isinstance(last_modified, str) else None,
    )


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def split_integrity(specifier: str) -> Tuple[str, Optional[str]]:
    """Split ``https://host/mod.py#sha384-...`` into the URL and its SRI fragment."""
    url, sep, fragment = specifier.partition("#")
    if sep and fragment.split("-", 1)[0] in {"sha256", "sha384", "sha512"}:
        return url, fragment
    return specifier, None


__all__ = ["CachedResponse", "ExponentialBackoff", "RemoteFetcher", "split_integrity"]
