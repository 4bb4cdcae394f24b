"""Fingerprint-addressed cache of rendered assets."""

from __future__ import annotations

import asyncio
import json
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from ..models import AssetKind, AssetResult, Fingerprint

_CACHE_VERSION = 1


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    builds: int = 0
    evictions: int = 0


class _InFlight:
    def __init__(self, task: "asyncio.Task[AssetResult]") -> None:
        self.task = task
        self.waiters = 0


class AssetCache:
    """Stores asset results keyed by fingerprint, with shared in-flight builds.

    Two paths that produce identical code and dependencies share one entry.
    Entries never expire by age; a changed dependency changes the
    fingerprint, and old entries stay valid until LRU eviction when a
    ``capacity`` is set.
    """

    def __init__(self, *, capacity: int | None = None, path: Path | None = None) -> None:
        if capacity is not None and capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.stats = CacheStats()
        self._path = path
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, AssetResult]" = OrderedDict()
        self._inflight: Dict[str, _InFlight] = {}
        self._dirty = False
        if path is not None:
            self._load(path)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fingerprint: object) -> bool:
        digest = fingerprint.digest if isinstance(fingerprint, Fingerprint) else fingerprint
        with self._lock:
            return digest in self._entries

    def get(self, fingerprint: Fingerprint) -> Optional[AssetResult]:
        with self._lock:
            result = self._entries.get(fingerprint.digest)
            if result is None:
                self.stats.misses += 1
                return None
            self._entries.move_to_end(fingerprint.digest)
            self.stats.hits += 1
            return result

    def put(self, result: AssetResult) -> None:
        with self._lock:
            self._store_locked(result)

    def invalidate(self, fingerprint: Fingerprint) -> bool:
        with self._lock:
            removed = self._entries.pop(fingerprint.digest, None) is not None
            if removed:
                self._dirty = True
            return removed

    def is_building(self, fingerprint: Fingerprint) -> bool:
        with self._lock:
            return fingerprint.digest in self._inflight

    async def get_or_build(
        self,
        fingerprint: Fingerprint,
        factory: Callable[[], Awaitable[AssetResult]],
    ) -> AssetResult:
        """Return the cached result or await the single build for ``fingerprint``.

        The lookup and the in-flight registration happen under one lock, so
        concurrent misses share one ``factory`` call. A cancelled caller only
        stops waiting; the build is cancelled once no caller awaits it.
        """
        digest = fingerprint.digest
        with self._lock:
            cached = self._entries.get(digest)
            if cached is not None:
                self._entries.move_to_end(digest)
                self.stats.hits += 1
                return cached
            build = self._inflight.get(digest)
            if build is None:
                self.stats.misses += 1
                self.stats.builds += 1
                task = asyncio.ensure_future(self._run(digest, factory))
                task.add_done_callback(_consume_exception)
                build = _InFlight(task)
                self._inflight[digest] = build
            build.waiters += 1

        try:
            return await asyncio.shield(build.task)
        except asyncio.CancelledError:
            with self._lock:
                build.waiters -= 1
                abandoned = build.waiters == 0 and not build.task.done()
            if abandoned:
                build.task.cancel()
            raise
        except BaseException:
            with self._lock:
                build.waiters -= 1
            raise
        else:
            with self._lock:
                build.waiters -= 1

    async def _run(
        self, digest: str, factory: Callable[[], Awaitable[AssetResult]]
    ) -> AssetResult:
        try:
            result = await factory()
            with self._lock:
                self._store_locked(result, digest=digest)
            return result
        finally:
            with self._lock:
                self._inflight.pop(digest, None)

    def _store_locked(self, result: AssetResult, *, digest: str | None = None) -> None:
        key = digest or result.fingerprint.digest
        self._entries[key] = result
        self._entries.move_to_end(key)
        self._dirty = True
        if self.capacity is not None:
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)
                self.stats.evictions += 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._dirty = True

    async def close(self) -> None:
        """Cancel outstanding builds and persist entries."""
        with self._lock:
            tasks = [build.task for build in self._inflight.values()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.persist()

    # ------------------------------------------------------------------
    # Persistence

    def persist(self) -> None:
        if not self._dirty or self._path is None:
            return
        with self._lock:
            entries = {key: _result_to_dict(result) for key, result in self._entries.items()}
            self._dirty = False
        payload = {"version": _CACHE_VERSION, "entries": entries}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError):
            return
        if not isinstance(data, dict) or data.get("version") != _CACHE_VERSION:
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return
        loaded = sorted(
            (
                (key, result)
                for key, result in (
                    (key, _result_from_dict(key, raw)) for key, raw in entries.items()
                )
                if result is not None
            ),
            key=lambda item: item[1].produced_at,
        )
        for key, result in loaded:
            self._store_locked(result, digest=key)
        self._dirty = False


def _consume_exception(task: "asyncio.Task[AssetResult]") -> None:
    if not task.cancelled():
        task.exception()


def _result_to_dict(result: AssetResult) -> Dict[str, object]:
    return {
        "kind": result.asset_kind.value,
        "text": result.text,
        "produced_at": result.produced_at.isoformat().replace("+00:00", "Z"),
        "integrity": result.integrity,
    }


def _result_from_dict(key: object, payload: object) -> Optional[AssetResult]:
    if not isinstance(key, str) or not isinstance(payload, dict):
        return None
    kind = payload.get("kind")
    text = payload.get("text")
    produced_at = payload.get("produced_at")
    integrity = payload.get("integrity")
    if not all(isinstance(value, str) for value in (kind, text, produced_at, integrity)):
        return None
    try:
        asset_kind = AssetKind(kind)
        timestamp = datetime.fromisoformat(str(produced_at).replace("Z", "+00:00"))
    except ValueError:
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    return AssetResult(
        fingerprint=Fingerprint(key),
        asset_kind=asset_kind,
        text=str(text),
        produced_at=timestamp,
        integrity=str(integrity),
    )


__all__ = ["AssetCache", "CacheStats"]
