"""Maps module specifiers to memoized source units."""

from __future__ import annotations

import asyncio
import importlib.util
import os
import re
import threading
from dataclasses import dataclass
from importlib import metadata
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import urljoin, urlparse

from .errors import IntegrityMismatchError, InvalidSpecifierError, SourceNotFoundError
from .fingerprints import content_hash, verify_integrity
from .logging import get_logger
from .models import ModuleRef, Origin, SourceUnit
from .remote import RemoteFetcher, split_integrity

_PACKAGE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")
_PACKAGE_PREFIX = "package:"


@dataclass(frozen=True)
class _LocalStat:
    size: int
    mtime_ns: int


def _is_remote_context(base_context: str) -> bool:
    return urlparse(base_context).scheme in {"http", "https"}


def normalize(ref: ModuleRef) -> Tuple[Origin, str, Optional[str]]:
    """Return ``(origin, key, integrity)`` for a reference without touching I/O.

    Local keys are absolute POSIX paths, remote keys are URLs and package
    keys are ``package:<dotted.name>``.
    """
    specifier = ref.specifier.strip()
    if not specifier:
        raise InvalidSpecifierError("empty module specifier")

    scheme = urlparse(specifier).scheme.lower()
    if scheme in {"http", "https"}:
        url, integrity = split_integrity(specifier)
        return Origin.REMOTE, url, ref.integrity or integrity
    if scheme and len(scheme) > 1:
        raise InvalidSpecifierError(f"unsupported scheme in specifier '{specifier}'")

    if specifier.startswith(("./", "../", "/")):
        if _is_remote_context(ref.base_context):
            url, integrity = split_integrity(urljoin(ref.base_context, specifier))
            return Origin.REMOTE, url, ref.integrity or integrity
        base = Path(ref.base_context)
        if base.suffix == ".py" or base.is_file():
            base = base.parent
        if specifier.startswith("/"):
            target = Path(specifier)
        else:
            target = base / specifier
        key = Path(os.path.normpath(target.absolute())).as_posix()
        return Origin.LOCAL, key, ref.integrity

    if _PACKAGE_PATTERN.match(specifier):
        return Origin.PACKAGE, f"{_PACKAGE_PREFIX}{specifier}", None

    raise InvalidSpecifierError(f"cannot classify module specifier '{specifier}'")


class ModuleResolver:
    """Resolves :class:`ModuleRef` values to :class:`SourceUnit` instances.

    Results are memoized by normalized key for the lifetime of the resolver.
    Local files are re-stat'ed on each lookup so an edited file produces a
    new unit; unchanged files return the identical instance without being
    re-read. Remote units are memoized as fetched; revalidation happens in
    the fetcher on the next :meth:`reset`.
    """

    def __init__(self, fetcher: RemoteFetcher | None = None) -> None:
        self.fetcher = fetcher or RemoteFetcher()
        self.logger = get_logger("resolver")
        self._lock = threading.Lock()
        self._units: Dict[str, SourceUnit] = {}
        self._stats: Dict[str, _LocalStat] = {}
        self._pending: Dict[str, _PendingFetch] = {}

    async def resolve(self, ref: ModuleRef) -> SourceUnit:
        origin, key, integrity = normalize(ref)
        if origin is Origin.LOCAL:
            return self._resolve_local(key)
        if origin is Origin.PACKAGE:
            return self._resolve_package(key)
        return await self._resolve_remote(key, integrity)

    def reset(self) -> None:
        """Forget memoized units; the next resolution re-reads or revalidates."""
        with self._lock:
            self._units.clear()
            self._stats.clear()

    def _resolve_local(self, key: str) -> SourceUnit:
        path = Path(key)
        try:
            stat_result = path.stat()
        except FileNotFoundError as exc:
            raise SourceNotFoundError(f"module not found: {key}") from exc
        if not path.is_file():
            raise SourceNotFoundError(f"module is not a file: {key}")
        current = _LocalStat(size=stat_result.st_size, mtime_ns=stat_result.st_mtime_ns)

        with self._lock:
            cached = self._units.get(key)
            if cached is not None and self._stats.get(key) == current:
                return cached

        content = path.read_bytes()
        unit = SourceUnit(
            key=key,
            origin=Origin.LOCAL,
            location=key,
            content=content,
            content_hash=content_hash(content),
        )
        with self._lock:
            existing = self._units.get(key)
            if existing is not None and existing.content_hash == unit.content_hash:
                unit = existing
            self._units[key] = unit
            self._stats[key] = current
        self.logger.debug("Loaded %s", key)
        return unit

    def _resolve_package(self, key: str) -> SourceUnit:
        with self._lock:
            cached = self._units.get(key)
        if cached is not None:
            return cached

        name = key[len(_PACKAGE_PREFIX):]
        try:
            spec = importlib.util.find_spec(name)
        except (ImportError, ValueError) as exc:
            raise SourceNotFoundError(f"package not found: {name}") from exc
        if spec is None:
            raise SourceNotFoundError(f"package not found: {name}")

        content = _package_identity(name, spec.origin)
        unit = SourceUnit(
            key=key,
            origin=Origin.PACKAGE,
            location=name,
            content=content,
            content_hash=content_hash(content),
        )
        with self._lock:
            unit = self._units.setdefault(key, unit)
        return unit

    async def _resolve_remote(self, url: str, integrity: Optional[str]) -> SourceUnit:
        """Return the unit for ``url``, sharing one fetch between concurrent callers.

        The fetch runs in its own task. A cancelled caller only stops waiting;
        the fetch is cancelled once no caller awaits it.
        """
        with self._lock:
            unit = self._units.get(url)
            pending = None
            if unit is None:
                pending = self._pending.get(url)
                if pending is None:
                    task = asyncio.ensure_future(self._fetch(url, integrity))
                    task.add_done_callback(_consume_exception)
                    pending = _PendingFetch(task)
                    self._pending[url] = pending
                pending.waiters += 1

        if pending is not None:
            unit = await self._await_fetch(url, pending)
        if integrity and not verify_integrity(unit.content, integrity):
            raise IntegrityMismatchError(f"content of {url} does not match {integrity}")
        return unit

    async def _await_fetch(self, url: str, pending: "_PendingFetch") -> SourceUnit:
        try:
            return await asyncio.shield(pending.task)
        except asyncio.CancelledError:
            with self._lock:
                pending.waiters -= 1
                abandoned = pending.waiters == 0 and not pending.task.done()
                if abandoned and self._pending.get(url) is pending:
                    del self._pending[url]
            if abandoned:
                pending.task.cancel()
            raise
        except BaseException:
            with self._lock:
                pending.waiters -= 1
            raise
        else:
            with self._lock:
                pending.waiters -= 1

    async def _fetch(self, url: str, integrity: Optional[str]) -> SourceUnit:
        try:
            unit = await self.fetcher.fetch(url, integrity)
            with self._lock:
                self._units[url] = unit
            return unit
        finally:
            with self._lock:
                pending = self._pending.get(url)
                if pending is not None and pending.task is asyncio.current_task():
                    del self._pending[url]


class _PendingFetch:
    def __init__(self, task: "asyncio.Task[SourceUnit]") -> None:
        self.task = task
        self.waiters = 0


def _consume_exception(task: "asyncio.Task[SourceUnit]") -> None:
    if not task.cancelled():
        task.exception()


def _package_identity(name: str, origin: Optional[str]) -> bytes:
    if origin and origin not in {"built-in", "frozen", "namespace"}:
        source = Path(origin)
        if source.is_file():
            return source.read_bytes()
    top_level = name.split(".", 1)[0]
    try:
        version = metadata.version(top_level)
    except metadata.PackageNotFoundError:
        version = "unversioned"
    return f"{name}=={version}".encode("utf-8")


__all__ = ["ModuleResolver", "normalize"]
