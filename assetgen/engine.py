"""Resolve, fingerprint, execute and cache: the core both serving modes share."""

from __future__ import annotations

import asyncio
import importlib
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Dict, Optional

from .config import AssetGenConfig
from .errors import ExecutionThrownError, InvalidSpecifierError
from .fingerprints import FingerprintStore, integrity_digest
from .graph import DependencyGraphBuilder, ModuleGraph
from .logging import asset_context, get_logger
from .models import AssetKind, AssetResult, Fingerprint, ModuleRef, Origin, SourceUnit
from .naming import asset_kind_for
from .remote import ExponentialBackoff, RemoteFetcher
from .resolver import ModuleResolver
from .sandbox import ExecutionSandbox
from .stores import AssetCache


@dataclass
class RenderPlan:
    """A resolved graph with fingerprints, ready to execute."""

    graph: ModuleGraph
    kind: AssetKind
    fingerprints: Dict[str, Fingerprint]

    @property
    def entry(self) -> SourceUnit:
        return self.graph.entry

    @property
    def fingerprint(self) -> Fingerprint:
        return self.fingerprints[self.graph.entry.key]


@dataclass
class _Session:
    plan: RenderPlan
    units: Dict[str, SourceUnit]
    bindings: Dict[str, Any] = field(default_factory=dict)


class AssetEngine:
    """Owns the process-scoped resolver, fingerprint store, sandbox and cache.

    Construct one per process (or per test) and pass it to the orchestrator;
    :meth:`close` persists caches and cancels outstanding builds.
    """

    def __init__(
        self,
        *,
        resolver: ModuleResolver | None = None,
        sandbox: ExecutionSandbox | None = None,
        cache: AssetCache | None = None,
        fingerprints: FingerprintStore | None = None,
    ) -> None:
        self.resolver = resolver or ModuleResolver()
        self.graph_builder = DependencyGraphBuilder(self.resolver)
        self.sandbox = sandbox or ExecutionSandbox()
        self.cache = cache or AssetCache()
        self.fingerprints = fingerprints or FingerprintStore()
        self.logger = get_logger("engine")

    @classmethod
    def from_config(cls, config: AssetGenConfig) -> "AssetEngine":
        fetcher = RemoteFetcher(
            timeout=config.fetch.timeout,
            backoff=ExponentialBackoff(
                attempts=config.fetch.attempts,
                base_delay=config.fetch.base_delay,
            ),
            cache_path=config.fetch.cache_path,
        )
        return cls(
            resolver=ModuleResolver(fetcher),
            sandbox=ExecutionSandbox(timeout=config.execution.timeout),
            cache=AssetCache(capacity=config.cache.capacity, path=config.cache.path),
        )

    async def plan(self, entry: ModuleRef) -> RenderPlan:
        """Resolve the entry's graph and fingerprint every unit in it."""
        graph = await self.graph_builder.build(entry)
        kind = asset_kind_for(graph.entry.name)
        if kind is None:
            raise InvalidSpecifierError(f"{graph.entry.name} is not an asset module")

        fingerprints: Dict[str, Fingerprint] = {}
        for unit in graph.order:
            dependencies = [
                (dep.binding, fingerprints[dep.key]) for dep in graph.edges.get(unit.key, [])
            ]
            fingerprints[unit.key] = self.fingerprints.compute(
                unit, dependencies, kind=_unit_kind(unit)
            )
        return RenderPlan(graph=graph, kind=kind, fingerprints=fingerprints)

    async def materialize(self, plan: RenderPlan) -> AssetResult:
        """Execute the plan, reusing cached results for unchanged fingerprints."""
        session = _Session(plan=plan, units={unit.key: unit for unit in plan.graph.order})
        return await self._asset(session, plan.entry, plan.kind)

    async def render(self, entry: ModuleRef) -> AssetResult:
        return await self.materialize(await self.plan(entry))

    async def render_path(self, path: Path) -> AssetResult:
        return await self.render(entry_ref(path.expanduser()))

    async def fingerprint(self, entry: ModuleRef) -> Fingerprint:
        return (await self.plan(entry)).fingerprint

    async def close(self) -> None:
        await self.cache.close()
        self.resolver.fetcher.persist()

    async def _asset(self, session: _Session, unit: SourceUnit, kind: AssetKind) -> AssetResult:
        fingerprint = session.plan.fingerprints[unit.key]

        async def _build() -> AssetResult:
            with asset_context(fingerprint=fingerprint.digest):
                imports = await self._imports(session, unit)
                self.logger.debug("Executing %s", unit.name)
                text = await self.sandbox.execute(unit, imports, kind=kind)
            return AssetResult(
                fingerprint=fingerprint,
                asset_kind=kind,
                text=text,
                produced_at=datetime.now(UTC),
                integrity=integrity_digest(text.encode("utf-8")),
            )

        return await self.cache.get_or_build(fingerprint, _build)

    async def _imports(self, session: _Session, unit: SourceUnit) -> Dict[str, Any]:
        imports: Dict[str, Any] = {}
        for dep in session.plan.graph.edges.get(unit.key, []):
            imports[dep.binding] = await self._binding(session, session.units[dep.key])
        return imports

    async def _binding(self, session: _Session, unit: SourceUnit) -> Any:
        if unit.key in session.bindings:
            return session.bindings[unit.key]

        value: Any
        kind = _unit_kind(unit)
        if unit.origin is Origin.PACKAGE:
            value = await _import_package(unit)
        elif kind is not None:
            value = (await self._asset(session, unit, kind)).text
        else:
            imports = await self._imports(session, unit)
            value = await self.sandbox.load_module(unit, imports)
        session.bindings[unit.key] = value
        return value


def _unit_kind(unit: SourceUnit) -> Optional[AssetKind]:
    if unit.origin is Origin.PACKAGE:
        return None
    return asset_kind_for(unit.name)


async def _import_package(unit: SourceUnit) -> Any:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(None, importlib.import_module, unit.location)
    except Exception as exc:
        raise ExecutionThrownError(unit.location, exc) from exc


def entry_ref(path: Path, source_dir: Optional[Path] = None) -> ModuleRef:
    """Build the reference for an entry module on disk."""
    base = source_dir if source_dir is not None else path.parent
    return ModuleRef(specifier=path.absolute().as_posix(), base_context=base.absolute().as_posix())


__all__ = ["AssetEngine", "RenderPlan", "entry_ref"]
