"""Static and dynamic drivers over the shared asset engine."""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence

from .config import AssetGenConfig, load_config
from .engine import AssetEngine, entry_ref
from .errors import AssetGenError, InvalidSpecifierError
from .logging import asset_context, get_logger
from .models import AssetResult
from .naming import is_entry, output_path_for, source_candidates_for

MANIFEST_FILENAME = "assets-manifest.json"

_EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "node_modules",
    "__pycache__",
    ".pytest_cache",
    ".mypy_cache",
    ".assetgen",
}


class BuildState(str, Enum):
    DISCOVER = "discover"
    RESOLVE = "resolve"
    EXECUTE = "execute"
    WRITE = "write"
    DONE = "done"


@dataclass
class EntryReport:
    """Outcome of one static entry."""

    entry_path: str
    status: str
    state: BuildState
    output_path: Optional[str] = None
    fingerprint: Optional[str] = None
    cause: Optional[str] = None


@dataclass
class BuildReport:
    """Per-entry results of a static build."""

    entries: List[EntryReport] = field(default_factory=list)
    manifest_path: Optional[Path] = None

    @property
    def succeeded(self) -> List[EntryReport]:
        return [entry for entry in self.entries if entry.status == "success"]

    @property
    def failed(self) -> List[EntryReport]:
        return [entry for entry in self.entries if entry.status == "failed"]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def to_dict(self) -> Dict[str, object]:
        entries = []
        for entry in self.entries:
            data = asdict(entry)
            data["state"] = entry.state.value
            entries.append({key: value for key, value in data.items() if value is not None})
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "entries": entries,
        }

    def render(self) -> str:
        lines = []
        for entry in self.entries:
            if entry.status == "success":
                lines.append(f"ok      {entry.entry_path} -> {entry.output_path}")
            else:
                lines.append(f"FAILED  {entry.entry_path} ({entry.state.value}): {entry.cause}")
        lines.append(f"{len(self.succeeded)} succeeded, {len(self.failed)} failed")
        return "\n".join(lines)


@dataclass(frozen=True)
class DynamicResponse:
    """Transport-neutral answer to one asset request."""

    status: int
    body: str = ""
    content_type: str = "text/plain; charset=utf-8"
    etag: Optional[str] = None
    source: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.status != 404


class Orchestrator:
    """Drives static builds and answers dynamic requests with one engine."""

    def __init__(
        self,
        config: AssetGenConfig,
        engine: AssetEngine | None = None,
    ) -> None:
        self.config = config
        self.engine = engine or AssetEngine.from_config(config)
        self.logger = get_logger("orchestrator")

    @classmethod
    def from_path(cls, path: str | Path = ".") -> "Orchestrator":
        return cls(load_config(Path(path)))

    # ------------------------------------------------------------------
    # Static mode

    def run_build(self) -> BuildReport:
        """Render every discovered entry into the output tree."""
        return asyncio.run(self._run_build_and_close())

    async def _run_build_and_close(self) -> BuildReport:
        try:
            return await self.build()
        finally:
            await self.engine.close()

    async def build(self) -> BuildReport:
        source_dir = self.config.source_dir
        if not source_dir.is_dir():
            raise FileNotFoundError(f"Source directory not found: {source_dir}")

        entries = sorted(self.discover())
        self.logger.info("Discovered %d entries under %s", len(entries), source_dir)
        semaphore = asyncio.Semaphore(self.config.static.concurrency)

        async def _guarded(relative: str) -> tuple[EntryReport, Optional[AssetResult]]:
            async with semaphore:
                return await self._build_entry(relative)

        outcomes = await asyncio.gather(*(_guarded(relative) for relative in entries))
        report = BuildReport(entries=[entry for entry, _ in outcomes])
        if self.config.static.manifest:
            report.manifest_path = self._write_manifest(
                [(entry, result) for entry, result in outcomes if result is not None]
            )
        self.logger.info(
            "Static build finished: %d succeeded, %d failed",
            len(report.succeeded),
            len(report.failed),
        )
        return report

    def discover(self) -> Iterator[str]:
        """Yield entry paths relative to the source directory."""
        root = self.config.source_dir
        patterns = self.config.exclude_paths
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            rel_dir = current.relative_to(root).as_posix() if current != root else ""
            dirnames[:] = sorted(
                name
                for name in dirnames
                if name not in _EXCLUDED_DIRS
                and not _excluded(f"{rel_dir}/{name}" if rel_dir else name, patterns)
            )
            for filename in filenames:
                relative = f"{rel_dir}/{filename}" if rel_dir else filename
                if is_entry(relative) and not _excluded(relative, patterns):
                    yield relative

    async def _build_entry(self, relative: str) -> tuple[EntryReport, Optional[AssetResult]]:
        report = EntryReport(entry_path=relative, status="failed", state=BuildState.RESOLVE)
        with asset_context(entry=relative):
            try:
                result, target = await self._render_and_write(relative, report)
            except AssetGenError as exc:
                report.cause = exc.summary()
                with asset_context(fingerprint=report.fingerprint):
                    self.logger.error(
                        "Failed to build during %s: %s", report.state.value, report.cause
                    )
                return report, None
            except OSError as exc:
                report.cause = f"{type(exc).__name__}: {exc}"
                with asset_context(fingerprint=report.fingerprint):
                    self.logger.error("Failed to write output: %s", exc)
                return report, None
            except Exception as exc:  # pragma: no cover - unexpected failure
                report.cause = f"Internal: {type(exc).__name__}"
                self.logger.exception("Unexpected failure building entry")
                return report, None
            report.status = "success"
            report.state = BuildState.DONE
            self.logger.debug("Built -> %s", target)
        return report, result

    async def _render_and_write(
        self, relative: str, report: EntryReport
    ) -> tuple[AssetResult, Path]:
        output_relative = output_path_for(relative)
        if output_relative is None:
            raise InvalidSpecifierError(f"{relative} is not an asset module")
        source = self.config.source_dir / relative
        plan = await self.engine.plan(entry_ref(source, self.config.source_dir))
        report.fingerprint = plan.fingerprint.digest
        with asset_context(fingerprint=plan.fingerprint.digest):
            report.state = BuildState.EXECUTE
            result = await self.engine.materialize(plan)
            report.state = BuildState.WRITE
            target = self.config.out_dir / output_relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(result.text.encode("utf-8"))
        report.output_path = output_relative
        return result, target

    def _write_manifest(
        self, outcomes: Sequence[tuple[EntryReport, AssetResult]]
    ) -> Path:
        release = self.config.static.release_version
        assets: Dict[str, Dict[str, str]] = {}
        for entry, result in outcomes:
            if entry.output_path is None:
                continue
            segment = release or result.fingerprint.short
            assets[entry.output_path] = {
                "fingerprint": result.fingerprint.digest,
                "integrity": result.integrity,
                "kind": result.asset_kind.value,
                "versioned_path": f"{segment}/{entry.output_path}",
            }
        payload = {"release": release, "assets": dict(sorted(assets.items()))}
        manifest_path = self.config.out_dir / MANIFEST_FILENAME
        manifest_path.parent.mkdir(parents=True, exist_ok=True)
        manifest_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return manifest_path

    # ------------------------------------------------------------------
    # Dynamic mode

    def match(self, request_path: str) -> Optional[Path]:
        """Map a request path to an existing entry module, or None."""
        root = self.config.source_dir.resolve()
        for candidate in source_candidates_for(request_path):
            if _excluded(candidate, self.config.exclude_paths):
                continue
            path = (root / candidate).resolve()
            if root not in path.parents:
                continue
            if path.is_file():
                return path
        return None

    async def respond(
        self, request_path: str, *, if_none_match: str | None = None
    ) -> DynamicResponse:
        source = self.match(request_path)
        if source is None:
            return DynamicResponse(status=404, body="Not Found")

        relative = source.relative_to(self.config.source_dir.resolve()).as_posix()
        with asset_context(entry=relative):
            try:
                plan = await self.engine.plan(entry_ref(source, self.config.source_dir))
                etag = f'"{plan.fingerprint.digest}"'
                if if_none_match is not None and etag in _etag_tokens(if_none_match):
                    return DynamicResponse(status=304, etag=etag, source=relative)
                with asset_context(fingerprint=plan.fingerprint.digest):
                    result = self.engine.cache.get(plan.fingerprint)
                    if result is None:
                        self.logger.debug("Cache miss for %s; building", request_path)
                        result = await self.engine.materialize(plan)
            except AssetGenError as exc:
                self.logger.error("Request for %s failed: %s", request_path, exc.summary())
                return DynamicResponse(status=500, body=exc.summary(), source=relative)
            except Exception:
                self.logger.exception("Unexpected failure rendering %s", request_path)
                return DynamicResponse(
                    status=500, body="Internal: asset generation failed", source=relative
                )
        return DynamicResponse(
            status=200,
            body=result.text,
            content_type=result.asset_kind.content_type,
            etag=etag,
            source=relative,
        )


def _excluded(relative: str, patterns: Sequence[str]) -> bool:
    for pattern in patterns:
        cleaned = pattern.rstrip("/")
        if fnmatchcase(relative, cleaned) or relative.startswith(f"{cleaned}/"):
            return True
    return False


def _etag_tokens(header: str) -> List[str]:
    return [token.strip().removeprefix("W/") for token in header.split(",") if token.strip()]


__all__ = [
    "BuildReport",
    "BuildState",
    "DynamicResponse",
    "EntryReport",
    "MANIFEST_FILENAME",
    "Orchestrator",
]
