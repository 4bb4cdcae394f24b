"""Executes asset modules against pre-resolved import bindings."""

from __future__ import annotations

import asyncio
import builtins
import inspect
import json
from types import ModuleType
from typing import Any, Dict, Mapping, Optional

from .errors import (
    ExecutionError,
    ExecutionThrownError,
    ExecutionTimeoutError,
    InvalidExportError,
)
from .logging import get_logger
from .models import AssetKind, Origin, SourceUnit

EXPORT_NAME = "default"


class ExecutionSandbox:
    """Runs a unit's code in a fresh namespace and extracts its text export.

    Module bodies execute in a worker thread of the default executor so a
    slow body does not stall other requests. Bindings are injected as
    module globals before the body runs; nothing is resolved during
    execution. File or network access performed by a module body is not
    tracked as a dependency and is the module author's responsibility.

    A body that exceeds the timeout is reported as failed, but Python cannot
    interrupt the worker thread; it finishes in the background.
    """

    def __init__(self, *, timeout: float = 30.0) -> None:
        self.timeout = timeout
        self.logger = get_logger("sandbox")

    async def execute(
        self,
        unit: SourceUnit,
        imports: Mapping[str, Any],
        *,
        kind: Optional[AssetKind] = None,
    ) -> str:
        """Return the text exported by ``unit`` under the name ``default``."""
        try:
            return await asyncio.wait_for(
                self._execute(unit, imports, kind), timeout=self.timeout
            )
        except asyncio.TimeoutError as exc:
            raise ExecutionTimeoutError(
                f"{unit.name} did not finish within {self.timeout:g}s"
            ) from exc

    async def load_module(self, unit: SourceUnit, imports: Mapping[str, Any]) -> ModuleType:
        """Execute a helper module and return it as a module object for importers."""
        loop = asyncio.get_running_loop()
        try:
            namespace = await asyncio.wait_for(
                loop.run_in_executor(None, self._run_body, unit, imports),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExecutionTimeoutError(
                f"{unit.name} did not finish within {self.timeout:g}s"
            ) from exc
        module = ModuleType(_module_name(unit))
        module.__dict__.update(namespace)
        return module

    async def _execute(
        self,
        unit: SourceUnit,
        imports: Mapping[str, Any],
        kind: Optional[AssetKind],
    ) -> str:
        loop = asyncio.get_running_loop()
        namespace = await loop.run_in_executor(None, self._run_body, unit, imports)
        if EXPORT_NAME not in namespace:
            raise InvalidExportError(f"{unit.name} does not define '{EXPORT_NAME}'")
        value = await self._settle(unit, namespace[EXPORT_NAME])
        return _coerce_text(unit, value, kind)

    def _run_body(self, unit: SourceUnit, imports: Mapping[str, Any]) -> Dict[str, Any]:
        namespace: Dict[str, Any] = {
            "__name__": _module_name(unit),
            "__builtins__": builtins,
        }
        if unit.origin is Origin.LOCAL:
            namespace["__file__"] = unit.location
        namespace.update(imports)
        try:
            code = compile(unit.content, unit.location, "exec")
            exec(code, namespace)
        except (Exception, SystemExit) as exc:
            raise ExecutionThrownError(unit.name, exc) from exc
        self.logger.debug("Executed %s", unit.name)
        return namespace

    async def _settle(self, unit: SourceUnit, value: Any) -> Any:
        """Resolve a callable or awaitable export to its final value."""
        try:
            if inspect.iscoroutinefunction(value):
                value = value()
            elif callable(value) and not inspect.isawaitable(value):
                loop = asyncio.get_running_loop()
                value = await loop.run_in_executor(None, value)
            if inspect.isawaitable(value):
                value = await value
        except ExecutionError:
            raise
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise ExecutionThrownError(unit.name, exc) from exc
        return value


def _coerce_text(unit: SourceUnit, value: Any, kind: Optional[AssetKind]) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidExportError(f"{unit.name} exported bytes that are not UTF-8") from exc
    if kind is AssetKind.JSON and isinstance(value, (dict, list)):
        try:
            return json.dumps(value, indent=2, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise InvalidExportError(f"{unit.name} exported data that is not JSON serializable") from exc
    raise InvalidExportError(
        f"{unit.name} exported {type(value).__name__}; expected text"
    )


def _module_name(unit: SourceUnit) -> str:
    stem = unit.name.split(".", 1)[0] or "module"
    return f"assetgen.modules.{stem}_{unit.content_hash[:8]}"


__all__ = ["EXPORT_NAME", "ExecutionSandbox"]
