"""Core data models shared across assetgen components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class Origin(str, Enum):
    """Where a source unit was loaded from."""

    LOCAL = "local"
    REMOTE = "remote"
    PACKAGE = "package"


class AssetKind(str, Enum):
    """Text asset kinds an asset module may produce."""

    HTML = "html"
    CSS = "css"
    SVG = "svg"
    MD = "md"
    JSON = "json"
    JS = "js"

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]


_CONTENT_TYPES = {
    AssetKind.HTML: "text/html; charset=utf-8",
    AssetKind.CSS: "text/css; charset=utf-8",
    AssetKind.SVG: "image/svg+xml; charset=utf-8",
    AssetKind.MD: "text/markdown; charset=utf-8",
    AssetKind.JSON: "application/json; charset=utf-8",
    AssetKind.JS: "text/javascript; charset=utf-8",
}


@dataclass(frozen=True)
class ModuleRef:
    """A specifier as written by an importer, plus the context it is relative to."""

    specifier: str
    base_context: str
    integrity: Optional[str] = None


@dataclass(frozen=True)
class SourceUnit:
    """Loaded module source. Immutable; changed content produces a new unit."""

    key: str
    origin: Origin
    location: str
    content: bytes = field(repr=False)
    content_hash: str

    @property
    def name(self) -> str:
        """Final path segment, used for naming-rule checks and diagnostics."""
        if self.origin is Origin.PACKAGE:
            return self.location
        return self.location.rstrip("/").rsplit("/", 1)[-1]

    def text(self) -> str:
        return self.content.decode("utf-8")


@dataclass(frozen=True)
class Fingerprint:
    """Content-derived identity of a unit together with its dependencies."""

    digest: str

    @property
    def short(self) -> str:
        return self.digest[:12]

    def __str__(self) -> str:
        return self.digest


@dataclass(frozen=True)
class AssetResult:
    """Rendered output of one asset module."""

    fingerprint: Fingerprint
    asset_kind: AssetKind
    text: str
    produced_at: datetime
    integrity: str


__all__ = [
    "AssetKind",
    "AssetResult",
    "Fingerprint",
    "ModuleRef",
    "Origin",
    "SourceUnit",
]
