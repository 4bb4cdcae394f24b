"""Path conventions mapping asset modules to the files they produce."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Optional

from .models import AssetKind

MODULE_SUFFIX = ".py"
INDEX_STEM = "index"
DEFAULT_INDEX_KIND = AssetKind.HTML

_KINDS = {kind.value: kind for kind in AssetKind}


def asset_kind_for(path: str) -> Optional[AssetKind]:
    """Return the asset kind encoded in ``<name>.<ext>.py``, or None."""
    name = PurePosixPath(path.replace("\\", "/")).name
    if not name.endswith(MODULE_SUFFIX):
        return None
    stem = name[: -len(MODULE_SUFFIX)]
    base, dot, ext = stem.rpartition(".")
    if not dot or not base:
        return None
    return _KINDS.get(ext)


def is_asset_module(path: str) -> bool:
    return asset_kind_for(path) is not None


def is_entry(relative_path: str) -> bool:
    """True for asset modules that are published on their own.

    Segments starting with ``_`` mark partials that exist only to be imported;
    dot segments are hidden.
    """
    parts = [part for part in relative_path.replace("\\", "/").split("/") if part]
    if not parts or any(_is_hidden(part) for part in parts):
        return False
    return is_asset_module(relative_path)


def _is_hidden(part: str) -> bool:
    return part.startswith((".", "_"))


def output_path_for(path: str) -> Optional[str]:
    """Map ``a/b/name.css.py`` to ``a/b/name.css``; None for non-asset paths."""
    if asset_kind_for(path) is None:
        return None
    return path.replace("\\", "/")[: -len(MODULE_SUFFIX)]


def source_candidates_for(request_path: str) -> list[str]:
    """Invert the naming rule for an HTTP path.

    Returns relative source paths to try in order. Paths that escape the
    source root or name no asset kind yield an empty list.
    """
    raw = request_path.split("?", 1)[0].split("#", 1)[0]
    parts = [part for part in raw.split("/") if part]
    if any(_is_hidden(part) for part in parts):
        return []
    relative = "/".join(parts)

    if not parts or raw.endswith("/"):
        prefix = f"{relative}/" if relative else ""
        return [f"{prefix}{INDEX_STEM}.{DEFAULT_INDEX_KIND.value}{MODULE_SUFFIX}"]

    candidate = f"{relative}{MODULE_SUFFIX}"
    if asset_kind_for(candidate) is not None:
        return [candidate]
    # Extensionless path: treat as a directory with an HTML index.
    if "." not in parts[-1]:
        return [f"{relative}/{INDEX_STEM}.{DEFAULT_INDEX_KIND.value}{MODULE_SUFFIX}"]
    return []


__all__ = [
    "asset_kind_for",
    "is_asset_module",
    "is_entry",
    "output_path_for",
    "source_candidates_for",
]
