"""Logging for assetgen: a package logger hierarchy plus per-asset context.

Records emitted while an entry is being built or served carry that entry's
path and fingerprint, so interleaved concurrent builds stay readable::

    [assetgen] ERROR entry=a/index.html.py fp=3f2a9c01d4e7 Failed to build ...

The context lives in a :class:`contextvars.ContextVar`, which asyncio copies
into every task it creates; a value bound inside one build never leaks into
its siblings.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Dict, Iterator, Optional

_LOGGER_NAME = "assetgen"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_asset_context: ContextVar[Dict[str, str]] = ContextVar("assetgen_asset_context", default={})


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a module-scoped logger under the assetgen hierarchy."""
    full_name = f"{_LOGGER_NAME}.{name}" if name else _LOGGER_NAME
    return logging.getLogger(full_name)


@contextmanager
def asset_context(
    entry: Optional[str] = None, fingerprint: Optional[str] = None
) -> Iterator[Dict[str, str]]:
    """Bind the entry path and/or fingerprint to records logged in this block."""
    fields = dict(_asset_context.get())
    if entry is not None:
        fields["entry"] = entry
    if fingerprint is not None:
        fields["fp"] = fingerprint[:12]
    token = _asset_context.set(fields)
    try:
        yield fields
    finally:
        _asset_context.reset(token)


class AssetContextFilter(logging.Filter):
    """Expose the bound asset context as ``%(asset)s`` on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        fields = _asset_context.get()
        record.asset = "".join(f"{key}={fields[key]} " for key in ("entry", "fp") if key in fields)
        return True


def resolve_level(name: str | None, *, verbose: bool = False) -> int:
    if verbose:
        return logging.DEBUG
    if not name:
        return logging.INFO
    return LEVELS[name.lower()]


def configure_logging(
    *,
    verbose: bool = False,
    log_file: Path | None = None,
    level: str | None = None,
) -> logging.Logger:
    """Configure the assetgen logger with console output and optional file sink.

    ``level`` is a name from :data:`LEVELS` (usually ``logging.level`` in
    ``.assetgen.yml``); ``verbose`` forces debug output.
    """
    resolved = resolve_level(level, verbose=verbose)
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(resolved)
    logger.propagate = False

    # Reconfiguring replaces handlers; the CLI configures twice once config is loaded.
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    context_filter = AssetContextFilter()
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(resolved)
    stream_handler.addFilter(context_filter)
    stream_handler.setFormatter(logging.Formatter("[assetgen] %(levelname)s %(asset)s%(message)s"))
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(resolved)
        file_handler.addFilter(context_filter)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(asset)s%(message)s")
        )
        logger.addHandler(file_handler)

    return logger


__all__ = [
    "LEVELS",
    "AssetContextFilter",
    "asset_context",
    "configure_logging",
    "get_logger",
    "resolve_level",
]
