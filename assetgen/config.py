"""Configuration loading for assetgen (.assetgen.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import ConfigError
from .logging import LEVELS

CONFIG_FILENAME = ".assetgen.yml"


@dataclass
class CacheConfig:
    """Asset cache sizing and persistence."""

    capacity: Optional[int] = None
    path: Optional[Path] = None


@dataclass
class FetchConfig:
    """Remote module fetch behaviour."""

    timeout: float = 10.0
    attempts: int = 3
    base_delay: float = 0.2
    cache_path: Optional[Path] = None


@dataclass
class ExecutionConfig:
    """Per-module execution budget."""

    timeout: float = 30.0


@dataclass
class StaticConfig:
    """Static build settings."""

    concurrency: int = 4
    manifest: bool = True
    release_version: Optional[str] = None


@dataclass
class ServeConfig:
    """Dynamic mode HTTP settings."""

    host: str = "127.0.0.1"
    port: int = 8000


@dataclass
class LoggingConfig:
    """Log level and optional log file."""

    level: str = "info"
    file: Optional[Path] = None


@dataclass
class AssetGenConfig:
    """Represents the settings defined in .assetgen.yml."""

    root: Path
    source_dir: Path = Path("src")
    out_dir: Path = Path("dist")
    exclude_paths: List[str] = field(default_factory=list)
    cache: CacheConfig = field(default_factory=CacheConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    static: StaticConfig = field(default_factory=StaticConfig)
    serve: ServeConfig = field(default_factory=ServeConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self) -> None:
        if not self.source_dir.is_absolute():
            self.source_dir = self.root / self.source_dir
        if not self.out_dir.is_absolute():
            self.out_dir = self.root / self.out_dir


def load_config(config_path: Path) -> AssetGenConfig:
    """Load configuration from disk, returning defaults when the file is absent."""
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return AssetGenConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    config = AssetGenConfig(
        root=root,
        source_dir=Path(_as_str(data.get("source_dir")) or "src"),
        out_dir=Path(_as_str(data.get("out_dir")) or "dist"),
        exclude_paths=_as_str_list(data.get("exclude_paths")),
    )

    cache_data = _as_dict(data.get("cache"))
    if cache_data:
        config.cache.capacity = _as_positive_int(cache_data.get("capacity"), "cache.capacity")
        cache_path = _as_str(cache_data.get("path"))
        config.cache.path = root / cache_path if cache_path else None

    fetch_data = _as_dict(data.get("fetch"))
    if fetch_data:
        config.fetch.timeout = _as_float(fetch_data.get("timeout")) or config.fetch.timeout
        config.fetch.attempts = (
            _as_positive_int(fetch_data.get("attempts"), "fetch.attempts")
            or config.fetch.attempts
        )
        base_delay = _as_float(fetch_data.get("base_delay"))
        if base_delay is not None:
            config.fetch.base_delay = base_delay
        cache_path = _as_str(fetch_data.get("cache_path"))
        config.fetch.cache_path = root / cache_path if cache_path else None

    execution_data = _as_dict(data.get("execution"))
    if execution_data:
        config.execution.timeout = (
            _as_float(execution_data.get("timeout")) or config.execution.timeout
        )

    static_data = _as_dict(data.get("static"))
    if static_data:
        config.static.concurrency = (
            _as_positive_int(static_data.get("concurrency"), "static.concurrency")
            or config.static.concurrency
        )
        manifest = _as_bool(static_data.get("manifest"))
        if manifest is not None:
            config.static.manifest = manifest
        config.static.release_version = _as_str(static_data.get("release_version"))

    serve_data = _as_dict(data.get("serve"))
    if serve_data:
        config.serve.host = _as_str(serve_data.get("host")) or config.serve.host
        config.serve.port = _as_positive_int(serve_data.get("port"), "serve.port") or config.serve.port

    logging_data = _as_dict(data.get("logging"))
    if logging_data:
        level = _as_str(logging_data.get("level"))
        if level is not None:
            if level.lower() not in LEVELS:
                raise ConfigError(
                    f"logging.level must be one of: {', '.join(LEVELS)}"
                )
            config.logging.level = level.lower()
        log_file = _as_str(logging_data.get("file"))
        config.logging.file = root / log_file if log_file else None

    return config


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    if config_path.name != CONFIG_FILENAME:
        return (config_path.parent / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_positive_int(value: Any, label: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"{label} must be a positive integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{label} must be a positive integer") from exc
    if number <= 0:
        raise ConfigError(f"{label} must be a positive integer")
    return number


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = [
    "AssetGenConfig",
    "CacheConfig",
    "ConfigError",
    "ExecutionConfig",
    "FetchConfig",
    "ServeConfig",
    "StaticConfig",
    "load_config",
]
