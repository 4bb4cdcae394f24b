"""Error taxonomy shared by the resolver, fetcher, sandbox and graph builder."""

from __future__ import annotations

from typing import Sequence


class AssetGenError(RuntimeError):
    """Base class for failures local to one entry or one request."""

    code = "Error"

    def summary(self) -> str:
        """Return a short diagnostic that is safe to show to untrusted callers."""
        message = " ".join(str(self).split())
        if len(message) > 200:
            message = message[:200] + "…"
        return f"{self.code}: {message}" if message else self.code


class ConfigError(AssetGenError):
    """Raised when the configuration file cannot be parsed."""

    code = "Config"


class ResolutionError(AssetGenError):
    code = "Resolution"


class SourceNotFoundError(ResolutionError):
    code = "NotFound"


class InvalidSpecifierError(ResolutionError):
    code = "InvalidSpecifier"


class FetchError(AssetGenError):
    """Remote module retrieval failed."""

    code = "Fetch"
    transient = False


class InsecureSchemeError(FetchError):
    code = "InsecureScheme"


class IntegrityMismatchError(FetchError):
    code = "IntegrityMismatch"


class UnreachableError(FetchError):
    code = "Unreachable"
    transient = True


class HttpStatusError(FetchError):
    code = "HttpStatus"

    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"{url} answered with HTTP {status}")
        self.status = status
        self.url = url

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.status >= 500


class ExecutionError(AssetGenError):
    code = "Execution"


class ExecutionThrownError(ExecutionError):
    """The module body or its asynchronous export raised."""

    code = "Thrown"

    def __init__(self, module: str, cause: BaseException) -> None:
        super().__init__(f"{module} raised {type(cause).__name__}: {cause}")
        self.module = module
        self.cause = cause


class InvalidExportError(ExecutionError):
    code = "InvalidExport"


class ExecutionTimeoutError(ExecutionError):
    code = "Timeout"


class GraphError(AssetGenError):
    code = "Graph"


class CycleError(GraphError):
    code = "Cycle"

    def __init__(self, path: Sequence[str]) -> None:
        self.path = list(path)
        super().__init__("import cycle " + " → ".join(self.path))


__all__ = [
    "AssetGenError",
    "ConfigError",
    "CycleError",
    "ExecutionError",
    "ExecutionThrownError",
    "ExecutionTimeoutError",
    "FetchError",
    "GraphError",
    "HttpStatusError",
    "InsecureSchemeError",
    "IntegrityMismatchError",
    "InvalidExportError",
    "InvalidSpecifierError",
    "ResolutionError",
    "SourceNotFoundError",
    "UnreachableError",
]
