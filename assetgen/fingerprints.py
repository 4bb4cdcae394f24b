"""Deterministic identity keys and integrity digests."""

from __future__ import annotations

import base64
import hashlib
import threading
from typing import Dict, Optional, Sequence, Tuple

from .models import AssetKind, Fingerprint, SourceUnit

# Bump when the execution contract changes so stale persisted entries miss.
ENGINE_SALT = "assetgen/2"

_SRI_ALGORITHMS = ("sha256", "sha384", "sha512")


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def integrity_digest(data: bytes, algorithm: str = "sha384") -> str:
    """Return a subresource-integrity value such as ``sha384-<base64>``."""
    digest = hashlib.new(algorithm, data).digest()
    return f"{algorithm}-{base64.b64encode(digest).decode('ascii')}"


def verify_integrity(data: bytes, expected: str) -> bool:
    """Check ``data`` against an SRI string; any listed hash may match."""
    for token in expected.split():
        algorithm, sep, _ = token.partition("-")
        if not sep or algorithm not in _SRI_ALGORITHMS:
            continue
        if integrity_digest(data, algorithm) == token:
            return True
    return False


class FingerprintStore:
    """Computes fingerprints and records the latest one per unit key.

    Only the newest fingerprint of each key is kept; an edited source replaces
    its entry rather than adding one.
    """

    def __init__(self, salt: str = ENGINE_SALT) -> None:
        self._salt = salt
        self._lock = threading.Lock()
        self._by_key: Dict[str, Fingerprint] = {}

    def compute(
        self,
        unit: SourceUnit,
        dependencies: Sequence[Tuple[str, Fingerprint]] = (),
        *,
        kind: Optional[AssetKind] = None,
    ) -> Fingerprint:
        """Fingerprint ``unit`` given ``(binding, fingerprint)`` pairs of its direct imports.

        ``kind`` is set for asset modules: one body renders to different
        results as CSS and as HTML, so the kind is part of the identity.
        """
        digest = hashlib.sha256()
        digest.update(self._salt.encode("utf-8"))
        digest.update(b"\0")
        digest.update(kind.value.encode("ascii") if kind is not None else b"-")
        digest.update(b"\0")
        digest.update(unit.content_hash.encode("ascii"))
        for name, dep_digest in sorted((name, fp.digest) for name, fp in dependencies):
            digest.update(b"\0")
            digest.update(name.encode("utf-8"))
            digest.update(b"=")
            digest.update(dep_digest.encode("ascii"))
        fingerprint = Fingerprint(digest.hexdigest())
        with self._lock:
            self._by_key[unit.key] = fingerprint
        return fingerprint

    def latest(self, key: str) -> Optional[Fingerprint]:
        """Return the most recently computed fingerprint for a unit key."""
        with self._lock:
            return self._by_key.get(key)

    def clear(self) -> None:
        with self._lock:
            self._by_key.clear()


__all__ = [
    "ENGINE_SALT",
    "FingerprintStore",
    "content_hash",
    "integrity_digest",
    "verify_integrity",
]
