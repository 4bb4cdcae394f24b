"""Tests for the HTTPS remote fetcher."""

from __future__ import annotations

import asyncio
from pathlib import Path
from urllib.error import HTTPError, URLError

import pytest

from assetgen.errors import (
    HttpStatusError,
    InsecureSchemeError,
    IntegrityMismatchError,
    UnreachableError,
)
from assetgen.fingerprints import integrity_digest
from assetgen.models import Origin
from assetgen.remote import ExponentialBackoff, RemoteFetcher, split_integrity

URL = "https://cdn.example.com/lib/button.html.py"


class FakeResponse:
    def __init__(self, body: bytes, headers: dict[str, str] | None = None, status: int = 200):
        self._body = body
        self.headers = headers or {}
        self.status = status

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class ScriptedUrlopen:
    """Replays a list of responses or exceptions and records requests."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.requests: list[dict[str, object]] = []

    def __call__(self, request, timeout=None):
        self.requests.append(
            {
                "url": request.full_url,
                "headers": {k.lower(): v for k, v in request.header_items()},
                "timeout": timeout,
            }
        )
        step = self.steps.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step


def _http_error(code: int) -> HTTPError:
    return HTTPError(URL, code, "status", {}, None)


def _fetcher(**kwargs) -> RemoteFetcher:
    kwargs.setdefault("backoff", ExponentialBackoff(attempts=3, base_delay=0.0))
    return RemoteFetcher(timeout=4.0, **kwargs)


def test_fetch_rejects_plain_http_without_network(monkeypatch) -> None:
    opener = ScriptedUrlopen()
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", opener)

    with pytest.raises(InsecureSchemeError):
        asyncio.run(_fetcher().fetch("http://cdn.example.com/a.html.py"))
    assert opener.requests == []


def test_fetch_returns_remote_unit(monkeypatch) -> None:
    opener = ScriptedUrlopen(FakeResponse(b"default = 'hi'", {"ETag": '"v1"'}))
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", opener)

    unit = asyncio.run(_fetcher().fetch(URL))

    assert unit.origin is Origin.REMOTE
    assert unit.key == URL
    assert unit.content == b"default = 'hi'"
    assert unit.name == "button.html.py"
    assert opener.requests[0]["timeout"] == 4.0
    assert "if-none-match" not in opener.requests[0]["headers"]


def test_fetch_revalidates_with_etag_and_reuses_on_304(monkeypatch) -> None:
    opener = ScriptedUrlopen(
        FakeResponse(b"default = 'hi'", {"ETag": '"v1"', "Last-Modified": "Mon, 01 Jan 2024 00:00:00 GMT"}),
        _http_error(304),
    )
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", opener)
    fetcher = _fetcher()

    async def _twice():
        return await fetcher.fetch(URL), await fetcher.fetch(URL)

    first, second = asyncio.run(_twice())

    assert second is first
    headers = opener.requests[1]["headers"]
    assert headers["if-none-match"] == '"v1"'
    assert headers["if-modified-since"] == "Mon, 01 Jan 2024 00:00:00 GMT"


def test_fetch_integrity_mismatch_discards_response(monkeypatch) -> None:
    opener = ScriptedUrlopen(FakeResponse(b"default = 'tampered'"))
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", opener)
    fetcher = _fetcher()

    with pytest.raises(IntegrityMismatchError):
        asyncio.run(fetcher.fetch(URL, integrity_digest(b"default = 'original'")))
    assert fetcher.cached(URL) is None


def test_fetch_accepts_matching_integrity(monkeypatch) -> None:
    body = b"default = 'original'"
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", ScriptedUrlopen(FakeResponse(body)))

    unit = asyncio.run(_fetcher().fetch(URL, integrity_digest(body, "sha256")))

    assert unit.content == body


def test_fetch_retries_transient_network_errors(monkeypatch) -> None:
    opener = ScriptedUrlopen(
        URLError("temporary failure in name resolution"),
        TimeoutError("read timed out"),
        FakeResponse(b"default = 'ok'"),
    )
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", opener)

    unit = asyncio.run(_fetcher().fetch(URL))

    assert unit.content == b"default = 'ok'"
    assert len(opener.requests) == 3


def test_fetch_surfaces_unreachable_after_bounded_attempts(monkeypatch) -> None:
    opener = ScriptedUrlopen(*(URLError("connection refused") for _ in range(3)))
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", opener)

    with pytest.raises(UnreachableError):
        asyncio.run(_fetcher().fetch(URL))
    assert len(opener.requests) == 3


def test_fetch_does_not_retry_client_errors(monkeypatch) -> None:
    opener = ScriptedUrlopen(_http_error(404), FakeResponse(b"unused"))
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", opener)

    with pytest.raises(HttpStatusError) as excinfo:
        asyncio.run(_fetcher().fetch(URL))
    assert excinfo.value.status == 404
    assert len(opener.requests) == 1


def test_fetch_retries_server_errors_then_reports_status(monkeypatch) -> None:
    opener = ScriptedUrlopen(*(_http_error(503) for _ in range(3)))
    monkeypatch.setattr("assetgen.remote.fetcher.urlopen", opener)

    with pytest.raises(HttpStatusError) as excinfo:
        asyncio.run(_fetcher().fetch(URL))
    assert excinfo.value.status == 503
    assert len(opener.requests) == 3


def test_backoff_doubles_from_base_delay() -> None:
    backoff = ExponentialBackoff(attempts=3, base_delay=0.2)

    assert [backoff.next_delay(attempt) for attempt in range(3)] == pytest.approx([0.2, 0.4, 0.8])


def test_backoff_requires_at_least_one_attempt() -> None:
    with pytest.raises(ValueError):
        ExponentialBackoff(attempts=0)


def test_response_cache_persists_validators(monkeypatch, tmp_path: Path) -> None:
    cache_path = tmp_path / "remote.json"
    monkeypatch.setattr(
        "assetgen.remote.fetcher.urlopen",
        ScriptedUrlopen(FakeResponse(b"default = 'hi'", {"ETag": '"v1"'})),
    )
    fetcher = _fetcher(cache_path=cache_path)
    asyncio.run(fetcher.fetch(URL))
    fetcher.persist()

    reloaded = _fetcher(cache_path=cache_path)
    cached = reloaded.cached(URL)

    assert cached is not None
    assert cached.etag == '"v1"'
    assert cached.unit.content == b"default = 'hi'"


def test_split_integrity_reads_sri_fragment() -> None:
    digest = integrity_digest(b"x")

    assert split_integrity(f"{URL}#{digest}") == (URL, digest)
    assert split_integrity(f"{URL}#section") == (f"{URL}#section", None)
