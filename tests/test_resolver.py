"""Tests for module specifier resolution."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from assetgen.errors import IntegrityMismatchError, InvalidSpecifierError, SourceNotFoundError
from assetgen.fingerprints import content_hash, integrity_digest
from assetgen.models import ModuleRef, Origin, SourceUnit
from assetgen.resolver import ModuleResolver, normalize


class StubFetcher:
    def __init__(self, bodies: dict[str, bytes]) -> None:
        self.bodies = bodies
        self.calls: list[tuple[str, str | None]] = []

    async def fetch(self, url: str, integrity: str | None = None) -> SourceUnit:
        self.calls.append((url, integrity))
        await asyncio.sleep(0)
        body = self.bodies[url]
        return SourceUnit(
            key=url,
            origin=Origin.REMOTE,
            location=url,
            content=body,
            content_hash=content_hash(body),
        )

    def persist(self) -> None:
        pass


def test_normalize_classifies_specifiers(tmp_path: Path) -> None:
    importer = (tmp_path / "src" / "a" / "index.html.py").as_posix()

    assert normalize(ModuleRef("./nav.html.py", importer)) == (
        Origin.LOCAL,
        (tmp_path / "src" / "a" / "nav.html.py").as_posix(),
        None,
    )
    assert normalize(ModuleRef("../shared/x.py", importer))[1] == (tmp_path / "src" / "shared" / "x.py").as_posix()
    assert normalize(ModuleRef("html", importer)) == (Origin.PACKAGE, "package:html", None)
    assert normalize(ModuleRef("https://cdn.example.com/x.py", importer))[0] is Origin.REMOTE


def test_normalize_resolves_relative_imports_against_remote_module_url() -> None:
    base = "https://cdn.example.com/kit/v1/button.html.py"

    assert normalize(ModuleRef("./icon.svg.py", base))[1] == "https://cdn.example.com/kit/v1/icon.svg.py"
    assert normalize(ModuleRef("../v2/theme.css.py", base))[1] == "https://cdn.example.com/kit/v2/theme.css.py"
    assert normalize(ModuleRef("/root.py", base))[1] == "https://cdn.example.com/root.py"


@pytest.mark.parametrize("specifier", ["", "ftp://host/x.py", "not a module", "@scope/pkg"])
def test_normalize_rejects_unclassifiable_specifiers(specifier: str, tmp_path: Path) -> None:
    with pytest.raises(InvalidSpecifierError):
        normalize(ModuleRef(specifier, tmp_path.as_posix()))


def test_resolve_local_missing_file_raises_not_found(tmp_path: Path) -> None:
    resolver = ModuleResolver(StubFetcher({}))

    with pytest.raises(SourceNotFoundError):
        asyncio.run(resolver.resolve(ModuleRef("./missing.html.py", tmp_path.as_posix())))


def test_resolve_local_is_memoized_until_file_changes(tmp_path: Path) -> None:
    module = tmp_path / "page.html.py"
    module.write_text("default = 'one'\n", encoding="utf-8")
    resolver = ModuleResolver(StubFetcher({}))
    ref = ModuleRef("./page.html.py", tmp_path.as_posix())
    same_ref_other_spelling = ModuleRef("./sub/../page.html.py", tmp_path.as_posix())

    first = asyncio.run(resolver.resolve(ref))
    second = asyncio.run(resolver.resolve(same_ref_other_spelling))
    assert second is first

    module.write_text("default = 'two, longer'\n", encoding="utf-8")
    stat = module.stat()
    os.utime(module, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))
    third = asyncio.run(resolver.resolve(ref))

    assert third is not first
    assert third.content == b"default = 'two, longer'\n"
    assert first.content == b"default = 'one'\n"


def test_resolve_package_delegates_to_import_system(tmp_path: Path) -> None:
    resolver = ModuleResolver(StubFetcher({}))

    unit = asyncio.run(resolver.resolve(ModuleRef("html", tmp_path.as_posix())))

    assert unit.origin is Origin.PACKAGE
    assert unit.location == "html"
    with pytest.raises(SourceNotFoundError):
        asyncio.run(resolver.resolve(ModuleRef("definitely_not_installed_pkg", tmp_path.as_posix())))


def test_resolve_remote_shares_concurrent_fetches() -> None:
    url = "https://cdn.example.com/x.py"
    fetcher = StubFetcher({url: b"VALUE = 1"})
    resolver = ModuleResolver(fetcher)

    async def _burst():
        return await asyncio.gather(*(resolver.resolve(ModuleRef(url, "/")) for _ in range(5)))

    units = asyncio.run(_burst())

    assert len(fetcher.calls) == 1
    assert all(unit is units[0] for unit in units)


def test_resolve_remote_checks_integrity_of_memoized_unit() -> None:
    url = "https://cdn.example.com/x.py"
    resolver = ModuleResolver(StubFetcher({url: b"VALUE = 1"}))
    asyncio.run(resolver.resolve(ModuleRef(url, "/")))

    with pytest.raises(IntegrityMismatchError):
        asyncio.run(resolver.resolve(ModuleRef(url, "/", integrity=integrity_digest(b"VALUE = 2"))))


class GatedFetcher(StubFetcher):
    """Holds every fetch until ``release`` is set."""

    def __init__(self, bodies: dict[str, bytes]) -> None:
        super().__init__(bodies)
        self.release: asyncio.Event | None = None
        self.cancelled = 0

    async def fetch(self, url: str, integrity: str | None = None) -> SourceUnit:
        assert self.release is not None
        try:
            await self.release.wait()
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        return await super().fetch(url, integrity)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_cancelled_caller_leaves_shared_remote_fetch_running() -> None:
    url = "https://cdn.example.com/x.py"
    fetcher = GatedFetcher({url: b"VALUE = 1"})
    resolver = ModuleResolver(fetcher)

    async def _scenario():
        fetcher.release = asyncio.Event()
        first = asyncio.ensure_future(resolver.resolve(ModuleRef(url, "/")))
        second = asyncio.ensure_future(resolver.resolve(ModuleRef(url, "/")))
        await _settle()
        first.cancel()
        await _settle()
        fetcher.release.set()
        return first, await second

    first, unit = asyncio.run(_scenario())

    assert first.cancelled()
    assert unit.content == b"VALUE = 1"
    assert fetcher.cancelled == 0
    assert len(fetcher.calls) == 1


def test_remote_fetch_is_cancelled_when_every_caller_gives_up() -> None:
    url = "https://cdn.example.com/x.py"
    fetcher = GatedFetcher({url: b"VALUE = 1"})
    resolver = ModuleResolver(fetcher)

    async def _scenario():
        fetcher.release = asyncio.Event()
        callers = [asyncio.ensure_future(resolver.resolve(ModuleRef(url, "/"))) for _ in range(2)]
        await _settle()
        for caller in callers:
            caller.cancel()
        await _settle()
        fetcher.release.set()
        return await resolver.resolve(ModuleRef(url, "/"))

    unit = asyncio.run(_scenario())

    assert fetcher.cancelled == 1
    assert unit.content == b"VALUE = 1"
