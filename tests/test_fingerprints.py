"""Tests for fingerprint computation and integrity digests."""

from __future__ import annotations

import base64
import hashlib

from assetgen.fingerprints import (
    FingerprintStore,
    content_hash,
    integrity_digest,
    verify_integrity,
)
from assetgen.models import AssetKind, Origin, SourceUnit


def _unit(content: bytes, key: str = "/src/a.html.py") -> SourceUnit:
    return SourceUnit(
        key=key,
        origin=Origin.LOCAL,
        location=key,
        content=content,
        content_hash=content_hash(content),
    )


def test_fingerprint_is_deterministic_across_stores() -> None:
    dep = FingerprintStore().compute(_unit(b"default = 'b'", "/src/b.html.py"))
    first = FingerprintStore().compute(_unit(b"default = 'a'"), [("b", dep)])
    second = FingerprintStore().compute(_unit(b"default = 'a'"), [("b", dep)])

    assert first == second


def test_fingerprint_ignores_dependency_listing_order() -> None:
    store = FingerprintStore()
    b = store.compute(_unit(b"b", "/src/b.py"))
    c = store.compute(_unit(b"c", "/src/c.py"))
    unit = _unit(b"a")

    assert store.compute(unit, [("b", b), ("c", c)]) == store.compute(unit, [("c", c), ("b", b)])


def test_fingerprint_changes_when_dependency_changes() -> None:
    store = FingerprintStore()
    unit = _unit(b"default = header")
    before = store.compute(unit, [("header", store.compute(_unit(b"v1", "/src/h.py")))])
    after = store.compute(unit, [("header", store.compute(_unit(b"v2", "/src/h.py")))])

    assert before != after
    assert store.latest(unit.key) == after


def test_identical_content_at_different_paths_shares_fingerprint() -> None:
    store = FingerprintStore()

    assert store.compute(_unit(b"x", "/src/one.html.py")) == store.compute(_unit(b"x", "/src/two.html.py"))


def test_integrity_digest_matches_sri_format() -> None:
    data = b"<p>ok</p>"
    expected = "sha384-" + base64.b64encode(hashlib.sha384(data).digest()).decode("ascii")

    assert integrity_digest(data) == expected
    assert verify_integrity(data, expected)
    assert verify_integrity(data, f"sha256-bogus {integrity_digest(data, 'sha256')}")
    assert not verify_integrity(b"tampered", expected)
    assert not verify_integrity(data, "md5-abc")


def test_asset_kind_is_part_of_the_fingerprint() -> None:
    store = FingerprintStore()
    body = b'default = "body { margin: 0 }"'

    as_css = store.compute(_unit(body, "/src/site.css.py"), kind=AssetKind.CSS)
    as_html = store.compute(_unit(body, "/src/page.html.py"), kind=AssetKind.HTML)
    as_helper = store.compute(_unit(body, "/src/helpers.py"))

    assert len({as_css, as_html, as_helper}) == 3


def test_store_keeps_only_latest_fingerprint_per_unit() -> None:
    store = FingerprintStore()
    for revision in range(50):
        store.compute(_unit(f"default = '{revision}'".encode("utf-8")))

    assert len(store._by_key) == 1
    assert store.latest("/src/a.html.py") == store.compute(_unit(b"default = '49'"))
