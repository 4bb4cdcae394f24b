"""Tests for dependency graph construction."""

from __future__ import annotations

import asyncio

import pytest

from assetgen.engine import entry_ref
from assetgen.errors import CycleError, InvalidSpecifierError
from assetgen.graph import DependencyGraphBuilder, declared_imports
from assetgen.resolver import ModuleResolver
from tests._fixtures.source_tree import SourceTreeBuilder


def _build(source_tree: SourceTreeBuilder, entry: str):
    builder = DependencyGraphBuilder(ModuleResolver())
    return asyncio.run(builder.build(entry_ref(source_tree.path(entry), source_tree.src)))


def test_build_orders_dependencies_before_dependents(source_tree: SourceTreeBuilder) -> None:
    source_tree.write(
        {
            "index.html.py": """
            IMPORTS = {"nav": "./_partials/nav.html.py", "util": "./helpers.py"}
            default = nav
            """,
            "_partials/nav.html.py": """
            IMPORTS = {"util": "../helpers.py"}
            default = "<nav/>"
            """,
            "helpers.py": "VALUE = 1\n",
        }
    )

    graph = _build(source_tree, "index.html.py")
    names = [unit.name for unit in graph.order]

    assert names == ["helpers.py", "nav.html.py", "index.html.py"]
    assert graph.entry.name == "index.html.py"
    assert [dep.binding for dep in graph.edges[graph.entry.key]] == ["nav", "util"]


def test_build_visits_shared_dependency_once(source_tree: SourceTreeBuilder) -> None:
    source_tree.write(
        {
            "a.html.py": 'IMPORTS = {"b": "./b.html.py", "c": "./c.html.py"}\ndefault = b + c\n',
            "b.html.py": 'IMPORTS = {"d": "./d.html.py"}\ndefault = d\n',
            "c.html.py": 'IMPORTS = {"d": "./d.html.py"}\ndefault = d\n',
            "d.html.py": 'default = "d"\n',
        }
    )

    graph = _build(source_tree, "a.html.py")
    names = [unit.name for unit in graph.order]

    assert sorted(names) == ["a.html.py", "b.html.py", "c.html.py", "d.html.py"]
    assert names.index("d.html.py") < names.index("b.html.py")
    assert names.index("d.html.py") < names.index("c.html.py")
    assert names[-1] == "a.html.py"


def test_build_reports_cycle_path(source_tree: SourceTreeBuilder) -> None:
    source_tree.write(
        {
            "a.html.py": 'IMPORTS = {"b": "./b.html.py"}\ndefault = b\n',
            "b.html.py": 'IMPORTS = {"a": "./a.html.py"}\ndefault = a\n',
        }
    )

    with pytest.raises(CycleError) as excinfo:
        _build(source_tree, "a.html.py")

    assert excinfo.value.path == ["a.html.py", "b.html.py", "a.html.py"]
    assert excinfo.value.code == "Cycle"


def test_build_detects_self_import(source_tree: SourceTreeBuilder) -> None:
    source_tree.write({"a.html.py": 'IMPORTS = {"me": "./a.html.py"}\ndefault = me\n'})

    with pytest.raises(CycleError) as excinfo:
        _build(source_tree, "a.html.py")
    assert excinfo.value.path == ["a.html.py", "a.html.py"]


def test_builds_are_independent(source_tree: SourceTreeBuilder) -> None:
    source_tree.write(
        {
            "a.html.py": 'IMPORTS = {"b": "./b.html.py"}\ndefault = b\n',
            "b.html.py": 'default = "b"\n',
        }
    )
    builder = DependencyGraphBuilder(ModuleResolver())
    ref = entry_ref(source_tree.path("a.html.py"), source_tree.src)

    first = asyncio.run(builder.build(ref))
    second = asyncio.run(builder.build(ref))

    assert [unit.key for unit in first.order] == [unit.key for unit in second.order]
    assert all(x is y for x, y in zip(first.order, second.order))


def test_declared_imports_requires_literal_mapping(source_tree: SourceTreeBuilder) -> None:
    source_tree.write({"bad.html.py": 'IMPORTS = dict(x="./x.py")\ndefault = ""\n'})
    unit = asyncio.run(ModuleResolver().resolve(entry_ref(source_tree.path("bad.html.py"))))

    with pytest.raises(InvalidSpecifierError):
        declared_imports(unit)


def test_declared_imports_accepts_integrity_mapping(source_tree: SourceTreeBuilder) -> None:
    source_tree.write(
        {
            "page.html.py": """
            IMPORTS = {
                "kit": {"specifier": "https://cdn.example.com/kit.py", "integrity": "sha384-abc"},
            }
            default = ""
            """,
        }
    )
    unit = asyncio.run(ModuleResolver().resolve(entry_ref(source_tree.path("page.html.py"))))

    [(binding, ref)] = declared_imports(unit)

    assert binding == "kit"
    assert ref.specifier == "https://cdn.example.com/kit.py"
    assert ref.integrity == "sha384-abc"
    assert ref.base_context == unit.location
