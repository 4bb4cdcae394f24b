"""Dependency graph construction over declared module imports."""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from typing import Dict, List, Set, Tuple

from .errors import CycleError, InvalidSpecifierError
from .logging import get_logger
from .models import ModuleRef, Origin, SourceUnit
from .resolver import ModuleResolver

IMPORTS_NAME = "IMPORTS"


@dataclass(frozen=True)
class Dependency:
    """Labelled edge from an importer to the unit bound under ``binding``."""

    binding: str
    key: str


@dataclass
class ModuleGraph:
    """Resolved units in evaluation order, dependencies before dependents."""

    entry: SourceUnit
    order: List[SourceUnit]
    edges: Dict[str, List[Dependency]] = field(default_factory=dict)

    def unit(self, key: str) -> SourceUnit:
        for candidate in self.order:
            if candidate.key == key:
                return candidate
        raise KeyError(key)


def declared_imports(unit: SourceUnit) -> List[Tuple[str, ModuleRef]]:
    """Read the literal ``IMPORTS`` mapping of a module without executing it.

    Modules that fail to parse report no imports; the syntax error surfaces
    when the sandbox compiles them.
    """
    if unit.origin is Origin.PACKAGE:
        return []
    try:
        tree = ast.parse(unit.content, filename=unit.location)
    except (SyntaxError, ValueError):
        return []

    node = _find_imports_value(tree)
    if node is None:
        return []
    try:
        value = ast.literal_eval(node)
    except (ValueError, TypeError, SyntaxError) as exc:
        raise InvalidSpecifierError(f"{unit.name}: {IMPORTS_NAME} must be a literal mapping") from exc
    if not isinstance(value, dict):
        raise InvalidSpecifierError(f"{unit.name}: {IMPORTS_NAME} must be a mapping")

    refs: List[Tuple[str, ModuleRef]] = []
    for binding, spec in value.items():
        if not isinstance(binding, str) or not binding.isidentifier():
            raise InvalidSpecifierError(f"{unit.name}: invalid binding name {binding!r}")
        if isinstance(spec, str):
            refs.append((binding, ModuleRef(specifier=spec, base_context=unit.location)))
        elif isinstance(spec, dict) and isinstance(spec.get("specifier"), str):
            integrity = spec.get("integrity")
            refs.append(
                (
                    binding,
                    ModuleRef(
                        specifier=spec["specifier"],
                        base_context=unit.location,
                        integrity=integrity if isinstance(integrity, str) else None,
                    ),
                )
            )
        else:
            raise InvalidSpecifierError(f"{unit.name}: import '{binding}' has no specifier")
    return refs


def _find_imports_value(tree: ast.Module) -> ast.expr | None:
    for statement in tree.body:
        if isinstance(statement, ast.Assign):
            for target in statement.targets:
                if isinstance(target, ast.Name) and target.id == IMPORTS_NAME:
                    return statement.value
        elif isinstance(statement, ast.AnnAssign):
            target = statement.target
            if isinstance(target, ast.Name) and target.id == IMPORTS_NAME and statement.value is not None:
                return statement.value
    return None


@dataclass
class _Traversal:
    in_progress: Set[str] = field(default_factory=set)
    done: Set[str] = field(default_factory=set)
    stack: List[SourceUnit] = field(default_factory=list)
    order: List[SourceUnit] = field(default_factory=list)
    edges: Dict[str, List[Dependency]] = field(default_factory=dict)


class DependencyGraphBuilder:
    """Depth-first walk from an entry module producing a topological order.

    Each call to :meth:`build` starts from empty traversal state; only the
    resolver's memo is shared between builds.
    """

    def __init__(self, resolver: ModuleResolver) -> None:
        self.resolver = resolver
        self.logger = get_logger("graph")

    async def build(self, entry: ModuleRef) -> ModuleGraph:
        state = _Traversal()
        root = await self._visit(entry, state)
        self.logger.debug("Graph for %s has %d units", root.name, len(state.order))
        return ModuleGraph(entry=root, order=state.order, edges=state.edges)

    async def _visit(self, ref: ModuleRef, state: _Traversal) -> SourceUnit:
        unit = await self.resolver.resolve(ref)
        if unit.key in state.done:
            return unit
        if unit.key in state.in_progress:
            keys = [item.key for item in state.stack]
            start = keys.index(unit.key)
            path = [item.name for item in state.stack[start:]]
            path.append(unit.name)
            raise CycleError(path)

        state.in_progress.add(unit.key)
        state.stack.append(unit)
        dependencies: List[Dependency] = []
        for binding, child_ref in declared_imports(unit):
            child = await self._visit(child_ref, state)
            dependencies.append(Dependency(binding=binding, key=child.key))
        state.stack.pop()
        state.in_progress.discard(unit.key)

        state.done.add(unit.key)
        state.edges[unit.key] = dependencies
        state.order.append(unit)
        return unit


__all__ = [
    "Dependency",
    "DependencyGraphBuilder",
    "IMPORTS_NAME",
    "ModuleGraph",
    "declared_imports",
]
