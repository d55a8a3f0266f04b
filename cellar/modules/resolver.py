# cellar/modules/resolver.py

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from cellar.modules import logger as _logger
from cellar.modules.bottle import BottleSelector, Selection
from cellar.modules.environment import Environment
from cellar.modules.errors import FormulaConflict, VersionConflict
from cellar.modules.formula import DependencyKind, Formula, InstallMethod
from cellar.modules.graph import DependencyGraph
from cellar.modules.receipts import ReceiptStore
from cellar.modules.registry import FormulaRegistry
from cellar.modules.version import VersionConstraint


@dataclass
class PlanEntry:
    formula: Formula
    selection: Selection
    dependencies: List[str] = field(default_factory=list)
    requested: bool = False
    upgrade_from: Optional[str] = None
    reinstall: bool = False

    @property
    def name(self) -> str:
        return self.formula.name

    @property
    def version(self) -> str:
        return self.formula.pkg_version

    @property
    def method(self) -> InstallMethod:
        return self.selection.method

    def __repr__(self):
        return f"PlanEntry({self.name} {self.version} {self.method.value})"


@dataclass
class ResolutionPlan:
    """
    Ordered install plan: every entry comes after the entries it depends on.
    `satisfied` holds graph members already installed at the wanted version.
    """

    entries: List[PlanEntry]
    satisfied: List[str]
    graph: DependencyGraph
    requested: List[str]
    env: Environment

    def names(self) -> List[str]:
        return [e.name for e in self.entries]

    def entry(self, name: str) -> Optional[PlanEntry]:
        for e in self.entries:
            if e.name == name:
                return e
        return None

    def __iter__(self):
        return iter(self.entries)

    def __len__(self):
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries


class Resolver:
    """
    Resolve requested formulae into a ResolutionPlan.

    - Expands run and build dependencies whose condition matches the
      environment; non-matching edges are not part of the graph at all.
    - Orders by post-order DFS with lexical tie-break (see DependencyGraph).
    - Checks version constraints and `conflicts_with` declarations.
    - Leaves out formulae whose receipt already records the wanted version.
    """

    def __init__(self,
                 registry: FormulaRegistry,
                 receipts: Optional[ReceiptStore] = None,
                 selector: Optional[BottleSelector] = None):
        self.registry = registry
        self.receipts = receipts
        self.selector = selector
        self.log = _logger.Logger("resolver")

    def resolve(self,
                names: Iterable[str],
                env: Environment,
                force: bool = False,
                build_from_source: bool = False,
                include_test: bool = False) -> ResolutionPlan:
        requested = sorted(set(names))
        graph, formulas, constraints, extra_roots = self.expand(requested, env, include_test)

        order = graph.topo_sort(requested + sorted(extra_roots))
        self.log.debug(f"Topological order: {order}")

        self._check_versions(formulas, constraints)

        satisfied: List[str] = []
        entries: List[PlanEntry] = []
        for name in order:
            formula = formulas[name]
            receipt = self.receipts.query(name) if self.receipts else None
            is_requested = name in requested
            current = receipt is not None and receipt.version == formula.pkg_version
            if current and not (force and is_requested):
                satisfied.append(name)
                continue

            selection = self._select(formula, env, source_only=build_from_source and is_requested)
            entries.append(PlanEntry(
                formula=formula,
                selection=selection,
                requested=is_requested,
                upgrade_from=receipt.version if receipt is not None and not current else None,
                reinstall=current,
            ))

        planned = {e.name for e in entries}
        for e in entries:
            e.dependencies = [d for d in graph.dependencies(e.name) if d in planned]

        self._check_conflicts(entries, {n: formulas[n] for n in satisfied})

        plan = ResolutionPlan(entries=entries, satisfied=sorted(satisfied), graph=graph,
                              requested=requested, env=env)
        self.log.info(f"Plan: {', '.join(f'{e.name} ({e.method.value})' for e in entries) or 'nothing to do'}")
        return plan

    # -------------------------
    # Expansion
    # -------------------------
    def expand(self, requested: List[str], env: Environment, include_test: bool = False):
        """
        Walk the registry from `requested`, returning the filtered graph,
        the formulae reached, the version constraints seen per formula and
        the extra roots pulled in as test dependencies.
        """
        graph = DependencyGraph()
        formulas: Dict[str, Formula] = {}
        constraints: Dict[str, List[Tuple[str, VersionConstraint]]] = {}
        extra_roots = set()

        stack = []
        for name in reversed(requested):
            formulas[name] = self.registry.lookup(name)
            graph.add_package(name)
            stack.append(name)

        def reach(dep_name: str, required_by: str):
            if dep_name not in formulas:
                formulas[dep_name] = self.registry.lookup(dep_name, required_by=required_by)
                stack.append(dep_name)

        while stack:
            name = stack.pop()
            formula = formulas[name]
            edges = []
            for dep in sorted(formula.deps_for(env), key=lambda d: d.name):
                if dep.external:
                    self.log.debug(f"{name}: {dep.name} is external, not resolved")
                    continue
                reach(dep.name, name)
                if dep.constraint is not None:
                    constraints.setdefault(dep.name, []).append((name, dep.constraint))
                edges.append(dep.name)
            graph.add_package(name, edges)

            if include_test and name in requested:
                for dep in formula.deps_for(env, kinds=(DependencyKind.TEST,)):
                    if dep.external or dep.name in requested:
                        continue
                    reach(dep.name, name)
                    graph.add_package(dep.name)
                    extra_roots.add(dep.name)

        return graph, formulas, constraints, extra_roots

    # -------------------------
    # Checks
    # -------------------------
    @staticmethod
    def _check_versions(formulas: Dict[str, Formula], constraints):
        for name in sorted(constraints):
            available = formulas[name].version
            reqs = sorted(constraints[name], key=lambda rc: rc[0])
            failing = [(r, c) for r, c in reqs if not c.allows(available)]
            if not failing:
                continue
            required_by, constraint = failing[0]
            others = [r for r, c in reqs if r != required_by and c.allows(available)]
            others = others or [r for r, _ in reqs if r != required_by]
            other = others[0] if others else "registry"
            raise VersionConflict(name, required_by, str(constraint), other, available)

    def _check_conflicts(self, entries: List[PlanEntry], satisfied: Dict[str, Formula]):
        """
        Declarations are checked both ways: by planned and already satisfied
        graph members, and by installed formulae against the plan. Two
        formulae that are both already installed are left alone.
        """
        planned = {e.name: e.formula for e in entries}
        members = {**satisfied, **planned}
        for name in sorted(members):
            for other in sorted(members[name].conflicts_with):
                if other in members and (name in planned or other in planned):
                    raise FormulaConflict(name, other)

        if not self.receipts:
            return
        installed = [n for n in self.receipts.names() if n not in members]
        for name in sorted(planned):
            for other in sorted(planned[name].conflicts_with):
                if other in installed:
                    raise FormulaConflict(name, other, installed=True)
        for other in installed:
            if other not in self.registry:
                continue
            for name in sorted(self.registry.lookup(other).conflicts_with):
                if name in planned:
                    raise FormulaConflict(name, other, installed=True)

    def _select(self, formula: Formula, env: Environment, source_only: bool) -> Selection:
        if source_only:
            return Selection.source("--build-from-source")
        if self.selector is None:
            return Selection.source("no bottle selector")
        return self.selector.select(formula, env)
