# cellar/modules/graph.py

from __future__ import annotations
from typing import Dict, Iterable, List, Optional, Set

from cellar.modules.errors import DependencyCycle

_WHITE, _GREY, _BLACK = 0, 1, 2


class DependencyGraph:
    """
    Dependency graph between formulae: {formula: {dependencies}}.
    Used to order installs, detect cycles and find what a failure blocks.
    """

    def __init__(self):
        self.graph: Dict[str, Set[str]] = {}

    def add_package(self, package: str, dependencies: Iterable[str] = ()):
        """Add a node (idempotent) and its outgoing edges."""
        dependencies = list(dependencies)
        self.graph.setdefault(package, set()).update(dependencies)
        for dep in dependencies:
            self.graph.setdefault(dep, set())

    def dependencies(self, package: str) -> List[str]:
        return sorted(self.graph.get(package, ()))

    def dependents(self, package: str) -> List[str]:
        return sorted(n for n, deps in self.graph.items() if package in deps)

    def transitive_dependents(self, package: str) -> Set[str]:
        reverse: Dict[str, Set[str]] = {}
        for n, deps in self.graph.items():
            for d in deps:
                reverse.setdefault(d, set()).add(n)
        seen: Set[str] = set()
        todo = [package]
        while todo:
            for parent in reverse.get(todo.pop(), ()):
                if parent not in seen:
                    seen.add(parent)
                    todo.append(parent)
        return seen

    def topo_sort(self, roots: Optional[Iterable[str]] = None) -> List[str]:
        """
        Post-order DFS: every package comes after all of its dependencies.
        Roots and dependencies are visited in lexical order so the result is
        stable for a given graph.
        """
        state = {n: _WHITE for n in self.graph}
        order: List[str] = []

        for root in sorted(roots if roots is not None else self.graph):
            if state.get(root, _WHITE) != _WHITE:
                continue
            # frames of (node, dependencies not yet visited); the frames
            # themselves are the current path
            state[root] = _GREY
            stack = [(root, iter(sorted(self.graph.get(root, ()))))]
            while stack:
                node, deps = stack[-1]
                for dep in deps:
                    st = state.get(dep, _WHITE)
                    if st == _GREY:
                        path = [n for n, _ in stack]
                        raise DependencyCycle(path[path.index(dep):] + [dep])
                    if st == _WHITE:
                        state[dep] = _GREY
                        stack.append((dep, iter(sorted(self.graph.get(dep, ())))))
                        break
                else:
                    stack.pop()
                    state[node] = _BLACK
                    order.append(node)
        return order

    def detect_cycles(self) -> Optional[List[str]]:
        """Return one cycle (as a closed path) or None."""
        try:
            self.topo_sort()
        except DependencyCycle as e:
            return e.cycle
        return None

    def to_dot(self, name: str = "dependencies") -> str:
        lines = [f"digraph {name} {{"]
        for pkg in sorted(self.graph):
            deps = sorted(self.graph[pkg])
            if not deps:
                lines.append(f'  "{pkg}";')
            for d in deps:
                lines.append(f'  "{pkg}" -> "{d}";')
        lines.append("}")
        return "\n".join(lines) + "\n"

    def __contains__(self, package: str) -> bool:
        return package in self.graph

    def __len__(self) -> int:
        return len(self.graph)
