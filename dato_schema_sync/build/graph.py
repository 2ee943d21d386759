"""
Dependency Graph - directed graph over definition modules.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Set

from ..exceptions import CycleError
from .modules import ModuleKey

logger = logging.getLogger(__name__)


class DependencyGraph:
    """
    Modules and their "depends on" edges.

    Node order is discovery order and is used to break ties, so the same
    module set always sorts the same way.
    """

    def __init__(self, nodes: Iterable[ModuleKey]):
        self.nodes: List[ModuleKey] = []
        self._index: Dict[ModuleKey, int] = {}
        self._deps: Dict[ModuleKey, Set[ModuleKey]] = {}
        for node in nodes:
            if node in self._index:
                continue
            self._index[node] = len(self.nodes)
            self.nodes.append(node)
            self._deps[node] = set()

    @classmethod
    def build(cls, nodes: Iterable[ModuleKey],
              dependencies: Mapping[ModuleKey, Iterable[ModuleKey]]) -> "DependencyGraph":
        """Create a graph, dropping edges that point at unknown modules."""
        graph = cls(nodes)
        for source, targets in dependencies.items():
            for target in targets:
                if target not in graph:
                    logger.warning(f'Dependency "{target}" not found for {source}')
                    continue
                graph.add_edge(source, target)
        return graph

    def __contains__(self, key: ModuleKey) -> bool:
        return key in self._index

    def __len__(self) -> int:
        return len(self.nodes)

    def add_edge(self, source: ModuleKey, target: ModuleKey) -> None:
        """Record that source depends on target."""
        if source not in self or target not in self:
            raise KeyError(f"Unknown module in edge {source} -> {target}")
        self._deps[source].add(target)

    def _ordered(self, keys: Iterable[ModuleKey]) -> List[ModuleKey]:
        return sorted(keys, key=self._index.__getitem__)

    def dependencies_of(self, key: ModuleKey) -> List[ModuleKey]:
        return self._ordered(self._deps.get(key, ()))

    def topo_sort(self) -> List[ModuleKey]:
        """
        Order modules so that every dependency precedes its dependents.

        Depth-first search with three-color marking:
        - WHITE: unvisited
        - GRAY: on the current path
        - BLACK: finished

        Reaching a GRAY node means a cycle; the full path is reported.
        Self edges count as cycles of length one.
        """
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {node: WHITE for node in self.nodes}
        path: List[ModuleKey] = []
        order: List[ModuleKey] = []

        def visit(node: ModuleKey) -> None:
            color[node] = GRAY
            path.append(node)
            for dep in self.dependencies_of(node):
                if color[dep] == GRAY:
                    cycle = path[path.index(dep):] + [dep]
                    raise CycleError([str(k) for k in cycle])
                if color[dep] == WHITE:
                    visit(dep)
            path.pop()
            color[node] = BLACK
            order.append(node)

        for node in self.nodes:
            if color[node] == WHITE:
                visit(node)

        return order
