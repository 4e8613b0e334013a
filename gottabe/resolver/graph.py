"""依赖图

节点以坐标 (group/artifact) 为键，每个坐标只对应一个版本（先见者胜出）。
拓扑排序与环检测交给 graphlib.TopologicalSorter。
"""

from __future__ import annotations

import graphlib

from gottabe.core.exceptions import CycleError
from gottabe.core.models import PackageIdentity, Scope


class DependencyGraph:
    """有向依赖图：边由依赖方指向被依赖方"""

    def __init__(self, root: PackageIdentity) -> None:
        self.root = root.coordinate
        self._identities: dict[str, PackageIdentity] = {self.root: root}
        self._scopes: dict[str, frozenset[Scope]] = {self.root: frozenset()}
        self._edges: dict[str, list[str]] = {self.root: []}

    def __contains__(self, coordinate: str) -> bool:
        return coordinate in self._identities

    def __len__(self) -> int:
        return len(self._identities)

    def add_node(self, identity: PackageIdentity) -> None:
        coord = identity.coordinate
        if coord in self._identities:
            return
        self._identities[coord] = identity
        self._scopes[coord] = frozenset()
        self._edges[coord] = []

    def add_edge(self, parent: str, child: str) -> bool:
        """添加边，返回是否为新边"""
        children = self._edges[parent]
        if child in children:
            return False
        children.append(child)
        return True

    def merge_scopes(self, coordinate: str, scopes: frozenset[Scope]) -> bool:
        """并入作用域，返回作用域是否发生变化"""
        current = self._scopes[coordinate]
        merged = current | scopes
        if merged == current:
            return False
        self._scopes[coordinate] = merged
        return True

    def identity(self, coordinate: str) -> PackageIdentity:
        return self._identities[coordinate]

    def scopes(self, coordinate: str) -> frozenset[Scope]:
        return self._scopes[coordinate]

    def topological_order(self) -> list[str]:
        """依赖在前、依赖方在后的顺序（不含根），有环时抛 CycleError"""
        sorter = graphlib.TopologicalSorter(self._edges)
        try:
            order = list(sorter.static_order())
        except graphlib.CycleError as e:
            # graphlib 给出的路径沿 "被依赖 -> 依赖方" 方向，翻转成依赖方向
            raise CycleError(list(reversed(e.args[1]))) from e
        return [c for c in order if c != self.root]
