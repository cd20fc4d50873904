from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set

from clusterplan.errors import CyclicDependencyError

WHITE, GREY, BLACK = 0, 1, 2


class DependencyGraph:
    """
    A directed graph of declarations. An edge ``a -> b`` means ``a`` depends on ``b``.

    Iteration is always in sorted order, so every traversal is deterministic.
    """

    def __init__(self) -> None:
        self._edges: Dict[str, Set[str]] = {}

    def __contains__(self, node: str) -> bool:
        return node in self._edges

    def __len__(self) -> int:
        return len(self._edges)

    def add_node(self, node: str) -> None:
        self._edges.setdefault(node, set())

    def add_edge(self, node: str, depends_on: str) -> None:
        self.add_node(node)
        self.add_node(depends_on)
        self._edges[node].add(depends_on)

    @property
    def nodes(self) -> List[str]:
        return sorted(self._edges)

    def dependencies(self, node: str) -> List[str]:
        return sorted(self._edges.get(node, ()))

    def dependents(self, node: str) -> List[str]:
        return sorted(n for n, deps in self._edges.items() if node in deps)

    def edges(self) -> List[tuple]:
        return [(n, d) for n in self.nodes for d in self.dependencies(n)]

    def find_cycle(self) -> Optional[List[str]]:
        """
        Finds a dependency cycle with a three-color depth-first traversal.

        Returns:
            Optional[List[str]]: The nodes of the cycle, with the first node repeated
                at the end, or None if the graph is acyclic.
        """
        try:
            self.topological_order()
        except CyclicDependencyError as e:
            return e.cycle
        return None

    def topological_order(self, nodes: Optional[Iterable[str]] = None) -> List[str]:
        """
        Orders nodes so that every node comes after the nodes it depends on.

        Args:
            nodes (Optional[Iterable[str]]): Restrict the result to these nodes. Their
                relative order still honours paths through nodes left out.

        Returns:
            List[str]: The ordered nodes.

        Raises:
            CyclicDependencyError: If the graph contains a cycle.
        """
        color: Dict[str, int] = {n: WHITE for n in self._edges}
        order: List[str] = []
        stack: List[str] = []

        def visit(node: str) -> None:
            color[node] = GREY
            stack.append(node)
            for dep in self.dependencies(node):
                if color[dep] == GREY:
                    # Back edge: the cycle is the part of the stack from dep onwards
                    cycle = stack[stack.index(dep) :] + [dep]
                    raise CyclicDependencyError(cycle)
                if color[dep] == WHITE:
                    visit(dep)
            stack.pop()
            color[node] = BLACK
            order.append(node)

        for node in self.nodes:
            if color[node] == WHITE:
                visit(node)

        if nodes is None:
            return order
        wanted = set(nodes)
        return [n for n in order if n in wanted]
