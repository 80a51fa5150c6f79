"""
Dependency Graph Builder: directed graph over declaration ids.

Builds the graph once from declaration records, materializing a placeholder
``external`` node for every referenced-but-undeclared id so traversals never
dereference a missing key. Strongly-connected components are computed with
an iterative Tarjan pass that visits successors in id order, so the output
is stable regardless of input ordering.

Queries:
  direct_dependencies / direct_dependents    O(1) lookups
  supporting_declarations                    transitive post-order DFS
  render_dependency_graph_canonical / hash   stable text snapshot
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable

from explanation_tree.errors import InvalidInputError, NotFoundError
from explanation_tree.models import DeclarationRecord, LeafNodeInput

GRAPH_SCHEMA_VERSION = "1.0.0"

INDEXED = "indexed"
EXTERNAL = "external"

# DFS marks
_VISITING = 1
_DONE = 2


# ---------------------------------------------------------------------------
# Graph types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeclarationNode:
    id: str
    category: str                      # "indexed" or "external"
    dependency_ids: tuple[str, ...]
    dependent_ids: tuple[str, ...]


@dataclass(frozen=True)
class MissingDependencyRef:
    """A dependency id that no declaration in the corpus defines."""
    declaration_id: str
    missing_dependency_id: str


@dataclass(frozen=True)
class DependencyGraph:
    """Immutable result of build_dependency_graph().

    Every id on any edge is a key of ``nodes``; ``sccs`` partitions
    ``node_ids`` exactly once.
    """
    node_ids: tuple[str, ...]
    nodes: dict[str, DeclarationNode]
    edge_count: int
    indexed_node_count: int
    external_node_count: int
    missing_dependency_refs: tuple[MissingDependencyRef, ...]
    sccs: tuple[tuple[str, ...], ...]
    cyclic_sccs: tuple[tuple[str, ...], ...]
    schema_version: str = GRAPH_SCHEMA_VERSION


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------

def build_dependency_graph(
    declarations: Iterable[DeclarationRecord],
    include_external_nodes: bool = True,
) -> DependencyGraph:
    """Build the dependency graph for a declaration corpus.

    Raises:
        InvalidInputError: If there are no declarations, an id is blank, or
            an id is declared twice.
    """
    records = list(declarations)
    if not records:
        raise InvalidInputError("declarations must contain at least one declaration")

    dependencies: dict[str, list[str]] = {}
    for record in records:
        declaration_id = record.id.strip() if isinstance(record.id, str) else ""
        if not declaration_id:
            raise InvalidInputError("Declaration id must be non-empty")
        if declaration_id in dependencies:
            raise InvalidInputError(f"Duplicate declaration id: {declaration_id}")
        cleaned = {dep.strip() for dep in record.dependency_ids if dep.strip()}
        dependencies[declaration_id] = sorted(cleaned)

    indexed_ids = set(dependencies)
    categories: dict[str, str] = {node_id: INDEXED for node_id in indexed_ids}
    edges: dict[str, list[str]] = {node_id: [] for node_id in indexed_ids}
    missing: list[MissingDependencyRef] = []

    for declaration_id, dep_ids in dependencies.items():
        for dep_id in dep_ids:
            if dep_id not in indexed_ids:
                missing.append(MissingDependencyRef(declaration_id, dep_id))
                if not include_external_nodes:
                    continue
                if dep_id not in categories:
                    categories[dep_id] = EXTERNAL
                    edges[dep_id] = []
            edges[declaration_id].append(dep_id)

    dependents: dict[str, list[str]] = {node_id: [] for node_id in categories}
    for source, targets in edges.items():
        for target in targets:
            dependents[target].append(source)

    node_ids = tuple(sorted(categories))
    nodes = {
        node_id: DeclarationNode(
            id=node_id,
            category=categories[node_id],
            dependency_ids=tuple(sorted(edges[node_id])),
            dependent_ids=tuple(sorted(dependents[node_id])),
        )
        for node_id in node_ids
    }

    sccs = _strongly_connected_components(node_ids, nodes)
    cyclic = tuple(
        component for component in sccs
        if len(component) > 1 or component[0] in nodes[component[0]].dependency_ids
    )
    external_count = sum(1 for n in nodes.values() if n.category == EXTERNAL)

    return DependencyGraph(
        node_ids=node_ids,
        nodes=nodes,
        edge_count=sum(len(n.dependency_ids) for n in nodes.values()),
        indexed_node_count=len(nodes) - external_count,
        external_node_count=external_count,
        missing_dependency_refs=tuple(sorted(
            missing, key=lambda r: (r.declaration_id, r.missing_dependency_id)
        )),
        sccs=sccs,
        cyclic_sccs=cyclic,
    )


def declarations_from_leaves(leaves: Iterable[LeafNodeInput]) -> list[DeclarationRecord]:
    """Treat each leaf's prerequisites as its declared dependencies."""
    return [
        DeclarationRecord(id=leaf.id, dependency_ids=tuple(leaf.prerequisite_ids))
        for leaf in leaves
    ]


def _strongly_connected_components(
    node_ids: tuple[str, ...],
    nodes: dict[str, DeclarationNode],
) -> tuple[tuple[str, ...], ...]:
    """Iterative Tarjan; successors are already sorted on every node."""
    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[tuple[str, ...]] = []
    counter = 0

    for root in node_ids:
        if root in index_of:
            continue
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(nodes[root].dependency_ids))]

        while work:
            node_id, successors = work[-1]
            descended = False
            for successor in successors:
                if successor not in index_of:
                    index_of[successor] = lowlink[successor] = counter
                    counter += 1
                    stack.append(successor)
                    on_stack.add(successor)
                    work.append((successor, iter(nodes[successor].dependency_ids)))
                    descended = True
                    break
                if successor in on_stack:
                    lowlink[node_id] = min(lowlink[node_id], index_of[successor])
            if descended:
                continue

            work.pop()
            if work:
                caller = work[-1][0]
                lowlink[caller] = min(lowlink[caller], lowlink[node_id])

            if lowlink[node_id] == index_of[node_id]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node_id:
                        break
                components.append(tuple(sorted(component)))

    return tuple(sorted(components, key=lambda c: "\0".join(c)))


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _require_node(graph: DependencyGraph, declaration_id: str) -> DeclarationNode:
    node = graph.nodes.get(declaration_id)
    if node is None:
        raise NotFoundError(
            f"Declaration '{declaration_id}' is not present in dependency graph"
        )
    return node


def direct_dependencies(graph: DependencyGraph, declaration_id: str) -> tuple[str, ...]:
    return _require_node(graph, declaration_id).dependency_ids


def direct_dependents(graph: DependencyGraph, declaration_id: str) -> tuple[str, ...]:
    return _require_node(graph, declaration_id).dependent_ids


def supporting_declarations(
    graph: DependencyGraph,
    declaration_id: str,
    include_external: bool = True,
) -> list[str]:
    """All ids transitively required by ``declaration_id``, in DFS post-order.

    A node already being visited is treated as counted and never re-entered,
    so cycles (including one through ``declaration_id`` itself) terminate.
    The queried id is not part of the result.
    """
    _require_node(graph, declaration_id)

    marks: dict[str, int] = {declaration_id: _VISITING}
    ordered: list[str] = []
    work = [(declaration_id, iter(graph.nodes[declaration_id].dependency_ids))]

    while work:
        node_id, successors = work[-1]
        descended = False
        for successor in successors:
            if successor in marks:
                continue
            node = graph.nodes[successor]
            if not include_external and node.category == EXTERNAL:
                continue
            marks[successor] = _VISITING
            work.append((successor, iter(node.dependency_ids)))
            descended = True
            break
        if descended:
            continue

        work.pop()
        marks[node_id] = _DONE
        if node_id != declaration_id:
            ordered.append(node_id)

    return ordered


# ---------------------------------------------------------------------------
# Canonical snapshot
# ---------------------------------------------------------------------------

def render_dependency_graph_canonical(graph: DependencyGraph) -> str:
    """Render the graph as stable line-based text (used for hashing and the CLI)."""
    lines = [
        f"schema={graph.schema_version}",
        f"nodes={len(graph.node_ids)}",
        f"edges={graph.edge_count}",
        f"indexed={graph.indexed_node_count}",
        f"external={graph.external_node_count}",
        "missing_refs=" + ",".join(
            f"{ref.declaration_id}->{ref.missing_dependency_id}"
            for ref in graph.missing_dependency_refs
        ),
    ]
    for node_id in graph.node_ids:
        node = graph.nodes[node_id]
        deps = ",".join(node.dependency_ids) or "none"
        dependents = ",".join(node.dependent_ids) or "none"
        lines.append(
            f"node={node_id}|category={node.category}|deps={deps}|dependents={dependents}"
        )
    for i, component in enumerate(graph.sccs):
        lines.append(f"scc[{i}]={','.join(component)}")
    for i, component in enumerate(graph.cyclic_sccs):
        lines.append(f"cyclic_scc[{i}]={','.join(component)}")
    return "\n".join(lines)


def compute_dependency_graph_hash(graph: DependencyGraph) -> str:
    canonical = render_dependency_graph_canonical(graph)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
