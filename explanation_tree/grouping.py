"""
Child Grouping Engine: partitions one layer of sibling nodes into groups.

Deterministic greedy clustering seeded by a topological order:
  1. Kahn's algorithm over in-layer prerequisites, ready queue kept sorted.
     A prerequisite cycle is recovered by appending the unresolved ids in
     id order and emitting a ``cycle_detected`` warning.
  2. Each unassigned id in that order seeds a group, which grows by the
     best viable candidate until it is full or nothing viable remains.
     A candidate is viable when its prerequisites are already assigned
     (earlier or in the current group) and adding it keeps the group's
     complexity spread inside the band.
  3. Candidates are ranked by a total order (token similarity, distance
     from the group average, distance from the target, topological
     position, sha256 of the id) so the result never depends on input order.
"""

from __future__ import annotations

import hashlib
import heapq
import math
from dataclasses import dataclass
from typing import Sequence

from explanation_tree.errors import InvalidInputError
from explanation_tree.models import GroupingDiagnostics, GroupingWarning
from explanation_tree.text import stem_token, tokenize_normalized

MIN_COMPLEXITY = 1
MAX_COMPLEXITY = 5
MAX_BAND_WIDTH = 3
MIN_SIMILARITY_TOKEN_LENGTH = 3

STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "be", "by", "for", "from", "in", "is",
    "of", "on", "or", "that", "the", "to", "with",
})


@dataclass(frozen=True)
class GroupingNode:
    """A sibling to be grouped: a leaf or a parent synthesized one layer below."""
    id: str
    statement: str
    complexity: float | None = None
    prerequisite_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class GroupingResult:
    groups: tuple[tuple[str, ...], ...]
    diagnostics: GroupingDiagnostics


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _is_integer(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_finite_number(value: object) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _validate_arguments(
    nodes: Sequence[GroupingNode],
    max_children_per_parent: int,
    target_complexity: float,
    complexity_band_width: int,
) -> None:
    if not _is_integer(max_children_per_parent) or max_children_per_parent < 2:
        raise InvalidInputError("max_children_per_parent must be an integer >= 2")
    if (
        not _is_finite_number(target_complexity)
        or not MIN_COMPLEXITY <= target_complexity <= MAX_COMPLEXITY
    ):
        raise InvalidInputError("target_complexity must be between 1 and 5")
    if (
        not _is_integer(complexity_band_width)
        or not 0 <= complexity_band_width <= MAX_BAND_WIDTH
    ):
        raise InvalidInputError("complexity_band_width must be an integer in [0, 3]")
    if not nodes:
        raise InvalidInputError("nodes must contain at least one node")

    seen: set[str] = set()
    for node in nodes:
        if not isinstance(node.id, str) or not node.id.strip():
            raise InvalidInputError("Every node must have a non-empty id")
        if not isinstance(node.statement, str) or not node.statement.strip():
            raise InvalidInputError(f"Node {node.id} must have a non-empty statement")
        if node.complexity is not None and (
            not _is_finite_number(node.complexity)
            or not MIN_COMPLEXITY <= node.complexity <= MAX_COMPLEXITY
        ):
            raise InvalidInputError(f"Node {node.id} complexity must be between 1 and 5")
        if isinstance(node.prerequisite_ids, str) or not isinstance(
            node.prerequisite_ids, (list, tuple)
        ):
            raise InvalidInputError(f"Node {node.id} prerequisite_ids must be a sequence")
        if node.id in seen:
            raise InvalidInputError(f"Duplicate node id: {node.id}")
        seen.add(node.id)


# ---------------------------------------------------------------------------
# Ordering and similarity helpers
# ---------------------------------------------------------------------------

def _topological_order(
    node_ids: list[str],
    prerequisites: dict[str, tuple[str, ...]],
) -> tuple[list[str], list[str]]:
    """Kahn's algorithm with an id-sorted ready queue.

    Returns (order, unresolved). ``order`` always covers every id; the
    unresolved ids (members of, or blocked behind, a cycle) are appended
    at the end in id order.
    """
    in_degree = {node_id: len(prerequisites[node_id]) for node_id in node_ids}
    dependents: dict[str, list[str]] = {node_id: [] for node_id in node_ids}
    for node_id in node_ids:
        for prereq in prerequisites[node_id]:
            dependents[prereq].append(node_id)

    ready = [node_id for node_id in node_ids if in_degree[node_id] == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        node_id = heapq.heappop(ready)
        order.append(node_id)
        for dependent in dependents[node_id]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, dependent)

    placed = set(order)
    unresolved = sorted(node_id for node_id in node_ids if node_id not in placed)
    return order + unresolved, unresolved


def _similarity_tokens(statement: str) -> frozenset[str]:
    return frozenset(
        stem_token(token)
        for token in tokenize_normalized(statement)
        if len(token) >= MIN_SIMILARITY_TOKEN_LENGTH and token not in STOP_WORDS
    )


def _jaccard(left: frozenset[str], right: frozenset[str]) -> float:
    union = left | right
    if not union:
        return 0.0
    return len(left & right) / len(union)


def _id_hash(node_id: str) -> str:
    return hashlib.sha256(node_id.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------

def group_children(
    nodes: Sequence[GroupingNode],
    max_children_per_parent: int,
    target_complexity: float,
    complexity_band_width: int,
    *,
    enforce_complexity_band: bool = True,
) -> GroupingResult:
    """Partition ``nodes`` into ordered groups of at most ``max_children_per_parent``.

    Args:
        nodes: Siblings of one layer. Input order is irrelevant.
        max_children_per_parent: Upper bound on group size (>= 2).
        target_complexity: Fallback complexity and ranking anchor, in [1, 5].
        complexity_band_width: Maximum complexity spread within a group.
        enforce_complexity_band: When False the spread is still reported
            but no longer limits group membership.

    Raises:
        InvalidInputError: On out-of-range arguments or malformed nodes.
    """
    _validate_arguments(
        nodes, max_children_per_parent, target_complexity, complexity_band_width
    )

    ordered_nodes = sorted(nodes, key=lambda n: n.id)
    node_ids = [node.id for node in ordered_nodes]
    present = set(node_ids)
    warnings: list[GroupingWarning] = []

    missing_complexity = [n.id for n in ordered_nodes if n.complexity is None]
    if missing_complexity:
        warnings.append(GroupingWarning(
            code="missing_complexity",
            message=(
                f"{len(missing_complexity)} node(s) had no complexity score; "
                f"defaulted to target complexity {target_complexity}."
            ),
            details={
                "node_ids": missing_complexity,
                "fallback_complexity": target_complexity,
            },
        ))

    complexity = {
        n.id: float(n.complexity if n.complexity is not None else target_complexity)
        for n in ordered_nodes
    }
    # Only in-layer prerequisites constrain order; a self-reference is ignored.
    prerequisites = {
        n.id: tuple(sorted({
            p for p in n.prerequisite_ids if p in present and p != n.id
        }))
        for n in ordered_nodes
    }
    tokens = {n.id: _similarity_tokens(n.statement) for n in ordered_nodes}

    order, unresolved = _topological_order(node_ids, prerequisites)
    if unresolved:
        warnings.append(GroupingWarning(
            code="cycle_detected",
            message=(
                f"Prerequisite cycle prevented a full topological order; "
                f"{len(unresolved)} node(s) appended in id order."
            ),
            details={"unresolved_node_ids": unresolved},
        ))
    position = {node_id: i for i, node_id in enumerate(order)}

    assigned: set[str] = set()
    groups: list[tuple[str, ...]] = []
    spreads: list[float] = []

    for seed in order:
        if seed in assigned:
            continue
        group = [seed]
        assigned.add(seed)

        while len(group) < max_children_per_parent:
            group_complexities = [complexity[m] for m in group]
            low, high = min(group_complexities), max(group_complexities)

            viable: list[str] = []
            for candidate in order:
                if candidate in assigned:
                    continue
                if any(p not in assigned for p in prerequisites[candidate]):
                    continue
                value = complexity[candidate]
                if enforce_complexity_band and (
                    max(high, value) - min(low, value) > complexity_band_width
                ):
                    continue
                viable.append(candidate)
            if not viable:
                break

            average = sum(group_complexities) / len(group_complexities)

            def rank(candidate: str) -> tuple[float, float, float, int, str]:
                similarity = max(
                    _jaccard(tokens[candidate], tokens[member]) for member in group
                )
                return (
                    -similarity,
                    abs(complexity[candidate] - average),
                    abs(complexity[candidate] - target_complexity),
                    position[candidate],
                    _id_hash(candidate),
                )

            chosen = min(viable, key=rank)
            group.append(chosen)
            assigned.add(chosen)

        values = [complexity[m] for m in group]
        groups.append(tuple(group))
        spreads.append(max(values) - min(values))

    return GroupingResult(
        groups=tuple(groups),
        diagnostics=GroupingDiagnostics(
            ordered_node_ids=tuple(order),
            complexity_spread_by_group=tuple(spreads),
            warnings=tuple(warnings),
        ),
    )
