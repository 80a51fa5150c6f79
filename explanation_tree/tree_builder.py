"""
Tree Builder: the layer-by-layer control loop that produces an ExplanationTree.

Each iteration takes the current layer (leaves first, then the parents
synthesized one level below plus any singletons passed through), groups
it, and turns every multi-node group into one parent:

  group → reuse lookup → summary pipeline (one retry with feedback)
        → post-summary policy → parent node

Groups that need the LLM are dispatched in fixed-size batches ordered by
group index, so batch membership never depends on completion order. A
layer's parents are committed only after every batch of that layer has
succeeded; any fatal error aborts the whole build.

Node identity comes from a hash of (depth, group index, child ids), and
grouping is deterministic, so the same logical input always yields the
same tree regardless of input order or call timing.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from explanation_tree.config import (
    ExplanationConfig,
    compute_config_hash,
    validate_config,
)
from explanation_tree.errors import InvalidInputError
from explanation_tree.grouping import GroupingNode, GroupingResult, group_children
from explanation_tree.llm.client import LlmClient
from explanation_tree.models import (
    CriticViolation,
    ExplanationTree,
    ExplanationTreeNode,
    GroupingWarning,
    GroupPlanEntry,
    LayerGroupingDiagnostics,
    LeafNodeInput,
    ParentPolicyDiagnostics,
    ParentSummary,
    PolicyDecision,
    PolicyViolation,
    ReusableParentSummary,
    SummaryChild,
)
from explanation_tree.policy import (
    evaluate_post_summary_policy,
    evaluate_pre_summary_policy,
)
from explanation_tree.security import ConfiguredSecret, collect_configured_secrets
from explanation_tree.summary import (
    DEFAULT_SYSTEM_PROMPT,
    SummaryValidationError,
    generate_parent_summary,
    validate_parent_summary,
)

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_BATCH_SIZE = 8
MAX_SUMMARY_ATTEMPTS = 2           # First try plus one retry with feedback
PARENT_ID_HASH_LENGTH = 16


# ---------------------------------------------------------------------------
# Errors and validation types
# ---------------------------------------------------------------------------

class TreePolicyError(RuntimeError):
    """A group could not be made compliant after its retry.

    Fatal to the whole build. Carries everything an operator needs to see
    why: the group, both policy decisions and the last critic violations.
    """

    def __init__(
        self,
        message: str,
        *,
        depth: int,
        group_index: int,
        parent_id: str,
        child_ids: tuple[str, ...],
        pre_summary: PolicyDecision,
        post_summary: PolicyDecision | None,
        critic_violations: tuple[CriticViolation, ...],
        attempts: int,
    ) -> None:
        super().__init__(message)
        self.depth = depth
        self.group_index = group_index
        self.parent_id = parent_id
        self.child_ids = child_ids
        self.pre_summary = pre_summary
        self.post_summary = post_summary
        self.critic_violations = critic_violations
        self.attempts = attempts


@dataclass(frozen=True)
class TreeValidationIssue:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TreeValidationResult:
    ok: bool
    issues: tuple[TreeValidationIssue, ...] = ()


class TreeValidationError(RuntimeError):
    """The assembled tree broke a global invariant."""

    def __init__(self, message: str, issues: tuple[TreeValidationIssue, ...]) -> None:
        super().__init__(message)
        self.issues = issues


# ---------------------------------------------------------------------------
# Identity and hashing
# ---------------------------------------------------------------------------

def compute_parent_id(depth: int, index: int, child_ids: Sequence[str]) -> str:
    digest = hashlib.sha256(
        f"{depth}:{index}:{','.join(child_ids)}".encode("utf-8")
    ).hexdigest()
    return f"p_{depth}_{index}_{digest[:PARENT_ID_HASH_LENGTH]}"


def compute_child_statement_hash(children: Sequence[tuple[str, str]]) -> str:
    """Hash of the ordered (id, statement) pairs of a group."""
    payload = json.dumps(
        [[child_id, statement] for child_id, statement in children],
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Internal per-group records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _GroupTask:
    depth: int
    index: int
    parent_id: str
    children: tuple[SummaryChild, ...]
    child_statement_hash: str
    pre_summary: PolicyDecision

    @property
    def child_ids(self) -> tuple[str, ...]:
        return tuple(child.id for child in self.children)


@dataclass(frozen=True)
class _GroupOutcome:
    task: _GroupTask
    summary: ParentSummary
    diagnostics: ParentPolicyDiagnostics


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------

def _normalize_leaves(leaves: Sequence[LeafNodeInput]) -> list[LeafNodeInput]:
    if not leaves:
        raise InvalidInputError("leaves must contain at least one leaf")

    normalized: dict[str, LeafNodeInput] = {}
    for leaf in leaves:
        leaf_id = leaf.id.strip() if isinstance(leaf.id, str) else ""
        statement = leaf.statement.strip() if isinstance(leaf.statement, str) else ""
        if not leaf_id or not statement:
            raise InvalidInputError("Each leaf requires a non-empty id and statement")
        if leaf_id in normalized:
            raise InvalidInputError(f"Duplicate leaf id: {leaf_id}")
        complexity = leaf.complexity
        if complexity is not None and (
            isinstance(complexity, bool)
            or not isinstance(complexity, (int, float))
            or not math.isfinite(complexity)
            or not 1 <= complexity <= 5
        ):
            raise InvalidInputError(f"Leaf {leaf_id} complexity must be between 1 and 5")
        prerequisites = tuple(sorted({p.strip() for p in leaf.prerequisite_ids if p.strip()}))
        normalized[leaf_id] = LeafNodeInput(
            id=leaf_id,
            statement=statement,
            complexity=complexity,
            prerequisite_ids=prerequisites,
        )
    return [normalized[leaf_id] for leaf_id in sorted(normalized)]


def _retry_system_prompt(violations: Sequence[CriticViolation | PolicyViolation]) -> str:
    lines = [
        DEFAULT_SYSTEM_PROMPT,
        "Your previous answer was rejected. Return a corrected JSON object that fixes:",
    ]
    lines.extend(f"- {v.code}: {v.message}" for v in violations)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------

class TreeBuilder:
    """Builds one explanation tree. Create a new instance per build."""

    def __init__(
        self,
        client: LlmClient,
        config: ExplanationConfig,
        *,
        summary_batch_size: int | None = None,
        reusable_parent_summaries: Mapping[str, ReusableParentSummary] | None = None,
        batch_timeout_s: float | None = None,
        configured_secrets: list[ConfiguredSecret] | None = None,
    ) -> None:
        validation = validate_config(config)
        if not validation.ok:
            details = "; ".join(f"{e.path} {e.message}" for e in validation.errors)
            raise InvalidInputError(f"Invalid config: {details}")
        if summary_batch_size is None:
            summary_batch_size = DEFAULT_SUMMARY_BATCH_SIZE
        if (
            isinstance(summary_batch_size, bool)
            or not isinstance(summary_batch_size, int)
            or summary_batch_size < 1
        ):
            raise InvalidInputError("summary_batch_size must be an integer >= 1")
        if batch_timeout_s is not None and batch_timeout_s <= 0:
            raise InvalidInputError("batch_timeout_s must be positive")

        self._client = client
        self._config = config
        self._batch_size = summary_batch_size
        self._batch_timeout_s = batch_timeout_s
        self._secrets = (
            collect_configured_secrets() if configured_secrets is None else configured_secrets
        )
        # Read-only for the whole build.
        self._reusable = dict(reusable_parent_summaries or {})
        self._reusable_by_hash: dict[str, list[str]] = {}
        for parent_id in sorted(self._reusable):
            entry = self._reusable[parent_id]
            self._reusable_by_hash.setdefault(entry.child_statement_hash, []).append(parent_id)
        self.llm_call_count = 0

    async def build(self, leaves: Sequence[LeafNodeInput]) -> ExplanationTree:
        """Build the tree for ``leaves``.

        Raises:
            InvalidInputError: Malformed leaves.
            TreePolicyError: A group stayed non-compliant after its retry.
            TreeValidationError: The finished tree broke a global invariant.
            ProviderError: The LLM client gave up.
        """
        ordered_leaves = _normalize_leaves(leaves)
        config_hash = compute_config_hash(self._config)
        leaf_ids = tuple(leaf.id for leaf in ordered_leaves)

        nodes: dict[str, ExplanationTreeNode] = {
            leaf.id: ExplanationTreeNode(
                id=leaf.id,
                kind="leaf",
                statement=leaf.statement,
                depth=0,
                evidence_refs=(leaf.id,),
                complexity_score=leaf.complexity,
            )
            for leaf in ordered_leaves
        }

        if len(ordered_leaves) == 1:
            logger.info("Single leaf %s; tree is the leaf itself", leaf_ids[0])
            return ExplanationTree(
                root_id=leaf_ids[0],
                leaf_ids=leaf_ids,
                nodes=nodes,
                max_depth=0,
                config_hash=config_hash,
            )

        prerequisites = {leaf.id: leaf.prerequisite_ids for leaf in ordered_leaves}
        active = list(leaf_ids)
        depth = 0
        group_plan: list[GroupPlanEntry] = []
        layers: list[LayerGroupingDiagnostics] = []
        policy_by_parent: dict[str, ParentPolicyDiagnostics] = {}

        while len(active) > 1:
            depth += 1
            if depth > len(leaf_ids):
                raise RuntimeError(f"Tree did not converge after {depth - 1} layers")
            logger.info("=== Layer %d: grouping %d node(s) ===", depth, len(active))

            grouping, warnings = self._group_layer(active, nodes, prerequisites, depth)

            tasks: list[_GroupTask] = []
            owner: dict[str, str] = {}
            members: dict[str, tuple[str, ...]] = {}
            next_layer: list[str] = []
            for index, group in enumerate(grouping.groups):
                if len(group) == 1:
                    owner[group[0]] = group[0]
                    members[group[0]] = group
                    next_layer.append(group[0])
                    continue
                task = self._plan_group(depth, index, group, nodes, prerequisites)
                tasks.append(task)
                for child_id in group:
                    owner[child_id] = task.parent_id
                members[task.parent_id] = group
                next_layer.append(task.parent_id)

            outcomes: dict[int, _GroupOutcome] = {}
            pending: list[_GroupTask] = []
            for task in tasks:
                reused, warning = self._try_reuse(task)
                if warning is not None:
                    warnings.append(warning)
                if reused is not None:
                    outcomes[task.index] = reused
                else:
                    pending.append(task)

            for start in range(0, len(pending), self._batch_size):
                batch = pending[start:start + self._batch_size]
                logger.info(
                    "Layer %d: dispatching batch of %d group(s) (%d/%d)",
                    depth, len(batch), start + len(batch), len(pending),
                )
                for outcome in await self._run_batch(batch):
                    outcomes[outcome.task.index] = outcome

            # Commit the whole layer at once.
            for index in sorted(outcomes):
                outcome = outcomes[index]
                task, summary = outcome.task, outcome.summary
                nodes[task.parent_id] = ExplanationTreeNode(
                    id=task.parent_id,
                    kind="parent",
                    statement=summary.parent_statement,
                    depth=depth,
                    child_ids=task.child_ids,
                    evidence_refs=tuple(summary.evidence_refs),
                    complexity_score=summary.complexity_score,
                    abstraction_score=summary.abstraction_score,
                    confidence=summary.confidence,
                    why_true_from_children=summary.why_true_from_children,
                    new_terms_introduced=tuple(summary.new_terms_introduced),
                    policy_diagnostics=outcome.diagnostics,
                )
                group_plan.append(GroupPlanEntry(
                    depth=depth,
                    index=index,
                    input_node_ids=task.child_ids,
                    output_node_id=task.parent_id,
                ))
                policy_by_parent[task.parent_id] = outcome.diagnostics

            layers.append(LayerGroupingDiagnostics(
                depth=depth,
                ordered_node_ids=grouping.diagnostics.ordered_node_ids,
                complexity_spread_by_group=grouping.diagnostics.complexity_spread_by_group,
                warnings=tuple(warnings),
            ))

            prerequisites = {
                node_id: tuple(sorted({
                    owner[prereq]
                    for child_id in members[node_id]
                    for prereq in prerequisites[child_id]
                    if prereq in owner and owner[prereq] != node_id
                }))
                for node_id in next_layer
            }
            active = next_layer
            logger.info("Layer %d complete: %d node(s) remain", depth, len(active))

        tree = ExplanationTree(
            root_id=active[0],
            leaf_ids=leaf_ids,
            nodes=nodes,
            max_depth=depth,
            config_hash=config_hash,
            group_plan=tuple(group_plan),
            grouping_diagnostics=tuple(layers),
            policy_diagnostics_by_parent=policy_by_parent,
        )
        validation = validate_explanation_tree(
            tree, self._config.max_children_per_parent, expected_leaf_ids=leaf_ids
        )
        if not validation.ok:
            codes = ", ".join(sorted({issue.code for issue in validation.issues}))
            raise TreeValidationError(f"Tree validation failed: {codes}", validation.issues)
        logger.info(
            "Built tree: root=%s depth=%d parents=%d llm_calls=%d",
            tree.root_id, tree.max_depth, tree.parent_count, self.llm_call_count,
        )
        return tree

    # -- Layer helpers -------------------------------------------------------

    def _group_layer(
        self,
        active: list[str],
        nodes: dict[str, ExplanationTreeNode],
        prerequisites: dict[str, tuple[str, ...]],
        depth: int,
    ) -> tuple[GroupingResult, list[GroupingWarning]]:
        grouping_nodes = [
            GroupingNode(
                id=node_id,
                statement=nodes[node_id].statement,
                complexity=nodes[node_id].complexity_score,
                prerequisite_ids=prerequisites[node_id],
            )
            for node_id in active
        ]
        arguments = (
            grouping_nodes,
            self._config.max_children_per_parent,
            self._config.complexity_level,
            self._config.complexity_band_width,
        )
        result = group_children(*arguments)
        if len(result.groups) < len(active):
            return result, list(result.diagnostics.warnings)

        # Every group is a singleton: the band keeps the layer from shrinking.
        relaxed = group_children(*arguments, enforce_complexity_band=False)
        if len(relaxed.groups) == len(active):
            raise RuntimeError(f"Grouping made no progress at depth {depth}")
        logger.warning(
            "Layer %d: complexity band blocked all grouping; regrouped without it", depth
        )
        warnings = list(relaxed.diagnostics.warnings)
        warnings.append(GroupingWarning(
            code="complexity_band_relaxed",
            message=(
                "No two nodes fit within the complexity band; the layer was "
                "regrouped without the band constraint."
            ),
            details={
                "complexity_band_width": self._config.complexity_band_width,
                "node_ids": list(active),
            },
        ))
        return relaxed, warnings

    def _plan_group(
        self,
        depth: int,
        index: int,
        group: tuple[str, ...],
        nodes: dict[str, ExplanationTreeNode],
        prerequisites: dict[str, tuple[str, ...]],
    ) -> _GroupTask:
        children = tuple(
            SummaryChild(
                id=child_id,
                statement=nodes[child_id].statement,
                complexity=nodes[child_id].complexity_score,
                prerequisite_ids=prerequisites[child_id],
            )
            for child_id in group
        )
        return _GroupTask(
            depth=depth,
            index=index,
            parent_id=compute_parent_id(depth, index, group),
            children=children,
            child_statement_hash=compute_child_statement_hash(
                [(child.id, child.statement) for child in children]
            ),
            pre_summary=evaluate_pre_summary_policy(children, self._config),
        )

    def _try_reuse(
        self, task: _GroupTask
    ) -> tuple[_GroupOutcome | None, GroupingWarning | None]:
        """Accept a previously generated summary when it still fits this group."""
        source = "parent_id"
        candidate = self._reusable.get(task.parent_id)
        if candidate is None or candidate.child_statement_hash != task.child_statement_hash:
            source = "content_hash"
            matches = self._reusable_by_hash.get(task.child_statement_hash, [])
            if len(matches) > 1:
                logger.warning(
                    "Ambiguous reuse for %s: %d candidates share its content hash",
                    task.parent_id, len(matches),
                )
                return None, GroupingWarning(
                    code="ambiguous_reuse_hash",
                    message="Several reusable summaries share this group's content hash; regenerating.",
                    details={
                        "parent_id": task.parent_id,
                        "candidate_parent_ids": list(matches),
                        "child_statement_hash": task.child_statement_hash,
                    },
                )
            if not matches:
                return None, None
            candidate = self._reusable[matches[0]]

        critic = validate_parent_summary(
            candidate.summary, task.children, self._config, self._secrets
        )
        post = evaluate_post_summary_policy(task.children, candidate.summary, self._config)
        if not critic.ok or not post.ok:
            logger.info("Reusable summary for %s no longer passes checks", task.parent_id)
            return None, GroupingWarning(
                code="reuse_rejected",
                message="Reusable summary failed revalidation; regenerating.",
                details={
                    "parent_id": task.parent_id,
                    "violation_codes": sorted(
                        {v.code for v in critic.violations} | {v.code for v in post.violations}
                    ),
                },
            )

        logger.info("Reusing summary for %s (matched by %s)", task.parent_id, source)
        return _GroupOutcome(
            task=task,
            summary=candidate.summary,
            diagnostics=ParentPolicyDiagnostics(
                depth=task.depth,
                group_index=task.index,
                retries_used=0,
                pre_summary=task.pre_summary,
                post_summary=post,
                reuse_source=source,
            ),
        ), None

    async def _run_batch(self, batch: list[_GroupTask]) -> list[_GroupOutcome]:
        """Run one batch concurrently; on any failure cancel the rest and re-raise."""
        running = [asyncio.ensure_future(self._synthesize(task)) for task in batch]
        try:
            gathered = asyncio.gather(*running)
            if self._batch_timeout_s is None:
                return list(await gathered)
            return list(await asyncio.wait_for(gathered, self._batch_timeout_s))
        except BaseException:
            for future in running:
                future.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

    async def _synthesize(self, task: _GroupTask) -> _GroupOutcome:
        """Summary pipeline plus post-summary policy, with one retry on rejection."""
        system_prompt: str | None = None
        critic_violations: tuple[CriticViolation, ...] = ()
        post: PolicyDecision | None = None

        for attempt in range(1, MAX_SUMMARY_ATTEMPTS + 1):
            self.llm_call_count += 1
            try:
                result = await generate_parent_summary(
                    self._client,
                    task.children,
                    self._config,
                    system_prompt=system_prompt,
                    configured_secrets=self._secrets,
                )
            except SummaryValidationError as exc:
                critic_violations = exc.diagnostics.violations
                post = None
                feedback: Sequence[CriticViolation | PolicyViolation] = critic_violations
            else:
                critic_violations = result.diagnostics.violations
                post = evaluate_post_summary_policy(task.children, result.summary, self._config)
                if post.ok:
                    return _GroupOutcome(
                        task=task,
                        summary=result.summary,
                        diagnostics=ParentPolicyDiagnostics(
                            depth=task.depth,
                            group_index=task.index,
                            retries_used=attempt - 1,
                            pre_summary=task.pre_summary,
                            post_summary=post,
                        ),
                    )
                feedback = post.violations

            codes = ", ".join(sorted({v.code for v in feedback}))
            if attempt < MAX_SUMMARY_ATTEMPTS:
                logger.warning(
                    "Group %s rejected on attempt %d/%d (%s); retrying with feedback",
                    task.parent_id, attempt, MAX_SUMMARY_ATTEMPTS, codes,
                )
            system_prompt = _retry_system_prompt(feedback)

        raise TreePolicyError(
            f"Group {task.index} at depth {task.depth} ({task.parent_id}) could not be "
            f"made policy-compliant after {MAX_SUMMARY_ATTEMPTS} attempts: {codes}",
            depth=task.depth,
            group_index=task.index,
            parent_id=task.parent_id,
            child_ids=task.child_ids,
            pre_summary=task.pre_summary,
            post_summary=post,
            critic_violations=critic_violations,
            attempts=MAX_SUMMARY_ATTEMPTS,
        )


async def build_explanation_tree(
    client: LlmClient,
    leaves: Sequence[LeafNodeInput],
    config: ExplanationConfig,
    *,
    summary_batch_size: int | None = None,
    reusable_parent_summaries: Mapping[str, ReusableParentSummary] | None = None,
    batch_timeout_s: float | None = None,
    configured_secrets: list[ConfiguredSecret] | None = None,
) -> ExplanationTree:
    """Build an explanation tree over ``leaves``. See TreeBuilder.build()."""
    builder = TreeBuilder(
        client,
        config,
        summary_batch_size=summary_batch_size,
        reusable_parent_summaries=reusable_parent_summaries,
        batch_timeout_s=batch_timeout_s,
        configured_secrets=configured_secrets,
    )
    return await builder.build(leaves)


# ---------------------------------------------------------------------------
# Global validation and reuse extraction
# ---------------------------------------------------------------------------

def validate_explanation_tree(
    tree: ExplanationTree,
    max_children_per_parent: int | None = None,
    *,
    expected_leaf_ids: Sequence[str] | None = None,
) -> TreeValidationResult:
    """Check the global tree invariants and report every issue found."""
    issues: list[TreeValidationIssue] = []
    if tree.root_id not in tree.nodes:
        issues.append(TreeValidationIssue(
            "missing_root", f"Root {tree.root_id} is not a node of the tree.",
            {"root_id": tree.root_id},
        ))
        return TreeValidationResult(ok=False, issues=tuple(issues))

    parent_of: dict[str, str] = {}
    reached = {tree.root_id}
    stack = [tree.root_id]
    while stack:
        node_id = stack.pop()
        node = tree.nodes[node_id]
        if max_children_per_parent is not None and len(node.child_ids) > max_children_per_parent:
            issues.append(TreeValidationIssue(
                "branching_factor",
                f"Node {node_id} has {len(node.child_ids)} children "
                f"(max {max_children_per_parent}).",
                {"node_id": node_id, "child_count": len(node.child_ids)},
            ))
        for child_id in node.child_ids:
            if child_id in parent_of or child_id == tree.root_id:
                issues.append(TreeValidationIssue(
                    "multiple_parents",
                    f"Node {child_id} is reachable through more than one parent.",
                    {"node_id": child_id, "parent_ids": [parent_of.get(child_id), node_id]},
                ))
                continue
            parent_of[child_id] = node_id
            if child_id not in tree.nodes:
                issues.append(TreeValidationIssue(
                    "missing_node",
                    f"Node {node_id} references missing child {child_id}.",
                    {"node_id": node_id, "child_id": child_id},
                ))
                continue
            reached.add(child_id)
            stack.append(child_id)

    unreachable = sorted(set(tree.nodes) - reached)
    if unreachable:
        issues.append(TreeValidationIssue(
            "not_connected",
            f"{len(unreachable)} node(s) are not reachable from the root.",
            {"node_ids": unreachable},
        ))

    missing_leaves = sorted({
        leaf_id for leaf_id in tree.leaf_ids
        if leaf_id not in reached or tree.nodes[leaf_id].kind != "leaf"
    })
    if expected_leaf_ids is not None:
        expected = sorted(set(expected_leaf_ids))
        if expected != list(tree.leaf_ids):
            missing_leaves = sorted(
                set(missing_leaves) | (set(expected) ^ set(tree.leaf_ids))
            )
    duplicates = len(tree.leaf_ids) != len(set(tree.leaf_ids))
    if missing_leaves or duplicates:
        issues.append(TreeValidationIssue(
            "leaf_not_preserved",
            "Every input leaf must appear in the tree exactly once.",
            {"leaf_ids": missing_leaves, "duplicate_leaf_ids": duplicates},
        ))

    return TreeValidationResult(ok=not issues, issues=tuple(issues))


def collect_reusable_parent_summaries(
    tree: ExplanationTree,
) -> dict[str, ReusableParentSummary]:
    """Turn every parent of a finished tree into a reuse candidate for the next build."""
    reusable: dict[str, ReusableParentSummary] = {}
    for node_id in sorted(tree.nodes):
        node = tree.nodes[node_id]
        if node.kind != "parent":
            continue
        children = [(child_id, tree.nodes[child_id].statement) for child_id in node.child_ids]
        reusable[node_id] = ReusableParentSummary(
            child_statement_hash=compute_child_statement_hash(children),
            summary=ParentSummary(
                parent_statement=node.statement,
                why_true_from_children=node.why_true_from_children,
                new_terms_introduced=node.new_terms_introduced,
                complexity_score=node.complexity_score,
                abstraction_score=node.abstraction_score,
                evidence_refs=node.evidence_refs,
                confidence=node.confidence,
            ),
            policy_diagnostics=node.policy_diagnostics,
        )
    return reusable
