"""
Data models for the explanation tree engine.

Defines the structured types that flow through the engine:
  Leaf records → Dependency Graph → Child Grouping → Summary Pipeline → Tree

All models are frozen dataclasses with JSON round-tripping support via
to_dict() / from_dict(). No model contains business logic; they are pure
data carriers. Collections are tuples so accepted nodes stay immutable.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# ---------------------------------------------------------------------------
# Input models (supplied by leaf ingestion)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DeclarationRecord:
    """One declaration and the ids it depends on, as fed to the graph builder."""
    id: str
    dependency_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "dependency_ids": list(self.dependency_ids)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeclarationRecord:
        return cls(
            id=data["id"],
            dependency_ids=tuple(data.get("dependency_ids", [])),
        )


@dataclass(frozen=True)
class LeafNodeInput:
    """A verified statement that becomes a leaf of the explanation tree.

    ``prerequisite_ids`` may reference ids outside the leaf set; only the
    ones present in the current layer constrain grouping.
    """
    id: str
    statement: str
    complexity: float | None = None    # 1-5, None means "use the target"
    prerequisite_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "statement": self.statement,
            "prerequisite_ids": list(self.prerequisite_ids),
        }
        if self.complexity is not None:
            d["complexity"] = self.complexity
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LeafNodeInput:
        return cls(
            id=data["id"],
            statement=data["statement"],
            complexity=data.get("complexity"),
            prerequisite_ids=tuple(data.get("prerequisite_ids", [])),
        )


@dataclass(frozen=True)
class SummaryChild:
    """One child handed to the summary pipeline and the pedagogical policy."""
    id: str
    statement: str
    complexity: float | None = None
    prerequisite_ids: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Summary models (LLM output and critic verdicts)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParentSummary:
    """Parsed LLM output for one group, before or after critic acceptance.

    Field names mirror the JSON keys the model is asked to produce.
    Numeric fields are NaN when the response carried something unparsable.
    """
    parent_statement: str
    why_true_from_children: str
    new_terms_introduced: tuple[str, ...]
    complexity_score: float
    abstraction_score: float
    evidence_refs: tuple[str, ...]
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "parent_statement": self.parent_statement,
            "why_true_from_children": self.why_true_from_children,
            "new_terms_introduced": list(self.new_terms_introduced),
            "complexity_score": self.complexity_score,
            "abstraction_score": self.abstraction_score,
            "evidence_refs": list(self.evidence_refs),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParentSummary:
        return cls(
            parent_statement=data["parent_statement"],
            why_true_from_children=data.get("why_true_from_children", ""),
            new_terms_introduced=tuple(data.get("new_terms_introduced", [])),
            complexity_score=data["complexity_score"],
            abstraction_score=data["abstraction_score"],
            evidence_refs=tuple(data.get("evidence_refs", [])),
            confidence=data["confidence"],
        )


@dataclass(frozen=True)
class CriticViolation:
    """A named reason a generated summary was rejected.

    Codes: schema, evidence_refs, complexity_band, term_budget,
    unsupported_terms, secret_leak, prompt_injection.
    """
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CriticViolation:
        return cls(
            code=data["code"],
            message=data["message"],
            details=dict(data.get("details", {})),
        )


@dataclass(frozen=True)
class SummaryDiagnostics:
    ok: bool
    violations: tuple[CriticViolation, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "violations": [v.to_dict() for v in self.violations],
        }


# ---------------------------------------------------------------------------
# Pedagogical policy models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PolicyViolation:
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyViolation:
        return cls(
            code=data["code"],
            message=data["message"],
            details=dict(data.get("details", {})),
        )


@dataclass(frozen=True)
class PolicyDecision:
    """Outcome of one policy stage ("pre_summary" or "post_summary")."""
    stage: str
    ok: bool
    violations: tuple[PolicyViolation, ...] = ()
    metrics: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "ok": self.ok,
            "violations": [v.to_dict() for v in self.violations],
            "metrics": dict(sorted(self.metrics.items())),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyDecision:
        return cls(
            stage=data["stage"],
            ok=data["ok"],
            violations=tuple(
                PolicyViolation.from_dict(v) for v in data.get("violations", [])
            ),
            metrics=dict(data.get("metrics", {})),
        )


@dataclass(frozen=True)
class ParentPolicyDiagnostics:
    """Pre/post policy record attached to every accepted parent.

    ``reuse_source`` is "none" when the summary was generated in this
    build, otherwise "parent_id" or "content_hash".
    """
    depth: int
    group_index: int
    retries_used: int
    pre_summary: PolicyDecision
    post_summary: PolicyDecision
    reuse_source: str = "none"

    def to_dict(self) -> dict[str, Any]:
        return {
            "depth": self.depth,
            "group_index": self.group_index,
            "retries_used": self.retries_used,
            "pre_summary": self.pre_summary.to_dict(),
            "post_summary": self.post_summary.to_dict(),
            "reuse_source": self.reuse_source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParentPolicyDiagnostics:
        return cls(
            depth=data["depth"],
            group_index=data["group_index"],
            retries_used=data.get("retries_used", 0),
            pre_summary=PolicyDecision.from_dict(data["pre_summary"]),
            post_summary=PolicyDecision.from_dict(data["post_summary"]),
            reuse_source=data.get("reuse_source", "none"),
        )


# ---------------------------------------------------------------------------
# Grouping diagnostics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GroupingWarning:
    """A recovered grouping anomaly (missing_complexity, cycle_detected, ...)."""
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GroupingWarning:
        return cls(
            code=data["code"],
            message=data["message"],
            details=dict(data.get("details", {})),
        )


@dataclass(frozen=True)
class GroupingDiagnostics:
    ordered_node_ids: tuple[str, ...]
    complexity_spread_by_group: tuple[float, ...]
    warnings: tuple[GroupingWarning, ...] = ()


@dataclass(frozen=True)
class LayerGroupingDiagnostics:
    """Grouping diagnostics for one tree layer, plus builder-level warnings."""
    depth: int
    ordered_node_ids: tuple[str, ...]
    complexity_spread_by_group: tuple[float, ...]
    warnings: tuple[GroupingWarning, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "depth": self.depth,
            "ordered_node_ids": list(self.ordered_node_ids),
            "complexity_spread_by_group": list(self.complexity_spread_by_group),
            "warnings": [w.to_dict() for w in self.warnings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LayerGroupingDiagnostics:
        return cls(
            depth=data["depth"],
            ordered_node_ids=tuple(data.get("ordered_node_ids", [])),
            complexity_spread_by_group=tuple(
                data.get("complexity_spread_by_group", [])
            ),
            warnings=tuple(
                GroupingWarning.from_dict(w) for w in data.get("warnings", [])
            ),
        )


# ---------------------------------------------------------------------------
# Tree models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExplanationTreeNode:
    """A leaf (depth 0, cites itself) or a synthesized parent."""
    id: str
    kind: str                          # "leaf" or "parent"
    statement: str
    depth: int
    child_ids: tuple[str, ...] = ()
    evidence_refs: tuple[str, ...] = ()
    complexity_score: float | None = None
    abstraction_score: float | None = None
    confidence: float | None = None
    why_true_from_children: str = ""
    new_terms_introduced: tuple[str, ...] = ()
    policy_diagnostics: ParentPolicyDiagnostics | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "kind": self.kind,
            "statement": self.statement,
            "depth": self.depth,
            "child_ids": list(self.child_ids),
            "evidence_refs": list(self.evidence_refs),
            "complexity_score": self.complexity_score,
            "abstraction_score": self.abstraction_score,
            "confidence": self.confidence,
            "why_true_from_children": self.why_true_from_children,
            "new_terms_introduced": list(self.new_terms_introduced),
        }
        if self.policy_diagnostics is not None:
            d["policy_diagnostics"] = self.policy_diagnostics.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExplanationTreeNode:
        diagnostics = data.get("policy_diagnostics")
        return cls(
            id=data["id"],
            kind=data["kind"],
            statement=data["statement"],
            depth=data["depth"],
            child_ids=tuple(data.get("child_ids", [])),
            evidence_refs=tuple(data.get("evidence_refs", [])),
            complexity_score=data.get("complexity_score"),
            abstraction_score=data.get("abstraction_score"),
            confidence=data.get("confidence"),
            why_true_from_children=data.get("why_true_from_children", ""),
            new_terms_introduced=tuple(data.get("new_terms_introduced", [])),
            policy_diagnostics=(
                ParentPolicyDiagnostics.from_dict(diagnostics)
                if diagnostics else None
            ),
        )


@dataclass(frozen=True)
class GroupPlanEntry:
    """One synthesized group, recorded in build order for replay."""
    depth: int
    index: int
    input_node_ids: tuple[str, ...]
    output_node_id: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "depth": self.depth,
            "index": self.index,
            "input_node_ids": list(self.input_node_ids),
            "output_node_id": self.output_node_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GroupPlanEntry:
        return cls(
            depth=data["depth"],
            index=data["index"],
            input_node_ids=tuple(data["input_node_ids"]),
            output_node_id=data["output_node_id"],
        )


@dataclass(frozen=True)
class ExplanationTree:
    """The finished tree.

    ``nodes`` and ``policy_diagnostics_by_parent`` are maps; to_dict()
    emits them sorted by id so the serialized form never depends on
    insertion order.
    """
    root_id: str
    leaf_ids: tuple[str, ...]
    nodes: dict[str, ExplanationTreeNode]
    max_depth: int
    config_hash: str
    group_plan: tuple[GroupPlanEntry, ...] = ()
    grouping_diagnostics: tuple[LayerGroupingDiagnostics, ...] = ()
    policy_diagnostics_by_parent: dict[str, ParentPolicyDiagnostics] = field(
        default_factory=dict
    )

    @property
    def parent_count(self) -> int:
        return sum(1 for node in self.nodes.values() if node.kind == "parent")

    @property
    def warning_count(self) -> int:
        return sum(len(layer.warnings) for layer in self.grouping_diagnostics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "root_id": self.root_id,
            "leaf_ids": list(self.leaf_ids),
            "nodes": {
                node_id: self.nodes[node_id].to_dict()
                for node_id in sorted(self.nodes)
            },
            "max_depth": self.max_depth,
            "config_hash": self.config_hash,
            "group_plan": [entry.to_dict() for entry in self.group_plan],
            "grouping_diagnostics": [
                layer.to_dict() for layer in self.grouping_diagnostics
            ],
            "policy_diagnostics_by_parent": {
                parent_id: self.policy_diagnostics_by_parent[parent_id].to_dict()
                for parent_id in sorted(self.policy_diagnostics_by_parent)
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExplanationTree:
        return cls(
            root_id=data["root_id"],
            leaf_ids=tuple(data["leaf_ids"]),
            nodes={
                node_id: ExplanationTreeNode.from_dict(node)
                for node_id, node in data["nodes"].items()
            },
            max_depth=data["max_depth"],
            config_hash=data.get("config_hash", ""),
            group_plan=tuple(
                GroupPlanEntry.from_dict(e) for e in data.get("group_plan", [])
            ),
            grouping_diagnostics=tuple(
                LayerGroupingDiagnostics.from_dict(layer)
                for layer in data.get("grouping_diagnostics", [])
            ),
            policy_diagnostics_by_parent={
                parent_id: ParentPolicyDiagnostics.from_dict(diag)
                for parent_id, diag in data.get(
                    "policy_diagnostics_by_parent", {}
                ).items()
            },
        )


@dataclass(frozen=True)
class ReusableParentSummary:
    """A previously accepted summary offered for reuse in a later build."""
    child_statement_hash: str
    summary: ParentSummary
    policy_diagnostics: ParentPolicyDiagnostics | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "child_statement_hash": self.child_statement_hash,
            "summary": self.summary.to_dict(),
        }
        if self.policy_diagnostics is not None:
            d["policy_diagnostics"] = self.policy_diagnostics.to_dict()
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReusableParentSummary:
        diagnostics = data.get("policy_diagnostics")
        return cls(
            child_statement_hash=data["child_statement_hash"],
            summary=ParentSummary.from_dict(data["summary"]),
            policy_diagnostics=(
                ParentPolicyDiagnostics.from_dict(diagnostics)
                if diagnostics else None
            ),
        )
