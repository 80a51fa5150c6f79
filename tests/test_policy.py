from explanation_tree.config import ExplanationConfig
from explanation_tree.models import ParentSummary, SummaryChild
from explanation_tree.policy import (
    compute_vocabulary_continuity_floor,
    evaluate_post_summary_policy,
    evaluate_pre_summary_policy,
)

CHILDREN = [
    SummaryChild("c1", "Update operations preserve storage invariants.", 3),
    SummaryChild("c2", "Storage bounds hold after every update operation.", 3),
]


def _summary(statement="Update operations preserve storage bounds.", refs=("c1", "c2"), terms=()):
    return ParentSummary(
        parent_statement=statement,
        why_true_from_children="c1 and c2 jointly entail the parent claim.",
        new_terms_introduced=terms,
        complexity_score=3,
        abstraction_score=3,
        evidence_refs=refs,
        confidence=0.9,
    )


def test_pre_summary_passes_for_ordered_siblings(config):
    children = [
        SummaryChild("z", "base fact", 3),
        SummaryChild("a", "uses base", 3, prerequisite_ids=("z",)),
    ]

    decision = evaluate_pre_summary_policy(children, config)

    assert decision.ok
    assert decision.metrics["prerequisite_order_violations"] == 0


def test_pre_summary_flags_complexity_spread(config):
    children = [SummaryChild("a", "x", 1), SummaryChild("b", "y", 4)]

    decision = evaluate_pre_summary_policy(children, config)

    assert [v.code for v in decision.violations] == ["sibling_complexity_spread"]
    assert decision.metrics["complexity_spread"] == 3


def test_pre_summary_flags_mutual_prerequisites(config):
    children = [
        SummaryChild("a", "x", 3, prerequisite_ids=("b",)),
        SummaryChild("b", "y", 3, prerequisite_ids=("a",)),
    ]

    decision = evaluate_pre_summary_policy(children, config)

    assert not decision.ok
    assert decision.violations[0].code == "prerequisite_order"
    assert decision.violations[0].details == {
        "violations": [{"node_id": "a", "prerequisite_id": "b"}],
    }


def test_post_summary_accepts_faithful_summary(config):
    decision = evaluate_post_summary_policy(CHILDREN, _summary(), config)

    assert decision.ok
    assert decision.metrics["evidence_coverage_ratio"] == 1.0
    assert decision.metrics["vocabulary_continuity_ratio"] == 1.0


def test_post_summary_requires_every_child_cited(config):
    decision = evaluate_post_summary_policy(CHILDREN, _summary(refs=("c1",)), config)

    assert [v.code for v in decision.violations] == ["evidence_coverage"]
    assert decision.violations[0].details == {"missing_evidence_refs": ["c2"]}
    assert decision.metrics["evidence_coverage_ratio"] == 0.5


def test_post_summary_flags_vocabulary_drift(config):
    decision = evaluate_post_summary_policy(
        CHILDREN, _summary(statement="Quantum fields exhibit spontaneous symmetry breaking."), config
    )

    violation = decision.violations[0]
    assert violation.code == "vocabulary_continuity"
    assert violation.details["minimum_required"] == 0.62
    assert "quantum" in violation.details["unsupported"]


def test_post_summary_term_budget():
    tight = ExplanationConfig(term_introduction_budget=0)

    decision = evaluate_post_summary_policy(CHILDREN, _summary(terms=("storage",)), tight)

    assert [v.code for v in decision.violations] == ["term_budget"]


def test_vocabulary_floor_shape():
    assert compute_vocabulary_continuity_floor(ExplanationConfig()) == 0.62
    assert compute_vocabulary_continuity_floor(
        ExplanationConfig(audience_level="novice", proof_detail_mode="formal")
    ) == 0.76
    assert compute_vocabulary_continuity_floor(ExplanationConfig(entailment_mode="strict")) == 1.0
