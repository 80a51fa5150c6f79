"""
Pedagogical policy checks run around each parent summary.

pre_summary:  is this group teachable as one unit? (complexity spread,
              prerequisite order among siblings)
post_summary: does the accepted summary cite every child, stay within the
              term budget and keep the children's vocabulary?

The tree builder records both decisions on every parent. A failed
post-summary decision is handled like a critic rejection.
"""

from __future__ import annotations

from typing import Sequence

from explanation_tree.config import ExplanationConfig
from explanation_tree.models import (
    ParentSummary,
    PolicyDecision,
    PolicyViolation,
    SummaryChild,
)
from explanation_tree.text import stem_token, tokenize_normalized

MIN_CHILD_VOCABULARY_TOKEN_LENGTH = 4
MIN_PARENT_VOCABULARY_TOKEN_LENGTH = 5

VOCABULARY_FLOOR_BY_AUDIENCE = {"novice": 0.72, "intermediate": 0.62, "expert": 0.52}
VOCABULARY_PROOF_DETAIL_ADJUSTMENT = {"minimal": -0.04, "balanced": 0.0, "formal": 0.04}
VOCABULARY_FLOOR_RANGE = (0.40, 0.86)

STOP_WORDS = frozenset({
    "about", "after", "again", "because", "before", "being", "between",
    "could", "every", "first", "from", "have", "into", "their", "there",
    "these", "those", "through", "under", "using", "where", "which",
    "while", "with", "without",
    # Connective vocabulary every parent is expected to use.
    "parent", "claim", "jointly", "entail",
})


def _lexical_tokens(text: str, min_length: int) -> list[str]:
    tokens: list[str] = []
    for raw in tokenize_normalized(text):
        if not raw.isalpha() or not raw.isascii():
            continue
        token = stem_token(raw)
        if len(token) >= min_length and token not in STOP_WORDS:
            tokens.append(token)
    return tokens


def compute_vocabulary_continuity_floor(config: ExplanationConfig) -> float:
    if config.entailment_mode == "strict":
        return 1.0
    floor = VOCABULARY_FLOOR_BY_AUDIENCE.get(config.audience_level, 0.62)
    floor += VOCABULARY_PROOF_DETAIL_ADJUSTMENT.get(config.proof_detail_mode, 0.0)
    low, high = VOCABULARY_FLOOR_RANGE
    return round(min(high, max(low, floor)), 4)


def evaluate_pre_summary_policy(
    children: Sequence[SummaryChild],
    config: ExplanationConfig,
) -> PolicyDecision:
    """Check a group before summarizing it, in the given child order."""
    violations: list[PolicyViolation] = []

    complexities = [
        float(c.complexity if c.complexity is not None else config.complexity_level)
        for c in children
    ]
    spread = max(complexities) - min(complexities) if complexities else 0.0
    if spread > config.complexity_band_width:
        violations.append(PolicyViolation(
            "sibling_complexity_spread",
            f"Sibling complexity spread {spread:g} exceeds band width "
            f"{config.complexity_band_width}.",
            {"spread": spread, "band_width": config.complexity_band_width},
        ))

    position = {child.id: i for i, child in enumerate(children)}
    out_of_order: list[dict[str, str]] = []
    for i, child in enumerate(children):
        for prereq in sorted(set(child.prerequisite_ids)):
            # Mutual prerequisites are counted too: one side always comes later.
            if prereq in position and position[prereq] > i:
                out_of_order.append({"node_id": child.id, "prerequisite_id": prereq})
    if out_of_order:
        violations.append(PolicyViolation(
            "prerequisite_order",
            f"{len(out_of_order)} child(ren) appear before an in-group prerequisite.",
            {"violations": out_of_order},
        ))

    return PolicyDecision(
        stage="pre_summary",
        ok=not violations,
        violations=tuple(violations),
        metrics={
            "complexity_spread": spread,
            "prerequisite_order_violations": float(len(out_of_order)),
        },
    )


def evaluate_post_summary_policy(
    children: Sequence[SummaryChild],
    summary: ParentSummary,
    config: ExplanationConfig,
) -> PolicyDecision:
    """Check an accepted summary against the group it summarizes."""
    violations: list[PolicyViolation] = []
    child_ids = [child.id for child in children]
    refs = set(summary.evidence_refs)

    missing = [child_id for child_id in child_ids if child_id not in refs]
    coverage = (len(child_ids) - len(missing)) / len(child_ids) if child_ids else 1.0
    if missing:
        violations.append(PolicyViolation(
            "evidence_coverage",
            "Parent summary must cite every child as evidence.",
            {"missing_evidence_refs": missing},
        ))

    term_count = len(summary.new_terms_introduced)
    if term_count > config.term_introduction_budget:
        violations.append(PolicyViolation(
            "term_budget",
            f"Introduced {term_count} new term(s); budget is "
            f"{config.term_introduction_budget}.",
        ))

    vocabulary = {
        token
        for child in children
        for token in _lexical_tokens(child.statement, MIN_CHILD_VOCABULARY_TOKEN_LENGTH)
    }
    for term in summary.new_terms_introduced:
        vocabulary.update(_lexical_tokens(term, 1))
    parent_tokens = _lexical_tokens(
        f"{summary.parent_statement}\n{summary.why_true_from_children}",
        MIN_PARENT_VOCABULARY_TOKEN_LENGTH,
    )
    continuity = (
        sum(1 for t in parent_tokens if t in vocabulary) / len(parent_tokens)
        if parent_tokens else 1.0
    )
    floor = compute_vocabulary_continuity_floor(config)
    if continuity < floor:
        violations.append(PolicyViolation(
            "vocabulary_continuity",
            "Parent wording drifts too far from the children's vocabulary.",
            {
                "continuity_ratio": round(continuity, 4),
                "minimum_required": floor,
                "unsupported": sorted({t for t in parent_tokens if t not in vocabulary}),
            },
        ))

    return PolicyDecision(
        stage="post_summary",
        ok=not violations,
        violations=tuple(violations),
        metrics={
            "introduced_term_count": float(term_count),
            "evidence_coverage_ratio": round(coverage, 4),
            "vocabulary_continuity_ratio": round(continuity, 4),
            "vocabulary_continuity_floor": floor,
        },
    )
