"""
Report Generator: writes the finished tree for machines and for people.

Generates two artifacts in the run directory:
  1. explanation_tree.json  tree data plus run metadata (re-loadable)
  2. EXPLANATION_TREE.md    summary and an indented outline from the root
"""

from __future__ import annotations

import json
from pathlib import Path

from explanation_tree.config import RunMetadata
from explanation_tree.models import ExplanationTree


def write_json_report(tree: ExplanationTree, run_dir: Path, metadata: RunMetadata) -> Path:
    """Write (or overwrite) the JSON report. Returns the file path."""
    run_dir.mkdir(parents=True, exist_ok=True)
    report_path = run_dir / "explanation_tree.json"
    payload = {
        "metadata": {"version": metadata.version, "generated_at": metadata.generated_at},
        "tree": tree.to_dict(),
    }
    report_path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False) + "\n",
        encoding="utf-8",
    )
    return report_path


def write_markdown_report(tree: ExplanationTree, run_dir: Path) -> Path:
    """Write the markdown report. Returns the file path."""
    run_dir.mkdir(parents=True, exist_ok=True)
    report_path = run_dir / "EXPLANATION_TREE.md"
    report_path.write_text(_render_markdown(tree), encoding="utf-8")
    return report_path


def _render_markdown(tree: ExplanationTree) -> str:
    lines: list[str] = []

    lines.append("# Explanation Tree")
    lines.append("")
    lines.append(f"Root: `{tree.root_id}`")
    lines.append(f"Config hash: `{tree.config_hash}`")
    lines.append("")

    lines.append("## Summary")
    lines.append("")
    lines.append("| Metric   | Value |")
    lines.append("|----------|-------|")
    lines.append(f"| Leaves   | {len(tree.leaf_ids)} |")
    lines.append(f"| Parents  | {tree.parent_count} |")
    lines.append(f"| Depth    | {tree.max_depth} |")
    lines.append(f"| Warnings | {tree.warning_count} |")
    lines.append("")

    if tree.warning_count:
        lines.append("## Grouping Warnings")
        lines.append("")
        for layer in tree.grouping_diagnostics:
            for warning in layer.warnings:
                lines.append(f"- Layer {layer.depth}, `{warning.code}`: {warning.message}")
        lines.append("")

    lines.append("## Outline")
    lines.append("")
    # Iterative pre-order walk; children pushed in reverse to keep their order.
    stack: list[tuple[str, int]] = [(tree.root_id, 0)]
    while stack:
        node_id, indent = stack.pop()
        node = tree.nodes[node_id]
        marker = "leaf" if node.kind == "leaf" else f"depth {node.depth}"
        lines.append(f"{'  ' * indent}- **{node_id}** ({marker}): {node.statement}")
        if node.why_true_from_children:
            lines.append(f"{'  ' * (indent + 1)}- _Why:_ {node.why_true_from_children}")
        for child_id in reversed(node.child_ids):
            stack.append((child_id, indent + 1))
    lines.append("")

    return "\n".join(lines)
