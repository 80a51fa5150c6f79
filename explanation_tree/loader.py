"""
Leaf Loader: reads leaf records produced by upstream ingestion.

Accepts either a JSON list of leaf records or an object with a ``leaves``
list. Each record needs ``id`` and ``statement``; ``complexity`` and
``prerequisite_ids`` are optional (``dependency_ids`` is accepted as an
alias, matching the declaration index format). Also reads back trees
written by the report generator, for reuse and validation.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from explanation_tree.errors import InvalidInputError
from explanation_tree.models import ExplanationTree, LeafNodeInput


def _read_json(path: Path, kind: str) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"{kind} not found: {path}")
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"{kind} {path} is not valid JSON: {exc}") from exc


def load_leaves(path: Path) -> list[LeafNodeInput]:
    """Parse a leaf file into LeafNodeInput records, preserving file order.

    Raises:
        FileNotFoundError: If the file does not exist.
        InvalidInputError: If the JSON shape or any record is malformed.
    """
    data = _read_json(path, "Leaf file")
    raw_leaves = data.get("leaves") if isinstance(data, dict) else data
    if not isinstance(raw_leaves, list):
        raise InvalidInputError(
            f"Leaf file {path} must contain a list or an object with a 'leaves' list"
        )
    return [_parse_leaf(raw, i) for i, raw in enumerate(raw_leaves)]


def _parse_leaf(raw: Any, position: int) -> LeafNodeInput:
    if not isinstance(raw, dict):
        raise InvalidInputError(f"Leaf #{position} must be an object")
    leaf_id = raw.get("id")
    statement = raw.get("statement")
    if not isinstance(leaf_id, str) or not isinstance(statement, str):
        raise InvalidInputError(f"Leaf #{position} requires string 'id' and 'statement'")

    prerequisites = raw.get("prerequisite_ids", raw.get("dependency_ids", []))
    if not isinstance(prerequisites, list) or not all(isinstance(p, str) for p in prerequisites):
        raise InvalidInputError(f"Leaf {leaf_id}: prerequisite_ids must be a list of strings")

    complexity = raw.get("complexity")
    if complexity is not None and (
        isinstance(complexity, bool) or not isinstance(complexity, (int, float))
    ):
        raise InvalidInputError(f"Leaf {leaf_id}: complexity must be a number")

    return LeafNodeInput(
        id=leaf_id,
        statement=statement,
        complexity=complexity,
        prerequisite_ids=tuple(prerequisites),
    )


def load_tree(path: Path) -> ExplanationTree:
    """Read a tree JSON report (either the bare tree or the report wrapper)."""
    data = _read_json(path, "Tree file")
    if isinstance(data, dict) and isinstance(data.get("tree"), dict):
        data = data["tree"]
    if not isinstance(data, dict):
        raise InvalidInputError(f"Tree file {path} must contain a JSON object")
    try:
        return ExplanationTree.from_dict(data)
    except (KeyError, TypeError) as exc:
        raise InvalidInputError(f"Tree file {path} is malformed: {exc}") from exc
