import json

import pytest

from explanation_tree import cli
from explanation_tree.config import build_metadata
from explanation_tree.errors import InvalidInputError
from explanation_tree.loader import load_leaves, load_tree
from explanation_tree.models import ExplanationTree, ExplanationTreeNode
from explanation_tree.report import write_json_report, write_markdown_report
from tests.fakes import FakeLlmClient

LEAVES = [
    {"id": "a", "statement": "Alpha holds", "dependency_ids": ["b", "ext"]},
    {"id": "b", "statement": "Beta holds", "prerequisite_ids": ["c"], "complexity": 2},
    {"id": "c", "statement": "Gamma holds"},
]


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def _tree():
    return ExplanationTree(
        root_id="p",
        leaf_ids=("l1", "l2"),
        nodes={
            "p": ExplanationTreeNode(
                "p", "parent", "A and B", 1,
                child_ids=("l1", "l2"), evidence_refs=("l1", "l2"),
                why_true_from_children="Both hold.",
            ),
            "l1": ExplanationTreeNode("l1", "leaf", "A", 0, evidence_refs=("l1",)),
            "l2": ExplanationTreeNode("l2", "leaf", "B", 0, evidence_refs=("l2",)),
        },
        max_depth=1,
        config_hash="abc",
    )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

def test_load_leaves_from_list(tmp_path):
    leaves = load_leaves(_write(tmp_path / "leaves.json", LEAVES))

    assert [leaf.id for leaf in leaves] == ["a", "b", "c"]
    assert leaves[0].prerequisite_ids == ("b", "ext")
    assert leaves[1].prerequisite_ids == ("c",)
    assert leaves[1].complexity == 2
    assert leaves[2].complexity is None


def test_load_leaves_from_object(tmp_path):
    leaves = load_leaves(_write(tmp_path / "leaves.json", {"leaves": LEAVES[2:]}))

    assert [leaf.statement for leaf in leaves] == ["Gamma holds"]


@pytest.mark.parametrize("payload, message", [
    ({"items": []}, "must contain a list"),
    (["not an object"], "must be an object"),
    ([{"id": "a"}], "requires string 'id' and 'statement'"),
    ([{"id": "a", "statement": "x", "prerequisite_ids": "b"}], "list of strings"),
    ([{"id": "a", "statement": "x", "complexity": "hard"}], "must be a number"),
])
def test_load_leaves_rejects_malformed_records(tmp_path, payload, message):
    with pytest.raises(InvalidInputError, match=message):
        load_leaves(_write(tmp_path / "leaves.json", payload))


def test_load_leaves_errors_on_missing_and_invalid_files(tmp_path):
    with pytest.raises(FileNotFoundError, match="Leaf file not found"):
        load_leaves(tmp_path / "absent.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(InvalidInputError, match="not valid JSON"):
        load_leaves(broken)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

def test_json_report_round_trips_through_load_tree(tmp_path):
    tree = _tree()

    path = write_json_report(tree, tmp_path / "run", build_metadata("9.9.9"))

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["metadata"]["version"] == "9.9.9"
    loaded = load_tree(path)
    assert json.dumps(loaded.to_dict()) == json.dumps(tree.to_dict())

    bare = _write(tmp_path / "bare.json", tree.to_dict())
    assert load_tree(bare).root_id == "p"


def test_load_tree_rejects_malformed_tree(tmp_path):
    with pytest.raises(InvalidInputError, match="malformed"):
        load_tree(_write(tmp_path / "tree.json", {"tree": {"root_id": "p"}}))


def test_markdown_report_outline(tmp_path):
    path = write_markdown_report(_tree(), tmp_path / "run")

    text = path.read_text(encoding="utf-8")
    assert text.startswith("# Explanation Tree\n")
    assert "| Parents  | 1 |" in text
    assert "## Grouping Warnings" not in text
    outline = text.split("## Outline\n\n", 1)[1].splitlines()
    assert outline[:4] == [
        "- **p** (depth 1): A and B",
        "  - _Why:_ Both hold.",
        "  - **l1** (leaf): A",
        "  - **l2** (leaf): B",
    ]


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

class _ClosableFake(FakeLlmClient):
    instances = []

    def __init__(self, config):
        super().__init__()
        _ClosableFake.instances.append(self)

    async def close(self):
        pass


def test_cli_graph(tmp_path, capsys):
    leaves = _write(tmp_path / "leaves.json", LEAVES)

    cli.main(["graph", str(leaves)])

    out = capsys.readouterr().out.splitlines()
    assert out[:6] == [
        "schema=1.0.0", "nodes=4", "edges=3", "indexed=3", "external=1",
        "missing_refs=a->ext",
    ]
    assert "node=a|category=indexed|deps=b,ext|dependents=none" in out


def test_cli_support(tmp_path, capsys):
    leaves = _write(tmp_path / "leaves.json", LEAVES)

    cli.main(["support", str(leaves), "a"])
    assert capsys.readouterr().out.split() == ["c", "b", "ext"]

    cli.main(["support", str(leaves), "a", "--no-external"])
    assert capsys.readouterr().out.split() == ["c", "b"]


def test_cli_unknown_declaration_exits_1(tmp_path, capsys):
    leaves = _write(tmp_path / "leaves.json", LEAVES)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["support", str(leaves), "zzz"])

    assert excinfo.value.code == 1
    assert "not present in dependency graph" in capsys.readouterr().err


def test_cli_build_then_validate_and_reuse(tmp_path, capsys, monkeypatch):
    monkeypatch.setattr(cli, "OpenAIProvider", _ClosableFake)
    _ClosableFake.instances = []
    leaves = _write(tmp_path / "leaves.json", [
        {"id": "l1", "statement": "A"},
        {"id": "l2", "statement": "B"},
    ])
    run_dir = tmp_path / "run"

    cli.main(["build", str(leaves), "--run-dir", str(run_dir)])

    out = capsys.readouterr().out
    assert out.startswith("Root: p_1_0_")
    assert (run_dir / "explanation_tree.json").exists()
    assert (run_dir / "EXPLANATION_TREE.md").exists()
    assert len(_ClosableFake.instances[0].calls) == 1

    cli.main(["validate", str(run_dir / "explanation_tree.json")])
    assert capsys.readouterr().out.startswith("OK: 3 nodes")

    cli.main([
        "build", str(leaves), "--run-dir", str(tmp_path / "again"),
        "--reuse", str(run_dir / "explanation_tree.json"),
    ])
    assert _ClosableFake.instances[1].calls == []


def test_cli_validate_reports_issues(tmp_path, capsys):
    tree = _tree().to_dict()
    tree["nodes"]["orphan"] = ExplanationTreeNode("orphan", "leaf", "C", 0).to_dict()
    path = _write(tmp_path / "tree.json", tree)

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["validate", str(path)])

    assert excinfo.value.code == 2
    assert capsys.readouterr().out.startswith("not_connected:")
