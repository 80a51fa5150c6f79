import pytest

from explanation_tree.dependency_graph import (
    EXTERNAL,
    build_dependency_graph,
    compute_dependency_graph_hash,
    declarations_from_leaves,
    direct_dependencies,
    direct_dependents,
    render_dependency_graph_canonical,
    supporting_declarations,
)
from explanation_tree.errors import InvalidInputError, NotFoundError
from explanation_tree.models import DeclarationRecord, LeafNodeInput


def _acyclic():
    return [
        DeclarationRecord("A", ("B", "C", "X")),
        DeclarationRecord("B", ("D",)),
        DeclarationRecord("C"),
        DeclarationRecord("D"),
    ]


def test_builds_nodes_edges_and_external_placeholders():
    graph = build_dependency_graph(_acyclic())

    assert graph.node_ids == ("A", "B", "C", "D", "X")
    assert graph.edge_count == 4
    assert graph.indexed_node_count == 4
    assert graph.external_node_count == 1
    assert graph.nodes["X"].category == EXTERNAL
    assert [(r.declaration_id, r.missing_dependency_id) for r in graph.missing_dependency_refs] == [("A", "X")]
    assert graph.cyclic_sccs == ()


def test_direct_queries():
    graph = build_dependency_graph(_acyclic())

    assert direct_dependencies(graph, "A") == ("B", "C", "X")
    assert direct_dependents(graph, "B") == ("A",)
    assert direct_dependents(graph, "A") == ()


def test_supporting_declarations_post_order():
    graph = build_dependency_graph(_acyclic())

    assert supporting_declarations(graph, "A") == ["D", "B", "C", "X"]
    assert supporting_declarations(graph, "A", include_external=False) == ["D", "B", "C"]
    assert supporting_declarations(graph, "D") == []


def test_cycles_and_self_loops_are_cyclic_components():
    graph = build_dependency_graph([
        DeclarationRecord("A", ("B",)),
        DeclarationRecord("B", ("C",)),
        DeclarationRecord("C", ("A",)),
        DeclarationRecord("D", ("D",)),
        DeclarationRecord("E"),
    ])

    assert graph.cyclic_sccs == (("A", "B", "C"), ("D",))
    assert sorted(node for scc in graph.sccs for node in scc) == list(graph.node_ids)
    assert supporting_declarations(graph, "A") == ["C", "B"]
    assert supporting_declarations(graph, "D") == []


def test_build_is_independent_of_input_order():
    forward = build_dependency_graph(_acyclic())
    backward = build_dependency_graph(list(reversed(_acyclic())))

    assert render_dependency_graph_canonical(forward) == render_dependency_graph_canonical(backward)
    assert compute_dependency_graph_hash(forward) == compute_dependency_graph_hash(backward)


def test_dependency_ids_are_trimmed_and_deduplicated():
    graph = build_dependency_graph([
        DeclarationRecord(" A ", ("B", " B", "")),
        DeclarationRecord("B"),
    ])

    assert direct_dependencies(graph, "A") == ("B",)


def test_external_nodes_can_be_disabled():
    graph = build_dependency_graph(_acyclic(), include_external_nodes=False)

    assert "X" not in graph.nodes
    assert graph.edge_count == 3
    assert len(graph.missing_dependency_refs) == 1


def test_canonical_rendering_lists_nodes():
    text = render_dependency_graph_canonical(build_dependency_graph(_acyclic()))

    assert text.splitlines()[0] == "schema=1.0.0"
    assert "missing_refs=A->X" in text
    assert "node=A|category=indexed|deps=B,C,X|dependents=none" in text
    assert "node=X|category=external|deps=none|dependents=A" in text


@pytest.mark.parametrize(
    "records, message",
    [
        ([], "at least one"),
        ([DeclarationRecord("  ")], "non-empty"),
        ([DeclarationRecord("A"), DeclarationRecord("A")], "Duplicate declaration id"),
    ],
)
def test_invalid_declarations(records, message):
    with pytest.raises(InvalidInputError, match=message):
        build_dependency_graph(records)


def test_unknown_id_raises_not_found():
    graph = build_dependency_graph(_acyclic())

    with pytest.raises(NotFoundError, match="not present in dependency graph"):
        supporting_declarations(graph, "missing")
    with pytest.raises(NotFoundError):
        direct_dependencies(graph, "missing")


def test_declarations_from_leaves_uses_prerequisites():
    records = declarations_from_leaves([LeafNodeInput("l1", "A", prerequisite_ids=("l0",))])

    assert records == [DeclarationRecord("l1", ("l0",))]
