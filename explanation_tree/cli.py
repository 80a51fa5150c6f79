"""
CLI entry point for the explanation tree engine.

Usage:
    python -m explanation_tree build leaves.json --config config.json \\
        --run-dir runs/my_corpus [--reuse runs/previous/explanation_tree.json]
    python -m explanation_tree graph leaves.json [--hash-only]
    python -m explanation_tree support leaves.json <declaration_id> [--no-external]
    python -m explanation_tree validate runs/my_corpus/explanation_tree.json

The CLI is a thin wrapper: it parses arguments, loads files, configures
logging and maps errors to exit codes (1 for bad input, 2 for a failed
build). All logic lives in the library modules.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from explanation_tree.config import (
    DEFAULT_CONFIG,
    DEFAULT_RUN_DIR,
    ExplanationConfig,
    build_metadata,
    load_config,
)
from explanation_tree.dependency_graph import (
    build_dependency_graph,
    compute_dependency_graph_hash,
    declarations_from_leaves,
    render_dependency_graph_canonical,
    supporting_declarations,
)
from explanation_tree.errors import InvalidInputError, NotFoundError
from explanation_tree.llm.client import ProviderError
from explanation_tree.llm.openai_provider import OpenAIProvider
from explanation_tree.loader import load_leaves, load_tree
from explanation_tree.models import ExplanationTree, LeafNodeInput, ReusableParentSummary
from explanation_tree.report import write_json_report, write_markdown_report
from explanation_tree.tree_builder import (
    TreePolicyError,
    TreeValidationError,
    build_explanation_tree,
    collect_reusable_parent_summaries,
    validate_explanation_tree,
)

logger = logging.getLogger(__name__)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="explanation_tree",
        description="Build hierarchical natural-language explanations of verified declarations.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    commands = parser.add_subparsers(dest="command", required=True)

    build = commands.add_parser("build", help="Build an explanation tree from leaf records.")
    build.add_argument("leaves", type=Path, help="Leaf records (JSON).")
    build.add_argument("--config", type=Path, default=None, help="Config file (JSON). Defaults apply otherwise.")
    build.add_argument(
        "--run-dir", type=Path, default=None,
        help=f"Directory for the reports. Default: {DEFAULT_RUN_DIR}/<leaves file stem>/",
    )
    build.add_argument("--batch-size", type=int, default=None, help="Concurrent summary calls per batch.")
    build.add_argument("--batch-timeout", type=float, default=None, help="Seconds allowed per batch.")
    build.add_argument(
        "--reuse", type=Path, default=None,
        help="A previous explanation_tree.json whose summaries may be reused.",
    )

    graph = commands.add_parser("graph", help="Print the canonical dependency graph.")
    graph.add_argument("leaves", type=Path, help="Leaf records (JSON).")
    graph.add_argument("--hash-only", action="store_true", help="Print only the graph hash.")

    support = commands.add_parser("support", help="List declarations a declaration depends on.")
    support.add_argument("leaves", type=Path, help="Leaf records (JSON).")
    support.add_argument("declaration_id", type=str)
    support.add_argument("--no-external", action="store_true", help="Skip undeclared dependencies.")

    validate = commands.add_parser("validate", help="Check a tree's global invariants.")
    validate.add_argument("tree", type=Path, help="explanation_tree.json to check.")
    validate.add_argument("--max-children", type=int, default=None)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    args = _build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        if args.command == "build":
            _run_build(args)
        elif args.command == "graph":
            _run_graph(args)
        elif args.command == "support":
            _run_support(args)
        elif args.command == "validate":
            _run_validate(args)
    except (FileNotFoundError, InvalidInputError, NotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except (TreePolicyError, TreeValidationError, ProviderError) as e:
        print(f"Build failed: {e}", file=sys.stderr)
        sys.exit(2)


def _run_build(args: argparse.Namespace) -> None:
    config: ExplanationConfig = load_config(args.config) if args.config else DEFAULT_CONFIG
    leaves: list[LeafNodeInput] = load_leaves(args.leaves)
    run_dir = args.run_dir or Path(DEFAULT_RUN_DIR) / args.leaves.stem

    reusable: dict[str, ReusableParentSummary] | None = None
    if args.reuse:
        reusable = collect_reusable_parent_summaries(load_tree(args.reuse))
        logger.info("Loaded %d reusable summaries from %s", len(reusable), args.reuse)

    tree = asyncio.run(_build(args, config, leaves, reusable))

    metadata = build_metadata()
    json_path = write_json_report(tree, run_dir, metadata)
    md_path = write_markdown_report(tree, run_dir)
    print(f"Root: {tree.root_id} (depth {tree.max_depth}, {tree.parent_count} parents)")
    print(f"  {json_path}")
    print(f"  {md_path}")


async def _build(
    args: argparse.Namespace,
    config: ExplanationConfig,
    leaves: list[LeafNodeInput],
    reusable: dict[str, ReusableParentSummary] | None,
) -> ExplanationTree:
    provider = OpenAIProvider(config.model_provider)
    try:
        return await build_explanation_tree(
            provider,
            leaves,
            config,
            summary_batch_size=args.batch_size,
            reusable_parent_summaries=reusable,
            batch_timeout_s=args.batch_timeout,
        )
    finally:
        await provider.close()


def _run_graph(args: argparse.Namespace) -> None:
    graph = build_dependency_graph(declarations_from_leaves(load_leaves(args.leaves)))
    if args.hash_only:
        print(compute_dependency_graph_hash(graph))
        return
    print(render_dependency_graph_canonical(graph))


def _run_support(args: argparse.Namespace) -> None:
    graph = build_dependency_graph(declarations_from_leaves(load_leaves(args.leaves)))
    for declaration_id in supporting_declarations(
        graph, args.declaration_id, include_external=not args.no_external
    ):
        print(declaration_id)


def _run_validate(args: argparse.Namespace) -> None:
    tree = load_tree(args.tree)
    result = validate_explanation_tree(tree, args.max_children)
    if result.ok:
        print(f"OK: {len(tree.nodes)} nodes, root {tree.root_id}")
        return
    for issue in result.issues:
        print(f"{issue.code}: {issue.message}")
    sys.exit(2)
