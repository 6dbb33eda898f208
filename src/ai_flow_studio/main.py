"""
AI Flow Studio - Main Entry Point

Command line front end for the engine:

    ai-flow-studio validate workspace.json
    ai-flow-studio run workspace.json <node-id> [<node-id> ...]

``run`` hydrates the workspace, runs the nodes against the configured
flow backend and writes the updated snapshot back.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from ai_flow_studio.core.connections import find_violations
from ai_flow_studio.core.execution import Backends, ExecutionOrchestrator, RunOutcome
from ai_flow_studio.core.settings import EngineSettings
from ai_flow_studio.core.store import GraphStore
from ai_flow_studio.core.workspace import load_workspace, save_workspace
from ai_flow_studio.providers.flow_api import FlowApiClient
from ai_flow_studio.providers.registry import FLOW_API, get_registry


logger = logging.getLogger("ai_flow_studio")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ai-flow-studio",
        description="Validate and run AI content-generation flows",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--settings", type=Path, default=None, help="Engine settings JSON")
    parser.add_argument("--providers", type=Path, default=None, help="Backend credentials JSON")
    sub = parser.add_subparsers(dest="command", required=True)

    validate = sub.add_parser("validate", help="Check a workspace against the connection rules")
    validate.add_argument("workspace", type=Path)

    run = sub.add_parser("run", help="Run nodes of a workspace and save the results")
    run.add_argument("workspace", type=Path)
    run.add_argument("nodes", nargs="+", help="Node ids to run")
    run.add_argument("--base-url", type=str, default=None, help="Override the backend URL")
    run.add_argument("--out", type=Path, default=None, help="Write to this path instead of in place")
    return parser


def build_orchestrator(
    store: GraphStore,
    settings: EngineSettings,
    providers_path: Path | None = None,
    base_url: str | None = None,
) -> ExecutionOrchestrator:
    """Wire an orchestrator to the configured flow backend."""
    registry = get_registry()
    registry.load_config(providers_path)
    config = registry.get_config(FLOW_API)
    if base_url:
        config = replace(config, base_url=base_url)

    client = FlowApiClient(config)
    backends = Backends(
        generation=client,
        video=client.video_backends(spec.id for spec in registry.list_video_providers()),
        stager=client,
        history=client,
    )
    return ExecutionOrchestrator(store, backends, settings, providers=registry)


def cmd_validate(args: argparse.Namespace) -> int:
    graph = load_workspace(args.workspace)
    problems = find_violations(graph)
    for problem in problems:
        print(problem)
    print(f"{len(graph)} nodes, {len(graph.edges)} edges, {len(problems)} problems")
    return 1 if problems else 0


def _report(outcome: RunOutcome) -> None:
    line = f"{outcome.node_id}: {outcome.status.value} ({outcome.duration:.1f}s)"
    if outcome.error:
        line += f" - {outcome.error}"
    elif outcome.partial_failure is not None:
        line += f" - {outcome.partial_failure.describe()}"
    print(line)


def cmd_run(args: argparse.Namespace) -> int:
    settings = EngineSettings.load(args.settings)
    store = GraphStore(load_workspace(args.workspace))
    orchestrator = build_orchestrator(store, settings, args.providers, args.base_url)

    outcomes = asyncio.run(orchestrator.run_nodes(args.nodes))
    for outcome in outcomes:
        _report(outcome)

    out = args.out or args.workspace
    save_workspace(store.graph, out, name=args.workspace.stem)
    logger.info("Saved %s", out)
    return 0 if all(o.succeeded for o in outcomes) else 1


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for AI Flow Studio.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "validate":
            return cmd_validate(args)
        return cmd_run(args)
    except (FileNotFoundError, ValueError) as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
