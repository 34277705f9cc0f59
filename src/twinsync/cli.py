#!/usr/bin/env python3
"""Azure Digital Twins property sync CLI.

Command-line access to the synchronization core: read a twin, update its
properties, resolve its parent, or replay IoT Hub telemetry events from a
file through the sync driver.

Architecture:
    - SyncConfig is built once from the environment (.env supported)
    - DigitalTwinsClient is the shared HTTP layer (async context manager)
    - AzureDigitalTwinsGraph adapts the client to the ITwinGraph port
    - Use cases do the work; this module only wires and prints

Environment Variables Required:
    - ADT_SERVICE_URL: Digital Twins instance URL
    - AZURE_TENANT_ID (or AZURE_TOKEN_URL): Azure AD tenant
    - AZURE_CLIENT_ID / AZURE_CLIENT_SECRET: Service principal

Example Usage:
    $ twinsync show serra01
    $ twinsync update serra01 --set Moisture=30.0 --set Status=ok
    $ twinsync parent sensor42 --strategy query
    $ twinsync process-event events.json
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Optional

from .api.client import DigitalTwinsClient
from .api.exceptions import TwinSyncError
from .config import RESOLVE_STRATEGIES, SyncConfig
from .sync.adapters import AzureDigitalTwinsGraph, IoTHubEventMapper
from .sync.domain.entities import PropertyPatch, ResolutionStatus, Twin
from .sync.domain.ports import IParentResolver, ITwinGraph
from .sync.use_cases import (
    ApplyPatchUseCase,
    FetchTwinUseCase,
    QueryParentResolver,
    RelationshipTraversalResolver,
    SyncTelemetryUseCase,
)

logger = logging.getLogger(__name__)


def build_resolver(graph: ITwinGraph, strategy: str, relationship: str) -> IParentResolver:
    """Create the parent resolver for a strategy name."""
    if strategy == "query":
        return QueryParentResolver(graph, default_relationship=relationship)
    return RelationshipTraversalResolver(graph, default_relationship=relationship)


def parse_assignment(text: str) -> tuple[str, Any]:
    """Parse NAME=VALUE; VALUE is read as JSON, falling back to a string."""
    name, sep, raw = text.partition("=")
    name = name.strip()
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {text!r}")
    try:
        value = json.loads(raw)
    except ValueError:
        value = raw
    return name, value


def print_twin(twin: Twin) -> None:
    print(f"\nTwin:     {twin.id}")
    print(f"Model:    {twin.model_id}")
    if twin.etag:
        print(f"ETag:     {twin.etag}")
    print("-" * 60)
    if not twin.properties:
        print("(no properties)")
    for name, value in twin.properties.items():
        print(f"{name:<24} {json.dumps(value)}")


def load_events(path: str) -> list[dict[str, Any]]:
    """Read one Event Grid event, or a list of them, from a JSON file."""
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return payload
    raise ValueError(f"{path} must contain a JSON object or array")


# ============================================
# Commands
# ============================================


async def cmd_show(graph: ITwinGraph, config: SyncConfig, args: argparse.Namespace) -> int:
    twin = await FetchTwinUseCase(graph).execute(args.twin_id)
    print_twin(twin)
    return 0


async def cmd_update(graph: ITwinGraph, config: SyncConfig, args: argparse.Namespace) -> int:
    reader = FetchTwinUseCase(graph)
    patcher = ApplyPatchUseCase(graph)

    twin = await reader.execute(args.twin_id)
    print_twin(twin)

    patch = PropertyPatch.from_values(dict(args.assignments))
    sent = await patcher.execute(
        twin.id,
        patch,
        existing=twin,
        if_match=twin.etag if args.if_match else None,
    )

    print(f"\nSent {len(sent)} operation(s):")
    print(json.dumps(sent.to_list(), indent=2))

    print_twin(await reader.execute(args.twin_id))
    return 0


async def cmd_parent(graph: ITwinGraph, config: SyncConfig, args: argparse.Namespace) -> int:
    strategy = args.strategy or config.resolve_strategy
    relationship = args.relationship or config.route.relationship_name
    resolver = build_resolver(graph, strategy, relationship)

    resolution = await resolver.resolve_parent(args.twin_id)

    if resolution.status == ResolutionStatus.FOUND:
        print(f"Parent of {args.twin_id} ({relationship}): {resolution.parent_id}")
        return 0
    if resolution.status == ResolutionStatus.NONE_FOUND:
        print(f"No '{relationship}' parent found for {args.twin_id}")
        return 0

    print(f"Could not resolve parent of {args.twin_id}: {resolution.error}")
    return 1


async def cmd_process_event(graph: ITwinGraph, config: SyncConfig, args: argparse.Namespace) -> int:
    mapper = IoTHubEventMapper()

    events = []
    mapping_errors = 0
    for index, raw in enumerate(load_events(args.file)):
        try:
            events.append(mapper.map_event(raw))
        except ValueError as e:
            logger.error(f"Event #{index} in {args.file} is not valid telemetry: {e}")
            mapping_errors += 1

    resolver = None
    if config.route.requires_resolution:
        resolver = build_resolver(graph, config.resolve_strategy, config.route.relationship_name)

    use_case = SyncTelemetryUseCase(
        reader=FetchTwinUseCase(graph),
        patcher=ApplyPatchUseCase(graph),
        resolver=resolver,
        route=config.route,
        use_etag=config.use_etag,
        max_concurrent_events=config.max_concurrent_events,
    )
    result = await use_case.execute_many(events)

    for outcome in result.outcomes:
        print(json.dumps(outcome.to_dict()))
    print(f"\nSUMMARY: {result.to_dict()}, invalid: {mapping_errors}")

    return 0 if result.success and not mapping_errors else 1


COMMANDS = {
    "show": cmd_show,
    "update": cmd_update,
    "parent": cmd_parent,
    "process-event": cmd_process_event,
}


async def run(args: argparse.Namespace, config: SyncConfig) -> int:
    """Open the client, build the graph adapter and run one command."""
    async with DigitalTwinsClient.from_config(config) as client:
        graph = AzureDigitalTwinsGraph(client)
        return await COMMANDS[args.command](graph, config, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="twinsync",
        description="Read, patch and sync Azure Digital Twins properties",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  twinsync show serra01                          # Print model id and properties
  twinsync update serra01 --set Moisture=30.0    # Add or replace a property
  twinsync parent sensor42 --strategy query      # Resolve the 'contains' parent
  twinsync process-event events.json             # Replay telemetry through the driver
        """,
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    show = subparsers.add_parser("show", help="Print a twin's model id and properties")
    show.add_argument("twin_id", metavar="TWIN_ID")

    update = subparsers.add_parser("update", help="Patch properties of a twin")
    update.add_argument("twin_id", metavar="TWIN_ID")
    update.add_argument(
        "--set",
        dest="assignments",
        action="append",
        type=parse_assignment,
        required=True,
        metavar="NAME=VALUE",
        help="Property to write; VALUE is parsed as JSON (repeatable)",
    )
    update.add_argument(
        "--if-match",
        action="store_true",
        help="Only apply if the twin has not changed since it was read",
    )

    parent = subparsers.add_parser("parent", help="Resolve a twin's parent")
    parent.add_argument("twin_id", metavar="TWIN_ID")
    parent.add_argument(
        "--relationship",
        metavar="NAME",
        help="Relationship name (default: SYNC_PARENT_RELATIONSHIP or 'contains')",
    )
    parent.add_argument(
        "--strategy",
        choices=RESOLVE_STRATEGIES,
        help="Resolution strategy (default: SYNC_RESOLVE_STRATEGY or 'traversal')",
    )

    process = subparsers.add_parser(
        "process-event",
        help="Run Event Grid telemetry events from a JSON file through the sync driver",
    )
    process.add_argument("file", metavar="FILE")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = SyncConfig.from_env()
    except TwinSyncError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=getattr(logging, (args.log_level or config.log_level).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger.debug(f"Config: {config}")

    try:
        return asyncio.run(run(args, config))
    except (TwinSyncError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
