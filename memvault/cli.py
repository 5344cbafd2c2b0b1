"""
Command-line interface for memvault.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, List, Optional

from .config import MemvaultConfig, create_default_config_file, load_config
from .errors import MemvaultError, NotFoundError
from .memory.embeddings import EmbeddingEngine, create_backend, set_embedding_engine
from .memory.ledger import build_shared_config, reset_shared_config
from .memory.orchestrator import MemoryOrchestrator
from .memory.store import TenantVectorStore
from .memory.types import utc_now
from .observability import LogLevel, configure_logging


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="memvault",
        description="memvault - semantic memory storage with per-tenant vector indexes",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Provision a new tenant
  memvault deploy

  # Store a memory
  memvault insert <tenant> "User prefers dark mode" --importance 7 --tags preference

  # Search memories
  memvault search <tenant> "dark mode preference" -k 5 --tags preference

  # Write a starter config file
  memvault init-config
        """
    )
    parser.add_argument(
        "--config",
        help="Path to a YAML configuration file"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Deploy command
    subparsers.add_parser(
        "deploy",
        help="Provision a new tenant"
    )

    # Insert command
    insert_parser = subparsers.add_parser(
        "insert",
        help="Store a memory"
    )
    insert_parser.add_argument("tenant", help="Tenant handle")
    insert_parser.add_argument("content", help="Memory text")
    insert_parser.add_argument(
        "--importance",
        type=int,
        help="Importance from 1 to 10"
    )
    insert_parser.add_argument(
        "--tags",
        nargs="+",
        help="Tags for the memory"
    )
    insert_parser.add_argument("--client", help="Client that produced the memory")
    insert_parser.add_argument("--context", help="Free-form context")
    insert_parser.add_argument("--session-id", help="Session identifier")

    # Search command
    search_parser = subparsers.add_parser(
        "search",
        help="Search memories"
    )
    search_parser.add_argument("tenant", help="Tenant handle")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument(
        "-k",
        type=int,
        help="Number of results (1-100)"
    )
    search_parser.add_argument(
        "--tags",
        nargs="+",
        help="Keep memories having any of these tags"
    )
    search_parser.add_argument("--importance-min", type=int, help="Minimum importance")
    search_parser.add_argument("--importance-max", type=int, help="Maximum importance")
    search_parser.add_argument("--client", help="Client substring to match")
    search_parser.add_argument("--date-from", help="ISO-8601 lower bound on the memory timestamp")
    search_parser.add_argument("--date-to", help="ISO-8601 upper bound on the memory timestamp")

    # Get command
    get_parser = subparsers.add_parser(
        "get",
        help="Get a memory by id"
    )
    get_parser.add_argument("tenant", help="Tenant handle")
    get_parser.add_argument("id", type=int, help="Memory id")

    # Stats command
    stats_parser = subparsers.add_parser(
        "stats",
        help="Show memory statistics for a tenant"
    )
    stats_parser.add_argument("tenant", help="Tenant handle")

    # Init-config command
    init_parser = subparsers.add_parser(
        "init-config",
        help="Write a default configuration file"
    )
    init_parser.add_argument(
        "path",
        nargs="?",
        help="Where to write it (defaults to ./.memvault.yml)"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == "init-config":
        path = create_default_config_file(args.path)
        print(f"Configuration written to {path}")
        return 0

    config = load_config(config_path=args.config)

    handlers = {
        "deploy": handle_deploy,
        "insert": handle_insert,
        "search": handle_search,
        "get": handle_get,
        "stats": handle_stats,
    }

    try:
        setup(config, verbose=args.verbose, json_logs=args.json_logs)
        result = asyncio.run(handlers[args.command](args, config))
    except MemvaultError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


def setup(config: MemvaultConfig, verbose: bool = False, json_logs: bool = False) -> None:
    """Configure logging, the embedding engine and the shared ledger config."""
    level = LogLevel.DEBUG if verbose else LogLevel.parse(config.logging.level)
    configure_logging(level, json_output=json_logs or config.logging.json_output)

    try:
        backend = create_backend(config.embedding)
    except ValueError as e:
        raise MemvaultError("Invalid embedding configuration", cause=e) from e
    set_embedding_engine(EmbeddingEngine(backend))

    async def build():
        return await build_shared_config(config)

    reset_shared_config(build)


async def open_memories(tenant: str, config: MemvaultConfig) -> MemoryOrchestrator:
    store = await TenantVectorStore.for_tenant(tenant)
    return MemoryOrchestrator(store, max_content_length=config.limits.max_content_length)


async def handle_deploy(args, config: MemvaultConfig) -> Dict[str, Any]:
    """Handle the deploy command."""
    deployment = await TenantVectorStore.deploy_new()
    return deployment.to_dict()


async def handle_insert(args, config: MemvaultConfig) -> Dict[str, Any]:
    """Handle the insert command."""
    metadata = {
        "importance": args.importance,
        "tags": args.tags,
        "client": args.client,
        "context": args.context,
        "sessionId": args.session_id,
        "timestamp": utc_now().isoformat(),
    }
    metadata = {key: value for key, value in metadata.items() if value is not None}

    memories = await open_memories(args.tenant, config)
    try:
        result = await memories.create_memory(args.content, metadata)
    finally:
        await memories.store.release()
    return result.to_dict()


async def handle_search(args, config: MemvaultConfig) -> List[Dict[str, Any]]:
    """Handle the search command."""
    k = args.k if args.k is not None else config.limits.default_k
    k = max(1, min(k, config.limits.max_k))

    filters = {
        "tags": args.tags,
        "importance_min": args.importance_min,
        "importance_max": args.importance_max,
        "client": args.client,
        "date_from": args.date_from,
        "date_to": args.date_to,
    }
    filters = {key: value for key, value in filters.items() if value is not None}

    memories = await open_memories(args.tenant, config)
    try:
        results = await memories.search_memories(args.query, k=k, filters=filters or None)
    finally:
        await memories.store.release()
    return [r.to_dict() for r in results]


async def handle_get(args, config: MemvaultConfig) -> Dict[str, Any]:
    """Handle the get command."""
    memories = await open_memories(args.tenant, config)
    try:
        result = await memories.get_memory(args.id)
    finally:
        await memories.store.release()
    if result is None:
        raise NotFoundError(f"Memory {args.id} not found")
    return result.to_dict()


async def handle_stats(args, config: MemvaultConfig) -> Dict[str, Any]:
    """Handle the stats command."""
    memories = await open_memories(args.tenant, config)
    try:
        stats = await memories.get_stats()
    finally:
        await memories.store.release()
    return stats.to_dict()


if __name__ == "__main__":
    sys.exit(main())
