#!/usr/bin/env python3
"""Main CLI entry point for taskmaster-sync."""

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path

from ..config import get_settings, load_config
from ..logging import configure_logging
from ..storage import get_store
from ..webhooks.signature import sign


def main(argv=None):
    """Main CLI function."""
    parser = argparse.ArgumentParser(description="Webhook-driven Taskmaster project synchronization")
    parser.add_argument("--version", action="version", version="taskmaster-sync 0.1.0")
    parser.add_argument("--config", type=str, help="Path to the YAML configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start the webhook API server")
    server_parser.add_argument("--host", help="Host to bind server to (default: from config)")
    server_parser.add_argument("--port", type=int, help="Port to bind server to (default: from config)")

    # Worker command
    subparsers.add_parser("worker", help="Start the sync job worker")

    # Init-db command
    subparsers.add_parser("init-db", help="Create database tables")

    # Sign command
    sign_parser = subparsers.add_parser("sign", help="Compute the signature header for a payload file")
    sign_parser.add_argument("payload", help="Path to the payload file")
    sign_parser.add_argument("--secret", help="Shared secret (default: GITHUB_WEBHOOK_SECRET)")

    # Config command
    config_parser = subparsers.add_parser("config", help="Show effective configuration")
    config_parser.add_argument("--json", action="store_true", help="Output in JSON format")

    args = parser.parse_args(argv)

    if args.command == "server":
        return start_server(args)
    elif args.command == "worker":
        return start_worker(args)
    elif args.command == "init-db":
        return init_db(args)
    elif args.command == "sign":
        return sign_payload(args)
    elif args.command == "config":
        return config_show(args)

    parser.print_help()
    return 1


def _config_path(args) -> str:
    return args.config or get_settings().config_path


def start_server(args) -> int:
    """Start the API server."""
    import uvicorn

    from ..api.server import create_app

    settings = get_settings()
    config, _ = load_config(_config_path(args))
    host = args.host or config.server.host
    port = args.port or config.server.port
    configure_logging(config.server.log_level)

    print(f"Starting taskmaster-sync API server on {host}:{port}")
    print(f"Health check: http://{host}:{port}/health")

    uvicorn.run(
        create_app(settings=settings, config=config),
        host=host,
        port=port,
        log_level=config.server.log_level.lower(),
    )
    return 0


def start_worker(args) -> int:
    """Run the arq worker until interrupted."""
    from arq import run_worker

    # WorkerSettings reads the config path from the environment at import.
    if args.config:
        os.environ["CONFIG_PATH"] = args.config

    from ..sync.worker import WorkerSettings

    run_worker(WorkerSettings)
    return 0


def init_db(args) -> int:
    """Create the tables of the configured database."""
    settings = get_settings()

    async def _init():
        store = get_store(settings.database_url)
        try:
            await store.initialize()
        finally:
            await store.close()

    asyncio.run(_init())
    print(f"Database initialized: {settings.database_url}")
    return 0


def sign_payload(args) -> int:
    """Print the ``X-Hub-Signature-256`` value for a payload file."""
    secret = args.secret or get_settings().github_webhook_secret
    if not secret:
        print("Error: no secret given and GITHUB_WEBHOOK_SECRET is not set", file=sys.stderr)
        return 1

    path = Path(args.payload)
    if not path.exists():
        print(f"Error: payload file not found: {path}", file=sys.stderr)
        return 1

    print(sign(path.read_bytes(), secret))
    return 0


def config_show(args) -> int:
    """Show the effective configuration and where it came from."""
    config, sources = load_config(_config_path(args))

    if args.json:
        print(json.dumps(config.model_dump(), indent=2))
        return 0

    print("Configuration sources:")
    for source in sources:
        print(f"  - {source.name}")
    print()
    for section, values in config.model_dump().items():
        print(f"{section}:")
        for key, value in values.items():
            print(f"  {key}: {value}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
