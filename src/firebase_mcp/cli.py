"""Command line entry point for firebase-mcp."""

import argparse
import asyncio
import logging
from typing import List, Optional

from .config import AppConfig, load_config
from .firebase_client import initialize_firebase
from .observability import setup_logging
from .server import create_context, create_mcp_server
from .transport import create_transport

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="firebase-mcp",
        description="MCP server exposing Firebase Firestore, Storage and Authentication as tools.",
    )
    parser.add_argument("--config", help="Path to a YAML config file (default: ./firebase-mcp.yaml)")
    parser.add_argument("--transport", choices=["stdio", "http"], help="Transport to serve (default: stdio)")
    parser.add_argument("--host", help="HTTP bind address (http transport only)")
    parser.add_argument("--port", type=int, help="HTTP port (http transport only)")
    parser.add_argument("--path", help="Streamable HTTP endpoint path (default: /mcp)")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: info)",
    )
    return parser


def apply_cli_overrides(cfg: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Command line flags beat both the environment and the config file."""
    if args.transport:
        cfg.server.transport = args.transport
    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port
    if args.path:
        cfg.server.path = args.path
    if args.log_level:
        cfg.server.log_level = args.log_level
    cfg.validate()
    return cfg


def main(argv: Optional[List[str]] = None) -> None:
    """
    Load configuration, connect to Firebase and serve until stopped.

    Raises:
        ConfigurationError if settings are invalid or Firebase credentials
        cannot be verified. Nothing is served in that case.
    """
    args = build_parser().parse_args(argv)

    cfg = apply_cli_overrides(load_config(args.config), args)
    setup_logging(cfg.server)

    clients = initialize_firebase(cfg.firebase)
    context = create_context(cfg, clients)
    server = create_mcp_server(context)
    transport = create_transport(cfg.server, server, tool_count=len(context.tool_names))

    logger.info("firebase-mcp ready: %d tools over %s", len(context.tool_names), transport.name)
    asyncio.run(transport.serve())
