"""MCP server setup and tool registration for firebase-mcp."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from mcp.server import Server
from mcp.types import CallToolResult, Tool

from .backend import BackendRunner
from .config import AppConfig
from .dispatch import DispatchTable
from .firebase_client import FirebaseClients
from .security import AuditLogger
from .tools import ToolHandler
from .tools.auth import AuthGetUserTool
from .tools.firestore import (
    FirestoreAddDocumentTool,
    FirestoreDeleteDocumentTool,
    FirestoreGetDocumentTool,
    FirestoreListCollectionsTool,
    FirestoreListDocumentsTool,
    FirestoreQueryCollectionGroupTool,
    FirestoreUpdateDocumentTool,
)
from .tools.storage import (
    StorageGetFileInfoTool,
    StorageListFilesTool,
    StorageUploadFromUrlTool,
    StorageUploadTool,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "firebase-mcp"


def build_tool_handlers(
    clients: FirebaseClients,
    backend: BackendRunner,
    audit_logger: AuditLogger,
    signed_url_ttl: int = 3600,
) -> List[ToolHandler]:
    """Instantiate one handler per tool."""
    return [
        FirestoreAddDocumentTool(clients, backend, audit_logger),
        FirestoreListDocumentsTool(clients, backend, audit_logger),
        FirestoreGetDocumentTool(clients, backend, audit_logger),
        FirestoreUpdateDocumentTool(clients, backend, audit_logger),
        FirestoreDeleteDocumentTool(clients, backend, audit_logger),
        FirestoreListCollectionsTool(clients, backend, audit_logger),
        FirestoreQueryCollectionGroupTool(clients, backend, audit_logger),
        StorageListFilesTool(clients, backend, audit_logger),
        StorageGetFileInfoTool(clients, backend, audit_logger, signed_url_ttl=signed_url_ttl),
        StorageUploadTool(clients, backend, audit_logger, signed_url_ttl=signed_url_ttl),
        StorageUploadFromUrlTool(clients, backend, audit_logger, signed_url_ttl=signed_url_ttl),
        AuthGetUserTool(clients, backend, audit_logger),
    ]


@dataclass
class ServerContext:
    """
    Process-wide state built once at startup and handed to the transports.

    The dispatch table is read-only once the context exists.
    """

    config: AppConfig
    clients: FirebaseClients
    dispatch_table: DispatchTable
    audit_logger: AuditLogger

    @property
    def tool_names(self) -> List[str]:
        return self.dispatch_table.names


def create_context(
    config: AppConfig,
    clients: FirebaseClients,
    backend: Optional[BackendRunner] = None,
) -> ServerContext:
    """
    Build the server context: backend runner, audit trail and tool registry.

    Raises:
        ConfigurationError if two tools share a name
    """
    backend = backend or BackendRunner.from_config(config.backend)
    audit_logger = AuditLogger(config.audit.path)

    table = DispatchTable()
    for handler in build_tool_handlers(clients, backend, audit_logger, config.backend.signed_url_ttl):
        table.register(handler.descriptor())

    logger.info("Registered %d tools: %s", len(table), ", ".join(table.names))
    if audit_logger.enabled:
        logger.info("Audit log: %s", audit_logger.log_path)
    return ServerContext(config=config, clients=clients, dispatch_table=table, audit_logger=audit_logger)


def create_mcp_server(context: ServerContext) -> Server:
    """
    Create the MCP protocol server for a context.

    The same Server instance backs every transport; its call_tool hook is
    the only path into the dispatch table.
    """
    app: Server = Server(SERVER_NAME)
    table = context.dispatch_table

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        """
        List all available Firebase tools.

        Returns:
            List of Tool descriptions for MCP
        """
        return table.list_tools()

    # Arguments are validated by the dispatch table so failures use the error envelope
    @app.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> CallToolResult:
        """
        Execute a Firebase tool with given arguments.

        Args:
            name: Tool name to execute
            arguments: Tool arguments from MCP

        Returns:
            CallToolResult envelope
        """
        return await table.handle(name, arguments)

    return app
