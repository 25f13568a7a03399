"""MCP transport layer: stdio for local clients, HTTP/SSE for network clients."""

from mcp.server import Server

from ..config import ServerConfig
from ..errors import ConfigurationError
from .base import Transport
from .http import HttpTransport
from .stdio import StdioTransport


def create_transport(config: ServerConfig, server: Server, tool_count: int = 0) -> Transport:
    """
    Select the transport binding named by config.transport.

    Raises:
        ConfigurationError for an unknown transport name
    """
    if config.transport == "stdio":
        return StdioTransport(server)
    if config.transport == "http":
        return HttpTransport(server, config, tool_count=tool_count)
    raise ConfigurationError(f"Invalid transport: {config.transport}")


__all__ = ["Transport", "StdioTransport", "HttpTransport", "create_transport"]
