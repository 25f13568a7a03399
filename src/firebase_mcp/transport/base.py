"""Common interface for transport bindings."""

from abc import ABC, abstractmethod

from mcp.server import Server


class Transport(ABC):
    """
    A way of delivering tool calls to the MCP server.

    Every binding feeds the same Server, whose call_tool hook hands each
    request to the dispatch table and returns its result. Bindings differ
    only in how messages arrive and leave.
    """

    name = "abstract"

    def __init__(self, server: Server):
        self.server = server

    @abstractmethod
    async def serve(self) -> None:
        """Accept requests until the channel closes or the process is stopped."""
        raise NotImplementedError
