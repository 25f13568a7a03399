"""Single-stream binding: one client over stdin/stdout."""

import logging

from mcp.server.stdio import stdio_server

from .base import Transport

logger = logging.getLogger(__name__)


class StdioTransport(Transport):
    """Line-delimited JSON-RPC over the process's stdin and stdout."""

    name = "stdio"

    async def serve(self) -> None:
        logger.info("Starting firebase-mcp server (stdio transport)")
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(),
            )
        logger.info("stdio stream closed")
