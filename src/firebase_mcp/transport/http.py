"""Network binding: streamable HTTP and SSE endpoints served by FastAPI/uvicorn."""

import contextlib
import logging
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from mcp.server import Server
from mcp.server.sse import SseServerTransport
from mcp.server.streamable_http_manager import StreamableHTTPSessionManager

from ..config import ServerConfig
from .base import Transport

logger = logging.getLogger(__name__)

SSE_PATH = "/sse"
MESSAGES_PATH = "/messages/"


class StreamableHTTPApp:
    """ASGI endpoint that hands requests to the streamable HTTP session manager."""

    def __init__(self, session_manager: StreamableHTTPSessionManager):
        self.session_manager = session_manager

    async def __call__(self, scope, receive, send) -> None:
        await self.session_manager.handle_request(scope, receive, send)


class HttpTransport(Transport):
    """
    HTTP binding for concurrent network clients.

    Routes:
      - {path} (default /mcp): streamable HTTP; each Mcp-Session-Id is a
        separate session, GET opens the server push stream
      - GET /sse + POST /messages/: legacy SSE transport
      - GET /health: liveness check

    Each request runs in its own task, so a slow backend call for one client
    does not hold up another client's requests.
    """

    name = "http"

    def __init__(
        self,
        server: Server,
        config: ServerConfig,
        host: Optional[str] = None,
        port: Optional[int] = None,
        tool_count: int = 0,
    ):
        super().__init__(server)
        self.config = config
        self.host = host or config.host
        self.port = port or config.port
        self.path = config.path
        self.tool_count = tool_count

        self.session_manager = StreamableHTTPSessionManager(app=server)
        self.sse_transport = SseServerTransport(MESSAGES_PATH)
        self.app = FastAPI(title="firebase-mcp", lifespan=self._lifespan)
        self._setup_routes()

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        async with self.session_manager.run():
            logger.info("HTTP transport ready on http://%s:%s%s", self.host, self.port, self.path)
            yield
        logger.info("HTTP transport shutting down")

    def _setup_routes(self):
        """Setup FastAPI routes."""

        @self.app.get("/health")
        async def health() -> JSONResponse:
            """Health check endpoint."""
            return JSONResponse(
                {
                    "status": "ok",
                    "server": "firebase-mcp",
                    "transport": "http",
                    "tools": self.tool_count,
                }
            )

        @self.app.get(SSE_PATH)
        async def handle_sse(request: Request) -> Response:
            """Open an SSE session and run the MCP protocol over it."""
            logger.info("SSE connection from %s", request.client)
            async with self.sse_transport.connect_sse(
                request.scope, request.receive, request._send
            ) as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
            logger.info("SSE connection closed from %s", request.client)
            return Response()

        self.app.mount(MESSAGES_PATH, app=self.sse_transport.handle_post_message)
        self.app.add_route(self.path, StreamableHTTPApp(self.session_manager), include_in_schema=False)

    async def serve(self) -> None:
        """Run uvicorn inside the current event loop until shutdown."""
        logger.info("Starting firebase-mcp server (http transport) on %s:%s", self.host, self.port)
        server = uvicorn.Server(
            uvicorn.Config(
                self.app,
                host=self.host,
                port=self.port,
                log_level=self.config.log_level.lower(),
            )
        )
        await server.serve()
