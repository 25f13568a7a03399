"""Tool registry and base classes for MCP tools."""

from typing import Any, Mapping, Optional

from mcp.types import Tool

from ..backend import BackendRunner
from ..dispatch import ToolDescriptor
from ..errors import validation_error
from ..firebase_client import FirebaseClients
from ..security import AuditLogger, ValidationError

DEFAULT_LIMIT = 20
MAX_LIMIT = 1000

LIMIT_SCHEMA = {
    "type": "integer",
    "minimum": 1,
    "maximum": MAX_LIMIT,
    "description": f"Maximum number of items to return (default {DEFAULT_LIMIT})",
}

PAGE_TOKEN_SCHEMA = {
    "type": "string",
    "description": "nextPageToken from a previous call with the same parameters",
}


class ToolHandler:
    """Base class for MCP tool handlers."""

    description = ""
    input_schema: Mapping[str, Any] = {"type": "object", "properties": {}, "required": []}

    def __init__(
        self,
        name: str,
        clients: FirebaseClients,
        backend: BackendRunner,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """Initialize tool handler with name and backend handles."""
        self.name = name
        self.clients = clients
        self.backend = backend
        self.audit_logger = audit_logger or AuditLogger()

    def get_tool_description(self) -> Tool:
        """
        Get MCP tool description with input schema.

        Returns:
            Tool description for MCP
        """
        return Tool(name=self.name, description=self.description, inputSchema=dict(self.input_schema))

    async def run_tool(self, arguments: Mapping[str, Any]) -> Any:
        """
        Execute the tool with given arguments.

        Must be implemented by subclasses.

        Args:
            arguments: Tool arguments, already validated against input_schema

        Returns:
            Structured payload for the success envelope
        """
        raise NotImplementedError

    def descriptor(self) -> ToolDescriptor:
        """Registration record for the dispatch table."""
        tool = self.get_tool_description()
        return ToolDescriptor(
            name=tool.name,
            description=tool.description or "",
            input_schema=tool.inputSchema,
            handler=self.run_tool,
        )

    def audit(self, outcome: str, target: str, details: str) -> None:
        self.audit_logger.log(f"{self.name}:{outcome}", target, details)


def checked(validate, value):
    """Run a SecurityValidator check, reporting failures as validation errors."""
    try:
        return validate(value)
    except ValidationError as e:
        raise validation_error(str(e))


def limit_argument(arguments: Mapping[str, Any]) -> int:
    return int(arguments.get("limit") or DEFAULT_LIMIT)
