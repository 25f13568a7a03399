"""Tool registry and transport-agnostic request dispatch."""

import logging
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match
from mcp.types import CallToolResult, Tool

from . import envelope
from .errors import ConfigurationError, ErrorCategory, ToolError, classify_error
from .observability import generate_correlation_id

logger = logging.getLogger(__name__)

ToolFunction = Callable[[Mapping[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class ToolCallRequest:
    """One inbound tool invocation. Arguments are a read-only view."""

    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, name: str, arguments: Optional[Mapping[str, Any]] = None) -> "ToolCallRequest":
        return cls(name=name, arguments=MappingProxyType(dict(arguments or {})))


@dataclass(frozen=True)
class ToolDescriptor:
    """A registered tool: name, description, JSON input schema and async handler."""

    name: str
    description: str
    input_schema: Mapping[str, Any]
    handler: ToolFunction

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=dict(self.input_schema))


def _format_schema_error(error) -> str:
    location = ".".join(str(p) for p in error.absolute_path)
    if location:
        return f"Invalid argument '{location}': {error.message}"
    return f"Invalid arguments: {error.message}"


class DispatchTable:
    """
    Maps tool names to descriptors and turns every call into a tool result.

    Registration happens once at startup; after that the table is only read,
    so concurrent dispatches share it without locking.
    """

    def __init__(self):
        self._descriptors: Dict[str, ToolDescriptor] = {}
        self._validators: Dict[str, Draft7Validator] = {}

    def register(self, descriptor: ToolDescriptor) -> None:
        """
        Add a tool.

        Raises:
            ConfigurationError if the name is taken or the schema is invalid
        """
        if descriptor.name in self._descriptors:
            raise ConfigurationError(f"Tool already registered: {descriptor.name}")
        try:
            Draft7Validator.check_schema(dict(descriptor.input_schema))
        except Exception as e:
            raise ConfigurationError(f"Invalid input schema for {descriptor.name}: {e}")
        self._descriptors[descriptor.name] = descriptor
        self._validators[descriptor.name] = Draft7Validator(dict(descriptor.input_schema))

    @property
    def names(self) -> List[str]:
        return list(self._descriptors)

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._descriptors.get(name)

    def list_tools(self) -> List[Tool]:
        return [d.to_tool() for d in self._descriptors.values()]

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, name: str) -> bool:
        return name in self._descriptors

    def validate(self, request: ToolCallRequest) -> Optional[str]:
        """Return an error message if the arguments violate the tool's schema, else None."""
        validator = self._validators[request.name]
        error = best_match(validator.iter_errors(dict(request.arguments)))
        if error is None:
            return None
        return _format_schema_error(error)

    async def dispatch(self, request: ToolCallRequest) -> CallToolResult:
        """
        Execute a tool call and return exactly one result.

        Unknown tools and schema violations become validation errors without
        touching the backend. Handler exceptions are classified; none escape.
        """
        cid = generate_correlation_id()
        start = time.monotonic()
        logger.info("call_tool: %s", request.name, extra={"correlation_id": cid, "tool": request.name})

        result, category = await self._execute(request)

        latency_ms = round((time.monotonic() - start) * 1000, 2)
        logger.info(
            "call_tool done: %s (%s)", request.name, category or "ok",
            extra={
                "correlation_id": cid,
                "tool": request.name,
                "latency_ms": latency_ms,
                "status": "error" if result.isError else "ok",
                "category": category,
            },
        )
        return result

    async def _execute(self, request: ToolCallRequest):
        descriptor = self.get(request.name)
        if descriptor is None:
            message = "Unknown tool: {}. Available tools: {}".format(
                request.name, ", ".join(self._descriptors)
            )
            return envelope.failure(ErrorCategory.VALIDATION, message), ErrorCategory.VALIDATION.value

        problem = self.validate(request)
        if problem:
            return envelope.failure(ErrorCategory.VALIDATION, problem), ErrorCategory.VALIDATION.value

        try:
            payload = await descriptor.handler(request.arguments)
        except ToolError as e:
            return envelope.failure(e.category, e.message, e.metadata), e.category.value
        except Exception as e:
            classified = classify_error(e)
            if classified.category == ErrorCategory.UNKNOWN:
                logger.exception("Unexpected error in %s", request.name)
            else:
                logger.warning("%s failed (%s): %s", request.name, classified.category.value, classified.message)
            return envelope.from_classified(classified), classified.category.value

        try:
            return envelope.success(payload), None
        except (TypeError, ValueError) as e:
            logger.exception("Could not serialize result of %s", request.name)
            return envelope.failure(ErrorCategory.UNKNOWN, f"Could not serialize result: {e}"), ErrorCategory.UNKNOWN.value

    async def handle(self, name: str, arguments: Optional[Mapping[str, Any]]) -> CallToolResult:
        """Entry point used by the MCP runtime for every transport."""
        return await self.dispatch(ToolCallRequest.create(name, arguments))
