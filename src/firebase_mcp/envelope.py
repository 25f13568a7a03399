"""Uniform result envelope returned by every tool call."""

import json
from typing import Any, Dict, Optional

from mcp.types import CallToolResult, TextContent

from .conversions import to_json_safe
from .errors import ClassifiedError, ErrorCategory


def _dumps(payload: Any) -> str:
    return json.dumps(to_json_safe(payload), indent=2, ensure_ascii=False)


def success(payload: Any) -> CallToolResult:
    """
    Wrap a handler payload as a successful tool result.

    Args:
        payload: Structured data (dicts, lists, scalars, datetimes)

    Returns:
        CallToolResult with one JSON text item and isError=False
    """
    return CallToolResult(
        content=[TextContent(type="text", text=_dumps(payload))],
        isError=False,
    )


def failure(category: ErrorCategory, message: str, metadata: Optional[Dict[str, Any]] = None) -> CallToolResult:
    """
    Build an error tool result.

    The text item is a JSON object: {"error": message, "category": category, **metadata}.
    """
    body: Dict[str, Any] = {"error": message, "category": ErrorCategory(category).value}
    for key, value in (metadata or {}).items():
        body.setdefault(key, value)
    return CallToolResult(
        content=[TextContent(type="text", text=_dumps(body))],
        isError=True,
    )


def from_classified(error: ClassifiedError) -> CallToolResult:
    return failure(error.category, error.message, error.metadata)
