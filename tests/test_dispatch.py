"""Tests for tool registration and dispatch."""

import json
from unittest.mock import MagicMock

import pytest

from firebase_mcp.backend import BackendRunner
from firebase_mcp.config import AppConfig
from firebase_mcp.dispatch import DispatchTable, ToolCallRequest, ToolDescriptor
from firebase_mcp.errors import ConfigurationError, ErrorCategory, ToolError
from firebase_mcp.server import create_context

TOOL_NAMES = [
    "firestore_add_document",
    "firestore_list_documents",
    "firestore_get_document",
    "firestore_update_document",
    "firestore_delete_document",
    "firestore_list_collections",
    "firestore_query_collection_group",
    "storage_list_files",
    "storage_get_file_info",
    "storage_upload",
    "storage_upload_from_url",
    "auth_get_user",
]

EMPTY_SCHEMA = {"type": "object", "properties": {}}


def _body(result):
    return json.loads(result.content[0].text)


def _descriptor(name, handler=None, schema=None):
    async def default_handler(arguments):
        return {"echo": dict(arguments)}

    return ToolDescriptor(name, f"{name} tool", schema or EMPTY_SCHEMA, handler or default_handler)


def test_registered_names(context):
    assert context.tool_names == TOOL_NAMES
    assert [tool.name for tool in context.dispatch_table.list_tools()] == TOOL_NAMES


def test_every_tool_has_description_and_object_schema(context):
    for tool in context.dispatch_table.list_tools():
        assert tool.description
        assert tool.inputSchema["type"] == "object"


def test_duplicate_registration_rejected():
    table = DispatchTable()
    table.register(_descriptor("ping"))
    with pytest.raises(ConfigurationError, match="already registered"):
        table.register(_descriptor("ping"))
    assert len(table) == 1


def test_invalid_schema_rejected():
    table = DispatchTable()
    with pytest.raises(ConfigurationError):
        table.register(_descriptor("bad", schema={"type": "not-a-type"}))
    assert "bad" not in table


def test_request_arguments_are_read_only():
    request = ToolCallRequest.create("ping", {"a": 1})
    with pytest.raises(TypeError):
        request.arguments["a"] = 2


@pytest.mark.asyncio
async def test_unknown_tool_lists_available():
    table = DispatchTable()
    table.register(_descriptor("ping"))
    result = await table.handle("pong", {})
    assert result.isError
    body = _body(result)
    assert body["category"] == "validation"
    assert "Unknown tool: pong" in body["error"]
    assert "ping" in body["error"]


@pytest.mark.asyncio
async def test_success_envelope():
    table = DispatchTable()
    table.register(_descriptor("ping"))
    result = await table.handle("ping", {"x": 1})
    assert result.isError is False
    assert _body(result) == {"echo": {"x": 1}}


@pytest.mark.asyncio
async def test_none_arguments_treated_as_empty():
    table = DispatchTable()
    table.register(_descriptor("ping"))
    result = await table.handle("ping", None)
    assert _body(result) == {"echo": {}}


@pytest.mark.asyncio
async def test_tool_error_category_preserved():
    async def handler(arguments):
        raise ToolError(ErrorCategory.NOT_FOUND, "missing", {"path": "a/b"})

    table = DispatchTable()
    table.register(_descriptor("find", handler))
    body = _body(await table.handle("find", {}))
    assert body == {"error": "missing", "category": "not-found", "path": "a/b"}


@pytest.mark.asyncio
async def test_unexpected_exception_becomes_unknown():
    async def handler(arguments):
        raise RuntimeError("kaboom")

    table = DispatchTable()
    table.register(_descriptor("explode", handler))
    result = await table.handle("explode", {})
    assert result.isError
    assert _body(result) == {"error": "kaboom", "category": "unknown"}


@pytest.fixture
def untouched_clients():
    return MagicMock()


@pytest.fixture
def guarded_context(untouched_clients):
    return create_context(AppConfig(), untouched_clients, BackendRunner(timeout=1, max_retries=0))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name, arguments, fragment",
    [
        ("firestore_list_documents", {"collection": "users", "limit": "ten"}, "limit"),
        ("firestore_list_documents", {"collection": "users", "limit": 0}, "limit"),
        ("firestore_list_documents", {"collection": "users", "limit": 1001}, "limit"),
        ("firestore_get_document", {"collection": "users"}, "id"),
        ("firestore_add_document", {"collection": "users", "data": "not an object"}, "data"),
        ("storage_upload", {"filePath": "a.txt"}, "content"),
        ("auth_get_user", {}, "identifier"),
    ],
)
async def test_schema_violations_never_reach_backend(guarded_context, untouched_clients, name, arguments, fragment):
    result = await guarded_context.dispatch_table.handle(name, arguments)
    assert result.isError
    body = _body(result)
    assert body["category"] == "validation"
    assert fragment in body["error"]
    assert untouched_clients.method_calls == []
