"""Tests for server context construction, the MCP hooks and the CLI."""

import argparse
import json

import pytest
from mcp import types

import firebase_mcp
from firebase_mcp import cli
from firebase_mcp.config import AppConfig
from firebase_mcp.errors import ConfigurationError
from firebase_mcp.server import SERVER_NAME, create_mcp_server


def test_context_holds_registry(context):
    assert len(context.dispatch_table) == 12
    assert context.audit_logger.enabled


def test_mcp_server_name(context):
    assert create_mcp_server(context).name == SERVER_NAME


@pytest.mark.asyncio
async def test_list_tools_hook(context):
    server = create_mcp_server(context)
    handler = server.request_handlers[types.ListToolsRequest]
    result = await handler(types.ListToolsRequest(method="tools/list"))
    assert [tool.name for tool in result.root.tools] == context.tool_names


@pytest.mark.asyncio
async def test_call_tool_hook_returns_envelopes(context, fake_db):
    fake_db.seed("users/ada", {"name": "Ada"})
    server = create_mcp_server(context)
    handler = server.request_handlers[types.CallToolRequest]

    result = await handler(
        types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(
                name="firestore_get_document", arguments={"collection": "users", "id": "ada"}
            ),
        )
    )
    assert not result.root.isError
    assert json.loads(result.root.content[0].text)["data"] == {"name": "Ada"}

    result = await handler(
        types.CallToolRequest(
            method="tools/call",
            params=types.CallToolRequestParams(name="firestore_get_document", arguments={"collection": "users"}),
        )
    )
    assert result.root.isError
    assert json.loads(result.root.content[0].text)["category"] == "validation"


def test_parser_flags():
    args = cli.build_parser().parse_args(
        ["--transport", "http", "--host", "0.0.0.0", "--port", "8080", "--path", "/rpc", "--log-level", "debug"]
    )
    cfg = cli.apply_cli_overrides(AppConfig(), args)
    assert cfg.server.transport == "http"
    assert (cfg.server.host, cfg.server.port, cfg.server.path) == ("0.0.0.0", 8080, "/rpc")
    assert cfg.server.log_level == "debug"


def test_cli_overrides_validated():
    args = argparse.Namespace(transport=None, host=None, port=None, path="no-slash", log_level=None)
    with pytest.raises(ConfigurationError):
        cli.apply_cli_overrides(AppConfig(), args)


def test_failed_auth_stops_before_serving(monkeypatch):
    served = []

    def failing_init(config):
        raise ConfigurationError("Failed to authenticate Firebase service account: invalid_grant")

    monkeypatch.setattr(cli, "load_config", lambda path=None: AppConfig())
    monkeypatch.setattr(cli, "setup_logging", lambda config: None)
    monkeypatch.setattr(cli, "initialize_firebase", failing_init)
    monkeypatch.setattr(cli, "create_transport", lambda *a, **kw: served.append(a))

    with pytest.raises(ConfigurationError):
        cli.main([])
    assert served == []


def test_run_exits_nonzero_on_configuration_error(monkeypatch):
    def failing_main():
        raise ConfigurationError("bad settings")

    monkeypatch.setattr(firebase_mcp, "main", failing_main)
    with pytest.raises(SystemExit) as exc_info:
        firebase_mcp.run()
    assert exc_info.value.code == 1
