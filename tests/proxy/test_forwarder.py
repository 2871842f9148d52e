"""
Unit tests for the Call Forwarder.
"""

import pytest

from mcp.types import CallToolResult, TextContent

from mcp_bridge.proxy.config import BackendDescriptor, BridgeConfig
from mcp_bridge.proxy.auth import TokenProvider
from mcp_bridge.proxy.errors import BackendConnectionError
from mcp_bridge.proxy.forwarder import ToolForwarder, text_content


@pytest.fixture
def forwarder(bridge_config, token_provider, connection_factory):
    return ToolForwarder(bridge_config, token_provider, connection_factory)


class TestToolForwarder:
    """Test the ToolForwarder class."""

    def test_text_content(self):
        content = text_content("hello")

        assert len(content) == 1
        assert content[0].type == "text"
        assert content[0].text == "hello"

    @pytest.mark.asyncio
    async def test_successful_call(self, forwarder, connection_factory):
        backend = connection_factory.add("mail")

        content = await forwarder.call_tool(BackendDescriptor(name="mail"), "send_mail", {"to": "a@b.c"})

        assert content[0].text == "mail:send_mail"
        assert backend.calls == [
            {
                "tool": "send_mail",
                "arguments": {"to": "a@b.c"},
                "headers": connection_factory.opened[0].headers,
            }
        ]
        assert connection_factory.opened[0].headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_fresh_connection_per_call(self, forwarder, connection_factory):
        connection_factory.add("mail")
        descriptor = BackendDescriptor(name="mail")

        await forwarder.call_tool(descriptor, "send_mail")
        await forwarder.call_tool(descriptor, "send_mail")

        assert len(connection_factory.opened) == 2
        assert all(c.disconnect_count == 1 for c in connection_factory.opened)
        assert forwarder.active_connections == []

    @pytest.mark.asyncio
    async def test_explicit_url_used(self, forwarder, connection_factory):
        connection_factory.add("mail")

        await forwarder.call_tool(BackendDescriptor(name="mail", url="https://mail.example.com/mcp"), "x")

        assert connection_factory.opened[0].url == "https://mail.example.com/mcp"

    @pytest.mark.asyncio
    async def test_connection_error_becomes_content(self, forwarder, connection_factory):
        connection_factory.add(
            "mail", connect_error=BackendConnectionError("Failed to connect: ConnectError", "mail")
        )

        content = await forwarder.call_tool(BackendDescriptor(name="mail"), "send_mail")

        assert len(content) == 1
        assert content[0].text.startswith('Error calling tool "send_mail" on mail:')
        assert "Failed to connect" in content[0].text

    @pytest.mark.asyncio
    async def test_call_error_becomes_content(self, forwarder, connection_factory):
        connection_factory.add("mail", call_error=RuntimeError())

        content = await forwarder.call_tool(BackendDescriptor(name="mail"), "send_mail")

        assert content[0].text == 'Error calling tool "send_mail" on mail: RuntimeError'
        assert forwarder.active_connections == []

    @pytest.mark.asyncio
    async def test_auth_error_becomes_content(self, tmp_path, connection_factory):
        config = BridgeConfig(endpoint="https://platform.example.com", cache_path=tmp_path / "c.json")
        forwarder = ToolForwarder(config, TokenProvider(config), connection_factory)

        content = await forwarder.call_tool(BackendDescriptor(name="mail"), "send_mail")

        assert "No authentication configured" in content[0].text
        assert connection_factory.opened == []

    @pytest.mark.asyncio
    async def test_backend_error_result_returned_verbatim(self, forwarder, connection_factory):
        connection_factory.add(
            "mail",
            call_result=CallToolResult(
                content=[TextContent(type="text", text="Mailbox not found")], isError=True
            ),
        )

        content = await forwarder.call_tool(BackendDescriptor(name="mail"), "send_mail")

        assert [c.text for c in content] == ["Mailbox not found"]

    @pytest.mark.asyncio
    async def test_empty_content_is_serialized(self, forwarder, connection_factory):
        connection_factory.add("mail", call_result=CallToolResult(content=[]))

        content = await forwarder.call_tool(BackendDescriptor(name="mail"), "send_mail")

        assert len(content) == 1
        assert '"content":[]' in content[0].text

    @pytest.mark.asyncio
    async def test_close_all(self, forwarder, connection_factory):
        connection_factory.add("mail")
        connection = connection_factory("mail", "https://x", {}, 1.0)
        await connection.connect()
        forwarder._connections["mail"] = connection

        await forwarder.close_all()

        assert not connection.connected
        assert forwarder.active_connections == []
