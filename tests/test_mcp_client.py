import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from mcp.shared.exceptions import McpError
from mcp.types import CallToolResult, ErrorData, ListToolsResult, TextContent, Tool

from mcp_tester.client import MCPClient as client_module
from mcp_tester.client.MCPClient import ConnectionState, MCPClient
from mcp_tester.client.Transport import Transport
from mcp_tester.exceptions import ConnectionError, NotConnectedError
from mcp_tester.orchestrator.Orchestrator import Orchestrator
from mcp_tester.type.types_def import TesterConfig


class RecordingTransport(Transport):
    """Yields dummy streams; optionally fails while opening."""

    def __init__(self, error=None):
        self.error = error
        self.opened = 0
        self.closed = 0

    @asynccontextmanager
    async def _streams(self):
        self.opened += 1
        if self.error is not None:
            raise self.error
        try:
            yield "read-stream", "write-stream"
        finally:
            self.closed += 1

    def open(self):
        return self._streams()

    def describe(self):
        return "recording"


class HangingTransport(Transport):
    """Never finishes opening; records when it is torn down."""

    def __init__(self):
        self.closed = 0

    @asynccontextmanager
    async def _streams(self):
        try:
            await asyncio.Event().wait()
            yield "read-stream", "write-stream"
        finally:
            self.closed += 1

    def open(self):
        return self._streams()

    def describe(self):
        return "hanging"


class FakeClientSession:
    def __init__(self, read_stream, write_stream):
        self.streams = (read_stream, write_stream)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def initialize(self):
        return None

    async def list_tools(self):
        return ListToolsResult(tools=[
            Tool(
                name="echo",
                description="Echo a message",
                inputSchema={"type": "object", "properties": {"message": {"type": "string"}}},
            )
        ])


@pytest.fixture
def patched_transport(monkeypatch):
    def install(transport):
        monkeypatch.setattr(client_module, "resolve_transport", lambda address, registry: transport)
        monkeypatch.setattr(client_module, "ClientSession", FakeClientSession)
        return transport
    return install


def connected_client(session):
    client = MCPClient(name="fake")
    client.state = ConnectionState.CONNECTED
    client.session = session
    return client


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_discover_disconnect(self, patched_transport):
        transport = patched_transport(RecordingTransport())
        client = MCPClient()

        await client.connect("fake-server")

        assert client.state is ConnectionState.CONNECTED
        assert client.is_connected
        assert client.name == "fake-server"
        tools = await client.list_tools()
        assert [tool.name for tool in tools] == ["echo"]
        assert tools[0].properties == {"message": {"type": "string"}}

        await client.disconnect()

        assert client.state is ConnectionState.DISCONNECTED
        assert client.session is None
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_failed_connect_returns_to_unconnected(self, patched_transport):
        patched_transport(RecordingTransport(error=OSError("spawn failed")))
        client = MCPClient(name="broken")

        with pytest.raises(ConnectionError, match="spawn failed"):
            await client.connect("broken")

        assert client.state is ConnectionState.UNCONNECTED
        await client.disconnect()
        assert client.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_unidentified_server_leaves_client_unconnected(self):
        client = MCPClient()
        with pytest.raises(ConnectionError):
            await client.connect("no such server anywhere")
        assert client.state is ConnectionState.UNCONNECTED

    @pytest.mark.asyncio
    async def test_disconnected_is_terminal(self, patched_transport):
        patched_transport(RecordingTransport())
        client = MCPClient()
        await client.disconnect()

        with pytest.raises(ConnectionError, match="create a new client"):
            await client.connect("fake-server")

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self):
        client = MCPClient()
        await client.disconnect()
        await client.disconnect()
        assert client.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_list_tools_before_connect(self):
        with pytest.raises(NotConnectedError):
            await MCPClient(name="idle").list_tools()

    @pytest.mark.asyncio
    async def test_failed_connect_can_be_retried(self, patched_transport):
        transport = patched_transport(RecordingTransport(error=OSError("server not ready")))
        client = MCPClient(name="flaky")

        with pytest.raises(ConnectionError):
            await client.connect("flaky")
        assert client.state is ConnectionState.UNCONNECTED

        transport.error = None
        await client.connect("flaky")

        assert client.state is ConnectionState.CONNECTED
        assert transport.opened == 2
        await client.disconnect()
        assert transport.closed == 1

    @pytest.mark.asyncio
    async def test_connect_timeout_releases_the_session(self, patched_transport):
        transport = patched_transport(HangingTransport())
        client = MCPClient(name="slow")
        orchestrator = Orchestrator(
            TesterConfig(servers=["slow"], timeout_ms=50),
            connection_factory=lambda server_name, config: client,
        )

        with pytest.raises(ConnectionError, match="timed out after 50 ms"):
            await orchestrator.run_server("slow")
        for _ in range(5):
            await asyncio.sleep(0)

        assert client.state is ConnectionState.DISCONNECTED
        assert transport.closed == 1
        assert orchestrator._race.pending == 0


class TestInvoke:
    @pytest.mark.asyncio
    async def test_text_json_is_decoded(self):
        session = AsyncMock()
        session.call_tool.return_value = CallToolResult(
            content=[TextContent(type="text", text='{"items": [1, 2]}')], isError=False
        )
        client = connected_client(session)

        response = await client.invoke("search", {"query": "mcp"})

        session.call_tool.assert_awaited_once_with("search", {"query": "mcp"})
        assert response.status == "success"
        assert response.data["content"][0]["json"] == {"items": [1, 2]}
        assert response.data["content"][0]["text"] == '{"items": [1, 2]}'
        assert response.data["isError"] is False

    @pytest.mark.asyncio
    async def test_plain_text_is_left_alone(self):
        session = AsyncMock()
        session.call_tool.return_value = CallToolResult(content=[TextContent(type="text", text="hello")])
        response = await connected_client(session).invoke("echo", {})
        assert response.data["content"][0] == {"type": "text", "text": "hello"}

    @pytest.mark.asyncio
    async def test_tool_reported_error(self):
        session = AsyncMock()
        session.call_tool.return_value = CallToolResult(
            content=[TextContent(type="text", text="file not found")], isError=True
        )
        response = await connected_client(session).invoke("read", {"path": "/nope"})

        assert response.status == "error"
        assert response.error.message == "file not found"

    @pytest.mark.asyncio
    async def test_protocol_error_is_data(self):
        session = AsyncMock()
        session.call_tool.side_effect = McpError(ErrorData(code=-32602, message="Invalid params"))
        response = await connected_client(session).invoke("read", {})

        assert response.status == "error"
        assert response.error.message == "Invalid params"
        assert response.error.code == -32602

    @pytest.mark.asyncio
    async def test_transport_failure_is_data(self):
        session = AsyncMock()
        session.call_tool.side_effect = BrokenPipeError("pipe closed")
        response = await connected_client(session).invoke("read", {})

        assert response.status == "error"
        assert response.error.message == "pipe closed"

    @pytest.mark.asyncio
    async def test_lost_session_is_an_error_response(self):
        client = connected_client(None)
        response = await client.invoke("read", {})
        assert response.status == "error"
        assert "lost" in response.error.message

    @pytest.mark.asyncio
    async def test_invoke_before_connect(self):
        with pytest.raises(NotConnectedError):
            await MCPClient().invoke("read", {})
