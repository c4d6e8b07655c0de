import asyncio
import json
import logging
from contextlib import AsyncExitStack
from enum import Enum
from typing import Any, Mapping, Optional, Union

from mcp import ClientSession
from mcp.shared.exceptions import McpError

from ..exceptions import ConfigError, ConnectionError, NotConnectedError
from ..type.types_def import ServerConfig, TesterConfig, ToolDefinition, ToolError, ToolResponse
from .ConfigLoader import Configuration
from .Transport import Transport, resolve_transport

logger = logging.getLogger(__name__)

# how long a graceful close may take before the session task is cancelled
CLOSE_TIMEOUT_SECONDS = 5.0


class ConnectionState(str, Enum):
    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class MCPClient:
    """One live channel to an MCP server.

    The transport and ``ClientSession`` contexts are entered and exited by a
    dedicated session task. anyio cancel scopes must be exited in the task that
    entered them, so this keeps ``disconnect`` safe to call from any task, even
    while an abandoned ``connect`` is still establishing the transport.

    States: UNCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED. A failed
    connect returns to UNCONNECTED and may be retried; DISCONNECTED is terminal.
    """

    def __init__(self, name: Optional[str] = None, registry: Optional[Mapping[str, ServerConfig]] = None) -> None:
        self.name: Optional[str] = name
        self.registry: dict[str, ServerConfig] = dict(registry or {})
        self.session: Optional[ClientSession] = None
        self.transport: Optional[Transport] = None
        self.state: ConnectionState = ConnectionState.UNCONNECTED
        self._tools: list[ToolDefinition] = []
        self._session_task: Optional[asyncio.Task] = None
        self._connected: Optional[asyncio.Future] = None
        self._closing: Optional[asyncio.Event] = None
        self._cleanup_lock: asyncio.Lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Liveness: connected and the session is still running."""
        return self.state is ConnectionState.CONNECTED and self.session is not None

    @property
    def tools(self) -> list[ToolDefinition]:
        """Tools found by the most recent ``list_tools`` call."""
        return list(self._tools)

    def _registry_with(self, config: Union[TesterConfig, str, None]) -> dict[str, ServerConfig]:
        if config is None:
            return self.registry
        if isinstance(config, str):
            try:
                config = Configuration.load_config(config)
            except ConfigError as e:
                raise ConnectionError(f"Cannot read server registry: {e}") from e
        return {**self.registry, **config.mcp_servers}

    async def connect(self, address_or_name: str, config: Union[TesterConfig, str, None] = None) -> None:
        """Connect to an MCP server.

        Args:
            address_or_name: registry name, ``host:port``, URL, script path or package name
            config: optional registry source, a loaded config or the path of a config file

        Raises:
            ConnectionError: no server identified, or the transport could not be established.
        """
        if self.state is ConnectionState.DISCONNECTED:
            raise ConnectionError(f"Connection to {self.name} was closed; create a new client to reconnect")
        if self.state is not ConnectionState.UNCONNECTED:
            raise ConnectionError(f"Client for {self.name} is already {self.state.value}")

        transport = resolve_transport(address_or_name, self._registry_with(config))
        self.name = self.name or address_or_name
        self.transport = transport
        logger.info(f"Connecting to MCP server {self.name} ({transport.describe()})")

        loop = asyncio.get_running_loop()
        self._connected = loop.create_future()
        self._closing = asyncio.Event()
        self.state = ConnectionState.CONNECTING
        self._session_task = asyncio.create_task(self._run_session(transport), name=f"mcp-session-{self.name}")

        await self._connected
        logger.info(f"MCP server {self.name} is connected")

    async def _run_session(self, transport: Transport) -> None:
        connected = self._connected
        try:
            async with AsyncExitStack() as stack:
                read, write = await stack.enter_async_context(transport.open())
                session = await stack.enter_async_context(ClientSession(read, write))
                await session.initialize()
                self.session = session
                if self.state is ConnectionState.CONNECTING:
                    self.state = ConnectionState.CONNECTED
                if not connected.done():
                    connected.set_result(None)
                await self._closing.wait()
        except asyncio.CancelledError:
            self._fail_connect(connected, ConnectionError(f"Connection to {self.name} was closed while connecting"))
            raise
        except Exception as e:
            if connected.done():
                logger.warning(f"Session with {self.name} ended unexpectedly: {e}")
            else:
                logger.error(f"Failed to connect to {self.name}: {e}")
                error = ConnectionError(f"Failed to connect to {self.name}: {e}")
                error.__cause__ = e
                self._fail_connect(connected, error)
        finally:
            self.session = None

    def _fail_connect(self, connected: asyncio.Future, error: ConnectionError) -> None:
        if self.state is ConnectionState.CONNECTING:
            self.state = ConnectionState.UNCONNECTED
        if not connected.done():
            connected.set_exception(error)

    def _require_session(self) -> ClientSession:
        if self.state is not ConnectionState.CONNECTED:
            raise NotConnectedError(f"Server {self.name or '<unknown>'} not connected (state: {self.state.value})")
        if self.session is None:
            raise NotConnectedError(f"Session with {self.name} has been lost")
        return self.session

    async def list_tools(self) -> list[ToolDefinition]:
        """List available tools.

        Raises:
            NotConnectedError: called before ``connect`` succeeded.
        """
        session = self._require_session()
        tools_response = await session.list_tools()
        self._tools = [
            ToolDefinition(
                name=tool.name,
                description=tool.description or "",
                parameter_schema=tool.inputSchema or {},
                title=getattr(tool, "title", None),
            )
            for tool in tools_response.tools
        ]
        logger.info(f"Discovered {len(self._tools)} tools on {self.name}")
        return self.tools

    async def invoke(self, tool_name: str, inputs: Mapping[str, Any]) -> ToolResponse:
        """Call one tool and wait for its single reply.

        Failures are returned as ``status == "error"`` responses, never raised,
        so they can be graded like any other response.
        """
        if self.state is ConnectionState.CONNECTED and self.session is None:
            return ToolResponse(status="error", error=ToolError(message=f"Connection to {self.name} was lost"))
        session = self._require_session()

        logger.debug(f"Executing {tool_name} with {inputs}")
        try:
            result = await session.call_tool(tool_name, dict(inputs))
        except McpError as e:
            logger.warning(f"Tool {tool_name} on {self.name} returned protocol error: {e.error.message}")
            return ToolResponse(status="error", error=ToolError(message=e.error.message, code=e.error.code))
        except Exception as e:
            logger.warning(f"Error executing tool {tool_name} on {self.name}: {e}")
            return ToolResponse(status="error", error=ToolError(message=str(e) or type(e).__name__))

        return self._to_tool_response(result)

    @staticmethod
    def _to_tool_response(result: Any) -> ToolResponse:
        data = result.model_dump(mode="json", by_alias=True, exclude_none=True)
        texts = []
        for item in data.get("content", []):
            if item.get("type") != "text":
                logger.debug(f"Leaving {item.get('type')} content undecoded")
                continue
            text = item.get("text", "")
            texts.append(text)
            stripped = text.strip()
            if stripped[:1] in ("{", "["):
                try:
                    item["json"] = json.loads(stripped)
                except json.JSONDecodeError:
                    pass

        if result.isError:
            message = "\n".join(texts) or "Tool reported an error"
            return ToolResponse(status="error", data=data, error=ToolError(message=message))
        return ToolResponse(status="success", data=data)

    async def disconnect(self) -> None:
        """Close the session and release the process or socket. Idempotent, never raises."""
        async with self._cleanup_lock:
            if self.state is ConnectionState.DISCONNECTED:
                return
            previous = self.state
            self.state = ConnectionState.DISCONNECTED
            task = self._session_task
            if task is None or task.done():
                logger.debug(f"Nothing to release for {self.name}")
                return

            logger.info(f"Disconnecting from {self.name}")
            if previous is ConnectionState.CONNECTED:
                self._closing.set()
                done, _ = await asyncio.wait({task}, timeout=CLOSE_TIMEOUT_SECONDS)
                if done:
                    return
                logger.warning(f"Session with {self.name} did not close in time; cancelling it")
            task.cancel()
            await asyncio.wait({task}, timeout=CLOSE_TIMEOUT_SECONDS)
            if not task.done():
                logger.error(f"Session task for {self.name} is still running after cancel")
