"""Transport strategies for reaching an MCP server.

A server is addressed by one of:

* a name in the server registry (``mcpServers`` in the config file), spawned over stdio;
* a ``host:port`` literal or an ``http(s)://`` URL, reached over SSE or streamable HTTP;
* a path to a server script or executable, or an npm package name, spawned over stdio.
"""

import os
import re
import shutil
import sys
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Optional
from urllib.parse import urlparse

from mcp import StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from ..exceptions import ConnectionError
from ..type.types_def import ServerConfig

HOST_PORT = re.compile(r'^(?P<host>[A-Za-z0-9.\-]+|\[[0-9A-Fa-f:.]+\]):(?P<port>\d{1,5})$')
# scoped (@scope/name), hyphenated (mcp-server-x) or versioned (name@1.2) npm package references
NPM_PACKAGE = re.compile(r'^(@[a-z0-9][\w.\-]*/[a-z0-9][\w.\-]*|[a-z0-9][\w.]*-[\w.\-]*|[a-z0-9][\w.\-]*@[\w.^~\-]+)(@[\w.^~\-]+)?$')

# interpreter used to run a server script, by file extension
INTERPRETERS: dict[str, list[str]] = {
    ".py": [sys.executable],
    ".js": ["node"],
    ".mjs": ["node"],
    ".cjs": ["node"],
    ".ts": ["npx", "-y", "tsx"],
    ".sh": ["bash"],
}


class Transport(ABC):
    """Opens the read/write stream pair an MCP ``ClientSession`` runs on."""

    @abstractmethod
    def open(self) -> Any:
        """Return an async context manager yielding ``(read_stream, write_stream)``."""

    @abstractmethod
    def describe(self) -> str:
        ...


class StdioTransport(Transport):
    """Spawns the server as a child process and talks to it over stdin/stdout."""

    def __init__(self, command: str, args: Optional[list[str]] = None, env: Optional[Mapping[str, str]] = None) -> None:
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})

    def server_parameters(self) -> StdioServerParameters:
        return StdioServerParameters(
            command=self.command,
            args=self.args,
            env={**os.environ, **self.env} if self.env else None,
        )

    def open(self) -> Any:
        return stdio_client(self.server_parameters())

    def describe(self) -> str:
        return f"stdio: {self.command} {' '.join(self.args)}".rstrip()


class SseTransport(Transport):
    def __init__(self, url: str, headers: Optional[dict[str, str]] = None) -> None:
        self.url = url
        self.headers = headers

    def open(self) -> Any:
        if self.headers:
            return sse_client(self.url, headers=self.headers)
        return sse_client(self.url)

    def describe(self) -> str:
        return f"sse: {self.url}"


class StreamableHttpTransport(Transport):
    def __init__(self, url: str, headers: Optional[dict[str, str]] = None) -> None:
        self.url = url
        self.headers = headers

    @asynccontextmanager
    async def _streams(self) -> AsyncIterator[Any]:
        async with streamablehttp_client(self.url, headers=self.headers) as (read_stream, write_stream, _):
            yield read_stream, write_stream

    def open(self) -> Any:
        return self._streams()

    def describe(self) -> str:
        return f"streamable-http: {self.url}"


def _which(command: str) -> str:
    """Resolve a command on PATH, keeping explicit paths as they are."""
    if os.path.sep in command and os.path.exists(command):
        return command
    resolved = shutil.which(command)
    if resolved is None:
        raise ConnectionError(f"Command not found on PATH: {command}")
    return resolved


def _from_registry(server_config: ServerConfig) -> StdioTransport:
    return StdioTransport(_which(server_config.command), server_config.args, server_config.env)


def _from_url(address: str) -> Transport:
    if urlparse(address).path.rstrip("/").endswith("/sse"):
        return SseTransport(address)
    return StreamableHttpTransport(address)


def _from_path(path: str) -> StdioTransport:
    path = os.path.abspath(path)
    interpreter = INTERPRETERS.get(os.path.splitext(path)[1].lower())
    if interpreter is None:
        if not os.access(path, os.X_OK):
            raise ConnectionError(f"Don't know how to run {path}: unknown extension and not executable")
        return StdioTransport(path)
    command, *prefix = interpreter
    return StdioTransport(_which(command), [*prefix, path])


def resolve_transport(address_or_name: str, registry: Optional[Mapping[str, ServerConfig]] = None) -> Transport:
    """Pick the transport strategy for a server address or registry name.

    Raises:
        ConnectionError: nothing identifies a tool server.
    """
    address = (address_or_name or "").strip()
    if not address:
        raise ConnectionError("No MCP server specified")

    registry = registry or {}
    if address in registry:
        return _from_registry(registry[address])

    if address.startswith(("http://", "https://")):
        return _from_url(address)

    match = HOST_PORT.match(address)
    if match:
        port = int(match.group("port"))
        if not 0 < port < 65536:
            raise ConnectionError(f"Invalid port in {address}")
        return SseTransport(f"http://{match.group('host')}:{port}/sse")

    if os.path.isfile(address):
        return _from_path(address)

    if NPM_PACKAGE.match(address):
        return StdioTransport(_which("npx"), ["-y", address])

    raise ConnectionError(
        f"No MCP server identified by '{address}': not in the server registry, "
        f"not host:port or a URL, not an existing file, not a package name"
    )
