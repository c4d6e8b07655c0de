"""Exceptions raised by the MCP server tester.

Only failures that change control flow are exceptions. A tool call that fails
is reported as a ``ToolResponse`` with ``status == "error"`` and a failed
validation is a ``ValidationResult``; neither is raised.
"""


class TesterError(Exception):
    """Base class for all tester errors."""


class ConfigError(TesterError):
    """Configuration could not be loaded, or selects no servers. Fatal to the run."""


class ConnectionError(TesterError):
    """The transport to a tool server could not be established or timed out.

    Scoped to one server's campaign; the run continues with the next server.
    """


class NotConnectedError(ConnectionError):
    """An operation needing a live session was called on an unconnected client."""


class GenerationError(TesterError):
    """The language model output for one generation unit could not be used."""


class OperationTimeout(TesterError):
    """An awaited operation did not settle before its deadline."""

    def __init__(self, operation: str, timeout_ms: float) -> None:
        super().__init__(f"{operation} timed out after {timeout_ms:g} ms")
        self.operation = operation
        self.timeout_ms = timeout_ms
