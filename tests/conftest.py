"""
Shared fixtures for the MCP tester tests.

The fakes here stand in for a live MCP server connection and for the
language model, so campaigns can be driven without spawning processes or
calling an API.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from mcp_tester.type.types_def import (
    ExpectedOutcome,
    HasPropertyRule,
    ServerConfig,
    TestCase,
    TesterConfig,
    ToolDefinition,
    ToolResponse,
)


class FakeConnection:
    """In-memory stand-in for ``MCPClient`` that records how it was used."""

    def __init__(
        self,
        tools: Optional[List[ToolDefinition]] = None,
        responses: Optional[Dict[str, Any]] = None,
        connect_error: Optional[Exception] = None,
        list_tools_error: Optional[Exception] = None,
        hang_on: Optional[set] = None,
        connect_hangs: bool = False,
    ):
        self.tools = tools or []
        self.responses = responses or {}
        self.connect_error = connect_error
        self.list_tools_error = list_tools_error
        self.hang_on = hang_on or set()
        self.connect_hangs = connect_hangs
        self.release = asyncio.Event()
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.invocations: List[tuple] = []

    async def connect(self, address_or_name: str, config: Any = None) -> None:
        self.connect_calls += 1
        if self.connect_hangs:
            await self.release.wait()
        if self.connect_error is not None:
            raise self.connect_error

    async def list_tools(self) -> List[ToolDefinition]:
        if self.list_tools_error is not None:
            raise self.list_tools_error
        return list(self.tools)

    async def invoke(self, tool_name: str, inputs: Dict[str, Any]) -> ToolResponse:
        self.invocations.append((tool_name, dict(inputs)))
        if tool_name in self.hang_on:
            await self.release.wait()
        response = self.responses.get(tool_name)
        if isinstance(response, Exception):
            raise response
        if response is None:
            return ToolResponse(status="success", data={"content": [{"type": "text", "text": "ok"}]})
        return response

    async def disconnect(self) -> None:
        self.disconnect_calls += 1


class FakeLLM:
    """Replays scripted replies; an Exception in the script is raised instead."""

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.prompts: List[tuple] = []

    async def get_response(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append((system_prompt, user_prompt))
        if not self.replies:
            raise AssertionError("FakeLLM ran out of scripted replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeGenerator:
    """Returns prepared test cases per tool, in discovery order."""

    def __init__(self, cases_by_tool: Dict[str, List[TestCase]]):
        self.cases_by_tool = cases_by_tool
        self.calls: List[tuple] = []

    async def generate_for_tools(self, tools, tests_per_tool, source_context=None, server_name=""):
        self.calls.append(([tool.name for tool in tools], tests_per_tool, server_name))
        cases: List[TestCase] = []
        for tool in tools:
            cases.extend(self.cases_by_tool.get(tool.name, []))
        return cases


def make_case(tool_name: str, case_id: str, status: str = "success", rules: Optional[list] = None, **inputs) -> TestCase:
    return TestCase(
        id=case_id,
        tool_name=tool_name,
        description=f"{tool_name} case {case_id}",
        inputs=inputs,
        natural_language_context=f"Please use {tool_name}",
        expected_outcome=ExpectedOutcome(status=status, validation_rules=rules or []),
    )


@pytest.fixture
def search_tool():
    return ToolDefinition(
        name="search",
        description="Search documents by keyword",
        parameter_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "limit": {"type": "integer", "description": "Maximum number of results"},
            },
            "required": ["query"],
        },
    )


@pytest.fixture
def echo_tool():
    return ToolDefinition(
        name="echo",
        description="Echo a message back",
        parameter_schema={
            "type": "object",
            "properties": {"message": {"type": "string"}},
            "required": ["message"],
        },
    )


@pytest.fixture
def sample_cases():
    return [
        make_case("echo", "1", message="hi"),
        make_case("echo", "2", rules=[HasPropertyRule(target="content.0.text")], message="there"),
        make_case("search", "3", query="mcp"),
    ]


@pytest.fixture
def tester_config():
    return TesterConfig(
        mcp_servers={
            "alpha": ServerConfig(command="alpha-server"),
            "beta": ServerConfig(command="beta-server"),
        },
        num_tests_per_tool=2,
        timeout_ms=200,
    )
