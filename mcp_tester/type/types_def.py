from typing import Annotated, Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

Status = Literal["success", "error"]
OutputFormat = Literal["console", "json", "html", "text"]


class _Model(BaseModel):
    """Shared model settings: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenModel(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class ToolDefinition(_FrozenModel):
    """Represents a tool discovered on an MCP server."""

    name: str
    description: str = ""
    parameter_schema: dict[str, Any] = Field(default_factory=dict)
    title: Optional[str] = None

    @property
    def properties(self) -> dict[str, Any]:
        return self.parameter_schema.get("properties") or {}

    @property
    def required(self) -> list[str]:
        return list(self.parameter_schema.get("required") or [])

    def format_for_llm(self) -> str:
        """Format tool information for LLM.

        Returns:
            A formatted string describing the tool.
        """
        args_desc = []
        for param_name, param_info in self.properties.items():
            arg_desc = f"- {param_name}"
            if isinstance(param_info, dict):
                if param_info.get("type"):
                    arg_desc += f" ({param_info['type']})"
                arg_desc += f": {param_info.get('description', 'No description')}"
            if param_name in self.required:
                arg_desc += " (required)"
            args_desc.append(arg_desc)

        output = f"Tool: {self.name}\n"
        if self.title:
            output += f"User-readable title: {self.title}\n"
        output += f"""Description: {self.description or 'No description provided'}
Arguments:
{chr(10).join(args_desc) if args_desc else '(none)'}
"""
        return output


# Validation rules form a closed set discriminated on ``type``.


class _RuleBase(_FrozenModel):
    target: Optional[str] = None
    value: Any = None
    message: str = ""


class ContainsRule(_RuleBase):
    type: Literal["contains"] = "contains"


class MatchesRule(_RuleBase):
    type: Literal["matches"] = "matches"


class HasPropertyRule(_RuleBase):
    type: Literal["hasProperty"] = "hasProperty"


class CustomRule(_RuleBase):
    """Rule checked by a predicate over the whole response data.

    The predicate is either attached directly (``predicate``, in-process only)
    or registered on the ``ResponseValidator`` under the name held in ``value``.
    """

    type: Literal["custom"] = "custom"
    predicate: Optional[Callable[[Any], bool]] = Field(default=None, exclude=True)


ValidationRule = Annotated[
    Union[ContainsRule, MatchesRule, HasPropertyRule, CustomRule],
    Field(discriminator="type"),
]

RULE_TYPES = ("contains", "matches", "hasProperty", "custom")


class ExpectedOutcome(_FrozenModel):
    status: Status
    validation_rules: list[ValidationRule] = Field(default_factory=list)


class TestCase(_FrozenModel):
    """One synthesized (inputs, expected outcome) pair for a tool."""

    __test__ = False  # keep pytest from collecting this class

    id: str
    tool_name: str
    description: str
    inputs: dict[str, Any] = Field(default_factory=dict)
    natural_language_context: str = ""
    expected_outcome: ExpectedOutcome


class ToolError(_FrozenModel):
    message: str
    code: Optional[Union[int, str]] = None


class ToolResponse(_FrozenModel):
    status: Status
    data: Any = None
    error: Optional[ToolError] = None


class ValidationResult(_FrozenModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class TestResult(_FrozenModel):
    """Outcome of executing one TestCase."""

    __test__ = False

    test_case: TestCase
    passed: bool
    response: Optional[ToolResponse] = None
    validation_errors: list[str] = Field(default_factory=list)
    execution_time_ms: Optional[float] = None


class ServerConfig(_Model):
    """Registry entry describing how to spawn a stdio MCP server."""

    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class TesterConfig(_Model):
    """Run configuration; consumed by the orchestrator, never mutated by it."""

    __test__ = False

    mcp_servers: dict[str, ServerConfig] = Field(default_factory=dict)
    servers: list[str] = Field(default_factory=list)
    num_tests_per_tool: int = Field(default=3, ge=1)
    timeout_ms: int = Field(default=10000, gt=0)
    output_format: OutputFormat = "console"
    output_path: Optional[str] = None
    model: Optional[str] = None
    verbose: bool = False
    logs_dir: str = ".logs"

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000

    def selected_servers(self) -> list[str]:
        """Servers to test: the explicit subset if given, otherwise every registry entry."""
        return list(self.servers) if self.servers else list(self.mcp_servers)
