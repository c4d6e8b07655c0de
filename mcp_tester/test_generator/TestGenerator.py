import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from ..exceptions import GenerationError
from ..llm.LLM import LLMClient
from ..prompts.eval_prompt import eval_prompt, eval_system_prompt
from ..prompts.input_prompt import input_prompt, input_system_prompt
from ..prompts.tool_prompt import tool_prompt, tool_system_prompt
from ..type.types_def import RULE_TYPES, ExpectedOutcome, TestCase, ToolDefinition, ValidationRule
from ..utils.parse_json import parse_json_object

logger = logging.getLogger(__name__)

_rule_adapter = TypeAdapter(ValidationRule)

HAPPY_PATH = "happy path: normal, expected usage with valid inputs"
ERROR_CASE = "error case: well-formed inputs that should trigger the tool's error handling"

# JSON schema primitive type -> accepted Python types
_SCHEMA_TYPES: Dict[str, tuple] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
    "null": (type(None),),
}


def scenario_for(index: int) -> str:
    """Roughly 80% happy path, 20% error cases: every fifth unit is an error case."""
    return ERROR_CASE if index % 5 == 4 else HAPPY_PATH


class TestGenerator:
    """
    Generator for test cases using a Large Language Model.

    Each test case is one generation unit built from three model round trips:
    a natural-language request, the concrete inputs, and the expected outcome
    with its validation rules. A unit that fails is logged and dropped, so
    ``generate`` can return fewer cases than requested.
    """

    __test__ = False

    def __init__(self, llm: LLMClient):
        """
        Create a new test generator

        Args:
            llm: client for the language model
        """
        self.llm = llm

    async def generate_for_tools(
        self,
        tools: List[ToolDefinition],
        tests_per_tool: int,
        source_context: Optional[Dict[str, str]] = None,
        server_name: str = "",
    ) -> List[TestCase]:
        """
        Generate test cases for the given tools, in discovery order.

        Args:
            tools: Tool definitions to generate tests for
            tests_per_tool: Number of tests to generate per tool
            source_context: tool name -> implementation source, when known
            server_name: Name of the MCP server, for logging

        Returns:
            List of generated test cases
        """
        source_context = source_context or {}
        all_tests: List[TestCase] = []
        for tool in tools:
            try:
                test_cases = await self.generate(tool, tests_per_tool, source_context.get(tool.name, ""), server_name)
            except Exception as error:
                logger.error(f"[{server_name}] Error generating tests for tool {tool.name}: {error}")
                continue
            all_tests.extend(test_cases)
        return all_tests

    async def generate(
        self, tool: ToolDefinition, count: int, source_code: str = "", server_name: str = ""
    ) -> List[TestCase]:
        """
        Generate up to ``count`` test cases for one tool, in generation order.

        Raises:
            ValueError: if count is less than 1
        """
        if count < 1:
            raise ValueError(f"count must be at least 1, got {count}")

        prefix = f"[{server_name}] [{tool.name}]" if server_name else f"[{tool.name}]"
        logger.info(f"{prefix} Generating {count} test cases")
        test_cases: List[TestCase] = []
        for index in range(count):
            try:
                test_case = await self._generate_unit(tool, index, source_code)
            except Exception as error:
                logger.error(f"{prefix} Test {index + 1}/{count} could not be generated: {error}")
                continue
            logger.info(f"{prefix} Created test case: {test_case.description}")
            test_cases.append(test_case)

        if len(test_cases) < count:
            logger.warning(f"{prefix} Generated {len(test_cases)} of {count} requested test cases")
        else:
            logger.info(f"{prefix} Generated {len(test_cases)} tests")
        return test_cases

    async def _generate_unit(self, tool: ToolDefinition, index: int, source_code: str) -> TestCase:
        scenario = scenario_for(index)
        prompt_args = {
            "tool_name": tool.name,
            "tool_definition": tool.format_for_llm(),
            "parameters": json.dumps(tool.parameter_schema, indent=2),
            "source_section": self._source_section(source_code),
            "scenario": scenario,
        }

        query = await self.generate_query(prompt_args)
        inputs = await self.generate_inputs(tool, prompt_args, query)
        expectation = await self.generate_expectation(tool, prompt_args, query, inputs)

        return TestCase(
            id=str(uuid.uuid4()),
            tool_name=tool.name,
            description=expectation["description"] or f"Test {index + 1}: {scenario.split(':')[0]} for {tool.name}",
            inputs=inputs,
            natural_language_context=query,
            expected_outcome=ExpectedOutcome(
                status=expectation["status"],
                validation_rules=expectation["validation_rules"],
            ),
        )

    @staticmethod
    def _source_section(source_code: str) -> str:
        if not source_code:
            return ""
        return (
            "Tool source code (authoritative reference for output format, since the tool "
            f"may lack an output schema):\n```python\n{source_code}\n```\n"
        )

    async def generate_query(self, prompt_args: Dict[str, Any]) -> str:
        """Ask for a natural-language request that would lead an assistant to use the tool."""
        response = await self.llm.get_response(
            eval_system_prompt.format(**prompt_args),
            eval_prompt.format(**prompt_args),
        )
        query = response.strip().strip('"').strip()
        if not query:
            raise GenerationError("Empty natural language request")
        return query

    async def generate_inputs(self, tool: ToolDefinition, prompt_args: Dict[str, Any], query: str) -> Dict[str, Any]:
        """Ask for concrete arguments and check them against the tool's parameter schema."""
        response = await self.llm.get_response(
            input_system_prompt.format(**prompt_args),
            input_prompt.format(query=query, **prompt_args),
        )
        inputs = parse_json_object(response)
        if inputs is None:
            raise GenerationError(f"Could not extract a JSON object of inputs from response: {response[:200]}")
        self.check_inputs(tool, inputs)
        return inputs

    @staticmethod
    def check_inputs(tool: ToolDefinition, inputs: Dict[str, Any]) -> None:
        """
        Check inputs against the schema: required parameters present and
        declared primitive types respected.

        Raises:
            GenerationError: the inputs do not fit the schema
        """
        missing = [name for name in tool.required if name not in inputs]
        if missing:
            raise GenerationError(f"Inputs are missing required parameters: {', '.join(missing)}")

        for name, value in inputs.items():
            declared = tool.properties.get(name)
            if not isinstance(declared, dict) or "type" not in declared:
                continue
            types = declared["type"] if isinstance(declared["type"], list) else [declared["type"]]
            accepted = tuple(t for schema_type in types for t in _SCHEMA_TYPES.get(schema_type, ()))
            if not accepted:
                continue
            # bool is an int subclass but not a JSON number
            if isinstance(value, bool) and bool not in accepted:
                raise GenerationError(f"Parameter '{name}' should be {declared['type']}, got boolean")
            if not isinstance(value, accepted):
                raise GenerationError(f"Parameter '{name}' should be {declared['type']}, got {type(value).__name__}")

    async def generate_expectation(
        self, tool: ToolDefinition, prompt_args: Dict[str, Any], query: str, inputs: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Ask for the expected status, a description, and validation rules."""
        response = await self.llm.get_response(
            tool_system_prompt.format(**prompt_args),
            tool_prompt.format(query=query, inputs=json.dumps(inputs), **prompt_args),
        )
        parsed = parse_json_object(response)
        if parsed is None:
            raise GenerationError(f"Could not extract the expected outcome from response: {response[:200]}")

        # tolerate the nested {"expectedOutcome": {...}} shape
        outcome = parsed.get("expectedOutcome") if isinstance(parsed.get("expectedOutcome"), dict) else parsed
        status = outcome.get("status")
        if status not in ("success", "error"):
            raise GenerationError(f"Missing or invalid expected status: {status!r}")

        description = parsed.get("description") or outcome.get("description") or ""
        raw_rules = outcome.get("validationRules", parsed.get("validationRules")) or []
        return {
            "status": status,
            "description": description.strip() if isinstance(description, str) else "",
            "validation_rules": self.parse_rules(raw_rules, tool.name),
        }

    @staticmethod
    def parse_rules(raw_rules: Any, tool_name: str) -> List[Any]:
        """Keep the well-formed rules of known type, in order; log and drop the rest."""
        if not isinstance(raw_rules, list):
            logger.warning(f"[{tool_name}] validationRules is not an array; ignoring it")
            return []

        rules = []
        for index, raw in enumerate(raw_rules):
            if not isinstance(raw, dict) or raw.get("type") not in RULE_TYPES:
                logger.warning(f"[{tool_name}] Skipping validation rule {index} of unknown type: {json.dumps(raw)}")
                continue
            try:
                rules.append(_rule_adapter.validate_python(raw))
            except ValidationError as e:
                logger.warning(f"[{tool_name}] Skipping malformed validation rule {index}: {e}")
        return rules
