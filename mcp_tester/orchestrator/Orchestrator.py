"""Drives test campaigns: connect, discover, generate, execute, validate, report.

Servers are tested one at a time and test cases one at a time. Each campaign
owns a fresh connection and disconnects it exactly once, whatever happens.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Protocol

from ..client.MCPClient import MCPClient
from ..exceptions import ConfigError, ConnectionError, OperationTimeout
from ..reporter.Reporter import Reporter
from ..test_generator.TestGenerator import TestGenerator
from ..type.types_def import TesterConfig, TestCase, TestResult, ToolDefinition, ToolResponse
from ..utils import run_logs
from ..utils.race import TimeoutRace
from ..utils.read_source_code import ReadSourceCode
from ..validator.ResponseValidator import ResponseValidator

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """What a campaign needs from a server connection."""

    async def connect(self, address_or_name: str, config: Any = None) -> None: ...

    async def list_tools(self) -> List[ToolDefinition]: ...

    async def invoke(self, tool_name: str, inputs: Mapping[str, Any]) -> ToolResponse: ...

    async def disconnect(self) -> None: ...


ConnectionFactory = Callable[[str, TesterConfig], Connection]


def default_connection_factory(server_name: str, config: TesterConfig) -> Connection:
    return MCPClient(name=server_name, registry=config.mcp_servers)


class Orchestrator:
    def __init__(
        self,
        config: TesterConfig,
        generator: Optional[TestGenerator] = None,
        validator: Optional[ResponseValidator] = None,
        reporter: Optional[Reporter] = None,
        connection_factory: ConnectionFactory = default_connection_factory,
        source_reader: Optional[ReadSourceCode] = None,
        save_artifacts: bool = False,
    ) -> None:
        """
        Args:
            config: run configuration, read but never modified
            generator: needed whenever test cases are generated rather than supplied
            validator: grades responses; a default ``ResponseValidator`` if omitted
            reporter: receives each server's results; no reporting if omitted
            connection_factory: builds a fresh connection per campaign
            source_reader: supplies tool source code as generation context
            save_artifacts: write test cases and results under ``config.logs_dir``
        """
        self.config = config
        self.generator = generator
        self.validator = validator or ResponseValidator()
        self.reporter = reporter
        self.connection_factory = connection_factory
        self.source_reader = source_reader
        self.save_artifacts = save_artifacts
        self._race = TimeoutRace()

    def selected_servers(self) -> List[str]:
        """
        Raises:
            ConfigError: no server is configured or selected.
        """
        servers = self.config.selected_servers()
        if not servers:
            raise ConfigError("No MCP servers configured. Add servers to the config file or pass --server.")
        return servers

    async def run(self) -> Dict[str, List[TestResult]]:
        """Run a full campaign for every selected server, in order."""
        all_results: Dict[str, List[TestResult]] = {}
        for server_name in self.selected_servers():
            all_results[server_name] = await self._contained(server_name, self.run_server(server_name))
        self._log_summary(all_results)
        return all_results

    async def generate_all(self) -> Dict[str, List[TestCase]]:
        """Generate (and save, if enabled) test cases for every selected server without executing them."""
        all_cases: Dict[str, List[TestCase]] = {}
        for server_name in self.selected_servers():
            all_cases[server_name] = await self._contained(server_name, self.generate_server_cases(server_name))
        return all_cases

    async def _contained(self, server_name: str, campaign: Any) -> list:
        """Await one server's campaign; its failure costs that server only."""
        try:
            return await campaign
        except ConfigError:
            raise
        except ConnectionError as e:
            logger.error(f"[{server_name}] Skipping server, connection failed: {e}")
        except Exception:
            logger.exception(f"[{server_name}] Campaign aborted by an unexpected error")
        return []

    @asynccontextmanager
    async def connected(self, server_name: str) -> AsyncIterator[Connection]:
        """Yield a fresh, connected connection and disconnect it exactly once on exit."""
        connection = self.connection_factory(server_name, self.config)
        try:
            try:
                await self._race.run(
                    connection.connect(server_name, self.config),
                    self.config.timeout_seconds,
                    name=f"connect[{server_name}]",
                )
            except OperationTimeout as e:
                raise ConnectionError(f"Connection to {server_name} timed out after {self.config.timeout_ms} ms") from e
            yield connection
        finally:
            await connection.disconnect()

    async def run_server(self, server_name: str, test_cases: Optional[List[TestCase]] = None) -> List[TestResult]:
        """
        Run one server's campaign.

        When ``test_cases`` is given, discovery and generation are skipped and
        those cases are executed as they are.

        Raises:
            ConnectionError: the server could not be reached.
        """
        logger.info("========================================")
        logger.info(f"Testing server: {server_name}")
        logger.info("========================================")

        run_dir = None
        async with self.connected(server_name) as connection:
            if test_cases is None:
                test_cases = await self._discover_and_generate(connection, server_name)
                if not test_cases:
                    return []
                if self.save_artifacts:
                    run_dir = run_logs.make_run_dir(server_name, self.config.logs_dir)
                    run_logs.save_testcases(run_dir, test_cases)
            results = await self.execute_tests(connection, test_cases, server_name)

        # results are already executed; saving or reporting them must not lose them
        if self.save_artifacts:
            try:
                run_logs.save_results(run_dir or run_logs.make_run_dir(server_name, self.config.logs_dir), results)
            except Exception:
                logger.exception(f"[{server_name}] Failed to save validation results")
        if self.reporter is not None:
            try:
                self.reporter.generate_report(results, self.config, server_name)
            except Exception:
                logger.exception(f"[{server_name}] Failed to report {len(results)} results")
        return results

    async def run_with_test_cases(self, server_name: str, test_cases: List[TestCase]) -> List[TestResult]:
        """Replay previously generated test cases against a server."""
        return await self.run_server(server_name, test_cases=test_cases)

    async def generate_server_cases(self, server_name: str) -> List[TestCase]:
        """Connect, discover and generate for one server, then disconnect."""
        async with self.connected(server_name) as connection:
            test_cases = await self._discover_and_generate(connection, server_name)
        if self.save_artifacts and test_cases:
            run_logs.save_testcases(run_logs.make_run_dir(server_name, self.config.logs_dir), test_cases)
        return test_cases

    async def _discover_and_generate(self, connection: Connection, server_name: str) -> List[TestCase]:
        tools = await connection.list_tools()
        if not tools:
            logger.warning(f"[{server_name}] No tools found in the MCP server. Nothing to test.")
            return []
        logger.info(f"[{server_name}] Found {len(tools)} tools: {', '.join(tool.name for tool in tools)}")

        if self.generator is None:
            raise ConfigError("A test generator is required to generate test cases")

        source_context: Dict[str, str] = {}
        if self.source_reader is not None:
            source_context = self.source_reader.get_code(self.config.mcp_servers.get(server_name))

        tests_per_tool = self.config.num_tests_per_tool
        logger.info(f"[{server_name}] Generating {tests_per_tool} tests per tool...")
        test_cases = await self.generator.generate_for_tools(tools, tests_per_tool, source_context, server_name)
        logger.info(f"[{server_name}] Generated {len(test_cases)} test cases in total.")
        return test_cases

    async def execute_tests(self, connection: Connection, test_cases: List[TestCase], server_name: str = "") -> List[TestResult]:
        """Execute test cases in order; exactly one result per case, in the same order."""
        results: List[TestResult] = []
        total = len(test_cases)
        for index, test_case in enumerate(test_cases, 1):
            logger.info(f"[{server_name}] ({index}/{total}) Testing {test_case.tool_name}: {test_case.description}")
            result = await self.execute_test(connection, test_case, server_name)
            if result.passed:
                logger.info(f"  ✓ Passed ({result.execution_time_ms:.0f}ms)")
            else:
                logger.info(f"  ✗ Failed: {', '.join(result.validation_errors)}")
            results.append(result)
        return results

    async def execute_test(self, connection: Connection, test_case: TestCase, server_name: str = "") -> TestResult:
        """Run one test case; never raises."""
        context = f"[{server_name}] {test_case.tool_name} (test {test_case.id})"
        start = time.perf_counter()
        try:
            response = await self._race.run(
                connection.invoke(test_case.tool_name, test_case.inputs),
                self.config.timeout_seconds,
                name=f"invoke[{test_case.tool_name}:{test_case.id}]",
            )
            execution_time_ms = (time.perf_counter() - start) * 1000
            verdict = self.validator.validate(response, test_case)
        except OperationTimeout:
            logger.error(f"{context} timed out after {self.config.timeout_ms} ms")
            return TestResult(
                test_case=test_case,
                passed=False,
                validation_errors=[f"Tool execution timed out after {self.config.timeout_ms} ms"],
            )
        except Exception as e:
            logger.error(f"{context} raised an unexpected error: {e!r}")
            return TestResult(
                test_case=test_case,
                passed=False,
                validation_errors=[f"Unexpected error: {e}"],
            )

        return TestResult(
            test_case=test_case,
            passed=verdict.valid,
            response=response,
            validation_errors=verdict.errors,
            execution_time_ms=execution_time_ms,
        )

    @staticmethod
    def _log_summary(all_results: Dict[str, List[TestResult]]) -> None:
        for server_name, results in all_results.items():
            passed = sum(1 for r in results if r.passed)
            logger.info(f"[{server_name}] {passed}/{len(results)} tests passed")
