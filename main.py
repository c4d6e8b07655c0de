import asyncio
import argparse
import logging
import os
import sys
from typing import Optional

from mcp_tester.client.ConfigLoader import DEFAULT_CONFIG_FILENAME, Configuration
from mcp_tester.exceptions import ConfigError, ConnectionError
from mcp_tester.type.types_def import TesterConfig

logger = logging.getLogger("mcp_tester")


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help=f"Path to MCP Server config file (default: ./{DEFAULT_CONFIG_FILENAME})"
    )
    parser.add_argument(
        "-s", "--server",
        action="append",
        default=None,
        help="Server to test: config name, host:port, URL, script path or npm package (repeatable)"
    )
    parser.add_argument("-t", "--timeout", type=int, default=None, help="Timeout for connecting and for each test, in ms")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")


def _add_output_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-f", "--format", choices=["console", "json", "html", "text"], default=None, help="Report format")
    parser.add_argument("-o", "--output", type=str, default=None, help="Path to output report file")


def _add_llm_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-n", "--num-tests", type=int, default=None, help="Number of tests to generate per tool")
    parser.add_argument(
        "-k", "--api-key",
        type=str,
        default=None,
        help="LLM API key (can also be set via LLM_API_KEY / ANTHROPIC_API_KEY env var or .env file)"
    )
    parser.add_argument("-m", "--model", type=str, default=None, help="Model used to generate test cases")


def parse_args(argv: Optional[list] = None):
    parser = argparse.ArgumentParser(
        prog="mcp-tester",
        description="Automated testing tool for MCP servers",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    # run: generate, execute and report in one go
    run_parser = subparsers.add_parser('run', help='Generate, execute and report test cases')
    _add_common_args(run_parser)
    _add_llm_args(run_parser)
    _add_output_args(run_parser)

    gen_parser = subparsers.add_parser('gen-cases', help='Generate test cases')
    _add_common_args(gen_parser)
    _add_llm_args(gen_parser)

    val_parser = subparsers.add_parser('val-cases', help='Execute and validate saved test cases')
    _add_common_args(val_parser)
    _add_output_args(val_parser)
    val_parser.add_argument("--testpath", type=str, required=True, help="Path to a saved testcases.json")

    rep_parser = subparsers.add_parser('rep-cases', help='Report saved testing results')
    _add_output_args(rep_parser)
    rep_parser.add_argument("--valpath", type=str, required=True, help="Path to a saved validation_results.json")
    rep_parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    init_parser = subparsers.add_parser('init', help='Write a default config file')
    init_parser.add_argument("--config", type=str, default=DEFAULT_CONFIG_FILENAME, help="Where to write the config file")
    init_parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s"
    )


def build_config(args) -> TesterConfig:
    """Load the config file, then apply command line overrides.

    The default config file may be absent when servers are given with --server;
    an explicitly named file must exist.
    """
    config_path = getattr(args, "config", None)
    if config_path is None and os.path.exists(DEFAULT_CONFIG_FILENAME):
        config_path = DEFAULT_CONFIG_FILENAME

    config = Configuration.load_config(config_path) if config_path else TesterConfig()

    overrides = {}
    if getattr(args, "server", None):
        overrides["servers"] = args.server
    if getattr(args, "num_tests", None) is not None:
        overrides["num_tests_per_tool"] = args.num_tests
    if getattr(args, "timeout", None) is not None:
        overrides["timeout_ms"] = args.timeout
    if getattr(args, "format", None):
        overrides["output_format"] = args.format
    if getattr(args, "output", None):
        overrides["output_path"] = args.output
    if getattr(args, "model", None):
        overrides["model"] = args.model
    if getattr(args, "verbose", False):
        overrides["verbose"] = True

    try:
        return TesterConfig.model_validate({**config.model_dump(), **overrides})
    except ValueError as e:
        raise ConfigError(f"Invalid option: {e}") from e


def build_generator(args, config: TesterConfig):
    from mcp_tester.llm.LLM import LLMClient
    from mcp_tester.test_generator.TestGenerator import TestGenerator

    settings = Configuration(api_key=args.api_key)
    llm = LLMClient(settings.llm_api_key, model=config.model or settings.model)
    return TestGenerator(llm)


def _log_config(config: TesterConfig) -> None:
    if config.verbose:
        logger.debug(f"Configuration: {config.model_dump_json(by_alias=True, indent=2)}")


async def run_cases(args) -> int:
    from mcp_tester.orchestrator.Orchestrator import Orchestrator
    from mcp_tester.reporter.Reporter import Reporter
    from mcp_tester.utils.read_source_code import ReadSourceCode

    config = build_config(args)
    _log_config(config)
    orchestrator = Orchestrator(
        config,
        generator=build_generator(args, config),
        reporter=Reporter(),
        source_reader=ReadSourceCode(),
        save_artifacts=True,
    )
    await orchestrator.run()
    logger.info("Testing complete!")
    return 0


async def gen_cases(args) -> int:
    from mcp_tester.orchestrator.Orchestrator import Orchestrator
    from mcp_tester.utils.read_source_code import ReadSourceCode

    config = build_config(args)
    _log_config(config)
    orchestrator = Orchestrator(
        config,
        generator=build_generator(args, config),
        source_reader=ReadSourceCode(),
        save_artifacts=True,
    )
    generated = await orchestrator.generate_all()
    for server_name, test_cases in generated.items():
        logger.info(f"[{server_name}] {len(test_cases)} test cases generated")
    return 0


async def val_cases(args) -> int:
    from mcp_tester.orchestrator.Orchestrator import Orchestrator
    from mcp_tester.reporter.Reporter import Reporter
    from mcp_tester.utils import run_logs

    config = build_config(args)
    _log_config(config)
    servers = config.selected_servers()
    if len(servers) != 1:
        raise ConfigError(f"val-cases runs saved test cases against exactly one server, got: {servers or 'none'}")

    test_cases = run_logs.load_testcases(args.testpath)
    orchestrator = Orchestrator(config, reporter=Reporter())
    try:
        results = await orchestrator.run_with_test_cases(servers[0], test_cases)
    except ConnectionError as e:
        logger.error(f"[{servers[0]}] Connection failed: {e}")
        return 1
    run_logs.save_results(os.path.dirname(os.path.abspath(args.testpath)), results)
    return 0


def rep_cases(args) -> int:
    from mcp_tester.reporter.Reporter import Reporter
    from mcp_tester.utils import run_logs

    results = run_logs.load_results(args.valpath)
    config = TesterConfig(output_format=args.format or "console", output_path=args.output)
    Reporter().generate_report(results, config)
    return 0


def init_config(args) -> int:
    created = Configuration.create_default_config(args.config)
    if created is None:
        logger.info(f"Config file already exists: {args.config}")
    return 0


async def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    try:
        if args.command == 'run':
            return await run_cases(args)
        if args.command == 'gen-cases':
            return await gen_cases(args)
        if args.command == 'val-cases':
            return await val_cases(args)
        if args.command == 'rep-cases':
            return rep_cases(args)
        if args.command == 'init':
            return init_config(args)
    except ConfigError as e:
        logger.error(f"Error: {e}")
        return 1
    return 2


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
