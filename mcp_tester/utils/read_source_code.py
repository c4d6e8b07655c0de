from typing import Dict, Optional
import ast
import logging
import os

from ..type.types_def import ServerConfig

logger = logging.getLogger(__name__)


class ReadSourceCode:
    """Extracts the source of ``@<server>.tool`` functions from a Python MCP server.

    The source is extra prompt context: tools often lack an output schema, and
    the implementation is the best description of what a response looks like.
    """

    def get_code(self, server_config: Optional[ServerConfig]) -> Dict[str, str]:
        if server_config is None:
            return {}
        source_path = self.extract_source_code_path(server_config)
        if not source_path:
            return {}
        try:
            return self.get_mcp_tool_functions(source_path)
        except (OSError, SyntaxError, ValueError) as e:
            logger.warning(f"Could not read tool sources from {source_path}: {e}")
            return {}

    def extract_source_code_path(self, server_config: ServerConfig) -> Optional[str]:
        """
        Find the server's .py entry file in its args.

        ``--directory <dir>`` (as used by ``uv``) sets the base for relative paths.

        Returns:
            Absolute path of the source file, or None when there is none.
        """
        server_args = list(server_config.args)
        if server_config.command.endswith(".py"):
            server_args.insert(0, server_config.command)

        work_dir = os.getcwd()
        for i, arg in enumerate(server_args):
            if arg == "--directory" and i + 1 < len(server_args):
                work_dir = os.path.abspath(server_args[i + 1])
                break

        source_file = next((arg for arg in server_args if arg.endswith(".py")), None)
        if not source_file:
            logger.debug("No .py source file in server args")
            return None

        absolute_path = source_file if os.path.isabs(source_file) else os.path.join(work_dir, source_file)
        if os.path.exists(absolute_path):
            return absolute_path
        logger.debug(f"Server source file does not exist: {absolute_path}")
        return None

    def get_mcp_tool_functions(self, source_path: str) -> Dict[str, str]:
        """
        Parse a source file and map tool name -> function source for every
        function decorated with ``@x.tool`` or ``@x.tool(...)``.

        A ``name="..."`` keyword on the decorator overrides the function name.
        """
        with open(source_path, "r", encoding="utf-8") as f:
            source_code = f.read()

        tool_functions: Dict[str, str] = {}
        tree = ast.parse(source_code)
        for node in ast.walk(tree):
            if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
                continue
            for decorator in node.decorator_list:
                tool_name = self._tool_name(decorator, node.name)
                if tool_name is None:
                    continue
                function_code = ast.get_source_segment(source_code, node)
                if function_code:
                    tool_functions[tool_name] = function_code.strip()
                break

        return tool_functions

    @staticmethod
    def _tool_name(decorator: ast.expr, default: str) -> Optional[str]:
        func = decorator.func if isinstance(decorator, ast.Call) else decorator
        if not (isinstance(func, ast.Attribute) and func.attr == "tool"):
            return None
        if isinstance(decorator, ast.Call):
            for keyword in decorator.keywords:
                if keyword.arg == "name" and isinstance(keyword.value, ast.Constant):
                    return str(keyword.value.value)
        return default
