import json
import logging
import os
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from ..exceptions import ConfigError
from ..type.types_def import TesterConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "mcp-servers.json"

DEFAULT_CONFIG: dict[str, Any] = {
    "servers": ["filesystem"],
    "numTestsPerTool": 3,
    "timeoutMs": 10000,
    "outputFormat": "console",
    "verbose": False,
    "mcpServers": {
        "filesystem": {
            "command": "npx",
            "args": ["-y", "@modelcontextprotocol/server-filesystem", "./"],
            "env": {},
        }
    },
}


class Configuration:
    """Manages configuration and environment variables for the tester."""

    def __init__(self, api_key: Optional[str] = None) -> None:
        """Initialize configuration with environment variables."""
        self.load_env()
        self.api_key = api_key or os.getenv("LLM_API_KEY") or os.getenv("ANTHROPIC_API_KEY")
        self.model = os.getenv("LLM_MODEL")

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()
        local_env = os.path.join(os.getcwd(), ".env")
        if os.path.exists(local_env):
            load_dotenv(local_env)

    @staticmethod
    def load_config(file_path: str) -> TesterConfig:
        """Load tester configuration from JSON file.

        Args:
            file_path: Path to the JSON configuration file.

        Returns:
            The validated configuration.

        Raises:
            ConfigError: If the file is missing, is not JSON, or does not match the schema.
        """
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError as e:
            raise ConfigError(f"Configuration file not found: {file_path}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in configuration file {file_path}: {e}") from e

        try:
            config = TesterConfig.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {file_path}: {e}") from e

        logger.info(f"Loaded configuration from: {file_path}")
        return config

    @staticmethod
    def create_default_config(file_path: str = DEFAULT_CONFIG_FILENAME) -> Optional[str]:
        """Write a starter configuration file.

        Returns:
            Path of the created file, or None if one already exists.
        """
        if os.path.exists(file_path):
            return None

        example_path = f"{file_path}.example"
        if os.path.exists(example_path):
            with open(example_path, "r", encoding="utf-8") as f:
                content = f.read()
        else:
            content = json.dumps(DEFAULT_CONFIG, indent=2)

        with open(file_path, "w", encoding="utf-8") as f:
            f.write(content)
        logger.info(f"Created default config file at: {file_path}")
        return file_path

    @property
    def llm_api_key(self) -> str:
        """Get the LLM API key.

        Returns:
            The API key as a string.

        Raises:
            ConfigError: If the API key is not found in environment variables.
        """
        if not self.api_key:
            raise ConfigError(
                "LLM API key is required. Set it with --api-key, the LLM_API_KEY or "
                "ANTHROPIC_API_KEY environment variable, or in a .env file."
            )
        return self.api_key
