import logging
from typing import Optional

from anthropic import APIError, AsyncAnthropic

from ..exceptions import ConfigError, GenerationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-7-sonnet-20250219"


class LLMClient:
    """Text-completion channel to the language model: (system, user) -> text.

    The API key is passed in; nothing here reads the environment.
    """

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        max_tokens: int = 2000,
        temperature: float = 0.7,
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        if not api_key and client is None:
            raise ConfigError("An API key is required for the LLM client")
        self.model = model or DEFAULT_MODEL
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or AsyncAnthropic(api_key=api_key)

    async def get_response(self, system_prompt: str, user_prompt: str) -> str:
        """Send a prompt and return the concatenated text of the reply.

        Raises:
            GenerationError: the API call failed or returned no text.
        """
        try:
            response = await self._client.messages.create(
                model=self.model,
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                max_tokens=self.max_tokens,
                temperature=self.temperature,
            )
        except APIError as e:
            raise GenerationError(f"Failed to get response from {self.model}: {e}") from e

        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        if not text.strip():
            raise GenerationError(f"Empty response from {self.model}")
        logger.debug(f"LLM response ({len(text)} chars): {text[:200]}")
        return text
