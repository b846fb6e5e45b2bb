"""OpenAI chat-completions provider over plain HTTP."""

from typing import Optional, Sequence
import httpx
import structlog

from .base import CompletionProvider, ProviderError, split_system
from ...state.session_store import ConversationTurn


logger = structlog.get_logger()


class OpenAIProvider(CompletionProvider):
    """
    OpenAI provider calling the chat completions endpoint with httpx.
    """

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        max_tokens: int = 150,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = client
        self._owns_client = client is None
        self.request_count = 0

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def initialize(self) -> None:
        """Create the HTTP client."""
        logger.info("Initializing OpenAI provider", model=self.model)

        if not self.api_key:
            raise ValueError("OPENAI_API_KEY environment variable not set")

        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)

    async def complete(self, window: Sequence[ConversationTurn]) -> str:
        """Request a reply with the system turn as the leading system message."""
        if self.client is None:
            raise ProviderError("OpenAI not initialized")

        instruction, turns = split_system(window)
        messages = [{"role": "system", "content": instruction}]
        messages.extend(turn.to_dict() for turn in turns)

        self.request_count += 1
        try:
            response = await self.client.post(
                self.url,
                json={
                    "model": self.model,
                    "messages": messages,
                    "max_tokens": self.max_tokens,
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"OpenAI returned HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ProviderError(f"OpenAI request failed: {e}") from e

        try:
            text = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError("Malformed OpenAI response") from e

        if not isinstance(text, str) or not text.strip():
            raise ProviderError("OpenAI returned an empty reply")
        return text

    async def aclose(self) -> None:
        if self.client is not None and self._owns_client:
            await self.client.aclose()
            self.client = None

    def get_status(self) -> dict:
        """Get OpenAI provider status."""
        return {
            "provider": "openai",
            "model": self.model,
            "max_tokens": self.max_tokens,
            "initialized": self.client is not None,
            "request_count": self.request_count,
        }
