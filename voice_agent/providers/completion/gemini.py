"""Gemini completion provider implementation."""

from typing import Optional, Sequence
import google.generativeai as genai
import structlog

from .base import CompletionProvider, ProviderError, split_system
from ...state.session_store import ConversationTurn


logger = structlog.get_logger()


class GeminiProvider(CompletionProvider):
    """
    Gemini completion provider using direct API calls.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str = "gemini-1.5-flash",
        temperature: float = 0.7,
        max_output_tokens: int = 1024,
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens
        self.timeout = timeout
        self.initialized = False
        self.request_count = 0

    def initialize(self) -> None:
        """Configure the Gemini API client."""
        logger.info("Initializing Gemini provider", model=self.model_name)

        if not self.api_key:
            raise ValueError("GEMINI_API_KEY environment variable not set")

        genai.configure(api_key=self.api_key)
        self.initialized = True

    async def complete(self, window: Sequence[ConversationTurn]) -> str:
        """Request a reply from Gemini with the system turn as system instruction."""
        if not self.initialized:
            raise ProviderError("Gemini not initialized")

        instruction, turns = split_system(window)
        contents = [
            {
                "role": "model" if turn.role == "assistant" else "user",
                "parts": [turn.content],
            }
            for turn in turns
        ]

        self.request_count += 1
        try:
            model = genai.GenerativeModel(
                model_name=self.model_name, system_instruction=instruction
            )
            response = await model.generate_content_async(
                contents,
                generation_config=genai.GenerationConfig(
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                ),
                request_options={"timeout": self.timeout},
            )
            # .text raises ValueError when the candidate was blocked
            text = response.text
        except Exception as e:
            raise ProviderError(f"Gemini request failed: {e}") from e

        if not text or not text.strip():
            raise ProviderError("Gemini returned an empty reply")
        return text

    def get_status(self) -> dict:
        """Get Gemini provider status."""
        return {
            "provider": "gemini",
            "model": self.model_name,
            "initialized": self.initialized,
            "request_count": self.request_count,
        }
