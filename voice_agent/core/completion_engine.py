"""
Completion fallback engine.

Turns a scenario plus the per-session conversation history into a reply by
trying each configured completion provider in order. When every provider
fails, or none is configured, a fixed degraded reply keeps the conversation
going.
"""

import time
from dataclasses import dataclass
from typing import List, Optional, Sequence
import structlog

from .scenarios import ScenarioRegistry
from ..metrics.collector import MetricsCollector
from ..providers.completion.base import CompletionProvider, ProviderError
from ..state.session_store import ConversationTurn, SessionStore


logger = structlog.get_logger()


DEGRADED_REPLY_TEMPLATE = (
    '[SIMULATED] I\'ve received your message: "{message}". '
    "Currently, AI providers are unavailable, but your connection is active!"
)


class InvalidRequest(ValueError):
    """The chat request is missing a usable user message."""


@dataclass(frozen=True)
class Reply:
    """Result of one completion."""

    text: str
    scenario_display_name: str

    def to_dict(self) -> dict:
        return {"reply": self.text, "scenario_name": self.scenario_display_name}


def degraded_reply(message: str) -> str:
    return DEGRADED_REPLY_TEMPLATE.format(message=message)


class CompletionFallbackEngine:
    """
    Produces a reply for one user message.

    Providers are tried in order, one attempt each. A provider failure is
    logged and the next provider is tried; provider errors never reach the
    caller.
    """

    def __init__(
        self,
        scenarios: ScenarioRegistry,
        store: SessionStore,
        providers: Sequence[CompletionProvider] = (),
        metrics: Optional[MetricsCollector] = None,
    ):
        self.scenarios = scenarios
        self.store = store
        self.providers: List[CompletionProvider] = list(providers)
        self.metrics = metrics

    async def complete(
        self,
        scenario_id: Optional[str],
        session_id: Optional[str],
        user_message: object,
    ) -> Reply:
        """
        Answer ``user_message`` in the context of the scenario and session.

        Args:
            scenario_id: Scenario id; unknown or missing ids use the default
            session_id: Conversation id; ``None`` answers without storing
            user_message: The user's text

        Returns:
            Reply with the text and the scenario's display name

        Raises:
            InvalidRequest: If the message is missing, not text, or blank
        """
        if not isinstance(user_message, str) or not user_message.strip():
            raise InvalidRequest("message must be a non-empty string")

        scenario = self.scenarios.get(scenario_id)
        user_turn = ConversationTurn("user", user_message)

        if session_id is None:
            window = [ConversationTurn("system", scenario.system_instruction), user_turn]
            text = await self._generate(window, user_message, session_id)
            return Reply(text, scenario.display_name)

        async with self.store.lock(session_id):
            self.store.ensure(session_id, scenario)
            self.store.append(session_id, user_turn)
            window = self.store.windowed_view(session_id)

            text = await self._generate(window, user_message, session_id)

            self.store.append(session_id, ConversationTurn("assistant", text))

        return Reply(text, scenario.display_name)

    async def _generate(
        self,
        window: Sequence[ConversationTurn],
        user_message: str,
        session_id: Optional[str],
    ) -> str:
        for provider in self.providers:
            start_time = time.time()
            try:
                text = await provider.complete(window)
                if not isinstance(text, str) or not text.strip():
                    raise ProviderError("empty reply")
            except ProviderError as e:
                logger.warning(
                    "Completion provider failed",
                    provider=provider.name,
                    session_id=session_id,
                    error=str(e),
                )
                self._record_error(provider, e)
                continue
            except Exception as e:
                logger.warning(
                    "Completion provider raised unexpectedly",
                    provider=provider.name,
                    session_id=session_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                self._record_error(provider, e)
                continue

            latency_ms = (time.time() - start_time) * 1000
            logger.info(
                "Completion succeeded",
                provider=provider.name,
                session_id=session_id,
                latency_ms=round(latency_ms, 1),
            )
            if self.metrics:
                self.metrics.record_provider_latency(provider.name, latency_ms)
                self.metrics.record_completion()
            return text

        logger.warning(
            "All completion providers failed, using degraded reply",
            session_id=session_id,
            providers=[p.name for p in self.providers],
        )
        if self.metrics:
            self.metrics.record_degraded_reply()
            self.metrics.record_completion()
        return degraded_reply(user_message)

    def _record_error(self, provider: CompletionProvider, error: Exception) -> None:
        if self.metrics:
            self.metrics.record_provider_error(
                provider.name, str(error), {"error_type": type(error).__name__}
            )

    async def aclose(self) -> None:
        """Release provider resources."""
        for provider in self.providers:
            try:
                await provider.aclose()
            except Exception as e:
                logger.error("Error closing provider", provider=provider.name, error=str(e))

    def get_status(self) -> dict:
        return {
            "providers": [provider.get_status() for provider in self.providers],
            "sessions": len(self.store),
            "scenarios": self.scenarios.ids(),
        }
