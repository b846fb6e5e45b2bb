"""Tests for the completion fallback engine."""

import asyncio
import pytest

from mocks.providers import FailingCompletionProvider, MockCompletionProvider
from voice_agent.core.completion_engine import (
    CompletionFallbackEngine,
    InvalidRequest,
    Reply,
    degraded_reply,
)
from voice_agent.core.scenarios import CALLING_AGENT, CUSTOMER_SUPPORT, create_default_registry
from voice_agent.metrics.collector import MetricsCollector
from voice_agent.state.session_store import SessionStore


def make_engine(*providers, metrics=None):
    store = SessionStore()
    engine = CompletionFallbackEngine(create_default_registry(), store, providers, metrics)
    return engine, store


class TestCompletionFallbackEngine:
    """Test provider fallback and history handling."""

    @pytest.mark.asyncio
    async def test_primary_provider_answers(self):
        primary = MockCompletionProvider("primary", replies=["Sure, what name?"])
        secondary = MockCompletionProvider("secondary", replies=["unused"])
        engine, store = make_engine(primary, secondary)

        reply = await engine.complete("calling_agent", "s1", "Book me in")

        assert reply == Reply("Sure, what name?", CALLING_AGENT.display_name)
        assert len(secondary.windows) == 0
        roles = [turn.role for turn in store.history("s1")]
        assert roles == ["system", "user", "assistant"]

    @pytest.mark.asyncio
    async def test_falls_through_to_secondary(self):
        """Test a failing provider is skipped for the next one."""
        primary = FailingCompletionProvider("primary")
        secondary = MockCompletionProvider("secondary", replies=["From the fallback"])
        engine, _ = make_engine(primary, secondary)

        reply = await engine.complete("calling_agent", "s1", "Hello")

        assert reply.text == "From the fallback"
        assert len(primary.windows) == 1
        assert len(secondary.windows) == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_falls_through(self):
        primary = FailingCompletionProvider("primary", error=RuntimeError("boom"))
        secondary = MockCompletionProvider("secondary", replies=["ok"])
        engine, _ = make_engine(primary, secondary)

        assert (await engine.complete(None, "s1", "Hello")).text == "ok"

    @pytest.mark.asyncio
    async def test_empty_reply_counts_as_failure(self):
        primary = MockCompletionProvider("primary", replies=["   "])
        secondary = MockCompletionProvider("secondary", replies=["real answer"])
        engine, _ = make_engine(primary, secondary)

        assert (await engine.complete(None, "s1", "Hello")).text == "real answer"

    @pytest.mark.asyncio
    async def test_degraded_reply_when_all_fail(self):
        """Test the simulated reply when no provider answers."""
        engine, store = make_engine(
            FailingCompletionProvider("primary"), FailingCompletionProvider("secondary")
        )

        reply = await engine.complete("customer_support", "s1", "My order is late")

        assert reply.text == (
            '[SIMULATED] I\'ve received your message: "My order is late". '
            "Currently, AI providers are unavailable, but your connection is active!"
        )
        assert reply.scenario_display_name == CUSTOMER_SUPPORT.display_name
        # The degraded reply is stored like any other
        assert store.history("s1")[-1].content == reply.text

    @pytest.mark.asyncio
    async def test_degraded_reply_without_providers(self):
        engine, _ = make_engine()

        reply = await engine.complete(None, "s1", "Hi")

        assert reply.text == degraded_reply("Hi")

    @pytest.mark.asyncio
    async def test_each_provider_tried_once(self):
        primary = FailingCompletionProvider("primary")
        engine, _ = make_engine(primary)

        await engine.complete(None, "s1", "Hi")

        assert len(primary.windows) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [None, "", "   ", 42, ["hi"]])
    async def test_invalid_message_rejected(self, message):
        """Test missing or blank messages are rejected before any provider runs."""
        provider = MockCompletionProvider()
        engine, store = make_engine(provider)

        with pytest.raises(InvalidRequest):
            await engine.complete(None, "s1", message)

        assert provider.windows == []
        assert "s1" not in store

    @pytest.mark.asyncio
    async def test_system_turn_comes_from_stored_history(self):
        """Test a scenario switch mid-session keeps the original instruction."""
        provider = MockCompletionProvider(replies=["one", "two"])
        engine, _ = make_engine(provider)

        await engine.complete("calling_agent", "s1", "Hello")
        reply = await engine.complete("customer_support", "s1", "Still me")

        second_window = provider.windows[1]
        assert second_window[0].content == CALLING_AGENT.system_instruction
        # The display name follows the requested scenario
        assert reply.scenario_display_name == CUSTOMER_SUPPORT.display_name

    @pytest.mark.asyncio
    async def test_window_sent_to_provider_is_bounded(self):
        provider = MockCompletionProvider(replies=["ok"])
        engine, store = make_engine(provider)

        for i in range(8):
            await engine.complete(None, "s1", f"message {i}")

        last_window = provider.windows[-1]
        assert len(last_window) == 9
        assert last_window[0].role == "system"
        assert last_window[-1].content == "message 7"
        assert len(store.history("s1")) == 17

    @pytest.mark.asyncio
    async def test_missing_session_is_not_stored(self):
        """Test a request without a session id uses a one-off window."""
        provider = MockCompletionProvider(replies=["ok"])
        engine, store = make_engine(provider)

        await engine.complete("technical_assistant", None, "Help")

        assert len(store) == 0
        assert [turn.role for turn in provider.windows[0]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_concurrent_turns_same_session_serialize(self):
        """Test two turns of one session never interleave."""
        provider = MockCompletionProvider(replies=["first", "second"], delay=0.05)
        engine, store = make_engine(provider)

        await asyncio.gather(
            engine.complete(None, "s1", "A"),
            engine.complete(None, "s1", "B"),
        )

        roles = [turn.role for turn in store.history("s1")]
        assert roles == ["system", "user", "assistant", "user", "assistant"]
        # The second turn saw the first turn's reply
        assert [turn.role for turn in provider.windows[1]] == [
            "system", "user", "assistant", "user",
        ]

    @pytest.mark.asyncio
    async def test_different_sessions_run_in_parallel(self):
        provider = MockCompletionProvider(replies=["ok"], delay=0.1)
        engine, store = make_engine(provider)

        loop = asyncio.get_running_loop()
        started = loop.time()
        await asyncio.gather(*(engine.complete(None, f"s{i}", "Hi") for i in range(5)))

        assert loop.time() - started < 0.4
        assert len(store) == 5

    @pytest.mark.asyncio
    async def test_metrics_recorded(self):
        metrics = MetricsCollector()
        engine, _ = make_engine(
            FailingCompletionProvider("primary"),
            MockCompletionProvider("secondary", replies=["ok"]),
            metrics=metrics,
        )

        await engine.complete(None, "s1", "Hi")
        summary = metrics.get_summary()

        assert summary["total_completions"] == 1
        assert summary["degraded_replies"] == 0
        assert summary["providers"]["primary"]["errors"] == 1
        assert summary["providers"]["secondary"]["latency_ms"]["samples"] == 1

    @pytest.mark.asyncio
    async def test_metrics_count_degraded_replies(self):
        metrics = MetricsCollector()
        engine, _ = make_engine(metrics=metrics)

        await engine.complete(None, None, "Hi")

        assert metrics.get_summary()["degraded_replies"] == 1

    @pytest.mark.asyncio
    async def test_aclose_closes_providers(self):
        primary = MockCompletionProvider("primary")
        engine, _ = make_engine(primary)

        await engine.aclose()

        assert primary.closed

    def test_get_status(self):
        engine, _ = make_engine(MockCompletionProvider("primary"))

        status = engine.get_status()

        assert status["providers"][0]["provider"] == "primary"
        assert status["sessions"] == 0
        assert "calling_agent" in status["scenarios"]