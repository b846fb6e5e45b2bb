"""Tests for completion providers and the provider registry."""

import json
import httpx
import pytest
from unittest.mock import AsyncMock, Mock, patch

from voice_agent.providers.completion.base import ProviderError, split_system
from voice_agent.providers.completion.gemini import GeminiProvider
from voice_agent.providers.completion.openai import OpenAIProvider
from voice_agent.providers.registry import ProviderRegistry
from voice_agent.state.session_store import ConversationTurn


WINDOW = [
    ConversationTurn("system", "You are a scheduler."),
    ConversationTurn("user", "Hi"),
    ConversationTurn("assistant", "Hello! Your name?"),
    ConversationTurn("user", "Sam"),
]


class TestSplitSystem:
    def test_split(self):
        instruction, turns = split_system(WINDOW)

        assert instruction == "You are a scheduler."
        assert [turn.role for turn in turns] == ["user", "assistant", "user"]

    def test_window_without_system_turn(self):
        with pytest.raises(ProviderError):
            split_system(WINDOW[1:])


class TestGeminiProvider:
    """Test cases for the Gemini provider."""

    def test_initialization_requires_api_key(self):
        provider = GeminiProvider(api_key=None)

        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            provider.initialize()

    @patch("voice_agent.providers.completion.gemini.genai")
    def test_successful_initialization(self, mock_genai):
        provider = GeminiProvider(api_key="test-key")

        provider.initialize()

        mock_genai.configure.assert_called_once_with(api_key="test-key")
        assert provider.get_status()["initialized"] is True

    @pytest.mark.asyncio
    async def test_complete_requires_initialization(self):
        provider = GeminiProvider(api_key="test-key")

        with pytest.raises(ProviderError, match="not initialized"):
            await provider.complete(WINDOW)

    @pytest.mark.asyncio
    @patch("voice_agent.providers.completion.gemini.genai")
    async def test_complete_maps_roles_and_instruction(self, mock_genai):
        """Test the system turn becomes the system instruction."""
        mock_model = Mock()
        mock_model.generate_content_async = AsyncMock(return_value=Mock(text="Thanks Sam."))
        mock_genai.GenerativeModel.return_value = mock_model

        provider = GeminiProvider(api_key="test-key", timeout=12.0)
        provider.initialize()
        reply = await provider.complete(WINDOW)

        assert reply == "Thanks Sam."
        mock_genai.GenerativeModel.assert_called_once_with(
            model_name="gemini-1.5-flash", system_instruction="You are a scheduler."
        )
        contents = mock_model.generate_content_async.call_args.args[0]
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert contents[-1]["parts"] == ["Sam"]
        kwargs = mock_model.generate_content_async.call_args.kwargs
        assert kwargs["request_options"] == {"timeout": 12.0}

    @pytest.mark.asyncio
    @patch("voice_agent.providers.completion.gemini.genai")
    async def test_api_error_becomes_provider_error(self, mock_genai):
        mock_model = Mock()
        mock_model.generate_content_async = AsyncMock(side_effect=RuntimeError("quota"))
        mock_genai.GenerativeModel.return_value = mock_model

        provider = GeminiProvider(api_key="test-key")
        provider.initialize()

        with pytest.raises(ProviderError, match="quota"):
            await provider.complete(WINDOW)

    @pytest.mark.asyncio
    @patch("voice_agent.providers.completion.gemini.genai")
    async def test_empty_text_is_an_error(self, mock_genai):
        mock_model = Mock()
        mock_model.generate_content_async = AsyncMock(return_value=Mock(text=""))
        mock_genai.GenerativeModel.return_value = mock_model

        provider = GeminiProvider(api_key="test-key")
        provider.initialize()

        with pytest.raises(ProviderError, match="empty"):
            await provider.complete(WINDOW)


def openai_transport(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestOpenAIProvider:
    """Test cases for the OpenAI provider."""

    def test_initialization_requires_api_key(self):
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            OpenAIProvider(api_key=None).initialize()

    @pytest.mark.asyncio
    async def test_complete_posts_full_window(self):
        """Test the request body carries the system message first."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"choices": [{"message": {"content": "Nice to meet you, Sam."}}]}
            )

        provider = OpenAIProvider(api_key="sk-test", client=openai_transport(handler))
        provider.initialize()
        reply = await provider.complete(WINDOW)

        assert reply == "Nice to meet you, Sam."
        assert seen["url"] == "https://api.openai.com/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o-mini"
        assert seen["body"]["max_tokens"] == 150
        assert seen["body"]["messages"] == [turn.to_dict() for turn in WINDOW]

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        provider = OpenAIProvider(
            api_key="sk-test",
            client=openai_transport(lambda request: httpx.Response(429, json={})),
        )
        provider.initialize()

        with pytest.raises(ProviderError, match="429"):
            await provider.complete(WINDOW)

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        provider = OpenAIProvider(api_key="sk-test", client=openai_transport(handler))
        provider.initialize()

        with pytest.raises(ProviderError, match="request failed"):
            await provider.complete(WINDOW)

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        provider = OpenAIProvider(
            api_key="sk-test",
            client=openai_transport(lambda request: httpx.Response(200, json={"choices": []})),
        )
        provider.initialize()

        with pytest.raises(ProviderError, match="Malformed"):
            await provider.complete(WINDOW)

    @pytest.mark.asyncio
    async def test_empty_content(self):
        body = {"choices": [{"message": {"content": ""}}]}
        provider = OpenAIProvider(
            api_key="sk-test",
            client=openai_transport(lambda request: httpx.Response(200, json=body)),
        )
        provider.initialize()

        with pytest.raises(ProviderError, match="empty"):
            await provider.complete(WINDOW)

    @pytest.mark.asyncio
    async def test_aclose_keeps_injected_client(self):
        client = openai_transport(lambda request: httpx.Response(200))
        provider = OpenAIProvider(api_key="sk-test", client=client)

        await provider.aclose()

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_aclose_owned_client(self):
        provider = OpenAIProvider(api_key="sk-test", base_url="http://localhost:9/v1/")
        provider.initialize()
        assert provider.url == "http://localhost:9/v1/chat/completions"

        await provider.aclose()

        assert provider.client is None


class TestProviderRegistry:
    """Test provider registration and chain building."""

    def setup_method(self):
        self.registry = ProviderRegistry()

    def test_register_and_list(self):
        self.registry.register_completion_provider("openai", OpenAIProvider)
        self.registry.register_capture_provider("fake", lambda **kwargs: Mock())
        self.registry.register_synthesis_provider("fake", lambda **kwargs: Mock())

        assert self.registry.list_completion_providers() == ["openai"]
        assert self.registry.list_capture_providers() == ["fake"]
        assert self.registry.list_synthesis_providers() == ["fake"]

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown completion provider"):
            self.registry.get_completion_provider("nope")
        with pytest.raises(ValueError, match="Unknown capture provider"):
            self.registry.get_capture_provider("nope")
        with pytest.raises(ValueError, match="Unknown synthesis provider"):
            self.registry.get_synthesis_provider("nope")

    def test_config_getter_supplies_kwargs(self):
        self.registry.register_completion_provider(
            "openai", OpenAIProvider, lambda: {"api_key": "sk-config", "model": "gpt-test"}
        )

        provider = self.registry.get_completion_provider("openai", model="override")

        assert provider.api_key == "sk-config"
        assert provider.model == "override"

    def test_factory_receives_config(self):
        factory = Mock()
        self.registry.register_capture_provider("fake", factory, lambda: {"model": "tiny"})

        self.registry.get_capture_provider("fake")

        factory.assert_called_once_with(model="tiny")

    @patch("voice_agent.providers.completion.gemini.genai")
    def test_build_chain_skips_unconfigured(self, mock_genai):
        """Test providers without a key are left out, order is kept."""
        self.registry.register_completion_provider(
            "gemini", GeminiProvider, lambda: {"api_key": "g-key"}
        )
        self.registry.register_completion_provider(
            "openai", OpenAIProvider, lambda: {"api_key": None}
        )

        chain = self.registry.build_completion_chain(["openai", "gemini", "unknown"])

        assert [provider.name for provider in chain] == ["gemini"]
        mock_genai.configure.assert_called_once_with(api_key="g-key")

    @pytest.mark.asyncio
    async def test_build_chain_order(self):
        self.registry.register_completion_provider(
            "openai", OpenAIProvider, lambda: {"api_key": "sk"}
        )
        with patch("voice_agent.providers.completion.gemini.genai"):
            self.registry.register_completion_provider(
                "gemini", GeminiProvider, lambda: {"api_key": "g"}
            )
            chain = self.registry.build_completion_chain(["gemini", "openai"])

        assert [provider.name for provider in chain] == ["gemini", "openai"]
        await chain[1].aclose()

    def test_clear(self):
        self.registry.register_completion_provider("openai", OpenAIProvider)
        self.registry.clear()

        assert self.registry.list_completion_providers() == []

    def test_global_registry_has_builtin_providers(self):
        from voice_agent.providers import registry

        assert set(registry.list_completion_providers()) == {"gemini", "openai"}
        assert registry.list_capture_providers() == ["whisperkit"]
        assert registry.list_synthesis_providers() == ["elevenlabs"]

    def test_register_builtin_providers_on_fresh_registry(self):
        from voice_agent.providers import register_builtin_providers

        register_builtin_providers(self.registry)

        assert self.registry.list_completion_providers() == ["gemini", "openai"]
        assert self.registry.list_capture_providers() == ["whisperkit"]
        assert self.registry.list_synthesis_providers() == ["elevenlabs"]
