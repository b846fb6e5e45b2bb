"""Completion providers."""


def register_providers(target):
    """Register the Gemini and OpenAI completion providers."""
    from ...config.settings import settings
    from .gemini import GeminiProvider
    from .openai import OpenAIProvider

    target.register_completion_provider(
        "gemini", GeminiProvider, lambda: settings.get_provider_config("gemini")
    )
    target.register_completion_provider(
        "openai", OpenAIProvider, lambda: settings.get_provider_config("openai")
    )
