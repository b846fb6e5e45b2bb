"""Speech synthesis providers."""


def create_elevenlabs(**kwargs):
    from .elevenlabs import ElevenLabsSynthesis
    return ElevenLabsSynthesis(**kwargs)


def register_providers(target):
    """Register the synthesis providers."""
    from ...config.settings import settings

    target.register_synthesis_provider(
        "elevenlabs",
        create_elevenlabs,
        lambda: settings.get_provider_config("elevenlabs"),
    )
