"""Speech capture providers."""


def create_whisperkit(**kwargs):
    # sounddevice needs PortAudio at import time
    from .whisperkit import WhisperKitCapture
    return WhisperKitCapture(**kwargs)


def register_providers(target):
    """Register the capture providers."""
    from ...config.settings import settings

    target.register_capture_provider(
        "whisperkit",
        create_whisperkit,
        lambda: settings.get_provider_config("whisperkit"),
    )
