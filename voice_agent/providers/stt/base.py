"""Base interface for speech capture (speech-to-text) providers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Optional


class CaptureError(Exception):
    """A capture session failed. ``code`` classifies the failure."""

    code = "capture-error"

    def __init__(self, message: str = "", code: Optional[str] = None):
        super().__init__(message or self.code)
        if code is not None:
            self.code = code


class PermissionDenied(CaptureError):
    """The platform refused access to the microphone."""

    code = "permission-denied"


class UnsupportedPlatform(CaptureError):
    """No speech capture or synthesis capability is available."""

    code = "unsupported-platform"


class TransientCaptureError(CaptureError):
    """Silence or timeout. Recovered by rearming capture."""

    code = "no-speech"


@dataclass
class Transcript:
    """Represents a transcript segment from capture."""

    text: str
    is_final: bool
    timestamp: float = 0.0
    confidence: Optional[float] = None


class SpeechCapture(ABC):
    """Abstract base class for speech capture providers."""

    @abstractmethod
    async def open(self) -> None:
        """
        Acquire the microphone.

        Raises:
            PermissionDenied: If the platform denies microphone access
            UnsupportedPlatform: If no speech-to-text capability exists
        """
        pass

    @abstractmethod
    def listen(self) -> AsyncIterator[Transcript]:
        """
        Capture one utterance.

        Yields interim transcripts and at most one final transcript. The
        iterator ends without a final transcript when nothing was said.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the microphone."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the capture provider."""
        pass
