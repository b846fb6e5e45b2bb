"""Base interface for speech synthesis (text-to-speech) providers."""

from abc import ABC, abstractmethod


class SynthesisError(Exception):
    """Rendering or playing an utterance failed."""


class SpeechSynthesis(ABC):
    """Abstract base class for speech synthesis providers."""

    @abstractmethod
    async def open(self) -> None:
        """
        Prepare audio output.

        Raises:
            UnsupportedPlatform: If no text-to-speech capability exists
        """
        pass

    @abstractmethod
    async def speak(self, text: str) -> None:
        """
        Render and play the text, returning once playback has finished.

        Raises:
            SynthesisError: If rendering or playback fails
        """
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Stop any utterance currently playing."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release audio output."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the synthesis provider."""
        pass
