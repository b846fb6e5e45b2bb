"""Base interface for completion providers."""

from abc import ABC, abstractmethod
from typing import List, Sequence, Tuple

from ...state.session_store import ConversationTurn


class ProviderError(Exception):
    """A completion provider could not produce a reply."""


def split_system(window: Sequence[ConversationTurn]) -> Tuple[str, List[ConversationTurn]]:
    """Separate the leading system instruction from the conversational turns."""
    if not window or window[0].role != "system":
        raise ProviderError("Window must start with a system turn")
    return window[0].content, [turn for turn in window[1:] if turn.role != "system"]


class CompletionProvider(ABC):
    """Abstract base class for completion providers.

    A provider receives the windowed history (system turn first) and hands
    the system turn to its API's instruction channel.
    """

    name: str = "base"

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the provider."""
        pass

    @abstractmethod
    async def complete(self, window: Sequence[ConversationTurn]) -> str:
        """
        Produce a reply for the conversation window.

        Args:
            window: System turn followed by the recent conversation

        Returns:
            The reply text

        Raises:
            ProviderError: On any failure (network, auth, quota, malformed response)
        """
        pass

    async def aclose(self) -> None:
        """Release provider resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the provider."""
        pass
