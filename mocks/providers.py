"""
Mock provider implementations for testing the voice agent.
"""

import asyncio
import sys
import time
from typing import AsyncIterator, List, Optional, Sequence, Union

from voice_agent.providers.completion.base import CompletionProvider, ProviderError
from voice_agent.providers.stt.base import CaptureError, SpeechCapture, Transcript
from voice_agent.providers.tts.base import SpeechSynthesis
from voice_agent.state.session_store import ConversationTurn


# One scripted capture event: a string is a final transcript, None ends the
# utterance silently, and an exception is raised from the listener.
CaptureEvent = Union[str, Transcript, Exception, None]


class MockCompletionProvider(CompletionProvider):
    """Mock completion provider with scripted replies or failures."""

    def __init__(
        self,
        name: str = "mock",
        replies: Optional[Sequence[Union[str, Exception]]] = None,
        delay: float = 0.0,
    ):
        self.name = name
        self.api_key = "mock"
        self.mock_replies = list(replies) if replies is not None else [
            "I'm doing great, thank you for asking! How can I help you today?",
            "I'd be happy to help you with that. What would you like to do?",
            "Could you tell me a little more about it?",
        ]
        self.delay = delay
        self.windows: List[List[ConversationTurn]] = []
        self.reply_index = 0
        self.closed = False

    def initialize(self) -> None:
        """Initialize mock completion provider."""
        pass

    async def complete(self, window: Sequence[ConversationTurn]) -> str:
        self.windows.append(list(window))
        if self.delay:
            await asyncio.sleep(self.delay)

        reply = self.mock_replies[self.reply_index % len(self.mock_replies)]
        self.reply_index += 1
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self) -> None:
        self.closed = True

    def get_status(self) -> dict:
        """Get mock completion provider status."""
        return {
            "provider": self.name,
            "replies_generated": self.reply_index,
        }


class FailingCompletionProvider(MockCompletionProvider):
    """Completion provider that always fails."""

    def __init__(self, name: str = "failing", error: Optional[Exception] = None):
        super().__init__(name, replies=[error or ProviderError(f"{name} unavailable")])


class ScriptedCapture(SpeechCapture):
    """
    Capture provider driven by the test.

    Each call to ``listen`` waits for the next utterance fed with ``feed``
    and replays its events.
    """

    def __init__(self, open_error: Optional[Exception] = None):
        self.open_error = open_error
        self.open_count = 0
        self.close_count = 0
        self.listen_count = 0
        self.listening = False
        self._utterances: asyncio.Queue = asyncio.Queue()

    def feed(self, *events: CaptureEvent) -> None:
        """Queue one utterance made of the given events."""
        self._utterances.put_nowait(list(events))

    async def open(self) -> None:
        self.open_count += 1
        if self.open_error is not None:
            raise self.open_error

    async def listen(self) -> AsyncIterator[Transcript]:
        self.listen_count += 1
        self.listening = True
        try:
            events = await self._utterances.get()
            for event in events:
                if event is None:
                    return
                if isinstance(event, Exception):
                    raise event
                if isinstance(event, Transcript):
                    yield event
                else:
                    yield Transcript(text=event, is_final=True, timestamp=time.time())
        finally:
            self.listening = False

    def close(self) -> None:
        self.close_count += 1

    def get_status(self) -> dict:
        return {
            "provider": "scripted",
            "open_count": self.open_count,
            "close_count": self.close_count,
            "listening": self.listening,
        }


class RecordingSynthesis(SpeechSynthesis):
    """
    Synthesis provider that records what it was asked to say.

    With ``auto_finish`` disabled each utterance plays until ``finish`` or
    ``cancel`` is called.
    """

    def __init__(self, auto_finish: bool = True, open_error: Optional[Exception] = None):
        self.auto_finish = auto_finish
        self.open_error = open_error
        self.spoken: List[str] = []
        self.fail_next: Optional[Exception] = None
        self.open_count = 0
        self.close_count = 0
        self.cancel_count = 0
        self.is_playing = False
        self._done: Optional[asyncio.Event] = None

    async def open(self) -> None:
        self.open_count += 1
        if self.open_error is not None:
            raise self.open_error

    async def speak(self, text: str) -> None:
        self.spoken.append(text)
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error

        self.is_playing = True
        try:
            if self.auto_finish:
                await asyncio.sleep(0)
            else:
                self._done = asyncio.Event()
                await self._done.wait()
        finally:
            self.is_playing = False

    def finish(self) -> None:
        """End the utterance currently playing."""
        if self._done is not None:
            self._done.set()

    def cancel(self) -> None:
        self.cancel_count += 1
        self.finish()

    def close(self) -> None:
        self.close_count += 1

    def get_status(self) -> dict:
        return {
            "provider": "recording",
            "is_playing": self.is_playing,
            "utterances": len(self.spoken),
        }


class KeyboardCapture(SpeechCapture):
    """Capture provider reading typed lines from stdin."""

    def __init__(self, prompt: str = "You: "):
        self.prompt = prompt
        self.end_of_input = False
        self.lines_read = 0

    async def open(self) -> None:
        pass

    async def listen(self) -> AsyncIterator[Transcript]:
        if self.end_of_input:
            raise CaptureError("Input closed")
        try:
            line = await asyncio.to_thread(input, self.prompt)
        except EOFError:
            self.end_of_input = True
            return

        self.lines_read += 1
        if line.strip():
            yield Transcript(text=line.strip(), is_final=True, timestamp=time.time())

    def close(self) -> None:
        pass

    def get_status(self) -> dict:
        return {
            "provider": "keyboard",
            "lines_read": self.lines_read,
            "end_of_input": self.end_of_input,
        }


class ConsoleSynthesis(SpeechSynthesis):
    """Synthesis provider printing replies to stdout."""

    def __init__(self, prefix: str = "Agent: "):
        self.prefix = prefix
        self.utterances = 0

    async def open(self) -> None:
        pass

    async def speak(self, text: str) -> None:
        self.utterances += 1
        print(f"{self.prefix}{text}", file=sys.stdout, flush=True)

    def cancel(self) -> None:
        pass

    def close(self) -> None:
        pass

    def get_status(self) -> dict:
        return {
            "provider": "console",
            "utterances": self.utterances,
        }
