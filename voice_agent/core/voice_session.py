"""
Voice session controller.

Sequences microphone capture, chat requests and speech playback for one
conversation at a time. Everything runs on a single asyncio event loop:
capture, the chat request and speech each run as their own task, and every
task re-checks the session epoch when it resumes so that work belonging to
a stopped session never touches the current one.
"""

import asyncio
import contextlib
import time
import uuid
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set, Tuple
import structlog

from .chat_client import ChatClient, NetworkError
from ..config.settings import DEFAULT_WELCOME_MESSAGE
from ..providers.stt.base import (
    CaptureError,
    PermissionDenied,
    SpeechCapture,
    TransientCaptureError,
    UnsupportedPlatform,
)
from ..providers.tts.base import SpeechSynthesis


logger = structlog.get_logger()


class SessionPhase(str, Enum):
    """Phases of a voice session. ``IDLE`` also means disconnected."""

    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    ERROR = "error"

    @property
    def connected(self) -> bool:
        return self in (SessionPhase.LISTENING, SessionPhase.PROCESSING, SessionPhase.SPEAKING)


@dataclass(frozen=True)
class VoiceSessionSnapshot:
    """Immutable view of the session handed to observers."""

    phase: SessionPhase
    session_id: Optional[str]
    scenario_id: Optional[str]
    user_transcript: str
    agent_transcript: str
    debug_log: Tuple[str, ...]
    error: Optional[str]
    capture_armed: bool
    chat_in_flight: bool

    @property
    def connected(self) -> bool:
        return self.phase.connected


Subscriber = Callable[[VoiceSessionSnapshot], None]


def _cancel(task: Optional[asyncio.Task]) -> None:
    """Cancel a task unless it is finished or is the caller itself."""
    if task is None or task.done():
        return
    try:
        current = asyncio.current_task()
    except RuntimeError:
        current = None
    if task is not current:
        task.cancel()


class VoiceSessionController:
    """
    Client-side state machine for a spoken conversation.

    Invariants:
        - capture is armed only while listening
        - at most one chat request is in flight
        - the microphone is released exactly once per session
    """

    def __init__(
        self,
        capture: SpeechCapture,
        synthesis: SpeechSynthesis,
        chat: ChatClient,
        welcome_message: str = DEFAULT_WELCOME_MESSAGE,
        rearm_delay: float = 0.2,
        debug_log_size: int = 3,
    ):
        self.capture = capture
        self.synthesis = synthesis
        self.chat = chat
        self.welcome_message = welcome_message
        self.rearm_delay = rearm_delay

        self.phase = SessionPhase.IDLE
        self.session_id: Optional[str] = None
        self.scenario_id: Optional[str] = None
        self.user_transcript = ""
        self.agent_transcript = ""
        self.debug_log: deque = deque(maxlen=debug_log_size)
        self.error: Optional[str] = None

        self._epoch = 0
        self._mic_open = False
        self._synthesis_open = False
        self._capture_task: Optional[asyncio.Task] = None
        self._chat_task: Optional[asyncio.Task] = None
        self._speech_task: Optional[asyncio.Task] = None
        self._rearm_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._subscribers: List[Subscriber] = []
        self._start_lock = asyncio.Lock()

    # Observation

    @property
    def capture_armed(self) -> bool:
        return self._capture_task is not None and not self._capture_task.done()

    @property
    def chat_in_flight(self) -> bool:
        return self._chat_task is not None and not self._chat_task.done()

    @property
    def connected(self) -> bool:
        return self.phase.connected

    def snapshot(self) -> VoiceSessionSnapshot:
        return VoiceSessionSnapshot(
            phase=self.phase,
            session_id=self.session_id,
            scenario_id=self.scenario_id,
            user_transcript=self.user_transcript,
            agent_transcript=self.agent_transcript,
            debug_log=tuple(self.debug_log),
            error=self.error,
            capture_armed=self.capture_armed,
            chat_in_flight=self.chat_in_flight,
        )

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call ``callback`` with a snapshot after every change. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error("Voice session subscriber failed", error=str(e))

    def _log(self, message: str) -> None:
        self.debug_log.appendleft(f"{time.strftime('%H:%M:%S')}: {message}")
        logger.debug("Voice session event", session_id=self.session_id, entry=message)

    def _live(self, epoch: int) -> bool:
        return epoch == self._epoch and self.phase.connected

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Voice session task failed",
                session_id=self.session_id,
                error=str(task.exception()),
            )

    # Lifecycle

    async def start(self, scenario_id: Optional[str] = None) -> Optional[str]:
        """
        Start a new session, stopping any previous one.

        Returns:
            The new session id, or ``None`` if ``stop`` was called while the
            devices were being opened

        Raises:
            PermissionDenied: If microphone access is refused
            UnsupportedPlatform: If capture or synthesis is unavailable
        """
        self.stop()
        epoch = self._epoch
        # An earlier start still opening devices sees the new epoch and
        # releases them before this one opens its own
        async with self._start_lock:
            if epoch != self._epoch:
                return None
            return await self._open_session(scenario_id, epoch)

    async def _open_session(self, scenario_id: Optional[str], epoch: int) -> Optional[str]:
        self.scenario_id = scenario_id
        self.session_id = None
        self.user_transcript = ""
        self.agent_transcript = ""
        self.error = None
        self._log("Waking up Microphone...")
        self._notify()

        try:
            await self.capture.open()
        except PermissionDenied as e:
            self._open_failed(epoch, "Microphone access denied.", e)
            raise
        except UnsupportedPlatform as e:
            self._open_failed(epoch, f"Speech recognition not supported: {e}", e)
            raise
        except CaptureError as e:
            self._open_failed(epoch, f"Microphone error: {e}", e)
            raise
        if epoch != self._epoch:
            self.capture.close()
            return None
        self._mic_open = True

        try:
            await self.synthesis.open()
        except UnsupportedPlatform as e:
            self._open_failed(epoch, f"Speech synthesis not supported: {e}", e)
            raise
        if epoch != self._epoch:
            self.synthesis.close()
            return None
        self._synthesis_open = True

        self.session_id = uuid.uuid4().hex[:12]
        self.phase = SessionPhase.SPEAKING
        self.agent_transcript = self.welcome_message
        logger.info("Voice session started", session_id=self.session_id, scenario_id=scenario_id)
        self._notify()
        self._speak(self.welcome_message, epoch)
        return self.session_id

    def _open_failed(self, epoch: int, message: str, error: Exception) -> None:
        if epoch != self._epoch:
            return
        logger.error("Failed to open voice session", error=str(error), code=getattr(error, "code", None))
        self._fail(message)

    def stop(self) -> None:
        """
        End the session. Safe to call at any time and any number of times.

        A chat request still in flight is left to finish; its reply is
        discarded.
        """
        self._epoch += 1
        holding = (
            self._mic_open
            or self._synthesis_open
            or self.phase is not SessionPhase.IDLE
            or self.capture_armed
            or self._speech_task is not None
            or self._rearm_task is not None
        )
        if not holding:
            return

        self._log("Stopping session...")
        _cancel(self._capture_task)
        _cancel(self._speech_task)
        _cancel(self._rearm_task)
        self._capture_task = None
        self._speech_task = None
        self._rearm_task = None
        self._chat_task = None

        if self._synthesis_open:
            self._synthesis_open = False
            try:
                self.synthesis.cancel()
                self.synthesis.close()
            except Exception as e:
                logger.error("Error closing synthesis", error=str(e))

        if self._mic_open:
            self._mic_open = False
            try:
                self.capture.close()
            except Exception as e:
                logger.error("Error releasing microphone", error=str(e))

        logger.info("Voice session stopped", session_id=self.session_id)
        self.session_id = None
        self.user_transcript = ""
        self.agent_transcript = ""
        self.phase = SessionPhase.IDLE
        self._notify()

    def _fail(self, message: str) -> None:
        self.stop()
        self.phase = SessionPhase.ERROR
        self.error = message
        self._log(message)
        self._notify()

    async def aclose(self) -> None:
        """Stop the session and wait for its remaining tasks."""
        self.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "VoiceSessionController":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # Capture

    def _arm(self, epoch: int) -> None:
        if not self._live(epoch) or self.phase is not SessionPhase.LISTENING:
            return
        if self.capture_armed or self.chat_in_flight:
            return
        self._capture_task = self._spawn(self._run_capture(epoch))
        self._log("Listening...")
        self._notify()

    def _schedule_rearm(self, epoch: int) -> None:
        if self._rearm_task is not None and not self._rearm_task.done():
            return
        self._rearm_task = self._spawn(self._rearm_after_delay(epoch))

    async def _rearm_after_delay(self, epoch: int) -> None:
        await asyncio.sleep(self.rearm_delay)
        if self._rearm_task is asyncio.current_task():
            self._rearm_task = None
        self._arm(epoch)

    async def _run_capture(self, epoch: int) -> None:
        final_text = None
        try:
            async with contextlib.aclosing(self.capture.listen()) as transcripts:
                async for transcript in transcripts:
                    if not self._live(epoch):
                        return
                    if transcript.is_final:
                        final_text = transcript.text
                        break
                    self.user_transcript = transcript.text
                    self._notify()
        except PermissionDenied as e:
            if self._live(epoch):
                self._fail("Microphone access denied.")
            logger.error("Microphone permission revoked", error=str(e))
            return
        except TransientCaptureError as e:
            if self._live(epoch):
                logger.debug("Capture ended without speech", code=e.code)
        except CaptureError as e:
            if self._live(epoch):
                logger.warning("Capture error", error=str(e), code=e.code)
                self.error = f"Microphone error: {e}"
                self._log(self.error)
        except Exception as e:
            if self._live(epoch):
                logger.error("Capture failed unexpectedly", error=str(e), error_type=type(e).__name__)
                self.error = f"Microphone error: {e}"
                self._log(self.error)

        if not self._live(epoch):
            return
        if self._capture_task is asyncio.current_task():
            self._capture_task = None

        if final_text is not None and final_text.strip():
            self._log(f'You said: "{final_text}"')
            self.user_transcript = final_text
            self._submit(final_text, epoch)
        else:
            self._notify()
            self._schedule_rearm(epoch)

    # Chat

    def submit(self, text: str) -> bool:
        """
        Submit a finalized utterance, such as typed input.

        Returns:
            True if a chat request was issued, False if the text was blank,
            no session is running, or a request is already in flight
        """
        if not isinstance(text, str) or not text.strip():
            return False
        return self._submit(text, self._epoch)

    def _submit(self, text: str, epoch: int) -> bool:
        if not self._live(epoch):
            return False
        if self.phase is SessionPhase.PROCESSING or self.chat_in_flight:
            logger.debug("Dropping utterance while processing", session_id=self.session_id)
            return False

        _cancel(self._capture_task)
        _cancel(self._rearm_task)
        self._capture_task = None
        self._rearm_task = None
        if self._speech_task is not None:
            _cancel(self._speech_task)
            self._speech_task = None
            self.synthesis.cancel()

        self.user_transcript = text
        self.error = None
        self.phase = SessionPhase.PROCESSING
        self._log(f'Processing: "{text}"')
        self._chat_task = self._spawn(self._run_chat(text, epoch, self.session_id))
        self._notify()
        return True

    async def _run_chat(self, text: str, epoch: int, session_id: Optional[str]) -> None:
        try:
            reply = await self.chat.send(self.scenario_id, text, session_id)
        except NetworkError as e:
            logger.warning("Chat request failed", session_id=session_id, error=str(e))
            self._chat_failed(epoch, str(e))
            return
        except Exception as e:
            logger.error(
                "Chat request failed unexpectedly",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._chat_failed(epoch, str(e))
            return

        if not self._live(epoch):
            logger.debug("Discarding reply for stopped session", session_id=session_id)
            return

        self._chat_task = None
        self.agent_transcript = reply.text
        self.phase = SessionPhase.SPEAKING
        self._notify()
        self._speak(reply.text, epoch)

    def _chat_failed(self, epoch: int, error: str) -> None:
        if not self._live(epoch):
            return
        self._chat_task = None
        self.error = error
        self._log(f"Chat error: {error}")
        self._resume_listening(epoch)

    # Speech

    def _speak(self, text: str, epoch: int) -> None:
        _cancel(self._speech_task)
        self.synthesis.cancel()
        self._speech_task = self._spawn(self._run_speech(text, epoch))

    async def _run_speech(self, text: str, epoch: int) -> None:
        self._log("Agent speaking...")
        try:
            await self.synthesis.speak(text)
        except Exception as e:
            if not self._live(epoch) or self._speech_task is not asyncio.current_task():
                return
            logger.warning(
                "Speech synthesis failed",
                session_id=self.session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            self._speech_task = None
            self.error = f"Speech error: {e}"
            self._resume_listening(epoch)
            return

        if not self._live(epoch) or self._speech_task is not asyncio.current_task():
            return
        self._speech_task = None
        self._log("Agent done.")
        if self.phase is SessionPhase.PROCESSING:
            return
        self._resume_listening(epoch)

    def _resume_listening(self, epoch: int) -> None:
        self.phase = SessionPhase.LISTENING
        self._notify()
        self._arm(epoch)
