"""WhisperKit capture provider: sounddevice microphone plus whisperkit-cli."""

import asyncio
import os
import shutil
import tempfile
import time
from typing import AsyncIterator, List, Optional
import numpy as np
import sounddevice as sd
import soundfile as sf
import structlog

from .base import (
    CaptureError,
    PermissionDenied,
    SpeechCapture,
    Transcript,
    TransientCaptureError,
    UnsupportedPlatform,
)


logger = structlog.get_logger()


class WhisperKitCapture(SpeechCapture):
    """
    Records one utterance at a time from the microphone and transcribes it
    with the WhisperKit CLI.

    The end of an utterance is detected from the RMS level of each audio
    block: capture stops after ``silence_duration`` seconds below
    ``speech_threshold`` once speech has been heard.
    """

    def __init__(
        self,
        whisperkit_path: str = "whisperkit-cli",
        model: str = "large-v3_turbo",
        compute_units: str = "cpuAndNeuralEngine",
        sample_rate: int = 16000,
        channels: int = 1,
        block_duration: float = 0.1,
        speech_threshold: float = 0.02,
        silence_duration: float = 0.8,
        no_speech_timeout: float = 8.0,
        max_utterance: float = 30.0,
    ):
        self.whisperkit_path = whisperkit_path
        self.model = model
        self.compute_units = compute_units
        self.sample_rate = sample_rate
        self.channels = channels
        self.block_size = int(sample_rate * block_duration)
        self.block_duration = block_duration
        self.speech_threshold = speech_threshold
        self.silence_duration = silence_duration
        self.no_speech_timeout = no_speech_timeout
        self.max_utterance = max_utterance

        self.audio_stream: Optional[sd.InputStream] = None
        self.is_recording = False
        self.utterance_count = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._blocks: Optional[asyncio.Queue] = None

    async def open(self) -> None:
        """Check the WhisperKit CLI and open the microphone stream."""
        logger.info("Opening WhisperKit capture", model=self.model)

        if shutil.which(self.whisperkit_path) is None:
            raise UnsupportedPlatform(
                f"WhisperKit CLI not found at {self.whisperkit_path}"
            )

        self._loop = asyncio.get_running_loop()
        try:
            self.audio_stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                blocksize=self.block_size,
                callback=self.audio_callback,
            )
            self.audio_stream.start()
        except sd.PortAudioError as e:
            self.audio_stream = None
            raise PermissionDenied(f"Microphone unavailable: {e}") from e

        logger.info("Microphone stream opened", sample_rate=self.sample_rate)

    def audio_callback(self, indata: np.ndarray, frames: int, time_info, status) -> None:
        """Forward audio blocks to the event loop while an utterance is recorded."""
        if status:
            logger.warning("Audio callback status", status=str(status))
        if not self.is_recording or self._loop is None or self._blocks is None:
            return

        if indata.shape[1] > 1:
            audio_data = np.mean(indata, axis=1)
        else:
            audio_data = indata.flatten()
        self._loop.call_soon_threadsafe(self._blocks.put_nowait, audio_data.copy())

    async def listen(self) -> AsyncIterator[Transcript]:
        if self.audio_stream is None:
            raise CaptureError("Microphone not open")

        self._blocks = asyncio.Queue()
        self.is_recording = True
        try:
            audio = await self._record_utterance()
        finally:
            self.is_recording = False
            self._blocks = None

        if audio is None:
            raise TransientCaptureError("No speech detected")

        text = await self._transcribe(audio)
        self.utterance_count += 1
        if text:
            yield Transcript(text=text, is_final=True, timestamp=time.time())

    async def _record_utterance(self) -> Optional[np.ndarray]:
        blocks: List[np.ndarray] = []
        started_at = time.monotonic()
        speech_heard = False
        silent_for = 0.0

        while True:
            elapsed = time.monotonic() - started_at
            if not speech_heard and elapsed > self.no_speech_timeout:
                return None
            if elapsed > self.max_utterance:
                break

            try:
                block = await asyncio.wait_for(self._blocks.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            level = float(np.sqrt(np.mean(np.square(block)))) if len(block) else 0.0
            if level >= self.speech_threshold:
                speech_heard = True
                silent_for = 0.0
            elif speech_heard:
                silent_for += len(block) / self.sample_rate

            if speech_heard:
                blocks.append(block)
                if silent_for >= self.silence_duration:
                    break

        return np.concatenate(blocks) if blocks else None

    async def _transcribe(self, audio: np.ndarray) -> str:
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as temp_file:
            temp_filename = temp_file.name

        cmd = [
            self.whisperkit_path,
            "transcribe",
            "--audio-path",
            temp_filename,
            "--model",
            self.model,
            "--audio-encoder-compute-units",
            self.compute_units,
            "--text-decoder-compute-units",
            self.compute_units,
        ]

        process = None
        try:
            await asyncio.to_thread(sf.write, temp_filename, audio, self.sample_rate)
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            if process and process.returncode is None:
                process.kill()
            raise
        except OSError as e:
            raise CaptureError(f"Failed to run WhisperKit: {e}") from e
        finally:
            try:
                os.unlink(temp_filename)
            except OSError:
                pass

        if process.returncode != 0:
            logger.error(
                "WhisperKit process failed",
                return_code=process.returncode,
                stderr=stderr.decode(errors="replace"),
            )
            raise CaptureError(f"WhisperKit failed with code {process.returncode}")

        lines = stdout.decode(errors="replace").splitlines()
        return " ".join(line.strip() for line in lines if line.strip())

    def close(self) -> None:
        """Stop and release the microphone stream."""
        logger.info("Closing WhisperKit capture")
        self.is_recording = False
        if self.audio_stream:
            try:
                self.audio_stream.stop()
                self.audio_stream.close()
            except Exception as e:
                logger.error("Error stopping audio stream", error=str(e))
            self.audio_stream = None

    def get_status(self) -> dict:
        """Get WhisperKit capture status."""
        return {
            "provider": "whisperkit",
            "model": self.model,
            "microphone_open": self.audio_stream is not None,
            "is_recording": self.is_recording,
            "utterance_count": self.utterance_count,
        }
