"""ElevenLabs synthesis provider with pygame playback."""

import asyncio
from io import BytesIO
from typing import Optional
import pygame
from elevenlabs import VoiceSettings
from elevenlabs.client import ElevenLabs
import structlog

from .base import SpeechSynthesis, SynthesisError
from ..stt.base import UnsupportedPlatform


logger = structlog.get_logger()


class ElevenLabsSynthesis(SpeechSynthesis):
    """
    ElevenLabs synthesis provider.

    Audio is rendered in a worker thread, then played through the pygame
    mixer. ``speak`` returns once playback finishes or is cancelled.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        voice_id: str = "pNInz6obpgDQGcFmaJgB",  # Adam voice
        model_id: str = "eleven_flash_v2_5",
        output_format: str = "mp3_22050_32",
        stability: float = 0.5,
        similarity_boost: float = 0.8,
        style: float = 0.0,
        speed: float = 1.0,
        use_speaker_boost: bool = True,
        poll_interval: float = 0.01,
    ):
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.output_format = output_format
        self.poll_interval = poll_interval

        self.voice_settings = VoiceSettings(
            stability=stability,
            similarity_boost=similarity_boost,
            style=style,
            use_speaker_boost=use_speaker_boost,
            speed=speed,
        )

        self.client: Optional[ElevenLabs] = None
        self.is_playing = False
        self.utterance_count = 0
        self._cancelled = False

    async def open(self) -> None:
        """Create the ElevenLabs client and the pygame mixer."""
        logger.info("Opening ElevenLabs synthesis", voice_id=self.voice_id)

        if not self.api_key:
            raise UnsupportedPlatform("ELEVENLABS_API_KEY environment variable not set")

        self.client = ElevenLabs(api_key=self.api_key)

        try:
            pygame.mixer.pre_init(frequency=22050, size=-16, channels=2, buffer=1024)
            pygame.mixer.init()
        except pygame.error as e:
            self.client = None
            raise UnsupportedPlatform(f"Audio output unavailable: {e}") from e

        logger.info("ElevenLabs synthesis opened")

    def _render(self, text: str) -> bytes:
        audio = self.client.text_to_speech.convert(
            voice_id=self.voice_id,
            text=text,
            model_id=self.model_id,
            output_format=self.output_format,
            voice_settings=self.voice_settings,
        )

        if hasattr(audio, "content"):
            return audio.content  # type: ignore[attr-defined]
        if isinstance(audio, (bytes, bytearray)):
            return bytes(audio)
        # Generator response
        return b"".join(audio)

    async def speak(self, text: str) -> None:
        """Render the text and play it to completion."""
        if not self.client:
            raise SynthesisError("ElevenLabs not opened")

        logger.debug("Generating TTS audio", text_length=len(text))
        self._cancelled = False

        try:
            audio_data = await asyncio.to_thread(self._render, text)
        except Exception as e:
            logger.error("Error generating TTS audio", error=str(e))
            raise SynthesisError(f"ElevenLabs request failed: {e}") from e

        if self._cancelled or not audio_data:
            return

        try:
            pygame.mixer.music.load(BytesIO(audio_data))
            pygame.mixer.music.play()
        except pygame.error as e:
            raise SynthesisError(f"Playback failed: {e}") from e

        self.is_playing = True
        self.utterance_count += 1
        try:
            while pygame.mixer.music.get_busy() and not self._cancelled:
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            pygame.mixer.music.stop()
            raise
        finally:
            self.is_playing = False

        logger.debug("Audio playback completed", total_bytes=len(audio_data))

    def cancel(self) -> None:
        """Stop current audio playback."""
        self._cancelled = True
        if self.is_playing:
            logger.debug("Stopping audio playback")
            pygame.mixer.music.stop()
            self.is_playing = False

    def close(self) -> None:
        """Stop playback and release the mixer."""
        logger.info("Closing ElevenLabs synthesis")
        self.cancel()
        if pygame.mixer.get_init() is not None:
            pygame.mixer.quit()
        self.client = None

    def get_status(self) -> dict:
        """Get ElevenLabs synthesis status."""
        return {
            "provider": "elevenlabs",
            "voice_id": self.voice_id,
            "model_id": self.model_id,
            "is_playing": self.is_playing,
            "utterance_count": self.utterance_count,
            "initialized": self.client is not None,
            "mixer_initialized": pygame.mixer.get_init() is not None,
        }
