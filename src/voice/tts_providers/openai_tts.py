from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from src.voice.config import get_config
from src.voice.tts_providers.base import TTSProvider
from src.voice.tts_types import SynthesizedAudio

logger = structlog.get_logger(__name__)

OPENAI_TTS_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


def resolve_openai_voice(voice: Optional[str]) -> str:
    candidate = (voice or "").strip().lower()
    return candidate if candidate in OPENAI_TTS_VOICES else "alloy"


class OpenAITTS(TTSProvider):
    """
    OpenAI Text-to-Speech provider (non-streaming).

    Synthesizes the full utterance as mp3. `tts-1` favours latency over quality,
    which is what we want from the fallback path.
    """

    name = "openai"

    def __init__(self, config: Optional[Any] = None):
        self.config = config or get_config()
        self.voice = resolve_openai_voice(self.config.openai_tts_voice)
        self._inflight: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        if self._inflight and not self._inflight.done():
            self._inflight.cancel()

    async def _generate_mp3(self, text: str) -> bytes:
        from openai import OpenAI  # Local import to keep module import light

        client = OpenAI(api_key=self.config.openai_api_key)

        def _call() -> bytes:
            resp = client.audio.speech.create(
                model=self.config.openai_tts_model,
                voice=self.voice,
                input=text,
                response_format="mp3",
            )
            # SDKs have varied over time; handle several shapes.
            data = getattr(resp, "content", None)
            if isinstance(data, (bytes, bytearray)):
                return bytes(data)
            read = getattr(resp, "read", None)
            if callable(read):
                return read()
            return bytes(resp)

        return await asyncio.to_thread(_call)

    async def synthesize(self, text: str) -> SynthesizedAudio:
        if not text or not text.strip():
            raise ValueError("Text is required for synthesis")

        logger.debug("Calling OpenAI TTS", voice=self.voice, text_length=len(text))
        task = asyncio.create_task(self._generate_mp3(text))
        self._inflight = task

        try:
            audio = await task
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("OpenAI TTS failed", error_type=type(e).__name__, error=str(e))
            raise
        finally:
            if self._inflight is task:
                self._inflight = None

        if not audio:
            raise ValueError("OpenAI TTS returned no audio")

        return SynthesizedAudio(
            audio_bytes=audio,
            mime_type="audio/mpeg",
            provider=self.name,
            meta={"model": self.config.openai_tts_model, "voice": self.voice},
        )
