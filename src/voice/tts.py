from __future__ import annotations

from typing import Any, Optional

import structlog

from src.voice.config import get_config
from src.voice.errors import SynthesisFailed, SynthesisPrimaryFailed
from src.voice.tts_providers.base import TTSProvider
from src.voice.tts_providers.elevenlabs import ElevenLabsTTS
from src.voice.tts_providers.openai_tts import OpenAITTS
from src.voice.tts_types import SynthesizedAudio

logger = structlog.get_logger(__name__)


def create_tts_provider(name: str, config: Optional[Any] = None) -> TTSProvider:
    provider = (name or "").strip().lower()
    if provider == "elevenlabs":
        return ElevenLabsTTS(config)
    if provider == "openai":
        return OpenAITTS(config)
    raise ValueError(f"Unsupported TTS provider: {name}")


class SpeechSynthesizer:
    """
    Primary/fallback synthesis.

    - `elevenlabs`: best quality (default primary)
    - `openai`: `tts-1`, faster and lower quality (default fallback)

    A primary failure is retried exactly once on the fallback provider; the
    caller only sees an error when both fail.
    """

    def __init__(
        self,
        primary: TTSProvider,
        fallback: Optional[TTSProvider] = None,
    ):
        self._primary = primary
        self._fallback = fallback

    @classmethod
    def from_config(cls, config: Optional[Any] = None) -> "SpeechSynthesizer":
        config = config or get_config()
        primary = create_tts_provider(config.tts_primary, config)
        fallback = None
        if config.tts_fallback_enabled:
            fallback = create_tts_provider(config.tts_fallback, config)
        return cls(primary, fallback)

    @property
    def primary(self) -> TTSProvider:
        return self._primary

    @property
    def fallback(self) -> Optional[TTSProvider]:
        return self._fallback

    def cancel_current(self) -> None:
        self._primary.cancel()
        if self._fallback:
            self._fallback.cancel()

    async def close(self) -> None:
        self.cancel_current()
        await self._primary.close()
        if self._fallback:
            await self._fallback.close()

    async def synthesize(self, text: str) -> SynthesizedAudio:
        """
        Raises:
            SynthesisFailed: the primary failed and there was no usable fallback
        """
        try:
            return await self._primary.synthesize(text)
        except Exception as e:
            primary_error = SynthesisPrimaryFailed(f"{self._primary.name}: {e}")
            primary_error.__cause__ = e
            logger.warning(
                "Primary TTS failed, falling back",
                provider=self._primary.name,
                fallback=self._fallback.name if self._fallback else None,
                error_type=type(e).__name__,
                error=str(e),
            )

        if self._fallback is None:
            raise SynthesisFailed(f"Synthesis failed and no fallback is configured ({primary_error})") from primary_error

        try:
            return await self._fallback.synthesize(text)
        except Exception as fallback_error:
            logger.error(
                "Fallback TTS failed",
                provider=self._fallback.name,
                error_type=type(fallback_error).__name__,
                error=str(fallback_error),
            )
            raise SynthesisFailed(
                f"Both synthesis providers failed ({primary_error}; {self._fallback.name}: {fallback_error})"
            ) from fallback_error
