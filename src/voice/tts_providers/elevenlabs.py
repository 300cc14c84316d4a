from __future__ import annotations

import re
import time
from typing import Any, Optional

import httpx
import structlog

from src.voice.config import get_config
from src.voice.tts_providers.base import TTSProvider
from src.voice.tts_types import SynthesizedAudio

logger = structlog.get_logger(__name__)

ELEVENLABS_BASE_URL = "https://api.elevenlabs.io/v1"
DEFAULT_VOICE_NAME = "Henry"

# ElevenLabs ids are 20-char alphanumerics; some accounts expose UUID-style ids.
_VOICE_ID_RE = re.compile(
    r"^([A-Za-z0-9]{20}|[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})$",
    re.IGNORECASE,
)


def looks_like_voice_id(value: str) -> bool:
    return bool(_VOICE_ID_RE.match(value or ""))


class ElevenLabsTTS(TTSProvider):
    """
    ElevenLabs text-to-speech (primary, highest quality).

    `ELEVENLABS_VOICE_ID` may be a voice id or a voice name; names are resolved once
    through the voices API, falling back to the default "Henry" voice.
    """

    name = "elevenlabs"

    def __init__(self, config: Optional[Any] = None, *, client: Optional[httpx.AsyncClient] = None):
        self.config = config or get_config()
        self._client = client
        self._owns_client = client is None
        self._voice_id: Optional[str] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=ELEVENLABS_BASE_URL,
                timeout=httpx.Timeout(self.config.elevenlabs_timeout_seconds),
            )
        return self._client

    @property
    def _headers(self) -> dict[str, str]:
        return {"xi-api-key": self.config.elevenlabs_api_key}

    async def voice_id_by_name(self, name: str) -> Optional[str]:
        resp = await self._get_client().get("/voices", headers=self._headers)
        resp.raise_for_status()
        wanted = name.strip().lower()
        for voice in resp.json().get("voices", []):
            if str(voice.get("name", "")).strip().lower() == wanted:
                return voice.get("voice_id")
        return None

    async def resolve_voice_id(self) -> str:
        if self._voice_id:
            return self._voice_id

        configured = (self.config.elevenlabs_voice_id or "").strip()
        if configured and looks_like_voice_id(configured):
            self._voice_id = configured
            return configured

        voice_id = None
        if configured:
            voice_id = await self.voice_id_by_name(configured)
            if not voice_id:
                logger.warning("ElevenLabs voice not found, using default", voice_name=configured)
        if not voice_id:
            voice_id = await self.voice_id_by_name(DEFAULT_VOICE_NAME)
        if not voice_id:
            raise ValueError(
                "ElevenLabs voice not found. Configure ELEVENLABS_VOICE_ID or make sure "
                f"the '{DEFAULT_VOICE_NAME}' voice exists."
            )

        self._voice_id = voice_id
        return voice_id

    async def synthesize(self, text: str) -> SynthesizedAudio:
        if not text or not text.strip():
            raise ValueError("Text is required for synthesis")

        voice_id = await self.resolve_voice_id()
        payload = {
            "text": text,
            "model_id": self.config.elevenlabs_model,
            "voice_settings": {
                "stability": 0.5,
                "similarity_boost": 0.75,
            },
        }

        started = time.time()
        resp = await self._get_client().post(
            f"/text-to-speech/{voice_id}",
            json=payload,
            headers={**self._headers, "Accept": "audio/mpeg"},
        )
        elapsed_ms = (time.time() - started) * 1000

        if resp.status_code != 200:
            logger.warning(
                "ElevenLabs TTS failed",
                status_code=resp.status_code,
                voice_id=voice_id,
                response=resp.text[:200],
            )
            resp.raise_for_status()

        if not resp.content:
            raise ValueError("ElevenLabs returned no audio")

        return SynthesizedAudio(
            audio_bytes=resp.content,
            mime_type=resp.headers.get("content-type", "audio/mpeg"),
            provider=self.name,
            meta={"elapsed_ms": round(elapsed_ms, 2), "voice_id": voice_id},
        )

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
