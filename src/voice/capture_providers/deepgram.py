"""
Deepgram streaming speech-to-text capture provider.

- Audio frames are forwarded by the dashboard client (binary WebSocket frames)
- Interim results are enabled so the UI can show live progress
- The platform's own endpointing is NOT used to end the turn; the controller's
  silence timer decides when an utterance is complete
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

import structlog
import websockets

from src.voice.capture_providers.base import SpeechCaptureProvider
from src.voice.config import get_config
from src.voice.errors import CaptureError
from src.voice.transcript import TranscriptFragment

logger = structlog.get_logger(__name__)

DEEPGRAM_URL = "wss://api.deepgram.com/v1/listen"


@dataclass
class CaptureMetrics:
    """Metrics for capture performance."""
    total_audio_bytes: int = 0
    total_fragments: int = 0
    final_fragments: int = 0
    avg_latency_ms: float = 0.0

    def record_fragment(self, is_final: bool, latency_ms: float) -> None:
        self.total_fragments += 1
        if is_final:
            self.final_fragments += 1
        self.avg_latency_ms = (
            (self.avg_latency_ms * (self.total_fragments - 1) + latency_ms)
            / self.total_fragments
        )


def build_listen_url(*, model: str, language: str, encoding: Optional[str], sample_rate: Optional[int]) -> str:
    params = [
        f"model={model}",
        f"language={language}",
        "punctuate=true",
        "interim_results=true",
        "smart_format=true",
    ]
    if encoding:
        params.append(f"encoding={encoding}")
    if sample_rate:
        params.append(f"sample_rate={sample_rate}")
        params.append("channels=1")
    return DEEPGRAM_URL + "?" + "&".join(params)


def parse_results_message(data: dict) -> Optional[TranscriptFragment]:
    """Extract a fragment from a Deepgram `Results` message, if it carries text."""
    msg_type = data.get("type", "")
    if not isinstance(msg_type, str) or msg_type.lower() != "results":
        return None

    alternatives = data.get("channel", {}).get("alternatives", [])
    if not alternatives:
        return None

    transcript = alternatives[0].get("transcript", "")
    if not transcript:
        return None

    return TranscriptFragment(text=transcript, is_final=bool(data.get("is_final", False)))


class DeepgramCaptureProvider(SpeechCaptureProvider):
    """
    Deepgram streaming STT using a raw WebSocket.

    Container formats (webm/opus from MediaRecorder) are auto-detected by Deepgram,
    so `encoding`/`sample_rate` are only needed for raw PCM.
    """

    name = "deepgram"

    def __init__(
        self,
        config: Optional[Any] = None,
        *,
        encoding: Optional[str] = None,
        sample_rate: Optional[int] = None,
    ):
        self.config = config or get_config()
        self._encoding = encoding
        self._sample_rate = sample_rate
        self._ws = None
        self._metrics = CaptureMetrics()
        self._last_audio_time: float = 0.0

    @property
    def metrics(self) -> CaptureMetrics:
        return self._metrics

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    def is_available(self) -> bool:
        return bool(self.config.deepgram_api_key)

    async def open(self) -> None:
        if self._ws is not None:
            return

        url = build_listen_url(
            model=self.config.deepgram_model,
            language=self.config.capture_language,
            encoding=self._encoding,
            sample_rate=self._sample_rate,
        )
        headers = {"Authorization": f"Token {self.config.deepgram_api_key}"}

        try:
            logger.info("Connecting to Deepgram", model=self.config.deepgram_model)
            self._ws = await websockets.connect(url, additional_headers=headers, open_timeout=10)
        except Exception as e:
            logger.error(
                "Deepgram connection failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            raise CaptureError(f"Deepgram connection failed: {e}", reason="network") from e

        logger.info("Deepgram capture connected")

    async def close(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is None:
            return
        try:
            await ws.send(json.dumps({"type": "CloseStream"}))
            await ws.close()
        except Exception as e:
            logger.warning("Error closing Deepgram connection", error=str(e))
        logger.info("Deepgram capture disconnected")

    async def send_audio(self, audio_bytes: bytes) -> None:
        """Send audio data to Deepgram."""
        if self._ws is None or not audio_bytes:
            return
        try:
            self._last_audio_time = time.time()
            self._metrics.total_audio_bytes += len(audio_bytes)
            await self._ws.send(audio_bytes)
        except Exception as e:
            logger.error("Failed to send audio to Deepgram", error=str(e))

    async def fragments(self) -> AsyncIterator[TranscriptFragment]:
        ws = self._ws
        if ws is None:
            return
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    continue
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from Deepgram")
                    continue

                if isinstance(data.get("type"), str) and data["type"].lower() == "error":
                    logger.error("Deepgram error", error=data.get("message", "Unknown"), details=data)
                    raise CaptureError(str(data.get("message", "Deepgram error")), reason="engine")

                fragment = parse_results_message(data)
                if fragment is None:
                    continue

                latency_ms = 0.0
                if self._last_audio_time > 0:
                    latency_ms = (time.time() - self._last_audio_time) * 1000
                self._metrics.record_fragment(fragment.is_final, latency_ms)

                logger.debug(
                    "Capture fragment",
                    text=fragment.text[:50],
                    is_final=fragment.is_final,
                )
                yield fragment
        except websockets.exceptions.ConnectionClosedError as e:
            raise CaptureError(f"Deepgram connection lost: {e}", reason="network") from e
        except websockets.exceptions.ConnectionClosedOK:
            logger.info("Deepgram connection closed")
