"""
Playback session: owns the one active speech-synthesis/audio-playback instance.

- `speak()` replaces whatever is playing; there is at most one handle at a time
- Synthesis goes through `SpeechSynthesizer` (primary, then one fallback attempt)
- `PlaybackEnded` fires exactly once for a playback that finished on its own and
  never for one that was interrupted by `stop()`; the controller relies on this to
  decide whether continuous mode may re-arm listening
"""

from __future__ import annotations

import asyncio
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import structlog

from src.voice.errors import SynthesisFailed
from src.voice.events import EmitFn, PlaybackEnded, PlaybackFailed, PlaybackStarted
from src.voice.tts import SpeechSynthesizer
from src.voice.tts_types import SynthesizedAudio

logger = structlog.get_logger(__name__)


_BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
_UNDERLINE_BOLD_RE = re.compile(r"__(.*?)__")
_ITALIC_RE = re.compile(r"\*(.*?)\*")
_CODE_RE = re.compile(r"`(.*?)`")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_HEADING_RE = re.compile(r"#{1,6}\s+")
_BULLET_RE = re.compile(r"^\s*[-*+•]\s+", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^\s*\d+\.\s+", re.MULTILINE)
_WHITESPACE_RE = re.compile(r"\s+")


def sanitize_for_speech(text: str) -> str:
    """Strip markdown structure so synthesized speech reads as plain prose."""
    if not text:
        return ""
    cleaned = _HEADING_RE.sub("", text)
    cleaned = _BULLET_RE.sub("", cleaned)
    cleaned = _NUMBERED_RE.sub("", cleaned)
    cleaned = _BOLD_RE.sub(r"\1", cleaned)
    cleaned = _UNDERLINE_BOLD_RE.sub(r"\1", cleaned)
    cleaned = _ITALIC_RE.sub(r"\1", cleaned)
    cleaned = _CODE_RE.sub(r"\1", cleaned)
    cleaned = _LINK_RE.sub(r"\1", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned)
    return cleaned.strip()


@dataclass
class PlaybackHandle:
    """Identifies the currently playing audio resource."""

    id: int
    text: str
    provider: str = ""
    created_at: float = field(default_factory=time.time)
    started_at: Optional[float] = None


class AudioSink(ABC):
    """Audio output device. `play()` returns once the audio finished playing."""

    @abstractmethod
    async def play(self, audio: SynthesizedAudio, *, playback_id: int) -> None:
        raise NotImplementedError

    def cancel(self, playback_id: int) -> None:
        """Halt output for `playback_id` immediately."""
        return None

    async def close(self) -> None:
        return None


@dataclass
class PlaybackMetrics:
    total_requests: int = 0
    completed: int = 0
    interrupted: int = 0
    failed: int = 0


class PlaybackSession:
    def __init__(self, synthesizer: SpeechSynthesizer, sink: AudioSink, emit: EmitFn):
        self._synthesizer = synthesizer
        self._sink = sink
        self._emit = emit
        self._handle: Optional[PlaybackHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._next_id = 0
        self._metrics = PlaybackMetrics()

    @property
    def active(self) -> bool:
        return self._handle is not None

    @property
    def handle(self) -> Optional[PlaybackHandle]:
        return self._handle

    @property
    def metrics(self) -> PlaybackMetrics:
        return self._metrics

    def speak(self, text: str) -> Optional[PlaybackHandle]:
        """
        Synthesize and play `text`, replacing any in-flight playback.

        Returns None (and emits nothing) when there is nothing speakable left after
        sanitization.
        """
        cleaned = sanitize_for_speech(text)
        if not cleaned:
            logger.debug("Nothing to speak after sanitization")
            return None

        self.stop()

        self._next_id += 1
        handle = PlaybackHandle(id=self._next_id, text=cleaned)
        self._handle = handle
        self._metrics.total_requests += 1
        self._task = asyncio.create_task(self._run(handle), name=f"playback_{handle.id}")
        logger.info("Playback requested", playback_id=handle.id, text_length=len(cleaned))
        return handle

    def stop(self) -> None:
        """Halt playback immediately and release the handle. Idempotent."""
        handle = self._handle
        if handle is None:
            return

        self._handle = None
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()

        self._synthesizer.cancel_current()
        self._sink.cancel(handle.id)
        self._metrics.interrupted += 1
        logger.info("Playback stopped", playback_id=handle.id)

    async def close(self) -> None:
        self.stop()
        await self._synthesizer.close()
        await self._sink.close()

    def _release(self, handle: PlaybackHandle) -> bool:
        """Release `handle` if it is still current; False if it was stopped or replaced."""
        if self._handle is not handle:
            return False
        self._handle = None
        self._task = None
        return True

    async def _run(self, handle: PlaybackHandle) -> None:
        try:
            audio = await self._synthesizer.synthesize(handle.text)
        except SynthesisFailed as e:
            if self._release(handle):
                self._metrics.failed += 1
                self._emit(PlaybackFailed(playback_id=handle.id, kind=e.kind, message=str(e)))
            return

        if self._handle is not handle:
            return

        handle.provider = audio.provider
        handle.started_at = time.time()
        self._emit(PlaybackStarted(playback_id=handle.id, provider=audio.provider))

        try:
            await self._sink.play(audio, playback_id=handle.id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._release(handle):
                self._metrics.failed += 1
                logger.error("Audio playback failed", playback_id=handle.id, error=str(e))
                self._emit(PlaybackFailed(playback_id=handle.id, kind="playback_error", message=str(e)))
            return

        if self._release(handle):
            self._metrics.completed += 1
            logger.info(
                "Playback finished",
                playback_id=handle.id,
                provider=handle.provider,
                duration_ms=round((time.time() - handle.started_at) * 1000, 2),
            )
            self._emit(PlaybackEnded(playback_id=handle.id))
