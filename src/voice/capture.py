"""
Capture session: owns one active speech-capture stream.

Provider results are forwarded to the controller as typed events (fragments,
end of stream, failure). Each `start()` opens a new generation; events always
carry the generation that produced them.

Capture and playback are mutually exclusive: recording while the assistant is
talking would transcribe its own voice. Starting capture therefore stops any
active playback first.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

import structlog

from src.voice.capture_providers.base import SpeechCaptureProvider
from src.voice.errors import CaptureAlreadyActive, CaptureError, CaptureUnavailable, VoiceError
from src.voice.events import CaptureEnded, CaptureFailed, EmitFn, FragmentReceived

logger = structlog.get_logger(__name__)


class _StoppablePlayback(Protocol):
    @property
    def active(self) -> bool: ...

    def stop(self) -> None: ...


class CaptureSession:
    def __init__(
        self,
        provider: SpeechCaptureProvider,
        emit: EmitFn,
        *,
        playback: Optional[_StoppablePlayback] = None,
    ):
        self._provider = provider
        self._emit = emit
        self._playback = playback
        self._generation = 0
        self._active = False
        self._starting = False
        self._reader_task: Optional[asyncio.Task] = None

    @property
    def provider(self) -> SpeechCaptureProvider:
        return self._provider

    @property
    def active(self) -> bool:
        return self._active

    @property
    def generation(self) -> int:
        return self._generation

    def is_available(self) -> bool:
        return self._provider.is_available()

    async def start(self) -> int:
        """
        Begin continuous capture and return the new generation id.

        Raises:
            CaptureAlreadyActive: capture is already running
            CaptureUnavailable: the host has no capture capability
            CaptureError: the provider failed to open
        """
        if self._active or self._starting:
            raise CaptureAlreadyActive("Capture session is already running")
        if not self._provider.is_available():
            raise CaptureUnavailable(f"Speech capture provider '{self._provider.name}' is unavailable")

        if self._playback is not None and self._playback.active:
            logger.info("Stopping playback before starting capture")
            self._playback.stop()

        self._starting = True
        try:
            self._generation += 1
            generation = self._generation
            await self._provider.open()
        finally:
            self._starting = False

        self._active = True
        self._reader_task = asyncio.create_task(
            self._read_fragments(generation),
            name=f"capture_reader_{generation}",
        )
        logger.info("Capture started", provider=self._provider.name, generation=generation)
        return generation

    async def stop(self) -> None:
        """End capture. Safe to call when not running."""
        if not self._active:
            return

        generation = self._generation
        self._active = False

        reader = self._reader_task
        self._reader_task = None
        if reader and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        await self._close_provider()
        logger.info("Capture stopped", provider=self._provider.name, generation=generation)
        self._emit(CaptureEnded(generation=generation, unexpected=False))

    async def send_audio(self, audio_bytes: bytes) -> None:
        if self._active:
            await self._provider.send_audio(audio_bytes)

    async def _close_provider(self) -> None:
        try:
            await self._provider.close()
        except Exception as e:
            logger.warning("Error closing capture provider", provider=self._provider.name, error=str(e))

    def _finish(self, generation: int) -> bool:
        """Mark the reader's generation as finished; False if it was already superseded."""
        if generation != self._generation or not self._active:
            return False
        self._active = False
        self._reader_task = None
        return True

    async def _read_fragments(self, generation: int) -> None:
        try:
            async for fragment in self._provider.fragments():
                self._emit(FragmentReceived(generation=generation, fragment=fragment))
        except asyncio.CancelledError:
            raise
        except VoiceError as e:
            if self._finish(generation):
                await self._close_provider()
                reason = e.reason if isinstance(e, CaptureError) else e.kind
                logger.warning("Capture failed", provider=self._provider.name, reason=reason, error=str(e))
                self._emit(CaptureFailed(generation=generation, kind=reason, message=str(e)))
        except Exception as e:
            if self._finish(generation):
                await self._close_provider()
                logger.error(
                    "Capture provider error",
                    provider=self._provider.name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                self._emit(CaptureFailed(generation=generation, kind="unknown", message=str(e)))
        else:
            if self._finish(generation):
                await self._close_provider()
                logger.info("Capture ended by engine", provider=self._provider.name, generation=generation)
                self._emit(CaptureEnded(generation=generation, unexpected=True))
