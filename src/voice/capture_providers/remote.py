"""
Capture provider for recognition that runs in the dashboard client.

Browsers expose continuous speech recognition with interim results; the client
forwards each result over the WebSocket and the server pushes it in here.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Union

import structlog

from src.voice.capture_providers.base import SpeechCaptureProvider
from src.voice.errors import CaptureError
from src.voice.transcript import TranscriptFragment

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class _EndOfStream:
    pass


@dataclass(frozen=True)
class _StreamError:
    reason: str


_Item = Union[TranscriptFragment, _EndOfStream, _StreamError]


class RemoteCaptureProvider(SpeechCaptureProvider):
    name = "remote"

    def __init__(self, *, available: bool = False):
        self._available = available
        self._queue: Optional[asyncio.Queue[_Item]] = None

    def set_available(self, available: bool) -> None:
        self._available = available

    def is_available(self) -> bool:
        return self._available

    @property
    def is_open(self) -> bool:
        return self._queue is not None

    async def open(self) -> None:
        self._queue = asyncio.Queue()

    async def close(self) -> None:
        queue = self._queue
        self._queue = None
        if queue is not None:
            queue.put_nowait(_EndOfStream())

    def push_fragment(self, text: str, is_final: bool) -> None:
        if self._queue is None:
            logger.debug("Dropping fragment for closed remote capture", is_final=is_final)
            return
        if not text or not text.strip():
            return
        self._queue.put_nowait(TranscriptFragment(text=text, is_final=is_final))

    def end(self) -> None:
        """Client recognition stopped on its own (e.g., platform silence timeout)."""
        if self._queue is not None:
            self._queue.put_nowait(_EndOfStream())

    def fail(self, reason: str) -> None:
        if self._queue is not None:
            self._queue.put_nowait(_StreamError(reason=reason or "unknown"))

    async def fragments(self) -> AsyncIterator[TranscriptFragment]:
        queue = self._queue
        if queue is None:
            return
        while True:
            item = await queue.get()
            if isinstance(item, _EndOfStream):
                return
            if isinstance(item, _StreamError):
                raise CaptureError(f"Client recognition error: {item.reason}", reason=item.reason)
            yield item
