"""
Typed events delivered to the turn controller.

Capture, playback, the silence timer and the assistant response task never touch
controller state directly; they publish one of these onto the controller's event
channel and the controller handles them one at a time.

Every event carries the id of the resource that produced it (capture generation,
playback handle, turn) so late events from a stopped resource can be ignored.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

import structlog

from src.voice.transcript import TranscriptFragment

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FragmentReceived:
    generation: int
    fragment: TranscriptFragment


@dataclass(frozen=True)
class CaptureEnded:
    """Capture stream finished. `unexpected` is True when the engine ended on its own."""

    generation: int
    unexpected: bool = False


@dataclass(frozen=True)
class CaptureFailed:
    generation: int
    kind: str
    message: str = ""


@dataclass(frozen=True)
class SilenceDeadline:
    generation: int


@dataclass(frozen=True)
class PlaybackStarted:
    playback_id: int
    provider: str = ""


@dataclass(frozen=True)
class PlaybackEnded:
    playback_id: int


@dataclass(frozen=True)
class PlaybackFailed:
    playback_id: int
    kind: str
    message: str = ""


@dataclass(frozen=True)
class ResponseCompleted:
    turn_id: int
    text: str


@dataclass(frozen=True)
class ResponseFailed:
    turn_id: int
    kind: str
    message: str = ""


@dataclass(frozen=True)
class RestartListening:
    """Deferred continuous-mode re-arm (used when a restart delay is configured)."""

    turn_id: int


ControllerEvent = Union[
    FragmentReceived,
    CaptureEnded,
    CaptureFailed,
    SilenceDeadline,
    PlaybackStarted,
    PlaybackEnded,
    PlaybackFailed,
    ResponseCompleted,
    ResponseFailed,
    RestartListening,
]

EmitFn = Callable[[ControllerEvent], None]


@dataclass
class EventChannel:
    """
    Single-consumer queue of controller events.

    `emit` never blocks, so it is safe to call from provider callbacks and tasks.
    """

    _queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    _closed: bool = False
    emitted: int = 0
    last_event_at: Optional[float] = None

    def emit(self, event: ControllerEvent) -> None:
        if self._closed:
            logger.debug("Dropping event on closed channel", event=type(event).__name__)
            return
        self.emitted += 1
        self.last_event_at = time.time()
        self._queue.put_nowait(event)

    async def get(self) -> ControllerEvent:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    def empty(self) -> bool:
        return self._queue.empty()

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
