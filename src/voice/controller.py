"""Turn-taking controller.

Arbitrates between listening and speaking for the dashboard assistant:
capture (speech in) -> transcript buffer / silence timer -> commit ->
assistant query -> streamed response -> conversation log -> playback (speech out)
-> re-arm capture when continuous mode is on.

Rules:
- Exactly one `TurnState` at a time; listening and speaking never overlap
- Capture, playback, timer and assistant events arrive on one channel and are
  handled one at a time; user entry points take the same lock
- The controller is the only caller of capture/playback start and stop
- Capability errors become state transitions plus a `Notice`, never exceptions
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import structlog

from src.voice.assistant import AssistantClient, create_assistant
from src.voice.capture import CaptureSession
from src.voice.capture_providers.base import SpeechCaptureProvider
from src.voice.capture_providers.deepgram import DeepgramCaptureProvider
from src.voice.capture_providers.remote import RemoteCaptureProvider
from src.voice.config import Config, get_config
from src.voice.conversation import ConversationLog
from src.voice.errors import (
    AssistantQueryFailed,
    CaptureError,
    CaptureUnavailable,
    Notice,
    VoiceError,
)
from src.voice.events import (
    CaptureEnded,
    CaptureFailed,
    ControllerEvent,
    EventChannel,
    FragmentReceived,
    PlaybackEnded,
    PlaybackFailed,
    PlaybackStarted,
    ResponseCompleted,
    ResponseFailed,
    RestartListening,
    SilenceDeadline,
)
from src.voice.playback import AudioSink, PlaybackSession
from src.voice.timer import SilenceCommitTimer, SleepFn
from src.voice.transcript import TranscriptBuffer
from src.voice.tts import SpeechSynthesizer

logger = structlog.get_logger(__name__)


class TurnState(str, Enum):
    """Current state of the turn-taking controller."""
    IDLE = "idle"
    LISTENING = "listening"
    COMMITTING = "committing"
    AWAITING_RESPONSE = "awaiting_response"
    SPEAKING = "speaking"


# Busy states: a query is in flight and a new capture start is refused.
_QUERY_IN_FLIGHT = (TurnState.COMMITTING, TurnState.AWAITING_RESPONSE)

NOTICE_CAPTURE_UNAVAILABLE = "Voice input isn't available here. You can still type your message."
NOTICE_CAPTURE_ERROR = "Voice input stopped because of an error. Press the mic to try again."
NOTICE_SYNTHESIS_FAILED = "I couldn't read the reply aloud. The text is in the chat."
NOTICE_ASSISTANT_FAILED = "Sorry, I couldn't reach the assistant. Please try again."


def _redact(text: str, limit: int = 60) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


@dataclass
class ControllerMetrics:
    """Metrics for a chat session."""
    start_time: float = field(default_factory=time.time)
    turns: int = 0
    typed_turns: int = 0
    empty_commits: int = 0
    barge_ins: int = 0
    capture_errors: int = 0
    synthesis_failures: int = 0
    assistant_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration_seconds": round(time.time() - self.start_time, 2),
            "turns": self.turns,
            "typed_turns": self.typed_turns,
            "empty_commits": self.empty_commits,
            "barge_ins": self.barge_ins,
            "capture_errors": self.capture_errors,
            "synthesis_failures": self.synthesis_failures,
            "assistant_failures": self.assistant_failures,
        }


StateListener = Callable[[TurnState, TurnState], None]
NoticeListener = Callable[[Notice], None]
TranscriptListener = Callable[[str], None]
CaptureListener = Callable[[int], None]


class TurnController:
    """
    State machine composing capture, playback and the assistant query.

    Entry points for the UI: `submit_typed`, `toggle_continuous_listening`,
    `start_listening`, `stop_listening`, `stop_speaking`, `user_typing`,
    `set_voice_enabled`, `cancel`.
    """

    def __init__(
        self,
        *,
        capture_provider: SpeechCaptureProvider,
        synthesizer: SpeechSynthesizer,
        sink: AudioSink,
        assistant: AssistantClient,
        config: Optional[Config] = None,
        log: Optional[ConversationLog] = None,
        sleep: Optional[SleepFn] = None,
    ):
        if config is None:
            config = get_config()

        self.config = config
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._silence_commit_ms = config.silence_commit_ms
        self._restart_delay_s = max(0, config.continuous_restart_delay_ms) / 1000.0

        # Components
        self._channel = EventChannel()
        self._playback = PlaybackSession(synthesizer, sink, self._channel.emit)
        self._capture = CaptureSession(capture_provider, self._channel.emit, playback=self._playback)
        self._buffer = TranscriptBuffer()
        self._timer = SilenceCommitTimer(sleep=self._sleep)
        self._assistant = assistant
        self.log = log or ConversationLog(
            max_history_turns=config.max_history_turns,
            welcome_message=config.welcome_message or None,
        )

        # State
        self._state = TurnState.IDLE
        self._continuous = False
        self._voice_enabled = config.voice_enabled_default
        self._capture_unavailable_notified = False
        self._capture_generation: Optional[int] = None
        self._speaking_id: Optional[int] = None
        self._turn_id = 0
        self._metrics = ControllerMetrics()

        # Tasks
        self._lock = asyncio.Lock()
        self._pump_task: Optional[asyncio.Task] = None
        self._response_task: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None

        # Listeners
        self._state_listeners: List[StateListener] = []
        self._notice_listeners: List[NoticeListener] = []
        self._transcript_listeners: List[TranscriptListener] = []
        self._capture_listeners: List[CaptureListener] = []
        self._notices: List[Notice] = []

    # ------------------------------------------------------------------ #
    # Observers
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def continuous(self) -> bool:
        return self._continuous

    @property
    def voice_enabled(self) -> bool:
        return self._voice_enabled

    @property
    def capture_available(self) -> bool:
        return self._capture.is_available()

    @property
    def is_listening(self) -> bool:
        return self._state == TurnState.LISTENING

    @property
    def is_speaking(self) -> bool:
        return self._state == TurnState.SPEAKING

    @property
    def live_transcript(self) -> str:
        return self._buffer.current_text()

    @property
    def notices(self) -> List[Notice]:
        return list(self._notices)

    @property
    def metrics(self) -> ControllerMetrics:
        return self._metrics

    @property
    def capture(self) -> CaptureSession:
        return self._capture

    @property
    def playback(self) -> PlaybackSession:
        return self._playback

    def on_state_change(self, listener: StateListener) -> None:
        self._state_listeners.append(listener)

    def on_notice(self, listener: NoticeListener) -> None:
        self._notice_listeners.append(listener)

    def on_transcript(self, listener: TranscriptListener) -> None:
        self._transcript_listeners.append(listener)

    def on_capture_start(self, listener: CaptureListener) -> None:
        """Called with the new generation each time capture starts, even if already listening."""
        self._capture_listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        if self._pump_task is not None:
            return
        self._pump_task = asyncio.create_task(self._pump(), name="turn_controller_events")
        logger.info(
            "Turn controller started",
            capture_provider=self._capture.provider.name,
            silence_commit_ms=self._silence_commit_ms,
            voice_enabled=self._voice_enabled,
        )

    async def close(self) -> None:
        await self.cancel()

        if self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
        self._pump_task = None
        self._channel.close()

        for closer in (self._playback.close, self._assistant.close):
            try:
                await closer()
            except Exception as e:
                logger.warning("Error closing controller component", error=str(e))

        logger.info("Turn controller closed", metrics=self._metrics.to_dict())

    async def drain(self) -> None:
        """Wait until every event emitted so far has been handled."""
        await self._channel.join()

    # ------------------------------------------------------------------ #
    # UI entry points
    # ------------------------------------------------------------------ #

    async def start_listening(self) -> bool:
        """Manually start the mic. Interrupts the assistant if it is speaking."""
        async with self._lock:
            if self._state in _QUERY_IN_FLIGHT:
                logger.info("Ignoring capture start while a query is in flight", state=self._state.value)
                return False
            if self._state == TurnState.LISTENING:
                return True
            self._cancel_restart()
            if self._state == TurnState.SPEAKING:
                self._barge_in(reason="mic")
            return await self._enter_listening()

    async def stop_listening(self) -> None:
        """Stop the mic. Whatever was said so far is committed, not discarded."""
        async with self._lock:
            if self._state != TurnState.LISTENING:
                return
            await self._stop_capture()
            await self._commit(reason="manual_stop", capture_stopped=True)

    async def toggle_continuous_listening(self) -> bool:
        """
        Toggle hands-free mode and return the new flag.

        Turning it on starts listening right away (interrupting playback); turning it
        off stops the mic and commits any pending speech.
        """
        async with self._lock:
            if self._continuous and self._state != TurnState.IDLE:
                self._continuous = False
                self._cancel_restart()
                logger.info("Continuous mode disabled", state=self._state.value)
                if self._state == TurnState.LISTENING:
                    await self._stop_capture()
                    await self._commit(reason="manual_stop", capture_stopped=True)
                return False

            if not self._capture.is_available():
                self._notify_capture_unavailable(CaptureUnavailable("capture unavailable"))
                return False

            self._continuous = True
            logger.info("Continuous mode enabled", state=self._state.value)
            if self._state in _QUERY_IN_FLIGHT:
                # Capture arms once the current turn finishes.
                return True
            if self._state == TurnState.SPEAKING:
                self._barge_in(reason="mic")
            if self._state != TurnState.LISTENING:
                await self._enter_listening()
            return self._continuous

    async def submit_typed(self, text: str) -> bool:
        """
        Submit typed text as a user turn.

        Returns False when the text is blank or a query is already in flight.
        While listening, any speech captured so far is kept and placed before
        the typed text.
        """
        text = (text or "").strip()
        if not text:
            return False

        async with self._lock:
            if self._state in _QUERY_IN_FLIGHT:
                logger.info("Rejecting typed input while a query is in flight", state=self._state.value)
                return False

            self._cancel_restart()
            if self._state == TurnState.SPEAKING:
                self._barge_in(reason="typed")
            if self._state == TurnState.LISTENING:
                # Speech captured so far leads the typed text in the same turn.
                await self._stop_capture()
                spoken = self._take_transcript()
                if spoken:
                    text = f"{spoken} {text}"

            self._metrics.typed_turns += 1
            self._set_state(TurnState.COMMITTING)
            self._submit(text, source="typed")
            return True

    async def user_typing(self) -> None:
        """The user started typing: the assistant must stop talking over them."""
        async with self._lock:
            if self._state == TurnState.SPEAKING:
                self._barge_in(reason="typing")
                self._set_state(TurnState.IDLE)

    async def stop_speaking(self) -> None:
        async with self._lock:
            if self._state != TurnState.SPEAKING:
                return
            self._barge_in(reason="stop_speaking")
            self._set_state(TurnState.IDLE)

    async def set_voice_enabled(self, enabled: bool) -> None:
        async with self._lock:
            self._voice_enabled = bool(enabled)
            logger.info("Voice output toggled", enabled=self._voice_enabled)
            if not self._voice_enabled and self._state == TurnState.SPEAKING:
                self._barge_in(reason="voice_disabled")
                self._set_state(TurnState.IDLE)

    async def cancel(self) -> None:
        """Abandon the current interaction (pending speech, query or playback) and go idle."""
        async with self._lock:
            self._continuous = False
            self._cancel_restart()
            self._timer.cancel()

            if self._state in _QUERY_IN_FLIGHT:
                self._abandon_query()
            if self._capture.active:
                await self._stop_capture()
            self._take_transcript()
            if self._playback.active:
                self._playback.stop()
            self._speaking_id = None

            if self._state != TurnState.IDLE:
                logger.info("Interaction cancelled", state=self._state.value)
            self._set_state(TurnState.IDLE)

    # ------------------------------------------------------------------ #
    # Event handling
    # ------------------------------------------------------------------ #

    async def _pump(self) -> None:
        while True:
            event = await self._channel.get()
            try:
                async with self._lock:
                    await self._dispatch(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "Error handling controller event",
                    event=type(event).__name__,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                async with self._lock:
                    await self._force_idle(reason="internal_error")
            finally:
                self._channel.task_done()

    async def _dispatch(self, event: ControllerEvent) -> None:
        if isinstance(event, FragmentReceived):
            self._on_fragment(event)
        elif isinstance(event, SilenceDeadline):
            await self._on_silence_deadline(event)
        elif isinstance(event, CaptureEnded):
            await self._on_capture_ended(event)
        elif isinstance(event, CaptureFailed):
            await self._on_capture_failed(event)
        elif isinstance(event, ResponseCompleted):
            await self._on_response_completed(event)
        elif isinstance(event, ResponseFailed):
            self._on_response_failed(event)
        elif isinstance(event, PlaybackStarted):
            self._on_playback_started(event)
        elif isinstance(event, PlaybackEnded):
            await self._on_playback_ended(event)
        elif isinstance(event, PlaybackFailed):
            await self._on_playback_failed(event)
        elif isinstance(event, RestartListening):
            await self._on_restart_listening(event)
        else:
            logger.warning("Unknown controller event", event=type(event).__name__)

    def _on_fragment(self, event: FragmentReceived) -> None:
        if self._state != TurnState.LISTENING or event.generation != self._capture_generation:
            logger.debug("Ignoring stale fragment", generation=event.generation, state=self._state.value)
            return

        self._buffer.append_fragment(event.fragment)
        generation = event.generation
        # Silence is measured from the last fragment, interim or final.
        self._timer.arm(
            self._silence_commit_ms,
            lambda: self._channel.emit(SilenceDeadline(generation=generation)),
        )
        self._notify_transcript(self._buffer.current_text())

    async def _on_silence_deadline(self, event: SilenceDeadline) -> None:
        if self._state != TurnState.LISTENING or event.generation != self._capture_generation:
            return
        await self._commit(reason="silence", capture_stopped=False)

    async def _on_capture_ended(self, event: CaptureEnded) -> None:
        if event.generation != self._capture_generation:
            return
        self._capture_generation = None
        if self._state != TurnState.LISTENING:
            return
        logger.info("Capture ended by engine", generation=event.generation)
        await self._commit(reason="capture_ended", capture_stopped=True)

    async def _on_capture_failed(self, event: CaptureFailed) -> None:
        if event.generation != self._capture_generation:
            return
        self._capture_generation = None
        self._metrics.capture_errors += 1
        logger.warning("Capture error", kind=event.kind, error=event.message)

        self._timer.cancel()
        self._take_transcript()
        self._continuous = False
        self._notify(Notice(kind=CaptureError.kind, message=NOTICE_CAPTURE_ERROR))
        if self._state == TurnState.LISTENING:
            self._set_state(TurnState.IDLE)

    async def _on_response_completed(self, event: ResponseCompleted) -> None:
        if event.turn_id != self._turn_id or self._state != TurnState.AWAITING_RESPONSE:
            logger.debug("Ignoring stale response", turn_id=event.turn_id)
            return

        self._response_task = None
        message = self.log.finish_assistant()
        text = message.content if message else ""
        logger.info("Assistant response completed", turn_id=event.turn_id, length=len(text))

        if self._voice_enabled and text.strip() and self._enter_speaking(text):
            return
        await self._after_turn()

    def _on_response_failed(self, event: ResponseFailed) -> None:
        if event.turn_id != self._turn_id or self._state != TurnState.AWAITING_RESPONSE:
            return

        self._response_task = None
        self._metrics.assistant_failures += 1
        logger.warning("Assistant query failed", turn_id=event.turn_id, error=event.message)
        self.log.discard_in_progress()
        self.log.append_notice(NOTICE_ASSISTANT_FAILED)
        self._notify(Notice(kind=AssistantQueryFailed.kind, message=NOTICE_ASSISTANT_FAILED))
        self._set_state(TurnState.IDLE)

    def _on_playback_started(self, event: PlaybackStarted) -> None:
        if event.playback_id != self._speaking_id:
            return
        logger.info("Speaking", playback_id=event.playback_id, provider=event.provider)

    async def _on_playback_ended(self, event: PlaybackEnded) -> None:
        if event.playback_id != self._speaking_id or self._state != TurnState.SPEAKING:
            logger.debug("Ignoring stale playback end", playback_id=event.playback_id)
            return
        self._speaking_id = None
        await self._after_turn()

    async def _on_playback_failed(self, event: PlaybackFailed) -> None:
        if event.playback_id != self._speaking_id or self._state != TurnState.SPEAKING:
            return
        self._speaking_id = None
        self._metrics.synthesis_failures += 1
        logger.warning("Playback failed", playback_id=event.playback_id, kind=event.kind, error=event.message)
        self._notify(Notice(kind=event.kind, message=NOTICE_SYNTHESIS_FAILED))
        await self._after_turn()

    async def _on_restart_listening(self, event: RestartListening) -> None:
        self._restart_task = None
        if event.turn_id != self._turn_id or self._state != TurnState.IDLE or not self._continuous:
            return
        await self._enter_listening()

    # ------------------------------------------------------------------ #
    # Transitions (always called with the lock held)
    # ------------------------------------------------------------------ #

    def _set_state(self, new_state: TurnState) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state

        if self._capture.active and self._playback.active:
            logger.error("Capture and playback active at the same time", state=new_state.value)

        logger.info("Turn state", old=old_state.value, new=new_state.value, continuous=self._continuous)
        for listener in self._state_listeners:
            try:
                listener(old_state, new_state)
            except Exception as e:
                logger.warning("State listener failed", error=str(e))

    async def _enter_listening(self) -> bool:
        if not self._capture.is_available():
            self._continuous = False
            self._notify_capture_unavailable(CaptureUnavailable("capture unavailable"))
            self._set_state(TurnState.IDLE)
            return False

        if self._playback.active:
            self._barge_in(reason="capture_start")
        if self._capture.active:
            await self._stop_capture()
        self._timer.cancel()
        self._take_transcript()

        try:
            generation = await self._capture.start()
        except CaptureUnavailable as e:
            self._continuous = False
            self._notify_capture_unavailable(e)
            self._set_state(TurnState.IDLE)
            return False
        except VoiceError as e:
            self._continuous = False
            self._metrics.capture_errors += 1
            logger.warning("Capture start failed", kind=e.kind, error=str(e))
            self._notify(Notice(kind=CaptureError.kind, message=NOTICE_CAPTURE_ERROR))
            self._set_state(TurnState.IDLE)
            return False

        self._capture_generation = generation
        self._set_state(TurnState.LISTENING)
        for listener in self._capture_listeners:
            try:
                listener(generation)
            except Exception as e:
                logger.warning("Capture listener failed", error=str(e))
        return True

    async def _stop_capture(self) -> None:
        self._capture_generation = None
        self._timer.cancel()
        await self._capture.stop()

    def _take_transcript(self) -> str:
        text = self._buffer.commit_text()
        had_text = not self._buffer.is_empty
        self._buffer.reset()
        if had_text:
            self._notify_transcript("")
        return text

    async def _commit(self, *, reason: str, capture_stopped: bool) -> None:
        self._timer.cancel()
        text = self._take_transcript()

        if not text:
            self._metrics.empty_commits += 1
            logger.debug("Empty commit discarded", reason=reason)
            if not capture_stopped:
                # Nothing was said; keep listening.
                return
            if reason == "capture_ended" and self._continuous:
                await self._enter_listening()
                return
            self._set_state(TurnState.IDLE)
            return

        self._set_state(TurnState.COMMITTING)
        if not capture_stopped:
            await self._stop_capture()
        logger.info("Utterance committed", reason=reason, text=_redact(text))
        self._submit(text, source=reason)

    def _submit(self, text: str, *, source: str) -> None:
        self.log.append_user(text)
        history = self.log.history()
        self.log.begin_assistant()

        self._turn_id += 1
        self._metrics.turns += 1
        turn_id = self._turn_id
        self._set_state(TurnState.AWAITING_RESPONSE)
        self._response_task = asyncio.create_task(
            self._stream_response(turn_id, history),
            name=f"assistant_turn_{turn_id}",
        )
        logger.info("Query submitted", turn_id=turn_id, source=source, history_len=len(history))

    async def _stream_response(self, turn_id: int, history: List[Dict[str, str]]) -> None:
        parts: List[str] = []
        try:
            async for chunk in self._assistant.submit(history):
                if turn_id != self._turn_id:
                    return
                parts.append(chunk)
                self.log.append_chunk(chunk)
        except asyncio.CancelledError:
            raise
        except VoiceError as e:
            self._channel.emit(ResponseFailed(turn_id=turn_id, kind=e.kind, message=str(e)))
            return
        except Exception as e:
            logger.error("Assistant stream error", error_type=type(e).__name__, error=str(e))
            self._channel.emit(
                ResponseFailed(turn_id=turn_id, kind=AssistantQueryFailed.kind, message=str(e))
            )
            return

        self._channel.emit(ResponseCompleted(turn_id=turn_id, text="".join(parts)))

    def _abandon_query(self) -> None:
        task = self._response_task
        self._response_task = None
        # Invalidate the turn so late chunks/completions are ignored.
        self._turn_id += 1
        if task and not task.done():
            task.cancel()
        self.log.discard_in_progress()
        logger.info("Query abandoned")

    def _enter_speaking(self, text: str) -> bool:
        # Capture is already stopped at commit; this is the mutual-exclusion backstop.
        if self._capture.active:
            logger.error("Capture still active when entering speaking state")
            return False

        handle = self._playback.speak(text)
        if handle is None:
            return False
        self._speaking_id = handle.id
        self._set_state(TurnState.SPEAKING)
        return True

    def _barge_in(self, *, reason: str) -> None:
        """Interrupt playback. Interruption never produces a playback end event."""
        if not self._playback.active and self._speaking_id is None:
            return
        self._metrics.barge_ins += 1
        logger.info("Barge-in", reason=reason, playback_id=self._speaking_id)
        self._speaking_id = None
        self._playback.stop()

    async def _after_turn(self) -> None:
        if not self._continuous:
            self._set_state(TurnState.IDLE)
            return
        if self._restart_delay_s <= 0:
            await self._enter_listening()
            return
        self._set_state(TurnState.IDLE)
        self._schedule_restart()

    def _schedule_restart(self) -> None:
        self._cancel_restart()
        turn_id = self._turn_id

        async def _restart_after() -> None:
            try:
                await self._sleep(self._restart_delay_s)
            except asyncio.CancelledError:
                return
            self._channel.emit(RestartListening(turn_id=turn_id))

        self._restart_task = asyncio.create_task(_restart_after(), name="continuous_restart")

    def _cancel_restart(self) -> None:
        if self._restart_task and not self._restart_task.done():
            self._restart_task.cancel()
        self._restart_task = None

    async def _force_idle(self, *, reason: str) -> None:
        logger.warning("Forcing controller to idle", reason=reason, state=self._state.value)
        self._cancel_restart()
        self._timer.cancel()
        if self._state in _QUERY_IN_FLIGHT:
            self._abandon_query()
        if self._capture.active:
            await self._stop_capture()
        self._take_transcript()
        self._barge_in(reason=reason)
        self._continuous = False
        self._set_state(TurnState.IDLE)

    # ------------------------------------------------------------------ #
    # Notifications
    # ------------------------------------------------------------------ #

    def _notify_capture_unavailable(self, error: CaptureUnavailable) -> None:
        if self._capture_unavailable_notified:
            return
        self._capture_unavailable_notified = True
        logger.warning("Speech capture unavailable", error=str(error))
        self._notify(Notice.from_error(error, NOTICE_CAPTURE_UNAVAILABLE))

    def _notify(self, notice: Notice) -> None:
        self._notices.append(notice)
        if len(self._notices) > 50:
            self._notices.pop(0)
        for listener in self._notice_listeners:
            try:
                listener(notice)
            except Exception as e:
                logger.warning("Notice listener failed", error=str(e))

    def _notify_transcript(self, text: str) -> None:
        for listener in self._transcript_listeners:
            try:
                listener(text)
            except Exception as e:
                logger.warning("Transcript listener failed", error=str(e))


def create_capture_provider(config: Optional[Config] = None) -> SpeechCaptureProvider:
    config = config or get_config()
    provider = (config.capture_provider or "remote").strip().lower()
    if provider == "remote":
        return RemoteCaptureProvider()
    if provider == "deepgram":
        return DeepgramCaptureProvider(config)
    raise ValueError(f"Unsupported CAPTURE_PROVIDER: {config.capture_provider}")


async def create_controller(
    sink: AudioSink,
    *,
    config: Optional[Config] = None,
    capture_provider: Optional[SpeechCaptureProvider] = None,
    assistant: Optional[AssistantClient] = None,
) -> TurnController:
    """
    Create and start a turn controller wired from configuration.

    Args:
        sink: Audio output for synthesized speech
        config: Optional configuration (uses default if not provided)
        capture_provider: Override the configured capture provider
        assistant: Override the configured assistant client

    Returns:
        Started TurnController
    """
    config = config or get_config()
    controller = TurnController(
        capture_provider=capture_provider or create_capture_provider(config),
        synthesizer=SpeechSynthesizer.from_config(config),
        sink=sink,
        assistant=assistant or create_assistant(config),
        config=config,
    )
    await controller.start()
    return controller
