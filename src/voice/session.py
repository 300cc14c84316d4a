"""
Per-connection chat session.

Routes dashboard messages to the turn controller and mirrors controller state,
transcript, notices and conversation log changes back to the client.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import structlog

from src.voice.capture_providers.remote import RemoteCaptureProvider
from src.voice.client_protocol import (
    CaptureEndedMessage,
    CaptureErrorMessage,
    ClientMessageType,
    FragmentMessage,
    HelloMessage,
    PlaybackEndedMessage,
    SendFn,
    SetVoiceMessage,
    TypedMessage,
    WebSocketAudioSink,
    create_log_message,
    create_notice_message,
    create_state_message,
    create_transcript_message,
    parse_client_message,
)
from src.voice.config import Config, get_config
from src.voice.controller import TurnController, TurnState, create_controller
from src.voice.conversation import Message
from src.voice.errors import Notice

logger = structlog.get_logger(__name__)


class ChatSession:
    """One dashboard connection: a controller plus its outbound message queue."""

    def __init__(self, send: SendFn, *, config: Optional[Config] = None):
        self.config = config or get_config()
        self.session_id = f"chat_{int(time.time() * 1000)}"
        self._send = send
        self._outbox: asyncio.Queue = asyncio.Queue()
        self._sender_task: Optional[asyncio.Task] = None
        self.sink = WebSocketAudioSink(
            self._send_now,
            ack_timeout_seconds=self.config.playback_ack_timeout_seconds or None,
        )
        self.controller: Optional[TurnController] = None
        self._announced_generation = 0

    async def start(self, controller: Optional[TurnController] = None) -> None:
        self._sender_task = asyncio.create_task(self._sender(), name=f"{self.session_id}_sender")
        self.controller = controller or await create_controller(self.sink, config=self.config)

        self.controller.on_state_change(self._on_state_change)
        self.controller.on_transcript(self._on_transcript)
        self.controller.on_notice(self._on_notice)
        self.controller.on_capture_start(self._on_capture_start)
        self.controller.log.subscribe(self._on_log_change)

        for message in self.controller.log.messages:
            self._queue(create_log_message("append", message))
        self._queue_state()
        logger.info("Chat session started", session_id=self.session_id)

    async def stop(self) -> None:
        if self.controller is not None:
            await self.controller.close()
        if self._sender_task and not self._sender_task.done():
            self._sender_task.cancel()
            try:
                await self._sender_task
            except asyncio.CancelledError:
                pass
        logger.info("Chat session stopped", session_id=self.session_id)

    async def handle_message(self, raw_message: str) -> None:
        """Dispatch one text frame from the client."""
        controller = self.controller
        if controller is None:
            return

        try:
            message_type, message = parse_client_message(raw_message)
        except ValueError as e:
            logger.warning("Dropping invalid client message", error=str(e))
            return

        if message_type == ClientMessageType.HELLO:
            self._on_hello(message)
        elif message_type == ClientMessageType.TYPED:
            await controller.submit_typed(message.text)
        elif message_type == ClientMessageType.TYPING:
            await controller.user_typing()
        elif message_type == ClientMessageType.TOGGLE_CONTINUOUS:
            await controller.toggle_continuous_listening()
            self._queue_state()
        elif message_type == ClientMessageType.START_LISTENING:
            await controller.start_listening()
        elif message_type == ClientMessageType.STOP_LISTENING:
            await controller.stop_listening()
        elif message_type == ClientMessageType.STOP_SPEAKING:
            await controller.stop_speaking()
        elif message_type == ClientMessageType.SET_VOICE:
            await controller.set_voice_enabled(message.enabled)
            self._queue_state()
        elif message_type == ClientMessageType.CANCEL:
            await controller.cancel()
            self._queue_state()
        elif message_type == ClientMessageType.FRAGMENT:
            self._on_fragment(message)
        elif message_type == ClientMessageType.CAPTURE_ENDED:
            self._on_capture_ended(message)
        elif message_type == ClientMessageType.CAPTURE_ERROR:
            self._on_capture_error(message)
        elif message_type == ClientMessageType.PLAYBACK_ENDED:
            self._on_playback_ended(message)

    async def handle_audio(self, audio_bytes: bytes) -> None:
        """Binary frame: microphone audio for server-side recognition."""
        if self.controller is not None:
            await self.controller.capture.send_audio(audio_bytes)

    def _remote_provider(self) -> Optional[RemoteCaptureProvider]:
        if self.controller is None:
            return None
        provider = self.controller.capture.provider
        return provider if isinstance(provider, RemoteCaptureProvider) else None

    def _on_hello(self, message: HelloMessage) -> None:
        provider = self._remote_provider()
        if provider is not None:
            provider.set_available(message.speech_supported)
        logger.info(
            "Client hello",
            session_id=self.session_id,
            speech_supported=message.speech_supported,
        )
        self._queue_state()

    def _current_capture(self, generation: int, message_type: str) -> Optional[RemoteCaptureProvider]:
        """The remote provider, if `generation` names the capture that is running now."""
        provider = self._remote_provider()
        if provider is None:
            return None
        capture = self.controller.capture
        if not capture.active or generation != capture.generation:
            logger.debug(
                "Dropping stale capture message",
                message_type=message_type,
                generation=generation,
                current_generation=capture.generation,
                active=capture.active,
            )
            return None
        return provider

    def _on_fragment(self, message: FragmentMessage) -> None:
        provider = self._current_capture(message.generation, "fragment")
        if provider is not None:
            provider.push_fragment(message.text, message.is_final)

    def _on_capture_ended(self, message: CaptureEndedMessage) -> None:
        provider = self._current_capture(message.generation, "capture_ended")
        if provider is not None:
            provider.end()

    def _on_capture_error(self, message: CaptureErrorMessage) -> None:
        provider = self._current_capture(message.generation, "capture_error")
        if provider is not None:
            provider.fail(message.kind)

    def _on_playback_ended(self, message: PlaybackEndedMessage) -> None:
        self.sink.acknowledge(message.playback_id)

    # Controller listeners (sync; they only enqueue)

    def _on_state_change(self, old_state: TurnState, new_state: TurnState) -> None:
        self._queue_state()

    def _on_transcript(self, text: str) -> None:
        self._queue(create_transcript_message(text))

    def _on_notice(self, notice: Notice) -> None:
        self._queue(create_notice_message(notice))

    def _on_capture_start(self, generation: int) -> None:
        # Capture can restart without a state change; the client still needs the new generation.
        if generation != self._announced_generation:
            self._queue_state()

    def _on_log_change(self, change: str, message: Message) -> None:
        self._queue(create_log_message(change, message))

    def _queue_state(self) -> None:
        controller = self.controller
        if controller is None:
            return
        self._announced_generation = controller.capture.generation
        self._queue(create_state_message(
            controller.state.value,
            continuous=controller.continuous,
            voice_enabled=controller.voice_enabled,
            capture_available=controller.capture_available,
            generation=self._announced_generation,
        ))

    def _queue(self, message: str) -> None:
        self._outbox.put_nowait(message)

    async def _send_now(self, message: str) -> None:
        self._queue(message)

    async def _sender(self) -> None:
        while True:
            message = await self._outbox.get()
            try:
                await self._send(message)
            except Exception as e:
                logger.error("Failed to send client message", session_id=self.session_id, error=str(e))
