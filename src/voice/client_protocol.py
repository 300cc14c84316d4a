"""
Dashboard WebSocket protocol.

The dashboard client sends JSON messages with a `type` field:
- hello: Client capabilities (`speech_supported`)
- typed: Typed chat input
- typing: The user started typing
- toggle_continuous / start_listening / stop_listening: Mic controls
- stop_speaking / set_voice / cancel: Playback and session controls
- fragment / capture_ended / capture_error: Client-side speech recognition results,
  each tagged with the `generation` announced in the latest `state` message
- playback_ended: Audio for `playback_id` finished playing
Binary frames carry raw microphone audio (server-side recognition only).

Outbound messages:
- state: Turn state plus continuous/voice flags and the current capture `generation`
- transcript: Live transcript of the current utterance
- message: Conversation log change (append/update/remove)
- notice: Non-fatal notice
- audio: Synthesized speech as base64 (`playback_id`, `format`)
- stop_audio: Halt playback of `playback_id` immediately
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import msgspec
import structlog

from src.voice.conversation import Message
from src.voice.errors import Notice
from src.voice.playback import AudioSink
from src.voice.tts_types import SynthesizedAudio

logger = structlog.get_logger(__name__)

decoder = msgspec.json.Decoder()
encoder = msgspec.json.Encoder()

SendFn = Callable[[str], Awaitable[None]]


class ClientMessageType(str, Enum):
    """Inbound dashboard message types."""
    HELLO = "hello"
    TYPED = "typed"
    TYPING = "typing"
    TOGGLE_CONTINUOUS = "toggle_continuous"
    START_LISTENING = "start_listening"
    STOP_LISTENING = "stop_listening"
    STOP_SPEAKING = "stop_speaking"
    SET_VOICE = "set_voice"
    CANCEL = "cancel"
    FRAGMENT = "fragment"
    CAPTURE_ENDED = "capture_ended"
    CAPTURE_ERROR = "capture_error"
    PLAYBACK_ENDED = "playback_ended"


@dataclass
class HelloMessage:
    speech_supported: bool

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "HelloMessage":
        return cls(speech_supported=bool(message.get("speech_supported", False)))


@dataclass
class TypedMessage:
    text: str

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "TypedMessage":
        return cls(text=str(message.get("text", "") or ""))


@dataclass
class SetVoiceMessage:
    enabled: bool

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "SetVoiceMessage":
        return cls(enabled=bool(message.get("enabled", True)))


def _int_field(message: Dict[str, Any], key: str) -> int:
    # Missing or malformed ids become 0, which never matches a live id.
    try:
        return int(message.get(key, 0))
    except (TypeError, ValueError):
        return 0


@dataclass
class FragmentMessage:
    """One recognition result from the client (interim or final)."""
    text: str
    is_final: bool
    generation: int = 0

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "FragmentMessage":
        return cls(
            text=str(message.get("text", "") or ""),
            is_final=bool(message.get("is_final", False)),
            generation=_int_field(message, "generation"),
        )


@dataclass
class CaptureEndedMessage:
    generation: int = 0

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "CaptureEndedMessage":
        return cls(generation=_int_field(message, "generation"))


@dataclass
class CaptureErrorMessage:
    kind: str
    generation: int = 0

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "CaptureErrorMessage":
        return cls(
            kind=str(message.get("kind", "") or "unknown"),
            generation=_int_field(message, "generation"),
        )


@dataclass
class PlaybackEndedMessage:
    playback_id: int

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "PlaybackEndedMessage":
        return cls(playback_id=_int_field(message, "playback_id"))


_PARSERS = {
    ClientMessageType.HELLO: HelloMessage.from_message,
    ClientMessageType.TYPED: TypedMessage.from_message,
    ClientMessageType.SET_VOICE: SetVoiceMessage.from_message,
    ClientMessageType.FRAGMENT: FragmentMessage.from_message,
    ClientMessageType.CAPTURE_ENDED: CaptureEndedMessage.from_message,
    ClientMessageType.CAPTURE_ERROR: CaptureErrorMessage.from_message,
    ClientMessageType.PLAYBACK_ENDED: PlaybackEndedMessage.from_message,
}


def parse_client_message(raw_message: str) -> Tuple[ClientMessageType, Any]:
    """
    Parse a raw dashboard WebSocket message.

    Args:
        raw_message: Raw JSON text from the client

    Returns:
        Tuple of (message_type, parsed_message). Messages without a payload are
        returned as the decoded dict.

    Raises:
        ValueError: If the message cannot be parsed or has an unknown type
    """
    try:
        message = decoder.decode(raw_message.encode("utf-8") if isinstance(raw_message, str) else raw_message)
    except msgspec.DecodeError as e:
        logger.error("Failed to parse client message", error=str(e))
        raise ValueError(f"Invalid JSON: {e}")

    if not isinstance(message, dict):
        raise ValueError("Client message must be a JSON object")

    type_str = message.get("type", "")
    try:
        message_type = ClientMessageType(type_str)
    except ValueError:
        logger.warning("Unknown client message type", message_type=type_str)
        raise ValueError(f"Unknown message type: {type_str}")

    parser = _PARSERS.get(message_type)
    if parser is None:
        return message_type, message
    return message_type, parser(message)


def _encode(message: Dict[str, Any]) -> str:
    return encoder.encode(message).decode("utf-8")


def create_state_message(
    state: str,
    *,
    continuous: bool,
    voice_enabled: bool,
    capture_available: bool,
    generation: int = 0,
) -> str:
    return _encode({
        "type": "state",
        "state": state,
        "continuous": continuous,
        "voice_enabled": voice_enabled,
        "capture_available": capture_available,
        "generation": generation,
    })


def create_transcript_message(text: str) -> str:
    return _encode({"type": "transcript", "text": text})


def create_log_message(change: str, message: Message) -> str:
    return _encode({"type": "message", "change": change, "message": message.to_dict()})


def create_notice_message(notice: Notice) -> str:
    return _encode({
        "type": "notice",
        "kind": notice.kind,
        "message": notice.message,
        "timestamp": notice.timestamp,
    })


def create_audio_message(playback_id: int, audio: SynthesizedAudio) -> str:
    """
    Create an audio message.

    The client plays the clip and answers with `playback_ended` for the same id.
    """
    return _encode({
        "type": "audio",
        "playback_id": playback_id,
        "format": audio.mime_type,
        "provider": audio.provider,
        "data": base64.b64encode(audio.audio_bytes).decode("utf-8"),
    })


def create_stop_audio_message(playback_id: int) -> str:
    return _encode({"type": "stop_audio", "playback_id": playback_id})


class WebSocketAudioSink(AudioSink):
    """
    Plays synthesized audio on the dashboard client.

    `play()` sends the clip and waits for the client's `playback_ended`
    acknowledgment. Acknowledgments for any other playback id are stale (the clip
    was interrupted or replaced) and ignored.
    """

    def __init__(self, send: SendFn, *, ack_timeout_seconds: Optional[float] = None):
        self._send = send
        self._ack_timeout = ack_timeout_seconds
        self._playback_id: Optional[int] = None
        self._done: Optional[asyncio.Future] = None
        self._pending_tasks: set = set()

    @property
    def playing(self) -> Optional[int]:
        return self._playback_id

    async def play(self, audio: SynthesizedAudio, *, playback_id: int) -> None:
        loop = asyncio.get_running_loop()
        self._playback_id = playback_id
        self._done = loop.create_future()
        done = self._done

        await self._send(create_audio_message(playback_id, audio))
        logger.debug("Audio sent to client", playback_id=playback_id, bytes=len(audio.audio_bytes))

        try:
            if self._ack_timeout:
                await asyncio.wait_for(asyncio.shield(done), timeout=self._ack_timeout)
            else:
                await done
        except asyncio.TimeoutError:
            logger.warning("Playback acknowledgment timed out", playback_id=playback_id)
        finally:
            if self._playback_id == playback_id:
                self._playback_id = None
                self._done = None

    def acknowledge(self, playback_id: int) -> bool:
        """Client finished playing `playback_id`. Returns False for stale acknowledgments."""
        if playback_id != self._playback_id or self._done is None:
            logger.debug(
                "Ignoring stale playback acknowledgment",
                playback_id=playback_id,
                current_playback_id=self._playback_id,
            )
            return False
        if not self._done.done():
            self._done.set_result(None)
        return True

    def cancel(self, playback_id: int) -> None:
        if self._playback_id == playback_id:
            self._playback_id = None
            if self._done is not None and not self._done.done():
                self._done.cancel()
            self._done = None
        # Tell the client even if the clip was never sent; synthesis may still be in flight.
        task = asyncio.ensure_future(self._send(create_stop_audio_message(playback_id)))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def close(self) -> None:
        if self._done is not None and not self._done.done():
            self._done.cancel()
        self._playback_id = None
        self._done = None
        if self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)
