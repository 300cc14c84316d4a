"""
Tests for the per-connection chat session.
"""

import asyncio
import json
from dataclasses import replace

import pytest

from src.voice.config import get_config
from src.voice.session import ChatSession
from src.voice.tts import SpeechSynthesizer
from src.voice.controller import TurnController, TurnState
from src.voice.capture_providers.remote import RemoteCaptureProvider


@pytest.fixture
def outbox():
    return []


@pytest.fixture
def chat_session(outbox, primary_tts, fallback_tts, assistant, clock):
    async def send(message):
        outbox.append(json.loads(message))

    session = ChatSession(send)
    controller = TurnController(
        capture_provider=RemoteCaptureProvider(),
        synthesizer=SpeechSynthesizer(primary_tts, fallback_tts),
        sink=session.sink,
        assistant=assistant,
        config=session.config,
        sleep=clock.sleep,
    )
    return session, controller


def of_type(outbox, message_type):
    return [m for m in outbox if m["type"] == message_type]


def announced_generation(outbox):
    return of_type(outbox, "state")[-1]["generation"]


class TestChatSession:
    """Tests for message routing between the client and the controller."""

    @pytest.mark.asyncio
    async def test_start_sends_welcome_and_state(self, chat_session, outbox, settle):
        session, controller = chat_session
        await controller.start()
        await session.start(controller)
        await settle()

        assert of_type(outbox, "message")[0]["message"]["id"] == "welcome"
        assert of_type(outbox, "state")[-1]["state"] == "idle"
        await session.stop()

    @pytest.mark.asyncio
    async def test_hello_enables_remote_capture(self, chat_session, outbox, settle):
        session, controller = chat_session
        await controller.start()
        await session.start(controller)

        await session.handle_message(json.dumps({"type": "hello", "speech_supported": True}))
        await settle()

        assert controller.capture_available
        assert of_type(outbox, "state")[-1]["capture_available"] is True
        await session.stop()

    @pytest.mark.asyncio
    async def test_spoken_turn_round_trip(self, chat_session, outbox, clock, settle):
        session, controller = chat_session
        await controller.start()
        await session.start(controller)

        await session.handle_message('{"type": "hello", "speech_supported": true}')
        await session.handle_message('{"type": "start_listening"}')
        await settle(controller)
        await session.handle_message(json.dumps({
            "type": "fragment",
            "text": "what is next",
            "is_final": True,
            "generation": announced_generation(outbox),
        }))
        await settle(controller)
        await clock.advance(10)
        await settle(controller)

        audio = of_type(outbox, "audio")
        assert len(audio) == 1
        assert controller.state == TurnState.SPEAKING
        assert of_type(outbox, "transcript")[0]["text"] == "what is next"

        await session.handle_message(json.dumps({"type": "playback_ended", "playback_id": audio[0]["playback_id"]}))
        await settle(controller)

        assert controller.state == TurnState.IDLE
        states = [m["state"] for m in of_type(outbox, "state")]
        assert "listening" in states and "speaking" in states
        await session.stop()

    @pytest.mark.asyncio
    async def test_stop_speaking_sends_stop_audio(self, chat_session, outbox, settle):
        session, controller = chat_session
        await controller.start()
        await session.start(controller)

        await session.handle_message('{"type": "typed", "text": "hi"}')
        await settle(controller)
        assert controller.state == TurnState.SPEAKING

        await session.handle_message('{"type": "stop_speaking"}')
        await settle(controller)

        playback_id = of_type(outbox, "audio")[0]["playback_id"]
        assert {"type": "stop_audio", "playback_id": playback_id} in outbox
        assert controller.state == TurnState.IDLE
        await session.stop()

    @pytest.mark.asyncio
    async def test_invalid_messages_are_dropped(self, chat_session, outbox, settle):
        session, controller = chat_session
        await controller.start()
        await session.start(controller)

        await session.handle_message("not json")
        await session.handle_message('{"type": "teleport"}')
        await settle(controller)

        assert controller.state == TurnState.IDLE
        await session.stop()


class TestCaptureGenerations:
    """Recognition messages from an earlier capture must not touch the current one."""

    async def _listening(self, session, controller, outbox, settle):
        await controller.start()
        await session.start(controller)
        await session.handle_message('{"type": "hello", "speech_supported": true}')
        await session.handle_message('{"type": "start_listening"}')
        await settle(controller)
        assert controller.state == TurnState.LISTENING
        return announced_generation(outbox)

    @pytest.mark.asyncio
    async def test_state_announces_capture_generation(self, chat_session, outbox, settle):
        session, controller = chat_session
        generation = await self._listening(session, controller, outbox, settle)

        assert generation == controller.capture.generation
        assert generation > 0
        await session.stop()

    @pytest.mark.asyncio
    async def test_late_capture_ended_keeps_new_capture(self, chat_session, outbox, settle):
        session, controller = chat_session
        first = await self._listening(session, controller, outbox, settle)

        await session.handle_message('{"type": "stop_listening"}')
        await session.handle_message('{"type": "start_listening"}')
        await settle(controller)
        second = announced_generation(outbox)
        assert second != first

        await session.handle_message(json.dumps({"type": "capture_ended", "generation": first}))
        await session.handle_message('{"type": "capture_ended"}')
        await settle(controller)

        assert controller.state == TurnState.LISTENING
        assert controller.capture.active

        await session.handle_message(json.dumps({"type": "capture_ended", "generation": second}))
        await settle(controller)

        assert controller.state == TurnState.IDLE
        await session.stop()

    @pytest.mark.asyncio
    async def test_late_capture_error_keeps_continuous_mode(self, chat_session, outbox, settle):
        session, controller = chat_session
        await controller.start()
        await session.start(controller)
        await session.handle_message('{"type": "hello", "speech_supported": true}')
        await session.handle_message('{"type": "toggle_continuous"}')
        await settle(controller)
        first = announced_generation(outbox)

        await session.handle_message('{"type": "stop_listening"}')
        await session.handle_message('{"type": "start_listening"}')
        await settle(controller)

        await session.handle_message(json.dumps({"type": "capture_error", "kind": "aborted", "generation": first}))
        await settle(controller)

        assert controller.continuous
        assert controller.state == TurnState.LISTENING
        assert not of_type(outbox, "notice")
        await session.stop()

    @pytest.mark.asyncio
    async def test_stale_fragments_do_not_leak(self, chat_session, outbox, settle):
        session, controller = chat_session
        first = await self._listening(session, controller, outbox, settle)

        await session.handle_message('{"type": "stop_listening"}')
        await session.handle_message('{"type": "start_listening"}')
        await settle(controller)
        second = announced_generation(outbox)

        await session.handle_message(json.dumps(
            {"type": "fragment", "text": "old words", "is_final": True, "generation": first}
        ))
        await session.handle_message(json.dumps(
            {"type": "fragment", "text": "new words", "is_final": True, "generation": second}
        ))
        await settle(controller)

        assert controller.live_transcript == "new words"
        await session.stop()

    @pytest.mark.asyncio
    async def test_continuous_restart_announces_new_generation(self, chat_session, outbox, settle):
        session, controller = chat_session
        await controller.start()
        await session.start(controller)
        await session.handle_message('{"type": "hello", "speech_supported": true}')
        await session.handle_message('{"type": "toggle_continuous"}')
        await settle(controller)
        first = announced_generation(outbox)

        # The engine stops on its own with nothing said; capture re-arms while still listening.
        await session.handle_message(json.dumps({"type": "capture_ended", "generation": first}))
        await settle(controller)

        assert controller.state == TurnState.LISTENING
        assert announced_generation(outbox) == controller.capture.generation
        assert announced_generation(outbox) != first
        await session.stop()


class TestPlaybackAcknowledgment:
    """A client that never reports playback finished must not pin the controller."""

    @pytest.mark.asyncio
    async def test_missing_acknowledgment_times_out(self, outbox, primary_tts, fallback_tts, assistant, clock, settle):
        async def send(message):
            outbox.append(json.loads(message))

        session = ChatSession(send, config=replace(get_config(), playback_ack_timeout_seconds=0.05))
        controller = TurnController(
            capture_provider=RemoteCaptureProvider(),
            synthesizer=SpeechSynthesizer(primary_tts, fallback_tts),
            sink=session.sink,
            assistant=assistant,
            config=session.config,
            sleep=clock.sleep,
        )
        await controller.start()
        await session.start(controller)

        await session.handle_message('{"type": "typed", "text": "hi"}')
        await settle(controller)
        assert controller.state == TurnState.SPEAKING

        await asyncio.sleep(0.2)
        await settle(controller)

        assert controller.state == TurnState.IDLE
        assert of_type(outbox, "audio")
        await session.stop()
