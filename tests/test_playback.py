"""
Tests for the playback session and speech sanitization.
"""

import pytest

from src.voice.events import PlaybackEnded, PlaybackFailed, PlaybackStarted
from src.voice.playback import PlaybackSession, sanitize_for_speech
from src.voice.tts import SpeechSynthesizer


class TestSanitizeForSpeech:
    """Tests for markdown stripping before synthesis."""

    def test_strips_emphasis_and_code(self):
        text = "**Great** job! You *really* ran `5km` today."
        assert sanitize_for_speech(text) == "Great job! You really ran 5km today."

    def test_strips_headings_bullets_and_numbers(self):
        text = "## Today\n- Workout\n* Read\n1. Call mom\n2. Journal"
        assert sanitize_for_speech(text) == "Today Workout Read Call mom Journal"

    def test_links_keep_their_label(self):
        assert sanitize_for_speech("See [your goals](https://x.test/goals).") == "See your goals."

    def test_blank(self):
        assert sanitize_for_speech("") == ""
        assert sanitize_for_speech("  \n ") == ""


class TestPlaybackSession:
    """Tests for PlaybackSession start/end/stop semantics."""

    @pytest.mark.asyncio
    async def test_natural_end_emits_started_and_ended_once(self, primary_tts, fallback_tts, sink, settle):
        events = []
        session = PlaybackSession(SpeechSynthesizer(primary_tts, fallback_tts), sink, events.append)

        handle = session.speak("Hello **there**")
        await settle()

        assert session.active
        assert primary_tts.calls == ["Hello there"]
        assert events == [PlaybackStarted(playback_id=handle.id, provider="elevenlabs")]

        sink.finish(handle.id)
        await settle()

        assert not session.active
        assert events[1:] == [PlaybackEnded(playback_id=handle.id)]
        assert session.metrics.completed == 1

    @pytest.mark.asyncio
    async def test_stop_never_emits_ended(self, primary_tts, fallback_tts, sink, settle):
        events = []
        session = PlaybackSession(SpeechSynthesizer(primary_tts, fallback_tts), sink, events.append)

        handle = session.speak("A long answer")
        await settle()
        session.stop()
        sink.finish(handle.id)
        await settle()

        assert not session.active
        assert sink.cancelled == [handle.id]
        assert not any(isinstance(e, PlaybackEnded) for e in events)
        assert session.metrics.interrupted == 1

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, primary_tts, fallback_tts, sink):
        session = PlaybackSession(SpeechSynthesizer(primary_tts, fallback_tts), sink, lambda e: None)

        session.stop()
        session.speak("hi")
        session.stop()
        session.stop()

        assert sink.cancelled == [1]
        assert not session.active

    @pytest.mark.asyncio
    async def test_speak_replaces_current_playback(self, primary_tts, fallback_tts, sink, settle):
        events = []
        session = PlaybackSession(SpeechSynthesizer(primary_tts, fallback_tts), sink, events.append)

        first = session.speak("first")
        await settle()
        second = session.speak("second")
        await settle()

        assert session.handle is second
        assert sink.cancelled == [first.id]

        sink.finish(first.id)
        sink.finish(second.id)
        await settle()

        ended = [e for e in events if isinstance(e, PlaybackEnded)]
        assert ended == [PlaybackEnded(playback_id=second.id)]

    @pytest.mark.asyncio
    async def test_fallback_is_transparent(self, primary_tts, fallback_tts, sink, settle):
        primary_tts.fail = True
        events = []
        session = PlaybackSession(SpeechSynthesizer(primary_tts, fallback_tts), sink, events.append)

        handle = session.speak("Your next habit is reading.")
        await settle()
        sink.finish(handle.id)
        await settle()

        assert events == [
            PlaybackStarted(playback_id=handle.id, provider="openai"),
            PlaybackEnded(playback_id=handle.id),
        ]
        assert primary_tts.calls == fallback_tts.calls == ["Your next habit is reading."]

    @pytest.mark.asyncio
    async def test_both_providers_failing_emits_failure(self, primary_tts, fallback_tts, sink, settle):
        primary_tts.fail = True
        fallback_tts.fail = True
        events = []
        session = PlaybackSession(SpeechSynthesizer(primary_tts, fallback_tts), sink, events.append)

        handle = session.speak("hello")
        await settle()

        assert len(events) == 1
        assert isinstance(events[0], PlaybackFailed)
        assert events[0].playback_id == handle.id
        assert events[0].kind == "synthesis_failed"
        assert not session.active
        assert sink.played == []

    @pytest.mark.asyncio
    async def test_sink_error_emits_failure(self, primary_tts, fallback_tts, sink, settle):
        sink.fail_next = True
        events = []
        session = PlaybackSession(SpeechSynthesizer(primary_tts, fallback_tts), sink, events.append)

        handle = session.speak("hello")
        await settle()

        assert isinstance(events[-1], PlaybackFailed)
        assert events[-1].playback_id == handle.id
        assert not session.active

    @pytest.mark.asyncio
    async def test_nothing_speakable(self, primary_tts, fallback_tts, sink, settle):
        events = []
        session = PlaybackSession(SpeechSynthesizer(primary_tts, fallback_tts), sink, events.append)

        assert session.speak("** **") is None
        await settle()

        assert events == []
        assert primary_tts.calls == []
