"""
Pytest configuration and fixtures.
"""

import asyncio
import heapq
import os
from dataclasses import replace
from typing import Dict, List, Optional
from unittest.mock import patch

import pytest
import pytest_asyncio

from src.voice.assistant import AssistantClient
from src.voice.capture_providers.remote import RemoteCaptureProvider
from src.voice.errors import AssistantQueryFailed
from src.voice.playback import AudioSink
from src.voice.tts_providers.base import TTSProvider
from src.voice.tts_types import SynthesizedAudio


@pytest.fixture(autouse=True)
def mock_env_vars():
    """Mock environment variables for tests."""
    env_vars = {
        "PORT": "7860",
        "LOG_LEVEL": "DEBUG",
        "SILENCE_COMMIT_MS": "10000",
        "CONTINUOUS_RESTART_DELAY_MS": "0",
        "CAPTURE_PROVIDER": "remote",
        "DEEPGRAM_API_KEY": "test_deepgram_key",
        "TTS_PRIMARY": "elevenlabs",
        "TTS_FALLBACK": "openai",
        "ELEVENLABS_API_KEY": "test_elevenlabs_key",
        "ELEVENLABS_VOICE_ID": "",
        "OPENAI_API_KEY": "test_openai_key",
        "ASSISTANT_PROVIDER": "dashboard",
        "ASSISTANT_URL": "http://dashboard.test/api/chat",
        "WELCOME_MESSAGE": "Hi! How can I help?",
    }

    with patch.dict(os.environ, env_vars):
        # Clear config cache
        from src.voice.config import get_config
        get_config.cache_clear()
        yield
        get_config.cache_clear()


async def yield_to_loop(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class VirtualClock:
    """
    Deterministic replacement for `asyncio.sleep`.

    Sleepers only wake when the test advances the clock past their deadline.
    """

    def __init__(self):
        self.now = 0.0
        self._sleepers: list = []
        self._seq = 0

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self._sleepers, (self.now + max(0.0, delay), self._seq, future))
        await future

    @property
    def pending(self) -> int:
        return sum(1 for _, _, f in self._sleepers if not f.done())

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await yield_to_loop()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self.now = deadline
            future.set_result(None)
            await yield_to_loop()
        self.now = target
        await yield_to_loop()


class FakeTTSProvider(TTSProvider):
    def __init__(self, name: str, *, fail: bool = False, audio: bytes = b"mp3-bytes"):
        self.name = name
        self.fail = fail
        self.audio = audio
        self.calls: List[str] = []
        self.cancelled = 0
        self.closed = False

    async def synthesize(self, text: str) -> SynthesizedAudio:
        self.calls.append(text)
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError(f"{self.name} unavailable")
        return SynthesizedAudio(audio_bytes=self.audio, provider=self.name)

    def cancel(self) -> None:
        self.cancelled += 1

    async def close(self) -> None:
        self.closed = True


class FakeSink(AudioSink):
    """Audio sink whose clips only finish when the test says so."""

    def __init__(self):
        self.played: List[int] = []
        self.cancelled: List[int] = []
        self.audio: Dict[int, SynthesizedAudio] = {}
        self._done: Dict[int, asyncio.Future] = {}
        self.fail_next = False

    async def play(self, audio: SynthesizedAudio, *, playback_id: int) -> None:
        if self.fail_next:
            self.fail_next = False
            raise RuntimeError("audio device error")
        self.played.append(playback_id)
        self.audio[playback_id] = audio
        future = asyncio.get_running_loop().create_future()
        self._done[playback_id] = future
        await future

    def finish(self, playback_id: Optional[int] = None) -> None:
        if playback_id is None:
            playback_id = self.played[-1]
        future = self._done.get(playback_id)
        if future is not None and not future.done():
            future.set_result(None)

    def cancel(self, playback_id: int) -> None:
        self.cancelled.append(playback_id)


class FakeAssistant(AssistantClient):
    """Scripted assistant: replies are streamed word by word."""

    name = "fake"

    def __init__(self, replies: Optional[List[str]] = None):
        self.replies = list(replies or [])
        self.histories: List[List[Dict[str, str]]] = []
        self.fail = False
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def submit(self, history):
        self.histories.append([dict(m) for m in history])
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise AssistantQueryFailed("HTTP error! status: 500")
        reply = self.replies.pop(0) if self.replies else "OK."
        words = reply.split(" ")
        for i, word in enumerate(words):
            await asyncio.sleep(0)
            yield word if i == 0 else " " + word

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def capture_provider():
    return RemoteCaptureProvider(available=True)


@pytest.fixture
def primary_tts():
    return FakeTTSProvider("elevenlabs")


@pytest.fixture
def fallback_tts():
    return FakeTTSProvider("openai")


@pytest.fixture
def sink():
    return FakeSink()


@pytest.fixture
def assistant():
    return FakeAssistant()


@pytest.fixture
def settle():
    """Run the loop until the controller has handled everything in flight."""

    async def _settle(controller=None, rounds: int = 10) -> None:
        for _ in range(rounds):
            await yield_to_loop()
            if controller is not None:
                await controller.drain()

    return _settle


@pytest_asyncio.fixture
async def make_controller(capture_provider, primary_tts, fallback_tts, sink, assistant, clock):
    """Build started controllers wired to the fakes; closed after the test."""
    from src.voice.config import get_config
    from src.voice.controller import TurnController
    from src.voice.tts import SpeechSynthesizer

    controllers = []

    async def _make(**overrides):
        config = replace(get_config(), **overrides)
        controller = TurnController(
            capture_provider=capture_provider,
            synthesizer=SpeechSynthesizer(primary_tts, fallback_tts),
            sink=sink,
            assistant=assistant,
            config=config,
            sleep=clock.sleep,
        )
        await controller.start()
        controllers.append(controller)
        return controller

    yield _make

    for controller in controllers:
        await controller.close()
