from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from src.voice.transcript import TranscriptFragment


class SpeechCaptureProvider(ABC):
    """
    Continuous speech-to-text capability.

    `fragments()` yields results until the engine stops. Normal exhaustion means the
    engine ended on its own; raising means capture failed.
    """

    name: str = "capture"

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def open(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def fragments(self) -> AsyncIterator[TranscriptFragment]:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    async def send_audio(self, audio_bytes: bytes) -> None:
        return None
