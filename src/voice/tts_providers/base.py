from __future__ import annotations

from abc import ABC, abstractmethod

from src.voice.tts_types import SynthesizedAudio


class TTSProvider(ABC):
    name: str = "tts"

    @abstractmethod
    async def synthesize(self, text: str) -> SynthesizedAudio:
        raise NotImplementedError

    def cancel(self) -> None:
        return None

    async def close(self) -> None:
        return None
