from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class SynthesizedAudio:
    """
    A complete synthesized utterance, ready to hand to an audio sink.

    `audio_bytes` is encoded according to `mime_type` (mp3 from both providers by default).
    """

    audio_bytes: bytes
    mime_type: str = "audio/mpeg"
    provider: str = ""
    timestamp: float = field(default_factory=time.time)

    # Optional: structured metadata for debugging/metrics.
    meta: Optional[dict[str, Any]] = None

    @property
    def is_empty(self) -> bool:
        return not self.audio_bytes
