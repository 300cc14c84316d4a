"""
Transcript accumulation for a single utterance.

Streaming recognizers emit many interim hypotheses and occasional final
segments. `TranscriptBuffer` keeps confirmed text separate from the latest
hypothesis so the UI can show live progress while the commit only uses what
the engine has confirmed.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class TranscriptFragment:
    """A single incremental speech-to-text result."""

    text: str
    is_final: bool
    received_at: float = field(default_factory=time.time)


def _join(left: str, right: str) -> str:
    left = left.rstrip()
    right = right.strip()
    if not left:
        return right
    if not right:
        return left
    return f"{left} {right}"


@dataclass
class TranscriptBuffer:
    """Accumulates fragments until commit or cancel."""

    final_text: str = ""
    interim_text: str = ""
    last_update_at: float = 0.0

    def append_fragment(self, fragment: TranscriptFragment) -> None:
        if fragment.is_final:
            self.final_text = _join(self.final_text, fragment.text)
            # The engine has confirmed the pending hypothesis.
            self.interim_text = ""
        else:
            self.interim_text = fragment.text.strip()
        self.last_update_at = time.time()

    def current_text(self) -> str:
        return _join(self.final_text, self.interim_text)

    def commit_text(self) -> str:
        """
        Text to submit for this utterance.

        Confirmed text wins over the interim hypothesis; the interim text is only
        used when the engine never emitted a final fragment before the deadline.
        """
        final = self.final_text.strip()
        if final:
            return final
        return self.interim_text.strip()

    def reset(self) -> None:
        self.final_text = ""
        self.interim_text = ""

    @property
    def is_empty(self) -> bool:
        return not self.final_text.strip() and not self.interim_text.strip()
