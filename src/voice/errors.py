"""
Error taxonomy for the voice turn-taking layer.

Capability code (capture, synthesis, assistant) raises these; the turn controller
catches them at its boundary and turns them into state transitions plus a
user-visible `Notice`. None of them should reach the UI as an exception.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


class VoiceError(Exception):
    """Base class for turn-taking errors."""

    kind: str = "voice_error"


class CaptureUnavailable(VoiceError):
    """The host has no speech capture capability (typed input only)."""

    kind = "capture_unavailable"


class CaptureAlreadyActive(VoiceError):
    """`start()` was called on a capture session that is already running."""

    kind = "capture_already_active"


class CaptureError(VoiceError):
    """Transient failure while a capture session was active."""

    kind = "capture_error"

    def __init__(self, message: str = "", *, reason: str = "unknown"):
        super().__init__(message or reason)
        self.reason = reason


class SynthesisPrimaryFailed(VoiceError):
    """Primary synthesis provider failed; recovered by the fallback provider."""

    kind = "synthesis_primary_failed"


class SynthesisFailed(VoiceError):
    """Both synthesis providers failed for a text."""

    kind = "synthesis_failed"


class AssistantQueryFailed(VoiceError):
    """Network or backend failure while querying the assistant."""

    kind = "assistant_query_failed"


@dataclass(frozen=True)
class Notice:
    """Non-fatal notice surfaced to the dashboard UI."""

    kind: str
    message: str
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_error(cls, error: VoiceError, message: str) -> "Notice":
        return cls(kind=error.kind, message=message)
