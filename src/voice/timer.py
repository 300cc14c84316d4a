"""
Single-slot silence deadline.

Silence is measured from the last speech activity, so every fragment re-arms the
timer. Re-arming cancels the pending deadline before starting a new one; there is
never more than one outstanding.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_SILENCE_COMMIT_MS = 10_000

SleepFn = Callable[[float], Awaitable[None]]


class SilenceCommitTimer:
    """Resettable single-shot deadline that fires at most once per `arm()`."""

    def __init__(self, *, sleep: Optional[SleepFn] = None, name: str = "silence_commit"):
        self._sleep: SleepFn = sleep or asyncio.sleep
        self._name = name
        self._task: Optional[asyncio.Task] = None
        self._token = 0
        self._fired = 0

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def fire_count(self) -> int:
        return self._fired

    def arm(self, duration_ms: int, on_fire: Callable[[], None]) -> None:
        """(Re)start the deadline. Any pending deadline is cancelled first."""
        self.cancel()
        self._token += 1
        token = self._token
        self._task = asyncio.create_task(
            self._run(token=token, delay_s=max(0, duration_ms) / 1000.0, on_fire=on_fire),
            name=f"{self._name}_{token}",
        )

    def cancel(self) -> None:
        """Cancel the pending deadline; no-op when nothing is pending."""
        # Bump the token so a deadline that already elapsed but hasn't run yet is spent.
        self._token += 1
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, *, token: int, delay_s: float, on_fire: Callable[[], None]) -> None:
        try:
            await self._sleep(delay_s)
        except asyncio.CancelledError:
            return

        if token != self._token:
            return

        self._task = None
        self._token += 1
        self._fired += 1
        logger.debug("Silence deadline reached", timer=self._name, delay_s=delay_s)
        on_fire()
