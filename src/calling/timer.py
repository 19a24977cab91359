"""Elapsed-time ticker for the call currently in progress."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from utils.ml_logging import get_logger

from .models import CallSession, CallState

logger = get_logger("calling.timer")


def format_duration(seconds: int) -> str:
    """Render ``seconds`` as H:MM:SS."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


class DurationTimer:
    """
    Counts whole ticks while the controller is Ongoing.

    Read-only with respect to the call: it listens to state transitions and
    never feeds anything back into the controller. The tick task is cancelled
    as soon as the state leaves Ongoing, and the next Ongoing entry restarts
    the count from zero.
    """

    def __init__(self, controller, *, tick_seconds: float = 1.0) -> None:
        if tick_seconds <= 0:
            raise ValueError("tick_seconds must be positive")
        self._controller = controller
        self._tick_seconds = tick_seconds
        self._task: asyncio.Task | None = None
        self._tick_listeners: list[Callable[[int], None]] = []
        self.elapsed = 0
        self.open()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def formatted(self) -> str:
        return format_duration(self.elapsed)

    def add_tick_listener(self, listener: Callable[[int], None]) -> None:
        self._tick_listeners.append(listener)

    def _on_state_change(self, previous: CallState, current: CallState, session: CallSession) -> None:
        if current is CallState.ONGOING:
            self._start()
        elif previous is CallState.ONGOING:
            self._stop()

    def _start(self) -> None:
        self._stop()
        self.elapsed = 0
        self._task = asyncio.get_running_loop().create_task(self._run())

    def _stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            logger.debug("Duration timer stopped at %ss", self.elapsed)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            self.elapsed += 1
            for listener in list(self._tick_listeners):
                try:
                    listener(self.elapsed)
                except Exception:
                    logger.exception("Tick listener failed")

    def open(self) -> None:
        """Subscribe to the controller again after ``close()``; a no-op while subscribed."""
        self._controller.add_state_listener(self._on_state_change)

    def close(self) -> None:
        self._stop()
        self._controller.remove_state_listener(self._on_state_change)
