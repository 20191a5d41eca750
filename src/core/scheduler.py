"""Periodic tick scheduler with pause/resume and in-flight suppression."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum

logger = logging.getLogger(__name__)

TickHandler = Callable[[], Awaitable[None]]
SkipCheck = Callable[[], Awaitable[bool]]


class SchedulerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class TickScheduler:
    """Fires ``on_tick`` every ``interval_seconds`` while running.

    At most one tick runs at a time: a firing while a tick is in flight is
    skipped silently, as is a firing for which ``should_skip`` returns True.
    The in-flight flag is set before the skip check is awaited so that no
    other firing can interleave.
    """

    def __init__(
        self,
        interval_seconds: float = 7.0,
        on_tick: TickHandler | None = None,
        should_skip: SkipCheck | None = None,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds
        self._on_tick = on_tick
        self._should_skip = should_skip
        self._state = SchedulerState.IDLE
        self._timer: asyncio.Task[None] | None = None
        self._tick_task: asyncio.Task[None] | None = None
        self._tick_in_progress = False
        self._last_tick_time: float | None = None
        self._next_due: float | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_tick_in_progress(self) -> bool:
        return self._tick_in_progress

    @property
    def last_tick_time(self) -> float | None:
        """Monotonic time at which the handler last completed without raising."""
        return self._last_tick_time

    @property
    def time_until_next_tick(self) -> float | None:
        if self._state != SchedulerState.RUNNING or self._next_due is None:
            return None
        return max(0.0, self._next_due - time.monotonic())

    def start(self) -> None:
        """Start ticking. No-op when already running or paused."""
        if self._state in (SchedulerState.RUNNING, SchedulerState.PAUSED):
            return
        self._last_tick_time = None
        self._state = SchedulerState.RUNNING
        self._install_timer()
        logger.info("Scheduler started (interval=%.1fs)", self.interval_seconds)

    def pause(self) -> None:
        if self._state != SchedulerState.RUNNING:
            return
        self._cancel_timer()
        self._state = SchedulerState.PAUSED
        logger.info("Scheduler paused")

    def resume(self) -> None:
        if self._state != SchedulerState.PAUSED:
            return
        self._state = SchedulerState.RUNNING
        self._install_timer()
        logger.info("Scheduler resumed")

    def stop(self) -> None:
        """Stop ticking; a later :meth:`start` is a fresh start."""
        if self._state in (SchedulerState.IDLE, SchedulerState.STOPPED):
            return
        self._cancel_timer()
        self._state = SchedulerState.STOPPED
        self._last_tick_time = None
        self._next_due = None
        logger.info("Scheduler stopped")

    def fire(self) -> asyncio.Task[None] | None:
        """Handle one timer firing; returns the tick task, or None if skipped."""
        if self._state != SchedulerState.RUNNING or self._tick_in_progress:
            return None
        self._tick_in_progress = True
        self._tick_task = asyncio.create_task(self._tick())
        return self._tick_task

    async def _tick(self) -> None:
        try:
            if self._should_skip is not None and await self._should_skip():
                logger.debug("Tick skipped: nothing new to analyze")
                return
            if self._on_tick is None:
                return
            await self._on_tick()
            self._last_tick_time = time.monotonic()
        except Exception:
            logger.exception("Tick handler failed")
        finally:
            self._tick_in_progress = False

    def _install_timer(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.create_task(self._run_timer())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self) -> None:
        while True:
            self._next_due = time.monotonic() + self.interval_seconds
            await asyncio.sleep(self.interval_seconds)
            self.fire()
