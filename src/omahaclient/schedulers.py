"""Host-side timer driving the check-in scheduler.

The scheduler itself only computes *when* it wants to run next; this module
is the timer facility that delivers those firings. Two modes:

- ``once``: run one cycle and return. For hosts that already own a timer
  (cron, systemd timers, an OS alarm) and invoke the process on schedule.
- ``daemon``: stay resident and keep a single in-process wake-up armed.
"""

from __future__ import annotations

import asyncio
from contextlib import suppress
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from omahaclient.protocols import ClockProtocol
    from omahaclient.state import AppState

log = structlog.get_logger()


class CheckinTimer:
    """One pending wake-up at a time.

    Arming replaces whatever was armed before rather than stacking a second
    firing, and ``poke()`` (e.g. the application returning to the foreground)
    wakes a waiting loop immediately.
    """

    def __init__(self, clock: ClockProtocol) -> None:
        self._clock = clock
        self._wake = asyncio.Event()
        self.armed_at: int | None = None

    def arm(self, at_ms: int | None) -> None:
        self.armed_at = at_ms

    def poke(self) -> None:
        self._wake.set()

    def delay_seconds(self, idle_seconds: float) -> float:
        """Seconds until the armed time, or ``idle_seconds`` when disarmed."""
        if self.armed_at is None:
            return idle_seconds
        return max(0.0, (self.armed_at - self._clock.now()) / 1000)

    async def wait(self, idle_seconds: float) -> None:
        delay = self.delay_seconds(idle_seconds)
        with suppress(TimeoutError):
            await asyncio.wait_for(self._wake.wait(), timeout=delay)
        self._wake.clear()


async def run_checkin_scheduler(state: AppState) -> None:
    """Fire check-in cycles until cancelled (daemon) or once (once mode)."""
    scheduler = state.scheduler
    if scheduler is None:
        return

    if state.settings.server.mode == "once":
        try:
            next_fire = await scheduler.on_timer_fired()
            log.info("checkin_cycle_complete", mode="once", next_fire_at=next_fire)
        except Exception:
            log.warning("checkin_scheduler_error", mode="once", exc_info=True)
        return

    timer = state.timer
    if timer is None:
        return

    idle_seconds = state.settings.server.idle_poll_seconds

    while True:
        try:
            next_fire = await scheduler.on_timer_fired()
        except Exception:
            log.warning("checkin_scheduler_error", mode="daemon", exc_info=True)
            next_fire = None

        timer.arm(next_fire)
        log.debug(
            "checkin_timer_armed",
            next_fire_at=next_fire,
            delay_seconds=timer.delay_seconds(idle_seconds),
        )
        await timer.wait(idle_seconds)
