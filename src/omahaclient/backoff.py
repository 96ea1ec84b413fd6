"""Exponential backoff between POST attempts of the same logical request."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from omahaclient.models.checkin import SchedulerState

MS_PER_HOUR = 60 * 60 * 1000
POST_BASE_DELAY_MS = MS_PER_HOUR
POST_MAX_DELAY_MS = 5 * MS_PER_HOUR


class BackoffScheduler:
    """Computes retry delays; the failure counter itself lives in SchedulerState.

    The delay doubles with every consecutive failure and is capped at
    ``max_ms``. No jitter is applied.
    """

    def __init__(
        self,
        base_ms: int = POST_BASE_DELAY_MS,
        max_ms: int = POST_MAX_DELAY_MS,
    ) -> None:
        if base_ms <= 0 or max_ms < base_ms:
            raise ValueError(f"Invalid backoff bounds: base={base_ms} max={max_ms}")
        self.base_ms = base_ms
        self.max_ms = max_ms

    def delay_for_attempt(self, failed_attempts: int) -> int:
        n = max(0, failed_attempts)
        # Once base * 2**n passes max there is no point growing the integer further.
        if n >= self.max_ms.bit_length():
            return self.max_ms
        return min(self.base_ms * (1 << n), self.max_ms)

    def next_post_attempt_time(self, now: int, failed_attempts: int) -> int:
        return now + self.delay_for_attempt(failed_attempts)

    def reset_failed_attempts(self, state: SchedulerState) -> None:
        state.failed_attempt_count = 0

    def increase_failed_attempts(self, state: SchedulerState) -> None:
        state.failed_attempt_count += 1
