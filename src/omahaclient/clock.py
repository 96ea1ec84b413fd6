"""Wall-clock source for scheduling decisions.

All scheduler timestamps are integer milliseconds since the Unix epoch, the
same unit the persisted state uses.
"""

from __future__ import annotations

from datetime import UTC, datetime


class SystemClock:
    """Reads the host's wall clock. Implements ClockProtocol."""

    def now(self) -> int:
        return int(datetime.now(UTC).timestamp() * 1000)
