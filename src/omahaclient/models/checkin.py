from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

InstallSource = Literal["system_image", "organic"]

# Strings describing how the application arrived on the device. These values
# MUST NOT change without updating the matching server-side strings.
INSTALL_SOURCE_SYSTEM: InstallSource = "system_image"
INSTALL_SOURCE_ORGANIC: InstallSource = "organic"


@dataclass
class RequestRecord:
    """One logical check-in, possibly POSTed several times before it succeeds.

    ``request_id`` is shared by every retry of the same logical request; a new
    one is only generated when a brand-new record is registered.
    """

    request_id: str
    creation_timestamp: int
    is_install_event: bool
    install_source: str

    def age_ms(self, now: int) -> int:
        return now - self.creation_timestamp

    def age_seconds(self, now: int) -> int:
        return self.age_ms(now) // 1000


@dataclass
class SchedulerState:
    """Everything the check-in scheduler persists between cycles.

    Owned exclusively by CheckinScheduler and threaded explicitly through the
    store, the backoff helper and the sanity checks.
    """

    timestamp_for_new_request: int
    timestamp_for_next_post_attempt: int
    timestamp_of_install: int
    current_request: RequestRecord | None = None
    send_install_event: bool = True
    install_source: str = ""
    latest_known_version: str = ""
    latest_known_market_url: str = ""
    failed_attempt_count: int = 0

    # Set by the store when no install timestamp was on disk. Not persisted.
    fresh_install: bool = field(default=False, compare=False)

    @classmethod
    def initial(cls, now: int) -> SchedulerState:
        """State for an installation that has never run before."""
        return cls(
            timestamp_for_new_request=now,
            timestamp_for_next_post_attempt=now,
            timestamp_of_install=now,
            fresh_install=True,
        )

    @property
    def has_request(self) -> bool:
        return self.current_request is not None
