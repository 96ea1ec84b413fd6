"""Protocol interfaces for swappable components.

CheckinScheduler references these protocols, not the concrete
implementations. This allows:
- Tests to use a fake clock, an in-memory store and a scripted transport
- Hosts to plug in their own storage (e.g. a platform preferences file)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from omahaclient.errors import RequestFailure
    from omahaclient.models.checkin import SchedulerState


class ClockProtocol(Protocol):
    """Source of the current time in epoch milliseconds."""

    def now(self) -> int: ...


class StateStoreProtocol(Protocol):
    """Interface for durable scheduler state."""

    async def load(self, now: int) -> SchedulerState: ...

    async def save(self, state: SchedulerState) -> None: ...


class TransportProtocol(Protocol):
    """Interface for the HTTP POST to the update server."""

    async def post(
        self,
        url: str,
        payload: str,
        headers: dict[str, str] | None = None,
    ) -> str | RequestFailure: ...
