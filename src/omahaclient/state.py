"""Application state container.

AppState is created once by the service lifespan (the composition root) and
handed to the host timer loop. There are no module-level singletons: anything
that needs the scheduler receives this object.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from omahaclient.client import CheckinScheduler
    from omahaclient.config import Settings
    from omahaclient.protocols import ClockProtocol, StateStoreProtocol
    from omahaclient.schedulers import CheckinTimer


@dataclass
class AppState:
    """Holds all shared runtime state."""

    settings: Settings
    clock: ClockProtocol
    http_client: httpx.AsyncClient | None = None
    store: StateStoreProtocol | None = None
    scheduler: CheckinScheduler | None = None
    timer: CheckinTimer | None = None
