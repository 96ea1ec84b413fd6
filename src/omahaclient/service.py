"""Service entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState via the lifespan context manager
- Run the check-in timer in the configured mode
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog

from omahaclient import __version__
from omahaclient.client import CheckinScheduler
from omahaclient.clock import SystemClock
from omahaclient.config import Settings
from omahaclient.schedulers import CheckinTimer, run_checkin_scheduler
from omahaclient.state import AppState
from omahaclient.store import open_state_store
from omahaclient.transport import HttpTransport, build_http_client

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from omahaclient.protocols import ClockProtocol

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [*shared_processors, structlog.processors.JSONRenderer()]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(
    settings: Settings,
    *,
    clock: ClockProtocol | None = None,
) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the process lifetime."""
    clock = clock or SystemClock()

    log.info(
        "service_starting",
        version=__version__,
        mode=settings.server.mode,
        state_backend=settings.state.backend,
    )

    http_client = build_http_client()
    try:
        async with open_state_store(settings) as store:
            scheduler = CheckinScheduler.from_settings(
                settings,
                store=store,
                transport=HttpTransport(http_client),
                clock=clock,
            )
            state = AppState(
                settings=settings,
                clock=clock,
                http_client=http_client,
                store=store,
                scheduler=scheduler,
                timer=CheckinTimer(clock),
            )
            log.info("service_started", server_url=settings.server.url)
            yield state
    finally:
        await http_client.aclose()
        log.info("service_stopping")


async def _run(settings: Settings) -> None:
    async with lifespan(settings) as state:
        await run_checkin_scheduler(state)


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)

    try:
        asyncio.run(_run(settings))
    except KeyboardInterrupt:
        log.info("service_interrupted")


if __name__ == "__main__":
    main()
