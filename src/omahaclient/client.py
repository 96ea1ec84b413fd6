"""Check-in scheduler: decides when to create, POST and retire update requests.

Each call to ``on_timer_fired`` is one scheduling cycle:

1. Restore persisted state (once per process) and sanity-check its timestamps
   against the current clock.
2. If the application is actively used, register a new request when none is
   outstanding and the request interval has elapsed, or when the outstanding
   one has gone stale.
3. If a request is outstanding and its next POST time has arrived, render it,
   POST it and parse the reply. Success retires the request; failure keeps it
   and pushes the next attempt out with exponential backoff.
4. Persist everything that changed and tell the host when to fire next.

Cycles are serialized with an asyncio.Lock: a firing that arrives while an
earlier cycle is still waiting on the network queues behind it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import structlog

from omahaclient.backoff import MS_PER_HOUR, POST_MAX_DELAY_MS, BackoffScheduler
from omahaclient.clock import SystemClock
from omahaclient.errors import RequestFailure
from omahaclient.generator import RequestGenerator, generate_id, install_age_days
from omahaclient.models.checkin import (
    INSTALL_SOURCE_ORGANIC,
    INSTALL_SOURCE_SYSTEM,
    RequestRecord,
    SchedulerState,
)
from omahaclient.models.update import PostSuccess, UpdateInfo
from omahaclient.parser import ResponseParser
from omahaclient.versions import is_newer_version_available

if TYPE_CHECKING:
    from collections.abc import Callable

    from omahaclient.config import Settings
    from omahaclient.models import PostResult
    from omahaclient.protocols import ClockProtocol, StateStoreProtocol, TransportProtocol

log = structlog.get_logger()

MS_BETWEEN_REQUESTS = 5 * MS_PER_HOUR
REQUEST_AGE_HEADER = "X-RequestAge"


def sanity_check(
    state: SchedulerState,
    now: int,
    *,
    request_interval_ms: int = MS_BETWEEN_REQUESTS,
    max_post_delay_ms: int = POST_MAX_DELAY_MS,
) -> bool:
    """Clamp timestamps that a clock change has pushed out of range.

    Returns True when anything was rewritten and the state must be persisted.
    Running it again on an already clamped state changes nothing.
    """
    dirty = False

    delay_to_new_request = state.timestamp_for_new_request - now
    if delay_to_new_request > request_interval_ms:
        log.warning(
            "state_clamped",
            field="timestamp_for_new_request",
            delay_ms=delay_to_new_request,
            limit_ms=request_interval_ms,
        )
        state.timestamp_for_new_request = now
        dirty = True

    # Checked in both directions: a next-post time further away from now than
    # the longest backoff can only come from the clock jumping.
    delay_to_next_post = state.timestamp_for_next_post_attempt - now
    if abs(delay_to_next_post) > max_post_delay_ms:
        log.warning(
            "state_clamped",
            field="timestamp_for_next_post_attempt",
            delay_ms=delay_to_next_post,
            limit_ms=max_post_delay_ms,
        )
        state.timestamp_for_next_post_attempt = now
        dirty = True

    return dirty


def _always_active() -> bool:
    return True


def _organic_install() -> str:
    return INSTALL_SOURCE_ORGANIC


class CheckinScheduler:
    """Owns the SchedulerState and drives the request lifecycle."""

    def __init__(
        self,
        *,
        store: StateStoreProtocol,
        transport: TransportProtocol,
        generator: RequestGenerator,
        server_url: str,
        current_version: Callable[[], str],
        is_actively_used: Callable[[], bool] = _always_active,
        install_source: Callable[[], str] = _organic_install,
        clock: ClockProtocol | None = None,
        backoff: BackoffScheduler | None = None,
        request_interval_ms: int = MS_BETWEEN_REQUESTS,
        enable_communication: bool = True,
        enable_update_detection: bool = True,
        strict_response_parsing: bool = True,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self._store = store
        self._transport = transport
        self._generator = generator
        self._server_url = server_url
        self._current_version = current_version
        self._is_actively_used = is_actively_used
        self._install_source = install_source
        self._clock = clock or SystemClock()
        self._backoff = backoff or BackoffScheduler()
        self._request_interval_ms = request_interval_ms
        self._enable_communication = enable_communication
        self._enable_update_detection = enable_update_detection
        self._strict_response_parsing = strict_response_parsing
        self._new_id = id_factory

        self._lock = asyncio.Lock()
        self._state: SchedulerState | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: StateStoreProtocol,
        transport: TransportProtocol,
        clock: ClockProtocol | None = None,
    ) -> CheckinScheduler:
        client_settings = settings.client
        source = INSTALL_SOURCE_SYSTEM if client_settings.system_image else INSTALL_SOURCE_ORGANIC
        return cls(
            store=store,
            transport=transport,
            generator=RequestGenerator.from_settings(client_settings),
            server_url=settings.server.url,
            current_version=lambda: client_settings.version,
            is_actively_used=lambda: client_settings.assume_active,
            install_source=lambda: source,
            clock=clock,
            enable_communication=client_settings.enable_communication,
            enable_update_detection=client_settings.enable_update_detection,
            strict_response_parsing=client_settings.strict_response_parsing,
        )

    @property
    def state(self) -> SchedulerState | None:
        """The live state, or None before the first restore. Do not mutate."""
        return self._state

    # ------------------------------------------------------------------
    # Restoration
    # ------------------------------------------------------------------

    async def restore_state(self, now: int | None = None) -> SchedulerState:
        """Load persisted state and repair it. Safe to call more than once."""
        async with self._lock:
            return await self._restore_locked(self._clock.now() if now is None else now)

    async def _restore_locked(self, now: int) -> SchedulerState:
        state = await self._store.load(now)
        dirty = state.fresh_install

        if not state.install_source:
            state.install_source = self._install_source()
            dirty = True

        request = state.current_request
        if request is not None:
            request.install_source = state.install_source
            # Only install events keep their id across restarts; the server does
            # not expect persisted ids for pings or update checks.
            if not request.is_install_event or not request.request_id:
                request.request_id = self._new_id()

        dirty |= sanity_check(
            state,
            now,
            request_interval_ms=self._request_interval_ms,
            max_post_delay_ms=self._backoff.max_ms,
        )
        if dirty:
            await self._store.save(state)

        self._state = state
        log.info(
            "state_restored",
            has_request=state.has_request,
            send_install_event=state.send_install_event,
            failed_attempts=state.failed_attempt_count,
            fresh_install=state.fresh_install,
            rewritten=dirty,
        )
        return state

    async def _ensure_restored(self) -> SchedulerState:
        if self._state is not None:
            return self._state
        async with self._lock:
            if self._state is not None:
                return self._state
            return await self._restore_locked(self._clock.now())

    # ------------------------------------------------------------------
    # Scheduling cycle
    # ------------------------------------------------------------------

    async def on_timer_fired(self, now: int | None = None) -> int | None:
        """Run one scheduling cycle.

        Returns the epoch-millisecond time at which the host should fire
        again, or None when nothing is pending and the application is not in
        use (the recurring timer may stay disarmed until activity resumes).
        """
        async with self._lock:
            now = self._clock.now() if now is None else now

            if not self._enable_communication:
                log.debug("checkin_disabled")
                return None

            state = self._state if self._state is not None else await self._restore_locked(now)
            changed = False

            active = self._is_actively_used()
            if active:
                request = state.current_request
                is_too_old = (
                    request is not None and request.age_ms(now) >= self._request_interval_ms
                )
                is_overdue = request is None and now >= state.timestamp_for_new_request
                if is_too_old or is_overdue:
                    self.register_new_request(state, now)
                    changed = True
            else:
                log.debug("checkin_inactive", has_request=state.has_request)

            if state.current_request is not None and now >= state.timestamp_for_next_post_attempt:
                await self._post_current_request(state, now)
                changed = True

            if changed:
                await self._store.save(state)

            return self._next_fire_time(state, active)

    def register_new_request(self, state: SchedulerState, now: int) -> RequestRecord:
        """Replace any outstanding request with a fresh one created at ``now``."""
        record = RequestRecord(
            request_id=self._new_id(),
            creation_timestamp=now,
            is_install_event=state.send_install_event,
            install_source=state.install_source,
        )
        state.current_request = record
        self._backoff.reset_failed_attempts(state)
        state.timestamp_for_next_post_attempt = now
        # Tentative; pushed out again once the server acknowledges a request.
        state.timestamp_for_new_request = now + self._request_interval_ms
        log.info(
            "checkin_request_registered",
            request_id=record.request_id,
            install_event=record.is_install_event,
        )
        return record

    async def _post_current_request(self, state: SchedulerState, now: int) -> None:
        # Every POST in the same cycle shares one session id.
        session_id = self._new_id()
        sending_install_request = state.send_install_event

        result = await self._generate_and_post(state, now, session_id)

        if isinstance(result, PostSuccess) and sending_install_request:
            # Only the first request ever sent carries the install event.
            state.send_install_event = False
            # Follow up straight away with a regular ping and update check.
            self.register_new_request(state, now)
            await self._generate_and_post(state, now, session_id)

    async def _generate_and_post(
        self,
        state: SchedulerState,
        now: int,
        session_id: str,
    ) -> PostResult:
        request = state.current_request
        if request is None:
            raise RuntimeError("No outstanding request to post")

        install_age = install_age_days(now, state.timestamp_of_install, request.is_install_event)
        payload = self._generator.render(request, self._current_version(), install_age, session_id)

        headers: dict[str, str] = {}
        if request.is_install_event and state.failed_attempt_count > 0:
            headers[REQUEST_AGE_HEADER] = str(request.age_seconds(now))

        response = await self._transport.post(self._server_url, payload, headers)

        result: PostResult
        if isinstance(response, RequestFailure):
            result = response
        else:
            parser = ResponseParser.for_request(
                self._generator.app_id,
                is_install_event=request.is_install_event,
                strict=self._strict_response_parsing,
            )
            parsed = parser.parse(response)
            result = parsed if isinstance(parsed, RequestFailure) else PostSuccess(parsed)

        if isinstance(result, PostSuccess):
            self._apply_success(state, now, request, result.update)
        else:
            self._apply_failure(state, now, request, result)
        return result

    def _apply_success(
        self,
        state: SchedulerState,
        now: int,
        request: RequestRecord,
        update: UpdateInfo,
    ) -> None:
        state.current_request = None
        state.timestamp_for_next_post_attempt = now + self._backoff.base_ms
        self._backoff.reset_failed_attempts(state)
        state.timestamp_for_new_request = now + self._request_interval_ms
        state.latest_known_version = update.new_version or ""
        state.latest_known_market_url = update.market_url or ""
        log.info(
            "checkin_post_succeeded",
            request_id=request.request_id,
            install_event=request.is_install_event,
            update_status=update.update_status,
            new_version=update.new_version,
            next_request_at=state.timestamp_for_new_request,
        )

    def _apply_failure(
        self,
        state: SchedulerState,
        now: int,
        request: RequestRecord,
        failure: RequestFailure,
    ) -> None:
        state.timestamp_for_next_post_attempt = self._backoff.next_post_attempt_time(
            now, state.failed_attempt_count
        )
        self._backoff.increase_failed_attempts(state)
        log.warning(
            "checkin_post_failed",
            request_id=request.request_id,
            **failure.to_dict(),
            failed_attempts=state.failed_attempt_count,
            next_attempt_at=state.timestamp_for_next_post_attempt,
        )

    @staticmethod
    def _next_fire_time(state: SchedulerState, active: bool) -> int | None:
        if state.current_request is not None:
            return state.timestamp_for_next_post_attempt
        if active:
            return state.timestamp_for_new_request
        return None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def is_newer_version_available(self) -> bool:
        """Whether the last server answer announced a version newer than ours.

        Does not contact the server; may read the store on first use.
        """
        state = await self._ensure_restored()
        return is_newer_version_available(
            self._current_version(),
            state.latest_known_version,
            state.latest_known_market_url,
            enabled=self._enable_update_detection,
        )

    async def latest_version(self) -> str:
        return (await self._ensure_restored()).latest_known_version

    async def market_url(self) -> str:
        return (await self._ensure_restored()).latest_known_market_url

    async def is_fresh_install(self) -> bool:
        """True when this process found no install timestamp on disk."""
        return (await self._ensure_restored()).fresh_install
