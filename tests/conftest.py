"""Shared test fixtures for the omahaclient test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from omahaclient.backoff import BackoffScheduler
from omahaclient.client import CheckinScheduler
from omahaclient.generator import RequestGenerator
from omahaclient.store import state_from_items, state_to_items

if TYPE_CHECKING:
    from collections.abc import Callable

    from omahaclient.errors import RequestFailure
    from omahaclient.models.checkin import SchedulerState

APP_ID = "{8a69d345-d564-463c-aff1-a69d9e530f96}"
SERVER_URL = "https://update.example/service/update2"
T0 = 1_700_000_000_000


class FakeClock:
    """Settable millisecond clock."""

    def __init__(self, start: int = T0) -> None:
        self.current = start

    def now(self) -> int:
        return self.current

    def advance(self, ms: int) -> None:
        self.current += ms


class MemoryStateStore:
    """In-memory store that still goes through the persisted key/value codec."""

    def __init__(self, items: dict[str, str] | None = None) -> None:
        self.items: dict[str, str] = dict(items or {})
        self.saves = 0

    async def load(self, now: int) -> SchedulerState:
        return state_from_items(self.items, now)

    async def save(self, state: SchedulerState) -> None:
        self.items = state_to_items(state)
        self.saves += 1


class ScriptedTransport:
    """Returns queued outcomes in order and records every POST."""

    def __init__(self, *outcomes: str | RequestFailure) -> None:
        self.outcomes: list[str | RequestFailure] = list(outcomes)
        self.calls: list[tuple[str, str, dict[str, str]]] = []

    def queue(self, *outcomes: str | RequestFailure) -> None:
        self.outcomes.extend(outcomes)

    async def post(
        self,
        url: str,
        payload: str,
        headers: dict[str, str] | None = None,
    ) -> str | RequestFailure:
        self.calls.append((url, payload, dict(headers or {})))
        if not self.outcomes:
            raise AssertionError(f"Unexpected POST #{len(self.calls)}")
        return self.outcomes.pop(0)


class OmahaResponses:
    """Builders for server response bodies."""

    def __init__(self, app_id: str = APP_ID) -> None:
        self.app_id = app_id

    def ping(
        self,
        *,
        update: bool = False,
        version: str = "2.0.0.0",
        url: str = "https://market.example/details?id=com.example.app/",
        app_id: str | None = None,
    ) -> str:
        if update:
            updatecheck = (
                '<updatecheck status="ok">'
                f'<urls><url codebase="{url}"/></urls>'
                f'<manifest version="{version}"><packages>'
                '<package hash="0" name="dummy.apk" required="true" size="0"/>'
                "</packages></manifest>"
                "</updatecheck>"
            )
        else:
            updatecheck = '<updatecheck status="noupdate"/>'
        return self._wrap(f'{updatecheck}<ping status="ok"/>', app_id=app_id)

    def install(self, *, app_id: str | None = None) -> str:
        return self._wrap('<event status="ok"/>', app_id=app_id)

    def _wrap(self, app_body: str, *, app_id: str | None = None) -> str:
        return (
            '<?xml version="1.0" encoding="UTF-8"?>'
            '<response protocol="3.0" server="prod">'
            '<daystart elapsed_seconds="65524"/>'
            f'<app appid="{app_id or self.app_id}" status="ok">{app_body}</app>'
            "</response>"
        )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store() -> MemoryStateStore:
    return MemoryStateStore()


@pytest.fixture()
def transport() -> ScriptedTransport:
    return ScriptedTransport()


@pytest.fixture()
def responses() -> OmahaResponses:
    return OmahaResponses()


@pytest.fixture()
def generator() -> RequestGenerator:
    return RequestGenerator(
        APP_ID,
        brand="GGLS",
        client="test",
        platform_name="linux",
        os_version="6.1",
        arch="x86_64",
    )


@pytest.fixture()
def make_scheduler(
    clock: FakeClock,
    memory_store: MemoryStateStore,
    transport: ScriptedTransport,
    generator: RequestGenerator,
) -> Callable[..., CheckinScheduler]:
    """Factory for a CheckinScheduler wired to the in-memory fakes."""

    def factory(**overrides: object) -> CheckinScheduler:
        kwargs: dict[str, object] = {
            "store": memory_store,
            "transport": transport,
            "generator": generator,
            "server_url": SERVER_URL,
            "current_version": lambda: "1.0.0.0",
            "clock": clock,
            "backoff": BackoffScheduler(),
        }
        kwargs.update(overrides)
        return CheckinScheduler(**kwargs)  # type: ignore[arg-type]

    return factory
