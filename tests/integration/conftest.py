"""Integration test fixtures.

Provides a scripted Omaha server behind httpx.MockTransport and settings that
point every state path at an isolated tmp directory.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from xml.etree import ElementTree

import httpx
import pytest

from omahaclient.config import Settings

if TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import OmahaResponses


class FakeOmahaServer:
    """Answers install events and pings for one app; can be told to fail."""

    def __init__(self, responses: OmahaResponses) -> None:
        self.responses = responses
        self.requests: list[httpx.Request] = []
        self.fail_with: list[int] = []
        self.update_version: str | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with.pop(0))

        app = ElementTree.fromstring(request.content).find("app")
        assert app is not None
        if app.find("event") is not None:
            return httpx.Response(200, text=self.responses.install())
        if self.update_version is not None:
            return httpx.Response(
                200, text=self.responses.ping(update=True, version=self.update_version)
            )
        return httpx.Response(200, text=self.responses.ping())

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def request_attrs(self, index: int) -> dict[str, str]:
        return dict(ElementTree.fromstring(self.requests[index].content).attrib)

    def is_install_event(self, index: int) -> bool:
        app = ElementTree.fromstring(self.requests[index].content).find("app")
        assert app is not None
        return app.find("event") is not None


@pytest.fixture()
def omaha_server(responses: OmahaResponses) -> FakeOmahaServer:
    return FakeOmahaServer(responses)


@pytest.fixture()
def isolated_settings(tmp_path: Path) -> Settings:
    """Settings with state under tmp_path and the test app id."""
    return Settings(
        server={"url": "https://update.example/service/update2", "mode": "once"},
        client={"app_id": "{8a69d345-d564-463c-aff1-a69d9e530f96}", "version": "1.0.0.0"},
        state={
            "backend": "sqlite",
            "db_path": str(tmp_path / "state.db"),
            "json_path": str(tmp_path / "state.json"),
        },
    )
