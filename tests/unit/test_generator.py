"""Unit tests for request XML rendering."""

from __future__ import annotations

from xml.etree import ElementTree

import pytest

from omahaclient.config import ClientSettings
from omahaclient.generator import (
    MS_PER_DAY,
    REQUEST_VERSION,
    RequestGenerator,
    generate_id,
    install_age_days,
)
from omahaclient.models.checkin import RequestRecord

APP_ID = "{8a69d345-d564-463c-aff1-a69d9e530f96}"


def _record(*, install: bool = False, source: str = "organic") -> RequestRecord:
    return RequestRecord(
        request_id="11111111-2222-3333-4444-555555555555",
        creation_timestamp=0,
        is_install_event=install,
        install_source=source,
    )


@pytest.fixture()
def generator() -> RequestGenerator:
    return RequestGenerator(
        APP_ID,
        brand="GGLS",
        client="test",
        language="de-DE",
        platform_name="linux",
        os_version="6.1",
        arch="x86_64",
    )


class TestInstallAge:
    def test_install_event_reports_minus_one(self) -> None:
        assert install_age_days(10 * MS_PER_DAY, 0, True) == -1

    @pytest.mark.parametrize(
        ("elapsed_ms", "expected_days"),
        [(0, 0), (MS_PER_DAY - 1, 0), (MS_PER_DAY, 1), (12 * MS_PER_DAY + 5, 12)],
    )
    def test_whole_days_since_install(self, elapsed_ms: int, expected_days: int) -> None:
        install = 1_700_000_000_000
        assert install_age_days(install + elapsed_ms, install, False) == expected_days

    def test_clock_before_install_clamps_to_zero(self) -> None:
        assert install_age_days(0, MS_PER_DAY * 3, False) == 0


class TestRender:
    def test_regular_request_has_updatecheck_and_ping(self, generator: RequestGenerator) -> None:
        xml = generator.render(_record(), "1.2.3.4", 12, "session-1")
        assert xml.startswith('<?xml version="1.0" encoding="UTF-8"?>')

        root = ElementTree.fromstring(xml)
        assert root.tag == "request"
        assert root.get("protocol") == "3.0"
        assert root.get("version") == REQUEST_VERSION
        assert root.get("ismachine") == "1"
        assert root.get("requestid") == "{11111111-2222-3333-4444-555555555555}"
        assert root.get("sessionid") == "{session-1}"
        assert root.get("installsource") == "organic"

        os_node = root.find("os")
        assert os_node is not None
        assert os_node.attrib == {"platform": "linux", "version": "6.1", "arch": "x86_64"}

        app = root.find("app")
        assert app is not None
        assert app.get("appid") == APP_ID
        assert app.get("version") == "1.2.3.4"
        assert app.get("nextversion") == ""
        assert app.get("lang") == "de-DE"
        assert app.get("brand") == "GGLS"
        assert app.get("client") == "test"
        assert app.get("installage") == "12"
        assert app.get("installsource") == "organic"

        assert [child.tag for child in app] == ["updatecheck", "ping"]
        ping = app.find("ping")
        assert ping is not None
        assert ping.get("active") == "1"

    def test_install_event_replaces_updatecheck_and_ping(
        self, generator: RequestGenerator
    ) -> None:
        xml = generator.render(_record(install=True, source="system_image"), "1.0.0.0", -1, "s")

        app = ElementTree.fromstring(xml).find("app")
        assert app is not None
        assert [child.tag for child in app] == ["event"]
        event = app.find("event")
        assert event is not None
        assert event.attrib == {"eventtype": "2", "eventresult": "1"}
        assert app.get("installage") == "-1"
        assert app.get("installsource") == "system_image"

    def test_render_is_deterministic(self, generator: RequestGenerator) -> None:
        first = generator.render(_record(), "1.0.0.0", 3, "same-session")
        second = generator.render(_record(), "1.0.0.0", 3, "same-session")
        assert first == second

    def test_attribute_values_are_escaped(self) -> None:
        generator = RequestGenerator(
            APP_ID, brand='a"b<c', platform_name="linux", os_version="1", arch="arm64"
        )
        app = ElementTree.fromstring(generator.render(_record(), "1", 0, "s")).find("app")
        assert app is not None
        assert app.get("brand") == 'a"b<c'


class TestGeneratorConstruction:
    def test_from_settings(self) -> None:
        settings = ClientSettings(app_id="{abc}", brand="BR", client="cl", language="fr-FR")
        generator = RequestGenerator.from_settings(settings)

        assert generator.app_id == "{abc}"
        assert generator.brand == "BR"
        assert generator.client == "cl"
        assert generator.language == "fr-FR"
        assert generator.platform_name
        assert generator.arch is not None

    def test_generate_id_is_unique(self) -> None:
        ids = {generate_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(value) == 36 for value in ids)
