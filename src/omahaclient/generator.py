"""Omaha 3.0 request rendering.

A request looks like::

    <?xml version="1.0" encoding="UTF-8"?>
    <request protocol="3.0" version="omahaclient-1.0" ismachine="1"
             requestid="{request-id}" sessionid="{session-id}"
             installsource="organic">
      <os platform="linux" version="6.1" arch="x86_64"/>
      <app appid="{app-id}" version="1.2.3.4" nextversion="" lang="en-US"
           brand="" client="" installage="12" installsource="organic">
        <updatecheck/>
        <ping active="1"/>
      </app>
    </request>

Install events replace ``<updatecheck/>`` and ``<ping/>`` with
``<event eventtype="2" eventresult="1"/>`` and report ``installage="-1"``.
"""

from __future__ import annotations

import platform
import uuid
from typing import TYPE_CHECKING
from xml.etree import ElementTree

if TYPE_CHECKING:
    from omahaclient.config import ClientSettings
    from omahaclient.models.checkin import RequestRecord

PROTOCOL_VERSION = "3.0"
REQUEST_VERSION = "omahaclient-1.0"
MS_PER_DAY = 24 * 60 * 60 * 1000
INSTALL_AGE_INSTALL_EVENT = -1

_XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

# Event type 2 = install, result 1 = success.
_EVENT_TYPE_INSTALL = "2"
_EVENT_RESULT_SUCCESS = "1"


def generate_id() -> str:
    """Random identifier used for both request ids and session ids."""
    return str(uuid.uuid4())


def install_age_days(now: int, timestamp_of_install: int, is_install_event: bool) -> int:
    """Whole days since install, or -1 when reporting the install itself."""
    if is_install_event:
        return INSTALL_AGE_INSTALL_EVENT
    return max(0, (now - timestamp_of_install) // MS_PER_DAY)


class RequestGenerator:
    """Renders a RequestRecord into the XML body POSTed to the update server."""

    def __init__(
        self,
        app_id: str,
        *,
        brand: str = "",
        client: str = "",
        language: str = "en-US",
        platform_name: str | None = None,
        os_version: str | None = None,
        arch: str | None = None,
    ) -> None:
        self.app_id = app_id
        self.brand = brand
        self.client = client
        self.language = language
        self.platform_name = platform_name if platform_name is not None else platform.system().lower()
        self.os_version = os_version if os_version is not None else platform.release()
        self.arch = arch if arch is not None else platform.machine()

    @classmethod
    def from_settings(cls, settings: ClientSettings) -> RequestGenerator:
        return cls(
            settings.app_id,
            brand=settings.brand,
            client=settings.client,
            language=settings.language,
        )

    def render(
        self,
        record: RequestRecord,
        current_version: str,
        install_age: int,
        session_id: str,
    ) -> str:
        """Return the XML payload. Deterministic for identical inputs."""
        request = ElementTree.Element(
            "request",
            {
                "protocol": PROTOCOL_VERSION,
                "version": REQUEST_VERSION,
                "ismachine": "1",
                "requestid": f"{{{record.request_id}}}",
                "sessionid": f"{{{session_id}}}",
                "installsource": record.install_source,
            },
        )
        ElementTree.SubElement(
            request,
            "os",
            {"platform": self.platform_name, "version": self.os_version, "arch": self.arch},
        )
        app = ElementTree.SubElement(
            request,
            "app",
            {
                "appid": self.app_id,
                "version": current_version,
                "nextversion": "",
                "lang": self.language,
                "brand": self.brand,
                "client": self.client,
                "installage": str(install_age),
                "installsource": record.install_source,
            },
        )

        if record.is_install_event:
            ElementTree.SubElement(
                app,
                "event",
                {"eventtype": _EVENT_TYPE_INSTALL, "eventresult": _EVENT_RESULT_SUCCESS},
            )
        else:
            ElementTree.SubElement(app, "updatecheck")
            ElementTree.SubElement(app, "ping", {"active": "1"})

        return _XML_DECLARATION + ElementTree.tostring(request, encoding="unicode")
