"""Omaha 3.0 response parser.

Expects XML formatted like::

    <?xml version="1.0" encoding="UTF-8"?>
    <response protocol="3.0" server="prod">
      <daystart elapsed_seconds="65524"/>
      <app appid="{appid}" status="ok">
        <updatecheck status="ok">
          <urls>
            <url codebase="https://market.example/details?id=com.example.app/"/>
          </urls>
          <manifest version="1.2.3.4">
            <packages>
              <package hash="0" name="dummy.apk" required="true" size="0"/>
            </packages>
          </manifest>
        </updatecheck>
        <ping status="ok"/>
      </app>
    </response>

Only the ``<app>`` whose ``appid`` matches ours is read; data for other
applications is ignored. Malformed XML is always a failure. In strict mode any
missing mandatory element or acknowledgement mismatch is a failure too; in
lenient mode those problems are logged and whatever could be read is returned.
"""

from __future__ import annotations

from xml.etree import ElementTree

import structlog

from omahaclient.errors import RequestFailure
from omahaclient.models.update import UpdateInfo

log = structlog.get_logger()

PROTOCOL_VERSION = "3.0"

_TAG_APP = "app"
_TAG_DAYSTART = "daystart"
_TAG_EVENT = "event"
_TAG_MANIFEST = "manifest"
_TAG_PING = "ping"
_TAG_RESPONSE = "response"
_TAG_UPDATECHECK = "updatecheck"
_TAG_URL = "url"
_TAG_URLS = "urls"


class ResponseParser:
    """Parses one server response against what the request asked for.

    ``expect_*`` describe the request that was sent: an install event expects
    an ``<event status="ok"/>`` acknowledgement, a regular ping expects
    ``<ping status="ok"/>`` and an ``<updatecheck>`` element.
    """

    def __init__(
        self,
        app_id: str,
        *,
        expect_install_event: bool,
        expect_ping: bool,
        expect_updatecheck: bool,
        strict: bool = True,
    ) -> None:
        self.app_id = app_id
        self.expect_install_event = expect_install_event
        self.expect_ping = expect_ping
        self.expect_updatecheck = expect_updatecheck
        self.strict = strict

    @classmethod
    def for_request(cls, app_id: str, *, is_install_event: bool, strict: bool = True) -> ResponseParser:
        sent_ping_and_update = not is_install_event
        return cls(
            app_id,
            expect_install_event=is_install_event,
            expect_ping=sent_ping_and_update,
            expect_updatecheck=sent_ping_and_update,
            strict=strict,
        )

    def parse(self, body: str) -> UpdateInfo | RequestFailure:
        try:
            root = ElementTree.fromstring(body)
        except ElementTree.ParseError as exc:
            return RequestFailure.parse_error(f"Malformed XML: {exc}")

        return _ParseRun(self).run(root)


class _ParseRun:
    """Mutable scratch state for a single parse() call."""

    def __init__(self, parser: ResponseParser) -> None:
        self.parser = parser
        self.problems: list[str] = []

        self.daystart_seconds: int | None = None
        self.app_status: str | None = None
        self.update_status: str | None = None
        self.new_version: str | None = None
        self.url: str | None = None

        self.parsed_install_event = False
        self.parsed_ping = False
        self.parsed_updatecheck = False

    def run(self, root: ElementTree.Element) -> UpdateInfo | RequestFailure:
        if root.tag != _TAG_RESPONSE:
            self.problems.append(f"unexpected root element <{root.tag}>")
        else:
            self._parse_response(root)

        if self.problems:
            if self.parser.strict:
                return RequestFailure.parse_error("; ".join(self.problems))
            for problem in self.problems:
                log.warning("response_parse_problem", problem=problem, app_id=self.parser.app_id)

        return UpdateInfo(
            new_version_available=(
                self.update_status == "ok" and bool(self.new_version) and bool(self.url)
            ),
            new_version=self.new_version,
            market_url=self.url,
            app_status=self.app_status,
            update_status=self.update_status,
            daystart_seconds=self.daystart_seconds or 0,
        )

    def _parse_response(self, node: ElementTree.Element) -> None:
        if node.get("protocol") != PROTOCOL_VERSION:
            self.problems.append(f"unsupported protocol {node.get('protocol')!r}")

        server_type = node.get("server")
        if server_type != "prod":
            log.info("response_server_type", server=server_type)

        found_app = False
        for child in node:
            if child.tag == _TAG_DAYSTART:
                self._parse_daystart(child)
            elif child.tag == _TAG_APP:
                if child.get("appid") != self.parser.app_id:
                    log.debug("response_foreign_app_ignored", appid=child.get("appid"))
                    continue
                found_app = True
                self._parse_app(child)
            else:
                log.debug("response_unknown_child_ignored", tag=child.tag)

        if self.daystart_seconds is None:
            self.problems.append("missing <daystart>")
        if not found_app:
            self.problems.append(f"no <app> for appid {self.parser.app_id}")
            return
        if self.app_status != "ok":
            return

        if self.parser.expect_install_event != self.parsed_install_event:
            self.problems.append("install event acknowledgement mismatch")
        if self.parser.expect_ping != self.parsed_ping:
            self.problems.append("ping acknowledgement mismatch")
        if self.parser.expect_updatecheck != self.parsed_updatecheck:
            self.problems.append("updatecheck mismatch")

    def _parse_daystart(self, node: ElementTree.Element) -> None:
        try:
            self.daystart_seconds = int(node.get("elapsed_seconds", ""))
        except ValueError:
            self.problems.append("invalid <daystart> elapsed_seconds")

    def _parse_app(self, node: ElementTree.Element) -> None:
        self.app_status = node.get("status")
        if self.app_status == "restricted":
            # The server may not collect data in this region. Pretend the request was fine.
            return
        if self.app_status != "ok":
            self.problems.append(f"app status {self.app_status!r}")
            return

        for child in node:
            if child.tag == _TAG_UPDATECHECK:
                self._parse_updatecheck(child)
            elif child.tag == _TAG_EVENT:
                if child.get("status") == "ok":
                    self.parsed_install_event = True
            elif child.tag == _TAG_PING:
                if child.get("status") == "ok":
                    self.parsed_ping = True

    def _parse_updatecheck(self, node: ElementTree.Element) -> None:
        self.parsed_updatecheck = True
        self.update_status = node.get("status")

        if self.update_status == "ok":
            for child in node:
                if child.tag == _TAG_URLS:
                    self._parse_urls(child)
                elif child.tag == _TAG_MANIFEST:
                    self.new_version = child.get("version")

            if self.url is None:
                self.problems.append("updatecheck without <urls>")
            if self.new_version is None:
                self.problems.append("updatecheck without <manifest> version")
        elif self.update_status == "noupdate":
            pass
        elif self.update_status is not None and self.update_status.startswith("error"):
            log.warning("response_updatecheck_error_ignored", status=self.update_status)
        else:
            log.warning("response_updatecheck_unknown_status", status=self.update_status)

    def _parse_urls(self, node: ElementTree.Element) -> None:
        for child in node:
            if child.tag != _TAG_URL:
                continue
            url = child.get("codebase")
            if url is None:
                continue
            # The server tacks a "/" onto the URL.
            self.url = url.removesuffix("/")
