"""HTTP POST transport to the update server.

One HttpTransport wraps the shared httpx.AsyncClient; the lifespan owns the
client lifecycle. The transport never retries: every failure comes back as a
RequestFailure and the check-in scheduler decides when to try again.
"""

from __future__ import annotations

import httpx
import structlog

from omahaclient import __version__
from omahaclient.errors import ErrorKind, RequestFailure

log = structlog.get_logger()

CONNECTION_TIMEOUT_SECONDS = 60.0


def build_http_client() -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=False,
        # Same bound for connect and read so a stalled server cannot hang a cycle.
        timeout=httpx.Timeout(CONNECTION_TIMEOUT_SECONDS),
        headers={"User-Agent": f"omahaclient/{__version__}"},
        limits=httpx.Limits(
            max_connections=2,
            max_keepalive_connections=1,
        ),
    )


def _validate_url(url: str) -> RequestFailure | None:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        return RequestFailure(kind=ErrorKind.MALFORMED_URL, message=f"Invalid URL {url!r}: {exc}")
    if parsed.scheme not in ("http", "https") or not parsed.host:
        return RequestFailure(kind=ErrorKind.MALFORMED_URL, message=f"Invalid URL {url!r}")
    return None


class HttpTransport:
    """POSTs request XML and returns the response body. Implements TransportProtocol."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def post(
        self,
        url: str,
        payload: str,
        headers: dict[str, str] | None = None,
    ) -> str | RequestFailure:
        """Send ``payload`` with a fixed Content-Length.

        Returns the response text on HTTP 200, otherwise a RequestFailure tagged
        MALFORMED_URL, NETWORK_ERROR or SERVER_ERROR.
        """
        invalid = _validate_url(url)
        if invalid is not None:
            log.warning("checkin_transport_failure", reason="malformed_url", url=url)
            return invalid

        body = payload.encode("utf-8")
        request_headers = {"Content-Type": "application/xml; charset=utf-8"}
        if headers:
            request_headers.update(headers)

        try:
            response = await self._client.post(url, content=body, headers=request_headers)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            log.warning("checkin_transport_failure", reason="malformed_url", url=url, error=str(exc))
            return RequestFailure(kind=ErrorKind.MALFORMED_URL, message=f"Invalid URL {url!r}: {exc}")
        except httpx.HTTPError as exc:
            log.warning("checkin_transport_failure", reason="network_error", url=url, error=str(exc))
            return RequestFailure(
                kind=ErrorKind.NETWORK_ERROR,
                message=f"Network error posting to {url}: {exc!r}",
            )

        if response.status_code != 200:
            log.warning(
                "checkin_transport_failure",
                reason="http_status",
                url=url,
                status_code=response.status_code,
            )
            return RequestFailure.server_error(response.status_code)

        log.debug(
            "checkin_post_complete",
            url=url,
            status_code=response.status_code,
            request_bytes=len(body),
            content_length=len(response.content),
        )
        return response.text
