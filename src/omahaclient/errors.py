from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ErrorKind(StrEnum):
    MALFORMED_URL = "MALFORMED_URL"
    NETWORK_ERROR = "NETWORK_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    STORAGE_CORRUPTION = "STORAGE_CORRUPTION"


@dataclass(frozen=True)
class RequestFailure:
    """Tagged outcome of a failed POST attempt.

    Returned (never raised) by the transport and the response parser. The
    check-in scheduler switches on ``kind`` and turns every failure into a
    backoff retry, so nothing here ever reaches a caller outside the client.
    """

    kind: ErrorKind
    message: str
    status_code: int | None = None

    @classmethod
    def server_error(cls, status_code: int) -> RequestFailure:
        return cls(
            kind=ErrorKind.SERVER_ERROR,
            message=f"Received {status_code} instead of 200 (OK) from the server",
            status_code=status_code,
        )

    @classmethod
    def parse_error(cls, message: str) -> RequestFailure:
        return cls(kind=ErrorKind.PARSE_ERROR, message=message)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "status_code": self.status_code,
        }
