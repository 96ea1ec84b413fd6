"""Four-part version numbers and the "is an update available" decision."""

from __future__ import annotations

import re
from dataclasses import dataclass

_VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)\.(\d+)$")


@dataclass(frozen=True, order=True)
class VersionNumber:
    major: int
    minor: int
    build: int
    patch: int

    @classmethod
    def from_string(cls, value: str | None) -> VersionNumber | None:
        """Parse ``"a.b.c.d"``. Returns None for anything else."""
        if not value:
            return None
        match = _VERSION_RE.match(value.strip())
        if match is None:
            return None
        major, minor, build, patch = (int(part) for part in match.groups())
        return cls(major, minor, build, patch)

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.build}.{self.patch}"


def is_newer_version_available(
    current_version: str,
    latest_version: str,
    market_url: str,
    *,
    enabled: bool = True,
) -> bool:
    """Compare the running version with the last one the server announced.

    Never reports an update without a market URL, so users are not shown an
    update they cannot reach.
    """
    if not enabled or not market_url:
        return False

    current = VersionNumber.from_string(current_version)
    latest = VersionNumber.from_string(latest_version)
    if current is None or latest is None:
        return False

    return current < latest
