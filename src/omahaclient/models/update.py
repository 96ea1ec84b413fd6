from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel


class UpdateInfo(BaseModel):
    """What the server said about our application in one response."""

    new_version_available: bool = False
    new_version: str | None = None
    market_url: str | None = None  # Trailing "/" added by the server is stripped
    app_status: str | None = None  # "ok" | "restricted"
    update_status: str | None = None  # "ok" | "noupdate" | "error-*" | None
    daystart_seconds: int = 0


@dataclass(frozen=True)
class PostSuccess:
    update: UpdateInfo
