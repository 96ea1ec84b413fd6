from __future__ import annotations

from omahaclient.errors import RequestFailure
from omahaclient.models.checkin import (
    INSTALL_SOURCE_ORGANIC,
    INSTALL_SOURCE_SYSTEM,
    InstallSource,
    RequestRecord,
    SchedulerState,
)
from omahaclient.models.update import PostSuccess, UpdateInfo

PostResult = PostSuccess | RequestFailure

__all__ = [
    # checkin
    "InstallSource",
    "INSTALL_SOURCE_SYSTEM",
    "INSTALL_SOURCE_ORGANIC",
    "RequestRecord",
    "SchedulerState",
    # update
    "UpdateInfo",
    "PostSuccess",
    "PostResult",
]
