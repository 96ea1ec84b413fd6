"""Durable key/value storage for the check-in scheduler state.

Two backends share one logical key contract (see ``KEY_*`` below):

- ``SqliteStateStore`` keeps one row per key in an aiosqlite database and
  replaces all rows inside a single transaction.
- ``JsonFileStateStore`` writes one JSON object to a temp file, fsyncs it and
  atomically replaces the previous file.

Both degrade the same way: a read failure or a corrupt individual value falls
back to that field's default, and a write failure is logged and dropped.
Storage problems never cross the store boundary; the scheduler simply keeps
running on in-memory state and tries to persist again next cycle.
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from omahaclient.errors import ErrorKind
from omahaclient.models.checkin import RequestRecord, SchedulerState

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Mapping

    from omahaclient.config import Settings
    from omahaclient.protocols import StateStoreProtocol

log = structlog.get_logger()

KEY_TIMESTAMP_FOR_NEW_REQUEST = "timestamp_for_new_request"
KEY_TIMESTAMP_FOR_NEXT_POST_ATTEMPT = "timestamp_for_next_post_attempt"
KEY_TIMESTAMP_OF_INSTALL = "timestamp_of_install"
KEY_CURRENT_REQUEST_ID = "current_request_id"
KEY_CURRENT_REQUEST_CREATION_TIMESTAMP = "current_request_creation_timestamp"
KEY_SEND_INSTALL_EVENT = "send_install_event"
KEY_INSTALL_SOURCE = "install_source"
KEY_LATEST_KNOWN_VERSION = "latest_known_version"
KEY_LATEST_KNOWN_MARKET_URL = "latest_known_market_url"
KEY_FAILED_ATTEMPT_COUNT = "failed_attempt_count"

INVALID_TIMESTAMP = -1
INVALID_REQUEST_ID = "invalid"

_TRUE_VALUES = frozenset({"true", "1"})
_FALSE_VALUES = frozenset({"false", "0"})


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def state_to_items(state: SchedulerState) -> dict[str, str]:
    """Flatten a SchedulerState into the persisted key/value contract."""
    request = state.current_request
    return {
        KEY_TIMESTAMP_FOR_NEW_REQUEST: str(state.timestamp_for_new_request),
        KEY_TIMESTAMP_FOR_NEXT_POST_ATTEMPT: str(state.timestamp_for_next_post_attempt),
        KEY_TIMESTAMP_OF_INSTALL: str(state.timestamp_of_install),
        KEY_CURRENT_REQUEST_ID: request.request_id if request else INVALID_REQUEST_ID,
        KEY_CURRENT_REQUEST_CREATION_TIMESTAMP: str(
            request.creation_timestamp if request else INVALID_TIMESTAMP
        ),
        KEY_SEND_INSTALL_EVENT: "true" if state.send_install_event else "false",
        KEY_INSTALL_SOURCE: state.install_source,
        KEY_LATEST_KNOWN_VERSION: state.latest_known_version,
        KEY_LATEST_KNOWN_MARKET_URL: state.latest_known_market_url,
        KEY_FAILED_ATTEMPT_COUNT: str(state.failed_attempt_count),
    }


def _corrupt(key: str, raw: object) -> None:
    log.warning("state_field_corrupt", key=key, value=raw, kind=ErrorKind.STORAGE_CORRUPTION)


def _read_int(items: Mapping[str, object], key: str, default: int) -> int:
    raw = items.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        _corrupt(key, raw)
        return default
    try:
        return int(raw)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        _corrupt(key, raw)
        return default


def _read_bool(items: Mapping[str, object], key: str, default: bool) -> bool:
    raw = items.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    _corrupt(key, raw)
    return default


def _read_str(items: Mapping[str, object], key: str, default: str = "") -> str:
    raw = items.get(key)
    if raw is None:
        return default
    if not isinstance(raw, str):
        _corrupt(key, raw)
        return default
    return raw


def state_from_items(items: Mapping[str, object], now: int) -> SchedulerState:
    """Rebuild a SchedulerState, defaulting every absent or unreadable field.

    Timestamps default to ``now``, the install flag to ``True``, strings to
    ``""`` and the failure counter to ``0``. A missing or ``-1`` request
    creation timestamp means no request is outstanding. A stored request id of
    ``"invalid"`` comes back as ``""``; the scheduler assigns a fresh one.
    """
    send_install_event = _read_bool(items, KEY_SEND_INSTALL_EVENT, True)
    install_source = _read_str(items, KEY_INSTALL_SOURCE)

    request: RequestRecord | None = None
    creation_timestamp = _read_int(items, KEY_CURRENT_REQUEST_CREATION_TIMESTAMP, INVALID_TIMESTAMP)
    if creation_timestamp != INVALID_TIMESTAMP:
        request_id = _read_str(items, KEY_CURRENT_REQUEST_ID)
        if request_id == INVALID_REQUEST_ID:
            request_id = ""
        request = RequestRecord(
            request_id=request_id,
            creation_timestamp=creation_timestamp,
            is_install_event=send_install_event,
            install_source=install_source,
        )

    failed_attempt_count = _read_int(items, KEY_FAILED_ATTEMPT_COUNT, 0)
    if failed_attempt_count < 0:
        _corrupt(KEY_FAILED_ATTEMPT_COUNT, failed_attempt_count)
        failed_attempt_count = 0

    return SchedulerState(
        timestamp_for_new_request=_read_int(items, KEY_TIMESTAMP_FOR_NEW_REQUEST, now),
        timestamp_for_next_post_attempt=_read_int(items, KEY_TIMESTAMP_FOR_NEXT_POST_ATTEMPT, now),
        timestamp_of_install=_read_int(items, KEY_TIMESTAMP_OF_INSTALL, now),
        current_request=request,
        send_install_event=send_install_event,
        install_source=install_source,
        latest_known_version=_read_str(items, KEY_LATEST_KNOWN_VERSION),
        latest_known_market_url=_read_str(items, KEY_LATEST_KNOWN_MARKET_URL),
        failed_attempt_count=failed_attempt_count,
        fresh_install=KEY_TIMESTAMP_OF_INSTALL not in items,
    )


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------

_CREATE_STATE_TABLE = """
CREATE TABLE IF NOT EXISTS scheduler_state (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class SqliteStateStore:
    """aiosqlite-backed state store implementing StateStoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create the table and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_STATE_TABLE)
        await self._db.commit()

    async def load(self, now: int) -> SchedulerState:
        """Read every key. A read failure is treated as an empty store."""
        items: dict[str, object] = {}
        try:
            cursor = await self._db.execute("SELECT key, value FROM scheduler_state")
            for key, value in await cursor.fetchall():
                items[key] = value
        except aiosqlite.Error:
            log.warning("state_read_error", backend="sqlite", exc_info=True)
            items = {}
        return state_from_items(items, now)

    async def save(self, state: SchedulerState) -> None:
        """Replace all keys in one transaction. Non-fatal on failure."""
        items = state_to_items(state)
        try:
            await self._db.executemany(
                "INSERT OR REPLACE INTO scheduler_state (key, value) VALUES (?, ?)",
                list(items.items()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("state_write_error", backend="sqlite", exc_info=True)
            with suppress(aiosqlite.Error):
                await self._db.rollback()


# ---------------------------------------------------------------------------
# JSON file backend
# ---------------------------------------------------------------------------


class JsonFileStateStore:
    """Single JSON file with atomic replace semantics. Implements StateStoreProtocol."""

    def __init__(self, path: Path) -> None:
        self._path = path

    async def load(self, now: int) -> SchedulerState:
        items = await asyncio.to_thread(self._read_items)
        return state_from_items(items, now)

    async def save(self, state: SchedulerState) -> None:
        payload = json.dumps(state_to_items(state), sort_keys=True).encode("utf-8")
        try:
            await asyncio.to_thread(self._write_atomic, payload)
        except OSError:
            log.warning("state_write_error", backend="json", path=str(self._path), exc_info=True)

    def _read_items(self) -> dict[str, object]:
        if not self._path.is_file():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            log.warning("state_read_error", backend="json", path=str(self._path), exc_info=True)
            return {}
        if not isinstance(data, dict):
            log.warning(
                "state_read_error",
                backend="json",
                path=str(self._path),
                reason="not_an_object",
            )
            return {}
        return data

    def _write_atomic(self, payload: bytes) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            _write_bytes_fsync(tmp_path, payload)
            os.replace(tmp_path, self._path)
            _fsync_directory(self._path.parent)
        finally:
            with suppress(OSError):
                tmp_path.unlink(missing_ok=True)


def _write_bytes_fsync(path: Path, data: bytes) -> None:
    with path.open("wb") as file_obj:
        file_obj.write(data)
        file_obj.flush()
        os.fsync(file_obj.fileno())


def _fsync_directory(path: Path) -> None:
    if sys.platform == "win32":
        return  # Windows does not support fsync on directory handles
    directory_fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(directory_fd)
    finally:
        os.close(directory_fd)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


@asynccontextmanager
async def open_state_store(settings: Settings) -> AsyncGenerator[StateStoreProtocol, None]:
    """Open the configured backend for the lifetime of the context."""
    if settings.state.backend == "json":
        yield JsonFileStateStore(Path(settings.state.json_path).expanduser())
        return

    db_path = Path(settings.state.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    try:
        store = SqliteStateStore(db)
        await store.init_db()
        yield store
    finally:
        await db.close()
