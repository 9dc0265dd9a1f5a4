from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path

from ingest.parsers.csv import CIDR_RE


logger = logging.getLogger(__name__)


class PersistenceFailure(Exception):
    pass


@dataclass(frozen=True)
class ChangelogEntry:
    date: str
    ip_addresses: list[str]
    added: list[str]
    removed: list[str]

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "ipAddresses": list(self.ip_addresses),
            "added": list(self.added),
            "removed": list(self.removed),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> ChangelogEntry:
        return cls(
            date=str(raw.get("date") or ""),
            ip_addresses=[str(ip) for ip in raw.get("ipAddresses") or []],
            added=[str(ip) for ip in raw.get("added") or []],
            removed=[str(ip) for ip in raw.get("removed") or []],
        )


@dataclass
class RefreshState:
    ip_addresses: list[str] = field(default_factory=list)
    last_updated: str | None = None
    update_interval: int = 60
    auto_update_enabled: bool = True
    changelog: list[ChangelogEntry] = field(default_factory=list)
    next_update_time: int = 0

    def to_document(self) -> dict:
        return {
            "ipAddresses": list(self.ip_addresses),
            "lastUpdated": self.last_updated,
            "updateInterval": self.update_interval,
            "autoUpdateEnabled": self.auto_update_enabled,
            "changelog": [entry.to_dict() for entry in self.changelog],
            "nextUpdateTime": self.next_update_time,
        }

    @classmethod
    def from_document(cls, doc: dict, *, default_interval: int = 60) -> RefreshState:
        interval = doc.get("updateInterval")
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            interval = default_interval

        next_update_time = doc.get("nextUpdateTime")
        if isinstance(next_update_time, bool) or not isinstance(
            next_update_time, (int, float)
        ):
            next_update_time = 0

        auto_update_enabled = doc.get("autoUpdateEnabled", True)
        if not isinstance(auto_update_enabled, bool):
            auto_update_enabled = True

        ip_addresses = [
            ip
            for ip in doc.get("ipAddresses") or []
            if isinstance(ip, str) and CIDR_RE.fullmatch(ip)
        ]

        last_updated = doc.get("lastUpdated")
        return cls(
            ip_addresses=ip_addresses,
            last_updated=str(last_updated) if last_updated else None,
            update_interval=interval,
            auto_update_enabled=auto_update_enabled,
            changelog=[
                ChangelogEntry.from_dict(raw)
                for raw in doc.get("changelog") or []
                if isinstance(raw, dict)
            ],
            next_update_time=int(next_update_time),
        )


@dataclass
class StateStore:
    """The persisted document plus the lock guarding every mutation of it.

    Callers hold ``lock`` across the whole read-modify-write and call
    ``write()`` before releasing it. ``state`` stays authoritative when a
    write fails.
    """

    path: Path
    state: RefreshState
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def write(self) -> None:
        payload = json.dumps(self.state.to_document(), indent=2, ensure_ascii=False)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                with suppress(OSError):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            logger.error("could not write state to %s: %s", self.path, e)
            raise PersistenceFailure(f"could not write state: {e}") from e


def _fresh_store(path: Path, default_interval: int) -> StateStore:
    store = StateStore(path=path, state=RefreshState(update_interval=default_interval))
    # An unwritable file still leaves a usable in-memory state.
    with suppress(PersistenceFailure):
        store.write()
    return store


def open_state(path: Path, *, default_interval: int = 60) -> StateStore:
    if not path.exists():
        logger.info("initializing state file %s", path)
        return _fresh_store(path, default_interval)

    try:
        doc = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(doc, dict):
            raise ValueError("state document is not an object")
    except ValueError as e:
        corrupt_path = path.with_name(f"{path.name}.corrupt")
        logger.error(
            "state file %s is unreadable (%s); moved to %s", path, e, corrupt_path
        )
        os.replace(path, corrupt_path)
        return _fresh_store(path, default_interval)

    state = RefreshState.from_document(doc, default_interval=default_interval)
    logger.info(
        "loaded state from %s with %d addresses", path, len(state.ip_addresses)
    )
    return StateStore(path=path, state=state)
