from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from app.settings import Settings
from health.health import FetchHealth, record_fetch_error, record_fetch_success
from ingest.changes import record_changes
from ingest.errors import RefreshError
from ingest.fetch import fetch_feed
from ingest.parsers.csv import extract_cidrs
from ingest.relays import Relay
from store.state import StateStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    count: int
    added: list[str]
    removed: list[str]
    last_updated: str
    source_id: str
    changed: bool


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


async def refresh_addresses(
    client: httpx.AsyncClient,
    *,
    store: StateStore,
    settings: Settings,
    relays: list[Relay],
    health: FetchHealth,
) -> CycleResult:
    """Fetch, extract, diff and persist one new address list.

    Raises RefreshError subclasses without touching the stored list, and
    PersistenceFailure after the in-memory state has been updated.
    """
    try:
        fetched = await fetch_feed(
            client,
            target_url=settings.source_url,
            relays=relays,
            user_agent=settings.user_agent,
            timeout_seconds=settings.fetch_timeout_seconds,
        )
        addresses = extract_cidrs(fetched.text)
    except RefreshError as e:
        failures = record_fetch_error(health, error=str(e))
        logger.warning("refresh failed (%d in a row): %s", failures, e)
        raise

    record_fetch_success(health, source_id=fetched.source_id, fetch_ms=fetched.fetch_ms)

    async with store.lock:
        state = store.state
        updated_at = _utc_now_iso()
        changelog, entry, added, removed = record_changes(
            state.changelog, state.ip_addresses, addresses, updated_at
        )
        state.ip_addresses = addresses
        state.last_updated = updated_at
        state.changelog = changelog
        store.write()

    logger.info(
        "stored %d addresses from %s (+%d/-%d)",
        len(addresses),
        fetched.source_id,
        len(added),
        len(removed),
    )
    return CycleResult(
        count=len(addresses),
        added=added,
        removed=removed,
        last_updated=updated_at,
        source_id=fetched.source_id,
        changed=entry is not None,
    )
