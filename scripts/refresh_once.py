from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

import httpx

from app.log_config import configure_logging
from app.settings import Settings
from health.health import FetchHealth
from ingest.errors import RefreshError
from ingest.pipeline import CycleResult, refresh_addresses
from ingest.relays import default_relays_path, load_relays
from store.state import PersistenceFailure, open_state


async def refresh_once(
    settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None
) -> CycleResult:
    store = open_state(
        settings.state_path,
        default_interval=settings.default_update_interval_minutes,
    )
    relays = load_relays(settings.relays_path or default_relays_path())
    async with httpx.AsyncClient(follow_redirects=True, transport=transport) as client:
        return await refresh_addresses(
            client,
            store=store,
            settings=settings,
            relays=relays,
            health=FetchHealth(),
        )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one address refresh cycle.")
    parser.add_argument("--state", type=Path, default=None)
    parser.add_argument("--source-url", default=None)
    args = parser.parse_args(argv)

    settings = Settings()
    overrides: dict = {}
    if args.state is not None:
        overrides["state_path"] = args.state
    if args.source_url is not None:
        overrides["source_url"] = args.source_url
    if overrides:
        settings = settings.model_copy(update=overrides)
    configure_logging(settings.log_level)

    try:
        result = asyncio.run(refresh_once(settings))
    except (RefreshError, PersistenceFailure) as e:
        print(f"refresh failed: {e}")
        return 1

    print(
        f"{result.count} addresses from {result.source_id} "
        f"(+{len(result.added)}/-{len(result.removed)}) at {result.last_updated}"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
