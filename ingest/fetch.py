from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from ingest.errors import FetchExhausted
from ingest.relays import DIRECT, Relay


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchResult:
    text: str
    source_id: str
    status_code: int
    fetch_ms: int


async def fetch(
    client: httpx.AsyncClient,
    *,
    url: str,
    user_agent: str,
    timeout_seconds: float,
) -> tuple[int, bytes | None, int]:
    headers = {
        "User-Agent": user_agent,
        "Accept": "text/csv, text/plain, application/json, */*",
    }
    timeout = httpx.Timeout(connect=5.0, read=timeout_seconds, write=5.0, pool=5.0)
    # httpx bounds each read; wait_for bounds the whole attempt.
    response = await asyncio.wait_for(
        client.get(url, headers=headers, timeout=timeout), timeout=timeout_seconds
    )
    elapsed_ms = int(response.elapsed.total_seconds() * 1000)
    return (
        response.status_code,
        (response.content if response.status_code == 200 else None),
        elapsed_ms,
    )


async def fetch_feed(
    client: httpx.AsyncClient,
    *,
    target_url: str,
    relays: list[Relay],
    user_agent: str,
    timeout_seconds: float,
) -> FetchResult:
    attempts: list[tuple[str, str]] = []

    for candidate in [DIRECT, *relays]:
        url = candidate.build_url(target_url)
        try:
            status_code, content, elapsed_ms = await fetch(
                client,
                url=url,
                user_agent=user_agent,
                timeout_seconds=timeout_seconds,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            attempts.append((candidate.relay_id, "timeout"))
            logger.warning("fetch via %s timed out", candidate.relay_id)
            continue
        except httpx.RequestError as e:
            attempts.append(
                (candidate.relay_id, f"request_error:{e.__class__.__name__}")
            )
            logger.warning("fetch via %s failed: %r", candidate.relay_id, e)
            continue
        except httpx.InvalidURL as e:
            attempts.append((candidate.relay_id, "invalid_url"))
            logger.warning("relay %s has an invalid url: %s", candidate.relay_id, e)
            continue

        if status_code != 200 or content is None:
            attempts.append((candidate.relay_id, f"http_{status_code}"))
            logger.warning(
                "fetch via %s returned HTTP %s", candidate.relay_id, status_code
            )
            continue

        try:
            text = candidate.parse_response(content)
        except ValueError as e:
            attempts.append((candidate.relay_id, f"parse_error:{e}"))
            logger.warning("could not unwrap %s response: %s", candidate.relay_id, e)
            continue

        if not text.strip():
            attempts.append((candidate.relay_id, "empty_body"))
            logger.warning("fetch via %s returned an empty body", candidate.relay_id)
            continue

        logger.debug(
            "fetched %d bytes via %s in %d ms",
            len(content),
            candidate.relay_id,
            elapsed_ms,
        )
        return FetchResult(
            text=text,
            source_id=candidate.relay_id,
            status_code=status_code,
            fetch_ms=elapsed_ms,
        )

    raise FetchExhausted(target_url, attempts)
