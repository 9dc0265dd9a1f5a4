from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime


def _utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat().replace("+00:00", "Z")


@dataclass
class FetchHealth:
    last_fetch_at: str | None = None
    last_success_at: str | None = None
    last_error_at: str | None = None
    last_source: str | None = None
    last_fetch_ms: int | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    success_count: int = 0
    error_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def record_fetch_success(
    health: FetchHealth, *, source_id: str, fetch_ms: int
) -> None:
    now_iso = _utc_now_iso()
    health.last_fetch_at = now_iso
    health.last_success_at = now_iso
    health.last_source = source_id
    health.last_fetch_ms = fetch_ms
    health.last_error = None
    health.consecutive_failures = 0
    health.success_count += 1


def record_fetch_error(health: FetchHealth, *, error: str) -> int:
    now_iso = _utc_now_iso()
    health.last_fetch_at = now_iso
    health.last_error_at = now_iso
    health.last_error = error
    health.consecutive_failures += 1
    health.error_count += 1
    return health.consecutive_failures
