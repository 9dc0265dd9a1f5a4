from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import yaml

from ingest.parsers.json import parse_json_envelope


logger = logging.getLogger(__name__)

RESPONSE_FORMATS = ("raw", "json")


@dataclass(frozen=True)
class Relay:
    """One way of reaching the feed: the direct request or a relay endpoint."""

    relay_id: str
    url: str
    encode_target: bool = True
    suffix: str = ""
    response: str = "raw"
    json_field: str = "contents"

    def build_url(self, target_url: str) -> str:
        if not self.url:
            return target_url
        target = quote(target_url, safe="") if self.encode_target else target_url
        return f"{self.url}{target}{self.suffix}"

    def parse_response(self, body: bytes) -> str:
        if self.response == "json":
            return parse_json_envelope(body, self.json_field)
        return body.decode("utf-8", errors="replace")


DIRECT = Relay(relay_id="direct", url="", encode_target=False)


def default_relays_path() -> Path:
    return Path(__file__).resolve().with_name("relays.yaml")


def load_relays(path: Path) -> list[Relay]:
    if not path.exists():
        logger.warning("relay list %s not found, fetching direct only", path)
        return []

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError(f"invalid relay list: {path}")

    relays: list[Relay] = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ValueError(f"invalid relay entry in: {path}")
        response = str(entry.get("response") or "raw")
        if response not in RESPONSE_FORMATS:
            raise ValueError(f"unknown relay response format {response!r} in: {path}")
        relays.append(
            Relay(
                relay_id=str(entry["id"]),
                url=str(entry["url"]),
                encode_target=bool(entry.get("encode_target", True)),
                suffix=str(entry.get("suffix") or ""),
                response=response,
                json_field=str(entry.get("json_field") or "contents"),
            )
        )
    return relays
