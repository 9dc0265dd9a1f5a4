from __future__ import annotations

import re

from ingest.errors import EmptyResult


CIDR_RE = re.compile(r"\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}/\d{1,2}")


def extract_cidrs(data: bytes | str) -> list[str]:
    """Collect the IPv4 CIDR blocks found in a CSV feed.

    Each comma-delimited cell contributes at most its first match, so a
    stray quote cannot swallow the rest of the file. The result is
    deduplicated and sorted; a feed without any block raises EmptyResult.
    """
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data
    found: set[str] = set()
    for line in text.splitlines():
        for cell in line.split(","):
            match = CIDR_RE.search(cell)
            if match is not None:
                found.add(match.group(0))

    if not found:
        raise EmptyResult("no IPv4 CIDR blocks found in feed")
    return sorted(found)
