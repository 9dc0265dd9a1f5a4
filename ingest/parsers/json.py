from __future__ import annotations

import json


def parse_json_envelope(data: bytes, field: str) -> str:
    doc = json.loads(data)
    if isinstance(doc, dict):
        value = doc.get(field)
        if isinstance(value, str):
            return value
    raise ValueError(f"response has no string field {field!r}")
