import json
from datetime import datetime
from typing import Any

def _normalize_values(obj: Any) -> Any:
    """Recursively normalize values into a JSON-stable form."""
    if isinstance(obj, dict):
        return {k: _normalize_values(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize_values(i) for i in obj]
    if isinstance(obj, float) and obj.is_integer():
        return int(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    return obj

def canonical_json_bytes(obj: Any) -> bytes:
    """
    Produce a canonical JSON byte string for hashing audit records.

    Implementation Rules:
    1. Keys sorted lexicographically.
    2. No whitespace (separators: (',', ':')).
    3. Integers must be represented without fractional parts (e.g., 1.0 -> 1).
    4. Datetimes as ISO-8601 strings.
    5. UTF-8 encoded.
    """
    normalized = _normalize_values(obj)

    canonical_str = json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False
    )
    return canonical_str.encode("utf-8")
