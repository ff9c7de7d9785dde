"""Time-ordered identifiers for audit entries and store records."""
import secrets
import time
from typing import Optional

# UUIDv7 field layout, most significant bit first:
# 48 bits unix ms | 4 bits version 0111 | 12 random | 2 bits variant 10 | 62 random
_VERSION_7 = 0x7 << 76
_VARIANT_RFC4122 = 0x2 << 62


def _uuid7_int(ms: int) -> int:
    return (
        (ms & 0xFFFFFFFFFFFF) << 80
        | _VERSION_7
        | secrets.randbits(12) << 64
        | _VARIANT_RFC4122
        | secrets.randbits(62)
    )


def uuid7(ms: Optional[int] = None) -> str:
    """UUIDv7 string; ids sort by creation time at millisecond resolution."""
    if ms is None:
        ms = time.time_ns() // 1_000_000
    h = f"{_uuid7_int(ms):032x}"
    return f"{h[:8]}-{h[8:12]}-{h[12:16]}-{h[16:20]}-{h[20:]}"


def prefixed_id(prefix: str, ms: Optional[int] = None) -> str:
    """Record identifier such as ``sc_0190f6...`` used for store keys."""
    if ms is None:
        ms = time.time_ns() // 1_000_000
    return f"{prefix}_{_uuid7_int(ms):032x}"
