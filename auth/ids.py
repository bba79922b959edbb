"""
auth/ids.py -- Time-ordered identifiers (UUID version 7) for credentials and refresh tokens.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import secrets
import time
import uuid


def new_id() -> str:
    """Return a UUIDv7 string.

    Layout: 48-bit Unix epoch milliseconds, 4-bit version, 12 random bits,
    2-bit variant, 62 random bits. Ids created later sort after earlier ones,
    which keeps B-tree inserts append-only.
    """
    millis = time.time_ns() // 1_000_000
    rand_a = secrets.randbits(12)
    rand_b = secrets.randbits(62)
    value = (millis & 0xFFFFFFFFFFFF) << 80
    value |= 0x7 << 76
    value |= rand_a << 64
    value |= 0b10 << 62
    value |= rand_b
    return str(uuid.UUID(int=value))
