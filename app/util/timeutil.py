# app/util/timeutil.py
from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ts() -> int:
    """Unix seconds."""
    return int(time.time())


def now_ms() -> int:
    """Unix milliseconds (used for join order and answer timestamps)."""
    return int(time.time() * 1000)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
