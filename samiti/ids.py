"""
Entity id generation.

Generated ids embed the creation time in epoch milliseconds, e.g.
``ACC-1001-FD-1700000000000-a1b2c``; repair tooling relies on that
component to recover creation dates.
"""

from datetime import datetime, timezone
from typing import Optional
import uuid


def epoch_millis(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    return int(now.timestamp() * 1000)


def generate_id(prefix: str, *parts: str, now: Optional[datetime] = None) -> str:
    """Build ``PREFIX-part...-<epoch ms>-<random>``"""
    segments = [prefix, *parts, str(epoch_millis(now)), uuid.uuid4().hex[:5]]
    return "-".join(segments)
