"""
Naive-UTC timestamps.

Columns are declared as plain DateTime, so values are stored without tzinfo.
Hash chains recompute from stored values and must see the same representation.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
