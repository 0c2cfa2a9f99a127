"""Utilities package initialization."""
from athwatch.utils.time import utcnow, ensure_utc, to_epoch_ms

__all__ = [
    "utcnow",
    "ensure_utc",
    "to_epoch_ms"
]
