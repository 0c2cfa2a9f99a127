"""Pipeline run state and summary."""
from datetime import datetime
from enum import Enum
from typing import Optional

from athwatch.models.base import RedisRecord


class RunState(str, Enum):
    """Orchestrator state machine."""
    IDLE = "idle"
    FETCHING = "fetching"
    COMPARING = "comparing"
    DISPATCHING = "dispatching"
    COMPLETED = "completed"
    FAILED = "failed"


class RunOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class RunSummary(RedisRecord):
    """Result of one trigger invocation, persisted to ``pipeline:status``."""

    run_id: str
    status: RunOutcome
    reason: Optional[str] = None
    assets_compared: int = 0
    events_detected: int = 0
    events_suppressed: int = 0
    recipients_notified: int = 0
    delivery_failures: int = 0
    duration_seconds: float = 0.0
    started_at: datetime
    finished_at: Optional[datetime] = None
