"""Models package initialization."""
from athwatch.models.asset import Asset
from athwatch.models.user import User, UserRole, Subscription, SubscriptionStatus
from athwatch.models.notification import (
    NotificationLog,
    DeliveryRecord,
    DeliveryStatus,
    MessageType,
)
from athwatch.models.events import ATHEvent
from athwatch.models.pipeline import RunState, RunOutcome, RunSummary

__all__ = [
    "Asset",
    "User",
    "UserRole",
    "Subscription",
    "SubscriptionStatus",
    "NotificationLog",
    "DeliveryRecord",
    "DeliveryStatus",
    "MessageType",
    "ATHEvent",
    "RunState",
    "RunOutcome",
    "RunSummary",
]
