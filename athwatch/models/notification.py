"""Notification log and delivery ledger records."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import field_validator

from athwatch.models.base import RedisRecord
from athwatch.utils.time import ensure_utc


class DeliveryStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class MessageType(str, Enum):
    ATH_NOTIFICATION = "ath-notification"
    TEST_NOTIFICATION = "test-notification"


class NotificationLog(RedisRecord):
    """One entry per ATH event, stored at ``notification:{event_id}``."""

    id: str
    asset_id: str
    new_ath: float
    previous_ath: float
    sent_at: datetime
    recipient_count: int = 0

    @field_validator('sent_at')
    @classmethod
    def normalize_sent_at(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class DeliveryRecord(RedisRecord):
    """One entry per (event, user) send attempt, stored at ``delivery:{id}``."""

    id: str
    event_id: Optional[str] = None
    user_id: str
    recipient_email: str
    message_type: MessageType = MessageType.ATH_NOTIFICATION
    status: DeliveryStatus
    provider_message_id: Optional[str] = None
    sent_at: datetime
    resolved_at: Optional[datetime] = None
    error_kind: Optional[str] = None
    error_detail: Optional[str] = None

    @field_validator('sent_at', 'resolved_at')
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)
