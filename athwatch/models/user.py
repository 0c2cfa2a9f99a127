"""User and subscription records (read-only to the pipeline)."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import field_validator

from athwatch.models.base import RedisRecord
from athwatch.utils.time import ensure_utc


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    BLOCKED = "blocked"


class User(RedisRecord):
    """User account stored at ``user:{id}``.

    ``notifications_opt_in`` is the user's own toggle. ``notifications_enabled``
    is derived from it plus entitlement and is the only field the pipeline
    writes (see preference reconciliation).
    """

    id: str
    email: str
    role: UserRole = UserRole.USER
    is_active: bool = True
    notifications_opt_in: bool = True
    notifications_enabled: bool = False
    created_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class Subscription(RedisRecord):
    """Paid subscription stored at ``subscription:{id}``."""

    id: str
    user_id: str
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    amount: float = 0.0

    @field_validator('start_date', 'end_date')
    @classmethod
    def normalize_dates(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    def is_entitled(self, now: datetime) -> bool:
        """Active and not past its end date."""
        return self.status == SubscriptionStatus.ACTIVE and now <= self.end_date
