"""Services package initialization."""
from athwatch.services.asset_service import AssetService
from athwatch.services.user_service import UserService
from athwatch.services.subscription_service import SubscriptionService
from athwatch.services.delivery_ledger import DeliveryLedger
from athwatch.services.cooldown import NotificationCooldown
from athwatch.services.eligibility import EligibilityResolver
from athwatch.services.run_lock import RunLock, PipelineStatusStore
from athwatch.services.ath_comparator import compare_and_update

__all__ = [
    "AssetService",
    "UserService",
    "SubscriptionService",
    "DeliveryLedger",
    "NotificationCooldown",
    "EligibilityResolver",
    "RunLock",
    "PipelineStatusStore",
    "compare_and_update"
]
