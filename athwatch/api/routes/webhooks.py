"""Email provider delivery status callbacks."""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import redis.asyncio as redis
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from athwatch.core.auth import require_webhook_secret
from athwatch.core.redis import get_redis
from athwatch.models import DeliveryStatus
from athwatch.services import DeliveryLedger

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

# Resend event types that resolve a delivery
EVENT_STATUS = {
    "email.delivered": DeliveryStatus.DELIVERED,
    "email.bounced": DeliveryStatus.BOUNCED,
    "email.failed": DeliveryStatus.FAILED,
}


class EmailEvent(BaseModel):
    """Provider callback payload."""
    type: str
    created_at: Optional[datetime] = None
    data: Dict[str, Any] = {}


@router.post("/email", dependencies=[Depends(require_webhook_secret)])
async def email_status_callback(event: EmailEvent, r: redis.Redis = Depends(get_redis)):
    """
    Apply an asynchronous delivery status update.

    Unknown event types and unknown message ids are acknowledged without
    changes so the provider does not keep retrying them.
    """
    new_status = EVENT_STATUS.get(event.type)
    if new_status is None:
        logger.debug(f"Ignoring email event {event.type}")
        return {"status": "ignored"}

    provider_message_id = event.data.get("email_id")
    if not provider_message_id:
        logger.warning(f"Email event {event.type} without email_id")
        return {"status": "ignored"}

    record = await DeliveryLedger.find_by_provider_message_id(r, provider_message_id)
    if record is None:
        logger.info(f"No delivery for provider message {provider_message_id}")
        return {"status": "unknown_delivery"}

    bounce = event.data.get("bounce") or {}
    error_detail = bounce.get("message") if isinstance(bounce, dict) else None
    updated = await DeliveryLedger.update_delivery_status(
        r,
        record.id,
        new_status,
        resolved_at=event.created_at,
        error_detail=error_detail
    )
    return {"status": "updated", "delivery_id": record.id, "delivery_status": updated.status}
