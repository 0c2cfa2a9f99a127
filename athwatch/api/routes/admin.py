"""Admin API routes for pipeline operations and notification maintenance."""
import logging
from dataclasses import asdict
from datetime import timedelta
from typing import List, Optional

import redis.asyncio as redis
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from athwatch.api.responses import summary_response
from athwatch.core.auth import require_admin
from athwatch.core.errors import NotEntitled, UserNotFound
from athwatch.core.redis import get_redis
from athwatch.models import DeliveryRecord, NotificationLog, RunSummary
from athwatch.providers.resend import ResendEmailSender
from athwatch.services import (
    DeliveryLedger,
    EligibilityResolver,
    NotificationCooldown,
    PipelineStatusStore,
    RunLock,
)
from athwatch.utils.time import utcnow
from athwatch.workers.dispatcher import Dispatcher
from athwatch.workers.pipeline import run_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class PipelineStatusResponse(BaseModel):
    """Last run and last successful run."""
    running: bool
    last_run: Optional[RunSummary]
    last_successful_run: Optional[RunSummary]


class RecentNotification(BaseModel):
    notification: NotificationLog
    stats: dict


@router.post("/pipeline/run")
async def run_pipeline_now(force: bool = False):
    """Trigger a run immediately. ``force`` bypasses the run lock."""
    logger.info(f"Admin triggered pipeline run (force={force})")
    summary = await run_pipeline(force=force)
    return summary_response(summary)


@router.get("/pipeline/status", response_model=PipelineStatusResponse)
async def get_pipeline_status(r: redis.Redis = Depends(get_redis)):
    return PipelineStatusResponse(
        running=await RunLock(r).is_locked(),
        last_run=await PipelineStatusStore.get_last_run(r),
        last_successful_run=await PipelineStatusStore.get_last_successful_run(r)
    )


@router.post("/notifications/test/{user_id}", response_model=DeliveryRecord)
async def send_test_notification(user_id: str, r: redis.Redis = Depends(get_redis)):
    """Send a sample ATH email to one user, bypassing eligibility."""
    sender = ResendEmailSender()
    try:
        return await Dispatcher(r, sender).send_test_notification(user_id)
    except UserNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except NotEntitled as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))
    finally:
        await sender.close()


@router.post("/notifications/reconcile")
async def reconcile_notification_preferences(r: redis.Redis = Depends(get_redis)):
    """Re-derive every user's notification flag from role, opt-in and subscription."""
    result = await EligibilityResolver(r).reconcile_preferences()
    return asdict(result)


@router.post("/cooldowns/clear")
async def clear_cooldowns(r: redis.Redis = Depends(get_redis)):
    cleared = await NotificationCooldown(r).clear_all()
    logger.info(f"Admin cleared {cleared} cooldown keys")
    return {"cleared": cleared}


@router.get("/notifications/recent", response_model=List[RecentNotification])
async def get_recent_notifications(
    hours: int = Query(24, ge=1, le=24 * 30),
    r: redis.Redis = Depends(get_redis)
):
    """Notification log entries from the last ``hours`` hours with delivery counts."""
    since = utcnow() - timedelta(hours=hours)
    logs = await DeliveryLedger.get_notifications_since(r, since)
    return [
        RecentNotification(notification=log, stats=await DeliveryLedger.get_event_stats(r, log.id))
        for log in reversed(logs)
    ]
