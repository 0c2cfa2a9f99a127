"""Scheduled trigger endpoint."""
import logging

from fastapi import APIRouter, Depends

from athwatch.api.responses import summary_response
from athwatch.core.auth import require_cron_secret
from athwatch.workers.pipeline import run_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.post("/ath-detection", dependencies=[Depends(require_cron_secret)])
async def trigger_ath_detection():
    """Run one ATH detection pass for the external scheduler."""
    logger.info("ATH detection triggered by cron")
    summary = await run_pipeline()
    return summary_response(summary)
