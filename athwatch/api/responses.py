"""Shared response helpers for pipeline triggers."""
from fastapi import status
from fastapi.responses import JSONResponse

from athwatch.models import RunOutcome, RunSummary


def summary_response(summary: RunSummary) -> JSONResponse:
    """200 for completed or skipped runs, 503 with the failure reason otherwise."""
    status_code = status.HTTP_200_OK
    if summary.status == RunOutcome.FAILED.value:
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=summary.model_dump(mode="json"))
