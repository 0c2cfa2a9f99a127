"""Unit tests for the ATH scheduler."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from athwatch.models import RunOutcome, RunSummary
from athwatch.scheduler.main import ATHScheduler
from tests.conftest import NOW


@pytest.mark.unit
@pytest.mark.asyncio
class TestATHScheduler:
    """Test job registration and run handling."""

    async def test_job_registered_single_instance(self):
        """✅ Interval job registered with max_instances=1."""
        scheduler = ATHScheduler(interval_minutes=5)
        scheduler.scheduler = MagicMock()

        scheduler.start()

        kwargs = scheduler.scheduler.add_job.call_args.kwargs
        assert kwargs["id"] == "ath_detection"
        assert kwargs["max_instances"] == 1
        assert kwargs["coalesce"] is True
        scheduler.scheduler.start.assert_called_once()

    async def test_run_detection_calls_pipeline(self):
        """✅ Each tick runs the pipeline once."""
        summary = RunSummary(run_id="r", status=RunOutcome.COMPLETED, started_at=NOW)
        with patch("athwatch.scheduler.main.run_pipeline", AsyncMock(return_value=summary)) as run:
            await ATHScheduler(interval_minutes=5).run_detection()

        run.assert_awaited_once()

    async def test_run_detection_swallows_errors(self):
        """✅ Unexpected error is logged, the schedule keeps going."""
        with patch("athwatch.scheduler.main.run_pipeline", AsyncMock(side_effect=RuntimeError("boom"))):
            await ATHScheduler(interval_minutes=5).run_detection()
