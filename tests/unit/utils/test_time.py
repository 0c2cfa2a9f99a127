"""Unit tests for time helpers."""
import pytest
from datetime import datetime, timedelta, timezone

from athwatch.utils.time import ensure_utc, to_epoch_ms, utcnow


@pytest.mark.unit
class TestTimeHelpers:
    """Test UTC normalization."""

    def test_utcnow_is_aware(self):
        """✅ utcnow carries UTC tzinfo."""
        assert utcnow().tzinfo == timezone.utc

    def test_naive_assumed_utc(self):
        """✅ Naive datetime gets UTC attached unchanged."""
        value = ensure_utc(datetime(2025, 1, 1, 12, 0))

        assert value == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_offset_converted(self):
        """✅ Offset datetime converted to UTC."""
        plus_two = timezone(timedelta(hours=2))

        value = ensure_utc(datetime(2025, 1, 1, 14, 0, tzinfo=plus_two))

        assert value.hour == 12
        assert value.tzinfo == timezone.utc

    def test_none_passthrough(self):
        """✅ None stays None."""
        assert ensure_utc(None) is None

    def test_epoch_ms(self):
        """✅ Epoch milliseconds."""
        assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == 1000
