"""Unit tests for the HTTP routes.

Route handlers are called directly for their logic; a few tests go through
the ASGI app to cover authentication wiring.
"""
import json
from datetime import timedelta

import httpx
import pytest
from fastapi import HTTPException, status
from unittest.mock import AsyncMock, patch

from athwatch.core.auth import create_access_token
from athwatch.core.config import settings
from athwatch.core.redis import get_redis
from athwatch.models import (
    ATHEvent,
    DeliveryRecord,
    DeliveryStatus,
    RunOutcome,
    RunSummary,
    SubscriptionStatus,
)
from athwatch.services import DeliveryLedger, PipelineStatusStore
from tests.conftest import NOW, FakeEmailSender, seed_user


JWT_SECRET = "x" * 32


def summary(status_value=RunOutcome.COMPLETED, reason=None):
    return RunSummary(run_id="run-1", status=status_value, reason=reason, started_at=NOW, finished_at=NOW)


def body(response):
    return json.loads(response.body)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def endpoint_secrets():
    """Configure endpoint secrets."""
    with patch.object(settings, "cron_secret", "cron-s3cret"), \
         patch.object(settings, "email_webhook_secret", "hook-s3cret"), \
         patch.object(settings, "jwt_secret", JWT_SECRET):
        yield


@pytest.fixture
async def client(fake_redis, endpoint_secrets):
    """ASGI client with Redis pointed at fakeredis."""
    from athwatch.api.main import app

    app.dependency_overrides[get_redis] = lambda: fake_redis
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(endpoint_secrets):
    token = create_access_token({"sub": "admin-1", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# Tests for the cron trigger
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestCronTrigger:
    """Test POST /api/cron/ath-detection."""

    async def test_completed_run_returns_200(self):
        """✅ Completed → 200 with summary."""
        from athwatch.api.routes.cron import trigger_ath_detection

        with patch("athwatch.api.routes.cron.run_pipeline", AsyncMock(return_value=summary())):
            response = await trigger_ath_detection()

        assert response.status_code == 200
        assert body(response)["status"] == "completed"

    async def test_skipped_run_returns_200(self):
        """✅ Already running → 200 skipped."""
        from athwatch.api.routes.cron import trigger_ath_detection

        skipped = summary(RunOutcome.SKIPPED, "already_running")
        with patch("athwatch.api.routes.cron.run_pipeline", AsyncMock(return_value=skipped)):
            response = await trigger_ath_detection()

        assert response.status_code == 200
        assert body(response)["reason"] == "already_running"

    async def test_failed_run_returns_503(self):
        """❌ Failed → 503 with machine-readable reason."""
        from athwatch.api.routes.cron import trigger_ath_detection

        failed = summary(RunOutcome.FAILED, "source_unavailable")
        with patch("athwatch.api.routes.cron.run_pipeline", AsyncMock(return_value=failed)):
            response = await trigger_ath_detection()

        assert response.status_code == 503
        assert body(response)["reason"] == "source_unavailable"

    async def test_wrong_secret_rejected(self, client):
        """❌ Wrong bearer secret → 401 and no run."""
        with patch("athwatch.api.routes.cron.run_pipeline", AsyncMock()) as run:
            response = await client.post(
                "/api/cron/ath-detection", headers={"Authorization": "Bearer nope"}
            )

        assert response.status_code == 401
        run.assert_not_called()

    async def test_correct_secret_runs(self, client):
        """✅ Correct bearer secret → pipeline invoked."""
        with patch("athwatch.api.routes.cron.run_pipeline", AsyncMock(return_value=summary())) as run:
            response = await client.post(
                "/api/cron/ath-detection", headers={"Authorization": "Bearer cron-s3cret"}
            )

        assert response.status_code == 200
        run.assert_awaited_once()


# ============================================================================
# Tests for admin routes
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestAdminRoutes:
    """Test /api/admin endpoints."""

    async def test_requires_admin_token(self, client):
        """❌ No token → 401."""
        response = await client.get("/api/admin/pipeline/status")

        assert response.status_code == 401

    async def test_non_admin_token_forbidden(self, client, endpoint_secrets):
        """❌ User role → 403."""
        token = create_access_token({"sub": "user-1", "role": "user"})

        response = await client.get(
            "/api/admin/pipeline/status", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 403

    async def test_pipeline_status(self, client, admin_headers, fake_redis):
        """✅ Status shows last run and lock state."""
        await PipelineStatusStore.save_summary(fake_redis, summary())

        response = await client.get("/api/admin/pipeline/status", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["running"] is False
        assert data["last_run"]["run_id"] == "run-1"
        assert data["last_successful_run"]["status"] == "completed"

    async def test_run_now_passes_force(self, client, admin_headers):
        """✅ force query param reaches the pipeline."""
        with patch("athwatch.api.routes.admin.run_pipeline", AsyncMock(return_value=summary())) as run:
            response = await client.post("/api/admin/pipeline/run?force=true", headers=admin_headers)

        assert response.status_code == 200
        run.assert_awaited_once_with(force=True)

    async def test_send_test_notification(self, fake_redis):
        """✅ Entitled user → sent test delivery."""
        from athwatch.api.routes.admin import send_test_notification

        await seed_user(fake_redis, user_id="alice")
        sender = FakeEmailSender()
        with patch("athwatch.api.routes.admin.ResendEmailSender", return_value=sender):
            record = await send_test_notification("alice", r=fake_redis)

        assert record.status == "sent"
        assert sender.closed is True

    async def test_send_test_notification_unknown_user(self, fake_redis):
        """❌ Unknown user → 404."""
        from athwatch.api.routes.admin import send_test_notification

        with patch("athwatch.api.routes.admin.ResendEmailSender", return_value=FakeEmailSender()):
            with pytest.raises(HTTPException) as exc:
                await send_test_notification("ghost", r=fake_redis)

        assert exc.value.status_code == status.HTTP_404_NOT_FOUND

    async def test_send_test_notification_not_entitled(self, fake_redis):
        """❌ Expired subscription → 403."""
        from athwatch.api.routes.admin import send_test_notification

        await seed_user(fake_redis, user_id="bob", subscription_status=SubscriptionStatus.EXPIRED)
        with patch("athwatch.api.routes.admin.ResendEmailSender", return_value=FakeEmailSender()):
            with pytest.raises(HTTPException) as exc:
                await send_test_notification("bob", r=fake_redis)

        assert exc.value.status_code == status.HTTP_403_FORBIDDEN

    async def test_reconcile(self, fake_redis):
        """✅ Reconciliation counts returned."""
        from athwatch.api.routes.admin import reconcile_notification_preferences

        await seed_user(fake_redis, user_id="alice", notifications_enabled=False)

        result = await reconcile_notification_preferences(r=fake_redis)

        assert result == {"total": 1, "enabled_before": 0, "enabled_after": 1, "changed": 1}

    async def test_clear_cooldowns(self, fake_redis):
        """✅ Cooldown keys removed and counted."""
        from athwatch.api.routes.admin import clear_cooldowns

        await fake_redis.set("cooldown:bitcoin", "x", ex=300)

        assert await clear_cooldowns(r=fake_redis) == {"cleared": 1}

    async def test_recent_notifications(self, fake_redis):
        """✅ Recent logs newest first, with stats."""
        from athwatch.api.routes.admin import get_recent_notifications

        for event_id, hours_ago in [("a", 2), ("b", 1), ("old", 48)]:
            event = ATHEvent(asset_id="bitcoin", symbol="BTC", name="Bitcoin",
                             new_ath=61000.0, previous_ath=60000.0, detected_at=NOW, id=event_id)
            await DeliveryLedger.create_notification_log(
                fake_redis, event, sent_at=NOW - timedelta(hours=hours_ago)
            )

        recent = await get_recent_notifications(hours=24, r=fake_redis)

        assert [item.notification.id for item in recent] == ["b", "a"]
        assert recent[0].stats["sent"] == 0


# ============================================================================
# Tests for the email webhook
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestEmailWebhook:
    """Test POST /api/webhooks/email."""

    async def _seed_delivery(self, fake_redis):
        record = DeliveryRecord(
            id="d-1", event_id="evt-1", user_id="alice", recipient_email="alice@example.com",
            status=DeliveryStatus.SENT, provider_message_id="re_123", sent_at=NOW
        )
        return await DeliveryLedger.record_delivery(fake_redis, record)

    async def test_delivered_event_updates_record(self, client, fake_redis):
        """✅ email.delivered → delivery marked delivered."""
        await self._seed_delivery(fake_redis)

        response = await client.post(
            "/api/webhooks/email",
            headers={"Authorization": "Bearer hook-s3cret"},
            json={"type": "email.delivered", "created_at": NOW.isoformat(), "data": {"email_id": "re_123"}}
        )

        assert response.status_code == 200
        assert response.json()["delivery_status"] == "delivered"
        assert (await DeliveryLedger.get_delivery(fake_redis, "d-1")).status == "delivered"

    async def test_bounce_records_detail(self, fake_redis):
        """✅ email.bounced → bounced with message."""
        from athwatch.api.routes.webhooks import EmailEvent, email_status_callback

        await self._seed_delivery(fake_redis)
        event = EmailEvent(type="email.bounced", data={"email_id": "re_123", "bounce": {"message": "No such user"}})

        result = await email_status_callback(event, r=fake_redis)

        assert result["delivery_status"] == "bounced"
        record = await DeliveryLedger.get_delivery(fake_redis, "d-1")
        assert record.error_detail == "No such user"

    async def test_unknown_type_ignored(self, fake_redis):
        """✅ Unhandled event type → acknowledged, nothing changed."""
        from athwatch.api.routes.webhooks import EmailEvent, email_status_callback

        result = await email_status_callback(EmailEvent(type="email.opened", data={}), r=fake_redis)

        assert result == {"status": "ignored"}

    async def test_unknown_message(self, fake_redis):
        """✅ Unknown provider id → acknowledged."""
        from athwatch.api.routes.webhooks import EmailEvent, email_status_callback

        event = EmailEvent(type="email.delivered", data={"email_id": "re_missing"})

        assert (await email_status_callback(event, r=fake_redis))["status"] == "unknown_delivery"

    async def test_wrong_secret(self, client):
        """❌ Wrong secret → 401."""
        response = await client.post(
            "/api/webhooks/email",
            headers={"Authorization": "Bearer wrong"},
            json={"type": "email.delivered", "data": {}}
        )

        assert response.status_code == 401


# ============================================================================
# Tests for health
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestHealth:
    """Test GET /health."""

    async def test_healthy(self, client):
        """✅ Redis reachable → healthy."""
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["redis"] == "ok"

    async def test_redis_down(self):
        """❌ Ping fails → 503."""
        from redis.exceptions import ConnectionError as RedisConnectionError
        from athwatch.api.routes.health import health_check

        broken = AsyncMock()
        broken.ping.side_effect = RedisConnectionError("refused")

        response = await health_check(r=broken)

        assert response.status_code == 503
