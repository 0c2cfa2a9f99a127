"""Dispatcher for sending ATH notifications to resolved recipients."""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import redis.asyncio as redis

from athwatch.core.config import settings
from athwatch.core.errors import (
    ErrorKind,
    NotEntitled,
    RecipientSendFailed,
    RunCancelled,
    StoreUnavailable,
    UserNotFound,
)
from athwatch.models import (
    ATHEvent,
    DeliveryRecord,
    DeliveryStatus,
    MessageType,
    User,
)
from athwatch.providers import EmailSender
from athwatch.services import DeliveryLedger, SubscriptionService, UserService
from athwatch.utils.formatting import format_ath_email
from athwatch.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """Outcome of dispatching one ATH event."""
    event_id: str
    sent: int = 0
    failed: int = 0
    delivery_ids: List[str] = field(default_factory=list)
    unrecorded_ids: List[str] = field(default_factory=list)


class Dispatcher:
    """Renders and sends one email per (event, recipient) and records the outcome."""

    def __init__(
        self,
        redis_client: redis.Redis,
        sender: EmailSender,
        concurrency: Optional[int] = None,
        app_url: Optional[str] = None
    ):
        self.redis = redis_client
        self.sender = sender
        self.concurrency = concurrency or settings.dispatch_concurrency
        self.app_url = app_url

    async def dispatch(
        self,
        event: ATHEvent,
        recipients: List[User],
        cancel: Optional[asyncio.Event] = None
    ) -> DispatchResult:
        """
        Send an event to every recipient with bounded concurrency.

        Creates the notification log entry first, then records one delivery
        per attempted recipient. A failed send is recorded as ``failed`` and
        never stops the other sends. Counts follow the send outcome even when
        a delivery record cannot be written. ``recipient_count`` is finalized
        once, to the number of successful sends.

        Args:
            event: Detected ATH event
            recipients: Users resolved for this event
            cancel: Set to stop before the next recipient

        Returns:
            DispatchResult with sent/failed counts

        Raises:
            RunCancelled: Cancellation requested mid-dispatch
            StoreUnavailable: Notification log could not be created (nothing sent)
        """
        await DeliveryLedger.create_notification_log(self.redis, event)

        semaphore = asyncio.Semaphore(self.concurrency)
        result = DispatchResult(event_id=event.id)

        async def deliver(user: User) -> DeliveryRecord:
            async with semaphore:
                if cancel is not None and cancel.is_set():
                    raise RunCancelled(f"Dispatch of {event.symbol} ATH cancelled")
                record = await self._send(event, user)
                try:
                    await DeliveryLedger.record_delivery(self.redis, record)
                except StoreUnavailable as e:
                    logger.error(f"Delivery {record.id} for user {user.id} ({record.status}) not recorded: {e}")
                    result.unrecorded_ids.append(record.id)
                return record

        outcomes = await asyncio.gather(
            *(deliver(user) for user in recipients),
            return_exceptions=True
        )

        errors = []
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                errors.append(outcome)
                continue
            result.delivery_ids.append(outcome.id)
            if outcome.status == DeliveryStatus.SENT.value:
                result.sent += 1
            else:
                result.failed += 1

        try:
            await DeliveryLedger.finalize_recipient_count(self.redis, event.id, result.sent)
        except StoreUnavailable as e:
            logger.error(f"Could not finalize recipient count for event {event.id}: {e}")

        logger.info(
            f"Dispatched {event.symbol} ATH: {result.sent} sent, {result.failed} failed "
            f"out of {len(recipients)} recipients"
            f"{f', {len(result.unrecorded_ids)} unrecorded' if result.unrecorded_ids else ''}"
        )

        if errors:
            cancelled = [e for e in errors if isinstance(e, RunCancelled)]
            raise cancelled[0] if cancelled else errors[0]
        return result

    async def _send(
        self,
        event: ATHEvent,
        user: User,
        message_type: MessageType = MessageType.ATH_NOTIFICATION
    ) -> DeliveryRecord:
        """Send one message and return its (unsaved) delivery record."""
        message = format_ath_email(event, user.email, app_url=self.app_url)
        if message_type == MessageType.TEST_NOTIFICATION:
            message.subject = f"[TEST] {message.subject}"
            message.metadata["type"] = message_type.value

        record = DeliveryRecord(
            id=uuid.uuid4().hex,
            event_id=None if message_type == MessageType.TEST_NOTIFICATION else event.id,
            user_id=user.id,
            recipient_email=user.email,
            message_type=message_type,
            status=DeliveryStatus.SENT,
            sent_at=utcnow()
        )

        try:
            record.provider_message_id = await self.sender.send(message)
            logger.info(f"Sent {event.symbol} ATH notification to user {user.id}")
        except RecipientSendFailed as e:
            logger.error(f"Failed to send {event.symbol} ATH notification to user {user.id}: {e}")
            record.status = DeliveryStatus.FAILED.value
            record.error_kind = e.kind.value
            record.error_detail = str(e)
            record.resolved_at = utcnow()
        except Exception as e:
            logger.error(f"Unexpected error sending to user {user.id}: {e}", exc_info=True)
            record.status = DeliveryStatus.FAILED.value
            record.error_kind = ErrorKind.RECIPIENT_SEND_FAILED.value
            record.error_detail = str(e)
            record.resolved_at = utcnow()

        return record

    async def send_test_notification(self, user_id: str, now: Optional[datetime] = None) -> DeliveryRecord:
        """
        Send a sample ATH email to one user (admin tooling).

        Skips the eligibility and cooldown checks but still requires an
        active subscription. No notification log entry is created.

        Raises:
            UserNotFound: Unknown user id
            NotEntitled: User has no active subscription
        """
        now = now or utcnow()
        user = await UserService.get_user(self.redis, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")
        if not await SubscriptionService.has_active_subscription(self.redis, user_id, now):
            raise NotEntitled(f"User {user_id} has no active subscription")

        sample = ATHEvent(
            asset_id="bitcoin",
            symbol="BTC",
            name="Bitcoin",
            new_ath=50000.0,
            previous_ath=48000.0,
            detected_at=now
        )
        record = await self._send(sample, user, message_type=MessageType.TEST_NOTIFICATION)
        await DeliveryLedger.record_delivery(self.redis, record)
        logger.info(f"Test notification for user {user_id} finished with status {record.status}")
        return record
