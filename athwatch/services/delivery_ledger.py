"""Delivery ledger: notification log entries, delivery records and per-event counts."""
import logging
from datetime import datetime
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from athwatch.core.errors import RecordInvalid, StoreUnavailable, store_errors
from athwatch.models import (
    ATHEvent,
    DeliveryRecord,
    DeliveryStatus,
    NotificationLog,
)
from athwatch.utils.time import to_epoch_ms, utcnow

logger = logging.getLogger(__name__)

NOTIFICATION_TIMELINE = "notifications:timeline"
MAX_WATCH_RETRIES = 10


def notification_key(event_id: str) -> str:
    return f"notification:{event_id}"


def notification_stats_key(event_id: str) -> str:
    return f"notification:{event_id}:stats"


def notification_deliveries_key(event_id: str) -> str:
    return f"notification:{event_id}:deliveries"


def delivery_key(delivery_id: str) -> str:
    return f"delivery:{delivery_id}"


def provider_index_key(provider_message_id: str) -> str:
    return f"delivery:provider:{provider_message_id}"


def user_deliveries_key(user_id: str) -> str:
    return f"user:{user_id}:deliveries"


class DeliveryLedger:
    """Service for persisting notification and delivery outcomes."""

    # ------------------------------------------------------------------
    # Notification log (one per ATH event)
    # ------------------------------------------------------------------

    @staticmethod
    async def create_notification_log(
        r: redis.Redis,
        event: ATHEvent,
        sent_at: Optional[datetime] = None
    ) -> NotificationLog:
        """Upsert the log entry for an event, keyed by event id."""
        log = NotificationLog(
            id=event.id,
            asset_id=event.asset_id,
            new_ath=event.new_ath,
            previous_ath=event.previous_ath,
            sent_at=sent_at or utcnow(),
            recipient_count=0
        )
        with store_errors("notification log write"):
            async with r.pipeline(transaction=True) as pipe:
                pipe.hset(notification_key(log.id), mapping=log.to_mapping())
                pipe.zadd(NOTIFICATION_TIMELINE, {log.id: to_epoch_ms(log.sent_at)})
                await pipe.execute()
        return log

    @staticmethod
    async def finalize_recipient_count(r: redis.Redis, event_id: str, recipient_count: int):
        """Set the final recipient count. Safe to repeat."""
        with store_errors("notification log finalize"):
            await r.hset(notification_key(event_id), "recipient_count", str(recipient_count))

    @staticmethod
    async def get_notification_log(r: redis.Redis, event_id: str) -> Optional[NotificationLog]:
        key = notification_key(event_id)
        with store_errors("notification log read"):
            data = await r.hgetall(key)
        if not data:
            return None
        return NotificationLog.from_mapping(key, data)

    @staticmethod
    async def get_notifications_since(r: redis.Redis, since: datetime) -> List[NotificationLog]:
        """Notification log entries sent at or after ``since``, oldest first."""
        with store_errors("notification timeline read"):
            event_ids = await r.zrangebyscore(NOTIFICATION_TIMELINE, to_epoch_ms(since), "+inf")

        logs = []
        for event_id in event_ids:
            try:
                log = await DeliveryLedger.get_notification_log(r, event_id)
            except RecordInvalid as e:
                logger.warning(f"Rejected notification log: {e}")
                continue
            if log:
                logs.append(log)
        return logs

    # ------------------------------------------------------------------
    # Delivery records (one per event/user attempt)
    # ------------------------------------------------------------------

    @staticmethod
    async def record_delivery(r: redis.Redis, record: DeliveryRecord) -> DeliveryRecord:
        """Persist a delivery attempt and bump the event's aggregate counter."""
        with store_errors("delivery write"):
            async with r.pipeline(transaction=True) as pipe:
                pipe.hset(delivery_key(record.id), mapping=record.to_mapping())
                pipe.zadd(user_deliveries_key(record.user_id), {record.id: to_epoch_ms(record.sent_at)})
                if record.provider_message_id:
                    pipe.set(provider_index_key(record.provider_message_id), record.id)
                if record.event_id:
                    pipe.sadd(notification_deliveries_key(record.event_id), record.id)
                    pipe.hincrby(notification_stats_key(record.event_id), record.status, 1)
                await pipe.execute()
        return record

    @staticmethod
    async def get_delivery(r: redis.Redis, delivery_id: str) -> Optional[DeliveryRecord]:
        key = delivery_key(delivery_id)
        with store_errors("delivery read"):
            data = await r.hgetall(key)
        if not data:
            return None
        return DeliveryRecord.from_mapping(key, data)

    @staticmethod
    async def find_by_provider_message_id(
        r: redis.Redis,
        provider_message_id: str
    ) -> Optional[DeliveryRecord]:
        with store_errors("delivery lookup"):
            delivery_id = await r.get(provider_index_key(provider_message_id))
        if not delivery_id:
            return None
        return await DeliveryLedger.get_delivery(r, delivery_id)

    @staticmethod
    async def update_delivery_status(
        r: redis.Redis,
        delivery_id: str,
        status: DeliveryStatus,
        resolved_at: Optional[datetime] = None,
        error_detail: Optional[str] = None
    ) -> Optional[DeliveryRecord]:
        """
        Apply an asynchronous status update (delivered, bounced, failed).

        The per-event counters move the attempt from its old status to the
        new one. The record is watched so concurrent callbacks for the same
        delivery move the counters once.

        Returns:
            Updated record, or None if the delivery is unknown
        """
        status = DeliveryStatus(status)
        key = delivery_key(delivery_id)
        updates = {"status": status.value, "resolved_at": (resolved_at or utcnow()).isoformat()}
        if error_detail:
            updates["error_detail"] = error_detail

        with store_errors("delivery status update"):
            async with r.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(key)
                        data = await pipe.hgetall(key)
                        if not data:
                            return None
                        record = DeliveryRecord.from_mapping(key, data)
                        old_status = record.status

                        pipe.multi()
                        pipe.hset(key, mapping=updates)
                        if record.event_id and old_status != status.value:
                            stats_key = notification_stats_key(record.event_id)
                            pipe.hincrby(stats_key, old_status, -1)
                            pipe.hincrby(stats_key, status.value, 1)
                        await pipe.execute()
                        break
                    except WatchError:
                        logger.debug(f"Concurrent status update on delivery {delivery_id}, retrying")
                        continue
                else:
                    raise StoreUnavailable(
                        f"Gave up updating delivery {delivery_id} after {MAX_WATCH_RETRIES} contended attempts"
                    )

        logger.info(f"Delivery {delivery_id} status {old_status} -> {status.value}")
        return await DeliveryLedger.get_delivery(r, delivery_id)

    @staticmethod
    async def get_event_deliveries(r: redis.Redis, event_id: str) -> List[DeliveryRecord]:
        with store_errors("event deliveries read"):
            delivery_ids = await r.smembers(notification_deliveries_key(event_id))

        records = []
        for delivery_id in sorted(delivery_ids):
            record = await DeliveryLedger.get_delivery(r, delivery_id)
            if record:
                records.append(record)
        return records

    @staticmethod
    async def get_event_stats(r: redis.Redis, event_id: str) -> Dict[str, int]:
        """Aggregate counts per delivery status for an event."""
        with store_errors("event stats read"):
            raw = await r.hgetall(notification_stats_key(event_id))
        stats = {s.value: 0 for s in DeliveryStatus}
        stats.update({k: int(v) for k, v in raw.items()})
        return stats

    @staticmethod
    async def get_user_delivery_history(
        r: redis.Redis,
        user_id: str,
        limit: int = 50
    ) -> List[DeliveryRecord]:
        """Most recent deliveries for a user, newest first."""
        with store_errors("user delivery history read"):
            delivery_ids = await r.zrevrange(user_deliveries_key(user_id), 0, limit - 1)

        records = []
        for delivery_id in delivery_ids:
            record = await DeliveryLedger.get_delivery(r, delivery_id)
            if record:
                records.append(record)
        return records
