"""rq-backed delivery jobs.

With ``HOOKRELAY_DELIVERY_BACKEND=rq`` the dispatcher enqueues
``deliver_subscription_event`` instead of running it on a local thread. Run the
consumer with ``rq worker --url $HOOKRELAY_REDIS_URL webhooks``.
"""
import logging
import time

import redis
from rq import Queue

from .. import crud
from ..config import settings
from ..database import SessionLocal
from ..delivery import WebhookSender
from ..dispatcher import Target, deliver_and_record

logger = logging.getLogger(__name__)

# Shared by every job executed in this worker process
sender = WebhookSender(timeout=settings.request_timeout_seconds)


def get_redis_connection(redis_url: str, max_retries: int = 3):
    """Get a Redis connection with retry logic."""
    for attempt in range(max_retries):
        try:
            conn = redis.from_url(redis_url)
            conn.ping()
            return conn
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError):
            if attempt < max_retries - 1:
                time.sleep(1)
            else:
                raise


def get_queue(redis_url: str = None, name: str = None) -> Queue:
    conn = get_redis_connection(redis_url or settings.redis_url)
    return Queue(name or settings.rq_queue_name, connection=conn)


def deliver_subscription_event(subscription_id: int, user_id: int, event: str, body: str):
    """Attempt the dispatch-time delivery of ``body`` to one subscription."""
    db = SessionLocal()
    try:
        subscription = crud.get_subscription_by_id(db, subscription_id)
        if subscription is None or subscription.user_id != user_id:
            logger.warning(f"Subscription {subscription_id} vanished before delivery of {event}")
            return {"success": False, "error": "Subscription not found"}
        target = Target(subscription.id, subscription.url, subscription.secret)
    finally:
        db.close()

    result = deliver_and_record(
        SessionLocal,
        sender,
        target,
        user_id,
        event,
        body.encode("utf-8"),
        settings.max_retry_attempts,
    )
    return {"success": result.success, "status_code": result.status_code, "error": result.error}
