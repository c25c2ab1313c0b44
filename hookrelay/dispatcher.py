"""Event-time webhook dispatch.

``Dispatcher.dispatch`` is the one call the rest of the application makes when
a domain event happens. It resolves the owner's active subscriptions for the
event, hands one delivery attempt per subscription to a background backend and
returns immediately. Every attempt writes exactly one delivery record, whether
or not the endpoint was reachable, so the retry worker can pick up failures.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, NamedTuple, Optional

from . import crud, models
from .delivery import DeliveryResult, WebhookSender, serialize_event, to_millis
from .events import is_known_event
from .utils.logging import log_delivery_attempt

logger = logging.getLogger(__name__)


class Target(NamedTuple):
    """Detached copy of the subscription fields an attempt needs."""

    subscription_id: int
    url: str
    secret: str


def deliver_and_record(
    session_factory,
    sender: WebhookSender,
    target: Target,
    user_id: int,
    event: str,
    body: bytes,
    max_attempts: int,
    clock: Callable = models.utcnow,
) -> DeliveryResult:
    """First delivery attempt for one subscription, followed by its ledger write."""
    created_at = clock()
    try:
        result = sender.send(target.url, target.secret, event, body, to_millis(clock()))
    except Exception as e:
        logger.exception(f"Unexpected error delivering {event} to subscription {target.subscription_id}")
        result = DeliveryResult(success=False, error=str(e)[:255])

    log_delivery_attempt(
        record_id=None,
        subscription_id=target.subscription_id,
        event=event,
        attempt_number=1,
        status_code=result.status_code,
        success=result.success,
        error=result.error,
    )

    if result.success:
        status = models.STATUS_DELIVERED
        delivered_at = clock()
    else:
        status = models.STATUS_EXHAUSTED if max_attempts <= 1 else models.STATUS_PENDING
        delivered_at = None

    try:
        db = session_factory()
        try:
            crud.create_delivery_record(
                db,
                user_id=user_id,
                event=event,
                payload=body.decode("utf-8"),
                attempts=1,
                status=status,
                created_at=created_at,
                delivered_at=delivered_at,
                last_status_code=result.status_code,
                last_error=result.error,
            )
        finally:
            db.close()
    except Exception:
        logger.exception(
            f"Failed to record delivery of {event} for user {user_id} "
            f"(subscription {target.subscription_id})"
        )

    return result


class Dispatcher:
    """Fire-and-forget fan-out of one event to every matching subscription.

    Attempts run on a thread pool by default. When ``queue`` (an rq ``Queue``)
    is given, each attempt is enqueued as a job instead and an ``rq worker``
    process performs it.

    At most ``max_pending`` thread-pool attempts may be queued or running at
    once. Beyond that, and whenever an attempt cannot be submitted at all, the
    event is written to the ledger as pending with no attempts consumed and
    the retry worker delivers it.
    """

    def __init__(
        self,
        session_factory,
        sender: WebhookSender,
        max_attempts: int = 5,
        clock: Callable = models.utcnow,
        executor: Optional[ThreadPoolExecutor] = None,
        max_workers: int = 32,
        max_pending: int = 1000,
        queue=None,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.max_attempts = max_attempts
        self.clock = clock
        self.queue = queue
        self._owns_executor = executor is None and queue is None
        if self._owns_executor:
            executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="webhook-dispatch")
        self.executor = executor
        self._slots = threading.BoundedSemaphore(max_pending)

    def dispatch(self, user_id: int, event: str, payload: Any) -> int:
        """Start one delivery per active subscription; returns how many were started.

        Never raises for delivery or storage problems.
        """
        if not is_known_event(event):
            logger.warning(f"Ignoring unknown webhook event {event!r} for user {user_id}")
            return 0

        body = serialize_event(event, payload)

        try:
            db = self.session_factory()
            try:
                targets = [
                    Target(s.id, s.url, s.secret)
                    for s in crud.list_active_subscriptions(db, user_id, event)
                ]
            finally:
                db.close()
        except Exception:
            logger.exception(f"Could not resolve webhook subscriptions for user {user_id}, event {event}")
            return 0

        started = 0
        for target in targets:
            try:
                submitted = self._submit(target, user_id, event, body)
            except Exception:
                logger.exception(
                    f"Could not start delivery of {event} to subscription {target.subscription_id}"
                )
                submitted = False

            if submitted:
                started += 1
            else:
                self._defer(target, user_id, event, body)

        if started:
            logger.debug(f"Dispatched {event} for user {user_id} to {started} subscription(s)")
        return started

    def _submit(self, target: Target, user_id: int, event: str, body: bytes) -> bool:
        if self.queue is not None:
            from .worker.tasks import deliver_subscription_event

            self.queue.enqueue(
                deliver_subscription_event,
                target.subscription_id,
                user_id,
                event,
                body.decode("utf-8"),
            )
            return True

        if not self._slots.acquire(blocking=False):
            logger.warning(
                f"Dispatch backlog full, leaving {event} for subscription {target.subscription_id} to the retry worker"
            )
            return False

        try:
            future = self.executor.submit(
                deliver_and_record,
                self.session_factory,
                self.sender,
                target,
                user_id,
                event,
                body,
                self.max_attempts,
                self.clock,
            )
        except Exception:
            self._slots.release()
            raise
        future.add_done_callback(lambda _: self._slots.release())
        return True

    def _defer(self, target: Target, user_id: int, event: str, body: bytes):
        """Record an event whose first attempt never started so the retry worker sends it."""
        try:
            db = self.session_factory()
            try:
                crud.create_delivery_record(
                    db,
                    user_id=user_id,
                    event=event,
                    payload=body.decode("utf-8"),
                    attempts=0,
                    status=models.STATUS_PENDING,
                    created_at=self.clock(),
                    last_error="first attempt not started",
                )
            finally:
                db.close()
        except Exception:
            logger.exception(
                f"Failed to record undelivered {event} for user {user_id} "
                f"(subscription {target.subscription_id})"
            )

    def shutdown(self, wait: bool = True):
        """Stop accepting work; with ``wait`` block until in-flight attempts finish."""
        if self.executor is not None and self._owns_executor:
            self.executor.shutdown(wait=wait)
