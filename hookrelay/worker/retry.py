import logging
import threading
from datetime import timedelta
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .. import crud, models
from ..config import Settings
from ..delivery import DeliveryResult, WebhookSender, to_millis
from ..utils.logging import log_delivery_attempt

logger = logging.getLogger(__name__)

JOB_ID = "webhook_retry_tick"


class RetryWorker:
    """Periodically re-attempts undelivered webhook events.

    Ticks never overlap: the APScheduler job runs with ``max_instances=1`` and
    ``run_tick`` itself is guarded by a non-blocking lock. Rows are also claimed
    atomically before each attempt, so two processes sharing a database never
    deliver the same record concurrently.
    """

    def __init__(
        self,
        session_factory,
        sender: WebhookSender,
        settings: Settings,
        clock: Callable = models.utcnow,
    ):
        self.session_factory = session_factory
        self.sender = sender
        self.interval = settings.retry_interval_seconds
        self.max_attempts = settings.max_retry_attempts
        self.batch_size = settings.batch_size
        self.claim_timeout = timedelta(seconds=settings.claim_timeout_seconds)
        self.clock = clock
        self.scheduler: Optional[BackgroundScheduler] = None
        self._tick_lock = threading.Lock()
        self.ticks = 0
        self.last_tick_at = None
        self.last_summary = None
        self.last_error = None

    def start(self):
        """Start the periodic scheduler."""
        if self.scheduler and self.scheduler.running:
            logger.info("Retry worker is already running")
            return

        self.scheduler = BackgroundScheduler()
        self.scheduler.add_job(
            self.run_tick,
            trigger="interval",
            seconds=self.interval,
            id=JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self.scheduler.start()
        logger.info(f"Webhook retry worker started (interval: {self.interval}s)")

    def stop(self):
        """Stop the scheduler, waiting for a running tick to finish."""
        if self.scheduler and self.scheduler.running:
            logger.info("Stopping webhook retry worker...")
            self.scheduler.shutdown(wait=True)
            logger.info("Webhook retry worker stopped")
        self.scheduler = None

    def status(self):
        running = bool(self.scheduler and self.scheduler.running)
        return {
            "status": "running" if running else "stopped",
            "interval_seconds": self.interval,
            "ticks": self.ticks,
            "last_tick_at": self.last_tick_at.isoformat() if self.last_tick_at else None,
            "last_summary": self.last_summary,
            "last_error": self.last_error,
            "tick_in_progress": self._tick_lock.locked(),
        }

    def run_tick(self) -> Optional[dict]:
        """Process one batch. Returns a summary, or None if a tick is already running."""
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("Previous webhook retry tick still running, skipping")
            return None
        try:
            summary = self._process_batch()
            self.last_summary = summary
            self.last_error = None
            if summary["selected"]:
                logger.info(
                    f"Webhook retry tick: selected={summary['selected']}, delivered={summary['delivered']}, "
                    f"failed={summary['failed']}, exhausted={summary['exhausted']}, skipped={summary['skipped']}"
                )
            return summary
        except Exception as e:
            # Never let a tick failure kill the schedule
            self.last_error = str(e)
            logger.exception("Webhook retry tick failed")
            return None
        finally:
            self.ticks += 1
            self.last_tick_at = self.clock()
            self._tick_lock.release()

    def _process_batch(self) -> dict:
        summary = {"selected": 0, "delivered": 0, "failed": 0, "exhausted": 0, "skipped": 0, "released": 0}

        db = self.session_factory()
        try:
            summary["released"] = crud.release_stale_claims(db, self.clock() - self.claim_timeout)
            if summary["released"]:
                logger.warning(f"Released {summary['released']} stale webhook claim(s)")

            candidates = [
                (record.id, record.user_id, record.event, record.payload, record.attempts)
                for record in crud.select_retry_candidates(db, self.max_attempts, self.batch_size)
            ]
        finally:
            db.close()

        summary["selected"] = len(candidates)
        for record_id, user_id, event, payload, attempts in candidates:
            try:
                outcome = self._retry_record(record_id, user_id, event, payload, attempts)
            except Exception:
                logger.exception(f"Retry of webhook record {record_id} failed")
                self._release(record_id)
                outcome = "skipped"
            summary[outcome] += 1

        return summary

    def _retry_record(self, record_id: int, user_id: int, event: str, payload: str, attempts: int) -> str:
        db = self.session_factory()
        try:
            if not crud.claim_delivery_record(db, record_id, self.max_attempts, self.clock()):
                return "skipped"

            # Current subscribers for (user, event), not the ones present at dispatch
            targets = [
                (s.id, s.url, s.secret)
                for s in crud.list_active_subscriptions(db, user_id, event)
            ]
        finally:
            db.close()

        if not targets:
            self._release(record_id)
            return "skipped"

        body = payload.encode("utf-8")
        attempt_number = attempts + 1
        accepted: Optional[DeliveryResult] = None
        errors = []
        for subscription_id, url, secret in targets:
            try:
                result = self.sender.send(url, secret, event, body, to_millis(self.clock()))
            except Exception as e:
                logger.exception(f"Unexpected error retrying record {record_id} to subscription {subscription_id}")
                result = DeliveryResult(success=False, error=str(e)[:255])
            log_delivery_attempt(
                record_id=record_id,
                subscription_id=subscription_id,
                event=event,
                attempt_number=attempt_number,
                status_code=result.status_code,
                success=result.success,
                error=result.error,
            )
            if result.success:
                accepted = result
            else:
                errors.append(result.error or "delivery failed")

        db = self.session_factory()
        try:
            # Delivered only once every current subscriber has accepted it
            if not errors:
                crud.mark_retry_delivered(db, record_id, self.clock(), accepted.status_code)
                return "delivered"

            crud.mark_retry_failed(db, record_id, self.max_attempts, "; ".join(errors))
        finally:
            db.close()

        if attempt_number >= self.max_attempts:
            logger.warning(
                f"Webhook record {record_id} ({event}, user {user_id}) exhausted after {attempt_number} attempts"
            )
            return "exhausted"
        return "failed"

    def _release(self, record_id: int):
        try:
            db = self.session_factory()
            try:
                crud.release_claim(db, record_id)
            finally:
                db.close()
        except Exception:
            logger.exception(f"Could not release claim on webhook record {record_id}")
