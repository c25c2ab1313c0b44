import json
import logging
import sys
from datetime import datetime, timezone

logger = logging.getLogger("hookrelay")


class JSONFormatter(logging.Formatter):
    """Formats log records as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_format: bool = False):
    """Configure root logging for the service process."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root.addHandler(handler)

    # Quiet noisy libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def log_delivery_attempt(record_id, subscription_id, event, attempt_number, status_code, success, error=None):
    """Log a webhook delivery attempt."""
    log_data = {
        "record_id": record_id,
        "subscription_id": subscription_id,
        "event": event,
        "attempt": attempt_number,
        "status_code": status_code,
        "success": success,
    }

    if error:
        log_data["error"] = str(error)

    if success:
        logger.info(f"Webhook delivery succeeded: {json.dumps(log_data)}")
    else:
        logger.warning(f"Webhook delivery failed: {json.dumps(log_data)}")


class WebhookLogger:
    """Helper class for subscription lifecycle logging"""

    @staticmethod
    def subscription_created(subscription_id: int, user_id: int, url: str):
        logger.info(f"Subscription created: id={subscription_id}, user={user_id}, url={url}")

    @staticmethod
    def subscription_toggled(subscription_id: int, active: bool):
        logger.info(f"Subscription {'activated' if active else 'deactivated'}: id={subscription_id}")

    @staticmethod
    def subscription_deleted(subscription_id: int):
        logger.info(f"Subscription deleted: id={subscription_id}")

    @staticmethod
    def user_purged(user_id: int, subscriptions: int, records: int):
        logger.info(f"User purged: user={user_id}, subscriptions={subscriptions}, records={records}")
