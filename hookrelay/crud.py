from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, case, exists, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import desc

from . import models
from .events import WebhookValidationError, normalize_events, validate_url
from .utils.logging import WebhookLogger

Subscription = models.Subscription
SubscriptionEvent = models.SubscriptionEvent
DeliveryRecord = models.DeliveryRecord


# Subscription registry
def create_subscription(
    db: Session,
    user_id: int,
    url: str,
    secret: str,
    events,
    production: bool = False,
) -> Subscription:
    url = validate_url(url, production=production)
    if not secret or not str(secret).strip():
        raise WebhookValidationError("A signing secret is required", "missing_secret")
    event_names = normalize_events(events)

    db_subscription = Subscription(
        user_id=user_id,
        url=url,
        secret=secret,
        active=True,
        event_rows=[SubscriptionEvent(event=name) for name in event_names],
    )
    db.add(db_subscription)
    db.commit()
    db.refresh(db_subscription)
    WebhookLogger.subscription_created(db_subscription.id, user_id, url)
    return db_subscription


def get_subscription(db: Session, user_id: int, subscription_id: int) -> Optional[Subscription]:
    return db.query(Subscription).filter(
        Subscription.id == subscription_id, Subscription.user_id == user_id
    ).first()


def get_subscription_by_id(db: Session, subscription_id: int) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.id == subscription_id).first()


def list_subscriptions(db: Session, user_id: int) -> List[Subscription]:
    return db.query(Subscription).filter(
        Subscription.user_id == user_id
    ).order_by(Subscription.id).all()


def list_active_subscriptions(db: Session, user_id: int, event: str) -> List[Subscription]:
    """Active subscriptions of ``user_id`` whose event set contains ``event``."""
    return db.query(Subscription).join(SubscriptionEvent).filter(
        Subscription.user_id == user_id,
        Subscription.active.is_(True),
        SubscriptionEvent.event == event,
    ).order_by(Subscription.id).all()


def set_subscription_active(
    db: Session, user_id: int, subscription_id: int, active: bool
) -> Optional[Subscription]:
    db_subscription = get_subscription(db, user_id, subscription_id)
    if db_subscription is None:
        return None

    if db_subscription.active != active:
        db_subscription.active = active
        db.commit()
        db.refresh(db_subscription)
        WebhookLogger.subscription_toggled(db_subscription.id, active)
    return db_subscription


def deactivate_subscription(db: Session, user_id: int, subscription_id: int) -> Optional[Subscription]:
    return set_subscription_active(db, user_id, subscription_id, False)


def delete_subscription(db: Session, user_id: int, subscription_id: int) -> Optional[Subscription]:
    db_subscription = get_subscription(db, user_id, subscription_id)
    if db_subscription:
        db.delete(db_subscription)
        db.commit()
        WebhookLogger.subscription_deleted(subscription_id)
    return db_subscription


def purge_user(db: Session, user_id: int) -> dict:
    """Delete every subscription and delivery record owned by ``user_id``."""
    owned = select(Subscription.id).where(Subscription.user_id == user_id)
    db.query(SubscriptionEvent).filter(
        SubscriptionEvent.subscription_id.in_(owned)
    ).delete(synchronize_session=False)
    subscriptions = db.query(Subscription).filter(
        Subscription.user_id == user_id
    ).delete(synchronize_session=False)
    records = db.query(DeliveryRecord).filter(
        DeliveryRecord.user_id == user_id
    ).delete(synchronize_session=False)
    db.commit()
    WebhookLogger.user_purged(user_id, subscriptions, records)
    return {"subscriptions": subscriptions, "deliveries": records}


# Delivery ledger
def create_delivery_record(
    db: Session,
    user_id: int,
    event: str,
    payload: str,
    attempts: int,
    status: str,
    created_at: datetime,
    delivered_at: Optional[datetime] = None,
    last_status_code: Optional[int] = None,
    last_error: Optional[str] = None,
) -> DeliveryRecord:
    db_record = DeliveryRecord(
        user_id=user_id,
        event=event,
        payload=payload,
        attempts=attempts,
        status=status,
        created_at=created_at,
        delivered_at=delivered_at,
        last_status_code=last_status_code,
        last_error=last_error,
    )
    db.add(db_record)
    db.commit()
    db.refresh(db_record)
    return db_record


def get_delivery_record(db: Session, record_id: int) -> Optional[DeliveryRecord]:
    return db.query(DeliveryRecord).filter(DeliveryRecord.id == record_id).first()


def get_delivery_records(db: Session, user_id: int, limit: int = 50) -> List[DeliveryRecord]:
    return db.query(DeliveryRecord).filter(
        DeliveryRecord.user_id == user_id
    ).order_by(desc(DeliveryRecord.created_at), desc(DeliveryRecord.id)).limit(limit).all()


def _has_active_subscriber():
    # Correlated against the outer DeliveryRecord row.
    return exists().where(
        and_(
            Subscription.user_id == DeliveryRecord.user_id,
            Subscription.active.is_(True),
            SubscriptionEvent.subscription_id == Subscription.id,
            SubscriptionEvent.event == DeliveryRecord.event,
        )
    )


def select_retry_candidates(db: Session, max_attempts: int, limit: int) -> List[DeliveryRecord]:
    """Oldest undelivered records below the attempt cap that still have a subscriber."""
    return db.query(DeliveryRecord).filter(
        DeliveryRecord.delivered_at.is_(None),
        DeliveryRecord.status == models.STATUS_PENDING,
        DeliveryRecord.attempts < max_attempts,
        _has_active_subscriber(),
    ).order_by(DeliveryRecord.created_at, DeliveryRecord.id).limit(limit).all()


def claim_delivery_record(db: Session, record_id: int, max_attempts: int, now: datetime) -> bool:
    """Atomically move a pending record to in_flight. False if someone else got it."""
    claimed = db.query(DeliveryRecord).filter(
        DeliveryRecord.id == record_id,
        DeliveryRecord.status == models.STATUS_PENDING,
        DeliveryRecord.delivered_at.is_(None),
        DeliveryRecord.attempts < max_attempts,
    ).update(
        {DeliveryRecord.status: models.STATUS_IN_FLIGHT, DeliveryRecord.claimed_at: now},
        synchronize_session=False,
    )
    db.commit()
    return claimed == 1


def release_claim(db: Session, record_id: int) -> None:
    db.query(DeliveryRecord).filter(
        DeliveryRecord.id == record_id,
        DeliveryRecord.status == models.STATUS_IN_FLIGHT,
    ).update(
        {DeliveryRecord.status: models.STATUS_PENDING, DeliveryRecord.claimed_at: None},
        synchronize_session=False,
    )
    db.commit()


def release_stale_claims(db: Session, older_than: datetime) -> int:
    released = db.query(DeliveryRecord).filter(
        DeliveryRecord.status == models.STATUS_IN_FLIGHT,
        DeliveryRecord.claimed_at < older_than,
    ).update(
        {DeliveryRecord.status: models.STATUS_PENDING, DeliveryRecord.claimed_at: None},
        synchronize_session=False,
    )
    db.commit()
    return released


def mark_retry_delivered(
    db: Session, record_id: int, delivered_at: datetime, status_code: Optional[int]
) -> None:
    db.query(DeliveryRecord).filter(
        DeliveryRecord.id == record_id,
        DeliveryRecord.delivered_at.is_(None),
    ).update(
        {
            DeliveryRecord.delivered_at: delivered_at,
            DeliveryRecord.attempts: DeliveryRecord.attempts + 1,
            DeliveryRecord.status: models.STATUS_DELIVERED,
            DeliveryRecord.claimed_at: None,
            DeliveryRecord.last_status_code: status_code,
            DeliveryRecord.last_error: None,
        },
        synchronize_session=False,
    )
    db.commit()


def mark_retry_failed(db: Session, record_id: int, max_attempts: int, error: Optional[str]) -> None:
    db.query(DeliveryRecord).filter(
        DeliveryRecord.id == record_id,
        DeliveryRecord.delivered_at.is_(None),
    ).update(
        {
            DeliveryRecord.attempts: DeliveryRecord.attempts + 1,
            DeliveryRecord.status: case(
                (DeliveryRecord.attempts + 1 >= max_attempts, models.STATUS_EXHAUSTED),
                else_=models.STATUS_PENDING,
            ),
            DeliveryRecord.claimed_at: None,
            DeliveryRecord.last_error: error[:255] if error else None,
        },
        synchronize_session=False,
    )
    db.commit()
