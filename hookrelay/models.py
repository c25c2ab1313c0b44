from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base

# Delivery record states
STATUS_PENDING = "pending"
STATUS_IN_FLIGHT = "in_flight"
STATUS_DELIVERED = "delivered"
STATUS_EXHAUSTED = "exhausted"


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Subscription(Base):
    __tablename__ = "webhooks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    url = Column(String, nullable=False)
    secret = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    event_rows = relationship(
        "SubscriptionEvent",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="SubscriptionEvent.id",
    )

    @property
    def events(self):
        return [row.event for row in self.event_rows]


class SubscriptionEvent(Base):
    __tablename__ = "webhook_subscription_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscription_id = Column(
        Integer, ForeignKey("webhooks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event = Column(String, nullable=False, index=True)


class DeliveryRecord(Base):
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    event = Column(String, nullable=False)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    delivered_at = Column(DateTime, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    claimed_at = Column(DateTime, nullable=True)
    last_error = Column(String, nullable=True)
    last_status_code = Column(Integer, nullable=True)
