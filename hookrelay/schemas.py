from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict


class SubscriptionCreate(BaseModel):
    url: str
    secret: str
    events: Union[List[str], str]


class Subscription(BaseModel):
    id: int
    user_id: int
    url: str
    events: List[str]
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubscriptionList(BaseModel):
    items: List[Subscription]


class EventIn(BaseModel):
    user_id: int
    event: str
    data: Any = None


class EventAccepted(BaseModel):
    message: str
    event: str
    deliveries_started: int


class DeliveryRecord(BaseModel):
    id: int
    event: str
    created_at: datetime
    delivered_at: Optional[datetime] = None
    attempts: int
    status: str
    last_status_code: Optional[int] = None
    last_error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DeliveryRecordList(BaseModel):
    items: List[DeliveryRecord]


class PurgeResult(BaseModel):
    subscriptions: int
    deliveries: int
