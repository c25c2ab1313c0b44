from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..config import Settings
from ..events import WebhookValidationError
from .deps import get_app_settings, get_db

router = APIRouter()


@router.get("/", response_model=schemas.SubscriptionList)
def read_subscriptions(user_id: int, db: Session = Depends(get_db)):
    return {"items": crud.list_subscriptions(db, user_id=user_id)}


@router.post("/", response_model=schemas.Subscription, status_code=201)
def create_subscription(
    user_id: int,
    subscription: schemas.SubscriptionCreate,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    try:
        return crud.create_subscription(
            db,
            user_id=user_id,
            url=subscription.url,
            secret=subscription.secret,
            events=subscription.events,
            production=settings.is_production,
        )
    except WebhookValidationError as e:
        raise HTTPException(status_code=400, detail={"error": e.message, "code": e.code})


@router.post("/{subscription_id}/activate", response_model=schemas.Subscription)
def activate_subscription(user_id: int, subscription_id: int, db: Session = Depends(get_db)):
    db_subscription = crud.set_subscription_active(db, user_id, subscription_id, True)
    if db_subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return db_subscription


@router.post("/{subscription_id}/deactivate", response_model=schemas.Subscription)
def deactivate_subscription(user_id: int, subscription_id: int, db: Session = Depends(get_db)):
    db_subscription = crud.deactivate_subscription(db, user_id, subscription_id)
    if db_subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return db_subscription


@router.delete("/{subscription_id}")
def delete_subscription(user_id: int, subscription_id: int, db: Session = Depends(get_db)):
    # Deleting an unknown id is not an error
    crud.delete_subscription(db, user_id, subscription_id)
    return {"success": True}
