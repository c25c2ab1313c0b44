from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import crud, schemas
from .deps import get_db

router = APIRouter()


@router.get("/{user_id}/deliveries", response_model=schemas.DeliveryRecordList)
def get_user_deliveries(user_id: int, limit: int = Query(50, ge=1, le=500), db: Session = Depends(get_db)):
    return {"items": crud.get_delivery_records(db, user_id=user_id, limit=limit)}


@router.delete("/{user_id}", response_model=schemas.PurgeResult)
def purge_user(user_id: int, db: Session = Depends(get_db)):
    """Remove everything webhook-related that belongs to a deleted user."""
    return crud.purge_user(db, user_id=user_id)
