from fastapi import APIRouter, Depends, HTTPException

from .. import schemas
from ..dispatcher import Dispatcher
from ..events import ALLOWED_EVENTS, is_known_event
from .deps import get_dispatcher

router = APIRouter()


@router.get("/types")
def list_event_types():
    return {"items": list(ALLOWED_EVENTS)}


@router.post("/", response_model=schemas.EventAccepted, status_code=202)
def emit_event(payload: schemas.EventIn, dispatcher: Dispatcher = Depends(get_dispatcher)):
    if not is_known_event(payload.event):
        raise HTTPException(
            status_code=400,
            detail={"error": f"Unknown event type: {payload.event}", "code": "bad_events"},
        )

    started = dispatcher.dispatch(payload.user_id, payload.event, payload.data)
    return {"message": "Event accepted for delivery", "event": payload.event, "deliveries_started": started}
