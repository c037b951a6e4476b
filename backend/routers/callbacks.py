# routers/callbacks.py — Admin API for outbound callback subscribers
from typing import Optional, List, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, HttpUrl

from auth import get_current_user, CurrentUser
from callbacks import CALLBACK_RETRY_MAX, CALLBACK_TIMEOUT, CallbackEmitter, Subscriber, get_callback_emitter

router = APIRouter(prefix="/api/v1/callbacks", tags=["Callbacks"])


class SubscriberCreate(BaseModel):
    url: HttpUrl
    secret: Optional[str] = Field(None, min_length=8, max_length=256)
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(CALLBACK_TIMEOUT, gt=0, le=120)
    retry_max: int = Field(CALLBACK_RETRY_MAX, ge=0, le=10)
    event_mask: List[str] = Field(default_factory=list)


class SubscriberOut(BaseModel):
    id: str
    url: str
    has_secret: bool
    headers: Dict[str, str] = {}
    timeout: float
    retry_max: int
    event_mask: List[str] = []


def _subscriber_to_out(s: Subscriber) -> SubscriberOut:
    # Secrets are write-only
    return SubscriberOut(
        id=s.id, url=s.url, has_secret=bool(s.secret), headers=s.headers,
        timeout=s.timeout, retry_max=s.retry_max, event_mask=s.event_mask,
    )


@router.get("/subscribers", response_model=List[SubscriberOut])
async def list_subscribers(
    user: CurrentUser = Depends(get_current_user),
    emitter: CallbackEmitter = Depends(get_callback_emitter),
):
    return [_subscriber_to_out(s) for s in await emitter.subscribers()]


@router.post("/subscribers", response_model=SubscriberOut, status_code=201)
async def register_subscriber(
    data: SubscriberCreate,
    user: CurrentUser = Depends(get_current_user),
    emitter: CallbackEmitter = Depends(get_callback_emitter),
):
    subscriber = Subscriber(
        url=str(data.url), secret=data.secret, headers=data.headers,
        timeout=data.timeout, retry_max=data.retry_max, event_mask=data.event_mask,
    )
    return _subscriber_to_out(await emitter.register(subscriber))


@router.delete("/subscribers/{subscriber_id}", status_code=204)
async def remove_subscriber(
    subscriber_id: str,
    user: CurrentUser = Depends(get_current_user),
    emitter: CallbackEmitter = Depends(get_callback_emitter),
):
    if not await emitter.unregister(subscriber_id):
        raise HTTPException(404, "Subscriber not found")
