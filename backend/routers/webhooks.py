# routers/webhooks.py — Inbound Git gateway webhooks (signature check + async processing)
import os
import hmac
import json
import hashlib
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError

from callbacks import CallbackEmitter, get_callback_emitter
from webhook_events import GitEventEnvelope
from webhook_processor import run_event_processing

logger = logging.getLogger("agileflow.webhooks")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

WEBHOOK_SECRET = os.getenv("WEBHOOK_SECRET", "")
WEBHOOK_PROCESSING_TIMEOUT = float(os.getenv("WEBHOOK_PROCESSING_TIMEOUT", "30"))
SIGNATURE_HEADER = "X-Hub-Signature-256"


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    if not signature:
        return False
    expected = "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    # Starlette decodes header values as latin-1; compare raw bytes
    return hmac.compare_digest(expected.encode(), signature.encode("latin-1"))


@router.post("/git")
async def receive_git_event(
    request: Request,
    background_tasks: BackgroundTasks,
    emitter: CallbackEmitter = Depends(get_callback_emitter),
):
    """Accept a gateway event; processing continues after the response is sent"""
    body = await request.body()

    if WEBHOOK_SECRET:
        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER, ""), WEBHOOK_SECRET):
            logger.warning("Rejected webhook with missing or invalid signature")
            raise HTTPException(401, "Invalid webhook signature")

    try:
        envelope = GitEventEnvelope.model_validate(json.loads(body))
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise HTTPException(400, f"Invalid webhook envelope: {fields}")
    except ValueError:
        raise HTTPException(400, "Malformed JSON body")

    logger.info(f"Webhook {envelope.event_id} ({envelope.event_type}) accepted for project {envelope.project_id}")
    background_tasks.add_task(
        run_event_processing, envelope, emitter, WEBHOOK_PROCESSING_TIMEOUT,
    )
    return {"message": "Event received", "event_id": envelope.event_id}


@router.get("/health")
async def webhook_health():
    return {
        "status": "healthy",
        "service": "git-webhook-handler",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
