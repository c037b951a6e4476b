# callbacks.py — Outbound signed event callbacks to registered subscribers
# The subscriber registry is process-wide state guarded by an async reader/writer lock.

import os
import hmac
import time
import asyncio
import hashlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import httpx
from fastapi import Request
from pydantic import BaseModel, Field

from errors import Cancelled
from models import new_uuid

logger = logging.getLogger("agileflow.callbacks")

CALLBACK_TIMEOUT = float(os.getenv("CALLBACK_TIMEOUT", "30"))
CALLBACK_RETRY_MAX = int(os.getenv("CALLBACK_RETRY_MAX", "3"))
USER_AGENT = "AgileFlow-Webhook/1.0"
MAX_BACKOFF_SECONDS = 30
RETRYABLE_STATUS = {408, 429}


def default_backoff(attempt: int) -> float:
    return float(min(attempt * attempt, MAX_BACKOFF_SECONDS))


def sign_body(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


# ============================================================
# MODELS
# ============================================================

class Subscriber(BaseModel):
    id: str = Field(default_factory=new_uuid)
    url: str
    secret: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: float = CALLBACK_TIMEOUT
    retry_max: int = CALLBACK_RETRY_MAX
    event_mask: List[str] = Field(default_factory=list)

    def accepts(self, event: "CallbackEvent") -> bool:
        """No mask matches everything; otherwise '*', 'type', 'type.action' or a 'prefix*' pattern."""
        if not self.event_mask:
            return True
        qualified = f"{event.event_type}.{event.action}"
        for mask in self.event_mask:
            if mask in ("*", event.event_type, qualified):
                return True
            if mask.endswith("*") and qualified.startswith(mask[:-1]):
                return True
        return False


class CallbackEvent(BaseModel):
    id: str = Field(default_factory=new_uuid)
    event_type: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    project_id: str
    source: str
    action: str
    resource: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    retry_count: int = 0

    def rfc3339(self) -> str:
        return self.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class CallbackResult(BaseModel):
    success: bool
    status_code: Optional[int] = None
    response_body: str = ""
    duration: float = 0.0
    error: Optional[str] = None
    retryable: bool = False


def project_event(event_type: str, action: str, project_id: str,
                  resource: Optional[Dict[str, Any]] = None,
                  metadata: Optional[Dict[str, Any]] = None) -> CallbackEvent:
    return CallbackEvent(
        event_type=event_type, action=action, project_id=project_id,
        source="project-service", resource=resource or {}, metadata=metadata or {},
    )


def repository_event(action: str, project_id: str,
                     repository: Optional[Dict[str, Any]] = None,
                     metadata: Optional[Dict[str, Any]] = None) -> CallbackEvent:
    return CallbackEvent(
        event_type="repository", action=action, project_id=project_id,
        source="git-gateway", resource=repository or {}, metadata=metadata or {},
    )


# ============================================================
# READER / WRITER LOCK
# ============================================================

class AsyncRWLock:
    """Many concurrent readers or one writer."""

    def __init__(self):
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False

    @asynccontextmanager
    async def read(self):
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer)
            self._readers += 1
        try:
            yield
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def write(self):
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True
        try:
            yield
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()


# ============================================================
# EMITTER
# ============================================================

class CallbackEmitter:
    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        backoff: Callable[[int], float] = default_backoff,
    ):
        self._client = httpx.AsyncClient(transport=transport, timeout=CALLBACK_TIMEOUT)
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = AsyncRWLock()
        self._closed = asyncio.Event()
        self._backoff = backoff
        self._pending: Set[asyncio.Task] = set()

    # ── Registry ─────────────────────────────────────────────

    async def register(self, subscriber: Subscriber) -> Subscriber:
        async with self._lock.write():
            self._subscribers[subscriber.id] = subscriber
        logger.info(f"Callback subscriber {subscriber.id} registered for {subscriber.url}")
        return subscriber

    async def unregister(self, subscriber_id: str) -> bool:
        async with self._lock.write():
            removed = self._subscribers.pop(subscriber_id, None)
        if removed:
            logger.info(f"Callback subscriber {subscriber_id} removed")
        return removed is not None

    async def subscribers(self) -> List[Subscriber]:
        async with self._lock.read():
            return list(self._subscribers.values())

    # ── Delivery ─────────────────────────────────────────────

    async def send(self, subscriber: Subscriber, event: CallbackEvent) -> CallbackResult:
        """One delivery attempt. Filtered events count as delivered."""
        if not subscriber.accepts(event):
            logger.debug(f"Event {event.event_type}.{event.action} filtered for {subscriber.id}")
            return CallbackResult(success=True)

        body = event.model_dump_json().encode()
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Event-ID": event.id,
            "X-Event-Type": event.event_type,
            "X-Event-Timestamp": event.rfc3339(),
        }
        headers.update(subscriber.headers)
        if subscriber.secret:
            headers["X-Hub-Signature-256"] = sign_body(body, subscriber.secret)

        started = time.monotonic()
        try:
            response = await self._client.post(
                subscriber.url, content=body, headers=headers, timeout=subscriber.timeout,
            )
        except httpx.HTTPError as exc:
            return CallbackResult(
                success=False, duration=time.monotonic() - started,
                error=f"{type(exc).__name__}: {exc}", retryable=True,
            )

        duration = time.monotonic() - started
        ok = 200 <= response.status_code < 300
        result = CallbackResult(
            success=ok,
            status_code=response.status_code,
            response_body=response.text,
            duration=duration,
            error=None if ok else f"HTTP {response.status_code}: {response.text[:200]}",
            retryable=response.status_code in RETRYABLE_STATUS or response.status_code >= 500,
        )
        logger.info(
            f"Callback {event.id} ({event.event_type}.{event.action}) -> {subscriber.url} "
            f"status={response.status_code} in {duration:.3f}s"
        )
        return result

    async def _wait_backoff(self, delay: float) -> None:
        if self._closed.is_set():
            raise Cancelled("callback emitter closed during retry backoff")
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise Cancelled("callback emitter closed during retry backoff")

    async def send_with_retry(self, subscriber: Subscriber, event: CallbackEvent) -> CallbackResult:
        retry_max = subscriber.retry_max if subscriber.retry_max > 0 else CALLBACK_RETRY_MAX
        event = event.model_copy()
        result = CallbackResult(success=False)

        for attempt in range(retry_max + 1):
            if attempt > 0:
                delay = self._backoff(attempt)
                logger.info(f"Retrying callback {event.id} to {subscriber.url} (attempt {attempt}, delay {delay}s)")
                await self._wait_backoff(delay)
                event.retry_count = attempt

            result = await self.send(subscriber, event)
            if result.success or not result.retryable:
                break
            logger.warning(f"Callback {event.id} to {subscriber.url} failed: {result.error}")

        if not result.success:
            logger.error(f"Callback {event.id} to {subscriber.url} gave up: {result.error}")
        return result

    async def emit(self, event: CallbackEvent) -> Dict[str, CallbackResult]:
        """Deliver to every matching subscriber concurrently."""
        targets = [s for s in await self.subscribers() if s.accepts(event)]
        if not targets:
            return {}
        outcomes = await asyncio.gather(
            *(self.send_with_retry(s, event) for s in targets), return_exceptions=True,
        )
        results: Dict[str, CallbackResult] = {}
        for sub, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Callback {event.id} to {sub.url} aborted: {outcome}")
                outcome = CallbackResult(success=False, error=str(outcome))
            results[sub.id] = outcome
        return results

    def publish(self, event: CallbackEvent) -> asyncio.Task:
        """Fire-and-forget emit. The task is tracked so close() can wait for it."""
        task = asyncio.create_task(self.emit(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def aclose(self) -> None:
        self._closed.set()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        await self._client.aclose()


def get_callback_emitter(request: Request) -> CallbackEmitter:
    """FastAPI dependency: the process-wide emitter created in the app lifespan."""
    return request.app.state.callback_emitter
