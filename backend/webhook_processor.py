# webhook_processor.py — Turns verified Git events into activity items
# Runs after the webhook response has been sent, in its own DB session.
# Processing is idempotent per (event_id, event_type, action) and never mutates tasks.

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from callbacks import CallbackEmitter, CallbackEvent
from database import get_db_context
from models import ActivityItem, Repository, RepoVisibility, new_uuid, utcnow
from webhook_events import (
    BranchEvent, CommitEvent, GitEventEnvelope, PushEvent, RepositoryEvent,
    TagEvent, decode_payload,
)

logger = logging.getLogger("agileflow.webhooks")

REPOSITORY_ACTIONS = {"created", "updated", "deleted", "archived", "unarchived"}
BRANCH_ACTIONS = {"created", "deleted", "default_changed"}
COMMIT_ACTIONS = {"created"}
TAG_ACTIONS = {"created", "deleted"}


class EventProcessor:
    def __init__(self, db: AsyncSession, emitter: Optional[CallbackEmitter] = None):
        self.db = db
        self.emitter = emitter

    async def process(self, envelope: GitEventEnvelope) -> Optional[ActivityItem]:
        try:
            event = decode_payload(envelope)
        except ValidationError as exc:
            logger.warning(
                f"Dropping {envelope.event_type} event {envelope.event_id}: "
                f"payload does not decode ({exc.error_count()} errors)"
            )
            return None

        if isinstance(event, RepositoryEvent):
            item = await self._on_repository(envelope, event)
        elif isinstance(event, BranchEvent):
            item = await self._on_branch(envelope, event)
        elif isinstance(event, CommitEvent):
            item = await self._on_commit(envelope, event)
        elif isinstance(event, PushEvent):
            item = await self._on_push(envelope, event)
        elif isinstance(event, TagEvent):
            item = await self._on_tag(envelope, event)
        else:
            raise TypeError(f"unhandled event variant {type(event).__name__}")

        if item is not None and self.emitter is not None:
            self.emitter.publish(CallbackEvent(
                event_type=envelope.event_type,
                action=item.action,
                project_id=envelope.project_id,
                source="git-gateway",
                resource=event.model_dump(mode="json", exclude={"event_type"}),
                metadata={"event_id": envelope.event_id, "repository_id": item.repository_id},
            ))
        return item

    # ── Activity ─────────────────────────────────────────────

    async def _record(
        self,
        envelope: GitEventEnvelope,
        action: str,
        summary: str,
        details: Dict[str, Any],
        repository_id: Optional[str] = None,
    ) -> Optional[ActivityItem]:
        existing = await self.db.execute(
            select(ActivityItem.id).where(
                ActivityItem.event_id == envelope.event_id,
                ActivityItem.event_type == envelope.event_type,
                ActivityItem.action == action,
            )
        )
        if existing.first() is not None:
            logger.info(f"Event {envelope.event_id} ({envelope.event_type}.{action}) already processed")
            return None

        item = ActivityItem(
            id=new_uuid(),
            event_id=envelope.event_id,
            project_id=envelope.project_id,
            repository_id=repository_id or envelope.repository_id,
            event_type=envelope.event_type,
            action=action,
            actor_id=envelope.user_id,
            summary=summary[:500],
            details=details,
            occurred_at=envelope.timestamp,
        )
        self.db.add(item)
        try:
            await self.db.flush()
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            await self.db.rollback()
            logger.info(f"Event {envelope.event_id} ({envelope.event_type}.{action}) recorded concurrently")
            return None
        logger.info(f"Activity {envelope.event_type}.{action} recorded for project {envelope.project_id}")
        return item

    def _ignored(self, envelope: GitEventEnvelope, action: str) -> None:
        logger.info(f"Ignoring {envelope.event_type} action '{action}' (event {envelope.event_id})")

    async def _shadow(self, repository_id: Optional[str]) -> Optional[Repository]:
        if not repository_id:
            return None
        return await self.db.get(Repository, repository_id)

    # ── Variants ─────────────────────────────────────────────

    async def _on_repository(self, envelope: GitEventEnvelope, event: RepositoryEvent) -> Optional[ActivityItem]:
        if event.action not in REPOSITORY_ACTIONS:
            self._ignored(envelope, event.action)
            return None
        repo = event.repository

        shadow = await self._shadow(repo.id)
        if shadow is not None:
            if event.action == "deleted":
                shadow.deleted_at = shadow.deleted_at or utcnow()
            elif event.action in ("created", "updated"):
                shadow.name = repo.name or shadow.name
                if repo.default_branch:
                    shadow.default_branch = repo.default_branch
                if repo.visibility in {v.value for v in RepoVisibility}:
                    shadow.visibility = RepoVisibility(repo.visibility)

        return await self._record(
            envelope, event.action,
            f"Repository {repo.name} {event.action}",
            event.model_dump(mode="json", exclude={"event_type"}),
            repository_id=repo.id,
        )

    async def _on_branch(self, envelope: GitEventEnvelope, event: BranchEvent) -> Optional[ActivityItem]:
        if event.action not in BRANCH_ACTIONS:
            self._ignored(envelope, event.action)
            return None
        branch = event.branch
        repository_id = branch.repository_id or envelope.repository_id

        if event.action == "default_changed":
            shadow = await self._shadow(repository_id)
            if shadow is not None:
                shadow.default_branch = branch.name
            summary = f"Default branch changed to {branch.name}"
        else:
            summary = f"Branch {branch.name} {event.action}"

        return await self._record(
            envelope, event.action, summary,
            event.model_dump(mode="json", exclude={"event_type"}),
            repository_id=repository_id,
        )

    async def _on_commit(self, envelope: GitEventEnvelope, event: CommitEvent) -> Optional[ActivityItem]:
        if event.action not in COMMIT_ACTIONS:
            self._ignored(envelope, event.action)
            return None
        commit = event.commit
        first_line = commit.message.splitlines()[0] if commit.message else ""
        return await self._record(
            envelope, event.action,
            f"{commit.author or 'someone'} committed {commit.sha[:8]}: {first_line}",
            event.model_dump(mode="json", exclude={"event_type"}),
            repository_id=commit.repository_id,
        )

    async def _on_push(self, envelope: GitEventEnvelope, event: PushEvent) -> Optional[ActivityItem]:
        latest = event.commits[-1] if event.commits else None
        details = {
            "branch": event.branch,
            "before": event.before,
            "after": event.after,
            "commit_count": len(event.commits),
            "latest_commit": latest.model_dump() if latest else None,
            "pusher": event.pusher,
        }
        return await self._record(
            envelope, event.action,
            f"{event.pusher or 'someone'} pushed {len(event.commits)} commit(s) to {event.branch}",
            details,
            repository_id=event.repository_id,
        )

    async def _on_tag(self, envelope: GitEventEnvelope, event: TagEvent) -> Optional[ActivityItem]:
        if event.action not in TAG_ACTIONS:
            self._ignored(envelope, event.action)
            return None
        return await self._record(
            envelope, event.action,
            f"Tag {event.tag.name} {event.action}",
            event.model_dump(mode="json", exclude={"event_type"}),
            repository_id=event.tag.repository_id,
        )


async def run_event_processing(
    envelope: GitEventEnvelope,
    emitter: Optional[CallbackEmitter] = None,
    timeout: float = 30.0,
    session_factory=None,
) -> None:
    """Background entry point: bounded by `timeout`, logs instead of raising."""

    async def _process():
        async with get_db_context(session_factory) as db:
            await EventProcessor(db, emitter).process(envelope)

    try:
        await asyncio.wait_for(_process(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"Processing event {envelope.event_id} ({envelope.event_type}) timed out after {timeout}s")
    except Exception as exc:
        logger.error(
            f"Processing event {envelope.event_id} ({envelope.event_type}) failed: {exc}",
            exc_info=True,
        )
