# compensation.py — Persisted undo steps for the project provisioning saga
# Records are written (and committed) before the step they undo becomes visible
# elsewhere, so an interrupted saga always leaves enough behind to clean up.

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from errors import AgileError, CompensationFailed, UpstreamFailure
from git_gateway import GitGatewayClient
from models import (
    CompensationAction, CompensationRecord, CompensationStatus, Repository,
    new_uuid, utcnow,
)
from project_store import ProjectStore

logger = logging.getLogger("agileflow.saga")

DEFAULT_MAX_RETRIES = 3
ORPHAN_GRACE = timedelta(minutes=5)


class CompensationLedger:
    """Writes, executes and retries compensation records.

    Execution is idempotent: an executed record is skipped, a project that is
    already deleted and a repository the gateway no longer knows both count
    as success.
    """

    def __init__(self, db: AsyncSession, gateway: GitGatewayClient):
        self.db = db
        self.gateway = gateway
        self.projects = ProjectStore(db)

    async def record(
        self,
        saga_id: str,
        project_id: str,
        action: CompensationAction,
        resource_id: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> CompensationRecord:
        """Add a pending record. The caller commits."""
        entry = CompensationRecord(
            id=new_uuid(),
            saga_id=saga_id,
            project_id=project_id,
            action=action,
            resource_id=resource_id,
            payload=payload or {},
            status=CompensationStatus.PENDING,
            retry_count=0,
            max_retries=DEFAULT_MAX_RETRIES,
        )
        self.db.add(entry)
        await self.db.flush()
        logger.info(f"Compensation {action.value} registered for {resource_id} (saga {saga_id})")
        return entry

    async def discard(self, saga_id: str) -> int:
        """Mark a finished saga's pending records obsolete. The caller commits."""
        result = await self.db.execute(
            select(CompensationRecord).where(
                CompensationRecord.saga_id == saga_id,
                CompensationRecord.status == CompensationStatus.PENDING,
                CompensationRecord.deleted_at.is_(None),
            )
        )
        records = result.scalars().all()
        now = utcnow()
        for entry in records:
            entry.deleted_at = now
        return len(records)

    async def _apply(self, entry: CompensationRecord) -> None:
        if entry.action == CompensationAction.DELETE_REPOSITORY:
            try:
                await self.gateway.delete_repository(entry.resource_id)
            except UpstreamFailure as exc:
                if not exc.is_not_found:
                    raise
                logger.info(f"Repository {entry.resource_id} already gone on gateway")
            shadow = await self.db.get(Repository, entry.resource_id)
            if shadow is not None and shadow.deleted_at is None:
                shadow.deleted_at = utcnow()
        elif entry.action == CompensationAction.DELETE_PROJECT:
            if not await self.projects.soft_delete(entry.resource_id):
                logger.info(f"Project {entry.resource_id} already deleted")
        else:
            raise CompensationFailed(f"unknown compensation action {entry.action}")

    async def execute(self, record_id: str) -> None:
        """Run one record until it succeeds or its retry budget is spent."""
        result = await self.db.execute(
            select(CompensationRecord).where(CompensationRecord.id == record_id)
        )
        entry = result.scalar_one_or_none()
        if entry is None or entry.status == CompensationStatus.EXECUTED:
            return

        while entry.retry_count < entry.max_retries:
            entry.retry_count += 1
            try:
                await self._apply(entry)
            except AgileError as exc:
                entry.last_error = str(exc)[:1000]
                entry.updated_at = utcnow()
                await self.db.commit()
                logger.warning(
                    f"Compensation {entry.action.value} for {entry.resource_id} "
                    f"attempt {entry.retry_count}/{entry.max_retries} failed: {exc}"
                )
                continue
            entry.status = CompensationStatus.EXECUTED
            entry.last_error = None
            entry.updated_at = utcnow()
            await self.db.commit()
            logger.info(f"Compensation {entry.action.value} for {entry.resource_id} executed")
            return

        entry.status = CompensationStatus.FAILED
        entry.updated_at = utcnow()
        await self.db.commit()
        raise CompensationFailed(
            f"{entry.action.value} for {entry.resource_id} failed after {entry.retry_count} attempts: "
            f"{entry.last_error}",
            project_id=entry.project_id,
            resource_id=entry.resource_id,
            action=entry.action.value,
        )

    async def compensate(self, record_ids: List[str]) -> List[CompensationFailed]:
        """Execute records in reverse registration order. Failures are collected, not raised."""
        failures = []
        for record_id in reversed(record_ids):
            try:
                await self.execute(record_id)
            except CompensationFailed as exc:
                logger.error(
                    f"CompensationFailed: project={exc.context.get('project_id')} "
                    f"resource={exc.context.get('resource_id')} action={exc.context.get('action')} "
                    f"cause={exc.message}"
                )
                failures.append(exc)
        return failures


async def retry_failed_compensations(
    db: AsyncSession,
    gateway: GitGatewayClient,
    orphan_grace: timedelta = ORPHAN_GRACE,
) -> Dict[str, int]:
    """Operator repair hook.

    Failed records get a fresh retry budget. Pending records older than
    `orphan_grace` belong to sagas that never finished and are executed too.
    """
    ledger = CompensationLedger(db, gateway)
    cutoff = utcnow() - orphan_grace
    result = await db.execute(
        select(CompensationRecord)
        .where(CompensationRecord.deleted_at.is_(None))
        .where(
            (CompensationRecord.status == CompensationStatus.FAILED)
            | (
                (CompensationRecord.status == CompensationStatus.PENDING)
                & (CompensationRecord.created_at < cutoff)
            )
        )
        .order_by(CompensationRecord.created_at.desc())
    )
    records = list(result.scalars().all())
    ids = []
    for entry in records:
        if entry.status == CompensationStatus.FAILED:
            entry.retry_count = 0
            entry.status = CompensationStatus.PENDING
        ids.append(entry.id)
    await db.commit()

    # compensate() walks the list backwards, newest record must come last
    failures = await ledger.compensate(list(reversed(ids)))
    summary = {"retried": len(ids), "executed": len(ids) - len(failures), "failed": len(failures)}
    logger.info(f"Compensation retry finished: {summary}")
    return summary
