# task_notes.py — Comments and work logs attached to tasks
import logging
from datetime import date
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from database import atomic
from errors import Forbidden, NotFound, ValidationFailed
from models import AgileTask, TaskComment, WorkLog, new_uuid, utcnow
from task_engine import TaskBoardEngine

logger = logging.getLogger("agileflow.tasks")

MIN_TIME_SPENT = 0.1
MAX_TIME_SPENT = 24.0


class TaskNotes:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.tasks = TaskBoardEngine(db)

    async def _note_task(self, task_id: str, user: CurrentUser) -> AgileTask:
        # Soft-deleted tasks (and tasks of deleted projects) are NotFound
        return await self.tasks.get_task_for_user(task_id, user)

    # ── Comments ─────────────────────────────────────────────

    async def add_comment(self, task_id: str, content: str, user: CurrentUser, is_internal: bool = False) -> TaskComment:
        async with atomic(self.db):
            await self._note_task(task_id, user)
            comment = TaskComment(
                id=new_uuid(), task_id=task_id, author_id=user.id,
                content=content, is_internal=is_internal,
            )
            self.db.add(comment)
            await self.db.flush()
        return comment

    async def list_comments(self, task_id: str, user: CurrentUser) -> List[TaskComment]:
        await self._note_task(task_id, user)
        result = await self.db.execute(
            select(TaskComment)
            .where(TaskComment.task_id == task_id, TaskComment.deleted_at.is_(None))
            .order_by(TaskComment.created_at.asc())
        )
        return list(result.scalars().all())

    async def _own_comment(self, comment_id: str, user: CurrentUser) -> TaskComment:
        result = await self.db.execute(
            select(TaskComment).where(TaskComment.id == comment_id, TaskComment.deleted_at.is_(None))
        )
        comment = result.scalar_one_or_none()
        if not comment:
            raise NotFound("comment", comment_id)
        await self._note_task(comment.task_id, user)
        if comment.author_id != user.id:
            raise Forbidden("only the author can change a comment")
        return comment

    async def update_comment(self, comment_id: str, content: str, user: CurrentUser) -> TaskComment:
        async with atomic(self.db):
            comment = await self._own_comment(comment_id, user)
            comment.content = content
            comment.updated_at = utcnow()
        return comment

    async def delete_comment(self, comment_id: str, user: CurrentUser) -> None:
        async with atomic(self.db):
            comment = await self._own_comment(comment_id, user)
            comment.deleted_at = utcnow()

    # ── Work logs ────────────────────────────────────────────

    async def log_work(
        self,
        task_id: str,
        time_spent: float,
        user: CurrentUser,
        work_date: Optional[date] = None,
        description: Optional[str] = None,
    ) -> WorkLog:
        if not (MIN_TIME_SPENT <= time_spent <= MAX_TIME_SPENT):
            raise ValidationFailed(f"time_spent must be between {MIN_TIME_SPENT} and {MAX_TIME_SPENT} hours")

        async with atomic(self.db):
            task = await self._note_task(task_id, user)
            entry = WorkLog(
                id=new_uuid(),
                task_id=task_id,
                user_id=user.id,
                time_spent=time_spent,
                description=description,
                work_date=work_date or date.today(),
            )
            self.db.add(entry)
            task.logged_time = (task.logged_time or 0.0) + time_spent
            await self.db.flush()
            logger.info(f"Logged {time_spent}h on task {task_id}")
        return entry

    async def list_work_logs(self, task_id: str, user: CurrentUser) -> List[WorkLog]:
        await self._note_task(task_id, user)
        result = await self.db.execute(
            select(WorkLog)
            .where(WorkLog.task_id == task_id, WorkLog.deleted_at.is_(None))
            .order_by(WorkLog.work_date.desc(), WorkLog.created_at.desc())
        )
        return list(result.scalars().all())

    async def delete_work_log(self, work_log_id: str, user: CurrentUser) -> None:
        async with atomic(self.db):
            result = await self.db.execute(
                select(WorkLog).where(WorkLog.id == work_log_id, WorkLog.deleted_at.is_(None))
            )
            entry = result.scalar_one_or_none()
            if not entry:
                raise NotFound("work log", work_log_id)
            task = await self._note_task(entry.task_id, user)
            if entry.user_id != user.id:
                raise Forbidden("only the creator can delete a work log")
            entry.deleted_at = utcnow()
            task.logged_time = max(0.0, (task.logged_time or 0.0) - entry.time_spent)
