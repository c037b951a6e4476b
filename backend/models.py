# models.py — Database models for AgileFlow
# - UUID string primary keys assigned by the service layer
# - Soft deletes (deleted_at) on every user-facing entity
# - Agile planning: projects, members, sprints, epics, tasks, boards, columns
# - Git side: repository shadow rows, activity feed, saga compensation ledger

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer, Float, Date,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


def _enum(enum_cls):
    # Persist the lowercase values rather than the member names
    return SQLEnum(enum_cls, values_callable=lambda e: [m.value for m in e])


# ============================================================
# ENUMS
# ============================================================

class ProjectStatus(str, PyEnum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class SprintStatus(str, PyEnum):
    PLANNED = "planned"
    ACTIVE = "active"
    CLOSED = "closed"


class EpicStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    CANCELLED = "cancelled"


class TaskType(str, PyEnum):
    STORY = "story"
    TASK = "task"
    BUG = "bug"
    EPIC = "epic"
    SUBTASK = "subtask"


class TaskStatus(str, PyEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    IN_REVIEW = "in_review"
    TESTING = "testing"
    DONE = "done"
    CANCELLED = "cancelled"


class TaskPriority(str, PyEnum):
    LOWEST = "lowest"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    HIGHEST = "highest"


class BoardType(str, PyEnum):
    KANBAN = "kanban"
    SCRUM = "scrum"


class RepoVisibility(str, PyEnum):
    PUBLIC = "public"
    PRIVATE = "private"
    INTERNAL = "internal"


class CompensationAction(str, PyEnum):
    DELETE_REPOSITORY = "delete_repository"
    DELETE_PROJECT = "delete_project"


class CompensationStatus(str, PyEnum):
    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"


# Source status -> permitted target statuses
TASK_TRANSITIONS = {
    TaskStatus.TODO: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {
        TaskStatus.TODO, TaskStatus.IN_REVIEW, TaskStatus.TESTING,
        TaskStatus.DONE, TaskStatus.CANCELLED,
    },
    TaskStatus.IN_REVIEW: {TaskStatus.IN_PROGRESS, TaskStatus.TESTING, TaskStatus.DONE},
    TaskStatus.TESTING: {TaskStatus.IN_PROGRESS, TaskStatus.IN_REVIEW, TaskStatus.DONE},
    TaskStatus.DONE: {TaskStatus.IN_PROGRESS},
    TaskStatus.CANCELLED: {TaskStatus.TODO},
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return TaskStatus(target) in TASK_TRANSITIONS.get(TaskStatus(current), set())


# ============================================================
# PROJECTS
# ============================================================

class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_uuid)
    tenant_id = Column(String, nullable=False, index=True)
    key = Column(String(20), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    manager_id = Column(String, nullable=True, index=True)
    status = Column(_enum(ProjectStatus), default=ProjectStatus.ACTIVE, nullable=False)
    task_sequence = Column(Integer, nullable=False, default=0)  # last issued task number
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    members = relationship("ProjectMember", back_populates="project")
    repositories = relationship("Repository", back_populates="project")

    __table_args__ = (
        Index("idx_project_tenant_key", "tenant_id", "key"),
        Index(
            "uq_project_tenant_key_live", "tenant_id", "key", unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )


class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    role_id = Column(String, nullable=False, default="member")
    added_by = Column(String, nullable=True)
    added_at = Column(DateTime(timezone=True), default=utcnow)

    project = relationship("Project", back_populates="members")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_member_project_user"),
    )


# ============================================================
# PLANNING (Sprints, Epics)
# ============================================================

class Sprint(Base):
    __tablename__ = "sprints"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    goal = Column(Text, nullable=True)
    status = Column(_enum(SprintStatus), default=SprintStatus.PLANNED, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    capacity = Column(Integer, nullable=False, default=0)  # story points
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_sprint_project_status", "project_id", "status"),
    )


class Epic(Base):
    __tablename__ = "epics"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(_enum(EpicStatus), default=EpicStatus.OPEN, nullable=False)
    color = Column(String(7), nullable=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    goal = Column(Text, nullable=True)
    success_criteria = Column(Text, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


# ============================================================
# TASKS
# ============================================================

class AgileTask(Base):
    """A card on the board. Ordered by rank within (project, sprint, status)."""
    __tablename__ = "agile_tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    sprint_id = Column(String, ForeignKey("sprints.id", ondelete="SET NULL"), nullable=True, index=True)
    epic_id = Column(String, ForeignKey("epics.id", ondelete="SET NULL"), nullable=True, index=True)
    parent_id = Column(String, ForeignKey("agile_tasks.id", ondelete="SET NULL"), nullable=True, index=True)

    task_number = Column(Integer, nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    task_type = Column(_enum(TaskType), nullable=False, default=TaskType.STORY)
    status = Column(_enum(TaskStatus), nullable=False, default=TaskStatus.TODO)
    priority = Column(_enum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM)

    # Estimation (hours unless noted)
    story_points = Column(Integer, nullable=True)
    original_estimate = Column(Float, nullable=True)
    remaining_time = Column(Float, nullable=True)
    logged_time = Column(Float, nullable=False, default=0.0)

    assignee_id = Column(String, nullable=True, index=True)
    reporter_id = Column(String, nullable=False)

    labels = Column(JSON, nullable=False, default=list)
    components = Column(JSON, nullable=False, default=list)
    acceptance_criteria = Column(JSON, nullable=False, default=list)  # [{id, description, completed}]

    rank = Column(String(128), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    sprint = relationship("Sprint", lazy="raise")
    epic = relationship("Epic", lazy="raise")

    __table_args__ = (
        UniqueConstraint("project_id", "task_number", name="uq_task_project_number"),
        Index("idx_task_scope_rank", "project_id", "sprint_id", "status", "rank"),
    )


class TaskComment(Base):
    __tablename__ = "task_comments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("agile_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    is_internal = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


class WorkLog(Base):
    __tablename__ = "work_logs"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("agile_tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    time_spent = Column(Float, nullable=False)
    description = Column(Text, nullable=True)
    work_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


# ============================================================
# BOARDS
# ============================================================

class Board(Base):
    """A view over the project's tasks; columns bind to task statuses by value."""
    __tablename__ = "boards"

    id = Column(String, primary_key=True, default=new_uuid)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    board_type = Column(_enum(BoardType), nullable=False, default=BoardType.KANBAN)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    columns = relationship(
        "BoardColumn", back_populates="board",
        order_by="BoardColumn.position", lazy="raise",
    )


class BoardColumn(Base):
    __tablename__ = "board_columns"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    wip_limit = Column(Integer, nullable=True)
    status = Column(_enum(TaskStatus), nullable=False)
    color = Column(String(7), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    board = relationship("Board", back_populates="columns")

    __table_args__ = (
        UniqueConstraint("board_id", "status", name="uq_column_board_status"),
        Index("idx_col_board_pos", "board_id", "position"),
    )


# ============================================================
# GIT (Repository shadow, activity feed)
# ============================================================

class Repository(Base):
    """Local mirror of a repository owned by the Git gateway. Never authoritative."""
    __tablename__ = "repositories"

    id = Column(String, primary_key=True)  # gateway-issued id
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    visibility = Column(_enum(RepoVisibility), nullable=False, default=RepoVisibility.PRIVATE)
    default_branch = Column(String, nullable=False, default="main")
    clone_url = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    project = relationship("Project", back_populates="repositories")


class ActivityItem(Base):
    """Append-only feed entry recorded from Git gateway events."""
    __tablename__ = "activity_items"

    id = Column(String, primary_key=True, default=new_uuid)
    event_id = Column(String, nullable=False)
    project_id = Column(String, nullable=False, index=True)
    repository_id = Column(String, nullable=True, index=True)
    event_type = Column(String(32), nullable=False)
    action = Column(String(64), nullable=False)
    actor_id = Column(String, nullable=True)
    summary = Column(String(500), nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    occurred_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    __table_args__ = (
        UniqueConstraint("event_id", "event_type", "action", name="uq_activity_event"),
    )


# ============================================================
# SAGA COMPENSATION LEDGER
# ============================================================

class CompensationRecord(Base):
    __tablename__ = "compensation_records"

    id = Column(String, primary_key=True, default=new_uuid)
    saga_id = Column(String, nullable=False, index=True)
    project_id = Column(String, nullable=False, index=True)
    action = Column(_enum(CompensationAction), nullable=False)
    resource_id = Column(String, nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
    status = Column(_enum(CompensationStatus), nullable=False, default=CompensationStatus.PENDING)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_comp_status", "status"),
    )
