# webhook_events.py — Typed Git gateway webhook envelope and payload variants
import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class GitEventEnvelope(BaseModel):
    event_type: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    timestamp: datetime
    project_id: str
    repository_id: Optional[str] = None
    user_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("project_id")
    @classmethod
    def _project_uuid(cls, value: str) -> str:
        return str(uuid.UUID(value))

    @field_validator("repository_id")
    @classmethod
    def _repository_uuid(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(uuid.UUID(value))


# ── Payload parts ────────────────────────────────────────────

class RepositoryInfo(BaseModel):
    id: str
    name: str
    project_id: Optional[str] = None
    visibility: Optional[str] = None
    default_branch: Optional[str] = None


class BranchInfo(BaseModel):
    name: str
    repository_id: Optional[str] = None
    commit: Optional[str] = None


class CommitInfo(BaseModel):
    sha: str
    message: str = ""
    author: str = ""
    repository_id: Optional[str] = None
    branch: Optional[str] = None
    timestamp: Optional[datetime] = None


class PushedCommit(BaseModel):
    sha: str
    message: str = ""
    author: str = ""


class TagInfo(BaseModel):
    name: str
    repository_id: Optional[str] = None
    target: Optional[str] = None
    message: Optional[str] = None


# ── Variants (discriminated by event_type) ───────────────────

class RepositoryEvent(BaseModel):
    event_type: Literal["repository"] = "repository"
    action: str
    repository: RepositoryInfo


class BranchEvent(BaseModel):
    event_type: Literal["branch"] = "branch"
    action: str
    branch: BranchInfo


class CommitEvent(BaseModel):
    event_type: Literal["commit"] = "commit"
    action: str
    commit: CommitInfo


class PushEvent(BaseModel):
    event_type: Literal["push"] = "push"
    repository_id: Optional[str] = None
    branch: str
    before: Optional[str] = None
    after: Optional[str] = None
    commits: List[PushedCommit] = Field(default_factory=list)
    pusher: Optional[str] = None

    @property
    def action(self) -> str:
        return "pushed"


class TagEvent(BaseModel):
    event_type: Literal["tag"] = "tag"
    action: str
    tag: TagInfo


GitEventPayload = Annotated[
    Union[RepositoryEvent, BranchEvent, CommitEvent, PushEvent, TagEvent],
    Field(discriminator="event_type"),
]

EVENT_TYPES = ("repository", "branch", "commit", "push", "tag")

_payload_adapter = TypeAdapter(GitEventPayload)


def decode_payload(envelope: GitEventEnvelope):
    """Typed payload for an envelope. Raises pydantic.ValidationError when it does not fit."""
    return _payload_adapter.validate_python({**envelope.payload, "event_type": envelope.event_type})
