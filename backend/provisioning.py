# provisioning.py — Create-project-with-repository saga
#
# Steps run strictly in order; on any failure (including task cancellation)
# the completed steps are undone in reverse through the compensation ledger
# and the original error is re-raised.
#
#   1. validate request
#   2. persist project + creator membership, commit
#   3. [init_repository] register delete_project, create repository on the gateway
#   4. register delete_repository, persist the shadow row
#   5. commit, retire the saga's compensations, announce callbacks

import logging
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import CurrentUser
from callbacks import CallbackEmitter, project_event, repository_event
from compensation import CompensationLedger
from git_gateway import CreateRepositoryRequest, GitGatewayClient
from models import CompensationAction, Project, Repository, RepoVisibility, new_uuid
from project_store import ProjectStore, validate_project_key, validate_project_name
from task_engine import coerce_enum

logger = logging.getLogger("agileflow.saga")


class ProvisionRequest(BaseModel):
    key: str
    name: str
    description: Optional[str] = None
    manager_id: Optional[str] = None
    init_repository: bool = False
    repository_name: Optional[str] = None
    visibility: str = "private"
    default_branch: str = "main"
    init_readme: bool = True


@dataclass
class ProvisionResult:
    project: Project
    repository: Optional[Repository] = None


class ProjectProvisioningSaga:
    def __init__(
        self,
        db: AsyncSession,
        gateway: GitGatewayClient,
        emitter: Optional[CallbackEmitter] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.emitter = emitter
        self.projects = ProjectStore(db)
        self.ledger = CompensationLedger(db, gateway)

    async def run(self, req: ProvisionRequest, user: CurrentUser) -> ProvisionResult:
        saga_id = new_uuid()

        key = validate_project_key(req.key)
        name = validate_project_name(req.name)
        visibility = coerce_enum(RepoVisibility, req.visibility, "visibility")

        registered: List[str] = []
        try:
            project = await self.projects.create(
                tenant_id=user.tenant_id,
                key=key,
                name=name,
                description=req.description,
                manager_id=req.manager_id,
                created_by=user.id,
            )
            if req.init_repository:
                # Same transaction as the project row
                entry = await self.ledger.record(saga_id, project.id, CompensationAction.DELETE_PROJECT, project.id)
                registered.append(entry.id)
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise
        logger.info(f"Saga {saga_id}: project {project.id} ({key}) persisted")

        if not req.init_repository:
            self._announce(project, None)
            return ProvisionResult(project=project)

        project_id = project.id
        try:
            remote = await self.gateway.create_repository(CreateRepositoryRequest(
                project_id=project_id,
                name=req.repository_name or key,
                description=req.description,
                visibility=visibility.value,
                default_branch=req.default_branch,
                init_readme=req.init_readme,
            ))

            entry = await self.ledger.record(
                saga_id, project_id, CompensationAction.DELETE_REPOSITORY, remote.id,
                payload={"name": remote.name},
            )
            await self.db.commit()
            registered.append(entry.id)

            repository = Repository(
                id=remote.id,
                project_id=project_id,
                name=remote.name,
                visibility=coerce_enum(RepoVisibility, remote.visibility, "visibility"),
                default_branch=remote.default_branch or req.default_branch,
                clone_url=remote.clone_url,
            )
            self.db.add(repository)
            await self.db.flush()
            await self.ledger.discard(saga_id)
            await self.db.commit()
        except BaseException as exc:
            logger.error(f"Saga {saga_id}: provisioning project {project_id} failed ({type(exc).__name__}: {exc}), compensating")
            await self.db.rollback()
            failures = await self.ledger.compensate(registered)
            if failures:
                logger.error(f"Saga {saga_id}: {len(failures)} compensation(s) need manual cleanup")
            raise

        logger.info(f"Saga {saga_id}: repository {repository.id} linked to project {project_id}")
        self._announce(project, repository)
        return ProvisionResult(project=project, repository=repository)

    def _announce(self, project: Project, repository: Optional[Repository]) -> None:
        if self.emitter is None:
            return
        self.emitter.publish(project_event(
            "project", "created", project.id,
            resource={"id": project.id, "key": project.key, "name": project.name},
        ))
        if repository is not None:
            self.emitter.publish(repository_event(
                "created", project.id,
                repository={
                    "id": repository.id,
                    "name": repository.name,
                    "visibility": RepoVisibility(repository.visibility).value,
                    "default_branch": repository.default_branch,
                },
            ))
