"""Map repositories onto internal project records."""

import asyncio
import re
import uuid
from typing import Optional

from ..errors import (
    IncompleteRepositoryIdentity,
    ProjectAlreadyExists,
    ResolutionFailure,
    TagConflict,
    UnknownRepository,
)
from ..logging import get_logger
from ..models import FULL_PERMISSIONS, Project, ProjectMember, ProjectRole, ProjectStatus
from ..storage import SyncStore
from ..webhooks.models import Provider, RepositoryInfo

logger = get_logger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

MAX_TAG_ATTEMPTS = 20


def derive_tag(full_name: str) -> str:
    """``"Acme/Widgets.js"`` -> ``"acme-widgets-js"``."""
    return _NON_ALNUM.sub("-", full_name.lower()).strip("-")


class ProjectResolver:
    """Idempotent lookup-or-create of projects keyed by ``(git_url, git_provider)``.

    No locks are taken: two concurrent creators race on the store's unique
    constraint and the loser re-reads the winner's record. Every store call
    is bounded by ``request_timeout``.
    """

    def __init__(self, store: SyncStore, auto_create: bool = True, request_timeout: float = 10.0):
        self.store = store
        self.auto_create = auto_create
        self.request_timeout = request_timeout

    async def _bounded(self, awaitable, operation: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            logger.error("project_store_timeout", operation=operation, timeout=self.request_timeout)
            raise ResolutionFailure(f"Project store did not answer {operation} in time") from e

    @staticmethod
    def _check_identity(repository: RepositoryInfo) -> None:
        missing = [
            field
            for field, value in (
                ("web_url", repository.web_url),
                ("full_name", repository.full_name),
                ("external_id", repository.external_id),
            )
            if not value
        ]
        if missing:
            raise IncompleteRepositoryIdentity(
                f"Repository identity is missing: {', '.join(missing)}"
            )

    async def _find(self, repository: RepositoryInfo, provider: Provider) -> Optional[Project]:
        return await self._bounded(
            self.store.find_project_by_git_identity(repository.web_url, provider.value),
            "find_project",
        )

    async def resolve(
        self,
        repository: RepositoryInfo,
        provider: Provider,
        owner_context: Optional[str] = None,
    ) -> Project:
        """
        Find the project for a repository, creating it on first sight.

        Args:
            repository: Canonical repository identity
            provider: Provider the webhook came from
            owner_context: Id of the initiating user, attached as owner of a new project

        Returns:
            The existing or newly created project

        Raises:
            IncompleteRepositoryIdentity: If identity fields are missing
            UnknownRepository: If no project exists and creation is disabled
            ResolutionFailure: If the store does not answer within the request timeout
        """
        self._check_identity(repository)

        existing = await self._find(repository, provider)
        if existing is not None:
            return existing

        if not self.auto_create:
            raise UnknownRepository(f"Repository {repository.full_name} is not tracked")

        return await self._create(repository, provider, owner_context)

    async def _create(self, repository: RepositoryInfo, provider: Provider, owner_context: Optional[str]) -> Project:
        base_tag = derive_tag(repository.full_name) or f"{provider.value}-{repository.external_id}"
        candidates = [base_tag, f"{base_tag}-{provider.value}"]
        candidates += [f"{base_tag}-{n}" for n in range(2, MAX_TAG_ATTEMPTS)]

        project_id = uuid.uuid4().hex
        owner = None
        if owner_context:
            owner = ProjectMember(
                user_id=owner_context,
                project_id=project_id,
                role=ProjectRole.OWNER,
                permissions=dict(FULL_PERMISSIONS),
            )

        for tag in candidates:
            project = Project(
                id=project_id,
                name=repository.name,
                description=repository.description,
                git_url=repository.web_url,
                git_provider=provider.value,
                git_branch=repository.default_branch or "main",
                tag=tag,
                status=ProjectStatus.ACTIVE,
            )
            try:
                created = await self._bounded(self.store.create_project(project, owner=owner), "create_project")
            except ProjectAlreadyExists:
                return await self._reread(repository, provider)
            except TagConflict:
                # The conflicting row may be this very repository created concurrently.
                existing = await self._find(repository, provider)
                if existing is not None:
                    return existing
                logger.info("project_tag_taken", tag=tag, repository=repository.full_name)
                continue

            logger.info(
                "project_created",
                project_id=created.id,
                tag=created.tag,
                repository=repository.full_name,
                provider=provider.value,
                owner=owner_context,
            )
            return created

        raise TagConflict(f"No free tag for repository {repository.full_name}")

    async def _reread(self, repository: RepositoryInfo, provider: Provider) -> Project:
        existing = await self._find(repository, provider)
        if existing is None:
            raise ProjectAlreadyExists(
                f"Project for {provider.value}:{repository.web_url} reported as existing but not found"
            )
        logger.info("project_created_concurrently", project_id=existing.id, repository=repository.full_name)
        return existing

    async def refresh_metadata(self, project: Project, repository: RepositoryInfo) -> Project:
        """Bring name, description and default branch in line with the provider."""
        branch = repository.default_branch or project.git_branch
        description = repository.description if repository.description is not None else project.description
        if (project.name, project.description, project.git_branch) == (repository.name, description, branch):
            return project

        logger.info("project_metadata_refreshed", project_id=project.id, repository=repository.full_name)
        return await self._bounded(
            self.store.update_project_metadata(project.id, repository.name, description, branch),
            "update_project_metadata",
        )
