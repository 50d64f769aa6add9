"""Project and project-group lifecycle.

This service owns the rules that span tables:

- a default group is created lazily for a user who has none
- a group cannot be deleted while it still contains projects
- deleting a project removes its history rows and its artifact directory

It is also the ownership resolver used by generation and by history moves:
:meth:`ProjectService.get_owned_project` either returns the caller's project
or raises :class:`NotFoundError`.
"""

import logging
import uuid
from typing import Any

from .artifact_store import ArtifactStore
from .errors import InvalidRequestError, NotFoundError
from .history_db import HistoryDB
from .projects_db import Project, ProjectGroup, ProjectsDB

logger = logging.getLogger(__name__)


def _require_name(name: str | None, message: str = "Name is required") -> str:
    if not name or not name.strip():
        raise InvalidRequestError(message)
    return name.strip()


class ProjectService:
    """Owner-scoped operations on groups and projects."""

    def __init__(
        self,
        projects: ProjectsDB,
        history: HistoryDB,
        store: ArtifactStore,
        default_group_name: str = "Default",
    ) -> None:
        self.projects = projects
        self.history = history
        self.store = store
        self.default_group_name = default_group_name

    # -- Ownership ------------------------------------------------------------

    def get_owned_project(self, project_uuid: str, user_id: int) -> Project:
        """Resolve a project owned by *user_id*.

        Raises:
            NotFoundError: If the project does not exist or belongs to
                someone else.
        """
        project = self.projects.get_project(project_uuid, user_id) if project_uuid else None
        if project is None:
            raise NotFoundError("Project not found")
        return project

    # -- Groups ---------------------------------------------------------------

    def ensure_default_group(self, user_id: int) -> ProjectGroup:
        existing = self.projects.find_group_by_name(user_id, self.default_group_name)
        if existing:
            return existing

        group = ProjectGroup(uuid=str(uuid.uuid4()), name=self.default_group_name, user_id=user_id)
        logger.info(f"Creating default project group for user {user_id}")
        return self.projects.insert_group(group)

    def list_groups(self, user_id: int, *, with_projects: bool = False) -> list[dict[str, Any]]:
        """List the user's groups, creating the default group if there are none.

        Args:
            user_id: Caller.
            with_projects: Nest each group's projects under ``projects``.
        """
        groups = self.projects.list_groups(user_id) or [self.ensure_default_group(user_id)]
        if not with_projects:
            return [group.to_dict() for group in groups]

        projects = self.projects.list_projects(user_id)
        return [
            {
                **group.to_dict(),
                "projects": [p.to_dict() for p in projects if p.group_uuid == group.uuid],
            }
            for group in groups
        ]

    def create_group(self, user_id: int, name: str | None, sort_order: int | None = None) -> ProjectGroup:
        group = ProjectGroup(
            uuid=str(uuid.uuid4()),
            name=_require_name(name),
            user_id=user_id,
            sort_order=sort_order if sort_order is not None else 0,
        )
        return self.projects.insert_group(group)

    def update_group(
        self,
        user_id: int,
        group_uuid: str,
        *,
        name: str | None = None,
        sort_order: int | None = None,
    ) -> ProjectGroup:
        """Rename and/or reorder a group.

        An update with nothing to change returns the group as it is.

        Raises:
            InvalidRequestError: If *name* is given but blank.
            NotFoundError: If the group is not the caller's.
        """
        if name is not None and not name.strip():
            raise InvalidRequestError("Name cannot be empty")

        self.projects.update_group(
            group_uuid,
            user_id,
            name=name.strip() if name else None,
            sort_order=sort_order,
        )
        group = self.projects.get_group(group_uuid, user_id)
        if group is None:
            raise NotFoundError("Project group not found")
        return group

    def delete_group(self, user_id: int, group_uuid: str) -> None:
        """Delete an empty group.

        Raises:
            NotFoundError: If the group is not the caller's.
            InvalidRequestError: If the group still contains projects.
        """
        group = self.projects.get_group(group_uuid, user_id)
        if group is None:
            raise NotFoundError("Project group not found")

        if self.projects.count_projects_in_group(group.uuid, user_id):
            raise InvalidRequestError("Cannot delete non-empty group")

        self.projects.delete_group(group.uuid, user_id)
        logger.info(f"Deleted project group {group.uuid} of user {user_id}")

    # -- Projects -------------------------------------------------------------

    def list_projects(self, user_id: int) -> list[Project]:
        return self.projects.list_projects(user_id)

    def summary(self, user_id: int) -> list[dict[str, Any]]:
        """Groups with their projects and each project's latest image."""
        groups = self.projects.list_groups(user_id)
        projects = self.projects.list_projects(user_id)
        latest = self.history.latest_per_project(user_id, [p.uuid for p in projects])

        def describe(project: Project) -> dict[str, Any]:
            last = latest.get(project.uuid)
            last_dict = last.to_dict() if last else None
            return {
                **project.to_dict(),
                "lastImageName": last_dict["image_name"] if last_dict else None,
                "lastCreatedAt": last_dict["create_date"] if last_dict else None,
            }

        return [
            {
                **group.to_dict(),
                "projects": [describe(p) for p in projects if p.group_uuid == group.uuid],
            }
            for group in groups
        ]

    def create_project(
        self,
        user_id: int,
        name: str | None,
        group_uuid: str | None,
        project_uuid: str | None = None,
    ) -> Project:
        """Create a project inside one of the caller's groups.

        Raises:
            InvalidRequestError: On a blank name, a missing group or a group
                that is not the caller's.
            ConflictError: If an explicit *project_uuid* is already taken.
        """
        clean_name = _require_name(name)
        if not group_uuid or not group_uuid.strip():
            raise InvalidRequestError("Group is required")

        group = self.projects.get_group(group_uuid.strip(), user_id)
        if group is None:
            raise InvalidRequestError("Group not found")

        new_uuid = project_uuid.strip() if project_uuid and project_uuid.strip() else str(uuid.uuid4())
        # The uuid doubles as the artifact directory name.
        if ".." in new_uuid or "/" in new_uuid or "\\" in new_uuid:
            raise InvalidRequestError("Invalid project uuid")

        project = Project(uuid=new_uuid, name=clean_name, user_id=user_id, group_uuid=group.uuid)
        self.projects.insert_project(project)
        return self.get_owned_project(new_uuid, user_id)

    def update_project(
        self,
        user_id: int,
        project_uuid: str,
        name: str | None,
        group_uuid: str | None = None,
    ) -> Project:
        clean_name = _require_name(name)

        target_group = None
        if group_uuid and group_uuid.strip():
            group = self.projects.get_group(group_uuid.strip(), user_id)
            if group is None:
                raise NotFoundError("Project group not found")
            target_group = group.uuid

        self.projects.update_project(project_uuid, user_id, name=clean_name, group_uuid=target_group)
        return self.get_owned_project(project_uuid, user_id)

    def delete_project(self, user_id: int, project_uuid: str) -> None:
        """Delete a project, its history rows and its artifacts.

        Rows go first; artifact removal is best-effort.

        Raises:
            NotFoundError: If the project is not the caller's.
        """
        project = self.get_owned_project(project_uuid, user_id)

        removed_rows = self.history.delete_for_project(project.uuid, user_id)
        self.projects.delete_project(project.uuid, user_id)
        removed_files = self.store.remove_project(project.uuid)

        logger.info(
            f"Deleted project {project.uuid} of user {user_id} "
            f"({removed_rows} history rows, {removed_files} files)"
        )
