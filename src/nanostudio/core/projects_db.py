"""Project and project-group repository.

Groups and projects are plain owner-scoped rows.  Rules that span tables
(default group creation, refusing to delete non-empty groups, cascading
project deletion to history) live in :mod:`nanostudio.core.project_service`.
"""

import logging
import sqlite3
from dataclasses import asdict, dataclass
from typing import Any

from .database import Database
from .errors import ConflictError

logger = logging.getLogger(__name__)


@dataclass
class ProjectGroup:
    """A named, ordered collection of projects owned by one user."""

    uuid: str
    name: str
    user_id: int
    sort_order: int = 0
    id: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProjectGroup":
        return cls(
            id=row["id"],
            uuid=row["uuid"],
            name=row["name"],
            user_id=row["user_id"],
            sort_order=row["sort_order"] or 0,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"uuid": self.uuid, "name": self.name, "sortOrder": self.sort_order}


@dataclass
class Project:
    """A workspace owning zero or more history entries."""

    uuid: str
    name: str
    user_id: int
    group_uuid: str
    group_name: str | None = None
    id: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Project":
        keys = row.keys()
        return cls(
            id=row["id"],
            uuid=row["uuid"],
            name=row["name"],
            user_id=row["user_id"],
            group_uuid=row["group_uuid"],
            group_name=row["group_name"] if "group_name" in keys else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


_PROJECT_SELECT = (
    "SELECT p.id, p.uuid, p.name, p.user_id, p.group_uuid, g.name AS group_name "
    "FROM projects p LEFT JOIN project_groups g ON p.group_uuid = g.uuid"
)


class ProjectsDB:
    """Read and write project groups and projects."""

    def __init__(self, database: Database):
        self.database = database

    # -- Groups -------------------------------------------------------------

    def list_groups(self, user_id: int) -> list[ProjectGroup]:
        with self.database.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM project_groups WHERE user_id = ? ORDER BY sort_order ASC, name ASC",
                (user_id,),
            ).fetchall()
        return [ProjectGroup.from_row(row) for row in rows]

    def get_group(self, group_uuid: str, user_id: int) -> ProjectGroup | None:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT * FROM project_groups WHERE uuid = ? AND user_id = ? LIMIT 1",
                (group_uuid, user_id),
            ).fetchone()
        return ProjectGroup.from_row(row) if row else None

    def find_group_by_name(self, user_id: int, name: str) -> ProjectGroup | None:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT * FROM project_groups WHERE user_id = ? AND name = ? LIMIT 1",
                (user_id, name),
            ).fetchone()
        return ProjectGroup.from_row(row) if row else None

    def insert_group(self, group: ProjectGroup) -> ProjectGroup:
        try:
            with self.database.connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO project_groups (uuid, name, user_id, sort_order) VALUES (?, ?, ?, ?)",
                    (group.uuid, group.name, group.user_id, group.sort_order),
                )
                group.id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError("Project group already exists") from e

        logger.info(f"Created project group {group.uuid} ({group.name!r}) for user {group.user_id}")
        return group

    def update_group(
        self,
        group_uuid: str,
        user_id: int,
        *,
        name: str | None = None,
        sort_order: int | None = None,
    ) -> bool:
        updates: dict[str, Any] = {}
        if name is not None:
            updates["name"] = name
        if sort_order is not None:
            updates["sort_order"] = sort_order
        if not updates:
            return False

        assignments = ", ".join(f"{column} = :{column}" for column in updates)
        with self.database.connect() as conn:
            cursor = conn.execute(
                f"UPDATE project_groups SET {assignments} WHERE uuid = :uuid AND user_id = :user_id",
                {**updates, "uuid": group_uuid, "user_id": user_id},
            )
        return cursor.rowcount > 0

    def delete_group(self, group_uuid: str, user_id: int) -> bool:
        with self.database.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM project_groups WHERE uuid = ? AND user_id = ?",
                (group_uuid, user_id),
            )
        return cursor.rowcount > 0

    def count_projects_in_group(self, group_uuid: str, user_id: int) -> int:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM projects WHERE group_uuid = ? AND user_id = ?",
                (group_uuid, user_id),
            ).fetchone()
        return row[0] if row else 0

    # -- Projects -----------------------------------------------------------

    def list_projects(self, user_id: int) -> list[Project]:
        with self.database.connect() as conn:
            rows = conn.execute(
                f"{_PROJECT_SELECT} WHERE p.user_id = ? ORDER BY p.name ASC",
                (user_id,),
            ).fetchall()
        return [Project.from_row(row) for row in rows]

    def get_project(self, project_uuid: str, user_id: int) -> Project | None:
        with self.database.connect() as conn:
            row = conn.execute(
                f"{_PROJECT_SELECT} WHERE p.uuid = ? AND p.user_id = ? LIMIT 1",
                (project_uuid, user_id),
            ).fetchone()
        return Project.from_row(row) if row else None

    def insert_project(self, project: Project) -> Project:
        try:
            with self.database.connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO projects (uuid, name, user_id, group_uuid) VALUES (?, ?, ?, ?)",
                    (project.uuid, project.name, project.user_id, project.group_uuid),
                )
                project.id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError("Project already exists") from e

        logger.info(f"Created project {project.uuid} ({project.name!r}) for user {project.user_id}")
        return project

    def update_project(
        self,
        project_uuid: str,
        user_id: int,
        *,
        name: str,
        group_uuid: str | None = None,
    ) -> bool:
        with self.database.connect() as conn:
            if group_uuid is None:
                cursor = conn.execute(
                    "UPDATE projects SET name = ? WHERE uuid = ? AND user_id = ?",
                    (name, project_uuid, user_id),
                )
            else:
                cursor = conn.execute(
                    "UPDATE projects SET name = ?, group_uuid = ? WHERE uuid = ? AND user_id = ?",
                    (name, group_uuid, project_uuid, user_id),
                )
        return cursor.rowcount > 0

    def delete_project(self, project_uuid: str, user_id: int) -> bool:
        with self.database.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM projects WHERE uuid = ? AND user_id = ?",
                (project_uuid, user_id),
            )
        return cursor.rowcount > 0
