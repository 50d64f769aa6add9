"""History repository: one row per successful generation.

Every query is scoped by the owning user id, and listings additionally by
project, so a caller can never read or mutate another tenant's rows.
Artifact paths are not stored; they are derived from ``project_uuid`` and
``image_name`` by the artifact store.
"""

import logging
import sqlite3
import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from typing import Any

from .database import Database
from .errors import ConflictError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current time as epoch milliseconds (the stored ``create_date`` unit)."""
    return int(time.time() * 1000)


@dataclass
class HistoryEntry:
    """A stored generation event.

    ``id`` is assigned by the database; ``uuid`` is the identifier exposed to
    clients.  Only ``favorite``, ``project_uuid`` and ``image_name`` change
    after creation.
    """

    uuid: str
    user_id: int
    project_uuid: str
    model: str
    prompt: str
    width: int
    height: int
    image_name: str
    create_date: int = field(default_factory=now_ms)
    negative_prompt: str | None = None
    n_images: int | None = None
    num_steps: int | None = None
    resolution: str | None = None
    sampler_name: str | None = None
    scale: float | None = None
    image_data_url: str | None = None
    provider: str | None = None
    response_format: str | None = None
    seed: int | None = None
    kontext_max_mode: bool = False
    favorite: bool = False
    id: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "HistoryEntry":
        values = {f.name: row[f.name] for f in fields(cls)}
        values["favorite"] = bool(values["favorite"])
        values["kontext_max_mode"] = bool(values["kontext_max_mode"])
        return cls(**values)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation with an ISO 8601 ``create_date``."""
        data = asdict(self)
        data["create_date"] = (
            datetime.fromtimestamp(self.create_date / 1000, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        return data


_INSERT_COLUMNS = [f.name for f in fields(HistoryEntry) if f.name != "id"]


class HistoryDB:
    """Read and write history rows."""

    def __init__(self, database: Database):
        self.database = database

    def insert(self, entry: HistoryEntry) -> HistoryEntry:
        """Insert a new row and return it with its database id.

        Raises:
            ConflictError: If the entry's uuid already exists.
        """
        values = asdict(entry)
        values["favorite"] = int(entry.favorite)
        values["kontext_max_mode"] = int(entry.kontext_max_mode)

        columns = ", ".join(_INSERT_COLUMNS)
        placeholders = ", ".join(f":{name}" for name in _INSERT_COLUMNS)
        try:
            with self.database.connect() as conn:
                cursor = conn.execute(
                    f"INSERT INTO history ({columns}) VALUES ({placeholders})",
                    values,
                )
                entry.id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError("History entry already exists") from e

        logger.info(f"Recorded history entry {entry.uuid} in project {entry.project_uuid}")
        return entry

    def get(self, entry_uuid: str, user_id: int) -> HistoryEntry | None:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT * FROM history WHERE uuid = ? AND user_id = ? LIMIT 1",
                (entry_uuid, user_id),
            ).fetchone()
        return HistoryEntry.from_row(row) if row else None

    def get_many(self, entry_uuids: list[str], user_id: int) -> list[HistoryEntry]:
        """Fetch every owned row among *entry_uuids* (unknown ids are skipped)."""
        if not entry_uuids:
            return []
        placeholders = ", ".join("?" for _ in entry_uuids)
        with self.database.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM history WHERE user_id = ? AND uuid IN ({placeholders})",
                (user_id, *entry_uuids),
            ).fetchall()
        return [HistoryEntry.from_row(row) for row in rows]

    def find_by_image_name(self, image_name: str, user_id: int) -> HistoryEntry | None:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT * FROM history WHERE image_name = ? AND user_id = ? LIMIT 1",
                (image_name, user_id),
            ).fetchone()
        return HistoryEntry.from_row(row) if row else None

    @staticmethod
    def _filter(project_uuid: str, user_id: int, favorites_only: bool) -> tuple[str, list]:
        clause = "project_uuid = ? AND user_id = ?"
        params: list = [project_uuid, user_id]
        if favorites_only:
            clause += " AND favorite = 1"
        return clause, params

    def list_entries(
        self,
        project_uuid: str,
        user_id: int,
        *,
        favorites_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> list[HistoryEntry]:
        """Rows of one project, newest first."""
        clause, params = self._filter(project_uuid, user_id, favorites_only)
        with self.database.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM history WHERE {clause} "
                "ORDER BY create_date DESC, id DESC LIMIT ? OFFSET ?",
                (*params, limit, offset),
            ).fetchall()
        return [HistoryEntry.from_row(row) for row in rows]

    def count(self, project_uuid: str, user_id: int, *, favorites_only: bool = False) -> int:
        clause, params = self._filter(project_uuid, user_id, favorites_only)
        with self.database.connect() as conn:
            row = conn.execute(f"SELECT COUNT(*) FROM history WHERE {clause}", params).fetchone()
        return row[0] if row else 0

    def set_favorite(self, entry_uuid: str, user_id: int, favorite: bool) -> bool:
        """Set the favorite flag.  Returns False if no owned row matched."""
        with self.database.connect() as conn:
            cursor = conn.execute(
                "UPDATE history SET favorite = ? WHERE uuid = ? AND user_id = ?",
                (int(favorite), entry_uuid, user_id),
            )
        return cursor.rowcount > 0

    def update_location(
        self, entry_uuid: str, user_id: int, project_uuid: str, image_name: str
    ) -> bool:
        """Point a row at a new project and artifact name."""
        with self.database.connect() as conn:
            cursor = conn.execute(
                "UPDATE history SET project_uuid = ?, image_name = ? WHERE uuid = ? AND user_id = ?",
                (project_uuid, image_name, entry_uuid, user_id),
            )
        return cursor.rowcount > 0

    def delete(self, entry_uuid: str, user_id: int) -> bool:
        with self.database.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM history WHERE uuid = ? AND user_id = ?",
                (entry_uuid, user_id),
            )
        return cursor.rowcount > 0

    def delete_for_project(self, project_uuid: str, user_id: int) -> int:
        """Remove every row of a project.  Returns the number removed."""
        with self.database.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM history WHERE project_uuid = ? AND user_id = ?",
                (project_uuid, user_id),
            )
        return cursor.rowcount

    def latest_per_project(self, user_id: int, project_uuids: list[str]) -> dict[str, HistoryEntry]:
        """Most recent row of each project in *project_uuids*."""
        if not project_uuids:
            return {}
        placeholders = ", ".join("?" for _ in project_uuids)
        with self.database.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM history WHERE user_id = ? AND project_uuid IN ({placeholders}) "
                "ORDER BY create_date DESC, id DESC",
                (user_id, *project_uuids),
            ).fetchall()

        latest: dict[str, HistoryEntry] = {}
        for row in rows:
            if row["project_uuid"] not in latest:
                latest[row["project_uuid"]] = HistoryEntry.from_row(row)
        return latest
