"""History query and lifecycle operations.

Listing, counting, favorite toggling, moving entries between projects,
deleting entries, and resolving artifact downloads.  All operations are
scoped to the calling user; an entry owned by someone else behaves exactly
like one that does not exist.

Moves and deletes of the same entry are serialized in-process with a
short-lived :class:`asyncio.Lock` per entry uuid.  Separate server processes
still race (last writer wins).
"""

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .artifact_store import ArtifactStore, content_type_for, validate_filename
from .errors import InvalidRequestError, NotFoundError, StorageError
from .history_db import HistoryDB, HistoryEntry
from .pagination import PageRequest, resolve_page
from .project_service import ProjectService

logger = logging.getLogger(__name__)


@dataclass
class ArtifactFile:
    """A resolved artifact ready to be streamed."""

    path: Path
    filename: str
    content_type: str


class EntryLocks:
    """Per-entry asyncio locks, created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, entry_uuid: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(entry_uuid, asyncio.Lock())
        self._waiters[entry_uuid] = self._waiters.get(entry_uuid, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[entry_uuid] -= 1
            if not self._waiters[entry_uuid]:
                del self._waiters[entry_uuid]
                del self._locks[entry_uuid]

    @asynccontextmanager
    async def hold_many(self, entry_uuids: list[str]) -> AsyncIterator[None]:
        # Sorted acquisition keeps overlapping moves from deadlocking.
        async with AsyncExitStack() as stack:
            for entry_uuid in sorted(set(entry_uuids)):
                await stack.enter_async_context(self.hold(entry_uuid))
            yield


def _require_project_uuid(project_uuid: str | None) -> str:
    if not project_uuid or not project_uuid.strip():
        raise InvalidRequestError("project_uuid is required")
    return project_uuid.strip()


class HistoryService:
    """Read and mutate history entries and their artifacts."""

    def __init__(self, history: HistoryDB, projects: ProjectService, store: ArtifactStore) -> None:
        self.history = history
        self.projects = projects
        self.store = store
        self.locks = EntryLocks()

    # -- Queries --------------------------------------------------------------

    def list_entries(
        self,
        user_id: int,
        project_uuid: str | None,
        page: object = None,
        page_size: object = None,
        favorites_only: bool = False,
    ) -> list[HistoryEntry]:
        """One page of a project's history, newest first.

        Raises:
            InvalidRequestError: If *project_uuid* is missing.
        """
        project_uuid = _require_project_uuid(project_uuid)
        page_request = resolve_page(page, page_size)
        return self.history.list_entries(
            project_uuid,
            user_id,
            favorites_only=favorites_only,
            limit=page_request.page_size,
            offset=page_request.offset,
        )

    def count_entries(
        self,
        user_id: int,
        project_uuid: str | None,
        page: object = None,
        page_size: object = None,
        favorites_only: bool = False,
    ) -> dict[str, Any]:
        """Total for the same filter as :meth:`list_entries`, plus the resolved page."""
        project_uuid = _require_project_uuid(project_uuid)
        page_request: PageRequest = resolve_page(page, page_size)
        total = self.history.count(project_uuid, user_id, favorites_only=favorites_only)
        return {"total": total, "page": page_request.page, "pageSize": page_request.page_size}

    # -- Mutations ------------------------------------------------------------

    def set_favorite(self, user_id: int, entry_uuid: str | None, favorite: bool) -> bool:
        """Set an entry's favorite flag and return the resulting state.

        Raises:
            InvalidRequestError: If *entry_uuid* is blank.
            NotFoundError: If the entry is not the caller's.
        """
        if not entry_uuid or not entry_uuid.strip():
            raise InvalidRequestError("uuid is required")
        if not self.history.set_favorite(entry_uuid, user_id, favorite):
            raise NotFoundError("History entry not found")

        logger.debug(f"Entry {entry_uuid} favorite={favorite}")
        return favorite

    async def move_entries(
        self, user_id: int, entry_uuids: list[str] | None, target_project_uuid: str | None
    ) -> int:
        """Move entries, and their artifacts, into another project.

        Identifier resolution is all-or-nothing: if any id is not a
        caller-owned entry nothing is changed and the error names the
        missing ids.  Entries already in the target still count as moved.

        For each entry that changes project:

        - a missing source file is logged and only the row's project changes
        - otherwise the file is renamed into the target directory under a
          collision-free name and the row follows it

        Returns:
            Number of entries processed.

        Raises:
            InvalidRequestError: On an empty id list or missing target.
            NotFoundError: If the target project or any entry is not the
                caller's.
            StorageError: If a rename fails, or the row update after a rename
                fails (that file is moved back; earlier entries stay moved).
        """
        if not isinstance(entry_uuids, list) or not entry_uuids:
            raise InvalidRequestError("entryUuids must be a non-empty array")
        target = (target_project_uuid or "").strip()
        if not target:
            raise InvalidRequestError("targetProjectUuid is required")

        unique_uuids = list(
            dict.fromkeys(u.strip() for u in entry_uuids if isinstance(u, str) and u.strip())
        )
        if not unique_uuids:
            raise InvalidRequestError("entryUuids must contain valid ids")

        self.projects.get_owned_project(target, user_id)

        async with self.locks.hold_many(unique_uuids):
            entries = self.history.get_many(unique_uuids, user_id)
            if not entries:
                raise NotFoundError("History entries not found")
            if len(entries) != len(unique_uuids):
                found = {entry.uuid for entry in entries}
                missing = [u for u in unique_uuids if u not in found]
                raise NotFoundError(f"Entries not found: {', '.join(missing)}")

            self.store.project_dir(target).mkdir(parents=True, exist_ok=True)

            moved = 0
            for entry in entries:
                next_name = entry.image_name
                if entry.project_uuid != target:
                    new_name = self.store.move(entry.project_uuid, entry.image_name, target)
                    if new_name is None:
                        logger.warning(
                            f"Source file missing while moving history entry {entry.uuid}: "
                            f"{self.store.path_for(entry.project_uuid, entry.image_name)}"
                        )
                    else:
                        next_name = new_name

                    try:
                        self.history.update_location(entry.uuid, user_id, target, next_name)
                    except sqlite3.Error as e:
                        if new_name is not None:
                            self._restore_file(entry, target, new_name)
                        raise StorageError("Failed to move history entry") from e
                moved += 1

        logger.info(f"Moved {moved} history entries of user {user_id} to project {target}")
        return moved

    def _restore_file(self, entry: HistoryEntry, target: str, moved_name: str) -> None:
        """Put a moved artifact back where the entry's row still points."""
        try:
            restored = self.store.move(target, moved_name, entry.project_uuid)
        except StorageError:
            logger.exception(f"Failed to restore artifact of history entry {entry.uuid} after a failed move")
            return
        if restored != entry.image_name:
            logger.error(
                f"Artifact of history entry {entry.uuid} restored as {restored}, row still names {entry.image_name}"
            )

    async def delete_entry(self, user_id: int, entry_uuid: str | None) -> None:
        """Remove an entry's artifact (best-effort) and then its row.

        Raises:
            InvalidRequestError: If *entry_uuid* is blank.
            NotFoundError: If the entry is not the caller's.
        """
        if not entry_uuid or not entry_uuid.strip():
            raise InvalidRequestError("uuid is required")

        async with self.locks.hold(entry_uuid):
            entry = self.history.get(entry_uuid, user_id)
            if entry is None:
                raise NotFoundError("History entry not found")

            if entry.image_name:
                self.store.remove(entry.project_uuid, entry.image_name)
            self.history.delete(entry.uuid, user_id)

        logger.info(f"Deleted history entry {entry_uuid} of user {user_id}")

    # -- Artifacts ------------------------------------------------------------

    def resolve_artifact(self, user_id: int, filename: str) -> ArtifactFile:
        """Locate a caller-owned artifact by file name.

        Raises:
            InvalidRequestError: If the name contains path separators or ``..``.
            NotFoundError: If no owned entry references the name, or the file
                is missing on disk.
        """
        validate_filename(filename)

        entry = self.history.find_by_image_name(filename, user_id)
        if entry is None:
            raise NotFoundError("File not found")

        path = self.store.path_for(entry.project_uuid, filename)
        if not path.is_file():
            logger.warning(f"History entry {entry.uuid} references missing file {path}")
            raise NotFoundError("File not found")

        return ArtifactFile(path=path, filename=filename, content_type=content_type_for(filename))
