"""Saved prompt snippets: short reusable prompt fragments per user.

Snippets are independent of projects and history.  A user can list
(optionally filtered by a search term matched against title and text),
create and delete their own snippets; another user's snippet behaves
exactly like one that does not exist.
"""

import logging
import sqlite3
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from .database import Database
from .errors import ConflictError, InvalidRequestError, NotFoundError
from .history_db import now_ms

logger = logging.getLogger(__name__)


def normalize_search(query: str | None) -> str | None:
    """Turn a free-text search into a ``LIKE`` pattern.

    ``%`` and ``_`` are stripped so they match nothing special.  A missing
    or blank query (after stripping) means no filter.
    """
    if not query:
        return None
    term = query.strip().replace("%", "").replace("_", "")
    return f"%{term}%" if term else None


@dataclass
class Snippet:
    uuid: str
    user_id: int
    snippet: str
    title: str | None = None
    created_at: int = field(default_factory=now_ms)
    id: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Snippet":
        return cls(
            id=row["id"],
            uuid=row["uuid"],
            user_id=row["user_id"],
            title=row["title"],
            snippet=row["snippet"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation with an ISO 8601 ``created_at``."""
        data = asdict(self)
        data["created_at"] = (
            datetime.fromtimestamp(self.created_at / 1000, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        return data


class SnippetsDB:
    """Owner-scoped storage for snippets."""

    def __init__(self, database: Database):
        self.database = database

    def list_snippets(self, user_id: int, pattern: str | None = None) -> list[Snippet]:
        """Newest first; *pattern* is a ``LIKE`` pattern from :func:`normalize_search`."""
        sql = "SELECT * FROM snippets WHERE user_id = ?"
        params: list[Any] = [user_id]
        if pattern is not None:
            sql += " AND (title LIKE ? OR snippet LIKE ?)"
            params.extend([pattern, pattern])
        sql += " ORDER BY created_at DESC, id DESC"

        with self.database.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Snippet.from_row(row) for row in rows]

    def get(self, snippet_uuid: str, user_id: int) -> Snippet | None:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT * FROM snippets WHERE uuid = ? AND user_id = ? LIMIT 1",
                (snippet_uuid, user_id),
            ).fetchone()
        return Snippet.from_row(row) if row else None

    def insert(self, snippet: Snippet) -> Snippet:
        try:
            with self.database.connect() as conn:
                cursor = conn.execute(
                    "INSERT INTO snippets (uuid, user_id, title, snippet, created_at) VALUES (?, ?, ?, ?, ?)",
                    (snippet.uuid, snippet.user_id, snippet.title, snippet.snippet, snippet.created_at),
                )
                snippet.id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise ConflictError("Snippet already exists") from e

        logger.info(f"Created snippet {snippet.uuid} for user {snippet.user_id}")
        return snippet

    def delete(self, snippet_uuid: str, user_id: int) -> bool:
        with self.database.connect() as conn:
            cursor = conn.execute(
                "DELETE FROM snippets WHERE uuid = ? AND user_id = ?",
                (snippet_uuid, user_id),
            )
        return cursor.rowcount > 0


class SnippetService:
    """Validation and ownership rules on top of :class:`SnippetsDB`."""

    def __init__(self, snippets: SnippetsDB):
        self.snippets = snippets

    def list_snippets(self, user_id: int, query: str | None = None) -> list[Snippet]:
        return self.snippets.list_snippets(user_id, normalize_search(query))

    def create(self, user_id: int, snippet: str | None, title: str | None = None) -> Snippet:
        """Store a snippet.  Text and title are trimmed; a blank title is stored as null.

        Raises:
            InvalidRequestError: If the snippet text is missing or blank.
        """
        text = (snippet or "").strip()
        if not text:
            raise InvalidRequestError("Snippet content is required")
        clean_title = (title or "").strip() or None

        return self.snippets.insert(
            Snippet(uuid=str(uuid.uuid4()), user_id=user_id, snippet=text, title=clean_title)
        )

    def delete(self, user_id: int, snippet_uuid: str) -> None:
        """Raises NotFoundError unless the snippet exists and is the caller's."""
        if not self.snippets.delete(snippet_uuid, user_id):
            raise NotFoundError("Snippet not found")
        logger.info(f"Deleted snippet {snippet_uuid} of user {user_id}")
