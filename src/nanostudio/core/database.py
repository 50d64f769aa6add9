"""SQLite database holding project groups, projects, generation history and
prompt snippets."""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS project_groups (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        uuid TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        user_id INTEGER NOT NULL,
        sort_order INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS projects (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        uuid TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        user_id INTEGER NOT NULL,
        group_uuid TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        uuid TEXT NOT NULL UNIQUE,
        create_date INTEGER NOT NULL,
        model TEXT NOT NULL,
        image_name TEXT NOT NULL,
        prompt TEXT NOT NULL,
        width INTEGER NOT NULL,
        height INTEGER NOT NULL,
        negative_prompt TEXT,
        n_images INTEGER,
        num_steps INTEGER,
        resolution TEXT,
        sampler_name TEXT,
        scale REAL,
        image_data_url TEXT,
        provider TEXT,
        response_format TEXT,
        seed INTEGER,
        kontext_max_mode INTEGER,
        favorite INTEGER NOT NULL DEFAULT 0,
        user_id INTEGER NOT NULL,
        project_uuid TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS snippets (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        uuid TEXT NOT NULL UNIQUE,
        user_id INTEGER NOT NULL,
        title TEXT,
        snippet TEXT NOT NULL,
        created_at INTEGER NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_history_project_date
    ON history(project_uuid, user_id, create_date DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_history_image_name
    ON history(image_name, user_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_projects_user
    ON projects(user_id, group_uuid)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_snippets_user_date
    ON snippets(user_id, created_at DESC)
    """,
)


class Database:
    """Connection factory and schema owner for the studio database.

    Each operation opens its own connection, so one instance can be shared by
    every request handler.
    """

    def __init__(self, db_path: Path):
        """Initialize the database and create the schema if needed.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        logger.info(f"Initialized studio database at {self.db_path}")

    def _initialize_db(self) -> None:
        """Create database schema if it doesn't exist."""
        with self.connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection that commits on success and rolls back on error.

        Rows are returned as :class:`sqlite3.Row` so repositories can read
        columns by name.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()
