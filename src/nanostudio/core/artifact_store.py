"""File-system artifact store for generated images.

Layout::

    <generated_dir>/
        <project uuid>/
            image-<uuid>.png
            image-<uuid>-1.png      (after a move collision)

The directory a file lives in *is* its project association; nothing about
the project is stored per file.  The store keeps no metadata and is never
listed to discover images, every read starts from a history row.
"""

import itertools
import logging
import os
import uuid
from collections.abc import Iterator
from pathlib import Path

from .errors import InvalidRequestError, StorageError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


def content_type_for(filename: str) -> str:
    """Map a file name to the content type it is served with."""
    return CONTENT_TYPES.get(Path(filename).suffix.lower(), "application/octet-stream")


def validate_filename(filename: str) -> str:
    """Reject names that could escape a project directory.

    Args:
        filename: Bare file name supplied by a client.

    Returns:
        The unchanged file name.

    Raises:
        InvalidRequestError: If the name is empty or contains ``..``, ``/``
            or ``\\``.
    """
    if not filename or ".." in filename or "/" in filename or "\\" in filename:
        logger.warning(f"Rejected unsafe artifact name: {filename!r}")
        raise InvalidRequestError("Invalid file name")
    return filename


class ArtifactStore:
    """Store generated binaries under one directory per project.

    Attributes:
        root: Root directory of the store.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def project_dir(self, project_uuid: str) -> Path:
        """Directory that holds a project's artifacts (not created)."""
        return self.root / validate_filename(project_uuid)

    def path_for(self, project_uuid: str, filename: str) -> Path:
        """Absolute path of an artifact."""
        return self.project_dir(project_uuid) / validate_filename(filename)

    def exists(self, project_uuid: str, filename: str) -> bool:
        return self.path_for(project_uuid, filename).is_file()

    @staticmethod
    def new_filename(extension: str) -> str:
        """Build a fresh, collision-free artifact name for *extension*."""
        ext = extension.lower().lstrip(".") or "png"
        return f"image-{uuid.uuid4()}.{ext}"

    def write(self, project_uuid: str, filename: str, data: bytes) -> Path:
        """Write *data* into the project's directory.

        Directory creation is idempotent, so concurrent writers for the same
        project are safe as long as they use distinct file names.

        Raises:
            StorageError: If the directory or file cannot be written.
        """
        target = self.path_for(project_uuid, filename)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError("Failed to store image") from e

        logger.info(f"Stored artifact {filename} ({len(data)} bytes) in project {project_uuid}")
        return target

    def remove(self, project_uuid: str, filename: str) -> bool:
        """Best-effort removal of a single artifact.

        Returns:
            True if a file was removed, False if it was missing or could
            not be removed (the failure is logged, never raised).
        """
        target = self.path_for(project_uuid, filename)
        try:
            target.unlink()
        except FileNotFoundError:
            logger.debug(f"Artifact already absent: {target}")
            return False
        except OSError as e:
            logger.warning(f"Failed to delete image file {target}: {e}")
            return False

        logger.info(f"Removed artifact {filename} from project {project_uuid}")
        return True

    def remove_project(self, project_uuid: str) -> int:
        """Best-effort removal of a project's whole directory.

        Returns:
            Number of files removed.
        """
        directory = self.project_dir(project_uuid)
        if not directory.is_dir():
            return 0

        removed = 0
        for entry in directory.iterdir():
            try:
                entry.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Failed to delete {entry} while removing project: {e}")
        try:
            directory.rmdir()
        except OSError as e:
            logger.warning(f"Failed to remove project directory {directory}: {e}")

        logger.info(f"Removed {removed} artifact(s) of project {project_uuid}")
        return removed

    @staticmethod
    def _candidates(filename: str) -> Iterator[str]:
        """Yield ``x.png``, ``x-1.png``, ``x-2.png`` and so on."""
        path = Path(filename)
        yield filename
        for counter in itertools.count(1):
            yield f"{path.stem}-{counter}{path.suffix}"

    def move(self, source_project: str, filename: str, target_project: str) -> str | None:
        """Move an artifact between project directories without overwriting.

        The destination is claimed with a hard link, which fails instead of
        replacing an existing file; a name taken by a concurrent writer is
        skipped in favour of the next suffix.

        Args:
            source_project: Project the artifact currently lives in.
            filename: Current artifact name.
            target_project: Destination project.

        Returns:
            The artifact's name in the destination directory, or ``None`` if
            the source file does not exist (nothing is moved).

        Raises:
            StorageError: If the link or the unlink of the source fails.
        """
        source = self.path_for(source_project, filename)
        if not source.is_file():
            return None

        destination_dir = self.project_dir(target_project)
        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("Failed to move image") from e

        for new_name in self._candidates(filename):
            try:
                os.link(source, destination_dir / new_name)
            except FileExistsError:
                continue
            except OSError as e:
                raise StorageError("Failed to move image") from e
            break

        try:
            source.unlink()
        except OSError as e:
            (destination_dir / new_name).unlink(missing_ok=True)
            raise StorageError("Failed to move image") from e

        logger.info(f"Moved artifact {filename} from {source_project} to {target_project} as {new_name}")
        return new_name
