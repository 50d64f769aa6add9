"""Core functionality for Nano Studio.

Architecture Overview
---------------------
The core module follows a layered architecture:

1. **Configuration Layer** (config.py):
   - Environment-based configuration using Pydantic Settings
   - All settings prefixed with NANOSTUDIO_ in .env files

2. **Storage Layer** (database.py, history_db.py, projects_db.py, artifact_store.py):
   - SQLite repositories for history, projects and project groups
   - One artifact directory per project, named by the project's uuid

3. **Provider Layer** (providers.py):
   - Table-driven request mapping for the two upstream API shapes
   - Ordered response-shape matchers decoding inline or referenced images

4. **Service Layer** (generation.py, history_service.py, project_service.py):
   - Generation orchestrator (validate, generate, store, record)
   - History listing, favorites, moves, deletes and artifact resolution
   - Project and group lifecycle, including ownership resolution

5. **Snippets** (snippets.py):
   - Per-user saved prompt fragments with search, create and delete

6. **Support Utilities**:
   - errors.py: Error taxonomy mapped to HTTP statuses by the API layer
   - pagination.py: Page and flag normalisation for listings
"""

from nanostudio.core.config import StudioConfig, config
from nanostudio.core.errors import (
    ConflictError,
    GenerationFailedError,
    InvalidRequestError,
    NotFoundError,
    StudioError,
    UpstreamError,
)

__all__ = [
    "StudioConfig",
    "config",
    "StudioError",
    "InvalidRequestError",
    "NotFoundError",
    "ConflictError",
    "UpstreamError",
    "GenerationFailedError",
]
