"""Configuration management for Nano Studio.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the NANOSTUDIO_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (NANOSTUDIO_* prefix)
2. .env file in the project root
3. Default values defined in StudioConfig

Example .env file:
    NANOSTUDIO_API_KEY=sk-...
    NANOSTUDIO_UPSTREAM_BASE_URL=https://nano-gpt.com
    NANOSTUDIO_GENERATED_DIR=generated
    NANOSTUDIO_DATABASE_PATH=data/nanostudio.db

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
The FastAPI application uses it unless a different instance is passed to
``create_app()`` (the test-suite does this with temporary directories).

Usage Example
-------------
    from nanostudio.core.config import config

    print(config.upstream_base_url)
    print(config.generated_dir)

Directory Management
--------------------
The configuration automatically creates required directories on initialization:
- generated_dir: Root of the artifact store (one subdirectory per project)
- database_path.parent: Directory holding the SQLite database file

Upstream Credential
-------------------
``api_key`` is optional at start-up so the history, project and artifact
endpoints work without it.  Generation requests are rejected with a
configuration error while it is unset.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StudioConfig(BaseSettings):
    """Main configuration for Nano Studio.

    Values are loaded from environment variables with the NANOSTUDIO_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Upstream Settings:
        api_key : str | None
            Credential for the upstream image-generation API
        upstream_base_url : str
            Base URL of the upstream API (trailing slashes are ignored)
        upstream_timeout : float | None
            Timeout in seconds for upstream calls (None waits indefinitely)

    Storage:
        generated_dir : Path
            Root directory of the artifact store
        database_path : Path
            SQLite database file holding projects and history

    Server Settings:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Port for uvicorn (1024-65535)
        user_id_header : str
            Trusted header carrying the authenticated numeric user id
        log_level : str
            Root logging level used by ``main()``

    Projects:
        default_group_name : str
            Name of the group created lazily for users without any group

    Examples
    --------
    Create a custom configuration:

        >>> custom_config = StudioConfig(
        ...     api_key="test-key",
        ...     generated_dir="/tmp/generated",
        ...     database_path="/tmp/studio.db",
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="NANOSTUDIO_",
        case_sensitive=False,
    )

    # Upstream API
    api_key: str | None = Field(
        default=None,
        description="Credential for the upstream image-generation API",
    )
    upstream_base_url: str = Field(
        default="https://nano-gpt.com",
        description="Base URL of the upstream image-generation API",
    )
    upstream_timeout: float | None = Field(
        default=None,
        description="Timeout in seconds for upstream calls (None = no timeout)",
        gt=0,
    )

    # Paths
    generated_dir: Path = Field(
        default=Path("generated"),
        description="Root directory for generated images (one folder per project)",
    )
    database_path: Path = Field(
        default=Path("data") / "nanostudio.db",
        description="SQLite database file for projects and history",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    user_id_header: str = Field(
        default="X-User-Id",
        description="Header set by the authenticating proxy with the numeric user id",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level for the server process",
    )

    # Projects
    default_group_name: str = Field(
        default="Default",
        description="Name of the project group created for users with no groups",
    )

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        # Relative paths are anchored to the working directory once, so that
        # later chdir calls cannot move the artifact store.
        self.generated_dir = self.generated_dir.resolve()
        self.database_path = self.database_path.resolve()

        self.generated_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def upstream_configured(self) -> bool:
        """Whether an upstream credential is available."""
        return bool(self.api_key and self.api_key.strip())


# Global configuration instance
# Loads values from environment variables (NANOSTUDIO_* prefix) and .env file.
config = StudioConfig()
