"""Nano Studio - Multi-tenant AI image generation with project history."""

__version__ = "0.3.0"

from nanostudio.core.config import StudioConfig, config
from nanostudio.core.providers import provider_registry

__all__ = [
    "StudioConfig",
    "config",
    "provider_registry",
]
