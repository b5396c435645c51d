"""State registry helpers."""

from .registry import (
    PROFILES_FILE,
    RUNTIME_FILE,
    SITES_FILE,
    StateRegistry,
    StateRegistryError,
)

__all__ = [
    "PROFILES_FILE",
    "RUNTIME_FILE",
    "SITES_FILE",
    "StateRegistry",
    "StateRegistryError",
]
