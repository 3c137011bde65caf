"""Client-side locale preference storage engine."""

from .config import Settings, get_settings
from .core import (
    LocalePreference,
    LocaleStorageManager,
    PreferenceSource,
    StorageEventType,
    StorageResult,
)

__version__ = "1.0.0"

__all__ = [
    "Settings",
    "get_settings",
    "LocalePreference",
    "LocaleStorageManager",
    "PreferenceSource",
    "StorageEventType",
    "StorageResult",
]
