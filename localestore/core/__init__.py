from .analytics import AnalyticsManager
from .backends import CookieBackend, DiskCacheBackend, MemoryBackend, StorageBackend
from .cache import TTLCache
from .consistency import ConsistencyEngine
from .errors import (
    ConsistencyError,
    LocaleStorageError,
    NotFoundError,
    QuotaExceededError,
    StorageUnavailableError,
    ValidationError,
    VersionMismatchError,
)
from .events import EventBus
from .history import DetectionHistoryStore
from .maintenance import MaintenanceManager
from .manager import LocaleStorageManager
from .persistence import PersistenceAdapter
from .preference import PreferenceStore, compare_preferences, create_default_preference, get_source_priority
from .types import (
    SCHEMA_VERSION,
    BackendTarget,
    DetectionRecord,
    LocalePreference,
    OverrideAction,
    OverrideRecord,
    PreferenceSource,
    StorageEvent,
    StorageEventType,
    StorageKeys,
    StorageResult,
)

__all__ = [
    "AnalyticsManager",
    "CookieBackend",
    "DiskCacheBackend",
    "MemoryBackend",
    "StorageBackend",
    "TTLCache",
    "ConsistencyEngine",
    "ConsistencyError",
    "LocaleStorageError",
    "NotFoundError",
    "QuotaExceededError",
    "StorageUnavailableError",
    "ValidationError",
    "VersionMismatchError",
    "EventBus",
    "DetectionHistoryStore",
    "MaintenanceManager",
    "LocaleStorageManager",
    "PersistenceAdapter",
    "PreferenceStore",
    "compare_preferences",
    "create_default_preference",
    "get_source_priority",
    "SCHEMA_VERSION",
    "BackendTarget",
    "DetectionRecord",
    "LocalePreference",
    "OverrideAction",
    "OverrideRecord",
    "PreferenceSource",
    "StorageEvent",
    "StorageEventType",
    "StorageKeys",
    "StorageResult",
]
