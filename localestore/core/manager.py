"""
LocaleStorageManager: the single entry point for callers.

Composes the persistence adapter, stores, cache, event bus, consistency
engine, maintenance and analytics. Every mutating call emits exactly one
event (its success type or ERROR) and drops derived cache entries.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .analytics import AnalyticsManager
from .backends import CookieBackend, DiskCacheBackend, StorageBackend
from .cache import TTLCache
from .consistency import ConsistencyEngine
from .errors import LocaleStorageError
from .events import EventBus, EventListener
from .history import DetectionHistoryStore
from .maintenance import MaintenanceManager
from .persistence import PersistenceAdapter
from .preference import OVERRIDE_STATS_CACHE_KEY, PreferenceStore
from .types import DetectionRecord, LocalePreference, OverrideRecord, StorageEventType, StorageResult
from ..config import DAY_MS, Settings, get_settings
from ..utils.storage_utils import current_timestamp

logger = logging.getLogger(__name__)

FALLBACK_LOCALE = "en"
EVENT_SOURCE = "locale_storage_manager"


class LocaleStorageManager:
    """Facade over the locale storage engine."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        local_backend: Optional[StorageBackend] = None,
        cookie_backend: Optional[StorageBackend] = None,
        clock: Optional[Callable[[], int]] = None,
        user_agent: str = "localestore",
    ):
        """
        Wire up the engine.

        Args:
            settings: Engine settings, defaults to get_settings()
            local_backend: Key-value backend, defaults to a DiskCacheBackend under the storage dir
            cookie_backend: Cookie backend, defaults to a CookieBackend persisted under the storage dir
            clock: Millisecond clock shared by every component
            user_agent: Recorded in export packages
        """
        self.settings = settings or get_settings()
        self._clock = clock or current_timestamp

        if local_backend is None or cookie_backend is None:
            storage_path = self.settings.get_storage_path()
            if local_backend is None:
                local_backend = DiskCacheBackend(
                    str(storage_path / "local"), quota_bytes=self.settings.local_quota_bytes
                )
            if cookie_backend is None:
                cookie_backend = CookieBackend(
                    max_value_bytes=self.settings.cookie_max_bytes,
                    max_age_s=self.settings.cookie_max_age_s,
                    path=str(storage_path / "cookies.txt"),
                    clock=self._clock,
                )

        self.adapter = PersistenceAdapter(local_backend, cookie_backend)
        self.cache = TTLCache(self.settings.cache_ttl_ms, clock=self._clock)
        self.events = EventBus(self.settings.max_event_history, clock=self._clock)

        self.preferences = PreferenceStore(self.adapter, self.cache, self.settings, self._clock)
        self.history = DetectionHistoryStore(self.adapter, self.cache, self.settings, self._clock)
        self.consistency = ConsistencyEngine(self.adapter, self.cache, self.settings, self.events, self._clock)
        self.maintenance = MaintenanceManager(
            self.adapter, self.preferences, self.history, self.consistency,
            self.settings, self._clock, user_agent,
        )
        self.analytics = AnalyticsManager(
            self.adapter, self.preferences, self.history, self.consistency,
            self.events, self.cache, self.settings, self._clock,
        )
        self._closed = False
        logger.info(f"Locale storage initialized (locales: {', '.join(self.settings.supported_locales)})")

    # ---- event plumbing ---------------------------------------------------

    def _mutate(
        self,
        event_type: StorageEventType,
        operation: Callable[[], StorageResult],
        describe: Optional[Callable[[Any], Dict[str, Any]]] = None,
    ) -> StorageResult:
        try:
            result = operation()
        except LocaleStorageError as e:
            logger.error(f"{event_type.value} failed: {e}")
            result = StorageResult.fail(e)

        self.analytics.invalidate()
        self.cache.invalidate(OVERRIDE_STATS_CACHE_KEY)
        if result.success:
            data = describe(result.data) if describe else None
            self.events.emit(event_type, EVENT_SOURCE, data)
        else:
            self.events.emit(StorageEventType.ERROR, EVENT_SOURCE, {
                "operation": event_type.value,
                "error": result.error,
                "error_type": result.error_type,
            })
        return result

    def add_event_listener(self, event_type, listener: EventListener) -> None:
        self.events.add_event_listener(event_type, listener)

    def remove_event_listener(self, event_type, listener: EventListener) -> None:
        self.events.remove_event_listener(event_type, listener)

    def remove_all_listeners(self, event_type=None) -> None:
        self.events.remove_all_listeners(event_type)

    def get_event_history(self, limit: Optional[int] = None, event_type=None):
        return self.events.get_event_history(limit, event_type)

    # ---- preference -------------------------------------------------------

    def save_user_preference(self, preference: Any) -> StorageResult:
        return self._mutate(
            StorageEventType.PREFERENCE_SAVED,
            lambda: self.preferences.save(preference),
            lambda saved: {"locale": saved.locale, "source": saved.to_dict()["source"],
                           "confidence": saved.confidence},
        )

    def get_user_preference(self) -> Optional[LocalePreference]:
        result = self.preferences.get()
        return result.data if result.success else None

    def validate_preference(self, preference: Any) -> bool:
        return self.preferences.validate(preference)

    def get_fallback_locale(self) -> str:
        return FALLBACK_LOCALE

    # ---- override ---------------------------------------------------------

    def set_user_override(self, locale: str, metadata: Optional[Dict[str, Any]] = None) -> StorageResult:
        return self._mutate(
            StorageEventType.OVERRIDE_SET,
            lambda: self.preferences.set_override(locale, metadata),
            lambda value: {"locale": value},
        )

    def get_user_override(self) -> Optional[str]:
        result = self.preferences.get_override()
        return result.data if result.success else None

    def has_user_override(self) -> bool:
        return self.preferences.has_override()

    def clear_user_override(self) -> StorageResult:
        return self._mutate(
            StorageEventType.OVERRIDE_CLEARED,
            self.preferences.clear_override,
            lambda data: {
                "locale": data["cleared"],
                "restored": data["restored"].locale if data["restored"] else None,
            },
        )

    def get_override_history(self) -> List[OverrideRecord]:
        return self.preferences.get_override_history()

    def get_override_stats(self) -> Dict[str, Any]:
        return self.preferences.get_override_stats()

    # ---- detection history ------------------------------------------------

    def add_detection_record(self, detection: Any) -> StorageResult:
        return self._mutate(
            StorageEventType.DETECTION_ADDED,
            lambda: self.history.add_record(detection),
            lambda record: {"locale": record.locale, "source": record.source, "confidence": record.confidence},
        )

    def get_detection_history(self) -> List[DetectionRecord]:
        return self.history.get_history()

    def get_recent_detections(self, limit: int = 5) -> List[DetectionRecord]:
        return self.history.get_recent(limit)

    def query_detections(self, **criteria) -> Dict[str, Any]:
        """See DetectionHistoryStore.query for the accepted criteria."""
        return self.history.query(**criteria)

    def search_detections(self, term: str) -> List[DetectionRecord]:
        return self.history.search(term)

    def cleanup_expired_detections(self, max_age_ms: int = 30 * DAY_MS) -> StorageResult:
        return self._mutate(
            StorageEventType.HISTORY_CLEANED,
            lambda: self.maintenance.cleanup_expired_detections(max_age_ms),
            lambda removed: {"removed": removed, "max_age_ms": max_age_ms},
        )

    # ---- whole store ------------------------------------------------------

    def clear_all(self) -> StorageResult:
        return self._mutate(
            StorageEventType.DATA_CLEARED,
            self.maintenance.clear_all,
            lambda data: {"removed_keys": data["removed_keys"]},
        )

    def get_storage_stats(self) -> Dict[str, Any]:
        return self.analytics.get_storage_stats()

    def get_usage_patterns(self) -> Dict[str, Any]:
        return self.analytics.get_usage_patterns()

    def get_performance_metrics(self) -> Dict[str, Any]:
        return self.analytics.get_performance_metrics()

    def estimate_quota(self) -> Dict[str, Any]:
        return self.analytics.estimate_quota()

    def perform_health_check(self) -> Dict[str, Any]:
        return self.analytics.perform_health_check()

    # ---- export / import / backups ---------------------------------------

    def export_data(self) -> StorageResult:
        return self._mutate(
            StorageEventType.DATA_EXPORTED,
            self.maintenance.export_data,
            lambda package: {"sections": [name for name in ("preference", "override", "history") if name in package]},
        )

    def export_as_json(self) -> StorageResult:
        return self._mutate(StorageEventType.DATA_EXPORTED, self.maintenance.export_as_json)

    def import_data(self, package: Any) -> StorageResult:
        return self._mutate(
            StorageEventType.DATA_IMPORTED,
            lambda: self.maintenance.import_data(package),
            lambda data: {"imported_items": data["imported_items"]},
        )

    def import_from_json(self, text: str) -> StorageResult:
        return self._mutate(
            StorageEventType.DATA_IMPORTED,
            lambda: self.maintenance.import_from_json(text),
            lambda data: {"imported_items": data["imported_items"]},
        )

    def create_backup(self) -> StorageResult:
        return self._mutate(
            StorageEventType.BACKUP_CREATED,
            self.maintenance.create_backup,
            lambda data: {"key": data["key"], "size": data["size"]},
        )

    def list_backups(self) -> List[Dict[str, Any]]:
        return self.maintenance.list_backups()

    def restore_backup(self, key: str) -> StorageResult:
        return self._mutate(
            StorageEventType.BACKUP_RESTORED,
            lambda: self.maintenance.restore_backup(key),
            lambda data: {"key": key, "imported_items": data["imported_items"]},
        )

    def delete_backup(self, key: str) -> StorageResult:
        return self._mutate(
            StorageEventType.BACKUP_DELETED,
            lambda: self.maintenance.delete_backup(key),
            lambda deleted: {"key": deleted},
        )

    def cleanup_old_backups(self, max_count: Optional[int] = None) -> StorageResult:
        if max_count is None:
            max_count = self.settings.max_backups
        return self._mutate(
            StorageEventType.BACKUPS_CLEANED,
            lambda: self.maintenance.cleanup_old_backups(max_count),
            lambda deleted: {"deleted": deleted, "max_count": max_count},
        )

    # ---- maintenance / consistency ----------------------------------------

    def perform_maintenance(self, options: Optional[Dict[str, Any]] = None) -> StorageResult:
        return self._mutate(
            StorageEventType.MAINTENANCE_COMPLETED,
            lambda: self.maintenance.perform_maintenance(options),
            lambda data: dict(data),
        )

    def validate_storage_integrity(self) -> StorageResult:
        return self.maintenance.validate_storage_integrity()

    def get_maintenance_recommendations(self) -> Dict[str, Any]:
        return self.maintenance.get_maintenance_recommendations()

    def check_data_consistency(self) -> Dict[str, Any]:
        return self.consistency.check_data_consistency()

    def fix_data_inconsistency(self) -> StorageResult:
        def repair() -> StorageResult:
            outcome = self.consistency.fix_data_inconsistency()
            if outcome["fixed"]:
                return StorageResult.ok(outcome)
            return StorageResult(success=False, data=outcome, error="Backends are still inconsistent",
                                 error_type="ConsistencyError", timestamp=self._clock())

        return self._mutate(StorageEventType.SYNC_COMPLETED, repair, lambda data: dict(data))

    def sync_preference_data(self) -> StorageResult:
        # The consistency engine emits its own sync or error event.
        result = self.consistency.sync_preference_data()
        self.analytics.invalidate()
        self.cache.invalidate(OVERRIDE_STATS_CACHE_KEY)
        return result

    # ---- lifecycle --------------------------------------------------------

    def close(self):
        """Release backends and drop cached state and listeners."""
        if self._closed:
            return
        self.cache.clear()
        self.events.remove_all_listeners()
        for backend in (self.adapter.local, self.adapter.cookies):
            close = getattr(backend, "close", None)
            if callable(close):
                close()
        self._closed = True
        logger.info("Locale storage closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
