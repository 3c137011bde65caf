"""
Preference store: the current locale preference, the manual override and
the capped override operation log.
"""

import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from .cache import TTLCache
from .errors import NotFoundError, ValidationError
from .persistence import PersistenceAdapter
from .types import (
    SOURCE_PRIORITY,
    BackendTarget,
    LocalePreference,
    OverrideAction,
    OverrideRecord,
    PreferenceSource,
    StorageKeys,
    StorageResult,
)
from .validators import sanitize_metadata, validate_confidence, validate_locale, validate_preference
from ..config import Settings, get_settings
from ..utils.storage_utils import current_timestamp

logger = logging.getLogger(__name__)

SNAPSHOT_CACHE_KEY = "preference:snapshot"
OVERRIDE_STATS_CACHE_KEY = "preference:override_stats"


def create_default_preference(timestamp: Optional[int] = None, locale: str = "en") -> LocalePreference:
    return LocalePreference(
        locale=locale,
        source=PreferenceSource.DEFAULT.value,
        confidence=0.5,
        timestamp=timestamp or current_timestamp(),
        metadata={},
    )


def get_source_priority(source: Any) -> int:
    key = source.value if isinstance(source, PreferenceSource) else source
    return SOURCE_PRIORITY.get(key, 0)


def effective_priority(preference: LocalePreference) -> int:
    """Override-marked preferences rank as user_override whatever their source field says."""
    if preference.is_override:
        return SOURCE_PRIORITY[PreferenceSource.USER_OVERRIDE.value]
    return get_source_priority(preference.source)


def compare_preferences(left: LocalePreference, right: LocalePreference) -> int:
    """
    Order two preferences for conflict resolution.

    Returns:
        Positive if left wins, negative if right wins, 0 if indistinguishable
    """
    left_key = (effective_priority(left), left.confidence, left.timestamp)
    right_key = (effective_priority(right), right.confidence, right.timestamp)
    if left_key == right_key:
        return 0
    return 1 if left_key > right_key else -1


class PreferenceStore:
    """CRUD and validation for the current preference and the user override."""

    def __init__(
        self,
        adapter: PersistenceAdapter,
        cache: Optional[TTLCache] = None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.adapter = adapter
        self.settings = settings or get_settings()
        self._clock = clock or current_timestamp
        self.cache = cache or TTLCache(self.settings.cache_ttl_ms, clock=self._clock)

    # ---- preference -------------------------------------------------------

    def validate(self, preference: Any) -> bool:
        try:
            validate_preference(preference, self.settings.supported_locales)
            return True
        except ValidationError as e:
            logger.debug(f"Invalid preference: {e}")
            return False

    def save(self, preference: Any) -> StorageResult:
        """
        Validate and persist a preference to both backends, replacing the current one.

        Args:
            preference: LocalePreference or mapping with the same fields

        Returns:
            ok(LocalePreference) or fail() with ValidationError / StorageUnavailableError
        """
        try:
            preference = validate_preference(preference, self.settings.supported_locales)
        except ValidationError as e:
            logger.warning(f"Rejected preference: {e}")
            return StorageResult.fail(e)

        payload = preference.to_dict()
        result = self.adapter.set(StorageKeys.LOCALE_PREFERENCE, payload, BackendTarget.BOTH)
        if not result.success:
            return result

        if not preference.is_override:
            fallback = self.adapter.set(StorageKeys.PREFERENCE_FALLBACK, payload, BackendTarget.LOCAL)
            if not fallback.success:
                logger.warning(f"Could not record fallback preference: {fallback.error}")

        self.cache.set_cached(SNAPSHOT_CACHE_KEY, payload)
        logger.info(f"Saved locale preference {preference.locale} ({payload['source']})")
        return StorageResult.ok(LocalePreference.from_dict(payload), source=result.source)

    def get(self) -> StorageResult:
        result = self.adapter.get_with_fallback(StorageKeys.LOCALE_PREFERENCE)
        if not result.success:
            return result
        if result.data is None:
            return StorageResult.fail(NotFoundError("No locale preference found"))
        try:
            preference = validate_preference(result.data, self.settings.supported_locales)
        except ValidationError as e:
            logger.warning(f"Stored preference is invalid: {e}")
            return StorageResult.fail(e, source=result.source)
        return StorageResult.ok(preference, source=result.source)

    def has_preference(self) -> bool:
        return self.get().success

    def update_confidence(self, confidence: float) -> StorageResult:
        try:
            validate_confidence(confidence)
        except ValidationError as e:
            return StorageResult.fail(e)

        current = self.get()
        if not current.success:
            return current
        preference = current.data
        return self.save(
            LocalePreference(
                locale=preference.locale,
                source=preference.source,
                confidence=confidence,
                timestamp=self._clock(),
                metadata=preference.metadata,
            )
        )

    def clear(self) -> StorageResult:
        result = self.adapter.remove(StorageKeys.LOCALE_PREFERENCE)
        self.cache.invalidate(SNAPSHOT_CACHE_KEY)
        return result

    def get_fallback_preference(self) -> Optional[LocalePreference]:
        """Most recent non-override preference, if one was ever saved."""
        result = self.adapter.get(StorageKeys.PREFERENCE_FALLBACK, BackendTarget.LOCAL)
        if not result.success or result.data is None:
            return None
        try:
            preference = validate_preference(result.data, self.settings.supported_locales)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid fallback preference: {e}")
            return None
        return None if preference.is_override else preference

    def get_preference_summary(self) -> Dict[str, Any]:
        result = self.get()
        if not result.success:
            return {"has_preference": False, "locale": None, "source": None, "confidence": None,
                    "age_ms": None, "is_override": False}
        preference = result.data
        return {
            "has_preference": True,
            "locale": preference.locale,
            "source": preference.to_dict()["source"],
            "confidence": preference.confidence,
            "age_ms": max(0, self._clock() - preference.timestamp),
            "is_override": preference.is_override,
        }

    # ---- override ---------------------------------------------------------

    def set_override(self, locale: str, metadata: Optional[Dict[str, Any]] = None) -> StorageResult:
        """
        Record a manual locale choice.

        Unsafe metadata entries are dropped, the preference is saved as a
        user choice with full confidence, the override key is written to
        both backends and a "set" entry is appended to the override log.
        """
        try:
            validate_locale(locale, self.settings.supported_locales)
        except ValidationError as e:
            return StorageResult.fail(e)

        safe_metadata = sanitize_metadata(metadata)
        preference = LocalePreference(
            locale=locale,
            source=PreferenceSource.USER.value,
            confidence=1.0,
            timestamp=self._clock(),
            metadata={**safe_metadata, "isOverride": True, "originalSource": "user_manual"},
        )
        saved = self.save(preference)
        if not saved.success:
            return saved

        written = self.adapter.set(StorageKeys.USER_LOCALE_OVERRIDE, locale, BackendTarget.BOTH)
        if not written.success:
            return written

        self.record_override_operation(locale, OverrideAction.SET, safe_metadata)
        logger.info(f"User override set to {locale}")
        return StorageResult.ok(locale, source=written.source)

    def get_override(self) -> StorageResult:
        result = self.adapter.get_with_fallback(StorageKeys.USER_LOCALE_OVERRIDE)
        if result.success and result.data is not None:
            if self.settings.is_supported_locale(result.data):
                return result
            logger.warning(f"Ignoring unsupported stored override {result.data!r}")

        preference = self.get()
        if preference.success and preference.data.is_override:
            return StorageResult.ok(preference.data.locale, source="preference")

        if not result.success:
            return result
        return StorageResult.fail(NotFoundError("No user override found"))

    def has_override(self) -> bool:
        return self.get_override().success

    def clear_override(self) -> StorageResult:
        """
        Remove the override from both backends.

        If the current preference is an override it is replaced by the most
        recent non-override preference, or the default preference when none
        was ever saved.
        """
        current_override = self.get_override()
        removed = self.adapter.remove(StorageKeys.USER_LOCALE_OVERRIDE, BackendTarget.BOTH)
        if not removed.success:
            return removed

        restored = None
        preference = self.get()
        if preference.success and preference.data.is_override:
            fallback = self.get_fallback_preference() or create_default_preference(
                locale=self.settings.default_locale
            )
            restored_preference = LocalePreference(
                locale=fallback.locale,
                source=fallback.source,
                confidence=fallback.confidence,
                timestamp=self._clock(),
                metadata={**fallback.metadata, "isOverride": False},
            )
            saved = self.save(restored_preference)
            if not saved.success:
                return saved
            restored = saved.data

        cleared_locale = current_override.data if current_override.success else None
        if cleared_locale:
            self.record_override_operation(cleared_locale, OverrideAction.CLEAR)
        logger.info(f"User override cleared ({cleared_locale or 'none'})")
        return StorageResult.ok({"cleared": cleared_locale, "restored": restored})

    # ---- override log -----------------------------------------------------

    def _load_override_log(self) -> List[OverrideRecord]:
        result = self.adapter.get(StorageKeys.OVERRIDE_HISTORY, BackendTarget.LOCAL)
        if not result.success or not isinstance(result.data, list):
            return []
        records = []
        for item in result.data:
            if isinstance(item, dict):
                records.append(OverrideRecord.from_dict(item))
        return records

    def record_override_operation(
        self,
        locale: str,
        action: OverrideAction,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> StorageResult:
        records = self._load_override_log()
        records.append(
            OverrideRecord(locale=locale, timestamp=self._clock(), action=OverrideAction(action).value,
                           metadata=dict(metadata or {}))
        )
        records = records[-self.settings.max_override_history:]
        self.cache.invalidate(OVERRIDE_STATS_CACHE_KEY)
        return self.adapter.set(
            StorageKeys.OVERRIDE_HISTORY, [record.to_dict() for record in records], BackendTarget.LOCAL
        )

    def get_override_history(self) -> List[OverrideRecord]:
        """Override operations, newest first."""
        return sorted(self._load_override_log(), key=lambda record: record.timestamp, reverse=True)

    def clear_override_history(self) -> StorageResult:
        self.cache.invalidate(OVERRIDE_STATS_CACHE_KEY)
        return self.adapter.remove(StorageKeys.OVERRIDE_HISTORY, BackendTarget.LOCAL)

    def get_override_stats(self) -> Dict[str, Any]:
        cached = self.cache.get_cached(OVERRIDE_STATS_CACHE_KEY)
        if cached is not None:
            return cached

        history = self.get_override_history()
        sets = [record for record in history if record.action == OverrideAction.SET.value]
        frequency = Counter(record.locale for record in sets)
        current = self.get_override()

        stats = {
            "total_overrides": len(sets),
            "current_override": current.data if current.success else None,
            "last_override_time": sets[0].timestamp if sets else None,
            "most_used_locale": frequency.most_common(1)[0][0] if frequency else None,
            "override_frequency": dict(frequency.most_common()),
        }
        self.cache.set_cached(OVERRIDE_STATS_CACHE_KEY, stats)
        return stats

    def export_override_data(self) -> Dict[str, Any]:
        current = self.get_override()
        return {
            "override": current.data if current.success else None,
            "history": [record.to_dict() for record in self.get_override_history()],
        }
