"""
Derived statistics over the persisted locale data: storage usage, usage
patterns, performance read back from the event history, quota estimate
and a scored health check.
"""

import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from .cache import TTLCache
from .consistency import ConsistencyEngine
from .events import EventBus
from .history import DetectionHistoryStore
from .persistence import PersistenceAdapter
from .preference import PreferenceStore
from .types import StorageEventType, StorageKeys
from ..config import DAY_MS, Settings, get_settings
from ..utils.storage_utils import current_timestamp, format_byte_size

logger = logging.getLogger(__name__)

CACHE_PREFIX = "analytics:"
FRESHNESS_WINDOW_MS = 7 * DAY_MS

HEALTHY_THRESHOLD = 0.8
WARNING_THRESHOLD = 0.5
QUOTA_WARNING_PERCENT = 80


class AnalyticsManager:
    """Read-only reporting over the stores, the event bus and the cache."""

    def __init__(
        self,
        adapter: PersistenceAdapter,
        preferences: PreferenceStore,
        history: DetectionHistoryStore,
        consistency: ConsistencyEngine,
        event_bus: EventBus,
        cache: TTLCache,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.adapter = adapter
        self.preferences = preferences
        self.history = history
        self.consistency = consistency
        self.event_bus = event_bus
        self.cache = cache
        self.settings = settings or get_settings()
        self._clock = clock or current_timestamp

    def invalidate(self) -> int:
        return self.cache.invalidate_pattern(CACHE_PREFIX)

    def get_storage_stats(self) -> Dict[str, Any]:
        cache_key = f"{CACHE_PREFIX}storage_stats"
        cached = self.cache.get_cached(cache_key)
        if cached is not None:
            return cached

        preference = self.preferences.get()
        override = self.preferences.get_override()
        records = self.history.get_history()

        sizes = {key: self.adapter.stored_size(key) for key in StorageKeys.all()}
        if override.success:
            current_locale = override.data
        elif preference.success:
            current_locale = preference.data.locale
        else:
            current_locale = None

        stats = {
            "has_preference": preference.success,
            "has_override": override.success,
            "current_locale": current_locale,
            "detection_count": len(records),
            "last_detection": records[-1].to_dict() if records else None,
            "storage_size": {**sizes, "total": sum(sizes.values())},
        }
        self.cache.set_cached(cache_key, stats)
        return stats

    def get_usage_patterns(self) -> Dict[str, Any]:
        cache_key = f"{CACHE_PREFIX}usage_patterns"
        cached = self.cache.get_cached(cache_key)
        if cached is not None:
            return cached

        locale_stats = self.history.get_locale_group_stats()
        patterns = {
            "locale_distribution": {row["locale"]: row["count"] for row in locale_stats},
            "source_distribution": {row["source"]: row["count"] for row in self.history.get_source_group_stats()},
            "most_common_locale": locale_stats[0]["locale"] if locale_stats else None,
            "override_stats": self.preferences.get_override_stats(),
            "history_summary": self.history.get_summary(),
        }
        self.cache.set_cached(cache_key, patterns)
        return patterns

    def get_performance_metrics(self) -> Dict[str, Any]:
        """Operation and error counts read back from the event history, plus cache statistics."""
        events = self.event_bus.get_event_history()
        by_type = Counter(event.type for event in events)
        errors = by_type.get(StorageEventType.ERROR.value, 0)
        total = len(events)
        return {
            "total_operations": total,
            "error_count": errors,
            "error_rate": errors / total if total else 0.0,
            "events_by_type": dict(by_type.most_common()),
            "last_event_time": events[0].timestamp if events else None,
            "cache": self.cache.get_stats(),
        }

    def estimate_quota(self) -> Dict[str, Any]:
        used = self.adapter.local_usage()
        if used is None:
            used = sum(self.adapter.stored_size(key) for key in StorageKeys.all())
        total = self.adapter.local_quota() or self.settings.local_quota_bytes
        return {
            "used": used,
            "available": max(0, total - used),
            "total": total,
            "usage_percentage": used / total * 100 if total else 0.0,
        }

    def _freshness(self) -> Optional[float]:
        timestamps = []
        preference = self.preferences.get()
        if preference.success:
            timestamps.append(preference.data.timestamp)
        recent = self.history.get_recent(1)
        if recent:
            timestamps.append(recent[0].timestamp)
        if not timestamps:
            return None
        age = max(0, self._clock() - max(timestamps))
        return max(0.0, 1.0 - age / FRESHNESS_WINDOW_MS)

    def perform_health_check(self) -> Dict[str, Any]:
        """
        Probe both backends and score the overall state of the store.

        Returns:
            Dict with status (healthy/warning/error), score, checks, issues and recommendations
        """
        score = 1.0
        issues: List[str] = []
        recommendations: List[str] = []

        local_ok = self.adapter.local.is_available()
        cookie_ok = self.adapter.cookies.is_available()
        if not local_ok:
            score -= 0.4
            issues.append("Local storage is unavailable")
            recommendations.append("Check local storage permissions and free space")
        if not cookie_ok:
            score -= 0.2
            issues.append("Cookie storage is unavailable")
            recommendations.append("Enable cookies to keep a backup copy of the preference")

        freshness = self._freshness()
        if freshness is not None and freshness < 0.5:
            score -= 0.2
            issues.append("Locale data is stale")
            recommendations.append("Re-run locale detection to refresh stored data")

        quota = self.estimate_quota() if local_ok else None
        if quota is not None and quota["usage_percentage"] > QUOTA_WARNING_PERCENT:
            score -= 0.1
            issues.append(f"Local storage usage is high ({format_byte_size(quota['used'])})")
            recommendations.append("Run maintenance to clean up old detections and backups")

        consistency = self.consistency.check_data_consistency()
        if not consistency["is_consistent"]:
            score -= 0.2
            issues.extend(consistency["issues"])
            recommendations.extend(consistency["recommendations"])

        score = round(max(0.0, score), 2)
        if score >= HEALTHY_THRESHOLD:
            status = "healthy"
        elif score >= WARNING_THRESHOLD:
            status = "warning"
        else:
            status = "error"

        if status != "healthy":
            logger.warning(f"Storage health {status} (score {score}): {len(issues)} issue(s)")
        return {
            "status": status,
            "score": score,
            "checks": {
                "local_storage": local_ok,
                "cookie_storage": cookie_ok,
                "data_freshness": freshness,
                "quota": quota,
                "consistent": consistency["is_consistent"],
            },
            "issues": issues,
            "recommendations": list(dict.fromkeys(recommendations)),
            "timestamp": self._clock(),
        }
