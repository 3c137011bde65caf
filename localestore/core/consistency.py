"""
Consistency checking and repair across the two storage backends and the
preference snapshot held in the cache.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cache import TTLCache
from .errors import ValidationError
from .events import EventBus
from .persistence import PersistenceAdapter
from .preference import SNAPSHOT_CACHE_KEY, compare_preferences
from .types import BackendTarget, LocalePreference, StorageEventType, StorageKeys, StorageResult
from .validators import validate_locale, validate_preference
from ..config import Settings, get_settings
from ..utils.object_utils import compare_objects
from ..utils.storage_utils import current_timestamp

logger = logging.getLogger(__name__)

BACKEND_LABELS = {
    BackendTarget.LOCAL.value: "local storage",
    BackendTarget.COOKIE.value: "cookie storage",
}


class _Reading:
    """One backend's view of a key: raw value, validated value and any error."""

    def __init__(self, target: BackendTarget, raw: Any = None, value: Any = None, error: Optional[str] = None):
        self.target = target
        self.raw = raw
        self.value = value
        self.error = error

    @property
    def label(self) -> str:
        return BACKEND_LABELS[self.target.value]

    @property
    def present(self) -> bool:
        return self.raw is not None

    @property
    def valid(self) -> bool:
        return self.value is not None


class ConsistencyEngine:
    """Compares and reconciles preference/override values held in both backends."""

    def __init__(
        self,
        adapter: PersistenceAdapter,
        cache: TTLCache,
        settings: Optional[Settings] = None,
        event_bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.adapter = adapter
        self.cache = cache
        self.settings = settings or get_settings()
        self.event_bus = event_bus
        self._clock = clock or current_timestamp

    # ---- readings ---------------------------------------------------------

    def _read(self, key: str, parse: Callable[[Any], Any]) -> Tuple[_Reading, _Reading]:
        readings = []
        for target, result in zip((BackendTarget.LOCAL, BackendTarget.COOKIE), self.adapter.read_both(key)):
            if not result.success:
                readings.append(_Reading(target, error=result.error))
                continue
            if result.data is None:
                readings.append(_Reading(target))
                continue
            try:
                readings.append(_Reading(target, raw=result.data, value=parse(result.data)))
            except ValidationError as e:
                readings.append(_Reading(target, raw=result.data, error=str(e)))
        return readings[0], readings[1]

    def _read_preferences(self) -> Tuple[_Reading, _Reading]:
        return self._read(
            StorageKeys.LOCALE_PREFERENCE,
            lambda raw: validate_preference(raw, self.settings.supported_locales),
        )

    def _read_overrides(self) -> Tuple[_Reading, _Reading]:
        def parse(raw):
            validate_locale(raw, self.settings.supported_locales)
            return raw

        return self._read(StorageKeys.USER_LOCALE_OVERRIDE, parse)

    def _compare_pair(self, name: str, local: _Reading, cookie: _Reading, issues: List[str],
                      recommendations: List[str]):
        for reading in (local, cookie):
            if reading.error:
                issues.append(f"Invalid or unreadable {name} in {reading.label}: {reading.error}")

        if local.present and not cookie.present and not cookie.error:
            issues.append(f"{name.capitalize()} present in local storage but missing in cookie storage")
        elif cookie.present and not local.present and not local.error:
            issues.append(f"{name.capitalize()} present in cookie storage but missing in local storage")
        elif local.valid and cookie.valid and not compare_objects(local.raw, cookie.raw):
            issues.append(f"{name.capitalize()} differs between local storage and cookie storage")

        if issues:
            recommendations.append(f"Run fix_data_inconsistency() to resynchronize the {name}")

    # ---- check ------------------------------------------------------------

    def check_data_consistency(self) -> Dict[str, Any]:
        """
        Compare preference and override values across backends and the cache.

        Returns:
            Dict with is_consistent, issues and recommendations
        """
        issues: List[str] = []
        recommendations: List[str] = []

        pref_issues: List[str] = []
        pref_local, pref_cookie = self._read_preferences()
        self._compare_pair("preference", pref_local, pref_cookie, pref_issues, recommendations)
        issues.extend(pref_issues)

        override_issues: List[str] = []
        override_local, override_cookie = self._read_overrides()
        self._compare_pair("override", override_local, override_cookie, override_issues, recommendations)
        issues.extend(override_issues)

        snapshot = self.cache.peek(SNAPSHOT_CACHE_KEY)
        if snapshot is not None and pref_local.valid and not compare_objects(snapshot, pref_local.raw):
            issues.append("Cached preference snapshot is stale")
            recommendations.append("Invalidate the preference cache")

        if issues:
            logger.warning(f"Storage consistency check found {len(issues)} issue(s)")
        return {
            "is_consistent": not issues,
            "issues": issues,
            "recommendations": list(dict.fromkeys(recommendations)),
        }

    # ---- repair -----------------------------------------------------------

    def _write(self, key: str, value: Any, reading: _Reading, actions: List[str], name: str):
        result = self.adapter.set(key, value, reading.target)
        if result.success:
            actions.append(f"Wrote {name} to {reading.label}")
        else:
            actions.append(f"Failed to write {name} to {reading.label}: {result.error}")

    def _remove(self, key: str, reading: _Reading, actions: List[str], name: str):
        result = self.adapter.remove(key, reading.target)
        if result.success:
            actions.append(f"Removed invalid {name} from {reading.label}")
        else:
            actions.append(f"Failed to remove {name} from {reading.label}: {result.error}")

    def _pick_preference(self, local: _Reading, cookie: _Reading) -> Optional[LocalePreference]:
        candidates = [reading.value for reading in (local, cookie) if reading.valid]
        if not candidates:
            return None
        winner = candidates[0]
        for candidate in candidates[1:]:
            if compare_preferences(candidate, winner) > 0:
                winner = candidate
        return winner

    def _pick_override(self, local: _Reading, cookie: _Reading,
                       preference: Optional[LocalePreference]) -> Optional[str]:
        if local.valid and cookie.valid and local.value != cookie.value:
            if preference is not None and preference.is_override and preference.locale in (local.value, cookie.value):
                return preference.locale
            return local.value
        for reading in (local, cookie):
            if reading.valid:
                return reading.value
        return None

    def fix_data_inconsistency(self) -> Dict[str, Any]:
        """
        Rewrite both backends to the winning value.

        The preference winner follows source priority
        (user_override > user > auto > default), then confidence, then recency.

        Returns:
            Dict with fixed (a re-check reports consistent) and the actions taken
        """
        actions: List[str] = []

        pref_local, pref_cookie = self._read_preferences()
        winner = self._pick_preference(pref_local, pref_cookie)
        for reading in (pref_local, pref_cookie):
            if winner is not None:
                payload = winner.to_dict()
                if not compare_objects(reading.raw, payload):
                    self._write(StorageKeys.LOCALE_PREFERENCE, payload, reading, actions, "preference")
            elif reading.present:
                self._remove(StorageKeys.LOCALE_PREFERENCE, reading, actions, "preference")

        override_local, override_cookie = self._read_overrides()
        override = self._pick_override(override_local, override_cookie, winner)
        for reading in (override_local, override_cookie):
            if override is not None:
                if reading.raw != override:
                    self._write(StorageKeys.USER_LOCALE_OVERRIDE, override, reading, actions, "override")
            elif reading.present:
                self._remove(StorageKeys.USER_LOCALE_OVERRIDE, reading, actions, "override")

        snapshot = self.cache.peek(SNAPSHOT_CACHE_KEY)
        if snapshot is not None and (winner is None or not compare_objects(snapshot, winner.to_dict())):
            self.cache.invalidate(SNAPSHOT_CACHE_KEY)
            actions.append("Invalidated stale preference snapshot")

        fixed = self.check_data_consistency()["is_consistent"]
        logger.info(f"Consistency repair {'succeeded' if fixed else 'incomplete'}: {len(actions)} action(s)")
        return {"fixed": fixed, "actions": actions}

    def snapshot(self) -> Dict[str, Any]:
        pref_local, pref_cookie = self._read_preferences()
        override_local, override_cookie = self._read_overrides()
        return {
            "local": {"preference": pref_local.raw, "override": override_local.raw},
            "cookie": {"preference": pref_cookie.raw, "override": override_cookie.raw},
        }

    def sync_preference_data(self) -> StorageResult:
        """
        One-shot reconciliation with before/after snapshots.

        Emits sync_completed, or error when the backends still disagree afterwards.
        """
        before = self.snapshot()
        repair = self.fix_data_inconsistency()
        after = self.snapshot()
        data = {"before": before, "after": after, "actions": repair["actions"], "fixed": repair["fixed"]}

        if self.event_bus is not None:
            if repair["fixed"]:
                self.event_bus.emit(StorageEventType.SYNC_COMPLETED, "consistency", data)
            else:
                self.event_bus.emit(StorageEventType.ERROR, "consistency", {
                    "operation": StorageEventType.SYNC_COMPLETED.value,
                    "error": "Backends are still inconsistent after sync",
                    "error_type": "ConsistencyError",
                    **data,
                })

        if not repair["fixed"]:
            return StorageResult(success=False, data=data, error="Backends are still inconsistent after sync",
                                 error_type="ConsistencyError", timestamp=self._clock())
        return StorageResult.ok(data)
