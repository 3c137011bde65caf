"""
Maintenance subsystem: versioned export/import, checksummed backups,
integrity validation and housekeeping.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from .consistency import ConsistencyEngine
from .errors import NotFoundError, QuotaExceededError, ValidationError, VersionMismatchError
from .history import DetectionHistoryStore
from .persistence import PersistenceAdapter
from .preference import PreferenceStore
from .types import (
    BACKUP_KEY_PATTERN,
    BACKUP_KEY_PREFIX,
    SCHEMA_VERSION,
    BackendTarget,
    StorageKeys,
    StorageResult,
)
from .validators import (
    validate_export_version,
    validate_history,
    validate_locale,
    validate_override_record,
    validate_preference,
)
from ..config import Settings, get_settings
from ..utils.storage_utils import current_timestamp, estimate_storage_size, generate_checksum

logger = logging.getLogger(__name__)

EXPORTED_BY = "localestore"
SECTIONS = ("preference", "override", "history")

DEFAULT_MAINTENANCE_OPTIONS = {
    "cleanup_expired": True,
    "max_detection_age": None,
    "cleanup_duplicates": True,
    "validate_data": True,
    "fix_sync_issues": True,
    "compact_storage": True,
    "cleanup_backups": True,
    "max_backups": None,
}


def _sections(package: Dict[str, Any]) -> Dict[str, Any]:
    return {name: package[name] for name in SECTIONS if package.get(name) is not None}


class MaintenanceManager:
    """Export/import, backups and storage housekeeping."""

    def __init__(
        self,
        adapter: PersistenceAdapter,
        preferences: PreferenceStore,
        history: DetectionHistoryStore,
        consistency: ConsistencyEngine,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], int]] = None,
        user_agent: str = "localestore",
    ):
        self.adapter = adapter
        self.preferences = preferences
        self.history = history
        self.consistency = consistency
        self.settings = settings or get_settings()
        self._clock = clock or current_timestamp
        self.user_agent = user_agent

    # ---- export / import --------------------------------------------------

    def _collect_sections(self) -> Dict[str, Any]:
        sections: Dict[str, Any] = {}

        preference = self.preferences.get()
        if preference.success:
            sections["preference"] = preference.data.to_dict()

        override = self.adapter.get_with_fallback(StorageKeys.USER_LOCALE_OVERRIDE)
        if override.success and self.settings.is_supported_locale(override.data):
            sections["override"] = override.data

        records = self.history.get_history()
        if records:
            document = self.history.get_history_document() or {}
            sections["history"] = {
                "detections": [record.to_dict() for record in records],
                "lastUpdated": document.get("lastUpdated", self._clock()),
            }
        return sections

    def export_data(self) -> StorageResult:
        """
        Snapshot all persisted state into a versioned, checksummed package.

        Returns:
            ok(package) where package carries version, timestamp, metadata and the present sections
        """
        sections = self._collect_sections()
        package = {
            "version": SCHEMA_VERSION,
            "timestamp": self._clock(),
            "metadata": {
                "userAgent": self.user_agent,
                "exportedBy": EXPORTED_BY,
                "dataIntegrity": generate_checksum(sections),
            },
            **sections,
        }
        logger.info(f"Exported locale data ({', '.join(sections) or 'empty'})")
        return StorageResult.ok(package)

    def export_as_json(self) -> StorageResult:
        result = self.export_data()
        if not result.success:
            return result
        return StorageResult.ok(json.dumps(result.data, indent=2, ensure_ascii=False))

    def _check_quota(self, sections: Dict[str, Any]):
        remaining = self.adapter.remaining_local_bytes()
        if remaining is None:
            return
        replaced = sum(
            self.adapter.stored_size(key)
            for key in (StorageKeys.LOCALE_PREFERENCE, StorageKeys.USER_LOCALE_OVERRIDE,
                        StorageKeys.LOCALE_DETECTION_HISTORY)
        )
        needed = estimate_storage_size(sections)
        if needed > remaining + replaced:
            raise QuotaExceededError(f"import needs {needed} bytes, only {remaining + replaced} available")

    def import_data(self, package: Any) -> StorageResult:
        """
        Import a package produced by export_data().

        Version, checksum and quota problems reject the whole package before
        any write. Otherwise each present section is validated and written
        independently, and section errors are accumulated.

        Returns:
            StorageResult whose data is {success, imported_items, errors}
        """
        try:
            validate_export_version(package)
            sections = _sections(package)
            expected = (package.get("metadata") or {}).get("dataIntegrity")
            if expected is not None and expected != generate_checksum(sections):
                raise ValidationError("data integrity checksum mismatch")
            self._check_quota(sections)
        except (ValidationError, VersionMismatchError, QuotaExceededError) as e:
            logger.warning(f"Import rejected: {e}")
            return StorageResult.fail(e, data={"success": False, "imported_items": 0, "errors": [str(e)]})

        imported = 0
        errors: List[str] = []

        if "preference" in sections:
            try:
                preference = validate_preference(sections["preference"], self.settings.supported_locales)
                saved = self.preferences.save(preference)
                if saved.success:
                    imported += 1
                else:
                    errors.append(f"preference: {saved.error}")
            except ValidationError as e:
                errors.append(f"preference: {e}")

        if "override" in sections:
            try:
                validate_locale(sections["override"], self.settings.supported_locales)
                written = self.adapter.set(StorageKeys.USER_LOCALE_OVERRIDE, sections["override"], BackendTarget.BOTH)
                if written.success:
                    imported += 1
                else:
                    errors.append(f"override: {written.error}")
            except ValidationError as e:
                errors.append(f"override: {e}")

        if "history" in sections:
            try:
                records = validate_history(sections["history"], self.settings.supported_locales)
                replaced = self.history.replace(records)
                if replaced.success:
                    imported += 1
                else:
                    errors.append(f"history: {replaced.error}")
            except ValidationError as e:
                errors.append(f"history: {e}")

        data = {"success": not errors, "imported_items": imported, "errors": errors}
        logger.info(f"Imported {imported} section(s) with {len(errors)} error(s)")
        if errors:
            return StorageResult(success=False, data=data, error="; ".join(errors),
                                 error_type=ValidationError.__name__, timestamp=self._clock())
        return StorageResult.ok(data)

    def import_from_json(self, text: str) -> StorageResult:
        try:
            package = json.loads(text)
        except (TypeError, ValueError) as e:
            error = ValidationError(f"invalid export JSON: {e}")
            return StorageResult.fail(error, data={"success": False, "imported_items": 0, "errors": [str(error)]})
        return self.import_data(package)

    # ---- backups ----------------------------------------------------------

    def create_backup(self) -> StorageResult:
        exported = self.export_data()
        if not exported.success:
            return exported
        package = exported.data

        timestamp = package["timestamp"]
        key = f"{BACKUP_KEY_PREFIX}{timestamp}"
        while self.adapter.get(key, BackendTarget.LOCAL).data is not None:
            timestamp += 1
            key = f"{BACKUP_KEY_PREFIX}{timestamp}"

        written = self.adapter.set(key, package, BackendTarget.LOCAL)
        if not written.success:
            return written
        logger.info(f"Created backup {key}")
        return StorageResult.ok({"key": key, "timestamp": timestamp, "size": estimate_storage_size(package)})

    def list_backups(self) -> List[Dict[str, Any]]:
        """Stored backups, newest first. Malformed entries are listed with is_valid False."""
        keys = self.adapter.keys(BackendTarget.LOCAL)
        if not keys.success:
            logger.error(f"Cannot list backups: {keys.error}")
            return []

        backups = []
        for key in keys.data:
            if not BACKUP_KEY_PATTERN.fullmatch(key):
                continue
            key_timestamp = int(key[len(BACKUP_KEY_PREFIX):])
            result = self.adapter.get(key, BackendTarget.LOCAL)
            package = result.data if result.success else None
            is_valid = (
                isinstance(package, dict)
                and package.get("version") == SCHEMA_VERSION
                and isinstance(package.get("timestamp"), int)
            )
            if not is_valid:
                logger.warning(f"Backup {key} is malformed")
            backups.append({
                "key": key,
                "timestamp": key_timestamp,
                "created_at": package["timestamp"] if is_valid else None,
                "version": package.get("version") if isinstance(package, dict) else None,
                "size": self.adapter.stored_size(key),
                "is_valid": is_valid,
            })

        backups.sort(key=lambda backup: backup["timestamp"], reverse=True)
        return backups

    def restore_backup(self, key: str) -> StorageResult:
        if not isinstance(key, str) or not BACKUP_KEY_PATTERN.fullmatch(key):
            return StorageResult.fail(ValidationError(f"invalid backup key {key!r}"))
        result = self.adapter.get(key, BackendTarget.LOCAL)
        if not result.success:
            return result
        if result.data is None:
            return StorageResult.fail(NotFoundError(f"backup {key} not found"))
        logger.info(f"Restoring backup {key}")
        return self.import_data(result.data)

    def delete_backup(self, key: str) -> StorageResult:
        if not isinstance(key, str) or not BACKUP_KEY_PATTERN.fullmatch(key):
            return StorageResult.fail(ValidationError(f"invalid backup key {key!r}"))
        existing = self.adapter.get(key, BackendTarget.LOCAL)
        if existing.success and existing.data is None:
            return StorageResult.fail(NotFoundError(f"backup {key} not found"))
        removed = self.adapter.remove(key, BackendTarget.LOCAL)
        if removed.success:
            logger.info(f"Deleted backup {key}")
            return StorageResult.ok(key)
        return removed

    def cleanup_old_backups(self, max_count: int = 5) -> StorageResult:
        """Delete the oldest backups beyond max_count; data is the number deleted."""
        backups = self.list_backups()
        deleted = 0
        for backup in backups[max(0, max_count):]:
            if self.delete_backup(backup["key"]).success:
                deleted += 1
        if deleted:
            logger.info(f"Cleaned up {deleted} old backups")
        return StorageResult.ok(deleted)

    # ---- housekeeping -----------------------------------------------------

    def clear_all(self) -> StorageResult:
        removed = []
        errors = []
        for key in StorageKeys.all():
            result = self.adapter.remove(key, BackendTarget.BOTH)
            if result.success:
                removed.append(key)
            else:
                errors.append(f"{key}: {result.error}")
        self.preferences.cache.invalidate()
        self.history.cache.invalidate()

        if errors:
            return StorageResult(success=False, data={"removed_keys": removed}, error="; ".join(errors),
                                 error_type="StorageUnavailableError", timestamp=self._clock())
        logger.info("Cleared all locale storage data")
        return StorageResult.ok({"removed_keys": removed})

    def cleanup_expired_detections(self, max_age_ms: Optional[int] = None) -> StorageResult:
        if max_age_ms is None:
            max_age_ms = self.settings.detection_max_age_ms
        return self.history.cleanup_expired(max_age_ms)

    def compact_storage(self) -> StorageResult:
        """Re-serialize every stored key in its compact form."""
        compacted = 0
        for key in StorageKeys.all():
            result = self.adapter.get(key, BackendTarget.LOCAL)
            if result.success and result.data is not None:
                if self.adapter.set(key, result.data, BackendTarget.LOCAL).success:
                    compacted += 1
        return StorageResult.ok(compacted)

    def validate_storage_integrity(self) -> StorageResult:
        invalid_keys: List[str] = []
        issues: List[str] = []
        locales = self.settings.supported_locales

        def check(key: str, target: BackendTarget, validator: Callable[[Any], Any]):
            result = self.adapter.get(key, target)
            if not result.success:
                invalid_keys.append(f"{target.value}:{key}")
                issues.append(f"{key} unreadable in {target.value}: {result.error}")
                return
            if result.data is None:
                return
            try:
                validator(result.data)
            except ValidationError as e:
                invalid_keys.append(f"{target.value}:{key}")
                issues.append(f"{key} invalid in {target.value}: {e}")

        def check_override_log(data):
            if not isinstance(data, list):
                raise ValidationError("override history must be a list")
            for item in data:
                validate_override_record(item, locales)

        for target in (BackendTarget.LOCAL, BackendTarget.COOKIE):
            check(StorageKeys.LOCALE_PREFERENCE, target, lambda data: validate_preference(data, locales))
            check(StorageKeys.USER_LOCALE_OVERRIDE, target, lambda data: validate_locale(data, locales))
        check(StorageKeys.LOCALE_DETECTION_HISTORY, BackendTarget.LOCAL, lambda data: validate_history(data, locales))
        check(StorageKeys.OVERRIDE_HISTORY, BackendTarget.LOCAL, check_override_log)

        for backup in self.list_backups():
            if not backup["is_valid"]:
                invalid_keys.append(f"local:{backup['key']}")
                issues.append(f"backup {backup['key']} is malformed")

        consistency = self.consistency.check_data_consistency()
        sync_issues = consistency["issues"]
        is_valid = not invalid_keys and not sync_issues

        data = {
            "is_valid": is_valid,
            "invalid_keys": invalid_keys,
            "issues": issues,
            "sync_issues": sync_issues,
        }
        if not is_valid:
            return StorageResult(success=False, data=data, error="Storage integrity issues found",
                                 error_type=ValidationError.__name__, timestamp=self._clock())
        return StorageResult.ok(data)

    def perform_maintenance(self, options: Optional[Dict[str, Any]] = None) -> StorageResult:
        """
        Run the selected housekeeping operations.

        Args:
            options: Flags from DEFAULT_MAINTENANCE_OPTIONS; unspecified flags default to enabled

        Returns:
            StorageResult whose data is {total_operations, successful_operations, results}
        """
        opts = {**DEFAULT_MAINTENANCE_OPTIONS, **(options or {})}
        results: List[str] = []
        total = 0
        succeeded = 0

        def run(label: str, operation: Callable[[], StorageResult], describe: Callable[[Any], str]):
            nonlocal total, succeeded
            total += 1
            outcome = operation()
            if outcome.success:
                succeeded += 1
                results.append(describe(outcome.data))
            else:
                results.append(f"{label} failed: {outcome.error}")

        if opts["cleanup_expired"]:
            run("Expired detection cleanup",
                lambda: self.cleanup_expired_detections(opts["max_detection_age"]),
                lambda removed: f"Removed {removed} expired detections")
        if opts["cleanup_duplicates"]:
            run("Duplicate detection cleanup", self.history.cleanup_duplicates,
                lambda removed: f"Removed {removed} duplicate detections")
        if opts["fix_sync_issues"]:
            run("Sync repair", self._fix_sync,
                lambda data: f"Sync repair applied {len(data['actions'])} action(s)")
        if opts["validate_data"]:
            run("Integrity validation", self.validate_storage_integrity,
                lambda data: "Storage integrity verified")
        if opts["compact_storage"]:
            run("Storage compaction", self.compact_storage,
                lambda compacted: f"Compacted {compacted} stored items")
        if opts["cleanup_backups"]:
            max_backups = opts["max_backups"] if opts["max_backups"] is not None else self.settings.max_backups
            run("Backup cleanup", lambda: self.cleanup_old_backups(max_backups),
                lambda deleted: f"Deleted {deleted} old backups")

        data = {"total_operations": total, "successful_operations": succeeded, "results": results}
        logger.info(f"Maintenance completed: {succeeded}/{total} operations succeeded")
        if succeeded != total:
            return StorageResult(success=False, data=data, error=f"{total - succeeded} maintenance operation(s) failed",
                                 timestamp=self._clock())
        return StorageResult.ok(data)

    def _fix_sync(self) -> StorageResult:
        repair = self.consistency.fix_data_inconsistency()
        if repair["fixed"]:
            return StorageResult.ok(repair)
        return StorageResult(success=False, data=repair, error="Backends are still inconsistent",
                             error_type="ConsistencyError", timestamp=self._clock())

    def get_maintenance_recommendations(self) -> Dict[str, Any]:
        recommendations: List[str] = []
        priority = "low"

        records = self.history.get_history()
        cutoff = self._clock() - self.settings.detection_max_age_ms
        expired = sum(1 for record in records if record.timestamp <= cutoff)
        duplicates = len(records) - len({(r.locale, r.source, r.timestamp, r.confidence) for r in records})
        if expired:
            recommendations.append(f"Clean up {expired} expired detection records")
            priority = "medium"
        if duplicates:
            recommendations.append(f"Clean up {duplicates} duplicate detection records")
            priority = "medium"

        integrity = self.validate_storage_integrity()
        if integrity.data["invalid_keys"]:
            recommendations.append(f"Repair {len(integrity.data['invalid_keys'])} invalid stored item(s)")
            priority = "high"
        if integrity.data["sync_issues"]:
            recommendations.append(f"Fix {len(integrity.data['sync_issues'])} sync issue(s)")
            if priority == "low":
                priority = "medium"

        backup_count = len(self.list_backups())
        if backup_count > self.settings.max_backups:
            recommendations.append(f"Remove {backup_count - self.settings.max_backups} old backup(s)")

        if not recommendations:
            recommendations.append("Storage is healthy; no maintenance needed")
        return {"recommendations": recommendations, "priority": priority}
