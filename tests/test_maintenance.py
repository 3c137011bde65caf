"""Tests for export/import, backups and maintenance runs."""

import json

import pytest

from conftest import T0, make_detection, make_preference
from localestore.core.backends import MemoryBackend
from localestore.core.manager import LocaleStorageManager
from localestore.core.types import SCHEMA_VERSION, StorageKeys


def _stored_keys(manager):
    return sorted(manager.adapter.keys().data)


def test_export_package_shape(manager):
    manager.save_user_preference(make_preference())
    package = manager.export_data().data

    assert package["version"] == SCHEMA_VERSION
    assert package["timestamp"] == T0
    assert package["metadata"]["exportedBy"] == "localestore"
    assert len(package["metadata"]["dataIntegrity"]) == 16
    assert package["preference"]["locale"] == "zh"
    assert "override" not in package
    assert "history" not in package


def test_round_trip_empty_store(manager):
    package = manager.export_data().data
    result = manager.import_data(package)
    assert result.success
    assert result.data == {"success": True, "imported_items": 0, "errors": []}


def test_round_trip_preference_only(manager):
    manager.save_user_preference(make_preference())
    original = manager.get_user_preference()
    package = manager.export_data().data

    manager.clear_all()
    assert manager.get_user_preference() is None

    result = manager.import_data(package)
    assert result.success
    assert result.data["imported_items"] == 1
    assert manager.get_user_preference() == original


def test_round_trip_all_sections(manager, clock):
    manager.save_user_preference(make_preference(locale="en", source="auto", confidence=0.6))
    manager.add_detection_record(make_detection("en", "browser", 0.6, T0))
    clock.advance(100)
    manager.set_user_override("zh")
    preference = manager.get_user_preference()

    package = manager.export_as_json().data
    manager.clear_all()

    result = manager.import_from_json(package)
    assert result.success
    assert result.data["imported_items"] == 3
    assert manager.get_user_preference() == preference
    assert manager.get_user_override() == "zh"
    assert len(manager.get_detection_history()) == 1


def test_newer_version_is_rejected_without_writes(manager):
    package = {
        "version": "2.0.0",
        "timestamp": T0,
        "metadata": {},
        "preference": make_preference(),
        "override": "zh",
    }
    result = manager.import_data(package)
    assert not result.success
    assert result.error_type == "VersionMismatchError"
    assert result.data["imported_items"] == 0
    assert _stored_keys(manager) == []


def test_checksum_mismatch_is_rejected_without_writes(manager):
    manager.save_user_preference(make_preference())
    package = manager.export_data().data
    manager.clear_all()

    package["preference"]["locale"] = "en"
    result = manager.import_data(package)
    assert not result.success
    assert result.error_type == "ValidationError"
    assert _stored_keys(manager) == []


def test_quota_is_checked_before_writing(settings, cookie_backend, clock):
    small = MemoryBackend(quota_bytes=600, name="local")
    with LocaleStorageManager(settings, small, cookie_backend, clock=clock) as engine:
        package = {
            "version": SCHEMA_VERSION,
            "timestamp": T0,
            "metadata": {},
            "history": {"detections": [make_detection(timestamp=T0 + i) for i in range(20)]},
        }
        result = engine.import_data(package)
        assert not result.success
        assert result.error_type == "QuotaExceededError"
        assert small.keys() == []


def test_sections_are_imported_independently(manager):
    package = {
        "version": SCHEMA_VERSION,
        "timestamp": T0,
        "metadata": {},
        "preference": make_preference(),
        "history": {"detections": [make_detection(locale="fr")]},
    }
    result = manager.import_data(package)
    assert not result.success
    assert result.data["imported_items"] == 1
    assert len(result.data["errors"]) == 1
    assert result.data["errors"][0].startswith("history:")
    assert manager.get_user_preference().locale == "zh"


def test_import_from_invalid_json(manager):
    result = manager.import_from_json("{not json")
    assert not result.success
    assert result.error_type == "ValidationError"


@pytest.mark.parametrize("metadata", ["oops", [1], 42])
def test_import_rejects_non_mapping_metadata(manager, metadata):
    package = {"version": SCHEMA_VERSION, "timestamp": T0, "metadata": metadata, "override": "zh"}

    result = manager.import_data(package)
    assert not result.success
    assert result.error_type == "ValidationError"
    assert result.data["imported_items"] == 0

    result = manager.import_from_json(json.dumps(package))
    assert not result.success
    assert result.error_type == "ValidationError"
    assert _stored_keys(manager) == []
    assert [event.type for event in manager.get_event_history()] == ["error", "error"]


def test_cleanup_old_backups_keeps_newest(manager, clock):
    manager.save_user_preference(make_preference())
    keys = []
    for _ in range(6):
        clock.advance(1000)
        keys.append(manager.create_backup().data["key"])

    result = manager.cleanup_old_backups(3)
    assert result.success
    assert result.data == 3

    remaining = [backup["key"] for backup in manager.list_backups()]
    assert remaining == list(reversed(keys[3:]))


def test_backup_keys_do_not_collide(manager):
    first = manager.create_backup().data["key"]
    second = manager.create_backup().data["key"]
    assert first == f"locale_backup_{T0}"
    assert second == f"locale_backup_{T0 + 1}"


def test_list_backups_marks_malformed_entries(manager, local_backend, clock):
    clock.advance(10)
    manager.create_backup()
    local_backend.set_item("locale_backup_5", "{}")
    local_backend.set_item("locale_backup_6", "not json")

    backups = manager.list_backups()
    assert [backup["timestamp"] for backup in backups] == [T0 + 10, 6, 5]
    assert [backup["is_valid"] for backup in backups] == [True, False, False]


def test_restore_backup(manager, clock):
    manager.save_user_preference(make_preference(locale="en"))
    key = manager.create_backup().data["key"]
    clock.advance(1000)
    manager.save_user_preference(make_preference(locale="zh", timestamp=clock()))

    result = manager.restore_backup(key)
    assert result.success
    assert manager.get_user_preference().locale == "en"


def test_restore_and_delete_validate_keys(manager):
    assert manager.restore_backup("locale_backup_123").error_type == "NotFoundError"
    assert manager.restore_backup("backup_123").error_type == "ValidationError"
    assert manager.delete_backup("locale_backup_abc").error_type == "ValidationError"
    assert manager.delete_backup("locale_backup_123").error_type == "NotFoundError"

    key = manager.create_backup().data["key"]
    assert manager.delete_backup(key).success
    assert manager.list_backups() == []


def test_backup_keys_must_be_ascii_digits_only(manager, local_backend):
    key = manager.create_backup().data["key"]
    assert manager.restore_backup(key + "\n").error_type == "ValidationError"
    assert manager.delete_backup("locale_backup_\u0661\u0662\u0663").error_type == "ValidationError"

    local_backend.set_item("locale_backup_7\n", "{}")
    assert [backup["key"] for backup in manager.list_backups()] == [key]


def test_perform_maintenance_on_healthy_store(manager):
    manager.save_user_preference(make_preference())
    result = manager.perform_maintenance()
    assert result.success
    assert result.data["total_operations"] == 6
    assert result.data["successful_operations"] == 6
    assert len(result.data["results"]) == 6


def test_perform_maintenance_selected_operations(manager, clock):
    manager.add_detection_record(make_detection(timestamp=T0))
    clock.advance(10_000)
    options = {
        "cleanup_expired": True,
        "max_detection_age": 5_000,
        "cleanup_duplicates": False,
        "validate_data": False,
        "fix_sync_issues": False,
        "compact_storage": False,
        "cleanup_backups": False,
    }
    result = manager.perform_maintenance(options)
    assert result.data["total_operations"] == 1
    assert result.data["results"] == ["Removed 1 expired detections"]
    assert manager.get_detection_history() == []


def test_perform_maintenance_repairs_sync(manager, cookie_backend):
    manager.save_user_preference(make_preference())
    cookie_backend.remove_item(StorageKeys.LOCALE_PREFERENCE)

    result = manager.perform_maintenance()
    assert result.success
    assert manager.check_data_consistency()["is_consistent"]


def test_validate_storage_integrity(manager, local_backend):
    manager.save_user_preference(make_preference())
    assert manager.validate_storage_integrity().data["is_valid"]

    local_backend.set_item(StorageKeys.LOCALE_PREFERENCE, json.dumps(make_preference(confidence=7)))
    result = manager.validate_storage_integrity()
    assert not result.success
    assert "local:locale_preference" in result.data["invalid_keys"]
    assert result.data["sync_issues"]


def test_maintenance_recommendations(manager, clock, settings):
    assert manager.get_maintenance_recommendations()["priority"] == "low"

    manager.add_detection_record(make_detection(timestamp=T0))
    clock.advance(settings.detection_max_age_ms + 1)
    recommendations = manager.get_maintenance_recommendations()
    assert recommendations["priority"] == "medium"
    assert any("expired" in item for item in recommendations["recommendations"])


@pytest.mark.parametrize("max_count", [0, 10])
def test_cleanup_old_backups_bounds(manager, clock, max_count):
    for _ in range(2):
        clock.advance(1)
        manager.create_backup()
    deleted = manager.cleanup_old_backups(max_count).data
    assert deleted == (2 if max_count == 0 else 0)
