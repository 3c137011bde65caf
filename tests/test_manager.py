"""End-to-end tests for the LocaleStorageManager facade."""

from conftest import T0, make_detection, make_preference
from localestore.config import DAY_MS
from localestore.core.manager import LocaleStorageManager
from localestore.core.types import BackendTarget, LocalePreference, StorageEventType, StorageKeys


def test_preference_and_override_scenario(manager):
    preference = make_preference("zh", "user", 0.9, T0)
    assert manager.save_user_preference(preference).success
    assert manager.get_user_preference() == LocalePreference("zh", "user", 0.9, T0, {})

    assert manager.get_override_stats()["total_overrides"] == 0
    assert manager.set_user_override("zh").success

    stats = manager.get_override_stats()
    assert stats["total_overrides"] == 1
    assert stats["current_override"] == "zh"


def test_clear_override_round_trip(manager):
    manager.set_user_override("zh")
    assert manager.get_user_override() == "zh"
    assert manager.clear_user_override().success
    assert manager.get_user_override() is None
    assert not manager.has_user_override()


def test_getters_return_none_when_empty(manager):
    assert manager.get_user_preference() is None
    assert manager.get_user_override() is None
    assert manager.get_detection_history() == []
    assert manager.get_recent_detections() == []
    assert manager.get_fallback_locale() == "en"


def test_every_mutation_emits_exactly_one_event(manager, clock):
    def count():
        return len(manager.get_event_history())

    operations = [
        lambda: manager.save_user_preference(make_preference()),
        lambda: manager.set_user_override("en"),
        lambda: manager.clear_user_override(),
        lambda: manager.add_detection_record(make_detection(timestamp=clock())),
        lambda: manager.cleanup_expired_detections(),
        lambda: manager.create_backup(),
        lambda: manager.cleanup_old_backups(1),
        lambda: manager.export_data(),
        lambda: manager.import_data(manager.maintenance.export_data().data),
        lambda: manager.perform_maintenance(),
        lambda: manager.fix_data_inconsistency(),
        lambda: manager.sync_preference_data(),
        lambda: manager.delete_backup("locale_backup_1"),
        lambda: manager.clear_all(),
    ]
    for operation in operations:
        clock.advance(1)
        before = count()
        operation()
        assert count() == before + 1


def test_failed_mutation_emits_only_error_event(manager):
    received = []
    manager.add_event_listener("*", received.append)

    result = manager.save_user_preference(make_preference(confidence=5))
    assert not result.success
    assert [event.type for event in received] == ["error"]
    assert received[0].data["operation"] == "preference_saved"
    assert received[0].data["error_type"] == "ValidationError"


def test_sync_refreshes_override_stats(manager):
    manager.set_user_override("zh")
    manager.adapter.set(StorageKeys.USER_LOCALE_OVERRIDE, "en", BackendTarget.LOCAL)
    assert manager.get_override_stats()["current_override"] == "en"

    assert manager.sync_preference_data().success
    assert manager.get_user_override() == "zh"
    assert manager.get_override_stats()["current_override"] == "zh"


def test_failed_sync_emits_error_event(manager, cookie_backend):
    manager.adapter.set(StorageKeys.LOCALE_PREFERENCE, make_preference(), BackendTarget.LOCAL)
    cookie_backend.disable()

    result = manager.sync_preference_data()
    assert not result.success
    events = manager.get_event_history()
    assert [event.type for event in events] == ["error"]
    assert events[0].data["operation"] == "sync_completed"
    assert events[0].data["error_type"] == "ConsistencyError"
    assert events[0].data["fixed"] is False


def test_event_listeners(manager):
    saved = []
    manager.add_event_listener(StorageEventType.PREFERENCE_SAVED, saved.append)
    manager.save_user_preference(make_preference())
    assert saved[0].data == {"locale": "zh", "source": "user", "confidence": 0.9}

    manager.remove_event_listener(StorageEventType.PREFERENCE_SAVED, saved.append)
    manager.save_user_preference(make_preference())
    assert len(saved) == 1


def test_failing_listener_does_not_break_operations(manager):
    def broken(event):
        raise ValueError("listener bug")

    manager.add_event_listener("*", broken)
    assert manager.save_user_preference(make_preference()).success
    assert manager.get_user_preference().locale == "zh"


def test_detection_history_through_facade(manager, clock):
    for index in range(7):
        manager.add_detection_record(make_detection(timestamp=T0 + index))
    recent = manager.get_recent_detections()
    assert [record.timestamp for record in recent] == [T0 + 6, T0 + 5, T0 + 4, T0 + 3, T0 + 2]
    assert manager.query_detections(limit=3)["has_more"] is True
    assert len(manager.search_detections("browser")) == 7

    clock.advance(31 * DAY_MS)
    result = manager.cleanup_expired_detections()
    assert result.data == 7
    assert manager.get_detection_history() == []


def test_validate_preference(manager):
    assert manager.validate_preference(make_preference())
    assert not manager.validate_preference(make_preference(locale="fr"))
    assert not manager.validate_preference("zh")


def test_degrades_when_storage_unavailable(manager, local_backend, cookie_backend):
    local_backend.disable()
    cookie_backend.disable()

    result = manager.save_user_preference(make_preference())
    assert not result.success
    assert result.error_type == "StorageUnavailableError"
    assert manager.get_user_preference() is None
    assert manager.get_fallback_locale() == "en"


def test_clear_all(manager):
    manager.save_user_preference(make_preference())
    manager.set_user_override("zh")
    manager.add_detection_record(make_detection())

    assert manager.clear_all().success
    assert manager.get_user_preference() is None
    assert manager.get_user_override() is None
    assert manager.get_detection_history() == []
    assert manager.get_override_history() == []


def test_default_backends_persist_between_sessions(settings, clock):
    with LocaleStorageManager(settings, clock=clock) as first:
        first.save_user_preference(make_preference())
        first.set_user_override("zh")

    with LocaleStorageManager(settings, clock=clock) as second:
        assert second.get_user_preference().locale == "zh"
        assert second.get_user_override() == "zh"
        assert second.check_data_consistency()["is_consistent"]


def test_close_is_idempotent(settings, local_backend, cookie_backend, clock):
    engine = LocaleStorageManager(settings, local_backend, cookie_backend, clock=clock)
    engine.add_event_listener("*", lambda event: None)
    engine.close()
    engine.close()
    assert engine.events.get_listener_stats()["total_listeners"] == 0
