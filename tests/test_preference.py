"""Tests for the preference store and the override workflow."""

import pytest

from conftest import T0, make_preference
from localestore.core.preference import (
    PreferenceStore,
    compare_preferences,
    create_default_preference,
    get_source_priority,
)
from localestore.core.types import BackendTarget, LocalePreference, StorageKeys


@pytest.fixture
def store(adapter, cache, settings, clock):
    return PreferenceStore(adapter, cache, settings, clock)


def test_save_then_get_round_trips(store):
    saved = store.save(make_preference())
    assert saved.success

    loaded = store.get()
    assert loaded.success
    assert loaded.data == LocalePreference("zh", "user", 0.9, T0, {})


@pytest.mark.parametrize(
    "preference",
    [
        make_preference(locale="fr"),
        make_preference(confidence=1.5),
        make_preference(confidence=-0.1),
        make_preference(timestamp=None),
        make_preference(source="robot"),
        make_preference(source="auto", isOverride=True),
        make_preference(source="user_override", isOverride=False),
    ],
)
def test_save_rejects_invalid_preferences(store, adapter, preference):
    result = store.save(preference)
    assert not result.success
    assert result.error_type == "ValidationError"
    assert adapter.get(StorageKeys.LOCALE_PREFERENCE).data is None
    assert not store.validate(preference)


def test_get_without_preference_is_not_found(store):
    result = store.get()
    assert not result.success
    assert result.error_type == "NotFoundError"
    assert not store.has_preference()


def test_update_confidence_replaces_record(store, clock):
    store.save(make_preference(confidence=0.4))
    clock.advance(1000)
    result = store.update_confidence(0.7)
    assert result.success
    current = store.get().data
    assert current.confidence == 0.7
    assert current.timestamp == T0 + 1000
    assert not store.update_confidence(2).success


def test_set_override_then_get_override(store):
    result = store.set_override("zh", {"reason": "menu"})
    assert result.success
    assert store.get_override().data == "zh"

    preference = store.get().data
    assert preference.source == "user"
    assert preference.confidence == 1.0
    assert preference.metadata["isOverride"] is True
    assert preference.metadata["reason"] == "menu"
    assert preference.is_override


def test_set_override_strips_unsafe_metadata(store):
    metadata = {
        "__proto__": "polluted",
        "constructor": "x",
        "": "empty",
        "ratio": float("inf"),
        "nested": {"a": 1},
        "ok": "kept",
        "count": 3,
    }
    store.set_override("en", metadata)
    stored = store.get().data.metadata
    assert stored["ok"] == "kept"
    assert stored["count"] == 3
    for key in ("__proto__", "constructor", "", "ratio", "nested"):
        assert key not in stored


def test_set_override_rejects_unsupported_locale(store):
    result = store.set_override("de")
    assert not result.success
    assert result.error_type == "ValidationError"
    assert store.get_override_history() == []


def test_clear_override_restores_previous_preference(store, clock):
    store.save(make_preference(locale="en", source="auto", confidence=0.6))
    clock.advance(1000)
    store.set_override("zh")
    clock.advance(1000)

    result = store.clear_override()
    assert result.success
    assert result.data["cleared"] == "zh"

    assert not store.get_override().success
    restored = store.get().data
    assert restored.locale == "en"
    assert restored.source == "auto"
    assert restored.confidence == 0.6
    assert not restored.is_override


def test_clear_override_without_prior_preference_uses_default(store):
    store.set_override("zh")
    store.clear_override()

    restored = store.get().data
    assert (restored.locale, restored.source, restored.confidence) == ("en", "default", 0.5)
    assert store.get_override().error_type == "NotFoundError"


def test_clear_override_handles_user_override_source(store, adapter):
    adapter.set(StorageKeys.LOCALE_PREFERENCE, make_preference(source="user_override", confidence=1.0))
    store.clear_override()
    assert store.get().data.source == "default"


def test_override_stats_scenario(store, clock):
    store.save(make_preference())
    assert store.get_override_stats()["total_overrides"] == 0

    store.set_override("zh")
    stats = store.get_override_stats()
    assert stats["total_overrides"] == 1
    assert stats["current_override"] == "zh"
    assert stats["last_override_time"] == T0

    clock.advance(10)
    store.set_override("en")
    clock.advance(10)
    store.set_override("en")
    stats = store.get_override_stats()
    assert stats["total_overrides"] == 3
    assert stats["most_used_locale"] == "en"
    assert stats["override_frequency"] == {"en": 2, "zh": 1}


def test_override_history_is_capped_and_newest_first(store, settings, clock):
    for index in range(settings.max_override_history + 5):
        clock.advance(1)
        store.set_override("en" if index % 2 else "zh")

    history = store.get_override_history()
    assert len(history) == settings.max_override_history
    assert history[0].timestamp > history[-1].timestamp
    assert history[0].timestamp == clock()


def test_override_history_records_clear(store):
    store.set_override("zh")
    store.clear_override()
    actions = [record.action for record in store.get_override_history()]
    assert sorted(actions) == ["clear", "set"]


def test_override_is_backed_up_in_cookie(store, adapter, local_backend):
    store.set_override("zh")
    local_backend.remove_item(StorageKeys.USER_LOCALE_OVERRIDE)
    assert adapter.get(StorageKeys.USER_LOCALE_OVERRIDE, BackendTarget.COOKIE).data == "zh"
    assert store.get_override().data == "zh"


def test_source_priority_and_comparison():
    assert get_source_priority("user_override") > get_source_priority("user")
    assert get_source_priority("user") > get_source_priority("auto") > get_source_priority("default")
    assert get_source_priority("unknown") == 0

    user = LocalePreference("en", "user", 0.5, T0)
    auto = LocalePreference("zh", "auto", 0.99, T0 + 5)
    assert compare_preferences(user, auto) > 0

    low = LocalePreference("en", "auto", 0.4, T0)
    high = LocalePreference("zh", "auto", 0.8, T0)
    assert compare_preferences(low, high) < 0

    marked = LocalePreference("zh", "user", 1.0, T0, {"isOverride": True})
    plain = LocalePreference("en", "user", 1.0, T0 + 1)
    assert compare_preferences(marked, plain) > 0


def test_default_preference():
    default = create_default_preference(timestamp=T0)
    assert default.to_dict() == {
        "locale": "en",
        "source": "default",
        "confidence": 0.5,
        "timestamp": T0,
        "metadata": {},
    }


def test_preference_summary(store, clock):
    assert store.get_preference_summary()["has_preference"] is False
    store.save(make_preference())
    clock.advance(500)
    summary = store.get_preference_summary()
    assert summary["locale"] == "zh"
    assert summary["age_ms"] == 500
    assert summary["is_override"] is False


def test_export_override_data(store):
    assert store.export_override_data() == {"override": None, "history": []}
    store.set_override("zh", {"reason": "menu"})
    exported = store.export_override_data()
    assert exported["override"] == "zh"
    assert exported["history"][0]["action"] == "set"
    assert exported["history"][0]["metadata"] == {"reason": "menu"}


def test_clear_override_history(store):
    store.set_override("zh")
    assert store.get_override_stats()["total_overrides"] == 1
    assert store.clear_override_history().success
    assert store.get_override_history() == []
    assert store.get_override_stats()["total_overrides"] == 0
