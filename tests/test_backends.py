"""Tests for the storage backends and the dual-backend persistence adapter."""

import json

import pytest

from localestore.core.backends import CookieBackend, DiskCacheBackend, MemoryBackend
from localestore.core.errors import QuotaExceededError, StorageUnavailableError
from localestore.core.types import BackendTarget


def test_memory_backend_quota():
    backend = MemoryBackend(quota_bytes=20)
    backend.set_item("k", "x" * 10)
    with pytest.raises(QuotaExceededError):
        backend.set_item("k2", "y" * 15)
    # replacing an entry only counts the difference
    backend.set_item("k", "z" * 19)
    assert backend.get_item("k") == "z" * 19


def test_disabled_backend_raises_and_reports_unavailable():
    backend = MemoryBackend()
    assert backend.is_available()
    backend.disable()
    assert not backend.is_available()
    with pytest.raises(StorageUnavailableError):
        backend.get_item("anything")
    backend.enable()
    assert backend.get_item("anything") is None


def test_cookie_backend_round_trips_json(clock):
    cookies = CookieBackend(clock=clock)
    value = json.dumps({"locale": "zh", "note": "a; b = c"})
    cookies.set_item("locale_preference", value)
    assert cookies.get_item("locale_preference") == value
    assert "locale_preference=" in cookies.cookie_header()


def test_cookie_backend_size_limit(clock):
    cookies = CookieBackend(max_value_bytes=4096, clock=clock)
    with pytest.raises(QuotaExceededError):
        cookies.set_item("big", "x" * 5000)


def test_cookie_backend_expiry(clock):
    cookies = CookieBackend(max_age_s=10, clock=clock)
    cookies.set_item("k", "v")
    clock.advance(9_999)
    assert cookies.get_item("k") == "v"
    clock.advance(1)
    assert cookies.get_item("k") is None
    assert cookies.keys() == []


def test_cookie_backend_file_persistence(tmp_path, clock):
    path = tmp_path / "cookies.txt"
    CookieBackend(path=str(path), clock=clock).set_item("user_locale_override", '"zh"')
    reloaded = CookieBackend(path=str(path), clock=clock)
    assert reloaded.get_item("user_locale_override") == '"zh"'


def test_cookie_backend_reloaded_cookies_keep_expiry(tmp_path, clock):
    path = tmp_path / "cookies.txt"
    CookieBackend(max_age_s=10, path=str(path), clock=clock).set_item("k", "v")
    clock.advance(5_000)
    reloaded = CookieBackend(max_age_s=10, path=str(path), clock=clock)
    assert reloaded.get_item("k") == "v"
    clock.advance(5_000)
    assert reloaded.get_item("k") is None


def test_cookie_backend_loaded_header_expires(tmp_path, clock):
    path = tmp_path / "cookies.txt"
    path.write_text("k=v", encoding="utf-8")
    cookies = CookieBackend(max_age_s=10, path=str(path), clock=clock)
    assert cookies.get_item("k") == "v"
    clock.advance(10_000)
    assert cookies.keys() == []


def test_disk_cache_backend(tmp_path):
    backend = DiskCacheBackend(str(tmp_path / "local"), quota_bytes=1024)
    try:
        backend.set_item("locale_preference", '{"locale":"en"}')
        assert backend.get_item("locale_preference") == '{"locale":"en"}'
        assert backend.keys() == ["locale_preference"]
        assert backend.usage_bytes() > 0
        with pytest.raises(QuotaExceededError):
            backend.set_item("huge", "x" * 2048)
        backend.remove_item("locale_preference")
        assert backend.get_item("locale_preference") is None
    finally:
        backend.close()


def test_adapter_writes_both_backends(adapter, local_backend, cookie_backend):
    result = adapter.set("user_locale_override", "zh")
    assert result.success
    assert result.data == {"written": ["local", "cookie"], "failed": []}
    assert local_backend.get_item("user_locale_override") == '"zh"'
    assert cookie_backend.get_item("user_locale_override") == '"zh"'


def test_adapter_fallback_writes_back_to_local(adapter, local_backend, cookie_backend):
    cookie_backend.set_item("user_locale_override", '"zh"')
    result = adapter.get_with_fallback("user_locale_override")
    assert result.success
    assert result.data == "zh"
    assert result.source == "cookie"
    assert local_backend.get_item("user_locale_override") == '"zh"'


def test_adapter_partial_write_succeeds(adapter, cookie_backend):
    cookie_backend.disable()
    result = adapter.set("locale_preference", {"locale": "en"})
    assert result.success
    assert result.data["failed"] == ["cookie"]


def test_adapter_oversized_cookie_is_partial_write(adapter):
    result = adapter.set("blob", {"payload": "x" * 5000})
    assert result.success
    assert result.data == {"written": ["local"], "failed": ["cookie"]}


def test_adapter_converts_backend_failures(adapter, local_backend, cookie_backend):
    local_backend.disable()
    cookie_backend.disable()

    written = adapter.set("locale_preference", {"locale": "en"})
    assert not written.success
    assert written.error_type == "StorageUnavailableError"

    read = adapter.get_with_fallback("locale_preference")
    assert not read.success
    assert read.error_type == "StorageUnavailableError"


def test_adapter_reports_corrupt_json(adapter, local_backend):
    local_backend.set_item("locale_preference", "{not json")
    result = adapter.get("locale_preference")
    assert not result.success
    assert result.error_type == "ValidationError"


def test_adapter_get_requires_single_target(adapter):
    with pytest.raises(ValueError):
        adapter.get("locale_preference", BackendTarget.BOTH)


def test_adapter_quota_accounting(adapter):
    assert adapter.local_quota() == 5 * 1024 * 1024
    adapter.set("locale_preference", {"locale": "en"}, BackendTarget.LOCAL)
    assert adapter.stored_size("locale_preference") == len('{"locale":"en"}')
    assert adapter.remaining_local_bytes() == adapter.local_quota() - adapter.local_usage()
