"""Shared fixtures for the locale storage test suite."""

import pytest

from localestore.config import Settings
from localestore.core.backends import CookieBackend, MemoryBackend
from localestore.core.cache import TTLCache
from localestore.core.manager import LocaleStorageManager
from localestore.core.persistence import PersistenceAdapter

T0 = 1_700_000_000_000


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = T0):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        supported_locales=("en", "zh"),
        default_locale="en",
        storage_dir=str(tmp_path / "locale_storage"),
        local_quota_bytes=5 * 1024 * 1024,
        cookie_max_bytes=4096,
        cache_ttl_ms=5 * 60 * 1000,
        max_detection_history=100,
        max_override_history=50,
        max_event_history=100,
        max_backups=5,
    )


@pytest.fixture
def local_backend():
    return MemoryBackend(quota_bytes=5 * 1024 * 1024, name="local")


@pytest.fixture
def cookie_backend(clock):
    return CookieBackend(max_value_bytes=4096, clock=clock)


@pytest.fixture
def adapter(local_backend, cookie_backend):
    return PersistenceAdapter(local_backend, cookie_backend)


@pytest.fixture
def cache(settings, clock):
    return TTLCache(settings.cache_ttl_ms, clock=clock)


@pytest.fixture
def manager(settings, local_backend, cookie_backend, clock):
    with LocaleStorageManager(settings, local_backend, cookie_backend, clock=clock) as engine:
        yield engine


def make_preference(locale="zh", source="user", confidence=0.9, timestamp=T0, **metadata):
    return {
        "locale": locale,
        "source": source,
        "confidence": confidence,
        "timestamp": timestamp,
        "metadata": metadata,
    }


def make_detection(locale="en", source="browser", confidence=0.8, timestamp=T0, **metadata):
    return {
        "locale": locale,
        "source": source,
        "confidence": confidence,
        "timestamp": timestamp,
        "metadata": metadata,
    }
