"""
Storage backends behind the persistence adapter.

Backend A is a key-value store (in-memory or disk-backed via diskcache),
Backend B is a cookie jar with per-value size limits. Backends move raw
strings; serialization is the adapter's job. Failures surface as
StorageUnavailableError and never leave this layer unconverted.
"""

import json
import logging
import sqlite3
from http.cookies import CookieError, SimpleCookie
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol
from urllib.parse import quote, unquote

from diskcache import Cache

from .errors import QuotaExceededError, StorageUnavailableError
from ..utils.storage_utils import current_timestamp

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Uniform string key-value contract shared by both backends."""

    name: str

    def get_item(self, key: str) -> Optional[str]:
        """Return the stored string or None."""

    def set_item(self, key: str, value: str) -> None:
        """Store a string value."""

    def remove_item(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""

    def keys(self) -> List[str]:
        """List stored keys."""

    def is_available(self) -> bool:
        """Probe whether the backend currently accepts writes."""


class _ToggleableBackend:
    """Shared enable/disable switch and availability probe."""

    name = "backend"
    _probe_key = "__storage_probe__"

    def __init__(self):
        self.enabled = True

    def disable(self):
        self.enabled = False
        logger.warning(f"Backend {self.name} disabled")

    def enable(self):
        self.enabled = True

    def _ensure_enabled(self):
        if not self.enabled:
            raise StorageUnavailableError(f"{self.name} storage is disabled")

    def is_available(self) -> bool:
        try:
            self.set_item(self._probe_key, "1")
            self.remove_item(self._probe_key)
            return True
        except StorageUnavailableError:
            return False


class MemoryBackend(_ToggleableBackend):
    """Process-local key-value store with an optional byte quota."""

    def __init__(self, quota_bytes: Optional[int] = None, name: str = "memory"):
        super().__init__()
        self.name = name
        self.quota_bytes = quota_bytes
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        self._ensure_enabled()
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._ensure_enabled()
        if self.quota_bytes is not None:
            projected = self.usage_bytes() - self._entry_size(key, self._data.get(key)) + self._entry_size(key, value)
            if projected > self.quota_bytes:
                raise QuotaExceededError(
                    f"{self.name} quota exceeded: {projected} > {self.quota_bytes} bytes"
                )
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._ensure_enabled()
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        self._ensure_enabled()
        return list(self._data.keys())

    def usage_bytes(self) -> int:
        return sum(self._entry_size(key, value) for key, value in self._data.items())

    @staticmethod
    def _entry_size(key: str, value: Optional[str]) -> int:
        if value is None:
            return 0
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class DiskCacheBackend(_ToggleableBackend):
    """Persistent key-value store on top of diskcache."""

    def __init__(self, directory: str, quota_bytes: Optional[int] = None, name: str = "local"):
        """
        Initialize disk-backed store.

        Args:
            directory: Directory for the diskcache database
            quota_bytes: Maximum stored payload size, None for unlimited
            name: Backend name used in results and logs
        """
        super().__init__()
        self.name = name
        self.quota_bytes = quota_bytes
        self.directory = directory
        try:
            self.cache = Cache(directory)
        except (OSError, sqlite3.Error) as e:
            raise StorageUnavailableError(f"Cannot open {name} storage at {directory}: {e}") from e
        logger.info(f"Initialized disk storage at {directory}")

    def get_item(self, key: str) -> Optional[str]:
        self._ensure_enabled()
        try:
            return self.cache.get(key)
        except (OSError, sqlite3.Error) as e:
            raise StorageUnavailableError(f"{self.name} read failed: {e}") from e

    def set_item(self, key: str, value: str) -> None:
        self._ensure_enabled()
        try:
            if self.quota_bytes is not None:
                current = self.cache.get(key)
                projected = (
                    self.usage_bytes()
                    - MemoryBackend._entry_size(key, current)
                    + MemoryBackend._entry_size(key, value)
                )
                if projected > self.quota_bytes:
                    raise QuotaExceededError(
                        f"{self.name} quota exceeded: {projected} > {self.quota_bytes} bytes"
                    )
            self.cache.set(key, value)
        except (OSError, sqlite3.Error) as e:
            raise StorageUnavailableError(f"{self.name} write failed: {e}") from e

    def remove_item(self, key: str) -> None:
        self._ensure_enabled()
        try:
            self.cache.delete(key)
        except (OSError, sqlite3.Error) as e:
            raise StorageUnavailableError(f"{self.name} delete failed: {e}") from e

    def keys(self) -> List[str]:
        self._ensure_enabled()
        return [str(key) for key in self.cache]

    def usage_bytes(self) -> int:
        return sum(MemoryBackend._entry_size(str(key), self.cache.get(key)) for key in self.cache)

    def close(self):
        self.cache.close()


class CookieBackend(_ToggleableBackend):
    """
    Cookie jar backend.

    Values are URL-encoded and capped per cookie, mirroring what a browser
    accepts. The jar can be persisted to a JSON file holding the Cookie
    header line and the expiry of each cookie.
    """

    def __init__(
        self,
        max_value_bytes: int = 4096,
        max_age_s: int = 365 * 24 * 60 * 60,
        path: Optional[str] = None,
        clock: Optional[Callable[[], int]] = None,
        name: str = "cookie",
    ):
        super().__init__()
        self.name = name
        self.max_value_bytes = max_value_bytes
        self.max_age_s = max_age_s
        self.path = Path(path) if path else None
        self._clock = clock or current_timestamp
        self._jar = SimpleCookie()
        self._expires_at: Dict[str, int] = {}
        if self.path and self.path.exists():
            self._load_file(self.path.read_text(encoding="utf-8"))

    def get_item(self, key: str) -> Optional[str]:
        self._ensure_enabled()
        self._expire(key)
        morsel = self._jar.get(key)
        if morsel is None or not morsel.value:
            return None
        return unquote(morsel.value)

    def set_item(self, key: str, value: str) -> None:
        self._ensure_enabled()
        encoded = quote(value, safe="")
        size = len(key) + len(encoded)
        if size > self.max_value_bytes:
            raise QuotaExceededError(f"cookie {key} is {size} bytes, limit is {self.max_value_bytes}")
        try:
            self._jar[key] = encoded
        except CookieError as e:
            raise StorageUnavailableError(f"invalid cookie {key}: {e}") from e
        morsel = self._jar[key]
        morsel["path"] = "/"
        morsel["max-age"] = self.max_age_s
        morsel["samesite"] = "Lax"
        self._expires_at[key] = self._clock() + self.max_age_s * 1000
        self._persist()

    def remove_item(self, key: str) -> None:
        self._ensure_enabled()
        if key in self._jar:
            del self._jar[key]
        self._expires_at.pop(key, None)
        self._persist()

    def keys(self) -> List[str]:
        self._ensure_enabled()
        for key in list(self._jar.keys()):
            self._expire(key)
        return list(self._jar.keys())

    def cookie_header(self) -> str:
        """Render the jar as the Cookie header a browser would send."""
        return "; ".join(f"{key}={morsel.coded_value}" for key, morsel in self._jar.items())

    def load_header(self, header: str) -> None:
        """Load cookies from a Cookie header. Loaded cookies get a full max-age."""
        try:
            self._jar.load(header.strip())
        except CookieError as e:
            logger.warning(f"Ignoring malformed cookie header: {e}")
        expires_at = self._clock() + self.max_age_s * 1000
        for key in self._jar.keys():
            self._expires_at.setdefault(key, expires_at)

    def _load_file(self, text: str):
        # {"cookie": header, "expires_at": {key: ms}}, or a bare Cookie header line
        try:
            document = json.loads(text)
        except ValueError:
            document = None
        if not isinstance(document, dict):
            self.load_header(text)
            return
        expires = document.get("expires_at")
        if isinstance(expires, dict):
            self._expires_at.update(
                {key: value for key, value in expires.items() if isinstance(value, int)}
            )
        self.load_header(str(document.get("cookie") or ""))
        for key in list(self._expires_at):
            if key not in self._jar:
                del self._expires_at[key]

    def _expire(self, key: str):
        expires_at = self._expires_at.get(key)
        if expires_at is not None and self._clock() >= expires_at:
            logger.debug(f"Cookie {key} expired")
            del self._jar[key]
            del self._expires_at[key]

    def _persist(self):
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            document = {"cookie": self.cookie_header(), "expires_at": self._expires_at}
            self.path.write_text(json.dumps(document), encoding="utf-8")
        except OSError as e:
            raise StorageUnavailableError(f"Cannot write cookie file {self.path}: {e}") from e
