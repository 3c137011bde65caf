"""
Dual-backend persistence adapter.

Reads prefer the local key-value store and fall back to cookies with
write-back; writes go to both backends unless a single target is given.
Backend exceptions are converted into StorageResult here and never
propagate further up.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

from .backends import StorageBackend
from .errors import QuotaExceededError, StorageUnavailableError, ValidationError
from .types import BackendTarget, StorageResult
from ..utils.storage_utils import safe_json_stringify

logger = logging.getLogger(__name__)


class PersistenceAdapter:
    """Uniform get/set/remove over the local store (A) and the cookie store (B)."""

    def __init__(self, local: StorageBackend, cookies: StorageBackend):
        self.local = local
        self.cookies = cookies

    def _backends_for(self, target: BackendTarget):
        target = BackendTarget(target)
        if target == BackendTarget.LOCAL:
            return [(BackendTarget.LOCAL.value, self.local)]
        if target == BackendTarget.COOKIE:
            return [(BackendTarget.COOKIE.value, self.cookies)]
        return [(BackendTarget.LOCAL.value, self.local), (BackendTarget.COOKIE.value, self.cookies)]

    def get(self, key: str, target: BackendTarget = BackendTarget.LOCAL) -> StorageResult:
        """
        Read and decode a value from a single backend.

        Returns:
            ok(value) when found, ok(None) on a miss, fail() on backend or decode errors
        """
        if BackendTarget(target) == BackendTarget.BOTH:
            raise ValueError("get() reads a single backend; use get_with_fallback()")
        name, backend = self._backends_for(target)[0]
        try:
            raw = backend.get_item(key)
        except StorageUnavailableError as e:
            logger.error(f"Read of {key} from {name} failed: {e}")
            return StorageResult.fail(e, source=name)

        if raw is None:
            return StorageResult.ok(None, source=name)
        try:
            return StorageResult.ok(json.loads(raw), source=name)
        except ValueError as e:
            logger.warning(f"Corrupt JSON under {key} in {name}: {e}")
            return StorageResult.fail(ValidationError(f"corrupt value under {key}: {e}"), source=name)

    def get_with_fallback(self, key: str) -> StorageResult:
        """Read from the local store, falling back to cookies and writing the hit back."""
        local_result = self.get(key, BackendTarget.LOCAL)
        if local_result.success and local_result.data is not None:
            return local_result

        cookie_result = self.get(key, BackendTarget.COOKIE)
        if cookie_result.success and cookie_result.data is not None:
            sync_result = self.set(key, cookie_result.data, BackendTarget.LOCAL)
            if sync_result.success:
                logger.debug(f"Synced {key} from cookie back to local storage")
            return cookie_result

        if not local_result.success and not cookie_result.success:
            return StorageResult.fail(
                StorageUnavailableError(f"{key}: {local_result.error}; {cookie_result.error}")
            )
        return StorageResult.ok(None)

    def read_both(self, key: str) -> Tuple[StorageResult, StorageResult]:
        return self.get(key, BackendTarget.LOCAL), self.get(key, BackendTarget.COOKIE)

    def set(self, key: str, value: Any, target: BackendTarget = BackendTarget.BOTH) -> StorageResult:
        """
        Encode and write a value.

        A write to both backends succeeds when at least one accepted it; the
        failed side is logged and left for consistency reconciliation.
        """
        text = safe_json_stringify(value)
        if text is None:
            return StorageResult.fail(ValidationError(f"value for {key} is not JSON-serializable"))

        written = []
        errors: Dict[str, StorageUnavailableError] = {}
        for name, backend in self._backends_for(target):
            try:
                backend.set_item(key, text)
                written.append(name)
            except StorageUnavailableError as e:
                errors[name] = e
                level = logging.WARNING if isinstance(e, QuotaExceededError) else logging.ERROR
                logger.log(level, f"Write of {key} to {name} failed: {e}")

        if not written:
            error = next(iter(errors.values()))
            return StorageResult.fail(error, source=",".join(errors))
        return StorageResult.ok({"written": written, "failed": sorted(errors)}, source=",".join(written))

    def remove(self, key: str, target: BackendTarget = BackendTarget.BOTH) -> StorageResult:
        removed = []
        errors = {}
        for name, backend in self._backends_for(target):
            try:
                backend.remove_item(key)
                removed.append(name)
            except StorageUnavailableError as e:
                errors[name] = e
                logger.error(f"Remove of {key} from {name} failed: {e}")

        if errors:
            error = next(iter(errors.values()))
            return StorageResult.fail(error, source=",".join(errors), data={"removed": removed})
        return StorageResult.ok({"removed": removed}, source=",".join(removed))

    def keys(self, target: BackendTarget = BackendTarget.LOCAL) -> StorageResult:
        name, backend = self._backends_for(target)[0]
        try:
            return StorageResult.ok(backend.keys(), source=name)
        except StorageUnavailableError as e:
            return StorageResult.fail(e, source=name)

    def stored_size(self, key: str, target: BackendTarget = BackendTarget.LOCAL) -> int:
        """Byte size of the raw stored text, 0 when absent or unreadable."""
        name, backend = self._backends_for(target)[0]
        try:
            raw = backend.get_item(key)
        except StorageUnavailableError:
            return 0
        return len(raw.encode("utf-8")) if raw is not None else 0

    def local_usage(self) -> Optional[int]:
        usage = getattr(self.local, "usage_bytes", None)
        return usage() if callable(usage) else None

    def local_quota(self) -> Optional[int]:
        return getattr(self.local, "quota_bytes", None)

    def remaining_local_bytes(self) -> Optional[int]:
        quota = self.local_quota()
        if quota is None:
            return None
        return max(0, quota - (self.local_usage() or 0))
