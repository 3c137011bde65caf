"""
Storage key namespacing, size estimation and integrity checksums.
"""

import json
import logging
import time
from typing import Any, Optional

import xxhash

logger = logging.getLogger(__name__)


def current_timestamp() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


def create_storage_key(prefix: str, key: str) -> str:
    return f"{prefix}{key}"


def parse_storage_key(full_key: str, prefix: str) -> str:
    """Strip prefix from full_key; the key is returned unchanged if it doesn't match."""
    if prefix and full_key.startswith(prefix):
        return full_key[len(prefix):]
    return full_key


def safe_json_stringify(value: Any, default: Optional[str] = None) -> Optional[str]:
    """Serialize to compact JSON, returning default when the value can't be encoded."""
    try:
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
    except (TypeError, ValueError) as e:
        logger.debug(f"JSON stringify failed: {e}")
        return default


def safe_json_parse(text: Optional[str], default: Any = None) -> Any:
    if text is None:
        return default
    try:
        return json.loads(text)
    except (TypeError, ValueError) as e:
        logger.debug(f"JSON parse failed: {e}")
        return default


def estimate_storage_size(value: Any) -> int:
    """
    Estimate the number of bytes a value occupies once stored.

    Args:
        value: Any JSON-serializable value

    Returns:
        UTF-8 byte length of its compact JSON form, or 0 if it can't be serialized
    """
    text = safe_json_stringify(value)
    if text is None:
        return 0
    return len(text.encode("utf-8"))


def _canonical_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)


def generate_checksum(value: Any) -> str:
    """
    Integrity checksum for a JSON-shaped value.

    Uses xxHash64 over canonical JSON (sorted keys) so logically equal
    payloads hash identically regardless of key order.
    """
    try:
        content = _canonical_json(value)
    except (TypeError, ValueError) as e:
        logger.error(f"Checksum serialization failed: {e}")
        content = repr(value)
    return xxhash.xxh64(content.encode("utf-8")).hexdigest()


def format_byte_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"
