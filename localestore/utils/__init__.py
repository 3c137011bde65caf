from .logging_config import setup_logging
from .object_utils import compare_objects, deep_clone, deep_merge
from .storage_utils import (
    create_storage_key,
    current_timestamp,
    estimate_storage_size,
    format_byte_size,
    generate_checksum,
    parse_storage_key,
    safe_json_parse,
    safe_json_stringify,
)

__all__ = [
    "setup_logging",
    "compare_objects",
    "deep_clone",
    "deep_merge",
    "create_storage_key",
    "current_timestamp",
    "estimate_storage_size",
    "format_byte_size",
    "generate_checksum",
    "parse_storage_key",
    "safe_json_parse",
    "safe_json_stringify",
]
