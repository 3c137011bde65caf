"""
Boundary validation for preferences, detection records, metadata maps and
export packages. Validators raise ValidationError; callers convert it into
a failed StorageResult.
"""

import math
from typing import Any, Dict, Iterable, List, Optional

from .errors import ValidationError, VersionMismatchError
from .types import (
    SCHEMA_VERSION,
    DetectionRecord,
    LocalePreference,
    OverrideAction,
    OverrideRecord,
    PreferenceSource,
)

UNSAFE_METADATA_KEYS = frozenset({"__proto__", "constructor", "prototype"})

_VALID_SOURCES = {source.value for source in PreferenceSource}
_VALID_ACTIONS = {action.value for action in OverrideAction}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def is_safe_metadata_key(key: Any) -> bool:
    if not isinstance(key, str) or not key.strip():
        return False
    if key in UNSAFE_METADATA_KEYS:
        return False
    return not (key.startswith("__") and key.endswith("__"))


def is_safe_metadata_value(value: Any) -> bool:
    if isinstance(value, (str, bool, int)):
        return True
    return isinstance(value, float) and math.isfinite(value)


def sanitize_metadata(metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Keep only non-empty, non-reserved keys with plain finite scalar values."""
    if not isinstance(metadata, dict):
        return {}
    return {
        key: value
        for key, value in metadata.items()
        if is_safe_metadata_key(key) and is_safe_metadata_value(value)
    }


def validate_metadata(metadata: Any) -> None:
    if not isinstance(metadata, dict):
        raise ValidationError("metadata must be a mapping")
    for key, value in metadata.items():
        if not is_safe_metadata_key(key):
            raise ValidationError(f"metadata key {key!r} is not allowed")
        if not is_safe_metadata_value(value):
            raise ValidationError(f"metadata value for {key!r} must be a finite string, number or boolean")


def validate_confidence(confidence: Any) -> None:
    if not _is_number(confidence) or not math.isfinite(confidence) or not 0.0 <= confidence <= 1.0:
        raise ValidationError(f"confidence must be a number in [0, 1], got {confidence!r}")


def validate_timestamp(timestamp: Any) -> None:
    if not isinstance(timestamp, int) or isinstance(timestamp, bool) or timestamp <= 0:
        raise ValidationError(f"timestamp must be a positive integer, got {timestamp!r}")


def validate_locale(locale: Any, supported_locales: Iterable[str]) -> None:
    if not isinstance(locale, str) or locale not in supported_locales:
        raise ValidationError(f"unsupported locale {locale!r}")


def validate_preference(preference: Any, supported_locales: Iterable[str]) -> LocalePreference:
    """
    Validate a preference given as a LocalePreference or a plain mapping.

    Args:
        preference: Candidate preference
        supported_locales: Locales the engine accepts

    Returns:
        The preference as a LocalePreference

    Raises:
        ValidationError: If any field is missing or out of range
    """
    if isinstance(preference, dict):
        preference = LocalePreference.from_dict(preference)
    if not isinstance(preference, LocalePreference):
        raise ValidationError("preference must be a mapping or LocalePreference")

    validate_locale(preference.locale, supported_locales)
    source = preference.source.value if isinstance(preference.source, PreferenceSource) else preference.source
    if source not in _VALID_SOURCES:
        raise ValidationError(f"unknown preference source {source!r}")
    validate_confidence(preference.confidence)
    validate_timestamp(preference.timestamp)
    validate_metadata(preference.metadata)

    is_override_flag = preference.metadata.get("isOverride")
    if source == PreferenceSource.USER_OVERRIDE.value and is_override_flag is False:
        raise ValidationError("user_override preference cannot carry isOverride=False")
    if is_override_flag is True and source not in (PreferenceSource.USER.value, PreferenceSource.USER_OVERRIDE.value):
        raise ValidationError(f"isOverride=True does not agree with source {source!r}")

    return preference


def validate_detection_record(record: Any, supported_locales: Iterable[str]) -> DetectionRecord:
    if isinstance(record, dict):
        record = DetectionRecord.from_dict(record)
    if not isinstance(record, DetectionRecord):
        raise ValidationError("detection record must be a mapping or DetectionRecord")

    validate_locale(record.locale, supported_locales)
    if not isinstance(record.source, str) or not record.source.strip():
        raise ValidationError("detection source must be a non-empty string")
    validate_confidence(record.confidence)
    validate_timestamp(record.timestamp)
    validate_metadata(record.metadata)
    return record


def validate_override_record(record: Any, supported_locales: Iterable[str]) -> OverrideRecord:
    if isinstance(record, dict):
        record = OverrideRecord.from_dict(record)
    if not isinstance(record, OverrideRecord):
        raise ValidationError("override record must be a mapping or OverrideRecord")
    validate_locale(record.locale, supported_locales)
    action = record.action.value if isinstance(record.action, OverrideAction) else record.action
    if action not in _VALID_ACTIONS:
        raise ValidationError(f"unknown override action {action!r}")
    validate_timestamp(record.timestamp)
    return record


def validate_history(history: Any, supported_locales: Iterable[str]) -> List[DetectionRecord]:
    """Validate a stored/exported history document and return its records."""
    if not isinstance(history, dict):
        raise ValidationError("history must be a mapping")
    detections = history.get("detections")
    if not isinstance(detections, list):
        raise ValidationError("history.detections must be a list")

    records = []
    for index, item in enumerate(detections):
        try:
            records.append(validate_detection_record(item, supported_locales))
        except ValidationError as e:
            raise ValidationError(f"history.detections[{index}]: {e}") from e
    return records


def validate_export_version(package: Any) -> None:
    if not isinstance(package, dict):
        raise ValidationError("export package must be a mapping")
    version = package.get("version")
    if version != SCHEMA_VERSION:
        raise VersionMismatchError(f"unsupported export version {version!r}, expected {SCHEMA_VERSION}")
    metadata = package.get("metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise ValidationError("export metadata must be a mapping")
