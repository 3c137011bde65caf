"""
Data model for the locale storage engine: records, results and events.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..utils.object_utils import deep_clone
from ..utils.storage_utils import current_timestamp

SCHEMA_VERSION = "1.0.0"

BACKUP_KEY_PREFIX = "locale_backup_"
BACKUP_KEY_PATTERN = re.compile(r"locale_backup_[0-9]+")


class StorageKeys:
    """Fixed logical keys of the persisted namespace."""

    LOCALE_PREFERENCE = "locale_preference"
    LOCALE_DETECTION_HISTORY = "locale_detection_history"
    USER_LOCALE_OVERRIDE = "user_locale_override"
    OVERRIDE_HISTORY = "override_history"
    PREFERENCE_FALLBACK = "locale_preference_fallback"

    @classmethod
    def all(cls):
        return [
            cls.LOCALE_PREFERENCE,
            cls.LOCALE_DETECTION_HISTORY,
            cls.USER_LOCALE_OVERRIDE,
            cls.OVERRIDE_HISTORY,
            cls.PREFERENCE_FALLBACK,
        ]


class PreferenceSource(str, Enum):
    AUTO = "auto"
    USER = "user"
    USER_OVERRIDE = "user_override"
    DEFAULT = "default"


# Higher wins when two backends disagree
SOURCE_PRIORITY = {
    PreferenceSource.USER_OVERRIDE.value: 4,
    PreferenceSource.USER.value: 3,
    PreferenceSource.AUTO.value: 2,
    PreferenceSource.DEFAULT.value: 1,
}


class OverrideAction(str, Enum):
    SET = "set"
    CLEAR = "clear"


class BackendTarget(str, Enum):
    LOCAL = "local"
    COOKIE = "cookie"
    BOTH = "both"


class StorageEventType(str, Enum):
    PREFERENCE_SAVED = "preference_saved"
    OVERRIDE_SET = "override_set"
    OVERRIDE_CLEARED = "override_cleared"
    DETECTION_ADDED = "detection_added"
    HISTORY_CLEANED = "history_cleaned"
    DATA_CLEARED = "data_cleared"
    DATA_EXPORTED = "data_exported"
    DATA_IMPORTED = "data_imported"
    BACKUP_CREATED = "backup_created"
    BACKUP_RESTORED = "backup_restored"
    BACKUP_DELETED = "backup_deleted"
    BACKUPS_CLEANED = "backups_cleaned"
    MAINTENANCE_COMPLETED = "maintenance_completed"
    SYNC_COMPLETED = "sync_completed"
    ERROR = "error"


def _enum_value(value: Union[Enum, str]) -> str:
    return value.value if isinstance(value, Enum) else value


@dataclass
class LocalePreference:
    """The single current locale choice."""

    locale: str
    source: str
    confidence: float
    timestamp: int
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_override(self) -> bool:
        return (
            _enum_value(self.source) == PreferenceSource.USER_OVERRIDE.value
            or self.metadata.get("isOverride") is True
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locale": self.locale,
            "source": _enum_value(self.source),
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "metadata": deep_clone(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalePreference":
        return cls(
            locale=data.get("locale"),
            source=data.get("source"),
            confidence=data.get("confidence"),
            timestamp=data.get("timestamp"),
            metadata=deep_clone(data.get("metadata") or {}),
        )


@dataclass
class OverrideRecord:
    locale: str
    timestamp: int
    action: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locale": self.locale,
            "timestamp": self.timestamp,
            "action": _enum_value(self.action),
            "metadata": deep_clone(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OverrideRecord":
        return cls(
            locale=data.get("locale"),
            timestamp=data.get("timestamp", 0),
            action=data.get("action"),
            metadata=deep_clone(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class DetectionRecord:
    """One automatic locale detection. Immutable once written."""

    locale: str
    source: str
    confidence: float
    timestamp: int
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "locale": self.locale,
            "source": self.source,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "metadata": deep_clone(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectionRecord":
        return cls(
            locale=data.get("locale"),
            source=data.get("source"),
            confidence=data.get("confidence"),
            timestamp=data.get("timestamp"),
            metadata=deep_clone(data.get("metadata") or {}),
        )


@dataclass
class StorageResult:
    """Discriminated outcome of a storage operation."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    source: Optional[str] = None
    timestamp: int = field(default_factory=current_timestamp)

    @classmethod
    def ok(cls, data: Any = None, source: Optional[str] = None) -> "StorageResult":
        return cls(success=True, data=data, source=source)

    @classmethod
    def fail(cls, error: Union[Exception, str], source: Optional[str] = None, data: Any = None) -> "StorageResult":
        if isinstance(error, Exception):
            return cls(success=False, data=data, error=str(error), error_type=type(error).__name__, source=source)
        return cls(success=False, data=data, error=error, source=source)


@dataclass
class StorageEvent:
    type: str
    timestamp: int
    source: str
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": _enum_value(self.type),
            "timestamp": self.timestamp,
            "source": self.source,
            "data": deep_clone(self.data) if self.data is not None else None,
        }
