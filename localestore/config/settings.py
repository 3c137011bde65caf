import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()


def _getenv(key: str, default: str) -> str:
    """Return environment value or the provided default if unset or empty.

    This makes .env truly optional and also guards against empty-string
    values (e.g., KEY="") which would otherwise override sensible defaults
    and cause type conversions like int("") to fail.
    """
    value = os.getenv(key)
    if value is None:
        return default
    value_str = str(value).strip()
    return value_str if value_str != "" else default


def _getenv_list(key: str, default: str) -> Tuple[str, ...]:
    raw = _getenv(key, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class Settings:
    """Locale storage engine configuration settings."""

    # Locale settings
    supported_locales: Tuple[str, ...] = field(default_factory=lambda: _getenv_list("SUPPORTED_LOCALES", "en,zh"))
    default_locale: str = field(default_factory=lambda: _getenv("DEFAULT_LOCALE", "en"))

    # Storage settings
    storage_dir: str = field(default_factory=lambda: _getenv("LOCALE_STORAGE_DIR", ".locale_storage"))
    local_quota_bytes: int = field(default_factory=lambda: int(_getenv("LOCAL_STORAGE_QUOTA_BYTES", str(5 * 1024 * 1024))))
    cookie_max_bytes: int = field(default_factory=lambda: int(_getenv("COOKIE_MAX_BYTES", "4096")))
    cookie_max_age_s: int = field(default_factory=lambda: int(_getenv("COOKIE_MAX_AGE_SECONDS", str(365 * 24 * 60 * 60))))

    # Cache settings
    cache_ttl_ms: int = field(default_factory=lambda: int(_getenv("LOCALE_CACHE_TTL_MS", str(5 * 60 * 1000))))

    # Log caps
    max_detection_history: int = field(default_factory=lambda: int(_getenv("MAX_DETECTION_HISTORY", "100")))
    max_override_history: int = field(default_factory=lambda: int(_getenv("MAX_OVERRIDE_HISTORY", "50")))
    max_event_history: int = field(default_factory=lambda: int(_getenv("MAX_EVENT_HISTORY", "100")))

    # Maintenance settings
    max_backups: int = field(default_factory=lambda: int(_getenv("MAX_BACKUPS", "5")))
    detection_max_age_ms: int = field(default_factory=lambda: int(_getenv("DETECTION_MAX_AGE_MS", str(30 * DAY_MS))))

    # Logging
    log_level: str = field(default_factory=lambda: _getenv("LOG_LEVEL", "INFO"))

    def get_storage_path(self) -> Path:
        """Get the storage directory path, creating it if necessary."""
        path = Path(self.storage_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def is_supported_locale(self, locale) -> bool:
        return isinstance(locale, str) and locale in self.supported_locales


_settings = None


def get_settings() -> Settings:
    """Get singleton settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
