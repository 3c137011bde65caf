from .settings import DAY_MS, Settings, get_settings

__all__ = ["DAY_MS", "Settings", "get_settings"]
