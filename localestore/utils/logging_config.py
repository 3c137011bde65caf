import logging
from typing import Optional

from ..config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_configured = False


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging once for the locale storage engine."""
    global _configured
    if _configured:
        return

    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )
    _configured = True
    logging.getLogger(__name__).debug(f"Logging configured at {level_name}")
