"""
Logging setup

Modules log through logging.getLogger(__name__); this only configures the root.
"""
import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once, using LOG_LEVEL from settings by default."""
    if level is None:
        from parcelhub.core.config import settings
        level = settings.LOG_LEVEL

    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # httpx logs every request at INFO, including URLs with tracking numbers
    logging.getLogger("httpx").setLevel(logging.WARNING)
