import logging

from korsify.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process (level from LOG_LEVEL). Safe to call repeatedly."""
    lvl = (level or settings.log_level or "INFO").upper()
    logging.basicConfig(level=getattr(logging, lvl, logging.INFO), format=LOG_FORMAT)
    logging.getLogger("korsify").setLevel(getattr(logging, lvl, logging.INFO))
