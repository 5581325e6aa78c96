"""
Logging setup shared by the CLI and the API server
"""
import logging
from typing import Optional, Union

from .config import get_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: Optional[Union[str, int]] = None) -> None:
    """Install the root handler. Defaults to the configured log level."""
    if level is None:
        level = get_settings().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)
    # uvicorn access lines duplicate the API's own request logging
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
