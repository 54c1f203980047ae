"""Logging setup for the envoy command line."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from envoy import config

_configured = False


def configure_logging(debug: bool = config.DEBUG, log_path: Optional[Path] = None) -> logging.Logger:
    """Attach the file and stderr handlers to the "envoy" logger.

    The rotating file log is best effort: when the cache directory cannot be
    created the client carries on with stderr only. Warnings and errors always
    reach stderr, prefixed the way the shell expects ("envoy: ...").
    """
    global _configured

    logger = logging.getLogger("envoy")
    if _configured:
        return logger

    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    path = log_path or config.LOG_PATH
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path, maxBytes=1024 * 1024, backupCount=3
        )
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        logger.addHandler(file_handler)
    except OSError:
        pass  # Can't write to log file, continue without

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    stderr_handler.setFormatter(logging.Formatter("envoy: %(message)s"))
    logger.addHandler(stderr_handler)

    _configured = True
    return logger
