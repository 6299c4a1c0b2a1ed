import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from config import LOG_LEVEL, LOG_DIR, LOG_FILE, LOG_MAX_BYTES, LOG_BACKUP_COUNT

_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

_configured = False


def _configure_root():
    """Attach console + rotating file handlers once per process"""
    global _configured
    if _configured:
        return

    root = logging.getLogger("seed_scanner")
    root.setLevel(getattr(logging, LOG_LEVEL.upper(), logging.INFO))
    root.propagate = False

    formatter = logging.Formatter(_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(LOG_DIR, LOG_FILE),
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        root.warning(f"File logging disabled: {e}")

    _configured = True


def get_logger(name):
    """
    Component logger, e.g. get_logger("BALANCE_CHECKER")
    """
    _configure_root()
    return logging.getLogger(f"seed_scanner.{name}")
