# core/logger.py
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# requests logs every connection through urllib3; only keep its warnings
# unless the monitor itself runs at DEBUG.
NOISY_LOGGERS = ("urllib3",)

_configured = False


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def resolve_level(name: Optional[str]) -> int:
    """Map LOG_LEVEL ("debug", "WARNING", "10") to a logging level; INFO otherwise."""
    value = (name or "").strip().upper()
    if value.isdigit():
        return int(value)
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else logging.INFO


def build_file_handler(path: str, level: int, max_bytes: int, backups: int) -> Optional[logging.Handler]:
    """Rotating file handler, or None when the log directory is not writable."""
    try:
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backups)
    except OSError as e:
        logging.getLogger(__name__).warning("File logging disabled (%s): %s", path, e)
        return None
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def build_stdout_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging():
    global _configured
    if _configured:
        return

    level = resolve_level(os.getenv("LOG_LEVEL", "INFO"))
    root = logging.getLogger()
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)

    # Avoid duplicate handlers
    if not root.handlers:
        if _env_flag("LOG_TO_STDOUT", "true"):
            root.addHandler(build_stdout_handler(level))
        if _env_flag("LOG_TO_FILE", "true"):
            handler = build_file_handler(
                os.getenv("LOG_FILE", "/data/openrouter_monitor.log"),
                level,
                int(os.getenv("LOG_MAX_BYTES", str(2 * 1024 * 1024))),
                int(os.getenv("LOG_BACKUPS", "3")),
            )
            if handler is not None:
                root.addHandler(handler)

    _configured = True


def get_logger(name: str | None = None) -> logging.Logger:
    setup_logging()
    return logging.getLogger(name)
