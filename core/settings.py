# core/settings.py
import json
import math
import os
import re
from typing import Any, Dict, Optional

from .logger import get_logger
from .storage import SETTINGS_KEY, KVStore, StorageError

logger = get_logger(__name__)

DEFAULT_INTERVAL_MINUTES = 5
MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 60

_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


def parse_minutes(value: Any) -> Optional[int]:
    """
    Read a whole number of minutes the lenient way the settings page stores
    them: "10.5" and "5m" give 10 and 5, "abc" gives None.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else None
    m = _LEADING_INT.match(str(value))
    return int(m.group(1)) if m else None


def clamp_interval(value: Any) -> int:
    minutes = parse_minutes(value)
    if minutes is None:
        minutes = DEFAULT_INTERVAL_MINUTES
    return min(max(minutes, MIN_INTERVAL_MINUTES), MAX_INTERVAL_MINUTES)


def load_app_settings(kv: KVStore) -> Dict[str, Any]:
    """Settings saved by the web settings page; {} when absent or unreadable."""
    try:
        raw = kv.get(SETTINGS_KEY)
    except StorageError as e:
        logger.warning("Failed to read stored settings: %s", e)
        return {}
    if not raw:
        return {}
    try:
        settings = json.loads(raw)
    except ValueError as e:
        logger.warning("Failed to parse stored settings: %s", e)
        return {}
    if not isinstance(settings, dict):
        logger.warning("Stored settings are not an object; ignoring.")
        return {}
    return settings


def get_monitor_interval(kv: KVStore) -> int:
    interval = DEFAULT_INTERVAL_MINUTES

    env_interval = os.getenv("MONITOR_INTERVAL_MINUTES", "").strip()
    if env_interval:
        parsed = parse_minutes(env_interval)
        if parsed is None:
            logger.warning("Ignoring non-numeric MONITOR_INTERVAL_MINUTES=%r", env_interval)
        else:
            interval = parsed

    stored = load_app_settings(kv).get("monitorInterval")
    if stored:
        parsed = parse_minutes(stored)
        if parsed is None:
            logger.warning("Ignoring non-numeric stored monitorInterval=%r", stored)
        else:
            interval = parsed

    return clamp_interval(interval)


def get_notification_target(kv: KVStore) -> Optional[str]:
    env_target = os.getenv("BARK_API_URL", "").strip()
    if env_target:
        return env_target
    stored = load_app_settings(kv).get("barkBaseUrl")
    if isinstance(stored, str) and stored.strip():
        return stored.strip()
    return None
