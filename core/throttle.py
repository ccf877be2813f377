# core/throttle.py
import datetime
from typing import Optional

import pytz

from .logger import get_logger
from .models import ThrottleState
from .settings import clamp_interval
from .storage import LAST_TRIGGER_KEY, LAST_UPDATE_KEY, KVStore, StorageError

logger = get_logger(__name__)


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parse a stored ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        ts = datetime.datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp %r; ignoring.", value)
        return None
    if ts.tzinfo is None:
        ts = pytz.UTC.localize(ts)
    return ts


def read_state(kv: KVStore) -> ThrottleState:
    """Missing, unreadable or unparseable timestamps all read as 'never ran'."""
    state = ThrottleState()
    for key in (LAST_TRIGGER_KEY, LAST_UPDATE_KEY):
        try:
            raw = kv.get(key)
        except StorageError as e:
            logger.warning("Failed to read %s; treating as never run: %s", key, e)
            continue
        if key == LAST_TRIGGER_KEY:
            state.last_trigger = parse_timestamp(raw)
        else:
            state.last_update = parse_timestamp(raw)
    return state


def should_run(now: datetime.datetime, state: ThrottleState, interval_minutes: int) -> bool:
    last_run = state.last_run
    if last_run is None:
        return True
    interval = datetime.timedelta(minutes=clamp_interval(interval_minutes))
    return now - last_run >= interval


def next_run_in(
    now: datetime.datetime, state: ThrottleState, interval_minutes: int
) -> datetime.timedelta:
    last_run = state.last_run
    if last_run is None:
        return datetime.timedelta(0)
    interval = datetime.timedelta(minutes=clamp_interval(interval_minutes))
    return max(interval - (now - last_run), datetime.timedelta(0))


def record_trigger(kv: KVStore, now: datetime.datetime):
    kv.put(LAST_TRIGGER_KEY, now.isoformat())
