import datetime
import json
import math
import os
import time
from typing import Any, Dict, Optional

import pytz
import requests

from core.logger import get_logger
from core.classifier import build_snapshot
from core.diff import diff_free_items
from core.models import RunResult, now_utc_iso
from core.notifier import (
    NotificationError,
    mask_target,
    notify_changes,
    notify_error,
    send_test_notification,
)
from core.settings import get_monitor_interval, get_notification_target
from core.storage import KVStore, SnapshotStore, StorageError
from core.throttle import next_run_in, read_state, record_trigger, should_run
from fetchers import FetchError, fetch_models

logger = get_logger(__name__)

MODE = os.getenv("MODE", "daemon").lower()  # "daemon", "once", "status" or "test-notify"
# Granularity of the periodic trigger; the configured interval is enforced on top.
TICK_SECONDS = int(os.getenv("TICK_SECONDS", "60"))


def _push_error(error: str, target: Optional[str], session: Optional[requests.Session]) -> None:
    try:
        notify_error(error, target, session=session)
    except NotificationError as e:
        logger.error("Failed to send error notification: %s", e)


def run_once(
    kv: Optional[KVStore] = None,
    session: Optional[requests.Session] = None,
) -> RunResult:
    """
    One monitoring pass: fetch, classify, diff against the stored snapshot,
    persist, then notify. Never raises; failures come back in the result.
    """
    kv = kv or KVStore()
    target: Optional[str] = None

    try:
        kv.ensure_db()
        # Read fresh every run so settings changes apply without a restart.
        target = get_notification_target(kv)
        store = SnapshotStore(kv)

        logger.info("Starting OpenRouter models monitoring...")
        items = fetch_models(session=session)
        previous = store.load()
        snapshot = build_snapshot(items)

        changes = None
        if previous is None:
            logger.info("No previous snapshot; storing baseline without notifying.")
        else:
            changes = diff_free_items(previous.free_items, snapshot.free_items)

        store.save(snapshot)
    except (FetchError, StorageError) as e:
        logger.error("Monitoring failed: %s", e)
        _push_error(str(e), target, session)
        return RunResult(success=False, error=str(e), timestamp=now_utc_iso())
    except Exception as e:
        logger.exception("Unhandled error in run_once: %s", e)
        _push_error(str(e), target, session)
        return RunResult(success=False, error=str(e), timestamp=now_utc_iso())

    if changes is not None:
        if changes.is_empty:
            logger.info("No free model changes.")
        else:
            logger.info(
                "Free model changes: added=%s removed=%s",
                changes.added_ids, changes.removed_ids,
            )
            try:
                notify_changes(changes, target, session=session)
            except NotificationError as e:
                # The snapshot is already saved; a lost push is not rolled back.
                logger.error("Change notification failed: %s", e)

    logger.info(
        "Monitoring complete. Found %d free models out of %d total models.",
        len(snapshot.free_items), snapshot.total_items,
    )
    return RunResult(
        success=True,
        total_items=snapshot.total_items,
        free_items=len(snapshot.free_items),
        timestamp=snapshot.timestamp,
    )


def run_scheduled(
    kv: Optional[KVStore] = None,
    now: Optional[datetime.datetime] = None,
    session: Optional[requests.Session] = None,
) -> Optional[RunResult]:
    """
    Entry point for the periodic trigger. Runs only when the configured
    interval has elapsed; returns None when skipped. Never raises.
    """
    try:
        kv = kv or KVStore()
        kv.ensure_db()
        now = now or datetime.datetime.now(tz=pytz.UTC)

        interval = get_monitor_interval(kv)
        state = read_state(kv)
        if not should_run(now, state, interval):
            remaining = next_run_in(now, state, interval)
            logger.info(
                "Skipping scheduled monitoring run. Next run allowed in %d minute(s).",
                math.ceil(remaining.total_seconds() / 60),
            )
            return None

        # Recorded before fetching so overlapping triggers see it and skip.
        record_trigger(kv, now)

        result = run_once(kv, session=session)
        if not result.success:
            logger.error("Scheduled monitoring run failed: %s", result.error)
        return result
    except Exception as e:
        logger.exception("Scheduled monitoring error: %s", e)
        return None


def get_status(kv: Optional[KVStore] = None) -> Dict[str, Any]:
    """Read-only view of the stored snapshot and throttle state."""
    kv = kv or KVStore()
    kv.ensure_db()
    snapshot = SnapshotStore(kv).load()
    state = read_state(kv)
    target = get_notification_target(kv)

    return {
        "last_update": state.last_update.isoformat() if state.last_update else None,
        "last_trigger": state.last_trigger.isoformat() if state.last_trigger else None,
        "total_models": snapshot.total_items if snapshot else 0,
        "free_models": len(snapshot.free_items) if snapshot else 0,
        "monitor_interval": get_monitor_interval(kv),
        "notification_target": mask_target(target) if target else None,
    }


def run_daemon() -> None:
    logger.info("Starting daemon; trigger every %d seconds.", TICK_SECONDS)
    kv = KVStore()

    while True:
        run_scheduled(kv)
        time.sleep(max(1, TICK_SECONDS))


def main() -> int:
    if MODE == "once":
        result = run_once()
        print(json.dumps(result.to_dict(), ensure_ascii=False))
        return 0 if result.success else 1

    if MODE == "status":
        print(json.dumps(get_status(), ensure_ascii=False, indent=2))
        return 0

    if MODE == "test-notify":
        kv = KVStore()
        kv.ensure_db()
        try:
            summary = send_test_notification(get_notification_target(kv))
        except NotificationError as e:
            logger.error("Test notification failed: %s", e)
            print(json.dumps({"success": False, "error": str(e)}, ensure_ascii=False))
            return 1
        print(json.dumps(summary, ensure_ascii=False))
        return 0

    run_daemon()
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as e:
        logger.exception("Fatal monitor error: %s", e)
        raise SystemExit(2)
