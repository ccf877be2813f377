# core/notifier.py
import os
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse, urlunparse

import requests

from .logger import get_logger
from .models import CatalogItem, ChangeSet
from .report import build_change_message, build_error_message, change_category

logger = get_logger(__name__)

BARK_GROUP = os.getenv("BARK_GROUP", "openrouter").strip() or "openrouter"
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))
USER_AGENT = os.getenv("USER_AGENT", "OpenRouter-Monitor/1.0")

SESSION = requests.Session()
SESSION.headers.update({"User-Agent": USER_AGENT})


class NotificationError(Exception):
    """The notification target did not accept a push."""


def build_bark_url(target: str, title: str, body: str) -> str:
    base = target if target.endswith("/") else target + "/"
    return f"{base}{quote(title, safe='')}/{quote(body, safe='')}"


def mask_target(target: str) -> str:
    """Hide the device key (last path segment) of a Bark URL."""
    parsed = urlparse(target)
    segments = parsed.path.split("/")
    for i in range(len(segments) - 1, -1, -1):
        if segments[i]:
            segments[i] = "****"
            break
    return urlunparse(parsed._replace(path="/".join(segments)))


def send_bark(
    target: str,
    title: str,
    body: str,
    category: str,
    session: Optional[requests.Session] = None,
):
    """Issue one push. No retries: a failed push is reported, not repeated."""
    session = session or SESSION
    url = build_bark_url(target, title, body)
    try:
        resp = session.get(
            url,
            params={"group": BARK_GROUP, "category": category},
            timeout=HTTP_TIMEOUT,
        )
    except requests.RequestException as e:
        raise NotificationError(f"Bark request failed: {e}") from e

    if not 200 <= resp.status_code < 300:
        logger.error("Bark notification failed: %s %s", resp.status_code, resp.reason)
        raise NotificationError(f"Bark push failed: {resp.status_code} {resp.reason}")

    logger.info("Bark notification sent (category=%s).", category)


def notify_changes(
    changes: ChangeSet,
    target: Optional[str],
    session: Optional[requests.Session] = None,
) -> bool:
    """
    Push a summary of added/removed free models.
    Returns False without any call when there is nothing to say or nowhere to
    say it; raises NotificationError when the push is rejected.
    """
    if changes.is_empty:
        return False
    if not target:
        logger.info("Bark URL not configured, skipping notification.")
        return False

    title, body = build_change_message(changes)
    send_bark(target, title, body, change_category(changes), session=session)
    return True


def notify_error(
    error: str,
    target: Optional[str],
    session: Optional[requests.Session] = None,
) -> bool:
    if not target:
        return False
    title, body = build_error_message(error)
    send_bark(target, title, body, "error", session=session)
    return True


def send_test_notification(
    target: Optional[str],
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    if not target:
        raise NotificationError("Bark API URL is not configured")

    changes = ChangeSet(
        added=[
            CatalogItem(id="test-model-1:free", name="Test Model 1 Free"),
            CatalogItem(id="test-model-2:free", name="Test Model 2 Free"),
        ],
        removed=[
            CatalogItem(id="old-model-1:free", name="Old Model 1 Free"),
            CatalogItem(id="old-model-2:free", name="Old Model 2 Free"),
        ],
    )
    notify_changes(changes, target, session=session)

    return {
        "success": True,
        "message": "Test notification sent",
        "target": mask_target(target),
        "test_data": {
            "added": [it.display_name for it in changes.added],
            "removed": [it.display_name for it in changes.removed],
        },
    }
