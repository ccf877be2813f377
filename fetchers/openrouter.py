# fetchers/openrouter.py
import os
from typing import Any, List, Optional

import requests

from core.logger import get_logger
from core.models import CatalogItem

logger = get_logger(__name__)

OPENROUTER_API_URL = os.getenv("OPENROUTER_API_URL", "https://openrouter.ai/api/v1/models")
OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "").strip()
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))
USER_AGENT = os.getenv("USER_AGENT", "OpenRouter-Monitor/1.0")

SESSION = requests.Session()
SESSION.headers.update({"User-Agent": USER_AGENT, "Content-Type": "application/json"})


class FetchError(Exception):
    """The catalog API could not be read or returned an unusable response."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
        self.message = message


def _parse_entries(entries: List[Any]) -> List[CatalogItem]:
    items: List[CatalogItem] = []
    for raw in entries:
        if not isinstance(raw, dict) or not isinstance(raw.get("id"), str) or not raw["id"]:
            logger.debug("Skipping malformed catalog entry: %r", raw)
            continue
        items.append(CatalogItem.from_dict(raw))
    return items


def fetch_models(
    session: Optional[requests.Session] = None,
    api_url: Optional[str] = None,
    api_key: Optional[str] = None,
) -> List[CatalogItem]:
    """
    Fetch the full model list with a single GET.
    Retrying is left to the caller: a failed call raises FetchError.
    """
    session = session or SESSION
    url = api_url or OPENROUTER_API_URL
    key = OPENROUTER_API_KEY if api_key is None else api_key

    headers = {}
    # Optional: only raises the rate limit
    if key:
        headers["Authorization"] = f"Bearer {key}"

    logger.info("Fetching OpenRouter models from %s", url)
    try:
        resp = session.get(url, headers=headers, timeout=HTTP_TIMEOUT)
    except requests.RequestException as e:
        raise FetchError(f"OpenRouter API request failed: {e}") from e

    if not 200 <= resp.status_code < 300:
        logger.warning("OpenRouter returned status %s at %s.", resp.status_code, url)
        raise FetchError(
            f"OpenRouter API error: {resp.status_code} {resp.reason}",
            status=resp.status_code,
        )

    try:
        data = resp.json()
    except ValueError as e:
        raise FetchError("OpenRouter API returned invalid JSON", status=resp.status_code) from e

    entries = data.get("data") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise FetchError(
            "OpenRouter API response has no 'data' list", status=resp.status_code
        )

    items = _parse_entries(entries)
    if not items:
        raise FetchError("No models received from OpenRouter API", status=resp.status_code)

    logger.info("OpenRouter: found %d models.", len(items))
    return items
