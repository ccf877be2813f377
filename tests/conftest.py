import os

# Keep test runs off /data before any project module configures logging.
os.environ.setdefault("LOG_TO_FILE", "false")

import pytest
import requests

from core.models import CatalogItem, Pricing
from core.storage import KVStore

CATALOG_URL = "https://openrouter.ai/api/v1/models"
BARK_URL = "https://api.day.app/DEVICEKEY"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, reason="OK", invalid_json=False):
        self.status_code = status_code
        self.reason = reason
        self._payload = payload
        self._invalid_json = invalid_json

    def json(self):
        if self._invalid_json:
            raise ValueError("Expecting value")
        return self._payload


class FakeSession:
    """Stands in for requests.Session; routes GETs by URL prefix."""

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        for prefix, outcome in self.routes.items():
            if url.startswith(prefix):
                if isinstance(outcome, Exception):
                    raise outcome
                if isinstance(outcome, list):
                    return outcome.pop(0)
                return outcome
        raise requests.ConnectionError(f"no route for {url}")

    def calls_to(self, prefix):
        return [c for c in self.calls if c["url"].startswith(prefix)]


def catalog_payload(*entries):
    return {"data": list(entries)}


def model(model_id, prompt="0.000001", completion="0.000002", **extra):
    entry = {"id": model_id, "pricing": {"prompt": prompt, "completion": completion}}
    entry.update(extra)
    return entry


def item(model_id, prompt=None, completion=None, name=None):
    return CatalogItem(id=model_id, name=name, pricing=Pricing(prompt=prompt, completion=completion))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in ("BARK_API_URL", "MONITOR_INTERVAL_MINUTES"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def kv(tmp_path):
    store = KVStore(str(tmp_path / "state.sqlite3"))
    store.ensure_db()
    return store


@pytest.fixture
def fake_session():
    return FakeSession()
