import datetime
import json
from urllib.parse import unquote

import pytest
import pytz

import monitor
from core.classifier import build_snapshot
from core.models import RunResult
from core.storage import LAST_TRIGGER_KEY, LAST_UPDATE_KEY, MODELS_DATA_KEY, SnapshotStore, StorageError

from conftest import BARK_URL, CATALOG_URL, FakeResponse, FakeSession, catalog_payload, item, model

NOW = datetime.datetime(2024, 5, 1, 12, 0, tzinfo=pytz.UTC)
PREVIOUS_TS = "2024-05-01T11:00:00+00:00"


@pytest.fixture(autouse=True)
def no_api_key(monkeypatch):
    monkeypatch.setattr("fetchers.openrouter.OPENROUTER_API_KEY", "")


def seed_previous(kv, *ids):
    SnapshotStore(kv).save(build_snapshot([item(i) for i in ids], timestamp=PREVIOUS_TS))


def session_for(catalog_response, bark_response=None):
    return FakeSession({
        CATALOG_URL: catalog_response,
        BARK_URL: bark_response or FakeResponse(200, {"code": 200}),
    })


def current_catalog():
    return FakeResponse(200, catalog_payload(
        model("B:free"),
        model("C:free"),
        model("paid/model"),
    ))


def test_cold_start_saves_baseline_without_notifying(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    session = session_for(current_catalog())

    result = monitor.run_once(kv, session=session)

    assert result.success
    assert result.total_items == 3
    assert result.free_items == 2
    assert session.calls_to(BARK_URL) == []
    snap = SnapshotStore(kv).load()
    assert [it.id for it in snap.free_items] == ["B:free", "C:free"]
    assert kv.get(LAST_UPDATE_KEY) == snap.timestamp == result.timestamp


def test_changes_are_persisted_and_notified(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    seed_previous(kv, "A:free", "B:free")
    session = session_for(current_catalog())

    result = monitor.run_once(kv, session=session)

    assert result.success
    pushes = session.calls_to(BARK_URL)
    assert len(pushes) == 1
    body = unquote(pushes[0]["url"]).rsplit("/", 1)[-1]
    assert body == "New free models: C:free; Removed free models: A:free"
    assert pushes[0]["params"]["category"] == "update"
    snap = SnapshotStore(kv).load()
    assert [it.id for it in snap.free_items] == ["B:free", "C:free"]
    assert snap.timestamp != PREVIOUS_TS


def test_unchanged_free_set_sends_nothing(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    seed_previous(kv, "B:free", "C:free")
    session = session_for(current_catalog())

    assert monitor.run_once(kv, session=session).success
    assert session.calls_to(BARK_URL) == []


def test_changes_without_target_are_not_pushed(kv):
    seed_previous(kv, "A:free")
    session = session_for(current_catalog())

    assert monitor.run_once(kv, session=session).success
    assert session.calls_to(BARK_URL) == []


def test_rate_limited_fetch_leaves_store_untouched(kv):
    seed_previous(kv, "A:free", "B:free")
    before = kv.get(MODELS_DATA_KEY)
    session = session_for(FakeResponse(429, reason="Too Many Requests"))

    result = monitor.run_once(kv, session=session)

    assert result.success is False
    assert "429" in result.error
    assert result.to_dict()["success"] is False
    assert kv.get(MODELS_DATA_KEY) == before
    assert kv.get(LAST_UPDATE_KEY) == PREVIOUS_TS


def test_fetch_failure_sends_error_push(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    session = session_for(FakeResponse(503, reason="Service Unavailable"))

    result = monitor.run_once(kv, session=session)

    assert not result.success
    pushes = session.calls_to(BARK_URL)
    assert len(pushes) == 1
    assert pushes[0]["params"]["category"] == "error"
    assert "503" in unquote(pushes[0]["url"])


def test_failed_error_push_does_not_mask_result(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    session = session_for(FakeResponse(500, reason="Server Error"), FakeResponse(502, reason="Bad Gateway"))

    result = monitor.run_once(kv, session=session)

    assert not result.success
    assert "500" in result.error


def test_notification_failure_keeps_new_snapshot(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    seed_previous(kv, "A:free")
    session = session_for(current_catalog(), FakeResponse(500, reason="Server Error"))

    result = monitor.run_once(kv, session=session)

    assert result.success
    assert len(session.calls_to(BARK_URL)) == 1
    assert [it.id for it in SnapshotStore(kv).load().free_items] == ["B:free", "C:free"]


def test_save_failure_aborts_run(kv, monkeypatch):
    seed_previous(kv, "A:free")

    def broken_save(self, snapshot):
        raise StorageError("disk full")

    monkeypatch.setattr(SnapshotStore, "save", broken_save)
    session = session_for(current_catalog())

    result = monitor.run_once(kv, session=session)

    assert not result.success
    assert "disk full" in result.error
    assert session.calls_to(BARK_URL) == []


def test_unreadable_previous_snapshot_is_cold_start(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    kv.put(MODELS_DATA_KEY, "{corrupt")
    session = session_for(current_catalog())

    assert monitor.run_once(kv, session=session).success
    assert session.calls_to(BARK_URL) == []
    assert SnapshotStore(kv).load().total_items == 3


def test_scheduled_first_run_records_trigger(kv):
    session = session_for(current_catalog())

    result = monitor.run_scheduled(kv, now=NOW, session=session)

    assert result is not None and result.success
    assert kv.get(LAST_TRIGGER_KEY) == NOW.isoformat()
    assert len(session.calls_to(CATALOG_URL)) == 1


def test_scheduled_run_skipped_inside_interval(kv):
    kv.put(LAST_TRIGGER_KEY, (NOW - datetime.timedelta(minutes=4)).isoformat())
    session = session_for(current_catalog())

    assert monitor.run_scheduled(kv, now=NOW, session=session) is None
    assert session.calls == []


def test_scheduled_run_after_interval(kv):
    kv.put(LAST_TRIGGER_KEY, (NOW - datetime.timedelta(minutes=6)).isoformat())
    session = session_for(current_catalog())

    assert monitor.run_scheduled(kv, now=NOW, session=session).success


def test_overlapping_trigger_skips_after_accepted_run(kv):
    session = session_for(current_catalog())
    monitor.run_scheduled(kv, now=NOW, session=session)

    second = monitor.run_scheduled(kv, now=NOW + datetime.timedelta(seconds=30), session=session)

    assert second is None
    assert len(session.calls_to(CATALOG_URL)) == 1


def test_scheduled_failure_is_reported_not_raised(kv):
    session = session_for(FakeResponse(429, reason="Too Many Requests"))

    result = monitor.run_scheduled(kv, now=NOW, session=session)

    assert result is not None and not result.success
    # The trigger still counts, so the next tick waits out the interval.
    assert kv.get(LAST_TRIGGER_KEY) == NOW.isoformat()
    assert kv.get(MODELS_DATA_KEY) is None


def test_scheduled_swallows_storage_errors(kv, monkeypatch):
    def broken():
        raise StorageError("cannot open database")

    monkeypatch.setattr(kv, "ensure_db", broken)
    assert monitor.run_scheduled(kv, now=NOW, session=session_for(current_catalog())) is None


def test_status_reports_stored_state(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    monkeypatch.setenv("MONITOR_INTERVAL_MINUTES", "15")
    monitor.run_scheduled(kv, now=NOW, session=session_for(current_catalog()))

    status = monitor.get_status(kv)

    assert status["total_models"] == 3
    assert status["free_models"] == 2
    assert status["last_trigger"] == NOW.isoformat()
    assert status["last_update"] is not None
    assert status["monitor_interval"] == 15
    assert status["notification_target"] == "https://api.day.app/****"


def test_status_before_any_run(kv):
    status = monitor.get_status(kv)
    assert status["total_models"] == 0
    assert status["last_update"] is None
    assert status["notification_target"] is None


def test_result_payloads():
    ok = RunResult(success=True, total_items=10, free_items=3, timestamp=PREVIOUS_TS)
    assert ok.to_dict() == {"success": True, "total_items": 10, "free_items": 3, "timestamp": PREVIOUS_TS}
    failed = RunResult(success=False, error="boom", timestamp=PREVIOUS_TS)
    assert failed.to_dict() == {"success": False, "error": "boom", "timestamp": PREVIOUS_TS}


def test_main_once_prints_result(monkeypatch, capsys):
    monkeypatch.setattr(monitor, "MODE", "once")
    monkeypatch.setattr(
        monitor, "run_once",
        lambda: RunResult(success=False, error="OpenRouter API error: 429", timestamp=PREVIOUS_TS),
    )

    assert monitor.main() == 1
    assert json.loads(capsys.readouterr().out.strip().splitlines()[-1])["error"] == "OpenRouter API error: 429"


def test_main_test_notify_without_target(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(monitor, "MODE", "test-notify")
    monkeypatch.setattr("core.storage.DB_PATH", str(tmp_path / "cli.sqlite3"))

    assert monitor.main() == 1
    assert json.loads(capsys.readouterr().out.strip().splitlines()[-1])["success"] is False


def test_stored_snapshot_without_free_list_does_not_notify(kv, monkeypatch):
    monkeypatch.setenv("BARK_API_URL", BARK_URL)
    kv.put(MODELS_DATA_KEY, json.dumps({
        "timestamp": PREVIOUS_TS,
        "totalModels": 1,
        "allModels": [{"id": "B:free"}],
    }))
    session = session_for(current_catalog())

    assert monitor.run_once(kv, session=session).success
    assert session.calls_to(BARK_URL) == []
    assert [it.id for it in SnapshotStore(kv).load().free_items] == ["B:free", "C:free"]
