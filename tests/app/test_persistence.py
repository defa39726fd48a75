from __future__ import annotations

import json
from pathlib import Path

from fastapi.testclient import TestClient

from postback_tracker.app.main import create_app
from postback_tracker.app.persistence import JsonFilePersistence


def _new_client(monkeypatch, fake_http, storage_file: Path) -> TestClient:
    monkeypatch.setattr("urllib.request.urlopen", fake_http)
    monkeypatch.setenv("PERSISTENCE_ENABLED", "true")
    monkeypatch.setenv("STORAGE_FILE", str(storage_file))
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:test-token")
    monkeypatch.setenv("TELEGRAM_WEBHOOK_SECRET", "")
    monkeypatch.setenv("PROPELLERADS_AID", "aid42")
    monkeypatch.setenv("PROPELLERADS_TID", "tid7")
    monkeypatch.setenv("POSTBACK_BACKOFF_SECONDS", "0")
    return TestClient(create_app())


def _start(user_id: int, param: str) -> dict:
    return {
        "update_id": user_id,
        "message": {
            "from": {"id": user_id, "first_name": "User"},
            "chat": {"id": user_id, "type": "private"},
            "text": f"/start {param}",
        },
    }


def test_attribution_survives_restart(monkeypatch, fake_http, tmp_path) -> None:
    storage_file = tmp_path / "subid_map.json"
    first_client = _new_client(monkeypatch, fake_http, storage_file)
    first_client.post("/webhook", json=_start(321, "clk321_c_z_other"))

    restarted = _new_client(monkeypatch, fake_http, storage_file)
    assert restarted.get("/health").json()["mappings"] == 1

    keyword = {
        "update_id": 2,
        "message": {
            "from": {"id": 321, "first_name": "User"},
            "chat": {"id": 321, "type": "private"},
            "text": "confirm",
        },
    }
    restarted.post("/webhook", json=keyword)
    assert fake_http.postback_urls[-1].endswith("visitor_id=clk321")


def test_corrupt_storage_starts_empty(monkeypatch, fake_http, tmp_path) -> None:
    storage_file = tmp_path / "subid_map.json"
    storage_file.write_text("]]]", encoding="utf-8")

    client = _new_client(monkeypatch, fake_http, storage_file)

    assert client.get("/health").json()["mappings"] == 0
    assert client.get("/health/ready").json()["status"] == "ready"


def test_shutdown_flushes_and_refuses_new_work(monkeypatch, fake_http, tmp_path) -> None:
    storage_file = tmp_path / "subid_map.json"
    app_client = _new_client(monkeypatch, fake_http, storage_file)
    with app_client as client:
        client.post("/webhook", json=_start(1, "v1_c_z_prop"))
        storage_file.unlink()

    assert json.loads(storage_file.read_text(encoding="utf-8"))["1"]["visitorId"] == "v1"
    assert app_client.app.state.router.closed
    assert app_client.app.state.router.postbacks.closed


def test_storage_file_creates_missing_parent_directories(tmp_path) -> None:
    storage_file = tmp_path / "nested" / "subid_map.json"
    persistence = JsonFilePersistence(str(storage_file))
    assert storage_file.parent.exists()
    assert persistence.ping()
    assert persistence.load_snapshot() is None
