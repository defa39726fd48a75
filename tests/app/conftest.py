from __future__ import annotations

import io
import json
from typing import Optional
from urllib.error import HTTPError

import pytest
from fastapi.testclient import TestClient

from postback_tracker.app.main import create_app


class FakeResponse:
    def __init__(self, status: int, body: bytes = b"") -> None:
        self.status = status
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> bool:
        return False


class FakeHttp:
    """Stands in for urlopen: answers Telegram calls and scripted postback outcomes."""

    def __init__(self) -> None:
        self.postback_outcomes: list = []
        self.postback_urls: list[str] = []
        self.timeouts: list[Optional[float]] = []
        self.telegram_calls: list[tuple[str, dict]] = []

    def __call__(self, req, timeout: Optional[float] = None):
        url = req.full_url
        if url.startswith("https://api.telegram.org/"):
            method = url.rsplit("/", 1)[-1]
            payload = json.loads(req.data.decode("utf-8")) if req.data else {}
            self.telegram_calls.append((method, payload))
            body = json.dumps({"ok": True, "result": {"method": method}}).encode("utf-8")
            return FakeResponse(200, body)

        self.postback_urls.append(url)
        self.timeouts.append(timeout)
        outcome = self.postback_outcomes.pop(0) if self.postback_outcomes else 200
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome >= 400:
            raise HTTPError(url, outcome, "upstream error", hdrs=None, fp=io.BytesIO(b""))
        return FakeResponse(outcome)

    def sent_messages(self) -> list[dict]:
        return [payload for method, payload in self.telegram_calls if method == "sendMessage"]


@pytest.fixture()
def fake_http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture()
def client(monkeypatch: pytest.MonkeyPatch, fake_http: FakeHttp) -> TestClient:
    monkeypatch.setattr("urllib.request.urlopen", fake_http)
    monkeypatch.setenv("PERSISTENCE_ENABLED", "false")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "123:test-token")
    monkeypatch.setenv("TELEGRAM_WEBHOOK_SECRET", "")
    monkeypatch.setenv("TELEGRAM_WEBHOOK_URL", "")
    monkeypatch.setenv("PROPELLERADS_AID", "aid42")
    monkeypatch.setenv("PROPELLERADS_TID", "tid7")
    monkeypatch.setenv("PROPELLERADS_POSTBACK_URL", "")
    monkeypatch.setenv("START_POSTBACK_NETWORKS", "prop")
    monkeypatch.delenv("TRIGGER_KEYWORDS", raising=False)
    monkeypatch.setenv("POSTBACK_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("POSTBACK_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("POSTBACK_DEDUP_WINDOW_SECONDS", "0")
    app = create_app()
    return TestClient(app)
