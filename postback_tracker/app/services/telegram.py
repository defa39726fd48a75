from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional
from urllib import request
from urllib.error import HTTPError, URLError

logger = logging.getLogger("postback_tracker.telegram")

API_BASE_URL = "https://api.telegram.org"


class TelegramApiError(Exception):
    pass


class TelegramClient:
    """Minimal Bot API client; every call is a JSON POST to ``/bot<token>/<method>``."""

    def __init__(
        self,
        token: str,
        *,
        base_url: str = API_BASE_URL,
        opener: Optional[Callable] = None,
        timeout: float = 10.0,
    ) -> None:
        if not token:
            raise ValueError("telegram bot token is required")
        self._token = token
        self.base_url = base_url.rstrip("/")
        self._opener = opener or request.urlopen
        self.timeout = timeout

    def call(self, method: str, payload: Optional[dict[str, Any]] = None) -> Any:
        body = json.dumps(payload or {}, separators=(",", ":")).encode("utf-8")
        req = request.Request(
            f"{self.base_url}/bot{self._token}/{method}",
            data=body,
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        try:
            with self._opener(req, timeout=self.timeout) as response:
                raw = response.read().decode("utf-8")
        except HTTPError as exc:
            raw = exc.read().decode("utf-8", errors="replace")
            raise TelegramApiError(f"{method} failed with status {exc.code}: {_describe(raw)}") from exc
        except (URLError, OSError) as exc:
            reason = exc.reason if isinstance(exc, URLError) else exc
            raise TelegramApiError(f"{method} request failed: {reason}") from exc

        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise TelegramApiError(f"{method} response was not valid json") from exc
        if not isinstance(decoded, dict) or not decoded.get("ok"):
            raise TelegramApiError(f"{method} rejected: {_describe(raw)}")
        return decoded.get("result")

    def send_message(self, chat_id: str, text: str) -> Any:
        return self.call("sendMessage", {"chat_id": chat_id, "text": text})

    def answer_callback_query(self, callback_id: str, text: str) -> Any:
        return self.call("answerCallbackQuery", {"callback_query_id": callback_id, "text": text})

    def set_webhook(self, url: str, *, secret_token: Optional[str] = None) -> Any:
        payload: dict[str, Any] = {"url": url}
        if secret_token:
            payload["secret_token"] = secret_token
        return self.call("setWebhook", payload)

    def get_webhook_info(self) -> Any:
        return self.call("getWebhookInfo")

    def get_me(self) -> Any:
        return self.call("getMe")


def _describe(raw: str) -> str:
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return raw[:200]
    if isinstance(decoded, dict) and decoded.get("description"):
        return str(decoded["description"])
    return raw[:200]
