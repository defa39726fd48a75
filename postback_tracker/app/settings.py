from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_TRIGGER_KEYWORDS = ("register", "signup", "join", "subscribe", "confirm")
DEFAULT_POSTBACK_URL = "http://ad.propellerads.com/conversion.php"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _list_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    values = tuple(item.strip().lower() for item in raw.split(",") if item.strip())
    return values or default


@dataclass(frozen=True)
class Settings:
    app_env: str
    log_level: str
    telegram_bot_token: str
    telegram_webhook_url: str
    telegram_webhook_secret: str
    bot_name: str
    bot_username: str
    propellerads_aid: str
    propellerads_tid: str
    propellerads_postback_url: str
    persistence_enabled: bool
    storage_file: str
    storage_max_entries: int
    trigger_keywords: tuple[str, ...]
    start_postback_networks: tuple[str, ...]
    postback_timeout_seconds: float
    postback_max_attempts: int
    postback_backoff_seconds: float
    postback_workers: int
    postback_dedup_window_seconds: int


def load_settings() -> Settings:
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        log_level=os.getenv("LOG_LEVEL", "info").strip().upper() or "INFO",
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
        telegram_webhook_url=os.getenv("TELEGRAM_WEBHOOK_URL", "").strip().rstrip("/"),
        telegram_webhook_secret=os.getenv("TELEGRAM_WEBHOOK_SECRET", "").strip(),
        bot_name=os.getenv("BOT_NAME", "Postback Tracker Bot").strip(),
        bot_username=os.getenv("BOT_USERNAME", "postback_tracker_bot").strip(),
        propellerads_aid=os.getenv("PROPELLERADS_AID", "").strip(),
        propellerads_tid=os.getenv("PROPELLERADS_TID", "").strip(),
        propellerads_postback_url=(
            os.getenv("PROPELLERADS_POSTBACK_URL", "").strip() or DEFAULT_POSTBACK_URL
        ),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        storage_file=os.getenv("STORAGE_FILE", "subid_map.json").strip() or "subid_map.json",
        storage_max_entries=max(1, _int_env("STORAGE_MAX_ENTRIES", 10000)),
        trigger_keywords=_list_env("TRIGGER_KEYWORDS", DEFAULT_TRIGGER_KEYWORDS),
        start_postback_networks=_list_env("START_POSTBACK_NETWORKS", ("prop",)),
        postback_timeout_seconds=max(0.5, min(30.0, _float_env("POSTBACK_TIMEOUT_SECONDS", 8.0))),
        postback_max_attempts=max(1, min(5, _int_env("POSTBACK_MAX_ATTEMPTS", 3))),
        postback_backoff_seconds=max(0.0, _float_env("POSTBACK_BACKOFF_SECONDS", 0.5)),
        postback_workers=max(1, _int_env("POSTBACK_WORKERS", 8)),
        postback_dedup_window_seconds=max(0, _int_env("POSTBACK_DEDUP_WINDOW_SECONDS", 0)),
    )
