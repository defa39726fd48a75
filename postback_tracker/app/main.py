from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import PlainTextResponse
from starlette.concurrency import run_in_threadpool

from postback_tracker.app.models import HealthResponse, InboundEvent, WebhookResponse, utc_now
from postback_tracker.app.observability import MetricsRegistry, configure_logging, observe_request
from postback_tracker.app.persistence import JsonFilePersistence
from postback_tracker.app.services.channel_events import (
    UpdateParseError,
    events_from_update,
    parse_update,
)
from postback_tracker.app.services.classifier import EventClassifier, network_predicate
from postback_tracker.app.services.dedupe import PostbackDeduplicator
from postback_tracker.app.services.postback import (
    PostbackConfig,
    PostbackDispatcher,
    PostbackWorkerPool,
)
from postback_tracker.app.services.router import AttributionRouter
from postback_tracker.app.services.telegram import TelegramApiError, TelegramClient
from postback_tracker.app.services.templates import RenderedResponse, render_directive
from postback_tracker.app.services.webhooks import (
    SignatureVerificationError,
    verify_telegram_secret,
)
from postback_tracker.app.settings import Settings, load_settings
from postback_tracker.app.store import AttributionStore

logger = logging.getLogger("postback_tracker")


def build_attribution_router(
    settings: Settings,
    store: AttributionStore,
    metrics: MetricsRegistry,
) -> AttributionRouter:
    dispatcher = PostbackDispatcher(
        PostbackConfig(
            base_url=settings.propellerads_postback_url,
            aid=settings.propellerads_aid,
            tid=settings.propellerads_tid,
            timeout_seconds=settings.postback_timeout_seconds,
            max_attempts=settings.postback_max_attempts,
            backoff_seconds=settings.postback_backoff_seconds,
        )
    )
    pool = PostbackWorkerPool(
        dispatcher,
        max_workers=settings.postback_workers,
        deduplicator=PostbackDeduplicator(settings.postback_dedup_window_seconds),
    )
    classifier = EventClassifier(
        store,
        trigger_keywords=settings.trigger_keywords,
        start_postback=network_predicate(settings.start_postback_networks),
    )
    return AttributionRouter(store=store, classifier=classifier, postbacks=pool, metrics=metrics)


def shutdown_app(app: FastAPI) -> None:
    router: AttributionRouter = app.state.router
    router.close()
    router.postbacks.shutdown()
    app.state.store.flush()
    logger.info("shutdown_complete mappings=%s", app.state.store.count())


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    shutdown_app(app)


def create_app() -> FastAPI:
    settings = load_settings()
    configure_logging(settings.log_level)
    app = FastAPI(title="Telegram Postback Tracker", version="0.1.0", lifespan=lifespan)

    persistence = JsonFilePersistence(settings.storage_file) if settings.persistence_enabled else None
    store = AttributionStore(persistence=persistence, max_entries=settings.storage_max_entries)
    store.load()
    metrics = MetricsRegistry()

    telegram: Optional[TelegramClient] = None
    if settings.telegram_bot_token:
        telegram = TelegramClient(settings.telegram_bot_token)
    else:
        logger.warning("telegram_transport_disabled reason=missing TELEGRAM_BOT_TOKEN")

    app.state.settings = settings
    app.state.store = store
    app.state.metrics = metrics
    app.state.router = build_attribution_router(settings, store, metrics)
    app.state.telegram = telegram

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        return await observe_request(request, call_next, metrics=app.state.metrics)

    app.include_router(build_router())
    logger.info(
        "app_started env=%s mappings=%s storage=%s",
        settings.app_env,
        store.count(),
        settings.storage_file if settings.persistence_enabled else "memory",
    )
    return app


def get_store(request: Request) -> AttributionStore:
    return request.app.state.store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics(request: Request) -> MetricsRegistry:
    return request.app.state.metrics


def get_attribution_router(request: Request) -> AttributionRouter:
    return request.app.state.router


def get_telegram(request: Request) -> Optional[TelegramClient]:
    return request.app.state.telegram


def deliver_response(client: Optional[TelegramClient], rendered: RenderedResponse) -> int:
    if rendered.empty:
        return 0
    if client is None:
        logger.info("telegram_send_skipped messages=%s", len(rendered.messages))
        return 0
    sent = 0
    if rendered.callback_answer:
        try:
            client.answer_callback_query(
                rendered.callback_answer.callback_id,
                rendered.callback_answer.text,
            )
        except TelegramApiError as exc:
            logger.warning("telegram_callback_answer_failed error=%s", exc)
    for message in rendered.messages:
        try:
            client.send_message(message.chat_id, message.text)
            sent += 1
        except TelegramApiError as exc:
            logger.warning("telegram_send_failed chat_id=%s error=%s", message.chat_id, exc)
    return sent


def process_events(
    *,
    router: AttributionRouter,
    telegram: Optional[TelegramClient],
    settings: Settings,
    events: list[InboundEvent],
) -> int:
    sent = 0
    for event in events:
        directive = router.handle(event)
        rendered = render_directive(event, directive, trigger_keywords=settings.trigger_keywords)
        sent += deliver_response(telegram, rendered)
    return sent


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health", response_model=HealthResponse)
    def health(request: Request) -> HealthResponse:
        store = get_store(request)
        return HealthResponse(status="ok", timestamp=utc_now(), mappings=store.count())

    @router.get("/health/ready")
    def readiness(request: Request) -> dict[str, str]:
        settings = get_settings(request)
        if get_attribution_router(request).closed:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="shutting down",
            )
        persistence = getattr(get_store(request), "persistence", None)
        if settings.persistence_enabled and persistence and not persistence.ping():
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="storage unavailable",
            )
        return {"status": "ready"}

    @router.get("/metrics", response_class=PlainTextResponse)
    def metrics(request: Request) -> Response:
        registry = get_metrics(request)
        return PlainTextResponse(registry.to_prometheus(mappings=get_store(request).count()))

    @router.post("/webhook", response_model=WebhookResponse)
    async def telegram_webhook(request: Request) -> WebhookResponse:
        settings = get_settings(request)
        try:
            verify_telegram_secret(request.headers, settings.telegram_webhook_secret)
        except SignatureVerificationError as exc:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

        raw_body = await request.body()
        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="invalid json payload",
            ) from exc

        try:
            update = parse_update(payload)
        except UpdateParseError as exc:
            logger.warning("webhook_update_ignored error=%s", exc)
            return WebhookResponse(status="ignored", detail=str(exc))

        events = events_from_update(update)
        logger.info("webhook_received update_id=%s events=%s", update.update_id, len(events))
        if not events:
            return WebhookResponse(status="ok", events=0)

        await run_in_threadpool(
            process_events,
            router=get_attribution_router(request),
            telegram=get_telegram(request),
            settings=settings,
            events=events,
        )
        return WebhookResponse(status="ok", events=len(events))

    @router.post("/set-webhook")
    def set_webhook(request: Request) -> dict[str, Any]:
        settings = get_settings(request)
        if not settings.telegram_webhook_url:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="TELEGRAM_WEBHOOK_URL not configured",
            )
        client = _require_telegram(request)
        try:
            result = client.set_webhook(
                f"{settings.telegram_webhook_url}/webhook",
                secret_token=settings.telegram_webhook_secret or None,
            )
        except TelegramApiError as exc:
            logger.error("set_webhook_failed error=%s", exc)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
        logger.info("set_webhook_succeeded url=%s/webhook", settings.telegram_webhook_url)
        return {"success": True, "result": result}

    @router.get("/webhook-info")
    def webhook_info(request: Request) -> Any:
        client = _require_telegram(request)
        try:
            return client.get_webhook_info()
        except TelegramApiError as exc:
            logger.error("webhook_info_failed error=%s", exc)
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    return router


def _require_telegram(request: Request) -> TelegramClient:
    client = get_telegram(request)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="TELEGRAM_BOT_TOKEN not configured",
        )
    return client


app = create_app()
