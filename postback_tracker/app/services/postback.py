from __future__ import annotations

import http.client
import logging
import time
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional
from urllib import parse, request
from urllib.error import HTTPError, URLError

from postback_tracker.app.models import PostbackErrorKind, PostbackRequest, PostbackResult
from postback_tracker.app.services.dedupe import PostbackDeduplicator

logger = logging.getLogger("postback_tracker.postback")

USER_AGENT = "postback-tracker/0.1"
# encodeURIComponent leaves these unescaped; ad networks expect the same bytes.
_VISITOR_SAFE_CHARS = "!~*'()"


class ConfigurationError(Exception):
    pass


@dataclass(frozen=True)
class PostbackConfig:
    base_url: str
    aid: str
    tid: str
    timeout_seconds: float = 8.0
    max_attempts: int = 3
    backoff_seconds: float = 0.5

    def validate(self) -> None:
        missing = [name for name in ("aid", "tid") if not getattr(self, name).strip()]
        if missing:
            raise ConfigurationError(f"postback credentials not configured: {', '.join(missing)}")
        if not self.base_url.strip():
            raise ConfigurationError("postback base url not configured")
        parts = parse.urlsplit(self.base_url.strip())
        if parts.scheme not in {"http", "https"} or not parts.netloc:
            raise ConfigurationError(f"postback base url must be absolute http(s): {self.base_url!r}")

    def worst_case_seconds(self) -> float:
        backoff = sum(self.backoff_seconds * (2 ** attempt) for attempt in range(self.max_attempts - 1))
        return self.timeout_seconds * self.max_attempts + backoff


class PostbackDispatcher:
    def __init__(
        self,
        config: PostbackConfig,
        *,
        opener: Optional[Callable] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self._opener = opener or request.urlopen
        self._sleep = sleep
        self.configuration_error: Optional[str] = None
        try:
            config.validate()
        except ConfigurationError as exc:
            self.configuration_error = str(exc)
            logger.error("postback_configuration_error detail=%s", exc)

    def build_url(self, visitor_id: str) -> str:
        query = (
            f"aid={parse.quote(self.config.aid, safe='')}"
            "&pid="
            f"&tid={parse.quote(self.config.tid, safe='')}"
            f"&visitor_id={parse.quote(visitor_id, safe=_VISITOR_SAFE_CHARS)}"
        )
        separator = "&" if "?" in self.config.base_url else "?"
        return f"{self.config.base_url}{separator}{query}"

    def send(self, visitor_id: str, event_type: str) -> PostbackResult:
        if self.configuration_error:
            return PostbackResult(
                visitor_id=visitor_id,
                event_type=event_type,
                delivered=False,
                error_kind=PostbackErrorKind.configuration_error,
                attempts=0,
            )

        url = self.build_url(visitor_id)
        logger.info("postback_sending event_type=%s url=%s", event_type, url)
        status: Optional[int] = None
        error_kind: Optional[PostbackErrorKind] = None
        attempts = 0
        for attempt in range(1, self.config.max_attempts + 1):
            attempts = attempt
            try:
                status = self._request_status(url)
            except (URLError, OSError, http.client.HTTPException) as exc:
                status = None
                error_kind = PostbackErrorKind.network_error
                logger.warning(
                    "postback_network_error visitor_id=%s event_type=%s attempt=%s error=%s",
                    visitor_id,
                    event_type,
                    attempt,
                    exc,
                )
            else:
                if status == 200:
                    logger.info(
                        "postback_delivered visitor_id=%s event_type=%s attempts=%s",
                        visitor_id,
                        event_type,
                        attempt,
                    )
                    return PostbackResult(
                        visitor_id=visitor_id,
                        event_type=event_type,
                        delivered=True,
                        http_status=status,
                        attempts=attempt,
                    )
                error_kind = PostbackErrorKind.upstream_rejected
                logger.warning(
                    "postback_rejected visitor_id=%s event_type=%s attempt=%s status=%s",
                    visitor_id,
                    event_type,
                    attempt,
                    status,
                )
                if status < 500:
                    break
            if attempt < self.config.max_attempts:
                self._sleep(self.config.backoff_seconds * (2 ** (attempt - 1)))

        logger.error(
            "postback_failed visitor_id=%s event_type=%s attempts=%s status=%s error_kind=%s",
            visitor_id,
            event_type,
            attempts,
            status,
            error_kind.value if error_kind else None,
        )
        return PostbackResult(
            visitor_id=visitor_id,
            event_type=event_type,
            delivered=False,
            http_status=status,
            error_kind=error_kind,
            attempts=attempts,
        )

    def _request_status(self, url: str) -> int:
        req = request.Request(url, method="GET", headers={"User-Agent": USER_AGENT})
        try:
            with self._opener(req, timeout=self.config.timeout_seconds) as response:
                return int(response.status)
        except HTTPError as exc:
            return int(exc.code)


class PostbackWorkerPool:
    """Runs postbacks on a bounded executor and collects their results.

    Waiting is capped per call so a hung upstream cannot pin a webhook handler;
    on shutdown queued calls are cancelled and in-flight ones are abandoned.
    """

    def __init__(
        self,
        dispatcher: PostbackDispatcher,
        *,
        max_workers: int = 8,
        deduplicator: Optional[PostbackDeduplicator] = None,
        result_timeout: Optional[float] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.deduplicator = deduplicator or PostbackDeduplicator(0)
        self.result_timeout = (
            result_timeout
            if result_timeout is not None
            else dispatcher.config.worst_case_seconds() + 1.0
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="postback",
        )
        self._lock = Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def dispatch(self, requests: list[PostbackRequest]) -> list[PostbackResult]:
        pending: list[tuple[PostbackRequest, Optional[Future], bool]] = []
        for item in requests:
            if not self.deduplicator.should_send(item.subject_id, item.event_type):
                logger.info(
                    "postback_suppressed subject_id=%s event_type=%s window_seconds=%s",
                    item.subject_id,
                    item.event_type,
                    self.deduplicator.window_seconds,
                )
                pending.append((item, None, True))
                continue
            pending.append((item, self._submit(item), False))

        results: list[PostbackResult] = []
        for item, future, suppressed in pending:
            if suppressed:
                results.append(self._failed(item, PostbackErrorKind.duplicate_suppressed))
                continue
            results.append(self._collect(item, future))
        return results

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.info("postback_pool_stopped")

    def _submit(self, item: PostbackRequest) -> Optional[Future]:
        with self._lock:
            if self._closed:
                return None
            return self._executor.submit(self.dispatcher.send, item.visitor_id, item.event_type)

    def _collect(self, item: PostbackRequest, future: Optional[Future]) -> PostbackResult:
        if future is None:
            return self._failed(item, PostbackErrorKind.cancelled)
        try:
            return future.result(timeout=self.result_timeout)
        except FutureTimeoutError:
            logger.warning(
                "postback_wait_timeout visitor_id=%s event_type=%s timeout=%.1f",
                item.visitor_id,
                item.event_type,
                self.result_timeout,
            )
            return self._failed(item, PostbackErrorKind.network_error)
        except CancelledError:
            return self._failed(item, PostbackErrorKind.cancelled)
        except Exception:
            logger.exception(
                "postback_send_crashed visitor_id=%s event_type=%s",
                item.visitor_id,
                item.event_type,
            )
            return self._failed(item, PostbackErrorKind.network_error)

    @staticmethod
    def _failed(item: PostbackRequest, kind: PostbackErrorKind) -> PostbackResult:
        return PostbackResult(
            visitor_id=item.visitor_id,
            event_type=item.event_type,
            delivered=False,
            error_kind=kind,
        )
