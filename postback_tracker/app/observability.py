from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from threading import Lock

from fastapi import Request

from postback_tracker.app.models import PostbackResult

logger = logging.getLogger("postback_tracker")


@dataclass
class MetricsSnapshot:
    requests_total: int
    requests_5xx: int
    total_latency_ms: float
    postbacks_total: int = 0
    postbacks_delivered: int = 0
    postbacks_failed: dict[str, int] = field(default_factory=dict)
    events_by_kind: dict[str, int] = field(default_factory=dict)
    router_failures: dict[str, int] = field(default_factory=dict)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._requests_total = 0
        self._requests_5xx = 0
        self._total_latency_ms = 0.0
        self._by_route_status: dict[tuple[str, int], int] = {}
        self._postbacks_total = 0
        self._postbacks_delivered = 0
        self._postbacks_failed: dict[str, int] = {}
        self._events_by_kind: dict[str, int] = {}
        self._router_failures: dict[str, int] = {}

    def record(self, *, route: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self._requests_total += 1
            if status_code >= 500:
                self._requests_5xx += 1
            self._total_latency_ms += latency_ms
            key = (route, status_code)
            self._by_route_status[key] = self._by_route_status.get(key, 0) + 1

    def record_event(self, kind: str) -> None:
        with self._lock:
            self._events_by_kind[kind] = self._events_by_kind.get(kind, 0) + 1

    def record_router_failure(self, failure_kind: str) -> None:
        with self._lock:
            self._router_failures[failure_kind] = self._router_failures.get(failure_kind, 0) + 1

    def record_postback(self, result: PostbackResult) -> None:
        with self._lock:
            self._postbacks_total += 1
            if result.delivered:
                self._postbacks_delivered += 1
                return
            kind = result.error_kind.value if result.error_kind else "unknown"
            self._postbacks_failed[kind] = self._postbacks_failed.get(kind, 0) + 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_5xx=self._requests_5xx,
                total_latency_ms=self._total_latency_ms,
                postbacks_total=self._postbacks_total,
                postbacks_delivered=self._postbacks_delivered,
                postbacks_failed=dict(self._postbacks_failed),
                events_by_kind=dict(self._events_by_kind),
                router_failures=dict(self._router_failures),
            )

    def to_prometheus(self, *, mappings: int = 0) -> str:
        snap = self.snapshot()
        avg_latency = (
            snap.total_latency_ms / snap.requests_total if snap.requests_total else 0.0
        )
        lines = [
            "# HELP postback_tracker_requests_total Total HTTP requests",
            "# TYPE postback_tracker_requests_total counter",
            f"postback_tracker_requests_total {snap.requests_total}",
            "# HELP postback_tracker_requests_5xx_total Total 5xx HTTP requests",
            "# TYPE postback_tracker_requests_5xx_total counter",
            f"postback_tracker_requests_5xx_total {snap.requests_5xx}",
            "# HELP postback_tracker_request_avg_latency_ms Average request latency ms",
            "# TYPE postback_tracker_request_avg_latency_ms gauge",
            f"postback_tracker_request_avg_latency_ms {avg_latency:.2f}",
            "# HELP postback_tracker_mappings Attribution records currently stored",
            "# TYPE postback_tracker_mappings gauge",
            f"postback_tracker_mappings {mappings}",
            "# HELP postback_tracker_postbacks_total Postbacks attempted",
            "# TYPE postback_tracker_postbacks_total counter",
            f"postback_tracker_postbacks_total {snap.postbacks_total}",
            "# HELP postback_tracker_postbacks_delivered_total Postbacks answered with HTTP 200",
            "# TYPE postback_tracker_postbacks_delivered_total counter",
            f"postback_tracker_postbacks_delivered_total {snap.postbacks_delivered}",
        ]
        lines.extend(
            [
                "# HELP postback_tracker_postbacks_failed_total Failed postbacks by error kind",
                "# TYPE postback_tracker_postbacks_failed_total counter",
            ]
        )
        for kind, count in sorted(snap.postbacks_failed.items()):
            lines.append(f'postback_tracker_postbacks_failed_total{{error_kind="{kind}"}} {count}')
        lines.extend(
            [
                "# HELP postback_tracker_events_total Inbound events by kind",
                "# TYPE postback_tracker_events_total counter",
            ]
        )
        for kind, count in sorted(snap.events_by_kind.items()):
            lines.append(f'postback_tracker_events_total{{kind="{kind}"}} {count}')
        lines.extend(
            [
                "# HELP postback_tracker_router_failures_total Events degraded to acknowledge-only",
                "# TYPE postback_tracker_router_failures_total counter",
            ]
        )
        for kind, count in sorted(snap.router_failures.items()):
            lines.append(f'postback_tracker_router_failures_total{{kind="{kind}"}} {count}')
        lines.extend(
            [
                "# HELP postback_tracker_route_requests_total HTTP requests by route and status",
                "# TYPE postback_tracker_route_requests_total counter",
            ]
        )
        with self._lock:
            for (route, status_code), count in sorted(self._by_route_status.items()):
                metric_line = (
                    'postback_tracker_route_requests_total'
                    f'{{route="{route}",status="{status_code}"}} {count}'
                )
                lines.append(
                    metric_line
                )
        return "\n".join(lines) + "\n"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


async def observe_request(
    request: Request,
    call_next,
    *,
    metrics: MetricsRegistry,
):
    start = time.perf_counter()
    path = request.url.path
    try:
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(route=path, status_code=response.status_code, latency_ms=latency_ms)
        logger.info(
            "request_complete method=%s path=%s status=%s latency_ms=%.2f",
            request.method,
            path,
            response.status_code,
            latency_ms,
        )
        return response
    except Exception:
        latency_ms = (time.perf_counter() - start) * 1000.0
        metrics.record(route=path, status_code=500, latency_ms=latency_ms)
        logger.exception(
            "request_failed method=%s path=%s latency_ms=%.2f",
            request.method,
            path,
            latency_ms,
        )
        raise
