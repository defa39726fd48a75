from __future__ import annotations

import logging
from typing import Optional

from postback_tracker.app.models import (
    ActionKind,
    ButtonClick,
    ClassifiedAction,
    GroupJoin,
    InboundEvent,
    PostbackResult,
    ResponseDirective,
    ResponseTemplate,
    TextMessage,
)
from postback_tracker.app.observability import MetricsRegistry
from postback_tracker.app.services.classifier import ClassificationError, EventClassifier
from postback_tracker.app.services.postback import PostbackWorkerPool
from postback_tracker.app.store import AttributionStore

logger = logging.getLogger("postback_tracker.router")

NOT_AVAILABLE = "N/A"

ACKNOWLEDGE_ONLY = ResponseDirective(template=ResponseTemplate.acknowledge_only)
NO_RESPONSE = ResponseDirective(template=ResponseTemplate.none)


class AttributionRouter:
    """Runs one inbound event through classification, storage and postbacks.

    ``handle`` never raises: every failure is logged, counted and turned into an
    acknowledge-only directive.
    """

    def __init__(
        self,
        *,
        store: AttributionStore,
        classifier: EventClassifier,
        postbacks: PostbackWorkerPool,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self.store = store
        self.classifier = classifier
        self.postbacks = postbacks
        self.metrics = metrics or MetricsRegistry()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def handle(self, event: InboundEvent) -> ResponseDirective:
        kind = getattr(event, "kind", type(event).__name__)
        if self._closed:
            logger.warning("router_closed event_kind=%s", kind)
            return self._degrade("router_closed")
        self.metrics.record_event(kind)

        try:
            action = self.classifier.classify(event)
        except ClassificationError as exc:
            logger.warning("classification_failed event_kind=%s error=%s", kind, exc)
            return self._degrade("classification_error")
        except Exception:
            logger.exception("classification_crashed event_kind=%s", kind)
            return self._degrade("classification_error")

        if action.record is not None:
            try:
                evicted = self.store.put(action.subject_id, action.record)
            except Exception:
                logger.exception("attribution_store_failed subject_id=%s", action.subject_id)
                return self._degrade("store_error")
            logger.info(
                "attribution_stored subject_id=%s visitor_id=%s campaign_id=%s zone_id=%s "
                "network=%s evicted=%s",
                action.subject_id,
                action.record.visitor_id,
                action.record.campaign_id,
                action.record.zone_id,
                action.record.network,
                len(evicted),
            )

        results: tuple[PostbackResult, ...] = ()
        if action.postbacks:
            try:
                results = tuple(self.postbacks.dispatch(list(action.postbacks)))
            except Exception:
                logger.exception(
                    "postback_dispatch_crashed subject_id=%s event_kind=%s",
                    action.subject_id,
                    kind,
                )
                return self._degrade("dispatch_error")
            for result in results:
                self.metrics.record_postback(result)

        return self._directive(event, action, results)

    def _degrade(self, failure_kind: str) -> ResponseDirective:
        self.metrics.record_router_failure(failure_kind)
        return ACKNOWLEDGE_ONLY

    @staticmethod
    def _directive(
        event: InboundEvent,
        action: ClassifiedAction,
        results: tuple[PostbackResult, ...],
    ) -> ResponseDirective:
        if action.kind == ActionKind.store_and_welcome and action.record is not None:
            record = action.record
            return ResponseDirective(
                template=ResponseTemplate.welcome,
                fields={
                    "visitorId": record.visitor_id,
                    "campaignId": record.campaign_id,
                    "zoneId": record.zone_id,
                    "network": record.network,
                },
                postbacks=results,
            )
        if action.kind == ActionKind.welcome_only:
            return ResponseDirective(
                template=ResponseTemplate.welcome,
                fields={
                    "visitorId": action.fields.get("visitor_id") or NOT_AVAILABLE,
                    "campaignId": action.fields.get("campaign_id") or NOT_AVAILABLE,
                    "zoneId": action.fields.get("zone_id") or NOT_AVAILABLE,
                    "network": action.fields.get("network") or NOT_AVAILABLE,
                },
            )
        if action.kind == ActionKind.help_only:
            return ResponseDirective(template=ResponseTemplate.help)
        if action.kind == ActionKind.postback:
            if isinstance(event, GroupJoin):
                template = ResponseTemplate.group_welcome
            elif isinstance(event, TextMessage):
                template = ResponseTemplate.keyword_confirmed
            elif isinstance(event, ButtonClick):
                template = ResponseTemplate.button_confirmed
            else:
                template = ResponseTemplate.acknowledge_only
            return ResponseDirective(
                template=template,
                fields=dict(action.fields),
                tracked_subject_ids=tuple(item.subject_id for item in action.postbacks),
                postbacks=results,
            )
        return NO_RESPONSE
