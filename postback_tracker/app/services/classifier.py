from __future__ import annotations

from dataclasses import replace
from typing import Callable, Iterable

from postback_tracker.app.models import (
    ActionKind,
    AttributionRecord,
    ButtonClick,
    ClassifiedAction,
    GroupJoin,
    Help,
    InboundEvent,
    PostbackRequest,
    StartBare,
    StartWithParams,
    TextMessage,
    utc_now,
)
from postback_tracker.app.services.dedupe import normalize
from postback_tracker.app.store import AttributionStore

DEEP_LINK_START = "deep_link_start"
GROUP_JOIN = "group_join"

StartPostbackPredicate = Callable[[AttributionRecord], bool]


class ClassificationError(Exception):
    pass


def network_predicate(networks: Iterable[str]) -> StartPostbackPredicate:
    # Case-sensitive: "Prop" in a deep link is a different network than "prop".
    allowed = {network.strip() for network in networks if network.strip()}

    def predicate(record: AttributionRecord) -> bool:
        return record.network in allowed

    return predicate


def parse_start_param(raw_param: str) -> dict[str, str]:
    parts = raw_param.strip().split("_")
    padded = parts[:4] + [""] * (4 - len(parts[:4]))
    visitor_id, campaign_id, zone_id, network = (part.strip() for part in padded)
    return {
        "visitor_id": visitor_id,
        "campaign_id": campaign_id,
        "zone_id": zone_id,
        "network": network,
    }


class EventClassifier:
    def __init__(
        self,
        store: AttributionStore,
        *,
        trigger_keywords: Iterable[str],
        start_postback: StartPostbackPredicate,
    ) -> None:
        self.store = store
        self.trigger_keywords = frozenset(normalize(word) for word in trigger_keywords if word)
        self.start_postback = start_postback

    def classify(self, event: InboundEvent) -> ClassifiedAction:
        subject_id = getattr(event, "subject_id", None)
        if isinstance(subject_id, int) and not isinstance(subject_id, bool):
            subject_id = str(subject_id)
            event = replace(event, subject_id=subject_id)
        if not isinstance(subject_id, str) or not subject_id.strip():
            raise ClassificationError(f"event without subject id: {type(event).__name__}")

        if isinstance(event, StartWithParams):
            return self._classify_start(event)
        if isinstance(event, StartBare):
            return ClassifiedAction(kind=ActionKind.welcome_only, subject_id=subject_id)
        if isinstance(event, Help):
            return ClassifiedAction(kind=ActionKind.help_only, subject_id=subject_id)
        if isinstance(event, GroupJoin):
            return self._classify_group_join(event)
        if isinstance(event, TextMessage):
            return self._classify_text(event)
        if isinstance(event, ButtonClick):
            return self._classify_button(event)
        raise ClassificationError(f"unsupported event type: {type(event).__name__}")

    def _classify_start(self, event: StartWithParams) -> ClassifiedAction:
        fields = parse_start_param(event.raw_param)
        if not fields["visitor_id"]:
            return ClassifiedAction(
                kind=ActionKind.welcome_only,
                subject_id=event.subject_id,
                fields={key: value for key, value in fields.items() if value},
            )
        record = AttributionRecord(
            subject_id=event.subject_id,
            visitor_id=fields["visitor_id"],
            campaign_id=fields["campaign_id"],
            zone_id=fields["zone_id"],
            network=fields["network"],
            created_at=utc_now(),
        )
        postbacks: tuple[PostbackRequest, ...] = ()
        if self.start_postback(record):
            postbacks = (
                PostbackRequest(
                    subject_id=event.subject_id,
                    visitor_id=record.visitor_id,
                    event_type=DEEP_LINK_START,
                ),
            )
        return ClassifiedAction(
            kind=ActionKind.store_and_welcome,
            subject_id=event.subject_id,
            record=record,
            postbacks=postbacks,
        )

    def _classify_group_join(self, event: GroupJoin) -> ClassifiedAction:
        postbacks: list[PostbackRequest] = []
        for member in event.members:
            if member.is_bot:
                continue
            record = self.store.lookup(member.subject_id)
            if record is None:
                continue
            postbacks.append(
                PostbackRequest(
                    subject_id=member.subject_id,
                    visitor_id=record.visitor_id,
                    event_type=GROUP_JOIN,
                )
            )
        if not postbacks:
            return ClassifiedAction(kind=ActionKind.no_action, subject_id=event.subject_id)
        return ClassifiedAction(
            kind=ActionKind.postback,
            subject_id=event.subject_id,
            postbacks=tuple(postbacks),
            fields={"eventType": GROUP_JOIN},
        )

    def _classify_text(self, event: TextMessage) -> ClassifiedAction:
        keyword = event.text.strip().lower()
        if keyword not in self.trigger_keywords:
            return ClassifiedAction(kind=ActionKind.no_action, subject_id=event.subject_id)
        record = self.store.lookup(event.subject_id)
        if record is None:
            return ClassifiedAction(kind=ActionKind.no_action, subject_id=event.subject_id)
        event_type = f"keyword_{keyword}"
        return ClassifiedAction(
            kind=ActionKind.postback,
            subject_id=event.subject_id,
            postbacks=(
                PostbackRequest(
                    subject_id=event.subject_id,
                    visitor_id=record.visitor_id,
                    event_type=event_type,
                ),
            ),
            fields={"eventType": event_type, "keyword": keyword},
        )

    def _classify_button(self, event: ButtonClick) -> ClassifiedAction:
        record = self.store.lookup(event.subject_id)
        if record is None:
            return ClassifiedAction(kind=ActionKind.no_action, subject_id=event.subject_id)
        event_type = f"button_{event.button_data}"
        return ClassifiedAction(
            kind=ActionKind.postback,
            subject_id=event.subject_id,
            postbacks=(
                PostbackRequest(
                    subject_id=event.subject_id,
                    visitor_id=record.visitor_id,
                    event_type=event_type,
                ),
            ),
            fields={"eventType": event_type, "buttonData": event.button_data},
        )
