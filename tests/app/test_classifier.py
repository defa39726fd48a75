from __future__ import annotations

import pytest

from postback_tracker.app.models import (
    ActionKind,
    AttributionRecord,
    ButtonClick,
    GroupJoin,
    GroupMember,
    Help,
    StartBare,
    StartWithParams,
    TextMessage,
)
from postback_tracker.app.services.classifier import (
    ClassificationError,
    EventClassifier,
    network_predicate,
    parse_start_param,
)
from postback_tracker.app.settings import DEFAULT_TRIGGER_KEYWORDS
from postback_tracker.app.store import AttributionStore


@pytest.fixture()
def store() -> AttributionStore:
    return AttributionStore()


@pytest.fixture()
def classifier(store: AttributionStore) -> EventClassifier:
    return EventClassifier(
        store,
        trigger_keywords=DEFAULT_TRIGGER_KEYWORDS,
        start_postback=network_predicate(["prop"]),
    )


def test_parse_start_param_positional_fields() -> None:
    assert parse_start_param("abc123_456_789_prop") == {
        "visitor_id": "abc123",
        "campaign_id": "456",
        "zone_id": "789",
        "network": "prop",
    }
    assert parse_start_param("test123")["campaign_id"] == ""
    assert parse_start_param("a_b_c_d_extra")["network"] == "d"


def test_start_with_prop_network_stores_and_posts_back(classifier: EventClassifier) -> None:
    action = classifier.classify(StartWithParams(subject_id="100", raw_param="v_c_z_prop"))

    assert action.kind == ActionKind.store_and_welcome
    assert action.record.visitor_id == "v"
    assert action.record.campaign_id == "c"
    assert action.record.zone_id == "z"
    assert action.record.network == "prop"
    assert [(p.visitor_id, p.event_type) for p in action.postbacks] == [("v", "deep_link_start")]


def test_start_with_other_network_stores_without_postback(classifier: EventClassifier) -> None:
    action = classifier.classify(StartWithParams(subject_id="100", raw_param="v_c_z_other"))
    assert action.kind == ActionKind.store_and_welcome
    assert action.postbacks == ()


def test_start_without_network_defaults_to_unknown(classifier: EventClassifier) -> None:
    action = classifier.classify(StartWithParams(subject_id="100", raw_param="justclick"))
    assert action.record.network == "unknown"
    assert action.record.campaign_id == "unknown"
    assert action.postbacks == ()


def test_start_postback_predicate_is_configurable(store: AttributionStore) -> None:
    classifier = EventClassifier(
        store,
        trigger_keywords=DEFAULT_TRIGGER_KEYWORDS,
        start_postback=network_predicate(["prop", "mgid"]),
    )
    action = classifier.classify(StartWithParams(subject_id="1", raw_param="v_c_z_mgid"))
    assert [p.event_type for p in action.postbacks] == ["deep_link_start"]


def test_start_with_empty_visitor_is_welcome_only(classifier: EventClassifier) -> None:
    action = classifier.classify(StartWithParams(subject_id="100", raw_param=""))
    assert action.kind == ActionKind.welcome_only
    assert action.record is None
    assert action.postbacks == ()

    leading = classifier.classify(StartWithParams(subject_id="100", raw_param="_c_z_prop"))
    assert leading.kind == ActionKind.welcome_only
    assert leading.fields["network"] == "prop"


def test_bare_start_and_help(classifier: EventClassifier) -> None:
    assert classifier.classify(StartBare(subject_id="1")).kind == ActionKind.welcome_only
    assert classifier.classify(Help(subject_id="1")).kind == ActionKind.help_only


def test_keyword_match_is_trimmed_and_case_insensitive(
    classifier: EventClassifier, store: AttributionStore
) -> None:
    store.put("5", AttributionRecord(visitor_id="click5"))

    action = classifier.classify(TextMessage(subject_id="5", text=" Register "))

    assert action.kind == ActionKind.postback
    assert [(p.visitor_id, p.event_type) for p in action.postbacks] == [
        ("click5", "keyword_register")
    ]
    assert action.fields["keyword"] == "register"


def test_keyword_substring_does_not_match(
    classifier: EventClassifier, store: AttributionStore
) -> None:
    store.put("5", AttributionRecord(visitor_id="click5"))
    assert classifier.classify(TextMessage(subject_id="5", text="registered")).is_noop
    assert classifier.classify(TextMessage(subject_id="5", text="please register")).is_noop


def test_keyword_without_record_is_no_action(classifier: EventClassifier) -> None:
    assert classifier.classify(TextMessage(subject_id="6", text="join")).is_noop


def test_group_join_only_tracks_known_humans(
    classifier: EventClassifier, store: AttributionStore
) -> None:
    store.put("s1", AttributionRecord(visitor_id="v1"))
    store.put("bot", AttributionRecord(visitor_id="vbot"))
    event = GroupJoin(
        subject_id="admin",
        members=(
            GroupMember(subject_id="s1"),
            GroupMember(subject_id="s2"),
            GroupMember(subject_id="bot", is_bot=True),
        ),
    )

    action = classifier.classify(event)

    assert action.kind == ActionKind.postback
    assert [(p.subject_id, p.visitor_id, p.event_type) for p in action.postbacks] == [
        ("s1", "v1", "group_join")
    ]


def test_group_join_without_known_members_is_no_action(classifier: EventClassifier) -> None:
    event = GroupJoin(subject_id="admin", members=(GroupMember(subject_id="x"),))
    assert classifier.classify(event).is_noop


def test_button_click_requires_record(
    classifier: EventClassifier, store: AttributionStore
) -> None:
    assert classifier.classify(ButtonClick(subject_id="7", button_data="buy")).is_noop

    store.put("7", AttributionRecord(visitor_id="v7"))
    action = classifier.classify(ButtonClick(subject_id="7", button_data="buy"))
    assert [p.event_type for p in action.postbacks] == ["button_buy"]
    assert action.fields["buttonData"] == "buy"


def test_classifier_never_writes_the_store(
    classifier: EventClassifier, store: AttributionStore
) -> None:
    classifier.classify(StartWithParams(subject_id="1", raw_param="v_c_z_prop"))
    assert store.lookup("1") is None


def test_event_without_subject_is_rejected(classifier: EventClassifier) -> None:
    with pytest.raises(ClassificationError):
        classifier.classify(StartBare(subject_id=" "))


def test_unknown_event_type_is_rejected(classifier: EventClassifier) -> None:
    class Mystery:
        subject_id = "1"

    with pytest.raises(ClassificationError):
        classifier.classify(Mystery())  # type: ignore[arg-type]


def test_start_network_match_is_case_sensitive(classifier: EventClassifier) -> None:
    upper = classifier.classify(StartWithParams(subject_id="1", raw_param="v_c_z_PROP"))
    mixed = classifier.classify(StartWithParams(subject_id="2", raw_param="v_c_z_Prop"))

    assert upper.kind == ActionKind.store_and_welcome
    assert upper.postbacks == ()
    assert mixed.postbacks == ()


def test_integer_subject_id_is_normalized(classifier: EventClassifier) -> None:
    action = classifier.classify(StartWithParams(subject_id=42, raw_param="v_c_z_prop"))

    assert action.subject_id == "42"
    assert action.record.subject_id == "42"
    assert action.postbacks[0].subject_id == "42"
