from __future__ import annotations

import pytest

from postback_tracker.app.models import (
    ButtonClick,
    GroupJoin,
    Help,
    StartBare,
    StartWithParams,
    TextMessage,
)
from postback_tracker.app.services.channel_events import (
    UpdateParseError,
    events_from_update,
    parse_update,
)


def message_update(text: str, *, user_id: int = 555, chat_id: int = 555) -> dict:
    return {
        "update_id": 1,
        "message": {
            "message_id": 10,
            "from": {"id": user_id, "is_bot": False, "first_name": "Asha"},
            "chat": {"id": chat_id, "type": "private"},
            "text": text,
        },
    }


def test_start_with_param() -> None:
    events = events_from_update(parse_update(message_update("/start abc123_456_789_prop")))
    assert events == [
        StartWithParams(subject_id="555", raw_param="abc123_456_789_prop", chat_id="555")
    ]


def test_start_without_param_and_bot_suffix() -> None:
    assert events_from_update(parse_update(message_update("/start"))) == [
        StartBare(subject_id="555", chat_id="555")
    ]
    assert events_from_update(parse_update(message_update("/start@postback_tracker_bot"))) == [
        StartBare(subject_id="555", chat_id="555")
    ]


def test_help_command() -> None:
    assert events_from_update(parse_update(message_update("/help"))) == [
        Help(subject_id="555", chat_id="555")
    ]


def test_plain_text_becomes_keyword_candidate() -> None:
    assert events_from_update(parse_update(message_update("Register"))) == [
        TextMessage(subject_id="555", text="Register", chat_id="555")
    ]


def test_unknown_command_is_ignored() -> None:
    assert events_from_update(parse_update(message_update("/status"))) == []


def test_group_join_members() -> None:
    update = {
        "update_id": 2,
        "message": {
            "from": {"id": 1, "first_name": "Admin"},
            "chat": {"id": -100, "type": "supergroup", "title": "Deals"},
            "new_chat_members": [
                {"id": 11, "is_bot": False, "first_name": "Ravi"},
                {"id": 12, "is_bot": True, "first_name": "Helper"},
            ],
        },
    }

    events = events_from_update(parse_update(update))

    assert len(events) == 1
    event = events[0]
    assert isinstance(event, GroupJoin)
    assert event.chat_id == "-100"
    assert event.chat_title == "Deals"
    assert event.new_member_ids == ["11", "12"]
    assert [member.is_bot for member in event.members] == [False, True]


def test_callback_query() -> None:
    update = {
        "update_id": 3,
        "callback_query": {
            "id": "cbq-1",
            "from": {"id": 555, "first_name": "Asha"},
            "data": "buy_now",
            "message": {"chat": {"id": 555}},
        },
    }
    assert events_from_update(parse_update(update)) == [
        ButtonClick(subject_id="555", button_data="buy_now", chat_id="555", callback_id="cbq-1")
    ]


def test_update_without_known_sections_has_no_events() -> None:
    assert events_from_update(parse_update({"update_id": 4, "edited_message": {}})) == []


def test_invalid_update_raises_parse_error() -> None:
    with pytest.raises(UpdateParseError):
        parse_update(["not", "an", "object"])
    with pytest.raises(UpdateParseError):
        parse_update({"message": {"text": "no chat"}})
