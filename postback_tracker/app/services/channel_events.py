from __future__ import annotations

from typing import Any, Optional

from pydantic import ValidationError

from postback_tracker.app.models import (
    ButtonClick,
    GroupJoin,
    GroupMember,
    Help,
    InboundEvent,
    StartBare,
    StartWithParams,
    TelegramCallbackQuery,
    TelegramMessage,
    TelegramUpdate,
    TextMessage,
)


class UpdateParseError(Exception):
    pass


def parse_update(payload: Any) -> TelegramUpdate:
    if not isinstance(payload, dict):
        raise UpdateParseError("telegram update must be a json object")
    try:
        return TelegramUpdate.model_validate(payload)
    except ValidationError as exc:
        raise UpdateParseError(f"invalid telegram update: {exc.errors()}") from exc


def _split_command(text: str) -> tuple[Optional[str], str]:
    stripped = text.strip()
    if not stripped.startswith("/"):
        return None, stripped
    head, _, rest = stripped.partition(" ")
    command = head[1:].split("@", 1)[0].lower()
    return command, rest.strip()


def _message_events(message: TelegramMessage) -> list[InboundEvent]:
    events: list[InboundEvent] = []
    chat_id = str(message.chat.id)
    sender_id = str(message.from_user.id) if message.from_user else None

    if message.new_chat_members:
        events.append(
            GroupJoin(
                subject_id=sender_id or chat_id,
                members=tuple(
                    GroupMember(
                        subject_id=str(member.id),
                        is_bot=member.is_bot,
                        first_name=member.first_name,
                    )
                    for member in message.new_chat_members
                ),
                chat_id=chat_id,
                chat_title=message.chat.title,
            )
        )

    if not message.text or not sender_id:
        return events

    command, argument = _split_command(message.text)
    if command == "start":
        if argument:
            events.append(StartWithParams(subject_id=sender_id, raw_param=argument, chat_id=chat_id))
        else:
            events.append(StartBare(subject_id=sender_id, chat_id=chat_id))
    elif command == "help":
        events.append(Help(subject_id=sender_id, chat_id=chat_id))
    elif command is None:
        events.append(TextMessage(subject_id=sender_id, text=message.text, chat_id=chat_id))
    return events


def _callback_events(callback: TelegramCallbackQuery) -> list[InboundEvent]:
    if callback.data is None:
        return []
    chat_id = str(callback.message.chat.id) if callback.message else None
    return [
        ButtonClick(
            subject_id=str(callback.from_user.id),
            button_data=callback.data,
            chat_id=chat_id,
            callback_id=callback.id,
        )
    ]


def events_from_update(update: TelegramUpdate) -> list[InboundEvent]:
    events: list[InboundEvent] = []
    if update.message:
        events.extend(_message_events(update.message))
    if update.callback_query:
        events.extend(_callback_events(update.callback_query))
    return events
