from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from postback_tracker.app.models import (
    ButtonClick,
    GroupJoin,
    InboundEvent,
    ResponseDirective,
    ResponseTemplate,
)


@dataclass(frozen=True)
class OutgoingMessage:
    chat_id: str
    text: str


@dataclass(frozen=True)
class CallbackAnswer:
    callback_id: str
    text: str


@dataclass
class RenderedResponse:
    messages: list[OutgoingMessage] = field(default_factory=list)
    callback_answer: Optional[CallbackAnswer] = None

    @property
    def empty(self) -> bool:
        return not self.messages and self.callback_answer is None


def welcome_text(fields: dict[str, str]) -> str:
    return (
        "🎉 Welcome! Thanks for joining our bot.\n\n"
        "📊 Tracking Info:\n"
        f"• Click ID: {fields.get('visitorId') or 'N/A'}\n"
        f"• Campaign: {fields.get('campaignId') or 'N/A'}\n"
        f"• Zone: {fields.get('zoneId') or 'N/A'}\n"
        f"• Network: {fields.get('network') or 'N/A'}\n\n"
        "Type /help for available commands."
    )


def help_text(trigger_keywords: Iterable[str]) -> str:
    keywords = ", ".join(trigger_keywords)
    return (
        "ℹ️ Available commands:\n"
        "/start - start the bot\n"
        "/help - show this message\n\n"
        f"Reply with one of these words to confirm an action: {keywords}"
    )


def group_welcome_text(first_name: Optional[str]) -> str:
    return f"👋 Welcome {first_name or 'User'}! Your interaction is being tracked."


def keyword_confirmed_text(keyword: str) -> str:
    return f'✅ Action "{keyword}" confirmed and tracked!'


def button_confirmed_text(button_data: str) -> str:
    return f'✅ Button action "{button_data}" has been tracked!'


def button_answer_text(button_data: str) -> str:
    return f'Action "{button_data}" tracked successfully!'


def render_directive(
    event: InboundEvent,
    directive: ResponseDirective,
    *,
    trigger_keywords: Iterable[str] = (),
) -> RenderedResponse:
    rendered = RenderedResponse()
    chat_id = event.chat_id
    template = directive.template

    if template in {ResponseTemplate.acknowledge_only, ResponseTemplate.none} or not chat_id:
        return rendered

    if template == ResponseTemplate.welcome:
        rendered.messages.append(OutgoingMessage(chat_id, welcome_text(directive.fields)))
    elif template == ResponseTemplate.help:
        rendered.messages.append(OutgoingMessage(chat_id, help_text(trigger_keywords)))
    elif template == ResponseTemplate.group_welcome and isinstance(event, GroupJoin):
        names = {member.subject_id: member.first_name for member in event.members}
        for subject_id in directive.tracked_subject_ids:
            rendered.messages.append(
                OutgoingMessage(chat_id, group_welcome_text(names.get(subject_id)))
            )
    elif template == ResponseTemplate.keyword_confirmed:
        keyword = directive.fields.get("keyword", "")
        rendered.messages.append(OutgoingMessage(chat_id, keyword_confirmed_text(keyword)))
    elif template == ResponseTemplate.button_confirmed and isinstance(event, ButtonClick):
        button_data = directive.fields.get("buttonData", event.button_data)
        if event.callback_id:
            rendered.callback_answer = CallbackAnswer(
                event.callback_id, button_answer_text(button_data)
            )
        rendered.messages.append(OutgoingMessage(chat_id, button_confirmed_text(button_data)))
    return rendered
