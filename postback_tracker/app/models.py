from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN = "unknown"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AttributionRecord(BaseModel):
    """Click attribution for one chat subject.

    Serialized with the camelCase keys of the storage file; the subject id is
    the snapshot key and is not written into the value.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    subject_id: str = Field(default="", alias="subjectId", exclude=True)
    visitor_id: str = Field(alias="visitorId", min_length=1)
    campaign_id: str = Field(default=UNKNOWN, alias="campaignId")
    zone_id: str = Field(default=UNKNOWN, alias="zoneId")
    network: str = Field(default=UNKNOWN)
    created_at: datetime = Field(default_factory=utc_now, alias="timestamp")

    @field_validator("campaign_id", "zone_id", "network", mode="before")
    @classmethod
    def default_unknown(cls, value: Any) -> Any:
        if value is None:
            return UNKNOWN
        if isinstance(value, str) and not value.strip():
            return UNKNOWN
        return value

    @field_validator("subject_id", mode="before")
    @classmethod
    def subject_as_text(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def storage_value(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# Inbound events are built once by the webhook adapter and matched by type.


@dataclass(frozen=True)
class StartWithParams:
    kind: ClassVar[str] = "start_with_params"
    subject_id: str
    raw_param: str
    chat_id: Optional[str] = None


@dataclass(frozen=True)
class StartBare:
    kind: ClassVar[str] = "start_bare"
    subject_id: str
    chat_id: Optional[str] = None


@dataclass(frozen=True)
class Help:
    kind: ClassVar[str] = "help"
    subject_id: str
    chat_id: Optional[str] = None


@dataclass(frozen=True)
class GroupMember:
    subject_id: str
    is_bot: bool = False
    first_name: Optional[str] = None


@dataclass(frozen=True)
class GroupJoin:
    kind: ClassVar[str] = "group_join"
    subject_id: str
    members: tuple[GroupMember, ...] = ()
    chat_id: Optional[str] = None
    chat_title: Optional[str] = None

    @property
    def new_member_ids(self) -> list[str]:
        return [member.subject_id for member in self.members]


@dataclass(frozen=True)
class TextMessage:
    kind: ClassVar[str] = "text_message"
    subject_id: str
    text: str
    chat_id: Optional[str] = None


@dataclass(frozen=True)
class ButtonClick:
    kind: ClassVar[str] = "button_click"
    subject_id: str
    button_data: str
    chat_id: Optional[str] = None
    callback_id: Optional[str] = None


InboundEvent = Union[StartWithParams, StartBare, Help, GroupJoin, TextMessage, ButtonClick]


class ActionKind(str, Enum):
    welcome_only = "welcome_only"
    store_and_welcome = "store_and_welcome"
    help_only = "help_only"
    postback = "postback"
    no_action = "no_action"


class PostbackErrorKind(str, Enum):
    configuration_error = "configuration_error"
    network_error = "network_error"
    upstream_rejected = "upstream_rejected"
    duplicate_suppressed = "duplicate_suppressed"
    cancelled = "cancelled"


class ResponseTemplate(str, Enum):
    welcome = "welcome"
    help = "help"
    group_welcome = "group_welcome"
    keyword_confirmed = "keyword_confirmed"
    button_confirmed = "button_confirmed"
    acknowledge_only = "acknowledge_only"
    none = "none"


@dataclass(frozen=True)
class PostbackRequest:
    subject_id: str
    visitor_id: str
    event_type: str


@dataclass(frozen=True)
class PostbackResult:
    visitor_id: str
    event_type: str
    delivered: bool
    http_status: Optional[int] = None
    error_kind: Optional[PostbackErrorKind] = None
    attempts: int = 0


@dataclass(frozen=True)
class ClassifiedAction:
    kind: ActionKind
    subject_id: str
    record: Optional[AttributionRecord] = None
    postbacks: tuple[PostbackRequest, ...] = ()
    fields: dict[str, str] = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return self.kind == ActionKind.no_action


@dataclass(frozen=True)
class ResponseDirective:
    template: ResponseTemplate
    fields: dict[str, str] = field(default_factory=dict)
    tracked_subject_ids: tuple[str, ...] = ()
    postbacks: tuple[PostbackResult, ...] = ()


# Telegram Bot API payloads, reduced to the fields the adapter reads.


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: Optional[str] = None
    title: Optional[str] = None


class TelegramMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: Optional[int] = None
    from_user: Optional[TelegramUser] = Field(default=None, alias="from")
    chat: TelegramChat
    text: Optional[str] = None
    new_chat_members: list[TelegramUser] = Field(default_factory=list)


class TelegramCallbackQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    from_user: TelegramUser = Field(alias="from")
    data: Optional[str] = None
    message: Optional[TelegramMessage] = None


class TelegramUpdate(BaseModel):
    update_id: Optional[int] = None
    message: Optional[TelegramMessage] = None
    callback_query: Optional[TelegramCallbackQuery] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    mappings: int


class WebhookResponse(BaseModel):
    status: str
    events: int = 0
    detail: Optional[str] = None
