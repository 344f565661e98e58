"""Websocket frame contracts.

Outbound events are ``{"type": ..., "data": {...}}`` envelopes; inbound
commands are flat objects discriminated by ``type``. Keys are camelCase on the
wire.
"""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from pydantic.alias_generators import to_camel

from backend.models.meeting_model import MeetingStatus
from backend.services.errors import MalformedCommandError


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# server -> client
# ---------------------------------------------------------------------------


class TranscriptionData(_WireModel):
    meeting_id: str
    speaker_name: str
    speaker_initials: str
    speaker_color: str
    content: str
    is_streaming: bool


class ActionItemData(_WireModel):
    meeting_id: str
    title: str
    description: str | None = None
    assigned_to: str | None = None
    due_date: str | None = None
    status: str | None = None
    is_completed: bool | None = None


class MeetingStatusData(_WireModel):
    meeting_id: str
    status: MeetingStatus
    duration: int
    speaker_count: int


class ErrorData(_WireModel):
    message: str
    code: str | None = None


class ConnectionStatusData(_WireModel):
    connected: bool
    active_users: int


class PongData(_WireModel):
    timestamp: int


class TranscriptionEvent(_WireModel):
    type: Literal["transcription"] = "transcription"
    data: TranscriptionData


class ActionItemEvent(_WireModel):
    type: Literal["action_item"] = "action_item"
    data: ActionItemData


class MeetingStatusEvent(_WireModel):
    type: Literal["meeting_status"] = "meeting_status"
    data: MeetingStatusData


class ErrorEvent(_WireModel):
    type: Literal["error"] = "error"
    data: ErrorData


class ConnectionStatusEvent(_WireModel):
    type: Literal["connection_status"] = "connection_status"
    data: ConnectionStatusData


class PingEvent(_WireModel):
    type: Literal["ping"] = "ping"
    data: dict[str, object] | None = None


class PongEvent(_WireModel):
    type: Literal["pong"] = "pong"
    data: PongData


WSMessage = Annotated[
    Union[
        TranscriptionEvent,
        ActionItemEvent,
        MeetingStatusEvent,
        ErrorEvent,
        ConnectionStatusEvent,
        PingEvent,
        PongEvent,
    ],
    Field(discriminator="type"),
]

_ws_message_adapter: TypeAdapter[WSMessage] = TypeAdapter(WSMessage)


def encode_message(message: WSMessage) -> str:
    return message.model_dump_json(by_alias=True, exclude_none=True)


def decode_message(raw: str | bytes) -> WSMessage:
    return _ws_message_adapter.validate_json(raw)


def error_event(message: str, code: str | None = None) -> ErrorEvent:
    return ErrorEvent(data=ErrorData(message=message, code=code))


def connection_status_event(active_users: int) -> ConnectionStatusEvent:
    return ConnectionStatusEvent(data=ConnectionStatusData(connected=True, active_users=active_users))


# ---------------------------------------------------------------------------
# client -> server
# ---------------------------------------------------------------------------


class SpeakerInfo(_WireModel):
    name: str
    initials: str
    color: str


class JoinMeetingCommand(_WireModel):
    type: Literal["join_meeting"]
    meeting_id: str = Field(min_length=1)


class AudioStreamCommand(_WireModel):
    type: Literal["audio_stream"]
    audio_text: str = Field(min_length=1)


class TextStreamCommand(_WireModel):
    type: Literal["text_stream"]
    partial_text: str
    speaker_info: SpeakerInfo


class ChatMessageCommand(_WireModel):
    type: Literal["chat_message"]
    content: str = Field(min_length=1)


class StopMeetingCommand(_WireModel):
    type: Literal["stop_meeting"]
    meeting_id: str | None = None


class PingCommand(_WireModel):
    type: Literal["ping"]


class PongCommand(_WireModel):
    type: Literal["pong"]


ClientCommand = Annotated[
    Union[
        JoinMeetingCommand,
        AudioStreamCommand,
        TextStreamCommand,
        ChatMessageCommand,
        StopMeetingCommand,
        PingCommand,
        PongCommand,
    ],
    Field(discriminator="type"),
]

_client_command_adapter: TypeAdapter[ClientCommand] = TypeAdapter(ClientCommand)


def parse_command(raw: str | bytes) -> ClientCommand:
    try:
        return _client_command_adapter.validate_json(raw)
    except ValidationError as exc:
        raise MalformedCommandError(str(exc)) from exc
