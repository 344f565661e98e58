from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from backend.utils.time_utils import utcnow

MeetingStatus = Literal["active", "paused", "completed"]


def _new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(CamelModel):
    id: str = Field(default_factory=_new_id)
    username: str
    name: str
    role: str | None = "Newsletter Publisher"
    created_at: datetime = Field(default_factory=utcnow)


class Meeting(CamelModel):
    id: str = Field(default_factory=_new_id)
    user_id: str | None = None
    title: str
    status: MeetingStatus = "active"
    start_time: datetime = Field(default_factory=utcnow)
    end_time: datetime | None = None
    duration: int | None = None
    audio_quality: str | None = "excellent"
    speaker_count: int | None = 1
    language: str | None = "en-US"


class Transcription(CamelModel):
    id: str = Field(default_factory=_new_id)
    meeting_id: str
    speaker_name: str
    speaker_initials: str
    speaker_color: str
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    is_streaming: bool = False


class ActionItem(CamelModel):
    id: str = Field(default_factory=_new_id)
    meeting_id: str
    title: str
    description: str | None = None
    assigned_to: str | None = None
    due_date: str | None = None
    status: str = "pending"
    is_completed: bool = False
    extracted_at: datetime = Field(default_factory=utcnow)


class MeetingInsight(CamelModel):
    id: str = Field(default_factory=_new_id)
    meeting_id: str
    key_topics: list[str] = Field(default_factory=list)
    sentiment: str | None = None
    sentiment_score: str | None = None
    summary: str | None = None
    next_steps: str | None = None
    generated_at: datetime = Field(default_factory=utcnow)


class MeetingCreate(CamelModel):
    title: str = Field(min_length=1)
    user_id: str | None = None
    status: MeetingStatus = "active"
    audio_quality: str | None = "excellent"
    speaker_count: int | None = 1
    language: str | None = "en-US"


class MeetingUpdate(CamelModel):
    status: MeetingStatus


class ActionItemUpdate(CamelModel):
    title: str | None = None
    description: str | None = None
    assigned_to: str | None = None
    due_date: str | None = None
    status: str | None = None
    is_completed: bool | None = None
