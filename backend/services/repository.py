from __future__ import annotations

from typing import Any

from backend.models.meeting_model import (
    ActionItem,
    Meeting,
    MeetingInsight,
    Transcription,
    User,
)


class MeetingRepository:
    """In-memory store for users, meetings and everything produced during a meeting.

    Records are replaced whole on update (last writer wins). Lookups that miss
    return ``None``.
    """

    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._meetings: dict[str, Meeting] = {}
        self._transcriptions: dict[str, Transcription] = {}
        self._action_items: dict[str, ActionItem] = {}
        self._insights: dict[str, MeetingInsight] = {}

    # users

    async def create_user(self, username: str, name: str, role: str | None = None) -> User:
        user = User(username=username, name=name, role=role or "Newsletter Publisher")
        self._users[user.id] = user
        return user

    async def get_user(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def get_user_by_username(self, username: str) -> User | None:
        for user in self._users.values():
            if user.username == username:
                return user
        return None

    # meetings

    async def create_meeting(self, title: str, **fields: Any) -> Meeting:
        meeting = Meeting(title=title, **fields)
        self._meetings[meeting.id] = meeting
        return meeting

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        return self._meetings.get(meeting_id)

    async def list_meetings_by_user(self, user_id: str) -> list[Meeting]:
        return [meeting for meeting in self._meetings.values() if meeting.user_id == user_id]

    async def update_meeting(self, meeting_id: str, **updates: Any) -> Meeting | None:
        current = self._meetings.get(meeting_id)
        if not current:
            return None
        updated = current.model_copy(update=updates)
        self._meetings[meeting_id] = updated
        return updated

    # transcriptions

    async def create_transcription(
        self,
        meeting_id: str,
        speaker_name: str,
        speaker_initials: str,
        speaker_color: str,
        content: str,
        is_streaming: bool = False,
    ) -> Transcription:
        transcription = Transcription(
            meeting_id=meeting_id,
            speaker_name=speaker_name,
            speaker_initials=speaker_initials,
            speaker_color=speaker_color,
            content=content,
            is_streaming=is_streaming,
        )
        self._transcriptions[transcription.id] = transcription
        return transcription

    async def get_transcriptions_by_meeting(self, meeting_id: str) -> list[Transcription]:
        items = [item for item in self._transcriptions.values() if item.meeting_id == meeting_id]
        return sorted(items, key=lambda item: item.timestamp)

    # action items

    async def create_action_item(self, meeting_id: str, title: str, **fields: Any) -> ActionItem:
        action_item = ActionItem(meeting_id=meeting_id, title=title, **fields)
        self._action_items[action_item.id] = action_item
        return action_item

    async def get_action_items_by_meeting(self, meeting_id: str) -> list[ActionItem]:
        items = [item for item in self._action_items.values() if item.meeting_id == meeting_id]
        return sorted(items, key=lambda item: item.extracted_at)

    async def update_action_item(self, action_item_id: str, **updates: Any) -> ActionItem | None:
        current = self._action_items.get(action_item_id)
        if not current:
            return None
        updated = current.model_copy(update=updates)
        self._action_items[action_item_id] = updated
        return updated

    # insights

    async def create_meeting_insight(self, meeting_id: str, **fields: Any) -> MeetingInsight:
        insight = MeetingInsight(meeting_id=meeting_id, **fields)
        self._insights[insight.id] = insight
        return insight

    async def get_meeting_insight(self, meeting_id: str) -> MeetingInsight | None:
        for insight in reversed(list(self._insights.values())):
            if insight.meeting_id == meeting_id:
                return insight
        return None
