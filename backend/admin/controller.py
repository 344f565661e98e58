from __future__ import annotations

from typing import Any

from backend.models.meeting_model import (
    ActionItem,
    ActionItemUpdate,
    Meeting,
    MeetingCreate,
    MeetingInsight,
    MeetingUpdate,
    Transcription,
)
from backend.services.connection_registry import ConnectionRegistry
from backend.services.repository import MeetingRepository
from backend.services.transcription import TranscriptionOrchestrator
from backend.utils.time_utils import now_iso, utcnow


class AdminController:
    def __init__(
        self,
        repository: MeetingRepository,
        registry: ConnectionRegistry,
        orchestrator: TranscriptionOrchestrator,
    ):
        self.repository = repository
        self.registry = registry
        self.orchestrator = orchestrator

    async def seed_default_user(self) -> None:
        if not await self.repository.get_user_by_username("john.smith"):
            await self.repository.create_user(username="john.smith", name="John Smith")

    def health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": now_iso(),
            "connections": self.registry.active_connections,
            "activeMeetings": self.registry.active_meetings,
        }

    def connection_stats(self) -> dict[str, Any]:
        return {
            "activeConnections": self.registry.active_connections,
            "activeMeetings": self.registry.active_meetings,
            "activeSessions": self.orchestrator.active_meeting_count,
            "timestamp": now_iso(),
        }

    async def create_meeting(self, payload: MeetingCreate) -> Meeting:
        return await self.repository.create_meeting(**payload.model_dump())

    async def get_meeting_detail(self, meeting_id: str) -> dict[str, Any]:
        meeting = await self.repository.get_meeting(meeting_id)
        if not meeting:
            raise KeyError(meeting_id)
        return {
            "meeting": meeting,
            "transcriptions": await self.repository.get_transcriptions_by_meeting(meeting_id),
            "actionItems": await self.repository.get_action_items_by_meeting(meeting_id),
            "insights": await self.repository.get_meeting_insight(meeting_id),
        }

    async def list_user_meetings(self, user_id: str) -> list[Meeting]:
        return await self.repository.list_meetings_by_user(user_id)

    async def update_meeting(self, meeting_id: str, payload: MeetingUpdate) -> Meeting:
        updates: dict[str, Any] = {"status": payload.status}
        if payload.status == "completed":
            updates["end_time"] = utcnow()
        meeting = await self.repository.update_meeting(meeting_id, **updates)
        if not meeting:
            raise KeyError(meeting_id)
        return meeting

    async def list_transcriptions(self, meeting_id: str) -> list[Transcription]:
        return await self.repository.get_transcriptions_by_meeting(meeting_id)

    async def list_action_items(self, meeting_id: str) -> list[ActionItem]:
        return await self.repository.get_action_items_by_meeting(meeting_id)

    async def update_action_item(self, action_item_id: str, payload: ActionItemUpdate) -> ActionItem:
        updates = payload.model_dump(exclude_unset=True)
        if updates.get("is_completed") is True and "status" not in updates:
            updates["status"] = "completed"
        action_item = await self.repository.update_action_item(action_item_id, **updates)
        if not action_item:
            raise KeyError(action_item_id)
        return action_item

    async def get_insights(self, meeting_id: str) -> MeetingInsight:
        insight = await self.repository.get_meeting_insight(meeting_id)
        if not insight:
            raise KeyError(meeting_id)
        return insight
