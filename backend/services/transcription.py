from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

from backend.config import Settings, get_settings
from backend.models.meeting_model import Meeting, Transcription
from backend.models.ws_messages import (
    ActionItemData,
    ActionItemEvent,
    MeetingStatusData,
    MeetingStatusEvent,
    SpeakerInfo,
    TranscriptionData,
    TranscriptionEvent,
    WSMessage,
    error_event,
)
from backend.services.repository import MeetingRepository
from backend.services.text_service import TextService
from backend.utils.time_utils import utcnow

Emit = Callable[[WSMessage], None]


@dataclass
class MeetingSession:
    created_at: float
    last_action_item_check: float
    utterances: list[str] = field(default_factory=list)
    extracted_upto: int = 0
    speakers: dict[str, SpeakerInfo] = field(default_factory=dict)

    def pending_text(self) -> str:
        return " ".join(self.utterances[self.extracted_upto :])

    def speaker_context(self) -> str:
        if not self.speakers:
            return "No previous speakers"
        known = ", ".join(f"{info.name} ({info.initials})" for info in self.speakers.values())
        return f"Known speakers: {known}"


def _normalize_title(title: str) -> str:
    return " ".join(title.lower().split())


class TranscriptionOrchestrator:
    def __init__(
        self,
        repository: MeetingRepository,
        text_service: TextService,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repository = repository
        self.text_service = text_service
        self.settings = settings or get_settings()
        self.clock = clock
        self.sessions: dict[str, MeetingSession] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self.logger = logging.getLogger(__name__)

    @property
    def active_meeting_count(self) -> int:
        return len(self.sessions)

    @asynccontextmanager
    async def meeting_lock(self, meeting_id: str) -> AsyncIterator[None]:
        """Serialize work on one meeting. The lock is dropped once nobody holds or awaits it."""
        lock = self._locks.get(meeting_id)
        if lock is None:
            lock = self._locks[meeting_id] = asyncio.Lock()
        self._lock_users[meeting_id] = self._lock_users.get(meeting_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[meeting_id] -= 1
            if not self._lock_users[meeting_id]:
                del self._lock_users[meeting_id]
                self._locks.pop(meeting_id, None)

    def _session_for(self, meeting_id: str) -> MeetingSession:
        session = self.sessions.get(meeting_id)
        if session is None:
            now = self.clock()
            session = self.sessions[meeting_id] = MeetingSession(created_at=now, last_action_item_check=now)
            self.logger.info("Started transcription session for meeting %s", meeting_id)
        return session

    async def process_utterance(self, meeting_id: str, text: str, emit: Emit) -> None:
        async with self.meeting_lock(meeting_id):
            try:
                await self._process_utterance(meeting_id, text, emit)
            except Exception:
                self.logger.exception("Transcription processing failed for meeting %s", meeting_id)
                emit(error_event("Failed to process transcription", "TRANSCRIPTION_ERROR"))

    async def _process_utterance(self, meeting_id: str, text: str, emit: Emit) -> None:
        session = self._session_for(meeting_id)

        result = await self.text_service.transcribe(meeting_id, text, session.speaker_context())
        session.speakers[result.speaker_name] = SpeakerInfo(
            name=result.speaker_name,
            initials=result.speaker_initials,
            color=result.speaker_color,
        )

        transcription = await self.repository.create_transcription(
            meeting_id=meeting_id,
            speaker_name=result.speaker_name,
            speaker_initials=result.speaker_initials,
            speaker_color=result.speaker_color,
            content=result.text,
            is_streaming=False,
        )
        emit(self._transcription_event(transcription))

        session.utterances.append(result.text)
        if self._should_extract(session):
            pending = session.pending_text()
            session.extracted_upto = len(session.utterances)
            session.last_action_item_check = self.clock()
            await self.extract_action_items(meeting_id, pending, emit)

        await self._publish_stats(meeting_id, emit)

    def _should_extract(self, session: MeetingSession) -> bool:
        elapsed = self.clock() - session.last_action_item_check
        return (
            elapsed > self.settings.action_item_interval_seconds
            or len(session.pending_text()) > self.settings.action_item_buffer_chars
        )

    async def relay_partial_text(self, meeting_id: str, partial_text: str, speaker: SpeakerInfo, emit: Emit) -> None:
        emit(
            TranscriptionEvent(
                data=TranscriptionData(
                    meeting_id=meeting_id,
                    speaker_name=speaker.name,
                    speaker_initials=speaker.initials,
                    speaker_color=speaker.color,
                    content=partial_text,
                    is_streaming=True,
                )
            )
        )

    async def extract_action_items(self, meeting_id: str, transcript_text: str, emit: Emit) -> None:
        candidates = await self.text_service.extract_action_items(meeting_id, transcript_text)
        if not candidates:
            return

        existing = await self.repository.get_action_items_by_meeting(meeting_id)
        seen = {_normalize_title(item.title) for item in existing}
        for candidate in candidates:
            key = _normalize_title(candidate.title)
            if key in seen:
                self.logger.debug("Skipping duplicate action item %r for meeting %s", candidate.title, meeting_id)
                continue
            seen.add(key)

            action_item = await self.repository.create_action_item(
                meeting_id=meeting_id,
                title=candidate.title,
                description=candidate.description or None,
                assigned_to=candidate.assigned_to or None,
                due_date=candidate.due_date or None,
                status="pending",
                is_completed=False,
            )
            emit(
                ActionItemEvent(
                    data=ActionItemData(
                        meeting_id=action_item.meeting_id,
                        title=action_item.title,
                        description=action_item.description or "",
                        assigned_to=action_item.assigned_to or "",
                        due_date=action_item.due_date or "",
                        status=action_item.status,
                        is_completed=action_item.is_completed,
                    )
                )
            )

    async def _meeting_stats(self, meeting_id: str) -> tuple[Meeting | None, int, int]:
        meeting = await self.repository.get_meeting(meeting_id)
        transcriptions = await self.repository.get_transcriptions_by_meeting(meeting_id)
        speaker_count = len({item.speaker_name for item in transcriptions})
        duration = 0
        if meeting:
            end = meeting.end_time or utcnow()
            duration = max(0, int((end - meeting.start_time).total_seconds()))
        return meeting, duration, speaker_count

    async def _publish_stats(self, meeting_id: str, emit: Emit) -> None:
        meeting, duration, speaker_count = await self._meeting_stats(meeting_id)
        status = "active"
        if meeting:
            meeting = await self.repository.update_meeting(meeting_id, duration=duration, speaker_count=speaker_count)
            status = meeting.status if meeting else status
        emit(
            MeetingStatusEvent(
                data=MeetingStatusData(
                    meeting_id=meeting_id,
                    status=status,
                    duration=duration,
                    speaker_count=speaker_count,
                )
            )
        )

    async def finalize_meeting(self, meeting_id: str, emit: Emit) -> None:
        async with self.meeting_lock(meeting_id):
            try:
                await self._finalize_meeting(meeting_id, emit)
            except Exception:
                self.logger.exception("Meeting finalization failed for meeting %s", meeting_id)
                emit(error_event("Failed to finalize meeting", "FINALIZATION_ERROR"))

    async def _finalize_meeting(self, meeting_id: str, emit: Emit) -> None:
        transcriptions = await self.repository.get_transcriptions_by_meeting(meeting_id)
        full_transcript = "\n".join(f"{item.speaker_name}: {item.content}" for item in transcriptions)

        insights = await self.text_service.generate_insights(meeting_id, full_transcript)
        await self.repository.create_meeting_insight(
            meeting_id=meeting_id,
            key_topics=insights.key_topics,
            sentiment=insights.sentiment,
            sentiment_score=insights.sentiment_score,
            summary=insights.summary,
            next_steps=insights.next_steps,
        )

        await self.repository.update_meeting(meeting_id, status="completed", end_time=utcnow())

        self.sessions.pop(meeting_id, None)
        self.text_service.clear_history(meeting_id)
        self.logger.info("Finalized meeting %s (%d transcriptions)", meeting_id, len(transcriptions))

        _, duration, speaker_count = await self._meeting_stats(meeting_id)
        emit(
            MeetingStatusEvent(
                data=MeetingStatusData(
                    meeting_id=meeting_id,
                    status="completed",
                    duration=duration,
                    speaker_count=speaker_count,
                )
            )
        )

    @staticmethod
    def _transcription_event(transcription: Transcription) -> TranscriptionEvent:
        return TranscriptionEvent(
            data=TranscriptionData(
                meeting_id=transcription.meeting_id,
                speaker_name=transcription.speaker_name,
                speaker_initials=transcription.speaker_initials,
                speaker_color=transcription.speaker_color,
                content=transcription.content,
                is_streaming=False,
            )
        )
