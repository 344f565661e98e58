import asyncio
import json

import pytest

from backend.models.ws_messages import SpeakerInfo, encode_message
from backend.services.errors import TextServiceError


class Collector:
    def __init__(self):
        self.frames = []

    def __call__(self, event):
        self.frames.append(json.loads(encode_message(event)))

    def types(self):
        return [frame["type"] for frame in self.frames]


@pytest.fixture
def emit():
    return Collector()


@pytest.mark.asyncio
async def test_first_utterance_emits_transcription_then_status(orchestrator, repository, emit):
    meeting = await repository.create_meeting(title="Weekly sync")

    await orchestrator.process_utterance(meeting.id, "Let's ship the Q4 plan by Friday", emit)

    assert emit.types() == ["transcription", "meeting_status"]
    transcription, status = emit.frames
    assert transcription["data"]["isStreaming"] is False
    assert transcription["data"]["content"] == "Let's ship the Q4 plan by Friday."
    assert transcription["data"]["speakerName"] == "Sarah Chen"
    assert status["data"]["speakerCount"] == 1
    assert status["data"]["status"] == "active"

    stored = await repository.get_transcriptions_by_meeting(meeting.id)
    assert [item.content for item in stored] == ["Let's ship the Q4 plan by Friday."]
    updated = await repository.get_meeting(meeting.id)
    assert updated.speaker_count == 1
    assert updated.duration is not None


@pytest.mark.asyncio
async def test_status_is_reported_for_unknown_meeting(orchestrator, emit):
    await orchestrator.process_utterance("m1", "hello", emit)

    assert emit.frames[-1] == {
        "type": "meeting_status",
        "data": {"meetingId": "m1", "status": "active", "duration": 0, "speakerCount": 1},
    }


@pytest.mark.asyncio
async def test_known_speakers_are_passed_as_context(orchestrator, bedrock_client, emit):
    await orchestrator.process_utterance("m1", "first", emit)
    await orchestrator.process_utterance("m1", "second", emit)

    prompts = [prompt for prompt in bedrock_client.prompts() if "identify who is speaking" in prompt]
    assert "No previous speakers" in prompts[0]
    assert "Known speakers: Sarah Chen (SC)" in prompts[1]


@pytest.mark.asyncio
async def test_speaker_count_tracks_distinct_names(orchestrator, bedrock_client, emit):
    await orchestrator.process_utterance("m1", "first", emit)
    bedrock_client.transcription = {"text": "second", "speakerName": "Mike Ross", "speakerInitials": "MR"}
    await orchestrator.process_utterance("m1", "second", emit)
    bedrock_client.transcription = {"text": "third", "speakerName": "Sarah Chen"}
    await orchestrator.process_utterance("m1", "third", emit)

    statuses = [frame["data"]["speakerCount"] for frame in emit.frames if frame["type"] == "meeting_status"]
    assert statuses == [1, 2, 2]


@pytest.mark.asyncio
async def test_extraction_runs_once_per_buffer_crossing(orchestrator, bedrock_client, emit):
    chunk = "x" * 200

    for _ in range(5):
        bedrock_client.transcription = {"text": chunk, "speakerName": "Sarah Chen"}
        await orchestrator.process_utterance("m1", chunk, emit)

    extraction_prompts = [prompt for prompt in bedrock_client.prompts() if "Extract the action items" in prompt]
    assert len(extraction_prompts) == 1
    assert chunk * 2 in extraction_prompts[0].replace(" ", "")
    session = orchestrator.sessions["m1"]
    assert session.extracted_upto == 3
    assert len(session.pending_text()) < 500


@pytest.mark.asyncio
async def test_extraction_runs_after_interval_elapses(orchestrator, bedrock_client, clock, emit):
    await orchestrator.process_utterance("m1", "short", emit)
    clock.advance(31)
    await orchestrator.process_utterance("m1", "also short", emit)
    await orchestrator.process_utterance("m1", "still short", emit)

    extraction_prompts = [prompt for prompt in bedrock_client.prompts() if "Extract the action items" in prompt]
    assert len(extraction_prompts) == 1


@pytest.mark.asyncio
async def test_action_items_are_persisted_broadcast_and_deduplicated(orchestrator, repository, bedrock_client, clock, emit):
    bedrock_client.action_items = {
        "actionItems": [
            {"title": "Draft Q4 newsletter", "assignedTo": "Sarah", "dueDate": "Friday"},
            {"title": "draft q4  newsletter"},
        ]
    }

    await orchestrator.process_utterance("m1", "Sarah drafts the Q4 newsletter by Friday", emit)
    clock.advance(31)
    await orchestrator.process_utterance("m1", "Sarah drafts the Q4 newsletter by Friday", emit)
    clock.advance(31)
    await orchestrator.process_utterance("m1", "again", emit)

    action_frames = [frame for frame in emit.frames if frame["type"] == "action_item"]
    assert len(action_frames) == 1
    assert action_frames[0]["data"] == {
        "meetingId": "m1",
        "title": "Draft Q4 newsletter",
        "description": "",
        "assignedTo": "Sarah",
        "dueDate": "Friday",
        "status": "pending",
        "isCompleted": False,
    }
    stored = await repository.get_action_items_by_meeting("m1")
    assert len(stored) == 1
    assert stored[0].status == "pending"
    assert stored[0].is_completed is False


@pytest.mark.asyncio
async def test_action_item_event_precedes_status(orchestrator, bedrock_client, clock, emit):
    bedrock_client.action_items = {"actionItems": [{"title": "Book venue"}]}
    await orchestrator.process_utterance("m1", "opening remarks", emit)
    emit.frames.clear()
    clock.advance(31)

    await orchestrator.process_utterance("m1", "we need to book a venue", emit)

    assert emit.types() == ["transcription", "action_item", "meeting_status"]


@pytest.mark.asyncio
async def test_text_service_failure_becomes_single_error(orchestrator, text_service, emit, monkeypatch):
    async def broken(*args, **kwargs):
        raise TextServiceError("bedrock down")

    monkeypatch.setattr(text_service, "transcribe", broken)

    await orchestrator.process_utterance("m1", "hello", emit)

    assert emit.frames == [
        {"type": "error", "data": {"message": "Failed to process transcription", "code": "TRANSCRIPTION_ERROR"}}
    ]


@pytest.mark.asyncio
async def test_failure_after_persisting_keeps_transcription(orchestrator, repository, text_service, clock, emit, monkeypatch):
    async def broken(*args, **kwargs):
        raise TextServiceError("bedrock down")

    monkeypatch.setattr(text_service, "extract_action_items", broken)
    await orchestrator.process_utterance("m1", "opening remarks", emit)
    emit.frames.clear()
    clock.advance(31)

    await orchestrator.process_utterance("m1", "hello", emit)

    assert emit.types() == ["transcription", "error"]
    assert len(await repository.get_transcriptions_by_meeting("m1")) == 2


@pytest.mark.asyncio
async def test_relay_partial_text_skips_text_service(orchestrator, bedrock_client, emit):
    speaker = SpeakerInfo(name="Sarah Chen", initials="SC", color="bg-blue-500")

    await orchestrator.relay_partial_text("m1", "Let's sh", speaker, emit)

    assert bedrock_client.calls == []
    assert emit.frames == [
        {
            "type": "transcription",
            "data": {
                "meetingId": "m1",
                "speakerName": "Sarah Chen",
                "speakerInitials": "SC",
                "speakerColor": "bg-blue-500",
                "content": "Let's sh",
                "isStreaming": True,
            },
        }
    ]


@pytest.mark.asyncio
async def test_finalize_persists_insight_and_tears_down_session(orchestrator, repository, text_service, bedrock_client, emit):
    meeting = await repository.create_meeting(title="Weekly sync")
    await orchestrator.process_utterance(meeting.id, "Let's ship the Q4 plan by Friday", emit)
    assert meeting.id in text_service.histories

    await orchestrator.finalize_meeting(meeting.id, emit)

    assert emit.frames[-1]["type"] == "meeting_status"
    assert emit.frames[-1]["data"]["status"] == "completed"
    assert emit.frames[-1]["data"]["speakerCount"] == 1
    assert meeting.id not in orchestrator.sessions
    assert meeting.id not in text_service.histories

    insight = await repository.get_meeting_insight(meeting.id)
    assert insight.summary == "The team agreed on the Q4 plan."
    assert insight.key_topics == ["Q4 plan"]
    finished = await repository.get_meeting(meeting.id)
    assert finished.status == "completed"
    assert finished.end_time is not None

    insight_prompt = [prompt for prompt in bedrock_client.prompts() if "Analyze the complete meeting" in prompt][0]
    assert "Sarah Chen: Let's ship the Q4 plan by Friday." in insight_prompt


@pytest.mark.asyncio
async def test_utterance_after_finalize_starts_fresh_session(orchestrator, bedrock_client, emit):
    await orchestrator.process_utterance("m1", "before", emit)
    old_session = orchestrator.sessions["m1"]
    await orchestrator.finalize_meeting("m1", emit)

    await orchestrator.process_utterance("m1", "after", emit)

    session = orchestrator.sessions["m1"]
    assert session is not old_session
    assert session.utterances == ["Let's ship the Q4 plan by Friday."]
    transcribe_prompts = [prompt for prompt in bedrock_client.prompts() if "identify who is speaking" in prompt]
    assert "No previous speakers" in transcribe_prompts[-1]


@pytest.mark.asyncio
async def test_finalize_failure_becomes_single_error(orchestrator, text_service, emit, monkeypatch):
    async def broken(*args, **kwargs):
        raise TextServiceError("bedrock down")

    await orchestrator.process_utterance("m1", "before", emit)
    emit.frames.clear()
    monkeypatch.setattr(text_service, "generate_insights", broken)

    await orchestrator.finalize_meeting("m1", emit)

    assert emit.frames == [
        {"type": "error", "data": {"message": "Failed to finalize meeting", "code": "FINALIZATION_ERROR"}}
    ]
    assert "m1" in orchestrator.sessions


@pytest.mark.asyncio
async def test_meeting_locks_are_released_when_idle(orchestrator, emit):
    await asyncio.gather(
        orchestrator.process_utterance("m1", "first", emit),
        orchestrator.process_utterance("m1", "second", emit),
        orchestrator.process_utterance("m2", "other meeting", emit),
    )
    assert orchestrator._locks == {}

    await orchestrator.finalize_meeting("m1", emit)

    assert orchestrator._locks == {}
    assert "m1" not in orchestrator.sessions
    assert len(orchestrator.sessions["m2"].utterances) == 1
