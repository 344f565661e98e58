from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from backend.config import Settings, get_settings
from backend.services.bedrock_utils import invoke_messages, parse_json_object, stream_messages
from backend.services.errors import TextServiceError
from backend.utils.auth_aws import create_bedrock_client

T = TypeVar("T")

UNKNOWN_SPEAKER = "Unknown Speaker"
UNKNOWN_INITIALS = "US"
DEFAULT_SPEAKER_COLOR = "bg-gray-500"
SENTIMENTS = ("positive", "neutral", "negative")

SYSTEM_PROMPT = """You are MeetingFlow, an assistant that transcribes meetings for newsletter publishers and content creators.
You identify speakers, pull out actionable tasks and summarize what the team decided.

Keep your answers:
- professional but conversational
- focused on content strategy and newsletter publishing
- consistent with what was said earlier in the meeting

Pay particular attention to editorial calendars, audience engagement metrics, campaign reviews,
team assignments with deadlines, and tool integrations or workflow changes."""

TRANSCRIBE_PROMPT = """Clean up this meeting utterance and identify who is speaking. Reuse a known speaker when the context makes it likely.

Utterance: "{text}"
Speaker context: {speaker_context}

Reply with a single JSON object and nothing else:
{{"text": "cleaned transcription", "speakerName": "Full Name", "speakerInitials": "XX", "speakerColor": "bg-<color>-500"}}"""

ACTION_ITEMS_PROMPT = """Extract the action items from this part of the meeting transcript.
Look for content tasks, editorial deadlines, campaign planning, tool integrations, follow-up meetings and analysis work.

Transcript: "{text}"

Reply with a single JSON object and nothing else. Use an empty list when there is nothing to do:
{{"actionItems": [{{"title": "Short title", "description": "Details", "assignedTo": "Person if mentioned", "dueDate": "Timeframe if mentioned"}}]}}"""

INSIGHTS_PROMPT = """Analyze the complete meeting transcript below.

Full transcript: "{text}"

Cover the key discussion topics, the overall sentiment, the decisions made and the next steps.
Reply with a single JSON object and nothing else:
{{"keyTopics": ["topic"], "sentiment": "positive|neutral|negative", "sentimentScore": "short explanation", "summary": "3-4 sentence summary", "nextSteps": "next steps and recommendations"}}"""


@dataclass
class TranscriptionResult:
    text: str
    speaker_name: str
    speaker_initials: str
    speaker_color: str


@dataclass
class ActionItemCandidate:
    title: str
    description: str = ""
    assigned_to: str = ""
    due_date: str = ""


@dataclass
class InsightResult:
    key_topics: list[str] = field(default_factory=list)
    sentiment: str = "neutral"
    sentiment_score: str = "Neutral meeting tone"
    summary: str = "Meeting discussion completed"
    next_steps: str = "Follow up on discussed items"


def _clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _initials_for(name: str) -> str:
    initials = "".join(part[0] for part in name.split()[:2] if part)
    return initials.upper() or UNKNOWN_INITIALS


def coerce_transcription(content: dict[str, Any], raw_text: str) -> TranscriptionResult:
    text = _clean_str(content.get("text")) or raw_text
    speaker_name = _clean_str(content.get("speakerName"))
    if not speaker_name:
        return TranscriptionResult(text, UNKNOWN_SPEAKER, UNKNOWN_INITIALS, DEFAULT_SPEAKER_COLOR)
    return TranscriptionResult(
        text=text,
        speaker_name=speaker_name,
        speaker_initials=_clean_str(content.get("speakerInitials")) or _initials_for(speaker_name),
        speaker_color=_clean_str(content.get("speakerColor")) or DEFAULT_SPEAKER_COLOR,
    )


def coerce_action_items(content: dict[str, Any]) -> list[ActionItemCandidate]:
    items = content.get("actionItems")
    if not isinstance(items, list):
        return []
    candidates: list[ActionItemCandidate] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = _clean_str(item.get("title"))
        if not title:
            continue
        candidates.append(
            ActionItemCandidate(
                title=title,
                description=_clean_str(item.get("description")),
                assigned_to=_clean_str(item.get("assignedTo")),
                due_date=_clean_str(item.get("dueDate")),
            )
        )
    return candidates


def coerce_insights(content: dict[str, Any]) -> InsightResult:
    result = InsightResult()
    topics = content.get("keyTopics")
    if isinstance(topics, list):
        result.key_topics = [topic.strip() for topic in topics if isinstance(topic, str) and topic.strip()]
    sentiment = _clean_str(content.get("sentiment")).lower()
    if sentiment in SENTIMENTS:
        result.sentiment = sentiment
    result.sentiment_score = _clean_str(content.get("sentimentScore")) or result.sentiment_score
    result.summary = _clean_str(content.get("summary")) or result.summary
    result.next_steps = _clean_str(content.get("nextSteps")) or result.next_steps
    return result


class TextService:
    """Bedrock-backed text operations with a rolling conversation per meeting."""

    def __init__(self, client: Any | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client = client
        self.histories: dict[str, list[dict[str, str]]] = {}
        self.logger = logging.getLogger(__name__)

    def _get_client(self):
        if self._client is None:
            self._client = create_bedrock_client(self.settings)
        return self._client

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, *args),
                timeout=self.settings.llm_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise TextServiceError(f"Bedrock call timed out after {self.settings.llm_timeout_seconds}s") from exc
        except (BotoCoreError, ClientError) as exc:
            raise TextServiceError(f"Bedrock call failed: {exc}") from exc

    async def _complete_json(self, messages: list[dict[str, str]], temperature: float) -> tuple[str, dict[str, Any]]:
        raw = await self._call(
            invoke_messages,
            SYSTEM_PROMPT,
            messages,
            self.settings.bedrock_max_tokens,
            temperature,
            self._get_client(),
            self.settings.bedrock_model_id,
        )
        return raw, parse_json_object(raw)

    # history

    def context(self, meeting_id: str) -> list[dict[str, str]]:
        history = self.histories.get(meeting_id, [])
        return list(history[-self.settings.history_context_turns :])

    def remember(self, meeting_id: str, user_content: str, assistant_content: str) -> None:
        history = self.histories.setdefault(meeting_id, [])
        history.append({"role": "user", "content": user_content})
        # Bedrock rejects empty text blocks in later requests
        history.append({"role": "assistant", "content": assistant_content or "(no response)"})
        if len(history) > self.settings.history_max_turns:
            del history[: -self.settings.history_trim_turns]

    def clear_history(self, meeting_id: str) -> None:
        self.histories.pop(meeting_id, None)

    # operations

    async def transcribe(self, meeting_id: str, raw_text: str, speaker_context: str | None = None) -> TranscriptionResult:
        prompt = TRANSCRIBE_PROMPT.format(text=raw_text, speaker_context=speaker_context or "New speaker")
        raw, content = await self._complete_json([{"role": "user", "content": prompt}], temperature=0.3)
        self.remember(meeting_id, prompt, raw)
        result = coerce_transcription(content, raw_text)
        if result.speaker_name == UNKNOWN_SPEAKER:
            self.logger.warning("Transcription for meeting %s came back without a speaker", meeting_id)
        return result

    async def extract_action_items(self, meeting_id: str, transcript_text: str) -> list[ActionItemCandidate]:
        prompt = ACTION_ITEMS_PROMPT.format(text=transcript_text)
        messages = [*self.context(meeting_id), {"role": "user", "content": prompt}]
        raw, content = await self._complete_json(messages, temperature=0.2)
        self.remember(meeting_id, prompt, raw)
        return coerce_action_items(content)

    async def generate_insights(self, meeting_id: str, full_transcript: str) -> InsightResult:
        prompt = INSIGHTS_PROMPT.format(text=full_transcript)
        messages = [*self.context(meeting_id), {"role": "user", "content": prompt}]
        raw, content = await self._complete_json(messages, temperature=0.4)
        self.remember(meeting_id, prompt, raw)
        return coerce_insights(content)

    async def stream_chat_reply(self, meeting_id: str, user_message: str) -> AsyncIterator[str]:
        messages = [*self.context(meeting_id), {"role": "user", "content": user_message}]
        chunks = stream_messages(
            SYSTEM_PROMPT,
            messages,
            self.settings.bedrock_max_tokens,
            0.7,
            self._get_client(),
            self.settings.bedrock_model_id,
        )
        pieces: list[str] = []
        while True:
            chunk = await self._call(next, chunks, None)
            if chunk is None:
                break
            pieces.append(chunk)
            yield chunk
        self.remember(meeting_id, user_message, "".join(pieces))
