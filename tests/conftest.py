import json
import sys
from io import BytesIO
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.config import Settings  # noqa: E402
from backend.services.connection_registry import ConnectionRegistry  # noqa: E402
from backend.services.repository import MeetingRepository  # noqa: E402
from backend.services.text_service import TextService  # noqa: E402
from backend.services.transcription import TranscriptionOrchestrator  # noqa: E402


@pytest.fixture(autouse=True)
def _aws_env(monkeypatch):
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "test")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "test")
    monkeypatch.setenv("BEDROCK_MODEL_ID", "anthropic.claude-3-haiku-20240307-v1:0")


class FakeBedrockClient:
    """Answers each prompt kind with canned JSON, records every request."""

    def __init__(self):
        self.calls = []
        self.transcription = {
            "text": "Let's ship the Q4 plan by Friday.",
            "speakerName": "Sarah Chen",
            "speakerInitials": "SC",
            "speakerColor": "bg-blue-500",
        }
        self.action_items = {"actionItems": []}
        self.insights = {
            "keyTopics": ["Q4 plan"],
            "sentiment": "positive",
            "sentimentScore": "Upbeat and focused",
            "summary": "The team agreed on the Q4 plan.",
            "nextSteps": "Ship by Friday.",
        }
        self.stream_chunks = ["Here ", "is ", "a summary."]
        self.error: Exception | None = None

    def _answer(self, prompt: str) -> str:
        if "identify who is speaking" in prompt:
            content = self.transcription
        elif "Extract the action items" in prompt:
            content = self.action_items
        elif "Analyze the complete meeting" in prompt:
            content = self.insights
        else:
            content = {}
        return content if isinstance(content, str) else json.dumps(content)

    def invoke_model(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        payload = json.loads(kwargs["body"])
        prompt = payload["messages"][-1]["content"][0]["text"]
        body = {"content": [{"type": "text", "text": self._answer(prompt)}]}
        return {"body": BytesIO(json.dumps(body).encode("utf-8"))}

    def invoke_model_with_response_stream(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        events = [
            {
                "chunk": {
                    "bytes": json.dumps(
                        {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}
                    ).encode("utf-8")
                }
            }
            for text in self.stream_chunks
        ]
        events.append({"chunk": {"bytes": json.dumps({"type": "message_stop"}).encode("utf-8")}})
        return {"body": iter(events)}

    def prompts(self) -> list[str]:
        return [json.loads(call["body"])["messages"][-1]["content"][0]["text"] for call in self.calls]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    def __init__(self):
        self.closed_with = None

    async def send_text(self, data: str) -> None:
        pass

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed_with = code


def drain(connection) -> list[dict]:
    frames = []
    while not connection.outbox.empty():
        frames.append(json.loads(connection.outbox.get_nowait()))
    return frames


@pytest.fixture
def settings():
    return Settings(llm_timeout_seconds=5.0, seed_default_user=False)


@pytest.fixture
def bedrock_client():
    return FakeBedrockClient()


@pytest.fixture
def repository():
    return MeetingRepository()


@pytest.fixture
def text_service(bedrock_client, settings):
    return TextService(client=bedrock_client, settings=settings)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def orchestrator(repository, text_service, settings, clock):
    return TranscriptionOrchestrator(repository, text_service, settings=settings, clock=clock)


@pytest.fixture
def registry():
    return ConnectionRegistry(liveness_interval=30.0)


@pytest.fixture
def make_transport():
    return FakeTransport


@pytest.fixture
def drain_frames():
    return drain
