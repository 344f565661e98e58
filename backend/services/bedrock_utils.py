from __future__ import annotations

import json
import re
from typing import Any, Iterator

from backend.config import get_settings
from backend.utils.auth_aws import create_bedrock_client

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def _bedrock_client(client: Any | None = None):
    if client:
        return client
    return create_bedrock_client()


def _load_json_body(response: dict[str, Any]) -> dict[str, Any]:
    body = response.get("body")
    if hasattr(body, "read"):
        raw = body.read()
    elif isinstance(body, (bytes, bytearray)):
        raw = body
    elif body is None:
        return {}
    else:
        raw = str(body).encode("utf-8")
    try:
        return json.loads(raw.decode("utf-8"))
    except json.JSONDecodeError:
        return {"outputText": raw.decode("utf-8")}


def _model_uses_messages(model_id: str) -> bool:
    lowered = (model_id or "").lower()
    if "claude" not in lowered:
        return False
    return not any(legacy in lowered for legacy in ("claude-v1", "claude-v2", "claude-instant"))


def _flatten_prompt(system: str, messages: list[dict[str, str]]) -> str:
    lines = [system] if system else []
    for message in messages:
        speaker = "Human" if message["role"] == "user" else "Assistant"
        lines.append(f"\n\n{speaker}: {message['content']}")
    lines.append("\n\nAssistant:")
    return "".join(lines)


def build_payload(
    system: str,
    messages: list[dict[str, str]],
    max_tokens: int,
    temperature: float,
    model_id: str | None = None,
) -> dict[str, Any]:
    model_id = model_id or get_settings().bedrock_model_id
    if _model_uses_messages(model_id):
        return {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": [
                {
                    "role": message["role"],
                    "content": [{"type": "text", "text": message["content"]}],
                }
                for message in messages
            ],
        }
    if "claude" in model_id.lower():
        return {
            "prompt": _flatten_prompt(system, messages),
            "max_tokens_to_sample": max_tokens,
            "temperature": temperature,
        }
    return {
        "prompt": _flatten_prompt(system, messages),
        "maxTokens": max_tokens,
        "temperature": temperature,
    }


def _extract_text_from_content(content: dict[str, Any]) -> str:
    for key in ("outputText", "completion", "response"):
        value = content.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    message_content = content.get("content")
    if isinstance(message_content, list):
        pieces: list[str] = []
        for item in message_content:
            if not isinstance(item, dict):
                continue
            text = item.get("text")
            if isinstance(text, str) and text.strip():
                pieces.append(text.strip())
        if pieces:
            return "\n".join(pieces)
    return ""


def invoke_messages(
    system: str,
    messages: list[dict[str, str]],
    max_tokens: int,
    temperature: float,
    client: Any | None = None,
    model_id: str | None = None,
) -> str:
    """Run one completion and return its text. Blocking; botocore errors propagate."""
    model_id = model_id or get_settings().bedrock_model_id
    payload = build_payload(system, messages, max_tokens, temperature, model_id)
    response = _bedrock_client(client).invoke_model(
        modelId=model_id,
        contentType="application/json",
        accept="application/json",
        body=json.dumps(payload).encode("utf-8"),
    )
    return _extract_text_from_content(_load_json_body(response))


def _delta_text(event: dict[str, Any]) -> str:
    chunk = event.get("chunk")
    if not isinstance(chunk, dict):
        return ""
    raw = chunk.get("bytes")
    if not raw:
        return ""
    try:
        content = json.loads(raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw)
    except json.JSONDecodeError:
        return ""
    if content.get("type") == "content_block_delta":
        delta = content.get("delta") or {}
        text = delta.get("text")
        return text if isinstance(text, str) else ""
    for key in ("completion", "outputText"):
        value = content.get(key)
        if isinstance(value, str):
            return value
    return ""


def stream_messages(
    system: str,
    messages: list[dict[str, str]],
    max_tokens: int,
    temperature: float,
    client: Any | None = None,
    model_id: str | None = None,
) -> Iterator[str]:
    """Yield text deltas from a streaming completion. Blocking per chunk."""
    model_id = model_id or get_settings().bedrock_model_id
    payload = build_payload(system, messages, max_tokens, temperature, model_id)
    response = _bedrock_client(client).invoke_model_with_response_stream(
        modelId=model_id,
        contentType="application/json",
        accept="application/json",
        body=json.dumps(payload).encode("utf-8"),
    )
    for event in response.get("body") or []:
        text = _delta_text(event)
        if text:
            yield text


def parse_json_object(raw: str) -> dict[str, Any]:
    """Best-effort decoding of a JSON object from model output."""
    text = _FENCE_RE.sub("", (raw or "").strip())
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        match = _OBJECT_RE.search(text)
        if not match:
            return {}
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            return {}
    return parsed if isinstance(parsed, dict) else {}
