import json
from io import BytesIO

import pytest
from botocore.exceptions import ClientError

from backend.services import bedrock_utils


class FakeBedrockClient:
    def __init__(self, body=None):
        self.calls = []
        self.body = body if body is not None else {"content": [{"type": "text", "text": "Summary text"}]}

    def invoke_model(self, **kwargs):
        self.calls.append(kwargs)
        return {"body": BytesIO(json.dumps(self.body).encode("utf-8"))}


def test_invoke_messages_uses_bedrock_response():
    client = FakeBedrockClient()
    text = bedrock_utils.invoke_messages("system", [{"role": "user", "content": "hello"}], 64, 0.3, client=client)
    assert text == "Summary text"
    assert client.calls
    assert client.calls[0]["modelId"]
    payload = json.loads(client.calls[0]["body"])
    assert payload["system"] == "system"
    assert payload["messages"] == [{"role": "user", "content": [{"type": "text", "text": "hello"}]}]


def test_invoke_messages_reads_legacy_completion_body():
    client = FakeBedrockClient(body={"completion": " legacy answer "})
    text = bedrock_utils.invoke_messages("system", [{"role": "user", "content": "hi"}], 64, 0.3, client=client)
    assert text == "legacy answer"


def test_invoke_messages_propagates_client_errors():
    class ErrorClient:
        def invoke_model(self, **kwargs):
            raise ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow down"}}, "InvokeModel")

    with pytest.raises(ClientError):
        bedrock_utils.invoke_messages("system", [{"role": "user", "content": "hi"}], 64, 0.3, client=ErrorClient())


def test_build_payload_flattens_history_for_legacy_claude():
    messages = [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "reply"},
        {"role": "user", "content": "second"},
    ]
    payload = bedrock_utils.build_payload("be brief", messages, 100, 0.5, model_id="anthropic.claude-v2")
    assert payload["max_tokens_to_sample"] == 100
    assert payload["prompt"] == "be brief\n\nHuman: first\n\nAssistant: reply\n\nHuman: second\n\nAssistant:"


def test_build_payload_uses_messages_for_current_claude():
    payload = bedrock_utils.build_payload(
        "sys", [{"role": "user", "content": "x"}], 10, 0.1, model_id="us.anthropic.claude-3-5-sonnet-20240620-v1:0"
    )
    assert payload["anthropic_version"] == "bedrock-2023-05-31"
    assert "prompt" not in payload


def test_stream_messages_yields_text_deltas_only():
    class StreamClient:
        def invoke_model_with_response_stream(self, **kwargs):
            events = [
                {"chunk": {"bytes": json.dumps({"type": "message_start"}).encode("utf-8")}},
                {"chunk": {"bytes": json.dumps({"type": "content_block_delta", "delta": {"text": "Hel"}}).encode("utf-8")}},
                {"chunk": {"bytes": json.dumps({"type": "content_block_delta", "delta": {"text": "lo"}}).encode("utf-8")}},
                {"chunk": {"bytes": b"not json"}},
                {"chunk": {"bytes": json.dumps({"type": "message_stop"}).encode("utf-8")}},
            ]
            return {"body": iter(events)}

    chunks = list(bedrock_utils.stream_messages("sys", [{"role": "user", "content": "hi"}], 10, 0.7, client=StreamClient()))
    assert chunks == ["Hel", "lo"]


def test_parse_json_object_handles_fences_and_prose():
    assert bedrock_utils.parse_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert bedrock_utils.parse_json_object('Sure! Here it is: {"a": {"b": 2}} Hope that helps.') == {"a": {"b": 2}}


def test_parse_json_object_returns_empty_for_garbage():
    assert bedrock_utils.parse_json_object("") == {}
    assert bedrock_utils.parse_json_object("no json here") == {}
    assert bedrock_utils.parse_json_object("[1, 2, 3]") == {}


def test_invoke_messages_honours_explicit_model_id():
    client = FakeBedrockClient()
    bedrock_utils.invoke_messages("system", [{"role": "user", "content": "hi"}], 64, 0.3, client=client, model_id="amazon.titan-text-express-v1")
    assert client.calls[0]["modelId"] == "amazon.titan-text-express-v1"
    payload = json.loads(client.calls[0]["body"])
    assert payload["maxTokens"] == 64


def test_bedrock_client_follows_given_settings():
    from backend.config import Settings
    from backend.utils.auth_aws import create_bedrock_client

    client = create_bedrock_client(Settings(aws_region="eu-west-1", llm_timeout_seconds=12))

    assert client.meta.region_name == "eu-west-1"
    assert client.meta.config.read_timeout == 17
