from __future__ import annotations

import json
from typing import Any, Dict, List

import pytest

from qp.errors import JudgeError
from qp.models.judge import (
    DEFAULT_JUDGE_MODEL,
    JudgeClient,
    JudgeResponseFormatError,
    JudgeTransportError,
)


def _messages_response(text: str) -> str:
    return json.dumps({"id": "msg_1", "content": [{"type": "text", "text": text}]})


class RecordingTransport:
    def __init__(self, *responses: Any) -> None:
        self.responses: List[Any] = list(responses)
        self.payloads: List[Dict[str, Any]] = []

    def __call__(self, payload: Dict[str, Any]) -> str:
        self.payloads.append(payload)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _score(client: JudgeClient):
    return client.score(agent_prompt="Find holes.", input_plan="PLAN", expected="EXPECTED", actual="ACTUAL")


def test_score_sends_messages_payload_and_parses_verdict() -> None:
    transport = RecordingTransport(_messages_response('{"score": 8.5, "reasoning": "Covers the gaps."}'))
    client = JudgeClient(transport=transport)

    verdict = _score(client)

    assert verdict.score == 8.5
    assert verdict.reasoning == "Covers the gaps."
    payload = transport.payloads[0]
    assert payload["model"] == DEFAULT_JUDGE_MODEL
    assert payload["max_tokens"] == 1024
    prompt = payload["messages"][0]["content"]
    assert payload["messages"][0]["role"] == "user"
    assert '"Find holes."' in prompt
    assert "## Original Plan (Input)\nPLAN" in prompt
    assert "## Expected Output (Reference)\nEXPECTED" in prompt
    assert "## Actual Output (To Evaluate)\nACTUAL" in prompt


def test_verdict_in_code_fence_or_prose_is_accepted() -> None:
    fenced = '```json\n{"score": 7, "reasoning": "ok"}\n```'
    chatty = 'Here is my verdict: {"score": 3, "reasoning": "thin"} Thanks.'
    client = JudgeClient(transport=RecordingTransport(_messages_response(fenced), _messages_response(chatty)))

    assert _score(client).score == 7
    assert _score(client).score == 3


def test_missing_reasoning_gets_placeholder() -> None:
    client = JudgeClient(transport=RecordingTransport(_messages_response('{"score": 6}')))

    assert _score(client).reasoning == "No reasoning provided"


def test_transient_failure_is_retried() -> None:
    transport = RecordingTransport(
        JudgeTransportError("HTTP 529: overloaded"),
        _messages_response('{"score": 9, "reasoning": "great"}'),
    )
    client = JudgeClient(transport=transport, retry_delay=0)

    assert _score(client).score == 9
    assert len(transport.payloads) == 2


def test_unusable_verdicts_raise_after_all_attempts() -> None:
    transport = RecordingTransport(
        _messages_response("I would give it a seven."),
        _messages_response('{"score": 14, "reasoning": "off the scale"}'),
    )
    client = JudgeClient(transport=transport, max_attempts=2, retry_delay=0)

    with pytest.raises(JudgeError) as excinfo:
        _score(client)

    assert "after 2 attempt(s)" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, JudgeResponseFormatError)


def test_response_without_text_blocks_is_rejected() -> None:
    transport = RecordingTransport(json.dumps({"content": [{"type": "tool_use", "id": "x"}]}))
    client = JudgeClient(transport=transport, max_attempts=1)

    with pytest.raises(JudgeError):
        _score(client)


def test_api_key_is_required_without_custom_transport(monkeypatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)

    with pytest.raises(JudgeError) as excinfo:
        JudgeClient()

    assert "ANTHROPIC_API_KEY" in str(excinfo.value)


def test_api_key_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")

    client = JudgeClient(model="judge-small")

    assert client.model == "judge-small"
