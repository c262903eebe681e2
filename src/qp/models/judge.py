"""LLM-as-judge client that scores review-agent output over the Messages API."""

from __future__ import annotations

import json
import logging
import os
import re
import time
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import JudgeError

__all__ = [
    "ANTHROPIC_MESSAGES_URL",
    "DEFAULT_JUDGE_MODEL",
    "JudgeClient",
    "JudgeResponseFormatError",
    "JudgeTransportError",
    "JudgeVerdict",
    "build_judge_prompt",
]

LOGGER = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_JUDGE_MODEL = "claude-sonnet-4-20250514"
API_KEY_ENV = "ANTHROPIC_API_KEY"

Transport = Callable[[Dict[str, Any]], str]

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n(.*?)\n?```$", re.DOTALL | re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

JUDGE_PROMPT_TEMPLATE = """You are evaluating the output of an AI agent that reviews software plans.

The agent was given this task:
"{agent_prompt}"

## Original Plan (Input)
{input_plan}

## Expected Output (Reference)
{expected}

## Actual Output (To Evaluate)
{actual}

## Evaluation Criteria

Score the actual output from 1-10 based on:
1. **Completeness** (1-3 points): Does it identify the same kinds of issues as the expected output?
2. **Quality** (1-3 points): Are the identified issues relevant, specific, and actionable?
3. **Coverage** (1-2 points): Does it cover the major gaps the expected output covers?
4. **Format** (1-2 points): Is the output well-structured and close to the expected format?

The actual output does NOT need to match the expected output exactly. It should show similar
analytical depth and identify comparable issues.

Respond in this exact JSON format:
{{"score": <number 1-10>, "reasoning": "<brief explanation of score>"}}
"""


class JudgeTransportError(JudgeError):
    """Raised when the judge endpoint cannot be reached or rejects the request."""


class JudgeResponseFormatError(JudgeError):
    """Raised when the judge reply does not carry a usable JSON verdict."""


class JudgeVerdict(BaseModel):
    """Score and rationale returned by the judge."""

    model_config = ConfigDict(extra="ignore")

    score: float = Field(ge=0, le=10)
    reasoning: str = "No reasoning provided"


def build_judge_prompt(agent_prompt: str, input_plan: str, expected: str, actual: str) -> str:
    return JUDGE_PROMPT_TEMPLATE.format(
        agent_prompt=agent_prompt,
        input_plan=input_plan,
        expected=expected,
        actual=actual,
    )


class JudgeClient:
    """Thin adapter around the Anthropic Messages API for scoring outputs.

    ``transport`` receives the request payload and returns the raw response
    body; tests pass a callable instead of reaching the network. Transport
    and format failures are retried up to ``max_attempts`` times.
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_JUDGE_MODEL,
        api_key: Optional[str] = None,
        base_url: str = ANTHROPIC_MESSAGES_URL,
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_tokens: int = 1024,
        max_attempts: int = 2,
        retry_delay: float = 0.5,
    ) -> None:
        self._model = model
        self._api_key = api_key or os.getenv(API_KEY_ENV)
        self._base_url = base_url
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise JudgeError(f"{API_KEY_ENV} environment variable required for judging")

    @property
    def model(self) -> str:
        return self._model

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }

    def score(self, *, agent_prompt: str, input_plan: str, expected: str, actual: str) -> JudgeVerdict:
        """Ask the judge to score ``actual`` against the ``expected`` reference."""
        payload = self.build_payload(build_judge_prompt(agent_prompt, input_plan, expected, actual))
        last_error: Optional[JudgeError] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                raw = self._transport(payload)
                return self._parse_verdict(self._extract_text(raw))
            except (JudgeTransportError, JudgeResponseFormatError) as error:
                last_error = error
                LOGGER.warning("Judge attempt %d/%d failed: %s", attempt, self._max_attempts, error)
                if attempt >= self._max_attempts:
                    break
                time.sleep(self._retry_delay)
        raise JudgeError(
            f"judge {self._model} failed after {self._max_attempts} attempt(s): {last_error}"
        ) from last_error

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """POST ``payload`` to the Messages endpoint and return the body text."""
        request = urllib.request.Request(
            self._base_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "content-type": "application/json",
                "x-api-key": self._api_key or "",
                "anthropic-version": ANTHROPIC_VERSION,
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise JudgeTransportError("judge request timed out") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise JudgeTransportError(f"Anthropic API error {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise JudgeTransportError(f"failed to reach {self._base_url}: {error.reason}") from error
        return raw.decode("utf-8")

    @staticmethod
    def _extract_text(raw_response: str) -> str:
        """Return the concatenated text blocks of a Messages API response."""
        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError as error:
            raise JudgeResponseFormatError(f"judge returned a non-JSON response: {raw_response[:200]}") from error
        blocks = data.get("content") if isinstance(data, dict) else None
        if not isinstance(blocks, list):
            raise JudgeResponseFormatError("judge response has no content blocks")
        texts = [
            block["text"]
            for block in blocks
            if isinstance(block, dict) and block.get("type", "text") == "text" and isinstance(block.get("text"), str)
        ]
        if not texts:
            raise JudgeResponseFormatError("judge response has no text content")
        return "".join(texts)

    @staticmethod
    def _parse_verdict(text: str) -> JudgeVerdict:
        """Parse the judge's JSON verdict, tolerating code fences and chatter."""
        candidate = text.strip()
        fenced = _FENCE_RE.match(candidate)
        if fenced:
            candidate = fenced.group(1).strip()
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            embedded = _OBJECT_RE.search(candidate)
            if embedded is None:
                raise JudgeResponseFormatError(f"judge verdict is not JSON: {candidate[:200]}") from None
            try:
                data = json.loads(embedded.group(0))
            except json.JSONDecodeError:
                raise JudgeResponseFormatError(f"judge verdict is not JSON: {candidate[:200]}") from None
        if not isinstance(data, dict):
            raise JudgeResponseFormatError("judge verdict must be a JSON object")
        try:
            return JudgeVerdict.model_validate(data)
        except ValidationError as error:
            raise JudgeResponseFormatError(f"invalid judge verdict: {error}") from error
