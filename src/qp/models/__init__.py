"""Language-model clients used outside the agent subprocess path."""

from .judge import (
    DEFAULT_JUDGE_MODEL,
    JudgeClient,
    JudgeResponseFormatError,
    JudgeTransportError,
    JudgeVerdict,
)

__all__ = [
    "DEFAULT_JUDGE_MODEL",
    "JudgeClient",
    "JudgeResponseFormatError",
    "JudgeTransportError",
    "JudgeVerdict",
]
