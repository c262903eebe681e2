"""Error taxonomy shared by the plan store, agent invoker, pipeline, and evaluator."""

from __future__ import annotations

from typing import Optional, Sequence

__all__ = [
    "AgentError",
    "ConfigError",
    "EvaluationError",
    "JudgeError",
    "NotFoundError",
    "QpError",
    "SerializationError",
    "StorageError",
    "UnknownStepError",
]


class QpError(RuntimeError):
    """Base class for every error surfaced to the CLI layer."""


class NotFoundError(QpError):
    """Raised when a plan id, slug, or title does not resolve to a stored plan."""

    def __init__(self, reference: str) -> None:
        super().__init__(f"plan not found: {reference}")
        self.reference = reference


class UnknownStepError(QpError):
    """Raised when configuration has no review agent for a requested step."""

    def __init__(self, step_name: str) -> None:
        super().__init__(f"unknown step: {step_name}")
        self.step_name = step_name


class AgentError(QpError):
    """Raised when the agent subprocess fails to spawn, stream, or exit cleanly.

    ``returncode`` is ``None`` when the process never ran to completion
    (spawn failure, broken pipe, timeout).
    """

    def __init__(
        self,
        message: str,
        *,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.command = tuple(command or ())
        self.returncode = returncode


class StorageError(QpError):
    """Raised when plan persistence cannot be read or written."""


class SerializationError(StorageError):
    """Raised when a plan document cannot be parsed or rendered."""


class ConfigError(QpError):
    """Raised when a configuration file cannot be loaded or validated."""


class EvaluationError(QpError):
    """Raised when evaluation fixtures are missing or unreadable."""


class JudgeError(QpError):
    """Raised when the LLM judge cannot be reached or returns an unusable verdict."""
