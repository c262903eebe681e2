"""Typed records describing a plan and its review-step bookkeeping."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def _coerce_text(value: Any) -> Any:
    # YAML turns unquoted timestamps and numbers into native types.
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class RecordModel(BaseModel):
    """Base Pydantic model for frontmatter records.

    Unknown keys are dropped so that frontmatter produced by an agent with
    extra fields still parses.
    """

    model_config = ConfigDict(extra="ignore", frozen=False)


class PlanState(str, Enum):
    """Lifecycle states for a plan."""

    DRAFT = "draft"
    APPROVED = "approved"
    OPTIMIZING = "optimizing"
    READY = "ready"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    def __str__(self) -> str:
        return self.value


class StepStatus(str, Enum):
    """Outcome recorded for a single review step."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class ReviewStepStatus(RecordModel):
    """Status entry for one named optimization step."""

    step: str
    status: StepStatus = StepStatus.PENDING
    completed_at: Optional[str] = None

    coerce_text_fields = field_validator("step", "completed_at", mode="before")(_coerce_text)


class PlanMeta(RecordModel):
    """Frontmatter metadata of a plan document."""

    id: str
    title: str
    state: PlanState
    created_at: str
    updated_at: str
    review_cycles: int = 0
    review_steps: List[ReviewStepStatus] = Field(default_factory=list)
    agent: Optional[str] = None
    review_agents: Optional[Dict[str, str]] = None

    coerce_text_fields = field_validator("id", "title", "created_at", "updated_at", mode="before")(_coerce_text)

    def step_status(self, step_name: str) -> Optional[ReviewStepStatus]:
        for entry in self.review_steps:
            if entry.step == step_name:
                return entry
        return None

    def is_step_done(self, step_name: str) -> bool:
        entry = self.step_status(step_name)
        return entry is not None and entry.status == StepStatus.DONE


class Plan(RecordModel):
    """A plan document: metadata plus free-form markdown body."""

    meta: PlanMeta
    body: str = ""

    @field_validator("body", mode="before")
    @classmethod
    def left_trim_body(cls, value: Any) -> Any:
        # The document format left-trims the body on parse.
        if isinstance(value, str):
            return value.lstrip()
        return value

    @property
    def id(self) -> str:
        return self.meta.id

    @property
    def title(self) -> str:
        return self.meta.title

    @property
    def state(self) -> PlanState:
        return self.meta.state

    def touch(self) -> None:
        """Bump ``updated_at`` without letting it move backwards."""
        now = datetime.now(timezone.utc)
        try:
            previous = datetime.fromisoformat(self.meta.updated_at)
        except ValueError:
            previous = None
        if previous is not None and previous.tzinfo is not None and previous > now:
            return
        self.meta.updated_at = now.isoformat()


__all__ = [
    "Plan",
    "PlanMeta",
    "PlanState",
    "RecordModel",
    "ReviewStepStatus",
    "StepStatus",
    "utc_now",
]
