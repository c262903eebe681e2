"""Plan records, the frontmatter document codec, and the file-backed store."""

from .document import parse_plan, serialize_plan, split_frontmatter
from .schema import Plan, PlanMeta, PlanState, ReviewStepStatus, StepStatus
from .store import PlanStore, VersionSnapshot

__all__ = [
    "Plan",
    "PlanMeta",
    "PlanState",
    "PlanStore",
    "ReviewStepStatus",
    "StepStatus",
    "VersionSnapshot",
    "parse_plan",
    "serialize_plan",
    "split_frontmatter",
]
