"""Merge agent output back into a plan body.

Agents are free-text tools, so deciding whether an output is a complete
revised plan or commentary about the plan is a best-effort heuristic with
exactly two outcomes:

* ``replace`` - the trimmed output opens with a frontmatter delimiter *and*
  parses as a plan document. Its body becomes the new plan body.
* ``notes`` - anything else. The output is filed as a labelled subsection
  under the plan's ``## Review Notes`` heading.

There is no schema negotiation with the agent: a revised plan with broken
or incomplete frontmatter lands in the ``notes`` branch.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from ..errors import SerializationError
from ..plans.document import DELIMITER, NOTES_HEADING, insert_review_notes, parse_plan
from ..plans.schema import Plan

__all__ = [
    "NOTES_HEADING",
    "OUTPUT_SECTION",
    "Reconciliation",
    "insert_review_notes",
    "reconcile_output",
]

OUTPUT_SECTION = "Optimization output"

ReconciliationKind = Literal["replace", "notes"]


@dataclass(slots=True, frozen=True)
class Reconciliation:
    """Outcome of merging one agent response into a plan."""

    kind: ReconciliationKind
    body: str

    @property
    def replaced(self) -> bool:
        return self.kind == "replace"


def reconcile_output(output: str, plan: Plan, *, label: Optional[str] = None) -> Reconciliation:
    """Decide how ``output`` from a review agent updates ``plan``'s body."""
    trimmed = output.strip()
    if trimmed.startswith(DELIMITER):
        try:
            revised = parse_plan(trimmed)
        except SerializationError:
            revised = None
        if revised is not None:
            return Reconciliation(kind="replace", body=revised.body)

    section = f"{OUTPUT_SECTION} ({label})" if label else OUTPUT_SECTION
    return Reconciliation(kind="notes", body=insert_review_notes(plan.body, section, trimmed))
