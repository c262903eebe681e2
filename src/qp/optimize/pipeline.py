"""Run the configured review steps against a plan.

Each step moves the plan ``approved -> optimizing -> approved`` (or ``ready``
once every configured step is done), snapshots the plan before and after the
agent runs, and records the step's completion through the store. The pipeline
itself persists nothing directly.

Failures are not rolled back: a plan whose agent call fails stays in
``optimizing`` with its pre-step snapshot on disk.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional, Protocol, Sequence

from ..agent import run_oneshot
from ..config import QpConfig
from ..errors import AgentError
from ..plans.document import serialize_plan
from ..plans.schema import Plan, PlanState, StepStatus
from ..plans.store import PlanStore
from .reconcile import reconcile_output

__all__ = ["AgentRunner", "OptimizationPipeline"]

LOGGER = logging.getLogger(__name__)


class AgentRunner(Protocol):
    def __call__(
        self,
        command: str,
        args: Sequence[str],
        prompt: str,
        plan_content: str,
        *,
        timeout: Optional[float] = None,
    ) -> str:
        ...


class OptimizationPipeline:
    """Sequential, resumable driver for review-agent optimization steps."""

    def __init__(
        self,
        store: PlanStore,
        config: QpConfig,
        *,
        runner: AgentRunner = run_oneshot,
        on_step: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.store = store
        self.config = config
        self._runner = runner
        self._on_step = on_step

    def _next_version(self, plan: Plan) -> int:
        # review_cycles + 1 is the base; existing history wins so a number
        # is never reused after a failed or forced run.
        return max(plan.meta.review_cycles + 1, self.store.latest_version(plan.meta.id) + 1)

    def _all_steps_done(self, plan: Plan) -> bool:
        return all(plan.meta.is_step_done(step) for step in self.config.optimization.steps)

    def run_step(self, plan_id: str, step_name: str) -> Plan:
        """Run one review step and return the plan as persisted afterwards."""
        review_agent = self.config.review_agent(step_name)

        plan = self.store.get(plan_id)
        plan_id = plan.meta.id
        if plan.meta.state == PlanState.DRAFT:
            LOGGER.warning("Optimizing plan %s before it was approved", plan_id)
        plan.meta.state = PlanState.OPTIMIZING
        plan.touch()
        self.store.save(plan)

        plan_content = serialize_plan(plan)
        version_before = self._next_version(plan)
        self.store.save_version_snapshot(plan_id, version_before, plan_content)

        if self._on_step is not None:
            self._on_step(step_name)
        LOGGER.info("Running step %s on plan %s (v%d)", step_name, plan_id, version_before)
        try:
            output = self._runner(
                review_agent.command,
                review_agent.args,
                review_agent.prompt,
                plan_content,
                timeout=review_agent.timeout,
            )
        except AgentError:
            self.store.record_review_step(plan_id, step_name, StepStatus.FAILED)
            raise

        merged = reconcile_output(output, plan, label=step_name)
        LOGGER.debug("Step %s produced a %s result", step_name, merged.kind)
        plan.body = merged.body
        plan.touch()
        self.store.save(plan)

        self.store.save_version_snapshot(
            plan_id,
            version_before + 1,
            serialize_plan(plan),
            notes=None if merged.replaced else output,
        )
        self.store.record_review_step(plan_id, step_name, StepStatus.DONE)

        plan = self.store.get(plan_id)
        plan.meta.state = PlanState.READY if self._all_steps_done(plan) else PlanState.APPROVED
        plan.touch()
        self.store.save(plan)
        LOGGER.info("Step %s finished; plan %s is %s", step_name, plan_id, plan.meta.state)
        return plan

    def run_all_steps(self, plan_id: str, *, force: bool = False) -> List[Plan]:
        """Run every configured step in order, skipping finished ones unless ``force``.

        Returns one plan per step actually run. The first failure propagates
        and stops the remaining steps.
        """
        steps = self.config.optimization.steps
        plan = self.store.ensure_review_steps(plan_id, steps)
        plan_id = plan.meta.id

        results: List[Plan] = []
        for step in steps:
            current = self.store.get(plan_id)
            if current.meta.is_step_done(step) and not force:
                LOGGER.debug("Skipping completed step %s on plan %s", step, plan_id)
                continue
            results.append(self.run_step(plan_id, step))
        return results
