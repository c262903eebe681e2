"""Optimization pipeline and agent-output reconciliation."""

from .pipeline import OptimizationPipeline
from .reconcile import Reconciliation, reconcile_output

__all__ = ["OptimizationPipeline", "Reconciliation", "reconcile_output"]
