"""Score a review agent against numbered fixtures.

Fixtures for an agent live in ``<fixtures>/<agent>/`` as pairs of
``input_NN.md`` (the plan handed to the agent) and ``expected_NN.md`` (a
reference output). Each input is run through the agent exactly as the
optimization pipeline would run it, and the output is optionally scored
1-10 by an LLM judge against the reference.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Set

from pydantic import BaseModel, Field

from .agent import run_oneshot
from .errors import EvaluationError
from .models.judge import JudgeClient

__all__ = [
    "CaseResult",
    "EvalCase",
    "EvalReport",
    "Evaluator",
    "SKIPPED_REASONING",
    "build_report",
    "load_cases",
    "lowest_scoring",
    "parse_only",
    "score_distribution",
]

LOGGER = logging.getLogger(__name__)

SKIPPED_REASONING = "Skipped"

_INPUT_RE = re.compile(r"^input_(\d+)\.md$")


@dataclass(slots=True)
class EvalCase:
    """One numbered fixture pair."""

    number: int
    input_path: Path
    expected_path: Path
    input_content: str
    expected_content: str


class CaseResult(BaseModel):
    test_case: int
    score: float
    reasoning: str
    actual_output: str
    agent_time_ms: int
    judge_time_ms: int


class EvalReport(BaseModel):
    """Aggregate scores for one agent, written as JSON by ``--output``."""

    agent: str
    total_cases: int
    completed_cases: int
    average_score: float
    min_score: float
    max_score: float
    results: List[CaseResult] = Field(default_factory=list)


def parse_only(value: Optional[str]) -> Optional[Set[int]]:
    """Parse a ``1,5,10`` case filter; ``None`` or blank means every case."""
    if value is None or not value.strip():
        return None
    numbers: Set[int] = set()
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        if not part.isdigit():
            raise EvaluationError(f"invalid test case number in --only: '{part}'")
        numbers.add(int(part))
    return numbers


def _read(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as error:
        raise EvaluationError(f"failed to read {path}: {error}") from error


def load_cases(fixtures_dir: Path, only: Optional[Set[int]] = None) -> List[EvalCase]:
    """Load ``input_NN.md``/``expected_NN.md`` pairs sorted by number.

    Every selected input must have its expected file, named with a
    two-digit number (``expected_01.md``).
    """
    if not fixtures_dir.is_dir():
        raise EvaluationError(f"fixtures directory not found: {fixtures_dir}")
    cases: List[EvalCase] = []
    for entry in fixtures_dir.iterdir():
        match = _INPUT_RE.match(entry.name)
        if match is None or not entry.is_file():
            continue
        number = int(match.group(1))
        if only is not None and number not in only:
            continue
        expected_path = fixtures_dir / f"expected_{number:02d}.md"
        if not expected_path.is_file():
            raise EvaluationError(f"missing expected file: {expected_path}")
        cases.append(
            EvalCase(
                number=number,
                input_path=entry,
                expected_path=expected_path,
                input_content=_read(entry),
                expected_content=_read(expected_path),
            )
        )
    cases.sort(key=lambda case: case.number)
    return cases


def build_report(agent: str, results: Sequence[CaseResult]) -> EvalReport:
    scores = [result.score for result in results]
    return EvalReport(
        agent=agent,
        total_cases=len(results),
        completed_cases=len(results),
        average_score=sum(scores) / len(scores) if scores else 0.0,
        min_score=min(scores) if scores else 0.0,
        max_score=max(scores) if scores else 0.0,
        results=list(results),
    )


def score_distribution(results: Iterable[CaseResult]) -> List[int]:
    """Count results per score bucket; bucket ``i`` holds scores in ``(i, i + 1]``."""
    buckets = [0] * 10
    for result in results:
        buckets[min(int(max(result.score - 0.01, 0.0)), 9)] += 1
    return buckets


def lowest_scoring(report: EvalReport, limit: int = 5) -> List[CaseResult]:
    return sorted(report.results, key=lambda result: result.score)[:limit]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class Evaluator:
    """Run one agent over fixtures and score each output.

    Without a ``judge`` every case scores ``0.0`` with reasoning
    ``"Skipped"``. Agent and judge failures propagate and stop the run.
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str],
        prompt: str,
        *,
        judge: Optional[JudgeClient] = None,
        runner: Callable[..., str] = run_oneshot,
        timeout: Optional[float] = None,
    ) -> None:
        self.command = command
        self.args = list(args)
        self.prompt = prompt
        self.judge = judge
        self._runner = runner
        self._timeout = timeout

    def run_case(self, case: EvalCase) -> CaseResult:
        started = time.perf_counter()
        output = self._runner(self.command, self.args, self.prompt, case.input_content, timeout=self._timeout)
        agent_time_ms = _elapsed_ms(started)
        LOGGER.debug("Case %d: agent returned %d characters in %dms", case.number, len(output), agent_time_ms)

        if self.judge is None:
            return CaseResult(
                test_case=case.number,
                score=0.0,
                reasoning=SKIPPED_REASONING,
                actual_output=output,
                agent_time_ms=agent_time_ms,
                judge_time_ms=0,
            )

        started = time.perf_counter()
        verdict = self.judge.score(
            agent_prompt=self.prompt,
            input_plan=case.input_content,
            expected=case.expected_content,
            actual=output,
        )
        return CaseResult(
            test_case=case.number,
            score=verdict.score,
            reasoning=verdict.reasoning,
            actual_output=output,
            agent_time_ms=agent_time_ms,
            judge_time_ms=_elapsed_ms(started),
        )

    def run(self, cases: Sequence[EvalCase]) -> List[CaseResult]:
        return [self.run_case(case) for case in cases]
