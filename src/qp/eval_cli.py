"""``qp-eval``: measure how well a review agent performs on fixture plans."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from .cli import LOG_FORMAT, reporting_errors
from .config import load_config
from .discovery import find_qp_root
from .errors import EvaluationError
from .evaluation import (
    EvalReport,
    Evaluator,
    build_report,
    load_cases,
    lowest_scoring,
    parse_only,
    score_distribution,
)
from .models.judge import DEFAULT_JUDGE_MODEL, JudgeClient

RULE = "=" * 60

app = typer.Typer(help="Evaluate review agent performance against fixtures.")


def _score_text(score: float, precision: int = 1) -> str:
    text = f"{score:.{precision}f}"
    if score >= 8.0:
        return typer.style(text, fg=typer.colors.GREEN)
    if score >= 6.0:
        return typer.style(text, fg=typer.colors.YELLOW)
    return typer.style(text, fg=typer.colors.RED)


def _print_report(report: EvalReport) -> None:
    typer.echo(RULE)
    typer.echo(typer.style("EVALUATION REPORT", bold=True))
    typer.echo(RULE)
    typer.echo(f"Agent: {report.agent}")
    typer.echo(f"Test cases: {report.total_cases}")
    typer.echo("")
    typer.echo(f"Average Score: {_score_text(report.average_score, 2)}/10")
    typer.echo(f"Score Range: {report.min_score:.1f} - {report.max_score:.1f}")
    typer.echo("")
    typer.echo(typer.style("Score Distribution:", bold=True))
    for index, count in enumerate(score_distribution(report.results)):
        typer.echo(f"  {index + 1:>2}: {'#' * count} {count}")
    typer.echo("")
    typer.echo(typer.style("Lowest Scoring Cases (focus for improvement):", bold=True))
    for result in lowest_scoring(report):
        typer.echo(f"  Case {result.test_case}: {result.score:.1f}/10 - {result.reasoning[:60]}")
    typer.echo(RULE)


@app.command()
def evaluate(
    agent: str = typer.Option(..., "--agent", "-a", help="Review step to evaluate, e.g. holes."),
    fixtures: Path = typer.Option(
        Path("tests/fixtures/agents"),
        "--fixtures",
        "-f",
        help="Directory holding one fixture folder per agent.",
    ),
    command: Optional[str] = typer.Option(
        None,
        "--command",
        help="Agent command to run (defaults to the step's configured command).",
    ),
    args: Optional[List[str]] = typer.Option(None, "--args", help="Extra argument for the agent command."),
    only: Optional[str] = typer.Option(None, "--only", help="Only run these case numbers, e.g. 1,5,10."),
    skip_judge: bool = typer.Option(False, "--skip-judge", help="Run the agent without LLM scoring."),
    output: Optional[Path] = typer.Option(None, "--output", help="Write the full report as JSON."),
    judge_model: str = typer.Option(DEFAULT_JUDGE_MODEL, "--judge-model", help="Model used for judging."),
    root: Optional[Path] = typer.Option(None, "--root", help="Project .qp directory for configuration."),
    global_config: Optional[Path] = typer.Option(
        None,
        "--global-config",
        help="Path to the user-wide config file.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Run a review agent over fixtures and score its outputs."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)
    with reporting_errors():
        config = load_config(root or find_qp_root(Path.cwd()), global_path=global_config)
        review_agent = config.review_agent(agent)
        judge = None if skip_judge else JudgeClient(model=judge_model)
        cases = load_cases(fixtures / agent, parse_only(only))

        evaluator = Evaluator(
            command or review_agent.command,
            list(args) if args else ([] if command else review_agent.args),
            review_agent.prompt,
            judge=judge,
            timeout=review_agent.timeout,
        )
        typer.echo(f"{typer.style('Starting', fg=typer.colors.GREEN, bold=True)} {agent} agent evaluation")
        prompt_lines = review_agent.prompt.strip().splitlines()
        typer.echo(f"Agent prompt: {prompt_lines[0] if prompt_lines else ''}")
        typer.echo(f"Loaded {len(cases)} test cases")
        typer.echo("")

        results = []
        for index, case in enumerate(cases, start=1):
            typer.echo(
                f"{typer.style('Running', fg=typer.colors.CYAN, bold=True)} "
                f"Test case {case.number} ({index}/{len(cases)})"
            )
            result = evaluator.run_case(case)
            typer.echo(f"  Agent completed in {result.agent_time_ms}ms")
            typer.echo(f"  Score: {_score_text(result.score)}/10")
            typer.echo(f"  Reasoning: {result.reasoning}")
            typer.echo("")
            results.append(result)

        report = build_report(agent, results)
        _print_report(report)

        if output is not None:
            try:
                output.parent.mkdir(parents=True, exist_ok=True)
                output.write_text(report.model_dump_json(indent=2), encoding="utf-8")
            except OSError as error:
                raise EvaluationError(f"failed to write {output}: {error}") from error
            typer.echo(f"Results saved to {output}")


if __name__ == "__main__":
    app()
