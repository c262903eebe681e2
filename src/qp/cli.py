"""CLI commands for creating, reviewing, and optimizing quarterly plans."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from .agent import run_interactive, wait_interactive
from .config import (
    AGENT_PROFILES,
    CONFIG_FILE_NAME,
    QpConfig,
    default_config_text,
    global_config_path,
    load_config,
    set_config_value,
)
from .discovery import QP_DIR_NAME, find_qp_root
from .errors import QpError
from .optimize.pipeline import OptimizationPipeline
from .plans.document import serialize_plan
from .plans.schema import PlanMeta, PlanState, StepStatus
from .plans.store import PlanStore

APP_HELP = "Quarterly planning: create and optimize plans for AI coding agents."
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

NEW_PLAN_PROMPT = (
    "Create or refine a quarterly plan. Save the result as a single markdown file with YAML "
    "frontmatter (id, title, state, created_at, updated_at, review_cycles, review_steps) and "
    "sections: Overview, Constraints, Implementation Notes, Review Notes, Tickets. Each ticket: "
    "TICKET: <title>, Summary:, Definition of Done:. Plan path: {path}"
)
EDIT_PLAN_PROMPT = (
    "Edit this plan. Keep the YAML frontmatter and the sections: Overview, Constraints, "
    "Implementation Notes, Review Notes, Tickets. Plan path: {path}"
)


@dataclass(slots=True)
class CliState:
    """Options shared by every command."""

    root_override: Optional[Path] = None
    global_config: Optional[Path] = None

    def qp_root(self) -> Optional[Path]:
        if self.root_override is not None:
            return self.root_override
        return find_qp_root(Path.cwd())

    def require_root(self) -> Path:
        root = self.qp_root()
        if root is None or not root.is_dir():
            typer.echo(
                f"error: No {QP_DIR_NAME} directory found. Run from a project with {QP_DIR_NAME} "
                "or run `qp init` first.",
                err=True,
            )
            raise typer.Exit(code=1)
        return root

    def store(self) -> PlanStore:
        return PlanStore(self.require_root())

    def config(self, root: Optional[Path]) -> QpConfig:
        return load_config(root, global_path=self.global_config)


app = typer.Typer(help=APP_HELP, no_args_is_help=False)


@contextmanager
def reporting_errors() -> Iterator[None]:
    """Report domain errors on stderr and exit non-zero."""
    try:
        yield
    except QpError as error:
        typer.echo(f"error: {error}", err=True)
        raise typer.Exit(code=1) from error


def _state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if not isinstance(state, CliState):
        state = CliState()
        ctx.obj = state
    return state


def _render_plan_list(metas: List[PlanMeta]) -> None:
    if not metas:
        typer.echo("No plans. Create one with: qp new [name]")
        return
    typer.echo("Plans:")
    width = max(len(str(meta.state)) for meta in metas)
    for meta in metas:
        typer.echo(f"  {meta.id}  {str(meta.state).ljust(width)}  {meta.title}")


def _render_steps(meta: PlanMeta) -> None:
    if not meta.review_steps:
        typer.echo("  (no review steps recorded)")
        return
    for entry in meta.review_steps:
        when = f" ({entry.completed_at})" if entry.completed_at else ""
        typer.echo(f"  {entry.step}: {entry.status}{when}")


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    root: Optional[Path] = typer.Option(
        None,
        "--root",
        help=f"Use this {QP_DIR_NAME} directory instead of searching upwards from the cwd.",
    ),
    global_config: Optional[Path] = typer.Option(
        None,
        "--global-config",
        help="Path to the user-wide config file (defaults to ~/.config/qp/config.yaml).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """List plans when no command is given."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, format=LOG_FORMAT)
    ctx.obj = CliState(root_override=root, global_config=global_config)
    if ctx.invoked_subcommand is None:
        list_plans(ctx)


@app.command("list")
def list_plans(ctx: typer.Context) -> None:
    """List plans in scope, most recently updated first."""
    store = _state(ctx).store()
    with reporting_errors():
        _render_plan_list(store.list())


@app.command()
def new(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Title for the new plan."),
    no_agent: bool = typer.Option(False, "--no-agent", help="Create the plan without starting the agent."),
) -> None:
    """Create a new plan and open it in the configured agent."""
    state = _state(ctx)
    store = state.store()
    with reporting_errors():
        config = state.config(store.root)
        plan = store.create(name)
        path = store.plan_path(plan.meta.id)
        typer.echo(f"Created plan: {plan.meta.title} ({plan.meta.id})")
        if no_agent:
            typer.echo(f"Plan saved to: {path}")
            return
        typer.echo(f"Spawning agent for editing: {' '.join([config.agent.command, *config.agent.args])}")
        process = run_interactive(
            config.agent.command,
            config.agent.args,
            NEW_PLAN_PROMPT.format(path=path),
        )
        wait_interactive(process)
        typer.echo(f"After editing in the agent, save content to: {path}")


@app.command()
def show(ctx: typer.Context, plan: str = typer.Argument(..., help="Plan id, slug, or title.")) -> None:
    """Print a plan document."""
    store = _state(ctx).store()
    with reporting_errors():
        typer.echo(serialize_plan(store.get(plan)))


@app.command()
def edit(ctx: typer.Context, plan: str = typer.Argument(..., help="Plan id, slug, or title.")) -> None:
    """Open an existing plan in the configured agent."""
    state = _state(ctx)
    store = state.store()
    with reporting_errors():
        config = state.config(store.root)
        record = store.get(plan)
        path = store.plan_path(record.meta.id)
        typer.echo(f"Spawning agent to edit: {' '.join([config.agent.command, *config.agent.args])}")
        process = run_interactive(
            config.agent.command,
            config.agent.args,
            EDIT_PLAN_PROMPT.format(path=path),
        )
        wait_interactive(process)
        typer.echo(f"Save updated content to: {path}")


@app.command()
def approve(ctx: typer.Context, plan: str = typer.Argument(..., help="Plan id, slug, or title.")) -> None:
    """Mark a plan as approved and ready for optimization."""
    store = _state(ctx).store()
    with reporting_errors():
        record = store.approve(plan)
    typer.echo(f"Approved: {record.meta.title} ({record.meta.id})")


@app.command()
def delete(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan id, slug, or title."),
    yes: bool = typer.Option(False, "--yes", help="Confirm the deletion."),
) -> None:
    """Delete a plan and its version history."""
    store = _state(ctx).store()
    with reporting_errors():
        record = store.get(plan)
        if not yes:
            typer.echo(
                f'Delete plan "{record.meta.title}" ({record.meta.id})? Use --yes to confirm.',
                err=True,
            )
            raise typer.Exit(code=1)
        store.delete(record.meta.id)
    typer.echo(f"Deleted: {record.meta.title}")


@app.command()
def optimize(
    ctx: typer.Context,
    plan: str = typer.Argument(..., help="Plan id, slug, or title."),
    step: Optional[str] = typer.Option(None, "--step", help="Run only this review step."),
    force: bool = typer.Option(False, "--force", help="Re-run steps that are already done."),
) -> None:
    """Run the configured optimization steps against a plan."""
    state = _state(ctx)
    store = state.store()
    with reporting_errors():
        config = state.config(store.root)
        pipeline = OptimizationPipeline(
            store,
            config,
            on_step=lambda name: typer.echo(f"Running step: {name}"),
        )
        if step:
            record = pipeline.run_step(plan, step)
            typer.echo(f"Step {step} completed. Plan is {record.meta.state}.")
            return
        results = pipeline.run_all_steps(plan, force=force)
        typer.echo(f"Ran {len(results)} optimization step(s).")
        if results:
            typer.echo(f"Plan is {results[-1].meta.state}.")


@app.command()
def review(ctx: typer.Context, plan: str = typer.Argument(..., help="Plan id, slug, or title.")) -> None:
    """Show review-step progress and where snapshots are stored."""
    store = _state(ctx).store()
    with reporting_errors():
        record = store.get(plan)
        versions = store.list_versions(record.meta.id)
    if not versions:
        typer.echo("No optimization history yet.")
        return
    typer.echo(f"{record.meta.title} review steps (cycles: {record.meta.review_cycles}):")
    _render_steps(record.meta)
    notes = [snapshot for snapshot in versions if snapshot.notes_path is not None]
    if notes:
        typer.echo("Review notes:")
        for snapshot in notes:
            typer.echo(f"  v{snapshot.version}: {snapshot.notes_path}")
    typer.echo(f"\nVersion snapshots in: {store.history_dir(record.meta.id)}")


@app.command()
def status(ctx: typer.Context) -> None:
    """Overview of all plans and their review progress."""
    store = _state(ctx).store()
    with reporting_errors():
        metas = store.list()
    _render_plan_list(metas)
    for meta in metas:
        if not meta.review_steps:
            continue
        done = sum(1 for entry in meta.review_steps if entry.status == StepStatus.DONE)
        typer.echo(f"  {meta.title}: {done}/{len(meta.review_steps)} review steps done")


@app.command()
def stats(ctx: typer.Context) -> None:
    """Show plan statistics."""
    store = _state(ctx).store()
    with reporting_errors():
        metas = store.list()
    completed = sum(1 for meta in metas if meta.state == PlanState.COMPLETED)
    optimized = sum(1 for meta in metas if meta.review_cycles > 0)
    typer.echo(f"Plans: {len(metas)} total, {completed} completed, {optimized} with optimization")


@app.command()
def history(ctx: typer.Context, plan: str = typer.Argument(..., help="Plan id, slug, or title.")) -> None:
    """List stored version snapshots for a plan."""
    store = _state(ctx).store()
    with reporting_errors():
        record = store.get(plan)
        versions = store.list_versions(record.meta.id)
    if not versions:
        typer.echo("No version history.")
        return
    for snapshot in versions:
        suffix = " (+ review notes)" if snapshot.notes_path is not None else ""
        typer.echo(f"  {snapshot.path.name}{suffix}")


@app.command("config")
def show_config(
    ctx: typer.Context,
    set_key: Optional[str] = typer.Option(
        None,
        "--set",
        metavar="KEY",
        help="Dotted key to update in the project config, e.g. agent.command.",
    ),
    value: Optional[List[str]] = typer.Argument(None, help="Value(s) for --set."),
) -> None:
    """Show the merged configuration or update a project setting."""
    state = _state(ctx)
    if set_key:
        root = state.require_root()
        values = list(value or [])
        if not values:
            typer.echo("error: --set requires at least one value", err=True)
            raise typer.Exit(code=1)
        with reporting_errors():
            set_config_value(root / CONFIG_FILE_NAME, set_key, values)
        typer.echo(f"Set {set_key} in {root / CONFIG_FILE_NAME}")
        return

    with reporting_errors():
        config = state.config(state.qp_root())
    typer.echo(f'agent.command = "{config.agent.command}"')
    typer.echo(f"agent.args = {config.agent.args}")
    typer.echo(f"optimization.steps = {config.optimization.steps}")
    for name, agent in config.review_agents.items():
        typer.echo(f'review_agents.{name}.command = "{agent.command}"')
        if agent.args:
            typer.echo(f"review_agents.{name}.args = {agent.args}")
        if agent.timeout is not None:
            typer.echo(f"review_agents.{name}.timeout = {agent.timeout}")
        first_line = agent.prompt.strip().splitlines()[0] if agent.prompt.strip() else ""
        typer.echo(f'review_agents.{name}.prompt = "{first_line}"')
    typer.echo(f"(global config: {state.global_config or global_config_path()})")


@app.command()
def init(
    ctx: typer.Context,
    agent: str = typer.Option(
        "claude",
        "--agent",
        help=f"Agent profile to configure ({', '.join(sorted(AGENT_PROFILES))}).",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config.yaml."),
) -> None:
    """Initialize a .qp directory with a starter configuration."""
    state = _state(ctx)
    if agent not in AGENT_PROFILES:
        raise typer.BadParameter(
            f"unknown agent profile '{agent}'; choose from {', '.join(sorted(AGENT_PROFILES))}",
            param_hint="--agent",
        )
    command, description = AGENT_PROFILES[agent]
    root = state.root_override or Path.cwd() / QP_DIR_NAME
    with reporting_errors():
        written = PlanStore(root).init_root(default_config_text(command), overwrite=force)
    if written:
        typer.echo(f"Wrote config for agent: {description} ({command})")
    else:
        typer.echo(f"Kept existing {root / CONFIG_FILE_NAME}")
    typer.echo(f"Initialized {root}")


if __name__ == "__main__":
    app()
