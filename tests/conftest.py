from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from qp.config import QpConfig  # noqa: E402
from qp.plans.store import PlanStore  # noqa: E402


@dataclass(slots=True)
class StubAgent:
    """A python one-liner standing in for a real coding agent binary."""

    command: str
    args: List[str]
    calls_path: Path
    stdin_path: Path

    @property
    def calls(self) -> int:
        if not self.calls_path.exists():
            return 0
        return len(self.calls_path.read_text(encoding="utf-8").splitlines())

    @property
    def last_input(self) -> str:
        return self.stdin_path.read_text(encoding="utf-8")

    def review_agent(self, prompt: str = "Review the plan.") -> Dict[str, Any]:
        return {"command": self.command, "args": list(self.args), "prompt": prompt}


@dataclass(slots=True)
class StubAgentFactory:
    workdir: Path
    created: List[StubAgent] = field(default_factory=list)

    def __call__(self, body: str, *, name: str = "agent") -> StubAgent:
        """Build an agent whose script ``body`` runs after stdin is captured.

        The script sees ``data`` (everything read from stdin) and is recorded
        in a call log so tests can count invocations.
        """
        calls_path = self.workdir / f"{name}.calls"
        stdin_path = self.workdir / f"{name}.stdin"
        prelude = textwrap.dedent(
            f"""
            import sys
            data = sys.stdin.read()
            with open({str(stdin_path)!r}, "w", encoding="utf-8") as handle:
                handle.write(data)
            with open({str(calls_path)!r}, "a", encoding="utf-8") as handle:
                handle.write("call\\n")
            """
        )
        script = prelude + textwrap.dedent(body)
        agent = StubAgent(
            command=sys.executable,
            args=["-c", script],
            calls_path=calls_path,
            stdin_path=stdin_path,
        )
        self.created.append(agent)
        return agent

    def echo(self, text: str, *, name: str = "agent") -> StubAgent:
        return self(f"sys.stdout.write({text!r})\n", name=name)

    def failing(self, code: int = 3, *, name: str = "failing") -> StubAgent:
        return self(f"sys.stderr.write('boom\\n')\nsys.exit({code})\n", name=name)

    def reviser(self, marker: str, *, name: str = "reviser") -> StubAgent:
        """Agent that returns the full plan with ``marker`` appended to the body."""
        return self(
            f"""
            plan = data.split("Plan to review/revise:\\n\\n", 1)[1]
            sys.stdout.write(plan.rstrip() + "\\n\\n" + {marker!r} + "\\n")
            """,
            name=name,
        )


@pytest.fixture()
def qp_root(tmp_path: Path) -> Path:
    root = tmp_path / ".qp"
    (root / "plans").mkdir(parents=True)
    return root


@pytest.fixture()
def store(qp_root: Path) -> PlanStore:
    return PlanStore(qp_root)


@pytest.fixture()
def stub_agent(tmp_path: Path) -> StubAgentFactory:
    workdir = tmp_path / "agents"
    workdir.mkdir()
    return StubAgentFactory(workdir=workdir)


def build_config(steps: Dict[str, StubAgent], order: List[str] | None = None) -> QpConfig:
    """Return a config that binds each step name to a stub agent."""
    return QpConfig.model_validate(
        {
            "agent": {"command": sys.executable, "args": ["-c", "pass"]},
            "optimization": {"steps": list(order or steps)},
            "review_agents": {name: agent.review_agent(f"Run {name}.") for name, agent in steps.items()},
        }
    )


def write_config(path: Path, config: QpConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config.model_dump(exclude_none=True), handle, sort_keys=False)
