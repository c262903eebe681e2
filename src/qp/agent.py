"""Spawn the external coding agent.

Two modes are supported:

* one-shot: the composed prompt and plan go to the agent's stdin and its
  entire stdout is captured. Used for unattended optimization steps.
* interactive: the agent inherits the terminal so the user can collaborate
  with it directly. Used for ``qp new`` and ``qp edit``.

The agent's stderr is always inherited so progress and errors stay visible.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Optional, Sequence

from .errors import AgentError

__all__ = [
    "PLAN_SEPARATOR",
    "compose_input",
    "run_interactive",
    "run_oneshot",
    "wait_interactive",
]

LOGGER = logging.getLogger(__name__)

PLAN_SEPARATOR = "\n\n---\n\nPlan to review/revise:\n\n"


def compose_input(prompt: str, plan_content: str) -> str:
    """Join the step prompt and the plan into the agent's stdin payload."""
    return f"{prompt}{PLAN_SEPARATOR}{plan_content}"


def _describe(command: Sequence[str]) -> str:
    return " ".join(command)


def _spawn(command: Sequence[str], **kwargs: object) -> subprocess.Popen:
    try:
        return subprocess.Popen(list(command), **kwargs)  # noqa: S603 - command comes from user config
    except OSError as error:
        raise AgentError(
            f"failed to spawn {_describe(command)}: {error}",
            command=command,
        ) from error


def run_oneshot(
    command: str,
    args: Sequence[str],
    prompt: str,
    plan_content: str,
    *,
    timeout: Optional[float] = None,
) -> str:
    """Run the agent once and return everything it wrote to stdout.

    Without ``timeout`` the call blocks until the agent exits. With one, the
    agent is killed once the deadline passes and :class:`AgentError` is
    raised.
    """
    full_command = [command, *args]
    payload = compose_input(prompt, plan_content)
    LOGGER.debug("Running agent %s (%d bytes of input)", _describe(full_command), len(payload))
    process = _spawn(
        full_command,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=None,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    try:
        stdout, _ = process.communicate(payload, timeout=timeout)
    except subprocess.TimeoutExpired as error:
        process.kill()
        process.communicate()
        raise AgentError(
            f"agent {_describe(full_command)} timed out after {timeout} seconds",
            command=full_command,
        ) from error
    except OSError as error:
        process.kill()
        process.wait()
        raise AgentError(
            f"failed to exchange data with {_describe(full_command)}: {error}",
            command=full_command,
        ) from error

    if process.returncode != 0:
        raise AgentError(
            f"agent {_describe(full_command)} exited with status {process.returncode}",
            command=full_command,
            returncode=process.returncode,
        )
    LOGGER.debug("Agent %s returned %d characters", _describe(full_command), len(stdout or ""))
    return stdout or ""


def run_interactive(
    command: str,
    args: Sequence[str],
    initial_prompt: Optional[str] = None,
) -> subprocess.Popen:
    """Start the agent attached to the current terminal and return its handle.

    ``initial_prompt`` is passed as the final argument. The caller decides
    whether to wait (see :func:`wait_interactive`) or detach.
    """
    full_command = [command, *args]
    if initial_prompt:
        full_command.append(initial_prompt)
    LOGGER.debug("Starting interactive agent %s", _describe([command, *args]))
    return _spawn(full_command)


def wait_interactive(process: subprocess.Popen) -> None:
    """Wait for an interactive agent; a non-zero exit raises :class:`AgentError`."""
    try:
        returncode = process.wait()
    except KeyboardInterrupt:
        process.terminate()
        returncode = process.wait()
    if returncode != 0:
        command = process.args if isinstance(process.args, (list, tuple)) else [str(process.args)]
        raise AgentError(
            f"agent {command[0]} exited with status {returncode}",
            command=[str(part) for part in command],
            returncode=returncode,
        )
