"""Configuration loading for qp.

Settings come from three layers, later layers winning:

1. built-in defaults (``DEFAULT_STEPS`` and ``DEFAULT_REVIEW_PROMPTS``),
2. the global file ``$XDG_CONFIG_HOME/qp/config.yaml``
   (``~/.config/qp/config.yaml`` when ``XDG_CONFIG_HOME`` is unset),
3. the project file ``.qp/config.yaml``.

Within a layer, the ``agent`` section replaces only the keys it names,
``review_agents`` merge per step name, and a non-empty
``optimization.steps`` list replaces the inherited one.
"""

from __future__ import annotations

import copy
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ConfigError, UnknownStepError

__all__ = [
    "AGENT_PROFILES",
    "AgentConfig",
    "CONFIG_FILE_NAME",
    "DEFAULT_AGENT_COMMAND",
    "DEFAULT_REVIEW_PROMPTS",
    "DEFAULT_STEPS",
    "OptimizationConfig",
    "QpConfig",
    "ReviewAgentConfig",
    "default_config_data",
    "default_config_text",
    "global_config_path",
    "load_config",
    "set_config_value",
]

CONFIG_FILE_NAME = "config.yaml"
DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_STEPS: List[str] = ["holes", "details", "breakdown", "deliverables"]

# profile name -> (command, description)
AGENT_PROFILES: Dict[str, tuple[str, str]] = {
    "claude": ("claude", "Claude CLI"),
    "cursor": ("agent", "Cursor CLI (agent)"),
    "aider": ("aider", "Aider"),
}

_FULL_PLAN_FOOTER = (
    "Your response must START with the plan's YAML frontmatter (---) and include ALL sections: "
    "Overview, Constraints, Implementation Notes, Review Notes, and Tickets.\n"
    "Output ONLY the plan content. No meta-commentary."
)

DEFAULT_REVIEW_PROMPTS: Dict[str, str] = {
    "holes": (
        "Review this plan and identify gaps, risks, and issues. Output the complete plan with an "
        "updated Review Notes section (## Review Notes) containing these four subsections:\n\n"
        "### Identified Weaknesses\n"
        "List at least 5 specific weaknesses: missing security considerations, unclear requirements, "
        "underspecified behavior, missing error handling, and architectural gaps.\n\n"
        "### Edge Cases\n"
        "List at least 5 edge cases the plan does not address: boundary conditions, error states, "
        "concurrent access, invalid inputs, and failure scenarios.\n\n"
        "### Assumptions to Validate\n"
        "List at least 4 assumptions that should be verified before implementation.\n\n"
        "### Potential Failures\n"
        "List at least 4 ways the implementation could fail in production.\n\n"
        "Keep all other sections (Overview, Constraints, Implementation Notes, Tickets) unchanged.\n"
        + _FULL_PLAN_FOOTER
    ),
    "details": (
        "Expand this plan with implementation details.\n\n"
        "CRITICAL: Your output must be the COMPLETE, EXPANDED plan, not a summary of changes.\n"
        "Add or expand an ## Implementation Notes section with:\n\n"
        "### Technology Stack\nExact versions of the language, key dependencies, build and test tools.\n\n"
        "### Data Structures\nCore types with field names, field types, and documentation.\n\n"
        "### Algorithms & Logic\nKey algorithms as pseudocode or code.\n\n"
        "### API Design\nEndpoint signatures, request/response schemas, and error formats if applicable.\n\n"
        + _FULL_PLAN_FOOTER
    ),
    "breakdown": (
        "Break this plan into precise, atomic steps.\n\n"
        "CRITICAL: Your output must be the COMPLETE plan with detailed steps added.\n"
        "For each ticket in the ## Tickets section, add a #### Steps subsection containing numbered, "
        "independently implementable steps small enough to finish in under 2 hours. Include specific "
        "commands, file names, and technical details, and end each step with 'Verify:' describing how "
        "to confirm completion.\n\n"
        + _FULL_PLAN_FOOTER
    ),
    "deliverables": (
        "Add clear acceptance criteria for each ticket in the plan.\n\n"
        "CRITICAL: Your output must be the COMPLETE plan with acceptance criteria added.\n"
        "For each ticket in the ## Tickets section, add:\n\n"
        "#### Acceptance Criteria\nNumbered groups of testable requirements as '- [ ]' checkboxes.\n\n"
        "#### Demo Script\nConcrete commands showing the feature works, with expected output.\n\n"
        "#### Test Requirements\nSpecific tests that must pass, as '- [ ]' checkboxes.\n\n"
        + _FULL_PLAN_FOOTER
    ),
}


class ConfigModel(BaseModel):
    """Base model for configuration sections."""

    model_config = ConfigDict(extra="forbid")


class AgentConfig(ConfigModel):
    """Agent used for interactive ``new``/``edit`` sessions."""

    command: str = DEFAULT_AGENT_COMMAND
    args: List[str] = Field(default_factory=list)


class ReviewAgentConfig(ConfigModel):
    """Agent invocation bound to one optimization step."""

    command: str = DEFAULT_AGENT_COMMAND
    args: List[str] = Field(default_factory=list)
    prompt: str
    timeout: Optional[float] = Field(default=None, gt=0)


class OptimizationConfig(ConfigModel):
    steps: List[str] = Field(default_factory=lambda: list(DEFAULT_STEPS))


class QpConfig(ConfigModel):
    """Resolved configuration consumed by the pipeline and CLI."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    review_agents: Dict[str, ReviewAgentConfig] = Field(default_factory=dict)
    optimization: OptimizationConfig = Field(default_factory=OptimizationConfig)

    def review_agent(self, step_name: str) -> ReviewAgentConfig:
        """Return the agent configured for ``step_name``."""
        try:
            return self.review_agents[step_name]
        except KeyError:
            raise UnknownStepError(step_name) from None


def default_config_data(command: str = DEFAULT_AGENT_COMMAND) -> Dict[str, Any]:
    """Return the built-in configuration as plain data."""
    return {
        "agent": {"command": command, "args": []},
        "optimization": {"steps": list(DEFAULT_STEPS)},
        "review_agents": {
            name: {"command": command, "args": [], "prompt": prompt}
            for name, prompt in DEFAULT_REVIEW_PROMPTS.items()
        },
    }


def default_config_text(command: str = DEFAULT_AGENT_COMMAND) -> str:
    """Render the starter ``config.yaml`` written by ``qp init``."""
    return yaml.safe_dump(default_config_data(command), sort_keys=False, allow_unicode=True, width=100)


def global_config_path() -> Path:
    """Return the location of the user-wide configuration file."""
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "qp" / CONFIG_FILE_NAME


def _read_config_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except OSError as error:
        raise ConfigError(f"failed to read {path}: {error}") from error
    except yaml.YAMLError as error:
        raise ConfigError(f"failed to parse {path}: {error}") from error
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: configuration must be a mapping at the top level")
    return data


def _section(data: Mapping[str, Any], key: str, path: Path) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"{path}: '{key}' must be a mapping")
    return value


def _merge_layer(base: Dict[str, Any], layer: Mapping[str, Any], path: Path) -> None:
    base["agent"].update(_section(layer, "agent", path))
    for name, entry in _section(layer, "review_agents", path).items():
        if not isinstance(entry, dict):
            raise ConfigError(f"{path}: review_agents.{name} must be a mapping")
        base["review_agents"].setdefault(str(name), {}).update(entry)
    steps = _section(layer, "optimization", path).get("steps")
    if steps:
        base["optimization"]["steps"] = steps


def load_config(
    qp_root: Optional[Path] = None,
    *,
    global_path: Optional[Path] = None,
) -> QpConfig:
    """Load and merge the global and project configuration files.

    ``global_path`` overrides :func:`global_config_path`; tests use it to keep
    the user's own configuration out of the picture.
    """
    merged = default_config_data()
    layers: List[Path] = [global_path if global_path is not None else global_config_path()]
    if qp_root is not None:
        layers.append(Path(qp_root) / CONFIG_FILE_NAME)
    for path in layers:
        if path.is_file():
            _merge_layer(merged, _read_config_file(path), path)
    try:
        return QpConfig.model_validate(merged)
    except ValidationError as error:
        raise ConfigError(f"invalid configuration: {error}") from error


def _coerce_value(key: str, values: Sequence[str]) -> Any:
    leaf = key.rsplit(".", 1)[-1]
    if leaf in {"args", "steps"}:
        return list(values)
    if len(values) != 1:
        raise ConfigError(f"'{key}' takes exactly one value")
    if leaf == "timeout":
        try:
            return float(values[0])
        except ValueError:
            raise ConfigError(f"'{key}' must be a number") from None
    return values[0]


def set_config_value(path: Path, key: str, values: Sequence[str]) -> Dict[str, Any]:
    """Set a dotted ``key`` in the YAML file at ``path`` and return the new data.

    The updated document must still validate as a configuration layer;
    nothing is written otherwise.
    """
    parts = [part for part in key.split(".") if part]
    if len(parts) < 2:
        raise ConfigError(f"expected a dotted key such as agent.command, got '{key}'")
    data = _read_config_file(path) if path.is_file() else {}
    updated = copy.deepcopy(data)
    cursor: Dict[str, Any] = updated
    for part in parts[:-1]:
        child = cursor.setdefault(part, {})
        if not isinstance(child, dict):
            raise ConfigError(f"'{part}' in '{key}' is not a mapping")
        cursor = child
    cursor[parts[-1]] = _coerce_value(key, values)

    candidate = default_config_data()
    _merge_layer(candidate, updated, path)
    try:
        QpConfig.model_validate(candidate)
    except ValidationError as error:
        raise ConfigError(f"invalid value for '{key}': {error}") from error

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(updated, handle, sort_keys=False, allow_unicode=True, width=100)
    except OSError as error:
        raise ConfigError(f"failed to write {path}: {error}") from error
    return updated
