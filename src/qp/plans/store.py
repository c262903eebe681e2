"""File-backed persistence for plans, step bookkeeping, and version history."""

from __future__ import annotations

import logging
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from ..config import CONFIG_FILE_NAME
from ..errors import NotFoundError, SerializationError, StorageError
from ..utils.slug import slugify
from .document import insert_review_notes, parse_plan, serialize_plan
from .schema import Plan, PlanMeta, PlanState, ReviewStepStatus, StepStatus, utc_now

__all__ = [
    "DEFAULT_PLAN_BODY",
    "DEFAULT_TITLE",
    "PlanStore",
    "VersionSnapshot",
]

LOGGER = logging.getLogger(__name__)

PLAN_FILE_NAME = "plan.md"
DEFAULT_TITLE = "Untitled Plan"
DEFAULT_PLAN_BODY = (
    "## Ideas\n\n"
    "(Add goals and scope here. When ready, have the agent write the full plan.)"
)

_SNAPSHOT_RE = re.compile(r"^v(\d+)\.md$")


@dataclass(slots=True)
class VersionSnapshot:
    """A stored version of a plan and its optional review-notes sidecar."""

    version: int
    path: Path
    notes_path: Optional[Path] = None


class PlanStore:
    """Plans stored as ``<root>/plans/<id>/plan.md`` with a ``history/`` folder.

    ``root`` is the ``.qp`` directory. Every mutation is a full-document
    read-modify-write of ``plan.md``; there is no locking, so a single
    writer per plan is assumed.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    @property
    def plans_root(self) -> Path:
        return self.root / "plans"

    @property
    def config_path(self) -> Path:
        return self.root / CONFIG_FILE_NAME

    def plan_dir(self, plan_id: str) -> Path:
        return self.plans_root / plan_id

    def plan_path(self, plan_id: str) -> Path:
        return self.plan_dir(plan_id) / PLAN_FILE_NAME

    def history_dir(self, plan_id: str) -> Path:
        return self.plan_dir(plan_id) / "history"

    # Layout ------------------------------------------------------------------------
    def init_root(self, config_text: Optional[str] = None, *, overwrite: bool = False) -> bool:
        """Create the store directories and seed ``config.yaml``.

        ``config_text`` is written when the config file is missing or when
        ``overwrite`` is set. Returns ``True`` when the config was written.
        """
        try:
            self.plans_root.mkdir(parents=True, exist_ok=True)
            if self.config_path.exists() and not overwrite:
                return False
            if config_text is None:
                return False
            self.config_path.write_text(config_text, encoding="utf-8")
        except OSError as error:
            raise StorageError(f"failed to initialise {self.root}: {error}") from error
        LOGGER.debug("Wrote configuration to %s", self.config_path)
        return True

    # Reading -----------------------------------------------------------------------
    def _read(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as error:
            raise StorageError(f"failed to read {path}: {error}") from error

    def _iter_plan_files(self) -> Iterator[Path]:
        if not self.plans_root.is_dir():
            return
        try:
            entries = sorted(self.plans_root.iterdir())
        except OSError as error:
            raise StorageError(f"failed to read {self.plans_root}: {error}") from error
        for entry in entries:
            candidate = entry / PLAN_FILE_NAME
            if entry.is_dir() and candidate.is_file():
                yield candidate

    def _load_path(self, path: Path) -> Plan:
        try:
            return parse_plan(self._read(path))
        except SerializationError as error:
            raise SerializationError(f"{path}: {error}") from error

    def get(self, id_or_slug: str) -> Plan:
        """Resolve a plan by exact id, by title slug, or by exact title.

        Unreadable plan files are logged and skipped while scanning for a slug
        or title match. A plan addressed by its own id still raises when its
        file cannot be parsed.
        """
        reference = id_or_slug.strip()
        direct = self.plan_path(reference) if reference else None
        if direct is not None and direct.is_file() and direct.parent.parent == self.plans_root:
            plan = self._load_path(direct)
            if plan.meta.id == reference:
                return plan

        wanted_slug = slugify(reference)
        for path in self._iter_plan_files():
            try:
                plan = self._load_path(path)
            except StorageError as error:
                LOGGER.warning("Skipping unreadable plan %s: %s", path, error)
                continue
            meta = plan.meta
            if meta.id == reference or meta.title == reference:
                return plan
            title_slug = slugify(meta.title)
            if title_slug and (title_slug == reference or title_slug == wanted_slug):
                return plan
        raise NotFoundError(id_or_slug)

    def list(self) -> List[PlanMeta]:
        """Return metadata for every plan, most recently updated first."""
        metas: List[PlanMeta] = []
        for path in self._iter_plan_files():
            try:
                metas.append(self._load_path(path).meta)
            except StorageError as error:
                LOGGER.warning("Skipping unreadable plan %s: %s", path, error)
        metas.sort(key=lambda meta: meta.updated_at, reverse=True)
        return metas

    # Writing -----------------------------------------------------------------------
    def save(self, plan: Plan) -> Path:
        """Persist ``plan`` to its canonical ``plan.md`` (overwriting)."""
        content = serialize_plan(plan)
        path = self.plan_path(plan.meta.id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as error:
            raise StorageError(f"failed to write {path}: {error}") from error
        LOGGER.debug("Saved plan %s (%s)", plan.meta.id, plan.meta.state)
        return path

    def create(self, title: Optional[str] = None) -> Plan:
        """Allocate, persist, and return a new draft plan."""
        now = utc_now()
        meta = PlanMeta(
            id=str(uuid.uuid4()),
            title=(title or "").strip() or DEFAULT_TITLE,
            state=PlanState.DRAFT,
            created_at=now,
            updated_at=now,
        )
        plan = Plan(meta=meta, body=DEFAULT_PLAN_BODY)
        self.save(plan)
        LOGGER.info("Created plan %s (%s)", meta.id, meta.title)
        return plan

    def delete(self, id_or_slug: str) -> Plan:
        """Remove a plan together with its version history."""
        plan = self.get(id_or_slug)
        directory = self.plan_dir(plan.meta.id)
        if directory.exists():
            try:
                shutil.rmtree(directory)
            except OSError as error:
                raise StorageError(f"failed to delete {directory}: {error}") from error
        LOGGER.info("Deleted plan %s", plan.meta.id)
        return plan

    def set_state(self, id_or_slug: str, state: PlanState) -> Plan:
        plan = self.get(id_or_slug)
        plan.meta.state = state
        plan.touch()
        self.save(plan)
        return plan

    def approve(self, id_or_slug: str) -> Plan:
        """Mark a plan as approved and ready for optimization."""
        return self.set_state(id_or_slug, PlanState.APPROVED)

    def update_body(self, plan_id: str, body: str, state: Optional[PlanState] = None) -> Plan:
        plan = self.get(plan_id)
        plan.body = body.lstrip()
        if state is not None:
            plan.meta.state = state
        plan.touch()
        self.save(plan)
        return plan

    def append_review_notes(self, plan_id: str, section: str, notes: str) -> Plan:
        """Insert ``notes`` as a ``### section`` block under ``## Review Notes``."""
        plan = self.get(plan_id)
        plan.body = insert_review_notes(plan.body, section, notes)
        plan.touch()
        self.save(plan)
        return plan

    # Review steps ------------------------------------------------------------------
    def record_review_step(self, plan_id: str, step_name: str, status: StepStatus | str) -> Plan:
        """Upsert a step's status; ``done`` also bumps ``review_cycles``."""
        status = StepStatus(status)
        plan = self.get(plan_id)
        now = utc_now()
        entry = plan.meta.step_status(step_name)
        if entry is None:
            plan.meta.review_steps.append(
                ReviewStepStatus(step=step_name, status=status, completed_at=now)
            )
        else:
            entry.status = status
            entry.completed_at = now
        if status == StepStatus.DONE:
            plan.meta.review_cycles += 1
        plan.touch()
        self.save(plan)
        LOGGER.debug("Recorded step %s=%s for plan %s", step_name, status, plan.meta.id)
        return plan

    def ensure_review_steps(self, plan_id: str, step_names: Sequence[str]) -> Plan:
        """Add ``pending`` entries for any step names the plan does not track yet."""
        plan = self.get(plan_id)
        missing = [name for name in step_names if plan.meta.step_status(name) is None]
        if not missing:
            return plan
        plan.meta.review_steps.extend(ReviewStepStatus(step=name) for name in missing)
        plan.touch()
        self.save(plan)
        return plan

    # Version history ---------------------------------------------------------------
    def save_version_snapshot(
        self,
        plan_id: str,
        version: int,
        content: str,
        notes: Optional[str] = None,
    ) -> Path:
        """Write ``history/v{version}.md`` and, when given, its review-notes sidecar."""
        directory = self.history_dir(plan_id)
        path = directory / f"v{version}.md"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            if notes is not None:
                (directory / f"v{version}.review.md").write_text(notes, encoding="utf-8")
        except OSError as error:
            raise StorageError(f"failed to write snapshot {path}: {error}") from error
        LOGGER.debug("Saved snapshot v%d for plan %s", version, plan_id)
        return path

    def list_versions(self, plan_id: str) -> List[VersionSnapshot]:
        directory = self.history_dir(plan_id)
        if not directory.is_dir():
            return []
        snapshots: List[VersionSnapshot] = []
        for entry in directory.iterdir():
            match = _SNAPSHOT_RE.match(entry.name)
            if match is None or not entry.is_file():
                continue
            version = int(match.group(1))
            notes = directory / f"v{version}.review.md"
            snapshots.append(
                VersionSnapshot(version=version, path=entry, notes_path=notes if notes.is_file() else None)
            )
        snapshots.sort(key=lambda snapshot: snapshot.version)
        return snapshots

    def latest_version(self, plan_id: str) -> int:
        versions = self.list_versions(plan_id)
        return versions[-1].version if versions else 0
