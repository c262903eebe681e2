"""Locate the ``.qp`` directory that scopes the current project."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

QP_DIR_NAME = ".qp"

__all__ = ["QP_DIR_NAME", "find_qp_root"]


def find_qp_root(start: Path | str | None = None) -> Optional[Path]:
    """Return the nearest ``.qp`` directory at or above ``start``.

    The walk stops at the repository root (the first directory holding a
    ``.git`` entry) or at the filesystem root, so a monorepo package with its
    own ``.qp`` shadows the one at the top of the repository.
    """
    current = Path(start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        qp_dir = candidate / QP_DIR_NAME
        if qp_dir.is_dir():
            return qp_dir
        if (candidate / ".git").exists():
            return None
    return None
