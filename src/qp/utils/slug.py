"""Title slug normalisation used for plan lookup."""

from __future__ import annotations

import re
from typing import Pattern

_NON_ALNUM: Pattern[str] = re.compile(r"[^a-z0-9]+")


def slugify(value: str | None) -> str:
    """Normalize ``value`` into a lowercase, hyphen-separated slug.

    Runs of non-alphanumeric characters collapse into a single hyphen and
    leading/trailing hyphens are stripped, so ``"My  Plan!"`` becomes
    ``"my-plan"``. Only ASCII letters and digits survive.
    """
    source = (value or "").strip().lower()
    return _NON_ALNUM.sub("-", source).strip("-")
