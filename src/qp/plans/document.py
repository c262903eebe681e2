"""Markdown-with-frontmatter codec for plan documents."""

from __future__ import annotations

import re
from typing import Any, Dict, Tuple

import yaml
from pydantic import ValidationError

from ..errors import SerializationError
from .schema import Plan, PlanMeta

__all__ = [
    "DELIMITER",
    "NOTES_HEADING",
    "insert_review_notes",
    "parse_frontmatter",
    "parse_plan",
    "serialize_plan",
    "split_frontmatter",
]

DELIMITER = "---"
NOTES_HEADING = "## Review Notes"
_DELIMITER_LINE = re.compile(r"^---[ \t]*$", re.MULTILINE)


def split_frontmatter(content: str) -> Tuple[str, str]:
    """Split ``content`` into ``(frontmatter, body)``.

    CRLF line endings are normalised first. Content that does not open with a
    delimiter line (after leading whitespace) has no frontmatter and is
    returned whole as the body, as is content whose frontmatter block is never
    closed.
    """
    text = content.replace("\r\n", "\n").lstrip()
    opening = _DELIMITER_LINE.match(text)
    if opening is None:
        return "", text
    closing = _DELIMITER_LINE.search(text, opening.end())
    if closing is None:
        return "", text
    front = text[opening.end():closing.start()].strip()
    body = text[closing.end():].lstrip()
    return front, body


def parse_frontmatter(content: str) -> Tuple[Dict[str, Any], str]:
    """Return the decoded frontmatter mapping and the body of ``content``."""
    front, body = split_frontmatter(content)
    if not front:
        return {}, body
    try:
        data = yaml.safe_load(front)
    except yaml.YAMLError as error:
        raise SerializationError(f"malformed plan frontmatter: {error}") from error
    if data is None:
        return {}, body
    if not isinstance(data, dict):
        raise SerializationError("plan frontmatter must be a mapping")
    return data, body


def parse_plan(content: str) -> Plan:
    """Parse a plan document into a :class:`Plan`."""
    metadata, body = parse_frontmatter(content)
    try:
        meta = PlanMeta.model_validate(metadata)
    except ValidationError as error:
        raise SerializationError(f"invalid plan frontmatter: {error}") from error
    return Plan(meta=meta, body=body)


def serialize_plan(plan: Plan) -> str:
    """Render ``plan`` as ``---`` delimited YAML frontmatter followed by the body."""
    data = plan.meta.model_dump(mode="json", exclude_none=True)
    try:
        front = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    except yaml.YAMLError as error:
        raise SerializationError(f"failed to serialize plan {plan.meta.id}: {error}") from error
    return f"{DELIMITER}\n{front.strip()}\n{DELIMITER}\n\n{plan.body}"


def insert_review_notes(body: str, section: str, notes: str) -> str:
    """Return ``body`` with a ``### section`` block placed under the notes heading.

    The block goes directly after the first ``## Review Notes`` heading so the
    newest notes read first; without that heading a new section is appended.
    """
    position = body.find(NOTES_HEADING)
    if position >= 0:
        insert_at = position + len(NOTES_HEADING)
        block = f"\n\n### {section}\n\n{notes}\n"
        return body[:insert_at] + block + body[insert_at:]
    return f"{body}\n\n{NOTES_HEADING}\n\n### {section}\n\n{notes}\n"
