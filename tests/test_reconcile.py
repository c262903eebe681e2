from __future__ import annotations

from qp.optimize.reconcile import reconcile_output
from qp.plans.schema import Plan, PlanMeta, PlanState


def _plan(body: str) -> Plan:
    meta = PlanMeta(id="p-1", title="T", state=PlanState.APPROVED, created_at="c", updated_at="u")
    return Plan(meta=meta, body=body)


def test_full_plan_output_replaces_body() -> None:
    output = "---\nid: x\ntitle: T\nstate: draft\ncreated_at: c\nupdated_at: u\n---\n\nNEW BODY"

    result = reconcile_output(output, _plan("old body"))

    assert result.kind == "replace"
    assert result.replaced
    assert result.body == "NEW BODY"


def test_full_plan_output_with_surrounding_whitespace() -> None:
    output = "\n\n---\nid: x\ntitle: T\nstate: ready\ncreated_at: c\nupdated_at: u\n---\n\nREVISED\n\n"

    result = reconcile_output(output, _plan("old"))

    assert result.body == "REVISED"


def test_commentary_is_inserted_under_existing_review_notes() -> None:
    body = "## Overview\n\nGoals.\n\n## Review Notes\n\nold"

    result = reconcile_output("just some commentary", _plan(body), label="holes")

    assert result.kind == "notes"
    heading = result.body.index("## Review Notes")
    inserted = result.body.index("### Optimization output (holes)\n\njust some commentary")
    old = result.body.index("old")
    assert heading < inserted < old
    assert result.body.startswith("## Overview\n\nGoals.")


def test_commentary_appends_review_notes_section_when_missing() -> None:
    result = reconcile_output("  some notes \n", _plan("## Overview"))

    assert result.kind == "notes"
    assert result.body == "## Overview\n\n## Review Notes\n\n### Optimization output\n\nsome notes\n"


def test_delimited_output_without_valid_frontmatter_falls_back_to_notes() -> None:
    output = "---\nsummary: looks fine\n---\n\nNo frontmatter fields."

    result = reconcile_output(output, _plan("## Review Notes"))

    assert result.kind == "notes"
    assert "summary: looks fine" in result.body


def test_reconcile_is_deterministic() -> None:
    plan = _plan("## Review Notes\n\nold")

    assert reconcile_output("x", plan) == reconcile_output("x", plan)
    assert plan.body == "## Review Notes\n\nold"


def test_crlf_full_plan_output_replaces_body() -> None:
    output = "---\r\nid: x\r\ntitle: T\r\nstate: draft\r\ncreated_at: c\r\nupdated_at: u\r\n---\r\n\r\nNEW BODY\r\n"

    result = reconcile_output(output, _plan("old body"))

    assert result.kind == "replace"
    assert result.body == "NEW BODY"


def test_frontmatter_without_state_is_treated_as_notes() -> None:
    output = "---\nid: x\ntitle: T\ncreated_at: c\nupdated_at: u\n---\n\nNEW"

    result = reconcile_output(output, _plan("old body"))

    assert result.kind == "notes"
    assert result.body.startswith("old body\n\n## Review Notes")
