from __future__ import annotations

import json
from pathlib import Path
from typing import Dict

import pytest
from typer.testing import CliRunner

import qp.eval_cli as eval_cli
from conftest import build_config, write_config
from qp.config import CONFIG_FILE_NAME
from qp.errors import EvaluationError
from qp.evaluation import (
    CaseResult,
    Evaluator,
    build_report,
    load_cases,
    lowest_scoring,
    parse_only,
    score_distribution,
)
from qp.models.judge import JudgeClient


def _messages_response(text: str) -> str:
    return json.dumps({"content": [{"type": "text", "text": text}]})


def _write_fixtures(directory: Path, cases: Dict[int, str]) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    for number, content in cases.items():
        (directory / f"input_{number:02d}.md").write_text(content, encoding="utf-8")
        (directory / f"expected_{number:02d}.md").write_text(f"expected {number}", encoding="utf-8")
    return directory


def _result(number: int, score: float, reasoning: str = "r") -> CaseResult:
    return CaseResult(
        test_case=number,
        score=score,
        reasoning=reasoning,
        actual_output="out",
        agent_time_ms=1,
        judge_time_ms=1,
    )


def test_parse_only() -> None:
    assert parse_only(None) is None
    assert parse_only("  ") is None
    assert parse_only("1, 5,10,") == {1, 5, 10}
    with pytest.raises(EvaluationError):
        parse_only("1,two")


def test_load_cases_sorted_and_filtered(tmp_path: Path) -> None:
    fixtures = _write_fixtures(tmp_path / "holes", {10: "ten", 2: "two", 1: "one"})
    (fixtures / "notes.md").write_text("ignored", encoding="utf-8")

    cases = load_cases(fixtures)
    assert [case.number for case in cases] == [1, 2, 10]
    assert cases[0].input_content == "one"
    assert cases[0].expected_content == "expected 1"

    assert [case.number for case in load_cases(fixtures, {2, 10, 99})] == [2, 10]


def test_load_cases_requires_expected_file(tmp_path: Path) -> None:
    fixtures = _write_fixtures(tmp_path / "holes", {1: "one"})
    (fixtures / "input_03.md").write_text("three", encoding="utf-8")

    with pytest.raises(EvaluationError) as excinfo:
        load_cases(fixtures)

    assert "expected_03.md" in str(excinfo.value)
    assert [case.number for case in load_cases(fixtures, {1})] == [1]


def test_load_cases_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(EvaluationError):
        load_cases(tmp_path / "absent")


def test_evaluator_without_judge_skips_scoring(tmp_path: Path, stub_agent) -> None:
    agent = stub_agent("sys.stdout.write('reviewed: ' + data.rsplit('\\n', 1)[-1])\n")
    cases = load_cases(_write_fixtures(tmp_path / "holes", {1: "plan one"}))

    [result] = Evaluator(agent.command, agent.args, "Find holes.").run(cases)

    assert result.test_case == 1
    assert result.score == 0.0
    assert result.reasoning == "Skipped"
    assert result.judge_time_ms == 0
    assert result.actual_output == "reviewed: plan one"
    assert agent.last_input == "Find holes.\n\n---\n\nPlan to review/revise:\n\nplan one"


def test_evaluator_scores_with_judge(tmp_path: Path, stub_agent) -> None:
    agent = stub_agent.echo("agent output")
    seen = []

    def transport(payload):
        seen.append(payload["messages"][0]["content"])
        return _messages_response('{"score": 7.5, "reasoning": "decent"}')

    judge = JudgeClient(transport=transport)
    cases = load_cases(_write_fixtures(tmp_path / "holes", {1: "plan one", 2: "plan two"}))

    results = Evaluator(agent.command, agent.args, "Find holes.", judge=judge).run(cases)

    assert [result.score for result in results] == [7.5, 7.5]
    assert [result.reasoning for result in results] == ["decent", "decent"]
    assert "agent output" in seen[0]
    assert "expected 2" in seen[1]


def test_report_aggregates_scores() -> None:
    results = [_result(1, 9.0), _result(2, 4.0), _result(3, 6.5), _result(4, 10.0), _result(5, 0.0)]

    report = build_report("holes", results)

    assert report.total_cases == report.completed_cases == 5
    assert report.average_score == pytest.approx(5.9)
    assert report.min_score == 0.0
    assert report.max_score == 10.0
    assert score_distribution(report.results) == [1, 0, 0, 1, 0, 0, 1, 0, 1, 1]
    assert [result.test_case for result in lowest_scoring(report, limit=2)] == [5, 2]


def test_empty_report_has_zero_scores() -> None:
    report = build_report("holes", [])

    assert (report.average_score, report.min_score, report.max_score) == (0.0, 0.0, 0.0)


def _invoke(qp_root: Path, args):
    return CliRunner().invoke(
        eval_cli.app,
        ["--root", str(qp_root), "--global-config", str(qp_root.parent / "global.yaml"), *args],
        catch_exceptions=False,
    )


def test_eval_cli_skip_judge_writes_json_report(tmp_path: Path, qp_root: Path, stub_agent) -> None:
    write_config(qp_root / CONFIG_FILE_NAME, build_config({"holes": stub_agent.echo("agent output")}))
    fixtures = tmp_path / "fixtures"
    _write_fixtures(fixtures / "holes", {1: "one", 2: "two", 3: "three"})
    report_path = tmp_path / "out" / "report.json"

    result = _invoke(
        qp_root,
        ["--agent", "holes", "--fixtures", str(fixtures), "--only", "1,3", "--skip-judge", "--output", str(report_path)],
    )

    assert result.exit_code == 0, result.output
    assert "Starting holes agent evaluation" in result.output
    assert "Agent prompt: Run holes." in result.output
    assert "Loaded 2 test cases" in result.output
    assert "Test case 3 (2/2)" in result.output
    assert "EVALUATION REPORT" in result.output
    assert f"Results saved to {report_path}" in result.output

    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["agent"] == "holes"
    assert report["total_cases"] == 2
    assert [case["test_case"] for case in report["results"]] == [1, 3]
    assert report["results"][0]["reasoning"] == "Skipped"
    assert report["results"][0]["actual_output"] == "agent output"


def test_eval_cli_scores_with_judge(tmp_path: Path, qp_root: Path, stub_agent, monkeypatch) -> None:
    write_config(qp_root / CONFIG_FILE_NAME, build_config({"holes": stub_agent.echo("agent output")}))
    fixtures = tmp_path / "fixtures"
    _write_fixtures(fixtures / "holes", {1: "one"})
    models = []

    def judge_factory(*, model):
        models.append(model)
        return JudgeClient(
            model=model,
            transport=lambda payload: _messages_response('{"score": 8, "reasoning": "solid review"}'),
        )

    monkeypatch.setattr(eval_cli, "JudgeClient", judge_factory)

    result = _invoke(qp_root, ["--agent", "holes", "--fixtures", str(fixtures), "--judge-model", "judge-x"])

    assert result.exit_code == 0, result.output
    assert models == ["judge-x"]
    assert "Score: 8.0/10" in result.output
    assert "Average Score: 8.00/10" in result.output
    assert "Case 1: 8.0/10 - solid review" in result.output


def test_eval_cli_requires_api_key_for_judging(tmp_path: Path, qp_root: Path, stub_agent, monkeypatch) -> None:
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    agent = stub_agent.echo("agent output")
    write_config(qp_root / CONFIG_FILE_NAME, build_config({"holes": agent}))
    _write_fixtures(tmp_path / "fixtures" / "holes", {1: "one"})

    result = _invoke(qp_root, ["--agent", "holes", "--fixtures", str(tmp_path / "fixtures")])

    assert result.exit_code == 1
    assert "ANTHROPIC_API_KEY" in result.output
    assert agent.calls == 0


def test_eval_cli_unknown_agent(tmp_path: Path, qp_root: Path) -> None:
    result = _invoke(qp_root, ["--agent", "security", "--fixtures", str(tmp_path), "--skip-judge"])

    assert result.exit_code == 1
    assert "error: unknown step: security" in result.output


def test_eval_cli_command_override(tmp_path: Path, qp_root: Path, stub_agent) -> None:
    override = stub_agent.echo("from override", name="override")
    _write_fixtures(tmp_path / "fixtures" / "holes", {1: "one"})
    report_path = tmp_path / "report.json"

    result = _invoke(
        qp_root,
        [
            "--agent", "holes",
            "--fixtures", str(tmp_path / "fixtures"),
            "--command", override.command,
            f"--args={override.args[0]}",
            f"--args={override.args[1]}",
            "--skip-judge",
            "--output", str(report_path),
        ],
    )

    assert result.exit_code == 0, result.output
    assert override.calls == 1
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["results"][0]["actual_output"] == "from override"
