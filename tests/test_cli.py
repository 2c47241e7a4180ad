import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from concept_cloud.cli import app
from concept_cloud.persistence import StateFile


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


def test_canonicalize_command(runner: CliRunner) -> None:
    result = runner.invoke(app, ["canonicalize", "responder emails", "Contestar Mails", "acta de reunión"])
    assert result.exit_code == 0
    assert "'Contestar Mails' -> correo [rule]" in result.stdout
    assert "acta reunion [rule]" in result.stdout
    assert '"count": 2' in result.stdout


def test_canonicalize_rejects_unknown_namespace(runner: CliRunner) -> None:
    result = runner.invoke(app, ["canonicalize", "correo", "--namespace", "q9"])
    assert result.exit_code != 0


def test_calibrate_command(tmp_path: Path, runner: CliRunner) -> None:
    output = tmp_path / "calibration.json"
    result = runner.invoke(app, ["calibrate", "--output", str(output)])
    assert result.exit_code == 0
    report = json.loads(output.read_text(encoding="utf8"))
    low, high = report["optimal_range"]
    assert low <= 0.60 <= high


def test_calibrate_with_custom_pairs(tmp_path: Path, runner: CliRunner) -> None:
    pairs = tmp_path / "pairs.json"
    pairs.write_text(json.dumps([{"left": "correo", "right": "mails", "same": True}]))
    result = runner.invoke(app, ["calibrate", str(pairs)])
    assert result.exit_code == 0
    assert '"f1": 1.0' in result.stdout


def test_inspect_state_command(tmp_path: Path, runner: CliRunner) -> None:
    path = tmp_path / "state.json"
    StateFile(path).save({"q1": [{"key": "correo", "count": 2, "label": "Mails"}], "q2": [], "meta": {"version": 9}})
    result = runner.invoke(app, ["inspect-state", str(path)])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["q1"] == [{"text": "Mails", "count": 2}]
    assert payload["meta"]["version"] == 9

    missing = runner.invoke(app, ["inspect-state", str(tmp_path / "missing.json")])
    assert missing.exit_code == 1
