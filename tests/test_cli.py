"""Tests for the testr CLI."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner
from conftest import jest_json

from testr import __version__
from testr.adapters.process import ProcessOutcome
from testr.cli import main


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Never read a developer's own testr config."""
    monkeypatch.setenv("TESTR_CONFIG", str(tmp_path / "no-config.toml"))


def jest_outcome(project: Path, *assertions) -> AsyncMock:
    report = jest_json(project / "src" / "math.test.js", *assertions)
    return AsyncMock(return_value=ProcessOutcome(stdout=report, exit_code=0))


def test_version() -> None:
    """Test --version output."""
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert f"testr version {__version__}" in result.output


def test_help_lists_commands() -> None:
    """Test that the group shows its commands."""
    result = CliRunner().invoke(main, [])
    assert result.exit_code == 0
    for command in ("discover", "run", "watch", "frameworks"):
        assert command in result.output


def test_discover_shows_tree(jest_project: Path) -> None:
    """Test discover renders suites and cases."""
    result = CliRunner().invoke(main, ["discover", str(jest_project)])
    assert result.exit_code == 0
    assert "Math" in result.output
    assert "adds" in result.output
    assert "subtracts" in result.output


def test_discover_missing_root(tmp_path: Path) -> None:
    """Test a nonexistent root is reported."""
    result = CliRunner().invoke(main, ["discover", str(tmp_path / "missing")])
    assert result.exit_code == 1
    assert "Project root not found" in result.output


def test_discover_without_framework(tmp_path: Path) -> None:
    """Test a root no adapter recognizes is reported."""
    empty = tmp_path / "empty"
    empty.mkdir()
    result = CliRunner().invoke(main, ["discover", str(empty)])
    assert result.exit_code == 1
    assert "No supported test framework" in result.output


def test_frameworks(jest_project: Path, phpunit_project: Path) -> None:
    """Test framework resolution per root."""
    result = CliRunner().invoke(main, ["frameworks", str(jest_project), str(phpunit_project)])
    assert result.exit_code == 0
    assert "jest" in result.output
    assert "phpunit" in result.output


def test_run_all_reports_failures(jest_project: Path) -> None:
    """A failing test gives exit status 1 and the overall block."""
    run_process = jest_outcome(
        jest_project, (["Math"], "adds", "passed", 3), (["Math"], "subtracts", "failed", 4)
    )
    with patch("testr.adapters.jest.run_process", new=run_process):
        result = CliRunner().invoke(main, ["run", str(jest_project)])

    assert result.exit_code == 1
    assert "OVERALL RESULTS" in result.output
    assert "1/2 failed" in result.output


def test_run_single_test(jest_project: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Selecting one test by relative path runs just that test."""
    monkeypatch.chdir(jest_project)
    run_process = jest_outcome(jest_project, (["Math"], "adds", "passed", 3))
    with patch("testr.adapters.jest.run_process", new=run_process):
        result = CliRunner().invoke(main, ["run", "--only", "src/math.test.js::Math::adds"])

    assert result.exit_code == 0
    assert "OVERALL RESULTS" not in result.output
    assert "PASS" in result.output
    argv = run_process.call_args.args[0]
    assert argv[-1] == "Math adds"


def test_run_unknown_selection(jest_project: Path) -> None:
    """Nothing to run is an error."""
    result = CliRunner().invoke(
        main, ["run", str(jest_project), "--only", "nowhere.test.js::Nope"]
    )
    assert result.exit_code == 1
    assert "Nothing to run" in result.output
