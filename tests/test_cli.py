"""Tests for the command line entry point."""

import json
import sys
from pathlib import Path

import pytest

import cli


@pytest.fixture
def cells_file(tmp_path: Path) -> Path:
    path = tmp_path / "cells.json"
    path.write_text(json.dumps({"A1": 1, "A2": 2, "A3": 3}), encoding="utf-8")
    return path


class TestParsePivotArgs:
    """Tests for pivot argument parsing."""

    def test_parse(self) -> None:
        config = cli.parse_pivot_args(["rows=Region,Product", "values=Amount", "agg=AVERAGE"])

        assert config.rows == ["Region", "Product"]
        assert config.columns == []
        assert config.values == ["Amount"]
        assert config.aggregation == "average"

    @pytest.mark.parametrize(
        "args",
        [["Region"], ["color=red"], ["rows=Region", "agg=median"]],
    )
    def test_invalid(self, args) -> None:
        """Test missing '=', unknown keys and unsupported aggregations."""
        with pytest.raises(ValueError):
            cli.parse_pivot_args(args)


class TestMain:
    """Tests for the subcommands."""

    def test_eval(self, cells_file: Path, monkeypatch, capsys) -> None:
        monkeypatch.setattr(sys, "argv", ["cli.py", "eval", str(cells_file), "=SUM(A1:A3)"])

        cli.main()

        output = json.loads(capsys.readouterr().out)
        assert output == {"formula": "=SUM(A1:A3)", "result": 6}

    def test_run(self, cells_file: Path, monkeypatch, capsys) -> None:
        monkeypatch.setattr(sys, "argv", ["cli.py", "run", str(cells_file), "average", "of", "A1:A3"])

        cli.main()

        output = json.loads(capsys.readouterr().out)
        assert output["success"] is True
        assert output["result"] == 2

    def test_run_failure_exit_code(self, cells_file: Path, monkeypatch, capsys) -> None:
        """Test that a failed command exits with status 2."""
        monkeypatch.setattr(sys, "argv", ["cli.py", "run", str(cells_file), "dance"])

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 2

    def test_missing_file(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setattr(sys, "argv", ["cli.py", "analyze", str(tmp_path / "nope.json")])

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 1

    def test_pivot_unknown_field(self, tmp_path: Path, monkeypatch, capsys) -> None:
        """Test that an unknown pivot field prints the result and exits with status 2."""
        path = tmp_path / "sales.csv"
        path.write_text("Region,Amount\nEast,10\nWest,20\n", encoding="utf-8")
        monkeypatch.setattr(sys, "argv", ["cli.py", "pivot", str(path), "rows=Country"])

        with pytest.raises(SystemExit) as exc_info:
            cli.main()

        assert exc_info.value.code == 2
        output = json.loads(capsys.readouterr().out)
        assert output["rows"] == []
        assert output["summary"]["available_fields"] == ["Region", "Amount"]
