"""Tests for loading cell collections from files."""

import json
from datetime import date
from pathlib import Path

import pandas as pd
import pytest

from sheetcore.engine.loader import SheetLoader
from sheetcore.engine.models import CellKind


class TestLoadFiles:
    """Tests for SheetLoader.load."""

    def test_csv(self, tmp_path: Path) -> None:
        """Test that CSV headers land in row 1 and blanks are skipped."""
        path = tmp_path / "sales.csv"
        path.write_text("Name,Amount\na,1\nb,\n", encoding="utf-8")

        cells = SheetLoader.load(path)

        assert cells["A1"].value == "Name"
        assert cells["B1"].value == "Amount"
        assert cells["A2"].value == "a"
        assert cells["B2"].value == 1
        assert cells["B2"].kind == CellKind.NUMBER
        assert "B3" not in cells

    def test_xlsx(self, tmp_path: Path) -> None:
        path = tmp_path / "sales.xlsx"
        pd.DataFrame({"Name": ["a"], "Amount": [5]}).to_excel(path, index=False, engine="openpyxl")

        cells = SheetLoader.load(path)

        assert cells["A1"].value == "Name"
        assert cells["B2"].value == 5

    def test_json_cell_document(self, tmp_path: Path) -> None:
        """Test a JSON object of cell labels with raw values and cell objects."""
        path = tmp_path / "cells.json"
        path.write_text(json.dumps({"A1": 10, "B1": {"formula": "=A1*2"}}), encoding="utf-8")

        cells = SheetLoader.load(path)

        assert cells["A1"].value == 10
        assert cells["B1"].formula == "=A1*2"
        assert cells["B1"].value is None
        assert cells["B1"].kind == CellKind.FORMULA

    def test_json_rows(self, tmp_path: Path) -> None:
        """Test a JSON array of rows."""
        path = tmp_path / "rows.json"
        path.write_text(json.dumps([["x", "y"], [1, 2]]), encoding="utf-8")

        cells = SheetLoader.load(path)

        assert cells["B2"].value == 2

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            SheetLoader.load(tmp_path / "nope.csv")

    def test_unsupported_suffix(self, tmp_path: Path) -> None:
        path = tmp_path / "data.txt"
        path.write_text("x", encoding="utf-8")

        with pytest.raises(ValueError):
            SheetLoader.load(path)

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError):
            SheetLoader.load(path)


class TestInMemory:
    """Tests for building cells from in-memory data."""

    def test_from_json_rejects_scalars(self) -> None:
        with pytest.raises(ValueError):
            SheetLoader.from_json(5)

    def test_from_rows_skips_blanks(self) -> None:
        cells = SheetLoader.from_rows([["a", None, ""], [1]])

        assert set(cells) == {"A1", "A2"}

    def test_from_dataframe(self) -> None:
        """Test unnamed headers and timestamp conversion."""
        df = pd.DataFrame({"Unnamed: 0": [1], "When": [pd.Timestamp("2024-01-02")]})

        cells = SheetLoader.from_dataframe(df)

        assert "A1" not in cells
        assert cells["B1"].value == "When"
        assert cells["A2"].value == 1
        assert cells["B2"].value == date(2024, 1, 2)
        assert cells["B2"].kind == CellKind.DATE
