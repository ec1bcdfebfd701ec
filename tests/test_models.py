"""Tests for the core data models."""

from datetime import date

from sheetcore.engine.models import (
    NA,
    Address,
    CellFormat,
    CellKind,
    CommandResult,
    FormattingUpdate,
    build_cells,
    cells_from_dict,
    cells_to_dict,
    column_letter_to_number,
    column_number_to_letter,
)


class TestAddress:
    """Tests for the Address value type."""

    def test_label_and_ordering(self) -> None:
        """Test labels and row-major ordering."""
        assert Address(12, 28).label == "AB12"
        assert sorted([Address(2, 1), Address(1, 2), Address(1, 1)]) == [
            Address(1, 1),
            Address(1, 2),
            Address(2, 1),
        ]

    def test_offset(self) -> None:
        assert Address(1, 1).offset(2, 3) == Address(3, 4)

    def test_column_helpers(self) -> None:
        assert column_number_to_letter(703) == "AAA"
        assert column_letter_to_number("AAA") == 703


class TestCells:
    """Tests for building and serializing cells."""

    def test_build_cells(self) -> None:
        """Test kind inference and formula detection."""
        cells = build_cells({"A1": 10, "A2": "x", "A3": "=A1*2", "A4": date(2024, 1, 1), "A5": True})

        assert cells["A1"].kind == CellKind.NUMBER
        assert cells["A2"].kind == CellKind.TEXT
        assert cells["A3"].kind == CellKind.FORMULA
        assert cells["A3"].value is None
        assert cells["A4"].kind == CellKind.DATE
        assert cells["A5"].kind == CellKind.TEXT

    def test_round_trip(self) -> None:
        """Test that a document survives serialization."""
        cells = build_cells({"B2": 5, "A1": "=B2+1"})
        cells["B2"].format = CellFormat(background_color="#fff9c4")

        document = cells_to_dict(cells)
        restored = cells_from_dict(document)

        assert list(document) == ["A1", "B2"]
        assert document["B2"]["format"] == {"background_color": "#fff9c4"}
        assert restored["A1"].formula == "=B2+1"
        assert restored["B2"].format == CellFormat(background_color="#fff9c4")

    def test_date_serializes_as_iso(self) -> None:
        cells = build_cells({"A1": date(2024, 1, 2)})
        assert cells["A1"].to_dict()["value"] == "2024-01-02"


class TestCommandResult:
    """Tests for command result serialization."""

    def test_error_result(self) -> None:
        """Test that error values serialize as their codes."""
        data = CommandResult(success=True, message="ok", formula="=NA", result=NA).to_dict()

        assert data["result"] == "#N/A"
        assert "cell_updates" not in data

    def test_failure(self) -> None:
        result = CommandResult.failure("Missing range")

        assert result.success is False
        assert result.to_dict() == {"success": False, "message": "Missing range"}

    def test_formatting(self) -> None:
        update = FormattingUpdate("A1", CellFormat(font_weight="bold"))
        data = CommandResult(success=True, message="ok", formatting=[update]).to_dict()

        assert data["formatting"] == [{"cell_id": "A1", "format": {"font_weight": "bold"}}]
