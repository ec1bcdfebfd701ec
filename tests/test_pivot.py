"""Tests for the pivot engine."""

import pytest

from sheetcore.core.config import Settings
from sheetcore.engine.models import PivotConfig, cells_to_dict
from sheetcore.engine.pivot import PivotEngine, available_fields, pivot


@pytest.fixture
def engine(test_settings: Settings) -> PivotEngine:
    return PivotEngine(test_settings)


class TestPivotConfig:
    """Tests for pivot configuration validation."""

    def test_aggregation_is_normalized(self) -> None:
        assert PivotConfig(rows=["Region"], aggregation="SUM").aggregation == "sum"

    def test_invalid_aggregation(self) -> None:
        """Test that unsupported aggregations are rejected."""
        with pytest.raises(ValueError):
            PivotConfig(rows=["Region"], aggregation="median")


class TestPivot:
    """Tests for grouping and aggregation."""

    def test_sum_by_row(self, engine: PivotEngine, sales_cells) -> None:
        """Test summing one value field by one dimension."""
        result = engine.pivot(sales_cells, PivotConfig(rows=["Region"], values=["Amount"]))

        assert result.rows == [
            {"Region": "East", "Amount_sum": 150.0},
            {"Region": "North", "Amount_sum": 75.0},
            {"Region": "West", "Amount_sum": 225.0},
        ]
        assert result.summary.total_rows == 3
        assert result.summary.unique_groups == 3
        assert result.summary.source_rows == 5
        assert result.summary.truncated is False
        assert result.summary.error is None

    def test_average(self, engine: PivotEngine, sales_cells) -> None:
        config = PivotConfig(rows=["Region"], values=["Amount"], aggregation="average")
        rows = engine.pivot(sales_cells, config).rows

        assert [r["Amount_average"] for r in rows] == [75.0, 75.0, 112.5]

    def test_count_of_values(self, engine: PivotEngine, sales_cells) -> None:
        """Test that count aggregation yields integers."""
        config = PivotConfig(rows=["Region"], values=["Amount"], aggregation="count")
        rows = engine.pivot(sales_cells, config).rows

        assert [r["Amount_count"] for r in rows] == [2, 1, 2]
        assert all(isinstance(r["Amount_count"], int) for r in rows)

    def test_count_without_values(self, engine: PivotEngine, sales_cells) -> None:
        """Test that no value fields counts records per group."""
        rows = engine.pivot(sales_cells, PivotConfig(rows=["Region"])).rows

        assert rows == [
            {"Region": "East", "count": 2},
            {"Region": "North", "count": 1},
            {"Region": "West", "count": 2},
        ]

    def test_rows_and_columns(self, engine: PivotEngine, sales_cells) -> None:
        """Test grouping by a row and a column dimension."""
        config = PivotConfig(rows=["Region"], columns=["Product"], values=["Amount"])
        rows = engine.pivot(sales_cells, config).rows

        assert [(r["Region"], r["Product"], r["Amount_sum"]) for r in rows] == [
            ("East", "Gadget", 50.0),
            ("East", "Widget", 100.0),
            ("North", "Gadget", 75.0),
            ("West", "Gadget", 25.0),
            ("West", "Widget", 200.0),
        ]

    def test_multiple_value_fields(self, engine: PivotEngine, sales_cells) -> None:
        config = PivotConfig(rows=["Region"], values=["Amount", "Qty"], aggregation="max")
        east = engine.pivot(sales_cells, config).rows[0]

        assert east == {"Region": "East", "Amount_max": 100.0, "Qty_max": 3.0}

    def test_blank_dimension_is_unknown(self, engine: PivotEngine, make_table) -> None:
        """Test that blank dimension values group under Unknown."""
        cells = make_table(
            ["Region", "Amount"],
            [["East", 10], [None, 5], ["West", 20], ["East", 30]],
        )
        rows = engine.pivot(cells, PivotConfig(rows=["Region"], values=["Amount"])).rows

        assert [r["Region"] for r in rows] == ["East", "Unknown", "West"]
        assert [r["Amount_sum"] for r in rows] == [40.0, 5.0, 20.0]

    def test_no_dimensions(self, engine: PivotEngine, sales_cells) -> None:
        """Test the single-row results without dimensions."""
        assert engine.pivot(sales_cells, PivotConfig(values=["Amount"])).rows == [{"Amount_sum": 450.0}]
        assert engine.pivot(sales_cells, PivotConfig()).rows == [{"count": 5}]

    def test_field_lookup(self, engine: PivotEngine, sales_cells) -> None:
        """Test case-insensitive names and column letters."""
        by_name = engine.pivot(sales_cells, PivotConfig(rows=["region"], values=["amount"]))
        by_letter = engine.pivot(sales_cells, PivotConfig(rows=["A"], values=["C"]))

        assert by_name.rows == by_letter.rows

    def test_unknown_field(self, engine: PivotEngine, sales_cells) -> None:
        """Test that an unknown field yields an empty result naming the problem."""
        result = engine.pivot(sales_cells, PivotConfig(rows=["Country"]))

        assert result.success is False
        assert result.rows == []
        assert "Country" in result.summary.error
        assert result.summary.available_fields == ["Region", "Product", "Amount", "Qty"]
        assert result.summary.source_rows == 5

    def test_unknown_value_field_from_entry_point(self, sales_cells) -> None:
        """Test that the module-level pivot returns instead of raising."""
        result = pivot(sales_cells, PivotConfig(rows=["Region"], values=["Profit"]))

        data = result.to_dict()
        assert data["rows"] == []
        assert "Profit" in data["summary"]["error"]
        assert data["summary"]["available_fields"] == ["Region", "Product", "Amount", "Qty"]

    def test_idempotent(self, engine: PivotEngine, sales_cells) -> None:
        """Test that repeated pivots agree and leave the input untouched."""
        before = cells_to_dict(sales_cells)
        config = PivotConfig(rows=["Region"], columns=["Product"], values=["Amount"], aggregation="average")

        first = engine.pivot(sales_cells, config).to_dict()
        second = engine.pivot(sales_cells, config).to_dict()

        assert first == second
        assert cells_to_dict(sales_cells) == before

    def test_text_values_are_ignored(self, engine: PivotEngine, make_table) -> None:
        """Test that non-numeric entries in a value field do not count toward sums."""
        cells = make_table(["Region", "Amount"], [["East", 10], ["East", "n/a"], ["East", "5"]])
        rows = engine.pivot(cells, PivotConfig(rows=["Region"], values=["Amount"])).rows

        assert rows == [{"Region": "East", "Amount_sum": 15.0}]

    def test_source_row_cap(self, sales_cells) -> None:
        """Test that only the first rows up to the cap are pivoted."""
        capped = Settings(_env_file=None, MAX_PIVOT_ROWS=2)
        result = pivot(sales_cells, PivotConfig(rows=["Region"], values=["Amount"]), capped)

        assert result.summary.truncated is True
        assert result.summary.source_rows == 5
        assert result.rows == [
            {"Region": "East", "Amount_sum": 100.0},
            {"Region": "West", "Amount_sum": 200.0},
        ]

    def test_to_dict(self, engine: PivotEngine, sales_cells) -> None:
        data = engine.pivot(sales_cells, PivotConfig(rows=["Region"])).to_dict()

        assert set(data) == {"rows", "summary"}
        assert data["summary"]["aggregation"] == "sum"


class TestAvailableFields:
    """Tests for field discovery."""

    def test_available_fields(self, sales_cells) -> None:
        assert available_fields(sales_cells) == ["Region", "Product", "Amount", "Qty"]

    def test_duplicate_and_blank_headers(self, make_table) -> None:
        """Test generated names for blank and repeated headers."""
        cells = make_table(["Name", "Name", None], [["a", "b", 1]])
        assert available_fields(cells) == ["Name", "Name_2", "Column C"]
