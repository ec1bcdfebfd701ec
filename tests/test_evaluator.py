"""Tests for the formula evaluator."""

from datetime import date, datetime

import pytest

from sheetcore.core.config import Settings
from sheetcore.engine.evaluator import FormulaEvaluator, evaluate
from sheetcore.engine.models import DIV0, ERROR, NA, NUM, VALUE, CellCollection, build_cells


@pytest.fixture
def cells() -> CellCollection:
    return build_cells({"A1": 10, "A2": "x", "A3": 20, "B1": 1, "B2": 2, "B3": 3})


class TestArithmetic:
    """Tests for operators and references."""

    def test_sum_and_average(self, cells: CellCollection) -> None:
        """Test that text is skipped by aggregates over a range."""
        assert evaluate("=SUM(A1:A3)", cells) == 30
        assert evaluate("=AVERAGE(A1:A3)", cells) == 15

    def test_operators(self, cells: CellCollection) -> None:
        """Test arithmetic, concatenation and power."""
        assert evaluate("=A1*2+B2", cells) == 22
        assert evaluate('="a"&1', cells) == "a1"
        assert evaluate("=2^3", cells) == 8
        assert evaluate("=50%*10", cells) == 5

    def test_comparison(self, cells: CellCollection) -> None:
        """Test comparison operators, including case-insensitive text."""
        assert evaluate("=A1>B1", cells) is True
        assert evaluate('="abc"="ABC"', cells) is True
        assert evaluate("=A1<>10", cells) is False

    def test_division_by_zero(self, cells: CellCollection) -> None:
        assert evaluate("=A1/0", cells) == DIV0

    def test_text_in_arithmetic(self, cells: CellCollection) -> None:
        """Test that arithmetic on plain text gives #VALUE!."""
        assert evaluate("=A2+1", cells) == VALUE

    def test_blank_reference_is_zero(self, cells: CellCollection) -> None:
        """Test that references to empty cells read as zero."""
        assert evaluate("=Z99", cells) == 0
        assert evaluate("=Z99+1", cells) == 1

    def test_complex_power(self, cells: CellCollection) -> None:
        """Test that a negative base with a fractional exponent gives #NUM!."""
        assert evaluate("=(-8)^0.5", cells) == NUM

    def test_multi_cell_range_in_scalar_context(self, cells: CellCollection) -> None:
        """Test that a multi-cell range cannot be used as a scalar."""
        assert evaluate("=A1:A3+1", cells) == VALUE

    def test_whole_column(self, cells: CellCollection) -> None:
        """Test that whole-column ranges cover the populated rows."""
        assert evaluate("=SUM(B:B)", cells) == 6

    def test_error_propagation(self, cells: CellCollection) -> None:
        """Test that errors in arguments propagate through functions."""
        assert evaluate("=SUM(1,A1/0)", cells) == DIV0

    def test_syntax_error(self, cells: CellCollection) -> None:
        """Test that malformed formulas give #ERROR! rather than raising."""
        assert evaluate("=SUM(", cells) == ERROR
        assert evaluate("=SHELL(1)", cells) == ERROR


class TestFormulaCells:
    """Tests for cells that hold only a formula."""

    def test_formula_chain(self) -> None:
        """Test that referenced formulas are evaluated on demand."""
        cells = build_cells({"A1": 3, "B1": "=A1*2", "C1": "=B1+1"})
        assert evaluate("=C1", cells) == 7

    def test_circular_reference(self) -> None:
        """Test that a reference cycle stops at the depth limit."""
        cells = build_cells({"A1": "=B1", "B1": "=A1"})
        assert evaluate("=A1", cells) == ERROR

    def test_depth_limit_from_settings(self) -> None:
        """Test that the nesting limit comes from settings."""
        cells = build_cells({"A1": 1, "A2": "=A1+1", "A3": "=A2+1", "A4": "=A3+1"})
        assert evaluate("=A4", cells) == 4
        shallow = Settings(_env_file=None, MAX_FORMULA_DEPTH=2)
        assert evaluate("=A4", cells, settings=shallow) == ERROR

    def test_cells_are_not_modified(self) -> None:
        """Test that evaluation leaves the snapshot untouched."""
        cells = build_cells({"A1": 3, "B1": "=A1*2"})
        evaluator = FormulaEvaluator(cells)

        assert evaluator.cell_value("B1") == 6
        assert cells["B1"].value is None


class TestConditionals:
    """Tests for IF/IFS/IFERROR."""

    def test_if(self, cells: CellCollection) -> None:
        """Test both branches and the omitted else branch."""
        assert evaluate('=IF(A1>5,"big","small")', cells) == "big"
        assert evaluate('=IF(A1>50,"big","small")', cells) == "small"
        assert evaluate('=IF(A1>50,"big")', cells) is False

    def test_if_short_circuit(self, cells: CellCollection) -> None:
        """Test that the untaken branch is not evaluated."""
        assert evaluate("=IF(FALSE,A2+1,2)", cells) == 2

    def test_iferror(self, cells: CellCollection) -> None:
        assert evaluate('=IFERROR(A1/0,"bad")', cells) == "bad"
        assert evaluate('=IFERROR(A1/2,"bad")', cells) == 5

    def test_ifs(self) -> None:
        """Test IFS picks the first true condition."""
        cells = build_cells({"A1": 85})
        formula = '=IFS(A1>=90,"A",A1>=80,"B",TRUE,"C")'
        assert evaluate(formula, cells) == "B"
        assert evaluate('=IFS(A1>100,"A")', cells) == NA


class TestLookupsAndCriteria:
    """Tests for lookups and conditional aggregates through formulas."""

    def test_vlookup(self, lookup_cells: CellCollection) -> None:
        """Test exact and approximate VLOOKUP against cell data."""
        assert evaluate("=VLOOKUP(D1,A1:B3,2,FALSE)", lookup_cells) == "two"
        assert evaluate("=VLOOKUP(7,A1:B3,2,FALSE)", lookup_cells) == NA
        assert evaluate("=VLOOKUP(2.5,A1:B3,2)", lookup_cells) == "three"

    def test_sumif_resizes_target(self) -> None:
        """Test that a short sum range is resized to the criteria range."""
        cells = build_cells({"A1": 1, "A2": 5, "A3": 10, "B1": 1, "B2": 2, "B3": 3})
        assert evaluate('=SUMIF(A1:A3,">4",B1:B1)', cells) == 5
        assert evaluate('=COUNTIF(A1:A3,">=5")', cells) == 2

    def test_range_truncation(self) -> None:
        """Test that ranges beyond the cell cap are truncated."""
        cells = build_cells({"A1": 1, "A2": 2, "A3": 3})
        capped = Settings(_env_file=None, MAX_RANGE_CELLS=2)
        assert evaluate("=SUM(A1:A3)", cells, settings=capped) == 3


class TestDates:
    """Tests for date arithmetic and the injected clock."""

    def test_today_uses_injected_clock(self) -> None:
        """Test TODAY and NOW with a fixed clock."""
        now = lambda: datetime(2024, 5, 6, 12, 30)
        assert evaluate("=TODAY()", {}, now=now) == date(2024, 5, 6)
        assert evaluate("=NOW()", {}, now=now) == datetime(2024, 5, 6, 12, 30)

    def test_date_plus_days(self) -> None:
        assert evaluate("=DATE(2024,1,1)+30", {}) == date(2024, 1, 31)

    def test_date_difference(self) -> None:
        """Test that subtracting dates gives whole days."""
        assert evaluate("=DATE(2024,3,1)-DATE(2024,2,1)", {}) == 29
