"""Tests for the analytics engine."""

import json
from datetime import date

import pytest

from sheetcore.core.config import Settings
from sheetcore.engine.analytics import AnalyticsEngine, analyze
from sheetcore.engine.models import build_cells


@pytest.fixture
def engine(test_settings: Settings) -> AnalyticsEngine:
    return AnalyticsEngine(test_settings)


class TestSummary:
    """Tests for column classification and counts."""

    def test_column_types(self, engine: AnalyticsEngine, make_table) -> None:
        """Test numeric, text and date detection, including numeric text."""
        cells = make_table(
            ["Name", "Amount", "When"],
            [
                ["a", 1, date(2024, 1, 1)],
                ["b", "2", date(2024, 1, 2)],
                ["c", None, "2024-01-03"],
            ],
        )
        summary = engine.summarize(engine.table(cells))

        assert summary.total_rows == 3
        assert summary.total_columns == 3
        assert summary.numeric_columns == ["Amount"]
        assert summary.text_columns == ["Name"]
        assert summary.date_columns == ["When"]
        assert summary.missing_values["Amount"] == 1
        assert summary.unique_values["Name"] == 3

    def test_empty_collection(self, engine: AnalyticsEngine) -> None:
        """Test that an empty sheet produces an empty report."""
        report = engine.analyze({})

        assert report.summary.total_rows == 0
        assert report.summary.total_columns == 0
        assert report.trends == []
        assert report.correlations.columns == []


class TestTrends:
    """Tests for linear trend detection."""

    def test_increasing(self, engine: AnalyticsEngine, make_table) -> None:
        """Test a perfect linear increase and its forecast."""
        cells = make_table(["Sales"], [[v] for v in (1, 2, 3, 4, 5)])
        table = engine.table(cells)
        (trend,) = engine.trends(table, ["Sales"])

        assert trend.trend == "increasing"
        assert trend.slope == pytest.approx(1.0)
        assert trend.intercept == pytest.approx(0.0, abs=1e-9)
        assert trend.r_squared == pytest.approx(1.0)
        assert trend.forecast == pytest.approx([6.0, 7.0, 8.0, 9.0, 10.0])

    def test_decreasing(self, engine: AnalyticsEngine, make_table) -> None:
        cells = make_table(["Stock"], [[v] for v in (5, 4, 3, 2, 1)])
        (trend,) = engine.trends(engine.table(cells), ["Stock"])

        assert trend.trend == "decreasing"

    def test_stable(self, engine: AnalyticsEngine, make_table) -> None:
        """Test that a flat series is stable with a perfect fit."""
        cells = make_table(["Flat"], [[5], [5], [5]])
        (trend,) = engine.trends(engine.table(cells), ["Flat"])

        assert trend.trend == "stable"
        assert trend.r_squared == 1.0

    def test_volatile(self, engine: AnalyticsEngine, make_table) -> None:
        """Test that a poor linear fit is volatile."""
        cells = make_table(["Swing"], [[v] for v in (1, 10, 1, 10, 1, 10)])
        (trend,) = engine.trends(engine.table(cells), ["Swing"])

        assert trend.trend == "volatile"
        assert trend.r_squared < 0.3

    def test_too_few_points(self, engine: AnalyticsEngine, make_table) -> None:
        """Test that short columns are skipped."""
        cells = make_table(["Short"], [[1], [2]])
        assert engine.trends(engine.table(cells), ["Short"]) == []

    def test_formula_cells_are_evaluated(self, engine: AnalyticsEngine) -> None:
        """Test that formula-only cells contribute their computed values."""
        cells = build_cells({"A1": "Value", "A2": 1, "A3": "=A2*2", "A4": 3})
        (trend,) = engine.trends(engine.table(cells), ["Value"])

        assert trend.slope == pytest.approx(1.0)


class TestCorrelations:
    """Tests for the correlation matrix."""

    def test_perfect_correlations(self, engine: AnalyticsEngine, make_table) -> None:
        cells = make_table(
            ["A", "B", "C"],
            [[1, 2, 4], [2, 4, 3], [3, 6, 2], [4, 8, 1]],
        )
        matrix = engine.correlations(engine.table(cells), ["A", "B", "C"])

        assert matrix.get("A", "B") == pytest.approx(1.0)
        assert matrix.get("A", "C") == pytest.approx(-1.0)
        assert matrix.get("B", "A") == matrix.get("A", "B")
        assert [matrix.matrix[i][i] for i in range(3)] == [1.0, 1.0, 1.0]

    def test_constant_column(self, engine: AnalyticsEngine, make_table) -> None:
        """Test that a zero-variance column correlates as 0."""
        cells = make_table(["A", "B"], [[1, 5], [2, 5], [3, 5]])
        matrix = engine.correlations(engine.table(cells), ["A", "B"])

        assert matrix.get("A", "B") == 0.0


class TestOutliers:
    """Tests for z-score outlier detection."""

    def test_single_outlier(self, engine: AnalyticsEngine, make_table) -> None:
        """Test that only the extreme value is flagged, with its address."""
        cells = make_table(["Value"], [[1], [2], [3], [4], [100]])
        (found,) = engine.outliers(engine.table(cells), ["Value"])

        assert found.total == 1
        assert found.truncated is False
        point = found.outliers[0]
        assert point.value == 100.0
        assert point.row == 6
        assert point.address == "A6"
        assert point.z_score == pytest.approx(1.9994, abs=1e-3)

    def test_threshold_from_settings(self, make_table) -> None:
        """Test that a stricter threshold flags nothing."""
        strict = AnalyticsEngine(Settings(_env_file=None, OUTLIER_Z_THRESHOLD=3.0))
        cells = make_table(["Value"], [[1], [2], [3], [4], [100]])

        assert strict.outliers(strict.table(cells), ["Value"]) == []

    def test_cap_per_column(self, make_table) -> None:
        """Test that outliers beyond the cap are counted but not listed."""
        capped = AnalyticsEngine(Settings(_env_file=None, MAX_OUTLIERS_PER_COLUMN=1))
        values = [0] * 10 + [100, -100]
        cells = make_table(["Value"], [[v] for v in values])
        (found,) = capped.outliers(capped.table(cells), ["Value"])

        assert found.total == 2
        assert len(found.outliers) == 1
        assert found.truncated is True

    def test_signed_z_score(self, engine: AnalyticsEngine, make_table) -> None:
        cells = make_table(["Value"], [[100], [101], [99], [100], [0]])
        (found,) = engine.outliers(engine.table(cells), ["Value"])

        assert found.outliers[0].z_score < 0


class TestDistributions:
    """Tests for descriptive statistics and histograms."""

    def test_describe(self, engine: AnalyticsEngine, make_table) -> None:
        cells = make_table(["Value"], [[v] for v in (1, 2, 3, 4, 5)])
        (dist,) = engine.distributions(engine.table(cells), ["Value"])

        assert dist.mean == 3.0
        assert dist.median == 3.0
        assert dist.variance == pytest.approx(2.0)
        assert dist.standard_deviation == pytest.approx(2 ** 0.5)
        assert dist.skewness == pytest.approx(0.0, abs=1e-12)
        assert dist.kurtosis == pytest.approx(-1.3)
        assert dist.quartiles == (2.0, 3.0, 4.0)

    def test_histogram(self, engine: AnalyticsEngine, make_table) -> None:
        """Test bin labels, count and the inclusive last bin."""
        cells = make_table(["Value"], [[v] for v in (1, 2, 3, 4, 5)])
        (dist,) = engine.distributions(engine.table(cells), ["Value"])

        assert len(dist.histogram) == 10
        assert dist.histogram[0].bin == "1.0-1.4"
        assert dist.histogram[-1].end == 5.0
        assert dist.histogram[-1].count == 1
        assert sum(b.count for b in dist.histogram) == 5

    def test_single_value_histogram(self, engine: AnalyticsEngine, make_table) -> None:
        cells = make_table(["Value"], [[7], [7]])
        (dist,) = engine.distributions(engine.table(cells), ["Value"])

        assert len(dist.histogram) == 1
        assert dist.histogram[0].bin == "7.0-7.0"
        assert dist.histogram[0].count == 2
        assert dist.skewness == 0.0


class TestQuality:
    """Tests for the data quality report."""

    def test_quality(self, engine: AnalyticsEngine, make_table) -> None:
        cells = make_table(["A", "B"], [[1, 2], [1, 2], [3, None]])
        report = engine.quality(cells)

        assert report["total_rows"] == 3
        assert report["missing_cells"] == 1
        assert report["duplicate_rows"] == 1
        assert report["completeness"] == pytest.approx(0.8333)
        assert report["missing_by_column"] == {"A": 0, "B": 1}


class TestReport:
    """Tests for the full report."""

    def test_report_is_json_ready(self, sales_cells, test_settings: Settings) -> None:
        """Test that the report serializes and repeated runs agree."""
        first = analyze(sales_cells, test_settings).to_dict()
        second = analyze(sales_cells, test_settings).to_dict()

        assert first == second
        assert json.loads(json.dumps(first)) == first
        assert first["summary"]["numeric_columns"] == ["Amount", "Qty"]
        assert first["correlations"]["columns"] == ["Amount", "Qty"]
