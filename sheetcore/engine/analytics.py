"""数据分析引擎 - 列类型识别、趋势、相关性、异常值和分布统计"""

import logging
import math
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd

from sheetcore.core.config import Settings, settings as default_settings
from sheetcore.engine.evaluator import FormulaEvaluator
from sheetcore.engine.models import (
    AnalyticsReport,
    CellCollection,
    CorrelationMatrix,
    DataSummary,
    DistributionData,
    HistogramBin,
    OutlierData,
    OutlierPoint,
    TrendAnalysis,
)
from sheetcore.engine.table import SheetTable
from sheetcore.engine.values import is_date_like, to_number, to_text

logger = logging.getLogger(__name__)


class AnalyticsEngine:
    """
    数据分析引擎

    首个有数据的行作为表头，其余行作为记录。所有阈值来自配置，可按调用覆盖。
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def table(self, cells: CellCollection) -> SheetTable:
        """构建表格视图（只有公式的单元格先求值）"""
        evaluator = FormulaEvaluator(cells, settings=self.settings)
        return SheetTable.from_cells(cells, evaluator=evaluator)

    def analyze(self, cells: CellCollection) -> AnalyticsReport:
        """
        生成完整的分析报告

        Args:
            cells: 单元格集合

        Returns:
            AnalyticsReport
        """
        table = self.table(cells)
        summary = self.summarize(table)
        numeric = summary.numeric_columns

        report = AnalyticsReport(
            summary=summary,
            trends=self.trends(table, numeric),
            correlations=self.correlations(table, numeric),
            outliers=self.outliers(table, numeric),
            distributions=self.distributions(table, numeric),
        )
        logger.info(
            f"数据分析完成: {summary.total_rows} 行, {summary.total_columns} 列, "
            f"数值列 {len(numeric)} 个"
        )
        return report

    # ==================== 概览 ====================

    def summarize(self, table: SheetTable) -> DataSummary:
        """列类型识别、缺失值和唯一值统计"""
        ratio = self.settings.NUMERIC_COLUMN_RATIO
        summary = DataSummary(total_rows=table.row_count(), total_columns=len(table.columns))

        for column in table.columns:
            values = table.non_empty(column)
            summary.missing_values[column] = table.row_count() - len(values)
            summary.unique_values[column] = int(pd.Series([to_text(v) for v in values], dtype=object).nunique())

            if not values:
                summary.text_columns.append(column)
                continue
            numeric_count = sum(1 for v in values if to_number(v) is not None)
            date_count = sum(1 for v in values if is_date_like(v))
            if numeric_count / len(values) >= ratio:
                summary.numeric_columns.append(column)
            elif date_count / len(values) >= ratio:
                summary.date_columns.append(column)
            else:
                summary.text_columns.append(column)

        return summary

    # ==================== 趋势 ====================

    def trends(self, table: SheetTable, columns: List[str]) -> List[TrendAnalysis]:
        """对每个数值列按记录顺序做最小二乘线性回归（x = 1..n）"""
        results = []
        for column in columns:
            y = table.numeric_column(column).dropna().to_numpy(dtype=float)
            if len(y) < self.settings.MIN_TREND_POINTS:
                logger.debug(f"列 {column} 数值不足 {self.settings.MIN_TREND_POINTS} 个，跳过趋势分析")
                continue
            results.append(self._fit_trend(column, y))
        return results

    def _fit_trend(self, column: str, y: np.ndarray) -> TrendAnalysis:
        n = len(y)
        x = np.arange(1, n + 1, dtype=float)
        x_mean, y_mean = x.mean(), y.mean()
        sxx = float(((x - x_mean) ** 2).sum())
        sxy = float(((x - x_mean) * (y - y_mean)).sum())
        slope = sxy / sxx
        intercept = float(y_mean - slope * x_mean)

        ss_tot = float(((y - y_mean) ** 2).sum())
        ss_res = float(((y - (intercept + slope * x)) ** 2).sum())
        r_squared = 1.0 if ss_tot == 0 else max(0.0, 1.0 - ss_res / ss_tot)

        if abs(slope) <= self.settings.TREND_SLOPE_EPSILON:
            trend = "stable"
        elif r_squared >= self.settings.TREND_R2_THRESHOLD:
            trend = "increasing" if slope > 0 else "decreasing"
        else:
            trend = "volatile"

        forecast = [
            float(intercept + slope * (n + k))
            for k in range(1, self.settings.FORECAST_PERIODS + 1)
        ]
        return TrendAnalysis(
            column=column,
            trend=trend,
            slope=float(slope),
            intercept=intercept,
            r_squared=float(r_squared),
            forecast=forecast,
        )

    # ==================== 相关性 ====================

    def correlations(self, table: SheetTable, columns: List[str]) -> CorrelationMatrix:
        """
        数值列两两之间的 Pearson 相关系数

        只使用两列都为数值的行；方差为 0 或配对不足时记为 0.0。
        """
        if not columns:
            return CorrelationMatrix()
        frame = pd.DataFrame({column: table.numeric_column(column) for column in columns})
        corr = frame.corr(method="pearson", min_periods=2).fillna(0.0).clip(-1.0, 1.0)

        matrix = []
        for i, a in enumerate(columns):
            row = []
            for j, b in enumerate(columns):
                row.append(1.0 if i == j else float(corr.loc[a, b]))
            matrix.append(row)
        return CorrelationMatrix(columns=list(columns), matrix=matrix)

    # ==================== 异常值 ====================

    def outliers(self, table: SheetTable, columns: List[str]) -> List[OutlierData]:
        """z 分数（总体标准差）超过阈值的值，按 |z| 降序，每列最多保留上限个"""
        threshold = self.settings.OUTLIER_Z_THRESHOLD
        limit = self.settings.MAX_OUTLIERS_PER_COLUMN
        results = []

        for column in columns:
            series = table.numeric_column(column)
            valid = series.dropna()
            if len(valid) < 2:
                continue
            std = float(valid.std(ddof=0))
            if std == 0:
                continue
            mean = float(valid.mean())

            points = []
            for position, value in enumerate(series.tolist()):
                if math.isnan(value):
                    continue
                z = (value - mean) / std
                if abs(z) > threshold:
                    points.append(
                        OutlierPoint(
                            row=table.row_numbers[position],
                            address=table.address(column, position),
                            value=float(value),
                            z_score=float(z),
                        )
                    )
            if not points:
                continue

            points.sort(key=lambda p: abs(p.z_score), reverse=True)
            results.append(
                OutlierData(
                    column=column,
                    outliers=points[:limit],
                    total=len(points),
                    truncated=len(points) > limit,
                )
            )
        return results

    # ==================== 分布 ====================

    def distributions(self, table: SheetTable, columns: List[str]) -> List[DistributionData]:
        """描述统计和固定分桶的直方图"""
        results = []
        for column in columns:
            valid = table.numeric_column(column).dropna()
            if valid.empty:
                continue
            results.append(self._describe(column, valid))
        return results

    def _describe(self, column: str, valid: pd.Series) -> DistributionData:
        values = np.sort(valid.to_numpy(dtype=float))
        n = len(values)
        mean = float(values.mean())
        variance = float(values.var())  # 总体方差
        std = math.sqrt(variance)

        if std > 0:
            standardized = (values - mean) / std
            skewness = float((standardized ** 3).mean())
            kurtosis = float((standardized ** 4).mean() - 3)
        else:
            skewness = kurtosis = 0.0

        # 四分位数取排序后 floor(n * p) 位置的值
        quartiles = tuple(float(values[min(int(n * p), n - 1)]) for p in (0.25, 0.5, 0.75))

        return DistributionData(
            column=column,
            mean=mean,
            median=float(np.median(values)),
            mode=float(valid.mode().iloc[0]),
            standard_deviation=std,
            variance=variance,
            skewness=skewness,
            kurtosis=kurtosis,
            quartiles=quartiles,
            histogram=self._histogram(values),
        )

    def _histogram(self, values: np.ndarray) -> List[HistogramBin]:
        low, high = float(values.min()), float(values.max())
        if high == low:
            return [HistogramBin(bin=f"{low:.1f}-{high:.1f}", start=low, end=high, count=len(values))]

        bins = self.settings.HISTOGRAM_BINS
        width = (high - low) / bins
        counts = [0] * bins
        for value in values:
            # 最后一个区间包含最大值
            counts[min(int((value - low) / width), bins - 1)] += 1

        histogram = []
        for i, count in enumerate(counts):
            start = low + i * width
            end = high if i == bins - 1 else low + (i + 1) * width
            histogram.append(HistogramBin(bin=f"{start:.1f}-{end:.1f}", start=start, end=end, count=count))
        return histogram

    # ==================== 数据质量 ====================

    def quality(self, cells: CellCollection) -> Dict[str, Any]:
        """缺失值、重复行和完整度"""
        table = self.table(cells)
        frame = table.get_data()
        total_cells = table.row_count() * len(table.columns)
        missing = int(frame.isna().sum().sum()) if total_cells else 0
        duplicates = int(frame.astype(str).duplicated().sum()) if table.row_count() else 0
        return {
            "total_rows": table.row_count(),
            "total_columns": len(table.columns),
            "missing_cells": missing,
            "duplicate_rows": duplicates,
            "completeness": 1.0 if total_cells == 0 else round(1 - missing / total_cells, 4),
            "missing_by_column": {c: int(frame[c].isna().sum()) for c in table.columns},
        }


def analyze(cells: CellCollection, settings: Optional[Settings] = None) -> AnalyticsReport:
    """便捷函数：生成分析报告"""
    return AnalyticsEngine(settings).analyze(cells)
