"""数据透视引擎 - 按维度分组聚合"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from sheetcore.core.config import Settings, settings as default_settings
from sheetcore.engine.evaluator import FormulaEvaluator
from sheetcore.engine.models import (
    CellCollection,
    PivotConfig,
    PivotResult,
    PivotSummary,
)
from sheetcore.engine.table import SheetTable
from sheetcore.engine.values import is_blank, to_text

logger = logging.getLogger(__name__)

UNKNOWN_DIMENSION = "Unknown"

# pandas 聚合函数映射
AGGREGATION_FUNC_MAP = {
    "sum": "sum",
    "count": "count",
    "average": "mean",
    "min": "min",
    "max": "max",
}


class PivotEngine:
    """
    数据透视引擎

    首个有数据的行作为字段名，全空的记录被丢弃。分组键为行维度值加列维度值组成的元组，
    空维度值记为 "Unknown"。
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or default_settings

    def _table(self, cells: CellCollection) -> SheetTable:
        return SheetTable.from_cells(cells, evaluator=FormulaEvaluator(cells, settings=self.settings))

    def available_fields(self, cells: CellCollection) -> List[str]:
        """可用于透视的字段名（表头）"""
        return self._table(cells).columns

    def pivot(self, cells: CellCollection, config: PivotConfig) -> PivotResult:
        """
        执行数据透视

        Args:
            cells: 单元格集合
            config: 透视配置

        Returns:
            PivotResult，行按维度值字典序排列；字段不存在时 rows 为空，
            summary.error 给出原因，summary.available_fields 列出可用字段
        """
        table = self._table(cells)
        df = table.get_data()
        source_rows = len(df)
        aggregation = config.aggregation

        try:
            dimensions = self._resolve_fields(table, list(config.rows) + list(config.columns))
            value_fields = self._resolve_fields(table, config.values)
        except ValueError as e:
            logger.warning(f"透视配置无效: {e}")
            summary = PivotSummary(
                total_rows=0,
                unique_groups=0,
                aggregation=aggregation,
                source_rows=source_rows,
                error=str(e),
                available_fields=list(table.columns),
            )
            return PivotResult(rows=[], summary=summary)

        limit = self.settings.MAX_PIVOT_ROWS
        truncated = source_rows > limit
        if truncated:
            logger.warning(f"透视源数据 {source_rows} 行，超出上限 {limit}，只处理前 {limit} 行")
            df = df.head(limit).copy()

        # 维度值统一转为文本，空值记为 Unknown
        for dim in dimensions:
            df[dim] = [UNKNOWN_DIMENSION if is_blank(v) else to_text(v) for v in df[dim].tolist()]

        # 值字段转换为数值，无法解析的值变成 NaN
        numeric = pd.DataFrame(index=df.index)
        for field in value_fields:
            numeric[field] = table.numeric_column(field).loc[df.index]

        rows = self._aggregate(df, numeric, dimensions, value_fields, aggregation)

        summary = PivotSummary(
            total_rows=len(rows),
            unique_groups=len(rows),
            aggregation=aggregation,
            source_rows=source_rows,
            truncated=truncated,
        )
        logger.info(f"数据透视完成: {source_rows} 行 -> {len(rows)} 组 ({aggregation})")
        return PivotResult(rows=rows, summary=summary)

    @staticmethod
    def _resolve_fields(table: SheetTable, names: List[str]) -> List[str]:
        resolved: List[str] = []
        for name in names:
            column = table.find_column(name)
            if column is None:
                raise ValueError(f"Unknown field '{name}'")
            if column not in resolved:
                resolved.append(column)
        return resolved

    def _aggregate(
        self,
        df: pd.DataFrame,
        numeric: pd.DataFrame,
        dimensions: List[str],
        value_fields: List[str],
        aggregation: str,
    ) -> List[Dict[str, Any]]:
        func = AGGREGATION_FUNC_MAP[aggregation]

        if not dimensions:
            # 无维度：整体聚合为一行
            if not value_fields:
                return [{"count": len(df)}]
            row = {}
            for field in value_fields:
                row[f"{field}_{aggregation}"] = _native(numeric[field].agg(func), aggregation)
            return [row]

        frame = numeric.copy()
        for dim in dimensions:
            frame[dim] = df[dim]
        grouped = frame.groupby(dimensions, sort=True)

        if not value_fields:
            counts = grouped.size()
            return [
                {**_key_dict(dimensions, key), "count": int(count)}
                for key, count in counts.items()
            ]

        aggregated = grouped[value_fields].agg(func).fillna(0)
        rows = []
        for key, values in aggregated.iterrows():
            row = _key_dict(dimensions, key)
            for field in value_fields:
                row[f"{field}_{aggregation}"] = _native(values[field], aggregation)
            rows.append(row)
        return rows


def _key_dict(dimensions: List[str], key: Any) -> Dict[str, str]:
    if not isinstance(key, tuple):
        key = (key,)
    return dict(zip(dimensions, key))


def _native(value: Any, aggregation: str) -> Any:
    """numpy 标量转换为 Python 原生类型，NaN 记为 0"""
    if hasattr(value, "item"):
        value = value.item()
    if value is None or pd.isna(value):
        return 0
    if aggregation == "count":
        return int(value)
    return float(value)


def pivot(cells: CellCollection, config: PivotConfig, settings: Optional[Settings] = None) -> PivotResult:
    """便捷函数：执行数据透视"""
    return PivotEngine(settings).pivot(cells, config)


def available_fields(cells: CellCollection, settings: Optional[Settings] = None) -> List[str]:
    """便捷函数：获取可用字段"""
    return PivotEngine(settings).available_fields(cells)
