"""表格视图 - 将稀疏单元格网格投影为带表头的 pandas DataFrame"""

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from sheetcore.engine.models import CellCollection, column_number_to_letter
from sheetcore.engine.values import is_blank, to_number, to_text

logger = logging.getLogger(__name__)


class SheetTable:
    """
    表格视图 - 封装 pandas DataFrame

    首个有数据的行作为表头，其下各行作为记录。空表头以 "Column X" 命名，
    重名表头追加序号。DataFrame 中保留原始单元格值（空单元格为 None）。
    """

    def __init__(self, data: pd.DataFrame, header_row: int, column_numbers: List[int], row_numbers: List[int]):
        self._data = data
        self.header_row = header_row
        self._column_numbers = dict(zip(data.columns, column_numbers))
        self.row_numbers = row_numbers

    @classmethod
    def from_cells(
        cls,
        cells: CellCollection,
        drop_empty_rows: bool = True,
        evaluator=None,
    ) -> "SheetTable":
        """
        从单元格集合构建表格

        Args:
            cells: 单元格集合
            drop_empty_rows: 是否丢弃全部为空的记录
            evaluator: 可选的 FormulaEvaluator，用于计算只有公式没有值的单元格
        """
        values: Dict[tuple, Any] = {}
        for cell in cells.values():
            value = cell.value
            if value is None and cell.formula and evaluator is not None:
                value = evaluator.cell_value(cell.id)
            if not is_blank(value):
                values[(cell.row, cell.col)] = value

        if not values:
            return cls(pd.DataFrame(), 0, [], [])

        header_row = min(row for row, _ in values)
        column_numbers = sorted({col for _, col in values})
        last_row = max(row for row, _ in values)

        headers: List[str] = []
        for col in column_numbers:
            name = to_text(values.get((header_row, col))).strip() or f"Column {column_number_to_letter(col)}"
            candidate, suffix = name, 2
            while candidate in headers:
                candidate = f"{name}_{suffix}"
                suffix += 1
            headers.append(candidate)

        records: List[List[Any]] = []
        row_numbers: List[int] = []
        for row in range(header_row + 1, last_row + 1):
            record = [values.get((row, col)) for col in column_numbers]
            if drop_empty_rows and all(v is None for v in record):
                continue
            records.append(record)
            row_numbers.append(row)

        data = pd.DataFrame(records, columns=headers, dtype=object)
        logger.debug(f"表格视图: 表头行 {header_row}，{len(headers)} 列，{len(records)} 行")
        return cls(data, header_row, column_numbers, row_numbers)

    # ==================== 访问 ====================

    @property
    def columns(self) -> List[str]:
        """获取所有列名"""
        return list(self._data.columns)

    def get_data(self) -> pd.DataFrame:
        """获取 DataFrame 副本"""
        return self._data.copy()

    def row_count(self) -> int:
        return len(self._data)

    def get_column(self, column_name: str) -> List[Any]:
        """获取列数据"""
        if column_name not in self._data.columns:
            raise ValueError(f"表格没有字段 '{column_name}'")
        return self._data[column_name].tolist()

    def column_number(self, column_name: str) -> int:
        """获取字段所在的列号"""
        if column_name not in self._column_numbers:
            raise ValueError(f"表格没有字段 '{column_name}'")
        return self._column_numbers[column_name]

    def address(self, column_name: str, position: int) -> str:
        """第 position 条记录（从 0 开始）在该字段上的单元格标识"""
        letter = column_number_to_letter(self.column_number(column_name))
        return f"{letter}{self.row_numbers[position]}"

    def numeric_column(self, column_name: str) -> pd.Series:
        """
        将列转换为数值序列

        可解析为数值的文本按数值处理；其余值（含布尔、日期）为 NaN。
        """
        numbers = [to_number(v) for v in self.get_column(column_name)]
        return pd.Series(
            [float("nan") if n is None else float(n) for n in numbers],
            index=self._data.index,
            dtype="float64",
        )

    def non_empty(self, column_name: str) -> List[Any]:
        return [v for v in self.get_column(column_name) if not is_blank(v)]

    def find_column(self, name: Optional[str]) -> Optional[str]:
        """按名称（不区分大小写）或列标识（如 "B"）查找字段"""
        if not name:
            return None
        lowered = name.strip().lower()
        for column in self.columns:
            if column.lower() == lowered:
                return column
        for column, number in self._column_numbers.items():
            if column_number_to_letter(number).lower() == lowered:
                return column
        return None
