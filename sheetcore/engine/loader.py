"""文件加载 - 将 JSON / CSV / Excel 文件读取为单元格集合"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Union

import pandas as pd

from sheetcore.engine.models import CellCollection, build_cells, cells_from_dict, column_number_to_letter

logger = logging.getLogger(__name__)


class SheetLoader:
    """单元格集合加载器"""

    SUPPORTED_SUFFIXES = (".json", ".csv", ".xlsx", ".xlsm")

    # ========= 本地文件 =========

    @staticmethod
    def load(file_path: Union[str, Path]) -> CellCollection:
        """
        读取文件为单元格集合

        JSON 文件可以是 {"A1": 10, "B1": {"formula": "=A1*2"}} 形式的单元格文档，
        也可以是按行排列的二维数组；CSV / Excel 的表头写入第 1 行，记录从第 2 行开始。

        Args:
            file_path: 文件路径

        Returns:
            CellCollection

        Raises:
            FileNotFoundError: 文件不存在
            ValueError: 文件格式不支持或读取失败
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"文件不存在: {file_path}")

        suffix = file_path.suffix.lower()
        if suffix not in SheetLoader.SUPPORTED_SUFFIXES:
            raise ValueError(f"不支持的文件格式: {file_path.suffix}")

        if suffix == ".json":
            with open(file_path, encoding="utf-8") as f:
                try:
                    document = json.load(f)
                except json.JSONDecodeError as e:
                    raise ValueError(f"读取 JSON 文件失败: {e}") from e
            return SheetLoader.from_json(document)

        try:
            if suffix == ".csv":
                df = pd.read_csv(file_path)
            else:
                df = pd.read_excel(file_path, engine="openpyxl")
        except Exception as e:
            raise ValueError(f"读取文件失败: {str(e)}") from e

        cells = SheetLoader.from_dataframe(df)
        logger.info(f"已加载 {file_path.name}: {len(df)} 行 x {len(df.columns)} 列")
        return cells

    # ========= 内存数据 =========

    @staticmethod
    def from_json(document: Any) -> CellCollection:
        """JSON 文档 -> 单元格集合"""
        if isinstance(document, dict):
            return cells_from_dict(document)
        if isinstance(document, list):
            return SheetLoader.from_rows(document)
        raise ValueError("JSON 文档必须是单元格对象或二维数组")

    @staticmethod
    def from_rows(rows: List[List[Any]]) -> CellCollection:
        """二维数组（第一行在 A1）-> 单元格集合，空值不生成单元格"""
        mapping: Dict[str, Any] = {}
        for r, record in enumerate(rows, start=1):
            if not isinstance(record, (list, tuple)):
                record = [record]
            for c, value in enumerate(record, start=1):
                if value is None or value == "":
                    continue
                mapping[f"{column_number_to_letter(c)}{r}"] = value
        return build_cells(mapping)

    @staticmethod
    def from_dataframe(df: pd.DataFrame) -> CellCollection:
        """DataFrame -> 单元格集合（表头在第 1 行）"""
        headers = [
            "" if str(name).startswith("Unnamed:") else str(name)
            for name in df.columns
        ]
        rows: List[List[Any]] = [headers]
        for record in df.itertuples(index=False):
            rows.append([SheetLoader._clean_value(v) for v in record])
        return SheetLoader.from_rows(rows)

    @staticmethod
    def _clean_value(value: Any) -> Any:
        """pandas / numpy 值转换为 Python 原生值，NaN 记为空"""
        if value is None:
            return None
        if not isinstance(value, (str, list, dict)) and pd.isna(value):
            return None
        if isinstance(value, pd.Timestamp):
            value = value.to_pydatetime()
        elif hasattr(value, "item"):
            value = value.item()
        if isinstance(value, datetime) and value.time() == datetime.min.time():
            return value.date()
        return value
