"""地址解析 - 单元格标识与行列坐标互转、区域展开"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from sheetcore.core.config import settings
from sheetcore.engine.models import (
    Address,
    column_letter_to_number,
    column_number_to_letter,
)

logger = logging.getLogger(__name__)

_CELL_PATTERN = re.compile(r"^\$?([A-Za-z]{1,3})\$?([1-9][0-9]*)$")
_RANGE_PATTERN = re.compile(
    r"^\$?([A-Za-z]{1,3})\$?([1-9][0-9]*)\s*:\s*\$?([A-Za-z]{1,3})\$?([1-9][0-9]*)$"
)
_COLUMN_RANGE_PATTERN = re.compile(r"^\$?([A-Za-z]{1,3})\s*:\s*\$?([A-Za-z]{1,3})$")


class InvalidAddress(ValueError):
    """无效的单元格标识"""


class InvalidRange(ValueError):
    """无效的区域标识"""


@dataclass
class RangeExpansion:
    """
    区域展开结果

    Attributes:
        addresses: 展开后的地址（行优先，可能已截断）
        total: 区域实际包含的单元格数量
        truncated: 是否超出上限被截断
        limit: 生效的上限
    """

    addresses: List[Address]
    total: int
    truncated: bool
    limit: int


def parse_address(label: str) -> Address:
    """解析 "B12" / "$B$12" 形式的单元格标识"""
    match = _CELL_PATTERN.match(label.strip()) if isinstance(label, str) else None
    if not match:
        raise InvalidAddress(f"无效的单元格标识: {label!r}")
    letters, row = match.groups()
    return Address(int(row), column_letter_to_number(letters))


class AddressResolver:
    """
    地址解析器

    Args:
        max_cells: 单个区域最多展开的单元格数量，超出部分截断
    """

    def __init__(self, max_cells: Optional[int] = None):
        self.max_cells = max_cells if max_cells is not None else settings.MAX_RANGE_CELLS

    # ========= 列标识 =========

    @staticmethod
    def column_to_index(letters: str) -> int:
        try:
            return column_letter_to_number(letters)
        except ValueError as e:
            raise InvalidAddress(str(e)) from e

    @staticmethod
    def index_to_column(index: int) -> str:
        try:
            return column_number_to_letter(index)
        except ValueError as e:
            raise InvalidAddress(str(e)) from e

    # ========= 单元格标识 =========

    def to_address(self, column_letters: str, row_number: int) -> Address:
        """列标识 + 行号 -> Address"""
        if row_number < 1:
            raise InvalidAddress(f"行号必须为正整数: {row_number}")
        return Address(row_number, self.column_to_index(column_letters))

    @staticmethod
    def to_label(address: Address) -> str:
        """Address -> "AB12" """
        return address.label

    @staticmethod
    def parse(label: str) -> Address:
        return parse_address(label)

    # ========= 区域 =========

    def bounds(self, range_label: str, max_row: Optional[int] = None) -> Tuple[Address, Address]:
        """
        解析区域标识，返回规范化后的左上角和右下角

        Args:
            range_label: "A1:B10" 或整列 "A:B"
            max_row: 整列区域展开到的最大行号

        Raises:
            InvalidRange: 格式不匹配，或整列区域未提供 max_row
        """
        text = range_label.strip() if isinstance(range_label, str) else ""
        match = _RANGE_PATTERN.match(text)
        if match:
            c1, r1, c2, r2 = match.groups()
            col1, col2 = column_letter_to_number(c1), column_letter_to_number(c2)
            row1, row2 = int(r1), int(r2)
        else:
            match = _COLUMN_RANGE_PATTERN.match(text)
            if not match or max_row is None:
                raise InvalidRange(f"无效的区域标识: {range_label!r}")
            col1 = column_letter_to_number(match.group(1))
            col2 = column_letter_to_number(match.group(2))
            row1, row2 = 1, max(max_row, 1)

        start = Address(min(row1, row2), min(col1, col2))
        end = Address(max(row1, row2), max(col1, col2))
        return start, end

    def expand_range_checked(self, range_label: str, max_row: Optional[int] = None) -> RangeExpansion:
        """展开区域并报告截断情况"""
        start, end = self.bounds(range_label, max_row)
        width = end.col - start.col + 1
        total = (end.row - start.row + 1) * width

        addresses: List[Address] = []
        limit = self.max_cells
        for row in range(start.row, end.row + 1):
            if len(addresses) >= limit:
                break
            for col in range(start.col, end.col + 1):
                if len(addresses) >= limit:
                    break
                addresses.append(Address(row, col))

        truncated = total > len(addresses)
        if truncated:
            logger.warning(f"区域 {range_label} 包含 {total} 个单元格，超出上限 {limit}，已截断")
        return RangeExpansion(addresses=addresses, total=total, truncated=truncated, limit=limit)

    def expand_range(self, range_label: str, max_row: Optional[int] = None) -> List[Address]:
        """
        展开区域为有序地址列表（行优先：逐行、每行从左到右）

        Examples:
            expand_range("A1:B2") -> [A1, B1, A2, B2]
            expand_range("B2:A1") -> [A1, B1, A2, B2]
        """
        return self.expand_range_checked(range_label, max_row).addresses

    @staticmethod
    def is_range(text: str) -> bool:
        text = text.strip()
        return bool(_RANGE_PATTERN.match(text) or _COLUMN_RANGE_PATTERN.match(text))
