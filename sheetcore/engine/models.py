"""数据模型 - 定义计算核心中的基础数据类型"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union


# ==================== 辅助函数 ====================


def column_number_to_letter(number: int) -> str:
    """
    将列号转换为 Excel 列标识

    Args:
        number: 列号（从 1 开始）

    Returns:
        Excel 列标识（A, B, ..., Z, AA, AB, ...）
    """
    if number < 1:
        raise ValueError(f"列号必须为正整数: {number}")
    result = ""
    while number > 0:
        number, remainder = divmod(number - 1, 26)
        result = chr(65 + remainder) + result
    return result


def column_letter_to_number(letters: str) -> int:
    """将 Excel 列标识转换为列号（A=1, Z=26, AA=27）"""
    if not letters or not letters.isalpha() or not letters.isascii():
        raise ValueError(f"无效的列标识: {letters!r}")
    result = 0
    for ch in letters.upper():
        result = result * 26 + (ord(ch) - 64)
    return result


def _jsonable(value: Any) -> Any:
    """将单元格值转换为可 JSON 序列化的值"""
    if isinstance(value, ExcelError):
        return value.code
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    return value


# ==================== Excel 错误类型 ====================


class ExcelError(Exception):
    """Excel 错误值"""

    def __init__(self, code: str):
        self.code = code
        super().__init__(code)

    def __repr__(self):
        return self.code

    def __str__(self):
        return self.code

    def __eq__(self, other):
        if isinstance(other, ExcelError):
            return self.code == other.code
        return False

    def __hash__(self):
        return hash(self.code)


# 预定义 Excel 错误
NA = ExcelError("#N/A")
DIV0 = ExcelError("#DIV/0!")
VALUE = ExcelError("#VALUE!")
REF = ExcelError("#REF!")
NUM = ExcelError("#NUM!")
ERROR = ExcelError("#ERROR!")


# ==================== 地址与单元格 ====================


@dataclass(frozen=True, order=True)
class Address:
    """单元格地址（行、列均从 1 开始），按行优先排序"""

    row: int
    col: int

    @property
    def column_letter(self) -> str:
        return column_number_to_letter(self.col)

    @property
    def label(self) -> str:
        return f"{self.column_letter}{self.row}"

    def offset(self, rows: int = 0, cols: int = 0) -> "Address":
        return Address(self.row + rows, self.col + cols)

    def __str__(self) -> str:
        return self.label


class CellKind(str, Enum):
    """单元格类型"""

    TEXT = "text"
    NUMBER = "number"
    FORMULA = "formula"
    DATE = "date"


@dataclass(frozen=True)
class CellFormat:
    """单元格显示格式"""

    background_color: Optional[str] = None
    text_color: Optional[str] = None
    font_weight: Optional[str] = None  # normal | bold
    font_size: Optional[int] = None
    border: Optional[str] = None
    alignment: Optional[str] = None  # left | center | right

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class Cell:
    """
    单元格

    Attributes:
        id: 单元格标识，如 "B12"
        row: 行号（从 1 开始）
        col: 列号（从 1 开始）
        value: 值（None、数值、文本、布尔、日期或 ExcelError）
        formula: 产生该值的公式文本（可选）
        kind: 单元格类型
        format: 显示格式（可选）
        dependencies: 引用的单元格（仅记录，不参与重算）
    """

    id: str
    row: int
    col: int
    value: Any = None
    formula: Optional[str] = None
    kind: CellKind = CellKind.TEXT
    format: Optional[CellFormat] = None
    dependencies: List[str] = field(default_factory=list)

    @property
    def address(self) -> Address:
        return Address(self.row, self.col)

    @classmethod
    def at(cls, address: Address, value: Any = None, **kwargs) -> "Cell":
        """在指定地址创建单元格"""
        return cls(id=address.label, row=address.row, col=address.col, value=value, **kwargs)

    def to_dict(self) -> dict:
        result = {
            "id": self.id,
            "row": self.row,
            "col": self.col,
            "value": _jsonable(self.value),
            "type": self.kind.value,
        }
        if self.formula is not None:
            result["formula"] = self.formula
        if self.format is not None:
            result["format"] = self.format.to_dict()
        if self.dependencies:
            result["dependencies"] = list(self.dependencies)
        return result


# 单元格集合：地址标识 -> 单元格
CellCollection = Dict[str, Cell]


def infer_kind(value: Any, formula: Optional[str] = None) -> CellKind:
    """根据值推断单元格类型"""
    if formula:
        return CellKind.FORMULA
    if isinstance(value, bool):
        return CellKind.TEXT
    if isinstance(value, (int, float)):
        return CellKind.NUMBER
    if isinstance(value, (date, datetime)):
        return CellKind.DATE
    return CellKind.TEXT


def build_cells(values: Mapping[str, Any]) -> CellCollection:
    """
    从 {"A1": 10, "B1": "=A1*2"} 形式的映射构建单元格集合

    以 "=" 开头的字符串视为公式，值留空，由求值器按需计算。
    """
    # 延迟导入，避免循环依赖
    from sheetcore.engine.address import parse_address

    cells: CellCollection = {}
    for label, raw in values.items():
        address = parse_address(label)
        if isinstance(raw, str) and raw.startswith("="):
            cell = Cell.at(address, None, formula=raw, kind=CellKind.FORMULA)
        else:
            cell = Cell.at(address, raw, kind=infer_kind(raw))
        cells[address.label] = cell
    return cells


def cells_from_dict(document: Mapping[str, Any]) -> CellCollection:
    """
    从 JSON 文档构建单元格集合

    文档的值可以是原始值，也可以是 {"value": ..., "formula": ..., "type": ...} 对象。
    """
    from sheetcore.engine.address import parse_address

    cells: CellCollection = {}
    for label, raw in document.items():
        if not isinstance(raw, dict):
            cells.update(build_cells({label: raw}))
            continue
        address = parse_address(label)
        value = raw.get("value")
        formula = raw.get("formula")
        kind = raw.get("type") or infer_kind(value, formula).value
        fmt = raw.get("format")
        cells[address.label] = Cell.at(
            address,
            value,
            formula=formula,
            kind=CellKind(kind),
            format=CellFormat(**fmt) if fmt else None,
            dependencies=list(raw.get("dependencies") or []),
        )
    return cells


def cells_to_dict(cells: CellCollection) -> Dict[str, dict]:
    """将单元格集合转换为 JSON 文档（按行优先排序）"""
    ordered = sorted(cells.values(), key=lambda c: (c.row, c.col))
    return {cell.id: cell.to_dict() for cell in ordered}


# ==================== 区域值 ====================


@dataclass
class RangeValue:
    """
    区域引用求值结果（二维，行优先）

    Attributes:
        start: 区域左上角地址
        rows: 按行存放的值
        total: 请求的单元格数量（截断前）
        truncated: 是否因上限被截断
    """

    start: Address
    rows: List[List[Any]]
    total: int = 0
    truncated: bool = False

    @property
    def height(self) -> int:
        return len(self.rows)

    @property
    def width(self) -> int:
        return len(self.rows[0]) if self.rows else 0

    def values(self) -> List[Any]:
        """展开为一维列表（行优先）"""
        return [v for row in self.rows for v in row]

    def column(self, index: int) -> List[Any]:
        """获取第 index 列（从 0 开始）"""
        return [row[index] if index < len(row) else None for row in self.rows]

    def __len__(self) -> int:
        return sum(len(row) for row in self.rows)


# ==================== 命令结果 ====================


@dataclass
class FormattingUpdate:
    """单个单元格的格式更新"""

    cell_id: str
    format: CellFormat

    def to_dict(self) -> dict:
        return {"cell_id": self.cell_id, "format": self.format.to_dict()}


@dataclass
class CommandResult:
    """
    自然语言命令的处理结果

    Attributes:
        success: 是否成功
        message: 给用户的说明（失败时指明缺失的参数并给出示例）
        formula: 生成的公式模板
        result: 立即计算出的结果
        data: 结构化附加数据
        cell_updates: 需要由调用方写回的单元格
        formatting: 需要由调用方应用的格式
    """

    success: bool
    message: str
    formula: Optional[str] = None
    result: Any = None
    data: Optional[Dict[str, Any]] = None
    cell_updates: Optional[Dict[str, Cell]] = None
    formatting: Optional[List[FormattingUpdate]] = None

    @classmethod
    def failure(cls, message: str, **kwargs) -> "CommandResult":
        return cls(success=False, message=message, **kwargs)

    def to_dict(self) -> dict:
        """转换为字典"""
        result = {"success": self.success, "message": self.message}
        if self.formula is not None:
            result["formula"] = self.formula
        if self.result is not None:
            result["result"] = _jsonable(self.result)
        if self.data is not None:
            result["data"] = to_plain(self.data)
        if self.cell_updates is not None:
            result["cell_updates"] = {k: c.to_dict() for k, c in self.cell_updates.items()}
        if self.formatting is not None:
            result["formatting"] = [f.to_dict() for f in self.formatting]
        return result


def to_plain(obj: Any) -> Any:
    """递归转换为 JSON 友好的结构"""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return {k: to_plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain(v) for v in obj]
    return _jsonable(obj)


# ==================== 数据分析结果 ====================


@dataclass
class DataSummary:
    """数据概览"""

    total_rows: int
    total_columns: int
    numeric_columns: List[str] = field(default_factory=list)
    text_columns: List[str] = field(default_factory=list)
    date_columns: List[str] = field(default_factory=list)
    missing_values: Dict[str, int] = field(default_factory=dict)
    unique_values: Dict[str, int] = field(default_factory=dict)


@dataclass
class TrendAnalysis:
    """单列线性趋势"""

    column: str
    trend: str  # increasing | decreasing | stable | volatile
    slope: float
    intercept: float
    r_squared: float
    forecast: List[float] = field(default_factory=list)


@dataclass
class CorrelationMatrix:
    """相关系数矩阵（对称，对角线为 1）"""

    columns: List[str] = field(default_factory=list)
    matrix: List[List[float]] = field(default_factory=list)

    def get(self, a: str, b: str) -> float:
        return self.matrix[self.columns.index(a)][self.columns.index(b)]


@dataclass
class OutlierPoint:
    """异常值"""

    row: int
    address: str
    value: float
    z_score: float


@dataclass
class OutlierData:
    """单列异常值（按 |z| 降序，最多保留上限个）"""

    column: str
    outliers: List[OutlierPoint] = field(default_factory=list)
    total: int = 0
    truncated: bool = False


@dataclass
class HistogramBin:
    """直方图区间"""

    bin: str
    start: float
    end: float
    count: int


@dataclass
class DistributionData:
    """单列分布统计"""

    column: str
    mean: float
    median: float
    mode: float
    standard_deviation: float
    variance: float
    skewness: float
    kurtosis: float
    quartiles: Tuple[float, float, float]
    histogram: List[HistogramBin] = field(default_factory=list)


@dataclass
class AnalyticsReport:
    """数据分析报告"""

    summary: DataSummary
    trends: List[TrendAnalysis] = field(default_factory=list)
    correlations: CorrelationMatrix = field(default_factory=CorrelationMatrix)
    outliers: List[OutlierData] = field(default_factory=list)
    distributions: List[DistributionData] = field(default_factory=list)

    def to_dict(self) -> dict:
        from dataclasses import asdict

        return to_plain(asdict(self))


# ==================== 数据透视 ====================

PIVOT_AGGREGATIONS = ("sum", "count", "average", "min", "max")


@dataclass
class PivotConfig:
    """数据透视配置"""

    rows: List[str] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    values: List[str] = field(default_factory=list)
    aggregation: str = "sum"

    def __post_init__(self):
        self.aggregation = self.aggregation.lower()
        if self.aggregation not in PIVOT_AGGREGATIONS:
            raise ValueError(f"不支持的聚合方式: {self.aggregation}")


@dataclass
class PivotSummary:
    """数据透视汇总信息"""

    total_rows: int
    unique_groups: int
    aggregation: str
    source_rows: int = 0
    truncated: bool = False
    error: Optional[str] = None
    available_fields: List[str] = field(default_factory=list)


@dataclass
class PivotResult:
    """数据透视结果，配置无效时 rows 为空且 summary.error 记录原因"""

    rows: List[Dict[str, Any]]
    summary: PivotSummary

    @property
    def success(self) -> bool:
        return self.summary.error is None

    def to_dict(self) -> dict:
        summary = dict(self.summary.__dict__)
        summary["available_fields"] = list(self.summary.available_fields)
        return {
            "rows": to_plain(self.rows),
            "summary": summary,
        }


Scalar = Union[int, float, str, bool, date, datetime, None, ExcelError]
