"""电子表格计算引擎

包含计算核心的全部逻辑：
- models: 数据模型定义（单元格、错误值、命令结果、分析与透视结果）
- address: 单元格标识解析、区域展开
- values: 值的类型转换与比较
- parser: 公式解析器（文本 -> JSON 表达式）
- functions: Excel 函数实现
- evaluator: 公式求值器
- table: 单元格网格 -> pandas 表格视图
- interpreter: 自然语言命令解释器
- analytics: 数据分析引擎
- pivot: 数据透视引擎
- loader: JSON / CSV / Excel 文件加载
"""

from sheetcore.engine.models import (
    ExcelError,
    NA,
    DIV0,
    VALUE,
    REF,
    NUM,
    ERROR,
    Address,
    Cell,
    CellKind,
    CellFormat,
    CellCollection,
    CommandResult,
    FormattingUpdate,
    AnalyticsReport,
    PivotConfig,
    PivotResult,
    build_cells,
    cells_from_dict,
    cells_to_dict,
)
from sheetcore.engine.address import AddressResolver, InvalidAddress, InvalidRange, parse_address
from sheetcore.engine.parser import FormulaSyntaxError, parse_formula
from sheetcore.engine.evaluator import FormulaEvaluator, evaluate
from sheetcore.engine.interpreter import COMMAND_RULES, CommandInterpreter, CommandRule, interpret
from sheetcore.engine.analytics import AnalyticsEngine, analyze
from sheetcore.engine.pivot import PivotEngine, available_fields, pivot
from sheetcore.engine.loader import SheetLoader

__all__ = [
    # Models
    "ExcelError",
    "NA",
    "DIV0",
    "VALUE",
    "REF",
    "NUM",
    "ERROR",
    "Address",
    "Cell",
    "CellKind",
    "CellFormat",
    "CellCollection",
    "CommandResult",
    "FormattingUpdate",
    "AnalyticsReport",
    "PivotConfig",
    "PivotResult",
    "build_cells",
    "cells_from_dict",
    "cells_to_dict",
    # Address
    "AddressResolver",
    "InvalidAddress",
    "InvalidRange",
    "parse_address",
    # Parser
    "FormulaSyntaxError",
    "parse_formula",
    # Evaluator
    "FormulaEvaluator",
    "evaluate",
    # Interpreter
    "COMMAND_RULES",
    "CommandInterpreter",
    "CommandRule",
    "interpret",
    # Analytics
    "AnalyticsEngine",
    "analyze",
    # Pivot
    "PivotEngine",
    "available_fields",
    "pivot",
    # Loader
    "SheetLoader",
]
