"""公式求值器 - 在单元格快照上计算公式"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sheetcore.core.config import Settings, settings as default_settings
from sheetcore.engine.address import AddressResolver, InvalidAddress, InvalidRange
from sheetcore.engine.functions import (
    ERROR_AWARE_FUNCTIONS,
    FUNCTION_MAP,
    RESIZED_TARGET_ARGS,
)
from sheetcore.engine.models import (
    DIV0,
    ERROR,
    NA,
    NUM,
    REF,
    VALUE,
    Address,
    CellCollection,
    ExcelError,
    RangeValue,
)
from sheetcore.engine.parser import FormulaSyntaxError, parse_formula
from sheetcore.engine.values import compare, require_number, to_bool, to_text

logger = logging.getLogger(__name__)

ARITHMETIC_OPERATORS = {"+", "-", "*", "/", "^"}


class FormulaEvaluator:
    """
    公式求值器

    只读访问单元格集合。被引用的单元格若只有公式没有值，按需递归求值，
    嵌套深度超过 MAX_FORMULA_DEPTH 时返回 #ERROR!（不做循环引用分析）。
    """

    def __init__(
        self,
        cells: CellCollection,
        resolver: Optional[AddressResolver] = None,
        settings: Optional[Settings] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        """
        初始化求值器

        Args:
            cells: 单元格集合（不会被修改）
            resolver: 地址解析器（默认按配置的区域上限创建）
            settings: 配置（默认使用全局配置）
            now: 当前时间函数，供 TODAY/NOW 使用
        """
        self.cells = cells
        self.settings = settings or default_settings
        self.resolver = resolver or AddressResolver(self.settings.MAX_RANGE_CELLS)
        self.now = now or datetime.now
        self._computed: Dict[str, Any] = {}
        self._depth = 0
        self._max_row: Optional[int] = None

    # ==================== 入口 ====================

    def evaluate(self, formula: str) -> Any:
        """
        求值公式文本，从不抛出异常

        Returns:
            标量结果或 ExcelError
        """
        try:
            expr = parse_formula(formula)
        except FormulaSyntaxError as e:
            logger.warning(f"公式解析失败 {formula!r}: {e}")
            return ERROR
        return self._finalize(self._evaluate_safely(expr))

    def evaluate_expr(self, expr: Any) -> Any:
        """
        求值 JSON 风格表达式

        Args:
            expr: 表达式对象或原始值

        Returns:
            计算结果（区域引用返回 RangeValue）
        """
        if not isinstance(expr, dict):
            return expr

        # 字面量: {"value": ...}
        if "value" in expr:
            return expr["value"]

        # 单元格引用: {"ref": "A1"}
        if "ref" in expr:
            return self.cell_value(expr["ref"])

        # 区域引用: {"range": "A1:B10"}
        if "range" in expr:
            return self._range_value(expr["range"])

        # 取负: {"neg": {...}}
        if "neg" in expr:
            operand = self._scalar(self.evaluate_expr(expr["neg"]))
            if isinstance(operand, ExcelError):
                return operand
            return -require_number(operand)

        # 函数调用: {"func": "IF", "args": [...]}
        if "func" in expr:
            return self._eval_function(expr["func"], expr.get("args", []))

        # 二元运算: {"op": ">", "left": {...}, "right": {...}}
        if "op" in expr:
            return self._eval_binary_op(expr["op"], expr["left"], expr["right"])

        raise ValueError(f"未知的表达式类型: {expr}")

    def _evaluate_safely(self, expr: Any) -> Any:
        """求值表达式，把抛出的错误值和异常转换为错误值"""
        try:
            return self.evaluate_expr(expr)
        except ExcelError as e:
            return e
        except RecursionError:
            logger.warning("公式嵌套过深")
            return ERROR
        except Exception:
            logger.exception(f"公式求值失败: {expr}")
            return ERROR

    @staticmethod
    def _finalize(value: Any) -> Any:
        """顶层结果：区域取唯一值，空值按 0 显示"""
        if isinstance(value, RangeValue):
            value = FormulaEvaluator._scalar(value)
        if value is None:
            return 0
        return value

    @staticmethod
    def _scalar(value: Any) -> Any:
        """在标量上下文中使用区域：仅单个单元格的区域可用"""
        if isinstance(value, RangeValue):
            if value.height == 1 and value.width == 1:
                return value.rows[0][0]
            return VALUE
        return value

    # ==================== 引用 ====================

    @property
    def max_row(self) -> int:
        """集合中最大的已填充行号（整列区域展开到此行）"""
        if self._max_row is None:
            self._max_row = max((cell.row for cell in self.cells.values()), default=1)
        return self._max_row

    def cell_value(self, label: str) -> Any:
        """读取单元格的值；只有公式的单元格按需求值"""
        cell = self.cells.get(label)
        if cell is None:
            return None
        if cell.value is not None or not cell.formula:
            return cell.value

        if label in self._computed:
            return self._computed[label]
        if self._depth >= self.settings.MAX_FORMULA_DEPTH:
            logger.warning(f"单元格 {label} 的公式嵌套超过 {self.settings.MAX_FORMULA_DEPTH} 层")
            return ERROR

        self._depth += 1
        try:
            expr = parse_formula(cell.formula)
            value = self._finalize(self._evaluate_safely(expr))
        except FormulaSyntaxError as e:
            logger.warning(f"单元格 {label} 的公式解析失败: {e}")
            value = ERROR
        finally:
            self._depth -= 1
        self._computed[label] = value
        return value

    def _range_value(self, range_label: str) -> RangeValue:
        """展开区域并读取值"""
        try:
            start, _ = self.resolver.bounds(range_label, self.max_row)
            expansion = self.resolver.expand_range_checked(range_label, self.max_row)
        except (InvalidRange, InvalidAddress) as e:
            logger.warning(f"无效的区域引用: {e}")
            raise REF
        return self._collect(start, expansion.addresses, expansion.total, expansion.truncated)

    def _collect(self, start: Address, addresses: List[Address], total: int, truncated: bool) -> RangeValue:
        rows: List[List[Any]] = []
        current_row = None
        for address in addresses:
            if address.row != current_row:
                rows.append([])
                current_row = address.row
            rows[-1].append(self.cell_value(address.label))
        return RangeValue(start=start, rows=rows, total=total, truncated=truncated)

    def _resize(self, target: RangeValue, like: RangeValue) -> RangeValue:
        """以 target 左上角为起点，取与 like 相同形状的区域"""
        if target.height == like.height and target.width == like.width:
            return target
        end = target.start.offset(like.height - 1, max(like.width, 1) - 1)
        return self._range_value(f"{target.start.label}:{end.label}")

    # ==================== 函数调用 ====================

    def _eval_function(self, func_name: str, args: List) -> Any:
        """求值函数调用"""
        name = func_name.upper()

        # 特殊处理 IF/IFS/IFERROR（短路求值）
        if name == "IF":
            return self._eval_if(args)
        if name == "IFS":
            return self._eval_ifs(args)
        if name == "IFERROR":
            if len(args) != 2:
                return VALUE
            value = self._scalar(self._evaluate_safely(args[0]))
            if isinstance(value, ExcelError):
                return self.evaluate_expr(args[1])
            return value

        # 时钟可注入
        if name == "TODAY":
            return self.now().date()
        if name == "NOW":
            return self.now()

        func = FUNCTION_MAP.get(name)
        if func is None:
            logger.warning(f"未知的函数: {func_name}")
            return ERROR

        # 其他函数：先求值所有参数
        if name in ERROR_AWARE_FUNCTIONS:
            evaluated = [self._evaluate_safely(arg) for arg in args]
        else:
            evaluated = [self.evaluate_expr(arg) for arg in args]
            # 错误传播：标量参数中的错误值直接作为结果
            for value in evaluated:
                if isinstance(value, ExcelError):
                    return value

        positions = RESIZED_TARGET_ARGS.get(name)
        if positions:
            source, target = positions
            if (
                len(evaluated) > target
                and isinstance(evaluated[source], RangeValue)
                and isinstance(evaluated[target], RangeValue)
            ):
                evaluated[target] = self._resize(evaluated[target], evaluated[source])

        try:
            return func(*evaluated)
        except TypeError as e:
            logger.warning(f"{name} 参数错误: {e}")
            return VALUE
        except (ZeroDivisionError, OverflowError):
            return NUM

    def _eval_if(self, args: List) -> Any:
        """求值 IF 函数（省略 else 分支时返回 FALSE）"""
        if len(args) not in (2, 3):
            return VALUE
        condition = self._scalar(self.evaluate_expr(args[0]))
        if isinstance(condition, ExcelError):
            return condition
        if to_bool(condition):
            return self.evaluate_expr(args[1])
        if len(args) == 3:
            return self.evaluate_expr(args[2])
        return False

    def _eval_ifs(self, args: List) -> Any:
        """
        求值 IFS 函数

        按顺序检查条件，返回第一个成立条件对应的值；都不成立时返回 #N/A。
        """
        if not args or len(args) % 2 != 0:
            return VALUE
        for i in range(0, len(args), 2):
            condition = self._scalar(self.evaluate_expr(args[i]))
            if isinstance(condition, ExcelError):
                return condition
            if to_bool(condition):
                return self.evaluate_expr(args[i + 1])
        return NA

    # ==================== 运算符 ====================

    def _eval_binary_op(self, op: str, left_expr, right_expr) -> Any:
        """求值二元运算"""
        left = self._scalar(self.evaluate_expr(left_expr))
        right = self._scalar(self.evaluate_expr(right_expr))

        # 错误传播：如果任一操作数是 ExcelError，直接返回该错误
        if isinstance(left, ExcelError):
            return left
        if isinstance(right, ExcelError):
            return right

        if op in ARITHMETIC_OPERATORS:
            return self._arithmetic(op, left, right)

        if op == "&":
            return to_text(left) + to_text(right)

        # 比较运算（数值 < 文本 < 逻辑值，文本不区分大小写）
        diff = compare(left, right)
        comparisons = {
            "=": diff == 0,
            "<>": diff != 0,
            "<": diff < 0,
            ">": diff > 0,
            "<=": diff <= 0,
            ">=": diff >= 0,
        }
        if op not in comparisons:
            raise ValueError(f"未知的运算符: {op}")
        return comparisons[op]

    @staticmethod
    def _arithmetic(op: str, left: Any, right: Any) -> Any:
        # 日期加减天数，日期相减得天数
        left_is_date = isinstance(left, date)
        right_is_date = isinstance(right, date)
        if op in ("+", "-") and (left_is_date or right_is_date):
            if left_is_date and right_is_date:
                if op == "-":
                    return (_as_datetime(left) - _as_datetime(right)).days
                return VALUE
            if left_is_date:
                days = require_number(right)
                return left + timedelta(days=days if op == "+" else -days)
            if op == "+":
                return right + timedelta(days=require_number(left))

        a = require_number(left)
        b = require_number(right)
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            if b == 0:
                return DIV0
            return a / b
        try:
            result = a ** b
        except (ZeroDivisionError, OverflowError):
            return NUM
        if isinstance(result, complex):
            return NUM
        return result


def _as_datetime(value: date) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


def evaluate(
    formula: str,
    cells: CellCollection,
    settings: Optional[Settings] = None,
    now: Optional[Callable[[], datetime]] = None,
) -> Any:
    """
    便捷函数：求值公式

    Args:
        formula: 公式文本，如 "=SUM(A1:A3)"
        cells: 单元格集合
        settings: 配置
        now: 当前时间函数

    Returns:
        标量结果或 ExcelError（从不抛出异常）
    """
    try:
        return FormulaEvaluator(cells, settings=settings, now=now).evaluate(formula)
    except Exception:
        logger.exception(f"公式求值失败: {formula!r}")
        return ERROR
