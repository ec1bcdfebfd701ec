"""函数库 - 实现聚合、条件聚合、查找、逻辑、文本、日期、取整和财务函数

区域参数以 RangeValue 传入，其余参数为已求值的标量。
"""

import math
import re
import statistics
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union

from sheetcore.engine.models import (
    DIV0,
    NA,
    NUM,
    REF,
    VALUE,
    ExcelError,
    RangeValue,
)
from sheetcore.engine.values import (
    Number,
    compare,
    is_blank,
    is_number,
    order_key,
    require_number,
    to_bool,
    to_date,
    to_number,
    to_text,
    values_equal,
)


# ==================== 辅助函数 ====================


def _flatten(args) -> List[Any]:
    """展开参数中的区域（行优先）"""
    values: List[Any] = []
    for arg in args:
        if isinstance(arg, RangeValue):
            values.extend(arg.values())
        elif isinstance(arg, list):
            values.extend(arg)
        else:
            values.append(arg)
    return values


def _numbers(args) -> List[Number]:
    """取出可解析为数值的值，其余跳过"""
    result = []
    for v in _flatten(args):
        number = to_number(v)
        if number is not None:
            result.append(number)
    return result


def _to_int(value: Any) -> int:
    """转换为整数（向零截断），失败抛出 #VALUE!"""
    return int(require_number(value))


def _scalar(value: Any) -> Any:
    """区域作为标量参数时取左上角的值"""
    if isinstance(value, RangeValue):
        return value.rows[0][0] if value.rows and value.rows[0] else None
    return value


# ==================== 聚合函数 ====================


def SUM(*args) -> Number:
    """求和（非数值按 0 计）"""
    total = 0
    for v in _flatten(args):
        total += to_number(v) or 0
    return total


def AVERAGE(*args) -> Union[Number, ExcelError]:
    """平均值（非数值跳过，不计入分母）"""
    nums = _numbers(args)
    if not nums:
        return DIV0
    return sum(nums) / len(nums)


def COUNT(*args) -> int:
    """计数（仅数值）"""
    return len(_numbers(args))


def COUNTA(*args) -> int:
    """计数（非空）"""
    return sum(1 for v in _flatten(args) if not is_blank(v))


def MIN(*args) -> Number:
    """最小值（无数值时为 0）"""
    nums = _numbers(args)
    return min(nums) if nums else 0


def MAX(*args) -> Number:
    """最大值（无数值时为 0）"""
    nums = _numbers(args)
    return max(nums) if nums else 0


def MEDIAN(*args) -> Union[Number, ExcelError]:
    """中位数"""
    nums = sorted(_numbers(args))
    if not nums:
        return NUM
    n = len(nums)
    mid = n // 2
    if n % 2 == 0:
        # 偶数个：取中间两个的平均值
        return (nums[mid - 1] + nums[mid]) / 2
    return nums[mid]


def MODE(*args) -> Union[Number, ExcelError]:
    """众数（出现次数相同时取最先出现者，没有重复值时为 #N/A）"""
    nums = _numbers(args)
    counts: Dict[Number, int] = {}
    for n in nums:
        counts[n] = counts.get(n, 0) + 1
    best, best_count = None, 1
    for n in nums:
        if counts[n] > best_count:
            best, best_count = n, counts[n]
    return NA if best is None else best


def STDEV(*args) -> Union[float, ExcelError]:
    """样本标准差"""
    nums = _numbers(args)
    if len(nums) < 2:
        return DIV0
    return statistics.stdev(nums)


def VAR(*args) -> Union[float, ExcelError]:
    """样本方差"""
    nums = _numbers(args)
    if len(nums) < 2:
        return DIV0
    return statistics.variance(nums)


# ==================== 条件匹配 ====================

_CRITERIA_OPERATORS = (">=", "<=", "<>", ">", "<", "=")


def _wildcard_pattern(text: str) -> "re.Pattern":
    """将 * / ? 通配符编译为锚定的正则表达式（~ 转义）"""
    parts = []
    escaped = False
    for ch in text:
        if escaped:
            parts.append(re.escape(ch))
            escaped = False
        elif ch == "~":
            escaped = True
        elif ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


def compile_criteria(criteria: Any) -> Callable[[Any], bool]:
    """
    编译条件，返回匹配函数

    支持的条件格式:
    - 精确匹配: "已完成", 100, TRUE
    - 比较: ">0", "<100", ">=0", "<=100", "<>0", "=abc"
    - 通配符: "A*", "?at", "~*"（匹配字面量 *）
    - 空字符串匹配空单元格
    """
    criteria = _scalar(criteria)

    if isinstance(criteria, bool) or is_number(criteria):
        return lambda v: values_equal(v, criteria)

    text = to_text(criteria)
    op, operand = "=", text
    for candidate in _CRITERIA_OPERATORS:
        if text.startswith(candidate):
            op, operand = candidate, text[len(candidate):]
            break

    number = to_number(operand)

    if op in (">", "<", ">=", "<="):
        def ordered(v: Any) -> bool:
            if is_blank(v):
                return False
            if number is not None:
                value = to_number(v)
                if value is None:
                    return False
                diff = (value > number) - (value < number)
            else:
                if order_key(v)[0] != 1:
                    return False
                diff = compare(v, operand)
            return {">": diff > 0, "<": diff < 0, ">=": diff >= 0, "<=": diff <= 0}[op]
        return ordered

    if operand == "":
        matcher = is_blank
    elif number is not None:
        matcher = lambda v: to_number(v) == number
    elif operand.upper() in ("TRUE", "FALSE"):
        flag = operand.upper() == "TRUE"
        matcher = lambda v: isinstance(v, bool) and v == flag
    elif any(ch in operand for ch in "*?~"):
        pattern = _wildcard_pattern(operand)
        matcher = lambda v: not is_blank(v) and pattern.fullmatch(to_text(v)) is not None
    else:
        lowered = operand.lower()
        matcher = lambda v: to_text(v).lower() == lowered

    if op == "<>":
        return lambda v: not matcher(v)
    return matcher


def match_condition(value: Any, criteria: Any) -> bool:
    """检查值是否匹配条件"""
    return compile_criteria(criteria)(value)


# ==================== 条件聚合函数 ====================


def SUMIF(criteria_range: RangeValue, criteria: Any, sum_range: Optional[RangeValue] = None) -> Number:
    """条件求和（sum_range 省略时对条件区域本身求和）"""
    matcher = compile_criteria(criteria)
    checks = _flatten([criteria_range])
    targets = _flatten([sum_range]) if isinstance(sum_range, RangeValue) else checks
    total = 0
    for check_value, value in zip(checks, targets):
        if matcher(check_value):
            total += to_number(value) or 0
    return total


def COUNTIF(criteria_range: RangeValue, criteria: Any) -> int:
    """条件计数"""
    matcher = compile_criteria(criteria)
    return sum(1 for v in _flatten([criteria_range]) if matcher(v))


def AVERAGEIF(
    criteria_range: RangeValue,
    criteria: Any,
    average_range: Optional[RangeValue] = None,
) -> Union[Number, ExcelError]:
    """条件平均（非数值跳过）"""
    matcher = compile_criteria(criteria)
    checks = _flatten([criteria_range])
    targets = _flatten([average_range]) if isinstance(average_range, RangeValue) else checks
    nums = []
    for check_value, value in zip(checks, targets):
        if matcher(check_value):
            number = to_number(value)
            if number is not None:
                nums.append(number)
    if not nums:
        return DIV0
    return sum(nums) / len(nums)


def _multi_criteria_rows(pairs) -> Union[List[bool], ExcelError]:
    """多条件：返回每个位置是否满足全部条件"""
    if not pairs:
        return VALUE
    columns = [(_flatten([r]), compile_criteria(c)) for r, c in pairs]
    length = len(columns[0][0])
    if any(len(values) != length for values, _ in columns):
        return VALUE
    return [all(matcher(values[i]) for values, matcher in columns) for i in range(length)]


def COUNTIFS(*args) -> Union[int, ExcelError]:
    """
    多条件计数

    用法: COUNTIFS(range1, criteria1, range2, criteria2, ...)
    """
    if len(args) < 2 or len(args) % 2 != 0:
        return VALUE
    rows = _multi_criteria_rows(list(zip(args[0::2], args[1::2])))
    if isinstance(rows, ExcelError):
        return rows
    return sum(rows)


def SUMIFS(sum_range: RangeValue, *args) -> Union[Number, ExcelError]:
    """
    多条件求和

    用法: SUMIFS(sum_range, range1, criteria1, range2, criteria2, ...)
    """
    if len(args) < 2 or len(args) % 2 != 0:
        return VALUE
    rows = _multi_criteria_rows(list(zip(args[0::2], args[1::2])))
    if isinstance(rows, ExcelError):
        return rows
    targets = _flatten([sum_range])
    if len(targets) != len(rows):
        return VALUE
    return sum(to_number(v) or 0 for v, ok in zip(targets, rows) if ok)


# ==================== 查找函数 ====================


def _lookup_hit(key: Any, lookup_value: Any, exact: bool) -> bool:
    if is_blank(key):
        return False
    if exact:
        return values_equal(key, lookup_value)
    # 近似匹配：同类值中第一个 >= 查找值的键（假定查找列升序）
    if order_key(key)[0] != order_key(lookup_value)[0]:
        return False
    return compare(key, lookup_value) >= 0


def VLOOKUP(lookup_value: Any, table: Any, col_index: Any, range_lookup: Any = None) -> Any:
    """
    纵向查找：沿表格首列逐行扫描，返回同一行第 col_index 列的值

    range_lookup 为 FALSE 时精确匹配，否则近似匹配（返回第一个 >= 查找值的行）。
    """
    if not isinstance(table, RangeValue):
        return REF
    lookup_value = _scalar(lookup_value)
    col = _to_int(col_index)
    if col < 1:
        return VALUE
    if col > table.width:
        return REF
    exact = range_lookup is not None and not to_bool(range_lookup)
    for row in table.rows:
        if _lookup_hit(row[0], lookup_value, exact):
            return row[col - 1]
    return NA


def HLOOKUP(lookup_value: Any, table: Any, row_index: Any, range_lookup: Any = None) -> Any:
    """横向查找：沿表格首行逐列扫描，返回同一列第 row_index 行的值"""
    if not isinstance(table, RangeValue):
        return REF
    lookup_value = _scalar(lookup_value)
    row = _to_int(row_index)
    if row < 1:
        return VALUE
    if row > table.height:
        return REF
    exact = range_lookup is not None and not to_bool(range_lookup)
    for col, key in enumerate(table.rows[0]):
        if _lookup_hit(key, lookup_value, exact):
            return table.rows[row - 1][col]
    return NA


def MATCH(lookup_value: Any, lookup_range: Any, match_type: Any = None) -> Union[int, ExcelError]:
    """
    返回查找值在一维区域中的位置（从 1 开始）

    match_type: 0 精确（文本支持通配符）；1（默认）升序中 <= 查找值的最大项；
    -1 降序中 >= 查找值的最小项。
    """
    if not isinstance(lookup_range, RangeValue):
        return NA
    if lookup_range.height > 1 and lookup_range.width > 1:
        return NA
    lookup_value = _scalar(lookup_value)
    mode = 1 if match_type is None else _to_int(match_type)
    values = lookup_range.values()

    if mode == 0:
        if isinstance(lookup_value, str) and any(ch in lookup_value for ch in "*?"):
            matcher = compile_criteria("=" + lookup_value)
        else:
            matcher = lambda v: values_equal(v, lookup_value)
        for i, v in enumerate(values):
            if matcher(v):
                return i + 1
        return NA

    position = None
    rank = order_key(lookup_value)[0]
    for i, v in enumerate(values):
        if is_blank(v) or order_key(v)[0] != rank:
            continue
        diff = compare(v, lookup_value)
        if (mode > 0 and diff <= 0) or (mode < 0 and diff >= 0):
            position = i + 1
        else:
            break
    return NA if position is None else position


def INDEX(source: Any, row_num: Any, col_num: Any = None) -> Any:
    """按行列位置（从 1 开始）取区域中的值"""
    if not isinstance(source, RangeValue):
        if _to_int(row_num) in (0, 1) and (col_num is None or _to_int(col_num) in (0, 1)):
            return source
        return REF
    row = _to_int(row_num)
    col = None if col_num is None else _to_int(col_num)
    if col is None:
        # 单行区域时，唯一的索引按列解释
        if source.height == 1:
            row, col = 1, row
        else:
            col = 1
    if row < 1 or col < 1:
        return VALUE
    if row > source.height or col > source.width:
        return REF
    return source.rows[row - 1][col - 1]


# ==================== 逻辑函数 ====================


def AND(*args) -> bool:
    """逻辑与（区域中的空值忽略）"""
    values = [v for v in _flatten(args) if not is_blank(v)]
    if not values:
        return VALUE
    return all(to_bool(v) for v in values)


def OR(*args) -> bool:
    """逻辑或"""
    values = [v for v in _flatten(args) if not is_blank(v)]
    if not values:
        return VALUE
    return any(to_bool(v) for v in values)


def NOT(condition: Any) -> bool:
    """逻辑非"""
    return not to_bool(_scalar(condition))


def IFERROR(value: Any, value_if_error: Any) -> Any:
    """错误处理"""
    value = _scalar(value)
    if isinstance(value, ExcelError):
        return _scalar(value_if_error)
    return value


# ==================== 信息函数 ====================


def ISBLANK(value: Any) -> bool:
    """判断是否为空值"""
    return is_blank(_scalar(value))


def ISERROR(value: Any) -> bool:
    """判断是否为错误值"""
    return isinstance(_scalar(value), ExcelError)


def ISNUMBER(value: Any) -> bool:
    """判断是否为有效数值"""
    return is_number(_scalar(value))


# ==================== 文本函数 ====================


def CONCATENATE(*values: Any) -> str:
    """文本拼接"""
    return "".join(to_text(v) for v in _flatten(values))


def LEFT(text: Any, num_chars: Any = None) -> Union[str, ExcelError]:
    """左截取"""
    n = 1 if num_chars is None else _to_int(num_chars)
    if n < 0:
        return VALUE
    return to_text(text)[:n]


def RIGHT(text: Any, num_chars: Any = None) -> Union[str, ExcelError]:
    """右截取"""
    n = 1 if num_chars is None else _to_int(num_chars)
    if n < 0:
        return VALUE
    return to_text(text)[-n:] if n > 0 else ""


def MID(text: Any, start_num: Any, num_chars: Any) -> Union[str, ExcelError]:
    """中间截取（start_num 从 1 开始，与 Excel 一致）"""
    start = _to_int(start_num)
    n = _to_int(num_chars)
    if start < 1 or n < 0:
        return VALUE
    return to_text(text)[start - 1:start - 1 + n]


def UPPER(text: Any) -> str:
    """转大写"""
    return to_text(text).upper()


def LOWER(text: Any) -> str:
    """转小写"""
    return to_text(text).lower()


def TRIM(text: Any) -> str:
    """去除首尾空格，并将中间连续空格压缩为一个"""
    return re.sub(" +", " ", to_text(text)).strip(" ")


def LEN(text: Any) -> int:
    """文本长度"""
    return len(to_text(text))


# ==================== 日期函数 ====================


def _require_date(value: Any) -> date:
    if isinstance(value, ExcelError):
        raise value
    parsed = to_date(value)
    if parsed is None:
        raise VALUE
    return parsed


def DATE(year: Any, month: Any, day: Any) -> Union[date, ExcelError]:
    """构造日期（月、日溢出时向后顺延，与 Excel 一致）"""
    y, m, d = _to_int(year), _to_int(month), _to_int(day)
    if 0 <= y < 1900:
        y += 1900
    years, month_index = divmod(y * 12 + (m - 1), 12)
    try:
        return date(years, month_index + 1, 1) + timedelta(days=d - 1)
    except (ValueError, OverflowError):
        return NUM


def YEAR(value: Any) -> int:
    return _require_date(value).year


def MONTH(value: Any) -> int:
    return _require_date(value).month


def DAY(value: Any) -> int:
    return _require_date(value).day


def _months_between(start: date, end: date) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    if end.day < start.day:
        months -= 1
    return months


def DATEDIF(start_date: Any, end_date: Any, unit: Any) -> Union[int, ExcelError]:
    """
    两个日期之间的间隔

    unit: "Y" 整年数，"M" 整月数，"D" 天数，"YM" 忽略年后的月数
    """
    start, end = _require_date(start_date), _require_date(end_date)
    if start > end:
        return NUM
    code = to_text(unit).strip().upper()
    if code == "D":
        return (end - start).days
    if code == "M":
        return _months_between(start, end)
    if code == "Y":
        return _months_between(start, end) // 12
    if code == "YM":
        return _months_between(start, end) % 12
    return NUM


# ==================== 取整函数 ====================


def _scaled_round(number: Any, digits: Any, mode: str) -> Number:
    """按位数放大、截断后再缩小"""
    value = require_number(number)
    places = 0 if digits is None else _to_int(digits)
    factor = 10 ** places
    sign = -1 if value < 0 else 1
    # 先消除放大过程中的浮点误差
    scaled = round(abs(value) * factor, 9)
    if mode == "half_up":
        scaled = math.floor(scaled + 0.5)
    elif mode == "up":
        scaled = math.ceil(scaled)
    else:
        scaled = math.floor(scaled)
    result = sign * scaled / factor
    if places <= 0:
        return int(result)
    return result


def ROUND(number: Any, digits: Any = None) -> Number:
    """四舍五入（远离零）"""
    return _scaled_round(number, digits, "half_up")


def ROUNDUP(number: Any, digits: Any = None) -> Number:
    """远离零方向舍入"""
    return _scaled_round(number, digits, "up")


def ROUNDDOWN(number: Any, digits: Any = None) -> Number:
    """向零方向舍入"""
    return _scaled_round(number, digits, "down")


def ABS(number: Any) -> Number:
    """绝对值"""
    return abs(require_number(number))


# ==================== 财务函数 ====================


def _financial_args(rate, nper, *rest):
    r = require_number(rate)
    n = require_number(nper)
    others = [0 if v is None else require_number(v) for v in rest]
    return r, n, others


def PMT(rate: Any, nper: Any, pv: Any, fv: Any = None, when: Any = None) -> Union[float, ExcelError]:
    """
    每期还款额（年金公式）

    rate 为 0 时退化为 -(pv + fv) / nper，避免除以零。
    """
    r, n, (present, future, kind) = _financial_args(rate, nper, pv, fv, when)
    if n == 0:
        return NUM
    if r == 0:
        return -(present + future) / n
    growth = (1 + r) ** n
    return -(r * (present * growth + future)) / ((1 + r * kind) * (growth - 1))


def FV(rate: Any, nper: Any, pmt: Any, pv: Any = None, when: Any = None) -> float:
    """终值"""
    r, n, (payment, present, kind) = _financial_args(rate, nper, pmt, pv, when)
    if r == 0:
        return -(present + payment * n)
    growth = (1 + r) ** n
    return -(present * growth + payment * (1 + r * kind) * (growth - 1) / r)


def PV(rate: Any, nper: Any, pmt: Any, fv: Any = None, when: Any = None) -> float:
    """现值"""
    r, n, (payment, future, kind) = _financial_args(rate, nper, pmt, fv, when)
    if r == 0:
        return -(future + payment * n)
    growth = (1 + r) ** n
    return -(future + payment * (1 + r * kind) * (growth - 1) / r) / growth


# ==================== 函数映射 ====================

# 参数中的区域以 RangeValue 原样传入
FUNCTION_MAP: Dict[str, Callable[..., Any]] = {
    # 聚合
    "SUM": SUM,
    "AVERAGE": AVERAGE,
    "COUNT": COUNT,
    "COUNTA": COUNTA,
    "MIN": MIN,
    "MAX": MAX,
    "MEDIAN": MEDIAN,
    "MODE": MODE,
    "STDEV": STDEV,
    "VAR": VAR,
    # 条件聚合
    "SUMIF": SUMIF,
    "COUNTIF": COUNTIF,
    "AVERAGEIF": AVERAGEIF,
    "SUMIFS": SUMIFS,
    "COUNTIFS": COUNTIFS,
    # 查找
    "VLOOKUP": VLOOKUP,
    "HLOOKUP": HLOOKUP,
    "MATCH": MATCH,
    "INDEX": INDEX,
    # 逻辑
    "AND": AND,
    "OR": OR,
    "NOT": NOT,
    "IFERROR": IFERROR,
    # 信息
    "ISBLANK": ISBLANK,
    "ISERROR": ISERROR,
    "ISNUMBER": ISNUMBER,
    # 文本
    "CONCATENATE": CONCATENATE,
    "CONCAT": CONCATENATE,
    "LEFT": LEFT,
    "RIGHT": RIGHT,
    "MID": MID,
    "UPPER": UPPER,
    "LOWER": LOWER,
    "TRIM": TRIM,
    "LEN": LEN,
    # 日期
    "DATE": DATE,
    "YEAR": YEAR,
    "MONTH": MONTH,
    "DAY": DAY,
    "DATEDIF": DATEDIF,
    # 取整
    "ROUND": ROUND,
    "ROUNDUP": ROUNDUP,
    "ROUNDDOWN": ROUNDDOWN,
    "ABS": ABS,
    # 财务
    "PMT": PMT,
    "FV": FV,
    "PV": PV,
}

# 需要看到错误值本身的函数（不做错误传播）
ERROR_AWARE_FUNCTIONS = {"IFERROR", "ISERROR", "ISBLANK", "ISNUMBER"}

# 条件区域与目标区域需要对齐形状的函数：函数名 -> (条件区域参数位置, 目标区域参数位置)
RESIZED_TARGET_ARGS = {"SUMIF": (0, 2), "AVERAGEIF": (0, 2)}
