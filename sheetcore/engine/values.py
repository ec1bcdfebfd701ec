"""值转换 - 数值/文本/日期/逻辑值的统一强制转换规则"""

import math
from datetime import date, datetime, timedelta
from typing import Any, Optional, Tuple, Union

import pandas as pd

from sheetcore.engine.models import ExcelError, VALUE

Number = Union[int, float]

# Excel 序列号起点（1900 日期系统，含 1900-02-29 的历史偏差）
EXCEL_EPOCH = datetime(1899, 12, 30)


def is_blank(value: Any) -> bool:
    """检查值是否为空（None、NaN、空字符串）"""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and value == "":
        return True
    return False


def is_number(value: Any) -> bool:
    """检查值是否为有效数值（排除 NaN、None、bool）"""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return not (isinstance(value, float) and (math.isnan(value) or math.isinf(value)))
    return False


def to_number(value: Any) -> Optional[Number]:
    """
    尝试将值解析为数值

    数值原样返回；可解析为数值的文本返回 float；其余（空值、布尔、普通文本、
    日期、错误值）返回 None。
    """
    if is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if math.isnan(number) or math.isinf(number):
            return None
        return number
    return None


def require_number(value: Any) -> Number:
    """转换为数值，失败时抛出 #VALUE!（空值视为 0，布尔视为 0/1）"""
    if isinstance(value, ExcelError):
        raise value
    if is_blank(value):
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        return date_to_serial(value)
    if isinstance(value, date):
        return date_to_serial(value)
    number = to_number(value)
    if number is None:
        raise VALUE
    return number


def to_text(value: Any) -> str:
    """按电子表格的显示习惯将值转换为文本"""
    if is_blank(value):
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.15g}"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def to_bool(value: Any) -> bool:
    """逻辑值转换（用于 IF/AND/OR/NOT）"""
    if isinstance(value, ExcelError):
        raise value
    if isinstance(value, bool):
        return value
    if is_blank(value):
        return False
    if is_number(value):
        return value != 0
    if isinstance(value, str):
        text = value.strip().upper()
        if text == "TRUE":
            return True
        if text == "FALSE":
            return False
        number = to_number(text)
        if number is not None:
            return number != 0
    raise VALUE


# ==================== 日期 ====================


def date_to_serial(value: Union[date, datetime]) -> Number:
    """日期 -> Excel 序列号"""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    delta = value - EXCEL_EPOCH
    serial = delta.days + delta.seconds / 86400
    return int(serial) if float(serial).is_integer() else serial


def serial_to_date(serial: Number) -> date:
    """Excel 序列号 -> 日期"""
    return (EXCEL_EPOCH + timedelta(days=float(serial))).date()


def to_date(value: Any) -> Optional[date]:
    """
    尝试将值解析为日期

    支持 date/datetime 对象、Excel 序列号和 ISO 等常见格式文本。
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if is_number(value):
        if value < 0:
            return None
        return serial_to_date(value)
    if isinstance(value, str):
        text = value.strip()
        if not text or to_number(text) is not None:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            pass
        parsed = pd.to_datetime(text, errors="coerce")
        if pd.isna(parsed):
            return None
        return parsed.date()
    return None


def is_date_like(value: Any) -> bool:
    """值本身是日期，或是可解析为日期的非数值文本"""
    if isinstance(value, (date, datetime)):
        return True
    if isinstance(value, str):
        return to_date(value) is not None
    return False


# ==================== 比较 ====================


def order_key(value: Any) -> Tuple[int, Any]:
    """
    排序键：数值 < 文本 < 逻辑值 < 空值

    数值文本按数值排序，日期按序列号排序，文本不区分大小写。
    """
    if is_blank(value):
        return (3, 0)
    if isinstance(value, bool):
        return (2, int(value))
    if isinstance(value, (date, datetime)):
        return (0, date_to_serial(value))
    number = to_number(value)
    if number is not None:
        return (0, number)
    if isinstance(value, ExcelError):
        return (4, value.code)
    return (1, to_text(value).lower())


def values_equal(left: Any, right: Any) -> bool:
    """宽松相等：数值按数值比较，文本不区分大小写"""
    if is_blank(left) and is_blank(right):
        return True
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    left_num, right_num = to_number(left), to_number(right)
    if left_num is not None and right_num is not None:
        return left_num == right_num
    if isinstance(left, (date, datetime)) or isinstance(right, (date, datetime)):
        left_date, right_date = to_date(left), to_date(right)
        return left_date is not None and left_date == right_date
    return to_text(left).lower() == to_text(right).lower()


def compare(left: Any, right: Any) -> int:
    """三路比较，返回 -1 / 0 / 1"""
    if values_equal(left, right):
        return 0
    # 空值参与比较时按同侧类型的零值处理
    if is_blank(left):
        left = 0 if order_key(right)[0] == 0 else ""
    if is_blank(right):
        right = 0 if order_key(left)[0] == 0 else ""
    a, b = order_key(left), order_key(right)
    if a == b:
        return 0
    return -1 if a < b else 1
