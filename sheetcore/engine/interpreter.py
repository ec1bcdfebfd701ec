"""命令解释器 - 将自然语言指令映射为公式模板或结构化操作

规则按优先级排列在 COMMAND_RULES 中，第一个匹配的规则生效：
直接录入 > 具名函数 > 分析、查询与透视 > 通用动词 > 结构操作 > 单元格/区域操作 > 格式。
"""

import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from sheetcore.core.config import Settings, settings as default_settings
from sheetcore.engine.address import AddressResolver, InvalidAddress, InvalidRange, parse_address
from sheetcore.engine.analytics import AnalyticsEngine
from sheetcore.engine.evaluator import FormulaEvaluator
from sheetcore.engine.functions import compile_criteria
from sheetcore.engine.parser import collect_references, parse_formula
from sheetcore.engine.models import (
    ERROR,
    Address,
    Cell,
    CellCollection,
    CellFormat,
    CellKind,
    CommandResult,
    ExcelError,
    FormattingUpdate,
    PivotConfig,
    column_letter_to_number,
    column_number_to_letter,
    infer_kind,
)
from sheetcore.engine.pivot import PivotEngine
from sheetcore.engine.table import SheetTable
from sheetcore.engine.values import is_blank, order_key, to_number, to_text

logger = logging.getLogger(__name__)


# ==================== 参数提取 ====================

_CELL = r"\$?[A-Za-z]{1,3}\$?[0-9]+"
_RANGE = rf"{_CELL}\s*:\s*{_CELL}"
_RANGE_RE = re.compile(rf"\b({_RANGE})\b")
_RANGE_TO_RE = re.compile(rf"\b(?:range|from|cells?)\s+({_CELL})\s+(?:to|through|thru)\s+({_CELL})\b", re.I)
_COLUMN_RE = re.compile(r"\bcolumn\s+([A-Za-z]{1,3})\b(?!\s*[0-9])", re.I)
_TARGET_RE = re.compile(rf"(?:\b(?:in|into|at)\s+(?:cell\s+)?|\bto\s+cell\s+)({_CELL})(?![0-9:]|\s*:)", re.I)
_CELL_RE = re.compile(rf"\b({_CELL})\b(?!\s*:)")
_TAIL_TARGET = rf"(?:\s+(?:in|into|to|at)\s+(?:cell\s+)?{_CELL})?\s*$"

COLORS = {
    "red": ("#ffebee", "#c62828"),
    "green": ("#e8f5e8", "#2e7d32"),
    "blue": ("#e3f2fd", "#1565c0"),
    "yellow": ("#fff9c4", "#f57f17"),
    "orange": ("#fff3e0", "#ef6c00"),
    "purple": ("#f3e5f5", "#7b1fa2"),
}
_COLOR_RE = re.compile(rf"\b({'|'.join(COLORS)})\b", re.I)

# 自然语言比较词 -> 运算符（长短语在前）
_CONDITION_PHRASES = [
    (r"greater\s+than\s+or\s+equal\s+to", ">="),
    (r"less\s+than\s+or\s+equal\s+to", "<="),
    (r"at\s+least", ">="),
    (r"at\s+most", "<="),
    (r"not\s+equal\s+to|does\s+not\s+equal|not\s+equals?", "<>"),
    (r"greater\s+than|more\s+than|above|over", ">"),
    (r"less\s+than|below|under", "<"),
    (r"equal\s+to|equals?", "="),
    (r"is", "="),
]
_CONDITION_RE = re.compile(
    r"^\s*(?:(?:column\s+)?(.+?)\s*)?(>=|<=|<>|!=|==|=|>|<|\bcontains\b)\s*(.+?)\s*$", re.I
)


def extract_range(text: str) -> Optional[str]:
    """提取区域："A1:B10"、"range A1 to B10" 或整列 "column A" """
    match = _RANGE_RE.search(text)
    if match:
        return re.sub(r"[\s$]", "", match.group(1)).upper()
    match = _RANGE_TO_RE.search(text)
    if match:
        return f"{match.group(1)}:{match.group(2)}".replace("$", "").upper()
    match = _COLUMN_RE.search(text)
    if match:
        letter = match.group(1).upper()
        return f"{letter}:{letter}"
    return None


def extract_ranges(text: str) -> List[str]:
    return [re.sub(r"[\s$]", "", m).upper() for m in _RANGE_RE.findall(text)]


def extract_target_cell(text: str) -> Optional[str]:
    """提取结果单元格："in cell B1"、"into B1"、"to cell B1" """
    match = _TARGET_RE.search(text)
    return match.group(1).replace("$", "").upper() if match else None


def extract_cells(text: str) -> List[str]:
    """提取区域之外的单元格引用（按出现顺序）"""
    without_ranges = _RANGE_RE.sub(" ", text)
    return [m.replace("$", "").upper() for m in _CELL_RE.findall(without_ranges)]


def extract_color(text: str, default: Optional[str] = "yellow") -> Optional[str]:
    match = _COLOR_RE.search(text)
    return match.group(1).lower() if match else default


def extract_number(pattern: str, text: str) -> Optional[float]:
    """返回 pattern 中第一个捕获到的数值"""
    match = re.search(pattern, text, re.I)
    if not match:
        return None
    groups = [g for g in match.groups() if g is not None]
    return float(groups[0]) if groups else None


def normalize_condition(text: str) -> str:
    """将 "A1 greater than 90" 一类的条件规范化为 "A1>90" """
    result = text.strip()
    for phrase, op in _CONDITION_PHRASES:
        result = re.sub(rf"\s*\b(?:is\s+)?(?:{phrase})\b\s*", op, result, flags=re.I)
    # 单引号文本改为公式中的双引号
    return re.sub(r"'([^']*)'", r'"\1"', result)


def parse_condition(text: str) -> Tuple[Optional[str], str]:
    """
    解析过滤/格式条件

    Returns:
        (列标识或字段名，条件字符串)；列部分为 value/cell 时返回 None

    Examples:
        "value > 100"      -> (None, ">100")
        "B >= 10"          -> ("B", ">=10")
        "Status is paid"   -> ("Status", "paid")
        "name contains ab" -> ("name", "*ab*")
    """
    normalized = normalize_condition(text)
    match = _CONDITION_RE.match(normalized)
    if not match:
        return None, normalized.strip().strip("\"'")
    column, op, value = match.groups()
    value = value.strip().strip("\"'")
    column = column.strip().strip("\"'") if column else None
    if column and column.lower() in ("value", "values", "cell", "cells"):
        column = None
    op = op.lower()
    if op == "contains":
        return column, f"*{value}*"
    if op in ("=", "=="):
        return column, value
    if op == "!=":
        op = "<>"
    return column, f"{op}{value}"


def formula_literal(token: str) -> str:
    """将命令中的参数转为公式字面量：单元格和数值原样，其余加引号"""
    token = token.strip()
    if re.fullmatch(_CELL, token) or re.fullmatch(_RANGE, token):
        return token.replace("$", "").upper()
    if to_number(token) is not None:
        return token
    if token.upper() in ("TRUE", "FALSE"):
        return token.upper()
    text = token.strip("\"'")
    return '"' + text.replace('"', '""') + '"'


def _missing(parameter: str, example: str) -> CommandResult:
    return CommandResult.failure(f'Missing {parameter}. Example: "{example}"')


# ==================== 规则表 ====================


@dataclass(frozen=True)
class CommandRule:
    """
    命令规则

    Attributes:
        name: 规则名（classify 的返回值）
        predicate: 接收小写命令文本，判断是否匹配
        handler: CommandInterpreter 上处理方法的名称
    """

    name: str
    predicate: Callable[[str], bool]
    handler: str


def _matches(pattern: str) -> Callable[[str], bool]:
    regex = re.compile(pattern, re.I)
    return lambda text: bool(regex.search(text))


_FINANCIAL_RE = re.compile(
    r"\b(?:pmt|fv|pv)\b|\bloan\b|\bmortgage\b|\bmonthly\s+payments?\b|\binterest\s+rate\b"
    r"|\bfuture\s+value\b|\bpresent\s+value\b",
    re.I,
)
_GENERIC_VERB_RE = re.compile(r"\b(?:sum|total|average|mean|avg|count|min|max)\b", re.I)


def _is_financial(text: str) -> bool:
    """贷款/终值/现值计算；对显式区域做通用聚合的命令不算"""
    if not _FINANCIAL_RE.search(text):
        return False
    return not (_GENERIC_VERB_RE.search(text) and _RANGE_RE.search(text))


COMMAND_RULES: Tuple[CommandRule, ...] = (
    # 直接录入
    CommandRule("apply_formula", _matches(r"\b(?:apply|set|put|insert|enter|add)\s+(?:a\s+)?formula\b"), "_handle_apply_formula"),
    CommandRule("enter_data", _matches(r"\b(?:add|enter|input|insert)\s+data\b|\b(?:set|put|enter)\s+value\b"), "_handle_enter_data"),
    # 具名函数
    CommandRule("vlookup", _matches(r"vlookup|\blookup\b.*\bvertical|\bfind\b.*\btable\b"), "_handle_vlookup"),
    CommandRule("hlookup", _matches(r"hlookup|\blookup\b.*\bhorizontal"), "_handle_hlookup"),
    CommandRule("index_match", _matches(r"index[\s/-]*match|\bindex\b.*\bmatch\b"), "_handle_index_match"),
    CommandRule("conditional_aggregate", _matches(r"sumifs?|countifs?|averageifs?"), "_handle_conditional"),
    CommandRule("ifs", _matches(r"\bifs\b|\bcategori[sz]e\b|multiple\s+conditions|\belse\s+if\b"), "_handle_ifs"),
    CommandRule("if", _matches(r"\bif\b.*\b(?:then|else)\b"), "_handle_if"),
    CommandRule("concatenate", _matches(r"concatenate|\bconcat\b|\bcombine\b|\bjoin\b"), "_handle_concatenate"),
    CommandRule("text", _matches(r"\b(?:upper|uppercase|lower|lowercase|trim|len|length|left|right|mid|substring|extract)\b"), "_handle_text"),
    CommandRule("date", _matches(r"\b(?:today|now|datedif)\b|\bdays\s+between\b|\b(?:year|month|day)\s+(?:of|from)\b|\bdate\s*\(|\badd\s+\d+\s+days\b"), "_handle_date"),
    CommandRule("financial", _is_financial, "_handle_financial"),
    CommandRule("statistical", _matches(r"median|\bmode\b|standard\s+deviation|\bstdev\b|variance|\bvar\b"), "_handle_statistical"),
    CommandRule("logical", _matches(r"\blogical\b|\b(?:and|or|not)\s*\("), "_handle_logical"),
    # 分析、查询与透视
    CommandRule("correlation", _matches(r"correlat"), "_handle_correlation"),
    CommandRule("trend", _matches(r"\btrends?\b"), "_handle_trend"),
    CommandRule("outliers", _matches(r"outlier|anomal"), "_handle_outliers"),
    CommandRule("quality", _matches(r"\bquality\b|\bduplicates\b|missing\s+values"), "_handle_quality"),
    CommandRule("forecast", _matches(r"forecast|predict"), "_handle_forecast"),
    CommandRule("distribution", _matches(r"distribution|histogram"), "_handle_distribution"),
    CommandRule("ranking", _matches(r"\b(?:top|bottom)\s+\d+\b|\b(?:top|bottom)\b.*\bby\b"), "_handle_ranking"),
    CommandRule("comparison", _matches(r"\bcompare\b|\bvs\.?(?!\w)|\bversus\b|\bcompared\s+to\b"), "_handle_comparison"),
    CommandRule("pivot", _matches(r"\bpivot\b|group\s+by|summari[sz]e\s+by"), "_handle_pivot"),
    CommandRule("analyze", _matches(r"analy[sz]e|analysis|insights?\b|statistics"), "_handle_analyze"),
    # 通用动词
    CommandRule("sum", _matches(r"\bsum\b|\btotal\b|add\s+up"), "_handle_sum"),
    CommandRule("average", _matches(r"average|\bmean\b|\bavg\b"), "_handle_average"),
    CommandRule("count", _matches(r"\bcounta?\b|how\s+many"), "_handle_count"),
    CommandRule("min_max", _matches(r"\b(?:min|max|minimum|maximum|smallest|largest|lowest|highest)\b"), "_handle_min_max"),
    # 结构操作
    CommandRule("sort", _matches(r"\bsort\b"), "_handle_sort"),
    CommandRule("filter", _matches(r"\bfilter\b"), "_handle_filter"),
    CommandRule("copy", _matches(r"\bcopy\b"), "_handle_copy"),
    CommandRule("clear", _matches(r"\bclear\b|\berase\b"), "_handle_clear"),
    # 单元格/区域操作
    CommandRule("insert_row", _matches(r"\b(?:insert|add)\s+(?:a\s+)?row\b"), "_handle_insert_row"),
    CommandRule("insert_column", _matches(r"\b(?:insert|add)\s+(?:a\s+)?column\b"), "_handle_insert_column"),
    CommandRule("delete_row", _matches(r"\b(?:delete|remove)\s+row\b"), "_handle_delete_row"),
    CommandRule("delete_column", _matches(r"\b(?:delete|remove)\s+column\b"), "_handle_delete_column"),
    CommandRule("merge_cells", _matches(r"\bmerge\b"), "_handle_merge"),
    CommandRule("select_range", _matches(r"\bselect\b"), "_handle_select"),
    CommandRule("calculate_range", _matches(r"\bcalculate\b"), "_handle_calculate"),
    # 格式
    CommandRule("formatting", _matches(r"\bformat|highlight|colou?r|background|\bbold\b"), "_handle_formatting"),
)

UNRECOGNIZED_MESSAGE = (
    'Command not recognized. Try commands like "sum A1:A10 in cell B1", '
    '"vlookup A2 in table D1:E10 column 2 exact", "sort range A1:B10 descending", '
    '"highlight range A1:A10 where value > 100 in red", "analyze data", "top 5 by Amount" or '
    '"pivot by Region sum of Amount".'
)


# ==================== 解释器 ====================


class CommandInterpreter:
    """
    命令解释器

    只读访问单元格集合，修改以 cell_updates / formatting 的形式返回给调用方。
    """

    def __init__(self, cells: CellCollection, settings: Optional[Settings] = None):
        self.cells = cells
        self.settings = settings or default_settings
        self.resolver = AddressResolver(self.settings.MAX_RANGE_CELLS)
        self.evaluator = FormulaEvaluator(cells, resolver=self.resolver, settings=self.settings)

    def classify(self, command: str) -> Optional[str]:
        """返回第一个匹配的规则名，无匹配时返回 None"""
        rule = self._match_rule(command)
        return rule.name if rule else None

    def _match_rule(self, command: str) -> Optional[CommandRule]:
        text = command.lower().strip()
        for rule in COMMAND_RULES:
            if rule.predicate(text):
                return rule
        return None

    def interpret(self, command: str) -> CommandResult:
        """
        解释并执行命令，从不抛出异常

        Args:
            command: 自然语言命令

        Returns:
            CommandResult
        """
        if not isinstance(command, str) or not command.strip():
            return CommandResult.failure(UNRECOGNIZED_MESSAGE)

        rule = self._match_rule(command)
        if rule is None:
            logger.debug(f"无法识别的命令: {command!r}")
            return CommandResult.failure(UNRECOGNIZED_MESSAGE)

        logger.debug(f"命令 {command!r} 匹配规则 {rule.name}")
        try:
            return getattr(self, rule.handler)(command.strip())
        except (InvalidAddress, InvalidRange) as e:
            logger.warning(f"命令 {command!r} 参数无效: {e}")
            return CommandResult.failure(f"Invalid reference: {e}")
        except Exception as e:
            logger.exception(f"命令处理失败: {command!r}")
            return CommandResult.failure(f"Error: {e}")

    # ==================== 辅助方法 ====================

    def _value(self, label: str) -> Any:
        return self.evaluator.cell_value(label)

    def _bounds(self, range_label: str) -> Tuple[Address, Address]:
        return self.resolver.bounds(range_label, self.evaluator.max_row)

    def _addresses(self, range_label: str) -> List[Address]:
        return self.resolver.expand_range(range_label, self.evaluator.max_row)

    def _concrete(self, range_label: str) -> str:
        """整列区域转换为具体区域（A:A -> A1:A<最大行>）"""
        start, end = self._bounds(range_label)
        return f"{start.label}:{end.label}"

    def _formula_result(
        self,
        formula: str,
        target: Optional[str],
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> CommandResult:
        """求值公式模板；指定结果单元格时返回公式单元格"""
        result = self.evaluator.evaluate(formula)
        if isinstance(result, ExcelError) and result == ERROR:
            return CommandResult.failure(f"Could not evaluate {formula}", formula=formula)
        updates = None
        if target:
            address = parse_address(target)
            updates = {
                address.label: Cell.at(
                    address,
                    result,
                    formula=formula,
                    kind=CellKind.FORMULA,
                    dependencies=collect_references(parse_formula(formula)),
                )
            }
            message = f"{message} in {address.label}"
        return CommandResult(
            success=True,
            message=f"{message}. Result: {to_text(result)}",
            formula=formula,
            result=result,
            data=data,
            cell_updates=updates,
        )

    @staticmethod
    def _blank(address: Address) -> Cell:
        return Cell.at(address, None)

    @staticmethod
    def _moved(cell: Cell, address: Address) -> Cell:
        return dataclasses.replace(cell, id=address.label, row=address.row, col=address.col)

    # ==================== 直接录入 ====================

    def _handle_apply_formula(self, command: str) -> CommandResult:
        match = re.search(rf"(=[^'\"]+?)['\"]?\s*(?:\b(?:to|in|into|at)\s+(?:cell\s+)?({_CELL})\s*)?$", command, re.I)
        if not match:
            return _missing("formula", "apply formula =SUM(A1:A10) to cell B1")
        formula, target = match.group(1).strip(), match.group(2)
        if not target:
            return _missing("target cell", "apply formula =SUM(A1:A10) to cell B1")
        return self._formula_result(formula, target.upper(), f"Applied formula {formula}")

    def _handle_enter_data(self, command: str) -> CommandResult:
        match = re.search(
            rf"\b(?:value|data|text)\s+['\"]?(.+?)['\"]?\s+(?:in|into|to|at)\s+(?:cell\s+)?({_CELL})\b",
            command,
            re.I,
        )
        if not match:
            if not extract_target_cell(command):
                return _missing("cell", "enter data 42 in cell A1")
            return _missing("value", "enter data 42 in cell A1")
        raw, label = match.group(1).strip(), match.group(2)
        number = to_number(raw)
        value: Any = raw
        if number is not None:
            value = int(number) if float(number).is_integer() and "." not in raw else number
        address = parse_address(label)
        cell = Cell.at(address, value, kind=infer_kind(value))
        return CommandResult(
            success=True,
            message=f"Entered {to_text(value)} in {address.label}",
            result=value,
            cell_updates={address.label: cell},
        )

    # ==================== 具名函数 ====================

    @staticmethod
    def _lookup_value(command: str) -> Optional[str]:
        match = re.search(
            r"\b(?:vlookup|hlookup|lookup|find|match|search\s+for)\s+(?:value\s+|for\s+)?(\"[^\"]*\"|'[^']*'|[^\s,]+)",
            command,
            re.I,
        )
        if not match:
            return None
        token = match.group(1)
        if token.lower() in ("in", "from", "table", "the", "vertical", "horizontal", "range", "value"):
            return None
        return token

    def _handle_vlookup(self, command: str) -> CommandResult:
        return self._lookup(command, "VLOOKUP", r"\bcolumn\s+(\d+)", "column")

    def _handle_hlookup(self, command: str) -> CommandResult:
        return self._lookup(command, "HLOOKUP", r"\brow\s+(\d+)", "row")

    def _lookup(self, command: str, func: str, index_pattern: str, axis: str) -> CommandResult:
        example = f"{func.lower()} A2 in table D1:F10 {axis} 2 exact in cell B2"
        match = re.search(rf"\btable\s+({_RANGE})", command, re.I)
        table = re.sub(r"[\s$]", "", match.group(1)).upper() if match else extract_range(command)
        if not table:
            return _missing("table range", example)
        lookup_value = self._lookup_value(command)
        if not lookup_value:
            return _missing("lookup value", example)
        index = extract_number(index_pattern, command)
        index = int(index) if index else 2
        exact = "FALSE" if re.search(r"\bexact\b", command, re.I) else "TRUE"
        formula = f"={func}({formula_literal(lookup_value)}, {table}, {index}, {exact})"
        mode = "exact" if exact == "FALSE" else "approximate"
        return self._formula_result(
            formula,
            extract_target_cell(command),
            f"Created {func} for {lookup_value} in {table}, {axis} {index}, {mode} match",
        )

    def _handle_index_match(self, command: str) -> CommandResult:
        example = "index match A2 in D1:D10 return E1:E10 in cell B2"
        return_match = re.search(rf"\breturn\s+(?:from\s+)?(?:range\s+)?({_RANGE}|[A-Za-z]{{1,3}}:[A-Za-z]{{1,3}})", command, re.I)
        lookup_match = re.search(rf"\b(?:in|from|within)\s+(?:range\s+)?({_RANGE}|[A-Za-z]{{1,3}}:[A-Za-z]{{1,3}})", command, re.I)
        if not return_match:
            return _missing("return range", example)
        if not lookup_match:
            return _missing("lookup range", example)
        value_match = re.search(rf"\bmatch\s+(?:value\s+|for\s+)?(\"[^\"]*\"|'[^']*'|[^\s,]+)", command, re.I)
        lookup_value = value_match.group(1) if value_match else None
        if not lookup_value or lookup_value.lower() in ("in", "from", "within"):
            return _missing("lookup value", example)
        return_range = re.sub(r"[\s$]", "", return_match.group(1)).upper()
        lookup_range = re.sub(r"[\s$]", "", lookup_match.group(1)).upper()
        formula = f"=INDEX({return_range}, MATCH({formula_literal(lookup_value)}, {lookup_range}, 0))"
        return self._formula_result(
            formula,
            extract_target_cell(command),
            f"Created INDEX/MATCH for {lookup_value} in {lookup_range} returning {return_range}",
        )

    def _handle_conditional(self, command: str) -> CommandResult:
        lowered = command.lower()
        if "averageif" in lowered:
            func = "AVERAGEIF"
        elif "countif" in lowered:
            func = "COUNTIF"
        else:
            func = "SUMIF"
        example = f'{func.lower()} range A1:A10 where ">5" sum range B1:B10 in cell C1'

        target_range_match = re.search(rf"\b(?:sum|average)\s+(?:range|from)\s+({_RANGE})", command, re.I)
        target_range = re.sub(r"[\s$]", "", target_range_match.group(1)).upper() if target_range_match else None
        ranges = [r for r in extract_ranges(command) if r != target_range]
        if not ranges:
            return _missing("range", example)
        criteria_match = re.search(
            r"\b(?:criteria|where|if|when)\s+(.+?)(?=\s+(?:sum|average)\s+(?:range|from)\b|\s+(?:in|into|to)\s+cell\b|$)",
            command,
            re.I,
        )
        if not criteria_match:
            return _missing("criteria", example)
        _, criteria = parse_condition(criteria_match.group(1))
        criteria_literal = criteria if to_number(criteria) is not None else '"' + criteria.replace('"', '""') + '"'

        args = [ranges[0], criteria_literal]
        if target_range and func != "COUNTIF":
            args.append(target_range)
        formula = f"={func}({', '.join(args)})"
        return self._formula_result(
            formula,
            extract_target_cell(command),
            f"Created {func} over {ranges[0]} where {criteria}",
        )

    _PAIR_RE = re.compile(
        r"\bif\s+(.+?)\s+then\s+(.+?)(?=\s+(?:else\s+)?if\b|\s+else\b|\s+(?:in|into|to)\s+cell\b|$)",
        re.I,
    )
    _ELSE_RE = re.compile(r"\belse\s+(?!if\b)(.+?)(?=\s+(?:in|into|to)\s+cell\b|$)", re.I)

    def _handle_ifs(self, command: str) -> CommandResult:
        pairs = self._PAIR_RE.findall(command)
        if not pairs:
            return _missing("conditions", 'ifs if A1>90 then "A" else if A1>80 then "B" else "F" in cell B1')
        args = []
        for condition, value in pairs:
            args.extend([normalize_condition(condition), formula_literal(value)])
        otherwise = self._ELSE_RE.search(command)
        if otherwise:
            args.extend(["TRUE", formula_literal(otherwise.group(1))])
        formula = f"=IFS({', '.join(args)})"
        return self._formula_result(formula, extract_target_cell(command), f"Created IFS with {len(pairs)} conditions")

    def _handle_if(self, command: str) -> CommandResult:
        pairs = self._PAIR_RE.findall(command)
        if not pairs:
            return _missing("condition", 'if A1>100 then "High" else "Low" in cell B1')
        condition, value = pairs[0]
        otherwise = self._ELSE_RE.search(command)
        else_value = formula_literal(otherwise.group(1)) if otherwise else '""'
        formula = f"=IF({normalize_condition(condition)}, {formula_literal(value)}, {else_value})"
        return self._formula_result(formula, extract_target_cell(command), "Created IF formula")

    def _handle_concatenate(self, command: str) -> CommandResult:
        target = extract_target_cell(command)
        refs = [c for c in extract_cells(command) if c != target]
        if len(refs) < 2:
            return _missing("cells to join", "concatenate A1 and B1 with space in cell C1")
        lowered = command.lower()
        if "comma" in lowered:
            separator = ", "
        elif "dash" in lowered:
            separator = " - "
        elif "no separator" in lowered or "without" in lowered:
            separator = ""
        else:
            separator = " "
        parts = []
        for i, ref in enumerate(refs):
            if i and separator:
                parts.append(f'"{separator}"')
            parts.append(ref)
        formula = f"=CONCATENATE({', '.join(parts)})"
        return self._formula_result(formula, target, f"Joined {' and '.join(refs)}")

    def _handle_text(self, command: str) -> CommandResult:
        target = extract_target_cell(command)
        refs = [c for c in extract_cells(command) if c != target]
        if not refs:
            return _missing("source cell", "uppercase A1 in cell B1")
        source = refs[0]
        lowered = command.lower()
        count = extract_number(r"(?:first|last)\s+(\d+)|(\d+)\s+(?:characters|chars|letters)", lowered)
        n = int(count) if count else 1

        if re.search(r"\bupper(?:case)?\b", lowered):
            formula = f"=UPPER({source})"
        elif re.search(r"\blower(?:case)?\b", lowered):
            formula = f"=LOWER({source})"
        elif re.search(r"\btrim\b", lowered):
            formula = f"=TRIM({source})"
        elif re.search(r"\b(?:len|length)\b", lowered):
            formula = f"=LEN({source})"
        elif re.search(r"\b(?:mid|middle|substring|extract)\b", lowered):
            start = extract_number(r"(?:position|start|from)\s+(\d+)", lowered)
            formula = f"=MID({source}, {int(start) if start else 1}, {n})"
        elif re.search(r"\b(?:right|last)\b", lowered):
            formula = f"=RIGHT({source}, {n})"
        else:
            formula = f"=LEFT({source}, {n})"
        return self._formula_result(formula, target, f"Created text formula for {source}")

    def _handle_date(self, command: str) -> CommandResult:
        target = extract_target_cell(command)
        refs = [c for c in extract_cells(command) if c != target]
        lowered = command.lower()

        if re.search(r"\bdays\s+between\b|\bdatedif\b|difference\s+between", lowered):
            if len(refs) < 2:
                return _missing("start and end cells", "days between A1 and B1 in cell C1")
            formula = f'=DATEDIF({refs[0]}, {refs[1]}, "D")'
        elif re.search(r"\badd\s+\d+\s+days\b", lowered):
            days = int(extract_number(r"\badd\s+(\d+)\s+days", lowered))
            if not refs:
                return _missing("date cell", "add 30 days to A1 in cell B1")
            formula = f"={refs[0]}+{days}"
        elif re.search(r"\b(year|month|day)\s+(?:of|from)\b", lowered):
            part = re.search(r"\b(year|month|day)\s+(?:of|from)\b", lowered).group(1).upper()
            if not refs:
                return _missing("date cell", f"{part.lower()} of A1 in cell B1")
            formula = f"={part}({refs[0]})"
        elif re.search(r"\bnow\b", lowered):
            formula = "=NOW()"
        else:
            formula = "=TODAY()"
        return self._formula_result(formula, target, "Created date formula")

    def _handle_financial(self, command: str) -> CommandResult:
        lowered = command.lower()
        rate = extract_number(r"(?:rate|interest)\s+(?:of\s+)?(\d+(?:\.\d+)?)", lowered)
        rate = rate / 100 if rate is not None else 0.05
        periods = extract_number(r"(?:periods|months|nper)\s+(\d+)|(?:over|for)\s+(\d+)\s+months", lowered)
        nper = int(periods) if periods else 36
        target = extract_target_cell(command)

        if re.search(r"\bfv\b|future\s+value", lowered):
            payment = extract_number(r"(?:payment|pmt)\s+(?:of\s+)?(\d+(?:\.\d+)?)", lowered) or 100
            formula = f"=FV({rate:g}/12, {nper}, {payment:g})"
            label = "future value"
        elif re.search(r"\bpv\b|present\s+value", lowered):
            payment = extract_number(r"(?:payment|pmt)\s+(?:of\s+)?(\d+(?:\.\d+)?)", lowered) or 100
            formula = f"=PV({rate:g}/12, {nper}, {payment:g})"
            label = "present value"
        else:
            principal = extract_number(r"(?:principal|loan|amount)\s+(?:of\s+)?(\d+(?:\.\d+)?)", lowered) or 10000
            formula = f"=PMT({rate:g}/12, {nper}, {principal:g})"
            label = "monthly payment"
        return self._formula_result(
            formula, target, f"Created {label} formula at {rate * 100:g}% over {nper} months"
        )

    def _handle_statistical(self, command: str) -> CommandResult:
        range_label = extract_range(command)
        lowered = command.lower()
        if "median" in lowered:
            func = "MEDIAN"
        elif re.search(r"\bmode\b", lowered):
            func = "MODE"
        elif "variance" in lowered or re.search(r"\bvar\b", lowered):
            func = "VAR"
        else:
            func = "STDEV"
        if not range_label:
            return _missing("range", f"{func.lower()} of A1:A10 in cell B1")
        formula = f"={func}({range_label})"
        return self._formula_result(formula, extract_target_cell(command), f"Created {func} for {range_label}")

    def _handle_logical(self, command: str) -> CommandResult:
        match = re.search(r"\b(and|or|not)\s*\((.+?)\)", command, re.I)
        if not match:
            match = re.search(rf"\blogical\s+(and|or|not)\s+(.+?){_TAIL_TARGET}", command, re.I)
        if not match:
            return _missing("conditions", "logical and A1>0, B1>0 in cell C1")
        func = match.group(1).upper()
        conditions = [normalize_condition(c) for c in match.group(2).split(",") if c.strip()]
        if not conditions:
            return _missing("conditions", "logical and A1>0, B1>0 in cell C1")
        if func == "NOT":
            conditions = conditions[:1]
        formula = f"={func}({', '.join(conditions)})"
        return self._formula_result(formula, extract_target_cell(command), f"Created {func} formula")

    # ==================== 分析与透视 ====================

    def _analytics(self) -> AnalyticsEngine:
        return AnalyticsEngine(self.settings)

    def _handle_analyze(self, command: str) -> CommandResult:
        report = self._analytics().analyze(self.cells)
        summary = report.summary
        return CommandResult(
            success=True,
            message=(
                f"Analyzed {summary.total_rows} rows and {summary.total_columns} columns "
                f"({len(summary.numeric_columns)} numeric, {len(summary.text_columns)} text, "
                f"{len(summary.date_columns)} date)"
            ),
            data=report.to_dict(),
        )

    def _handle_correlation(self, command: str) -> CommandResult:
        engine = self._analytics()
        table = engine.table(self.cells)
        numeric = engine.summarize(table).numeric_columns
        if len(numeric) < 2:
            return CommandResult.failure("Correlation needs at least two numeric columns")
        matrix = engine.correlations(table, numeric)
        best = None
        for i, a in enumerate(matrix.columns):
            for b in matrix.columns[i + 1:]:
                value = matrix.get(a, b)
                if best is None or abs(value) > abs(best[2]):
                    best = (a, b, value)
        return CommandResult(
            success=True,
            message=f"Strongest correlation: {best[0]} and {best[1]} ({best[2]:.3f})",
            data=dataclasses.asdict(matrix),
        )

    def _trends(self) -> list:
        engine = self._analytics()
        table = engine.table(self.cells)
        return engine.trends(table, engine.summarize(table).numeric_columns)

    def _handle_trend(self, command: str) -> CommandResult:
        trends = self._trends()
        if not trends:
            return CommandResult.failure(
                f"Trend analysis needs a numeric column with at least {self.settings.MIN_TREND_POINTS} values"
            )
        described = ", ".join(f"{t.column}: {t.trend}" for t in trends)
        return CommandResult(
            success=True,
            message=f"Trends - {described}",
            data={"trends": [dataclasses.asdict(t) for t in trends]},
        )

    def _handle_forecast(self, command: str) -> CommandResult:
        trends = self._trends()
        match = re.search(r"\b(?:for|of)\s+(?:column\s+)?['\"]?([\w ]+?)['\"]?\s*$", command, re.I)
        if match:
            wanted = match.group(1).strip().lower()
            selected = [t for t in trends if t.column.lower() == wanted]
            trends = selected or trends
        if not trends:
            return CommandResult.failure(
                f"Forecast needs a numeric column with at least {self.settings.MIN_TREND_POINTS} values"
            )
        forecasts = {t.column: t.forecast for t in trends}
        first = trends[0]
        return CommandResult(
            success=True,
            message=(
                f"Forecast for {first.column} over the next {len(first.forecast)} periods: "
                + ", ".join(f"{v:.2f}" for v in first.forecast)
            ),
            data={"forecasts": forecasts},
        )

    def _handle_outliers(self, command: str) -> CommandResult:
        engine = self._analytics()
        table = engine.table(self.cells)
        outliers = engine.outliers(table, engine.summarize(table).numeric_columns)
        total = sum(o.total for o in outliers)
        message = (
            f"Found {total} outliers in {len(outliers)} columns"
            if total
            else "No outliers found"
        )
        return CommandResult(
            success=True,
            message=message,
            data={"outliers": [dataclasses.asdict(o) for o in outliers]},
        )

    def _handle_quality(self, command: str) -> CommandResult:
        report = self._analytics().quality(self.cells)
        return CommandResult(
            success=True,
            message=(
                f"Data quality: {report['completeness'] * 100:.1f}% complete, "
                f"{report['missing_cells']} missing cells, {report['duplicate_rows']} duplicate rows"
            ),
            data=report,
        )

    def _handle_distribution(self, command: str) -> CommandResult:
        engine = self._analytics()
        table = engine.table(self.cells)
        distributions = engine.distributions(table, engine.summarize(table).numeric_columns)
        if not distributions:
            return CommandResult.failure("Distribution analysis needs at least one numeric column")
        return CommandResult(
            success=True,
            message=f"Computed distributions for {', '.join(d.column for d in distributions)}",
            data={"distributions": [dataclasses.asdict(d) for d in distributions]},
        )

    # ==================== 查询 ====================

    @staticmethod
    def _by_column(command: str) -> Optional[str]:
        match = re.search(r"\bby\s+(?:column\s+)?['\"]?([\w ]+?)['\"]?\s*$", command, re.I)
        return match.group(1).strip() if match else None

    @staticmethod
    def _mentioned(columns: List[str], command: str) -> Optional[str]:
        """命令中以完整单词出现的字段名（长名称优先，纯数字表头不参与）"""
        for column in sorted(columns, key=len, reverse=True):
            if to_number(column) is not None:
                continue
            if re.search(rf"(?<!\w){re.escape(column)}(?!\w)", command, re.I):
                return column
        return None

    def _handle_ranking(self, command: str) -> CommandResult:
        engine = self._analytics()
        table = engine.table(self.cells)
        numeric = engine.summarize(table).numeric_columns
        if not numeric:
            return CommandResult.failure("Ranking needs at least one numeric column")

        named = self._by_column(command)
        if named:
            column = table.find_column(named)
            if column not in numeric:
                return CommandResult.failure(
                    f'Unknown numeric column {named!r}. Example: "top 5 by {numeric[0]}". '
                    f'Numeric columns: {", ".join(numeric)}'
                )
        else:
            column = self._mentioned(numeric, command) or numeric[0]

        bottom = bool(re.search(r"\b(?:bottom|lowest|worst|smallest)\b", command, re.I))
        count_match = re.search(r"\b(?:top|bottom)\s+(\d+)\b", command, re.I)
        limit = int(count_match.group(1)) if count_match else 10

        values = table.numeric_column(column).dropna()
        ranked = values.sort_values(ascending=bottom, kind="mergesort").head(limit)
        df = table.get_data()
        records = []
        for position in ranked.index:
            record = {"row": table.row_numbers[position]}
            record.update(df.loc[position].to_dict())
            records.append(record)

        direction = "bottom" if bottom else "top"
        return CommandResult(
            success=True,
            message=f"Found {direction} {len(records)} records by {column}",
            data={"column": column, "direction": direction, "limit": limit, "records": records},
        )

    @staticmethod
    def _group_stats(values) -> Dict[str, float]:
        count = int(values.count())
        total = float(values.sum())
        return {"count": count, "sum": total, "average": total / count if count else 0.0}

    def _handle_comparison(self, command: str) -> CommandResult:
        example = "compare East vs West by Amount"
        match = re.search(
            r"['\"]?([\w.-]+)['\"]?\s+(?:vs\.?|versus|against|compared\s+to)\s+['\"]?([\w.-]+)['\"]?",
            command,
            re.I,
        ) or re.search(r"\bcompare\s+['\"]?([\w.-]+)['\"]?\s+(?:and|with|to)\s+['\"]?([\w.-]+)['\"]?", command, re.I)
        if not match:
            return _missing("values to compare", example)
        first, second = match.group(1).lower(), match.group(2).lower()

        engine = self._analytics()
        table = engine.table(self.cells)
        numeric = engine.summarize(table).numeric_columns

        # 同时包含两个值的第一列作为分类列
        category = None
        for column in table.columns:
            texts = {to_text(v).strip().lower() for v in table.non_empty(column)}
            if first in texts and second in texts:
                category = column
                break
        if category is None:
            return CommandResult.failure(f"No column contains both {first!r} and {second!r}")

        named = self._by_column(command)
        value_column = table.find_column(named) if named else next((c for c in numeric if c != category), None)
        if value_column is None or value_column not in numeric:
            return CommandResult.failure(
                f'Missing numeric column. Example: "{example}". Numeric columns: {", ".join(numeric)}'
            )

        labels = [to_text(v).strip().lower() for v in table.get_column(category)]
        values = table.numeric_column(value_column)
        left = self._group_stats(values[[label == first for label in labels]].dropna())
        right = self._group_stats(values[[label == second for label in labels]].dropna())
        difference = {k: left[k] - right[k] for k in left}
        percent = {k: (difference[k] / right[k] * 100 if right[k] else 0.0) for k in left}

        return CommandResult(
            success=True,
            message=(
                f"Compared {first} vs {second} by {value_column}: "
                f"sum {left['sum']:g} vs {right['sum']:g}, difference {difference['sum']:g}"
            ),
            data={
                "category_column": category,
                "value_column": value_column,
                "groups": {first: left, second: right},
                "difference": difference,
                "percent_difference": percent,
            },
        )

    _FIELD_STOP = r"(?=\s+(?:by|rows?|columns?|across|values?|sum|count|average|avg|mean|min|max|of|using)\b|$)"

    @classmethod
    def _fields(cls, pattern: str, command: str) -> List[str]:
        match = re.search(pattern + r"\s+([\w ,]+?)" + cls._FIELD_STOP, command, re.I)
        if not match:
            return []
        names = re.split(r"\s*,\s*|\s+and\s+", match.group(1).strip())
        return [n for n in names if n]

    def _handle_pivot(self, command: str) -> CommandResult:
        engine = PivotEngine(self.settings)
        fields = engine.available_fields(self.cells)
        example = "pivot by Region sum of Amount"

        rows = self._fields(r"\b(?:rows?|by|group\s+by|summari[sz]e\s+by)", command)
        columns = self._fields(r"\b(?:columns?|across)", command)
        values = self._fields(r"\b(?:values?|of)", command)
        if not rows and not columns:
            return CommandResult.failure(
                f'Missing pivot rows. Example: "{example}". Available fields: {", ".join(fields)}'
            )
        agg_match = re.search(r"\b(sum|count|average|avg|mean|min|max)\b", command, re.I)
        aggregation = agg_match.group(1).lower() if agg_match else "sum"
        aggregation = {"avg": "average", "mean": "average"}.get(aggregation, aggregation)

        config = PivotConfig(rows=rows, columns=columns, values=values, aggregation=aggregation)
        result = engine.pivot(self.cells, config)
        if not result.success:
            return CommandResult.failure(
                f'{result.summary.error}. Example: "{example}". Available fields: {", ".join(fields)}'
            )
        return CommandResult(
            success=True,
            message=(
                f"Pivot by {', '.join(rows + columns)}: {result.summary.total_rows} groups "
                f"({aggregation})"
            ),
            data=result.to_dict(),
        )

    # ==================== 通用动词 ====================

    def _named_column_range(self, command: str) -> Optional[str]:
        """命令中提到的表头 -> 该列的数据区域，如 "total Amount" -> "C2:C6" """
        table = SheetTable.from_cells(self.cells, evaluator=self.evaluator)
        if not table.row_numbers:
            return None
        column = self._mentioned(table.columns, command)
        if column is None:
            return None
        letter = column_number_to_letter(table.column_number(column))
        return f"{letter}{table.header_row + 1}:{letter}{table.row_numbers[-1]}"

    def _aggregate(self, command: str, func: str, example: str) -> CommandResult:
        range_label = extract_range(command) or self._named_column_range(command)
        if not range_label:
            return _missing("range", example)
        formula = f"={func}({range_label})"
        return self._formula_result(formula, extract_target_cell(command), f"Calculated {func} of {range_label}")

    def _handle_sum(self, command: str) -> CommandResult:
        return self._aggregate(command, "SUM", "sum A1:A10 in cell B1")

    def _handle_average(self, command: str) -> CommandResult:
        return self._aggregate(command, "AVERAGE", "average of A1:A10 in cell B1")

    def _handle_count(self, command: str) -> CommandResult:
        lowered = command.lower()
        func = "COUNTA" if re.search(r"non-?empty|filled|counta|not\s+blank", lowered) else "COUNT"
        return self._aggregate(command, func, "count A1:A10 in cell B1")

    def _handle_min_max(self, command: str) -> CommandResult:
        func = "MAX" if re.search(r"\b(?:max|maximum|largest|highest)\b", command, re.I) else "MIN"
        return self._aggregate(command, func, f"{func.lower()} of A1:A10 in cell B1")

    # ==================== 结构操作 ====================

    def _resolve_column(self, token: str, start: Address, end: Address) -> Tuple[Optional[int], bool]:
        """
        按表头名称或列标识定位区域内的列

        Returns:
            (列号，是否按表头名称匹配)；找不到时列号为 None
        """
        token = token.strip()
        for col in range(start.col, end.col + 1):
            title = to_text(self._value(Address(start.row, col).label)).strip().lower()
            if title and title == token.lower():
                return col, True
        if re.fullmatch(r"[A-Za-z]{1,3}", token):
            col = column_letter_to_number(token)
            if start.col <= col <= end.col:
                return col, False
        return None, False

    @staticmethod
    def _has_header(command: str) -> bool:
        return bool(re.search(r"\bheaders?\b", command, re.I))

    def _handle_sort(self, command: str) -> CommandResult:
        range_label = extract_range(command)
        if not range_label:
            return _missing("range", "sort range A1:B10 by column B descending")
        start, end = self._bounds(range_label)
        header = self._has_header(command)
        key_col = start.col
        by = re.search(
            r"\bby\s+(?:column\s+)?['\"]?([\w ]+?)['\"]?(?=\s+(?:asc|desc|ascending|descending|with|in)\b|\s*$)",
            command,
            re.I,
        )
        if by:
            key_col, by_name = self._resolve_column(by.group(1), start, end)
            if key_col is None:
                return CommandResult.failure(f"Sort column {by.group(1)!r} is not inside {range_label}")
            # 按表头名称排序时，首行是表头
            header = header or by_name
        descending = bool(re.search(r"\bdesc(?:ending)?\b|largest\s+first|z\s*-\s*a", command, re.I))

        first_row = start.row + 1 if header else start.row
        records = []
        for row in range(first_row, end.row + 1):
            records.append((row, self._value(Address(row, key_col).label)))

        # 空值总在最后
        filled = [r for r in records if not is_blank(r[1])]
        blanks = [r for r in records if is_blank(r[1])]
        filled.sort(key=lambda r: order_key(r[1]), reverse=descending)
        ordered = filled + blanks

        updates: Dict[str, Cell] = {}
        for offset, (source_row, _) in enumerate(ordered):
            dest_row = first_row + offset
            for col in range(start.col, end.col + 1):
                dest = Address(dest_row, col)
                source = self.cells.get(Address(source_row, col).label)
                updates[dest.label] = self._moved(source, dest) if source else self._blank(dest)

        order = "descending" if descending else "ascending"
        return CommandResult(
            success=True,
            message=f"Sorted {range_label} by column {Address(1, key_col).column_letter} ({order})",
            data={"range": range_label, "key_column": Address(1, key_col).column_letter, "order": order},
            cell_updates=updates,
        )

    def _handle_filter(self, command: str) -> CommandResult:
        example = "filter range A1:C10 where Amount > 100"
        range_label = extract_range(command)
        if not range_label:
            return _missing("range", example)
        condition = re.search(r"\b(?:where|if|when)\s+(.+)$", command, re.I)
        if not condition:
            return _missing("condition", example)
        start, end = self._bounds(range_label)
        column_token, criteria = parse_condition(condition.group(1))

        header = self._has_header(command)
        key_col = start.col
        if column_token:
            key_col, by_name = self._resolve_column(column_token, start, end)
            if key_col is None:
                return CommandResult.failure(f"Column {column_token!r} is not inside {range_label}")
            # 按表头名称过滤时，首行是表头
            header = header or by_name

        matcher = compile_criteria(criteria)
        first_row = start.row + 1 if header else start.row
        rows = []
        total = 0
        for row in range(first_row, end.row + 1):
            total += 1
            if matcher(self._value(Address(row, key_col).label)):
                rows.append({
                    "row": row,
                    "cells": {
                        Address(row, col).label: self._value(Address(row, col).label)
                        for col in range(start.col, end.col + 1)
                    },
                })
        return CommandResult(
            success=True,
            message=f"Filtered {range_label}: {len(rows)} of {total} rows match {criteria}",
            data={"range": range_label, "criteria": criteria, "rows": rows, "matched": len(rows), "total": total},
        )

    def _handle_copy(self, command: str) -> CommandResult:
        example = "copy A1:B3 to D1"
        source_match = re.search(rf"\bcopy\s+(?:range\s+|cells?\s+|from\s+)?({_RANGE}|{_CELL})", command, re.I)
        dest_match = re.search(rf"\b(?:to|into)\s+(?:cell\s+)?({_CELL})\b", command, re.I)
        if not source_match:
            return _missing("source range", example)
        if not dest_match:
            return _missing("destination cell", example)
        source = re.sub(r"[\s$]", "", source_match.group(1)).upper()
        if ":" not in source:
            source = f"{source}:{source}"
        start, _ = self._bounds(source)
        anchor = parse_address(dest_match.group(1))

        updates: Dict[str, Cell] = {}
        for address in self._addresses(source):
            dest = anchor.offset(address.row - start.row, address.col - start.col)
            cell = self.cells.get(address.label)
            updates[dest.label] = self._moved(cell, dest) if cell else self._blank(dest)
        return CommandResult(
            success=True,
            message=f"Copied {source} to {anchor.label}",
            data={"source": source, "destination": anchor.label},
            cell_updates=updates,
        )

    def _handle_clear(self, command: str) -> CommandResult:
        range_label = extract_range(command)
        if not range_label:
            cells = extract_cells(command)
            if not cells:
                return _missing("range", "clear range A1:B10")
            range_label = f"{cells[0]}:{cells[0]}"
        updates = {a.label: self._blank(a) for a in self._addresses(range_label)}
        return CommandResult(
            success=True,
            message=f"Cleared {range_label}",
            data={"range": range_label, "cleared": len(updates)},
            cell_updates=updates,
        )

    # ==================== 单元格/区域操作 ====================

    def _shift(self, moves: List[Tuple[Cell, Address]], vacated: List[Address]) -> Dict[str, Cell]:
        """先清空受影响的位置，再写入移动后的单元格（公式文本不改写）"""
        updates: Dict[str, Cell] = {a.label: self._blank(a) for a in vacated}
        for cell, dest in moves:
            updates[dest.label] = self._moved(cell, dest)
        return updates

    def _row_number(self, command: str) -> Optional[int]:
        match = re.search(r"\b(at|after|before)\s+(?:row\s+)?(\d+)\b|\brow\s+(\d+)\b", command, re.I)
        if not match:
            return None
        if match.group(2):
            row = int(match.group(2))
            return row + 1 if match.group(1).lower() == "after" else row
        return int(match.group(3))

    def _column_number(self, command: str) -> Optional[int]:
        match = re.search(
            r"\b(at|after|before)\s+(?:column\s+)?([A-Za-z]{1,3})\b(?!\d)"
            r"|\bcolumn\s+(?!(?:at|after|before)\b)([A-Za-z]{1,3})\b(?!\d)",
            command,
            re.I,
        )
        if not match:
            return None
        if match.group(2):
            col = column_letter_to_number(match.group(2))
            return col + 1 if match.group(1).lower() == "after" else col
        return column_letter_to_number(match.group(3))

    def _handle_insert_row(self, command: str) -> CommandResult:
        row = self._row_number(command)
        if not row or row < 1:
            return _missing("row number", "insert row at 5")
        affected = [c for c in self.cells.values() if c.row >= row]
        moves = [(c, Address(c.row + 1, c.col)) for c in affected]
        updates = self._shift(moves, [c.address for c in affected])
        return CommandResult(
            success=True,
            message=f"Inserted row at {row}",
            data={"row": row, "shifted": len(affected)},
            cell_updates=updates,
        )

    def _handle_insert_column(self, command: str) -> CommandResult:
        col = self._column_number(command)
        if not col:
            return _missing("column", "insert column at C")
        affected = [c for c in self.cells.values() if c.col >= col]
        moves = [(c, Address(c.row, c.col + 1)) for c in affected]
        updates = self._shift(moves, [c.address for c in affected])
        letter = Address(1, col).column_letter
        return CommandResult(
            success=True,
            message=f"Inserted column at {letter}",
            data={"column": letter, "shifted": len(affected)},
            cell_updates=updates,
        )

    def _handle_delete_row(self, command: str) -> CommandResult:
        row = self._row_number(command)
        if not row or row < 1:
            return _missing("row number", "delete row 5")
        affected = [c for c in self.cells.values() if c.row >= row]
        moves = [(c, Address(c.row - 1, c.col)) for c in affected if c.row > row]
        updates = self._shift(moves, [c.address for c in affected])
        return CommandResult(
            success=True,
            message=f"Deleted row {row}",
            data={"row": row, "shifted": len(moves)},
            cell_updates=updates,
        )

    def _handle_delete_column(self, command: str) -> CommandResult:
        col = self._column_number(command)
        if not col:
            return _missing("column", "delete column C")
        affected = [c for c in self.cells.values() if c.col >= col]
        moves = [(c, Address(c.row, c.col - 1)) for c in affected if c.col > col]
        updates = self._shift(moves, [c.address for c in affected])
        letter = Address(1, col).column_letter
        return CommandResult(
            success=True,
            message=f"Deleted column {letter}",
            data={"column": letter, "shifted": len(moves)},
            cell_updates=updates,
        )

    def _handle_merge(self, command: str) -> CommandResult:
        range_label = extract_range(command)
        if not range_label:
            return _missing("range", "merge cells A1:C1")
        addresses = self._addresses(range_label)
        anchor = addresses[0]
        # 合并后保留第一个非空值
        values = [self._value(a.label) for a in addresses]
        value = next((v for v in values if not is_blank(v)), None)
        updates = {a.label: self._blank(a) for a in addresses[1:]}
        existing = self.cells.get(anchor.label)
        updates[anchor.label] = (
            dataclasses.replace(self._moved(existing, anchor), value=value, formula=None, kind=infer_kind(value))
            if existing
            else Cell.at(anchor, value, kind=infer_kind(value))
        )
        current = existing.format if existing and existing.format else CellFormat()
        formatting = [FormattingUpdate(anchor.label, dataclasses.replace(current, alignment="center"))]
        return CommandResult(
            success=True,
            message=f"Merged {range_label}",
            result=value,
            data={"range": range_label, "anchor": anchor.label},
            cell_updates=updates,
            formatting=formatting,
        )

    def _handle_select(self, command: str) -> CommandResult:
        range_label = extract_range(command)
        if not range_label:
            return _missing("range", "select range A1:B10")
        expansion = self.resolver.expand_range_checked(range_label, self.evaluator.max_row)
        labels = [a.label for a in expansion.addresses]
        filled = [label for label in labels if not is_blank(self._value(label))]
        return CommandResult(
            success=True,
            message=f"Selected {range_label}: {len(labels)} cells, {len(filled)} with data",
            data={
                "range": range_label,
                "addresses": labels,
                "count": len(labels),
                "filled": len(filled),
                "total": expansion.total,
                "truncated": expansion.truncated,
            },
        )

    def _handle_calculate(self, command: str) -> CommandResult:
        range_label = extract_range(command)
        if not range_label:
            return _missing("range", "calculate range A1:A10")
        lowered = command.lower()
        func = "SUM"
        for keyword, name in (("average", "AVERAGE"), ("count", "COUNT"), ("min", "MIN"), ("max", "MAX")):
            if keyword in lowered:
                func = name
                break
        formula = f"={func}({range_label})"
        return self._formula_result(formula, extract_target_cell(command), f"Calculated {func} of {range_label}")

    # ==================== 格式 ====================

    def _handle_formatting(self, command: str) -> CommandResult:
        range_label = extract_range(command)
        if not range_label:
            return _missing("range", "highlight range A1:A10 where value > 100 in red")

        condition_match = re.search(
            r"\b(?:if|where|when)\s+(.+?)(?=\s+(?:with|using|in|as)\s+(?:(?:a|the)\s+)?(?:red|green|blue|yellow|orange|purple|bold|background|colou?r)\b|\s+(?:with|using)\b|$)",
            command,
            re.I,
        )
        matcher = None
        criteria = None
        if condition_match:
            _, criteria = parse_condition(condition_match.group(1))
            matcher = compile_criteria(criteria)

        bold = bool(re.search(r"\bbold\b", command, re.I))
        color = extract_color(command, default=None if bold else "yellow")
        changes: Dict[str, Any] = {}
        if color:
            changes["background_color"], changes["text_color"] = COLORS[color]
        if bold:
            changes["font_weight"] = "bold"

        formatting = []
        for address in self._addresses(range_label):
            value = self._value(address.label)
            if matcher is not None and (is_blank(value) or isinstance(value, ExcelError) or not matcher(value)):
                continue
            existing = self.cells.get(address.label)
            base = existing.format if existing and existing.format else CellFormat()
            formatting.append(FormattingUpdate(address.label, dataclasses.replace(base, **changes)))

        where = f" where {criteria}" if criteria else ""
        return CommandResult(
            success=True,
            message=f"Formatted {len(formatting)} cells in {range_label}{where}",
            data={"range": range_label, "criteria": criteria, "color": color, "bold": bold},
            formatting=formatting,
        )


def interpret(command: str, cells: CellCollection, settings: Optional[Settings] = None) -> CommandResult:
    """
    便捷函数：解释命令

    Returns:
        CommandResult（从不抛出异常）
    """
    try:
        return CommandInterpreter(cells, settings).interpret(command)
    except Exception as e:
        logger.exception(f"命令处理失败: {command!r}")
        return CommandResult.failure(f"Error: {e}")
