"""公式解析器 - 将公式文本解析为 JSON 风格的表达式并校验函数白名单

公式文本来自用户输入，解析器只接受数值、文本、逻辑值、单元格/区域引用、
白名单中的函数、运算符、括号和逗号，其余任何内容一律拒绝。
"""

import re
from typing import Any, Dict, List, Optional, Set, Tuple


class FormulaSyntaxError(ValueError):
    """公式语法错误"""


# ==================== 白名单定义 ====================

# 聚合函数
AGGREGATE_FUNCTIONS = {
    "SUM", "AVERAGE", "COUNT", "COUNTA", "MIN", "MAX", "MEDIAN",
    "MODE", "STDEV", "VAR",
}

# 条件聚合函数
CONDITIONAL_FUNCTIONS = {
    "SUMIF", "COUNTIF", "AVERAGEIF", "SUMIFS", "COUNTIFS",
}

# 查找函数
LOOKUP_FUNCTIONS = {"VLOOKUP", "HLOOKUP", "INDEX", "MATCH"}

# 逻辑函数
LOGICAL_FUNCTIONS = {"IF", "IFS", "AND", "OR", "NOT", "IFERROR"}

# 信息函数
INFO_FUNCTIONS = {"ISBLANK", "ISERROR", "ISNUMBER"}

# 文本函数
TEXT_FUNCTIONS = {
    "CONCATENATE", "CONCAT", "LEFT", "RIGHT", "MID",
    "UPPER", "LOWER", "TRIM", "LEN",
}

# 日期函数
DATE_FUNCTIONS = {"TODAY", "NOW", "DATE", "YEAR", "MONTH", "DAY", "DATEDIF"}

# 数值函数
MATH_FUNCTIONS = {"ROUND", "ROUNDUP", "ROUNDDOWN", "ABS"}

# 财务函数
FINANCIAL_FUNCTIONS = {"PMT", "FV", "PV"}

SUPPORTED_FUNCTIONS: Set[str] = (
    AGGREGATE_FUNCTIONS
    | CONDITIONAL_FUNCTIONS
    | LOOKUP_FUNCTIONS
    | LOGICAL_FUNCTIONS
    | INFO_FUNCTIONS
    | TEXT_FUNCTIONS
    | DATE_FUNCTIONS
    | MATH_FUNCTIONS
    | FINANCIAL_FUNCTIONS
)

# 二元运算符（Excel 风格：= 等于，<> 不等于，& 文本拼接）
BINARY_OPERATORS = {"+", "-", "*", "/", "^", "&", "=", "<>", "<", ">", "<=", ">="}

COMPARISON_OPERATORS = ("=", "<>", "<=", ">=", "<", ">")


# ==================== 词法分析 ====================

_TOKEN_SPEC = [
    ("WS", r"\s+"),
    ("STRING", r'"(?:[^"]|"")*"'),
    ("RANGE", r"\$?[A-Za-z]{1,3}\$?[0-9]+\s*:\s*\$?[A-Za-z]{1,3}\$?[0-9]+"),
    ("COLRANGE", r"\$?[A-Za-z]{1,3}\s*:\s*\$?[A-Za-z]{1,3}(?![A-Za-z0-9(])"),
    ("FUNC", r"[A-Za-z][A-Za-z0-9_.]*(?=\s*\()"),
    ("NUMBER", r"(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?"),
    ("BOOL", r"(?:TRUE|FALSE)(?![A-Za-z0-9_(])"),
    ("CELL", r"\$?[A-Za-z]{1,3}\$?[0-9]+(?![A-Za-z0-9_])"),
    ("OP", r"<=|>=|<>|[-+*/^&=<>%]"),
    ("LPAREN", r"\("),
    ("RPAREN", r"\)"),
    ("COMMA", r","),
]
_TOKEN_RE = re.compile("|".join(f"(?P<{name}>{pattern})" for name, pattern in _TOKEN_SPEC), re.IGNORECASE)

Token = Tuple[str, str]


def tokenize(text: str) -> List[Token]:
    """
    词法分析

    Raises:
        FormulaSyntaxError: 出现无法识别的字符或标识符
    """
    tokens: List[Token] = []
    pos = 0
    while pos < len(text):
        match = _TOKEN_RE.match(text, pos)
        if not match:
            raise FormulaSyntaxError(f"无法识别的内容: {text[pos:pos + 20]!r}")
        kind = match.lastgroup
        value = match.group()
        pos = match.end()
        if kind == "WS":
            continue
        tokens.append((kind, value))
    return tokens


# ==================== 语法分析 ====================


class _Parser:
    """递归下降解析器，输出 JSON 风格表达式"""

    def __init__(self, tokens: List[Token]):
        self.tokens = tokens
        self.pos = 0

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise FormulaSyntaxError("公式意外结束")
        self.pos += 1
        return token

    def _accept_op(self, *ops: str) -> Optional[str]:
        token = self._peek()
        if token and token[0] == "OP" and token[1] in ops:
            self.pos += 1
            return token[1]
        return None

    def _expect(self, kind: str) -> Token:
        token = self._next()
        if token[0] != kind:
            raise FormulaSyntaxError(f"期望 {kind}，实际为 {token[1]!r}")
        return token

    def parse(self) -> Dict[str, Any]:
        if not self.tokens:
            raise FormulaSyntaxError("空公式")
        expr = self._comparison()
        if self._peek() is not None:
            raise FormulaSyntaxError(f"多余的内容: {self._peek()[1]!r}")
        return expr

    def _binary(self, operand, ops: Tuple[str, ...]) -> Dict[str, Any]:
        left = operand()
        while True:
            op = self._accept_op(*ops)
            if op is None:
                return left
            left = {"op": op, "left": left, "right": operand()}

    def _comparison(self) -> Dict[str, Any]:
        return self._binary(self._concat, COMPARISON_OPERATORS)

    def _concat(self) -> Dict[str, Any]:
        return self._binary(self._additive, ("&",))

    def _additive(self) -> Dict[str, Any]:
        return self._binary(self._multiplicative, ("+", "-"))

    def _multiplicative(self) -> Dict[str, Any]:
        return self._binary(self._power, ("*", "/"))

    def _power(self) -> Dict[str, Any]:
        return self._binary(self._unary, ("^",))

    def _unary(self) -> Dict[str, Any]:
        op = self._accept_op("-", "+")
        if op == "-":
            return {"neg": self._unary()}
        if op == "+":
            return self._unary()
        expr = self._primary()
        while self._accept_op("%"):
            expr = {"op": "/", "left": expr, "right": {"value": 100}}
        return expr

    def _primary(self) -> Dict[str, Any]:
        kind, text = self._next()

        if kind == "NUMBER":
            number = float(text)
            if number.is_integer() and not any(c in text for c in ".eE"):
                return {"value": int(text)}
            return {"value": number}

        if kind == "STRING":
            return {"value": text[1:-1].replace('""', '"')}

        if kind == "BOOL":
            return {"value": text.upper() == "TRUE"}

        if kind == "CELL":
            return {"ref": text.replace("$", "").upper()}

        if kind in ("RANGE", "COLRANGE"):
            return {"range": re.sub(r"[\s$]", "", text).upper()}

        if kind == "FUNC":
            self._expect("LPAREN")
            return {"func": text.upper(), "args": self._arguments()}

        if kind == "LPAREN":
            expr = self._comparison()
            self._expect("RPAREN")
            return expr

        raise FormulaSyntaxError(f"意外的符号: {text!r}")

    def _arguments(self) -> List[Dict[str, Any]]:
        args: List[Dict[str, Any]] = []
        token = self._peek()
        if token and token[0] == "RPAREN":
            self.pos += 1
            return args
        while True:
            token = self._peek()
            if token and token[0] in ("COMMA", "RPAREN"):
                # 省略的参数
                args.append({"value": None})
            else:
                args.append(self._comparison())
            kind, text = self._next()
            if kind == "RPAREN":
                return args
            if kind != "COMMA":
                raise FormulaSyntaxError(f"参数列表中意外的符号: {text!r}")


# ==================== 表达式验证器 ====================


class ExpressionValidator:
    """
    表达式验证器 - 递归验证表达式结构和函数白名单

    用于在解析阶段就发现不支持的函数，而不是等到执行时才报错。
    """

    def __init__(self, allowed_functions: Set[str]):
        """
        初始化验证器

        Args:
            allowed_functions: 允许的函数集合
        """
        self.allowed_functions = allowed_functions

    def validate(self, expr: Any, prefix: str = "") -> List[str]:
        """
        验证表达式

        Args:
            expr: 表达式对象
            prefix: 错误信息前缀

        Returns:
            错误列表
        """
        errors: List[str] = []
        self._validate_recursive(expr, errors, prefix)
        return errors

    def _validate_recursive(self, expr: Any, errors: List[str], prefix: str):
        """递归验证表达式"""
        if not isinstance(expr, dict):
            return

        # 验证函数调用
        if "func" in expr:
            func_name = expr["func"].upper()
            if func_name not in self.allowed_functions:
                errors.append(f"{prefix}不支持的函数: {func_name}")

            # 递归验证参数
            for i, arg in enumerate(expr.get("args", [])):
                self._validate_recursive(arg, errors, f"{prefix}{func_name} 参数 {i + 1}: ")

        # 验证二元运算
        if "op" in expr:
            if expr["op"] not in BINARY_OPERATORS:
                errors.append(f"{prefix}不支持的运算符: {expr['op']}")
            self._validate_recursive(expr.get("left"), errors, prefix)
            self._validate_recursive(expr.get("right"), errors, prefix)

        if "neg" in expr:
            self._validate_recursive(expr["neg"], errors, prefix)


def parse_formula(formula: str, allowed_functions: Optional[Set[str]] = None) -> Dict[str, Any]:
    """
    解析公式文本

    Args:
        formula: 公式文本，通常以 "=" 开头
        allowed_functions: 函数白名单（默认为全部支持的函数）

    Returns:
        JSON 风格表达式，如 {"func": "SUM", "args": [{"range": "A1:A3"}]}

    Raises:
        FormulaSyntaxError: 语法错误或使用了白名单之外的函数
    """
    if not isinstance(formula, str):
        raise FormulaSyntaxError(f"公式必须是字符串: {formula!r}")
    text = formula.strip()
    if text.startswith("="):
        text = text[1:]

    expr = _Parser(tokenize(text)).parse()

    validator = ExpressionValidator(allowed_functions or SUPPORTED_FUNCTIONS)
    errors = validator.validate(expr)
    if errors:
        raise FormulaSyntaxError("; ".join(errors))
    return expr


def collect_references(expr: Any) -> List[str]:
    """收集表达式中引用的单元格和区域（按出现顺序，去重）"""
    found: List[str] = []

    def walk(node: Any):
        if not isinstance(node, dict):
            return
        for key in ("ref", "range"):
            if key in node and node[key] not in found:
                found.append(node[key])
        for arg in node.get("args", []):
            walk(arg)
        walk(node.get("left"))
        walk(node.get("right"))
        walk(node.get("neg"))

    walk(expr)
    return found
