"""电子表格计算核心

    from sheetcore import build_cells, evaluate, interpret, analyze, pivot, PivotConfig

    cells = build_cells({"A1": 10, "A2": 20})
    evaluate("=SUM(A1:A2)", cells)          # 30
    interpret("sum A1:A2 in cell B1", cells)
"""

from sheetcore.engine import (
    CommandResult,
    PivotConfig,
    analyze,
    build_cells,
    cells_from_dict,
    cells_to_dict,
    evaluate,
    interpret,
    pivot,
)

__version__ = "0.1.0"

__all__ = [
    "CommandResult",
    "PivotConfig",
    "analyze",
    "build_cells",
    "cells_from_dict",
    "cells_to_dict",
    "evaluate",
    "interpret",
    "pivot",
]
