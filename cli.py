"""电子表格计算核心 - 命令行入口"""

import sys
import json
import logging
from typing import Dict, List

from dotenv import load_dotenv

from sheetcore.core.config import settings
from sheetcore.engine.analytics import analyze
from sheetcore.engine.evaluator import evaluate
from sheetcore.engine.interpreter import interpret
from sheetcore.engine.loader import SheetLoader
from sheetcore.engine.models import CellCollection, PivotConfig, to_plain, cells_to_dict
from sheetcore.engine.pivot import available_fields, pivot


def print_json(data) -> None:
    print(json.dumps(to_plain(data), indent=2, ensure_ascii=False))


def load_cells(file_path: str) -> CellCollection:
    """加载单元格文件，失败时退出"""
    try:
        cells = SheetLoader.load(file_path)
    except (FileNotFoundError, ValueError) as e:
        print(f"❌ 加载失败: {e}")
        sys.exit(1)
    print(f"📄 已加载 {file_path}: {len(cells)} 个单元格", file=sys.stderr)
    return cells


def parse_pivot_args(args: List[str]) -> PivotConfig:
    """
    解析透视参数

    Examples:
        rows=Region columns=Quarter values=Amount,Qty agg=average
    """
    options: Dict[str, List[str]] = {}
    aggregation = "sum"
    for arg in args:
        if "=" not in arg:
            raise ValueError(f"无效的参数: {arg}（应为 key=value）")
        key, value = arg.split("=", 1)
        key = key.strip().lower()
        if key in ("agg", "aggregation"):
            aggregation = value.strip()
        elif key in ("rows", "columns", "values"):
            options[key] = [v.strip() for v in value.split(",") if v.strip()]
        else:
            raise ValueError(f"未知的参数: {key}")
    return PivotConfig(
        rows=options.get("rows", []),
        columns=options.get("columns", []),
        values=options.get("values", []),
        aggregation=aggregation,
    )


def interactive(cells: CellCollection) -> None:
    """交互模式：以 "=" 开头的输入按公式求值，其余按命令解释并写回结果"""
    print("\n" + "=" * 60)
    print("💬 交互模式（输入 :cells 查看单元格，:fields 查看字段，:quit 退出）")
    print("=" * 60)

    while True:
        try:
            line = input("\n> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not line:
            continue
        if line in (":quit", ":q", "exit"):
            break
        if line == ":cells":
            print_json(cells_to_dict(cells))
            continue
        if line == ":fields":
            print(", ".join(available_fields(cells)) or "（无数据）")
            continue

        if line.startswith("="):
            print(f"= {to_plain(evaluate(line, cells))}")
            continue

        result = interpret(line, cells)
        icon = "✅" if result.success else "⚠️ "
        print(f"{icon} {result.message}")
        if result.formula:
            print(f"   公式: {result.formula}")
        if result.cell_updates:
            cells.update(result.cell_updates)
            print(f"   已更新 {len(result.cell_updates)} 个单元格")
        if result.formatting:
            for update in result.formatting:
                if update.cell_id in cells:
                    cells[update.cell_id].format = update.format
            print(f"   已设置 {len(result.formatting)} 个单元格的格式")


def print_usage() -> None:
    print("电子表格计算核心\n")
    print("用法:")
    print("  python cli.py eval <file> <formula>       求值公式")
    print("  python cli.py run <file> <command>        解释自然语言命令")
    print("  python cli.py analyze <file>              生成分析报告")
    print("  python cli.py pivot <file> rows=... [columns=...] [values=...] [agg=sum]")
    print("  python cli.py <file>                      交互模式")
    print("\n支持的文件: " + ", ".join(SheetLoader.SUPPORTED_SUFFIXES))
    print("\n示例:")
    print('  python cli.py eval data/sales.csv "=SUM(B2:B10)"')
    print('  python cli.py run data/sales.csv "average of B2:B10 in cell D1"')
    print("  python cli.py pivot data/sales.csv rows=Region values=Amount agg=sum")
    print("\n环境变量:")
    print("  SHEETCORE_LOG_LEVEL             - 日志级别（默认: INFO）")
    print("  SHEETCORE_MAX_RANGE_CELLS       - 单个区域最多展开的单元格数")
    print("  SHEETCORE_OUTLIER_Z_THRESHOLD   - 异常值 z 分数阈值（默认: 1.96）")


def main():
    """主函数"""
    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    args = sys.argv[1:]
    if not args or args[0] in ["-h", "--help"]:
        print_usage()
        return

    command = args[0]
    if command not in ("eval", "run", "analyze", "pivot"):
        interactive(load_cells(command))
        return

    if len(args) < 2:
        print_usage()
        sys.exit(1)
    cells = load_cells(args[1])

    if command == "eval":
        if len(args) < 3:
            print("❌ 缺少公式")
            sys.exit(1)
        print_json({"formula": args[2], "result": evaluate(args[2], cells)})

    elif command == "run":
        if len(args) < 3:
            print("❌ 缺少命令")
            sys.exit(1)
        result = interpret(" ".join(args[2:]), cells)
        print_json(result.to_dict())
        if not result.success:
            sys.exit(2)

    elif command == "analyze":
        print_json(analyze(cells).to_dict())

    elif command == "pivot":
        try:
            config = parse_pivot_args(args[2:])
        except ValueError as e:
            print(f"❌ 透视参数无效: {e}")
            sys.exit(1)
        result = pivot(cells, config)
        print_json(result.to_dict())
        if not result.success:
            print(f"❌ 透视失败: {result.summary.error}", file=sys.stderr)
            sys.exit(2)


if __name__ == "__main__":
    main()
