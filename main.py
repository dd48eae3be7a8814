"""均值回归交易引擎统一命令行入口。

该模块提供单一入口 `main.py`，通过子命令驱动不同任务：

- `runner`：实时/纸面/干跑主循环。按配置连接行情与交易所，执行策略。
- `check-config`：只加载并校验配置，不连接任何外部服务。
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from typing import Any

from engine.runner import run_runner
from shared.config.config_loader import load_config
from shared.errors import ValidationError


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (runner/check-config)
    """
    config: str
    task: str
    max_cycles: int | None = None  # 跑多少个周期后退出，None 表示一直运行


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。"""
    parser = argparse.ArgumentParser(prog="meanrev", description="均值回归现货交易引擎")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `python main.py --config ... runner`（全局）与 `python main.py runner --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_runner = sub.add_parser("runner", help="实盘/纸面/干跑主循环")
    _add_config_arg(p_runner, default=argparse.SUPPRESS)
    p_runner.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="跑多少个周期后退出（用于 dry-run/测试）",
    )

    p_check = sub.add_parser("check-config", help="校验配置文件")
    _add_config_arg(p_check, default=argparse.SUPPRESS)

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    parser = build_parser()
    ns = parser.parse_args(argv)
    task = ns.task or "runner"
    config = getattr(ns, "config", "config/config.yml")
    return CliArgs(
        config=str(config),
        task=task,
        max_cycles=getattr(ns, "max_cycles", None),
    )


def main(argv: list[str] | None = None) -> Any:
    """程序主入口。

    Returns
    -------
    Any
        runner 返回运行结束时的 summary dict；check-config 返回配置字典。

    Raises
    ------
    SystemExit
        配置错误时以退出码 2 结束。
    """
    args = parse_args(argv)

    try:
        if args.task == "runner":
            return run_runner(cfg_path=args.config, max_cycles=args.max_cycles)

        if args.task == "check-config":
            cfg = load_config(args.config)
            print(f"Config OK: {args.config} ({cfg.symbol}/{cfg.trading_symbol}, mode={cfg.mode})")
            return cfg.model_dump()
    except ValidationError as exc:
        print(f"Configuration error: {exc.message}", file=sys.stderr)
        raise SystemExit(2) from exc

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
