"""K 线回放训练器统一命令行入口。

该模块提供单一入口 `main.py`，通过子命令驱动不同任务：

- `manifest`：扫描原始数据目录，生成数据清单（symbol/timeframe -> csv 路径）。
- `replay`：无界面回放。按配置加载历史、推进时钟、检查挂单/止盈止损并输出总结。
- `indicators`：对单个周期的完整历史计算指标并导出 CSV。
"""

from __future__ import annotations

import argparse
import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

from engine.session import ReplaySession
from indicators.registry import apply_indicators, build_definitions
from market_data.loader import (
    MANIFEST_FILENAME,
    build_manifest,
    candles_to_frame,
    load_history,
    read_manifest,
    write_manifest,
)
from shared.config.config_loader import load_config
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("cli")


@dataclass
class CliArgs:
    """定义命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (manifest/replay/indicators)
    """
    config: str
    task: str
    public_dir: str | None = None
    raw_subdir: str | None = None
    output: str | None = None
    max_steps: int | None = None  # 限制回放推进多少根就停止
    auto_trade: bool | None = None
    paced: bool = False  # 按 replay.playback_interval_ms 定时推进
    timeframe: str | None = None


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。

    Returns
    -------
    argparse.ArgumentParser
        配置好的参数解析器。
    """
    parser = argparse.ArgumentParser(prog="barreplay", description="K 线回放训练器")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/config.yml)",
        )

    # 允许 `python main.py --config ... replay`（全局）与 `python main.py replay --config ...`（子命令）
    _add_config_arg(parser, default="config/config.yml")

    sub = parser.add_subparsers(dest="task")

    p_manifest = sub.add_parser("manifest", help="生成数据清单")
    _add_config_arg(p_manifest, default=argparse.SUPPRESS)
    p_manifest.add_argument("--public-dir", type=str, default=None, help="静态数据根目录（默认: data.public_dir）")
    p_manifest.add_argument("--raw-subdir", type=str, default=None, help="原始 CSV 子目录（默认: data.raw_subdir）")
    p_manifest.add_argument("--output", type=str, default=None, help=f"输出路径 (默认: <public-dir>/{MANIFEST_FILENAME})")

    p_replay = sub.add_parser("replay", help="无界面回放")
    _add_config_arg(p_replay, default=argparse.SUPPRESS)
    p_replay.add_argument("--max-steps", type=int, default=None, help="最多推进多少根 K 线")
    p_replay.add_argument(
        "--auto-trade",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="按策略信号自动下单（默认读取配置）",
    )
    p_replay.add_argument("--paced", action="store_true", help="按 replay.playback_interval_ms 定时播放")

    p_ind = sub.add_parser("indicators", help="计算指标并导出 CSV")
    _add_config_arg(p_ind, default=argparse.SUPPRESS)
    p_ind.add_argument("--timeframe", type=str, default=None, help="周期（默认: replay.active_timeframe）")
    p_ind.add_argument("--output", type=str, default=None, help="CSV 输出路径（默认只返回行数）")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    parser = build_parser()
    ns = parser.parse_args(argv)
    task = ns.task or "replay"
    config = getattr(ns, "config", "config/config.yml")
    return CliArgs(
        config=str(config),
        task=task,
        public_dir=getattr(ns, "public_dir", None),
        raw_subdir=getattr(ns, "raw_subdir", None),
        output=getattr(ns, "output", None),
        max_steps=getattr(ns, "max_steps", None),
        auto_trade=getattr(ns, "auto_trade", None),
        paced=bool(getattr(ns, "paced", False)),
        timeframe=getattr(ns, "timeframe", None),
    )


def _run_manifest(args: CliArgs) -> dict[str, Any]:
    public_dir, raw_subdir = args.public_dir, args.raw_subdir
    if public_dir is None or raw_subdir is None:
        data_cfg = load_config(args.config).data
        public_dir = public_dir or data_cfg.public_dir
        raw_subdir = raw_subdir or data_cfg.raw_subdir
    public_dir = Path(public_dir)
    manifest = build_manifest(public_dir, raw_subdir)
    output = Path(args.output) if args.output else public_dir / MANIFEST_FILENAME
    write_manifest(manifest, output)
    _LOGGER.info("数据清单已写入 %s", output)
    return {"output": str(output), "symbols": sorted(manifest.keys())}


def _run_indicators(args: CliArgs) -> dict[str, Any]:
    cfg = load_config(args.config)
    timeframe = args.timeframe or cfg.replay.active_timeframe
    manifest = read_manifest(cfg.data.manifest)
    history = asyncio.run(load_history(manifest, cfg.symbol, [timeframe], root=cfg.data.public_dir))
    definitions = build_definitions(cfg.indicators)
    df = apply_indicators(candles_to_frame(history.get(timeframe, [])), definitions)
    if args.output:
        Path(args.output).parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(args.output, index=False)
        _LOGGER.info("指标已导出 %s (%s 行)", args.output, len(df))
    return {
        "timeframe": timeframe,
        "rows": len(df),
        "columns": list(df.columns),
        "labels": {d.id: d.display_label for d in definitions},
        "output": args.output,
    }


def _print_summary(summary: dict[str, Any]) -> None:
    table = Table(title="📊 回放总结", box=box.ROUNDED)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")
    for key, value in summary.items():
        if isinstance(value, float):
            text = f"{value:.4f}"
        elif isinstance(value, dict):
            text = json.dumps(value, ensure_ascii=False)
        else:
            text = str(value)
        table.add_row(key, text)
    Console().print(table)


def main(argv: list[str] | None = None) -> Any:
    """程序主入口。

    Parameters
    ----------
    argv:
        可选的参数列表；为 None 时读取 sys.argv。

    Returns
    -------
    Any
        对应子命令的返回结果（通常为 summary dict）。
    """
    args = parse_args(argv)

    # 1. manifest: 扫描原始数据目录
    if args.task == "manifest":
        return _run_manifest(args)

    # 2. replay: 无界面回放
    if args.task == "replay":
        result = ReplaySession(
            cfg_path=args.config, max_steps=args.max_steps, auto_trade=args.auto_trade, paced=args.paced
        ).run()
        _print_summary(result.summary)
        return result.summary

    # 3. indicators: 指标导出
    if args.task == "indicators":
        return _run_indicators(args)

    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
