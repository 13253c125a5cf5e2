"""历史 K 线加载（Binance kline CSV + 数据清单）。

目录约定
--------
    <public_dir>/<raw_subdir>/<SYMBOL>/<TIMEFRAME>/**/*.csv

清单（manifest）格式：`{symbol: {timeframe: [相对 public_dir 的 csv 路径, ...]}}`，
路径统一用 `/` 分隔并排序。

CSV 行格式：`open_time_ms, open, high, low, close, volume, ...`，首行为表头。
"""

from __future__ import annotations

import asyncio
import csv
import json
import math
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import pandas as pd

from shared.models.models import Candle
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("loader")

Manifest = dict[str, dict[str, list[str]]]

DEFAULT_RAW_SUBDIR = "data/raw"
MANIFEST_FILENAME = "data-manifest.json"


def _parse_number(value: str | None) -> float | None:
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    try:
        parsed = float(text)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def _safe_iterdir(path: Path) -> list[Path]:
    try:
        return sorted(path.iterdir())
    except OSError as exc:
        _LOGGER.warning("无法读取目录 %s: %s", path, exc)
        return []


def _collect_csv_files(directory: Path, public_dir: Path) -> list[str]:
    files: list[str] = []
    for entry in _safe_iterdir(directory):
        if entry.is_dir():
            files.extend(_collect_csv_files(entry, public_dir))
        elif entry.is_file() and entry.name.lower().endswith(".csv"):
            files.append(entry.relative_to(public_dir).as_posix())
    return files


def build_manifest(public_dir: str | Path, raw_subdir: str = DEFAULT_RAW_SUBDIR) -> Manifest:
    """扫描原始数据目录生成清单；没有 csv 的周期不出现在清单里。"""
    public_dir = Path(public_dir)
    raw_dir = public_dir / raw_subdir
    if not raw_dir.is_dir():
        raise FileNotFoundError(f"Data directory not found: {raw_dir}")

    manifest: Manifest = {}
    for symbol_dir in _safe_iterdir(raw_dir):
        if not symbol_dir.is_dir():
            continue
        for tf_dir in _safe_iterdir(symbol_dir):
            if not tf_dir.is_dir():
                continue
            files = _collect_csv_files(tf_dir, public_dir)
            if not files:
                continue
            manifest.setdefault(symbol_dir.name, {})[tf_dir.name] = sorted(files)
    return manifest


def write_manifest(manifest: Mapping[str, Mapping[str, Sequence[str]]], path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


def read_manifest(path: str | Path) -> Manifest:
    """读取清单；文件缺失或内容非法时记录错误并返回空清单。"""
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        _LOGGER.error("读取数据清单失败 %s: %s", path, exc)
        return {}
    if not isinstance(raw, dict):
        _LOGGER.error("数据清单格式不正确: %s", path)
        return {}
    manifest: Manifest = {}
    for symbol, timeframes in raw.items():
        if not isinstance(timeframes, dict):
            continue
        manifest[str(symbol)] = {
            str(tf): [str(p) for p in paths] for tf, paths in timeframes.items() if isinstance(paths, list)
        }
    return manifest


def parse_kline_rows(lines: Iterable[str]) -> list[Candle]:
    """解析 Binance kline CSV 文本行（第一行视为表头）。

    列数不足 6、或 open_time/open 不是数字的行直接跳过；
    high/low/close 解析失败时回落为 open，volume 回落为 0。
    """
    candles: list[Candle] = []
    reader = csv.reader(lines)
    for line_no, row in enumerate(reader):
        if line_no == 0 or len(row) < 6:
            continue
        time_ms = _parse_number(row[0])
        open_ = _parse_number(row[1])
        if time_ms is None or open_ is None:
            continue
        high = _parse_number(row[2])
        low = _parse_number(row[3])
        close = _parse_number(row[4])
        volume = _parse_number(row[5])
        candles.append(
            Candle(
                time=int(time_ms // 1000),
                open=open_,
                high=open_ if high is None else high,
                low=open_ if low is None else low,
                close=open_ if close is None else close,
                volume=0.0 if volume is None else volume,
            )
        )
    return candles


def load_candles_from_csv(path: str | Path) -> list[Candle]:
    with Path(path).open("r", newline="", encoding="utf-8") as f:
        return parse_kline_rows(f)


def merge_candles(chunks: Iterable[Sequence[Candle]]) -> list[Candle]:
    """拼接多段 K 线，按时间稳定排序；同一时间戳只保留最先出现的一根。"""
    merged = sorted((c for chunk in chunks for c in chunk), key=lambda c: c.time)
    result: list[Candle] = []
    for candle in merged:
        if result and result[-1].time == candle.time:
            continue
        result.append(candle)
    return result


def load_timeframe(paths: Iterable[str | Path]) -> list[Candle]:
    return merge_candles(load_candles_from_csv(p) for p in paths)


async def _load_file(path: Path) -> list[Candle]:
    try:
        return await asyncio.to_thread(load_candles_from_csv, path)
    except (OSError, UnicodeDecodeError) as exc:
        _LOGGER.error("加载 CSV 失败 %s: %s", path, exc)
        return []


async def load_history(
    manifest: Mapping[str, Mapping[str, Sequence[str]]],
    symbol: str,
    timeframes: Sequence[str] | None = None,
    root: str | Path = ".",
) -> dict[str, list[Candle]]:
    """并发加载某个品种的多个周期；读取失败的文件贡献空列表。"""
    root = Path(root)
    symbol_entry = manifest.get(symbol) or {}
    if not symbol_entry:
        _LOGGER.warning("数据清单中没有 %s", symbol)
    wanted = list(timeframes) if timeframes is not None else list(symbol_entry.keys())

    async def _load_tf(tf: str) -> tuple[str, list[Candle]]:
        paths = [root / p.lstrip("/") for p in symbol_entry.get(tf, [])]
        if not paths:
            _LOGGER.warning("%s %s 没有数据文件", symbol, tf)
        chunks = await asyncio.gather(*(_load_file(p) for p in paths))
        return tf, merge_candles(chunks)

    results = await asyncio.gather(*(_load_tf(tf) for tf in wanted))
    history = dict(results)
    _LOGGER.info("%s 历史加载完成: %s", symbol, {tf: len(c) for tf, c in history.items()})
    return history


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    columns = ["time", "open", "high", "low", "close", "volume"]
    if not candles:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame(
        {
            "time": [c.time for c in candles],
            "open": [c.open for c in candles],
            "high": [c.high for c in candles],
            "low": [c.low for c in candles],
            "close": [c.close for c in candles],
            "volume": [c.volume for c in candles],
        },
        columns=columns,
    )
