"""周期字符串解析（"15m" / "1h" / "1d" ...）。"""

from __future__ import annotations

import re

_UNIT_SECONDS: dict[str, int] = {
    "s": 1,
    "m": 60,
    "h": 3_600,
    "d": 86_400,
    "w": 604_800,
}

_TIMEFRAME_RE = re.compile(r"^(\d+)([smhdw])$")


def timeframe_to_seconds(tf: str) -> int:
    """返回一根 K 线的秒数；无法解析时抛 ValueError。

    单位大小写不敏感，唯独大写 "M"（月）不是固定秒数，直接拒绝，不当作分钟。
    """
    text = str(tf or "").strip()
    if text.endswith("M"):
        raise ValueError(f"Unsupported timeframe: {tf}. Monthly candles have no fixed length; use minutes as \"m\".")
    match = _TIMEFRAME_RE.match(text.lower())
    if not match:
        raise ValueError(f"Unsupported timeframe: {tf}. Expected <n><s|m|h|d|w>, e.g. 15m/1h/1d.")
    count = int(match.group(1))
    if count <= 0:
        raise ValueError(f"Unsupported timeframe: {tf}")
    return count * _UNIT_SECONDS[match.group(2)]


def sort_timeframes(timeframes: list[str]) -> list[str]:
    """按周期长短排序（短周期在前）。"""
    return sorted(timeframes, key=timeframe_to_seconds)
