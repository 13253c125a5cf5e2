"""行情数据模块（market_data）。

该包聚合：
- 数据清单生成/读取（按 symbol/timeframe 组织的 CSV 路径）
- Binance kline CSV 解析与多文件合并
- 异步批量加载历史（文件读取放到线程池）
"""

from market_data.loader import (
    build_manifest,
    candles_to_frame,
    load_candles_from_csv,
    load_history,
    load_timeframe,
    parse_kline_rows,
    read_manifest,
    write_manifest,
)

__all__ = [
    "build_manifest",
    "write_manifest",
    "read_manifest",
    "parse_kline_rows",
    "load_candles_from_csv",
    "load_timeframe",
    "load_history",
    "candles_to_frame",
]
