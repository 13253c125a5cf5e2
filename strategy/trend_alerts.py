"""趋势跟随提示标记（回调收复 / 突破）。

低周期 K 线上给出两类提示：
- PB：高周期 EMA 多头（空头）排列时，低周期回调触及 EMA 后收复 EMA20；
- BO：同样的趋势过滤下，收盘突破前 N 根的最高（最低）价。

两类提示各自有最小间隔；K 线振幅超过 `max_candle_atr * ATR` 的不提示，
可选要求成交量高于 20 均量。结果只用于图表标记，不参与下单。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import pandas as pd

from indicators.atr import ATRIndicator
from market_data.loader import candles_to_frame
from shared.models.models import Candle, IndicatorDefinition, TradeMarker

_TOUCH_EMA_COLUMNS = {"EMA20": "ema20", "EMA50": "ema50", "EMA100": "ema100"}


@dataclass(frozen=True)
class TrendAlertOptions:
    min_bars_between_alerts: int = 8
    use_strict_stack: bool = True
    pullback_touch_ema: str = "EMA50"
    breakout_lookback: int = 30
    atr_len: int = 14
    max_candle_atr: float = 1.2
    use_volume_filter: bool = False
    long_color: str = "#22c55e"
    short_color: str = "#ef4444"

    def __post_init__(self):
        if self.pullback_touch_ema not in _TOUCH_EMA_COLUMNS:
            raise ValueError(f"pullback_touch_ema must be one of {sorted(_TOUCH_EMA_COLUMNS)}")


def _ema(series: pd.Series, period: int) -> pd.Series:
    # adjust=False：首值作种子，之后 alpha=2/(period+1) 递推
    return series.ewm(span=period, adjust=False).mean()


def _is_number(value) -> bool:
    return value is not None and not (isinstance(value, float) and math.isnan(value))


def _prepare_ltf(candles: Sequence[Candle], options: TrendAlertOptions) -> pd.DataFrame:
    df = candles_to_frame(candles)
    df["ema20"] = _ema(df["close"], 20)
    df["ema50"] = _ema(df["close"], 50)
    df["ema100"] = _ema(df["close"], 100)
    df = ATRIndicator(IndicatorDefinition(id="atr", type="atr", period=options.atr_len)).compute(df)
    df["volume_sma20"] = df["volume"].rolling(20, min_periods=20).mean()
    lookback = max(1, int(options.breakout_lookback))
    df["prev_high"] = df["high"].shift(1).rolling(lookback, min_periods=1).max()
    df["prev_low"] = df["low"].shift(1).rolling(lookback, min_periods=1).min()
    df["prev_close"] = df["close"].shift(1)
    df["prev_ema20"] = df["ema20"].shift(1)
    return df


def _prepare_htf(candles: Sequence[Candle]) -> pd.DataFrame:
    df = candles_to_frame(candles)[["time", "close"]]
    out = pd.DataFrame({"time": df["time"], "h_close": df["close"]})
    for period in (20, 50, 100, 200):
        out[f"h{period}"] = _ema(df["close"], period)
    return out


def compute_trend_alert_markers(
    ltf_candles: Sequence[Candle],
    htf_candles: Sequence[Candle],
    options: TrendAlertOptions | None = None,
) -> list[TradeMarker]:
    options = options or TrendAlertOptions()
    if len(ltf_candles) < 3 or len(htf_candles) < 3:
        return []

    ltf = _prepare_ltf(ltf_candles, options)
    htf = _prepare_htf(htf_candles)
    # 每根低周期 K 线对齐到最近一根已开盘的高周期 K 线
    df = pd.merge_asof(ltf.sort_values("time"), htf.sort_values("time"), on="time", direction="backward")
    touch_col = _TOUCH_EMA_COLUMNS[options.pullback_touch_ema]

    markers: list[TradeMarker] = []
    last_pull: int | None = None
    last_break: int | None = None

    for i, row in enumerate(df.itertuples(index=False)):
        if i == 0:
            continue
        h_close, h20, h50, h100, h200 = row.h_close, row.h20, row.h50, row.h100, row.h200
        if not all(_is_number(v) for v in (h_close, h20, h50, h100, h200)):
            continue

        bull_loose = h_close > h200 and h20 > h50
        bear_loose = h_close < h200 and h20 < h50
        if options.use_strict_stack:
            bull_trend = bull_loose and h50 > h100 > h200
            bear_trend = bear_loose and h50 < h100 < h200
        else:
            bull_trend, bear_trend = bull_loose, bear_loose

        atr = row.atr
        if not _is_number(atr) or atr <= 0:
            continue
        size_ok = (row.high - row.low) <= options.max_candle_atr * atr
        if options.use_volume_filter:
            volume_ok = _is_number(row.volume_sma20) and row.volume > row.volume_sma20
        else:
            volume_ok = True
        filters_ok = size_ok and volume_ok

        touch = getattr(row, touch_col)
        touched_long = _is_number(touch) and row.low <= touch and row.close > touch
        touched_short = _is_number(touch) and row.high >= touch and row.close < touch
        cross_up = row.prev_close <= row.prev_ema20 and row.close > row.ema20
        cross_down = row.prev_close >= row.prev_ema20 and row.close < row.ema20

        reclaim_long = bull_trend and cross_up and touched_long and filters_ok
        reclaim_short = bear_trend and cross_down and touched_short and filters_ok
        breakout_long = _is_number(row.prev_high) and bull_trend and row.close > row.prev_high and filters_ok
        breakout_short = _is_number(row.prev_low) and bear_trend and row.close < row.prev_low and filters_ok

        can_pull = last_pull is None or i - last_pull >= options.min_bars_between_alerts
        can_break = last_break is None or i - last_break >= options.min_bars_between_alerts
        pull_long = reclaim_long and can_pull
        pull_short = reclaim_short and can_pull
        break_long = breakout_long and can_break
        break_short = breakout_short and can_break

        if pull_long or pull_short:
            last_pull = i
        if break_long or break_short:
            last_break = i

        time = int(row.time)
        if pull_long:
            markers.append(
                TradeMarker(f"pb-long-{time}", time, "belowBar", "arrowUp", options.long_color, "PB▲")
            )
        if pull_short:
            markers.append(
                TradeMarker(f"pb-short-{time}", time, "aboveBar", "arrowDown", options.short_color, "PB▼")
            )
        if break_long:
            markers.append(TradeMarker(f"bo-long-{time}", time, "belowBar", "circle", options.long_color, "BO"))
        if break_short:
            markers.append(TradeMarker(f"bo-short-{time}", time, "aboveBar", "circle", options.short_color, "BO"))

    return markers
