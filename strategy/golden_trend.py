"""GoldenTrend 多周期趋势回调策略。

- 方向（高周期）：close 与 EMA50/EMA200 排列一致，ADX > 阈值，且 EMA50-EMA200 间距不收窄；
- 入场（低周期）：回调进价值区（触及 EMA50 且收在 EMA20 同侧），出现吞没/锤子线
  （空头为吞没/射击之星），RSI 回落到阈值以内；止损 = 极值 ∓ 2*ATR；
- 离场（低周期）：已有盈利持仓，收盘跌破（升破）EMA95 且本根为反向 K 线。
"""

from __future__ import annotations

from typing import Sequence

from shared.models.models import Candle, PositionSide
from strategy.base import (
    IndicatorSeries,
    PatternType,
    PositionSnapshot,
    Strategy,
    StrategyAction,
    StrategySignal,
    indicator_value,
)
from strategy.patterns import is_bearish_engulfing, is_bullish_engulfing, is_hammer, is_shooting_star


class GoldenTrendStrategy(Strategy):
    required_indicators = ("ema20", "ema50", "ema95", "ema200", "rsi14", "atr14", "adx14")

    def __init__(
        self,
        adx_threshold: float = 25.0,
        rsi_long_max: float = 45.0,
        rsi_short_min: float = 55.0,
        atr_stop_multiplier: float = 2.0,
    ):
        self.adx_threshold = float(adx_threshold)
        self.rsi_long_max = float(rsi_long_max)
        self.rsi_short_min = float(rsi_short_min)
        self.atr_stop_multiplier = float(atr_stop_multiplier)

    def check_signals(
        self,
        bias_candles: Sequence[Candle],
        entry_candles: Sequence[Candle],
        bias_indicators: IndicatorSeries,
        entry_indicators: IndicatorSeries,
        open_positions: Sequence[PositionSnapshot] = (),
    ) -> StrategySignal:
        if not bias_candles or len(entry_candles) < 2:
            return StrategySignal()

        bias_latest = bias_candles[-1]
        latest = entry_candles[-1]

        if self._should_exit(PositionSide.LONG, latest, entry_indicators, open_positions):
            return StrategySignal(action=StrategyAction.CLOSE_LONG)
        if self._should_exit(PositionSide.SHORT, latest, entry_indicators, open_positions):
            return StrategySignal(action=StrategyAction.CLOSE_SHORT)

        if self._has_bias(PositionSide.LONG, bias_latest, bias_indicators):
            entry = self._long_entry(entry_candles, entry_indicators)
            if entry is not None:
                return StrategySignal(action=StrategyAction.BUY, stop_loss=entry[0], pattern=entry[1])

        if self._has_bias(PositionSide.SHORT, bias_latest, bias_indicators):
            entry = self._short_entry(entry_candles, entry_indicators)
            if entry is not None:
                return StrategySignal(action=StrategyAction.SELL, stop_loss=entry[0], pattern=entry[1])

        return StrategySignal()

    def _has_bias(self, side: PositionSide, candle: Candle, indicators: IndicatorSeries) -> bool:
        ema50 = indicator_value(indicators, "ema50")
        ema200 = indicator_value(indicators, "ema200")
        adx = indicator_value(indicators, "adx14")
        if ema50 is None or ema200 is None or adx is None:
            return False

        prev_ema50 = indicator_value(indicators, "ema50", 1)
        prev_ema200 = indicator_value(indicators, "ema200", 1)
        prev_gap = prev_ema50 - prev_ema200 if prev_ema50 is not None and prev_ema200 is not None else None
        gap = ema50 - ema200

        if side is PositionSide.LONG:
            holding = prev_gap is None or gap >= prev_gap
            return candle.close > ema50 > ema200 and adx > self.adx_threshold and holding
        holding = prev_gap is None or gap <= prev_gap
        return candle.close < ema50 < ema200 and adx > self.adx_threshold and holding

    def _entry_inputs(self, indicators: IndicatorSeries) -> tuple[float, float, float, float] | None:
        values = tuple(indicator_value(indicators, i) for i in ("ema20", "ema50", "rsi14", "atr14"))
        if any(v is None for v in values):
            return None
        return values  # type: ignore[return-value]

    def _long_entry(
        self, candles: Sequence[Candle], indicators: IndicatorSeries
    ) -> tuple[float, PatternType] | None:
        inputs = self._entry_inputs(indicators)
        if inputs is None:
            return None
        ema20, ema50, rsi, atr = inputs
        latest, previous = candles[-1], candles[-2]

        in_value_zone = latest.low <= ema50 and latest.close >= ema20
        engulfing = is_bullish_engulfing(latest, previous)
        if not in_value_zone or not (engulfing or is_hammer(latest)) or not rsi < self.rsi_long_max:
            return None
        stop = max(0.0, latest.low - self.atr_stop_multiplier * atr)
        return stop, PatternType.BULLISH_ENGULFING if engulfing else PatternType.HAMMER

    def _short_entry(
        self, candles: Sequence[Candle], indicators: IndicatorSeries
    ) -> tuple[float, PatternType] | None:
        inputs = self._entry_inputs(indicators)
        if inputs is None:
            return None
        ema20, ema50, rsi, atr = inputs
        latest, previous = candles[-1], candles[-2]

        in_value_zone = latest.high >= ema50 and latest.close <= ema20
        engulfing = is_bearish_engulfing(latest, previous)
        if not in_value_zone or not (engulfing or is_shooting_star(latest)) or not rsi > self.rsi_short_min:
            return None
        stop = latest.high + self.atr_stop_multiplier * atr
        return stop, PatternType.BEARISH_ENGULFING if engulfing else PatternType.SHOOTING_STAR

    @staticmethod
    def _should_exit(
        side: PositionSide,
        latest: Candle,
        indicators: IndicatorSeries,
        open_positions: Sequence[PositionSnapshot],
    ) -> bool:
        ema95 = indicator_value(indicators, "ema95")
        if ema95 is None:
            return False
        if side is PositionSide.LONG:
            profitable = any(p.side == PositionSide.LONG and latest.close > p.entry_price for p in open_positions)
            return profitable and latest.close < ema95 and latest.close < latest.open
        profitable = any(p.side == PositionSide.SHORT and latest.close < p.entry_price for p in open_positions)
        return profitable and latest.close > ema95 and latest.close > latest.open
