from __future__ import annotations

import math

import pytest

from shared.config.schema import StrategyConfig
from shared.models.models import Candle, IndicatorPoint, Position, PositionSide, TradeMarker
from strategy.base import PatternType, StrategyAction, indicator_value
from strategy.golden_trend import GoldenTrendStrategy
from strategy.patterns import is_bearish_engulfing, is_bullish_engulfing, is_hammer, is_shooting_star
from strategy.registry import build_strategy, get_strategy_cls
from strategy.trend_alerts import TrendAlertOptions, compute_trend_alert_markers


def _c(t: int, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(time=t, open=o, high=h, low=l, close=c, volume=1.0)


def _series(*values: float) -> list[IndicatorPoint]:
    return [IndicatorPoint(time=i, value=v) for i, v in enumerate(values)]


def _long_setup():
    bias = [_c(0, 108, 111, 107, 110)]
    bias_ind = {"ema50": _series(104, 105), "ema200": _series(100, 100), "adx14": _series(30)}
    entry = [_c(0, 101, 101.5, 98.5, 99), _c(1, 98.5, 102.5, 97, 102)]
    entry_ind = {"ema20": _series(101), "ema50": _series(98), "rsi14": _series(40), "atr14": _series(1)}
    return bias, entry, bias_ind, entry_ind


def test_patterns():
    bearish = _c(0, 101, 101.5, 98.5, 99)
    bullish = _c(1, 98.5, 102.5, 97, 102)
    assert is_bullish_engulfing(bullish, bearish)
    assert not is_bullish_engulfing(bearish, bullish)
    assert is_bearish_engulfing(_c(1, 101.5, 103, 97.5, 98), _c(0, 99, 101.5, 98.5, 101))

    assert is_hammer(_c(0, 100, 101.2, 97, 101))
    assert not is_hammer(_c(0, 100, 103, 97, 101))
    assert is_shooting_star(_c(0, 101, 104, 99.9, 100))
    assert not is_shooting_star(_c(0, 100, 100, 100, 100))


def test_indicator_value_offsets():
    indicators = {"ema20": _series(1, 2, 3)}
    assert indicator_value(indicators, "ema20") == 3
    assert indicator_value(indicators, "ema20", 2) == 1
    assert indicator_value(indicators, "ema20", 3) is None
    assert indicator_value(indicators, "missing") is None
    assert indicator_value({}, "ema20") is None


def test_golden_trend_long_entry():
    signal = GoldenTrendStrategy().check_signals(*_long_setup())
    assert signal.action is StrategyAction.BUY
    assert signal.pattern is PatternType.BULLISH_ENGULFING
    assert abs(signal.stop_loss - 95.0) < 1e-9


def test_golden_trend_short_entry():
    bias = [_c(0, 92, 93, 89, 90)]
    bias_ind = {"ema50": _series(96, 95), "ema200": _series(100, 100), "adx14": _series(30)}
    entry = [_c(0, 99, 101.5, 98.5, 101), _c(1, 101.5, 103, 97.5, 98)]
    entry_ind = {"ema20": _series(99), "ema50": _series(102), "rsi14": _series(60), "atr14": _series(1)}

    signal = GoldenTrendStrategy().check_signals(bias, entry, bias_ind, entry_ind)
    assert signal.action is StrategyAction.SELL
    assert signal.pattern is PatternType.BEARISH_ENGULFING
    assert abs(signal.stop_loss - 105.0) < 1e-9


def test_golden_trend_filters():
    bias, entry, bias_ind, entry_ind = _long_setup()

    weak = dict(bias_ind, adx14=_series(20))
    assert GoldenTrendStrategy().check_signals(bias, entry, weak, entry_ind).action is StrategyAction.NONE

    narrowing = dict(bias_ind, ema50=_series(106, 105))
    assert GoldenTrendStrategy().check_signals(bias, entry, narrowing, entry_ind).action is StrategyAction.NONE

    overbought = dict(entry_ind, rsi14=_series(50))
    assert GoldenTrendStrategy().check_signals(bias, entry, bias_ind, overbought).action is StrategyAction.NONE
    assert GoldenTrendStrategy(rsi_long_max=55).check_signals(bias, entry, bias_ind, overbought).action is (
        StrategyAction.BUY
    )

    assert GoldenTrendStrategy().check_signals([], entry, bias_ind, entry_ind).action is StrategyAction.NONE
    assert GoldenTrendStrategy().check_signals(bias, entry[-1:], bias_ind, entry_ind).action is StrategyAction.NONE


def test_golden_trend_exit_on_profitable_long():
    bias, _, bias_ind, entry_ind = _long_setup()
    entry = [_c(0, 96, 97, 95, 96.5), _c(1, 96.5, 97, 94, 95)]
    indicators = dict(entry_ind, ema95=_series(96))
    position = Position(
        id=1, side=PositionSide.LONG, size=1, entry_price=90, entry_time=0, margin=18, leverage=5
    )

    signal = GoldenTrendStrategy().check_signals(bias, entry, bias_ind, indicators, [position])
    assert signal.action is StrategyAction.CLOSE_LONG

    losing = Position(id=2, side=PositionSide.LONG, size=1, entry_price=99, entry_time=0, margin=18, leverage=5)
    signal = GoldenTrendStrategy().check_signals(bias, entry, bias_ind, indicators, [losing])
    assert signal.action is not StrategyAction.CLOSE_LONG


def test_registry_and_build_strategy():
    assert get_strategy_cls("golden_trend") is GoldenTrendStrategy
    with pytest.raises(ValueError):
        get_strategy_cls("nope")

    assert isinstance(build_strategy(None), GoldenTrendStrategy)

    from_dict = build_strategy({"type": "golden_trend", "adx_threshold": 30, "unknown": 1})
    assert from_dict.adx_threshold == 30.0

    from_cfg = build_strategy(StrategyConfig.model_validate({"rsi_long_max": 40}))
    assert from_cfg.rsi_long_max == 40.0

    with pytest.raises(ValueError):
        build_strategy(42)


def _trend_history(n_htf: int = 260):
    htf = []
    for i in range(n_htf):
        close = 100 + i * 0.5
        htf.append(_c(i * 3600, close - 0.2, close + 0.4, close - 0.6, close))
    ltf = []
    for i in range(n_htf * 4):
        base = 100 + i * 0.125 + 1.5 * math.sin(i / 3.0)
        ltf.append(_c(i * 900, base - 0.1, base + 0.3, base - 0.3, base))
    return ltf, htf


def test_trend_alerts_markers_shape():
    ltf, htf = _trend_history()
    markers = compute_trend_alert_markers(ltf, htf, TrendAlertOptions(max_candle_atr=5.0))
    assert isinstance(markers, list)
    for marker in markers:
        assert isinstance(marker, TradeMarker)
        assert marker.id.startswith(("pb-long-", "pb-short-", "bo-long-", "bo-short-"))
        assert marker.text in ("PB▲", "PB▼", "BO")
    # 单调上升的高周期趋势下不会出现空头提示
    assert not any("short" in m.id for m in markers)

    times = [m.time for m in markers if m.id.startswith("bo-")]
    for a, b in zip(times, times[1:]):
        assert b - a >= 8 * 900


def test_trend_alerts_short_input_and_bad_options():
    assert compute_trend_alert_markers([_c(0, 1, 1, 1, 1)], [_c(0, 1, 1, 1, 1)]) == []
    with pytest.raises(ValueError):
        TrendAlertOptions(pullback_touch_ema="EMA30")
