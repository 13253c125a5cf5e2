from __future__ import annotations

import pytest

from engine.replay_engine import ReplayEngine
from engine.visibility import (
    VisibilityChange,
    classify_transition,
    find_closest_index,
    find_visible_end_index,
)
from indicators.registry import create_indicator
from shared.models.models import Candle, IndicatorDefinition

SMA3 = IndicatorDefinition(id="sma3", type="sma", period=3)
EMA3 = IndicatorDefinition(id="ema3", type="ema", period=3)
RSI3 = IndicatorDefinition(id="rsi3", type="rsi", period=3)


def _candle(t: int, close: float) -> Candle:
    return Candle(time=t, open=close - 0.5, high=close + 1, low=close - 1, close=close, volume=1.0)


def _hourly(n: int = 10, start: int = 0) -> list[Candle]:
    return [_candle(start + i * 3600, 100.0 + i * (1 if i % 3 else -2)) for i in range(n)]


def _quarterly(n: int = 40, start: int = 0) -> list[Candle]:
    return [_candle(start + i * 900, 100.0 + (i % 7) - 3) for i in range(n)]


def _engine(active: tuple[str, ...] = ("sma3",), timeframe: str = "1h") -> ReplayEngine:
    engine = ReplayEngine([SMA3, EMA3, RSI3], active_timeframe=timeframe, active_indicators=active)
    engine.load_history({"1h": _hourly(), "15m": _quarterly()})
    return engine


def test_find_visible_end_index():
    times = [0, 3600, 7200]
    assert find_visible_end_index(times, -1) == -1
    assert find_visible_end_index(times, 0) == 0
    assert find_visible_end_index(times, 3599) == 0
    assert find_visible_end_index(times, 3600) == 1
    assert find_visible_end_index(times, 99999) == 2
    assert find_visible_end_index([], 5) == -1


def test_find_closest_index_tie_goes_earlier():
    times = [0, 100, 200]
    assert find_closest_index(times, 50) == 0
    assert find_closest_index(times, 51) == 1
    assert find_closest_index(times, -500) == 0
    assert find_closest_index(times, 10_000) == 2
    assert find_closest_index([], 1) == -1


def test_classify_transition():
    a = _candle(0, 1.0)
    b = _candle(0, 2.0)
    assert classify_transition(3, 0) is VisibilityChange.EMPTY
    assert classify_transition(5, 3) is VisibilityChange.RESET
    assert classify_transition(3, 6) is VisibilityChange.JUMP
    assert classify_transition(3, 4) is VisibilityChange.STEP
    assert classify_transition(3, 3, a, b) is VisibilityChange.STEP
    assert classify_transition(3, 3, a, a) is VisibilityChange.UNCHANGED
    assert VisibilityChange.JUMP.needs_full_recompute
    assert not VisibilityChange.STEP.needs_full_recompute


def test_load_history_sets_clock_to_last_candle():
    engine = _engine()
    assert engine.clock == _hourly()[-1].time
    assert len(engine.visible_candles("1h")) == 10
    # 15m 最后三根 (9:15..9:45) 晚于时钟
    assert len(engine.visible_candles("15m")) == 37
    assert engine.timeframes == ["15m", "1h"]
    assert engine.total_candles == 10
    assert engine.min_time == 0 and engine.max_time == 9 * 3600


def test_set_replay_start_cuts_every_timeframe():
    engine = _engine()
    engine.set_replay_start(3600)
    assert engine.clock == 3600
    assert len(engine.visible_candles("1h")) == 2
    assert engine.visible_candles("1h")[-1].time == 3600
    # 15m 同步到同一个时钟：0, 900, 1800, 2700, 3600
    assert len(engine.visible_candles("15m")) == 5

    engine.set_replay_start(-10_000)
    assert engine.clock == 0
    engine.set_replay_start(10**9)
    assert engine.clock == 9 * 3600


def test_advance_steps_one_native_interval_and_stops_at_end():
    engine = _engine()
    engine.set_replay_start(0)
    assert engine.advance() is True
    assert engine.clock == 3600
    assert len(engine.visible_candles()) == 2

    engine.jump_to_index(9)
    assert engine.advance() is False
    assert engine.clock == 9 * 3600


def test_monotonic_visibility_with_sub_bar_clock():
    engine = _engine(timeframe="15m")
    engine.set_replay_start(450)
    lengths = [len(engine.visible_candles("1h"))]
    while engine.advance():
        lengths.append(len(engine.visible_candles("1h")))
    for prev, cur in zip(lengths, lengths[1:]):
        assert cur - prev in (0, 1)


def test_jump_to_index_and_timestamp():
    engine = _engine()
    assert engine.jump_to_index(4) is True
    assert engine.clock == 4 * 3600
    assert engine.jump_to_index(10) is False
    assert engine.jump_to_index(-1) is False
    assert engine.clock == 4 * 3600

    engine.jump_to_timestamp(2 * 3600 + 1800)  # 距离相同取更早
    assert engine.clock == 2 * 3600
    engine.jump_to_timestamp(2 * 3600 + 1801)
    assert engine.clock == 3 * 3600
    engine.jump_to_timestamp(10**9)
    assert engine.clock == 9 * 3600


def test_master_index():
    engine = _engine()
    engine.set_replay_start(3600 + 10)
    assert engine.master_index == 2
    engine.set_replay_start(3600)
    assert engine.master_index == 1
    engine.jump_to_index(9)
    assert engine.master_index == 9


def test_set_active_timeframe_clamps_clock():
    engine = ReplayEngine([SMA3], active_timeframe="1h")
    engine.load_history({"1h": _hourly(10), "15m": _quarterly(8, start=3600)})
    engine.set_replay_start(0)
    assert engine.set_active_timeframe("15m") is True
    assert engine.clock == 3600
    assert engine.active_timeframe == "15m"
    assert engine.set_active_timeframe("4h") is False


def test_indicator_series_follow_clock_through_all_transitions():
    engine = _engine(active=("sma3", "ema3", "rsi3"))
    hourly = _hourly()

    def _expected(defn: IndicatorDefinition, n: int):
        return create_indicator(defn).calculate(hourly[:n])

    def _check(n: int):
        series = engine.visible_indicators("1h")
        for defn in (SMA3, EMA3, RSI3):
            got = series[defn.id]
            want = _expected(defn, n)
            assert [p.time for p in got] == [p.time for p in want]
            for g, w in zip(got, want):
                assert abs(g.value - w.value) < 1e-9

    engine.set_replay_start(0)  # 后退：全量
    _check(1)
    engine.advance()  # 单步：增量
    _check(2)
    engine.advance()
    engine.advance()
    _check(4)
    engine.jump_to_index(8)  # 向前跳：全量
    _check(9)
    engine.jump_to_index(3)  # 向后跳：全量
    _check(4)


def test_toggle_indicator():
    engine = _engine(active=())
    assert engine.visible_indicators("1h") == {}
    assert engine.toggle_indicator("ema3") is True
    assert engine.is_indicator_active("ema3")
    assert len(engine.visible_indicators("1h")["ema3"]) == 10
    assert [d.id for d in engine.active_indicator_definitions] == ["ema3"]

    assert engine.toggle_indicator("ema3") is True
    assert not engine.is_indicator_active("ema3")
    assert "ema3" not in engine.visible_indicators("1h")

    assert engine.toggle_indicator("nope") is False


def test_unknown_active_indicator_fails_fast():
    with pytest.raises(ValueError):
        ReplayEngine([SMA3], active_indicators=("missing",))


def test_bar_events_single_step_and_forward_jump():
    engine = _engine()
    engine.set_replay_start(0)
    seen: list[tuple[str, int]] = []
    unsubscribe = engine.subscribe(lambda tf, c: seen.append((tf, c.time)))

    engine.advance()
    assert seen == [("1h", 3600)]

    engine.jump_to_index(4)
    assert seen[1:] == [("1h", 7200), ("1h", 10800), ("1h", 14400)]

    seen.clear()
    engine.jump_to_index(1)  # 向后跳不推送
    engine.set_active_timeframe("15m")  # 切换周期不推送
    engine.load_history({"1h": _hourly(), "15m": _quarterly()})
    assert seen == []

    unsubscribe()
    engine.set_replay_start(0)
    engine.advance()
    assert seen == []


def test_load_history_drops_non_increasing_candles():
    engine = ReplayEngine([SMA3])
    candles = [_candle(0, 1.0), _candle(3600, 2.0), _candle(3600, 3.0), _candle(1800, 4.0), _candle(7200, 5.0)]
    engine.load_history({"1h": candles})
    assert [c.time for c in engine.visible_candles("1h")] == [0, 3600, 7200]


def test_upsert_candle_forming_bar():
    engine = _engine(active=("ema3",))
    seen: list[Candle] = []
    engine.subscribe(lambda tf, c: seen.append(c))

    forming = _candle(10 * 3600, 120.0)
    assert engine.upsert_candle("1h", forming) is True
    assert engine.clock == 10 * 3600
    assert engine.latest_bar("1h") == forming

    revised = _candle(10 * 3600, 125.0)
    assert engine.upsert_candle("1h", revised) is True
    assert engine.latest_bar("1h") == revised
    assert seen == [forming, revised]

    expected = create_indicator(EMA3).calculate(_hourly() + [revised])
    assert abs(engine.visible_indicators("1h")["ema3"][-1].value - expected[-1].value) < 1e-9

    assert engine.upsert_candle("1h", _candle(3600, 1.0)) is False
    assert engine.total_candles == 11


def test_empty_engine_commands_are_noops():
    engine = ReplayEngine([SMA3])
    assert engine.advance() is False
    assert engine.jump_to_index(0) is False
    assert engine.jump_to_timestamp(0) is False
    assert engine.set_replay_start(0) is False
    assert engine.visible_candles() == []
    assert engine.latest_bar() is None


def test_empty_active_timeframe_falls_back_to_shortest_with_data():
    engine = ReplayEngine([SMA3], active_timeframe="1h", active_indicators=("sma3",))
    engine.load_history({"1h": [], "4h": [], "15m": _quarterly(10)})
    assert engine.active_timeframe == "15m"
    assert engine.clock == 9 * 900
    assert engine.advance() is False
    assert engine.set_replay_start(0) is True
    assert engine.advance() is True
    assert engine.clock == 900


def test_all_timeframes_empty_keeps_active_timeframe():
    engine = ReplayEngine([SMA3], active_timeframe="1h")
    engine.load_history({"1h": [], "15m": []})
    assert engine.active_timeframe == "1h"
    assert engine.clock is None
