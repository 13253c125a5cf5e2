"""回放引擎（ReplayEngine）。

职责
----
- 持有唯一的回放时钟（秒级时间戳），所有周期共享；
- 对每个周期维护“完整历史 → 可见切片”的投影，时钟变化时重新切片；
- 对每个启用的指标判定走增量 `update` 还是全量 `calculate`；
- 当前周期有新 K 线“被揭示”时，通知订阅者（交易引擎在这里检查挂单/止盈止损）。

事件规则
--------
- 单步前进 / 形成中 K 线被修订：推送该根 K 线；
- 向前跳跃：按时间顺序逐根推送新出现的 K 线；
- 向后跳、切换周期、加载历史、开关指标：不推送。
"""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from engine.visibility import (
    VisibilityChange,
    classify_transition,
    find_closest_index,
    find_visible_end_index,
)
from indicators.base import BaseIndicator
from indicators.registry import DEFAULT_DEFINITIONS, create_indicator
from shared.models.models import Candle, IndicatorDefinition, IndicatorPoint
from shared.utils.logging import setup_logger
from shared.utils.timeframes import sort_timeframes, timeframe_to_seconds

_LOGGER = setup_logger("replay")

DEFAULT_STEP_SECONDS = 3600

BarListener = Callable[[str, Candle], None]


@dataclass
class _TimeframeView:
    """单个周期的完整历史、可见长度以及该周期的指标实例。"""

    history: list[Candle] = field(default_factory=list)
    times: list[int] = field(default_factory=list)
    visible_len: int = 0
    last_visible: Candle | None = None
    instances: dict[str, BaseIndicator] = field(default_factory=dict)

    @property
    def min_time(self) -> int | None:
        return self.times[0] if self.times else None

    @property
    def max_time(self) -> int | None:
        return self.times[-1] if self.times else None


def _sanitize_history(timeframe: str, candles: Iterable[Candle]) -> list[Candle]:
    """保证时间严格递增；不满足的 K 线丢弃并告警。"""
    cleaned: list[Candle] = []
    dropped = 0
    for candle in candles:
        if cleaned and candle.time <= cleaned[-1].time:
            dropped += 1
            continue
        cleaned.append(candle)
    if dropped:
        _LOGGER.warning("%s: 丢弃 %s 根时间不递增的 K 线", timeframe, dropped)
    return cleaned


class ReplayEngine:
    def __init__(
        self,
        definitions: Sequence[IndicatorDefinition] | None = None,
        *,
        active_timeframe: str = "1h",
        active_indicators: Iterable[str] = (),
    ):
        self._definitions: dict[str, IndicatorDefinition] = {}
        for definition in definitions if definitions is not None else DEFAULT_DEFINITIONS:
            self._definitions[definition.id] = definition

        self._active_timeframe = active_timeframe
        self._clock: int | float | None = None
        self._views: dict[str, _TimeframeView] = {}
        self._active_ids: list[str] = []
        self._listeners: list[BarListener] = []

        for indicator_id in active_indicators:
            if not self.toggle_indicator(indicator_id):
                raise ValueError(f"Unknown indicator id: {indicator_id}")

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------
    @property
    def clock(self) -> int | float | None:
        return self._clock

    @property
    def active_timeframe(self) -> str:
        return self._active_timeframe

    @property
    def timeframes(self) -> list[str]:
        return sort_timeframes(self._views.keys())

    @property
    def min_time(self) -> int | None:
        return self._active_view().min_time

    @property
    def max_time(self) -> int | None:
        return self._active_view().max_time

    @property
    def total_candles(self) -> int:
        return len(self._active_view().history)

    @property
    def master_index(self) -> int:
        """当前周期中第一根 time >= clock 的下标；没有则为最后一根。"""
        view = self._active_view()
        if not view.times or self._clock is None:
            return 0
        return min(bisect_left(view.times, self._clock), len(view.times) - 1)

    @property
    def active_indicator_definitions(self) -> list[IndicatorDefinition]:
        return [self._definitions[i] for i in self._active_ids]

    @property
    def definitions(self) -> list[IndicatorDefinition]:
        return list(self._definitions.values())

    def is_indicator_active(self, indicator_id: str) -> bool:
        return indicator_id in self._active_ids

    def history(self, timeframe: str) -> list[Candle]:
        view = self._views.get(timeframe)
        return list(view.history) if view else []

    def visible_candles(self, timeframe: str | None = None) -> list[Candle]:
        view = self._views.get(timeframe or self._active_timeframe)
        if view is None:
            return []
        return view.history[: view.visible_len]

    def visible_indicators(self, timeframe: str | None = None) -> dict[str, list[IndicatorPoint]]:
        view = self._views.get(timeframe or self._active_timeframe)
        if view is None:
            return {}
        return {indicator_id: inst.series for indicator_id, inst in view.instances.items()}

    def latest_bar(self, timeframe: str | None = None) -> Candle | None:
        view = self._views.get(timeframe or self._active_timeframe)
        return view.last_visible if view else None

    def subscribe(self, listener: BarListener) -> Callable[[], None]:
        """注册“新 K 线被揭示”回调；返回取消订阅函数。"""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # 命令
    # ------------------------------------------------------------------
    def load_history(self, per_timeframe: Mapping[str, Iterable[Candle]]) -> None:
        """替换全部历史；时钟落在当前周期最后一根 K 线上。"""
        views: dict[str, _TimeframeView] = {}
        for timeframe, candles in per_timeframe.items():
            history = _sanitize_history(timeframe, candles)
            views[timeframe] = _TimeframeView(history=history, times=[c.time for c in history])
        self._views = views
        for view in self._views.values():
            view.instances = {i: create_indicator(self._definitions[i]) for i in self._active_ids}

        active = self._views.get(self._active_timeframe)
        if active is None or not active.history:
            # 只在有数据的周期里挑最短的；全部为空时保持原周期
            candidates = [tf for tf in self.timeframes if self._views[tf].history]
            if candidates:
                fallback = candidates[0]
                _LOGGER.warning("当前周期 %s 无数据，切换到 %s", self._active_timeframe, fallback)
                self._active_timeframe = fallback

        self._clock = self._active_view().max_time
        _LOGGER.info(
            "历史已加载: %s, clock=%s",
            {tf: len(v.history) for tf, v in self._views.items()},
            self._clock,
        )
        self._recompute(emit=False)

    def advance(self) -> bool:
        """时钟前进当前周期的一个原生间隔；越过最后一根 K 线时返回 False。"""
        view = self._active_view()
        if self._clock is None or view.max_time is None:
            return False
        try:
            step = timeframe_to_seconds(self._active_timeframe)
        except ValueError:
            _LOGGER.warning("无法解析周期 %s，按 %ss 步进", self._active_timeframe, DEFAULT_STEP_SECONDS)
            step = DEFAULT_STEP_SECONDS
        next_clock = self._clock + step
        if next_clock > view.max_time:
            return False
        self._clock = next_clock
        self._recompute(emit=True)
        return True

    def jump_to_index(self, index: int) -> bool:
        view = self._active_view()
        if isinstance(index, bool) or not isinstance(index, int):
            return False
        if index < 0 or index >= len(view.times):
            return False
        self._clock = view.times[index]
        self._recompute(emit=True)
        return True

    def jump_to_timestamp(self, timestamp: int | float) -> bool:
        """跳到 time 最接近 timestamp 的 K 线（距离相同取更早的一根）。"""
        view = self._active_view()
        idx = find_closest_index(view.times, timestamp)
        if idx < 0:
            return False
        self._clock = view.times[idx]
        self._recompute(emit=True)
        return True

    def set_replay_start(self, timestamp: int | float) -> bool:
        """时钟设为 timestamp 本身（可落在 K 线之间），越界时夹到 [min_time, max_time]。"""
        view = self._active_view()
        if view.min_time is None or view.max_time is None:
            return False
        self._clock = min(max(timestamp, view.min_time), view.max_time)
        self._recompute(emit=True)
        return True

    def set_active_timeframe(self, timeframe: str) -> bool:
        if timeframe not in self._views:
            _LOGGER.warning("未知周期: %s", timeframe)
            return False
        self._active_timeframe = timeframe
        view = self._views[timeframe]
        if view.min_time is not None and view.max_time is not None:
            if self._clock is None:
                self._clock = view.max_time
            else:
                self._clock = min(max(self._clock, view.min_time), view.max_time)
        self._recompute(emit=False)
        return True

    def toggle_indicator(self, indicator_id: str) -> bool:
        """启用/停用指标（所有周期同时生效）；未知 id 返回 False。"""
        definition = self._definitions.get(indicator_id)
        if definition is None:
            return False

        if indicator_id in self._active_ids:
            self._active_ids.remove(indicator_id)
            for view in self._views.values():
                view.instances.pop(indicator_id, None)
            return True

        # 先全部实例化，工厂抛错时不留下半启用状态
        fresh = {tf: create_indicator(definition) for tf in self._views}
        self._active_ids.append(indicator_id)
        for timeframe, instance in fresh.items():
            self._views[timeframe].instances[indicator_id] = instance
        self._recompute(emit=False)
        return True

    def upsert_candle(self, timeframe: str, candle: Candle) -> bool:
        """追加新 K 线或替换正在形成的最后一根（time 相同）。

        当前周期的时钟若停在最后一根 K 线上（跟随最新行情），追加后时钟随之前移。
        """
        view = self._views.get(timeframe)
        if view is None:
            view = _TimeframeView(instances={i: create_indicator(self._definitions[i]) for i in self._active_ids})
            self._views[timeframe] = view

        following_edge = (
            timeframe == self._active_timeframe
            and view.max_time is not None
            and self._clock is not None
            and self._clock >= view.max_time
        )

        if not view.history or candle.time > view.times[-1]:
            view.history.append(candle)
            view.times.append(candle.time)
        elif candle.time == view.times[-1]:
            view.history[-1] = candle
        else:
            _LOGGER.warning(
                "%s: 拒绝早于最后一根 K 线的更新 (time=%s < %s)", timeframe, candle.time, view.times[-1]
            )
            return False

        if timeframe == self._active_timeframe and (self._clock is None or following_edge):
            self._clock = view.max_time
        self._recompute(emit=True)
        return True

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------
    def _active_view(self) -> _TimeframeView:
        return self._views.get(self._active_timeframe) or _TimeframeView()

    def _recompute(self, *, emit: bool) -> None:
        for timeframe, view in self._views.items():
            revealed = self._refresh_view(view)
            if emit and timeframe == self._active_timeframe:
                for candle in revealed:
                    self._emit(timeframe, candle)

    def _refresh_view(self, view: _TimeframeView) -> list[Candle]:
        """重新切片并刷新指标，返回本次“被揭示”的 K 线（按时间顺序）。"""
        prev_len = view.visible_len
        prev_last = view.last_visible
        new_len = 0 if self._clock is None else find_visible_end_index(view.times, self._clock) + 1
        new_last = view.history[new_len - 1] if new_len > 0 else None
        change = classify_transition(prev_len, new_len, prev_last, new_last)

        for instance in view.instances.values():
            if change is VisibilityChange.EMPTY:
                instance.reset()
            elif change.needs_full_recompute or instance.history_length != prev_len:
                instance.calculate(view.history[:new_len])
            elif change is VisibilityChange.STEP and new_last is not None:
                instance.update(new_last)

        view.visible_len = new_len
        view.last_visible = new_last

        if change is VisibilityChange.STEP and new_len == prev_len and new_last is not None:
            return [new_last]
        if change in (VisibilityChange.STEP, VisibilityChange.JUMP) and new_len > prev_len:
            return view.history[prev_len:new_len]
        return []

    def _emit(self, timeframe: str, candle: Candle) -> None:
        for listener in list(self._listeners):
            listener(timeframe, candle)
