"""增量指标基类。

约定
----
- `calculate(history)`：全量重算，返回完整序列；
- `update(candle)`：只处理一根新 K 线（或正在形成的最后一根 K 线的修订），
  结果必须与对同一段历史调用 `calculate` 一致（浮点误差内）；
- `reset()`：清空全部状态。

同一根 K 线的判断只看时间戳：与最后一根相同 ⇒ 原地替换，更大 ⇒ 追加。
“跳跃”（一次多出多根 K 线）由调用方识别并改走 `calculate`。

子类只需实现 `_step(index)`：基于 index-1 及之前的滚动状态，计算 history[index]
的指标值并把该位置的状态追加到内部数组；以及 `_truncate(length)` 把内部数组截断到
给定长度。全量与增量走同一条 `_step` 路径，保证两者数值一致。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Sequence

import pandas as pd

from shared.models.models import Candle, IndicatorDefinition, IndicatorPoint
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("indicator")

SOURCE_FIELDS = ("open", "high", "low", "close")


class IndicatorKind(str, Enum):
    """支持的指标类型。"""

    SMA = "sma"
    EMA = "ema"
    ATR = "atr"
    RSI = "rsi"
    ADX = "adx"


class UpdateMode(Enum):
    """`update` 的两种语义。"""

    APPEND = "append"
    REPLACE_LAST = "replace_last"


def wilder(prev: float, value: float, period: int) -> float:
    """Wilder 平滑：平滑因子 1/period 的指数均线。"""
    return (prev * (period - 1) + value) / period


def true_range(current: Candle, prev: Candle | None) -> float:
    """真实波幅；首根 K 线只用 high-low。"""
    high_low = current.high - current.low
    if prev is None:
        return high_low
    return max(high_low, abs(current.high - prev.close), abs(current.low - prev.close))


class BaseIndicator(ABC):
    """增量指标抽象基类。"""

    kind: IndicatorKind

    def __init__(self, definition: IndicatorDefinition):
        if definition.period <= 0:
            raise ValueError(f"{definition.id}: period must be > 0")
        if definition.source not in SOURCE_FIELDS:
            raise ValueError(f"{definition.id}: unsupported source field {definition.source!r}")
        self.definition = definition
        self._history: list[Candle] = []
        self._series: list[IndicatorPoint] = []

    @property
    def id(self) -> str:
        return self.definition.id

    @property
    def period(self) -> int:
        return self.definition.period

    @property
    def history_length(self) -> int:
        return len(self._history)

    @property
    def series(self) -> list[IndicatorPoint]:
        return list(self._series)

    def source_value(self, candle: Candle) -> float:
        return float(getattr(candle, self.definition.source))

    def calculate(self, history: Sequence[Candle]) -> list[IndicatorPoint]:
        self.reset()
        self._history = list(history)
        self._series = self._on_calculate()
        return self.series

    def update(self, candle: Candle) -> IndicatorPoint | None:
        mode = self._resolve_mode(candle)
        if mode is None:
            return None

        if mode is UpdateMode.REPLACE_LAST:
            self._history[-1] = candle
            self._truncate(len(self._history) - 1)
        else:
            self._history.append(candle)

        value = self._step(len(self._history) - 1)
        if value is None:
            return None

        point = IndicatorPoint(time=candle.time, value=value)
        if self._series and self._series[-1].time == point.time:
            self._series[-1] = point
        else:
            self._series.append(point)
        return point

    def reset(self) -> None:
        self._history = []
        self._series = []
        self._truncate(0)

    def compute(self, df: pd.DataFrame) -> pd.DataFrame:
        """把指标序列按 time 对齐写入 df[definition.id]。"""
        for col in ("time", "open", "high", "low", "close"):
            if col not in df.columns:
                raise ValueError(f"{type(self).__name__} requires column: {col}")
        candles = [
            Candle(
                time=int(row.time),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(getattr(row, "volume", 0.0) or 0.0),
            )
            for row in df.itertuples(index=False)
        ]
        values = {p.time: p.value for p in self.calculate(candles)}
        df[self.id] = df["time"].map(values).astype(float)
        return df

    def _resolve_mode(self, candle: Candle) -> UpdateMode | None:
        if not self._history or candle.time > self._history[-1].time:
            return UpdateMode.APPEND
        if candle.time == self._history[-1].time:
            return UpdateMode.REPLACE_LAST
        _LOGGER.warning(
            "%s: 忽略早于最后一根 K 线的更新 (time=%s < %s)，需改走全量重算",
            self.id,
            candle.time,
            self._history[-1].time,
        )
        return None

    def _on_calculate(self) -> list[IndicatorPoint]:
        points: list[IndicatorPoint] = []
        for i, candle in enumerate(self._history):
            value = self._step(i)
            if value is not None:
                points.append(IndicatorPoint(time=candle.time, value=value))
        return points

    @abstractmethod
    def _step(self, index: int) -> float | None:
        """计算 history[index] 的指标值并记录该位置的滚动状态。"""

    @abstractmethod
    def _truncate(self, length: int) -> None:
        """把内部滚动状态截断到前 length 根 K 线。"""
