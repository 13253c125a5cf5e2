"""策略接口与信号类型。

策略只做“决策辅助”：读取 K 线与指标序列，给出建议动作，不直接下单。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Protocol, Sequence

from shared.models.models import Candle, IndicatorPoint, PositionSide

IndicatorSeries = Mapping[str, Sequence[IndicatorPoint]]


class StrategyAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    CLOSE_LONG = "CLOSE_LONG"
    CLOSE_SHORT = "CLOSE_SHORT"
    NONE = "NONE"


class PatternType(str, Enum):
    BULLISH_ENGULFING = "BULLISH_ENGULFING"
    HAMMER = "HAMMER"
    BEARISH_ENGULFING = "BEARISH_ENGULFING"
    SHOOTING_STAR = "SHOOTING_STAR"


@dataclass(frozen=True)
class StrategySignal:
    action: StrategyAction = StrategyAction.NONE
    stop_loss: float | None = None
    pattern: PatternType | None = None


class PositionSnapshot(Protocol):
    """策略只关心持仓方向和开仓价（Position 天然满足）。"""

    side: PositionSide
    entry_price: float


def indicator_value(indicators: IndicatorSeries, indicator_id: str, offset: int = 0) -> float | None:
    """取序列倒数第 offset+1 个值；缺失时返回 None。"""
    series = indicators.get(indicator_id) if indicators else None
    if not series:
        return None
    index = len(series) - 1 - offset
    if index < 0:
        return None
    return series[index].value


class Strategy(ABC):
    #: 策略需要的指标 id（回放会话据此自动启用）
    required_indicators: tuple[str, ...] = ()

    @abstractmethod
    def check_signals(
        self,
        bias_candles: Sequence[Candle],
        entry_candles: Sequence[Candle],
        bias_indicators: IndicatorSeries,
        entry_indicators: IndicatorSeries,
        open_positions: Sequence[PositionSnapshot] = (),
    ) -> StrategySignal:
        """输入高/低两个周期的可见 K 线与指标，输出一个建议动作。"""
        ...
