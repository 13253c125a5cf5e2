"""核心数据结构：Candle/IndicatorPoint/IndicatorDefinition/Position/ClosedTrade/PendingOrder。"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PositionSide(str, Enum):
    """持仓方向。"""

    LONG = "long"
    SHORT = "short"

    @property
    def direction(self) -> int:
        return 1 if self is PositionSide.LONG else -1

    @property
    def opposite(self) -> "PositionSide":
        return PositionSide.SHORT if self is PositionSide.LONG else PositionSide.LONG


class OrderType(str, Enum):
    """挂单类型。"""

    LIMIT = "limit"
    STOP = "stop"


class ExitReason(str, Enum):
    """平仓原因（用于成交记录与图表标记）。"""

    MANUAL = "manual"
    NETTING = "netting"
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


@dataclass(frozen=True)
class Candle:
    """K 线数据（time 为秒级 Unix 时间戳，即开盘时间）。"""

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @property
    def is_bullish(self) -> bool:
        return self.close >= self.open


@dataclass(frozen=True)
class IndicatorPoint:
    """指标序列上的一个点。"""

    time: int
    value: float


@dataclass(frozen=True)
class IndicatorDefinition:
    """指标定义（启动时创建，不可变）。"""

    id: str
    type: str
    period: int = 14
    source: str = "close"
    label: str | None = None
    color: str = "#38bdf8"
    line_width: int = 1
    overlay: bool = True

    @property
    def display_label(self) -> str:
        return self.label or f"{self.type.upper()} {self.period}"


@dataclass
class Position:
    """持仓（开仓后只允许部分平仓缩小 size/margin）。"""

    id: int
    side: PositionSide
    size: float
    entry_price: float
    entry_time: int
    margin: float
    leverage: float
    sl_price: float | None = None
    tp_price: float | None = None

    def unrealized_pnl(self, mark_price: float) -> float:
        return (mark_price - self.entry_price) * self.size * self.side.direction


@dataclass(frozen=True)
class ClosedTrade:
    """已平仓（或部分平仓）成交快照。"""

    id: int
    side: PositionSide
    size: float
    entry_price: float
    entry_time: int
    margin: float
    leverage: float
    sl_price: float | None
    tp_price: float | None
    exit_price: float
    exit_time: int
    pnl: float
    duration_seconds: int
    risk_reward: float | None
    exit_reason: ExitReason = ExitReason.MANUAL


@dataclass(frozen=True)
class PendingOrder:
    """挂单：成交前不占用资金。"""

    id: int
    side: PositionSide
    order_type: OrderType
    price: float
    size: float
    created_time: int
    sl_price: float | None = None
    tp_price: float | None = None


@dataclass(frozen=True)
class TradeMarker:
    """图表上的开平仓标记。"""

    id: str
    time: int
    position: str  # "aboveBar" / "belowBar"
    shape: str
    color: str
    text: str
