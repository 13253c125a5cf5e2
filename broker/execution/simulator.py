"""逐 K 线触发模拟器。

职责：只回答“这根 K 线会不会触发、按什么价成交”，不改账本。
- 止盈止损：用 high/low 影线判断是否触及；同一根 K 线两者都触及时，
  按 K 线方向推断先后（多头阳线先 SL 后 TP，阴线先 TP 后 SL；空头镜像）。
- 挂单：限价/止损单的触发条件，以及跳空时按开盘价成交的价格修正。
"""

from __future__ import annotations

from dataclasses import dataclass

from shared.models.models import Candle, ExitReason, OrderType, PendingOrder, Position, PositionSide

EPSILON = 1e-8


@dataclass(frozen=True)
class TriggerResult:
    price: float
    reason: ExitReason


class BarTriggerSimulator:
    """OHLC 级别的简化撮合：不模拟盘口，不区分 K 线内部路径。"""

    def __init__(self, *, epsilon: float = EPSILON):
        self.epsilon = float(epsilon)

    def evaluate_bracket(self, position: Position, candle: Candle) -> TriggerResult | None:
        """返回该持仓在本根 K 线上第一个触发的止损/止盈；都未触发返回 None。"""
        checks = self._bracket_checks(position, candle)
        for hit, price, reason in checks:
            if price is not None and hit(price):
                return TriggerResult(price=float(price), reason=reason)
        return None

    def should_trigger(self, order: PendingOrder, candle: Candle) -> bool:
        if order.side is PositionSide.LONG:
            if order.order_type is OrderType.LIMIT:
                return candle.low <= order.price
            return candle.high >= order.price
        if order.order_type is OrderType.LIMIT:
            return candle.high >= order.price
        return candle.low <= order.price

    def fill_price(self, order: PendingOrder, candle: Candle) -> float:
        """挂单成交价：开盘已越过挂单价（跳空）时按开盘价，否则按挂单价。"""
        price = order.price
        open_ = candle.open
        eps = self.epsilon
        if order.order_type is OrderType.LIMIT:
            gapped = open_ + eps < price if order.side is PositionSide.LONG else open_ - eps > price
        else:
            gapped = open_ - eps > price if order.side is PositionSide.LONG else open_ + eps < price
        return float(open_) if gapped else float(price)

    @staticmethod
    def _bracket_checks(position: Position, candle: Candle):
        sl = position.sl_price
        tp = position.tp_price

        if position.side is PositionSide.LONG:
            stop = (lambda p: candle.low <= p, sl, ExitReason.STOP_LOSS)
            take = (lambda p: candle.high >= p, tp, ExitReason.TAKE_PROFIT)
            return (stop, take) if candle.is_bullish else (take, stop)

        stop = (lambda p: candle.high >= p, sl, ExitReason.STOP_LOSS)
        take = (lambda p: candle.low <= p, tp, ExitReason.TAKE_PROFIT)
        return (take, stop) if candle.is_bullish else (stop, take)
