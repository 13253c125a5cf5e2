"""杠杆保证金账本（MarginBroker）。

在回放行情上做纸面交易：
- 市价单先按开仓顺序（FIFO）对冲反向持仓，剩余部分在现金足够时开新仓；
- 挂单（限价/止损）在新 K 线揭示时检查，跳空时按开盘价成交；
- 每个持仓可带止损/止盈，按 K 线影线触发，按触发价成交。

账本关系：
    equity(mark) = cash + Σmargin + unrealized(mark)
                 = starting_balance + realized_pnl + unrealized(mark)

所有命令对非法参数返回 False/None，不修改状态，不抛异常。
"""

from __future__ import annotations

import math
from collections import deque
from dataclasses import replace
from typing import Any

from broker.abstract_broker import Broker
from broker.execution.simulator import EPSILON, BarTriggerSimulator
from shared.models.models import (
    Candle,
    ClosedTrade,
    ExitReason,
    OrderType,
    PendingOrder,
    Position,
    PositionSide,
    TradeMarker,
)
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("margin-broker")

STARTING_BALANCE = 100.0
DEFAULT_LEVERAGE = 5
MIN_LEVERAGE = 1
MAX_LEVERAGE = 25
HISTORY_CAP = 100

LONG_COLOR = "#26a69a"
SHORT_COLOR = "#ef5350"


def _is_positive(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value > 0


def _is_valid_level(value: Any) -> bool:
    """止损/止盈价：None 表示不设置；否则必须是正数。"""
    return value is None or _is_positive(value)


def _is_valid_time(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


def _risk_reward(position: Position, size: float, pnl: float) -> float | None:
    """盈亏比 = pnl / (入场到止损的距离 * size)；没有止损或止损在错误一侧时为 None。"""
    if position.sl_price is None or size <= 0:
        return None
    if position.side is PositionSide.LONG:
        diff = position.entry_price - position.sl_price
    else:
        diff = position.sl_price - position.entry_price
    if diff <= 0:
        return None
    return pnl / (diff * size)


class MarginBroker(Broker):
    def __init__(
        self,
        starting_balance: float = STARTING_BALANCE,
        *,
        leverage: float = DEFAULT_LEVERAGE,
        min_leverage: int = MIN_LEVERAGE,
        max_leverage: int = MAX_LEVERAGE,
        history_cap: int = HISTORY_CAP,
        simulator: BarTriggerSimulator | None = None,
    ):
        if min_leverage < 1 or max_leverage < min_leverage:
            raise ValueError(f"invalid leverage bounds: [{min_leverage}, {max_leverage}]")
        self.starting_balance = float(starting_balance)
        self.min_leverage = int(min_leverage)
        self.max_leverage = int(max_leverage)
        self.history_cap = int(history_cap)
        self._sim = simulator or BarTriggerSimulator()

        self.leverage = self.min_leverage
        self.set_leverage(leverage)

        self.cash_balance = self.starting_balance
        self.realized_pnl = 0.0
        self._positions: list[Position] = []
        self._orders: list[PendingOrder] = []
        self._history: deque[ClosedTrade] = deque(maxlen=self.history_cap)
        self._next_position_id = 1
        self._next_order_id = 1

    # ------------------------------------------------------------------
    # 读取
    # ------------------------------------------------------------------
    @property
    def open_positions(self) -> list[Position]:
        return list(self._positions)

    @property
    def pending_orders(self) -> list[PendingOrder]:
        return list(self._orders)

    @property
    def trade_history(self) -> list[ClosedTrade]:
        """已平仓记录，最新在前。"""
        return list(self._history)

    @property
    def available_balance(self) -> float:
        return self.cash_balance

    @property
    def total_open_size(self) -> float:
        return sum(p.size for p in self._positions)

    @property
    def total_margin(self) -> float:
        return sum(p.margin for p in self._positions)

    def get_position(self, position_id: int) -> Position | None:
        for position in self._positions:
            if position.id == position_id:
                return position
        return None

    def margin_requirement(self, size: float, price: float) -> float:
        if not _is_positive(size) or not _is_positive(price):
            return 0.0
        return size * price / self.leverage

    def unrealized_pnl(self, mark_price: float | None) -> float:
        if not mark_price:
            return 0.0
        return sum(p.unrealized_pnl(mark_price) for p in self._positions)

    def equity(self, mark_price: float | None) -> float:
        return self.cash_balance + self.total_margin + self.unrealized_pnl(mark_price)

    def trade_markers(self) -> list[TradeMarker]:
        markers: list[TradeMarker] = []
        for position in self._positions:
            is_long = position.side is PositionSide.LONG
            markers.append(
                TradeMarker(
                    id=f"open-{position.id}",
                    time=position.entry_time,
                    position="belowBar" if is_long else "aboveBar",
                    shape="arrowUp" if is_long else "arrowDown",
                    color=LONG_COLOR if is_long else SHORT_COLOR,
                    text="BUY" if is_long else "SELL",
                )
            )
        for trade in self._history:
            is_long = trade.side is PositionSide.LONG
            markers.append(
                TradeMarker(
                    id=f"close-{trade.id}-{trade.exit_time}",
                    time=trade.exit_time,
                    position="aboveBar" if is_long else "belowBar",
                    shape="arrowDown" if is_long else "arrowUp",
                    color=SHORT_COLOR if is_long else LONG_COLOR,
                    text=f"+{trade.pnl:.2f}" if trade.pnl >= 0 else f"{trade.pnl:.2f}",
                )
            )
        return markers

    def summary(self, mark_price: float | None = None) -> dict[str, Any]:
        trades = list(self._history)
        wins = [t for t in trades if t.pnl > 0]
        losses = [t for t in trades if t.pnl < 0]
        rr_values = [t.risk_reward for t in trades if t.risk_reward is not None]
        gross_profit = sum(t.pnl for t in wins)
        gross_loss = -sum(t.pnl for t in losses)
        return {
            "starting_balance": self.starting_balance,
            "cash": self.cash_balance,
            "margin": self.total_margin,
            "equity": self.equity(mark_price),
            "realized_pnl": self.realized_pnl,
            "unrealized_pnl": self.unrealized_pnl(mark_price),
            "leverage": self.leverage,
            "open_positions": len(self._positions),
            "pending_orders": len(self._orders),
            "trades": len(trades),
            "wins": len(wins),
            "losses": len(losses),
            "win_rate": (len(wins) / len(trades)) if trades else 0.0,
            "profit_factor": (gross_profit / gross_loss) if gross_loss > 0 else None,
            "avg_risk_reward": (sum(rr_values) / len(rr_values)) if rr_values else None,
            "exit_reasons": {
                reason.value: sum(1 for t in trades if t.exit_reason is reason) for reason in ExitReason
            },
        }

    # ------------------------------------------------------------------
    # 命令
    # ------------------------------------------------------------------
    def set_leverage(self, value: float) -> int:
        """四舍五入并夹到 [min, max]；只影响之后的开仓。"""
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            return self.leverage
        normalized = int(math.floor(value + 0.5))
        self.leverage = min(self.max_leverage, max(self.min_leverage, normalized))
        return self.leverage

    def market_buy(
        self,
        size: float,
        price: float,
        time: int,
        sl_price: float | None = None,
        tp_price: float | None = None,
    ) -> bool:
        return self._market(PositionSide.LONG, size, price, time, sl_price, tp_price)

    def market_sell(
        self,
        size: float,
        price: float,
        time: int,
        sl_price: float | None = None,
        tp_price: float | None = None,
    ) -> bool:
        return self._market(PositionSide.SHORT, size, price, time, sl_price, tp_price)

    def close_position(self, position_id: int, price: float, time: int) -> bool:
        if not _is_positive(price) or not _is_valid_time(time):
            return False
        position = self.get_position(position_id)
        if position is None:
            return False
        self._close_side(position.side, position.size, price, time, ExitReason.MANUAL, position_id=position_id)
        return True

    def close_all_positions(self, price: float, time: int) -> bool:
        if not _is_positive(price) or not _is_valid_time(time):
            return False
        self._close_side(PositionSide.LONG, math.inf, price, time, ExitReason.MANUAL)
        self._close_side(PositionSide.SHORT, math.inf, price, time, ExitReason.MANUAL)
        return True

    def place_order(
        self,
        side: PositionSide | str,
        order_type: OrderType | str,
        price: float,
        size: float,
        time: int,
        sl_price: float | None = None,
        tp_price: float | None = None,
    ) -> PendingOrder | None:
        try:
            side = PositionSide(side)
            order_type = OrderType(order_type)
        except ValueError:
            return None
        if not _is_positive(price) or not _is_positive(size) or not _is_valid_time(time):
            return None
        if not _is_valid_level(sl_price) or not _is_valid_level(tp_price):
            return None

        order = PendingOrder(
            id=self._next_order_id,
            side=side,
            order_type=order_type,
            price=float(price),
            size=float(size),
            created_time=int(time),
            sl_price=sl_price,
            tp_price=tp_price,
        )
        self._next_order_id += 1
        self._orders.append(order)
        _LOGGER.info("挂单 #%s %s %s %s@%s", order.id, side.value, order_type.value, size, price)
        return order

    def cancel_order(self, order_id: int) -> bool:
        remaining = [o for o in self._orders if o.id != order_id]
        if len(remaining) == len(self._orders):
            return False
        self._orders = remaining
        return True

    def check_orders(self, candle: Candle) -> None:
        """先处理挂单，再检查所有持仓的止盈止损（每个持仓每根 K 线最多触发一次）。"""
        if candle is None:
            return
        self._process_pending_orders(candle)

        for snapshot in list(self._positions):
            position = self.get_position(snapshot.id)
            if position is None:
                continue
            result = self._sim.evaluate_bracket(position, candle)
            if result is None:
                continue
            _LOGGER.info(
                "#%s %s 触发 %s @ %s (time=%s)",
                position.id,
                position.side.value,
                result.reason.value,
                result.price,
                candle.time,
            )
            self._close_side(
                position.side,
                position.size,
                result.price,
                candle.time,
                result.reason,
                position_id=position.id,
            )

    def reset_session(self) -> None:
        self.cash_balance = self.starting_balance
        self.realized_pnl = 0.0
        self._positions = []
        self._orders = []
        self._history.clear()
        self._next_position_id = 1
        self._next_order_id = 1

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------
    def _market(
        self,
        side: PositionSide,
        size: float,
        price: float,
        time: int,
        sl_price: float | None,
        tp_price: float | None,
    ) -> bool:
        if not _is_positive(size) or not _is_positive(price) or not _is_valid_time(time):
            return False
        if not _is_valid_level(sl_price) or not _is_valid_level(tp_price):
            return False

        remaining, closed = self._close_side(side.opposite, size, price, time, ExitReason.NETTING)
        executed = closed > 0
        if remaining <= 0:
            return executed

        margin = remaining * price / self.leverage
        if self.cash_balance + EPSILON < margin:
            # 剩余部分不足以开仓时整体放弃，不按可用资金缩小仓位
            _LOGGER.info("保证金不足，放弃开仓: 需要 %.4f，可用 %.4f", margin, self.cash_balance)
            return executed

        position = Position(
            id=self._next_position_id,
            side=side,
            size=float(remaining),
            entry_price=float(price),
            entry_time=int(time),
            margin=margin,
            leverage=self.leverage,
            sl_price=sl_price,
            tp_price=tp_price,
        )
        self._next_position_id += 1
        self._positions.append(position)
        self.cash_balance -= margin
        _LOGGER.info(
            "开仓 #%s %s %s@%s margin=%.4f leverage=%s", position.id, side.value, remaining, price, margin, self.leverage
        )
        return True

    def _close_side(
        self,
        target_side: PositionSide,
        size: float,
        price: float,
        time: int,
        reason: ExitReason,
        *,
        position_id: int | None = None,
    ) -> tuple[float, float]:
        """按开仓顺序平掉 target_side 方向的持仓，最多 size；返回 (未平数量, 已平数量)。"""
        if size <= 0:
            return 0.0, 0.0

        remaining = float(size)
        closed = 0.0
        updated: list[Position] = []

        for position in self._positions:
            if (
                position.side is not target_side
                or remaining <= 0
                or (position_id is not None and position.id != position_id)
            ):
                updated.append(position)
                continue

            amount = min(position.size, remaining)
            pnl = (price - position.entry_price) * amount * position.side.direction
            margin_portion = position.margin * (amount / position.size)
            self.realized_pnl += pnl
            self.cash_balance += margin_portion + pnl
            closed += amount

            self._history.appendleft(
                ClosedTrade(
                    id=position.id,
                    side=position.side,
                    size=amount,
                    entry_price=position.entry_price,
                    entry_time=position.entry_time,
                    margin=margin_portion,
                    leverage=position.leverage,
                    sl_price=position.sl_price,
                    tp_price=position.tp_price,
                    exit_price=float(price),
                    exit_time=int(time),
                    pnl=pnl,
                    duration_seconds=max(0, int(time) - position.entry_time),
                    risk_reward=_risk_reward(position, amount, pnl),
                    exit_reason=reason,
                )
            )
            _LOGGER.info(
                "平仓 #%s %s %s@%s pnl=%.4f reason=%s", position.id, position.side.value, amount, price, pnl, reason.value
            )

            left = position.size - amount
            if left > EPSILON:
                updated.append(replace(position, size=left, margin=position.margin - margin_portion))
            remaining -= amount

        self._positions = updated
        return remaining, closed

    def _process_pending_orders(self, candle: Candle) -> None:
        if not self._orders:
            return
        kept: list[PendingOrder] = []
        for order in self._orders:
            if not self._sim.should_trigger(order, candle):
                kept.append(order)
                continue
            fill_price = self._sim.fill_price(order, candle)
            filled = self._market(order.side, order.size, fill_price, candle.time, order.sl_price, order.tp_price)
            if filled:
                _LOGGER.info("挂单 #%s 成交 @ %s", order.id, fill_price)
            else:
                kept.append(order)
        self._orders = kept
