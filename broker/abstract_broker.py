"""Broker 抽象接口。"""

from __future__ import annotations

from abc import ABC, abstractmethod

from shared.models.models import Candle, Position


class Broker(ABC):
    """交易执行抽象层。

    子类维护本地账本（现金/保证金/持仓/挂单），并在每根新揭示的 K 线上
    检查挂单与止盈止损。所有命令都以返回值表示成败，不抛异常。
    """

    cash_balance: float
    realized_pnl: float

    @property
    @abstractmethod
    def open_positions(self) -> list[Position]:
        """当前持仓（按开仓顺序）。"""

    @abstractmethod
    def market_buy(self, size: float, price: float, time: int, **kwargs) -> bool:
        """市价买入：先对冲空头，剩余部分开多。"""

    @abstractmethod
    def market_sell(self, size: float, price: float, time: int, **kwargs) -> bool:
        """市价卖出：先对冲多头，剩余部分开空。"""

    @abstractmethod
    def check_orders(self, candle: Candle) -> None:
        """新 K 线揭示后调用一次。"""

    def on_bar(self, timeframe: str, candle: Candle) -> None:
        """回放引擎的 K 线事件回调。"""
        self.check_orders(candle)
