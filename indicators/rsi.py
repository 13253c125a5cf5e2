"""RSI 指标（Wilder 平滑）。"""

from __future__ import annotations

from indicators.base import BaseIndicator, IndicatorKind, wilder
from shared.models.models import IndicatorDefinition


def rsi_from_averages(avg_gain: float, avg_loss: float) -> float:
    if avg_loss == 0:
        return 50.0 if avg_gain == 0 else 100.0
    if avg_gain == 0:
        return 0.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


class RSIIndicator(BaseIndicator):
    """相对强弱指数。

    变化量从 index=1 开始计算；前 period 个变化量的简单均值作为种子
    （第一个值落在 index=period），之后 Wilder 平滑。

    每根 K 线的平均涨幅/跌幅都保留在数组里：最后一根 K 线被原地修订时，
    必须从上一根的均值重新推导，而不是在已被修改的当前值上叠加。
    """

    kind = IndicatorKind.RSI

    def __init__(self, definition: IndicatorDefinition):
        super().__init__(definition)
        self._avg_gains: list[float | None] = []
        self._avg_losses: list[float | None] = []

    def _change(self, index: int) -> float:
        return self.source_value(self._history[index]) - self.source_value(self._history[index - 1])

    def _step(self, index: int) -> float | None:
        period = self.period
        if index < period:
            self._avg_gains.append(None)
            self._avg_losses.append(None)
            return None

        if index == period:
            changes = [self._change(i) for i in range(1, period + 1)]
            avg_gain = sum(c for c in changes if c > 0) / period
            avg_loss = sum(-c for c in changes if c < 0) / period
        else:
            prev_gain = self._avg_gains[index - 1]
            prev_loss = self._avg_losses[index - 1]
            if prev_gain is None or prev_loss is None:
                self._avg_gains.append(None)
                self._avg_losses.append(None)
                return None
            change = self._change(index)
            avg_gain = wilder(prev_gain, max(change, 0.0), period)
            avg_loss = wilder(prev_loss, max(-change, 0.0), period)

        self._avg_gains.append(avg_gain)
        self._avg_losses.append(avg_loss)
        return rsi_from_averages(avg_gain, avg_loss)

    def _truncate(self, length: int) -> None:
        del self._avg_gains[length:]
        del self._avg_losses[length:]
