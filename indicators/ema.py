"""EMA 指标。"""

from __future__ import annotations

from indicators.base import BaseIndicator, IndicatorKind
from shared.models.models import IndicatorDefinition


class EMAIndicator(BaseIndicator):
    """指数移动平均。

    种子取历史中第一根 K 线的价格（不是前 period 根的 SMA），因此数值与
    history 起点有关：同一根 K 线在不同长度的历史上可能得到不同的 EMA。
    """

    kind = IndicatorKind.EMA

    def __init__(self, definition: IndicatorDefinition):
        super().__init__(definition)
        self._values: list[float] = []

    @property
    def smoothing_factor(self) -> float:
        return 2.0 / (self.period + 1)

    def _step(self, index: int) -> float | None:
        price = self.source_value(self._history[index])
        if index == 0:
            value = price
        else:
            alpha = self.smoothing_factor
            value = price * alpha + self._values[index - 1] * (1 - alpha)
        self._values.append(value)
        return value

    def _truncate(self, length: int) -> None:
        del self._values[length:]
