"""SMA 指标。"""

from __future__ import annotations

from indicators.base import BaseIndicator, IndicatorKind
from shared.models.models import IndicatorPoint


class SMAIndicator(BaseIndicator):
    """简单移动平均：从第 period 根 K 线开始出值。"""

    kind = IndicatorKind.SMA

    def _on_calculate(self) -> list[IndicatorPoint]:
        period = self.period
        if len(self._history) < period:
            return []

        points: list[IndicatorPoint] = []
        rolling_sum = 0.0
        for i, candle in enumerate(self._history):
            rolling_sum += self.source_value(candle)
            if i >= period:
                rolling_sum -= self.source_value(self._history[i - period])
            if i >= period - 1:
                points.append(IndicatorPoint(time=candle.time, value=rolling_sum / period))
        return points

    def _step(self, index: int) -> float | None:
        period = self.period
        if index + 1 < period:
            return None
        # 只回看 period 根，不依赖外部维护的滚动和
        window = self._history[index - period + 1 : index + 1]
        return sum(self.source_value(c) for c in window) / period

    def _truncate(self, length: int) -> None:
        # SMA 无额外滚动状态
        return None
