"""ATR 指标（Wilder 平滑）。"""

from __future__ import annotations

from indicators.base import BaseIndicator, IndicatorKind, true_range, wilder
from shared.models.models import IndicatorDefinition


class ATRIndicator(BaseIndicator):
    """平均真实波幅：前 period 个 TR 的均值作种子，之后 Wilder 平滑。"""

    kind = IndicatorKind.ATR

    def __init__(self, definition: IndicatorDefinition):
        super().__init__(definition)
        self._tr: list[float] = []
        self._atr: list[float | None] = []

    def _step(self, index: int) -> float | None:
        period = self.period
        prev = self._history[index - 1] if index > 0 else None
        tr = true_range(self._history[index], prev)
        self._tr.append(tr)

        if index + 1 < period:
            atr = None
        elif index + 1 == period:
            atr = sum(self._tr[:period]) / period
        else:
            prev_atr = self._atr[index - 1]
            atr = None if prev_atr is None else wilder(prev_atr, tr, period)
        self._atr.append(atr)
        return atr

    def _truncate(self, length: int) -> None:
        del self._tr[length:]
        del self._atr[length:]
