"""ADX 指标（Wilder 平滑 +DM/-DM/TR → DX → ADX）。"""

from __future__ import annotations

from indicators.base import BaseIndicator, IndicatorKind, true_range, wilder
from shared.models.models import Candle, IndicatorDefinition


def directional_movement(current: Candle, prev: Candle | None) -> tuple[float, float]:
    """返回 (+DM, -DM)；首根 K 线均为 0。"""
    if prev is None:
        return 0.0, 0.0
    up_move = current.high - prev.high
    down_move = prev.low - current.low
    pos_dm = up_move if up_move > down_move and up_move > 0 else 0.0
    neg_dm = down_move if down_move > up_move and down_move > 0 else 0.0
    return pos_dm, neg_dm


def dx_from_smoothed(tr_smooth: float, pos_smooth: float, neg_smooth: float) -> float:
    if tr_smooth == 0:
        return 0.0
    pos_di = pos_smooth / tr_smooth * 100.0
    neg_di = neg_smooth / tr_smooth * 100.0
    denominator = pos_di + neg_di
    if denominator == 0:
        return 0.0
    return abs(pos_di - neg_di) / denominator * 100.0


class ADXIndicator(BaseIndicator):
    """平均趋向指数。

    - TR/+DM/-DM：index=period-1 处以前 period 个原始值之和作种子（不是均值），
      之后 Wilder 平滑；
    - DX 从 index=period-1 开始逐根产生；
    - ADX：DX 攒满 period 个后取均值作种子（index=2*period-2），之后对 DX 做
      Wilder 平滑。

    原始值、平滑值、DX、ADX 都按 K 线位置保存，最后一根被修订时逐项回退重算。
    """

    kind = IndicatorKind.ADX

    def __init__(self, definition: IndicatorDefinition):
        super().__init__(definition)
        self._raw_tr: list[float] = []
        self._raw_pos_dm: list[float] = []
        self._raw_neg_dm: list[float] = []
        self._smoothed_tr: list[float | None] = []
        self._smoothed_pos_dm: list[float | None] = []
        self._smoothed_neg_dm: list[float | None] = []
        self._dx: list[float | None] = []
        self._adx: list[float | None] = []

    def _step(self, index: int) -> float | None:
        period = self.period
        current = self._history[index]
        prev = self._history[index - 1] if index > 0 else None

        tr = true_range(current, prev)
        pos_dm, neg_dm = directional_movement(current, prev)
        self._raw_tr.append(tr)
        self._raw_pos_dm.append(pos_dm)
        self._raw_neg_dm.append(neg_dm)

        if index < period - 1:
            self._append_empty()
            return None

        if index == period - 1:
            tr_smooth = sum(self._raw_tr[:period])
            pos_smooth = sum(self._raw_pos_dm[:period])
            neg_smooth = sum(self._raw_neg_dm[:period])
        else:
            tr_smooth = wilder(self._smoothed_tr[index - 1] or 0.0, tr, period)
            pos_smooth = wilder(self._smoothed_pos_dm[index - 1] or 0.0, pos_dm, period)
            neg_smooth = wilder(self._smoothed_neg_dm[index - 1] or 0.0, neg_dm, period)

        self._smoothed_tr.append(tr_smooth)
        self._smoothed_pos_dm.append(pos_smooth)
        self._smoothed_neg_dm.append(neg_smooth)

        dx = dx_from_smoothed(tr_smooth, pos_smooth, neg_smooth)
        self._dx.append(dx)

        seed_index = 2 * period - 2
        if index < seed_index:
            adx = None
        elif index == seed_index:
            recent = self._dx[index - period + 1 : index + 1]
            adx = sum(v for v in recent if v is not None) / period
        else:
            prev_adx = self._adx[index - 1]
            adx = None if prev_adx is None else wilder(prev_adx, dx, period)
        self._adx.append(adx)
        return adx

    def _append_empty(self) -> None:
        self._smoothed_tr.append(None)
        self._smoothed_pos_dm.append(None)
        self._smoothed_neg_dm.append(None)
        self._dx.append(None)
        self._adx.append(None)

    def _truncate(self, length: int) -> None:
        for values in (
            self._raw_tr,
            self._raw_pos_dm,
            self._raw_neg_dm,
            self._smoothed_tr,
            self._smoothed_pos_dm,
            self._smoothed_neg_dm,
            self._dx,
            self._adx,
        ):
            del values[length:]
