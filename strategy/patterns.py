"""K 线形态识别（吞没、锤子线、射击之星）。"""

from __future__ import annotations

from shared.models.models import Candle


def body_size(candle: Candle) -> float:
    return abs(candle.close - candle.open)


def upper_shadow(candle: Candle) -> float:
    return candle.high - max(candle.open, candle.close)


def lower_shadow(candle: Candle) -> float:
    return min(candle.open, candle.close) - candle.low


def is_bullish_engulfing(current: Candle, previous: Candle) -> bool:
    """阳线实体完全包住前一根阴线实体。"""
    if not (current.close > current.open and previous.close < previous.open):
        return False
    engulfs = current.open <= previous.close and current.close >= previous.open
    return engulfs and body_size(current) > 0 and body_size(previous) > 0


def is_bearish_engulfing(current: Candle, previous: Candle) -> bool:
    if not (current.close < current.open and previous.close > previous.open):
        return False
    engulfs = current.open >= previous.close and current.close <= previous.open
    return engulfs and body_size(current) > 0 and body_size(previous) > 0


def is_hammer(candle: Candle) -> bool:
    """下影线 >= 2 倍实体，上影线 <= 0.35 倍实体。"""
    body = body_size(candle)
    if body <= 0:
        return False
    return lower_shadow(candle) >= body * 2 and upper_shadow(candle) <= body * 0.35


def is_shooting_star(candle: Candle) -> bool:
    body = body_size(candle)
    if body <= 0:
        return False
    return upper_shadow(candle) >= body * 2 and abs(lower_shadow(candle)) <= body * 0.35
