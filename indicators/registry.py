"""指标注册表：类型 -> 实现，以及默认指标定义。"""

from __future__ import annotations

from typing import Any, Iterable

import pandas as pd

from indicators.adx import ADXIndicator
from indicators.atr import ATRIndicator
from indicators.base import BaseIndicator, IndicatorKind
from indicators.ema import EMAIndicator
from indicators.rsi import RSIIndicator
from indicators.sma import SMAIndicator
from shared.models.models import IndicatorDefinition

_REGISTRY: dict[IndicatorKind, type[BaseIndicator]] = {}

DEFAULT_DEFINITIONS: tuple[IndicatorDefinition, ...] = (
    IndicatorDefinition(id="sma14", type="sma", period=14, label="SMA 14", color="#f0b90b"),
    IndicatorDefinition(id="sma50", type="sma", period=50, label="SMA 50", color="#1abc9c"),
    IndicatorDefinition(id="ema20", type="ema", period=20, label="EMA 20", color="#AC1513"),
    IndicatorDefinition(id="ema50", type="ema", period=50, label="EMA 50", color="#a75209"),
    IndicatorDefinition(id="ema95", type="ema", period=95, label="EMA 95", color="#1dacae"),
    IndicatorDefinition(id="ema200", type="ema", period=200, label="EMA 200", color="#0000a6"),
    IndicatorDefinition(
        id="atr14", type="atr", period=14, label="ATR 14", color="#fb923c", line_width=2, overlay=False
    ),
    IndicatorDefinition(
        id="rsi14", type="rsi", period=14, label="RSI 14", color="#a78bfa", line_width=2, overlay=False
    ),
    IndicatorDefinition(
        id="adx14", type="adx", period=14, label="ADX 14", color="#38bdf8", line_width=2, overlay=False
    ),
)


def register_indicator(kind: IndicatorKind, cls: type[BaseIndicator]) -> None:
    _REGISTRY[kind] = cls


def get_indicator_cls(type_name: str) -> type[BaseIndicator]:
    try:
        kind = IndicatorKind(str(type_name).lower())
    except ValueError as exc:
        raise ValueError(f"Unsupported indicator type: {type_name}") from exc
    if kind not in _REGISTRY:
        raise ValueError(f"Unsupported indicator type: {type_name}")
    return _REGISTRY[kind]


def create_indicator(definition: IndicatorDefinition) -> BaseIndicator:
    """按定义实例化一个全新的（空状态）指标。

    不支持的类型属于配置错误，直接抛 ValueError。
    """
    return get_indicator_cls(definition.type)(definition)


def build_definitions(cfg: Any) -> list[IndicatorDefinition]:
    """从配置构建指标定义列表。

    支持形态：
    - None：使用 DEFAULT_DEFINITIONS
    - list[dict]：[{id, type, period, source, label, color, ...}, ...]
    - list[IndicatorDefinition] 或带 model_dump() 的 pydantic 对象
    """
    if cfg is None:
        return list(DEFAULT_DEFINITIONS)
    if not isinstance(cfg, (list, tuple)):
        raise ValueError("indicator definitions must be a list")

    definitions: list[IndicatorDefinition] = []
    seen: set[str] = set()
    for item in cfg:
        if isinstance(item, IndicatorDefinition):
            definition = item
        else:
            raw = item.model_dump() if hasattr(item, "model_dump") else item
            if not isinstance(raw, dict):
                raise ValueError("indicator item must be a dict")
            if not raw.get("id") or not raw.get("type"):
                raise ValueError("indicator item missing id/type")
            try:
                definition = IndicatorDefinition(**raw)
            except TypeError as exc:
                raise ValueError(f"Invalid params for indicator '{raw.get('id')}': {raw}") from exc
        # 提前校验类型，避免运行到一半才发现配置错误
        get_indicator_cls(definition.type)
        if definition.id in seen:
            raise ValueError(f"Duplicate indicator id: {definition.id}")
        seen.add(definition.id)
        definitions.append(definition)
    return definitions


def apply_indicators(df: pd.DataFrame, definitions: Iterable[IndicatorDefinition]) -> pd.DataFrame:
    for definition in definitions:
        df = create_indicator(definition).compute(df)
    return df


# 默认注册
register_indicator(IndicatorKind.SMA, SMAIndicator)
register_indicator(IndicatorKind.EMA, EMAIndicator)
register_indicator(IndicatorKind.ATR, ATRIndicator)
register_indicator(IndicatorKind.RSI, RSIIndicator)
register_indicator(IndicatorKind.ADX, ADXIndicator)
