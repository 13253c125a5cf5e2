"""策略注册表：字符串 -> Strategy 实现。

策略实例由配置驱动构建；回放会话只在启用自动交易或信号提示时使用它。
"""

from __future__ import annotations

import inspect
from typing import Any, Mapping

from strategy.base import Strategy
from strategy.golden_trend import GoldenTrendStrategy

_REGISTRY: dict[str, type[Strategy]] = {}

DEFAULT_STRATEGY = "golden_trend"


def register_strategy(name: str, cls: type[Strategy]) -> None:
    _REGISTRY[name] = cls


def get_strategy_cls(name: str) -> type[Strategy]:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown strategy: {name}")
    return _REGISTRY[name]


def _filter_init_kwargs(cls: type, params: Mapping[str, Any]) -> dict[str, Any]:
    """过滤出 __init__ 支持的参数，避免配置里多字段导致报错。"""
    try:
        sig = inspect.signature(cls.__init__)
    except (TypeError, ValueError):
        return dict(params)

    if any(p.kind == inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values()):
        return dict(params)

    allowed = {name for name in sig.parameters.keys() if name != "self"}
    return {k: v for k, v in params.items() if k in allowed}


def build_strategy(cfg: Any) -> Strategy:
    """从配置构建策略实例。

    支持：
    - None：默认策略（golden_trend）
    - StrategyConfig（type + params）
    - dict（含 type + 参数字段）
    """
    if cfg is None:
        return GoldenTrendStrategy()

    if isinstance(cfg, Mapping):
        name = str(cfg.get("type") or DEFAULT_STRATEGY)
        params = dict(cfg.get("params") or {})
        params.update({k: v for k, v in cfg.items() if k not in ("type", "params")})
    elif hasattr(cfg, "type"):
        name = str(getattr(cfg, "type", None) or DEFAULT_STRATEGY)
        params = dict(getattr(cfg, "params", None) or {})
    else:
        raise ValueError("strategy cfg must be StrategyConfig or dict")

    cls = get_strategy_cls(name)
    kwargs = _filter_init_kwargs(cls, params)
    return cls(**kwargs)  # type: ignore[call-arg]


# 默认注册
register_strategy("golden_trend", GoldenTrendStrategy)
