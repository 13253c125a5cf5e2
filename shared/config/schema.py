"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在长回放中途才暴露；
- 尽量消灭业务代码里的 `cfg.get(...)` 与深层字典索引。
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.utils.timeframes import timeframe_to_seconds

_STRATEGY_FIELDS = {"type", "params", "bias_timeframe", "entry_timeframe"}


class DataConfig(BaseModel):
    """历史数据位置。"""
    public_dir: str = "public"
    raw_subdir: str = "data/raw"
    manifest: str = "public/data-manifest.json"
    timeframes: List[str] = Field(default_factory=lambda: ["15m", "1h"])
    model_config = ConfigDict(extra="forbid")

    @field_validator("timeframes")
    @classmethod
    def _check_timeframes(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("data.timeframes must not be empty")
        for tf in value:
            timeframe_to_seconds(tf)
        return value


class ReplayConfig(BaseModel):
    """回放时钟与播放参数。

    start / start_index 二选一；都不填则从第一根 K 线开始。
    """
    active_timeframe: str = "1h"
    start: Optional[int] = None
    start_index: Optional[int] = Field(default=None, ge=0)
    max_steps: Optional[int] = Field(default=None, ge=0)
    playback_interval_ms: int = Field(default=500, ge=10)
    active_indicators: List[str] = Field(default_factory=list)
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_start(self) -> "ReplayConfig":
        if self.start is not None and self.start_index is not None:
            raise ValueError("replay.start and replay.start_index are mutually exclusive")
        return self


class TradingConfig(BaseModel):
    """纸面交易账本参数。"""
    starting_balance: float = Field(default=100.0, gt=0)
    leverage: float = 5
    min_leverage: int = Field(default=1, ge=1)
    max_leverage: int = Field(default=25, ge=1)
    history_cap: int = Field(default=100, ge=1)
    order_size: float = Field(default=1.0, gt=0)
    auto_trade: bool = False
    flatten_on_end: bool = False
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_bounds(self) -> "TradingConfig":
        if self.max_leverage < self.min_leverage:
            raise ValueError("trading.max_leverage must be >= trading.min_leverage")
        return self


class IndicatorConfig(BaseModel):
    """单个指标定义。"""
    id: str
    type: Literal["sma", "ema", "atr", "rsi", "adx"]
    period: int = Field(default=14, gt=0)
    source: Literal["open", "high", "low", "close"] = "close"
    label: Optional[str] = None
    color: str = "#38bdf8"
    line_width: int = 1
    overlay: bool = True
    model_config = ConfigDict(extra="forbid")


class StrategyConfig(BaseModel):
    """策略配置（type + params）。

    说明：
    - 策略参数不允许“散落在顶层”：必须进入 `params`；
    - 这里会把 `strategy:` 下的扁平字段自动挪到 `params`，从而实现：
      - 用户写起来方便
      - schema 又能做到严格（forbid extra keys）
    """
    type: str = "golden_trend"
    params: Dict[str, Any] = Field(default_factory=dict)
    bias_timeframe: str = "1h"
    entry_timeframe: str = "15m"
    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _pack_flat_params(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if set(data.keys()) <= _STRATEGY_FIELDS:
            return data
        packed = {k: v for k, v in data.items() if k in _STRATEGY_FIELDS and k != "params"}
        params = {k: v for k, v in data.items() if k not in _STRATEGY_FIELDS}
        existing = data.get("params")
        if isinstance(existing, dict):
            params = {**params, **existing}
        packed["params"] = params
        return packed


class AlertsConfig(BaseModel):
    """趋势跟随提示标记（只画在图上，不参与下单）。"""
    enabled: bool = True
    min_bars_between_alerts: int = Field(default=8, ge=1)
    use_strict_stack: bool = True
    pullback_touch_ema: Literal["EMA20", "EMA50", "EMA100"] = "EMA50"
    breakout_lookback: int = Field(default=30, ge=1)
    atr_len: int = Field(default=14, gt=0)
    max_candle_atr: float = Field(default=1.2, gt=0)
    use_volume_filter: bool = False
    model_config = ConfigDict(extra="forbid")


class PersistenceConfig(BaseModel):
    """键值存储（SQLite，key -> JSON）配置。"""
    enabled: bool = True
    path: str = "dataset/state/replay.sqlite3"
    model_config = ConfigDict(extra="forbid")


class MainConfig(BaseModel):
    """应用总配置。"""
    symbol: str = "ETHUSDT"

    # 子模块配置
    data: DataConfig = Field(default_factory=DataConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    indicators: Optional[List[IndicatorConfig]] = None
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    alerts: AlertsConfig = Field(default_factory=AlertsConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    @model_validator(mode="after")
    def _check_unique_indicator_ids(self) -> "MainConfig":
        if self.indicators:
            ids = [i.id for i in self.indicators]
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            if dupes:
                raise ValueError(f"Duplicate indicator id(s): {dupes}")
        return self
