"""无界面回放会话（ReplaySession）。

目标是“一眼能看懂”：配置 → 加载历史 → 回放引擎 + 账本 → 定位起点 → 逐根推进 → 总结。

- 账本订阅回放引擎的“新 K 线”事件，在每根新揭示的 K 线上检查挂单与止盈止损；
- 开启 `trading.auto_trade` 时，策略在同一事件上给出建议，会话按建议市价下单/平仓。
- `paced=True` 时改由 PlaybackController 按 `replay.playback_interval_ms` 定时推进；
- 回放结束后在已揭示的 K 线上计算趋势提示标记（`alerts`），放进 artifacts。
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from broker.margin_broker import MarginBroker
from engine.playback import PlaybackController
from engine.replay_engine import ReplayEngine
from indicators.registry import build_definitions
from indicators.styles import IndicatorStyleStore
from market_data.loader import load_history, read_manifest
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.models.models import Candle, PositionSide, TradeMarker
from shared.state.kv_store import SqliteKeyValueStore
from shared.utils.logging import setup_logger
from strategy.base import Strategy, StrategyAction, StrategySignal
from strategy.registry import build_strategy
from strategy.trend_alerts import TrendAlertOptions, compute_trend_alert_markers

_LOGGER = setup_logger("session")


@dataclass(frozen=True)
class SessionResult:
    """回放结果：summary 给命令行打印，artifacts 是成交/持仓/标记等明细。"""

    summary: dict[str, Any]
    artifacts: dict[str, Any]


class ReplaySession:
    def __init__(
        self,
        *,
        cfg_path: str = "config/config.yml",
        cfg_obj: MainConfig | None = None,
        history: Mapping[str, Sequence[Candle]] | None = None,
        max_steps: int | None = None,
        auto_trade: bool | None = None,
        paced: bool = False,
    ):
        self._cfg_path = cfg_path
        self._cfg_obj = cfg_obj
        self._history = history
        self._max_steps = max_steps
        self._auto_trade = auto_trade
        self._paced = paced

        self.cfg: MainConfig | None = None
        self.replay: ReplayEngine | None = None
        self.broker: MarginBroker | None = None
        self.strategy: Strategy | None = None
        self.signals: list[tuple[int, StrategySignal]] = []

    def run(self) -> SessionResult:
        cfg = self._load_cfg()
        self.cfg = cfg
        auto_trade = cfg.trading.auto_trade if self._auto_trade is None else bool(self._auto_trade)
        max_steps = self._max_steps if self._max_steps is not None else cfg.replay.max_steps

        store = SqliteKeyValueStore(cfg.persistence.path) if cfg.persistence.enabled else None
        try:
            styles = IndicatorStyleStore(store)
            history = self._load_history(cfg)

            active_ids = list(cfg.replay.active_indicators)
            if auto_trade:
                self.strategy = build_strategy(cfg.strategy)
                active_ids += [i for i in self.strategy.required_indicators if i not in active_ids]

            replay = ReplayEngine(
                build_definitions(cfg.indicators),
                active_timeframe=cfg.replay.active_timeframe,
                active_indicators=active_ids,
            )
            replay.load_history(history)
            self.replay = replay

            broker = MarginBroker(
                cfg.trading.starting_balance,
                leverage=cfg.trading.leverage,
                min_leverage=cfg.trading.min_leverage,
                max_leverage=cfg.trading.max_leverage,
                history_cap=cfg.trading.history_cap,
            )
            self.broker = broker

            self._position_clock(cfg, replay)
            replay.subscribe(broker.on_bar)
            if self.strategy is not None:
                replay.subscribe(self._on_bar)

            if self._paced:
                steps = asyncio.run(self._play(replay, cfg.replay.playback_interval_ms, max_steps))
            else:
                steps = self._run_loop(replay, max_steps)
            latest = replay.latest_bar()
            mark = latest.close if latest else None
            if cfg.trading.flatten_on_end and latest is not None:
                broker.close_all_positions(latest.close, latest.time)

            alerts = self._trend_alerts(cfg, replay)
            summary = {
                "symbol": cfg.symbol,
                "timeframe": replay.active_timeframe,
                "steps": steps,
                "clock": replay.clock,
                "visible_candles": len(replay.visible_candles()),
                "total_candles": replay.total_candles,
                "auto_trade": auto_trade,
                "signals": len(self.signals),
                "alerts": len(alerts),
                **broker.summary(mark),
            }
            _LOGGER.info("回放结束: steps=%s equity=%.4f trades=%s", steps, summary["equity"], summary["trades"])
            artifacts = self._build_artifacts(replay, broker, styles)
            artifacts["alerts"] = alerts
            return SessionResult(summary=summary, artifacts=artifacts)
        finally:
            if store is not None:
                store.close()

    def _load_cfg(self) -> MainConfig:
        return self._cfg_obj or load_config(self._cfg_path)

    def _load_history(self, cfg: MainConfig) -> Mapping[str, Sequence[Candle]]:
        if self._history is not None:
            return self._history
        manifest = read_manifest(cfg.data.manifest)
        return asyncio.run(load_history(manifest, cfg.symbol, cfg.data.timeframes, root=cfg.data.public_dir))

    @staticmethod
    def _position_clock(cfg: MainConfig, replay: ReplayEngine) -> None:
        if cfg.replay.start is not None:
            replay.set_replay_start(cfg.replay.start)
        elif cfg.replay.start_index is not None:
            if not replay.jump_to_index(cfg.replay.start_index):
                _LOGGER.warning("start_index=%s 越界，从第一根 K 线开始", cfg.replay.start_index)
                replay.jump_to_index(0)
        else:
            replay.jump_to_index(0)

    @staticmethod
    def _run_loop(replay: ReplayEngine, max_steps: int | None) -> int:
        steps = 0
        while max_steps is None or steps < max_steps:
            if not replay.advance():
                break
            steps += 1
        return steps

    @staticmethod
    async def _play(replay: ReplayEngine, interval_ms: int, max_steps: int | None) -> int:
        """按 `replay.playback_interval_ms` 的节奏自动播放，直到播完或推进满 max_steps。"""
        controller = PlaybackController(replay, interval_ms=interval_ms, max_ticks=max_steps)
        controller.play()
        await controller.wait()
        return controller.ticks

    @staticmethod
    def _trend_alerts(cfg: MainConfig, replay: ReplayEngine) -> list[TradeMarker]:
        """在已揭示的 K 线上计算趋势跟随提示（低周期=entry，高周期=bias）。"""
        if not cfg.alerts.enabled:
            return []
        options = TrendAlertOptions(**cfg.alerts.model_dump(exclude={"enabled"}))
        return compute_trend_alert_markers(
            replay.visible_candles(cfg.strategy.entry_timeframe),
            replay.visible_candles(cfg.strategy.bias_timeframe),
            options,
        )

    def _on_bar(self, timeframe: str, candle: Candle) -> None:
        assert self.cfg is not None and self.replay is not None and self.broker is not None
        if self.strategy is None:
            return
        bias_tf = self.cfg.strategy.bias_timeframe
        entry_tf = self.cfg.strategy.entry_timeframe
        signal = self.strategy.check_signals(
            self.replay.visible_candles(bias_tf),
            self.replay.visible_candles(entry_tf),
            self.replay.visible_indicators(bias_tf),
            self.replay.visible_indicators(entry_tf),
            self.broker.open_positions,
        )
        if signal.action is StrategyAction.NONE:
            return
        self.signals.append((candle.time, signal))
        self._apply_signal(signal, candle)

    def _apply_signal(self, signal: StrategySignal, candle: Candle) -> None:
        assert self.cfg is not None and self.broker is not None
        broker = self.broker
        size = self.cfg.trading.order_size
        sides = {p.side for p in broker.open_positions}

        if signal.action is StrategyAction.BUY and PositionSide.LONG not in sides:
            broker.market_buy(size, candle.close, candle.time, sl_price=signal.stop_loss or None)
        elif signal.action is StrategyAction.SELL and PositionSide.SHORT not in sides:
            broker.market_sell(size, candle.close, candle.time, sl_price=signal.stop_loss or None)
        elif signal.action in (StrategyAction.CLOSE_LONG, StrategyAction.CLOSE_SHORT):
            target = PositionSide.LONG if signal.action is StrategyAction.CLOSE_LONG else PositionSide.SHORT
            for position in broker.open_positions:
                if position.side is target:
                    broker.close_position(position.id, candle.close, candle.time)

    @staticmethod
    def _build_artifacts(replay: ReplayEngine, broker: MarginBroker, styles: IndicatorStyleStore) -> dict[str, Any]:
        last_values = {}
        for indicator_id, series in replay.visible_indicators().items():
            last_values[indicator_id] = series[-1].value if series else None
        return {
            "trades": broker.trade_history,
            "open_positions": broker.open_positions,
            "pending_orders": broker.pending_orders,
            "markers": broker.trade_markers(),
            "indicators": last_values,
            "colors": {d.id: styles.color_for(d) for d in replay.active_indicator_definitions},
        }
