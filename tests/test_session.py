from __future__ import annotations

from pathlib import Path

from engine.session import ReplaySession
from market_data.loader import build_manifest, write_manifest
from shared.config.schema import MainConfig
from shared.models.models import Candle, ExitReason
from shared.state.kv_store import SqliteKeyValueStore
from strategy.base import Strategy, StrategyAction, StrategySignal
from strategy.trend_alerts import TrendAlertOptions, compute_trend_alert_markers


def _history(n_hours: int = 30) -> dict[str, list[Candle]]:
    hourly = [
        Candle(time=i * 3600, open=100 + i, high=101.5 + i, low=99 + i, close=101 + i, volume=10)
        for i in range(n_hours)
    ]
    quarterly = [
        Candle(time=i * 900, open=100 + i / 4, high=100.6 + i / 4, low=99.8 + i / 4, close=100.25 + i / 4, volume=3)
        for i in range(n_hours * 4)
    ]
    return {"1h": hourly, "15m": quarterly}


def _cfg(**overrides) -> MainConfig:
    raw = {
        "replay": {"active_timeframe": "1h", "active_indicators": ["sma14"]},
        "trading": {"starting_balance": 1000},
        "persistence": {"enabled": False},
    }
    for key, value in overrides.items():
        raw.setdefault(key, {}).update(value)
    return MainConfig.model_validate(raw)


class _AlwaysBuy(Strategy):
    def check_signals(self, bias_candles, entry_candles, bias_indicators, entry_indicators, open_positions=()):
        return StrategySignal(action=StrategyAction.BUY)


def test_session_replays_to_the_end():
    result = ReplaySession(cfg_obj=_cfg(), history=_history()).run()
    summary = result.summary
    assert summary["steps"] == 29
    assert summary["clock"] == 29 * 3600
    assert summary["visible_candles"] == 30
    assert summary["total_candles"] == 30
    assert summary["trades"] == 0
    assert abs(summary["equity"] - 1000.0) < 1e-9

    expected_sma = sum(101 + i for i in range(16, 30)) / 14
    assert abs(result.artifacts["indicators"]["sma14"] - expected_sma) < 1e-9
    assert result.artifacts["colors"]["sma14"].startswith("#")


def test_session_respects_max_steps_and_start():
    result = ReplaySession(cfg_obj=_cfg(), history=_history(), max_steps=5).run()
    assert result.summary["steps"] == 5
    assert result.summary["clock"] == 5 * 3600

    cfg = _cfg(replay={"start": 10 * 3600, "max_steps": 2})
    result = ReplaySession(cfg_obj=cfg, history=_history()).run()
    assert result.summary["clock"] == 12 * 3600


def test_session_start_index_out_of_range_falls_back_to_first_candle():
    cfg = _cfg(replay={"start_index": 1000})
    result = ReplaySession(cfg_obj=cfg, history=_history(), max_steps=3).run()
    assert result.summary["clock"] == 3 * 3600


def test_session_auto_trade_and_flatten(monkeypatch):
    monkeypatch.setattr("engine.session.build_strategy", lambda cfg: _AlwaysBuy())
    cfg = _cfg(trading={"flatten_on_end": True, "order_size": 1.0})
    session = ReplaySession(cfg_obj=cfg, history=_history(), max_steps=4, auto_trade=True)
    result = session.run()

    assert result.summary["auto_trade"] is True
    assert result.summary["signals"] == 4
    # 已有多头时不重复开仓；结束时全部平掉
    trades = result.artifacts["trades"]
    assert len(trades) == 1
    assert trades[0].exit_reason is ExitReason.MANUAL
    assert trades[0].entry_price == 102.0
    assert trades[0].exit_price == 105.0
    assert result.artifacts["open_positions"] == []
    assert abs(result.summary["equity"] - 1003.0) < 1e-9


def test_session_reads_style_overrides(tmp_path: Path):
    db = tmp_path / "kv.sqlite3"
    store = SqliteKeyValueStore(db)
    store.set("indicator_colors", {"sma14": "#123456"})
    store.close()

    cfg = _cfg(persistence={"enabled": True, "path": str(db)})
    result = ReplaySession(cfg_obj=cfg, history=_history(), max_steps=1).run()
    assert result.artifacts["colors"]["sma14"] == "#123456"


def test_session_loads_from_manifest(tmp_path: Path):
    public = tmp_path / "public"
    for tf, step in (("1h", 3600), ("15m", 900)):
        csv_path = public / "data/raw/ETHUSDT" / tf / f"ETHUSDT-{tf}.csv"
        csv_path.parent.mkdir(parents=True)
        rows = [f"{i * step * 1000},100,101,99,100.5,1" for i in range(20)]
        csv_path.write_text("\n".join(["open_time,open,high,low,close,volume", *rows]) + "\n", encoding="utf-8")
    manifest_path = write_manifest(build_manifest(public), public / "data-manifest.json")

    cfg_path = tmp_path / "config.yml"
    cfg_path.write_text(
        "\n".join(
            [
                "data:",
                f"  public_dir: {public.as_posix()}",
                f"  manifest: {manifest_path.as_posix()}",
                "replay:",
                "  active_timeframe: 15m",
                "  active_indicators: [ema20]",
                "persistence:",
                "  enabled: false",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    result = ReplaySession(cfg_path=str(cfg_path)).run()
    assert result.summary["timeframe"] == "15m"
    assert result.summary["total_candles"] == 20
    assert result.summary["steps"] == 19


def test_session_falls_back_when_active_timeframe_is_empty():
    history = _history()
    history["1h"] = []
    result = ReplaySession(cfg_obj=_cfg(), history=history).run()
    assert result.summary["timeframe"] == "15m"
    assert result.summary["total_candles"] == 120
    assert result.summary["steps"] == 119
    assert result.summary["clock"] == 119 * 900


def test_session_paced_playback_uses_configured_interval():
    cfg = _cfg(replay={"playback_interval_ms": 10})
    result = ReplaySession(cfg_obj=cfg, history=_history(), max_steps=3, paced=True).run()
    assert result.summary["steps"] == 3
    assert result.summary["clock"] == 3 * 3600

    result = ReplaySession(cfg_obj=cfg, history=_history(5), paced=True).run()
    assert result.summary["steps"] == 4
    assert result.summary["clock"] == 4 * 3600


def test_session_emits_trend_alerts():
    history = _history()
    result = ReplaySession(cfg_obj=_cfg(alerts={"max_candle_atr": 5.0}), history=history).run()
    # 时钟停在最后一根 1h 上，之后的 15m K 线不可见
    visible_ltf = [c for c in history["15m"] if c.time <= 29 * 3600]
    expected = compute_trend_alert_markers(visible_ltf, history["1h"], TrendAlertOptions(max_candle_atr=5.0))
    assert result.artifacts["alerts"] == expected
    assert result.summary["alerts"] == len(expected)

    result = ReplaySession(cfg_obj=_cfg(alerts={"enabled": False}), history=history).run()
    assert result.artifacts["alerts"] == []
    assert result.summary["alerts"] == 0
