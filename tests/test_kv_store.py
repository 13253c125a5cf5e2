from __future__ import annotations

import sqlite3

from indicators.styles import STYLES_KEY, IndicatorStyleStore
from shared.models.models import IndicatorDefinition
from shared.state.kv_store import SqliteKeyValueStore


def test_get_set_roundtrip(tmp_path):
    store = SqliteKeyValueStore(tmp_path / "state" / "kv.sqlite3")
    assert store.available
    assert store.get("missing", default={"a": 1}) == {"a": 1}
    assert store.set("colors", {"ema20": "#ffffff"}) is True
    assert store.set("colors", {"ema20": "#000000"}) is True
    assert store.get("colors") == {"ema20": "#000000"}

    store.delete("colors")
    assert store.get("colors") is None
    store.close()
    assert not store.available


def test_malformed_json_reads_as_missing(tmp_path):
    path = tmp_path / "kv.sqlite3"
    store = SqliteKeyValueStore(path)
    with sqlite3.connect(str(path)) as conn:
        conn.execute(
            "INSERT INTO kv (key, value_json, updated_at) VALUES (?, ?, ?);",
            ("colors", "{broken", "2024-01-01T00:00:00Z"),
        )
    assert store.get("colors", default="fallback") == "fallback"


def test_non_serializable_value_is_skipped():
    store = SqliteKeyValueStore(":memory:")
    assert store.set("bad", float("nan")) is False
    assert store.get("bad") is None


def test_unavailable_store_is_noop(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = SqliteKeyValueStore(blocker / "kv.sqlite3")
    assert not store.available
    assert store.set("k", 1) is False
    assert store.get("k", default=2) == 2
    store.delete("k")
    store.close()


def test_style_overrides_persist_across_sessions(tmp_path):
    path = tmp_path / "kv.sqlite3"
    ema = IndicatorDefinition(id="ema20", type="ema", period=20, color="#f59e0b")

    first = IndicatorStyleStore(SqliteKeyValueStore(path))
    assert first.color_for(ema) == "#f59e0b"
    assert first.set_color("ema20", "#123456") is True
    assert first.set_color("ema20", "red") is False

    second = IndicatorStyleStore(SqliteKeyValueStore(path))
    assert second.color_for(ema) == "#123456"
    second.reset_color("ema20")

    third = IndicatorStyleStore(SqliteKeyValueStore(path))
    assert third.color_for(ema) == "#f59e0b"


def test_style_store_ignores_bad_stored_values():
    kv = SqliteKeyValueStore(":memory:")
    kv.set(STYLES_KEY, {"ema20": "#abc", "rsi14": "blue"})
    styles = IndicatorStyleStore(kv)
    assert styles.overrides == {"ema20": "#abc"}

    kv.set(STYLES_KEY, ["not", "a", "dict"])
    assert IndicatorStyleStore(kv).overrides == {}

    assert IndicatorStyleStore(None).set_color("x", "#fff") is True
