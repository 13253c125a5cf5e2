"""SQLite 键值存储（key -> JSON blob）。

用途
----
- 持久化指标颜色覆盖等 UI 偏好；启动时读一次，每次相关修改后写一次。

约定
----
- 存储内容损坏（非法 JSON）按“不存在”处理，调用方回落到默认值；
- 读写失败只记 warning，不影响正在进行的回放会话。
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shared.utils.logging import setup_logger

_LOGGER = setup_logger("kv-store")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _json_dumps(obj: Any) -> str:
    if is_dataclass(obj):
        obj = asdict(obj)  # type: ignore
    return json.dumps(obj, ensure_ascii=False, default=str, allow_nan=False)


class SqliteKeyValueStore:
    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._conn: sqlite3.Connection | None = None
        try:
            if str(path) != ":memory:":
                self.path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(path), isolation_level=None)
            self._ensure_schema()
        except (OSError, sqlite3.Error) as exc:
            _LOGGER.warning("键值存储不可用，跳过持久化: %s (%s)", self.path, exc)
            self._conn = None

    @property
    def available(self) -> bool:
        return self._conn is not None

    def close(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            _LOGGER.warning("关闭键值存储失败: %s", exc)
        self._conn = None

    def _ensure_schema(self) -> None:
        assert self._conn is not None
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
              key TEXT PRIMARY KEY,
              value_json TEXT NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )

    def get(self, key: str, default: Any = None) -> Any:
        if self._conn is None:
            return default
        try:
            row = self._conn.execute("SELECT value_json FROM kv WHERE key = ? LIMIT 1;", (key,)).fetchone()
        except sqlite3.Error as exc:
            _LOGGER.warning("读取 %s 失败，使用默认值: %s", key, exc)
            return default
        if row is None:
            return default
        try:
            return json.loads(row[0])
        except (TypeError, ValueError):
            _LOGGER.warning("%s 存储内容不是合法 JSON，按不存在处理", key)
            return default

    def set(self, key: str, value: Any) -> bool:
        if self._conn is None:
            return False
        try:
            payload = _json_dumps(value)
            self._conn.execute(
                """
                INSERT INTO kv (key, value_json, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json, updated_at = excluded.updated_at;
                """,
                (key, payload, _utc_now_iso()),
            )
            return True
        except (sqlite3.Error, TypeError, ValueError) as exc:
            _LOGGER.warning("写入 %s 失败，本次跳过: %s", key, exc)
            return False

    def delete(self, key: str) -> None:
        if self._conn is None:
            return
        try:
            self._conn.execute("DELETE FROM kv WHERE key = ?;", (key,))
        except sqlite3.Error as exc:
            _LOGGER.warning("删除 %s 失败: %s", key, exc)
