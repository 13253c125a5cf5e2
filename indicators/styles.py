"""指标颜色覆盖（持久化到键值存储）。"""

from __future__ import annotations

import re

from shared.models.models import IndicatorDefinition
from shared.state.kv_store import SqliteKeyValueStore
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("indicator-styles")

STYLES_KEY = "indicator_colors"
_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


class IndicatorStyleStore:
    """启动时读取一次颜色覆盖；每次修改立即写回。"""

    def __init__(self, store: SqliteKeyValueStore | None = None):
        self._store = store
        self._overrides: dict[str, str] = {}
        if store is not None:
            raw = store.get(STYLES_KEY, default={})
            if isinstance(raw, dict):
                self._overrides = {str(k): str(v) for k, v in raw.items() if _HEX_COLOR.match(str(v))}
            else:
                _LOGGER.warning("颜色覆盖格式不正确，使用默认颜色")

    @property
    def overrides(self) -> dict[str, str]:
        return dict(self._overrides)

    def color_for(self, definition: IndicatorDefinition) -> str:
        return self._overrides.get(definition.id, definition.color)

    def set_color(self, indicator_id: str, color: str) -> bool:
        if not _HEX_COLOR.match(color):
            return False
        self._overrides[indicator_id] = color
        self._persist()
        return True

    def reset_color(self, indicator_id: str) -> None:
        if self._overrides.pop(indicator_id, None) is not None:
            self._persist()

    def _persist(self) -> None:
        if self._store is None:
            return
        self._store.set(STYLES_KEY, self._overrides)
