import sys
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from shared.models.models import Candle  # noqa: E402


@pytest.fixture
def flat_candles():
    """生成等间隔、价格不变的 K 线：flat_candles(n, step=3600, start=0)。"""

    def _make(n: int, step: int = 3600, start: int = 0) -> list[Candle]:
        return [Candle(time=start + i * step, open=1.0, high=2.0, low=0.5, close=1.5) for i in range(n)]

    return _make
