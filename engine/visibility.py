"""可见切片计算与“增量 vs 全量”判定。

回放时钟每变化一次，每个周期都要重新切出 `history[0..=idx]`（idx 为最后一根
`time <= clock` 的 K 线）。历史可能有几万根，这里必须是二分查找。

切片从长度 P 变为 N 时：
- N == 0            -> EMPTY      指标清空
- N <  P            -> RESET      时钟回退，全量重算
- N - P > 1         -> JUMP       一次出现多根，全量重算
- N - P == 1        -> STEP       只用最新一根增量更新
- N == P 且末根变化 -> STEP       形成中的 K 线被修订，原地替换
- 其余              -> UNCHANGED  保持原序列
"""

from __future__ import annotations

from bisect import bisect_right
from enum import Enum
from typing import Sequence

from shared.models.models import Candle


class VisibilityChange(str, Enum):
    EMPTY = "empty"
    RESET = "reset"
    JUMP = "jump"
    STEP = "step"
    UNCHANGED = "unchanged"

    @property
    def needs_full_recompute(self) -> bool:
        return self in (VisibilityChange.RESET, VisibilityChange.JUMP)


def find_visible_end_index(times: Sequence[int], clock: int | float) -> int:
    """返回最后一根 time <= clock 的下标；全部在 clock 之后时返回 -1。"""
    return bisect_right(times, clock) - 1


def find_closest_index(times: Sequence[int], target: int | float) -> int:
    """返回 time 最接近 target 的下标（距离相同取更早的一根）；空序列返回 -1。"""
    if not times:
        return -1
    right = bisect_right(times, target)
    if right == 0:
        return 0
    if right >= len(times):
        return len(times) - 1
    left = right - 1
    if target - times[left] <= times[right] - target:
        return left
    return right


def classify_transition(
    prev_len: int,
    new_len: int,
    prev_last: Candle | None = None,
    new_last: Candle | None = None,
) -> VisibilityChange:
    if new_len == 0:
        return VisibilityChange.EMPTY
    if new_len < prev_len:
        return VisibilityChange.RESET
    if new_len - prev_len > 1:
        return VisibilityChange.JUMP
    if new_len - prev_len == 1:
        return VisibilityChange.STEP
    if prev_last is not None and new_last is not None and prev_last != new_last:
        if prev_last.time != new_last.time:
            # 同长度但末根换了一根不同时间的 K 线：历史被替换，不能走增量
            return VisibilityChange.JUMP
        return VisibilityChange.STEP
    return VisibilityChange.UNCHANGED
