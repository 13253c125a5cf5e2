"""自动播放（PlaybackController）。

一个可取消的 asyncio 任务：每隔 interval_ms 调一次 `engine.advance()`，推进满 max_ticks 次或
`advance()` 返回 False（数据播完）时自行停止。每个 tick 内的状态变更都是同步完成的，
暂停/调速只会发生在两个 tick 之间。
"""

from __future__ import annotations

import asyncio

from engine.replay_engine import ReplayEngine
from shared.utils.logging import setup_logger

_LOGGER = setup_logger("playback")

DEFAULT_INTERVAL_MS = 500
MIN_INTERVAL_MS = 10


class PlaybackController:
    def __init__(self, engine: ReplayEngine, interval_ms: int = DEFAULT_INTERVAL_MS, max_ticks: int | None = None):
        self.engine = engine
        self._interval_ms = max(MIN_INTERVAL_MS, int(interval_ms))
        self.max_ticks = max_ticks
        self._task: asyncio.Task | None = None
        self.ticks = 0

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    @property
    def is_playing(self) -> bool:
        return self._task is not None and not self._task.done()

    def play(self) -> None:
        """开始播放；已在播放时不重复创建任务。需在事件循环内调用。"""
        if self.is_playing:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def pause(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def toggle(self) -> None:
        if self.is_playing:
            self.pause()
        else:
            self.play()

    def set_speed(self, interval_ms: int) -> None:
        """调整播放间隔；播放中则用新间隔替换当前任务。"""
        self._interval_ms = max(MIN_INTERVAL_MS, int(interval_ms))
        if self.is_playing:
            self.pause()
            self.play()

    async def wait(self) -> None:
        """等待当前播放任务结束（播完或被暂停）。"""
        task = self._task
        if task is None:
            return
        try:
            await task
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    async def _run(self) -> None:
        while self.max_ticks is None or self.ticks < self.max_ticks:
            await asyncio.sleep(self._interval_ms / 1000)
            if not self.engine.advance():
                _LOGGER.info("回放到达最后一根 K 线，停止播放 (ticks=%s)", self.ticks)
                break
            self.ticks += 1
        self._task = None
