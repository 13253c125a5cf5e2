"""回放引擎层（engine）。

- `ReplayEngine`：回放时钟、多周期可见切片、指标增量/全量刷新、K 线事件；
- `PlaybackController`：asyncio 定时推进；
- `ReplaySession.run() -> SessionResult`：无界面批量回放入口。

命令行入口由仓库根目录 `main.py` 统一承载。
"""
