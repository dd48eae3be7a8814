"""执行引擎层（engine）。

`TradingScheduler` 驱动均值回归的单交易对循环；`runner` 负责按运行模式装配
行情源与执行端并启动调度。命令行入口由仓库根目录 `main.py` 统一承载。
"""
