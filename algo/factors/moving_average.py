"""滚动均值因子（增量版）。

和批量的 DataFrame 因子不同，这里每来一根 K 线只做 O(1) 更新：
窗口用 deque 保存最近 period 个值，同时维护滚动和。
"""

from __future__ import annotations

import math
from collections import deque
from enum import Enum
from typing import Deque


class MeanCalculationMethod(str, Enum):
    """均值计算方式（封闭集合）。"""

    SIMPLE_MA = "simple_ma"
    EMA = "ema"
    VWAP = "vwap"


class MovingAverageTracker:
    """简单移动平均（SMA）追踪器。

    Parameters
    ----------
    period:
        窗口长度，必须 > 0。

    Notes
    -----
    滚动和每经过 period 次淘汰就用 `math.fsum` 按窗口内容重算一次，
    长时间运行也不会累积浮点漂移。
    """

    method = MeanCalculationMethod.SIMPLE_MA

    def __init__(self, period: int):
        if period <= 0:
            raise ValueError("MA period must be > 0")
        self.period = int(period)
        self._values: Deque[float] = deque()
        self._sum = 0.0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._values)

    @property
    def values(self) -> tuple[float, ...]:
        return tuple(self._values)

    @property
    def running_sum(self) -> float:
        return self._sum

    def update(self, value: float) -> float:
        """追加一个值并返回最新均值。"""
        value = float(value)
        self._values.append(value)
        self._sum += value

        if len(self._values) > self.period:
            self._sum -= self._values.popleft()
            self._evictions += 1
            if self._evictions >= self.period:
                self._sum = math.fsum(self._values)
                self._evictions = 0

        return self.calculate()

    def calculate(self) -> float:
        """返回当前均值；窗口为空时返回 0。"""
        if not self._values:
            return 0.0
        return self._sum / len(self._values)

    def reset(self) -> None:
        self._values.clear()
        self._sum = 0.0
        self._evictions = 0
