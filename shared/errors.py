"""交易引擎异常体系。

- `ApiError` 及其子类来自行情/交易所边界，属于“单周期可恢复”错误：
  调度器捕获、记录、退避后进入下一个周期；
- `CapacityError` / `NotFoundError` 是仓位管理器的业务拒绝；
- `ValidationError` 只在配置加载/启动阶段抛出，属于致命错误。
"""

from __future__ import annotations


class TradingError(Exception):
    """所有引擎异常的基类。"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ApiError(TradingError):
    """行情/执行端口的失败。"""


class ParseError(ApiError):
    """外部返回的数据无法解析（JSON 结构、数值转换等）。"""


class NetworkError(ApiError):
    """传输层失败或操作超时。"""


class MarketError(ApiError):
    """行情数据缺失或不足。"""


class OrderError(ApiError):
    """交易所拒绝了订单。"""


class CapacityError(TradingError):
    """持仓数量已达上限。"""


class NotFoundError(TradingError):
    """引用了不存在的仓位 ID。"""

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class ValidationError(TradingError):
    """配置前置条件不满足。"""
