"""执行端口（ExecutionPort）抽象接口与运行模式定义。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum

from shared.models.models import OrderAck, OrderFill


class BrokerMode(Enum):
    """Broker 运行模式枚举。"""

    DRY_RUN = "dry-run"
    PAPER = "paper"
    LIVE = "live"


class ExecutionPort(ABC):
    """交易执行抽象层。

    引擎只依赖这个接口，具体交易所适配器在构造时注入。
    所有方法在失败时抛 `ApiError` 子类（通常是 `OrderError` / `NetworkError`），
    成功返回即表示交易所已确认。
    """

    mode: BrokerMode

    @abstractmethod
    async def place_buy(self, symbol: str, quantity: float, price: float) -> OrderFill:
        """市价买入。

        Parameters
        ----------
        symbol:
            交易对，如 "BTCUSDT"。
        quantity:
            基础币数量。
        price:
            下单时的参考价格（纸面模式按此成交）。

        Returns
        -------
        OrderFill
            交易所确认的成交价/数量/时间。
        """

    @abstractmethod
    async def place_sell(self, symbol: str, quantity: float) -> OrderAck:
        """市价卖出指定数量。"""

    @abstractmethod
    async def get_account_balance(self, asset: str) -> float:
        """查询某个币种的可用余额，例如 "USDT"。"""
