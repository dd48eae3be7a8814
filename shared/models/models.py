"""核心数据结构：Candle/Position/OrderFill/OrderAck/CycleSummary。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Candle:
    """K 线数据（外部产生，只读消费）。"""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class Position:
    """一笔已确认成交的持仓。"""
    id: str
    symbol: str
    entry_price: float
    quantity: float
    opened_at: datetime
    order_id: str | None = None  # 交易所侧订单号，便于人工对账

    @property
    def cost(self) -> float:
        return self.entry_price * self.quantity

    def profit_fraction(self, price: float) -> float:
        """相对开仓价的收益比例，例如 -0.05 表示亏损 5%。"""
        return (price - self.entry_price) / self.entry_price


@dataclass(frozen=True)
class OrderFill:
    """买单成交回报（成交价/时间以交易所为准）。"""
    symbol: str
    price: float
    quantity: float
    ts: datetime
    order_id: str | None = None


@dataclass(frozen=True)
class OrderAck:
    """卖单确认。"""
    symbol: str
    quantity: float
    ts: datetime
    order_id: str | None = None
    price: float | None = None


@dataclass(frozen=True)
class CycleSummary:
    """单个调度周期的结果快照。"""
    cycle: int
    ts: datetime
    price: float
    short_mean: float
    long_mean: float
    deviation_pct: float
    balance: float
    open_positions: int
    closed: int = 0
    opened: bool = False
    realized_proceeds: float = 0.0
    capital_consumed: float = 0.0
    failed_orders: int = 0
    unrealized_pnl: float = 0.0
