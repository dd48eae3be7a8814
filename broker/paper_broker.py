"""模拟 broker（dry-run / paper）。

- dry-run：不触网，行情来自随机游走或 CSV 回放，纯本地记账
- paper：使用真实行情，仍只做本地记账

成交价取下单时传入的参考价（卖单取最近一次已知价格），不模拟滑点和手续费。
"""

from __future__ import annotations

from datetime import datetime, timezone

from broker.abstract_broker import BrokerMode, ExecutionPort
from shared.errors import OrderError
from shared.models.models import OrderAck, OrderFill
from shared.utils.precision import decimals_from_step, floor_to_step
from utils.logging import setup_logger


class PaperBroker(ExecutionPort):
    """纸面交易 broker：维护计价币/基础币两个本地余额。

    Parameters
    ----------
    quote_asset:
        计价币种，例如 "USDT"。
    base_asset:
        基础币种，例如 "BTC"；为空时不追踪基础币余额。
    initial_balance:
        计价币初始余额。
    qty_step:
        数量步进，下单数量会向下取整到该步进。
    """

    def __init__(
        self,
        *,
        quote_asset: str,
        base_asset: str | None = None,
        initial_balance: float = 1000.0,
        mode: BrokerMode = BrokerMode.PAPER,
        qty_step: float | None = None,
    ):
        self.mode = mode
        self.logger = setup_logger("paper-broker")
        self.quote_asset = quote_asset.upper()
        self.base_asset = base_asset.upper() if base_asset else None
        self.qty_step = qty_step
        self.balances: dict[str, float] = {self.quote_asset: float(initial_balance)}
        if self.base_asset:
            self.balances[self.base_asset] = 0.0
        self.last_price: dict[str, float] = {}
        self._order_seq = 0

    def _next_order_id(self) -> str:
        self._order_seq += 1
        return f"{self.mode.value}-{self._order_seq}"

    def _clip_qty(self, quantity: float) -> float:
        if quantity <= 0:
            raise OrderError(f"quantity must be positive, got {quantity}")
        qty = float(quantity)
        if self.qty_step:
            qty = floor_to_step(qty, self.qty_step)
            qty = round(qty, decimals_from_step(self.qty_step))
        if qty <= 0:
            raise OrderError(f"quantity {quantity} clipped to 0 by qty_step {self.qty_step}")
        return qty

    def mark_price(self, symbol: str, price: float) -> None:
        """记录最新价格（卖单按此价格成交）。"""
        self.last_price[symbol] = float(price)

    async def place_buy(self, symbol: str, quantity: float, price: float) -> OrderFill:
        if price <= 0:
            raise OrderError(f"invalid price for {symbol}: {price}")
        qty = self._clip_qty(quantity)
        cost = qty * price
        available = self.balances.get(self.quote_asset, 0.0)
        if cost > available + 1e-12:
            raise OrderError(f"insufficient {self.quote_asset} balance: need {cost:.8f}, have {available:.8f}")

        self.balances[self.quote_asset] = available - cost
        if self.base_asset:
            self.balances[self.base_asset] = self.balances.get(self.base_asset, 0.0) + qty
        self.mark_price(symbol, price)

        order_id = self._next_order_id()
        self.logger.info("[%s ORDER] BUY %s qty=%s price=%s id=%s", self.mode.value, symbol, qty, price, order_id)
        return OrderFill(symbol=symbol, price=float(price), quantity=qty, ts=datetime.now(timezone.utc), order_id=order_id)

    async def place_sell(self, symbol: str, quantity: float) -> OrderAck:
        price = self.last_price.get(symbol)
        if price is None:
            raise OrderError(f"no reference price for {symbol}")
        qty = float(quantity)
        if qty <= 0:
            raise OrderError(f"quantity must be positive, got {quantity}")
        if self.base_asset:
            held = self.balances.get(self.base_asset, 0.0)
            if qty > held + 1e-12:
                raise OrderError(f"insufficient {self.base_asset} holdings: need {qty}, have {held}")
            self.balances[self.base_asset] = max(0.0, held - qty)
        self.balances[self.quote_asset] = self.balances.get(self.quote_asset, 0.0) + qty * price

        order_id = self._next_order_id()
        self.logger.info("[%s ORDER] SELL %s qty=%s price=%s id=%s", self.mode.value, symbol, qty, price, order_id)
        return OrderAck(symbol=symbol, quantity=qty, ts=datetime.now(timezone.utc), order_id=order_id, price=price)

    async def get_account_balance(self, asset: str) -> float:
        return float(self.balances.get(asset.upper(), 0.0))


class DryRunBroker(PaperBroker):
    """干跑 broker：等价 paper，但默认 mode=DRY_RUN。"""

    def __init__(self, **kwargs):
        super().__init__(mode=BrokerMode.DRY_RUN, **kwargs)
