"""实盘 broker（基于 ccxt 的现货市价单）。

说明：
- 仅在 allow_live=True 时才会真实下单；
- 配置了 symbols_allowlist 时，只允许名单内的 symbol；
- ccxt 是同步客户端，所有调用放到默认线程池里执行；
- ccxt 异常统一映射为 `NetworkError` / `OrderError`。
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable

import ccxt

from broker.abstract_broker import BrokerMode, ExecutionPort
from shared.errors import NetworkError, OrderError, ValidationError
from shared.models.models import OrderAck, OrderFill
from shared.utils.precision import floor_to_step, parse_float
from utils.logging import setup_logger

# 交易所已终止、不会再继续成交的订单状态
UNFILLED_STATUSES = {"canceled", "cancelled", "expired", "rejected"}


class LiveBroker(ExecutionPort):
    """对接交易所的实盘 broker。

    Parameters
    ----------
    exchange_name:
        ccxt 交易所 id，例如 "binance"。
    api_key / api_secret:
        交易所密钥（建议用 `${VAR}` 从环境变量注入）。
    allow_live:
        实盘开关，False 时所有下单都会被拒绝。
    symbols_allowlist:
        允许交易的 symbol（交易所原生格式，例如 "BTCUSDT"）。
    qty_step:
        可选的数量步进；未配置时使用交易所的精度规则。
    sandbox:
        是否启用 ccxt 的测试网模式。
    exchange:
        可注入的 ccxt 实例（测试用）。
    """

    def __init__(
        self,
        *,
        exchange_name: str = "binance",
        api_key: str | None = None,
        api_secret: str | None = None,
        allow_live: bool = False,
        symbols_allowlist: list[str] | None = None,
        qty_step: float | None = None,
        timeout_secs: float = 10.0,
        sandbox: bool = False,
        exchange: Any | None = None,
    ):
        self.mode = BrokerMode.LIVE
        self.logger = setup_logger("live-broker")
        self.allow_live = allow_live
        self.symbols_allowlist = [s.upper() for s in (symbols_allowlist or [])]
        self.qty_step = qty_step
        if exchange is None:
            exchange_cls = getattr(ccxt, exchange_name, None)
            if exchange_cls is None:
                raise ValidationError(f"Unknown exchange for ccxt: {exchange_name}")
            exchange = exchange_cls(
                {
                    "apiKey": api_key,
                    "secret": api_secret,
                    "enableRateLimit": True,
                    "timeout": int(timeout_secs * 1000),
                    "options": {"defaultType": "spot"},
                }
            )
            if sandbox:
                exchange.set_sandbox_mode(True)
        self.exchange = exchange
        self.markets_loaded = False

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except ccxt.NetworkError as exc:
            raise NetworkError(f"{self.exchange.id} network error: {exc}") from exc
        except ccxt.BaseError as exc:
            raise OrderError(f"{self.exchange.id} rejected request: {exc}") from exc

    async def _ensure_markets(self) -> None:
        if self.markets_loaded:
            return
        await self._call(self.exchange.load_markets)
        self.markets_loaded = True
        self.logger.info("Loaded %d markets from %s", len(self.exchange.symbols or []), self.exchange.id)

    def _unified_symbol(self, symbol: str) -> str:
        """把交易所原生 symbol（BTCUSDT）转换为 ccxt 统一格式（BTC/USDT）。"""
        if "/" in symbol:
            return symbol
        market = (self.exchange.markets_by_id or {}).get(symbol)
        # 新版 ccxt 的 markets_by_id 值是列表
        if isinstance(market, list):
            market = market[0] if market else None
        if not market:
            raise OrderError(f"Unknown market on {self.exchange.id}: {symbol}")
        return market["symbol"]

    def _guard(self, symbol: str) -> None:
        if not self.allow_live:
            raise OrderError("Live trading disabled (exchange.allow_live=false)")
        if self.symbols_allowlist and symbol.upper() not in self.symbols_allowlist:
            raise OrderError(f"Symbol not in allowlist: {symbol}")

    def _amount(self, unified: str, quantity: float) -> float:
        qty = floor_to_step(quantity, self.qty_step) if self.qty_step else quantity
        qty = parse_float(self.exchange.amount_to_precision(unified, qty), field="amount")
        if qty <= 0:
            raise OrderError(f"quantity {quantity} rounds to 0 for {unified}")
        return qty

    @staticmethod
    def _order_ts(order: dict[str, Any]) -> datetime:
        ts = order.get("timestamp")
        if ts is None:
            return datetime.now(timezone.utc)
        return datetime.fromtimestamp(parse_float(ts, field="timestamp") / 1000.0, tz=timezone.utc)

    def _filled(self, order: dict[str, Any], side: str, amount: float) -> float:
        """读取实际成交数量；未成交的订单不能当作成交回报。

        Raises
        ------
        OrderError
            filled 缺失或 <= 0（包括 canceled/expired/rejected 且无成交的订单）。
        """
        status = str(order.get("status") or "").lower()
        raw = order.get("filled")
        if raw is None:
            raise OrderError(
                f"{side.upper()} order {order.get('id')} has no filled amount (status={status or 'unknown'})"
            )
        filled = parse_float(raw, field="filled")
        if filled <= 0:
            outcome = f"{status} without fill" if status in UNFILLED_STATUSES else "not filled"
            raise OrderError(f"{side.upper()} order {order.get('id')} {outcome} (status={status or 'unknown'})")
        if filled < amount:
            # 部分成交（包括 expired 前已成交的部分）按实际数量记账
            self.logger.warning(
                "%s order %s partially filled: %s of %s (status=%s)",
                side.upper(),
                order.get("id"),
                filled,
                amount,
                status or "unknown",
            )
        return filled

    async def place_buy(self, symbol: str, quantity: float, price: float) -> OrderFill:
        self._guard(symbol)
        await self._ensure_markets()
        unified = self._unified_symbol(symbol)
        amount = self._amount(unified, quantity)

        self.logger.info("Placing market BUY %s amount=%s (ref price %s)", unified, amount, price)
        order = await self._call(self.exchange.create_order, unified, "market", "buy", amount)

        filled = self._filled(order, "buy", amount)
        avg = order.get("average") or order.get("price") or price
        fill = OrderFill(
            symbol=symbol,
            price=parse_float(avg, field="average"),
            quantity=filled,
            ts=self._order_ts(order),
            order_id=str(order.get("id")) if order.get("id") is not None else None,
        )
        self.logger.info("BUY filled: %s qty=%s @ %s id=%s", symbol, fill.quantity, fill.price, fill.order_id)
        return fill

    async def place_sell(self, symbol: str, quantity: float) -> OrderAck:
        self._guard(symbol)
        await self._ensure_markets()
        unified = self._unified_symbol(symbol)
        amount = self._amount(unified, quantity)

        self.logger.info("Placing market SELL %s amount=%s", unified, amount)
        order = await self._call(self.exchange.create_order, unified, "market", "sell", amount)

        filled = self._filled(order, "sell", amount)
        avg = order.get("average") or order.get("price")
        ack = OrderAck(
            symbol=symbol,
            quantity=filled,
            ts=self._order_ts(order),
            order_id=str(order.get("id")) if order.get("id") is not None else None,
            price=parse_float(avg, field="average") if avg is not None else None,
        )
        self.logger.info("SELL confirmed: %s qty=%s id=%s", symbol, ack.quantity, ack.order_id)
        return ack

    async def get_account_balance(self, asset: str) -> float:
        balance = await self._call(self.exchange.fetch_balance)
        free = (balance or {}).get("free") or {}
        value = free.get(asset.upper())
        if value is None:
            return 0.0
        return parse_float(value, field=f"free.{asset}")

    async def close(self) -> None:
        """释放 ccxt 连接（同步客户端上通常是 no-op）。"""
        close = getattr(self.exchange, "close", None)
        if close is None:
            return
        result = close()
        if asyncio.iscoroutine(result):
            await result
