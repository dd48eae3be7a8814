import asyncio
import sys
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from broker.abstract_broker import BrokerMode, ExecutionPort  # noqa: E402
from market_data.client import MarketDataPort  # noqa: E402
from shared.config.config_loader import parse_config  # noqa: E402
from shared.errors import MarketError  # noqa: E402
from shared.models.models import Candle, OrderAck, OrderFill  # noqa: E402

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_candle(close: float, i: int = 0) -> Candle:
    return Candle(
        timestamp=T0 + timedelta(minutes=i),
        open=close,
        high=close,
        low=close,
        close=close,
        volume=1.0,
    )


class FakeMarket(MarketDataPort):
    """历史 K 线固定；latest 队列里可以放价格、异常或可调用对象。"""

    def __init__(self, history: list[float], latest: list | None = None, delay: float = 0.0):
        super().__init__()
        self.history = [make_candle(c, i) for i, c in enumerate(history)]
        self.latest = deque(latest or [])
        self.delay = delay
        self.latest_calls = 0

    async def get_candles(self, symbol, interval, count):
        return self.history[-count:]

    async def get_latest_candle(self, symbol, interval):
        self.latest_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.latest:
            raise MarketError("no more candles")
        item = self.latest.popleft()
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item()
        candle = make_candle(item, len(self.history) + self.latest_calls)
        self._publish(symbol, candle)
        return candle


class FakeExecution(ExecutionPort):
    """记录所有下单；fail_buy / fail_sell 设置为异常时对应下单失败。"""

    mode = BrokerMode.PAPER

    def __init__(self, balance: float = 1000.0, fill_price: float | None = None):
        self.balance = balance
        self.fill_price = fill_price
        self.buys: list[tuple[str, float, float]] = []
        self.sells: list[tuple[str, float]] = []
        self.fail_buy: Exception | None = None
        self.fail_sell: Exception | None = None

    async def place_buy(self, symbol, quantity, price):
        if self.fail_buy is not None:
            raise self.fail_buy
        self.buys.append((symbol, quantity, price))
        return OrderFill(
            symbol=symbol,
            price=self.fill_price if self.fill_price is not None else price,
            quantity=quantity,
            ts=datetime.now(timezone.utc),
            order_id=f"buy-{len(self.buys)}",
        )

    async def place_sell(self, symbol, quantity):
        if self.fail_sell is not None:
            raise self.fail_sell
        self.sells.append((symbol, quantity))
        return OrderAck(symbol=symbol, quantity=quantity, ts=datetime.now(timezone.utc), order_id=f"sell-{len(self.sells)}")

    async def get_account_balance(self, asset):
        return self.balance


def _merge(base: dict, override: dict) -> dict:
    out = dict(base)
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


BASE_CONFIG = {
    "symbol": "BTCUSDT",
    "trading_symbol": "USDT",
    "mode": "dry-run",
    "timeframe": {"interval": "1m", "tick": 0.001, "measure_bars": 6, "short_bars": 2},
    "risk_management": {
        "capital_per_trade": 0.1,
        "max_positions": 3,
        "max_drawdown": 0.5,
        "stop_loss": 0.03,
        "profit_level": 0.05,
    },
    "measurement_deviation": {"enter_deviation": 5.0},
    "scheduler": {"backoff": 0, "operation_timeout": 1.0},
}


@pytest.fixture
def make_config():
    def _make(**overrides):
        return parse_config(_merge(BASE_CONFIG, overrides))

    return _make


@pytest.fixture
def fake_execution():
    return FakeExecution()


@pytest.fixture
def fake_market_cls():
    return FakeMarket
