import asyncio

import pytest

from broker.abstract_broker import BrokerMode
from broker.paper_broker import DryRunBroker, PaperBroker
from shared.errors import OrderError


def _broker(**kwargs) -> PaperBroker:
    params = {"quote_asset": "USDT", "base_asset": "BTC", "initial_balance": 1000.0}
    params.update(kwargs)
    return PaperBroker(**params)


def test_paper_broker_clips_qty_by_step():
    broker = _broker(qty_step=0.01)
    fill = asyncio.run(broker.place_buy("BTCUSDT", 0.0379, 100.0))
    assert fill.quantity == pytest.approx(0.03)
    assert fill.price == 100.0
    assert asyncio.run(broker.get_account_balance("USDT")) == pytest.approx(997.0)
    assert asyncio.run(broker.get_account_balance("btc")) == pytest.approx(0.03)


def test_paper_broker_rejects_when_qty_clips_to_zero():
    broker = _broker(qty_step=1.0)
    with pytest.raises(OrderError) as exc:
        asyncio.run(broker.place_buy("BTCUSDT", 0.5, 100.0))
    assert "clipped" in str(exc.value)


def test_buy_requires_quote_balance():
    broker = _broker(initial_balance=50.0)
    with pytest.raises(OrderError):
        asyncio.run(broker.place_buy("BTCUSDT", 1.0, 100.0))
    assert asyncio.run(broker.get_account_balance("USDT")) == 50.0


def test_sell_fills_at_last_marked_price():
    broker = _broker()
    asyncio.run(broker.place_buy("BTCUSDT", 2.0, 100.0))
    broker.mark_price("BTCUSDT", 110.0)

    ack = asyncio.run(broker.place_sell("BTCUSDT", 2.0))

    assert ack.price == 110.0
    assert ack.quantity == 2.0
    assert asyncio.run(broker.get_account_balance("USDT")) == pytest.approx(1020.0)
    assert asyncio.run(broker.get_account_balance("BTC")) == 0.0


def test_sell_more_than_held_rejected():
    broker = _broker()
    broker.mark_price("BTCUSDT", 100.0)
    with pytest.raises(OrderError):
        asyncio.run(broker.place_sell("BTCUSDT", 1.0))


def test_sell_without_price_rejected():
    broker = _broker()
    with pytest.raises(OrderError):
        asyncio.run(broker.place_sell("ETHUSDT", 1.0))


def test_dry_run_broker_mode_and_order_ids():
    broker = DryRunBroker(quote_asset="USDT", base_asset="BTC")
    assert broker.mode is BrokerMode.DRY_RUN
    fill = asyncio.run(broker.place_buy("BTCUSDT", 0.1, 100.0))
    assert fill.order_id == "dry-run-1"
