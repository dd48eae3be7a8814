from __future__ import annotations

import asyncio

import pytest

from algo.risk.ledger import BalanceLedger
from algo.risk.position_manager import PositionManager
from shared.errors import CapacityError, NetworkError, NotFoundError, OrderError


def test_open_position_records_confirmed_fill(fake_execution):
    fake_execution.fill_price = 101.0
    pm = PositionManager(fake_execution, max_positions=2)

    consumed = asyncio.run(pm.open_position("BTCUSDT", 0.5, 100.0))

    assert consumed == pytest.approx(101.0 * 0.5)
    assert len(pm) == 1
    pos = next(iter(pm))
    assert pos.entry_price == 101.0
    assert pos.quantity == 0.5
    assert pos.order_id == "buy-1"
    assert len(pos.id) == 32
    assert pm.get(pos.id) is pos
    assert pm.last_opened is pos


def test_capacity_checked_before_port_call(fake_execution):
    pm = PositionManager(fake_execution, max_positions=1)
    asyncio.run(pm.open_position("BTCUSDT", 1.0, 100.0))
    assert pm.is_full

    with pytest.raises(CapacityError):
        asyncio.run(pm.open_position("BTCUSDT", 1.0, 100.0))
    assert len(fake_execution.buys) == 1
    assert len(pm) == 1


def test_failed_buy_records_nothing(fake_execution):
    fake_execution.fail_buy = OrderError("rejected")
    pm = PositionManager(fake_execution, max_positions=3)
    with pytest.raises(OrderError):
        asyncio.run(pm.open_position("BTCUSDT", 1.0, 100.0))
    assert pm.is_empty


def test_close_unknown_position_raises_and_leaves_mapping(fake_execution):
    pm = PositionManager(fake_execution, max_positions=3)
    asyncio.run(pm.open_position("BTCUSDT", 1.0, 100.0))
    before = dict(pm.positions)

    with pytest.raises(NotFoundError):
        asyncio.run(pm.close_position("missing", 100.0))
    assert dict(pm.positions) == before
    assert fake_execution.sells == []


def test_failed_sell_keeps_position(fake_execution):
    pm = PositionManager(fake_execution, max_positions=3)
    asyncio.run(pm.open_position("BTCUSDT", 1.0, 100.0))
    pid = next(iter(pm)).id

    fake_execution.fail_sell = NetworkError("timeout")
    with pytest.raises(NetworkError):
        asyncio.run(pm.close_position(pid, 110.0))
    assert pm.get(pid) is not None


def test_close_returns_proceeds_at_current_price(fake_execution):
    pm = PositionManager(fake_execution, max_positions=3)
    asyncio.run(pm.open_position("BTCUSDT", 2.0, 100.0))
    pid = next(iter(pm)).id

    proceeds = asyncio.run(pm.close_position(pid, 110.0))

    assert proceeds == pytest.approx(220.0)
    assert pm.is_empty
    assert fake_execution.sells == [("BTCUSDT", 2.0)]


def test_open_then_close_at_same_price_nets_to_zero(fake_execution):
    pm = PositionManager(fake_execution, max_positions=3)
    ledger = BalanceLedger(1000.0)

    ledger.debit(asyncio.run(pm.open_position("BTCUSDT", 0.37, 123.45)), "open")
    pid = next(iter(pm)).id
    ledger.credit(asyncio.run(pm.close_position(pid, 123.45)), "close")

    assert ledger.balance == pytest.approx(1000.0)


def test_positions_view_is_read_only(fake_execution):
    pm = PositionManager(fake_execution, max_positions=3)
    with pytest.raises(TypeError):
        pm.positions["x"] = None  # type: ignore[index]


def test_max_positions_must_be_positive(fake_execution):
    with pytest.raises(ValueError):
        PositionManager(fake_execution, max_positions=0)
