from __future__ import annotations

from datetime import datetime, timezone

import pytest

from algo.strategy.mean_reversion import (
    EXIT_INSTABILITY,
    EXIT_PROFIT_TARGET,
    EXIT_STOP_LOSS,
    SignalThresholds,
    compute_deviation,
    evaluate_entry,
    evaluate_exits,
    exit_reason,
)
from shared.errors import MarketError
from shared.models.models import Position

TH = SignalThresholds(
    enter_deviation=10.0,
    stop_loss=0.03,
    profit_level=0.05,
    max_drawdown=0.02,
    capital_per_trade=0.1,
    max_positions=3,
)


def _pos(entry: float, pid: str = "p1") -> Position:
    return Position(id=pid, symbol="BTCUSDT", entry_price=entry, quantity=1.0, opened_at=datetime.now(timezone.utc))


def test_deviation_percent():
    assert compute_deviation(80.0, 100.0) == pytest.approx(-20.0)
    assert compute_deviation(110.0, 100.0) == pytest.approx(10.0)


@pytest.mark.parametrize("long_mean", [0.0, -1.0])
def test_deviation_requires_positive_long_mean(long_mean):
    with pytest.raises(MarketError):
        compute_deviation(10.0, long_mean)


def test_entry_accepted_and_sized_from_balance():
    entry = evaluate_entry(price=50.0, deviation_pct=-20.0, open_count=0, balance=1000.0, thresholds=TH)
    assert entry is not None
    assert entry.quantity == pytest.approx(1000.0 * 0.1 / 50.0)
    assert entry.price == 50.0


def test_entry_at_exact_threshold_is_accepted():
    assert evaluate_entry(50.0, -10.0, 0, 1000.0, TH) is not None


@pytest.mark.parametrize(
    "deviation,open_count,balance",
    [
        (-5.0, 0, 1000.0),   # 偏离不够
        (-20.0, 3, 1000.0),  # 满仓
        (-20.0, 0, 0.0),     # 没钱
        (-20.0, 0, -5.0),
    ],
)
def test_entry_rejected(deviation, open_count, balance):
    assert evaluate_entry(50.0, deviation, open_count, balance, TH) is None


def test_stop_loss_exit():
    assert exit_reason(95.0, 96.0, _pos(100.0), TH) == EXIT_STOP_LOSS


def test_profit_target_uses_position_profit():
    assert exit_reason(106.0, 105.0, _pos(100.0), TH) == EXIT_PROFIT_TARGET


def test_instability_exit():
    # profit 1%，但价格高于短均值 3%
    assert exit_reason(101.0, 98.0, _pos(100.0), TH) == EXIT_INSTABILITY


def test_no_exit_inside_band():
    assert exit_reason(100.5, 100.4, _pos(100.0), TH) is None


def test_exits_evaluated_per_position():
    positions = [_pos(100.0, "a"), _pos(90.0, "b"), _pos(102.0, "c")]
    exits = evaluate_exits(price=99.5, short_mean=99.4, positions=positions, thresholds=TH)
    by_id = {e.position_id: e for e in exits}
    assert set(by_id) == {"b"}
    assert by_id["b"].reason == EXIT_PROFIT_TARGET
    assert by_id["b"].profit_fraction == pytest.approx((99.5 - 90.0) / 90.0)
