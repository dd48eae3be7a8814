"""均值回归信号（纯函数，无内部状态）。

输入：当前价格、短/长窗口均值、当前持仓、阈值；
输出：需要平仓的仓位集合，以及（若允许）新开仓的数量。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from shared.config.schema import StrategyConfig
from shared.errors import MarketError
from shared.models.models import Position

EXIT_STOP_LOSS = "stop_loss"
EXIT_PROFIT_TARGET = "profit_target"
EXIT_INSTABILITY = "instability"


@dataclass(frozen=True)
class SignalThresholds:
    """信号阈值。

    enter_deviation 是百分比（10 表示 10%），其余是比例（0.03 表示 3%）。
    """
    enter_deviation: float
    stop_loss: float
    profit_level: float
    max_drawdown: float
    capital_per_trade: float
    max_positions: int

    @classmethod
    def from_config(cls, cfg: StrategyConfig) -> "SignalThresholds":
        rm = cfg.risk_management
        return cls(
            enter_deviation=cfg.measurement_deviation.enter_deviation,
            stop_loss=rm.stop_loss,
            profit_level=rm.profit_level,
            max_drawdown=rm.max_drawdown,
            capital_per_trade=rm.capital_per_trade,
            max_positions=rm.max_positions,
        )


@dataclass(frozen=True)
class EntryDecision:
    quantity: float
    price: float
    deviation_pct: float


@dataclass(frozen=True)
class ExitDecision:
    position_id: str
    reason: str
    profit_fraction: float


def compute_deviation(short_mean: float, long_mean: float) -> float:
    """短均值相对长均值的偏离（百分比）。

    Raises
    ------
    MarketError
        长均值 <= 0（没有有效行情时无法定义偏离）。
    """
    if long_mean <= 0:
        raise MarketError(f"Cannot compute deviation with long mean {long_mean}")
    return (short_mean - long_mean) / long_mean * 100.0


def evaluate_entry(
    price: float,
    deviation_pct: float,
    open_count: int,
    balance: float,
    thresholds: SignalThresholds,
) -> EntryDecision | None:
    """判断是否开新仓。

    条件：未满仓、偏离 <= -enter_deviation、余额为正、价格为正。
    仓位数量：`balance * capital_per_trade / price`。
    """
    if open_count >= thresholds.max_positions:
        return None
    if deviation_pct > -thresholds.enter_deviation:
        return None
    # 余额为零或为负时不再开仓
    if balance <= 0 or price <= 0:
        return None
    quantity = balance * thresholds.capital_per_trade / price
    return EntryDecision(quantity=quantity, price=price, deviation_pct=deviation_pct)


def exit_reason(price: float, short_mean: float, position: Position, thresholds: SignalThresholds) -> str | None:
    """返回单个仓位的平仓原因，不需要平仓时返回 None。"""
    profit = position.profit_fraction(price)
    if profit <= -thresholds.stop_loss:
        return EXIT_STOP_LOSS
    if profit >= thresholds.profit_level:
        return EXIT_PROFIT_TARGET
    if short_mean > 0 and (price - short_mean) / short_mean >= thresholds.max_drawdown:
        return EXIT_INSTABILITY
    return None


def evaluate_exits(
    price: float,
    short_mean: float,
    positions: Iterable[Position],
    thresholds: SignalThresholds,
) -> list[ExitDecision]:
    """逐个仓位独立判断平仓条件（任一满足即平仓）。"""
    exits: list[ExitDecision] = []
    for pos in positions:
        reason = exit_reason(price, short_mean, pos, thresholds)
        if reason is not None:
            exits.append(ExitDecision(position_id=pos.id, reason=reason, profit_fraction=pos.profit_fraction(price)))
    return exits
