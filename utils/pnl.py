from typing import Iterable

from shared.models.models import Position


def compute_unrealized_pnl(positions: Iterable[Position], last_price: float) -> float:
    """
    计算未实现盈亏：sum(qty * (last_price - entry_price))
    """
    pnl = 0.0
    for pos in positions:
        if pos.quantity == 0:
            continue
        pnl += (last_price - pos.entry_price) * pos.quantity
    return pnl


def realized_pnl(position: Position, exit_price: float) -> float:
    """
    单笔平仓的已实现盈亏（不含手续费）。
    """
    return (exit_price - position.entry_price) * position.quantity
