"""仓位生命周期管理。

持仓只在交易所确认成交后才进入映射，只在卖出确认后才移除；
失败时端口异常原样抛出，内部状态不变。
"""

from __future__ import annotations

import logging
import uuid
from types import MappingProxyType
from typing import Iterator, Mapping

from broker.abstract_broker import ExecutionPort
from shared.errors import CapacityError, NotFoundError
from shared.models.models import Position
from utils.logging import setup_logger


class PositionManager:
    """持有全部未平仓位，并通过执行端口完成开/平仓。

    Parameters
    ----------
    execution:
        交易执行端口。
    max_positions:
        同时持仓数上限。
    logger:
        可选的注入 logger，缺省为 "positions"。
    """

    def __init__(self, execution: ExecutionPort, max_positions: int, logger: logging.Logger | None = None):
        if max_positions < 1:
            raise ValueError(f"max_positions must be >= 1, got {max_positions}")
        self.execution = execution
        self.max_positions = int(max_positions)
        self.logger = logger or setup_logger("positions")
        self._positions: dict[str, Position] = {}
        self.last_opened: Position | None = None

    @property
    def positions(self) -> Mapping[str, Position]:
        """只读视图。"""
        return MappingProxyType(self._positions)

    @property
    def is_full(self) -> bool:
        return len(self._positions) >= self.max_positions

    @property
    def is_empty(self) -> bool:
        return not self._positions

    def get(self, position_id: str) -> Position | None:
        return self._positions.get(position_id)

    def __len__(self) -> int:
        return len(self._positions)

    def __iter__(self) -> Iterator[Position]:
        return iter(list(self._positions.values()))

    async def open_position(self, symbol: str, quantity: float, price: float) -> float:
        """买入并登记新仓位。

        Returns
        -------
        float
            实际占用资金 `fill.price * fill.quantity`。

        Raises
        ------
        CapacityError
            已达持仓上限（不会调用交易所）。
        ApiError
            交易所拒单或网络失败，此时不登记任何仓位。
        """
        # 容量检查必须在 await 之前完成
        if self.is_full:
            raise CapacityError(f"Position limit reached ({len(self._positions)}/{self.max_positions})")

        fill = await self.execution.place_buy(symbol, quantity, price)

        position = Position(
            id=uuid.uuid4().hex,
            symbol=fill.symbol,
            entry_price=fill.price,
            quantity=fill.quantity,
            opened_at=fill.ts,
            order_id=fill.order_id,
        )
        self._positions[position.id] = position
        self.last_opened = position
        self.logger.info(
            "Opened position %s: %s qty=%.8f @ %.8f (open=%d/%d)",
            position.id,
            position.symbol,
            position.quantity,
            position.entry_price,
            len(self._positions),
            self.max_positions,
        )
        return fill.price * fill.quantity

    async def close_position(self, position_id: str, current_price: float) -> float:
        """卖出并移除指定仓位。

        Returns
        -------
        float
            回收资金 `current_price * quantity`。

        Raises
        ------
        NotFoundError
            仓位不存在（映射不变）。
        ApiError
            卖出失败，仓位保持不变。
        """
        position = self._positions.get(position_id)
        if position is None:
            raise NotFoundError(f"Position not found: {position_id}")

        await self.execution.place_sell(position.symbol, position.quantity)

        self._positions.pop(position_id, None)
        proceeds = current_price * position.quantity
        self.logger.info(
            "Closed position %s: %s qty=%.8f entry=%.8f exit=%.8f (open=%d/%d)",
            position.id,
            position.symbol,
            position.quantity,
            position.entry_price,
            current_price,
            len(self._positions),
            self.max_positions,
        )
        return proceeds
