"""可用资金账本（唯一的余额来源）。"""

from __future__ import annotations

import logging

from utils.logging import setup_logger


class BalanceLedger:
    """以带符号增量维护可用资金。

    只记录已确认成交返回的金额，不做跨操作回滚。
    余额可以被一次确认的扣款推到负数（成交价高于估算时），此时只告警。
    """

    def __init__(self, initial_balance: float = 0.0, logger: logging.Logger | None = None):
        self._balance = float(initial_balance)
        self.total_debited = 0.0
        self.total_credited = 0.0
        self.logger = logger or setup_logger("ledger")

    @property
    def balance(self) -> float:
        return self._balance

    def reset(self, balance: float) -> None:
        """用交易所返回的余额重置账本（仅初始化时使用）。"""
        self._balance = float(balance)
        self.total_debited = 0.0
        self.total_credited = 0.0

    def debit(self, amount: float, reason: str = "") -> float:
        if amount < 0:
            raise ValueError(f"debit amount must be >= 0, got {amount}")
        self._balance -= amount
        self.total_debited += amount
        self.logger.debug("Debit %.8f (%s), balance=%.8f", amount, reason or "-", self._balance)
        if self._balance < 0:
            self.logger.warning("Balance went negative after debit (%s): %.8f", reason or "-", self._balance)
        return self._balance

    def credit(self, amount: float, reason: str = "") -> float:
        if amount < 0:
            raise ValueError(f"credit amount must be >= 0, got {amount}")
        self._balance += amount
        self.total_credited += amount
        self.logger.debug("Credit %.8f (%s), balance=%.8f", amount, reason or "-", self._balance)
        return self._balance

    def apply(self, delta: float, reason: str = "") -> float:
        """正数记入，负数扣除。"""
        if delta >= 0:
            return self.credit(delta, reason)
        return self.debit(-delta, reason)
