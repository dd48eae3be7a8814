"""均值回归交易调度器（TradingScheduler）。

目标是“一眼能看懂”：历史 K 线预热 → 定时拉取最新 K 线 → 更新均线 → 先平仓后开仓 → 记账 → 周期总结。

行情/执行端口在构造时注入，调度器本身不认识任何具体交易所。
单个周期内所有步骤严格串行；调度器状态只由所在的事件循环修改，不需要锁。
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, TypeVar

from algo.factors.registry import build_tracker
from algo.risk.ledger import BalanceLedger
from algo.risk.position_manager import PositionManager
from algo.strategy.mean_reversion import SignalThresholds, compute_deviation, evaluate_entry, evaluate_exits
from broker.abstract_broker import ExecutionPort
from engine.base_engine import BaseEngine, EngineResult, EngineState
from market_data.client import MarketDataPort
from shared.config.schema import StrategyConfig
from shared.errors import ApiError, CapacityError, MarketError, NetworkError, NotFoundError
from shared.models.models import Candle, CycleSummary
from utils.logging import setup_logger
from utils.pnl import compute_unrealized_pnl, realized_pnl
from utils.trade_logger import TradeLogger, TradeRecord

T = TypeVar("T")


class TradingScheduler(BaseEngine):
    """单一交易对的调度器。

    Parameters
    ----------
    cfg:
        不可变的策略配置。
    market:
        行情端口。
    execution:
        交易执行端口。
    trade_logger:
        可选的成交 CSV 日志。
    logger:
        可选的注入 logger，缺省为 "engine"。
    """

    def __init__(
        self,
        cfg: StrategyConfig,
        *,
        market: MarketDataPort,
        execution: ExecutionPort,
        trade_logger: TradeLogger | None = None,
        logger: logging.Logger | None = None,
    ):
        self.cfg = cfg
        self.market = market
        self.execution = execution
        self.trade_logger = trade_logger
        self.logger = logger or setup_logger("engine")

        tf = cfg.timeframe
        self.long_ma = build_tracker(tf.mean_calculation_method, tf.long_bars)
        self.short_ma = build_tracker(tf.mean_calculation_method, tf.short_bars)
        self.thresholds = SignalThresholds.from_config(cfg)
        self.positions = PositionManager(execution, cfg.risk_management.max_positions, logger=self.logger)
        self.ledger = BalanceLedger(0.0, logger=self.logger)
        self.history: deque[Candle] = deque(maxlen=tf.history_bars)

        self.state = EngineState.UNINITIALIZED
        self.cycles = 0
        self.failed_cycles = 0
        self.failed_orders = 0
        self.last_summary: CycleSummary | None = None
        self._stop_event = asyncio.Event()

    @property
    def mode(self) -> str:
        return self.cfg.mode

    async def _call(self, what: str, awaitable: Awaitable[T]) -> T:
        """给行情/余额查询加上超时；超时视为网络错误（可恢复）。

        下单不经过这里：线程池里的 ccxt 请求无法被取消，超时后订单仍可能成交，
        下单只受交易所客户端自身的请求超时约束。
        """
        timeout = self.cfg.scheduler.operation_timeout
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"{what} timed out after {timeout:g}s") from exc

    async def initialize(self) -> None:
        """拉取历史 K 线预热均线，并读取初始余额。

        Raises
        ------
        MarketError
            没有历史数据，或数量少于 measure_bars。
        ApiError
            端口调用失败。以上错误都会使状态变为 FAILED。
        """
        if self.state is not EngineState.UNINITIALIZED:
            raise RuntimeError(f"initialize() called in state {self.state.value}")
        self.state = EngineState.INITIALIZING
        cfg = self.cfg
        tf = cfg.timeframe
        try:
            candles = await self._call(
                "get_candles",
                self.market.get_candles(cfg.symbol, tf.interval, tf.seed_bars),
            )
            if not candles:
                raise MarketError(f"No historical candles for {cfg.symbol} {tf.interval}")
            if len(candles) < tf.measure_bars:
                raise MarketError(
                    f"Insufficient history for {cfg.symbol}: got {len(candles)} candles, need at least {tf.measure_bars}"
                )

            closes = [c.close for c in candles]
            for close in closes:
                self.long_ma.update(close)
            for close in closes[-max(1, len(closes) // 3):]:
                self.short_ma.update(close)
            self.history.extend(candles)

            balance = await self._call(
                "get_account_balance",
                self.execution.get_account_balance(cfg.trading_symbol),
            )
            self.ledger.reset(balance)
        except Exception as exc:
            self.state = EngineState.FAILED
            self.logger.error("Initialization failed (%s): %s", type(exc).__name__, exc)
            raise

        self.state = EngineState.RUNNING
        self.logger.info(
            "Initialized %s with %d candles: short_ma=%.8f long_ma=%.8f balance=%.8f %s",
            cfg.symbol,
            len(candles),
            self.short_ma.calculate(),
            self.long_ma.calculate(),
            self.ledger.balance,
            cfg.trading_symbol,
        )

    async def run_cycle(self) -> CycleSummary:
        """执行一个完整周期。

        行情获取/偏离计算失败会以 `ApiError` 抛出，由 `run` 负责退避；
        单笔订单失败只记录日志并计入 failed_orders，不会中断本周期。
        """
        if self.state is not EngineState.RUNNING:
            raise RuntimeError(f"run_cycle() called in state {self.state.value}")
        cfg = self.cfg
        self.cycles += 1

        candle = await self._call(
            "get_latest_candle",
            self.market.get_latest_candle(cfg.symbol, cfg.timeframe.interval),
        )
        price = candle.close
        long_mean = self.long_ma.update(price)
        short_mean = self.short_ma.update(price)
        deviation = compute_deviation(short_mean, long_mean)
        self.logger.debug(
            "Cycle %d: price=%.8f short_ma=%.8f long_ma=%.8f deviation=%.4f%%",
            self.cycles,
            price,
            short_mean,
            long_mean,
            deviation,
        )

        closed = 0
        proceeds = 0.0
        failed = 0

        # 先平仓
        for decision in evaluate_exits(price, short_mean, self.positions, self.thresholds):
            position = self.positions.get(decision.position_id)
            if position is None:
                continue
            self.logger.info(
                "Exit signal (%s) for %s: profit=%.2f%%",
                decision.reason,
                decision.position_id,
                decision.profit_fraction * 100.0,
            )
            try:
                amount = await self.positions.close_position(decision.position_id, price)
            except (ApiError, NotFoundError) as exc:
                failed += 1
                self.logger.error(
                    "Close failed for %s (%s), position stays open: %s",
                    decision.position_id,
                    type(exc).__name__,
                    exc,
                )
                continue
            self.ledger.credit(amount, reason=f"close {decision.position_id}")
            proceeds += amount
            closed += 1
            self._journal(
                side="sell",
                qty=position.quantity,
                price=price,
                position_id=position.id,
                order_id=position.order_id,
                reason=decision.reason,
                pnl=realized_pnl(position, price),
            )

        # 再按平仓后的持仓数与余额判断开仓
        opened = False
        consumed = 0.0
        entry = evaluate_entry(price, deviation, len(self.positions), self.ledger.balance, self.thresholds)
        if entry is not None:
            self.logger.info(
                "Entry signal: deviation=%.4f%% qty=%.8f @ %.8f",
                entry.deviation_pct,
                entry.quantity,
                entry.price,
            )
            try:
                consumed = await self.positions.open_position(cfg.symbol, entry.quantity, entry.price)
            except CapacityError as exc:
                self.logger.warning("Entry skipped: %s", exc)
            except ApiError as exc:
                failed += 1
                self.logger.error("Open failed (%s), entry forfeited: %s", type(exc).__name__, exc)
            else:
                opened = True
                self.ledger.debit(consumed, reason="open")
                newest = self.positions.last_opened
                if newest is not None:
                    self._journal(
                        side="buy",
                        qty=newest.quantity,
                        price=newest.entry_price,
                        position_id=newest.id,
                        order_id=newest.order_id,
                        reason="entry",
                    )

        self.history.append(candle)
        self.failed_orders += failed

        summary = CycleSummary(
            cycle=self.cycles,
            ts=candle.timestamp,
            price=price,
            short_mean=short_mean,
            long_mean=long_mean,
            deviation_pct=deviation,
            balance=self.ledger.balance,
            open_positions=len(self.positions),
            closed=closed,
            opened=opened,
            realized_proceeds=proceeds,
            capital_consumed=consumed,
            failed_orders=failed,
            unrealized_pnl=compute_unrealized_pnl(self.positions, price),
        )
        self.last_summary = summary
        self.logger.info(
            "Cycle %d %s %.8f | short=%.8f long=%.8f dev=%+.4f%% | balance=%.8f open=%d closed=%d opened=%s failed=%d upnl=%.8f",
            summary.cycle,
            cfg.symbol,
            summary.price,
            summary.short_mean,
            summary.long_mean,
            summary.deviation_pct,
            summary.balance,
            summary.open_positions,
            summary.closed,
            summary.opened,
            summary.failed_orders,
            summary.unrealized_pnl,
        )
        return summary

    def _journal(
        self,
        *,
        side: str,
        qty: float,
        price: float,
        position_id: str,
        order_id: str | None,
        reason: str,
        pnl: float | None = None,
    ) -> None:
        if self.trade_logger is None:
            return
        self.trade_logger.log(
            TradeRecord(
                ts=datetime.now(timezone.utc),
                symbol=self.cfg.symbol,
                side=side,
                qty=qty,
                price=price,
                mode=self.cfg.mode,
                position_id=position_id,
                order_id=order_id,
                reason=reason,
                realized_pnl=pnl,
                balance_after_trade=self.ledger.balance,
            )
        )

    async def _pause(self, seconds: float) -> None:
        """可被 stop() 打断的等待。"""
        if seconds <= 0 or self._stop_event.is_set():
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self, max_cycles: int | None = None) -> EngineResult:
        """初始化后按固定节拍循环，直到 stop() 或达到 max_cycles。

        `ApiError` 只影响当前周期：记录日志、退避、继续；其他异常视为致命错误。
        """
        if self.state is EngineState.UNINITIALIZED:
            await self.initialize()
        if self.state is not EngineState.RUNNING:
            raise RuntimeError(f"run() called in state {self.state.value}")

        limit = max_cycles if max_cycles is not None else self.cfg.scheduler.max_cycles
        tick = self.cfg.timeframe.tick
        backoff = self.cfg.scheduler.backoff
        loop = asyncio.get_running_loop()
        self.logger.info(
            "Starting %s scheduler for %s (tick=%gs, max_cycles=%s)",
            self.cfg.mode,
            self.cfg.symbol,
            tick,
            limit if limit is not None else "unlimited",
        )

        try:
            while not self._stop_event.is_set():
                if limit is not None and self.cycles >= limit:
                    break
                started = loop.time()
                try:
                    summary = await self.run_cycle()
                except ApiError as exc:
                    self.failed_cycles += 1
                    self.logger.error(
                        "Cycle %d failed (%s): %s; backing off %gs",
                        self.cycles,
                        type(exc).__name__,
                        exc,
                        backoff,
                    )
                    pause = backoff
                else:
                    if summary.failed_orders:
                        self.logger.warning(
                            "Cycle %d had %d failed order(s); backing off %gs",
                            summary.cycle,
                            summary.failed_orders,
                            backoff,
                        )
                        pause = backoff
                    else:
                        pause = tick - (loop.time() - started)

                if limit is not None and self.cycles >= limit:
                    break
                await self._pause(pause)
        except Exception:
            self.state = EngineState.FAILED
            raise
        finally:
            if self.state is EngineState.RUNNING:
                self.state = EngineState.STOPPED

        self.logger.info("Scheduler stopped after %d cycle(s)", self.cycles)
        return EngineResult(summary=self.summary())

    def stop(self) -> None:
        """请求停止：当前周期跑完后退出循环。"""
        if not self._stop_event.is_set():
            self.logger.info("Stop requested")
        self._stop_event.set()

    def summary(self) -> dict[str, Any]:
        return {
            "symbol": self.cfg.symbol,
            "mode": self.cfg.mode,
            "state": self.state.value,
            "balance": self.ledger.balance,
            "open_positions": [
                {
                    "id": p.id,
                    "entry_price": p.entry_price,
                    "quantity": p.quantity,
                    "opened_at": p.opened_at.isoformat(),
                }
                for p in self.positions
            ],
            "cycles": self.cycles,
            "failed_cycles": self.failed_cycles,
            "failed_orders": self.failed_orders,
            "total_debited": self.ledger.total_debited,
            "total_credited": self.ledger.total_credited,
        }
