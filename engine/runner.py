"""实时/纸面/干跑调度器的组装与运行。

该模块是唯一知道具体适配器的地方：按 mode 选择行情端口与执行端口，
再把它们注入 `TradingScheduler`。
"""

from __future__ import annotations

import asyncio
import signal
from typing import Any

from broker.abstract_broker import BrokerMode, ExecutionPort
from broker.live_broker import LiveBroker
from broker.paper_broker import DryRunBroker, PaperBroker
from engine.trading_engine import TradingScheduler
from market_data.client import BinanceMarketClient, CsvMarketClient, FakeMarketClient, MarketDataPort
from shared.config.config_loader import load_config
from shared.config.schema import StrategyConfig
from shared.errors import ApiError, ValidationError
from utils.logging import configure_logging, setup_logger
from utils.trade_logger import TradeLogger


def create_broker(cfg: StrategyConfig) -> ExecutionPort:
    """根据配置创建执行端口。

    Parameters
    ----------
    cfg:
        已加载的配置。

    Returns
    -------
    ExecutionPort
        dry-run/paper 使用本地记账的 PaperBroker，live 使用 ccxt 的 LiveBroker。

    Raises
    ------
    ValidationError
        live 模式但未开启 allow_live，或缺少密钥。
    """
    mode = BrokerMode(cfg.mode)
    if mode == BrokerMode.DRY_RUN:
        return DryRunBroker(
            quote_asset=cfg.trading_symbol,
            base_asset=cfg.base_asset,
            initial_balance=cfg.paper.initial_balance,
            qty_step=cfg.exchange.qty_step,
        )
    if mode == BrokerMode.PAPER:
        return PaperBroker(
            quote_asset=cfg.trading_symbol,
            base_asset=cfg.base_asset,
            initial_balance=cfg.paper.initial_balance,
            qty_step=cfg.exchange.qty_step,
        )

    ex = cfg.exchange
    if not ex.allow_live:
        raise ValidationError("mode=live requires exchange.allow_live=true")
    if not ex.api_key or not ex.api_secret:
        raise ValidationError("mode=live requires exchange.api_key and exchange.api_secret")
    return LiveBroker(
        exchange_name=ex.name,
        api_key=ex.api_key,
        api_secret=ex.api_secret,
        allow_live=ex.allow_live,
        symbols_allowlist=ex.symbols_allowlist or [cfg.symbol],
        qty_step=ex.qty_step,
        timeout_secs=ex.timeout_secs,
        sandbox="testnet" in ex.base_url,
    )


def create_market_client(cfg: StrategyConfig, logger=None) -> MarketDataPort:
    """根据运行模式选择行情端口。

    dry-run：有 `paper.data_csv` 时回放 CSV，否则随机游走；
    paper/live：Binance REST K 线。
    """
    if cfg.mode == BrokerMode.DRY_RUN.value:
        if cfg.paper.data_csv:
            return CsvMarketClient(cfg.paper.data_csv, logger=logger)
        return FakeMarketClient(seed=cfg.paper.seed, interval=cfg.timeframe.interval, logger=logger)
    return BinanceMarketClient(base_url=cfg.exchange.base_url, timeout=cfg.exchange.timeout_secs, logger=logger)


def build_scheduler(cfg: StrategyConfig, *, market: MarketDataPort | None = None, execution: ExecutionPort | None = None) -> TradingScheduler:
    """组装调度器；market/execution 可以显式注入（测试用）。"""
    logger = setup_logger("engine")
    execution = execution or create_broker(cfg)
    market = market or create_market_client(cfg)
    if isinstance(execution, PaperBroker):
        # 纸面卖单按最近一次行情成交
        market.subscribe(lambda symbol, candle: execution.mark_price(symbol, candle.close))

    trade_logger = TradeLogger(cfg.trade_log.dir) if cfg.trade_log.enabled else None
    return TradingScheduler(cfg, market=market, execution=execution, trade_logger=trade_logger, logger=logger)


async def _warn_on_venue_holdings(scheduler: TradingScheduler, logger) -> None:
    """启动时不接管交易所已有持仓，只提示人工对账。"""
    asset = scheduler.cfg.base_asset
    if asset is None:
        return
    try:
        held = await scheduler._call("get_account_balance", scheduler.execution.get_account_balance(asset))
    except ApiError as exc:
        logger.warning("Could not read %s holdings at startup: %s", asset, exc)
        return
    if held > 0:
        logger.warning(
            "Venue reports %.8f %s already held; these holdings are not managed by this run, reconcile manually.",
            held,
            asset,
        )


def _install_signal_handlers(scheduler: TradingScheduler, logger) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, scheduler.stop)
        except (NotImplementedError, RuntimeError):
            # Windows 或非主线程不支持 add_signal_handler
            logger.debug("Signal handler for %s not installed", sig)


async def run_scheduler(scheduler: TradingScheduler, max_cycles: int | None = None) -> dict[str, Any]:
    logger = scheduler.logger
    _install_signal_handlers(scheduler, logger)
    await _warn_on_venue_holdings(scheduler, logger)
    try:
        result = await scheduler.run(max_cycles=max_cycles)
    finally:
        close = getattr(scheduler.execution, "close", None)
        if close is not None:
            await close()
        if scheduler.trade_logger is not None:
            scheduler.trade_logger.close()
    return result.summary


def run_runner(
    cfg_path: str = "config/config.yml",
    cfg_obj: StrategyConfig | None = None,
    max_cycles: int | None = None,
) -> dict[str, Any]:
    """运行实时/纸面/干跑主循环。

    Parameters
    ----------
    cfg_path:
        配置文件路径。
    cfg_obj:
        已加载的配置对象；提供时会忽略 cfg_path。
    max_cycles:
        可选的最大周期数，达到后退出（便于 dry-run/测试）。

    Returns
    -------
    dict
        运行结束时的余额、持仓与计数快照。
    """
    cfg = cfg_obj or load_config(cfg_path)
    configure_logging(cfg.logging.level, cfg.logging.log_dir)
    scheduler = build_scheduler(cfg)
    return asyncio.run(run_scheduler(scheduler, max_cycles=max_cycles))
