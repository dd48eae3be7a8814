"""配置架构定义（Pydantic Schema）。

目标：
- 配置在启动时一次性加载为不可变对象，显式传入引擎，不存在全局可变配置；
- 启动阶段尽早失败：类型错误、阈值越界、不支持的均值方法、
  symbol 与 trading_symbol 相同等问题都在这里拦截。
"""

from __future__ import annotations

import re
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from algo.factors.registry import validate_method

KLINE_INTERVALS = (
    "1m", "3m", "5m", "15m", "30m",
    "1h", "2h", "4h", "6h", "8h", "12h",
    "1d", "3d", "1w", "1M",
)

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0}


def parse_duration(value: object) -> float:
    """把 `30s` / `5m` / `1h` / 数字（秒）解析为秒数。"""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    elif isinstance(value, str):
        match = _DURATION_RE.match(value)
        if not match:
            raise ValueError(f"invalid duration: {value!r} (examples: 500ms, 30s, 5m, 1h)")
        seconds = float(match.group(1)) * _DURATION_UNITS[match.group(2) or "s"]
    else:
        raise ValueError(f"invalid duration: {value!r}")
    if seconds < 0:
        raise ValueError(f"duration must be >= 0: {value!r}")
    return seconds


class TimeframeConfig(BaseModel):
    """采样与窗口配置。"""
    interval: str = "1m"          # K 线周期（交易所格式）
    tick: float = 60.0            # 调度周期（秒），支持 "1m" 这类写法
    measure_bars: int = Field(default=60, ge=3)   # 长窗口
    short_bars: Optional[int] = None              # 短窗口，缺省为 measure_bars // 3
    mean_calculation_method: str = "simple_ma"

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("interval")
    @classmethod
    def _check_interval(cls, v: str) -> str:
        if v not in KLINE_INTERVALS:
            raise ValueError(f"unsupported interval {v!r}, expected one of: {', '.join(KLINE_INTERVALS)}")
        return v

    @field_validator("tick", mode="before")
    @classmethod
    def _parse_tick(cls, v: object) -> float:
        seconds = parse_duration(v)
        if seconds <= 0:
            raise ValueError("tick must be > 0")
        return seconds

    @field_validator("mean_calculation_method")
    @classmethod
    def _check_method(cls, v: str) -> str:
        # ema / vwap 在这里直接失败，而不是运行时才发现没实现
        return validate_method(v).value

    @model_validator(mode="after")
    def _resolve_short_bars(self) -> "TimeframeConfig":
        short = self.short_bars if self.short_bars is not None else self.measure_bars // 3
        if short < 1:
            raise ValueError("short_bars must be >= 1")
        if short >= self.measure_bars:
            raise ValueError("short_bars must be smaller than measure_bars")
        object.__setattr__(self, "short_bars", short)
        return self

    @property
    def long_bars(self) -> int:
        return self.measure_bars

    @property
    def seed_bars(self) -> int:
        """初始化时拉取的历史 K 线数量。"""
        return self.measure_bars * 3

    @property
    def history_bars(self) -> int:
        """滚动 K 线历史的容量。"""
        return self.measure_bars * 3


class RiskManagementConfig(BaseModel):
    """风控阈值（比例，0.03 表示 3%）。"""
    capital_per_trade: float = Field(default=0.1, gt=0, le=1)
    max_positions: int = Field(default=3, ge=1)
    max_drawdown: float = Field(default=0.02, gt=0)
    stop_loss: float = Field(default=0.03, gt=0, lt=1)
    profit_level: float = Field(default=0.05, gt=0)
    model_config = ConfigDict(extra="forbid", frozen=True)


class MeasurementDeviationConfig(BaseModel):
    """偏离阈值（百分比，1.5 表示 1.5%）。"""
    enter_deviation: float = Field(default=1.0, gt=0)
    exit_deviation: float = Field(default=0.0, ge=0)
    model_config = ConfigDict(extra="forbid", frozen=True)


class ExchangeConfig(BaseModel):
    """交易所配置。"""
    name: str = "binance"
    base_url: str = "https://api.binance.com"
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    allow_live: bool = False
    symbols_allowlist: List[str] = Field(default_factory=list)
    qty_step: Optional[float] = Field(default=None, gt=0)
    timeout_secs: float = Field(default=10.0, gt=0)
    model_config = ConfigDict(extra="forbid", frozen=True)


class PaperConfig(BaseModel):
    """纸面/干跑模式的本地账户与数据源。"""
    initial_balance: float = Field(default=1000.0, ge=0)
    data_csv: Optional[str] = None   # 提供时用 CSV 回放行情，否则用随机游走
    seed: Optional[int] = None
    model_config = ConfigDict(extra="forbid", frozen=True)


class SchedulerConfig(BaseModel):
    """调度循环配置（秒）。"""
    backoff: float = 5.0
    operation_timeout: float = 30.0
    max_cycles: Optional[int] = Field(default=None, ge=1)
    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("backoff", "operation_timeout", mode="before")
    @classmethod
    def _parse_durations(cls, v: object) -> float:
        return parse_duration(v)

    @field_validator("operation_timeout")
    @classmethod
    def _positive_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("operation_timeout must be > 0")
        return v


class LoggingConfig(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Optional[str] = None
    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("level", mode="before")
    @classmethod
    def _upper(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v


class TradeLogConfig(BaseModel):
    """成交 CSV 日志（仅审计，不会被读回）。"""
    enabled: bool = False
    dir: str = "data/trades"
    model_config = ConfigDict(extra="forbid", frozen=True)


class StrategyConfig(BaseModel):
    """应用总配置。"""
    symbol: str
    trading_symbol: str
    mode: Literal["dry-run", "paper", "live"] = "paper"

    timeframe: TimeframeConfig = Field(default_factory=TimeframeConfig)
    risk_management: RiskManagementConfig = Field(default_factory=RiskManagementConfig)
    measurement_deviation: MeasurementDeviationConfig = Field(default_factory=MeasurementDeviationConfig)

    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    trade_log: TradeLogConfig = Field(default_factory=TradeLogConfig)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("symbol", "trading_symbol")
    @classmethod
    def _normalize_symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("mode", mode="before")
    @classmethod
    def _normalize_mode(cls, v: object) -> object:
        return v.replace("_", "-").lower() if isinstance(v, str) else v

    @model_validator(mode="after")
    def _distinct_symbols(self) -> "StrategyConfig":
        if self.symbol == self.trading_symbol:
            raise ValueError(f"trading_symbol must differ from symbol (both are {self.symbol!r})")
        return self

    @model_validator(mode="after")
    def _live_timeouts(self) -> "StrategyConfig":
        # 实盘余额查询经 ccxt 发出，需先于调度器超时返回
        if self.mode == "live" and self.scheduler.operation_timeout <= self.exchange.timeout_secs:
            raise ValueError(
                f"scheduler.operation_timeout ({self.scheduler.operation_timeout:g}s) must exceed "
                f"exchange.timeout_secs ({self.exchange.timeout_secs:g}s) in live mode"
            )
        return self

    @property
    def base_asset(self) -> str | None:
        """从 symbol 推导基础币种，例如 BTCUSDT + USDT -> BTC。"""
        if self.symbol.endswith(self.trading_symbol) and len(self.symbol) > len(self.trading_symbol):
            return self.symbol[: -len(self.trading_symbol)]
        return None
