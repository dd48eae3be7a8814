"""行情端口与适配器（Binance REST / 本地随机游走 / CSV 回放）。"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Sequence

import pandas as pd
import requests

from shared.errors import MarketError, NetworkError, ParseError
from shared.models.models import Candle
from shared.utils.precision import parse_float
from utils.logging import setup_logger

CandleListener = Callable[[str, Candle], None]

# Binance 单次 klines 请求的上限
BINANCE_KLINES_LIMIT = 1000

_INTERVAL_SECONDS = {
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
    "M": 30 * 86400,
}


def interval_to_timedelta(interval: str) -> timedelta:
    """把 "1m" / "4h" / "1d" 这类 K 线周期转换为 timedelta（1M 近似为 30 天）。"""
    try:
        return timedelta(seconds=int(interval[:-1]) * _INTERVAL_SECONDS[interval[-1]])
    except (KeyError, ValueError, IndexError) as exc:
        raise ValueError(f"invalid interval: {interval!r}") from exc


def parse_kline(row: Sequence[Any]) -> Candle:
    """解析 Binance kline 数组。

    格式：[open_time_ms, open, high, low, close, volume, close_time_ms, ...]，
    共 12 个元素，价格/数量为字符串。

    Raises
    ------
    ParseError
        结构不对或数值无法转换。
    """
    if not isinstance(row, (list, tuple)) or len(row) < 6:
        raise ParseError(f"Malformed kline entry: {row!r}")
    open_time_ms = parse_float(row[0], field="open_time")
    try:
        ts = datetime.fromtimestamp(open_time_ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise ParseError(f"Invalid kline open_time: {row[0]!r}") from exc
    return Candle(
        timestamp=ts,
        open=parse_float(row[1], field="open"),
        high=parse_float(row[2], field="high"),
        low=parse_float(row[3], field="low"),
        close=parse_float(row[4], field="close"),
        volume=parse_float(row[5], field="volume"),
    )


def parse_klines(payload: Any) -> list[Candle]:
    """解析 klines 响应体（数组的数组），按时间升序返回。"""
    if not isinstance(payload, list):
        raise ParseError(f"Unexpected klines payload type: {type(payload).__name__}")
    candles = [parse_kline(row) for row in payload]
    candles.sort(key=lambda c: c.timestamp)
    return candles


class MarketDataPort(ABC):
    """行情端口抽象基类。

    适配器在返回最新 K 线时会通知已订阅的回调（纸面 broker 用它来标记最新价）。
    """

    def __init__(self) -> None:
        self._listeners: list[CandleListener] = []

    def subscribe(self, listener: CandleListener) -> None:
        self._listeners.append(listener)

    def _publish(self, symbol: str, candle: Candle) -> None:
        for listener in self._listeners:
            listener(symbol, candle)

    @abstractmethod
    async def get_candles(self, symbol: str, interval: str, count: int) -> list[Candle]:
        """拉取最近 `count` 根 K 线（按时间升序）。

        Raises
        ------
        NetworkError / ParseError / MarketError
        """

    @abstractmethod
    async def get_latest_candle(self, symbol: str, interval: str) -> Candle:
        """拉取最新一根 K 线。"""


class BinanceMarketClient(MarketDataPort):
    """Binance REST K 线客户端（`/api/v3/klines`）。

    requests 是阻塞调用，放到默认线程池执行。
    """

    def __init__(self, base_url: str = "https://api.binance.com", timeout: float = 10.0, session=None, logger=None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or setup_logger("market-binance")

    def _fetch_klines(self, params: dict[str, Any]) -> Any:
        url = f"{self.base_url}/api/v3/klines"
        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise NetworkError(f"GET {url} failed ({params.get('symbol')} {params.get('interval')}): {exc}") from exc
        try:
            return resp.json()
        except ValueError as exc:
            raise ParseError(f"Invalid JSON from {url}: {exc}") from exc

    async def _klines(self, params: dict[str, Any]) -> list[Candle]:
        loop = asyncio.get_running_loop()
        payload = await loop.run_in_executor(None, self._fetch_klines, params)
        return parse_klines(payload)

    async def get_candles(self, symbol: str, interval: str, count: int) -> list[Candle]:
        if count <= 0:
            return []
        candles: list[Candle] = []
        end_time: int | None = None
        # 超过单次上限时按 endTime 向前翻页
        while len(candles) < count:
            params: dict[str, Any] = {
                "symbol": symbol,
                "interval": interval,
                "limit": min(count - len(candles), BINANCE_KLINES_LIMIT),
            }
            if end_time is not None:
                params["endTime"] = end_time
            page = await self._klines(params)
            if not page:
                break
            candles = page + candles
            end_time = int(page[0].timestamp.timestamp() * 1000) - 1
            if len(page) < params["limit"]:
                break
        self.logger.debug("Fetched %d klines for %s %s", len(candles), symbol, interval)
        if candles:
            self._publish(symbol, candles[-1])
        return candles[-count:]

    async def get_latest_candle(self, symbol: str, interval: str) -> Candle:
        candles = await self._klines({"symbol": symbol, "interval": interval, "limit": 1})
        if not candles:
            raise MarketError(f"No kline returned for {symbol} {interval}")
        self._publish(symbol, candles[-1])
        return candles[-1]


class FakeMarketClient(MarketDataPort):
    """本地随机游走行情，便于离线开发/测试。

    Parameters
    ----------
    start_price:
        起始价格。
    volatility:
        每根 K 线收盘价的相对波动（正态分布标准差）。
    seed:
        随机种子；相同种子产生相同序列。
    """

    def __init__(
        self,
        start_price: float = 100.0,
        volatility: float = 0.005,
        seed: int | None = None,
        interval: str = "1m",
        logger=None,
    ):
        super().__init__()
        self.price = float(start_price)
        self.volatility = float(volatility)
        self.rng = random.Random(seed)
        self.step = interval_to_timedelta(interval)
        self.now = datetime.now(timezone.utc).replace(second=0, microsecond=0)
        self.logger = logger or setup_logger("market-fake")

    def _next_candle(self, ts: datetime) -> Candle:
        open_ = self.price
        close = max(open_ * (1.0 + self.rng.gauss(0.0, self.volatility)), 1e-8)
        high = max(open_, close) * (1.0 + abs(self.rng.gauss(0.0, self.volatility / 2)))
        low = min(open_, close) * (1.0 - abs(self.rng.gauss(0.0, self.volatility / 2)))
        self.price = close
        return Candle(
            timestamp=ts,
            open=open_,
            high=high,
            low=max(low, 1e-8),
            close=close,
            volume=round(self.rng.uniform(1.0, 100.0), 4),
        )

    async def get_candles(self, symbol: str, interval: str, count: int) -> list[Candle]:
        start = self.now - self.step * count
        candles = [self._next_candle(start + self.step * i) for i in range(count)]
        if candles:
            self._publish(symbol, candles[-1])
        return candles

    async def get_latest_candle(self, symbol: str, interval: str) -> Candle:
        candle = self._next_candle(self.now)
        self.now += self.step
        self._publish(symbol, candle)
        return candle


class CsvMarketClient(MarketDataPort):
    """按顺序回放 CSV 中的 K 线（dry-run 用）。

    CSV 至少包含 open/high/low/close 列，时间列可以是 `timestamp` / `start_ts` / `open_time`
    （毫秒时间戳或 ISO 字符串），`volume` 缺省为 0。
    `get_candles` 消费开头的 N 根作为历史，之后每次 `get_latest_candle` 前进一根；
    数据耗尽时抛 `MarketError`。
    """

    TIME_COLUMNS = ("timestamp", "start_ts", "open_time")

    def __init__(self, path: str | Path, logger=None):
        super().__init__()
        self.path = Path(path)
        self.logger = logger or setup_logger("market-csv")
        self.candles = self._load(self.path)
        self.cursor = 0
        self.logger.info("Loaded %d candles from %s", len(self.candles), self.path)

    @classmethod
    def _load(cls, path: Path) -> list[Candle]:
        if not path.exists():
            raise MarketError(f"Candle CSV not found: {path}")
        try:
            df = pd.read_csv(path)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
            raise ParseError(f"Invalid candle CSV {path}: {exc}") from exc

        missing = [c for c in ("open", "high", "low", "close") if c not in df.columns]
        if missing:
            raise ParseError(f"Candle CSV {path} missing columns: {', '.join(missing)}")
        time_col = next((c for c in cls.TIME_COLUMNS if c in df.columns), None)
        if time_col is None:
            raise ParseError(f"Candle CSV {path} has no time column ({', '.join(cls.TIME_COLUMNS)})")

        raw_ts = df[time_col]
        try:
            if pd.api.types.is_numeric_dtype(raw_ts):
                ts = pd.to_datetime(raw_ts, unit="ms", utc=True)
            else:
                ts = pd.to_datetime(raw_ts, utc=True)
        except (ValueError, TypeError) as exc:
            raise ParseError(f"Invalid timestamps in {path}: {exc}") from exc
        df = df.assign(ts_utc=ts).sort_values("ts_utc")

        candles: list[Candle] = []
        for row in df.itertuples(index=False):
            candles.append(
                Candle(
                    timestamp=row.ts_utc.to_pydatetime(),
                    open=parse_float(row.open, field="open"),
                    high=parse_float(row.high, field="high"),
                    low=parse_float(row.low, field="low"),
                    close=parse_float(row.close, field="close"),
                    volume=parse_float(getattr(row, "volume", 0.0), field="volume"),
                )
            )
        return candles

    @property
    def remaining(self) -> int:
        return len(self.candles) - self.cursor

    async def get_candles(self, symbol: str, interval: str, count: int) -> list[Candle]:
        end = min(self.cursor + count, len(self.candles))
        out = self.candles[self.cursor:end]
        self.cursor = end
        if out:
            self._publish(symbol, out[-1])
        return out

    async def get_latest_candle(self, symbol: str, interval: str) -> Candle:
        if self.cursor >= len(self.candles):
            raise MarketError(f"Candle CSV exhausted: {self.path}")
        candle = self.candles[self.cursor]
        self.cursor += 1
        self._publish(symbol, candle)
        return candle
