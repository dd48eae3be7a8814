"""行情数据模块（market_data）。

该包聚合行情端口 `MarketDataPort` 及其适配器：
- Binance REST K 线客户端
- 本地随机游走（离线开发/测试）
- CSV 回放（dry-run）
"""

from market_data.client import (
    BinanceMarketClient,
    CsvMarketClient,
    FakeMarketClient,
    MarketDataPort,
    parse_kline,
    parse_klines,
)

__all__ = [
    "MarketDataPort",
    "BinanceMarketClient",
    "FakeMarketClient",
    "CsvMarketClient",
    "parse_kline",
    "parse_klines",
]
