from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
import requests

from market_data.client import BinanceMarketClient, parse_kline, parse_klines
from shared.errors import MarketError, NetworkError, ParseError

ROW = [
    1704067200000,
    "42000.10",
    "42100.00",
    "41950.50",
    "42050.25",
    "12.345",
    1704067259999,
    "519000.0",
    100,
    "6.0",
    "252000.0",
    "0",
]


def test_parse_kline_row():
    candle = parse_kline(ROW)
    assert candle.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert candle.open == 42000.10
    assert candle.close == 42050.25
    assert candle.volume == 12.345


@pytest.mark.parametrize(
    "row",
    [
        ROW[:4],
        "not-a-row",
        [ROW[0], "abc", *ROW[2:]],
        [ROW[0], "nan", *ROW[2:]],
        [None, *ROW[1:]],
    ],
)
def test_parse_kline_rejects_malformed_rows(row):
    with pytest.raises(ParseError):
        parse_kline(row)


def test_parse_klines_sorts_and_validates_payload():
    later = [ROW[0] + 60_000, *ROW[1:]]
    candles = parse_klines([later, ROW])
    assert candles[0].timestamp < candles[1].timestamp
    with pytest.raises(ParseError):
        parse_klines({"code": -1121, "msg": "Invalid symbol."})


class _Resp:
    def __init__(self, payload, status_error: Exception | None = None):
        self.payload = payload
        self.status_error = status_error

    def raise_for_status(self):
        if self.status_error is not None:
            raise self.status_error

    def json(self):
        return self.payload


class _Session:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls: list[dict] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": dict(params or {}), "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def test_latest_candle_uses_limit_one():
    session = _Session([_Resp([ROW])])
    client = BinanceMarketClient(base_url="https://api.example.com/", timeout=3.0, session=session)

    candle = asyncio.run(client.get_latest_candle("BTCUSDT", "1m"))

    assert candle.close == 42050.25
    assert session.calls[0]["url"] == "https://api.example.com/api/v3/klines"
    assert session.calls[0]["params"] == {"symbol": "BTCUSDT", "interval": "1m", "limit": 1}
    assert session.calls[0]["timeout"] == 3.0


def test_latest_candle_empty_is_market_error():
    client = BinanceMarketClient(session=_Session([_Resp([])]))
    with pytest.raises(MarketError):
        asyncio.run(client.get_latest_candle("BTCUSDT", "1m"))


def test_transport_failure_is_network_error():
    client = BinanceMarketClient(session=_Session([requests.ConnectionError("refused")]))
    with pytest.raises(NetworkError):
        asyncio.run(client.get_candles("BTCUSDT", "1m", 10))


def test_http_error_is_network_error():
    client = BinanceMarketClient(session=_Session([_Resp([], status_error=requests.HTTPError("429"))]))
    with pytest.raises(NetworkError):
        asyncio.run(client.get_latest_candle("BTCUSDT", "1m"))


def test_get_candles_pages_backwards_past_limit(monkeypatch):
    monkeypatch.setattr("market_data.client.BINANCE_KLINES_LIMIT", 2)
    rows = [[ROW[0] + i * 60_000, *ROW[1:]] for i in range(5)]
    session = _Session([_Resp(rows[3:5]), _Resp(rows[1:3]), _Resp(rows[0:1])])
    client = BinanceMarketClient(session=session)

    candles = asyncio.run(client.get_candles("BTCUSDT", "1m", 5))

    assert len(candles) == 5
    assert [c.timestamp for c in candles] == sorted(c.timestamp for c in candles)
    assert "endTime" not in session.calls[0]["params"]
    assert session.calls[1]["params"]["endTime"] == rows[3][0] - 1
    assert session.calls[2]["params"]["limit"] == 1


def test_latest_candle_notifies_subscribers():
    client = BinanceMarketClient(session=_Session([_Resp([ROW])]))
    seen = []
    client.subscribe(lambda symbol, candle: seen.append((symbol, candle.close)))
    asyncio.run(client.get_latest_candle("BTCUSDT", "1m"))
    assert seen == [("BTCUSDT", 42050.25)]
