"""成交日志持久化（CSV 日切，仅用于审计，不会被读回）。"""

import csv
import _csv
from dataclasses import dataclass
from datetime import datetime, timezone, date
from pathlib import Path
from typing import Any, Optional, TextIO

_HEADER = [
    "ts",
    "symbol",
    "side",
    "qty",
    "price",
    "mode",
    "position_id",
    "order_id",
    "reason",
    "realized_pnl",
    "balance_after_trade",
]


@dataclass
class TradeRecord:
    """单笔已确认成交。"""
    ts: Any
    symbol: str
    side: str
    qty: float
    price: float | None
    mode: str
    position_id: str
    order_id: str | None = None
    reason: str = ""
    realized_pnl: float | None = None
    balance_after_trade: float | None = None


class TradeLogger:
    """按日切 CSV 记录开/平仓。

    Parameters
    ----------
    base_dir:
        输出目录。
    """

    def __init__(self, base_dir: str | Path = "data/trades"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.current_date: date | None = None
        self.file: Optional[TextIO] = None
        self.writer: Optional[_csv._writer] = None

    def _ensure_file(self):
        today = datetime.now(timezone.utc).date()
        if self.current_date == today and self.file:
            return

        if self.file:
            self.file.close()

        self.current_date = today
        file_path = self.base_dir / f"trades_{today}.csv"
        new_file = not file_path.exists()
        self.file = file_path.open("a", newline="", encoding="utf-8")
        self.writer = csv.writer(self.file)
        if new_file:
            self.writer.writerow(_HEADER)

    def log(self, record: TradeRecord):
        """写入一条成交记录。"""
        self._ensure_file()
        ts = record.ts
        if isinstance(ts, datetime):
            ts_val = ts.strftime("%Y-%m-%d %H:%M:%S")
        else:
            ts_val = str(ts)

        if self.writer is None or self.file is None:
            raise RuntimeError("TradeLogger not initialized")

        self.writer.writerow(
            [
                ts_val,
                record.symbol,
                record.side,
                f"{record.qty:.8f}",
                f"{record.price:.8f}" if record.price is not None else "",
                record.mode,
                record.position_id,
                record.order_id or "",
                record.reason,
                f"{record.realized_pnl:.8f}" if record.realized_pnl is not None else "",
                f"{record.balance_after_trade:.8f}" if record.balance_after_trade is not None else "",
            ]
        )
        self.file.flush()

    def close(self):
        """关闭当前文件句柄。"""
        if self.file:
            self.file.close()
            self.file = None
            self.writer = None
