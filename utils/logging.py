import logging
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

_log_dir: Path | None = None
_default_level = logging.INFO


def configure_logging(level: str | int = logging.INFO, log_dir: str | Path | None = None) -> None:
    """设置全局日志级别与可选的日志目录。

    配置了 log_dir 时，之后创建的 logger 额外写入 `info.log`（INFO 及以上）
    与 `error.log`（ERROR 及以上）。
    """
    global _log_dir, _default_level
    _default_level = logging.getLevelName(level.upper()) if isinstance(level, str) else int(level)
    _log_dir = Path(log_dir) if log_dir else None
    if _log_dir is not None:
        _log_dir.mkdir(parents=True, exist_ok=True)


def setup_logger(name: str = "trading", level: int | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level if level is not None else _default_level)
    # 同名 logger 只挂一次 handler，避免重复输出
    if getattr(logger, "_trading_configured", False):
        return logger

    fmt = logging.Formatter(LOG_FORMAT)
    # 控制台 handler
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if _log_dir is not None:
        for filename, file_level in (("info.log", logging.INFO), ("error.log", logging.ERROR)):
            fh = logging.FileHandler(_log_dir / filename, encoding="utf-8")
            fh.setLevel(file_level)
            fh.setFormatter(fmt)
            logger.addHandler(fh)

    logger._trading_configured = True  # type: ignore[attr-defined]
    return logger
