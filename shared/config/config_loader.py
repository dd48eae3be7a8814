"""配置加载。

支持 YAML 配置、环境变量占位符 `${VAR}` 展开，以及 .env/.env.local 自动加载。
加载结果是不可变的 `StrategyConfig`，整个进程生命周期只读。
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import pydantic
import yaml
from dotenv import load_dotenv

from shared.config.schema import StrategyConfig
from shared.config.validation import validate_raw_config
from shared.errors import ValidationError

_ENV_RE = re.compile(r"\$\{([^}]+)\}")


def _load_envs(cfg_path: Path) -> None:
    """加载配置文件目录与其上级目录下的 .env/.env.local（不覆盖已有环境变量）。"""
    candidates = [
        cfg_path.parent / ".env",
        cfg_path.parent / ".env.local",
        cfg_path.parent.parent / ".env",
        cfg_path.parent.parent / ".env.local",
    ]
    for env_file in candidates:
        if env_file.exists():
            load_dotenv(env_file, override=False)


def expand_env(value: Any) -> Any:
    """递归展开 `${VAR}`；变量不存在时报错，而不是静默替换为空。"""
    if isinstance(value, str):
        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ValidationError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return _ENV_RE.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def _format_pydantic_error(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"config.{loc}: {msg}" if loc else f"config: {msg}")
    return "; ".join(parts)


def parse_config(raw_cfg: dict[str, Any]) -> StrategyConfig:
    """校验已展开的配置字典并构建 `StrategyConfig`。

    Raises
    ------
    ValidationError
        结构错误、类型错误或任何语义前置条件不满足。
    """
    validate_raw_config(raw_cfg)
    try:
        return StrategyConfig.model_validate(raw_cfg)
    except pydantic.ValidationError as exc:
        raise ValidationError(_format_pydantic_error(exc)) from exc


def load_config(path: str, load_env: bool = True, expand: bool = True) -> StrategyConfig:
    """从 YAML 读取并解析配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    StrategyConfig
        解析后的不可变配置对象。

    Raises
    ------
    ValidationError
        文件不存在、YAML 语法错误、缺失环境变量或校验失败。
    """
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise ValidationError(f"Config file not found: {cfg_path}")

    if load_env:
        _load_envs(cfg_path)

    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            raw_cfg: Any = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ValidationError(f"Invalid YAML in {cfg_path}: {exc}") from exc

    if expand:
        raw_cfg = expand_env(raw_cfg)
    return parse_config(raw_cfg)
