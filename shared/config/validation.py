"""原始配置字典校验（在 Pydantic 之前）。

目标：
- 在启动阶段尽早失败，并对拼写错误给出 "did you mean" 提示；
- 只检查结构（未知键/必填键/块类型），数值与语义约束交给 schema。
"""

from __future__ import annotations

import difflib
from typing import Any, Iterable

from pydantic import BaseModel

from shared.config.schema import StrategyConfig
from shared.errors import ValidationError


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _ensure_allowed_keys(block: dict[str, Any], *, allowed: set[str], ctx: str) -> None:
    unknown = [k for k in block.keys() if k not in allowed]
    if not unknown:
        return
    parts = []
    for k in sorted(unknown, key=str):
        suggestion = _suggest_key(str(k), allowed)
        if suggestion:
            parts.append(f"{k} (did you mean '{suggestion}'?)")
        else:
            parts.append(str(k))
    raise ValidationError(f"{ctx} contains unknown keys: {', '.join(parts)}")


def _require(block: dict[str, Any], key: str, *, ctx: str) -> Any:
    if key not in block or block[key] is None:
        raise ValidationError(f"Missing required config key: {ctx}.{key}")
    return block[key]


def _expect_str(val: Any, *, ctx: str) -> str:
    if not isinstance(val, str) or not val.strip():
        raise ValidationError(f"{ctx} must be a non-empty string")
    return val


def _section_models() -> dict[str, type[BaseModel]]:
    out: dict[str, type[BaseModel]] = {}
    for name, field in StrategyConfig.model_fields.items():
        ann = field.annotation
        if isinstance(ann, type) and issubclass(ann, BaseModel):
            out[name] = ann
    return out


def validate_raw_config(cfg: dict[str, Any]) -> None:
    """校验 raw config dict（来自 YAML + env 展开后）。"""
    if not isinstance(cfg, dict):
        raise ValidationError("Config root must be a dict")

    _ensure_allowed_keys(cfg, allowed=set(StrategyConfig.model_fields), ctx="config")

    _expect_str(_require(cfg, "symbol", ctx="config"), ctx="config.symbol")
    _expect_str(_require(cfg, "trading_symbol", ctx="config"), ctx="config.trading_symbol")

    for name, model in _section_models().items():
        block = cfg.get(name)
        if block is None:
            continue
        if not isinstance(block, dict):
            raise ValidationError(f"config.{name} must be a dict")
        _ensure_allowed_keys(block, allowed=set(model.model_fields), ctx=f"config.{name}")
