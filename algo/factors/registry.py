"""均值方法注册表：方法名 -> 追踪器实现。

只有注册过的方法可以被构建；EMA / VWAP 在枚举里存在但没有实现，
配置加载阶段就会被 `validate_method` 拒绝。
"""

from __future__ import annotations

from algo.factors.moving_average import MeanCalculationMethod, MovingAverageTracker
from shared.errors import ValidationError

_REGISTRY: dict[MeanCalculationMethod, type] = {}


def register_method(method: MeanCalculationMethod, cls: type) -> None:
    _REGISTRY[method] = cls


def validate_method(method: str | MeanCalculationMethod) -> MeanCalculationMethod:
    """校验均值方法是否受支持。

    Raises
    ------
    ValidationError
        未知方法，或已知但未实现的方法（ema/vwap）。
    """
    try:
        resolved = MeanCalculationMethod(method)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in MeanCalculationMethod)
        raise ValidationError(f"unknown calculation method: {method!r} (expected one of: {allowed})") from exc
    if resolved not in _REGISTRY:
        raise ValidationError(f"unsupported calculation method: {resolved.value}")
    return resolved


def build_tracker(method: str | MeanCalculationMethod, period: int) -> MovingAverageTracker:
    """按方法名构建追踪器。"""
    cls = _REGISTRY[validate_method(method)]
    return cls(period)


def supported_methods() -> list[str]:
    return [m.value for m in _REGISTRY]


# 默认注册
register_method(MeanCalculationMethod.SIMPLE_MA, MovingAverageTracker)
