"""数值转换与步进工具。

外部返回的价格/数量通常是字符串，这里统一转换并在失败时抛 `ParseError`，
不让裸 `ValueError` 漏到调度器之外。
"""

from __future__ import annotations

import math
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any

from shared.errors import ParseError


def parse_float(value: Any, *, field: str) -> float:
    """把外部字段转换为有限浮点数。

    Parameters
    ----------
    value:
        原始值（str/int/float）。
    field:
        字段名，仅用于错误信息。

    Raises
    ------
    ParseError
        无法转换，或结果为 NaN/inf。
    """
    if isinstance(value, bool) or value is None:
        raise ParseError(f"Invalid numeric value for {field}: {value!r}")
    try:
        out = float(value)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Invalid numeric value for {field}: {value!r}") from exc
    if not math.isfinite(out):
        raise ParseError(f"Non-finite numeric value for {field}: {value!r}")
    return out


def decimals_from_step(step: float) -> int:
    """根据 step（通常是 10 的负次幂）推导小数位数。"""
    try:
        d = Decimal(str(step))
    except InvalidOperation:
        return 0
    if d == 0:
        return 0
    return max(0, -int(d.as_tuple().exponent))


def floor_to_step(value: float, step: float | None) -> float:
    """把 value 向下裁剪到 step 的整数倍（避免 float 精度噪声）。"""
    if step is None or float(step) <= 0:
        return float(value)

    v = Decimal(str(value))
    sd = Decimal(str(step))
    n = (v / sd).to_integral_value(rounding=ROUND_FLOOR)
    decs = decimals_from_step(float(step))
    out = (n * sd).quantize(Decimal(1).scaleb(-decs)) if decs > 0 else (n * sd).quantize(Decimal(1))
    return float(f"{float(out):.{decs}f}")
