"""Shared text formatting helpers for prbench.

Number formatting for report cells and duration formatting for log
messages.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, localcontext


def format_number(value: float, decimals: int = 0, *, add_sign: bool = False) -> str:
    """Format a number with thousands separators.

    Rounds half away from zero on the exact binary value, so
    ``1234.5`` becomes ``'1,235'``. A leading ``+`` is added when
    *add_sign* is set and *value* is strictly positive. Negative zero
    after rounding is shown as ``'0'``.

    Examples: ``format_number(30556.69)`` → ``'30,557'``,
    ``format_number(100, add_sign=True)`` → ``'+100'``,
    ``format_number(-2.5)`` → ``'-3'``.
    """
    if math.isnan(value) or math.isinf(value):
        return str(value)
    exact = Decimal(value)
    quantum = Decimal(1).scaleb(-decimals)
    with localcontext() as ctx:
        # Enough digits for every integer digit plus the decimals.
        ctx.prec = max(ctx.prec, exact.adjusted() + decimals + 2)
        rounded = exact.quantize(quantum, rounding=ROUND_HALF_UP)
        if rounded == 0:
            rounded = abs(rounded)
        text = f"{rounded:,.{decimals}f}"
    if add_sign and value > 0:
        text = "+" + text
    return text


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration.

    Examples: ``'8s'``, ``'1m 23s'``, ``'1h 12m 34s'``. Always whole seconds
    (truncated, not rounded).
    """
    total = int(seconds)
    if total >= 3600:
        h = total // 3600
        m = (total % 3600) // 60
        s = total % 60
        return f"{h}h {m:2d}m {s:2d}s"
    if total >= 60:
        m = total // 60
        s = total % 60
        return f"{m}m {s:2d}s"
    return f"{total}s"
