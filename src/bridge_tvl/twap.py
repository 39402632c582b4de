from __future__ import annotations

from decimal import Decimal
from typing import Callable, Protocol, Sequence, TypeVar

from .balances import add_first_balance


class ValuedSample(Protocol):
    timestamp: int | None
    value: Decimal | None


S = TypeVar("S", bound=ValuedSample)


def twap(series: Sequence[ValuedSample], start: int, end: int) -> Decimal:
    """Time-weighted average of a hold-last-value series over [start, end)."""
    if end <= start:
        raise ValueError("TWAP window must have a positive length.")
    selected = [
        sample for sample in series if sample.timestamp is not None and start <= sample.timestamp < end
    ]
    cumulative = Decimal(0)
    for i, sample in enumerate(selected):
        until = selected[i + 1].timestamp if i < len(selected) - 1 else end
        if sample.value is None:
            raise ValueError(f"Sample at {sample.timestamp} has no value.")
        cumulative += sample.value * (until - sample.timestamp)
    return cumulative / Decimal(end - start)


def interval_twaps(
    series: list[S],
    start: int,
    end: int,
    interval: int,
    zero: Callable[[int], S],
) -> dict[int, Decimal]:
    if interval <= 0:
        raise ValueError("Interval must be positive.")
    result: dict[int, Decimal] = {}
    for interval_start in range(start, end, interval):
        add_first_balance(series, interval_start, zero(interval_start))
        result[interval_start] = twap(series, interval_start, interval_start + interval)
    return result
