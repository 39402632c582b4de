from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Sequence

from .balances import BalanceSample, last_index_before_ms
from .prices import PriceSeries


@dataclass
class ValuePoint:
    timestamp: int
    value: Decimal

    @classmethod
    def zero(cls, timestamp: int) -> "ValuePoint":
        return cls(timestamp=timestamp, value=Decimal(0))


@dataclass(frozen=True)
class AssetDelta:
    asset: str
    timestamp: int
    value: Decimal
    previous_value: Decimal


def apply_prices(samples: Sequence[BalanceSample], prices: PriceSeries) -> None:
    for sample in samples:
        if sample.timestamp is None:
            continue
        sample.price = prices.price_at(sample.timestamp)
        sample.value = sample.balance * sample.price


def add_price_updates(samples: list[BalanceSample], prices: PriceSeries, start: int, end: int) -> None:
    """Insert a sample at every price point strictly inside (start, end).

    Between balance changes the value still moves with the price, so each
    point carries forward the balance in effect at that moment.
    """
    for point in prices.inside(start, end):
        index = last_index_before_ms(samples, point.timestamp_ms)
        balance = samples[index].balance if index is not None else Decimal(0)
        raw_balance = samples[index].raw_balance if index is not None else 0
        update = BalanceSample(
            block_number=None,
            timestamp=point.timestamp,
            raw_balance=raw_balance,
            balance=balance,
            price=point.price,
            value=balance * point.price,
        )
        samples.insert(0 if index is None else index + 1, update)


def collect_deltas(balances: Mapping[str, Sequence[BalanceSample]], start: int) -> list[AssetDelta]:
    deltas: list[AssetDelta] = []
    for asset, samples in balances.items():
        for i, sample in enumerate(samples):
            if sample.timestamp is None or sample.timestamp < start:
                continue
            previous = samples[i - 1] if i > 0 else None
            in_range = previous is not None and previous.timestamp is not None and previous.timestamp >= start
            deltas.append(
                AssetDelta(
                    asset=asset,
                    timestamp=sample.timestamp,
                    value=sample.value if sample.value is not None else Decimal(0),
                    previous_value=previous.value if in_range and previous.value is not None else Decimal(0),
                )
            )
    deltas.sort(key=lambda delta: delta.timestamp)
    return deltas


def total_series(balances: Mapping[str, Sequence[BalanceSample]], start: int) -> list[ValuePoint]:
    """Fold per-asset values into one series by adding only what changed."""
    total: list[ValuePoint] = []
    for delta in collect_deltas(balances, start):
        if not total:
            total.append(ValuePoint(timestamp=delta.timestamp, value=delta.value))
        elif total[-1].timestamp < delta.timestamp:
            total.append(
                ValuePoint(
                    timestamp=delta.timestamp,
                    value=total[-1].value + delta.value - delta.previous_value,
                )
            )
        else:
            total[-1].value += delta.value - delta.previous_value
    return total
