from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from decimal import Decimal, getcontext
from typing import Iterable, Protocol, Sequence, TypeVar

from .blocks import BlockLocator
from .events import BalanceEvent

logger = logging.getLogger(__name__)

# Arithmetic precision for value and TWAP computations
getcontext().prec = 50


@dataclass
class BalanceSample:
    block_number: int | None
    timestamp: int | None
    raw_balance: int
    balance: Decimal = Decimal(0)
    price: Decimal | None = None
    value: Decimal | None = None

    @classmethod
    def zero(cls, timestamp: int) -> "BalanceSample":
        return cls(block_number=None, timestamp=timestamp, raw_balance=0, value=Decimal(0))


class Sample(Protocol):
    timestamp: int | None


S = TypeVar("S", bound=Sample)


def reconstruct_balances(events: Iterable[BalanceEvent]) -> dict[str, list[BalanceSample]]:
    """Replay signed amounts into per-asset running balances, one sample per event."""
    balances: dict[str, list[BalanceSample]] = {}
    for event in sorted(events, key=lambda item: item.block_number):
        samples = balances.setdefault(event.asset, [])
        previous = samples[-1].raw_balance if samples else 0
        samples.append(
            BalanceSample(
                block_number=event.block_number,
                timestamp=None,
                raw_balance=previous + event.amount,
            )
        )
    return balances


def scale_amount(raw: int, decimals: int) -> Decimal:
    # Shifting the exponent of the exact integer keeps every digit of large balances.
    sign, digits, exponent = Decimal(raw).as_tuple()
    return Decimal((sign, digits, exponent - decimals))


def scale_balances(samples: Sequence[BalanceSample], decimals: int) -> None:
    for sample in samples:
        sample.balance = scale_amount(sample.raw_balance, decimals)


def resolve_timestamps(samples: Sequence[BalanceSample], locator: BlockLocator, from_block: int) -> None:
    for sample in samples:
        if sample.block_number is not None and sample.block_number >= from_block:
            sample.timestamp = locator.get_block(sample.block_number).timestamp
    logger.debug("Resolved timestamps for %d samples from block %d", len(samples), from_block)


def add_first_balance(samples: list[S], start: int, zero: S) -> None:
    """Make sure a sample exists exactly at `start`.

    Samples without a timestamp predate the analysed range and are skipped when
    looking for the first sample after `start`. `zero` is inserted when no sample
    precedes `start`.
    """
    index = next(
        (i for i, sample in enumerate(samples) if sample.timestamp is not None and sample.timestamp > start),
        None,
    )
    if index is None:
        if samples:
            samples.append(dataclasses.replace(samples[-1], timestamp=start))
        else:
            samples.append(zero)
    elif index == 0:
        samples.insert(0, zero)
    else:
        samples.insert(index, dataclasses.replace(samples[index - 1], timestamp=start))


def last_index_before_ms(samples: Sequence[Sample], timestamp_ms: int) -> int | None:
    """Index of the last timestamped sample strictly before `timestamp_ms` milliseconds."""
    for i in range(len(samples) - 1, -1, -1):
        stamp = samples[i].timestamp
        if stamp is not None and stamp * 1000 < timestamp_ms:
            return i
    return None
