from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass
from typing import Callable, Iterable

from .errors import GenesisError, TvlError

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_TIME_SECONDS = 13.5
# Hard-coded estimates from the chain explorers' block time charts.
BLOCK_TIME_SECONDS: dict[int, float] = {
    1: DEFAULT_BLOCK_TIME_SECONDS,
    137: 2.5,
}
SEARCH_CUSHION = 1.1
MAX_SEARCH_STEPS = 512


@dataclass(frozen=True)
class Block:
    number: int
    timestamp: int


BlockRequest = Callable[[int | str], Block]


def average_block_time(chain_id: int | None) -> float:
    return BLOCK_TIME_SECONDS.get(chain_id, DEFAULT_BLOCK_TIME_SECONDS)


class BlockLocator:
    """Resolves timestamps to the latest block at or before them.

    Every block requested through the locator is kept in a cache sorted by
    block number, so repeated lookups over a run narrow quickly and only pay
    for the blocks that actually bracket a new target.
    """

    def __init__(
        self,
        request_block: BlockRequest,
        blocks: Iterable[Block] = (),
        *,
        chain_id: int | None = 1,
        max_steps: int = MAX_SEARCH_STEPS,
    ) -> None:
        self._request_block = request_block
        self._blocks: list[Block] = []
        self.chain_id = chain_id
        self.max_steps = max_steps
        for block in blocks:
            self._insert(block)

    @property
    def blocks(self) -> tuple[Block, ...]:
        return tuple(self._blocks)

    def locate(self, timestamp: int) -> Block:
        if not self._blocks or self._blocks[-1].timestamp < timestamp:
            head = self.latest_block()
            if head.timestamp <= timestamp:
                return head

        if self._blocks[0].timestamp > timestamp:
            self._walk_back(timestamp)

        index = bisect.bisect_right(self._blocks, timestamp, key=lambda block: block.timestamp)
        if index == len(self._blocks):
            # Only reachable when the last cached block sits exactly on the target.
            return self._blocks[-1]
        return self._narrow(self._blocks[index - 1], self._blocks[index], timestamp)

    def latest_block(self) -> Block:
        return self._insert(self._request_block("latest"))

    def get_block(self, number: int) -> Block:
        index = self._index_of(number)
        if index < len(self._blocks) and self._blocks[index].number == number:
            return self._blocks[index]
        block = self._request_block(number)
        logger.debug("Fetched block %d (timestamp %d)", block.number, block.timestamp)
        return self._insert(block)

    def _walk_back(self, timestamp: int) -> None:
        earliest = self._blocks[0]
        seconds = earliest.timestamp - timestamp
        step = max(math.floor(seconds * SEARCH_CUSHION / average_block_time(self.chain_id)), 1)
        multiplier = 1
        while True:
            number = max(0, earliest.number - multiplier * step)
            block = self.get_block(number)
            if block.timestamp <= timestamp:
                return
            if number == 0:
                raise GenesisError(f"Timestamp {timestamp} is before block 0.")
            multiplier += 1

    def _narrow(self, lower: Block, upper: Block, timestamp: int) -> Block:
        for _ in range(self.max_steps):
            if lower.timestamp == timestamp:
                return lower
            if upper.number == lower.number + 1:
                return lower
            elapsed = upper.timestamp - lower.timestamp
            distance = upper.number - lower.number
            estimate = lower.number + round((timestamp - lower.timestamp) * distance / elapsed)
            probe = self.get_block(min(max(estimate, lower.number + 1), upper.number - 1))
            if probe.timestamp <= timestamp:
                lower = probe
            else:
                upper = probe
        raise TvlError(
            f"Block search for timestamp {timestamp} did not converge in {self.max_steps} steps."
        )

    def _index_of(self, number: int) -> int:
        return bisect.bisect_left(self._blocks, number, key=lambda block: block.number)

    def _insert(self, block: Block) -> Block:
        index = self._index_of(block.number)
        if index < len(self._blocks) and self._blocks[index].number == block.number:
            return self._blocks[index]
        self._blocks.insert(index, block)
        return block
