from __future__ import annotations

import pytest

from bridge_tvl.blocks import Block, BlockLocator, average_block_time
from bridge_tvl.errors import GenesisError

GENESIS_TS = 1_600_000_000
HEAD = 5_000


class _FakeChain:
    def __init__(self, head: int = HEAD, block_time: int = 12) -> None:
        self.head = head
        self.block_time = block_time
        self.requests: list[int | str] = []

    def timestamp(self, number: int) -> int:
        return GENESIS_TS + number * self.block_time

    def request_block(self, identifier: int | str) -> Block:
        self.requests.append(identifier)
        number = self.head if identifier == "latest" else int(identifier)
        return Block(number=number, timestamp=self.timestamp(number))


def _assert_supremum(chain: _FakeChain, block: Block, timestamp: int) -> None:
    assert block.timestamp <= timestamp
    assert block.number == chain.head or chain.timestamp(block.number + 1) > timestamp


def _assert_cache_sorted(locator: BlockLocator) -> None:
    numbers = [block.number for block in locator.blocks]
    assert numbers == sorted(set(numbers))


@pytest.mark.parametrize(
    "timestamp",
    [
        GENESIS_TS,
        GENESIS_TS + 5,
        GENESIS_TS + 12 * 1234,
        GENESIS_TS + 12 * 1234 + 11,
        GENESIS_TS + 12 * HEAD - 1,
    ],
)
def test_locate_returns_latest_block_at_or_before_timestamp(timestamp: int) -> None:
    chain = _FakeChain()
    locator = BlockLocator(chain.request_block)

    block = locator.locate(timestamp)

    _assert_supremum(chain, block, timestamp)
    _assert_cache_sorted(locator)


def test_locate_after_head_returns_head() -> None:
    chain = _FakeChain()
    locator = BlockLocator(chain.request_block)

    block = locator.locate(GENESIS_TS + 12 * HEAD + 100)

    assert block.number == HEAD
    assert chain.requests == ["latest"]


def test_repeated_lookups_keep_cache_sorted_and_unique() -> None:
    chain = _FakeChain(block_time=13)
    locator = BlockLocator(chain.request_block)

    for offset in (40_000, 100, 63_000, 12_345, 100, 0, 64_999):
        timestamp = GENESIS_TS + offset
        _assert_supremum(chain, locator.locate(timestamp), timestamp)

    _assert_cache_sorted(locator)


def test_get_block_is_served_from_cache() -> None:
    chain = _FakeChain()
    locator = BlockLocator(chain.request_block)

    first = locator.get_block(42)
    second = locator.get_block(42)

    assert first == second == Block(42, GENESIS_TS + 42 * 12)
    assert chain.requests == [42]


def test_locate_before_genesis_raises() -> None:
    chain = _FakeChain()
    locator = BlockLocator(chain.request_block)

    with pytest.raises(GenesisError):
        locator.locate(GENESIS_TS - 1)


def test_locate_uses_seeded_cache_and_walks_back() -> None:
    chain = _FakeChain()
    seeded = [Block(4_000, chain.timestamp(4_000)), Block(HEAD, chain.timestamp(HEAD))]
    locator = BlockLocator(chain.request_block, seeded)

    timestamp = chain.timestamp(1_000) + 3
    block = locator.locate(timestamp)

    assert block.number == 1_000
    assert "latest" not in chain.requests
    _assert_cache_sorted(locator)


def test_average_block_time_falls_back_to_default() -> None:
    assert average_block_time(137) == 2.5
    assert average_block_time(999_999) == average_block_time(1)
