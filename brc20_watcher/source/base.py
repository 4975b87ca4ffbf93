"""Capability the pollers consume to observe the node and the fee service."""

from typing import Protocol

from brc20_watcher.core.types import BlockStats, ChainState, FeeEstimate


class DataSource(Protocol):
    """Shared, concurrency-safe fetcher; every method raises FetchError on failure."""

    async def fetch_chain_state(self) -> ChainState: ...

    async def fetch_block_stats(self, height: int) -> BlockStats: ...

    async def fetch_fee_estimate(self) -> FeeEstimate: ...
