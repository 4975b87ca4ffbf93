"""Immutable snapshots observed from the Bitcoin node and the fee service."""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ChainState:
    """Result of `getblockchaininfo`; `height` is the node's validated block count."""

    height: int
    chain: str
    headers: int
    best_block_hash: str
    difficulty: float
    verification_progress: float
    initial_block_download: bool = False
    size_on_disk: int = 0
    pruned: bool = False


@dataclass(frozen=True, slots=True)
class BlockStats:
    """Aggregate statistics for the block at `height` (`getblockstats`)."""

    height: int
    block_hash: str
    time: int
    txs: int
    ins: int
    outs: int
    total_size: int
    total_weight: int
    total_fee: int
    avg_fee: int
    avg_fee_rate: int
    min_fee_rate: int
    max_fee_rate: int
    median_fee: int
    subsidy: int


@dataclass(frozen=True, slots=True)
class FeeEstimate:
    """Recommended fee rates in sat/vB, bucketed by confirmation target."""

    fastest_fee: int
    half_hour_fee: int
    hour_fee: int
    economy_fee: int
    minimum_fee: int
