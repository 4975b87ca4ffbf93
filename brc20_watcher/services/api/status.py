"""In-memory board holding the latest value received from each stream."""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from brc20_watcher.core.types import BlockStats, ChainState, FeeEstimate


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class StatusBoard:
    """Latest observed values plus the UTC instant each one was received."""

    chain_state: ChainState | None = None
    block_stats: BlockStats | None = None
    fee_estimate: FeeEstimate | None = None
    received_at: dict[str, datetime] = field(default_factory=dict)

    def record_chain_state(self, value: ChainState) -> None:
        self.chain_state = value
        self.received_at["chain_state"] = _utc_now()

    def record_block_stats(self, value: BlockStats) -> None:
        self.block_stats = value
        self.received_at["block_stats"] = _utc_now()

    def record_fee_estimate(self, value: FeeEstimate) -> None:
        self.fee_estimate = value
        self.received_at["fee_estimate"] = _utc_now()

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON-ready view; missing streams are reported as null."""

        values = {
            "chain_state": self.chain_state,
            "block_stats": self.block_stats,
            "fee_estimate": self.fee_estimate,
        }
        return {
            name: {
                "value": asdict(value),
                "received_at": self.received_at[name].isoformat(),
            }
            if value is not None
            else None
            for name, value in values.items()
        }
